"""Request logging and JSON error pages for ``/api/`` routes.

Every ``/api/`` call is written to the operations log with the quiet
variant, so a broken log table never breaks a request.
"""
from __future__ import annotations

import logging
import re
import time
import traceback

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .models import db
from .oplog import log_operation_quietly

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^\w\s\-/_.:?=&%]")


def _safe_path() -> str:
    return _UNSAFE_PATH_CHARS.sub("", request.path or "/unknown")[:100]


def _admin_id():
    admin = g.get("admin") or {}
    uid = admin.get("uid")
    return uid if isinstance(uid, int) else None


def _is_api() -> bool:
    return (request.path or "").startswith("/api/")


def register_request_logging(app: Flask) -> None:
    @app.before_request
    def _log_api_call():
        if not app.config.get("REQUEST_LOGGING", True) or not _is_api():
            return
        g.request_started = time.perf_counter()
        path = _safe_path()
        if path.startswith("/api/admin"):
            query = ""
            if request.args:
                query = f" (Query: {request.args.to_dict(flat=True)!s:.200})"
            log_operation_quietly("admin_api", "info", f"Admin API Call: {request.method} {path}{query}")
        else:
            log_operation_quietly("public_api", "info", f"Public API Call: {request.method} {path}")

    @app.after_request
    def _log_api_response(response):
        started = g.pop("request_started", None)
        if started is None:
            return response
        duration = int((time.perf_counter() - started) * 1000)
        path = _safe_path()
        code = response.status_code
        if path.startswith("/api/admin"):
            log_operation_quietly(
                "admin_api_response",
                "error" if code >= 400 else "success",
                f"Admin API Response: {request.method} {path} - {code} in {duration}ms",
                _admin_id(),
                duration=duration,
            )
        elif code >= 400:
            log_operation_quietly(
                "public_api_error",
                "error",
                f"Public API Error: {request.method} {path} - {code} in {duration}ms",
                duration=duration,
            )
        return response


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        if not _is_api():
            return e
        return jsonify(success=False, message=e.description, errorId=int(time.time() * 1000)), e.code

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        method, path = request.method, _safe_path()
        message = f"Uncaught Error in {method} {path}: {str(e)[:200]}"
        stack = "".join(traceback.format_exception(type(e), e, e.__traceback__)[-5:])
        logger.exception("%s", message)
        db.session.rollback()
        log_operation_quietly("system_error", "error", f"{message}\n\nStack trace:\n{stack}", _admin_id(),
                              ip_address=request.remote_addr, user_agent=request.user_agent.string)
        if _is_api():
            return jsonify(
                success=False,
                message="An internal server error occurred. The error has been logged and will be investigated.",
                errorId=int(time.time() * 1000),
            ), 500
        return "<h1>Internal Server Error</h1><p>The error has been logged.</p>", 500
