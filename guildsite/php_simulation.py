"""``/auth-*.php`` endpoints with the same JSON shapes as the production PHP host.

The route resolver sends clients here whenever it maps an auth route to its
``.php`` form, so a non-PHP deployment still answers those paths.
"""
import datetime as dt
import logging
from flask import Blueprint, jsonify, request
from flask_login import current_user, logout_user

from .auth import auth_state, user_characters
from .security import DIRECT_TOKEN_TTL, issue_direct_token, verify_direct_token

logger = logging.getLogger(__name__)

php_bp = Blueprint("php_simulation", __name__)


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def success_response(data, message: str = "Success", status: int = 200):
    return jsonify(success=True, message=message, data=data, timestamp=_now_iso()), status


def error_response(message: str, status: int = 400, **details):
    return jsonify(success=False, message=message, timestamp=_now_iso(), **details), status


@php_bp.get("/auth-status.php")
def auth_status_php():
    return jsonify(auth_state()), 200


@php_bp.get("/auth-user.php")
def auth_user_php():
    state = auth_state()
    logger.info("[PHP Simulation] auth-user: authenticated=%s", state["authenticated"])
    return jsonify(state), 200


@php_bp.get("/auth-characters.php")
def auth_characters_php():
    if not current_user.is_authenticated:
        return error_response("Authentication required", 401)
    chars = user_characters(current_user.id)
    logger.info("[PHP Simulation] Retrieved %d characters for user %s", len(chars), current_user.id)
    return success_response({"characters": chars, "count": len(chars)})


@php_bp.route("/auth-logout.php", methods=["GET", "POST"])
def auth_logout_php():
    logout_user()
    return success_response(None, "Logged out successfully")


@php_bp.get("/auth-direct-check.php")
def auth_direct_check_php():
    token = request.args.get("token")
    user_id = request.args.get("userId")
    if not token or not user_id:
        return error_response("Missing token or userId", 400)
    try:
        uid = int(user_id)
    except ValueError:
        return error_response("Invalid user ID", 400)
    if not verify_direct_token(token, uid):
        return error_response("Invalid token", 401)
    return success_response({"valid": True, "userId": uid}, "Token is valid")


@php_bp.post("/auth-direct-check.php")
def auth_direct_token_php():
    if not current_user.is_authenticated:
        return error_response("Authentication required", 401)
    expires = dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=DIRECT_TOKEN_TTL)
    return success_response(
        {"userId": current_user.id, "token": issue_direct_token(current_user.id), "expires": expires.isoformat()},
        "Direct authentication token generated",
    )
