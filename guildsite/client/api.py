"""HTTP client for the guild site API, routed through ``RouteResolver``."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import requests

from .responses import ApiError, ResponseParseError, is_html, parse_response
from .routes import CHARACTERS_PATH, RouteResolver

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}
ON_401 = ("throw", "return_null")


def ok(status: int) -> bool:
    return 200 <= status < 300


def raise_for_status(response) -> None:
    """Raise ``ApiError`` for a non-2xx response."""
    if ok(response.status_code):
        return
    try:
        body = parse_response(response)
        if isinstance(body, dict):
            message = body.get("message") or body.get("error") or json.dumps(body)
        elif body is None:
            message = response.text or getattr(response, "reason", "") or ""
        else:
            message = json.dumps(body)
    except ResponseParseError:
        message = response.text
    logger.error("API Error: %s: %s", response.status_code, message)
    raise ApiError(response.status_code, message, url=str(getattr(response, "url", "")))


class ApiClient:
    """Resolve, request, parse: one call at a time, at most one 404 retry."""

    def __init__(self, base_url: str, resolver: RouteResolver,
                 session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.resolver = resolver
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self._url(path)
        if self.timeout is not None:
            kwargs.setdefault("timeout", self.timeout)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error("Error fetching %s: %s", url, e)
            raise ResponseParseError("network-error", str(e), url=url) from e

    def fetch(self, logical_path: str, method: str = "GET", **kwargs) -> requests.Response:
        """Request ``logical_path`` at its environment-specific location."""
        headers = dict(JSON_HEADERS)
        headers.update(kwargs.pop("headers", None) or {})
        kwargs["headers"] = headers

        if logical_path == CHARACTERS_PATH and self.resolver.is_production_host():
            direct = self.resolver.with_cache_buster("/auth-characters.php")
            logger.info("Using direct PHP URL for characters: %s", direct)
            return self._send(method, direct, **kwargs)

        target = self.resolver.resolve(logical_path)
        response = self._send(method, target, **kwargs)
        logger.debug("Response status %s for %s", response.status_code, target)

        if not ok(response.status_code):
            text = response.text or ""
            logger.info("Response text (first 100 chars): %s", text[:100])
            if is_html(text):
                logger.error("Received HTML instead of JSON from %s", target)

        retry = self.resolver.fallback_path(logical_path, response.status_code)
        if retry is None:
            return response
        logger.info("Route %s returned 404, trying %s", target, retry)
        return self._send(method, retry, **kwargs)

    def fetch_json(self, logical_path: str, method: str = "GET", **kwargs) -> Any:
        return parse_response(self.fetch(logical_path, method, **kwargs))

    def request(self, method: str, path: str, data: Any = None) -> requests.Response:
        """Send ``data`` as JSON to ``path`` (PHP-mapped on the production host)."""
        url = self.resolver.proper_endpoint(path)
        if url != path:
            logger.info("API request URL converted: %s -> %s", path, url)
        kwargs = {}
        if data is not None:
            kwargs["json"] = data
            kwargs["headers"] = {"Content-Type": "application/json"}
        response = self._send(method, url, **kwargs)
        raise_for_status(response)
        return response

    def query(self, path: str, on_401: str = "throw") -> Any:
        """GET ``path`` and parse it; ``on_401="return_null"`` maps 401 to None.

        A query always expects data back, so an empty body raises
        ``ResponseParseError("empty-body")``.
        """
        if on_401 not in ON_401:
            raise ValueError(f"on_401 must be one of {ON_401}")
        url = self.resolver.proper_endpoint(path)
        if url != path:
            logger.info("Query URL converted: %s -> %s", path, url)
        response = self._send("GET", url)
        if on_401 == "return_null" and response.status_code == 401:
            return None
        raise_for_status(response)
        return parse_response(response, allow_empty=False)
