"""Tolerant JSON parsing for API responses.

Some production auth endpoints come back as rendered HTML (error pages,
login redirects) instead of JSON. ``parse_response`` reads the body as text
first and, for auth endpoints, turns those pages into a safe envelope with
a ``debug`` block instead of raising. The HTML checks are plain substring
heuristics; they are best effort and live only in this module.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

HTML_MARKERS = ("<!DOCTYPE", "<html")
AUTH_URL_MARKERS = ("/auth/", "/api/auth", "auth-user.php", "auth-status.php", "auth-characters.php")
LOGGED_IN_MARKERS = (
    "logged in",
    "authenticated",
    "successful",
    "welcome back",
    "Session saved successfully",
    "Battle.net",
)
BNET_ERROR_MARKERS = ("battle.net", "oauth", "Authentication failed")
EXCERPT_LENGTH = 100

_EMBEDDED_JSON = re.compile(r"{[\s\S]*}")


class ResponseParseError(Exception):
    KINDS = ("html-error-page", "auth-redirect", "empty-body", "invalid-json", "network-error")

    def __init__(self, kind: str, message: str, url: Optional[str] = None,
                 status: Optional[int] = None, excerpt: Optional[str] = None):
        if kind not in self.KINDS:
            raise ValueError(f"unknown parse error kind: {kind}")
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.url = url
        self.status = status
        self.excerpt = excerpt

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class ApiError(Exception):
    """Non-2xx response with the best message we could pull out of it."""

    def __init__(self, status: int, message: str, url: Optional[str] = None):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message
        self.url = url


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _debug(url: str, status: Optional[int], source: str, **extra) -> dict:
    out = {
        "htmlDetected": True,
        "url": url,
        "status": status,
        "timestamp": _now_iso(),
        "source": source,
    }
    out.update(extra)
    return out


def is_html(text: str) -> bool:
    return any(marker in text for marker in HTML_MARKERS)


def is_auth_url(url: str) -> bool:
    return any(marker in url for marker in AUTH_URL_MARKERS)


def _extract_user(text: str) -> Optional[dict]:
    m = _EMBEDDED_JSON.search(text)
    if not m:
        return None
    try:
        data = json.loads(m.group(0))
    except ValueError as e:
        logger.debug("Could not extract user data from HTML: %s", e)
        return None
    if isinstance(data, dict) and (data.get("user") or data.get("id") or data.get("battleTag")):
        return data
    return None


def _placeholder_user() -> dict:
    now = _now_iso()
    return {
        "id": 1,
        "battleNetId": "unknown",
        "battleTag": "Unknown#0000",
        "createdAt": now,
        "lastLogin": now,
    }


def _not_authenticated(url: str, status: Optional[int], source: str, **extra) -> dict:
    return {"authenticated": False, "user": None, "debug": _debug(url, status, source, **extra)}


def _from_html(text: str, url: str, status: Optional[int]) -> Any:
    logger.error("Received HTML instead of JSON for %s (status %s): %s", url, status, text[:200])
    auth = is_auth_url(url)

    if auth:
        if any(marker in text for marker in LOGGED_IN_MARKERS):
            user = _extract_user(text)
            return {
                "authenticated": True,
                "user": user or _placeholder_user(),
                "debug": _debug(url, status, "html-auth-indicators", extractedData=user is not None),
            }
        if "user" in url or "status" in url:
            return _not_authenticated(url, status, "html-detected")
        if "characters" in url:
            return {
                "success": False,
                "characters": [],
                "count": 0,
                "debug": _debug(url, status, "html-detected", error="HTML detected instead of JSON"),
            }

    if "login" in text and "redirect" in text:
        logger.warning("Detected login redirect page for %s", url)
        envelope = _not_authenticated(url, status, "auth-redirect", message="Login redirect detected")
        envelope["redirected"] = True
        return envelope

    if any(marker in text for marker in BNET_ERROR_MARKERS) and "error" in text:
        logger.warning("Detected Battle.net auth failure page for %s", url)
        envelope = _not_authenticated(
            url, status, "bnet-error", message="Battle.net authentication error detected",
        )
        envelope["bnetError"] = True
        return envelope

    # auth callers always get an envelope
    if auth:
        return _not_authenticated(url, status, "html-detected")

    raise ResponseParseError(
        "html-error-page",
        f"Received HTML instead of JSON for {url} (status {status})",
        url=url, status=status, excerpt=text[:EXCERPT_LENGTH],
    )


def parse_response(response, allow_empty: bool = True) -> Any:
    """Parse a ``requests.Response``-like object (``text``, ``url``, ``status_code``).

    Returns the decoded JSON, a synthesized envelope for HTML auth pages,
    or ``None`` for an empty body. Raises ``ResponseParseError`` otherwise.
    """
    text = response.text or ""
    url = str(getattr(response, "url", "") or "")
    status = getattr(response, "status_code", None)

    if is_html(text):
        return _from_html(text, url, status)

    if not text.strip():
        if allow_empty:
            logger.warning("Empty response received from %s", url)
            return None
        raise ResponseParseError("empty-body", f"Empty response from {url}", url=url, status=status)

    try:
        return json.loads(text)
    except ValueError as e:
        excerpt = text[:EXCERPT_LENGTH]
        logger.error("Failed to parse JSON from %s: %s...", url, excerpt)
        raise ResponseParseError(
            "invalid-json", f"Invalid JSON response: {e}", url=url, status=status, excerpt=excerpt,
        ) from e
