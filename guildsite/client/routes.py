"""Environment-aware route resolution for the auth endpoints.

The MySQL production host serves the auth endpoints as sibling ``.php``
files instead of ``/api/auth/*`` routes. ``RouteResolver`` maps a logical
path to the concrete one for a given hostname and appends a ``t=<epoch-ms>``
cache buster to everything it returns.
"""
from __future__ import annotations

import logging
import time
from types import MappingProxyType
from typing import Callable, Optional

from flask import current_app, request
from flask import redirect as flask_redirect

from ..dialect import PRODUCTION_MYSQL_HOST

logger = logging.getLogger(__name__)

SPECIAL_ROUTES = MappingProxyType({
    "/api/auth/status": "/auth-status.php",
    "/api/auth/bnet": "/auth-bnet.php",
    "/api/auth/bnet/callback": "/auth-callback.php",
    "/api/auth/bnet-direct": "/auth-bnet-direct.php",
    "/api/auth/logout": "/auth-logout.php",
    "/api/auth/user": "/auth-user.php",
    "/api/auth/my-characters": "/auth-characters.php",
})

CHARACTERS_PATH = "/api/auth/my-characters"
DEV_HOSTS = ("localhost", "127.0.0.1")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class RouteResolver:
    """Resolve logical API paths for one hostname.

    ``production_override`` is a zero-argument callable; when given, its
    result replaces the hostname check for the MySQL production host.
    ``clock`` returns epoch milliseconds for the cache buster.
    """

    def __init__(
        self,
        hostname: str,
        production_override: Optional[Callable[[], bool]] = None,
        clock: Optional[Callable[[], int]] = None,
        production_host: str = PRODUCTION_MYSQL_HOST,
    ):
        self.hostname = (hostname or "").split(":", 1)[0].lower()
        self.production_override = production_override
        self.production_host = production_host
        self._clock = clock or _epoch_ms

    def __repr__(self) -> str:
        return f"RouteResolver(hostname={self.hostname!r})"

    # ---- environment ----

    def is_production(self) -> bool:
        if not self.hostname:
            return False
        return not any(h in self.hostname for h in DEV_HOSTS)

    def is_production_host(self) -> bool:
        if self.production_override is not None:
            return bool(self.production_override())
        return bool(self.hostname) and self.production_host in self.hostname

    # ---- resolution ----

    def with_cache_buster(self, path: str) -> str:
        sep = "&" if "?" in path else "?"
        return f"{path}{sep}t={self._clock()}"

    def resolve(self, logical_path: str) -> str:
        override = SPECIAL_ROUTES.get(logical_path)
        if override:
            on_host = self.is_production_host()
            if on_host:
                logger.debug("Using %s route for %s: %s", self.production_host, logical_path, override)
                return self.with_cache_buster(override)
            if self.is_production():
                logger.debug("Using production route for %s: %s", logical_path, override)
                return self.with_cache_buster(override)
        return self.with_cache_buster(logical_path)

    def fallback_path(self, logical_path: str, status: int) -> Optional[str]:
        """The single retry target after a 404, or None."""
        if status != 404:
            return None
        on_host = self.is_production_host()
        if on_host and "/auth/" in logical_path:
            endpoint = logical_path.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
            return self.with_cache_buster(f"/auth-{endpoint}.php")
        if self.is_production() and not on_host and not logical_path.startswith("/auth/"):
            return self.with_cache_buster(logical_path.replace("/api/", "/", 1))
        return None

    def redirect_target(self, logical_path: str) -> str:
        """Where a full-page navigation to ``logical_path`` should go."""
        on_host = self.is_production_host()

        if "/api/auth/bnet" in logical_path:
            if on_host:
                if "bnet-direct" in logical_path:
                    target = "/auth-bnet-direct.php"
                elif "callback" in logical_path:
                    target = "/auth-callback.php"
                else:
                    target = "/auth-bnet.php"
                return self.with_cache_buster(target)
            return self.with_cache_buster(logical_path)

        if "/api/auth/" in logical_path and on_host:
            endpoint = logical_path.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
            return self.with_cache_buster(f"/auth-{endpoint}.php")

        return self.resolve(logical_path)

    def redirect(self, logical_path: str, code: int = 302):
        target = self.redirect_target(logical_path)
        logger.info("Redirecting %s -> %s", logical_path, target)
        return flask_redirect(target, code=code)

    def proper_endpoint(self, endpoint: str) -> str:
        """Map an API endpoint to its PHP counterpart on the production host.

        Query strings are preserved; no cache buster is added.
        """
        if not self.is_production_host():
            return endpoint

        base, sep, query = endpoint.partition("?")
        qs = f"?{query}" if sep else ""
        bare = base.rstrip("/") or base

        if bare == "/api/auth/user":
            return f"/auth-user.php{qs}"
        if bare in ("/api/auth/my-characters", "/api/characters") or base.startswith("/api/characters/"):
            return f"/auth-characters.php{qs}"
        if bare == "/api/auth/status":
            return f"/auth-status.php{qs}"
        if bare == "/api/auth/logout":
            return f"/auth-logout.php{qs}"
        if "/api/auth/bnet" in base:
            return f"/auth-bnet.php{qs}"
        if "/api/direct/login" in base:
            return f"/direct-login.php{qs}"
        if "/api/direct/logout" in base:
            return f"/direct-logout.php{qs}"
        if "/api/auth/direct-check" in base:
            return f"/auth-direct-check.php{qs}"
        return endpoint


def resolver_for_request() -> RouteResolver:
    """Resolver for the host of the current Flask request."""
    return RouteResolver(
        request.host,
        production_override=current_app.config.get("PRODUCTION_OVERRIDE"),
        production_host=current_app.config.get("PRODUCTION_HOST", PRODUCTION_MYSQL_HOST),
    )
