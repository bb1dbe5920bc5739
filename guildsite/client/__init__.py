from .api import ApiClient, raise_for_status
from .responses import ApiError, ResponseParseError, parse_response
from .routes import SPECIAL_ROUTES, RouteResolver, resolver_for_request

__all__ = [
    "ApiClient",
    "ApiError",
    "ResponseParseError",
    "RouteResolver",
    "SPECIAL_ROUTES",
    "parse_response",
    "raise_for_status",
    "resolver_for_request",
]
