import pytest

from guildsite.client import ResponseParseError, parse_response
from guildsite.client.responses import EXCERPT_LENGTH, is_auth_url, is_html


class FakeResponse:
    def __init__(self, text, url="https://guild.example.com/api/guild", status_code=200):
        self.text = text
        self.url = url
        self.status_code = status_code


ERROR_PAGE = "<!DOCTYPE html><html><body><h1>Server Error</h1></body></html>"


def test_json_body_is_decoded():
    body = parse_response(FakeResponse('{"success": true, "data": [1, 2]}'))
    assert body == {"success": True, "data": [1, 2]}


def test_empty_body():
    assert parse_response(FakeResponse("   ")) is None
    with pytest.raises(ResponseParseError) as exc:
        parse_response(FakeResponse(""), allow_empty=False)
    assert exc.value.kind == "empty-body"


def test_invalid_json_carries_short_excerpt():
    with pytest.raises(ResponseParseError) as exc:
        parse_response(FakeResponse("x" * 300))
    assert exc.value.kind == "invalid-json"
    assert len(exc.value.excerpt) == EXCERPT_LENGTH
    assert str(exc.value).startswith("[invalid-json]")


def test_html_on_user_endpoint_becomes_envelope():
    body = parse_response(FakeResponse(ERROR_PAGE, url="https://guttakrutt.org/auth-user.php?t=1", status_code=500))
    assert body["authenticated"] is False
    assert body["user"] is None
    assert body["debug"]["htmlDetected"] is True
    assert body["debug"]["source"] == "html-detected"
    assert body["debug"]["status"] == 500
    assert body["debug"]["timestamp"].endswith("Z")


def test_html_on_characters_endpoint_becomes_empty_list():
    body = parse_response(FakeResponse(ERROR_PAGE, url="https://guttakrutt.org/auth-characters.php"))
    assert body["success"] is False
    assert body["characters"] == []
    assert body["count"] == 0


def test_html_with_login_indicators_extracts_user():
    page = '<html><body>You are logged in <script>{"id": 7, "battleTag": "Krutt#2112"}</script></body></html>'
    body = parse_response(FakeResponse(page, url="https://guttakrutt.org/api/auth/user"))
    assert body["authenticated"] is True
    assert body["user"]["battleTag"] == "Krutt#2112"
    assert body["debug"]["source"] == "html-auth-indicators"
    assert body["debug"]["extractedData"] is True


def test_html_with_login_indicators_but_no_data_uses_placeholder():
    body = parse_response(FakeResponse("<html>logged in</html>", url="/api/auth/status"))
    assert body["authenticated"] is True
    assert body["user"]["battleTag"] == "Unknown#0000"
    assert body["debug"]["extractedData"] is False


def test_login_redirect_page():
    page = "<html><body>Please login, you will be redirected shortly</body></html>"
    body = parse_response(FakeResponse(page))
    assert body["redirected"] is True
    assert body["debug"]["source"] == "auth-redirect"


def test_bnet_error_page():
    page = "<html><body>oauth error: invalid state</body></html>"
    body = parse_response(FakeResponse(page, url="https://guild.example.com/callback"))
    assert body["bnetError"] is True
    assert body["authenticated"] is False


def test_html_on_other_endpoint_raises():
    with pytest.raises(ResponseParseError) as exc:
        parse_response(FakeResponse(ERROR_PAGE, status_code=502))
    assert exc.value.kind == "html-error-page"
    assert exc.value.status == 502
    assert exc.value.excerpt == ERROR_PAGE[:EXCERPT_LENGTH]


def test_unknown_error_kind_is_rejected():
    with pytest.raises(ValueError):
        ResponseParseError("teapot", "short and stout")


def test_markers():
    assert is_html("<html><body></body></html>")
    assert not is_html('{"html": "<b>"}')
    assert is_auth_url("/auth-status.php?t=1")
    assert not is_auth_url("/api/guild")
