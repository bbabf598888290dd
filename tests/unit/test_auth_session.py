import httpx
import pytest

from sipodi.client.session import AuthSession
from sipodi.errors import AuthError, NetworkError


def _session(handler) -> AuthSession:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://api.test")
    return AuthSession(http=http)


def _envelope(data) -> dict:
    return {"data": data}


def test_request_refreshes_once_and_retries_once_on_401() -> None:
    calls: list[tuple[str, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.url.path, request.headers.get("authorization")))
        if request.url.path == "/api/v1/auth/refresh":
            return httpx.Response(200, json=_envelope({"access_token": "fresh", "expires_in": 900}))
        if request.headers.get("authorization") == "Bearer fresh":
            return httpx.Response(200, json=_envelope({"id": "u-1"}))
        return httpx.Response(401, json={"error": {"code": "TOKEN_EXPIRED", "message": "access token expired"}})

    session = _session(handler)
    session._access_token = "stale"

    body = session.request("GET", "/me")

    assert body == {"data": {"id": "u-1"}}
    assert calls == [
        ("/api/v1/me", "Bearer stale"),
        ("/api/v1/auth/refresh", None),
        ("/api/v1/me", "Bearer fresh"),
    ]


def test_second_401_is_not_retried_again() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/api/v1/auth/refresh":
            return httpx.Response(200, json=_envelope({"access_token": "fresh"}))
        return httpx.Response(401, json={"error": {"code": "UNAUTHORIZED", "message": "nope"}})

    session = _session(handler)
    with pytest.raises(AuthError):
        session.request("GET", "/me")
    assert calls == ["/api/v1/me", "/api/v1/auth/refresh", "/api/v1/me"]


def test_refresh_failure_clears_credential_and_raises_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"code": "INVALID_TOKEN", "message": "invalid refresh token"}})

    session = _session(handler)
    session._access_token = "stale"

    with pytest.raises(AuthError) as info:
        session.request("GET", "/talents")
    assert info.value.code == "INVALID_TOKEN"
    assert not session.is_authenticated


def test_restore_and_logout_never_raise() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline")

    session = _session(handler)
    session._access_token = "token"

    assert session.restore() is False
    session.logout()
    assert not session.is_authenticated


def test_transport_failures_surface_as_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out")

    session = _session(handler)
    with pytest.raises(NetworkError):
        session.request("GET", "/talents")
