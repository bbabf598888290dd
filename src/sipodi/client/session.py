"""Authenticated HTTP session against the SIPODI REST API.

The access token lives only in memory. The refresh token is an HTTP-only cookie kept in the
underlying ``httpx.Client`` cookie jar, so :meth:`AuthSession.restore` can rebuild a session
without ever seeing it.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sipodi.errors import AuthError, NetworkError, SipodiError, error_from_payload

logger = logging.getLogger(__name__)

DEFAULT_API_PREFIX = "/api/v1"


def decode_response(response: httpx.Response) -> Any:
    """Return the JSON body of a 2xx response or raise the matching error class."""
    try:
        payload = response.json() if response.content else None
    except ValueError:
        payload = None

    if response.is_success:
        return payload
    raise error_from_payload(response.status_code, payload)


class AuthSession:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.Client | None = None,
        api_prefix: str = DEFAULT_API_PREFIX,
        timeout: float = 30.0,
    ):
        if http is None:
            if not base_url:
                raise ValueError("base_url is required when no http client is given")
            http = httpx.Client(base_url=base_url, timeout=timeout)
        self.http = http
        self.api_prefix = api_prefix.rstrip("/")
        self._access_token: str | None = None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    def url(self, path: str) -> str:
        return f"{self.api_prefix}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, *, authenticated: bool = True, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if authenticated and self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            return self.http.request(method, self.url(path), headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

    def login(self, email: str, password: str) -> dict[str, Any]:
        body = decode_response(
            self._send("POST", "/auth/login", authenticated=False, json={"email": email, "password": password})
        )
        data = body["data"]
        self._access_token = data["access_token"]
        return data.get("user") or {}

    def refresh(self) -> str:
        """Trade the refresh cookie for a new access token.

        Any failure clears the in-memory credential and raises :class:`AuthError`.
        """
        try:
            body = decode_response(self._send("POST", "/auth/refresh", authenticated=False))
        except NetworkError:
            self._access_token = None
            raise
        except SipodiError as exc:
            self._access_token = None
            raise AuthError("session expired, please log in again", code=exc.code) from exc

        self._access_token = body["data"]["access_token"]
        return self._access_token

    def restore(self) -> bool:
        """Best-effort session restore on startup. Never raises."""
        try:
            self.refresh()
        except SipodiError as exc:
            logger.debug("Session restore failed: %s", exc.code)
            return False
        return True

    def logout(self) -> None:
        """Revoke the refresh cookie server-side if possible; always clears local state."""
        try:
            self._send("POST", "/auth/logout", authenticated=False)
        except SipodiError as exc:
            logger.warning("Logout request failed: %s", exc)
        finally:
            self._access_token = None
            self.http.cookies.clear()

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send an authenticated request, refreshing and retrying exactly once on 401."""
        response = self._send(method, path, **kwargs)
        if response.status_code == 401:
            self.refresh()
            response = self._send(method, path, **kwargs)
        return decode_response(response)

    def close(self) -> None:
        self.http.close()
