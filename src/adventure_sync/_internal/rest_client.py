"""Async httpx client for the Supabase REST, Storage and Auth endpoints."""

from __future__ import annotations

from typing import Any

import httpx

from adventure_sync.exceptions import AuthenticationError, RemoteError, RemoteUnavailableError

DEFAULT_TIMEOUT = 30.0
# Photo uploads can be large; storage calls get a longer budget.
UPLOAD_TIMEOUT = 300.0


def eq(value: Any) -> str:
    """PostgREST equality filter."""
    return f"eq.{value}"


def in_(values: list[Any] | tuple[Any, ...]) -> str:
    """PostgREST membership filter."""
    return "in.(" + ",".join(str(v) for v in values) + ")"


def _error_message(response: httpx.Response) -> str:
    """Pull a readable message out of a Supabase error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return response.text or response.reason_phrase


class SupabaseRestClient:
    """Thin wrapper over httpx that speaks the Supabase HTTP APIs.

    Holds the project's anon key and, once signed in, the user's access and
    refresh tokens. A request rejected with 401 refreshes the session once
    and is retried.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = url.rstrip("/")
        self._anon_key = anon_key
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> SupabaseRestClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    def set_session(self, access_token: str | None, refresh_token: str | None = None) -> None:
        self._access_token = access_token
        self._refresh_token = refresh_token

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{endpoint}"
        kwargs: dict[str, Any] = {"params": params, "headers": self._headers(headers)}
        if json is not None:
            kwargs["json"] = json
        if content is not None:
            kwargs["content"] = content
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"{method} {endpoint} failed: {e}") from e

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Make an API call, refreshing the session once on 401."""
        response = await self._send(method, endpoint, **kwargs)
        if response.status_code == 401 and self._refresh_token:
            await self.refresh_session()
            response = await self._send(method, endpoint, **kwargs)
        if response.is_error:
            raise RemoteError(
                f"{method} {endpoint} failed ({response.status_code}): {_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    # Auth

    async def _token_grant(self, grant_type: str, payload: dict[str, str]) -> dict[str, Any]:
        response = await self._send(
            "POST",
            "/auth/v1/token",
            params={"grant_type": grant_type},
            json=payload,
        )
        if response.is_error:
            raise AuthenticationError(_error_message(response))
        data = response.json()
        if not data.get("access_token"):
            raise AuthenticationError("Sign-in response carried no access token")
        self._access_token = data["access_token"]
        self._refresh_token = data.get("refresh_token")
        return data  # type: ignore[no-any-return]

    async def sign_in(self, email: str, password: str) -> dict[str, Any]:
        """Sign in with email and password.

        Returns:
            The session payload (access_token, refresh_token, user)

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        return await self._token_grant("password", {"email": email, "password": password})

    async def refresh_session(self) -> dict[str, Any]:
        """Exchange the refresh token for a new access token."""
        if not self._refresh_token:
            raise AuthenticationError("No refresh token available")
        return await self._token_grant("refresh_token", {"refresh_token": self._refresh_token})

    async def get_user(self) -> dict[str, Any] | None:
        """Return the signed-in user, or None when there is no valid session."""
        if not self._access_token:
            return None
        try:
            response = await self._request("GET", "/auth/v1/user")
        except RemoteError as e:
            if e.status_code in (401, 403):
                return None
            raise
        return response.json()  # type: ignore[no-any-return]

    # Tables

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise RemoteError(f"Insert into {table} returned no row")
        return rows[0]  # type: ignore[no-any-return]

    async def select(
        self,
        table: str,
        filters: dict[str, str] | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows matching PostgREST filters (see eq() and in_())."""
        params: dict[str, str] = {"select": columns}
        if filters:
            params.update(filters)
        if order:
            params["order"] = order
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return response.json()  # type: ignore[no-any-return]

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, str]
    ) -> list[dict[str, Any]]:
        """Patch matching rows and return them."""
        if not filters:
            raise ValueError("Refusing to update without a filter")
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=filters,
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json()  # type: ignore[no-any-return]

    # Storage

    async def upload_object(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> dict[str, Any]:
        """Upload raw bytes to a storage bucket. Existing objects are not overwritten."""
        response = await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=data,
            headers={
                "Content-Type": content_type,
                "cache-control": "max-age=3600",
                "x-upsert": "false",
            },
            timeout=UPLOAD_TIMEOUT,
        )
        return response.json()  # type: ignore[no-any-return]

    async def aclose(self) -> None:
        await self._client.aclose()
