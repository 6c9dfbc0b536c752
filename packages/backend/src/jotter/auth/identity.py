"""Delegated identity provider client.

Learn: When an external identity provider (a Supabase/GoTrue-compatible
auth server) is configured, a bearer token can be checked by asking the
provider who it belongs to: GET {identity_url}/auth/v1/user with the
token as Authorization and the project's anon key as ``apikey``.

The provider client is shared by the whole app (one connection pool).
A successful lookup also yields a BoundIdentityClient — the same client
scoped to the caller's token — which route handlers can use to make
further provider calls on the user's behalf.
"""

from typing import Any, Optional

import httpx

from jotter.config import Settings


class IdentityProviderError(Exception):
    """Raised when the identity provider cannot vouch for a token."""


class IdentityClient:
    """Async client for the identity provider's user endpoint."""

    def __init__(self, http: httpx.AsyncClient, anon_key: str):
        self._http = http
        self._anon_key = anon_key

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "IdentityClient":
        http = httpx.AsyncClient(
            base_url=settings.identity_url.rstrip("/"),
            timeout=settings.identity_timeout_seconds,
            transport=transport,
        )
        return cls(http, settings.identity_anon_key)

    def headers_for(self, access_token: str) -> dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token}",
        }

    async def get_user(self, access_token: str) -> dict[str, Any]:
        """Resolve a token to the provider's user record."""
        try:
            r = await self._http.get(
                "/auth/v1/user", headers=self.headers_for(access_token)
            )
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Identity provider unreachable: {e}")

        if r.status_code != 200:
            raise IdentityProviderError(
                f"Identity provider rejected token ({r.status_code})"
            )
        try:
            user = r.json()
        except ValueError:
            raise IdentityProviderError("Identity provider returned invalid JSON")
        if not isinstance(user, dict) or not user.get("id"):
            raise IdentityProviderError("Identity provider returned no user")
        return user

    def bind(self, access_token: str) -> "BoundIdentityClient":
        return BoundIdentityClient(self, access_token)

    async def aclose(self) -> None:
        await self._http.aclose()


class BoundIdentityClient:
    """Identity client scoped to one caller's access token."""

    def __init__(self, client: IdentityClient, access_token: str):
        self._client = client
        self._access_token = access_token

    @property
    def headers(self) -> dict[str, str]:
        return self._client.headers_for(self._access_token)

    async def get_user(self) -> dict[str, Any]:
        return await self._client.get_user(self._access_token)
