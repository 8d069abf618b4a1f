"""Shared HTTP plumbing for the OAuth-based providers.

:class:`OAuthProvider` holds what the web code flow and the device code
flow have in common: client credential resolution, form POSTs to the token
endpoint, the bearer-authenticated profile fetch, the refresh-token grant,
and queueing refresh tokens on the
:class:`~dashauth.auth.pending.PendingTokenQueue`.

An :class:`httpx.AsyncClient` may be injected; otherwise a short-lived
client is created per request.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from dashauth.auth.base import AuthProvider
from dashauth.auth.pending import PendingTokenQueue
from dashauth.config import resolve_credential
from dashauth.exceptions import (
    AuthenticationFailure,
    ConfigurationError,
    NetworkFailure,
    ProviderUnavailable,
)
from dashauth.models import Identity, ProviderConfig, ProviderTokenSet, QueuedTokens
from dashauth.output import get_output


class OAuthProvider(AuthProvider):
    """Base for providers that talk to OAuth token and userinfo endpoints.

    Args:
        config: Endpoints, scopes, and client credential sources.
        pending: Queue receiving refresh tokens for deferred persistence.
        http_client: Optional shared client. It is never closed here.
    """

    auth_method: str = "oauth"

    def __init__(
        self,
        config: ProviderConfig,
        pending: Optional[PendingTokenQueue] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._pending = pending
        self._http_client = http_client
        self._client_id: Optional[str] = None
        self._client_secret: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Client credentials
    # ------------------------------------------------------------------ #

    def is_available(self) -> bool:
        return self._config.client_id_source is not None

    @property
    def client_id(self) -> str:
        if self._client_id is None:
            if not self._config.client_id_source:
                raise ConfigurationError(f"Provider '{self.name}' requires 'client_id_source'")
            self._client_id = resolve_credential(self._config.client_id_source)
        return self._client_id

    @property
    def client_secret(self) -> Optional[str]:
        if self._client_secret is None and self._config.client_secret_source:
            self._client_secret = resolve_credential(self._config.client_secret_source)
        return self._client_secret

    # ------------------------------------------------------------------ #
    # HTTP helpers
    # ------------------------------------------------------------------ #

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._config.timeout) as client:
            yield client

    async def _post_form(self, url: str, data: dict[str, str]) -> tuple[int, dict[str, Any]]:
        """POST form-encoded *data* and return ``(status_code, json_body)``.

        Raises:
            NetworkFailure: On transport errors or a non-JSON body.
        """
        try:
            async with self._http() as client:
                response = await client.post(
                    url, data=data, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Request to {url} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise NetworkFailure(
                f"Non-JSON response from {url} (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise NetworkFailure(f"Unexpected response from {url}", status_code=response.status_code)
        return response.status_code, body

    def _raise_for_token_error(self, status: int, body: dict[str, Any], action: str) -> None:
        if 200 <= status < 300 and "access_token" in body:
            return
        error = body.get("error")
        desc = body.get("error_description") or error or f"HTTP {status}"
        if error or status in (400, 401, 403):
            raise AuthenticationFailure(f"{action} failed: {desc}", status_code=status)
        raise NetworkFailure(f"{action} failed: {desc}", status_code=status)

    async def _fetch_profile(self, access_token: str) -> dict[str, Any]:
        """GET the userinfo endpoint with *access_token* as bearer."""
        url = self._config.userinfo_url
        try:
            async with self._http() as client:
                response = await client.get(
                    url, headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Profile request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailure(
                f"Profile request rejected (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise NetworkFailure(
                f"Profile request failed: HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            profile = response.json()
        except ValueError as exc:
            raise NetworkFailure(
                f"Non-JSON profile response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not isinstance(profile, dict):
            raise NetworkFailure("Unexpected profile response", status_code=response.status_code)
        return profile

    # ------------------------------------------------------------------ #
    # Tokens and identity
    # ------------------------------------------------------------------ #

    async def refresh_access_token(
        self, refresh_token: Optional[str] = None
    ) -> ProviderTokenSet:
        """Run the ``refresh_token`` grant and replace the live tokens.

        Raises:
            ProviderUnavailable: If no refresh token is known.
            AuthenticationFailure: If the token endpoint rejects it.
        """
        refresh_token = refresh_token or self.get_refresh_token()
        if not refresh_token:
            raise ProviderUnavailable(f"Provider '{self.name}' has no refresh token")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        status, body = await self._post_form(self._config.token_url, data)
        self._raise_for_token_error(status, body, "Token refresh")

        body.setdefault("refresh_token", refresh_token)
        self._tokens = ProviderTokenSet.model_validate(body)
        get_output().debug(f"Refreshed {self.name} access token")
        return self._tokens

    def _identity_from_profile(
        self, profile: dict[str, Any], tokens: ProviderTokenSet
    ) -> Identity:
        email = profile.get("email")
        if not email:
            raise AuthenticationFailure("Profile response has no email address")
        return Identity(
            id=str(profile.get("id") or profile.get("sub") or email),
            email=email,
            name=profile.get("name") or email,
            picture=profile.get("picture"),
            auth_method=self.auth_method,
            provider_access_token=tokens.access_token,
        )

    def _queue_refresh_token(self, tokens: ProviderTokenSet, identity: Identity) -> None:
        """Queue the long-lived token for storage once the credential service is ready."""
        if self._pending is None or not tokens.refresh_token:
            return
        now_ms = int(time.time() * 1000)
        expires_in = tokens.expires_in or 3600
        self._pending.put(
            QueuedTokens(
                token_data={
                    "access_token": tokens.access_token,
                    "refresh_token": tokens.refresh_token,
                    "expires_in": expires_in,
                    "expires_at": now_ms + expires_in * 1000,
                    "scope": tokens.scope or " ".join(self._config.scopes),
                    "display_name": f"{identity.name} (Personal)",
                    "email": identity.email,
                    "user_id": identity.id,
                    "issued_at": now_ms,
                    "provider_info": {"type": self.name, "auth_method": self.auth_method},
                }
            )
        )
