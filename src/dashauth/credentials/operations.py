"""Authorized operations on top of :class:`~dashauth.credentials.core.CredentialServiceCore`.

:class:`CredentialOperations` keeps a per ``(provider, account_type)`` cache
of provider access tokens and guarantees at most one outstanding backend
request per key. The in-flight task is registered before the first ``await``
of a request, so a second caller arriving at any later point joins it
instead of starting its own.

Every request records the cache generation of its key when it starts.
Clearing, invalidating, revoking and storing advance the generation, so a
response that arrives afterwards is handed to its callers but never cached.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from dashauth.auth.pending import PendingTokenQueue
from dashauth.credentials.core import CredentialServiceCore
from dashauth.exceptions import AuthenticationFailure
from dashauth.models import (
    CacheEntry,
    DrainResult,
    QueuedTokens,
    ServiceStatus,
    TokenAccount,
    ValidToken,
)
from dashauth.output import get_output

CacheKey = tuple[str, str]


def _key_label(key: CacheKey) -> str:
    return f"{key[0]}:{key[1]}"


def _parse_expiry(value: Any) -> Optional[datetime]:
    """Accept epoch milliseconds, ISO 8601 strings, or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_scopes(data: dict[str, Any]) -> list[str]:
    scopes = data.get("scopes")
    if isinstance(scopes, list):
        return [str(s) for s in scopes]
    scope = data.get("scope") or scopes
    if isinstance(scope, str):
        return scope.split()
    return []


class CredentialOperations:
    """Token cache, request deduplication and the authorized backend calls.

    Args:
        core: The credential service the calls are authorized through.
        buffer_seconds: Cached tokens this close to expiry are evicted.
    """

    def __init__(self, core: CredentialServiceCore, buffer_seconds: int = 300) -> None:
        self._core = core
        self._buffer_seconds = buffer_seconds
        self._cache: dict[CacheKey, CacheEntry] = {}
        self._in_flight: dict[CacheKey, asyncio.Task[ValidToken]] = {}
        self._epoch = 0
        self._generations: dict[CacheKey, int] = {}

    @property
    def core(self) -> CredentialServiceCore:
        return self._core

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #

    def _cached(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.is_fresh(self._buffer_seconds):
            return entry
        del self._cache[key]
        return None

    def _remember(
        self, key: CacheKey, access_token: str, expires_at: datetime, scopes: list[str]
    ) -> CacheEntry:
        entry = CacheEntry(access_token=access_token, expires_at=expires_at, scopes=scopes)
        self._cache[key] = entry
        return entry

    def _stamp(self, key: CacheKey) -> tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def _advance(self, key: CacheKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def _evict(self, key: CacheKey) -> bool:
        """Drop *key* from the cache and detach any request in flight for it."""
        self._advance(key)
        self._in_flight.pop(key, None)
        return self._cache.pop(key, None) is not None

    def invalidate(self, provider: str = "google", account_type: str = "personal") -> bool:
        """Drop the cached token for a key. Returns whether one was cached."""
        had = self._evict((provider, account_type))
        if had:
            get_output().debug(f"Token cache invalidated for {provider}/{account_type}")
        return had

    def clear(self) -> None:
        """Forget every cached token; requests already in flight will not cache."""
        self._epoch += 1
        self._cache.clear()
        self._in_flight.clear()

    # ------------------------------------------------------------------ #
    # Provider tokens
    # ------------------------------------------------------------------ #

    async def get_valid_token(
        self, provider: str = "google", account_type: str = "personal"
    ) -> ValidToken:
        """Return a usable provider access token for *provider*/*account_type*.

        Served from the cache when possible. Otherwise the backend hands out
        the stored token, refreshing it on its side if needed.

        Raises:
            AuthenticationFailure: If the service is not ready or the backend
                has no token for the key.
            NetworkFailure: If the backend cannot be reached.
        """
        self._require_ready("get valid token")
        key = (provider, account_type)

        entry = self._cached(key)
        if entry is not None:
            return ValidToken(
                access_token=entry.access_token,
                expires_at=entry.expires_at,
                scopes=entry.scopes,
                cached=True,
            )

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_valid_token(key, self._stamp(key)))
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            get_output().debug(f"Joining in-flight token request for {_key_label(key)}")
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task: asyncio.Task[ValidToken]) -> None:
        # Mark the outcome retrieved even when every awaiter was cancelled.
        if not task.cancelled():
            task.exception()
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _fetch_valid_token(self, key: CacheKey, stamp: tuple[int, int]) -> ValidToken:
        provider, account_type = key
        data = await self._core.call_authorized(
            "get_valid_token", provider=provider, account_type=account_type
        )
        access_token = data.get("access_token")
        if not access_token:
            raise AuthenticationFailure(f"Backend has no token for {provider}/{account_type}")
        expires_at = _parse_expiry(data.get("expires_at")) or (
            datetime.now(timezone.utc) + timedelta(seconds=int(data.get("expires_in") or 3600))
        )
        scopes = _parse_scopes(data)
        refreshed = data.get("refreshed") is True
        if self._stamp(key) == stamp:
            self._remember(key, access_token, expires_at, scopes)
        else:
            get_output().debug(f"Token cache for {_key_label(key)} was reset, not caching")
        get_output().debug(
            f"Token for {provider}/{account_type} retrieved"
            + (" (refreshed by backend)" if refreshed else "")
        )
        return ValidToken(
            access_token=access_token,
            expires_at=expires_at,
            scopes=scopes,
            refreshed=refreshed,
        )

    async def store_tokens(
        self,
        provider: str = "google",
        account_type: str = "personal",
        token_data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Persist a long-lived token set and seed the cache with its access token.

        Raises:
            AuthenticationFailure: If *token_data* lacks ``access_token`` or
                ``refresh_token``, or the service is not ready.
        """
        self._require_ready("store tokens")
        token_data = token_data or {}
        if not token_data.get("access_token") or not token_data.get("refresh_token"):
            raise AuthenticationFailure(
                "Missing required token data: access_token and refresh_token are required"
            )

        result = await self._core.call_authorized(
            "store_tokens", provider=provider, account_type=account_type, data=token_data
        )

        expires_at = _parse_expiry(token_data.get("expires_at")) or (
            datetime.now(timezone.utc)
            + timedelta(seconds=int(token_data.get("expires_in") or 3600))
        )
        # Older requests still in flight must not overwrite what was just stored.
        self._advance((provider, account_type))
        self._remember(
            (provider, account_type),
            token_data["access_token"],
            expires_at,
            _parse_scopes(token_data),
        )
        get_output().debug(f"Stored tokens for {provider}/{account_type}")
        return result

    async def delete_refresh_token(
        self, provider: str = "google", account_type: str = "personal"
    ) -> dict[str, Any]:
        """Revoke the stored token for a key. The cache entry is dropped whatever happens."""
        try:
            self._require_ready("delete refresh token")
            return await self._core.call_authorized(
                "delete_refresh_token", provider=provider, account_type=account_type
            )
        finally:
            self._evict((provider, account_type))

    # ------------------------------------------------------------------ #
    # Accounts
    # ------------------------------------------------------------------ #

    async def list_accounts(self) -> list[TokenAccount]:
        """Every ``(provider, account_type)`` token set the backend holds for the user."""
        self._require_ready("list accounts")
        data = await self._core.call_authorized("list_accounts")
        accounts = [
            TokenAccount.model_validate({**raw, "scopes": _parse_scopes(raw)})
            for raw in data.get("accounts") or []
            if isinstance(raw, dict)
        ]
        get_output().debug(f"Backend holds {len(accounts)} account(s)")
        return accounts

    async def remove_account(
        self, provider: str = "google", account_type: str = "personal"
    ) -> bool:
        """Remove an account and its tokens from the backend.

        Returns:
            ``False`` when the backend has no such account.
        """
        try:
            self._require_ready("remove account")
            data = await self._core.call_authorized(
                "remove_account", provider=provider, account_type=account_type
            )
        finally:
            self._evict((provider, account_type))
        if data.get("removed") is False:
            get_output().debug(data.get("error") or f"No account {provider}/{account_type}")
            return False
        return True

    async def drain_pending(self, queue: PendingTokenQueue) -> list[DrainResult]:
        """Store every token queued while the service was not ready."""
        if not self._core.is_service_ready():
            get_output().debug(f"Credential service not ready, {len(queue)} queued token(s) kept")
            return []

        async def consume(item: QueuedTokens) -> None:
            await self.store_tokens(item.provider, item.account_type, item.token_data)

        return await queue.drain(consume)

    # ------------------------------------------------------------------ #
    # Settings
    # ------------------------------------------------------------------ #

    async def load_settings(self) -> dict[str, Any]:
        self._require_ready("load settings")
        data = await self._core.call_authorized("load")
        return data.get("settings") or {}

    async def save_settings(self, settings: dict[str, Any]) -> dict[str, Any]:
        self._require_ready("save settings")
        return await self._core.call_authorized("save", data=settings)

    async def get_service_credential(self) -> str:
        """The current service credential, renewed first if needed."""
        credential = await self._core.ensure_valid()
        return credential.token

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    def get_status(self) -> ServiceStatus:
        status = self._core.get_status()
        return status.model_copy(
            update={
                "cached_keys": sorted(_key_label(k) for k in self._cache),
                "in_flight_keys": sorted(_key_label(k) for k in self._in_flight),
            }
        )

    def _require_ready(self, action: str) -> None:
        if not self._core.is_service_ready():
            raise AuthenticationFailure(f"Credential service not ready to {action}")
