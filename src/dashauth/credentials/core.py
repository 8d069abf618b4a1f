"""Service credential lifecycle.

:class:`CredentialServiceCore` turns the signed-in identity's provider
access token into a backend-issued service credential (a signed JWT) and
keeps it valid. States::

    uninitialized -> waiting_for_auth -> configuring
                  -> checking_requirements -> ready | not_ready

:meth:`~CredentialServiceCore.initialize` runs that sequence at most once;
concurrent callers share the same task. A missing identity after the wait
deadline does not fail initialization; the requirement check runs anyway
and decides.

A credential within ``expiry_buffer_seconds`` (five minutes by default) of
its ``exp`` claim counts as expired and is renewed before any privileged
call. Concurrent renewals share one task.
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import json
import time
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from dashauth.credentials.backend import BackendClient
from dashauth.credentials.credential_cache import ServiceCredentialCache
from dashauth.exceptions import (
    AuthenticationFailure,
    ConfigurationError,
    DashauthError,
    ProviderUnavailable,
)
from dashauth.models import Identity, ServiceConfig, ServiceCredential, ServiceState, ServiceStatus
from dashauth.output import get_output

FailureHook = Callable[[DashauthError], Union[None, Awaitable[None]]]


class IdentitySource(Protocol):
    """What the credential service needs from the auth coordinator."""

    def is_authenticated(self) -> bool: ...

    def get_user(self) -> Optional[Identity]: ...

    def get_access_token(self) -> Optional[str]: ...

    async def refresh_access_token(self) -> str: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def decode_expiry_ms(token: str) -> int:
    """Return the ``exp`` claim of a JWT in epoch milliseconds.

    Raises:
        AuthenticationFailure: If the token is not a JWT with a numeric ``exp``.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise AuthenticationFailure("Service credential is not a JWT")
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
        return int(claims["exp"]) * 1000
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthenticationFailure(f"Service credential has no usable exp claim: {exc}") from exc


class CredentialServiceCore:
    """Negotiates and maintains the service credential.

    Args:
        identity: The auth coordinator (or anything with the same accessors).
        backend: Client for the credential endpoint.
        config: Wait, buffer, and refresh timings.
        cache: Optional disk cache used to reuse a credential across runs.
        on_credential_failure: Called with the error when a renewal fails.
            May be sync or async.
    """

    def __init__(
        self,
        identity: IdentitySource,
        backend: BackendClient,
        config: Optional[ServiceConfig] = None,
        cache: Optional[ServiceCredentialCache] = None,
        on_credential_failure: Optional[FailureHook] = None,
    ) -> None:
        self._identity = identity
        self._backend = backend
        self._config = config or ServiceConfig()
        self._cache = cache
        self._on_failure = on_credential_failure

        self._state = ServiceState.UNINITIALIZED
        self._ready = False
        self._endpoint: Optional[str] = None
        self._credential: Optional[ServiceCredential] = None
        self._last_error: Optional[str] = None
        self._init_task: Optional[asyncio.Task[bool]] = None
        self._renew_task: Optional[asyncio.Task[ServiceCredential]] = None
        self._proactive_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def buffer_ms(self) -> int:
        return self._config.expiry_buffer_seconds * 1000

    def get_credential(self) -> Optional[ServiceCredential]:
        return self._credential

    def provider_access_token(self) -> Optional[str]:
        return self._identity.get_access_token()

    def is_service_ready(self) -> bool:
        return self._backend.enabled and self._ready and self._endpoint is not None

    def is_expired(self, credential: Optional[ServiceCredential] = None) -> bool:
        """True when the credential is missing or within the expiry buffer."""
        credential = credential or self._credential
        if credential is None:
            return True
        return _now_ms() >= credential.expires_at_ms - self.buffer_ms

    # ------------------------------------------------------------------ #
    # Initialization
    # ------------------------------------------------------------------ #

    async def initialize(self) -> bool:
        """Bring the service to ``ready`` or ``not_ready``. Idempotent.

        Returns:
            Whether the service is ready.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> bool:
        if not self._backend.enabled:
            self._state = ServiceState.NOT_READY
            self._last_error = "Credential service is disabled"
            return False

        self._state = ServiceState.WAITING_FOR_AUTH
        await self._wait_for_auth_system()

        self._state = ServiceState.CONFIGURING
        try:
            self._configure_endpoint()
        except ConfigurationError as exc:
            return self._not_ready(exc)

        self._state = ServiceState.CHECKING_REQUIREMENTS
        try:
            self._ready = await self._check_requirements()
        except DashauthError as exc:
            return self._not_ready(exc)

        if not self._ready:
            self._state = ServiceState.NOT_READY
            get_output().warning(f"Credential service not ready: {self._last_error}")
            return False

        self._state = ServiceState.READY
        self._schedule_proactive_refresh()
        get_output().debug("Credential service ready")
        return True

    def _not_ready(self, exc: DashauthError) -> bool:
        self._ready = False
        self._state = ServiceState.NOT_READY
        self._last_error = str(exc)
        get_output().warning(f"Credential service not ready: {exc}")
        return False

    async def _wait_for_auth_system(self) -> bool:
        """Poll until a signed-in identity with a provider token exists.

        Returns ``False`` at the deadline instead of raising.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.auth_wait_timeout
        while True:
            if self._identity.is_authenticated() and self._identity.get_access_token():
                return True
            if loop.time() >= deadline:
                get_output().warning(
                    f"No signed-in identity after {self._config.auth_wait_timeout:g}s, "
                    "continuing without one"
                )
                return False
            await asyncio.sleep(self._config.auth_poll_interval)

    def _configure_endpoint(self) -> None:
        self._endpoint = None
        self._endpoint = self._backend.configure()

    async def _check_requirements(self) -> bool:
        if self._endpoint is None:
            raise ConfigurationError("Credential endpoint is not configured")

        user = self._identity.get_user()
        if self._cache is not None and user is not None:
            cached = self._cache.load(user.email)
            if cached is not None and not self.is_expired(cached):
                get_output().debug("Reusing saved service credential")
                self._credential = cached
                return True

        provider_token = self._identity.get_access_token()
        if not provider_token:
            self._last_error = "No provider access token available"
            return False

        try:
            self._credential = await self._issue(provider_token)
        except AuthenticationFailure as exc:
            if exc.status_code != 401:
                raise
            get_output().warning(
                "Backend rejected the provider token; a new credential is requested on first use"
            )
        return True

    # ------------------------------------------------------------------ #
    # Validity
    # ------------------------------------------------------------------ #

    async def ensure_valid(self) -> ServiceCredential:
        """Return a credential outside the expiry buffer, renewing it if needed.

        Raises:
            ConfigurationError: If the service was never configured.
            AuthenticationFailure: If the service is not ready or renewal is
                rejected.
            NetworkFailure: If the backend cannot be reached.
        """
        self._require_ready()
        if self._credential is not None and not self.is_expired():
            return self._credential
        return await self._renew_shared()

    async def call_authorized(self, operation: str, **fields: Any) -> dict[str, Any]:
        """Run a backend *operation* with a valid credential attached."""
        credential = await self.ensure_valid()
        return await self._backend.call(
            operation,
            self._identity.get_access_token(),
            credential=credential.token,
            **fields,
        )

    def _require_ready(self) -> None:
        if self.is_service_ready():
            return
        if self._endpoint is None:
            raise ConfigurationError(
                f"Credential service is not configured: {self._last_error or 'not initialized'}"
            )
        raise AuthenticationFailure(
            f"Credential service is not ready: {self._last_error or self._state.value}"
        )

    async def _renew_shared(self) -> ServiceCredential:
        task = self._renew_task
        if task is None:
            task = asyncio.ensure_future(self._renew())
            self._renew_task = task
            task.add_done_callback(self._clear_renew_task)
        return await asyncio.shield(task)

    def _clear_renew_task(self, task: asyncio.Task[ServiceCredential]) -> None:
        if not task.cancelled():
            task.exception()
        if self._renew_task is task:
            self._renew_task = None

    async def _renew(self) -> ServiceCredential:
        try:
            credential = await self._renew_once()
        except DashauthError as exc:
            self._last_error = str(exc)
            await self._notify_failure(exc)
            raise
        self._credential = credential
        self._schedule_proactive_refresh()
        return credential

    async def _renew_once(self) -> ServiceCredential:
        current = self._credential
        provider_token = self._identity.get_access_token()

        if current is not None and _now_ms() < current.expires_at_ms:
            try:
                return await self._refresh(current, provider_token)
            except AuthenticationFailure as exc:
                get_output().debug(f"Credential refresh rejected ({exc}), issuing a new one")

        if not provider_token:
            raise AuthenticationFailure("No provider access token to exchange for a credential")
        try:
            return await self._issue(provider_token)
        except AuthenticationFailure as exc:
            if exc.status_code != 401:
                raise
            get_output().debug("Provider token rejected, refreshing it")
            try:
                provider_token = await self._identity.refresh_access_token()
            except ProviderUnavailable:
                raise exc from None
            return await self._issue(provider_token)

    async def _issue(self, provider_token: str) -> ServiceCredential:
        data = await self._backend.call("issue_credential", provider_token)
        return self._accept(data)

    async def _refresh(
        self, current: ServiceCredential, provider_token: Optional[str]
    ) -> ServiceCredential:
        data = await self._backend.call(
            "refresh_credential", provider_token, credential=current.token
        )
        return self._accept(data)

    def _accept(self, data: dict[str, Any]) -> ServiceCredential:
        token = data.get("token")
        if not token:
            raise AuthenticationFailure("Backend response carried no credential")
        user = self._identity.get_user()
        credential = ServiceCredential(
            token=token,
            expires_at_ms=decode_expiry_ms(token),
            user_email=user.email if user else None,
        )
        if self._cache is not None:
            self._cache.save(credential)
        get_output().debug(
            f"Service credential valid for {credential.remaining_ms() // 60000} more minutes"
        )
        return credential

    async def _notify_failure(self, exc: DashauthError) -> None:
        if self._on_failure is None:
            return
        outcome = self._on_failure(exc)
        if inspect.isawaitable(outcome):
            await outcome

    # ------------------------------------------------------------------ #
    # Proactive refresh
    # ------------------------------------------------------------------ #

    def _next_refresh_delay(self) -> Optional[float]:
        if self._credential is None:
            return None
        remaining = self._credential.remaining_ms() / 1000
        delay = remaining - self._config.refresh_threshold_seconds
        if delay <= 0:
            # Short-lived credentials refresh at the buffer edge instead.
            delay = max(
                remaining - self._config.expiry_buffer_seconds,
                float(self._config.refresh_retry_seconds),
            )
        return delay

    def _schedule_proactive_refresh(self) -> None:
        if not self._config.proactive_refresh or self._proactive_task is not None:
            return
        if self._credential is None:
            return
        self._proactive_task = asyncio.ensure_future(self._proactive_loop())

    async def _proactive_loop(self) -> None:
        delay = self._next_refresh_delay()
        while delay is not None:
            await asyncio.sleep(delay)
            try:
                await self._renew_shared()
            except DashauthError as exc:
                get_output().warning(
                    f"Proactive credential refresh failed: {exc}; "
                    f"retrying in {self._config.refresh_retry_seconds}s"
                )
                delay = float(self._config.refresh_retry_seconds)
            else:
                delay = self._next_refresh_delay()

    # ------------------------------------------------------------------ #
    # Teardown and diagnostics
    # ------------------------------------------------------------------ #

    async def reset(self) -> None:
        """Forget the credential and return to ``uninitialized`` (used on sign-out)."""
        await self._cancel_proactive()
        if self._cache is not None and self._credential and self._credential.user_email:
            self._cache.invalidate(self._credential.user_email)
        self._credential = None
        self._ready = False
        self._init_task = None
        self._last_error = None
        self._state = ServiceState.UNINITIALIZED

    async def close(self) -> None:
        await self._cancel_proactive()
        await self._backend.aclose()
        if self._cache is not None:
            self._cache.close()

    async def _cancel_proactive(self) -> None:
        task = self._proactive_task
        self._proactive_task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    def get_status(self) -> ServiceStatus:
        credential = self._credential
        return ServiceStatus(
            state=self._state,
            enabled=self._backend.enabled,
            ready=self.is_service_ready(),
            endpoint=self._endpoint,
            has_credential=credential is not None,
            credential_expires_at_ms=credential.expires_at_ms if credential else None,
            credential_expired=self.is_expired() if credential else None,
            last_error=self._last_error,
        )
