"""Explicit construction of the auth and credential stack.

Nothing in dashauth is a module-level singleton. :func:`create_auth_stack`
builds the collaborators for one host from an
:class:`~dashauth.models.AppConfig` and wires them together:

* providers are registered only when the host can run them (a navigator for
  the web code flow, a native bridge for the native provider; the device
  flow is always registered),
* the coordinator's ``signed_out`` event resets the credential service and
  the token cache,
* an :class:`~dashauth.exceptions.AuthenticationFailure` while renewing the
  service credential signs the user out.

Example::

    stack = create_auth_stack(config, signals_from_user_agent(ua))
    async with stack:
        await stack.startup()
        token = await stack.operations.get_valid_token("google", "personal")
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from dashauth.auth.coordinator import EVENT_SIGNED_OUT, AuthCoordinator
from dashauth.auth.pending import PendingTokenQueue
from dashauth.auth.registry import ProviderRegistry
from dashauth.auth.token_store import FileTokenStore, TokenStore
from dashauth.auth.ui import SignInUI
from dashauth.config import get_cache_dir
from dashauth.credentials.accounts import AccountManager
from dashauth.credentials.backend import BackendClient
from dashauth.credentials.core import CredentialServiceCore
from dashauth.credentials.credential_cache import ServiceCredentialCache
from dashauth.credentials.operations import CredentialOperations
from dashauth.exceptions import AuthenticationFailure, DashauthError
from dashauth.models import AppConfig, DrainResult, Identity, PlatformSignals
from dashauth.output import get_output
from dashauth.providers.device_code import DeviceCodeFlowProvider, DevicePrompt
from dashauth.providers.native_bridge import HookRegistry, NativeBridge, NativeBridgeProvider
from dashauth.providers.web_code_flow import ConfirmCallback, Navigator, WebCodeFlowProvider


@dataclass
class AuthStack:
    """The wired collaborators for one host."""

    coordinator: AuthCoordinator
    core: CredentialServiceCore
    operations: CredentialOperations
    pending: PendingTokenQueue
    registry: ProviderRegistry
    accounts: AccountManager

    async def startup(self) -> bool:
        """Restore or complete sign-in, bring up the credential service, store queued tokens.

        Returns:
            Whether the credential service is ready.
        """
        await self.coordinator.init()
        ready = await self.core.initialize()
        if ready and len(self.pending):
            await self.drain_pending()
        return ready

    async def drain_pending(self) -> list[DrainResult]:
        return await self.operations.drain_pending(self.pending)

    async def shutdown(self) -> None:
        if len(self.pending):
            get_output().warning(
                f"{len(self.pending)} refresh token(s) were not stored; sign in again once "
                "the credential service is reachable"
            )
        await self.core.close()

    async def __aenter__(self) -> AuthStack:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()


def create_auth_stack(
    config: AppConfig,
    signals: PlatformSignals,
    token_store: Optional[TokenStore] = None,
    ui: Optional[SignInUI] = None,
    navigator: Optional[Navigator] = None,
    confirm: Optional[ConfirmCallback] = None,
    bridge: Optional[NativeBridge] = None,
    hooks: Optional[HookRegistry] = None,
    device_prompt: Optional[DevicePrompt] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    cache_dir: Optional[Path] = None,
    redirect_pending: Optional[Callable[[], bool]] = None,
    allow_degraded_identity: bool = True,
) -> AuthStack:
    """Build an :class:`AuthStack` for the host described by *signals*.

    Args:
        config: Resolved application configuration.
        signals: Environment probe for the host.
        token_store: Identity persistence. Defaults to a
            :class:`~dashauth.auth.token_store.FileTokenStore`.
        ui: Sign-in UI collaborator.
        navigator: Host navigation; enables the web code flow.
        confirm: Stale-session retry prompt for the web code flow.
        bridge: Native sign-in facility; enables the native provider.
        hooks: Hook registry shared with *bridge*. Created when omitted.
        device_prompt: Where the device flow shows its user code.
        http_client: Shared HTTP client for providers and backend.
        cache_dir: Root of the service credential cache.
        redirect_pending: See :class:`~dashauth.auth.coordinator.AuthCoordinator`.
        allow_degraded_identity: See
            :class:`~dashauth.auth.coordinator.AuthCoordinator`.
    """
    pending = PendingTokenQueue()
    registry = ProviderRegistry()

    if bridge is not None:
        registry.register(
            NativeBridgeProvider(bridge, hooks or HookRegistry(), timeout=config.native.timeout_seconds)
        )
    registry.register(
        DeviceCodeFlowProvider(
            config.device_flow, prompt=device_prompt, pending=pending, http_client=http_client
        )
    )
    if navigator is not None:
        registry.register(
            WebCodeFlowProvider(
                config.web_oauth,
                navigator=navigator,
                confirm=confirm,
                pending=pending,
                http_client=http_client,
            )
        )

    coordinator = AuthCoordinator(
        signals,
        token_store or FileTokenStore(max_age_days=config.session_max_age_days),
        registry,
        ui=ui,
        redirect_pending=redirect_pending,
        allow_degraded_identity=allow_degraded_identity,
    )

    async def on_credential_failure(exc: DashauthError) -> None:
        if isinstance(exc, AuthenticationFailure) and coordinator.is_authenticated():
            get_output().warning(f"Service credential rejected ({exc}), signing out")
            await coordinator.sign_out()

    core = CredentialServiceCore(
        coordinator,
        BackendClient(config.backend, http_client=http_client),
        config.service,
        cache=ServiceCredentialCache(cache_dir or get_cache_dir(), config.cache),
        on_credential_failure=on_credential_failure,
    )
    operations = CredentialOperations(core, buffer_seconds=config.service.expiry_buffer_seconds)

    async def on_auth_event(event: str, identity: Optional[Identity]) -> None:
        if event == EVENT_SIGNED_OUT:
            operations.clear()
            await core.reset()

    coordinator.add_listener(on_auth_event)

    return AuthStack(
        coordinator=coordinator,
        core=core,
        operations=operations,
        pending=pending,
        registry=registry,
        accounts=AccountManager(operations, registry, pending),
    )
