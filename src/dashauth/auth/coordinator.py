"""Auth coordinator -- provider selection, session restoration, and sign-in orchestration.

The :class:`AuthCoordinator` owns the signed-in :class:`~dashauth.models.Identity`
and the :class:`~dashauth.auth.registry.ProviderRegistry`. Other components
read them only through accessors (:meth:`~AuthCoordinator.is_authenticated`,
:meth:`~AuthCoordinator.get_user`, :meth:`~AuthCoordinator.get_access_token`).

Policies implemented here:

* **Cancellation** -- a :class:`~dashauth.exceptions.Cancelled` raised by a
  provider becomes a ``cancelled`` :class:`~dashauth.models.AuthResult`.
  The sign-in affordance is shown again and no failure event is emitted.
* **Fire TV fallback** -- when the native provider fails on a Fire TV host,
  sign-in is retried once with the device flow.
* **Degraded identity** -- on hosts with no usable strategy a local
  placeholder identity is published so the dashboard stays usable.
* **Best-effort sign-out** -- local state is cleared even if the provider's
  sign-out raises.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from dashauth.auth.base import AuthProvider
from dashauth.auth.registry import ProviderRegistry
from dashauth.auth.token_store import TokenStore
from dashauth.auth.ui import NullSignInUI, SignInUI
from dashauth.exceptions import (
    AuthenticationFailure,
    Cancelled,
    DashauthError,
    ProviderUnavailable,
)
from dashauth.models import (
    AuthResult,
    AuthStatus,
    Identity,
    Platform,
    PlatformSignals,
    Strategy,
)
from dashauth.output import get_output
from dashauth.platform import classify, recommend_strategy

Listener = Callable[[str, Optional[Identity]], Union[None, Awaitable[None]]]

EVENT_SIGNED_IN = "signed_in"
EVENT_SIGNED_OUT = "signed_out"
EVENT_SIGN_IN_FAILED = "sign_in_failed"


def degraded_identity() -> Identity:
    """Placeholder identity for hosts where no provider can run."""
    return Identity(
        id="local-user",
        email="user@dashboard.local",
        name="Dashboard User",
        auth_method="mock",
    )


class AuthCoordinator:
    """Drives sign-in for the current host.

    Args:
        signals: Environment probe for the host.
        token_store: Persists the identity snapshot.
        providers: Registry or iterable of providers available on the host.
        ui: Sign-in UI collaborator.
        redirect_pending: Returns True while an external redirect is in
            progress; :meth:`init` then does nothing.
        allow_degraded_identity: Publish :func:`degraded_identity` when the
            recommended strategy is ``unsupported``.
    """

    def __init__(
        self,
        signals: PlatformSignals,
        token_store: TokenStore,
        providers: Union[ProviderRegistry, Iterable[AuthProvider]] = (),
        ui: Optional[SignInUI] = None,
        redirect_pending: Optional[Callable[[], bool]] = None,
        allow_degraded_identity: bool = True,
    ) -> None:
        self._signals = signals
        self._classification = classify(signals)
        self._strategy = recommend_strategy(signals, self._classification)
        self._token_store = token_store
        self._registry = (
            providers if isinstance(providers, ProviderRegistry) else ProviderRegistry(providers)
        )
        self._ui = ui or NullSignInUI()
        self._redirect_pending = redirect_pending
        self._allow_degraded = allow_degraded_identity
        self._listeners: list[Listener] = []

        self._is_authenticated = False
        self._user: Optional[Identity] = None
        self._current_provider: Optional[AuthProvider] = None

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    def is_authenticated(self) -> bool:
        return self._is_authenticated

    def get_user(self) -> Optional[Identity]:
        return self._user

    def current_provider_name(self) -> Optional[str]:
        return self._current_provider.name if self._current_provider else None

    def add_listener(self, listener: Listener) -> None:
        """Register *listener* for ``signed_in``, ``signed_out`` and ``sign_in_failed`` events."""
        self._listeners.append(listener)

    def get_access_token(self) -> Optional[str]:
        """Provider access token: the identity's copy first, then the live provider token."""
        if self._user is not None and self._user.provider_access_token:
            return self._user.provider_access_token
        if self._current_provider is not None:
            return self._current_provider.get_access_token()
        return None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def init(self) -> bool:
        """Restore or complete authentication at startup.

        Returns:
            ``True`` if an identity is published when this returns.
        """
        if self._redirect_pending is not None and self._redirect_pending():
            get_output().debug("External sign-in redirect in progress, skipping init")
            return False

        get_output().debug(
            f"Platform {self._classification.platform.value}/"
            f"{self._classification.device.value}, strategy {self._strategy.value}"
        )
        degraded = self._uses_degraded_identity()
        provider = None if degraded else self._recommended_provider()

        try:
            identity = await self._restore_session(provider)
            if identity is not None:
                await self._set_authenticated(identity, provider, persist=False)
                return True

            if provider is None:
                if degraded:
                    get_output().warning("No sign-in method for this host, using a local identity")
                    await self._set_authenticated(degraded_identity(), None)
                    return True
                self._ui.show_sign_in()
                return False

            result = await provider.initialize()
        except Cancelled:
            self._ui.show_sign_in()
            return False
        except DashauthError as exc:
            return await self._recover_from_init_failure(exc)

        if result is not None and result.status == AuthStatus.SUCCESS and result.identity:
            await self._set_authenticated(result.identity, provider)
            return True
        if result is not None and result.status == AuthStatus.REDIRECTED:
            return False
        self._ui.show_sign_in()
        return False

    async def _restore_session(self, provider: Optional[AuthProvider]) -> Optional[Identity]:
        identity = self._token_store.get()
        if identity is not None:
            get_output().debug(f"Restored saved session for {identity.email}")
            return identity
        if provider is not None and provider.is_available():
            identity = await provider.restore_session()
            if identity is not None:
                get_output().debug(f"Restored {provider.name} session for {identity.email}")
                self._token_store.set(identity)
        return identity

    async def _recover_from_init_failure(self, exc: DashauthError) -> bool:
        get_output().warning(f"Sign-in initialization failed: {exc}")
        saved = self._token_store.get()
        if saved is not None:
            await self._set_authenticated(saved, None, persist=False)
            return True
        self._ui.show_error(str(exc))
        self._ui.show_sign_in()
        return False

    async def sign_in(self, provider_name: Optional[str] = None) -> AuthResult:
        """Sign in with *provider_name*, or the recommended provider.

        Never raises for flow outcomes: cancellations and failures come back
        as ``cancelled`` / ``failed`` results.

        When no name is given and no provider is registered for the
        recommended strategy, the first registered provider is used.

        Raises:
            ProviderUnavailable: If *provider_name* is not registered.
        """
        unsupported = provider_name == Strategy.UNSUPPORTED.value
        if provider_name is None or unsupported:
            if (unsupported and self._allow_degraded) or self._uses_degraded_identity():
                identity = degraded_identity()
                await self._set_authenticated(identity, None)
                return AuthResult.success(identity)
            recommended = self._recommended_provider()
            if recommended is None:
                return await self._on_failure(
                    AuthenticationFailure("No sign-in method available on this host")
                )
            provider = recommended
        else:
            provider = self._registry.get(provider_name)

        try:
            result = await self._attempt(provider)
        except Cancelled as exc:
            return self._on_cancelled(exc)
        except DashauthError as exc:
            fallback = self._fallback_for(provider)
            if fallback is None:
                return await self._on_failure(exc)
            get_output().warning(f"{provider.name} sign-in failed ({exc}), trying {fallback.name}")
            provider = fallback
            try:
                result = await self._attempt(provider)
            except Cancelled as exc2:
                return self._on_cancelled(exc2)
            except DashauthError as exc2:
                return await self._on_failure(exc2)

        if result.status == AuthStatus.SUCCESS and result.identity is not None:
            await self._set_authenticated(result.identity, provider)
        return result

    def _uses_degraded_identity(self) -> bool:
        return self._strategy == Strategy.UNSUPPORTED and self._allow_degraded

    def _recommended_provider(self) -> Optional[AuthProvider]:
        provider = self._registry.find(self._strategy.value)
        if provider is not None:
            return provider
        provider = self._registry.first()
        if provider is not None:
            message = f"No {self._strategy.value} provider registered, using {provider.name}"
            if self._strategy == Strategy.UNSUPPORTED:
                get_output().debug(message)
            else:
                get_output().warning(message)
        return provider

    async def _attempt(self, provider: AuthProvider) -> AuthResult:
        get_output().debug(f"Signing in with {provider.name}")
        result = await provider.sign_in()
        if result.status == AuthStatus.CANCELLED:
            raise Cancelled(result.message or "Sign-in was cancelled")
        if result.status == AuthStatus.FAILED:
            raise AuthenticationFailure(result.error or "Sign-in failed")
        return result

    def _fallback_for(self, provider: AuthProvider) -> Optional[AuthProvider]:
        if provider.name != Strategy.NATIVE.value:
            return None
        if self._classification.platform != Platform.FIRE_TV:
            return None
        return self._registry.find(Strategy.DEVICE_FLOW.value)

    def _on_cancelled(self, exc: Cancelled) -> AuthResult:
        get_output().debug(f"Sign-in cancelled: {exc}")
        if not self._is_authenticated:
            self._ui.show_sign_in()
        return AuthResult.cancelled(str(exc))

    async def _on_failure(self, exc: DashauthError) -> AuthResult:
        get_output().debug(f"Sign-in failed: {exc}")
        self._ui.show_error(str(exc))
        await self._emit(EVENT_SIGN_IN_FAILED, None)
        return AuthResult.failed(str(exc))

    async def sign_out(self) -> None:
        """Sign out locally, asking the current provider to sign out as well."""
        provider = self._current_provider
        if provider is not None:
            try:
                await provider.sign_out()
            except Exception as exc:
                get_output().warning(f"Provider sign-out failed: {exc}")

        self._is_authenticated = False
        self._user = None
        self._current_provider = None
        self._token_store.clear()
        await self._emit(EVENT_SIGNED_OUT, None)
        self._ui.show_sign_in()

    async def refresh_access_token(self) -> str:
        """Refresh the provider access token through the current provider.

        The refreshed token is written to the identity and persisted.

        Raises:
            AuthenticationFailure: If nobody is signed in, or the provider
                rejects its refresh token.
            ProviderUnavailable: If the session has no provider that can
                refresh, as with a degraded identity or a provider holding no
                refresh token.
        """
        if self._user is None:
            raise AuthenticationFailure("Not signed in")
        if self._current_provider is None:
            raise ProviderUnavailable(
                f"The {self._user.auth_method} session has no provider to refresh its token"
            )
        tokens = await self._current_provider.refresh_access_token(
            self._current_provider.get_refresh_token()
        )
        self._user = self._user.model_copy(update={"provider_access_token": tokens.access_token})
        self._token_store.set(self._user)
        return tokens.access_token

    def get_status(self) -> dict[str, Any]:
        """Diagnostic snapshot for ``dashauth status``."""
        return {
            "authenticated": self._is_authenticated,
            "user": self._user.email if self._user else None,
            "auth_method": self._user.auth_method if self._user else None,
            "provider": self.current_provider_name(),
            "platform": self._classification.platform.value,
            "device": self._classification.device.value,
            "strategy": self._strategy.value,
            "providers": [d.model_dump() for d in self._registry.descriptors()],
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _set_authenticated(
        self,
        identity: Identity,
        provider: Optional[AuthProvider],
        persist: bool = True,
    ) -> None:
        self._user = identity
        self._is_authenticated = True
        self._current_provider = provider
        if persist:
            self._token_store.set(identity)
        self._ui.hide_sign_in()
        self._ui.show_signed_in(identity)
        await self._emit(EVENT_SIGNED_IN, identity)

    async def _emit(self, event: str, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            outcome = listener(event, identity)
            if inspect.isawaitable(outcome):
                await outcome
