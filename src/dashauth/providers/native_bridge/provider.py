"""Native-bridge provider for hosts with a built-in sign-in facility.

The native side is callback based: it is triggered fire-and-forget, and its
answer arrives later through a named global hook (``handleNativeAuth`` for
sign-in, ``handleNativeTokenRefresh`` for token refresh). :class:`BridgeCall`
turns that protocol into an awaitable:

1. remember the hook currently installed under the name,
2. install a one-shot hook,
3. fire the native trigger,
4. when the hook fires, put the previous hook back and resolve or reject on
   the ``success`` flag,
5. after ``timeout`` seconds, put the previous hook back and raise
   :class:`~dashauth.exceptions.NativeTimeout`.

The previous hook is restored on every exit path, including a trigger that
raises and a caller that is cancelled, so a late native answer can never
land in an unrelated flow.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from dashauth.auth.base import AuthProvider
from dashauth.exceptions import AuthenticationFailure, Cancelled, NativeTimeout
from dashauth.models import AuthResult, Identity, ProviderDescriptor, ProviderTokenSet, Strategy
from dashauth.output import get_output

SIGN_IN_HOOK = "handleNativeAuth"
REFRESH_HOOK = "handleNativeTokenRefresh"
CANCELLED_MESSAGE = "Sign-in was cancelled"

Hook = Callable[[dict[str, Any]], None]


@runtime_checkable
class NativeBridge(Protocol):
    """Host-native sign-in facility. Results arrive through :class:`HookRegistry`."""

    def sign_in(self) -> None: ...

    def sign_out(self) -> None: ...

    def is_signed_in(self) -> bool: ...

    def get_current_user(self) -> Any: ...


class HookRegistry:
    """Named global callback slots the native side invokes."""

    def __init__(self) -> None:
        self._hooks: dict[str, Hook] = {}

    def get(self, name: str) -> Optional[Hook]:
        return self._hooks.get(name)

    def set(self, name: str, hook: Optional[Hook]) -> None:
        if hook is None:
            self._hooks.pop(name, None)
        else:
            self._hooks[name] = hook

    def invoke(self, name: str, result: dict[str, Any]) -> bool:
        """Deliver *result* to the hook under *name*. Returns False if none is installed."""
        hook = self._hooks.get(name)
        if hook is None:
            get_output().debug(f"Native result for '{name}' arrived with no hook installed")
            return False
        hook(result)
        return True


def _failure_from(result: dict[str, Any]) -> Exception:
    message = str(result.get("error") or "Native sign-in failed")
    if message == CANCELLED_MESSAGE:
        return Cancelled(message)
    return AuthenticationFailure(message)


class BridgeCall:
    """Awaitable wrapper around one hook-based native call.

    Args:
        hooks: The registry the native side reports through.
        hook_name: Name of the hook slot to borrow.
        timeout: Seconds to wait for the native answer.

    Example::

        call = BridgeCall(hooks, "handleNativeAuth", timeout=30)
        result = await call(bridge.sign_in)
    """

    def __init__(self, hooks: HookRegistry, hook_name: str, timeout: float = 30.0) -> None:
        self._hooks = hooks
        self._hook_name = hook_name
        self._timeout = timeout

    async def __call__(self, trigger: Callable[[], Any]) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        previous = self._hooks.get(self._hook_name)
        restored = False

        def restore() -> None:
            nonlocal restored
            if not restored:
                self._hooks.set(self._hook_name, previous)
                restored = True

        def one_shot(result: dict[str, Any]) -> None:
            restore()
            if future.done():
                return
            if result.get("success"):
                future.set_result(result)
            else:
                future.set_exception(_failure_from(result))

        self._hooks.set(self._hook_name, one_shot)
        try:
            trigger()
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError:
            raise NativeTimeout(
                f"Native bridge did not answer within {self._timeout:g}s"
            ) from None
        finally:
            restore()


class NativeBridgeProvider(AuthProvider):
    """Sign in through the host's native bridge.

    Args:
        bridge: The native facility, or ``None`` when the host has none.
        hooks: Hook registry shared with the native side.
        timeout: Deadline for each native call, in seconds.
    """

    auth_method = "native"

    def __init__(
        self,
        bridge: Optional[NativeBridge],
        hooks: HookRegistry,
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        self._bridge = bridge
        self._hooks = hooks
        self._timeout = timeout

    @property
    def name(self) -> str:
        return Strategy.NATIVE.value

    def is_available(self) -> bool:
        return self._bridge is not None

    def _supports_refresh(self) -> bool:
        return callable(getattr(self._bridge, "refresh_tokens", None))

    async def restore_session(self) -> Optional[Identity]:
        """Read the user the native side is already signed in as."""
        if self._bridge is None or not self._bridge.is_signed_in():
            return None
        raw = self._bridge.get_current_user()
        if not raw:
            return None
        try:
            return self._identity_from(raw)
        except AuthenticationFailure as exc:
            get_output().debug(f"Ignoring unreadable native user: {exc}")
            return None

    async def sign_in(self) -> AuthResult:
        """Trigger native sign-in and wait for the ``handleNativeAuth`` answer.

        Raises:
            ProviderUnavailable: If the host has no bridge.
            NativeTimeout: If the bridge does not answer in time.
            Cancelled: If the user dismissed the native sign-in.
            AuthenticationFailure: If the bridge reports any other failure.
        """
        self._require_available()
        assert self._bridge is not None
        result = await BridgeCall(self._hooks, SIGN_IN_HOOK, self._timeout)(self._bridge.sign_in)

        identity = self._identity_from(result.get("user") or {})
        tokens = self._tokens_from(result, identity)
        self._tokens = tokens
        return AuthResult.success(identity, tokens)

    async def sign_out(self) -> None:
        self._tokens = None
        if self._bridge is not None:
            self._bridge.sign_out()

    async def refresh_access_token(
        self, refresh_token: Optional[str] = None
    ) -> ProviderTokenSet:
        """Ask the native side for fresh tokens through ``handleNativeTokenRefresh``."""
        if not self._supports_refresh():
            return await super().refresh_access_token(refresh_token)
        result = await BridgeCall(self._hooks, REFRESH_HOOK, self._timeout)(
            self._bridge.refresh_tokens  # type: ignore[union-attr]
        )
        tokens = result.get("tokens") or {}
        if "access_token" not in tokens:
            raise AuthenticationFailure("Native token refresh returned no access token")
        self._tokens = ProviderTokenSet.model_validate(tokens)
        return self._tokens

    def get_provider_info(self) -> ProviderDescriptor:
        methods = ["sign_in", "sign_out", "is_signed_in", "get_current_user"]
        if self._supports_refresh():
            methods.append("refresh_tokens")
        return ProviderDescriptor(
            name="Native bridge",
            type=self.name,
            supports_refresh_tokens=self._supports_refresh(),
            available=self.is_available(),
            details={"methods": methods if self.is_available() else []},
        )

    def _identity_from(self, raw: Any) -> Identity:
        try:
            user = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except (TypeError, ValueError) as exc:
            raise AuthenticationFailure(f"Unreadable native user: {exc}") from exc
        email = user.get("email")
        if not email:
            raise AuthenticationFailure("Native bridge returned a user without email")
        return Identity(
            id=str(user.get("id") or email),
            email=email,
            name=user.get("name") or email,
            picture=user.get("picture") or user.get("photoUrl"),
            auth_method=self.auth_method,
            provider_access_token=user.get("access_token") or user.get("googleAccessToken"),
        )

    def _tokens_from(self, result: dict[str, Any], identity: Identity) -> Optional[ProviderTokenSet]:
        tokens = result.get("tokens")
        if isinstance(tokens, dict) and tokens.get("access_token"):
            return ProviderTokenSet.model_validate(tokens)
        if identity.provider_access_token:
            return ProviderTokenSet(access_token=identity.provider_access_token)
        return None
