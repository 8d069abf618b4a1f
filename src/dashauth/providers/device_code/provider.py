"""OAuth2 Device Authorization Grant (:rfc:`8628`) provider.

For TVs and other input-constrained hosts, and for the terminal CLI.

Flow:
    1. POST to ``device_authorization_url`` to obtain ``device_code`` +
       ``user_code``.
    2. Show the code, the verification URI and a QR-friendly URL through
       the :class:`DevicePrompt`.
    3. Poll ``token_url`` at the provider-supplied ``interval`` until the
       user authorizes or ``expires_in`` elapses. ``slow_down`` widens the
       interval by five seconds.
    4. Fetch the profile and queue the refresh token.

:meth:`DeviceCodeFlowProvider.cancel` aborts a running poll; the pending
:meth:`~DeviceCodeFlowProvider.sign_in` then raises
:class:`~dashauth.exceptions.Cancelled`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol
from urllib.parse import urlencode

import httpx

from dashauth.auth.pending import PendingTokenQueue
from dashauth.exceptions import AuthenticationFailure, Cancelled
from dashauth.models import AuthResult, ProviderConfig, ProviderDescriptor, ProviderTokenSet, Strategy
from dashauth.output import get_output
from dashauth.providers.oauth import OAuthProvider

_DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"


class DevicePrompt(Protocol):
    """Shows the user code while the device flow is polling."""

    def show_code(self, user_code: str, verification_uri: str, qr_url: str, expires_in: int) -> None: ...

    def hide(self) -> None: ...


class TerminalDevicePrompt:
    """Prints the user code to stderr."""

    def show_code(self, user_code: str, verification_uri: str, qr_url: str, expires_in: int) -> None:
        output = get_output()
        output.info("")
        output.info(f"Go to: {verification_uri}")
        output.info(f"Enter code: {user_code}")
        output.info(f"(code expires in {expires_in // 60} minutes)")
        output.info("")
        output.info("Waiting for authorization...")

    def hide(self) -> None:
        pass


class DeviceCodeFlowProvider(OAuthProvider):
    """Authenticate via the device authorization grant.

    Args:
        config: Endpoints, scopes, and client credential sources.
        prompt: Where the user code is shown. Defaults to
            :class:`TerminalDevicePrompt`.
        pending: Queue receiving the refresh token.
        http_client: Optional shared :class:`httpx.AsyncClient`.
        min_poll_interval: Lower bound for the polling interval in seconds.
    """

    auth_method = "device_flow"
    slow_down_step: float = 5.0

    def __init__(
        self,
        config: ProviderConfig,
        prompt: Optional[DevicePrompt] = None,
        pending: Optional[PendingTokenQueue] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        min_poll_interval: float = 1.0,
    ) -> None:
        super().__init__(config, pending=pending, http_client=http_client)
        self._prompt = prompt or TerminalDevicePrompt()
        self._min_poll_interval = min_poll_interval
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def name(self) -> str:
        return Strategy.DEVICE_FLOW.value

    def get_provider_info(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name="Google Device Flow",
            type=self.name,
            supports_refresh_tokens=True,
            available=self.is_available(),
        )

    def cancel(self) -> None:
        """Abort a running sign-in. A no-op when nothing is polling."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def sign_in(self) -> AuthResult:
        """Run the full device authorization flow.

        Raises:
            ProviderUnavailable: If no client id is configured.
            AuthenticationFailure: If the user denies access or the code expires.
            Cancelled: If :meth:`cancel` was called while polling.
        """
        self._require_available()
        self._cancel_event = asyncio.Event()
        try:
            device = await self._request_device_code()
            verification_uri = device.get("verification_uri") or device.get("verification_url", "")
            user_code = device["user_code"]
            expires_in = int(device.get("expires_in", 1800))
            qr_url = f"{verification_uri}?{urlencode({'user_code': user_code})}"

            self._prompt.show_code(user_code, verification_uri, qr_url, expires_in)
            try:
                tokens = await self._poll_for_token(
                    device["device_code"], int(device.get("interval", 5)), expires_in
                )
            finally:
                self._prompt.hide()
        finally:
            self._cancel_event = None

        profile = await self._fetch_profile(tokens.access_token)
        identity = self._identity_from_profile(profile, tokens)
        self._tokens = tokens
        self._queue_refresh_token(tokens, identity)
        return AuthResult.success(identity, tokens)

    # ------------------------------------------------------------------ #
    # Protocol steps
    # ------------------------------------------------------------------ #

    async def _request_device_code(self) -> dict[str, Any]:
        """POST to the device authorization endpoint.

        Raises:
            AuthenticationFailure: If the endpoint refuses or the response
                lacks ``device_code``/``user_code``.
        """
        data = {"client_id": self.client_id, "scope": " ".join(self._config.scopes)}
        status, body = await self._post_form(self._config.device_authorization_url, data)
        if status >= 400:
            desc = body.get("error_description") or body.get("error") or f"HTTP {status}"
            raise AuthenticationFailure(
                f"Device authorization request failed: {desc}", status_code=status
            )
        if "device_code" not in body:
            raise AuthenticationFailure("Device authorization response missing 'device_code'")
        if "user_code" not in body:
            raise AuthenticationFailure("Device authorization response missing 'user_code'")
        return body

    async def _poll_for_token(
        self, device_code: str, interval: int, expires_in: int
    ) -> ProviderTokenSet:
        """Poll the token endpoint per :rfc:`8628` section 3.5."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + expires_in
        poll_interval = max(float(interval), self._min_poll_interval)

        data = {
            "grant_type": _DEVICE_CODE_GRANT,
            "device_code": device_code,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        while loop.time() < deadline:
            await self._wait_or_cancel(poll_interval)

            status, body = await self._post_form(self._config.token_url, data)
            if status == 200 and "access_token" in body:
                return ProviderTokenSet.model_validate(body)

            error = body.get("error", "")
            desc = body.get("error_description") or error

            if error == "authorization_pending":
                continue
            if error == "slow_down":
                poll_interval += self.slow_down_step
                continue
            if error == "access_denied":
                raise AuthenticationFailure("Authorization denied by user", status_code=status)
            if error == "expired_token":
                raise AuthenticationFailure("Device code expired, please try again", status_code=status)
            if error == "invalid_request" and "client_secret" in desc and "client_secret" in data:
                get_output().debug("Token endpoint rejected client_secret, retrying without it")
                del data["client_secret"]
                continue
            raise AuthenticationFailure(
                f"Device code authorization failed: {desc or f'HTTP {status}'}",
                status_code=status,
            )

        raise AuthenticationFailure("Device code flow timed out, please try again")

    async def _wait_or_cancel(self, seconds: float) -> None:
        event = self._cancel_event
        if event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise Cancelled("Sign-in was cancelled")
