"""OAuth2 Authorization Code provider for browsers and embedded web views.

Flow:
    1. :meth:`WebCodeFlowProvider.sign_in` redirects the host to the
       authorization endpoint with ``access_type=offline`` and
       ``prompt=consent`` so a refresh token is issued.
    2. The identity provider redirects back with ``?code=...`` (or
       ``?error=...``).
    3. On the next :meth:`~WebCodeFlowProvider.initialize` the code is
       exchanged for tokens, the profile is fetched, the refresh token is
       queued, and the query string is cleared so a reload cannot replay
       the code.

Errors that usually mean the browser holds a stale Google session
(``access_denied``, ``invalid_request``, or a description mentioning
"session") are not surfaced raw. The user is asked whether to retry with
forced account selection (``prompt=select_account consent``).
"""

from __future__ import annotations

import inspect
import secrets
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union
from urllib.parse import urlencode

import httpx

from dashauth.auth.pending import PendingTokenQueue
from dashauth.exceptions import AuthenticationFailure, Cancelled, ConfigurationError
from dashauth.models import AuthResult, ProviderConfig, ProviderDescriptor, ProviderTokenSet, Strategy
from dashauth.output import get_output
from dashauth.providers.oauth import OAuthProvider

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]

_STALE_SESSION_ERRORS = ("access_denied", "invalid_request")
_RETRY_MESSAGE = (
    "Google sign-in hit a saved session that no longer works. "
    "Sign in again and pick your account?"
)


class Navigator(Protocol):
    """Host navigation collaborator."""

    def current_query(self) -> Mapping[str, str]: ...

    def clear_query(self) -> None: ...

    def redirect(self, url: str) -> None: ...


def is_stale_session_error(error: str, description: Optional[str]) -> bool:
    """Best-effort guess whether an OAuth error stems from a stale cached session."""
    if error in _STALE_SESSION_ERRORS:
        return True
    return bool(description) and "session" in description.lower()


class WebCodeFlowProvider(OAuthProvider):
    """Authorization-code provider driven by host redirects.

    Args:
        config: Endpoints, scopes, ``redirect_uri``, and client credential
            sources.
        navigator: Host navigation. Without one the provider is unavailable.
        confirm: Asked whether to retry after a stale-session error. May be
            sync or async. Without one the retry is declined.
        pending: Queue receiving the refresh token.
        http_client: Optional shared :class:`httpx.AsyncClient`.
    """

    auth_method = "web_oauth"

    def __init__(
        self,
        config: ProviderConfig,
        navigator: Optional[Navigator] = None,
        confirm: Optional[ConfirmCallback] = None,
        pending: Optional[PendingTokenQueue] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(config, pending=pending, http_client=http_client)
        self._navigator = navigator
        self._confirm = confirm
        self._issued_state: Optional[str] = None

    @property
    def name(self) -> str:
        return Strategy.WEB_OAUTH.value

    def is_available(self) -> bool:
        return (
            self._navigator is not None
            and self._config.redirect_uri is not None
            and super().is_available()
        )

    # ------------------------------------------------------------------ #
    # Contract
    # ------------------------------------------------------------------ #

    async def initialize(self) -> Optional[AuthResult]:
        """Complete a sign-in if the current URL carries an OAuth callback."""
        if self._navigator is None:
            return None
        query = dict(self._navigator.current_query())
        if "code" in query:
            return await self._complete_callback(query)
        if "error" in query:
            return await self._handle_callback_error(query)
        return None

    async def sign_in(self) -> AuthResult:
        """Redirect the host to the authorization endpoint."""
        self._require_available()
        self._redirect()
        return AuthResult.redirected("Redirecting to Google sign-in")

    def get_provider_info(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name="Google OAuth (web)",
            type=self.name,
            supports_refresh_tokens=True,
            available=self.is_available(),
            details={"redirect_uri": self._config.redirect_uri},
        )

    # ------------------------------------------------------------------ #
    # Authorization request
    # ------------------------------------------------------------------ #

    def build_authorization_url(self, force_account_selection: bool = False) -> str:
        """Build the authorization URL and remember its anti-forgery state."""
        if not self._config.redirect_uri:
            raise ConfigurationError("web_oauth requires 'redirect_uri'")
        self._issued_state = secrets.token_urlsafe(16)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self._config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._config.scopes),
            "access_type": "offline",
            "prompt": "select_account consent" if force_account_selection else "consent",
            "state": self._issued_state,
        }
        return f"{self._config.authorization_url}?{urlencode(params)}"

    def _redirect(self, force_account_selection: bool = False) -> None:
        assert self._navigator is not None
        url = self.build_authorization_url(force_account_selection)
        get_output().debug(f"Redirecting to authorization endpoint (forced={force_account_selection})")
        self._navigator.redirect(url)

    # ------------------------------------------------------------------ #
    # Callback handling
    # ------------------------------------------------------------------ #

    async def _complete_callback(self, query: dict[str, str]) -> AuthResult:
        assert self._navigator is not None
        try:
            state = query.get("state")
            if self._issued_state is not None and state != self._issued_state:
                raise AuthenticationFailure("OAuth state mismatch")

            tokens = await self._exchange_code(query["code"])
            profile = await self._fetch_profile(tokens.access_token)
            identity = self._identity_from_profile(profile, tokens)
        finally:
            self._navigator.clear_query()
            self._issued_state = None

        self._tokens = tokens
        self._queue_refresh_token(tokens, identity)
        get_output().debug(f"Completed web sign-in for {identity.email}")
        return AuthResult.success(identity, tokens)

    async def _handle_callback_error(self, query: dict[str, str]) -> AuthResult:
        assert self._navigator is not None
        self._navigator.clear_query()
        error = query["error"]
        description = query.get("error_description")
        get_output().debug(f"OAuth callback error: {error} ({description})")

        if not is_stale_session_error(error, description):
            raise AuthenticationFailure(f"OAuth error: {description or error}")

        if await self._ask_retry():
            self._redirect(force_account_selection=True)
            return AuthResult.redirected("Retrying with account selection")
        raise Cancelled("Sign-in was cancelled")

    async def _ask_retry(self) -> bool:
        if self._confirm is None:
            return False
        answer = self._confirm(_RETRY_MESSAGE)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def _exchange_code(self, code: str) -> ProviderTokenSet:
        data: dict[str, Any] = {
            "code": code,
            "client_id": self.client_id,
            "redirect_uri": self._config.redirect_uri,
            "grant_type": "authorization_code",
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        status, body = await self._post_form(self._config.token_url, data)
        self._raise_for_token_error(status, body, "Code exchange")
        return ProviderTokenSet.model_validate(body)
