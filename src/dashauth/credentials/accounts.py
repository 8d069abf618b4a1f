"""Secondary accounts held by the credential backend.

The signed-in identity owns the ``personal`` token set. Further accounts
(``work``, ``family``, ...) are token sets stored under their own
``account_type``. :class:`AccountManager` adds them by running a provider's
sign-in outside the coordinator, so the primary session is left alone, and
removes them through the backend.

Only providers that finish in-process can add accounts. The web code flow
leaves the page and would hand its tokens to the primary session on the
way back.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Optional

from dashauth.auth.base import AuthProvider
from dashauth.auth.pending import PendingTokenQueue
from dashauth.auth.registry import ProviderRegistry
from dashauth.credentials.operations import CredentialOperations
from dashauth.exceptions import (
    AuthenticationFailure,
    Cancelled,
    ConfigurationError,
    ProviderUnavailable,
)
from dashauth.models import AuthStatus, Identity, ProviderTokenSet, Strategy, TokenAccount
from dashauth.output import get_output

TOKEN_PROVIDER = "google"


def generate_account_type() -> str:
    return f"account_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class AccountManager:
    """Lists, adds, removes and reauthorizes backend-held accounts.

    Args:
        operations: Authorized backend operations.
        registry: Providers available on this host.
        pending: The queue providers put refresh tokens on during sign-in.
    """

    def __init__(
        self,
        operations: CredentialOperations,
        registry: ProviderRegistry,
        pending: Optional[PendingTokenQueue] = None,
    ) -> None:
        self._operations = operations
        self._registry = registry
        self._pending = pending

    async def list_accounts(self) -> list[TokenAccount]:
        return await self._operations.list_accounts()

    async def remove_account(
        self, provider: str = TOKEN_PROVIDER, account_type: str = "personal"
    ) -> bool:
        removed = await self._operations.remove_account(provider, account_type)
        if removed:
            get_output().debug(f"Removed account {provider}/{account_type}")
        return removed

    async def add_account(
        self,
        account_type: Optional[str] = None,
        display_name: Optional[str] = None,
        provider_name: str = Strategy.DEVICE_FLOW.value,
    ) -> TokenAccount:
        """Sign in with *provider_name* and store the tokens under *account_type*.

        Raises:
            ConfigurationError: If *account_type* is already in use.
            ProviderUnavailable: If the provider cannot add accounts here.
            Cancelled: If the user aborts the sign-in.
            AuthenticationFailure: If sign-in fails or yields no refresh token.
        """
        account_type = account_type or generate_account_type()
        existing = await self._operations.list_accounts()
        if any(a.provider == TOKEN_PROVIDER and a.account_type == account_type for a in existing):
            raise ConfigurationError(
                f"Account type '{account_type}' already exists. Choose a different name."
            )
        return await self._authorize(account_type, display_name, provider_name)

    async def reauthorize_account(
        self,
        provider: str = TOKEN_PROVIDER,
        account_type: str = "personal",
        provider_name: str = Strategy.DEVICE_FLOW.value,
    ) -> TokenAccount:
        """Replace the stored tokens of an existing account with a fresh sign-in."""
        if not await self.remove_account(provider, account_type):
            raise ConfigurationError(f"No account {provider}/{account_type} to reauthorize")
        return await self._authorize(account_type, f"{account_type} (reauthorized)", provider_name)

    async def _authorize(
        self, account_type: str, display_name: Optional[str], provider_name: str
    ) -> TokenAccount:
        provider = self._registry.get(provider_name)
        if provider.name == Strategy.WEB_OAUTH.value:
            raise ProviderUnavailable(
                "Adding an account needs a sign-in that completes in place; "
                "use the device flow or the native bridge"
            )
        identity, tokens = await self._sign_in_aside(provider)
        if not tokens.refresh_token:
            raise AuthenticationFailure(f"{provider.name} sign-in returned no refresh token")

        token_data = self._token_data(identity, tokens)
        token_data["display_name"] = display_name or f"{identity.name} ({account_type})"
        await self._operations.store_tokens(TOKEN_PROVIDER, account_type, token_data)
        get_output().debug(f"Added account {TOKEN_PROVIDER}/{account_type} for {identity.email}")
        return TokenAccount(
            provider=TOKEN_PROVIDER,
            account_type=account_type,
            email=identity.email,
            display_name=token_data["display_name"],
            expires_at=token_data.get("expires_at"),
            scopes=(token_data.get("scope") or "").split(),
        )

    async def _sign_in_aside(self, provider: AuthProvider) -> tuple[Identity, ProviderTokenSet]:
        """Run *provider*'s sign-in and put its previous live tokens back."""
        previous = provider.tokens
        try:
            result = await provider.sign_in()
            tokens = result.tokens or provider.tokens
        finally:
            provider.restore_tokens(previous)

        if result.status == AuthStatus.CANCELLED:
            raise Cancelled(result.message or "Sign-in was cancelled")
        if result.status != AuthStatus.SUCCESS or result.identity is None:
            raise AuthenticationFailure(result.error or f"{provider.name} sign-in did not complete")
        if tokens is None:
            raise AuthenticationFailure(f"{provider.name} sign-in returned no tokens")
        return result.identity, tokens

    def _token_data(self, identity: Identity, tokens: ProviderTokenSet) -> dict[str, Any]:
        # Providers queue the new refresh token for the primary account; claim it here.
        if self._pending is not None and tokens.refresh_token:
            queued = self._pending.take(tokens.refresh_token)
            if queued is not None:
                return dict(queued.token_data)

        now_ms = int(time.time() * 1000)
        expires_in = tokens.expires_in or 3600
        return {
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "expires_in": expires_in,
            "expires_at": now_ms + expires_in * 1000,
            "scope": tokens.scope or "",
            "email": identity.email,
            "user_id": identity.id,
            "issued_at": now_ms,
            "provider_info": {"type": identity.auth_method},
        }
