"""Tests for backend-held accounts -- listing, removal, adding and reauthorizing."""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

import httpx
import pytest

from dashauth.auth.base import AuthProvider
from dashauth.auth.pending import PendingTokenQueue
from dashauth.auth.registry import ProviderRegistry
from dashauth.credentials import AccountManager, CredentialOperations
from dashauth.credentials.accounts import generate_account_type
from dashauth.exceptions import (
    AuthenticationFailure,
    Cancelled,
    ConfigurationError,
    ProviderUnavailable,
)
from dashauth.models import (
    AuthResult,
    Identity,
    ProviderDescriptor,
    ProviderTokenSet,
    QueuedTokens,
)

SECOND_IDENTITY = Identity(
    id="user-2",
    email="work@example.com",
    name="Ada at Work",
    auth_method="device_flow",
)


class _QueueingProvider(AuthProvider):
    """Signs in as :data:`SECOND_IDENTITY` and queues its refresh token like the real providers."""

    def __init__(
        self,
        name: str = "device_flow",
        pending: Optional[PendingTokenQueue] = None,
        outcome: Optional[AuthResult] = None,
        refresh_token: Optional[str] = "1//second",
    ) -> None:
        super().__init__()
        self._name = name
        self._pending = pending
        self._outcome = outcome
        self._refresh_token = refresh_token
        self.sign_in_calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def sign_in(self) -> AuthResult:
        self.sign_in_calls += 1
        if self._outcome is not None:
            return self._outcome
        tokens = ProviderTokenSet(
            access_token="ya29.second",
            refresh_token=self._refresh_token,
            expires_in=3600,
            scope="profile email",
        )
        self._tokens = tokens
        if self._pending is not None and tokens.refresh_token:
            self._pending.put(
                QueuedTokens(
                    token_data={
                        "access_token": tokens.access_token,
                        "refresh_token": tokens.refresh_token,
                        "expires_in": 3600,
                        "scope": "profile email",
                        "email": SECOND_IDENTITY.email,
                    }
                )
            )
        return AuthResult.success(SECOND_IDENTITY, tokens)

    def get_provider_info(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self._name, type=self._name, supports_refresh_tokens=True, available=True
        )


def _accounts_reply(*accounts: dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "accounts": list(accounts)})


def _account(account_type: str, **extra: Any) -> dict[str, Any]:
    entry = {
        "provider": "google",
        "account_type": account_type,
        "email": "ada@example.com",
        "display_name": account_type.title(),
        "scopes": ["profile", "email"],
        "is_active": True,
    }
    entry.update(extra)
    return entry


def _backend_calls(server: Any, operation: str) -> list[dict[str, Any]]:
    return [c for c in server.calls if c["operation"] == operation]


@pytest.fixture
def make_accounts(make_core: Callable[..., Any]) -> Callable[..., Any]:
    async def _make(
        *providers: AuthProvider, pending: Optional[PendingTokenQueue] = None
    ) -> AccountManager:
        core = make_core()
        await core.initialize()
        operations = CredentialOperations(core)
        return AccountManager(operations, ProviderRegistry(providers), pending)

    return _make


class TestListAccounts:
    @pytest.mark.asyncio
    async def test_lists_backend_accounts(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        credential_server.reply(
            "list_accounts",
            _accounts_reply(_account("personal"), _account("work", scope="drive.readonly")),
        )
        manager = await make_accounts()

        accounts = await manager.list_accounts()

        assert [a.key for a in accounts] == ["google:personal", "google:work"]
        assert accounts[0].scopes == ["profile", "email"]
        assert accounts[0].is_active is True
        assert accounts[1].display_name == "Work"

    @pytest.mark.asyncio
    async def test_empty_when_backend_has_none(self, make_accounts: Callable[..., Any]) -> None:
        manager = await make_accounts()
        assert await manager.list_accounts() == []


class TestRemoveAccount:
    @pytest.mark.asyncio
    async def test_remove_evicts_cached_token(
        self, make_core: Callable[..., Any], credential_server: Any
    ) -> None:
        core = make_core()
        await core.initialize()
        operations = CredentialOperations(core)
        await operations.store_tokens(
            "google", "work", {"access_token": "ya29.work", "refresh_token": "1//work"}
        )
        credential_server.reply(
            "remove_account", httpx.Response(200, json={"success": True, "removed": True})
        )

        assert await operations.remove_account("google", "work") is True

        assert operations.get_status().cached_keys == []
        call = _backend_calls(credential_server, "remove_account")[0]
        assert (call["provider"], call["account_type"]) == ("google", "work")

    @pytest.mark.asyncio
    async def test_missing_account_is_reported(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        credential_server.reply(
            "remove_account",
            httpx.Response(
                200, json={"success": True, "removed": False, "error": "Account not found"}
            ),
        )
        manager = await make_accounts()
        assert await manager.remove_account("google", "ghost") is False


class TestAddAccount:
    @pytest.mark.asyncio
    async def test_stores_tokens_under_new_account_type(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        pending = PendingTokenQueue()
        provider = _QueueingProvider(pending=pending)
        primary = ProviderTokenSet(access_token="ya29.primary", refresh_token="1//primary")
        provider.restore_tokens(primary)
        credential_server.reply("list_accounts", _accounts_reply(_account("personal")))
        manager = await make_accounts(provider, pending=pending)

        account = await manager.add_account("work", display_name="Work Drive")

        assert account.key == "google:work"
        assert account.email == "work@example.com"
        assert account.display_name == "Work Drive"
        stored = _backend_calls(credential_server, "store_tokens")
        assert len(stored) == 1
        assert stored[0]["account_type"] == "work"
        assert stored[0]["data"]["refresh_token"] == "1//second"
        assert stored[0]["data"]["display_name"] == "Work Drive"
        # The queued entry was claimed, so the primary account is not overwritten later.
        assert len(pending) == 0
        assert provider.tokens is primary

    @pytest.mark.asyncio
    async def test_generated_account_type(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        manager = await make_accounts(_QueueingProvider())

        account = await manager.add_account()

        assert re.fullmatch(r"account_\d+_[0-9a-f]{6}", account.account_type)
        stored = _backend_calls(credential_server, "store_tokens")[0]
        assert stored["data"]["display_name"] == f"Ada at Work ({account.account_type})"
        assert stored["data"]["email"] == "work@example.com"

    def test_generated_account_types_differ(self) -> None:
        assert generate_account_type() != generate_account_type()

    @pytest.mark.asyncio
    async def test_duplicate_account_type_is_rejected(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        provider = _QueueingProvider()
        credential_server.reply("list_accounts", _accounts_reply(_account("work")))
        manager = await make_accounts(provider)

        with pytest.raises(ConfigurationError, match="already exists"):
            await manager.add_account("work")
        assert provider.sign_in_calls == 0

    @pytest.mark.asyncio
    async def test_web_code_flow_cannot_add(self, make_accounts: Callable[..., Any]) -> None:
        manager = await make_accounts(_QueueingProvider("web_oauth"))
        with pytest.raises(ProviderUnavailable, match="completes in place"):
            await manager.add_account("work", provider_name="web_oauth")

    @pytest.mark.asyncio
    async def test_cancelled_sign_in(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        manager = await make_accounts(_QueueingProvider(outcome=AuthResult.cancelled("Closed")))
        with pytest.raises(Cancelled, match="Closed"):
            await manager.add_account("work")
        assert _backend_calls(credential_server, "store_tokens") == []

    @pytest.mark.asyncio
    async def test_sign_in_without_refresh_token(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        manager = await make_accounts(_QueueingProvider(refresh_token=None))
        with pytest.raises(AuthenticationFailure, match="no refresh token"):
            await manager.add_account("work")
        assert _backend_calls(credential_server, "store_tokens") == []


class TestReauthorize:
    @pytest.mark.asyncio
    async def test_replaces_existing_account(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        credential_server.reply(
            "remove_account", httpx.Response(200, json={"success": True, "removed": True})
        )
        manager = await make_accounts(_QueueingProvider())

        account = await manager.reauthorize_account("google", "work")

        assert credential_server.operations()[-2:] == ["remove_account", "store_tokens"]
        assert account.display_name == "work (reauthorized)"

    @pytest.mark.asyncio
    async def test_unknown_account(
        self, make_accounts: Callable[..., Any], credential_server: Any
    ) -> None:
        credential_server.reply(
            "remove_account", httpx.Response(200, json={"success": True, "removed": False})
        )
        provider = _QueueingProvider()
        manager = await make_accounts(provider)

        with pytest.raises(ConfigurationError, match="No account google/ghost"):
            await manager.reauthorize_account("google", "ghost")
        assert provider.sign_in_calls == 0
