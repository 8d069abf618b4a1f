"""Tests for WebCodeFlowProvider -- redirect, callback exchange, stale-session retry."""

from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from dashauth.auth.pending import PendingTokenQueue
from dashauth.exceptions import (
    AuthenticationFailure,
    Cancelled,
    NetworkFailure,
    ProviderUnavailable,
)
from dashauth.models import AuthStatus, ProviderConfig
from dashauth.providers.web_code_flow import WebCodeFlowProvider, is_stale_session_error

REDIRECT_URI = "https://dashboard.example.com/"


class _FakeNavigator:
    def __init__(self, query: Optional[dict[str, str]] = None) -> None:
        self.query = dict(query or {})
        self.redirects: list[str] = []

    def current_query(self) -> dict[str, str]:
        return self.query

    def clear_query(self) -> None:
        self.query = {}

    def redirect(self, url: str) -> None:
        self.redirects.append(url)


def _make_config() -> ProviderConfig:
    return ProviderConfig(
        client_id_source="env:DASHAUTH_TEST_CLIENT_ID",
        client_secret_source="env:DASHAUTH_TEST_CLIENT_SECRET",
        redirect_uri=REDIRECT_URI,
    )


def _make_transport(requests: list[httpx.Request], token_status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/token":
            if token_status != 200:
                return httpx.Response(
                    token_status,
                    json={"error": "invalid_grant", "error_description": "Bad code"},
                )
            return httpx.Response(
                200,
                json={
                    "access_token": "ya29.access",
                    "refresh_token": "1//refresh",
                    "expires_in": 3599,
                    "scope": "profile email",
                    "token_type": "Bearer",
                },
            )
        if request.url.path.endswith("/userinfo"):
            return httpx.Response(
                200, json={"id": "g-1", "email": "ada@example.com", "name": "Ada Lovelace"}
            )
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture()
def client_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DASHAUTH_TEST_CLIENT_ID", "client-123")
    monkeypatch.setenv("DASHAUTH_TEST_CLIENT_SECRET", "shh")


def _make_provider(
    navigator: Optional[_FakeNavigator],
    requests: Optional[list[httpx.Request]] = None,
    token_status: int = 200,
    confirm: Any = None,
    pending: Optional[PendingTokenQueue] = None,
) -> WebCodeFlowProvider:
    client = httpx.AsyncClient(transport=_make_transport(requests if requests is not None else [], token_status))
    return WebCodeFlowProvider(
        _make_config(), navigator=navigator, confirm=confirm, pending=pending, http_client=client
    )


class TestStaleSessionHeuristic:
    @pytest.mark.parametrize(
        "error,description,expected",
        [
            ("access_denied", None, True),
            ("invalid_request", None, True),
            ("server_error", "The session has expired", True),
            ("server_error", "Something else", False),
            ("invalid_scope", None, False),
        ],
    )
    def test_classification(self, error: str, description: Optional[str], expected: bool) -> None:
        assert is_stale_session_error(error, description) is expected


class TestSignIn:
    @pytest.mark.asyncio
    async def test_redirects_with_offline_consent(self, client_env: None) -> None:
        navigator = _FakeNavigator()
        provider = _make_provider(navigator)

        result = await provider.sign_in()

        assert result.status == AuthStatus.REDIRECTED
        url = urlparse(navigator.redirects[0])
        params = {k: v[0] for k, v in parse_qs(url.query).items()}
        assert params["client_id"] == "client-123"
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["response_type"] == "code"
        assert params["state"]

    @pytest.mark.asyncio
    async def test_unavailable_without_navigator(self, client_env: None) -> None:
        provider = _make_provider(None)
        assert not provider.is_available()
        with pytest.raises(ProviderUnavailable):
            await provider.sign_in()

    @pytest.mark.asyncio
    async def test_initialize_without_callback_is_none(self, client_env: None) -> None:
        assert await _make_provider(_FakeNavigator()).initialize() is None


class TestCallback:
    @pytest.mark.asyncio
    async def test_code_is_exchanged_and_refresh_token_queued(self, client_env: None) -> None:
        requests: list[httpx.Request] = []
        pending = PendingTokenQueue()
        navigator = _FakeNavigator({"code": "4/abc"})
        provider = _make_provider(navigator, requests, pending=pending)

        result = await provider.initialize()

        assert result is not None and result.ok
        assert result.identity is not None
        assert result.identity.email == "ada@example.com"
        assert result.identity.auth_method == "web_oauth"
        assert result.identity.provider_access_token == "ya29.access"
        assert navigator.query == {}

        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["4/abc"]
        assert form["client_secret"] == ["shh"]
        assert requests[1].headers["Authorization"] == "Bearer ya29.access"

        queued = pending.snapshot()
        assert len(queued) == 1
        assert queued[0].token_data["refresh_token"] == "1//refresh"
        assert queued[0].token_data["email"] == "ada@example.com"
        assert provider.get_refresh_token() == "1//refresh"

    @pytest.mark.asyncio
    async def test_state_mismatch_is_rejected(self, client_env: None) -> None:
        navigator = _FakeNavigator()
        provider = _make_provider(navigator)
        provider.build_authorization_url()
        navigator.query = {"code": "4/abc", "state": "forged"}

        with pytest.raises(AuthenticationFailure, match="state mismatch"):
            await provider.initialize()
        assert navigator.query == {}

    @pytest.mark.asyncio
    async def test_rejected_code_clears_query(self, client_env: None) -> None:
        navigator = _FakeNavigator({"code": "4/used"})
        provider = _make_provider(navigator, token_status=400)

        with pytest.raises(AuthenticationFailure, match="Bad code"):
            await provider.initialize()
        assert navigator.query == {}

    @pytest.mark.asyncio
    async def test_non_json_profile_is_network_failure(self, client_env: None) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/token":
                return httpx.Response(200, json={"access_token": "ya29.access", "expires_in": 3599})
            return httpx.Response(200, text="<html>captive portal</html>")

        provider = WebCodeFlowProvider(
            _make_config(),
            navigator=_FakeNavigator({"code": "4/abc"}),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(NetworkFailure, match="Non-JSON profile response"):
            await provider.initialize()

    @pytest.mark.asyncio
    async def test_plain_error_is_surfaced(self, client_env: None) -> None:
        navigator = _FakeNavigator({"error": "invalid_scope"})
        with pytest.raises(AuthenticationFailure, match="invalid_scope"):
            await _make_provider(navigator).initialize()

    @pytest.mark.asyncio
    async def test_stale_session_retry_forces_account_selection(self, client_env: None) -> None:
        prompts: list[str] = []

        async def confirm(message: str) -> bool:
            prompts.append(message)
            return True

        navigator = _FakeNavigator({"error": "access_denied"})
        result = await _make_provider(navigator, confirm=confirm).initialize()

        assert result is not None
        assert result.status == AuthStatus.REDIRECTED
        assert len(prompts) == 1
        params = parse_qs(urlparse(navigator.redirects[0]).query)
        assert params["prompt"] == ["select_account consent"]

    @pytest.mark.asyncio
    async def test_declined_retry_is_cancel(self, client_env: None) -> None:
        navigator = _FakeNavigator(
            {"error": "server_error", "error_description": "Session expired"}
        )
        with pytest.raises(Cancelled):
            await _make_provider(navigator, confirm=lambda message: False).initialize()
        assert navigator.redirects == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_grant(self, client_env: None) -> None:
        requests: list[httpx.Request] = []
        provider = _make_provider(_FakeNavigator(), requests)

        tokens = await provider.refresh_access_token("1//stored")

        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["1//stored"]
        assert tokens.access_token == "ya29.access"

    @pytest.mark.asyncio
    async def test_refresh_without_token_is_unavailable(self, client_env: None) -> None:
        with pytest.raises(ProviderUnavailable, match="no refresh token"):
            await _make_provider(_FakeNavigator()).refresh_access_token()

    def test_provider_info(self, client_env: None) -> None:
        info = _make_provider(_FakeNavigator()).get_provider_info()
        assert info.type == "web_oauth"
        assert info.supports_refresh_tokens
        assert json.loads(json.dumps(info.details)) == {"redirect_uri": REDIRECT_URI}
