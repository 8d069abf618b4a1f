"""Tests for BackendClient -- configuration, wire format, retry, error mapping."""

from __future__ import annotations

import json
from typing import Callable, Optional

import httpx
import pytest

from dashauth.credentials.backend import CREDENTIAL_HEADER, BackendClient
from dashauth.exceptions import AuthenticationFailure, ConfigurationError, NetworkFailure
from dashauth.models import BackendConfig

Handler = Callable[[httpx.Request], httpx.Response]


def _make_config(**overrides: object) -> BackendConfig:
    values: dict[str, object] = {
        "url": "https://abc.example.co/",
        "anon_key_source": "env:DASHAUTH_TEST_ANON_KEY",
        "max_retries": 2,
    }
    values.update(overrides)
    return BackendConfig(**values)  # type: ignore[arg-type]


def _make_client(handler: Handler, config: Optional[BackendConfig] = None) -> BackendClient:
    client = BackendClient(
        config or _make_config(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_base_delay=0,
    )
    client.configure()
    return client


@pytest.fixture(autouse=True)
def _anon_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DASHAUTH_TEST_ANON_KEY", "anon-key")


class TestConfigure:
    def test_endpoint_joins_function_path(self) -> None:
        client = BackendClient(_make_config())
        assert client.configure() == "https://abc.example.co/functions/v1/jwt-auth"
        assert client.endpoint == "https://abc.example.co/functions/v1/jwt-auth"

    def test_missing_url(self) -> None:
        with pytest.raises(ConfigurationError, match="backend.url"):
            BackendClient(_make_config(url=None)).configure()

    def test_invalid_url(self) -> None:
        with pytest.raises(ConfigurationError, match="not a valid"):
            BackendClient(_make_config(url="ftp://abc")).configure()

    def test_missing_anon_key_source(self) -> None:
        with pytest.raises(ConfigurationError, match="anon_key_source"):
            BackendClient(_make_config(anon_key_source=None)).configure()

    @pytest.mark.asyncio
    async def test_call_before_configure(self) -> None:
        client = BackendClient(_make_config())
        with pytest.raises(ConfigurationError):
            await client.call("issue", "provider-token")


class TestCall:
    @pytest.mark.asyncio
    async def test_headers_and_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "token": "jwt"})

        client = _make_client(handler)
        data = await client.call(
            "get_valid_token",
            "provider-token",
            credential="service-jwt",
            provider="google",
            account_type="work",
        )

        assert data == {"success": True, "token": "jwt"}
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://abc.example.co/functions/v1/jwt-auth"
        assert request.headers["Authorization"] == "Bearer anon-key"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers[CREDENTIAL_HEADER] == "service-jwt"
        assert json.loads(request.content) == {
            "providerAccessToken": "provider-token",
            "operation": "get_valid_token",
            "provider": "google",
            "account_type": "work",
        }

    @pytest.mark.asyncio
    async def test_no_credential_header_without_credential(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        await _make_client(handler).call("issue", "provider-token")
        assert CREDENTIAL_HEADER not in seen[0].headers

    @pytest.mark.asyncio
    async def test_retries_server_errors(self) -> None:
        statuses = iter([503, 502, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 200:
                return httpx.Response(200, json={"success": True})
            return httpx.Response(status, text="unavailable")

        assert (await _make_client(handler).call("issue", "t"))["success"] is True

    @pytest.mark.asyncio
    async def test_server_error_after_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, text="boom")

        with pytest.raises(NetworkFailure) as exc_info:
            await _make_client(handler).call("issue", "t")
        assert exc_info.value.status_code == 500
        assert calls == 3

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried_then_raised(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkFailure, match="after 3 attempts"):
            await _make_client(handler).call("issue", "t")
        assert calls == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_statuses_map_to_authentication_failure(self, status: int) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": "Invalid JWT"})

        with pytest.raises(AuthenticationFailure) as exc_info:
            await _make_client(handler).call("refresh", "t", credential="old")
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, text="bad request")

        with pytest.raises(NetworkFailure):
            await _make_client(handler).call("issue", "t")
        assert calls == 1

    @pytest.mark.asyncio
    async def test_success_false_is_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "error": "no refresh token stored"})

        with pytest.raises(AuthenticationFailure, match="no refresh token stored"):
            await _make_client(handler).call("get_valid_token", "t")

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(NetworkFailure, match="non-JSON"):
            await _make_client(handler).call("issue", "t")

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self) -> None:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"success": True}))
        )
        client = BackendClient(_make_config(), http_client=http_client)
        await client.aclose()
        assert not http_client.is_closed
        await http_client.aclose()
