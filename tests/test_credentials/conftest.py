"""Fixtures for the credential service tests.

``credential_server`` is an in-process stand-in for the credential endpoint,
mounted behind :class:`httpx.MockTransport`, so the real
:class:`~dashauth.credentials.backend.BackendClient` wire code runs in every
test.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import pytest

from dashauth.credentials import BackendClient, CredentialServiceCore, ServiceCredentialCache
from dashauth.exceptions import DashauthError
from dashauth.models import BackendConfig, CacheConfig, Identity, ServiceConfig


class FakeIdentitySource:
    """Coordinator stand-in with a settable user and provider token."""

    def __init__(self, user: Optional[Identity], token: Optional[str] = "provider-token") -> None:
        self.user = user
        self.token = token
        self.refresh_calls = 0
        self.refresh_error: Optional[DashauthError] = None

    def is_authenticated(self) -> bool:
        return self.user is not None

    def get_user(self) -> Optional[Identity]:
        return self.user

    def get_access_token(self) -> Optional[str]:
        return self.token

    async def refresh_access_token(self) -> str:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        self.token = "refreshed-provider-token"
        return self.token


class FakeCredentialServer:
    """Answers backend operations; queued replies win over the defaults.

    :meth:`hold` parks every reply to an operation until the returned event
    is set, which lets a test act while a request is in flight.
    """

    def __init__(self, make_jwt: Callable[..., str]) -> None:
        self._make_jwt = make_jwt
        self.calls: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self._replies: dict[str, list[httpx.Response]] = {}
        self._gates: dict[str, asyncio.Event] = {}

    def reply(self, operation: str, *responses: httpx.Response) -> None:
        self._replies.setdefault(operation, []).extend(responses)

    def hold(self, operation: str) -> asyncio.Event:
        gate = self._gates[operation] = asyncio.Event()
        return gate

    def operations(self) -> list[str]:
        return [call["operation"] for call in self.calls]

    def __call__(self, request: httpx.Request) -> Union[httpx.Response, Awaitable[httpx.Response]]:
        body = json.loads(request.content)
        self.calls.append(body)
        self.headers.append(request.headers)
        response = self._respond(body["operation"])
        gate = self._gates.get(body["operation"])
        if gate is None:
            return response

        async def held() -> httpx.Response:
            await gate.wait()
            return response

        return held()

    def _respond(self, operation: str) -> httpx.Response:
        queued = self._replies.get(operation)
        if queued:
            return queued.pop(0)
        if operation in ("issue_credential", "refresh_credential"):
            return httpx.Response(200, json={"success": True, "token": self._make_jwt()})
        return httpx.Response(200, json={"success": True})


@pytest.fixture
def identity_source(identity: Identity) -> FakeIdentitySource:
    return FakeIdentitySource(identity)


@pytest.fixture
def credential_server(make_jwt: Callable[..., str]) -> FakeCredentialServer:
    return FakeCredentialServer(make_jwt)


@pytest.fixture
def make_core(
    identity_source: FakeIdentitySource,
    credential_server: FakeCredentialServer,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Callable[..., CredentialServiceCore]:
    """Builder for a core wired to ``credential_server``.

    Proactive refresh is off and the identity wait is short unless
    overridden.
    """
    monkeypatch.setenv("DASHAUTH_TEST_ANON_KEY", "anon-key")

    def _make(
        backend: Optional[BackendConfig] = None,
        service: Optional[ServiceConfig] = None,
        cache: bool = False,
        on_credential_failure: Any = None,
    ) -> CredentialServiceCore:
        backend = backend or BackendConfig(
            url="https://abc.example.co",
            anon_key_source="env:DASHAUTH_TEST_ANON_KEY",
            max_retries=0,
        )
        service = service or ServiceConfig(
            auth_wait_timeout=0.05, auth_poll_interval=0.01, proactive_refresh=False
        )
        client = BackendClient(
            backend,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(credential_server)),
            retry_base_delay=0,
        )
        return CredentialServiceCore(
            identity_source,
            client,
            config=service,
            cache=ServiceCredentialCache(tmp_path, CacheConfig()) if cache else None,
            on_credential_failure=on_credential_failure,
        )

    return _make
