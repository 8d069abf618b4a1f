"""Asynchronous client for the credential-issuing backend endpoint.

The backend exposes a single HTTPS POST endpoint. Every request carries a
JSON body ``{"providerAccessToken": ..., "operation": ..., **fields}`` and
three headers:

* ``Content-Type: application/json``
* ``Authorization: Bearer <anonymous service key>``
* ``apikey: <anonymous service key>``

Authorized operations also attach the current service credential in
``X-Service-Credential``. A response is ``{"success": bool, ...}``.

:class:`BackendClient` retries 5xx responses and transport errors with
exponential backoff, then maps failures onto the dashauth exception
hierarchy.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from dashauth.config import resolve_credential
from dashauth.exceptions import AuthenticationFailure, ConfigurationError, NetworkFailure
from dashauth.models import BackendConfig
from dashauth.output import get_output

CREDENTIAL_HEADER = "X-Service-Credential"


class BackendClient:
    """POSTs operations to the credential endpoint.

    :meth:`configure` must succeed before :meth:`call` is used.

    Args:
        config: Base URL, function path, anonymous key source, timeout, and
            retry budget.
        http_client: Optional shared :class:`httpx.AsyncClient`. When
            ``None`` the client creates and owns one; see :meth:`aclose`.
        retry_base_delay: First backoff delay in seconds; doubles per attempt.
    """

    def __init__(
        self,
        config: BackendConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_base_delay: float = 1.0,
    ) -> None:
        self._config = config
        self._client = http_client
        self._owns_client = http_client is None
        self._retry_base_delay = retry_base_delay
        self._endpoint: Optional[str] = None
        self._anon_key: Optional[str] = None

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def configure(self) -> str:
        """Derive the endpoint URL and resolve the anonymous key.

        Returns:
            The endpoint URL.

        Raises:
            ConfigurationError: If the base URL is missing or not an
                http(s) URL, or the anonymous key cannot be resolved.
        """
        url = self._config.url
        if not url:
            raise ConfigurationError("Backend URL is not configured (backend.url)")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Backend URL is not a valid http(s) URL: {url}")
        if not self._config.anon_key_source:
            raise ConfigurationError("Backend anonymous key is not configured (backend.anon_key_source)")

        self._anon_key = resolve_credential(self._config.anon_key_source)
        self._endpoint = url.rstrip("/") + "/" + self._config.function_path.lstrip("/")
        get_output().debug(f"Credential endpoint: {self._endpoint}")
        return self._endpoint

    async def call(
        self,
        operation: str,
        provider_access_token: Optional[str],
        credential: Optional[str] = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """Run *operation* and return the decoded response body.

        Raises:
            ConfigurationError: If :meth:`configure` has not succeeded.
            AuthenticationFailure: On 401/403, or a ``success: false`` body.
            NetworkFailure: On other non-2xx responses and transport errors
                once retries are exhausted.
        """
        if self._endpoint is None or self._anon_key is None:
            raise ConfigurationError("Credential endpoint is not configured")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._anon_key}",
            "apikey": self._anon_key,
        }
        if credential:
            headers[CREDENTIAL_HEADER] = credential
        body = {"providerAccessToken": provider_access_token, "operation": operation, **fields}

        response = await self._execute_with_retry(operation, headers, body)
        self._map_response_error(operation, response)

        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkFailure(
                f"Backend returned non-JSON for '{operation}'", status_code=response.status_code
            ) from exc
        if not isinstance(data, dict) or not data.get("success"):
            message = data.get("error") if isinstance(data, dict) else None
            raise AuthenticationFailure(
                f"Backend rejected '{operation}': {message or 'unknown error'}",
                status_code=response.status_code,
            )
        return data

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout)
        return self._client

    async def _execute_with_retry(
        self, operation: str, headers: dict[str, str], body: dict[str, Any]
    ) -> httpx.Response:
        """POST with exponential-backoff retry on 5xx and transport errors."""
        assert self._endpoint is not None
        max_retries = self._config.max_retries
        output = get_output()

        for attempt in range(max_retries + 1):
            delay = self._retry_base_delay * (2 ** attempt)
            try:
                response = await self._http().post(self._endpoint, headers=headers, json=body)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    output.debug(
                        f"'{operation}' connection error: {exc}, retrying in {delay:g}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise NetworkFailure(
                    f"'{operation}' failed after {max_retries + 1} attempts: {exc}"
                ) from exc

            if response.status_code >= 500 and attempt < max_retries:
                output.debug(
                    f"'{operation}' server error {response.status_code}, retrying in {delay:g}s "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                await asyncio.sleep(delay)
                continue
            return response

        raise NetworkFailure(f"'{operation}' failed after all retries")  # pragma: no cover

    def _map_response_error(self, operation: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        text = response.text[:200] if response.text else ""
        message = f"'{operation}' HTTP {status}: {text}" if text else f"'{operation}' HTTP {status}"
        if status in (401, 403):
            raise AuthenticationFailure(message, status_code=status)
        raise NetworkFailure(message, status_code=status)
