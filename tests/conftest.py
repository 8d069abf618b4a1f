"""Shared test fixtures for dashauth.

Provides isolated config environments, output state management, a CLI
runner, and small builders for identities and service credentials. These
fixtures are discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import base64
import json
import time
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from dashauth.models import Identity
from dashauth.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams and the
    test finishes, the cached references become stale. Resetting forces a
    fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME, XDG_CACHE_HOME, and XDG_DATA_HOME to
    subdirectories of tmp_path so that tests never touch real user
    config. Clears all DASHAUTH_* environment variables and changes
    the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("dashauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "DASHAUTH_CONFIG",
        "DASHAUTH_BACKEND_URL",
        "DASHAUTH_ANON_KEY_SOURCE",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Identity and credential builders
# ---------------------------------------------------------------------------


@pytest.fixture
def identity() -> Identity:
    return Identity(
        id="user-1",
        email="ada@example.com",
        name="Ada Lovelace",
        auth_method="device_flow",
        provider_access_token="provider-token",
    )


def _b64url(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    """Return a builder for unsigned JWTs expiring *expires_in* seconds from now."""

    def _make(expires_in: float = 3600, exp: Optional[int] = None, sub: str = "user-1") -> str:
        claims = {"sub": sub, "exp": exp if exp is not None else int(time.time() + expires_in)}
        return f"{_b64url({'alg': 'HS256', 'typ': 'JWT'})}.{_b64url(claims)}.signature"

    return _make
