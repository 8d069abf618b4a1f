"""Helpers shared by the commands that drive the auth stack.

The CLI is a terminal host: no navigator and no native bridge, so the only
provider it registers is the device flow. Its platform probe is ``unknown``
and it never publishes the degraded local identity.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

import typer

from dashauth.auth.token_store import TokenStore
from dashauth.auth.ui import NullSignInUI, SignInUI
from dashauth.bootstrap import AuthStack, create_auth_stack
from dashauth.exceptions import AuthenticationFailure, ConfigurationError, DashauthError
from dashauth.models import AppConfig, DeviceCategory, Platform, PlatformSignals
from dashauth.output import error

T = TypeVar("T")

CLI_SIGNALS = PlatformSignals(platform=Platform.UNKNOWN, device=DeviceCategory.DESKTOP)


def load_cli_config(ctx: typer.Context) -> AppConfig:
    """Resolve the config honouring the root ``--config`` flag.

    Raises:
        typer.Exit: With the configuration exit code if the file is invalid.
    """
    from dashauth.config import resolve_config

    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        return resolve_config(config_path)
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def cli_stack(
    config: AppConfig,
    ui: Optional[SignInUI] = None,
    token_store: Optional[TokenStore] = None,
) -> AuthStack:
    return create_auth_stack(
        config,
        CLI_SIGNALS,
        token_store=token_store,
        ui=ui or NullSignInUI(),
        allow_degraded_identity=False,
    )


async def require_service(stack: AuthStack) -> None:
    """Restore the saved session and bring the credential service up.

    Raises:
        AuthenticationFailure: If nobody is signed in or the service is not
            ready.
    """
    if not await stack.coordinator.init():
        raise AuthenticationFailure("Not signed in. Run: dashauth login")
    if not await stack.core.initialize():
        status = stack.core.get_status()
        raise AuthenticationFailure(
            f"Credential service not ready: {status.last_error or status.state.value}"
        )


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, turning dashauth errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except DashauthError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
