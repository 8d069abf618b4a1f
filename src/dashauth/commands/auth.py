"""Auth commands -- sign in, sign out and inspect the session.

``dashauth login`` runs the device flow in the terminal: it prints a
verification URL and a user code, waits for the user to approve on another
device, then brings the credential service up and stores the refresh token
with the backend.

Typical workflow::

    dashauth login
    dashauth status --service
    dashauth logout
"""

from __future__ import annotations

import typer

from dashauth.auth.token_store import FileTokenStore
from dashauth.auth.ui import TerminalSignInUI
from dashauth.commands.common import cli_stack, load_cli_config, run
from dashauth.exceptions import ProviderUnavailable
from dashauth.exit_codes import EXIT_AUTH_FAILURE, EXIT_CANCELLED
from dashauth.models import AuthStatus, Strategy
from dashauth.output import format_response, info, success, suggest, warning


def login_command(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Sign in again even if a session exists."
    ),
) -> None:
    """Sign in with the device flow and start the credential service.

    Example::

        dashauth login
        dashauth login --force
    """
    config = load_cli_config(ctx)
    token_store = FileTokenStore(max_age_days=config.session_max_age_days)
    stack = cli_stack(config, ui=TerminalSignInUI(), token_store=token_store)

    async def _login() -> None:
        async with stack:
            existing = token_store.get()
            if existing is not None and not force:
                info(f"Already signed in as {existing.email}.")
                suggest("Sign in again: dashauth login --force")
                return

            provider = stack.registry.get(Strategy.DEVICE_FLOW.value)
            if not provider.is_available():
                raise ProviderUnavailable(
                    "Device sign-in needs a client id (device_flow.client_id_source)"
                )

            result = await stack.coordinator.sign_in(provider.name)
            if result.status == AuthStatus.CANCELLED:
                info("Sign-in cancelled.")
                raise typer.Exit(code=EXIT_CANCELLED)
            if not result.ok:
                # The sign-in UI has already reported the error.
                raise typer.Exit(code=EXIT_AUTH_FAILURE)

            if not await stack.core.initialize():
                warning("Signed in, but the credential service is not ready.")
                suggest("Check the backend settings: dashauth config show")
                return
            results = await stack.drain_pending()
            stored = sum(1 for r in results if r.success)
            if stored:
                success(f"Stored {stored} refresh token(s) with the backend.")

    run(_login())


def logout_command(ctx: typer.Context) -> None:
    """Sign out and forget the saved session and service credential.

    Example::

        dashauth logout
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _logout() -> bool:
        async with stack:
            if not await stack.coordinator.init():
                return False
            await stack.coordinator.sign_out()
            return True

    if run(_logout()):
        success("Signed out.")
    else:
        info("Not signed in.")


def status_command(
    ctx: typer.Context,
    service: bool = typer.Option(
        False, "--service", "-s", help="Also bring up the credential service and report it."
    ),
) -> None:
    """Show the sign-in state and, optionally, the credential service state.

    Example::

        dashauth status
        dashauth status --service --json
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _status() -> dict:
        async with stack:
            signed_in = await stack.coordinator.init()
            data = stack.coordinator.get_status()
            if service:
                if signed_in:
                    await stack.core.initialize()
                data["service"] = stack.operations.get_status().model_dump(mode="json")
            return data

    data = run(_status())
    if not data["authenticated"]:
        suggest("Sign in: dashauth login")
    format_response(data)
