"""Account commands -- token sets the backend holds beyond the signed-in one.

``dashauth accounts add`` runs the device flow for a second Google account
and stores its refresh token under a new account type, without touching the
current session. ``dashauth token google <account>`` then hands out its
access token.

Typical workflow::

    dashauth accounts add work --name "Work calendar"
    dashauth accounts list
    dashauth token google work --raw
    dashauth accounts remove google work
"""

from __future__ import annotations

from typing import Any, Optional

import typer

from dashauth.commands.common import cli_stack, load_cli_config, require_service, run
from dashauth.models import Strategy
from dashauth.output import format_response, info, success, suggest

accounts_app = typer.Typer(no_args_is_help=True)


@accounts_app.command("list")
def accounts_list(ctx: typer.Context) -> None:
    """List the accounts stored with the backend.

    Example::

        dashauth accounts list --json
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _list() -> list[dict[str, Any]]:
        async with stack:
            await require_service(stack)
            accounts = await stack.accounts.list_accounts()
            return [a.model_dump(mode="json") for a in accounts]

    accounts = run(_list())
    if not accounts:
        info("No accounts stored.")
        suggest("Add one: dashauth accounts add")
    format_response(accounts)


@accounts_app.command("add")
def accounts_add(
    ctx: typer.Context,
    account: Optional[str] = typer.Argument(
        None, help="Account type to store the tokens under. Generated when omitted."
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name."),
) -> None:
    """Sign in with another account and store its tokens with the backend.

    Example::

        dashauth accounts add work --name "Work calendar"
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _add() -> dict[str, Any]:
        async with stack:
            await require_service(stack)
            added = await stack.accounts.add_account(
                account, display_name=name, provider_name=Strategy.DEVICE_FLOW.value
            )
            return added.model_dump(mode="json")

    added = run(_add())
    success(f"Added account {added['provider']}/{added['account_type']}.")
    format_response(added)


@accounts_app.command("reauthorize")
def accounts_reauthorize(
    ctx: typer.Context,
    provider: str = typer.Argument(help="Token provider, e.g. 'google'."),
    account: str = typer.Argument(help="Account type."),
) -> None:
    """Sign in again for an account whose refresh token stopped working.

    Example::

        dashauth accounts reauthorize google work
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _reauthorize() -> None:
        async with stack:
            await require_service(stack)
            await stack.accounts.reauthorize_account(
                provider, account, provider_name=Strategy.DEVICE_FLOW.value
            )

    run(_reauthorize())
    success(f"Reauthorized {provider}/{account}.")


@accounts_app.command("remove")
def accounts_remove(
    ctx: typer.Context,
    provider: str = typer.Argument(help="Token provider, e.g. 'google'."),
    account: str = typer.Argument(help="Account type."),
) -> None:
    """Remove an account and its tokens from the backend.

    Example::

        dashauth accounts remove google work
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _remove() -> bool:
        async with stack:
            await require_service(stack)
            return await stack.accounts.remove_account(provider, account)

    if run(_remove()):
        success(f"Removed {provider}/{account}.")
    else:
        info(f"No account {provider}/{account}.")
