"""Service commands -- calls authorized through the service credential.

``dashauth token`` hands out a provider access token stored with the
backend; ``dashauth settings`` reads and writes the dashboard settings.
Each invocation restores the saved session, brings the credential service
up and renews the service credential when it is inside its expiry buffer.
"""

from __future__ import annotations

import json
from typing import Any

import typer

from dashauth.commands.common import cli_stack, load_cli_config, require_service, run
from dashauth.output import error, format_response, get_output, success


settings_app = typer.Typer(no_args_is_help=True)


def token_command(
    ctx: typer.Context,
    provider: str = typer.Argument("google", help="Token provider."),
    account: str = typer.Argument("personal", help="Account type."),
    raw: bool = typer.Option(False, "--raw", help="Print only the access token."),
) -> None:
    """Print a valid access token for PROVIDER / ACCOUNT.

    Example::

        dashauth token
        dashauth token google work --raw
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _token() -> Any:
        async with stack:
            await require_service(stack)
            return await stack.operations.get_valid_token(provider, account)

    token = run(_token())
    if raw:
        get_output().print_data(token.access_token)
        return
    format_response(
        {
            "provider": provider,
            "account_type": account,
            **token.model_dump(mode="json"),
        }
    )


@settings_app.command("show")
def settings_show(ctx: typer.Context) -> None:
    """Show the settings stored by the backend.

    Example::

        dashauth settings show --json
    """
    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _load() -> dict[str, Any]:
        async with stack:
            await require_service(stack)
            return await stack.operations.load_settings()

    format_response(run(_load()))


@settings_app.command("set")
def settings_set(
    ctx: typer.Context,
    key: str = typer.Argument(help="Settings key (dot notation, e.g. 'display.theme')."),
    value: str = typer.Argument(help="Value; parsed as JSON when possible."),
) -> None:
    """Change one setting and save the settings back.

    Example::

        dashauth settings set display.theme dark
        dashauth settings set photos.interval 30
    """
    keys = key.split(".")
    if not all(keys):
        error(f"Invalid settings key: {key}")
        raise typer.Exit(code=2)
    parsed = _parse_value(value)

    config = load_cli_config(ctx)
    stack = cli_stack(config)

    async def _update() -> None:
        async with stack:
            await require_service(stack)
            settings = await stack.operations.load_settings()
            target = settings
            for k in keys[:-1]:
                if not isinstance(target.get(k), dict):
                    target[k] = {}
                target = target[k]
            target[keys[-1]] = parsed
            await stack.operations.save_settings(settings)

    run(_update())
    success(f"Set {key} = {parsed!r}")


def _parse_value(value: str) -> Any:  # noqa: ANN401
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value
