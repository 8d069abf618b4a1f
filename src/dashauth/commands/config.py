"""Config commands -- view and modify the dashauth configuration.

Settings are persisted as ``config.json`` in the dashauth config directory
and validated against :class:`~dashauth.models.AppConfig` before saving.
Secrets never go here literally: use credential sources such as
``env:DASHAUTH_ANON_KEY`` or ``file:/path``.
"""

from __future__ import annotations

from typing import Any

import typer

from dashauth.commands.common import load_cli_config
from dashauth.exceptions import ConfigurationError
from dashauth.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration.

    Example::

        dashauth config show
        dashauth --config ./dashauth.yaml config show --json
    """
    from dashauth.config import get_config_dir

    config = load_cli_config(ctx)
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key (dot notation, e.g. 'backend.url')."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a value in the user config file.

    The value is coerced to the type of the current field (bool, int,
    float or str).

    Example::

        dashauth config set backend.url https://abc.supabase.co
        dashauth config set backend.anon_key_source env:DASHAUTH_ANON_KEY
        dashauth config set service.proactive_refresh false
    """
    from dashauth.config import load_config, save_config
    from dashauth.models import AppConfig

    try:
        config = load_config()
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    current = target[final_key]
    coerced: Any = value
    if isinstance(current, bool):
        coerced = value.lower() in ("true", "1", "yes")
    elif isinstance(current, (int, float)):
        try:
            coerced = type(current)(value)
        except ValueError:
            error(f"Expected {type(current).__name__} for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    elif isinstance(current, list):
        coerced = [v.strip() for v in value.split(",") if v.strip()]

    target[final_key] = coerced

    try:
        new_config = AppConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    path = save_config(new_config)
    success(f"Set {key} = {coerced}")
    info(f"Saved to {path}")
