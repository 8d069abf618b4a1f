"""Platform command -- show how a host would sign in."""

from __future__ import annotations

import typer

from dashauth.output import format_response


def platform_command(
    user_agent: str = typer.Argument(help="User-agent string of the host."),
    native_bridge: bool = typer.Option(
        False, "--native-bridge", help="The host exposes a native sign-in bridge."
    ),
) -> None:
    """Classify a host and print the sign-in strategy it gets.

    Example::

        dashauth platform "Mozilla/5.0 (Linux; Android 9; AFTMM) ..." --native-bridge
    """
    from dashauth.platform import classify, recommend_strategy, signals_from_user_agent

    signals = signals_from_user_agent(user_agent, native_bridge=native_bridge)
    classification = classify(signals)
    format_response(
        {
            "platform": classification.platform.value,
            "device": classification.device.value,
            "native_bridge": signals.native_bridge,
            "strategy": recommend_strategy(signals, classification).value,
        }
    )
