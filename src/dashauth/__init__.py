"""dashauth -- authentication and service-credential lifecycle for the dashboard.

This package signs a user in against an OAuth identity provider on whatever
host the dashboard runs on (desktop browser, embedded web view, TV, or a
native app shell), then keeps a short-lived backend service credential (a
signed JWT) alive for every authorized backend call.

Typical wiring::

    from dashauth.bootstrap import create_auth_stack

    stack = create_auth_stack(config, signals=signals, token_store=store)
    await stack.startup()
    token = await stack.operations.get_valid_token("google", "personal")

Modules:
    platform: Pure host classification and strategy recommendation.
    auth: Provider contract, session persistence, and the coordinator.
    providers: Web code-flow, device-code, and native-bridge providers.
    credentials: Service credential core, backend client, and operations.
    bootstrap: Explicit construction of the whole stack.
    app: Typer CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration loading and credential sources.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stderr diagnostics and stdout data output via Rich.
"""

__version__ = "0.3.0"
