"""OAuth2 Authorization Code provider for browsers and embedded web views."""

from dashauth.providers.web_code_flow.provider import (
    ConfirmCallback,
    Navigator,
    WebCodeFlowProvider,
    is_stale_session_error,
)

__all__ = ["ConfirmCallback", "Navigator", "WebCodeFlowProvider", "is_stale_session_error"]
