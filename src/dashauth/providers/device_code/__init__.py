"""OAuth2 Device Authorization Grant provider for TVs and terminals."""

from dashauth.providers.device_code.provider import (
    DeviceCodeFlowProvider,
    DevicePrompt,
    TerminalDevicePrompt,
)

__all__ = ["DeviceCodeFlowProvider", "DevicePrompt", "TerminalDevicePrompt"]
