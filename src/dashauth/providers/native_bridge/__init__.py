"""Native-bridge provider and the awaitable adapter over its hook protocol."""

from dashauth.providers.native_bridge.provider import (
    REFRESH_HOOK,
    SIGN_IN_HOOK,
    BridgeCall,
    HookRegistry,
    NativeBridge,
    NativeBridgeProvider,
)

__all__ = [
    "BridgeCall",
    "HookRegistry",
    "NativeBridge",
    "NativeBridgeProvider",
    "REFRESH_HOOK",
    "SIGN_IN_HOOK",
]
