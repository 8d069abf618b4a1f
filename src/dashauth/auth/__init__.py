"""Provider-based authentication for dashauth.

The main entry points are:

- :class:`AuthProvider` -- abstract base class every sign-in strategy extends.
- :class:`AuthCoordinator` -- selects a provider for the host, restores
  sessions, and orchestrates sign-in, sign-out, and fallback.
- :class:`ProviderRegistry` -- strategy name to provider mapping.
- :class:`TokenStore`, :class:`FileTokenStore`, :class:`MemoryTokenStore` --
  identity snapshot persistence.
- :class:`PendingTokenQueue` -- refresh tokens waiting for the credential
  service.

Typical usage::

    coordinator = AuthCoordinator(signals, FileTokenStore(), registry)
    if not await coordinator.init():
        result = await coordinator.sign_in()
"""

from dashauth.auth.base import AuthProvider
from dashauth.auth.coordinator import AuthCoordinator
from dashauth.auth.pending import PendingTokenQueue
from dashauth.auth.registry import ProviderRegistry
from dashauth.auth.token_store import FileTokenStore, MemoryTokenStore, TokenStore
from dashauth.auth.ui import NullSignInUI, SignInUI, TerminalSignInUI

__all__ = [
    "AuthCoordinator",
    "AuthProvider",
    "FileTokenStore",
    "MemoryTokenStore",
    "NullSignInUI",
    "PendingTokenQueue",
    "ProviderRegistry",
    "SignInUI",
    "TerminalSignInUI",
    "TokenStore",
]
