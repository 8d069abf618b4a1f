"""Abstract base class for authentication providers.

Every sign-in strategy (web code flow, device code flow, native bridge)
subclasses :class:`AuthProvider`, sets :attr:`~AuthProvider.name` to its
:class:`~dashauth.models.Strategy` value, and implements
:meth:`~AuthProvider.sign_in` and :meth:`~AuthProvider.get_provider_info`.

The base class keeps the live :class:`~dashauth.models.ProviderTokenSet` of
the current session and implements the token accessors on top of it.
Durable storage of long-lived tokens is not the provider's job; refresh
tokens go to the :class:`~dashauth.auth.pending.PendingTokenQueue` and from
there to the credential backend.

See Also:
    :class:`~dashauth.auth.coordinator.AuthCoordinator` -- selects and drives
    providers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from dashauth.exceptions import ProviderUnavailable
from dashauth.models import AuthResult, Identity, ProviderDescriptor, ProviderTokenSet

_SAFETY_MARGIN = timedelta(seconds=30)


class AuthProvider(ABC):
    """Common capability contract of all sign-in providers.

    Subclasses must provide:

    1. A :attr:`name` property returning the strategy identifier
       (``"web_oauth"``, ``"device_flow"``, ``"native"``).
    2. :meth:`sign_in`, which completes authentication or starts an
       external redirect. It raises
       :class:`~dashauth.exceptions.ProviderUnavailable` when the host lacks
       the capability, and :class:`~dashauth.exceptions.Cancelled` when the
       user aborts.
    3. :meth:`get_provider_info`.
    """

    def __init__(self) -> None:
        self._tokens: Optional[ProviderTokenSet] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy identifier this provider implements."""
        ...

    def is_available(self) -> bool:
        """Whether the host offers what this provider needs."""
        return True

    async def initialize(self) -> Optional[AuthResult]:
        """Prepare the provider, possibly completing a pending authentication.

        Returns:
            An :class:`~dashauth.models.AuthResult` when initialization
            itself finished a sign-in (for example a redirect callback), or
            ``None``.
        """
        return None

    async def restore_session(self) -> Optional[Identity]:
        """Return the identity the host already holds, if the provider can tell."""
        return None

    @abstractmethod
    async def sign_in(self) -> AuthResult:
        """Run the provider's sign-in flow."""
        ...

    async def sign_out(self) -> None:
        """Drop the live tokens. Providers with host state override this."""
        self._tokens = None

    @property
    def tokens(self) -> Optional[ProviderTokenSet]:
        return self._tokens

    def restore_tokens(self, tokens: Optional[ProviderTokenSet]) -> None:
        """Reinstate a token set read earlier from :attr:`tokens`."""
        self._tokens = tokens

    def get_access_token(self) -> Optional[str]:
        return self._tokens.access_token if self._tokens else None

    def get_refresh_token(self) -> Optional[str]:
        return self._tokens.refresh_token if self._tokens else None

    def has_valid_tokens(self) -> bool:
        """True when a live access token exists and is not about to expire."""
        if self._tokens is None:
            return False
        return datetime.now(timezone.utc) + _SAFETY_MARGIN < self._tokens.expiry()

    async def refresh_access_token(
        self, refresh_token: Optional[str] = None
    ) -> ProviderTokenSet:
        """Exchange a refresh token for a new access token.

        Raises:
            ProviderUnavailable: If the provider cannot refresh tokens.
        """
        raise ProviderUnavailable(f"Provider '{self.name}' does not support token refresh")

    @abstractmethod
    def get_provider_info(self) -> ProviderDescriptor:
        """Return the provider's capability metadata."""
        ...

    def _require_available(self) -> None:
        if not self.is_available():
            raise ProviderUnavailable(f"Provider '{self.name}' is not available on this host")
