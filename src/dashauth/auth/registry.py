"""Provider registry keyed by strategy name.

The :class:`ProviderRegistry` is owned by the
:class:`~dashauth.auth.coordinator.AuthCoordinator`; nothing else mutates it.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from dashauth.auth.base import AuthProvider
from dashauth.exceptions import ProviderUnavailable
from dashauth.models import ProviderDescriptor


class ProviderRegistry:
    """Maps strategy names to provider instances.

    Example::

        registry = ProviderRegistry([DeviceCodeFlowProvider(config)])
        provider = registry.get("device_flow")
    """

    def __init__(self, providers: Iterable[AuthProvider] = ()) -> None:
        self._providers: dict[str, AuthProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: AuthProvider) -> None:
        """Register *provider* under its :attr:`~AuthProvider.name`, replacing any previous one."""
        self._providers[provider.name] = provider

    def get(self, name: str) -> AuthProvider:
        """Return the provider registered for *name*.

        Raises:
            ProviderUnavailable: If no provider is registered under *name*.
        """
        provider = self._providers.get(name)
        if provider is None:
            available = ", ".join(sorted(self._providers)) or "(none)"
            raise ProviderUnavailable(
                f"No auth provider registered for '{name}'. Available: {available}"
            )
        return provider

    def find(self, name: str) -> Optional[AuthProvider]:
        return self._providers.get(name)

    def first(self) -> Optional[AuthProvider]:
        """The earliest registered provider, or ``None`` when empty."""
        return next(iter(self._providers.values()), None)

    def names(self) -> list[str]:
        return sorted(self._providers)

    def descriptors(self) -> list[ProviderDescriptor]:
        return [self._providers[n].get_provider_info() for n in self.names()]

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[AuthProvider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)
