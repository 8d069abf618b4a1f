"""Disk persistence of the service credential between runs.

Uses :mod:`diskcache` so a restarted process can reuse a still-valid service
credential for the same user instead of negotiating a new one. Entries
expire together with the credential they hold.

Keys are SHA-256 hashes of the lower-cased user email, so the cache
directory does not reveal who signed in.
"""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import Optional

import diskcache

from dashauth.models import CacheConfig, ServiceCredential


class ServiceCredentialCache:
    """Per-user store of :class:`~dashauth.models.ServiceCredential`.

    Args:
        cache_dir: Root directory. A ``credentials/`` subdirectory is
            created inside it.
        config: ``enabled`` switch.

    Example::

        cache = ServiceCredentialCache(get_cache_dir(), CacheConfig())
        cache.save(credential)
        again = cache.load("user@example.com")
    """

    def __init__(self, cache_dir: str | Path, config: CacheConfig) -> None:
        self._config = config
        self._directory = Path(cache_dir) / "credentials"
        self._cache: Optional[diskcache.Cache] = None
        if config.enabled:
            self._cache = diskcache.Cache(str(self._directory))

    def load(self, email: Optional[str]) -> Optional[ServiceCredential]:
        """Return the credential saved for *email*, or ``None``."""
        if self._cache is None or not email:
            return None
        data = self._cache.get(self._make_key(email))
        if data is None:
            return None
        try:
            return ServiceCredential.model_validate(data)
        except ValueError:
            self._cache.delete(self._make_key(email))
            return None

    def save(self, credential: ServiceCredential) -> None:
        """Persist *credential* until it expires. Skipped without a user email."""
        if self._cache is None or not credential.user_email:
            return
        ttl = (credential.expires_at_ms - int(time.time() * 1000)) / 1000
        if ttl <= 0:
            return
        self._cache.set(
            self._make_key(credential.user_email),
            credential.model_dump(mode="json"),
            expire=ttl,
        )

    def invalidate(self, email: str) -> None:
        if self._cache is not None:
            self._cache.delete(self._make_key(email))

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()

    def _make_key(self, email: str) -> str:
        return hashlib.sha256(email.strip().lower().encode()).hexdigest()
