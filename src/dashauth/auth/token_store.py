"""Session persistence for the signed-in identity.

The coordinator talks to a :class:`TokenStore` with ``get``/``set``/``clear``
semantics and does not care where the snapshot lives. Two implementations
ship with the package:

* :class:`FileTokenStore` -- one JSON file under the data directory
  (``~/.local/share/dashauth/session.json`` on XDG platforms), written
  atomically with ``0o600`` permissions.
* :class:`MemoryTokenStore` -- for embedding hosts with their own
  persistence, and for tests.

Both reject snapshots older than ``max_age_days`` and snapshots missing an
email or a name, so a stale or half-written session is never restored.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from dashauth.config import _atomic_write, get_data_dir
from dashauth.models import Identity, StoredSession
from dashauth.output import get_output

_SESSION_FILENAME = "session.json"


@runtime_checkable
class TokenStore(Protocol):
    """Persistence collaborator for the identity snapshot."""

    def get(self) -> Optional[Identity]: ...

    def set(self, identity: Identity) -> None: ...

    def clear(self) -> None: ...


def _is_usable(session: StoredSession, max_age: timedelta) -> bool:
    identity = session.identity
    if not identity.email or not identity.name:
        return False
    saved_at = session.saved_at
    if saved_at.tzinfo is None:
        saved_at = saved_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - saved_at <= max_age


class FileTokenStore:
    """JSON-file backed :class:`TokenStore`.

    Args:
        path: File to use. Defaults to ``session.json`` in
            :func:`~dashauth.config.get_data_dir`.
        max_age_days: Snapshots older than this are discarded on read.
    """

    def __init__(self, path: Optional[Path] = None, max_age_days: int = 7) -> None:
        self._path = path or get_data_dir() / _SESSION_FILENAME
        self._max_age = timedelta(days=max_age_days)

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> Optional[Identity]:
        """Load the saved identity, or ``None`` if absent, unreadable, or stale."""
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            session = StoredSession.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            get_output().debug(f"Ignoring unreadable session file {self._path}: {exc}")
            return None
        if not _is_usable(session, self._max_age):
            get_output().debug("Saved session is stale or incomplete, discarding")
            self.clear()
            return None
        return session.identity

    def set(self, identity: Identity) -> None:
        session = StoredSession(identity=identity)
        text = json.dumps(session.model_dump(mode="json"), indent=2) + "\n"
        _atomic_write(self._path, text, mode=0o600)

    def clear(self) -> None:
        """Delete the session file. A no-op when it is already gone."""
        if self._path.is_file():
            self._path.unlink()


class MemoryTokenStore:
    """In-process :class:`TokenStore`."""

    def __init__(self, max_age_days: int = 7) -> None:
        self._session: Optional[StoredSession] = None
        self._max_age = timedelta(days=max_age_days)

    def get(self) -> Optional[Identity]:
        if self._session is None or not _is_usable(self._session, self._max_age):
            return None
        return self._session.identity

    def set(self, identity: Identity) -> None:
        self._session = StoredSession(identity=identity)

    def set_session(self, session: StoredSession) -> None:
        """Install a raw snapshot, including its ``saved_at`` timestamp."""
        self._session = session

    def clear(self) -> None:
        self._session = None
