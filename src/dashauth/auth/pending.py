"""Bounded queue of long-lived tokens awaiting persistence.

Providers obtain refresh tokens during sign-in, usually before the
credential service is ready to store them. They put them here, and the
owner of the queue calls :meth:`PendingTokenQueue.drain` once the consumer
(:meth:`~dashauth.credentials.operations.CredentialOperations.store_tokens`)
is usable.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Awaitable, Callable, Optional

from dashauth.exceptions import DashauthError
from dashauth.models import DrainResult, QueuedTokens
from dashauth.output import get_output


class PendingTokenQueue:
    """FIFO of :class:`~dashauth.models.QueuedTokens` with a fixed capacity.

    When full, the oldest entry is dropped to make room.

    Args:
        maxsize: Maximum number of queued entries.
    """

    def __init__(self, maxsize: int = 8) -> None:
        self._items: deque[QueuedTokens] = deque(maxlen=maxsize)

    def put(self, item: QueuedTokens) -> None:
        if len(self._items) == self._items.maxlen:
            dropped = self._items[0]
            get_output().warning(
                f"Pending token queue full, dropping {dropped.provider}/{dropped.account_type}"
            )
        self._items.append(item)
        get_output().debug(
            f"Queued {item.provider}/{item.account_type} tokens ({len(self._items)} pending)"
        )

    def snapshot(self) -> list[QueuedTokens]:
        return list(self._items)

    def take(self, refresh_token: str) -> Optional[QueuedTokens]:
        """Remove and return the entry carrying *refresh_token*, if queued."""
        for item in self._items:
            if item.token_data.get("refresh_token") == refresh_token:
                self._items.remove(item)
                return item
        return None

    def __len__(self) -> int:
        return len(self._items)

    async def drain(
        self, consumer: Callable[[QueuedTokens], Awaitable[Any]]
    ) -> list[DrainResult]:
        """Hand every queued entry to *consumer* and empty the queue.

        The queue is emptied up front, so entries queued while the drain is
        running are kept for the next drain. Failures are reported in the
        returned results and the failed entry is not re-queued.

        Returns:
            One :class:`~dashauth.models.DrainResult` per entry, in queue order.
        """
        items = list(self._items)
        self._items.clear()

        results: list[DrainResult] = []
        for item in items:
            try:
                await consumer(item)
            except DashauthError as exc:
                get_output().warning(
                    f"Could not store {item.provider}/{item.account_type} tokens: {exc}"
                )
                results.append(
                    DrainResult(
                        provider=item.provider,
                        account_type=item.account_type,
                        success=False,
                        error=str(exc),
                    )
                )
            else:
                results.append(
                    DrainResult(
                        provider=item.provider,
                        account_type=item.account_type,
                        success=True,
                    )
                )
        return results
