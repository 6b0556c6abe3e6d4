"""Rate limit store interface.

The evaluator depends on this abstraction (not the concrete implementation)
so storage backends can be swapped (memory, SQL, Redis) with no changes to
the admission algorithm.

Stores know nothing about limits or windows beyond the timestamps they are
given: they record, count, look up and delete. Fail-open/fail-closed policy
belongs to the evaluator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RequestRecord:
    """One counted request.

    Attributes:
        client_id: Resolved caller identity.
        recorded_at: UNIX epoch seconds assigned when the record was written.
    """

    client_id: str
    recorded_at: float


class AbstractRateLimitStore(ABC):
    """Interface for shared stores of recent request records.

    Every method may raise ``StoreAppError``. Implementations must not impose a
    uniqueness constraint on ``client_id``.
    """

    #: Name used in logs and error details.
    backend: str = "abstract"

    #: Whether ``record_if_below`` is implemented as a single atomic operation.
    supports_atomic: bool = False

    @abstractmethod
    async def record(self, client_id: str, timestamp: float) -> None:
        """Append one request record.

        Args:
            client_id: Resolved caller identity.
            timestamp: UNIX epoch seconds of the request.
        """
        raise NotImplementedError

    @abstractmethod
    async def count_since(self, client_id: str, since: float) -> int:
        """Count records for ``client_id`` with ``recorded_at >= since``."""
        raise NotImplementedError

    @abstractmethod
    async def delete_older_than(self, threshold: float) -> int:
        """Delete every record (all clients) with ``recorded_at < threshold``.

        Idempotent: calling it again with the same threshold removes nothing.

        Returns:
            Number of records removed.
        """
        raise NotImplementedError

    @abstractmethod
    async def oldest_since(self, client_id: str, since: float) -> RequestRecord | None:
        """Return the oldest record for ``client_id`` with ``recorded_at >= since``."""
        raise NotImplementedError

    async def record_if_below(
        self,
        client_id: str,
        timestamp: float,
        since: float,
        limit: int,
    ) -> int | None:
        """Atomically count and conditionally record.

        Returns:
            The count observed before inserting when the record was written,
            or None when ``limit`` had already been reached.

        Raises:
            NotImplementedError: If the backend has no atomic primitive.
        """
        raise NotImplementedError(f"{self.backend} store has no atomic count-and-record")

    async def close(self) -> None:  # noqa: B027
        """Release connections held by the store."""
