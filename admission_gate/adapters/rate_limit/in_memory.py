"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import bisect
import threading

from admission_gate.adapters.rate_limit.base import AbstractRateLimitStore, RequestRecord


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Store keeping a sorted list of timestamps per client.

    Suitable for tests and single-process development. Every invocation of
    the gate in one process shares the same instance, so this is not a
    stand-in for a shared store across processes.
    """

    backend = "memory"
    supports_atomic = True

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records_by_client: dict[str, list[float]] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryRateLimitStore(clients={len(self._records_by_client)}, size={self.size()})"

    def size(self) -> int:
        """Total number of stored records across all clients."""

        with self._lock:
            return sum(len(timestamps) for timestamps in self._records_by_client.values())

    async def record(self, client_id: str, timestamp: float) -> None:
        with self._lock:
            self._insert_locked(client_id, timestamp)

    async def count_since(self, client_id: str, since: float) -> int:
        with self._lock:
            return self._count_locked(client_id, since)

    async def delete_older_than(self, threshold: float) -> int:
        removed = 0
        with self._lock:
            for client_id in list(self._records_by_client):
                timestamps = self._records_by_client[client_id]
                cut = bisect.bisect_left(timestamps, threshold)
                if cut:
                    del timestamps[:cut]
                    removed += cut
                if not timestamps:
                    del self._records_by_client[client_id]
        return removed

    async def oldest_since(self, client_id: str, since: float) -> RequestRecord | None:
        with self._lock:
            timestamps = self._records_by_client.get(client_id, [])
            index = bisect.bisect_left(timestamps, since)
            if index == len(timestamps):
                return None
            return RequestRecord(client_id=client_id, recorded_at=timestamps[index])

    async def record_if_below(
        self,
        client_id: str,
        timestamp: float,
        since: float,
        limit: int,
    ) -> int | None:
        with self._lock:
            count = self._count_locked(client_id, since)
            if count >= limit:
                return None
            self._insert_locked(client_id, timestamp)
            return count

    def _count_locked(self, client_id: str, since: float) -> int:
        timestamps = self._records_by_client.get(client_id, [])
        return len(timestamps) - bisect.bisect_left(timestamps, since)

    def _insert_locked(self, client_id: str, timestamp: float) -> None:
        # insort keeps the list ordered even when clocks hand out equal or
        # slightly out-of-order timestamps.
        bisect.insort(self._records_by_client.setdefault(client_id, []), timestamp)
