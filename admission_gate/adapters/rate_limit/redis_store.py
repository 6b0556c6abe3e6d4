"""Redis-backed rate limit store.

Layout:
    {prefix}:clients        SET of per-client keys (lets cleanup sweep globally)
    {prefix}:c:{client_id}  ZSET of request records, score = UNIX timestamp

Members carry a random suffix so two records with the same timestamp are
both kept. Every write also trims the client's own key and refreshes its
expiry, so an idle client's key disappears on its own even if no sweep ever
reaches it.

Global cleanup is incremental: each ``delete_older_than`` call trims one
``SSCAN`` page of the client index and remembers the cursor for the next
call. Trimming a key and dropping it from the index happen in one Lua
script, so a concurrent ``record`` can never leave a live key unindexed.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from admission_gate.adapters.rate_limit.base import AbstractRateLimitStore, RequestRecord
from admission_gate.core.errors import StoreAppError

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_COUNT = 200

# KEYS[1] client zset, KEYS[2] client index set
# ARGV[1] window start, ARGV[2] timestamp, ARGV[3] limit, ARGV[4] member,
# ARGV[5] ttl seconds (0 disables expiry)
RECORD_IF_BELOW_LUA = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', '(' .. ARGV[1])
local count = redis.call('ZCOUNT', KEYS[1], ARGV[1], '+inf')
if count >= tonumber(ARGV[3]) then
    return -1
end
redis.call('ZADD', KEYS[1], ARGV[2], ARGV[4])
redis.call('SADD', KEYS[2], KEYS[1])
if tonumber(ARGV[5]) > 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[5])
end
return count
"""

# KEYS[1] client index set, KEYS[2..n] client zsets
# ARGV[1] threshold (exclusive upper bound of what is removed)
TRIM_KEYS_LUA = """
local removed = 0
for i = 2, #KEYS do
    removed = removed + redis.call('ZREMRANGEBYSCORE', KEYS[i], '-inf', '(' .. ARGV[1])
    if redis.call('ZCARD', KEYS[i]) == 0 then
        redis.call('SREM', KEYS[1], KEYS[i])
    end
end
return removed
"""


class RedisRateLimitStore(AbstractRateLimitStore):
    """Store keeping one sorted set per client.

    Args:
        redis_client: An async Redis client (redis.asyncio.Redis compatible).
        key_prefix: Namespace for every key written by the store.
        record_ttl_seconds: Expiry applied to a client's key on every write.
            Records older than this are also trimmed from the key being
            written. None disables both.
        sweep_count: ``SSCAN`` page size used by one ``delete_older_than`` call.
    """

    backend = "redis"
    supports_atomic = True

    def __init__(
        self,
        *,
        redis_client: Any,
        key_prefix: str = "rate_limits",
        record_ttl_seconds: int | None = None,
        sweep_count: int = DEFAULT_SWEEP_COUNT,
    ) -> None:
        self.redis = redis_client
        self.record_ttl_seconds = record_ttl_seconds
        self.sweep_count = sweep_count
        self._prefix = key_prefix
        self._index_key = f"{key_prefix}:clients"
        self._sweep_cursor = 0
        self._record_if_below = redis_client.register_script(RECORD_IF_BELOW_LUA)
        self._trim_keys = redis_client.register_script(TRIM_KEYS_LUA)

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        *,
        key_prefix: str = "rate_limits",
        timeout_seconds: float = 2.0,
        record_ttl_seconds: int | None = None,
    ) -> "RedisRateLimitStore":
        client = Redis.from_url(
            redis_url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(redis_client=client, key_prefix=key_prefix, record_ttl_seconds=record_ttl_seconds)

    @property
    def index_key(self) -> str:
        return self._index_key

    def client_key(self, client_id: str) -> str:
        return f"{self._prefix}:c:{client_id}"

    async def record(self, client_id: str, timestamp: float) -> None:
        key = self.client_key(client_id)
        try:
            pipe = self.redis.pipeline(transaction=True)
            if self.record_ttl_seconds:
                pipe.zremrangebyscore(key, "-inf", f"({timestamp - self.record_ttl_seconds}")
            pipe.zadd(key, {self._member(timestamp): timestamp})
            pipe.sadd(self._index_key, key)
            if self.record_ttl_seconds:
                pipe.expire(key, self.record_ttl_seconds)
            await pipe.execute()
        except RedisError as exc:
            raise self._store_error("record", exc) from exc

    async def count_since(self, client_id: str, since: float) -> int:
        try:
            return int(await self.redis.zcount(self.client_key(client_id), since, "+inf"))
        except RedisError as exc:
            raise self._store_error("count_since", exc) from exc

    async def delete_older_than(self, threshold: float) -> int:
        """Trim the next page of indexed clients.

        Cost per call is bounded by ``sweep_count``. The cursor wraps to 0
        once the whole index has been visited.
        """
        try:
            cursor, raw_keys = await self.redis.sscan(
                self._index_key, cursor=self._sweep_cursor, count=self.sweep_count
            )
            self._sweep_cursor = int(cursor)
            if not raw_keys:
                return 0
            keys = [k.decode() if isinstance(k, bytes) else k for k in raw_keys]
            removed = await self._trim_keys(keys=[self._index_key, *keys], args=[threshold])
        except RedisError as exc:
            raise self._store_error("delete_older_than", exc) from exc
        return int(removed)

    async def oldest_since(self, client_id: str, since: float) -> RequestRecord | None:
        try:
            rows = await self.redis.zrangebyscore(
                self.client_key(client_id), since, "+inf", start=0, num=1, withscores=True
            )
        except RedisError as exc:
            raise self._store_error("oldest_since", exc) from exc
        if not rows:
            return None
        _, score = rows[0]
        return RequestRecord(client_id=client_id, recorded_at=float(score))

    async def record_if_below(
        self,
        client_id: str,
        timestamp: float,
        since: float,
        limit: int,
    ) -> int | None:
        try:
            count = await self._record_if_below(
                keys=[self.client_key(client_id), self._index_key],
                args=[since, timestamp, limit, self._member(timestamp), self.record_ttl_seconds or 0],
            )
        except RedisError as exc:
            raise self._store_error("record_if_below", exc) from exc
        count = int(count)
        return None if count < 0 else count

    async def close(self) -> None:
        await self.redis.aclose()

    @staticmethod
    def _member(timestamp: float) -> str:
        return f"{timestamp:.6f}:{uuid.uuid4().hex}"

    def _store_error(self, operation: str, exc: Exception) -> StoreAppError:
        logger.debug(
            "rate_limit_store.error",
            extra={"backend": self.backend, "operation": operation, "error_type": type(exc).__name__},
        )
        return StoreAppError(
            code="rate_limit_store_error",
            message=f"Redis store operation '{operation}' failed",
            details={"backend": self.backend, "operation": operation},
        )
