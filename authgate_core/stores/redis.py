"""
Redis Stores
============
Redis-backed counter and denylist stores.

Counter increments run as a Lua script so that opening a window, bumping the
count and setting expiry happen in one atomic step.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import structlog
from redis import asyncio as aioredis

from ..otp.models import utcnow
from .base import BlockStatus, CounterStore, CounterValue, DenylistEntry, DenylistStore

logger = structlog.get_logger(__name__)

# Lua script for an atomic fixed-window increment
FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local ttl_ms = tonumber(ARGV[1])
local now_ms = tonumber(ARGV[2])

local current_end = tonumber(redis.call('HGET', key, 'expires_at'))
if current_end and current_end <= now_ms then
    redis.call('DEL', key)
end

local count = redis.call('HINCRBY', key, 'count', 1)

if count == 1 then
    redis.call('HSET', key, 'window_start', now_ms, 'expires_at', now_ms + ttl_ms)
    redis.call('PEXPIRE', key, ttl_ms)
end

local window_start = tonumber(redis.call('HGET', key, 'window_start'))
local expires_at = tonumber(redis.call('HGET', key, 'expires_at'))

return {count, window_start, expires_at}
"""

# Lua script that evicts an expired denylist entry only if it was not replaced.
# A missing hash just drops its stale index member.
EVICT_EXPIRED_SCRIPT = """
local stored = redis.call('HGET', KEYS[1], 'expires_at')

if not stored then
    redis.call('ZREM', KEYS[2], ARGV[1])
    return 1
end

if stored ~= '' and stored == ARGV[2] and tonumber(stored) <= tonumber(ARGV[3]) then
    redis.call('DEL', KEYS[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
    return 1
end

return 0
"""


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def _to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _from_ms(value) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class RedisCounterStore(CounterStore):
    """
    Fixed-window counters in Redis hashes.

    Key TTL evicts finished windows; the stored ``expires_at`` is the
    authoritative window end.
    """

    def __init__(
        self,
        redis_client,
        prefix: str = "authgate:counter:",
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            redis_client: Async Redis client (redis.asyncio.Redis)
            prefix: Key namespace
            clock: Source of the current time
        """
        self.redis = redis_client
        self.prefix = prefix
        self._clock = clock
        self._script_sha: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCounterStore":
        """Build a store with its own client from a redis:// URL."""
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    async def _ensure_script(self) -> str:
        """Load Lua script into Redis if needed."""
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(FIXED_WINDOW_SCRIPT)
        return self._script_sha

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def increment(self, key: str, window_ttl_seconds: int) -> CounterValue:
        script_sha = await self._ensure_script()
        count, window_start, expires_at = await self.redis.evalsha(
            script_sha,
            1,
            self._key(key),
            window_ttl_seconds * 1000,
            _to_ms(self._clock()),
        )
        return CounterValue(
            key=key,
            count=int(count),
            window_start=_from_ms(window_start),
            expires_at=_from_ms(expires_at),
        )

    async def get(self, key: str) -> Optional[CounterValue]:
        count, window_start, expires_at = await self.redis.hmget(
            self._key(key), "count", "window_start", "expires_at"
        )
        if count is None or expires_at is None:
            return None

        expires = _from_ms(_text(expires_at))
        if self._clock() >= expires:
            return None
        return CounterValue(
            key=key,
            count=int(_text(count)),
            window_start=_from_ms(_text(window_start)),
            expires_at=expires,
        )

    async def reset(self, key: str) -> None:
        await self.redis.delete(self._key(key))


class RedisDenylistStore(DenylistStore):
    """
    Denylist entries as Redis hashes plus a sorted-set index by creation time.

    Entries with an expiry also get a matching key expiry for cleanup. Lazy
    eviction on read is a conditional Lua script, so an entry written between
    the read and the eviction survives.
    """

    def __init__(
        self,
        redis_client,
        prefix: str = "authgate:denylist:",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self.index_key = f"{prefix}index"
        self._clock = clock
        self._script_sha: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisDenylistStore":
        """Build a store with its own client from a redis:// URL."""
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, identifier_hash: str) -> str:
        return f"{self.prefix}entry:{identifier_hash}"

    async def add(
        self,
        identifier_hash: str,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        now = self._clock()
        key = self._key(identifier_hash)

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping={
                "reason": reason,
                "created_at": _to_ms(now),
                "expires_at": _to_ms(expires_at) if expires_at else "",
            })
            if expires_at:
                pipe.pexpireat(key, _to_ms(expires_at))
            pipe.zadd(self.index_key, {identifier_hash: _to_ms(now)})
            await pipe.execute()

        logger.info("Identifier denylisted", identifier_hash=identifier_hash[:16], reason=reason)

    async def remove(self, identifier_hash: str) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._key(identifier_hash))
            pipe.zrem(self.index_key, identifier_hash)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def _ensure_script(self) -> str:
        """Load Lua script into Redis if needed."""
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(EVICT_EXPIRED_SCRIPT)
        return self._script_sha

    async def _load_data(self, identifier_hash: str) -> Optional[Dict[str, str]]:
        raw = await self.redis.hgetall(self._key(identifier_hash))
        if not raw:
            return None
        return {_text(k): _text(v) for k, v in raw.items()}

    @staticmethod
    def _entry(identifier_hash: str, data: Dict[str, str]) -> DenylistEntry:
        expires_at = data.get("expires_at")
        return DenylistEntry(
            identifier_hash=identifier_hash,
            reason=data.get("reason") or "",
            created_at=_from_ms(data["created_at"]),
            expires_at=_from_ms(expires_at) if expires_at else None,
        )

    async def _evict(self, identifier_hash: str, observed_expires_at: str) -> bool:
        """
        Drop an expired entry only if it is still the version that was read.

        Returns:
            True if the entry (or its stale index member) was removed
        """
        script_sha = await self._ensure_script()
        evicted = await self.redis.evalsha(
            script_sha,
            2,
            self._key(identifier_hash),
            self.index_key,
            identifier_hash,
            observed_expires_at,
            _to_ms(self._clock()),
        )
        return bool(int(evicted))

    async def _active_entry(self, identifier_hash: str) -> Optional[DenylistEntry]:
        data = await self._load_data(identifier_hash)
        if data is None:
            return None

        entry = self._entry(identifier_hash, data)
        if not entry.is_expired(self._clock()):
            return entry
        if await self._evict(identifier_hash, data.get("expires_at") or ""):
            return None

        # Replaced between the read and the eviction
        data = await self._load_data(identifier_hash)
        if data is None:
            return None
        entry = self._entry(identifier_hash, data)
        return None if entry.is_expired(self._clock()) else entry

    async def is_blocked(self, identifier_hash: str) -> BlockStatus:
        entry = await self._active_entry(identifier_hash)
        if entry is None:
            return BlockStatus(blocked=False)
        return BlockStatus(blocked=True, reason=entry.reason, expires_at=entry.expires_at)

    async def list(self, limit: int = 100) -> List[DenylistEntry]:
        entries: List[DenylistEntry] = []
        hashes = await self.redis.zrevrange(self.index_key, 0, -1)

        for raw_hash in hashes:
            if len(entries) >= limit:
                break
            identifier_hash = _text(raw_hash)
            entry = await self._active_entry(identifier_hash)
            if entry is None:
                # Prunes index members whose hash already expired
                await self._evict(identifier_hash, "")
                continue
            entries.append(entry)

        return entries
