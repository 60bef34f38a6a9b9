"""Redis key-value layer for comics, feedback statistics and preferences.

Provides the primitive verbs the generator and feedback recorder rely on:
- strings (JSON-encoded values) with optional TTL
- hashes with integer/float increments
- capped lists
- sets and sorted sets

When Redis is unreachable the store falls back to an in-process map with the
same TTL semantics, which is also what the test-suite runs against.
"""

import json
import time
from typing import Any, Callable, Optional

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from ..config import settings
from ..core.exceptions import StorageDegradedError

# Key namespaces
PREFIX_COMIC = "comic:"
PREFIX_USER = "user:"
PREFIX_TOKEN_STATS = "token_stats:"
PREFIX_CONCEPT_STATS = "concept_stats:"
PREFIX_REACTION = "reaction:"
PREFIX_ANALYTICS_DAILY = "analytics:daily:"
PREFIX_ANALYTICS_HOURLY = "analytics:hourly:"
PREFIX_ANALYTICS_ACTIVE = "analytics:active_users:"
KEY_TOKEN_REGISTRY = "token_registry"
KEY_GUIDANCE_CACHE = "token_guidance_cache"
KEY_RECENT_COMICS = "comics:recent"
KEY_POPULAR_COMICS = "comics:popular"
KEY_COMIC_COUNTERS = "stats:comics"
KEY_REACTION_TYPES = "analytics:reaction_types"


def comic_key(comic_id: str) -> str:
    return f"{PREFIX_COMIC}{comic_id}"


def comic_stats_key(comic_id: str) -> str:
    return f"{PREFIX_COMIC}{comic_id}:stats"


def comic_reactions_key(comic_id: str) -> str:
    return f"{PREFIX_COMIC}{comic_id}:reactions"


def comic_users_key(comic_id: str) -> str:
    return f"{PREFIX_COMIC}{comic_id}:users"


def user_key(user_id: str, suffix: str) -> str:
    return f"{PREFIX_USER}{user_id}:{suffix}"


def _encode(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def _decode(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


def _normalize_range(start: int, stop: int, length: int) -> tuple[int, int]:
    """Convert Redis inclusive (possibly negative) indices to a Python slice."""
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop = length + stop
    stop = min(stop, length - 1)
    if stop < start:
        return 0, 0
    return start, stop + 1


class KeyValueStore:
    """Redis-backed store with fallback to an in-memory map.

    Missing keys yield ``None`` / empty containers, never errors. Backend
    failures surface as StorageDegradedError so callers can pick a default.
    """

    def __init__(
        self,
        url: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url or settings.REDIS_URL
        self.redis: Optional[redis.Redis] = None
        self._memory: dict[str, tuple[Any, Optional[float]]] = {}
        self._connected = False
        self._clock = clock

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self):
        """Connect to Redis server."""
        try:
            self.redis = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            await self.redis.ping()
            self._connected = True
            logger.info(f"Connected to Redis at {self.url}")
        except (RedisError, OSError) as e:
            logger.warning(f"Redis connection failed: {e}, using in-memory store")
            self.redis = None
            self._connected = False

    async def close(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a Redis command, translating backend errors."""
        try:
            return await fn(*args)
        except (RedisError, OSError) as e:
            logger.error(f"Redis {operation} error: {e}")
            raise StorageDegradedError(operation, str(e)) from e

    # ------------------------------------------------------------------
    # In-memory helpers
    # ------------------------------------------------------------------

    def _live(self, key: str) -> Any:
        cached = self._memory.get(key)
        if cached is None:
            return None
        value, expires_at = cached
        if expires_at is not None and expires_at <= self._clock():
            del self._memory[key]
            return None
        return value

    def _store(self, key: str, value: Any, ttl: Optional[int] = None):
        expires_at = self._clock() + ttl if ttl else None
        self._memory[key] = (value, expires_at)

    def _container(self, key: str, factory: Callable[[], Any]) -> Any:
        value = self._live(key)
        if value is None:
            value = factory()
            self._store(key, value)
        return value

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Get a value, JSON-decoded when possible."""
        if self._connected and self.redis:
            raw = await self._call("get", self.redis.get, key)
        else:
            raw = self._live(key)
        return _decode(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a value (JSON-encoded unless already a string) with optional TTL."""
        serialized = _encode(value)
        if self._connected and self.redis:
            if ttl:
                await self._call("set", self.redis.setex, key, ttl, serialized)
            else:
                await self._call("set", self.redis.set, key, serialized)
        else:
            self._store(key, serialized, ttl)
        return True

    async def mget(self, keys: list[str]) -> list[Any]:
        """Get many values at once; missing keys come back as None."""
        if not keys:
            return []
        if self._connected and self.redis:
            raw = await self._call("mget", self.redis.mget, keys)
        else:
            raw = [self._live(k) for k in keys]
        return [_decode(v) for v in raw]

    async def exists(self, key: str) -> bool:
        if self._connected and self.redis:
            return bool(await self._call("exists", self.redis.exists, key))
        return self._live(key) is not None

    async def delete(self, key: str) -> bool:
        """Delete a key."""
        if self._connected and self.redis:
            await self._call("delete", self.redis.delete, key)
        else:
            self._memory.pop(key, None)
        return True

    async def expire(self, key: str, ttl: int) -> bool:
        """Set a TTL on an existing key."""
        if self._connected and self.redis:
            return bool(await self._call("expire", self.redis.expire, key, ttl))
        value = self._live(key)
        if value is None:
            return False
        self._store(key, value, ttl)
        return True

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    async def hget(self, key: str, field: str) -> Optional[str]:
        if self._connected and self.redis:
            return await self._call("hget", self.redis.hget, key, field)
        return (self._live(key) or {}).get(field)

    async def hset(self, key: str, field: str, value: Any) -> int:
        if self._connected and self.redis:
            return await self._call("hset", self.redis.hset, key, field, str(value))
        mapping = self._container(key, dict)
        created = field not in mapping
        mapping[field] = str(value)
        return int(created)

    async def hgetall(self, key: str) -> dict[str, str]:
        if self._connected and self.redis:
            return await self._call("hgetall", self.redis.hgetall, key) or {}
        return dict(self._live(key) or {})

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        if self._connected and self.redis:
            return await self._call("hincrby", self.redis.hincrby, key, field, amount)
        mapping = self._container(key, dict)
        value = int(mapping.get(field, 0)) + amount
        mapping[field] = str(value)
        return value

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        if self._connected and self.redis:
            return float(await self._call("hincrbyfloat", self.redis.hincrbyfloat, key, field, amount))
        mapping = self._container(key, dict)
        value = float(mapping.get(field, 0)) + amount
        mapping[field] = repr(value)
        return value

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def lpush(self, key: str, *values: Any) -> int:
        encoded = [_encode(v) for v in values]
        if self._connected and self.redis:
            return await self._call("lpush", self.redis.lpush, key, *encoded)
        items = self._container(key, list)
        for value in encoded:
            items.insert(0, value)
        return len(items)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        if self._connected and self.redis:
            return await self._call("lrange", self.redis.lrange, key, start, stop) or []
        items = self._live(key) or []
        lo, hi = _normalize_range(start, stop, len(items))
        return list(items[lo:hi])

    async def ltrim(self, key: str, start: int, stop: int) -> bool:
        if self._connected and self.redis:
            await self._call("ltrim", self.redis.ltrim, key, start, stop)
            return True
        items = self._live(key)
        if items is not None:
            lo, hi = _normalize_range(start, stop, len(items))
            items[:] = items[lo:hi]
        return True

    # ------------------------------------------------------------------
    # Sets and sorted sets
    # ------------------------------------------------------------------

    async def sadd(self, key: str, *members: str) -> int:
        if self._connected and self.redis:
            return await self._call("sadd", self.redis.sadd, key, *members)
        current = self._container(key, set)
        before = len(current)
        current.update(members)
        return len(current) - before

    async def scard(self, key: str) -> int:
        if self._connected and self.redis:
            return await self._call("scard", self.redis.scard, key) or 0
        return len(self._live(key) or ())

    async def zadd(self, key: str, member: str, score: float) -> int:
        if self._connected and self.redis:
            return await self._call("zadd", self.redis.zadd, key, {member: score})
        scores = self._container(key, dict)
        created = member not in scores
        scores[member] = float(score)
        return int(created)

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        if self._connected and self.redis:
            return await self._call("zremrangebyrank", self.redis.zremrangebyrank, key, start, stop)
        scores = self._live(key)
        if not scores:
            return 0
        ranked = sorted(scores, key=lambda m: (scores[m], m))
        lo, hi = _normalize_range(start, stop, len(ranked))
        removed = ranked[lo:hi]
        for member in removed:
            del scores[member]
        return len(removed)

    async def zrevrange(self, key: str, start: int, stop: int) -> list[str]:
        """Members ordered by descending score."""
        if self._connected and self.redis:
            return await self._call("zrevrange", self.redis.zrevrange, key, start, stop) or []
        scores = self._live(key) or {}
        ranked = sorted(scores, key=lambda m: (scores[m], m), reverse=True)
        lo, hi = _normalize_range(start, stop, len(ranked))
        return ranked[lo:hi]
