"""Unit tests for the key-value store's in-memory mode."""

import pytest

from nrrds.core.exceptions import StorageDegradedError
from nrrds.storage.kv import comic_key, comic_stats_key, user_key


def test_key_helpers():
    assert comic_key("abc") == "comic:abc"
    assert comic_stats_key("abc") == "comic:abc:stats"
    assert user_key("u1", "preferences") == "user:u1:preferences"


@pytest.mark.asyncio
async def test_missing_keys_are_empty(store):
    assert await store.get("nope") is None
    assert await store.hgetall("nope") == {}
    assert await store.lrange("nope", 0, -1) == []
    assert await store.scard("nope") == 0
    assert await store.mget(["a", "b"]) == [None, None]
    assert not await store.exists("nope")


@pytest.mark.asyncio
async def test_set_get_json_roundtrip_and_ttl(store, clock):
    await store.set("k", {"a": 1}, ttl=10)
    assert await store.get("k") == {"a": 1}

    clock.now = clock.now.replace(second=clock.now.second + 11)
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_hash_increments(store):
    assert await store.hincrby("h", "total", 1) == 1
    assert await store.hincrby("h", "total", 2) == 3
    assert await store.hincrbyfloat("h", "score", 1.5) == 1.5
    assert await store.hincrbyfloat("h", "score", -2.0) == -0.5

    raw = await store.hgetall("h")
    assert raw["total"] == "3"
    assert float(raw["score"]) == -0.5


@pytest.mark.asyncio
async def test_lists_push_front_and_trim(store):
    for item in ("a", "b", "c", "d"):
        await store.lpush("l", item)
    assert await store.lrange("l", 0, -1) == ["d", "c", "b", "a"]

    await store.ltrim("l", 0, 1)
    assert await store.lrange("l", 0, 49) == ["d", "c"]


@pytest.mark.asyncio
async def test_sets_and_sorted_sets(store):
    assert await store.sadd("s", "u1") == 1
    assert await store.sadd("s", "u1") == 0
    await store.sadd("s", "u2")
    assert await store.scard("s") == 2

    for member, score in (("a", 11), ("b", 30), ("c", 20)):
        await store.zadd("z", member, score)
    assert await store.zrevrange("z", 0, -1) == ["b", "c", "a"]

    # Keep only the top two
    removed = await store.zremrangebyrank("z", 0, -3)
    assert removed == 1
    assert await store.zrevrange("z", 0, -1) == ["b", "c"]


@pytest.mark.asyncio
async def test_expire_and_delete(store, clock):
    await store.sadd("active", "u1")
    assert await store.expire("active", 5)
    assert await store.exists("active")

    await store.delete("active")
    assert not await store.exists("active")
    assert not await store.expire("active", 5)


@pytest.mark.asyncio
async def test_backend_failure_raises_degraded(broken_store):
    with pytest.raises(StorageDegradedError) as exc_info:
        await broken_store.get("anything")
    assert exc_info.value.operation == "get"
