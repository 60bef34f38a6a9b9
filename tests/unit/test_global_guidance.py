"""Unit tests for population-level guidance and overused themes."""

from datetime import timedelta

import pytest

from nrrds.feedback.global_guidance import (
    GlobalGuidanceAggregator,
    GuidanceCache,
    adjusted_sentiment,
)
from nrrds.models import GlobalGuidance, TokenStat
from nrrds.storage.kv import (
    KEY_GUIDANCE_CACHE,
    KEY_RECENT_COMICS,
    KEY_TOKEN_REGISTRY,
    PREFIX_CONCEPT_STATS,
    PREFIX_TOKEN_STATS,
    comic_key,
)


async def put_stat(store, key, positive, negative, updated):
    await store.set(key, {
        "positive": positive,
        "negative": negative,
        "total": positive + negative,
        "last_updated": updated.isoformat(),
    })


def test_adjusted_sentiment_scales_by_confidence():
    stat = TokenStat(positive=20, negative=2, total=22)
    assert adjusted_sentiment(stat, 30) == pytest.approx(0.6)

    confident = TokenStat(positive=0, negative=40, total=40)
    assert adjusted_sentiment(confident, 30) == pytest.approx(-1.0)


def test_classify_respects_min_samples_and_threshold(clock):
    aggregator = GlobalGuidanceAggregator(store=None, cache=object(), clock=clock)
    avoid, encourage = aggregator.classify({
        "funny": TokenStat(positive=20, negative=2, total=22),
        "boring": TokenStat(positive=0, negative=12, total=12),
        "rare": TokenStat(positive=4, negative=0, total=4),
        "mixed": TokenStat(positive=10, negative=8, total=18),
    })

    assert [(t.token, round(t.weight, 3)) for t in encourage] == [("funny", 0.6)]
    assert [(t.token, round(t.weight, 3)) for t in avoid] == [("boring", 0.4)]


@pytest.mark.asyncio
async def test_compute_tokens_and_concepts(store, clock):
    now = clock()
    await store.set(KEY_TOKEN_REGISTRY, ["funny", "stale"])
    await put_stat(store, f"{PREFIX_TOKEN_STATS}funny", 20, 2, now)
    await put_stat(store, f"{PREFIX_TOKEN_STATS}stale", 30, 0, now - timedelta(days=40))
    await put_stat(store, f"{PREFIX_CONCEPT_STATS}coffee", 0, 12, now - timedelta(days=2))

    guidance = await GlobalGuidanceAggregator(store, clock=clock).compute()

    assert [t.token for t in guidance.encourage_tokens] == ["funny"]
    assert guidance.avoid_tokens == []
    assert guidance.avoid_concepts == ["coffee"]
    assert guidance.concept_weights["coffee"] == pytest.approx(0.4)


@pytest.mark.asyncio
async def test_global_guidance_is_cached_until_invalidated(store, clock):
    await store.set(KEY_TOKEN_REGISTRY, ["funny"])
    await put_stat(store, f"{PREFIX_TOKEN_STATS}funny", 20, 2, clock())
    cache = GuidanceCache(store)
    aggregator = GlobalGuidanceAggregator(store, cache, clock=clock)

    first = await aggregator.get_global_guidance()
    assert first.ok
    assert await store.exists(KEY_GUIDANCE_CACHE)

    await put_stat(store, f"{PREFIX_TOKEN_STATS}funny", 2, 20, clock())
    cached = await aggregator.get_global_guidance()
    assert [t.token for t in cached.value.encourage_tokens] == ["funny"]

    await cache.invalidate()
    fresh = await aggregator.get_global_guidance()
    assert [t.token for t in fresh.value.avoid_tokens] == ["funny"]


@pytest.mark.asyncio
async def test_cache_expires(store, clock):
    cache = GuidanceCache(store, ttl=300)
    await cache.put(GlobalGuidance(encourage_concepts=["tech"]))
    assert (await cache.get()).encourage_concepts == ["tech"]

    clock.now += timedelta(seconds=301)
    assert await cache.get() is None


@pytest.mark.asyncio
async def test_global_guidance_store_failure(broken_store):
    result = await GlobalGuidanceAggregator(broken_store).get_global_guidance()

    assert not result.ok
    assert result.value.is_empty


async def seed_recent(store, concept_counts, total=30):
    ids = [f"comic-{i}" for i in range(total)]
    for index, comic_id in enumerate(ids):
        concepts = [c for c, n in concept_counts.items() if index < n]
        await store.set(comic_key(comic_id), {"id": comic_id, "concepts": concepts})
        await store.lpush(KEY_RECENT_COMICS, comic_id)


@pytest.mark.asyncio
async def test_overused_themes(store):
    """Baseline concepts trip at 25%, everything else at 40%."""
    await seed_recent(store, {"coffee": 8, "sleep": 7, "tech": 12, "food": 11})

    result = await GlobalGuidanceAggregator(store).get_overused_themes()

    assert result.ok
    assert sorted(result.value) == ["coffee", "tech"]


@pytest.mark.asyncio
async def test_overused_themes_sample_only_most_recent(store):
    await seed_recent(store, {"tech": 40}, total=40)
    await store.lpush(KEY_RECENT_COMICS, *[f"new-{i}" for i in range(30)])

    result = await GlobalGuidanceAggregator(store).get_overused_themes()

    assert result.value == []


@pytest.mark.asyncio
async def test_overused_themes_empty_and_failure(store, broken_store):
    assert (await GlobalGuidanceAggregator(store).get_overused_themes()).value == []

    degraded = await GlobalGuidanceAggregator(broken_store).get_overused_themes()
    assert not degraded.ok
    assert degraded.value == ["coffee", "sleep"]
