"""Population-level guidance from aggregated reaction statistics."""

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ..config import BASELINE_OVERUSED_CONCEPTS, settings
from ..core.exceptions import StorageDegradedError
from ..core.result import Result
from ..models import GlobalGuidance, TokenStat, WeightedToken, utcnow
from ..storage.kv import (
    KEY_GUIDANCE_CACHE,
    KEY_RECENT_COMICS,
    KEY_TOKEN_REGISTRY,
    PREFIX_CONCEPT_STATS,
    PREFIX_TOKEN_STATS,
    KeyValueStore,
    comic_key,
)
from .signals import CONCEPT_TAXONOMY


class GuidanceCache:
    """TTL cache for computed global guidance, kept in the key-value store.

    Living in the store lets the reaction recorder invalidate it by deleting
    the key.
    """

    def __init__(self, store: KeyValueStore, key: str = KEY_GUIDANCE_CACHE, ttl: int | None = None):
        self.store = store
        self.key = key
        self.ttl = ttl or settings.GUIDANCE_CACHE_TTL

    async def get(self) -> Optional[GlobalGuidance]:
        cached = await self.store.get(self.key)
        if not isinstance(cached, dict):
            return None
        try:
            return GlobalGuidance.model_validate(cached)
        except PydanticValidationError:
            logger.warning("Discarding malformed guidance cache entry")
            return None

    async def put(self, guidance: GlobalGuidance) -> None:
        await self.store.set(self.key, guidance.model_dump(), ttl=self.ttl)

    async def invalidate(self) -> None:
        await self.store.delete(self.key)


def adjusted_sentiment(stat: TokenStat, confidence_samples: int) -> float:
    """Sentiment in [-1, 1] scaled by confidence ``min(total / samples, 1)``."""
    sentiment = (stat.positive - stat.negative) / stat.total
    confidence = min(stat.total / confidence_samples, 1.0)
    return sentiment * confidence


class GlobalGuidanceAggregator:
    """Computes avoid/encourage lists from every user's reactions."""

    def __init__(
        self,
        store: KeyValueStore,
        cache: GuidanceCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache or GuidanceCache(store)
        self._clock = clock
        self.min_samples = settings.GUIDANCE_MIN_SAMPLES
        self.confidence_samples = settings.GUIDANCE_CONFIDENCE_SAMPLES
        self.threshold = settings.GUIDANCE_SENTIMENT_THRESHOLD
        self.window = timedelta(days=settings.STATS_WINDOW_DAYS)

    def classify(self, stats: Dict[str, TokenStat]) -> Tuple[List[WeightedToken], List[WeightedToken]]:
        """Split terms into (avoid, encourage), each weighted by |adjusted sentiment|."""
        avoid, encourage = [], []
        for term, stat in stats.items():
            if stat.total < self.min_samples:
                continue
            adjusted = adjusted_sentiment(stat, self.confidence_samples)
            if adjusted > self.threshold:
                encourage.append(WeightedToken(token=term, weight=adjusted))
            elif adjusted < -self.threshold:
                avoid.append(WeightedToken(token=term, weight=abs(adjusted)))
        return avoid, encourage

    async def _load_stats(self, prefix: str, terms: Iterable[str]) -> Dict[str, TokenStat]:
        terms = list(terms)
        raw = await self.store.mget([f"{prefix}{t}" for t in terms])
        cutoff = self._clock() - self.window

        stats: Dict[str, TokenStat] = {}
        for term, value in zip(terms, raw):
            if not isinstance(value, dict) or not value.get("total"):
                continue
            try:
                stat = TokenStat.model_validate(value)
            except PydanticValidationError:
                logger.debug(f"Skipping malformed stats for {prefix}{term}")
                continue
            updated = stat.last_updated
            if updated.tzinfo is None:
                updated = updated.replace(tzinfo=timezone.utc)
            if updated >= cutoff:
                stats[term] = stat
        return stats

    async def compute(self) -> GlobalGuidance:
        """Fresh guidance from the token registry and the concept taxonomy.

        Raises:
            StorageDegradedError: If the store is failing
        """
        registry = await self.store.get(KEY_TOKEN_REGISTRY)
        tokens = registry if isinstance(registry, list) else []
        token_stats = await self._load_stats(PREFIX_TOKEN_STATS, tokens)
        concept_stats = await self._load_stats(PREFIX_CONCEPT_STATS, CONCEPT_TAXONOMY)

        avoid_tokens, encourage_tokens = self.classify(token_stats)
        avoid_concepts, encourage_concepts = self.classify(concept_stats)

        return GlobalGuidance(
            avoid_tokens=avoid_tokens,
            encourage_tokens=encourage_tokens,
            avoid_concepts=[c.token for c in avoid_concepts],
            encourage_concepts=[c.token for c in encourage_concepts],
            concept_weights={c.token: c.weight for c in avoid_concepts + encourage_concepts},
        )

    async def get_global_guidance(self) -> Result[GlobalGuidance]:
        """Cached guidance, recomputed on a miss; empty guidance on store failure."""
        try:
            cached = await self.cache.get()
            if cached is not None:
                return Result.success(cached)

            guidance = await self.compute()
            await self.cache.put(guidance)
        except StorageDegradedError as e:
            logger.warning(f"Global guidance unavailable, generating without bias: {e}")
            return Result.degraded(GlobalGuidance(), e)

        logger.info(
            f"Global guidance computed: {len(guidance.encourage_tokens)} encourage / "
            f"{len(guidance.avoid_tokens)} avoid tokens"
        )
        return Result.success(guidance)

    async def get_overused_themes(self) -> Result[List[str]]:
        """Concepts appearing too often among the most recent comics.

        A concept is overused when it appears in at least 40% of the sampled
        comics; the baseline concepts need only 25%. Store failures return the
        baseline concepts.
        """
        try:
            recent = await self.store.lrange(KEY_RECENT_COMICS, 0, 49)
            if not recent:
                return Result.success([])

            sample = recent[:settings.OVERUSED_SAMPLE_SIZE]
            comics = await self.store.mget([comic_key(cid) for cid in sample])
        except StorageDegradedError as e:
            logger.warning(f"Overused theme scan failed, avoiding baseline concepts: {e}")
            return Result.degraded(list(BASELINE_OVERUSED_CONCEPTS), e)

        counts: Dict[str, int] = {}
        for comic in comics:
            if not isinstance(comic, dict):
                continue
            for concept in comic.get("concepts") or []:
                counts[concept] = counts.get(concept, 0) + 1

        total = len(sample)
        threshold = math.ceil(round(total * settings.OVERUSED_RATIO, 9))
        baseline_threshold = math.ceil(round(total * settings.BASELINE_OVERUSED_RATIO, 9))

        overused = [c for c, n in counts.items() if n >= threshold]
        overused += [
            c for c, n in counts.items()
            if c in BASELINE_OVERUSED_CONCEPTS and n >= baseline_threshold
        ]
        themes = list(dict.fromkeys(overused))
        logger.debug(f"Overused themes over {total} comics (threshold {threshold}): {themes}")
        return Result.success(themes)
