"""Folds reaction events back into comic, token, concept and user statistics.

Increments update everything. Decrements only correct the displayed comic
tally (per-type count, total, score); learned token/concept/preference state
is left as it was.
"""

import random
import string
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional

from loguru import logger

from ..config import ENGAGEMENT_REACTIONS, REACTION_TYPES, REACTION_WEIGHTS, settings
from ..core.exceptions import StorageDegradedError, ValidationError
from ..models import ComicStats, ConceptStat, ReactionAck, ReactionRecord, TokenStat, utcnow
from ..storage.kv import (
    KEY_POPULAR_COMICS,
    KEY_REACTION_TYPES,
    KEY_TOKEN_REGISTRY,
    PREFIX_ANALYTICS_ACTIVE,
    PREFIX_ANALYTICS_DAILY,
    PREFIX_ANALYTICS_HOURLY,
    PREFIX_CONCEPT_STATS,
    PREFIX_REACTION,
    PREFIX_TOKEN_STATS,
    KeyValueStore,
    comic_reactions_key,
    comic_stats_key,
    comic_users_key,
    user_key,
)
from .global_guidance import GuidanceCache
from .preferences import PreferenceStore

ANONYMOUS_USER = "anonymous"
ACTIONS = ("increment", "decrement")
ACTIVE_USERS_TTL = 86400 * 7
COMIC_REACTIONS_CAP = 1000
USER_HISTORY_CAP = 500

_BASE36 = string.digits + string.ascii_lowercase


async def read_comic_stats(store: KeyValueStore, comic_id: str) -> ComicStats:
    """Displayed tally for one comic, with every reaction type present."""
    raw = await store.hgetall(comic_stats_key(comic_id))
    counts = {t: int(float(raw.get(t, 0) or 0)) for t in REACTION_TYPES}
    total = int(float(raw.get("total", 0) or 0))
    engaged = sum(counts[t] for t in ENGAGEMENT_REACTIONS)
    return ComicStats(
        counts=counts,
        total=total,
        score=float(raw.get("score", 0) or 0),
        unique_users=await store.scard(comic_users_key(comic_id)),
        engagement_rate=round(engaged / total * 100) if total > 0 else 0,
    )


def validate_reaction(comic_id: Optional[str], reaction_type: Optional[str], action: str) -> None:
    """
    Raises:
        ValidationError: For a missing comic id, unknown type or unknown action
    """
    if not comic_id:
        raise ValidationError("comic_id", "required")
    if not reaction_type:
        raise ValidationError("reaction_type", "required")
    if reaction_type not in REACTION_WEIGHTS:
        raise ValidationError("reaction_type", f"unknown reaction type '{reaction_type}'")
    if action not in ACTIONS:
        raise ValidationError("action", f"must be one of {', '.join(ACTIONS)}")


class ReactionRecorder:
    """Applies one reaction event to every statistic that depends on it."""

    def __init__(
        self,
        store: KeyValueStore,
        preferences: PreferenceStore | None = None,
        cache: GuidanceCache | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.preferences = preferences or PreferenceStore(store, clock=clock)
        self.cache = cache or GuidanceCache(store)
        self._clock = clock
        self._rng = rng or random.Random()

    async def record(
        self,
        comic_id: str,
        reaction_type: str,
        user_id: Optional[str] = None,
        weight: Optional[float] = None,
        tokens: Iterable[str] = (),
        concepts: Iterable[str] = (),
        action: str = "increment",
    ) -> ReactionAck:
        """Record or retract a reaction.

        Storage failures in individual steps are logged and listed in the
        acknowledgement's ``degraded_steps``; they never fail the call.

        Raises:
            ValidationError: If the request is malformed
        """
        validate_reaction(comic_id, reaction_type, action)
        if weight is None:
            weight = REACTION_WEIGHTS[reaction_type]
        tokens = list(dict.fromkeys(t for t in tokens if t))
        concepts = list(dict.fromkeys(c for c in concepts if c))
        degraded: List[str] = []

        if action == "decrement":
            await self._step("comic_stats", self._decrement_comic_stats(comic_id, reaction_type), degraded)
        else:
            now = self._clock()
            user = user_id or ANONYMOUS_USER
            record = ReactionRecord(
                id=f"reaction_{int(now.timestamp() * 1000)}_{self._random_id(9)}",
                comic_id=comic_id,
                user_id=user,
                type=reaction_type,
                weight=weight,
                timestamp=now,
                comic_tokens=tokens,
                semantic_concepts=concepts,
            )
            await self._step("reaction", self._store_reaction(record), degraded)
            if tokens:
                await self._step("token_stats", self._update_token_stats(tokens, weight, now), degraded)
            if concepts:
                await self._step(
                    "concept_stats", self._update_concept_stats(concepts, reaction_type, weight, now), degraded
                )
            if user_id and user_id != ANONYMOUS_USER:
                await self._step(
                    "preferences",
                    self.preferences.apply_reaction(user_id, reaction_type, weight, tokens, concepts),
                    degraded,
                )
            await self._step("comic_stats", self._increment_comic_stats(comic_id, reaction_type, user), degraded)
            await self._step("analytics", self._log_analytics(reaction_type, user, now), degraded)

        stats = None
        try:
            stats = await read_comic_stats(self.store, comic_id)
        except StorageDegradedError as e:
            logger.warning(f"Could not read back stats for {comic_id}: {e}")
            degraded.append("read_stats")

        logger.info(f"Reaction {action} {reaction_type} on {comic_id} (degraded={degraded or 'none'})")
        return ReactionAck(
            comic_id=comic_id,
            reaction_type=reaction_type,
            action=action,
            stats=stats,
            degraded_steps=degraded,
        )

    async def _step(self, name: str, operation: Awaitable[None], degraded: List[str]) -> None:
        try:
            await operation
        except StorageDegradedError as e:
            logger.warning(f"Reaction step '{name}' degraded: {e}")
            degraded.append(name)

    def _random_id(self, length: int) -> str:
        return "".join(self._rng.choice(_BASE36) for _ in range(length))

    # ------------------------------------------------------------------
    # Increment path
    # ------------------------------------------------------------------

    async def _store_reaction(self, record: ReactionRecord) -> None:
        await self.store.set(f"{PREFIX_REACTION}{record.id}", record.model_dump(mode="json"), ttl=settings.REACTION_TTL)

        reactions_key = comic_reactions_key(record.comic_id)
        await self.store.lpush(reactions_key, record.id)
        await self.store.ltrim(reactions_key, 0, COMIC_REACTIONS_CAP - 1)

        if record.user_id != ANONYMOUS_USER:
            history_key = user_key(record.user_id, "reaction_history")
            await self.store.lpush(history_key, record.id)
            await self.store.ltrim(history_key, 0, USER_HISTORY_CAP - 1)

    async def _update_registry(self, tokens: List[str]) -> None:
        registry = await self.store.get(KEY_TOKEN_REGISTRY)
        current = registry if isinstance(registry, list) else []
        merged = list(dict.fromkeys(current + tokens))
        if len(merged) > settings.TOKEN_REGISTRY_CAP:
            merged = merged[-settings.TOKEN_REGISTRY_CAP:]
        await self.store.set(KEY_TOKEN_REGISTRY, merged)

    async def _update_token_stats(self, tokens: List[str], weight: float, now: datetime) -> None:
        await self._update_registry(tokens)

        for token in tokens:
            key = f"{PREFIX_TOKEN_STATS}{token}"
            current = await self.store.get(key)
            stat = TokenStat.model_validate(current) if isinstance(current, dict) else TokenStat()
            _count(stat, weight, now)
            await self.store.set(key, stat.model_dump(mode="json"), ttl=settings.STAT_TTL)

        await self.cache.invalidate()

    async def _update_concept_stats(
        self, concepts: List[str], reaction_type: str, weight: float, now: datetime
    ) -> None:
        for concept in concepts:
            key = f"{PREFIX_CONCEPT_STATS}{concept}"
            current = await self.store.get(key)
            stat = ConceptStat.model_validate(current) if isinstance(current, dict) else ConceptStat()
            _count(stat, weight, now)
            stat.reaction_types[reaction_type] = stat.reaction_types.get(reaction_type, 0) + 1
            await self.store.set(key, stat.model_dump(mode="json"), ttl=settings.STAT_TTL)

        await self.cache.invalidate()

    async def _increment_comic_stats(self, comic_id: str, reaction_type: str, user_id: str) -> None:
        key = comic_stats_key(comic_id)
        await self.store.hincrby(key, reaction_type, 1)
        if user_id != ANONYMOUS_USER:
            await self.store.sadd(comic_users_key(comic_id), user_id)
        await self.store.hincrby(key, "total", 1)

        score_change = REACTION_WEIGHTS[reaction_type]
        if score_change:
            await self.store.hincrbyfloat(key, "score", score_change)

        score = float(await self.store.hget(key, "score") or 0)
        if score > settings.POPULAR_THRESHOLD:
            await self.store.zadd(KEY_POPULAR_COMICS, comic_id, score)
            await self.store.zremrangebyrank(KEY_POPULAR_COMICS, 0, -(settings.POPULAR_CAP + 1))

    async def _log_analytics(self, reaction_type: str, user_id: str, now: datetime) -> None:
        date = now.strftime("%Y-%m-%d")
        daily_key = f"{PREFIX_ANALYTICS_DAILY}{date}"
        await self.store.hincrby(daily_key, "reaction_total", 1)
        await self.store.hincrby(daily_key, f"reaction_{reaction_type}", 1)
        await self.store.hincrby(f"{PREFIX_ANALYTICS_HOURLY}{date}", f"hour_{now.hour}", 1)

        if user_id != ANONYMOUS_USER:
            active_key = f"{PREFIX_ANALYTICS_ACTIVE}{date}"
            await self.store.sadd(active_key, user_id)
            await self.store.expire(active_key, ACTIVE_USERS_TTL)

        await self.store.hincrby(KEY_REACTION_TYPES, reaction_type, 1)

    # ------------------------------------------------------------------
    # Decrement path
    # ------------------------------------------------------------------

    async def _decrement_comic_stats(self, comic_id: str, reaction_type: str) -> None:
        key = comic_stats_key(comic_id)
        current = int(float(await self.store.hget(key, reaction_type) or 0))
        if current <= 0:
            return

        await self.store.hincrby(key, reaction_type, -1)
        total = int(float(await self.store.hget(key, "total") or 0))
        if total > 0:
            await self.store.hincrby(key, "total", -1)

        score_change = REACTION_WEIGHTS[reaction_type]
        if score_change:
            await self.store.hincrbyfloat(key, "score", -score_change)


def _count(stat: TokenStat, weight: float, now: datetime) -> None:
    if weight > 0:
        stat.positive += 1
    elif weight < 0:
        stat.negative += 1
    stat.total += 1
    stat.last_updated = now
