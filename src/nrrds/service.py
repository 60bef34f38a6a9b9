"""Application façade: guidance assembly, generation, persistence and reactions."""

import asyncio
import random
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .config import settings
from .core.exceptions import PersistenceError, StorageDegradedError
from .core.result import Result
from .feedback.combiner import GuidanceCombiner
from .feedback.global_guidance import GlobalGuidanceAggregator, GuidanceCache
from .feedback.preferences import PreferenceStore
from .feedback.recorder import ANONYMOUS_USER, ReactionRecorder, read_comic_stats
from .feedback.temperature import TemperatureScheduler
from .generation.pipeline import GenerationPipeline
from .llm.client import TextGenerator
from .models import Comic, ComicStats, Guidance, ReactionAck, ReactionRecord, utcnow
from .storage.kv import (
    KEY_COMIC_COUNTERS,
    KEY_RECENT_COMICS,
    PREFIX_REACTION,
    KeyValueStore,
    comic_key,
    comic_reactions_key,
    user_key,
)

MAX_RECENT_COMICS = 50
USER_COMICS_CAP = 100
RECENT_COMICS_CAP = 1000


class ComicService:
    """Wires the feedback components around the generation pipeline."""

    def __init__(
        self,
        store: KeyValueStore,
        client: TextGenerator,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Connected key-value store
            client: Text-generation client used by every stage
            rng: Random source for temperature draws and id suffixes
            clock: UTC time source
        """
        self.store = store
        rng = rng or random.Random()

        self.preferences = PreferenceStore(store, clock=clock)
        self.scheduler = TemperatureScheduler(self.preferences, rng)
        self.cache = GuidanceCache(store)
        self.aggregator = GlobalGuidanceAggregator(store, self.cache, clock)
        self.combiner = GuidanceCombiner()
        self.pipeline = GenerationPipeline(client, store, clock=clock, rng=rng)
        self.recorder = ReactionRecorder(store, self.preferences, self.cache, clock, rng)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def build_guidance(
        self,
        user_id: Optional[str],
        personal_guidance: Optional[Guidance] = None,
        *,
        humor_level: Optional[int] = None,
        panel_count: Optional[int] = None,
        style_refs: Optional[Iterable[str]] = None,
    ) -> Guidance:
        """Combine personal, global and overused-theme guidance for one request.

        Without explicit personal guidance the temperature is drawn from the
        scheduler and personal guidance is rebuilt from the user's stored
        preferences at that temperature.
        """
        if user_id == ANONYMOUS_USER:
            user_id = None
        if personal_guidance is None:
            temperature = (await self.scheduler.next_temperature(user_id)).value
            personal = (await self.preferences.personal_guidance(user_id, temperature)).value
        else:
            temperature = personal_guidance.temperature
            personal = personal_guidance

        overrides = {
            "humor_level": humor_level if humor_level is not None else personal.humor_level,
            "panel_count": panel_count if panel_count is not None else personal.panel_count,
            "style_refs": list(style_refs) if style_refs is not None else personal.style_refs,
        }
        personal = Guidance.model_validate({**personal.model_dump(), **overrides})

        global_guidance = await self.aggregator.get_global_guidance()
        overused = await self.aggregator.get_overused_themes()
        return self.combiner.combine(personal, global_guidance.value, temperature, overused.value)

    async def generate(
        self,
        user_id: Optional[str],
        personal_guidance: Optional[Guidance] = None,
        *,
        humor_level: Optional[int] = None,
        panel_count: Optional[int] = None,
        style_refs: Optional[Iterable[str]] = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Comic:
        """Generate and persist a comic.

        A failed save is logged but the comic is still returned.

        Raises:
            GenerationError: If a pipeline stage aborts
        """
        guidance = await self.build_guidance(
            user_id,
            personal_guidance,
            humor_level=humor_level,
            panel_count=panel_count,
            style_refs=style_refs,
        )
        comic = await self.pipeline.generate(guidance, cancel_event)

        try:
            await self.persist_comic(comic, user_id)
        except PersistenceError as e:
            logger.error(f"{e}; comic returned unsaved")
        return comic

    async def persist_comic(self, comic: Comic, user_id: Optional[str] = None) -> None:
        """Save a comic and index it in the user and global recent lists.

        Raises:
            PersistenceError: If the comic could not be written or read back
        """
        key = comic_key(comic.id)
        try:
            await self.store.set(key, comic.model_dump(mode="json"), ttl=settings.COMIC_TTL)
            if not await self.store.get(key):
                raise PersistenceError(comic.id, "read-back verification failed")

            if user_id and user_id != ANONYMOUS_USER:
                comics_key = user_key(user_id, "comics")
                await self.store.lpush(comics_key, comic.id)
                await self.store.ltrim(comics_key, 0, USER_COMICS_CAP - 1)

            await self.store.lpush(KEY_RECENT_COMICS, comic.id)
            await self.store.ltrim(KEY_RECENT_COMICS, 0, RECENT_COMICS_CAP - 1)

            await self.store.hincrby(KEY_COMIC_COUNTERS, "total", 1)
            theme = comic.title.lower().split(" ")[0] if comic.title else ""
            await self.store.hincrby(KEY_COMIC_COUNTERS, f"theme:{theme}", 1)
        except StorageDegradedError as e:
            raise PersistenceError(comic.id, str(e)) from e

        logger.info(f"Comic {comic.id} saved")

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def record_reaction(
        self,
        comic_id: str,
        reaction_type: str,
        user_id: Optional[str] = None,
        weight: Optional[float] = None,
        tokens: Optional[Iterable[str]] = None,
        concepts: Optional[Iterable[str]] = None,
        action: str = "increment",
    ) -> ReactionAck:
        """Record a reaction; tokens and concepts default to the stored comic's.

        Raises:
            ValidationError: If the request is malformed
        """
        if action == "increment" and tokens is None and concepts is None and comic_id:
            try:
                comic = await self.get_comic(comic_id)
            except StorageDegradedError as e:
                logger.warning(f"Could not load signals for {comic_id}: {e}")
                comic = None
            if comic is not None:
                tokens, concepts = comic.tokens, comic.concepts

        return await self.recorder.record(
            comic_id,
            reaction_type,
            user_id=user_id,
            weight=weight,
            tokens=tokens or (),
            concepts=concepts or (),
            action=action,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_comic(self, comic_id: str) -> Optional[Comic]:
        """Load one comic, None when missing or unreadable.

        Raises:
            StorageDegradedError: If the store is failing
        """
        raw = await self.store.get(comic_key(comic_id))
        if not isinstance(raw, dict):
            return None
        try:
            return Comic.model_validate(raw)
        except PydanticValidationError as e:
            logger.error(f"Stored comic {comic_id} is malformed: {e.error_count()} errors")
            return None

    async def get_recent_comics(self, limit: int = 10) -> Result[List[Comic]]:
        """Most recently generated comics, newest first (at most 50)."""
        limit = max(1, min(limit, MAX_RECENT_COMICS))
        try:
            ids = await self.store.lrange(KEY_RECENT_COMICS, 0, limit - 1)
            raw = await self.store.mget([comic_key(cid) for cid in ids])
        except StorageDegradedError as e:
            logger.warning(f"Recent comics unavailable: {e}")
            return Result.degraded([], e)

        comics = []
        for value in raw:
            if not isinstance(value, dict):
                continue
            try:
                comics.append(Comic.model_validate(value))
            except PydanticValidationError:
                continue
        return Result.success(comics)

    async def get_comic_stats(self, comic_id: str) -> Result[ComicStats]:
        """Displayed reaction tally; zero stats if the store fails."""
        try:
            return Result.success(await read_comic_stats(self.store, comic_id))
        except StorageDegradedError as e:
            logger.warning(f"Stats unavailable for {comic_id}: {e}")
            return Result.degraded(ComicStats(), e)

    async def get_recent_reactions(self, comic_id: str, limit: int = 10) -> Result[List[ReactionRecord]]:
        """Latest reaction records for a comic, newest first."""
        try:
            ids = await self.store.lrange(comic_reactions_key(comic_id), 0, limit - 1)
            raw = await self.store.mget([f"{PREFIX_REACTION}{rid}" for rid in ids])
        except StorageDegradedError as e:
            logger.warning(f"Recent reactions unavailable for {comic_id}: {e}")
            return Result.degraded([], e)

        reactions = []
        for value in raw:
            if not isinstance(value, dict):
                continue
            try:
                reactions.append(ReactionRecord.model_validate(value))
            except PydanticValidationError:
                logger.warning(f"Skipping malformed reaction record on {comic_id}")
        return Result.success(reactions)
