"""Per-user preference state.

Two records are kept per user:
- ``user:{id}:preferences``: hash of reaction type -> signed weight sum, with a
  normalized summary cached at ``user:{id}:preference_summary``
- ``user:{id}:preference_state``: JSON PreferenceState holding decayed
  token/concept weights, reaction counts and temperature bookkeeping
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from loguru import logger

from ..config import SUMMARY_CATEGORIES, settings
from ..core.exceptions import StorageDegradedError
from ..core.result import Result
from ..models import (
    Guidance,
    PreferenceState,
    PreferenceSummary,
    TermPreference,
    WeightedToken,
    utcnow,
)
from ..storage.kv import KeyValueStore, user_key


def summarize_preferences(accumulator: Dict[str, float]) -> Optional[PreferenceSummary]:
    """Normalize a reaction-type accumulator into summary buckets.

    Each type contributes ``weight / sum(|weights|)`` to its bucket. Returns
    None when every weight is zero.
    """
    total = sum(abs(w) for w in accumulator.values())
    if total <= 0:
        return None

    buckets: Dict[str, float] = {}
    for reaction_type, weight in accumulator.items():
        category = SUMMARY_CATEGORIES.get(reaction_type)
        if category is None:
            continue
        buckets[category] = buckets.get(category, 0.0) + weight / total
    return PreferenceSummary(**buckets)


def decay_update(
    preferences: Dict[str, TermPreference],
    keys: Iterable[str],
    weight: float,
    decay: float,
    now: datetime,
) -> None:
    """Exponential moving average: ``w = w * decay + weight * (1 - decay)``."""
    for key in keys:
        current = preferences.setdefault(key, TermPreference())
        current.weight = current.weight * decay + weight * (1 - decay)
        current.count += 1
        current.last_updated = now


def build_personal_guidance(
    state: PreferenceState,
    temperature: float,
    min_frequency: int | None = None,
    significance: float | None = None,
) -> Guidance:
    """Temperature-dampened guidance from one user's learned weights.

    Only terms seen at least ``min_frequency`` times contribute. A dampened
    weight below ``-significance`` avoids the term, above ``significance``
    encourages it.
    """
    min_frequency = min_frequency if min_frequency is not None else settings.MIN_TOKEN_FREQUENCY
    significance = significance if significance is not None else settings.PERSONAL_SIGNIFICANCE
    dampening = 1.0 - temperature

    guidance = Guidance(temperature=temperature)

    for token, pref in state.token_preferences.items():
        if pref.count < min_frequency:
            continue
        adjusted = pref.weight * dampening
        guidance.token_weights[token] = adjusted
        if adjusted < -significance:
            guidance.avoid_tokens.append(WeightedToken(token=token, weight=abs(adjusted)))
        elif adjusted > significance:
            guidance.encourage_tokens.append(WeightedToken(token=token, weight=adjusted))

    for concept, pref in state.concept_preferences.items():
        if pref.count < min_frequency:
            continue
        adjusted = pref.weight * dampening
        guidance.concept_weights[concept] = adjusted
        if adjusted < -significance:
            guidance.avoid_concepts.append(concept)
        elif adjusted > significance:
            guidance.encourage_concepts.append(concept)

    return guidance


class PreferenceStore:
    """Reads and writes per-user preference records."""

    def __init__(
        self,
        store: KeyValueStore,
        decay: float | None = None,
        summary_ttl: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.decay = decay if decay is not None else settings.PREFERENCE_DECAY
        self.summary_ttl = summary_ttl or settings.PREFERENCE_SUMMARY_TTL
        self._clock = clock

    async def load_state(self, user_id: str) -> PreferenceState:
        """Load the preference record, empty for unknown users.

        Raises:
            StorageDegradedError: If the store is failing
        """
        raw = await self.store.get(user_key(user_id, "preference_state"))
        if not isinstance(raw, dict):
            return PreferenceState()
        return PreferenceState.model_validate(raw)

    async def save_state(self, user_id: str, state: PreferenceState) -> None:
        await self.store.set(user_key(user_id, "preference_state"), state.model_dump(mode="json"))

    async def update_accumulator(
        self, user_id: str, reaction_type: str, weight: float
    ) -> Optional[PreferenceSummary]:
        """Add ``weight`` to the user's per-type accumulator and refresh the summary."""
        key = user_key(user_id, "preferences")
        current = await self.store.hget(key, reaction_type)
        await self.store.hset(key, reaction_type, float(current or 0) + weight)

        accumulator = {t: float(w) for t, w in (await self.store.hgetall(key)).items()}
        summary = summarize_preferences(accumulator)
        if summary is not None:
            await self.store.set(
                user_key(user_id, "preference_summary"),
                summary.model_dump(),
                ttl=self.summary_ttl,
            )
        return summary

    async def apply_reaction(
        self,
        user_id: str,
        reaction_type: str,
        weight: float,
        tokens: Iterable[str] = (),
        concepts: Iterable[str] = (),
    ) -> Optional[PreferenceSummary]:
        """Fold one reaction into the user's accumulator and decayed weights.

        A zero-weight reaction still decays the token and concept weights and
        is counted, but leaves the accumulator hash untouched.
        """
        summary = None
        if weight:
            summary = await self.update_accumulator(user_id, reaction_type, weight)

        now = self._clock()
        state = await self.load_state(user_id)
        decay_update(state.token_preferences, tokens, weight, self.decay, now)
        decay_update(state.concept_preferences, concepts, weight, self.decay, now)
        state.reaction_counts[reaction_type] = state.reaction_counts.get(reaction_type, 0) + 1
        await self.save_state(user_id, state)

        logger.debug(
            f"Preferences for {user_id} updated: {reaction_type} ({weight:+.2f}), "
            f"{len(state.token_preferences)} tokens tracked"
        )
        return summary

    async def personal_guidance(self, user_id: Optional[str], temperature: float) -> Result[Guidance]:
        """Personal guidance at ``temperature``; empty guidance if the store fails."""
        if not user_id:
            return Result.success(Guidance(temperature=temperature))
        try:
            state = await self.load_state(user_id)
        except StorageDegradedError as e:
            logger.warning(f"Personal guidance unavailable for {user_id}: {e}")
            return Result.degraded(Guidance(temperature=temperature), e)
        return Result.success(build_personal_guidance(state, temperature))
