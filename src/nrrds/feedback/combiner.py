"""Merge personal and global guidance into the guidance for one generation."""

from typing import Iterable

from loguru import logger

from ..config import settings
from ..models import GlobalGuidance, Guidance, WeightedToken


class GuidanceCombiner:
    """Personal guidance always wins; global guidance only fills gaps.

    Personal weights arrive already dampened by temperature. Global weights
    are attenuated here by ``influence * (1 - temperature)`` and dropped
    unless they stay above the significance floor.
    """

    def __init__(self, influence: float | None = None, floor: float | None = None):
        self.influence = influence if influence is not None else settings.GLOBAL_INFLUENCE
        self.floor = floor if floor is not None else settings.GLOBAL_SIGNIFICANCE_FLOOR

    def combine(
        self,
        personal: Guidance,
        global_guidance: GlobalGuidance,
        temperature: float,
        overused_themes: Iterable[str] = (),
    ) -> Guidance:
        try:
            return self._combine(personal, global_guidance, temperature, overused_themes)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Guidance combination failed, using personal guidance only: {e}")
            return personal

    def _combine(
        self,
        personal: Guidance,
        global_guidance: GlobalGuidance,
        temperature: float,
        overused_themes: Iterable[str],
    ) -> Guidance:
        combined = personal.model_copy(deep=True)
        combined.temperature = temperature
        dampening = 1.0 - temperature

        personal_listed = set(personal.avoid_token_names()) | set(personal.encourage_token_names())

        for item in global_guidance.encourage_tokens:
            if item.token in personal.token_weights or item.token in personal_listed:
                continue
            adjusted = item.weight * self.influence * dampening
            if abs(adjusted) > self.floor:
                combined.encourage_tokens.append(WeightedToken(token=item.token, weight=adjusted))
                combined.token_weights[item.token] = adjusted

        for item in global_guidance.avoid_tokens:
            if item.token in personal.token_weights or item.token in personal_listed:
                continue
            adjusted = -item.weight * self.influence * dampening
            if abs(adjusted) > self.floor:
                combined.avoid_tokens.append(WeightedToken(token=item.token, weight=abs(adjusted)))
                combined.token_weights[item.token] = adjusted

        for concept in global_guidance.encourage_concepts:
            self._add_concept(combined, personal, global_guidance, concept, 1.0, dampening)
        for concept in global_guidance.avoid_concepts:
            self._add_concept(combined, personal, global_guidance, concept, -1.0, dampening)

        # Overused themes outrank global encouragement, never a personal one.
        for theme in overused_themes:
            if theme in personal.encourage_concepts:
                continue
            if theme in combined.encourage_concepts:
                combined.encourage_concepts.remove(theme)
                if theme not in personal.concept_weights:
                    combined.concept_weights.pop(theme, None)
            if theme not in combined.avoid_concepts:
                combined.avoid_concepts.append(theme)

        return combined

    def _add_concept(
        self,
        combined: Guidance,
        personal: Guidance,
        global_guidance: GlobalGuidance,
        concept: str,
        sign: float,
        dampening: float,
    ) -> None:
        opposite = personal.avoid_concepts if sign > 0 else personal.encourage_concepts
        if concept in personal.concept_weights or concept in opposite:
            return
        adjusted = sign * global_guidance.concept_weights.get(concept, 0.0) * self.influence * dampening
        if abs(adjusted) <= self.floor:
            return
        target = combined.encourage_concepts if sign > 0 else combined.avoid_concepts
        if concept not in target:
            target.append(concept)
        combined.concept_weights[concept] = adjusted
