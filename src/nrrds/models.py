"""Pydantic models for comics, guidance and feedback statistics."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Guidance
# =============================================================================

class WeightedToken(BaseModel):
    """A token with its signed or absolute influence."""

    token: str
    weight: float


class GlobalGuidance(BaseModel):
    """Population-level guidance derived from aggregated token/concept stats."""

    avoid_tokens: List[WeightedToken] = Field(default_factory=list)
    encourage_tokens: List[WeightedToken] = Field(default_factory=list)
    avoid_concepts: List[str] = Field(default_factory=list)
    encourage_concepts: List[str] = Field(default_factory=list)
    concept_weights: Dict[str, float] = Field(
        default_factory=dict, description="Absolute adjusted sentiment per listed concept"
    )

    @property
    def is_empty(self) -> bool:
        return not (self.avoid_tokens or self.encourage_tokens
                    or self.avoid_concepts or self.encourage_concepts)


class Guidance(BaseModel):
    """Everything one generation call is steered by."""

    avoid_tokens: List[WeightedToken] = Field(default_factory=list)
    encourage_tokens: List[WeightedToken] = Field(default_factory=list)
    avoid_concepts: List[str] = Field(default_factory=list)
    encourage_concepts: List[str] = Field(default_factory=list)
    token_weights: Dict[str, float] = Field(default_factory=dict)
    concept_weights: Dict[str, float] = Field(default_factory=dict)
    temperature: float = Field(0.3, ge=0.0, le=1.0, description="0 = follow feedback, 1 = ignore it")
    humor_level: int = Field(8, ge=0, le=11)
    panel_count: int = 3
    style_refs: List[str] = Field(default_factory=list)

    @field_validator("panel_count", mode="before")
    @classmethod
    def _panel_count(cls, value: Any) -> int:
        try:
            count = int(value)
        except (TypeError, ValueError):
            return 3
        return count if count in (3, 4) else 3

    @field_validator("humor_level", mode="before")
    @classmethod
    def _humor_level(cls, value: Any) -> int:
        try:
            return max(0, min(11, int(value)))
        except (TypeError, ValueError):
            return 8

    def avoid_token_names(self) -> List[str]:
        return [t.token for t in self.avoid_tokens]

    def encourage_token_names(self) -> List[str]:
        return [t.token for t in self.encourage_tokens]


# =============================================================================
# Comics
# =============================================================================

class Character(BaseModel):
    """A character appearing in one panel."""

    name: str
    emoji: str = "🙂"
    style: int = Field(1, ge=1, le=5)
    effect: Optional[Literal["shake", "bounce"]] = None

    @field_validator("style", mode="before")
    @classmethod
    def _style(cls, value: Any) -> int:
        try:
            style = int(value)
        except (TypeError, ValueError):
            return 1
        return style if 1 <= style <= 5 else 1

    @field_validator("effect", mode="before")
    @classmethod
    def _effect(cls, value: Any) -> Optional[str]:
        return value if value in ("shake", "bounce") else None

    @field_validator("emoji", mode="before")
    @classmethod
    def _emoji(cls, value: Any) -> str:
        return value if isinstance(value, str) and value else "🙂"


class DialogueLine(BaseModel):
    """One speech or thought bubble."""

    text: str
    speaker: str = ""
    type: Literal["speech", "thought"] = "speech"
    style: str = "normal"

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> str:
        return "thought" if value == "thought" else "speech"

    @field_validator("speaker", "style", mode="before")
    @classmethod
    def _optional_str(cls, value: Any, info) -> str:
        if isinstance(value, str):
            return value
        return "normal" if info.field_name == "style" else ""


class Panel(BaseModel):
    header: str = ""
    characters: List[Character] = Field(default_factory=list)
    dialogue: List[DialogueLine] = Field(default_factory=list)
    background: Optional[str] = None

    @field_validator("header", mode="before")
    @classmethod
    def _header(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class GenerationContext(BaseModel):
    """Echo of the guidance a comic was generated under."""

    avoided_tokens: List[str] = Field(default_factory=list)
    encouraged_tokens: List[str] = Field(default_factory=list)
    avoided_concepts: List[str] = Field(default_factory=list)
    encouraged_concepts: List[str] = Field(default_factory=list)
    temperature: float = 0.3

    @classmethod
    def from_guidance(cls, guidance: Guidance) -> "GenerationContext":
        return cls(
            avoided_tokens=guidance.avoid_token_names(),
            encouraged_tokens=guidance.encourage_token_names(),
            avoided_concepts=list(guidance.avoid_concepts),
            encouraged_concepts=list(guidance.encourage_concepts),
            temperature=guidance.temperature,
        )


class Comic(BaseModel):
    """A finished comic strip. Immutable once persisted."""

    id: str = ""
    title: str
    panels: List[Panel]
    tokens: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)
    generation_context: Optional[GenerationContext] = None
    version: int = 2
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Feedback statistics
# =============================================================================

class TokenStat(BaseModel):
    """Global reaction tally for one token."""

    positive: int = 0
    negative: int = 0
    total: int = 0
    last_updated: datetime = Field(default_factory=utcnow)


class ConceptStat(TokenStat):
    """Global reaction tally for one concept, with a per-type breakdown."""

    reaction_types: Dict[str, int] = Field(default_factory=dict)


class TermPreference(BaseModel):
    """Exponentially decayed personal weight for one token or concept."""

    weight: float = 0.0
    count: int = 0
    last_updated: Optional[datetime] = None


class PreferenceState(BaseModel):
    """Per-user preference record: learned weights plus temperature bookkeeping."""

    reaction_counts: Dict[str, int] = Field(default_factory=dict)
    token_preferences: Dict[str, TermPreference] = Field(default_factory=dict)
    concept_preferences: Dict[str, TermPreference] = Field(default_factory=dict)
    last_generation_temperature: Optional[float] = None
    generations_since_high_temp: int = 0

    @property
    def total_reactions(self) -> int:
        return sum(self.reaction_counts.values())


class PreferenceSummary(BaseModel):
    """Normalized shares of a user's signed reaction weight."""

    positive: float = 0.0
    humor: float = 0.0
    intellectual: float = 0.0
    negative: float = 0.0


class ReactionRecord(BaseModel):
    id: str
    comic_id: str
    user_id: str
    type: str
    weight: float
    timestamp: datetime
    comic_tokens: List[str] = Field(default_factory=list)
    semantic_concepts: List[str] = Field(default_factory=list)


class ComicStats(BaseModel):
    """Displayed reaction tally for one comic."""

    counts: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
    score: float = 0.0
    unique_users: int = 0
    engagement_rate: int = 0


class ReactionAck(BaseModel):
    """Acknowledgement of a recorded reaction."""

    success: bool = True
    comic_id: str
    reaction_type: str
    action: Literal["increment", "decrement"]
    stats: Optional[ComicStats] = None
    degraded_steps: List[str] = Field(default_factory=list)
