"""Configuration for the nrrds comic generator."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """nrrds configuration settings."""

    # Redis (falls back to the in-process store when unreachable)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Text generation service
    LLM_PROVIDER: str = "openai"  # "openai" (any /chat/completions server) or "ollama"
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = ""
    LLM_TIMEOUT: float = 120.0
    LLM_FAILURE_THRESHOLD: int = 5
    LLM_RECOVERY_TIMEOUT: float = 60.0

    # Per-stage models
    SCRIPT_MODEL: str = "gpt-4o"
    ANALYSIS_MODEL: str = "gpt-4o-mini"
    FORMAT_MODEL: str = "gpt-4o-mini"

    # Per-stage creativity (sampling temperature handed to the model)
    SCRIPT_CREATIVITY: float = 0.9
    SCRIPT_RETRY_CREATIVITY: float = 0.7
    ANALYSIS_CREATIVITY: float = 0.3
    FORMAT_CREATIVITY: float = 0.0

    # Per-stage output budgets
    SCRIPT_MAX_OUTPUT_TOKENS: int = 4000
    ANALYSIS_MAX_OUTPUT_TOKENS: int = 800
    FORMAT_MAX_OUTPUT_TOKENS: int = 1800

    # Script defaults
    DEFAULT_HUMOR_LEVEL: int = 8
    DEFAULT_PANEL_COUNT: int = 3

    # Global guidance
    GUIDANCE_CACHE_TTL: int = 300
    GUIDANCE_MIN_SAMPLES: int = 5
    GUIDANCE_CONFIDENCE_SAMPLES: int = 30
    GUIDANCE_SENTIMENT_THRESHOLD: float = 0.3
    STATS_WINDOW_DAYS: int = 30

    # Overused theme detection
    OVERUSED_SAMPLE_SIZE: int = 30
    OVERUSED_RATIO: float = 0.4
    BASELINE_OVERUSED_RATIO: float = 0.25

    # Guidance combination
    GLOBAL_INFLUENCE: float = 0.5
    GLOBAL_SIGNIFICANCE_FLOOR: float = 0.1

    # Personal preferences
    PREFERENCE_DECAY: float = 0.95
    MIN_TOKEN_FREQUENCY: int = 2
    PERSONAL_SIGNIFICANCE: float = 0.5
    PREFERENCE_SUMMARY_TTL: int = 86400 * 30

    # Generation temperature (exploration vs exploitation)
    TEMPERATURE_MIN: float = 0.0
    TEMPERATURE_MAX: float = 1.0
    TEMPERATURE_DEFAULT: float = 0.3
    NEW_USER_RANGE: tuple[float, float] = (0.4, 0.8)
    EXPLOIT_RANGE: tuple[float, float] = (0.0, 0.3)
    BALANCED_RANGE: tuple[float, float] = (0.3, 0.7)
    EXPLORE_RANGE: tuple[float, float] = (0.7, 1.0)
    NEW_USER_THRESHOLD: int = 5
    HIGH_TEMP_FREQUENCY: float = 0.15
    EXPLORATION_COOLDOWN: int = 3

    # Statistics retention
    TOKEN_REGISTRY_CAP: int = 1000
    STAT_TTL: int = 86400 * 90
    REACTION_TTL: int = 86400 * 90
    COMIC_TTL: int = 86400 * 30
    POPULAR_THRESHOLD: float = 10.0
    POPULAR_CAP: int = 100

    class Config:
        env_file = ".env"


# Global settings instance
settings = Settings()


# Reaction type -> feedback weight. Order runs from most positive to most negative.
REACTION_WEIGHTS: dict[str, float] = {
    "thumbsup": 2.0,
    "lol": 1.9,
    "heartwarming": 1.8,
    "awesome": 1.7,
    "inspired": 1.6,
    "unique": 1.5,
    "mindblown": 1.4,
    "celebrating": 1.3,
    "deep": 1.2,
    "relatable": 1.1,
    "confused": 0.2,
    "meh": 0.0,
    "sad": -0.3,
    "spooked": -0.5,
    "gross": -0.8,
    "cringe": -1.0,
    "angry": -1.2,
    "facepalm": -1.3,
    "eyeroll": -1.4,
    "skeptical": -1.5,
    "offended": -2.0,
}

REACTION_TYPES: tuple[str, ...] = tuple(REACTION_WEIGHTS)

# Reactions counted towards a comic's engagement rate
ENGAGEMENT_REACTIONS: frozenset[str] = frozenset({
    "thumbsup", "lol", "heartwarming", "awesome",
    "inspired", "unique", "mindblown", "celebrating",
})

# Reaction type -> preference summary bucket
SUMMARY_CATEGORIES: dict[str, str] = {
    "thumbsup": "positive",
    "heartwarming": "positive",
    "awesome": "positive",
    "celebrating": "positive",
    "relatable": "positive",
    "lol": "humor",
    "unique": "intellectual",
    "inspired": "intellectual",
    "mindblown": "intellectual",
    "deep": "intellectual",
    "confused": "negative",
    "sad": "negative",
    "spooked": "negative",
    "gross": "negative",
    "cringe": "negative",
    "angry": "negative",
    "facepalm": "negative",
    "eyeroll": "negative",
    "skeptical": "negative",
    "offended": "negative",
}

# Concepts that are penalised at a lower frequency threshold
BASELINE_OVERUSED_CONCEPTS: tuple[str, ...] = ("coffee", "sleep")

PANEL_BACKGROUNDS: tuple[str, ...] = (
    "linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
    "linear-gradient(135deg, #f093fb 0%, #f5576c 100%)",
    "linear-gradient(135deg, #4facfe 0%, #00f2fe 100%)",
    "linear-gradient(135deg, #fa709a 0%, #fee140 100%)",
    "linear-gradient(135deg, #a8edea 0%, #fed6e3 100%)",
    "linear-gradient(135deg, #d299c2 0%, #fef9d7 100%)",
    "linear-gradient(135deg, #89f7fe 0%, #66a6ff 100%)",
    "linear-gradient(135deg, #fddb92 0%, #d1fdff 100%)",
    "linear-gradient(135deg, #9890e3 0%, #b1f4cf 100%)",
    "linear-gradient(135deg, #f5f7fa 0%, #c3cfe2 100%)",
)

GENERATION_FAILED_MESSAGE = "Failed to generate comic. Please try again."
REACTION_FAILED_MESSAGE = "Failed to submit reaction. Please try again."
