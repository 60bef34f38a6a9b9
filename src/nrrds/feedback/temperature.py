"""Exploration/exploitation temperature for the next generation.

The temperature says how much learned feedback is ignored: 0 follows it
strictly, 1 ignores it. It is not a sampling parameter for the model.
"""

import random
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ..config import settings
from ..core.exceptions import StorageDegradedError
from ..core.result import Result
from ..models import PreferenceState
from .preferences import PreferenceStore


@dataclass(frozen=True)
class TemperatureBands:
    minimum: float = settings.TEMPERATURE_MIN
    maximum: float = settings.TEMPERATURE_MAX
    default: float = settings.TEMPERATURE_DEFAULT
    new_user: tuple[float, float] = settings.NEW_USER_RANGE
    exploit: tuple[float, float] = settings.EXPLOIT_RANGE
    balanced: tuple[float, float] = settings.BALANCED_RANGE
    explore: tuple[float, float] = settings.EXPLORE_RANGE
    new_user_threshold: int = settings.NEW_USER_THRESHOLD
    high_temp_frequency: float = settings.HIGH_TEMP_FREQUENCY
    exploration_cooldown: int = settings.EXPLORATION_COOLDOWN


def compute_temperature(
    state: PreferenceState,
    rng: random.Random,
    bands: TemperatureBands | None = None,
) -> float:
    """Draw the next temperature and update the cooldown bookkeeping on ``state``.

    New users draw from the new-user band. Experienced users are remapped into
    the explore band with probability ``high_temp_frequency`` or once the
    cooldown has elapsed, otherwise into the span from the exploit floor to
    the balanced ceiling.
    """
    bands = bands or TemperatureBands()
    draw = rng.random()

    if state.total_reactions < bands.new_user_threshold:
        low, high = bands.new_user
    elif draw < bands.high_temp_frequency or state.generations_since_high_temp >= bands.exploration_cooldown:
        low, high = bands.explore
    else:
        low, high = bands.exploit[0], bands.balanced[1]

    temperature = max(bands.minimum, min(bands.maximum, low + draw * (high - low)))

    state.last_generation_temperature = temperature
    if temperature > bands.balanced[1]:
        state.generations_since_high_temp = 0
    else:
        state.generations_since_high_temp += 1
    return temperature


class TemperatureScheduler:
    """Stateful temperature policy backed by the per-user preference record."""

    def __init__(
        self,
        preferences: PreferenceStore,
        rng: Optional[random.Random] = None,
        bands: TemperatureBands | None = None,
    ):
        self.preferences = preferences
        self.rng = rng or random.Random()
        self.bands = bands or TemperatureBands()

    async def next_temperature(self, user_id: Optional[str]) -> Result[float]:
        """Draw and persist the next temperature; the default if the store fails.

        Anonymous callers have no history and draw from the new-user band.
        """
        if not user_id:
            return Result.success(compute_temperature(PreferenceState(), self.rng, self.bands))

        try:
            state = await self.preferences.load_state(user_id)
            temperature = compute_temperature(state, self.rng, self.bands)
            await self.preferences.save_state(user_id, state)
        except StorageDegradedError as e:
            logger.warning(f"Temperature draw degraded for {user_id}: {e}")
            return Result.degraded(self.bands.default, e)

        logger.info(
            f"Temperature {temperature:.3f} for {user_id} "
            f"(reactions={state.total_reactions}, since_high={state.generations_since_high_temp})"
        )
        return Result.success(temperature)
