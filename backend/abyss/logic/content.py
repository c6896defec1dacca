"""Game content tables loaded from game_content.json.

Symbol points/weights, pattern multipliers, the instant-loss risk schedule and
the level threshold schedule are data. Every copy of the engine (client
preview, application server, ledger) must load the same tables; see
abyss.content_hash for the parity hash.
"""
import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from abyss.config import settings
from abyss.logic.models import GameConfig


logger = logging.getLogger(__name__)

BUNDLED_CONTENT_PATH = Path(__file__).parent / "game_content.json"


class RiskSchedule(BaseModel):
    """Capped-doubling instant-loss schedule (percent per spin)."""

    safe_through_level: int = Field(ge=1)
    base_percent: float = Field(ge=0)
    tier_levels: int = Field(ge=1)
    growth_factor: float = Field(ge=1)
    cap_percent: float = Field(ge=0, le=100)


class LevelPhase(BaseModel):
    """
    One phase of the level schedule.

    threshold(level) = threshold(level - 1) * growth_percent // 100
                       + coefficient * level ** exponent

    With `seed` set, the phase's first level chains from the seed instead of
    the previous level's threshold.
    """

    from_level: int = Field(ge=2)
    growth_percent: int = Field(ge=100)
    coefficient: int = Field(ge=1)
    exponent: int = Field(ge=1)
    seed: int | None = Field(default=None, ge=1)


class LevelSchedule(BaseModel):
    """Hand-tuned early thresholds followed by growth phases."""

    early_thresholds: list[int]
    phases: list[LevelPhase]

    @model_validator(mode="after")
    def _check_shape(self) -> "LevelSchedule":
        early = self.early_thresholds
        if not early or early[0] <= 0:
            raise ValueError("early_thresholds must start with a positive value")
        if any(b <= a for a, b in zip(early, early[1:])):
            raise ValueError("early_thresholds must be strictly increasing")
        if not self.phases:
            raise ValueError("level schedule needs at least one phase")
        if self.phases[0].from_level != len(early) + 1:
            raise ValueError("first phase must start right after early_thresholds")
        starts = [p.from_level for p in self.phases]
        if any(b <= a for a, b in zip(starts, starts[1:])):
            raise ValueError("phases must be ordered by from_level")
        last = self.phases[-1].from_level
        chained = [self.threshold(level) for level in range(len(early), last + 1)]
        if any(b <= a for a, b in zip(chained, chained[1:])):
            raise ValueError("level thresholds must be strictly increasing")
        return self

    def phase_for(self, level: int) -> LevelPhase | None:
        current = None
        for phase in self.phases:
            if level >= phase.from_level:
                current = phase
        return current

    def threshold(self, level: int) -> int:
        """Threshold for `level` >= 1, chained through the phases."""
        early = self.early_thresholds
        if level <= len(early):
            return early[level - 1]

        threshold = early[-1]
        for lvl in range(len(early) + 1, level + 1):
            phase = self.phase_for(lvl)
            if lvl == phase.from_level and phase.seed is not None:
                threshold = phase.seed
            threshold = (
                threshold * phase.growth_percent // 100
                + phase.coefficient * lvl ** phase.exponent
            )
        return threshold


class GameContent(BaseModel):
    """All content tables."""

    symbols: list[dict]
    pattern_multipliers: list[dict]
    instant_loss_base_probability: float = 0.0
    risk_schedule: RiskSchedule
    level_schedule: LevelSchedule

    @property
    def game_config(self) -> GameConfig:
        return GameConfig.model_validate({
            "symbols": self.symbols,
            "pattern_multipliers": self.pattern_multipliers,
            "instant_loss_base_probability": self.instant_loss_base_probability,
        })


def load_content(path: str | Path | None = None) -> GameContent:
    """Load and validate content tables from a JSON file."""
    content_path = Path(path) if path else BUNDLED_CONTENT_PATH
    with open(content_path) as f:
        raw = json.load(f)
    content = GameContent.model_validate(raw)
    # Validate the config eagerly so bad tables fail at load time
    content.game_config
    logger.debug("Loaded game content from %s", content_path)
    return content


@lru_cache(maxsize=1)
def get_content() -> GameContent:
    """Content tables for this process (settings.content_path or bundled)."""
    return load_content(settings.content_path)


@lru_cache(maxsize=1)
def default_game_config() -> GameConfig:
    """Base GameConfig from the active content tables."""
    return get_content().game_config
