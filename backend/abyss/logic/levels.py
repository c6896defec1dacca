"""Level threshold schedule and level advancement."""
from functools import lru_cache

from abyss.config import settings
from abyss.errors import MalformedInput
from abyss.logic.content import LevelSchedule, get_content


def base_threshold(level: int, schedule: LevelSchedule | None = None) -> int:
    """
    Score needed to leave `level` (before any discount).

    Early levels come straight from the table; later levels chain through the
    phase growth rule, from a phase seed where one is set.
    """
    if level < 1:
        raise MalformedInput(f"Level must be >= 1, got {level}.")
    if schedule is None:
        return _bundled_threshold(level)
    return schedule.threshold(level)


@lru_cache(maxsize=256)
def _bundled_threshold(level: int) -> int:
    return base_threshold(level, get_content().level_schedule)


def level_threshold(
    level: int,
    discount_percent: float = 0.0,
    schedule: LevelSchedule | None = None,
) -> int:
    """
    Threshold for `level` reduced by a level-progression discount.

    The discount is clamped to [0, settings.max_level_discount_percent] so the
    discounted schedule stays strictly increasing.
    """
    discount = min(max(discount_percent, 0.0), settings.max_level_discount_percent)
    threshold = base_threshold(level, schedule)
    if not discount:
        return threshold
    return max(1, int(threshold * (100 - discount) // 100))


def advance_level(
    score: int,
    level: int,
    discount_percent: float = 0.0,
    schedule: LevelSchedule | None = None,
) -> int:
    """Raise level while score meets the threshold; never lowers it."""
    while score >= level_threshold(level, discount_percent, schedule):
        level += 1
    return level
