"""Instant-loss risk by level (capped doubling)."""
from abyss.errors import MalformedInput
from abyss.logic.content import RiskSchedule, get_content
from abyss.logic.rng import RNGBase


def instant_loss_probability(level: int, schedule: RiskSchedule | None = None) -> float:
    """
    Percent chance of an instant loss on a spin at this level.

    With the bundled schedule:
    - Levels 1-3: 0%
    - Levels 4-6: 2.4%
    - Levels 7-9: 4.8%
    - Levels 10+: 9.6% (cap)
    """
    if level < 1:
        raise MalformedInput(f"Level must be >= 1, got {level}.")
    schedule = schedule or get_content().risk_schedule
    if level <= schedule.safe_through_level:
        return 0.0

    tier = (level - schedule.safe_through_level - 1) // schedule.tier_levels
    probability = schedule.base_percent
    for _ in range(tier):
        if probability >= schedule.cap_percent:
            break
        probability *= schedule.growth_factor
    return min(probability, schedule.cap_percent)


def roll_instant_loss(
    level: int, rng: RNGBase, schedule: RiskSchedule | None = None
) -> bool:
    """Bernoulli draw against instant_loss_probability(level)."""
    probability = instant_loss_probability(level, schedule)
    if probability <= 0:
        return False
    return rng.random() * 100 < probability
