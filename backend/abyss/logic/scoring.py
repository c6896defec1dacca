"""Score calculation: patterns to points.

Only matches score. Intermediate values stay fractional so composed boosts
keep their precision; apply_score_bonuses() is the one place that floors.
"""
import math

from abyss.logic.models import (
    GameConfig,
    ItemBonusBundle,
    Pattern,
    PatternBonus,
    ScoreBreakdown,
)


def score_of(pattern: Pattern, config: GameConfig) -> float:
    """base_points(symbol) * cell_count * multiplier, never negative."""
    value = config.points(pattern.symbol) * pattern.cell_count * pattern.multiplier
    return max(0.0, value)


def raw_spin_score(patterns: list[Pattern], config: GameConfig) -> float:
    return sum(score_of(p, config) for p in patterns)


def apply_score_bonuses(raw_score: float, bundle: ItemBonusBundle) -> int:
    """floor(raw * score_multiplier) + direct_score_bonus, clamped to 0."""
    return max(0, math.floor(raw_score * bundle.score_multiplier) + bundle.direct_score_bonus)


def score_spin(
    patterns: list[Pattern],
    config: GameConfig,
    bundle: ItemBonusBundle | None = None,
) -> ScoreBreakdown:
    """
    Score a spin.

    Args:
        patterns: Patterns with multipliers already resolved
        config: Active (possibly boosted) config
        bundle: Item modifiers (identity if None)

    Returns:
        ScoreBreakdown with per-pattern bonuses and the floored total
    """
    bundle = bundle or ItemBonusBundle()
    bonuses = [PatternBonus(pattern=p, bonus=score_of(p, config)) for p in patterns]
    raw = sum(b.bonus for b in bonuses)
    return ScoreBreakdown(
        pattern_bonuses=bonuses,
        raw_score=raw,
        total_score=apply_score_bonuses(raw, bundle),
    )
