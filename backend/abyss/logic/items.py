"""Item effects: aggregate owned items into a bundle, derive a boosted config."""
import logging
import math

from abyss.errors import MalformedInput
from abyss.logic.models import (
    EffectKind,
    GameConfig,
    ItemBonusBundle,
    OwnedItem,
    PatternMultiplier,
    Symbol,
    SymbolConfig,
)


logger = logging.getLogger(__name__)

# Selectable weights are renormalized to this total after probability boosts
WEIGHT_TOTAL = 100


def _validate_item(item: OwnedItem) -> None:
    if item.quantity < 0:
        raise MalformedInput(f"Item {item.item_id} has negative quantity {item.quantity}.")
    if item.effect_magnitude < 0:
        raise MalformedInput(
            f"Item {item.item_id} has negative magnitude {item.effect_magnitude}."
        )
    if item.effect_kind == EffectKind.SYMBOL_PROBABILITY_BOOST:
        if item.target_symbol is None:
            raise MalformedInput(f"Item {item.item_id} boosts probability without a target.")
        if item.target_symbol == Symbol.SIX:
            raise MalformedInput(f"Item {item.item_id} cannot boost the cursed symbol.")


def resolve_items(owned_items: list[OwnedItem]) -> ItemBonusBundle:
    """
    Aggregate owned items into an ItemBonusBundle.

    Numeric effects use magnitude * quantity. Score multipliers compose
    multiplicatively, everything else adds up. A direct score bonus with a
    target symbol raises that symbol's base points; without a target it is a
    flat per-spin addition. Immunity is a boolean OR.
    """
    bundle = ItemBonusBundle()

    for item in owned_items:
        _validate_item(item)
        if item.quantity == 0:
            continue

        value = item.effect_magnitude * item.quantity
        kind = item.effect_kind

        if kind == EffectKind.SCORE_MULTIPLIER:
            bundle.score_multiplier *= 1 + value / 100
        elif kind == EffectKind.PATTERN_MULTIPLIER_BOOST:
            bundle.pattern_multiplier_boost_percent += value
        elif kind == EffectKind.SYMBOL_PROBABILITY_BOOST:
            target = item.target_symbol
            boosts = bundle.symbol_probability_boosts
            boosts[target] = boosts.get(target, 0) + value
        elif kind == EffectKind.DIRECT_SCORE_BONUS:
            if item.target_symbol is None:
                bundle.direct_score_bonus += int(value)
            else:
                target = item.target_symbol
                boosts = bundle.symbol_point_boosts
                boosts[target] = boosts.get(target, 0) + value
        elif kind == EffectKind.SPIN_BONUS:
            bundle.spin_bonus += int(value)
        elif kind == EffectKind.LEVEL_PROGRESSION_BONUS:
            bundle.level_progression_discount_percent += value
        elif kind == EffectKind.INSTANT_LOSS_IMMUNITY:
            bundle.has_instant_loss_immunity = True

    return bundle


def normalize_weights(symbols: list[SymbolConfig]) -> list[SymbolConfig]:
    """
    Scale selectable (non-six) weights to sum WEIGHT_TOTAL.

    Weights are rounded half-up; any rounding residue goes to the currently
    largest weight (earliest in enum order on ties).
    """
    selectable = [s for s in symbols if s.symbol != Symbol.SIX]
    total = sum(s.probability_weight for s in selectable)
    if total <= 0:
        logger.warning("Cannot normalize symbol weights summing to %s", total)
        return list(symbols)
    if total == WEIGHT_TOTAL:
        return list(symbols)

    factor = WEIGHT_TOTAL / total
    scaled = {
        s.symbol: math.floor(s.probability_weight * factor + 0.5) for s in selectable
    }
    residue = WEIGHT_TOTAL - sum(scaled.values())
    if residue:
        largest = max(selectable, key=lambda s: scaled[s.symbol]).symbol
        scaled[largest] += residue

    return [
        s.model_copy(update={"probability_weight": scaled[s.symbol]})
        if s.symbol in scaled else s
        for s in symbols
    ]


def apply_bundle(config: GameConfig, bundle: ItemBonusBundle) -> GameConfig:
    """
    Derive the per-spin config from a base config and an item bundle.

    The base config is left untouched. With the identity bundle the result
    equals the input.
    """
    symbols = list(config.symbols)

    if bundle.symbol_point_boosts:
        symbols = [
            s.model_copy(update={
                "base_points": s.base_points + bundle.symbol_point_boosts[s.symbol]
            })
            if s.symbol in bundle.symbol_point_boosts else s
            for s in symbols
        ]

    if bundle.symbol_probability_boosts:
        symbols = [
            s.model_copy(update={
                "probability_weight": s.probability_weight
                + bundle.symbol_probability_boosts[s.symbol]
            })
            if s.symbol in bundle.symbol_probability_boosts else s
            for s in symbols
        ]
        symbols = normalize_weights(symbols)

    multipliers = list(config.pattern_multipliers)
    if bundle.pattern_multiplier_boost_percent:
        factor = 1 + bundle.pattern_multiplier_boost_percent / 100
        multipliers = [
            PatternMultiplier(pattern_kind=pm.pattern_kind, multiplier=pm.multiplier * factor)
            for pm in multipliers
        ]

    return config.model_copy(update={
        "symbols": tuple(symbols),
        "pattern_multipliers": tuple(multipliers),
    })


def consume_immunity(owned_items: list[OwnedItem]) -> tuple[list[OwnedItem], int | None]:
    """
    Remove one immunity unit.

    Returns the new item list and the id of the item decremented (None if no
    immunity was owned). The input list is not modified.
    """
    consumed_id = None
    result: list[OwnedItem] = []
    for item in owned_items:
        if (
            consumed_id is None
            and item.effect_kind == EffectKind.INSTANT_LOSS_IMMUNITY
            and item.quantity >= 1
        ):
            consumed_id = item.item_id
            result.append(item.model_copy(update={"quantity": item.quantity - 1}))
        else:
            result.append(item)
    return result, consumed_id
