"""Grid generation: weighted symbol draws and the forced instant-loss layout."""
import logging

from abyss.errors import MalformedInput
from abyss.logic.models import GameConfig, Grid, Symbol, SymbolConfig
from abyss.logic.rng import RNGBase


logger = logging.getLogger(__name__)

ROWS = 3
REELS = 5

# Forced instant-loss layout: three sixes across the middle of row 1
INSTANT_LOSS_POSITIONS: tuple[tuple[int, int], ...] = ((1, 1), (1, 2), (1, 3))


def selectable_symbols(config: GameConfig) -> list[SymbolConfig]:
    """Symbol entries eligible for normal draws (six excluded), in enum order."""
    order = list(Symbol)
    entries = [s for s in config.symbols if s.symbol != Symbol.SIX]
    return sorted(entries, key=lambda s: order.index(s.symbol))


def draw_symbol(entries: list[SymbolConfig], rng: RNGBase) -> Symbol:
    """
    Weighted selection over entries.

    Draws u in [0, total_weight) and subtracts each weight in order until the
    remainder is <= 0. Falls back to a uniform pick if the weights sum to 0.
    """
    if not entries:
        raise MalformedInput("No selectable symbols in config.")

    total_weight = sum(s.probability_weight for s in entries)
    if total_weight <= 0:
        logger.warning(
            "Symbol weights sum to %s; falling back to uniform draw", total_weight
        )
        return entries[rng.randint(0, len(entries) - 1)].symbol

    remainder = rng.random() * total_weight
    for entry in entries:
        if entry.probability_weight <= 0:
            continue
        remainder -= entry.probability_weight
        if remainder <= 0:
            return entry.symbol

    # Float residue when u lands right at the top of the range
    return next(e for e in reversed(entries) if e.probability_weight > 0).symbol


def generate_grid(
    config: GameConfig,
    rng: RNGBase,
    force_instant_loss: bool = False,
) -> Grid:
    """
    Generate a 3x5 grid indexed [row][col].

    Normal draws never produce six. A forced grid places six at exactly
    INSTANT_LOSS_POSITIONS and draws the other 12 cells normally.
    """
    entries = selectable_symbols(config)
    grid: Grid = []
    for row in range(ROWS):
        cells = []
        for col in range(REELS):
            if force_instant_loss and (row, col) in INSTANT_LOSS_POSITIONS:
                cells.append(Symbol.SIX)
            else:
                cells.append(draw_symbol(entries, rng))
        grid.append(cells)
    return grid
