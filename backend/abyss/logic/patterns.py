"""Pattern detection over a 3x5 grid.

Order of the returned list: horizontal (rows top to bottom), vertical
(columns left to right), diagonal (down-right then down-left), jackpot.
Detection does not know multipliers; resolve_multipliers() assigns them from
the active config.
"""
from abyss.errors import MalformedInput
from abyss.logic.generator import REELS, ROWS
from abyss.logic.models import GameConfig, Grid, Pattern, PatternKind, Position, Symbol


def validate_grid(grid: Grid) -> None:
    """Raise MalformedInput unless grid is 3 rows of 5 Symbols."""
    if not isinstance(grid, list) or len(grid) != ROWS:
        raise MalformedInput(f"Grid must have {ROWS} rows.")
    for row_idx, row in enumerate(grid):
        if not isinstance(row, list) or len(row) != REELS:
            raise MalformedInput(f"Grid row {row_idx} must have {REELS} cells.")
        for col_idx, cell in enumerate(row):
            if not isinstance(cell, Symbol):
                raise MalformedInput(
                    f"Grid cell ({row_idx}, {col_idx}) is not a Symbol: {cell!r}"
                )


def _all_equal(grid: Grid, positions: list[Position]) -> bool:
    first_row, first_col = positions[0]
    first = grid[first_row][first_col]
    return all(grid[r][c] == first for r, c in positions)


def _pattern(grid: Grid, kind: PatternKind, positions: list[Position]) -> Pattern:
    row, col = positions[0]
    return Pattern(kind=kind, positions=positions, symbol=grid[row][col])


def detect_horizontal(grid: Grid) -> list[Pattern]:
    """At most one pattern per row: 5 beats 4 beats 3, lowest start column wins."""
    patterns: list[Pattern] = []
    for row in range(ROWS):
        for length, kind in ((5, PatternKind.H5), (4, PatternKind.H4), (3, PatternKind.H3)):
            best = None
            for start in range(REELS - length + 1):
                positions = [(row, start + i) for i in range(length)]
                if _all_equal(grid, positions):
                    best = _pattern(grid, kind, positions)
                    break
            if best:
                patterns.append(best)
                break
    return patterns


def detect_vertical(grid: Grid) -> list[Pattern]:
    """Each column with three equal symbols."""
    patterns: list[Pattern] = []
    for col in range(REELS):
        positions = [(row, col) for row in range(ROWS)]
        if _all_equal(grid, positions):
            patterns.append(_pattern(grid, PatternKind.V3, positions))
    return patterns


def detect_diagonal(grid: Grid) -> list[Pattern]:
    """Every 3-cell diagonal, down-right (start cols 0..2) then down-left (2..4)."""
    patterns: list[Pattern] = []
    for start in range(0, REELS - 2):
        positions = [(i, start + i) for i in range(ROWS)]
        if _all_equal(grid, positions):
            patterns.append(_pattern(grid, PatternKind.D3, positions))
    for start in range(2, REELS):
        positions = [(i, start - i) for i in range(ROWS)]
        if _all_equal(grid, positions):
            patterns.append(_pattern(grid, PatternKind.D3, positions))
    return patterns


def detect_jackpot(grid: Grid) -> Pattern | None:
    """All 15 cells equal."""
    positions = [(row, col) for row in range(ROWS) for col in range(REELS)]
    if _all_equal(grid, positions):
        return _pattern(grid, PatternKind.JACKPOT, positions)
    return None


def detect_patterns(grid: Grid) -> list[Pattern]:
    """Detect all patterns. Jackpot is added on top of the line patterns."""
    validate_grid(grid)
    patterns: list[Pattern] = []
    patterns.extend(detect_horizontal(grid))
    patterns.extend(detect_vertical(grid))
    patterns.extend(detect_diagonal(grid))
    jackpot = detect_jackpot(grid)
    if jackpot:
        patterns.append(jackpot)
    return patterns


def resolve_multipliers(patterns: list[Pattern], config: GameConfig) -> list[Pattern]:
    """Copies of patterns with multipliers taken from config."""
    return [
        pattern.model_copy(update={"multiplier": config.multiplier(pattern.kind)})
        for pattern in patterns
    ]
