"""Game data models: symbols, content tables, items, patterns, session state."""
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Symbol(str, Enum):
    """Slot symbols in enumeration order (ties resolve to the earlier one)."""
    SEVEN = "seven"
    DIAMOND = "diamond"
    CHERRY = "cherry"
    COIN = "coin"
    LEMON = "lemon"
    SIX = "six"  # cursed, only placed by a forced instant-loss grid


class PatternKind(str, Enum):
    """Scoring alignments."""
    H3 = "h3"
    H4 = "h4"
    H5 = "h5"
    V3 = "v3"
    D3 = "d3"
    JACKPOT = "jackpot"


class EffectKind(str, Enum):
    """Item effect kinds."""
    SCORE_MULTIPLIER = "score_multiplier"
    PATTERN_MULTIPLIER_BOOST = "pattern_multiplier_boost"
    SYMBOL_PROBABILITY_BOOST = "symbol_probability_boost"
    DIRECT_SCORE_BONUS = "direct_score_bonus"
    SPIN_BONUS = "spin_bonus"
    LEVEL_PROGRESSION_BONUS = "level_progression_bonus"
    INSTANT_LOSS_IMMUNITY = "instant_loss_immunity"


class SessionPhase(str, Enum):
    """Session state machine phases."""
    IDLE = "IDLE"
    SPINNING = "SPINNING"
    GAME_OVER = "GAME_OVER"


Grid = list[list[Symbol]]
Position = tuple[int, int]


class SymbolConfig(BaseModel):
    """Points and draw weight of one symbol."""

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    base_points: float = Field(ge=0)
    probability_weight: float = Field(ge=0)


class PatternMultiplier(BaseModel):
    """Multiplier applied to one pattern kind."""

    model_config = ConfigDict(frozen=True)

    pattern_kind: PatternKind
    multiplier: float = Field(ge=1)


class GameConfig(BaseModel):
    """
    Immutable base game configuration.

    Per-spin working copies are derived with model_copy(update=...), never
    mutated in place.
    """

    model_config = ConfigDict(frozen=True)

    symbols: tuple[SymbolConfig, ...]
    pattern_multipliers: tuple[PatternMultiplier, ...]
    instant_loss_base_probability: float = Field(default=0.0, ge=0, le=100)

    @model_validator(mode="after")
    def _one_entry_per_symbol(self) -> "GameConfig":
        seen = [s.symbol for s in self.symbols]
        if sorted(seen, key=list(Symbol).index) != list(Symbol):
            raise ValueError("symbols must contain exactly one entry per Symbol")
        kinds = [pm.pattern_kind for pm in self.pattern_multipliers]
        if len(kinds) != len(set(kinds)):
            raise ValueError("pattern_multipliers must not repeat a pattern kind")
        return self

    def symbol_config(self, symbol: Symbol) -> SymbolConfig:
        """Return the entry for a symbol."""
        for entry in self.symbols:
            if entry.symbol == symbol:
                return entry
        raise KeyError(symbol)

    def points(self, symbol: Symbol) -> float:
        return self.symbol_config(symbol).base_points

    def multiplier(self, kind: PatternKind) -> float:
        """Multiplier for a pattern kind; kinds missing from the table count as 1."""
        for entry in self.pattern_multipliers:
            if entry.pattern_kind == kind:
                return entry.multiplier
        return 1.0


class Pattern(BaseModel):
    """A detected alignment. multiplier is 0 until resolved against a config."""

    kind: PatternKind
    positions: list[Position]
    symbol: Symbol
    multiplier: float = 0.0

    @property
    def cell_count(self) -> int:
        return len(self.positions)


class OwnedItem(BaseModel):
    """
    Item owned by a session, as read from the ledger.

    Quantity and magnitude are checked by the item resolver (MalformedInput).
    """

    item_id: int
    quantity: int
    effect_kind: EffectKind
    effect_magnitude: float
    target_symbol: Symbol | None = None


class ItemBonusBundle(BaseModel):
    """Modifiers aggregated from owned items for one spin."""

    score_multiplier: float = 1.0
    pattern_multiplier_boost_percent: float = 0.0
    direct_score_bonus: int = 0
    spin_bonus: int = 0
    level_progression_discount_percent: float = 0.0
    symbol_probability_boosts: dict[Symbol, float] = Field(default_factory=dict)
    symbol_point_boosts: dict[Symbol, float] = Field(default_factory=dict)
    has_instant_loss_immunity: bool = False


class SessionState(BaseModel):
    """
    Per-session progress.

    Tracks:
    - score (current run, zeroed by an instant loss)
    - total_score (monotonic, never reset)
    - level (>= 1)
    - spins_remaining in the current level
    """

    session_id: str
    score: int = Field(default=0, ge=0)
    total_score: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    spins_remaining: int = Field(default=5, ge=0)
    is_active: bool = True


class PatternBonus(BaseModel):
    """Score contributed by one pattern, before flooring."""

    pattern: Pattern
    bonus: float


class ScoreBreakdown(BaseModel):
    """Score of one spin."""

    pattern_bonuses: list[PatternBonus] = Field(default_factory=list)
    raw_score: float = 0.0
    total_score: int = 0


class SpinOutcome(BaseModel):
    """Result of one spin transition."""
    grid: Grid = Field(default_factory=list)  # 3x5, [row][col]
    patterns: list[Pattern] = Field(default_factory=list)
    spin_score: int = 0
    instant_loss: bool = False
    immunity_used: bool = False
    consumed_item_id: int | None = None
    game_over: bool = False
    levels_gained: int = 0
    events: list[dict[str, Any]] = Field(default_factory=list)
    next_state: SessionState
    owned_items: list[OwnedItem] = Field(default_factory=list)
