"""Session ledger and item catalog collaborators.

The ledger is the source of truth for session identity and the sink for
terminal outcomes. The engine never talks to it directly: the server reads a
snapshot before a spin and writes after it.
"""
import logging
from typing import Protocol

from abyss.errors import MalformedInput, SessionNotFound
from abyss.logic.models import EffectKind, OwnedItem, SessionState, Symbol


logger = logging.getLogger(__name__)


class SessionLedger(Protocol):
    """Authoritative session record."""

    async def get_session(self, session_id: str) -> SessionState:
        """Return the session snapshot; raise SessionNotFound if unknown."""
        ...

    async def get_owned_items(self, session_id: str) -> list[OwnedItem]:
        ...

    async def save_session(self, state: SessionState, owned_items: list[OwnedItem]) -> None:
        """Store a provisional snapshot after a spin."""
        ...

    async def end_session(self, session_id: str, final_score: int, final_level: int) -> None:
        """Durable terminal write."""
        ...


class ItemCatalog(Protocol):
    """Static item definitions."""

    def get_item_definition(self, item_id: int) -> OwnedItem:
        """Definition of an item as a quantity-1 OwnedItem."""
        ...


def _effect(kind: EffectKind, magnitude: float, target: Symbol | None = None) -> dict:
    definition = {"effect_kind": kind, "effect_magnitude": magnitude}
    if target is not None:
        definition["target_symbol"] = target
    return definition


def _points(target: Symbol, magnitude: float) -> dict:
    return _effect(EffectKind.DIRECT_SCORE_BONUS, magnitude, target)


def _odds(target: Symbol, magnitude: float) -> dict:
    return _effect(EffectKind.SYMBOL_PROBABILITY_BOOST, magnitude, target)


# Default shop catalog (item_id -> effect), keyed by the shop's item ids.
# Item 40 is the Biblia. Item 100 is a flat per-spin bonus with no shop id.
DEFAULT_ITEM_DEFINITIONS: dict[int, dict] = {
    # Symbol point boosts
    1: _points(Symbol.SEVEN, 5),
    33: _points(Symbol.SEVEN, 8),
    2: _points(Symbol.DIAMOND, 3),
    35: _points(Symbol.DIAMOND, 6),
    3: _points(Symbol.CHERRY, 8),
    13: _points(Symbol.CHERRY, 12),
    20: _points(Symbol.CHERRY, 20),
    37: _points(Symbol.CHERRY, 15),
    4: _points(Symbol.LEMON, 2),
    14: _points(Symbol.LEMON, 4),
    21: _points(Symbol.LEMON, 6),
    5: _points(Symbol.COIN, 2),
    15: _points(Symbol.COIN, 5),
    22: _points(Symbol.COIN, 8),
    39: _points(Symbol.COIN, 10),
    # Symbol probability boosts
    7: _odds(Symbol.SEVEN, 15),
    11: _odds(Symbol.SEVEN, 25),
    34: _odds(Symbol.SEVEN, 35),
    8: _odds(Symbol.DIAMOND, 12),
    36: _odds(Symbol.DIAMOND, 20),
    12: _odds(Symbol.CHERRY, 10),
    16: _odds(Symbol.CHERRY, 18),
    38: _odds(Symbol.CHERRY, 25),
    9: _odds(Symbol.LEMON, 8),
    17: _odds(Symbol.LEMON, 15),
    10: _odds(Symbol.COIN, 10),
    18: _odds(Symbol.COIN, 12),
    # Pattern multiplier boosts
    6: _effect(EffectKind.PATTERN_MULTIPLIER_BOOST, 10),
    19: _effect(EffectKind.PATTERN_MULTIPLIER_BOOST, 15),
    23: _effect(EffectKind.PATTERN_MULTIPLIER_BOOST, 20),
    27: _effect(EffectKind.PATTERN_MULTIPLIER_BOOST, 25),
    31: _effect(EffectKind.PATTERN_MULTIPLIER_BOOST, 30),
    41: _effect(EffectKind.PATTERN_MULTIPLIER_BOOST, 35),
    # Score multipliers
    24: _effect(EffectKind.SCORE_MULTIPLIER, 5),
    28: _effect(EffectKind.SCORE_MULTIPLIER, 10),
    32: _effect(EffectKind.SCORE_MULTIPLIER, 15),
    # Extra spins per level
    25: _effect(EffectKind.SPIN_BONUS, 1),
    29: _effect(EffectKind.SPIN_BONUS, 2),
    42: _effect(EffectKind.SPIN_BONUS, 3),
    43: _effect(EffectKind.SPIN_BONUS, 5),
    # Level threshold discounts
    26: _effect(EffectKind.LEVEL_PROGRESSION_BONUS, 5),
    30: _effect(EffectKind.LEVEL_PROGRESSION_BONUS, 10),
    40: _effect(EffectKind.INSTANT_LOSS_IMMUNITY, 1),
    100: _effect(EffectKind.DIRECT_SCORE_BONUS, 5),
}


class StaticItemCatalog:
    """Item catalog backed by an in-process table."""

    def __init__(self, definitions: dict[int, dict] | None = None):
        self._definitions = definitions if definitions is not None else DEFAULT_ITEM_DEFINITIONS

    def get_item_definition(self, item_id: int) -> OwnedItem:
        definition = self._definitions.get(item_id)
        if definition is None:
            raise MalformedInput(f"Unknown item id {item_id}.")
        return OwnedItem(item_id=item_id, quantity=1, **definition)

    def owned(self, item_id: int, quantity: int) -> OwnedItem:
        """OwnedItem for item_id with the given quantity."""
        if quantity < 0:
            raise MalformedInput(f"Item {item_id} has negative quantity {quantity}.")
        return self.get_item_definition(item_id).model_copy(update={"quantity": quantity})


class InMemorySessionLedger:
    """Process-local ledger for tests and development."""

    def __init__(self):
        self._sessions: dict[str, SessionState] = {}
        self._items: dict[str, list[OwnedItem]] = {}
        self.ended: dict[str, tuple[int, int]] = {}

    async def get_session(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFound(session_id)
        return state.model_copy()

    async def get_owned_items(self, session_id: str) -> list[OwnedItem]:
        return [item.model_copy() for item in self._items.get(session_id, [])]

    async def save_session(self, state: SessionState, owned_items: list[OwnedItem]) -> None:
        self._sessions[state.session_id] = state.model_copy()
        self._items[state.session_id] = [item.model_copy() for item in owned_items]

    async def end_session(self, session_id: str, final_score: int, final_level: int) -> None:
        logger.info(
            "Ledger end_session %s: score=%d level=%d", session_id, final_score, final_level
        )
        self.ended[session_id] = (final_score, final_level)
        state = self._sessions.get(session_id)
        if state is not None:
            self._sessions[session_id] = state.model_copy(update={"is_active": False})
