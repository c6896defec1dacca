"""HTTP protocol models for the application server."""
from typing import Any

from pydantic import BaseModel, Field

from abyss.config import settings
from abyss.logic.models import OwnedItem, Pattern, SessionState


# === Request Models ===


class ItemQuantity(BaseModel):
    """Catalog item id with the quantity owned."""

    itemId: int
    quantity: int = 1


class StartSessionRequest(BaseModel):
    """POST /session request body."""

    items: list[ItemQuantity] = Field(default_factory=list)


class SpinRequest(BaseModel):
    """POST /spin request body."""

    clientRequestId: str = Field(..., description="UUIDv4 idempotency key")


# === Response Models ===


class SessionView(BaseModel):
    """Session snapshot as seen by clients."""

    sessionId: str
    score: int
    totalScore: int
    level: int
    spinsRemaining: int
    isActive: bool

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionView":
        return cls(
            sessionId=state.session_id,
            score=state.score,
            totalScore=state.total_score,
            level=state.level,
            spinsRemaining=state.spins_remaining,
            isActive=state.is_active,
        )


class ItemView(BaseModel):
    itemId: int
    quantity: int
    effectKind: str
    effectMagnitude: float
    targetSymbol: str | None = None

    @classmethod
    def from_item(cls, item: OwnedItem) -> "ItemView":
        return cls(
            itemId=item.item_id,
            quantity=item.quantity,
            effectKind=item.effect_kind.value,
            effectMagnitude=item.effect_magnitude,
            targetSymbol=item.target_symbol.value if item.target_symbol else None,
        )


class PatternView(BaseModel):
    kind: str
    symbol: str
    positions: list[list[int]]
    multiplier: float

    @classmethod
    def from_pattern(cls, pattern: Pattern) -> "PatternView":
        return cls(
            kind=pattern.kind.value,
            symbol=pattern.symbol.value,
            positions=[list(p) for p in pattern.positions],
            multiplier=pattern.multiplier,
        )


class SessionResponse(BaseModel):
    """POST /session, GET /session and POST /end-session response."""

    protocolVersion: str = settings.protocol_version
    session: SessionView
    ownedItems: list[ItemView] = Field(default_factory=list)


class SpinResponse(BaseModel):
    """POST /spin response."""

    protocolVersion: str = settings.protocol_version
    roundId: str
    contentHash: str
    grid: list[list[str]]
    patterns: list[PatternView] = Field(default_factory=list)
    spinScore: int = 0
    instantLoss: bool = False
    immunityUsed: bool = False
    gameOver: bool = False
    settled: bool = True  # False until the ledger confirms a terminal write
    levelsGained: int = 0
    events: list[dict[str, Any]] = Field(default_factory=list)
    session: SessionView


class ContentResponse(BaseModel):
    """GET /content response: the tables every engine copy must share."""

    protocolVersion: str = settings.protocol_version
    contentHash: str
    spinsPerLevel: int
    content: dict[str, Any]
    levelThresholds: list[int]
    instantLossProbabilities: list[float]
