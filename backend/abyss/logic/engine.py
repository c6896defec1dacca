"""Per-session spin state machine.

States:
- IDLE: active, spins remaining, ready for a spin
- SPINNING: a spin is in flight, outcome not yet committed
- GAME_OVER: inactive, terminal

A spin runs on a working copy of the session state and is committed in one
step at the end, so a failed spin leaves the session untouched.
"""
import logging
import threading
from typing import Any

from abyss.config import settings
from abyss.errors import ErrorCode, IllegalSpin
from abyss.logic.content import GameContent, get_content
from abyss.logic.generator import generate_grid
from abyss.logic.items import apply_bundle, consume_immunity, resolve_items
from abyss.logic.levels import advance_level
from abyss.logic.models import (
    GameConfig,
    Grid,
    OwnedItem,
    SessionPhase,
    SessionState,
    SpinOutcome,
)
from abyss.logic.patterns import detect_patterns, resolve_multipliers
from abyss.logic.risk import roll_instant_loss
from abyss.logic.rng import ProductionRNG, RNGBase
from abyss.logic.scoring import score_spin
from abyss.telemetry import (
    LevelUpEvent,
    SessionEndedEvent,
    TelemetryService,
    telemetry_service,
)


logger = logging.getLogger(__name__)

END_INSTANT_LOSS = "instant_loss"
END_OUT_OF_SPINS = "out_of_spins"
END_BY_PLAYER = "ended_by_player"


def _grid_values(grid: Grid) -> list[list[str]]:
    return [[cell.value for cell in row] for row in grid]


class GameSession:
    """
    One play-through: owns its SessionState and runs spins against it.

    Implements:
    - Spin guard (inactive, out of spins, spin already in flight)
    - Instant-loss roll with immunity consumption
    - Grid generation, pattern detection and scoring with item boosts
    - Level advancement and per-level spin allotment
    - LevelUp / SessionEnded telemetry

    Callers must still serialize requests per session across processes; the
    in-process lock only rejects overlapping spins on this object.
    """

    def __init__(
        self,
        state: SessionState,
        owned_items: list[OwnedItem] | None = None,
        rng: RNGBase | None = None,
        config: GameConfig | None = None,
        content: GameContent | None = None,
        telemetry: TelemetryService | None = None,
    ):
        self.content = content or get_content()
        self.config = config or self.content.game_config
        self.rng = rng or ProductionRNG()
        self.telemetry = telemetry or telemetry_service
        self._state = state.model_copy(deep=True)
        self._owned_items = [item.model_copy() for item in owned_items or []]
        self._spin_lock = threading.Lock()
        self._phase = SessionPhase.IDLE if self._state.is_active else SessionPhase.GAME_OVER

    @classmethod
    def start(
        cls,
        session_id: str,
        owned_items: list[OwnedItem] | None = None,
        **kwargs: Any,
    ) -> "GameSession":
        """
        Create a fresh session: score 0, level 1, a full spin allotment.

        Banked SpinBonus items add to the allotment.
        """
        bundle = resolve_items(owned_items or [])
        state = SessionState(
            session_id=session_id,
            spins_remaining=settings.spins_per_level + bundle.spin_bonus,
        )
        logger.info("Session %s started with %d spins", session_id, state.spins_remaining)
        return cls(state, owned_items, **kwargs)

    @classmethod
    def from_snapshot(
        cls,
        state: SessionState,
        owned_items: list[OwnedItem],
        **kwargs: Any,
    ) -> "GameSession":
        """Restore a session from a ledger snapshot (inactive snapshots restore as GAME_OVER)."""
        return cls(state, owned_items, **kwargs)

    @property
    def state(self) -> SessionState:
        """Copy of the committed state."""
        return self._state.model_copy()

    @property
    def owned_items(self) -> list[OwnedItem]:
        return [item.model_copy() for item in self._owned_items]

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    def _check_can_spin(self) -> None:
        if not self._state.is_active:
            raise IllegalSpin(ErrorCode.SESSION_INACTIVE, "Session is not active.")
        if self._state.spins_remaining <= 0:
            raise IllegalSpin(ErrorCode.NO_SPINS_REMAINING, "No spins remaining.")

    def request_spin(self) -> SpinOutcome:
        """
        Run one spin and commit it.

        Raises:
            IllegalSpin: session inactive, no spins left, or spin in flight
            MalformedInput: owned items violate the item contract
        """
        if not self._spin_lock.acquire(blocking=False):
            raise IllegalSpin(
                ErrorCode.ROUND_IN_PROGRESS,
                "Another spin is in progress for this session.",
            )
        try:
            self._check_can_spin()
            self._phase = SessionPhase.SPINNING
            try:
                outcome = self._spin()
            except Exception:
                self._phase = SessionPhase.IDLE
                raise

            self._state = outcome.next_state.model_copy()
            self._owned_items = [item.model_copy() for item in outcome.owned_items]
            self._phase = SessionPhase.GAME_OVER if outcome.game_over else SessionPhase.IDLE
        finally:
            self._spin_lock.release()

        self._emit(outcome)
        return outcome

    def _spin(self) -> SpinOutcome:
        state = self._state.model_copy()
        items = self._owned_items
        bundle = resolve_items(items)
        events: list[dict[str, Any]] = []

        # 1) A spin is spent as soon as it is accepted
        state.spins_remaining -= 1

        # 2) Instant-loss roll
        instant_loss = roll_instant_loss(state.level, self.rng, self.content.risk_schedule)
        immunity_used = False
        consumed_item_id = None
        if instant_loss and bundle.has_instant_loss_immunity:
            items, consumed_item_id = consume_immunity(items)
            immunity_used = True
            events.append({"type": "immunityUsed", "itemId": consumed_item_id})
            logger.info(
                "Session %s: instant loss blocked by item %s",
                state.session_id,
                consumed_item_id,
            )

        # 3) Unprotected instant loss: forced grid, score wiped, game over
        if instant_loss and not immunity_used:
            grid = generate_grid(self.config, self.rng, force_instant_loss=True)
            events.append({"type": "reveal", "grid": _grid_values(grid)})
            events.append({"type": "instantLoss", "lostScore": state.score})
            state.score = 0
            state.is_active = False
            events.append(self._ended_event(state, END_INSTANT_LOSS))
            logger.info("Session %s: instant loss at level %d", state.session_id, state.level)
            return SpinOutcome(
                grid=grid,
                instant_loss=True,
                game_over=True,
                events=events,
                next_state=state,
                owned_items=items,
            )

        # 4) Normal spin against the boosted config
        active_config = apply_bundle(self.config, bundle)
        grid = generate_grid(active_config, self.rng)
        events.append({"type": "reveal", "grid": _grid_values(grid)})

        patterns = resolve_multipliers(detect_patterns(grid), active_config)
        breakdown = score_spin(patterns, active_config, bundle)
        for pattern_bonus in breakdown.pattern_bonuses:
            pattern = pattern_bonus.pattern
            events.append({
                "type": "patternHit",
                "kind": pattern.kind.value,
                "symbol": pattern.symbol.value,
                "positions": [list(p) for p in pattern.positions],
                "multiplier": pattern.multiplier,
                "bonus": pattern_bonus.bonus,
            })

        state.score += breakdown.total_score
        state.total_score += breakdown.total_score

        # 5) Level-up, refilling the spin allotment
        previous_level = state.level
        state.level = advance_level(
            state.score,
            state.level,
            bundle.level_progression_discount_percent,
            self.content.level_schedule,
        )
        levels_gained = state.level - previous_level
        if levels_gained:
            state.spins_remaining = settings.spins_per_level + bundle.spin_bonus
            events.append({
                "type": "levelUp",
                "previousLevel": previous_level,
                "level": state.level,
                "spinsRemaining": state.spins_remaining,
            })

        # 6) Out of spins ends the session
        game_over = False
        if state.spins_remaining <= 0:
            state.is_active = False
            game_over = True
            events.append(self._ended_event(state, END_OUT_OF_SPINS))

        return SpinOutcome(
            grid=grid,
            patterns=patterns,
            spin_score=breakdown.total_score,
            instant_loss=instant_loss,
            immunity_used=immunity_used,
            consumed_item_id=consumed_item_id,
            game_over=game_over,
            levels_gained=levels_gained,
            events=events,
            next_state=state,
            owned_items=items,
        )

    def end(self) -> SessionState:
        """End the session on the player's request and emit SessionEnded."""
        if not self._spin_lock.acquire(blocking=False):
            raise IllegalSpin(
                ErrorCode.ROUND_IN_PROGRESS,
                "Cannot end a session while a spin is in progress.",
            )
        try:
            if not self._state.is_active:
                raise IllegalSpin(ErrorCode.SESSION_INACTIVE, "Session is not active.")
            state = self._state.model_copy(update={"is_active": False})
            self._state = state
            self._phase = SessionPhase.GAME_OVER
        finally:
            self._spin_lock.release()

        self.telemetry.emit_session_ended(self._session_ended(state, END_BY_PLAYER))
        return state.model_copy()

    @staticmethod
    def _ended_event(state: SessionState, reason: str) -> dict[str, Any]:
        return {
            "type": "sessionEnded",
            "reason": reason,
            "finalScore": state.score,
            "finalLevel": state.level,
            "totalScore": state.total_score,
        }

    @staticmethod
    def _session_ended(state: SessionState, reason: str) -> SessionEndedEvent:
        return SessionEndedEvent(
            session_id=state.session_id,
            final_score=state.score,
            final_level=state.level,
            total_score=state.total_score,
            reason=reason,
        )

    def _emit(self, outcome: SpinOutcome) -> None:
        """Forward committed LevelUp / SessionEnded events to telemetry."""
        state = outcome.next_state
        for event in outcome.events:
            if event["type"] == "levelUp":
                self.telemetry.emit_level_up(
                    LevelUpEvent(
                        session_id=state.session_id,
                        previous_level=event["previousLevel"],
                        new_level=event["level"],
                        score=state.score,
                        spins_remaining=event["spinsRemaining"],
                    )
                )
            elif event["type"] == "sessionEnded":
                self.telemetry.emit_session_ended(
                    self._session_ended(state, event["reason"])
                )
