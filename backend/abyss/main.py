"""Abyss application server: hosts the slot engine behind a FastAPI app."""
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from abyss.config import settings
from abyss.content_hash import get_content_hash
from abyss.errors import CollaboratorUnavailable, ErrorCode, GameError, IllegalSpin, SessionNotFound
from abyss.ledger import SessionLedger, StaticItemCatalog
from abyss.logic.content import get_content
from abyss.logic.engine import GameSession
from abyss.logic.levels import level_threshold
from abyss.logic.models import SessionState
from abyss.logic.risk import instant_loss_probability
from abyss.logic.rng import ProductionRNG, RNGBase
from abyss.middleware import ErrorHandlerMiddleware, SessionIdMiddleware
from abyss.protocol import (
    ContentResponse,
    ItemView,
    PatternView,
    SessionResponse,
    SessionView,
    SpinRequest,
    SpinResponse,
    StartSessionRequest,
)
from abyss.redis_service import redis_service
from abyss.telemetry import SpinProcessedEvent, SpinRejectedEvent, telemetry_service
from abyss.validators import validate_items, validate_spin_request


logger = logging.getLogger(__name__)

# Levels listed in GET /content
CONTENT_PREVIEW_LEVELS = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage Redis connection lifecycle."""
    logging.basicConfig(level=settings.log_level)
    await redis_service.connect()
    yield
    await redis_service.close()


app = FastAPI(
    title="Abyss Slot Server",
    version="0.1.0",
    description="Application server for the Abyss slot engine",
    lifespan=lifespan,
)

app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(SessionIdMiddleware)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    return exc.to_response()


# Collaborators and randomness (swapped in tests)
ledger: SessionLedger = redis_service
catalog = StaticItemCatalog()
rng: RNGBase = ProductionRNG()


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/content")
async def content() -> dict:
    """Content tables and their parity hash."""
    tables = get_content()
    response = ContentResponse(
        contentHash=get_content_hash(),
        spinsPerLevel=settings.spins_per_level,
        content=tables.model_dump(mode="json"),
        levelThresholds=[
            level_threshold(level) for level in range(1, CONTENT_PREVIEW_LEVELS + 1)
        ],
        instantLossProbabilities=[
            instant_loss_probability(level)
            for level in range(1, CONTENT_PREVIEW_LEVELS + 1)
        ],
    )
    return response.model_dump()


def _session_response(state: SessionState, items) -> dict:
    return SessionResponse(
        session=SessionView.from_state(state),
        ownedItems=[ItemView.from_item(item) for item in items],
    ).model_dump()


@app.post("/session")
async def start_session(request: Request, body: StartSessionRequest) -> dict:
    """Start a session with the given items; spins include banked SpinBonus."""
    session_id = request.state.session_id
    validate_items(body)

    items = [catalog.owned(item.itemId, item.quantity) for item in body.items]

    async with redis_service.session_lock(session_id):
        try:
            await ledger.get_session(session_id)
        except SessionNotFound:
            pass
        else:
            raise GameError(ErrorCode.INVALID_REQUEST, f"Session {session_id} already exists.")

        game = GameSession.start(session_id, items, rng=rng)
        await ledger.save_session(game.state, game.owned_items)
    return _session_response(game.state, game.owned_items)


@app.get("/session")
async def get_session(request: Request) -> dict:
    """Session snapshot from the ledger."""
    session_id = request.state.session_id
    state = await ledger.get_session(session_id)
    items = await ledger.get_owned_items(session_id)
    return _session_response(state, items)


async def _settle(state: SessionState) -> bool:
    """
    Forward a terminal outcome to the ledger.

    Returns False if the write failed; the outcome then stays provisional and
    the caller may retry via POST /end-session.
    """
    try:
        await ledger.end_session(state.session_id, state.score, state.level)
    except CollaboratorUnavailable as e:
        logger.warning("Ledger end_session failed for %s: %s", state.session_id, e)
        return False
    return True


@app.post("/spin")
async def spin(request: Request, body: SpinRequest) -> dict:
    """
    POST /spin.

    Implements:
    - Idempotency (same clientRequestId returns cached response)
    - Per-session locking (ROUND_IN_PROGRESS on concurrent spin)
    - Ledger read before, snapshot write and terminal write after the spin
    """
    session_id = request.state.session_id
    validate_spin_request(body)
    payload = {"sessionId": session_id}

    cached = await redis_service.check_idempotency(body.clientRequestId, payload)
    if cached is not None:
        return cached

    try:
        async with redis_service.session_lock(session_id) as lock_metrics:
            cached = await redis_service.check_idempotency(body.clientRequestId, payload)
            if cached is not None:
                return cached

            state = await ledger.get_session(session_id)
            items = await ledger.get_owned_items(session_id)
            game = GameSession.from_snapshot(state, items, rng=rng)
            outcome = game.request_spin()

            await ledger.save_session(outcome.next_state, outcome.owned_items)
            settled = True
            if outcome.game_over:
                settled = await _settle(outcome.next_state)

            content_hash = get_content_hash()
            response = SpinResponse(
                roundId=str(uuid.uuid4()),
                contentHash=content_hash,
                grid=[[cell.value for cell in row] for row in outcome.grid],
                patterns=[PatternView.from_pattern(p) for p in outcome.patterns],
                spinScore=outcome.spin_score,
                instantLoss=outcome.instant_loss,
                immunityUsed=outcome.immunity_used,
                gameOver=outcome.game_over,
                settled=settled,
                levelsGained=outcome.levels_gained,
                events=outcome.events,
                session=SessionView.from_state(outcome.next_state),
            )
            response_dict = response.model_dump()

            await redis_service.store_idempotency(body.clientRequestId, payload, response_dict)

            telemetry_service.emit_spin_processed(
                SpinProcessedEvent(
                    session_id=session_id,
                    client_request_id=body.clientRequestId,
                    lock_acquire_ms=lock_metrics.acquire_ms,
                    content_hash=content_hash,
                    level=outcome.next_state.level,
                    spin_score=outcome.spin_score,
                    instant_loss=outcome.instant_loss,
                    immunity_used=outcome.immunity_used,
                )
            )
            return response_dict

    except GameError as e:
        if isinstance(e, IllegalSpin) or e.code == ErrorCode.ROUND_IN_PROGRESS:
            telemetry_service.emit_spin_rejected(
                SpinRejectedEvent(
                    session_id=session_id,
                    client_request_id=body.clientRequestId,
                    reason=e.code.value,
                )
            )
        raise


@app.post("/end-session")
async def end_session(request: Request) -> dict:
    """
    End a session on the player's request and settle it.

    On an already ended session this re-sends the terminal write, which lets
    callers retry a settlement that failed after a spin.
    """
    session_id = request.state.session_id
    async with redis_service.session_lock(session_id):
        state = await ledger.get_session(session_id)
        items = await ledger.get_owned_items(session_id)
        final_state = state
        if state.is_active:
            final_state = GameSession.from_snapshot(state, items, rng=rng).end()
            await ledger.save_session(final_state, items)
        await ledger.end_session(session_id, final_state.score, final_state.level)
    return _session_response(final_state, items)
