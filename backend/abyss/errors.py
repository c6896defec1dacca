"""Error codes and exceptions for the engine and server boundary."""
from enum import Enum

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from abyss.config import settings


class ErrorCode(str, Enum):
    """Error codes surfaced to callers."""

    INVALID_REQUEST = "INVALID_REQUEST"
    MALFORMED_INPUT = "MALFORMED_INPUT"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_INACTIVE = "SESSION_INACTIVE"
    NO_SPINS_REMAINING = "NO_SPINS_REMAINING"
    ROUND_IN_PROGRESS = "ROUND_IN_PROGRESS"
    IDEMPOTENCY_CONFLICT = "IDEMPOTENCY_CONFLICT"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.MALFORMED_INPUT: 400,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.SESSION_INACTIVE: 409,
    ErrorCode.NO_SPINS_REMAINING: 409,
    ErrorCode.ROUND_IN_PROGRESS: 409,
    ErrorCode.IDEMPOTENCY_CONFLICT: 409,
    ErrorCode.COLLABORATOR_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Whether retrying the same request can succeed later
ERROR_RECOVERABLE: dict[ErrorCode, bool] = {
    ErrorCode.INVALID_REQUEST: False,
    ErrorCode.MALFORMED_INPUT: False,
    ErrorCode.SESSION_NOT_FOUND: False,
    ErrorCode.SESSION_INACTIVE: False,
    ErrorCode.NO_SPINS_REMAINING: False,
    ErrorCode.ROUND_IN_PROGRESS: True,
    ErrorCode.IDEMPOTENCY_CONFLICT: False,
    ErrorCode.COLLABORATOR_UNAVAILABLE: True,
    ErrorCode.INTERNAL_ERROR: True,
}

ILLEGAL_SPIN_CODES = frozenset({
    ErrorCode.SESSION_INACTIVE,
    ErrorCode.NO_SPINS_REMAINING,
    ErrorCode.ROUND_IN_PROGRESS,
})


class ErrorBody(BaseModel):
    """Error body shape."""

    code: str
    message: str
    recoverable: bool


class ErrorResponse(BaseModel):
    """Full error response."""

    protocolVersion: str = settings.protocol_version
    error: ErrorBody


class GameError(Exception):
    """Base game error that maps to protocol error response."""

    def __init__(self, code: ErrorCode, message: str | None = None):
        self.code = code
        self.message = message or f"Error: {code.value}"
        self.status_code = ERROR_HTTP_STATUS[code]
        self.recoverable = ERROR_RECOVERABLE[code]
        super().__init__(self.message)

    def to_response(self) -> JSONResponse:
        """Convert to JSONResponse."""
        return JSONResponse(
            status_code=self.status_code,
            content=ErrorResponse(
                error=ErrorBody(
                    code=self.code.value,
                    message=self.message,
                    recoverable=self.recoverable,
                )
            ).model_dump(),
        )


class IllegalSpin(GameError):
    """Spin rejected: inactive session, no spins left, or a spin in flight."""

    def __init__(self, code: ErrorCode, message: str | None = None):
        if code not in ILLEGAL_SPIN_CODES:
            raise ValueError(f"{code.value} is not an illegal-spin code")
        super().__init__(code, message)


class MalformedInput(GameError):
    """Caller contract violation (bad grid shape, unknown kind, bad quantity)."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.MALFORMED_INPUT, message)


class CollaboratorUnavailable(GameError):
    """Ledger or catalog read/write failed."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.COLLABORATOR_UNAVAILABLE, message)


class SessionNotFound(GameError):
    """Ledger has no session under the given id."""

    def __init__(self, session_id: str):
        super().__init__(ErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found.")
