"""Middleware for request validation and error handling."""
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from abyss.errors import ErrorCode, GameError


logger = logging.getLogger(__name__)


class SessionIdMiddleware(BaseHTTPMiddleware):
    """Require the X-Session-Id header on session routes."""

    # Paths that require X-Session-Id
    PROTECTED_PATHS = {"/session", "/spin", "/end-session"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.PROTECTED_PATHS:
            session_id = request.headers.get("X-Session-Id")
            if not session_id:
                error = GameError(
                    ErrorCode.INVALID_REQUEST,
                    "Missing required header: X-Session-Id",
                )
                return error.to_response()
            request.state.session_id = session_id

        return await call_next(request)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convert GameError exceptions to protocol-compliant responses."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except GameError as e:
            return e.to_response()
        except Exception as e:
            logger.exception("Unhandled error on %s", request.url.path)
            error = GameError(ErrorCode.INTERNAL_ERROR, str(e))
            return error.to_response()
