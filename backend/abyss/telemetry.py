"""Observability sink for engine and server events."""
import logging
from dataclasses import dataclass
from typing import Any, Protocol


logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Protocol for telemetry sinks."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Emit a telemetry event."""
        ...


class LoggingTelemetrySink:
    """Default sink that logs telemetry events."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Log telemetry event."""
        logger.info("TELEMETRY %s: %s", event_name, data)


@dataclass
class LevelUpEvent:
    """level_up: emitted when a spin raises the session level."""

    session_id: str
    previous_level: int
    new_level: int
    score: int
    spins_remaining: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for emission."""
        return {
            "session_id": self.session_id,
            "previous_level": self.previous_level,
            "new_level": self.new_level,
            "score": self.score,
            "spins_remaining": self.spins_remaining,
        }


@dataclass
class SessionEndedEvent:
    """session_ended: the one signal the ledger needs for a durable write."""

    session_id: str
    final_score: int
    final_level: int
    total_score: int
    reason: str  # "instant_loss" | "out_of_spins" | "ended_by_player"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for emission."""
        return {
            "session_id": self.session_id,
            "final_score": self.final_score,
            "final_level": self.final_level,
            "total_score": self.total_score,
            "reason": self.reason,
        }


@dataclass
class SpinProcessedEvent:
    """spin_processed: emitted by the server after a fresh spin."""

    session_id: str
    client_request_id: str
    lock_acquire_ms: float
    content_hash: str
    level: int
    spin_score: int
    instant_loss: bool
    immunity_used: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for emission."""
        return {
            "session_id": self.session_id,
            "client_request_id": self.client_request_id,
            "lock_acquire_ms": self.lock_acquire_ms,
            "content_hash": self.content_hash,
            "level": self.level,
            "spin_score": self.spin_score,
            "instant_loss": self.instant_loss,
            "immunity_used": self.immunity_used,
        }


@dataclass
class SpinRejectedEvent:
    """spin_rejected: emitted when a spin request is refused."""

    session_id: str
    client_request_id: str | None
    reason: str  # "ROUND_IN_PROGRESS" | "SESSION_INACTIVE" | "NO_SPINS_REMAINING"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for emission."""
        return {
            "session_id": self.session_id,
            "client_request_id": self.client_request_id,
            "reason": self.reason,
        }


class TelemetryService:
    """Service for emitting telemetry events."""

    def __init__(self, sink: TelemetrySink | None = None):
        self._sink = sink or LoggingTelemetrySink()
        self._sink_errors = 0  # Counter for sink failures

    def set_sink(self, sink: TelemetrySink) -> None:
        """Set the telemetry sink (useful for testing)."""
        self._sink = sink

    @property
    def sink_errors(self) -> int:
        return self._sink_errors

    def _safe_emit(self, event_name: str, data: dict[str, Any]) -> None:
        """
        Emit event, fire-and-forget.

        Sink failures MUST NOT break a spin or an HTTP request.
        """
        try:
            self._sink.emit(event_name, data)
        except Exception as e:
            self._sink_errors += 1
            logger.warning(
                "Telemetry sink error (count=%d): %s - %s",
                self._sink_errors,
                event_name,
                str(e),
            )

    def emit_level_up(self, event: LevelUpEvent) -> None:
        self._safe_emit("level_up", event.to_dict())

    def emit_session_ended(self, event: SessionEndedEvent) -> None:
        self._safe_emit("session_ended", event.to_dict())

    def emit_spin_processed(self, event: SpinProcessedEvent) -> None:
        self._safe_emit("spin_processed", event.to_dict())

    def emit_spin_rejected(self, event: SpinRejectedEvent) -> None:
        self._safe_emit("spin_rejected", event.to_dict())


# Global instance
telemetry_service = TelemetryService()
