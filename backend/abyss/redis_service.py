"""Redis service: per-session spin lock, idempotency cache, session snapshots."""
import hashlib
import json
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from abyss.config import settings
from abyss.errors import CollaboratorUnavailable, ErrorCode, GameError, SessionNotFound
from abyss.logic.models import OwnedItem, SessionState


@dataclass
class LockMetrics:
    """Metrics from lock acquisition for telemetry."""

    acquire_ms: float
    wait_retries: int


class RedisService:
    """
    Redis client for idempotency cache, session locking and snapshots.

    Also serves as the development SessionLedger: snapshots live under
    state:session:<id> and terminal records under ended:session:<id>.
    """

    # Key prefixes
    IDEMPOTENCY_PREFIX = "idem:"
    LOCK_PREFIX = "lock:session:"
    STATE_PREFIX = "state:session:"
    ITEMS_PREFIX = "items:session:"
    ENDED_PREFIX = "ended:session:"

    # TTLs in seconds
    IDEMPOTENCY_TTL = settings.idempotency_ttl_seconds
    LOCK_TTL = settings.lock_ttl_seconds
    STATE_TTL = settings.session_state_ttl_seconds

    # Lua script for token-safe lock release (compare-and-delete)
    # Only deletes if current value matches token; prevents releasing another's lock
    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, redis_url: str | None = None):
        self._url = redis_url or settings.redis_url
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, raise if not connected."""
        if self._client is None:
            raise RuntimeError("Redis not connected")
        return self._client

    def _payload_hash(self, payload: dict[str, Any]) -> str:
        """Create deterministic hash of payload for conflict detection."""
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]

    async def check_idempotency(
        self, request_id: str, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Check idempotency cache.

        Returns cached response if request_id was seen before with same payload.
        Raises IDEMPOTENCY_CONFLICT if same request_id with different payload.
        Returns None if request_id not seen before.
        """
        key = f"{self.IDEMPOTENCY_PREFIX}{request_id}"
        cached = await self.client.get(key)

        if cached is None:
            return None

        data = json.loads(cached)
        if data.get("payload_hash") != self._payload_hash(payload):
            raise GameError(
                ErrorCode.IDEMPOTENCY_CONFLICT,
                "Same clientRequestId used with different payload.",
            )

        return data.get("response")

    async def store_idempotency(
        self, request_id: str, payload: dict[str, Any], response: dict[str, Any]
    ) -> None:
        """Store response in idempotency cache."""
        key = f"{self.IDEMPOTENCY_PREFIX}{request_id}"
        data = {
            "payload_hash": self._payload_hash(payload),
            "response": response,
        }
        await self.client.setex(key, self.IDEMPOTENCY_TTL, json.dumps(data))

    async def acquire_session_lock(self, session_id: str) -> str | None:
        """
        Attempt to acquire per-session lock with unique token.

        Returns token string if lock acquired, None if already locked.
        """
        key = f"{self.LOCK_PREFIX}{session_id}"
        token = str(uuid.uuid4())
        acquired = await self.client.set(key, token, nx=True, ex=self.LOCK_TTL)
        return token if acquired is True else None

    async def release_session_lock(self, session_id: str, token: str) -> bool:
        """
        Release per-session lock only if token matches.

        Uses Lua script for atomic compare-and-delete.
        """
        key = f"{self.LOCK_PREFIX}{session_id}"
        result = await self.client.eval(self.RELEASE_LOCK_SCRIPT, 1, key, token)
        return result == 1

    @asynccontextmanager
    async def session_lock(self, session_id: str):
        """
        Context manager for the one-spin-in-flight rule.

        Raises ROUND_IN_PROGRESS if lock cannot be acquired.
        Yields LockMetrics for telemetry.
        """
        t0 = time.monotonic()
        token = await self.acquire_session_lock(session_id)
        if token is None:
            raise GameError(
                ErrorCode.ROUND_IN_PROGRESS,
                "Another spin is in progress for this session.",
            )
        metrics = LockMetrics(acquire_ms=(time.monotonic() - t0) * 1000, wait_retries=0)
        try:
            yield metrics
        finally:
            await self.release_session_lock(session_id, token)

    # === SessionLedger ===

    async def get_session(self, session_id: str) -> SessionState:
        try:
            cached = await self.client.get(f"{self.STATE_PREFIX}{session_id}")
        except RedisError as e:
            raise CollaboratorUnavailable(f"Session read failed: {e}") from e
        if cached is None:
            raise SessionNotFound(session_id)
        return SessionState.model_validate_json(cached)

    async def get_owned_items(self, session_id: str) -> list[OwnedItem]:
        try:
            cached = await self.client.get(f"{self.ITEMS_PREFIX}{session_id}")
        except RedisError as e:
            raise CollaboratorUnavailable(f"Item read failed: {e}") from e
        if cached is None:
            return []
        return [OwnedItem.model_validate(item) for item in json.loads(cached)]

    async def save_session(self, state: SessionState, owned_items: list[OwnedItem]) -> None:
        """Save session snapshot and owned items with TTL, in one MULTI/EXEC."""
        items = [item.model_dump(mode="json") for item in owned_items]
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.setex(
                    f"{self.STATE_PREFIX}{state.session_id}",
                    self.STATE_TTL,
                    state.model_dump_json(),
                )
                pipe.setex(
                    f"{self.ITEMS_PREFIX}{state.session_id}",
                    self.STATE_TTL,
                    json.dumps(items),
                )
                await pipe.execute()
        except RedisError as e:
            raise CollaboratorUnavailable(f"Session write failed: {e}") from e

    async def end_session(self, session_id: str, final_score: int, final_level: int) -> None:
        """Record the terminal outcome of a session."""
        record = {"final_score": final_score, "final_level": final_level}
        try:
            await self.client.setex(
                f"{self.ENDED_PREFIX}{session_id}", self.STATE_TTL, json.dumps(record)
            )
        except RedisError as e:
            raise CollaboratorUnavailable(f"Session end write failed: {e}") from e


# Global instance
redis_service = RedisService()
