"""Pytest fixtures for backend tests."""
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from abyss.logic.models import Symbol
from abyss.logic.rng import RNGBase, SeededRNG
from abyss.main import app
from abyss.redis_service import RedisService


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (long simulations)"
    )


# random() values that draw each symbol from the bundled weights
# (seven 5, diamond 10, cherry 20, coin 15, lemon 25; six excluded => total 75)
SYMBOL_DRAWS: dict[Symbol, float] = {
    Symbol.SEVEN: 0.01,
    Symbol.DIAMOND: 0.10,
    Symbol.CHERRY: 0.30,
    Symbol.COIN: 0.60,
    Symbol.LEMON: 0.90,
}

S, D, H, C, L = Symbol.SEVEN, Symbol.DIAMOND, Symbol.CHERRY, Symbol.COIN, Symbol.LEMON

# A grid with no pattern of any kind
NO_MATCH_GRID = [
    [S, D, H, C, L],
    [H, C, L, S, D],
    [L, S, D, H, C],
]

# One lemon h3 at row 0, nothing else
LEMON_H3_GRID = [
    [L, L, L, C, H],
    [D, S, C, D, S],
    [C, H, D, S, H],
]


_GRID_LETTERS = {"S": S, "D": D, "H": H, "C": C, "L": L, "X": Symbol.SIX}


def parse_grid(text: str) -> list[list[Symbol]]:
    """Grid from "SDHCL/HCLSD/LSDHC" (S seven, D diamond, H cherry, C coin, L lemon, X six)."""
    return [[_GRID_LETTERS[ch] for ch in row] for row in text.split("/")]


class ScriptedRNG(RNGBase):
    """RNG that replays scripted random() values, then repeats a default."""

    def __init__(self, values: list[float] | None = None, default: float = 0.5):
        self._values = list(values or [])
        self.default = default
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self._values:
            return self._values.pop(0)
        return self.default

    def randint(self, a: int, b: int) -> int:
        return a


def draws_for(grid: list[list[Symbol]]) -> list[float]:
    """random() values that make generate_grid() reproduce grid (bundled weights)."""
    return [SYMBOL_DRAWS[cell] for row in grid for cell in row]


def rng_for_grids(*grids: list[list[Symbol]], prefix: list[float] | None = None) -> ScriptedRNG:
    """ScriptedRNG producing the given grids in order, after optional prefix draws."""
    values = list(prefix or [])
    for grid in grids:
        values.extend(draws_for(grid))
    return ScriptedRNG(values)


class RecordingSink:
    """Telemetry sink that keeps every event."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        self.events.append((event_name, data))

    def named(self, event_name: str) -> list[dict[str, Any]]:
        return [data for name, data in self.events if name == event_name]


class MockRedis:
    """Mock Redis client for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._last_set_ex: int | None = None  # Track last SET EX value for TTL tests
        self.fail_writes_to: set[str] = set()  # Key prefixes whose writes raise

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(
        self, key: str, value: str, nx: bool = False, ex: int | None = None
    ) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        self._last_set_ex = ex
        return True

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check_write(key)
        self._store[key] = value
        return True

    def pipeline(self, transaction: bool = True) -> "MockPipeline":
        return MockPipeline(self)

    def _check_write(self, key: str) -> None:
        for prefix in self.fail_writes_to:
            if key.startswith(prefix):
                raise RedisConnectionError(f"write to {key} refused")

    async def delete(self, key: str) -> int:
        if key in self._store:
            del self._store[key]
            return 1
        return 0

    async def eval(self, script: str, numkeys: int, *args) -> int:
        """
        Execute Lua script (simplified mock for compare-and-delete).

        Supports the RELEASE_LOCK_SCRIPT pattern:
        - KEYS[1] = args[0] (key)
        - ARGV[1] = args[1] (expected value)
        Returns 1 if deleted, 0 if value didn't match.
        """
        key = args[0]
        expected_value = args[1]
        if self._store.get(key) == expected_value:
            del self._store[key]
            return 1
        return 0

    async def close(self) -> None:
        pass

    def clear(self) -> None:
        self._store.clear()
        self._last_set_ex = None
        self.fail_writes_to.clear()


class MockPipeline:
    """MULTI/EXEC pipeline: queued writes land together or not at all."""

    def __init__(self, redis: MockRedis):
        self._redis = redis
        self._queued: list[tuple[str, str]] = []

    async def __aenter__(self) -> "MockPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._queued.clear()

    def setex(self, key: str, ttl: int, value: str) -> "MockPipeline":
        self._queued.append((key, value))
        return self

    async def execute(self) -> list[bool]:
        for key, _ in self._queued:
            self._redis._check_write(key)
        for key, value in self._queued:
            self._redis._store[key] = value
        results = [True] * len(self._queued)
        self._queued.clear()
        return results


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def mock_redis() -> MockRedis:
    """Create a fresh mock Redis for each test."""
    return MockRedis()


@pytest.fixture
def redis_service_with_mock(mock_redis: MockRedis) -> Generator[RedisService, None, None]:
    """Create RedisService with mock client."""
    service = RedisService()
    service._client = mock_redis
    yield service
    mock_redis.clear()


@pytest.fixture
def client_with_mock_redis(
    mock_redis: MockRedis, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """Create TestClient with mocked Redis and a seeded RNG."""
    import abyss.main
    from abyss.redis_service import redis_service

    # Patch the global redis_service client
    original_client = redis_service._client
    redis_service._client = mock_redis
    monkeypatch.setattr(abyss.main, "rng", SeededRNG(seed=42))

    with TestClient(app) as client:
        yield client

    redis_service._client = original_client
    mock_redis.clear()
