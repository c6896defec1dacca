"""POST /session, GET /session, POST /spin and POST /end-session contract tests."""
import json
import uuid

import pytest
from fastapi.testclient import TestClient

import abyss.main
from abyss.errors import CollaboratorUnavailable
from abyss.redis_service import RedisService, redis_service
from abyss.telemetry import LoggingTelemetrySink, telemetry_service
from tests.conftest import (
    LEMON_H3_GRID,
    NO_MATCH_GRID,
    MockRedis,
    RecordingSink,
    rng_for_grids,
)


SESSION_ID = "test-session-contract"
HEADERS = {"X-Session-Id": SESSION_ID}


def make_spin_request(client_request_id: str | None = None) -> dict:
    return {"clientRequestId": client_request_id or str(uuid.uuid4())}


@pytest.fixture
def sink():
    """Route global telemetry into a RecordingSink for one test."""
    recording = RecordingSink()
    telemetry_service.set_sink(recording)
    yield recording
    telemetry_service.set_sink(LoggingTelemetrySink())


@pytest.fixture
def scripted_grids(monkeypatch: pytest.MonkeyPatch):
    """Make the server draw the given grids in order."""
    def _install(*grids):
        monkeypatch.setattr(abyss.main, "rng", rng_for_grids(*grids))
    return _install


class TestStartSession:

    def test_start(self, client_with_mock_redis: TestClient):
        response = client_with_mock_redis.post(
            "/session", headers=HEADERS, json={"items": [{"itemId": 25, "quantity": 1}]}
        )
        assert response.status_code == 200

        data = response.json()
        assert data["protocolVersion"] == "1.0"
        assert data["session"] == {
            "sessionId": SESSION_ID,
            "score": 0,
            "totalScore": 0,
            "level": 1,
            "spinsRemaining": 6,
            "isActive": True,
        }
        assert data["ownedItems"] == [{
            "itemId": 25,
            "quantity": 1,
            "effectKind": "spin_bonus",
            "effectMagnitude": 1.0,
            "targetSymbol": None,
        }]

    def test_start_twice_while_active(self, client_with_mock_redis: TestClient):
        assert client_with_mock_redis.post("/session", headers=HEADERS, json={}).status_code == 200
        response = client_with_mock_redis.post("/session", headers=HEADERS, json={})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_restart_after_end_rejected(
        self, client_with_mock_redis: TestClient, mock_redis: MockRedis
    ):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        state_key = f"{RedisService.STATE_PREFIX}{SESSION_ID}"
        stored = json.loads(mock_redis._store[state_key])
        stored["total_score"] = 120
        mock_redis._store[state_key] = json.dumps(stored)
        client_with_mock_redis.post("/end-session", headers=HEADERS)

        response = client_with_mock_redis.post("/session", headers=HEADERS, json={})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

        session = client_with_mock_redis.get("/session", headers=HEADERS).json()["session"]
        assert session["isActive"] is False
        assert session["totalScore"] == 120

    def test_unknown_item(self, client_with_mock_redis: TestClient):
        response = client_with_mock_redis.post(
            "/session", headers=HEADERS, json={"items": [{"itemId": 999}]}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MALFORMED_INPUT"

    def test_get_session(self, client_with_mock_redis: TestClient):
        client_with_mock_redis.post(
            "/session", headers=HEADERS, json={"items": [{"itemId": 40, "quantity": 2}]}
        )
        response = client_with_mock_redis.get("/session", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["ownedItems"][0]["quantity"] == 2

    def test_get_unknown_session(self, client_with_mock_redis: TestClient):
        response = client_with_mock_redis.get("/session", headers={"X-Session-Id": "nobody"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"


class TestSpin:

    def test_spin_response_shape(self, client_with_mock_redis: TestClient, scripted_grids):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        scripted_grids(LEMON_H3_GRID)

        response = client_with_mock_redis.post("/spin", headers=HEADERS, json=make_spin_request())
        assert response.status_code == 200

        data = response.json()
        assert data["protocolVersion"] == "1.0"
        assert data["roundId"]
        assert len(data["contentHash"]) == 16
        assert data["grid"][0] == ["lemon", "lemon", "lemon", "coin", "cherry"]
        assert data["patterns"] == [{
            "kind": "h3",
            "symbol": "lemon",
            "positions": [[0, 0], [0, 1], [0, 2]],
            "multiplier": 1.5,
        }]
        assert data["spinScore"] == 9
        assert data["instantLoss"] is False
        assert data["gameOver"] is False
        assert data["settled"] is True
        assert [e["type"] for e in data["events"]] == ["reveal", "patternHit"]
        assert data["session"]["score"] == 9
        assert data["session"]["spinsRemaining"] == 4

    def test_spin_persists_snapshot(self, client_with_mock_redis: TestClient, scripted_grids):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        scripted_grids(LEMON_H3_GRID)
        client_with_mock_redis.post("/spin", headers=HEADERS, json=make_spin_request())

        session = client_with_mock_redis.get("/session", headers=HEADERS).json()["session"]
        assert session["score"] == 9
        assert session["spinsRemaining"] == 4

    def test_spin_without_session(self, client_with_mock_redis: TestClient):
        response = client_with_mock_redis.post("/spin", headers=HEADERS, json=make_spin_request())
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"

    def test_spins_run_out(
        self, client_with_mock_redis: TestClient, mock_redis: MockRedis, scripted_grids, sink
    ):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        scripted_grids(*[NO_MATCH_GRID] * 5)

        responses = [
            client_with_mock_redis.post("/spin", headers=HEADERS, json=make_spin_request()).json()
            for _ in range(5)
        ]
        assert [r["gameOver"] for r in responses] == [False] * 4 + [True]
        last = responses[-1]
        assert last["settled"] is True
        assert last["session"]["isActive"] is False
        assert last["events"][-1]["type"] == "sessionEnded"

        record = json.loads(mock_redis._store[f"{RedisService.ENDED_PREFIX}{SESSION_ID}"])
        assert record == {"final_score": 0, "final_level": 1}

        response = client_with_mock_redis.post("/spin", headers=HEADERS, json=make_spin_request())
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "SESSION_INACTIVE"
        assert sink.named("spin_rejected")[0]["reason"] == "SESSION_INACTIVE"
        assert len(sink.named("spin_processed")) == 5
        assert sink.named("session_ended")[0]["reason"] == "out_of_spins"

    def test_failed_settlement_is_reported_and_retryable(
        self,
        client_with_mock_redis: TestClient,
        mock_redis: MockRedis,
        monkeypatch: pytest.MonkeyPatch,
    ):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        monkeypatch.setattr(abyss.main, "rng", rng_for_grids(NO_MATCH_GRID))

        async def unavailable(*args, **kwargs):
            raise CollaboratorUnavailable("ledger down")

        # One spin left so the next spin ends the session
        state = redis_service.STATE_PREFIX + SESSION_ID
        snapshot = json.loads(mock_redis._store[state])
        snapshot["spins_remaining"] = 1
        mock_redis._store[state] = json.dumps(snapshot)

        monkeypatch.setattr(redis_service, "end_session", unavailable)
        data = client_with_mock_redis.post(
            "/spin", headers=HEADERS, json=make_spin_request()
        ).json()
        assert data["gameOver"] is True
        assert data["settled"] is False
        monkeypatch.delattr(redis_service, "end_session")

        response = client_with_mock_redis.post("/end-session", headers=HEADERS)
        assert response.status_code == 200
        assert f"{RedisService.ENDED_PREFIX}{SESSION_ID}" in mock_redis._store


class TestIdempotency:

    def test_replay_returns_same_response(self, client_with_mock_redis: TestClient):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        body = make_spin_request()

        first = client_with_mock_redis.post("/spin", headers=HEADERS, json=body)
        second = client_with_mock_redis.post("/spin", headers=HEADERS, json=body)

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()
        session = client_with_mock_redis.get("/session", headers=HEADERS).json()["session"]
        assert session["spinsRemaining"] == first.json()["session"]["spinsRemaining"]

    def test_request_id_reused_by_another_session(self, client_with_mock_redis: TestClient):
        other = {"X-Session-Id": "other-session"}
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        client_with_mock_redis.post("/session", headers=other, json={})
        body = make_spin_request()

        assert client_with_mock_redis.post("/spin", headers=HEADERS, json=body).status_code == 200
        response = client_with_mock_redis.post("/spin", headers=other, json=body)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "IDEMPOTENCY_CONFLICT"


class TestEndSession:

    def test_end_active_session(
        self, client_with_mock_redis: TestClient, mock_redis: MockRedis, sink
    ):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})

        response = client_with_mock_redis.post("/end-session", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["session"]["isActive"] is False
        assert f"{RedisService.ENDED_PREFIX}{SESSION_ID}" in mock_redis._store
        assert sink.named("session_ended")[0]["reason"] == "ended_by_player"

    def test_end_twice_resends_terminal_write(self, client_with_mock_redis: TestClient, sink):
        client_with_mock_redis.post("/session", headers=HEADERS, json={})
        client_with_mock_redis.post("/end-session", headers=HEADERS)

        response = client_with_mock_redis.post("/end-session", headers=HEADERS)

        assert response.status_code == 200
        assert len(sink.named("session_ended")) == 1

    def test_end_unknown_session(self, client_with_mock_redis: TestClient):
        response = client_with_mock_redis.post("/end-session", headers={"X-Session-Id": "nobody"})
        assert response.status_code == 404
