"""Tests for the operator API."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import tradeloop.engine.scheduler as scheduler
from tradeloop.config import settings
from tradeloop.database import get_session
from tradeloop.main import app
from tradeloop.models import JobLog, Swap

TOKEN = "operator-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(engine, monkeypatch):
    def _get_session():
        with Session(engine) as session:
            yield session

    monkeypatch.setattr(settings, "api_token", TOKEN)
    app.dependency_overrides[get_session] = _get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _seed_swaps(engine):
    now = datetime.now(timezone.utc)
    with Session(engine) as session:
        for i, side in enumerate(["buy", "buy", "sell"]):
            session.add(Swap(
                slot=i % 2, account=f"0x{i}", side=side, src="a", dst="b",
                amount=0.1, destination_amount=1.0, tx_hash=f"0xh{i}",
                timestamp=now + timedelta(seconds=i),
            ))
        session.commit()


# ---------------------------------------------------------------------------
# 1. Auth
# ---------------------------------------------------------------------------

class TestAuth:
    def test_health_is_public(self, client):
        assert client.get("/api/system/health").json() == {"status": "ok"}

    def test_missing_token(self, client):
        assert client.get("/api/trades").status_code == 401

    def test_wrong_token(self, client):
        response = client.get("/api/trades", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_disabled_without_configured_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "api_token", "")
        assert client.get("/api/trades", headers=AUTH).status_code == 503


# ---------------------------------------------------------------------------
# 2. Trades
# ---------------------------------------------------------------------------

class TestTrades:
    def test_list_newest_first(self, client, engine):
        _seed_swaps(engine)
        rows = client.get("/api/trades", headers=AUTH).json()
        assert [r["tx_hash"] for r in rows] == ["0xh2", "0xh1", "0xh0"]

    def test_filters(self, client, engine):
        _seed_swaps(engine)
        rows = client.get("/api/trades", params={"side": "buy", "slot": 0}, headers=AUTH).json()
        assert [r["tx_hash"] for r in rows] == ["0xh0"]

    def test_get_one(self, client, engine):
        _seed_swaps(engine)
        assert client.get("/api/trades/1", headers=AUTH).json()["tx_hash"] == "0xh0"

    def test_not_found(self, client):
        assert client.get("/api/trades/99", headers=AUTH).status_code == 404


# ---------------------------------------------------------------------------
# 3. System
# ---------------------------------------------------------------------------

class TestSystem:
    def test_status_when_idle(self, client, monkeypatch):
        monkeypatch.setattr(scheduler, "_orchestrator", None)
        body = client.get("/api/system/status", headers=AUTH).json()
        assert body == {"running": False, "stopping": False, "sessions": []}

    def test_status_of_running_loop(self, client, monkeypatch):
        orchestrator = MagicMock()
        orchestrator.status.return_value = {"stopping": False, "policy": "equalize", "sessions": []}
        monkeypatch.setattr(scheduler, "_orchestrator", orchestrator)
        monkeypatch.setattr(scheduler, "_running", True)
        body = client.get("/api/system/status", headers=AUTH).json()
        assert body["running"] is True
        assert body["policy"] == "equalize"

    def test_stop(self, client, monkeypatch):
        orchestrator = MagicMock(stopping=False)
        monkeypatch.setattr(scheduler, "_orchestrator", orchestrator)
        monkeypatch.setattr(scheduler, "_loop", None)
        assert client.post("/api/system/stop", headers=AUTH).json() == {"status": "stopping"}
        orchestrator.stop.assert_called_once()

    def test_stop_when_not_running(self, client, monkeypatch):
        monkeypatch.setattr(scheduler, "_orchestrator", None)
        assert client.post("/api/system/stop", headers=AUTH).json() == {"status": "not_running"}

    def test_logs_filtered_by_action(self, client, engine):
        with Session(engine) as session:
            session.add(JobLog(slot=0, status="success", action="rotate"))
            session.add(JobLog(slot=0, status="error", action="forced_rotation", error={"code": None}))
            session.commit()
        rows = client.get("/api/system/logs", params={"action": "forced_rotation"}, headers=AUTH).json()
        assert len(rows) == 1
        assert rows[0]["error"] == {"code": None}
