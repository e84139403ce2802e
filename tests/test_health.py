from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from foodshare import main as app_main
from foodshare.infra import redis_state


def test_healthz_ok() -> None:
    client = TestClient(app_main.app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_ok_when_database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(redis_state, "REDIS_FANOUT_ENABLED", False)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"db": "ok"}}


def test_readyz_checks_redis_only_when_fanout_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(redis_state, "REDIS_FANOUT_ENABLED", True)
    monkeypatch.setattr(redis_state, "check_redis_ready", lambda: False)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"] == {"db": "ok", "redis": "fail"}
