from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select
from starlette.websockets import WebSocketDisconnect

from foodshare import main as app_main
from foodshare.domain.models import AuditLog, EventRecord, now_utc
from foodshare.infra import audit, db, events


@pytest.fixture()
def api_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "food_reports_api.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    with TestClient(app_main.app) as client:
        yield client


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register_and_login(client: TestClient, email: str, role: str) -> str:
    response = client.post(
        "/api/identity/register",
        json={"email": email, "name": email.split("@")[0], "password": "pw", "role": role},
    )
    assert response.status_code == 201
    login = client.post("/api/identity/dev-login", json={"email": email, "password": "pw"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _hotel(client: TestClient) -> str:
    token = _register_and_login(client, "hotel@example.com", "hotel")
    response = client.post(
        "/api/profiles/hotels",
        json={
            "name": "Saravana Bhavan",
            "street": "1 Main Rd",
            "city": "Chennai",
            "contact": "044-1",
            "latitude": 13.0827,
            "longitude": 80.2707,
        },
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return token


def _agent(client: TestClient, email: str) -> tuple[str, str]:
    token = _register_and_login(client, email, "agent")
    response = client.post(
        "/api/profiles/agents",
        json={"name": email.split("@")[0], "contact": "99", "zone": "north", "area": "Anna Nagar"},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return token, response.json()["id"]


def _report_payload(quantity: int = 12, expiry_hours: float = 4.0) -> dict[str, Any]:
    pickup = now_utc()
    return {
        "food_name": "Veg Biryani",
        "food_type": "veg",
        "quantity": quantity,
        "pickup_time": pickup.isoformat(),
        "expiry_time": (pickup + timedelta(hours=expiry_hours)).isoformat(),
    }


def _create_report(client: TestClient, hotel_token: str, **kwargs: Any) -> dict[str, Any]:
    response = client.post("/api/food-reports", json=_report_payload(**kwargs), headers=_auth_header(hotel_token))
    assert response.status_code == 201
    return response.json()


def test_report_lifecycle_over_http(api_client: TestClient) -> None:
    hotel_token = _hotel(api_client)
    agent_token, agent_id = _agent(api_client, "ravi@example.com")
    other_token, _ = _agent(api_client, "meena@example.com")

    report = _create_report(api_client, hotel_token)
    assert report["status"] == "new"
    assert report["hotel"]["name"] == "Saravana Bhavan"
    assert report["urgency"] == "medium"

    available = api_client.get(
        "/api/food-reports/available",
        params={"lat": 13.08, "lon": 80.27, "max_distance_km": 5},
        headers=_auth_header(agent_token),
    )
    assert available.status_code == 200
    assert [item["id"] for item in available.json()] == [report["id"]]
    assert available.json()[0]["distance_km"] < 5

    claim = api_client.post(f"/api/food-reports/{report['id']}/claim", headers=_auth_header(agent_token))
    assert claim.status_code == 200
    assert claim.json()["assigned_agent_id"] == agent_id

    conflict = api_client.post(f"/api/food-reports/{report['id']}/claim", headers=_auth_header(other_token))
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "claim_conflict"

    retried = api_client.post(f"/api/food-reports/{report['id']}/claim", headers=_auth_header(agent_token))
    assert retried.status_code == 200

    early = api_client.post(f"/api/food-reports/{report['id']}/deliver", headers=_auth_header(agent_token))
    assert early.status_code == 409

    foreign = api_client.post(f"/api/food-reports/{report['id']}/pick", headers=_auth_header(other_token))
    assert foreign.status_code == 403

    mine = api_client.get("/api/food-reports/mine", headers=_auth_header(agent_token))
    assert [item["id"] for item in mine.json()] == [report["id"]]

    picked = api_client.post(f"/api/food-reports/{report['id']}/pick", headers=_auth_header(agent_token))
    assert picked.json()["status"] == "picked"

    needy = api_client.post(
        "/api/profiles/needy-persons",
        json={"name": "Night Shelter", "street": "2 Side St", "city": "Chennai"},
        headers=_auth_header(agent_token),
    )
    assert needy.status_code == 201

    delivered = api_client.post(
        f"/api/food-reports/{report['id']}/deliver",
        json={"needy_person_id": needy.json()["id"], "quantity_distributed": 10},
        headers=_auth_header(agent_token),
    )
    assert delivered.status_code == 200
    assert delivered.json()["status"] == "delivered"

    cancel = api_client.post(f"/api/food-reports/{report['id']}/cancel", headers=_auth_header(hotel_token))
    assert cancel.status_code == 409

    hotel_stats = api_client.get("/api/dashboard/stats", headers=_auth_header(hotel_token)).json()
    assert hotel_stats["total_food_saved"] == 12
    assert hotel_stats["completed_deliveries"] == 1
    agent_stats = api_client.get("/api/dashboard/stats", headers=_auth_header(agent_token)).json()
    assert agent_stats["total_deliveries"] == 1
    assert agent_stats["active_tasks"] == 0

    with Session(db.get_engine()) as session:
        claims = session.exec(select(AuditLog).where(AuditLog.action == "food_report.claim")).all()
        stored_events = session.exec(select(EventRecord)).all()
    assert sorted(row.status_code for row in claims) == [200, 200, 409]
    assert {row.detail["outcome"] for row in claims} == {"success", "conflict"}
    assert len(stored_events) == 4


def test_permissions_and_validation(api_client: TestClient) -> None:
    hotel_token = _hotel(api_client)
    agent_token, _ = _agent(api_client, "ravi@example.com")

    assert api_client.get("/api/food-reports/available").status_code == 401
    assert api_client.post(
        "/api/food-reports", json=_report_payload(), headers=_auth_header(agent_token)
    ).status_code == 403
    assert api_client.get("/api/food-reports/available", headers=_auth_header(hotel_token)).status_code == 403

    invalid = api_client.post(
        "/api/food-reports",
        json=_report_payload(quantity=0),
        headers=_auth_header(hotel_token),
    )
    assert invalid.status_code == 422

    report = _create_report(api_client, hotel_token)
    cancelled = api_client.post(f"/api/food-reports/{report['id']}/cancel", headers=_auth_header(hotel_token))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    claim = api_client.post(f"/api/food-reports/{report['id']}/claim", headers=_auth_header(agent_token))
    assert claim.status_code == 409
    assert api_client.get("/api/food-reports/missing", headers=_auth_header(agent_token)).status_code == 404


def test_hotel_without_profile_cannot_report(api_client: TestClient) -> None:
    token = _register_and_login(api_client, "noprofile@example.com", "hotel")
    response = api_client.post("/api/food-reports", json=_report_payload(), headers=_auth_header(token))
    assert response.status_code == 404


def test_change_feed_routes_notifications(api_client: TestClient) -> None:
    hotel_token = _hotel(api_client)
    winner_token, _ = _agent(api_client, "ravi@example.com")
    watcher_token, _ = _agent(api_client, "meena@example.com")

    with api_client.websocket_connect(f"/ws/changes?token={watcher_token}") as ws:
        subscribed = ws.receive_json()
        assert subscribed["type"] == "subscribed"
        assert subscribed["preferences"]["new_tasks"] is True

        report = _create_report(api_client, hotel_token, expiry_hours=1)
        inserted = ws.receive_json()
        assert inserted["type"] == "change"
        assert inserted["event"]["op"] == "INSERT"
        assert inserted["event"]["new"]["id"] == report["id"]
        alert = inserted["notifications"][0]
        assert alert["kind"] == "new_task"
        assert alert["urgent"] is True
        assert alert["sound"] == "urgent"

        claim = api_client.post(f"/api/food-reports/{report['id']}/claim", headers=_auth_header(winner_token))
        assert claim.status_code == 200
        removed = ws.receive_json()
        assert removed["event"]["new"]["status"] == "assigned"
        assert [item["kind"] for item in removed["notifications"]] == ["task_removed"]

        ws.send_json({"preferences": {"sound_enabled": False}})
        updated = ws.receive_json()
        assert updated["type"] == "preferences"
        assert updated["preferences"]["sound_enabled"] is False

        ws.send_json({"preferences": {"sound_enabled": "loud"}})
        assert ws.receive_json()["type"] == "error"


def test_change_feed_hotel_sees_only_its_reports(api_client: TestClient) -> None:
    hotel_token = _hotel(api_client)
    agent_token, _ = _agent(api_client, "ravi@example.com")

    with api_client.websocket_connect(
        "/ws/changes",
        headers=_auth_header(hotel_token),
    ) as ws:
        assert ws.receive_json()["type"] == "subscribed"
        report = _create_report(api_client, hotel_token)
        inserted = ws.receive_json()
        # hotels see their own inserts without an alert
        assert inserted["event"]["new"]["id"] == report["id"]
        assert inserted["notifications"] == []

        api_client.post(f"/api/food-reports/{report['id']}/claim", headers=_auth_header(agent_token))
        claimed = ws.receive_json()
        assert claimed["notifications"][0]["title"] == "Food Donation Update"
        assert claimed["notifications"][0]["tag"] == f"hotel-{report['id']}"


def test_change_feed_rejects_bad_tokens(api_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as missing:
        with api_client.websocket_connect("/ws/changes"):
            pass
    assert missing.value.code == 4401

    with pytest.raises(WebSocketDisconnect) as invalid:
        with api_client.websocket_connect("/ws/changes?token=not-a-jwt"):
            pass
    assert invalid.value.code == 4401
