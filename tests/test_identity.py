from __future__ import annotations

import re
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from foodshare import main as app_main
from foodshare.domain.models import AuditLog
from foodshare.infra import audit, db, events
from foodshare.services.profile_service import generate_agent_unique_id


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_test.db"
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
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, email: str, role: str, password: str = "pw") -> dict[str, object]:
    response = client.post(
        "/api/identity/register",
        json={"email": email, "name": "Test User", "password": password, "role": role},
    )
    assert response.status_code == 201
    return response.json()


def _login(client: TestClient, email: str, password: str = "pw") -> str:
    response = client.post("/api/identity/dev-login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def _latest_audit(action: str) -> AuditLog:
    with Session(db.get_engine(), expire_on_commit=False) as session:
        statement = select(AuditLog).where(AuditLog.action == action).order_by(AuditLog.ts.desc())
        row = session.exec(statement).first()
    assert row is not None
    return row


def test_register_login_and_me(identity_client: TestClient) -> None:
    user = _register(identity_client, "Hotel@Example.com", "hotel")
    assert user["email"] == "hotel@example.com"
    assert user["role"] == "hotel"

    login = identity_client.post("/api/identity/dev-login", json={"email": "hotel@example.com", "password": "pw"})
    assert login.status_code == 200
    body = login.json()
    assert body["role"] == "hotel"
    assert "report.create" in body["permissions"]
    assert "task.claim" not in body["permissions"]

    me = identity_client.get("/api/identity/me", headers=_auth_header(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]

    audit_row = _latest_audit("identity.register")
    assert audit_row.status_code == 201
    assert audit_row.detail["role"] == "hotel"


def test_register_rejects_duplicates_and_admin_role(identity_client: TestClient) -> None:
    _register(identity_client, "agent@example.com", "agent")
    duplicate = identity_client.post(
        "/api/identity/register",
        json={"email": "agent@example.com", "name": "Again", "password": "pw", "role": "agent"},
    )
    assert duplicate.status_code == 409

    admin = identity_client.post(
        "/api/identity/register",
        json={"email": "root@example.com", "name": "Root", "password": "pw", "role": "admin"},
    )
    assert admin.status_code == 401


def test_dev_login_rejects_wrong_password(identity_client: TestClient) -> None:
    _register(identity_client, "agent@example.com", "agent")
    response = identity_client.post("/api/identity/dev-login", json={"email": "agent@example.com", "password": "no"})
    assert response.status_code == 401


def test_bootstrap_admin_only_once(identity_client: TestClient) -> None:
    first = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"email": "admin@example.com", "name": "Admin", "password": "pw"},
    )
    assert first.status_code == 201
    second = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"email": "admin2@example.com", "name": "Admin", "password": "pw"},
    )
    assert second.status_code == 409

    token = _login(identity_client, "admin@example.com")
    assert identity_client.get("/api/profiles/hotels", headers=_auth_header(token)).status_code == 200


def test_agent_profile_unique_id_and_availability(identity_client: TestClient) -> None:
    _register(identity_client, "ravi@example.com", "agent")
    token = _login(identity_client, "ravi@example.com")
    created = identity_client.post(
        "/api/profiles/agents",
        json={"name": "Ravi", "contact": "99", "zone": "north", "area": "Anna Nagar"},
        headers=_auth_header(token),
    )
    assert created.status_code == 201
    agent = created.json()
    assert re.fullmatch(r"AG-[A-Z0-9]{6}", agent["unique_id"])
    assert agent["is_active"] is True
    assert agent["total_deliveries"] == 0

    again = identity_client.post(
        "/api/profiles/agents",
        json={"name": "Ravi", "contact": "99", "zone": "north", "area": "Anna Nagar"},
        headers=_auth_header(token),
    )
    assert again.status_code == 409

    located = identity_client.put(
        "/api/profiles/agents/me/location",
        json={"latitude": 13.05, "longitude": 80.21},
        headers=_auth_header(token),
    )
    assert located.json()["latitude"] == 13.05

    paused = identity_client.post(
        f"/api/profiles/agents/{agent['id']}/active",
        json={"is_active": False},
        headers=_auth_header(token),
    )
    assert paused.status_code == 200
    assert paused.json()["is_active"] is False

    _register(identity_client, "meena@example.com", "agent")
    other = _login(identity_client, "meena@example.com")
    identity_client.post(
        "/api/profiles/agents",
        json={"name": "Meena", "contact": "98", "zone": "south", "area": "Adyar"},
        headers=_auth_header(other),
    )
    denied = identity_client.post(
        f"/api/profiles/agents/{agent['id']}/active",
        json={"is_active": True},
        headers=_auth_header(other),
    )
    assert denied.status_code == 403


def test_profile_role_checks(identity_client: TestClient) -> None:
    _register(identity_client, "agent@example.com", "agent")
    token = _login(identity_client, "agent@example.com")
    hotel_as_agent = identity_client.post(
        "/api/profiles/hotels",
        json={"name": "X", "street": "s", "city": "c", "contact": "1"},
        headers=_auth_header(token),
    )
    assert hotel_as_agent.status_code == 403
    assert identity_client.get("/api/profiles/agents/me", headers=_auth_header(token)).status_code == 404
    assert identity_client.get("/api/profiles/hotels", headers=_auth_header(token)).status_code == 403


def test_hotel_profile_update(identity_client: TestClient) -> None:
    _register(identity_client, "hotel@example.com", "hotel")
    token = _login(identity_client, "hotel@example.com")
    created = identity_client.post(
        "/api/profiles/hotels",
        json={"name": "Annapoorna", "street": "5 Race Course Rd", "city": "Coimbatore", "contact": "0422"},
        headers=_auth_header(token),
    )
    assert created.status_code == 201
    assert created.json()["total_food_saved"] == 0

    updated = identity_client.patch(
        "/api/profiles/hotels/me",
        json={"landmark": "Near the clock tower"},
        headers=_auth_header(token),
    )
    assert updated.status_code == 200
    assert updated.json()["landmark"] == "Near the clock tower"
    assert updated.json()["name"] == "Annapoorna"

    duplicate = identity_client.post(
        "/api/profiles/hotels",
        json={"name": "Again", "street": "s", "city": "c", "contact": "1"},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 409


def test_needy_person_registry(identity_client: TestClient) -> None:
    _register(identity_client, "agent@example.com", "agent")
    token = _login(identity_client, "agent@example.com")
    for city in ("Chennai", "Madurai"):
        response = identity_client.post(
            "/api/profiles/needy-persons",
            json={"name": f"Shelter {city}", "street": "1 Road", "city": city},
            headers=_auth_header(token),
        )
        assert response.status_code == 201

    chennai = identity_client.get(
        "/api/profiles/needy-persons",
        params={"city": "Chennai"},
        headers=_auth_header(token),
    )
    assert [item["name"] for item in chennai.json()] == ["Shelter Chennai"]
    assert identity_client.get("/api/profiles/needy-persons/missing", headers=_auth_header(token)).status_code == 404


def test_generated_agent_ids_use_expected_alphabet() -> None:
    for _ in range(20):
        assert re.fullmatch(r"AG-[A-Z0-9]{6}", generate_agent_unique_id())
