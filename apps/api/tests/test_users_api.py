from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from callbook import audit
from callbook.core.auth import get_current_user
from callbook.core.config import get_settings
from callbook.core.database import Base, get_db
from callbook.main import app
from callbook.middleware.rate_limit import reset_rate_limiter
from callbook.platform.security.context import ADMIN_ROLE, TELECALLER_ROLE, AuthContext
from callbook.users.models import User
from callbook.users.security import hash_password, verify_password


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def actors(db_session: Session) -> dict[str, AuthContext]:
    users = {
        "alice": User(
            name="Alice",
            username="alice",
            email="alice@example.com",
            password_hash=hash_password("secret123"),
            role=TELECALLER_ROLE,
        ),
        "carol": User(name="Carol", username="carol", email="carol@example.com", password_hash="-", role=TELECALLER_ROLE),
        "bob": User(name="Bob", username="bob", email="bob@example.com", password_hash="-", role=TELECALLER_ROLE),
        "admin": User(name="Ada", username="admin", email="admin@example.com", password_hash="-", role=ADMIN_ROLE),
    }
    db_session.add_all(users.values())
    db_session.commit()
    return {key: AuthContext(user_id=user.id, role=user.role) for key, user in users.items()}


@pytest.fixture()
def client(
    db_session: Session,
    actors: dict[str, AuthContext],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": "alice"}

    def override_get_current_user(request: Request) -> AuthContext:
        actor = actors[state["current"]]
        return AuthContext(
            user_id=actor.user_id,
            role=actor.role,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _lead_payload(**overrides: str) -> dict[str, str]:
    return {
        "name": "Priya Shah",
        "company": "Shah Textiles",
        "phone": "+91-98200-00001",
        "email": "priya@example.com",
        "address": "12 MG Road, Pune",
        "source": "website",
        **overrides,
    }


def _user_payload(**overrides: str) -> dict[str, str]:
    return {
        "name": "Dev Patel",
        "username": "dev",
        "email": "dev@example.com",
        "password": "changeme1",
        "phone": "+91-90000-00000",
        **overrides,
    }


def test_admin_creates_telecaller_without_exposing_password(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("admin")

    response = test_client.post("/api/users", json=_user_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["role"] == "telecaller"
    assert body["username"] == "dev"
    assert "password" not in body
    assert "password_hash" not in body
    assert audit.entries_for("users.user", action="create")


def test_duplicate_username_or_email_conflicts(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("admin")

    same_username = test_client.post("/api/users", json=_user_payload(username="alice"))
    assert same_username.status_code == 409
    assert same_username.json()["code"] == "user_create_failed"

    same_email = test_client.post("/api/users", json=_user_payload(email="bob@example.com"))
    assert same_email.status_code == 409


def test_telecaller_cannot_create_or_list_users(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    assert test_client.post("/api/users", json=_user_payload()).status_code == 403
    assert test_client.get("/api/users").status_code == 403


def test_short_password_is_rejected(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("admin")
    assert test_client.post("/api/users", json=_user_payload(password="123")).status_code == 422


def test_admin_lists_all_users(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("admin")

    response = test_client.get("/api/users")

    assert response.status_code == 200
    assert {row["username"] for row in response.json()} == {"alice", "bob", "carol", "admin"}


def test_telecaller_directory_is_sorted_by_name(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client

    response = test_client.get("/api/users/telecallers")

    assert response.status_code == 200
    assert [row["name"] for row in response.json()] == ["Alice", "Bob", "Carol"]


def test_read_user_is_self_or_admin(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
) -> None:
    test_client, set_actor = client
    assert test_client.get(f"/api/users/{actors['alice'].user_id}").status_code == 200
    assert test_client.get(f"/api/users/{actors['bob'].user_id}").status_code == 403

    set_actor("admin")
    assert test_client.get(f"/api/users/{actors['bob'].user_id}").json()["username"] == "bob"
    assert test_client.get(f"/api/users/{uuid.uuid4()}").status_code == 404


def test_only_admin_changes_roles(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
) -> None:
    test_client, set_actor = client
    own_promotion = test_client.put(f"/api/users/{actors['alice'].user_id}", json={"role": "admin"})
    assert own_promotion.status_code == 403

    set_actor("admin")
    promoted = test_client.put(f"/api/users/{actors['bob'].user_id}", json={"role": "admin"})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "admin"


def test_self_password_change_requires_current_password(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
    db_session: Session,
) -> None:
    test_client, _ = client
    path = f"/api/users/{actors['alice'].user_id}"

    assert test_client.put(path, json={"new_password": "brand-new-1"}).status_code == 400
    wrong = test_client.put(path, json={"current_password": "nope", "new_password": "brand-new-1"})
    assert wrong.status_code == 401

    changed = test_client.put(path, json={"current_password": "secret123", "new_password": "brand-new-1"})
    assert changed.status_code == 200
    db_session.expire_all()
    alice = db_session.get(User, actors["alice"].user_id)
    assert alice is not None
    assert verify_password("brand-new-1", alice.password_hash)


def test_admin_resets_other_users_password(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    set_actor("admin")

    response = test_client.put(f"/api/users/{actors['bob'].user_id}", json={"new_password": "reset-1234"})

    assert response.status_code == 200
    db_session.expire_all()
    bob = db_session.get(User, actors["bob"].user_id)
    assert bob is not None
    assert verify_password("reset-1234", bob.password_hash)


def test_update_user_email_conflict(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
) -> None:
    test_client, _ = client
    response = test_client.put(f"/api/users/{actors['alice'].user_id}", json={"email": "bob@example.com"})
    assert response.status_code == 409


def test_delete_user_rules(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
) -> None:
    test_client, set_actor = client
    lead = test_client.post(
        "/api/leads",
        json=_lead_payload(),
    )
    assert lead.status_code == 201
    assert test_client.delete(f"/api/users/{actors['carol'].user_id}").status_code == 403

    set_actor("admin")
    own = test_client.delete(f"/api/users/{actors['admin'].user_id}")
    assert own.status_code == 400

    owner = test_client.delete(f"/api/users/{actors['alice'].user_id}")
    assert owner.status_code == 409
    assert owner.json()["code"] == "user_delete_failed"

    idle = test_client.delete(f"/api/users/{actors['carol'].user_id}")
    assert idle.status_code == 204
    assert test_client.get(f"/api/users/{actors['carol'].user_id}").status_code == 404
    assert audit.entries_for("users.user", action="delete")


def test_profile_includes_stats_and_recent_activity(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    lead = test_client.post(
        "/api/leads",
        json=_lead_payload(),
    ).json()
    for index in range(6):
        if index % 2:
            payload = {"lead_id": lead["id"], "status": "connected", "connected_response": "discussed"}
        else:
            payload = {"lead_id": lead["id"], "status": "not_connected", "not_connected_reason": "busy"}
        assert test_client.post("/api/calls", json=payload).status_code == 201

    response = test_client.get("/api/users/profile")

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["username"] == "alice"
    assert body["stats"] == {
        "total_calls": 6,
        "connected_calls": 3,
        "connection_rate": "50%",
        "calls_this_week": 6,
    }
    assert len(body["recent_activity"]) == 5
    assert all(item["lead"]["id"] == lead["id"] for item in body["recent_activity"])


def test_profile_update_rules(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
    db_session: Session,
) -> None:
    test_client, _ = client

    assert test_client.put("/api/users/profile", json={"new_password": "brand-new-1"}).status_code == 400
    assert (
        test_client.put("/api/users/profile", json={"current_password": "wrong", "new_password": "brand-new-1"}).status_code
        == 401
    )
    assert test_client.put("/api/users/profile", json={"email": "carol@example.com"}).status_code == 409

    updated = test_client.put("/api/users/profile", json={"name": "Alice Fernandes", "phone": "+91-91111-11111"})
    assert updated.status_code == 200
    assert updated.json()["name"] == "Alice Fernandes"
    assert updated.json()["last_active_at"] is not None

    db_session.expire_all()
    alice = db_session.get(User, actors["alice"].user_id)
    assert alice is not None
    assert verify_password("secret123", alice.password_hash)


def test_user_stats_are_self_or_admin(
    client: tuple[TestClient, Callable[[str], None]],
    actors: dict[str, AuthContext],
) -> None:
    test_client, set_actor = client
    own = test_client.get(f"/api/users/{actors['alice'].user_id}/stats")
    assert own.status_code == 200
    assert own.json()["connection_rate"] == "0%"

    set_actor("bob")
    assert test_client.get(f"/api/users/{actors['alice'].user_id}/stats").status_code == 403

    set_actor("admin")
    assert test_client.get(f"/api/users/{actors['alice'].user_id}/stats").status_code == 200
