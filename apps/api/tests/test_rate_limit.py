from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from callbook.core.auth import get_current_user
from callbook.core.config import get_settings
from callbook.core.database import Base, get_db
from callbook.main import app
from callbook.middleware import rate_limit
from callbook.middleware.rate_limit import TokenBucketLimiter, reset_rate_limiter
from callbook.platform.security.context import TELECALLER_ROLE, AuthContext
from callbook.users.models import User


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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    user = User(name="Alice", username="alice", email="alice@example.com", password_hash="-", role=TELECALLER_ROLE)
    db_session.add(user)
    db_session.commit()
    actor = AuthContext(user_id=user.id, role=user.role)

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthContext:
        return AuthContext(
            user_id=actor.user_id,
            role=actor.role,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _lead_payload(index: int) -> dict[str, str]:
    return {"name": f"Lead {index}", "phone": f"+91-98200-0000{index}", "address": "12 MG Road, Pune"}


def test_mutating_lead_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [client.post("/api/leads", json=_lead_payload(index)) for index in range(5)]

    assert [response.status_code for response in responses[:3]] == [201, 201, 201]
    limited = responses[3]
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1
    body = limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["correlation_id"]
    assert responses[4].status_code == 429


def test_reads_are_not_rate_limited(client: TestClient) -> None:
    for index in range(3):
        client.post("/api/leads", json=_lead_payload(index))

    assert all(client.get("/api/leads").status_code == 200 for _ in range(5))


def test_calls_have_their_own_bucket(client: TestClient) -> None:
    leads = [client.post("/api/leads", json=_lead_payload(index)).json() for index in range(3)]
    assert client.post("/api/leads", json=_lead_payload(9)).status_code == 429

    response = client.post(
        "/api/calls",
        json={"lead_id": leads[0]["id"], "status": "not_connected", "not_connected_reason": "busy"},
    )
    assert response.status_code == 201


def test_rate_limit_can_be_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()

    assert all(client.post("/api/leads", json=_lead_payload(index)).status_code == 201 for index in range(5))


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def monotonic(self) -> float:
        return self.now


def test_idle_buckets_are_evicted_after_a_window(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = _FakeClock()
    monkeypatch.setattr(rate_limit, "time", clock)
    limiter = TokenBucketLimiter()

    for caller in ("alice", "bob", "carol"):
        assert limiter.take(caller, "leads", capacity=3, window_seconds=60) == (True, 0)
    assert len(limiter) == 3

    clock.now += 30
    limiter.take("alice", "leads", capacity=3, window_seconds=60)
    assert len(limiter) == 3

    clock.now += 45
    limiter.take("dave", "calls", capacity=3, window_seconds=60)
    assert len(limiter) == 2


def test_evicted_bucket_starts_full_again(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = _FakeClock()
    monkeypatch.setattr(rate_limit, "time", clock)
    limiter = TokenBucketLimiter()

    for _ in range(3):
        limiter.take("alice", "leads", capacity=3, window_seconds=60)
    allowed, retry_after = limiter.take("alice", "leads", capacity=3, window_seconds=60)
    assert not allowed
    assert retry_after >= 1

    clock.now += 61
    assert limiter.take("bob", "leads", capacity=3, window_seconds=60) == (True, 0)
    assert limiter.take("alice", "leads", capacity=3, window_seconds=60) == (True, 0)
