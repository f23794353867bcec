from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage.api.deps import ActorUser, get_current_user
from engage.core.config import get_settings
from engage.core.database import Base, get_db
from engage.main import app
from engage.middleware.rate_limit import reset_rate_limiter


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
    monkeypatch.setenv("BOOKING_RATE_LIMIT_PER_MINUTE", "2")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> ActorUser:
        return ActorUser(user_id="host-1")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _book(client: TestClient, slug: str, correlation_id: str | None = None):  # type: ignore[no-untyped-def]
    headers = {"X-Correlation-Id": correlation_id} if correlation_id else {}
    return client.post(
        f"/api/scheduling/public/{slug}/book",
        json={"start": "2030-01-07T09:00:00Z", "attendee": {"name": "Ada", "email": "ada@example.com"}},
        headers=headers,
    )


def test_public_booking_attempts_are_rate_limited(client: TestClient) -> None:
    responses = [_book(client, "intro-call", "corr-rate-1") for _ in range(4)]

    assert [response.status_code for response in responses[:2]] == [404, 404]
    limited = [response for response in responses if response.status_code == 429]
    assert len(limited) == 2

    body = limited[0].json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many booking attempts"
    assert body["correlation_id"] == "corr-rate-1"
    assert limited[0].headers.get("Retry-After") is not None
    assert limited[0].headers.get("x-correlation-id") == "corr-rate-1"


def test_limit_is_tracked_per_slug(client: TestClient) -> None:
    for _ in range(3):
        _book(client, "intro-call")

    other = _book(client, "demo-call")
    assert other.status_code != 429


def test_reads_and_authenticated_routes_are_not_limited(client: TestClient) -> None:
    public_reads = [client.get("/api/scheduling/public/intro-call") for _ in range(5)]
    assert all(response.status_code != 429 for response in public_reads)

    host_writes = [
        client.post("/api/scheduling/links", json={"slug": f"link-{index}", "title": "Call"}) for index in range(4)
    ]
    assert all(response.status_code == 201 for response in host_writes)
