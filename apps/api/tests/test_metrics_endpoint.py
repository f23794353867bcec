from __future__ import annotations

from collections.abc import Generator
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage.api.deps import ActorUser, get_current_user
from engage.core.auth import AuthUser, get_current_user as auth_get_current_user
from engage.core.config import get_settings
from engage.core.database import Base, get_db
from engage.main import app
from engage.middleware.rate_limit import reset_rate_limiter
from engage.scheduling.slots import day_of_week


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def auth_roles() -> list[str]:
    return ["system.metrics.read"]


@pytest.fixture()
def client(db_session: Session, auth_roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_actor() -> ActorUser:
        return ActorUser(user_id="metrics-user", permissions={"automation.scan"}, correlation_id="metrics-corr-1")

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=auth_roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_actor
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_automation_workflow_and_booking_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    booking_day = date.today() + timedelta(days=7)
    assert client.post("/api/scheduling/links", json={"slug": "metrics-call", "title": "Call"}).status_code == 201
    assert client.put(
        "/api/scheduling/availability",
        json={"windows": [{"day_of_week": day_of_week(booking_day), "start_time": "09:00", "end_time": "10:00"}]},
    ).status_code == 200
    slots = client.get("/api/scheduling/public/metrics-call/slots", params={"date": booking_day.isoformat()}).json()
    booked = client.post(
        "/api/scheduling/public/metrics-call/book",
        json={"start": slots[0]["start"], "attendee": {"name": "Ada", "email": "ada@example.com"}},
    )
    assert booked.status_code == 201

    workflow = client.post(
        "/api/workflows",
        json={"name": "Manual", "trigger_type": "manual", "actions": [{"type": "create_task", "config": {}}]},
    )
    assert workflow.status_code == 201
    assert client.post("/api/workflows/trigger", json={}).status_code == 200

    rule = client.post(
        "/api/automation/rules",
        json={"name": "Dormant", "trigger_type": "contact_inactive", "trigger_config": {"days_inactive": 30}},
    )
    assert rule.status_code == 201
    assert client.post("/api/automation/scan").status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "automation_rules_processed_total" in body
    assert "automation_scan_duration_seconds" in body
    assert "workflow_executions_total" in body
    assert "scheduling_bookings_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/scheduling/public/{id}/book"' in body
    assert 'trigger_type="contact_inactive"' in body
    assert 'outcome="booked"' in body


@pytest.mark.parametrize("auth_roles", [["user"]])
def test_metrics_endpoint_requires_role(client: TestClient) -> None:
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404
