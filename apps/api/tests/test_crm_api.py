from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage import audit, events
from engage.api.deps import ActorUser, get_current_user
from engage.core.config import get_settings
from engage.core.database import Base, get_db
from engage.crm.models import CRMNotification, CRMTask
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    actors = {
        "owner": ActorUser(user_id="crm-owner"),
        "other": ActorUser(user_id="crm-other"),
    }
    state = {"current": "owner"}

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> ActorUser:
        return actors[state["current"]]

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def test_contact_and_deal_creation(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    contact = test_client.post(
        "/api/crm/contacts",
        json={"first_name": " Ada ", "last_name": "Lovelace", "email": "ada@example.com"},
    )
    assert contact.status_code == 201
    assert contact.json()["first_name"] == "Ada"
    assert contact.json()["status"] == "lead"

    invalid_email = test_client.post("/api/crm/contacts", json={"first_name": "Bad", "email": "not-an-email"})
    assert invalid_email.status_code == 422

    deal = test_client.post(
        "/api/crm/deals",
        json={"title": "Acme renewal", "stage": "proposal", "value": "1200.50", "contact_id": contact.json()["id"]},
    )
    assert deal.status_code == 201
    assert deal.json()["contact_id"] == contact.json()["id"]

    unchanged = test_client.post(f"/api/crm/deals/{deal.json()['id']}/stage", json={"stage": "proposal"})
    assert unchanged.status_code == 200
    assert [item["event_type"] for item in events.published_events] == ["crm.contact.created"]

    moved = test_client.post(f"/api/crm/deals/{deal.json()['id']}/stage", json={"stage": "negotiation"})
    assert moved.json()["stage"] == "negotiation"
    stage_events = [item for item in events.published_events if item["event_type"] == "crm.deal.stage_changed"]
    assert stage_events[0]["payload"]["previous_stage"] == "proposal"
    assert stage_events[0]["payload"]["stage"] == "negotiation"

    set_actor("other")
    foreign = test_client.post(
        "/api/crm/deals",
        json={"title": "Stolen contact", "contact_id": contact.json()["id"]},
    )
    assert foreign.status_code == 404
    assert foreign.json()["message"] == "Contact not found"


def test_activity_requires_a_target(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    missing_target = test_client.post("/api/crm/activities", json={"activity_type": "call"})
    assert missing_target.status_code == 422
    assert missing_target.json()["code"] == "validation_failed"

    contact = test_client.post("/api/crm/contacts", json={"first_name": "Grace"}).json()
    activity = test_client.post(
        "/api/crm/activities",
        json={"activity_type": "call", "contact_id": contact["id"], "subject": "Intro"},
    )
    assert activity.status_code == 201
    assert activity.json()["subject"] == "Intro"


def test_task_listing_and_completion(client: tuple[TestClient, Callable[[str], None]], db_session: Session) -> None:
    test_client, set_actor = client
    owner_id = ActorUser(user_id="crm-owner").owner_id
    db_session.add_all(
        [
            CRMTask(owner_user_id=owner_id, title="Call Ada", priority="high"),
            CRMTask(owner_user_id=owner_id, title="Send deck", status="completed"),
        ]
    )
    db_session.commit()

    pending = test_client.get("/api/crm/tasks", params={"status": "pending"})
    assert [task["title"] for task in pending.json()] == ["Call Ada"]

    completed = test_client.post(f"/api/crm/tasks/{pending.json()[0]['id']}/complete")
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"
    assert completed.json()["completed_at"] is not None
    assert [item["event_type"] for item in events.published_events] == ["crm.task.completed"]

    set_actor("other")
    assert test_client.get("/api/crm/tasks").json() == []
    hidden = test_client.post(f"/api/crm/tasks/{pending.json()[0]['id']}/complete")
    assert hidden.status_code == 404


def test_notifications_read_and_delete(client: tuple[TestClient, Callable[[str], None]], db_session: Session) -> None:
    test_client, _ = client
    owner_id = ActorUser(user_id="crm-owner").owner_id
    db_session.add_all(
        [
            CRMNotification(owner_user_id=owner_id, title="New Task Created", type="automation"),
            CRMNotification(owner_user_id=owner_id, title="Deal won", type="workflow"),
        ]
    )
    db_session.commit()

    unread = test_client.get("/api/crm/notifications", params={"unread_only": True})
    assert len(unread.json()) == 2

    first_id = unread.json()[0]["id"]
    marked = test_client.post(f"/api/crm/notifications/{first_id}/read")
    assert marked.status_code == 200
    assert marked.json()["is_read"] is True
    assert len(test_client.get("/api/crm/notifications", params={"unread_only": True}).json()) == 1

    deleted = test_client.delete(f"/api/crm/notifications/{first_id}")
    assert deleted.json() == {"status": "deleted"}
    assert len(test_client.get("/api/crm/notifications").json()) == 1

    missing = test_client.post(f"/api/crm/notifications/{uuid.uuid4()}/read")
    assert missing.status_code == 404
