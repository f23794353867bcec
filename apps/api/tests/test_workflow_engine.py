from __future__ import annotations

import json
import time
import uuid
from collections.abc import Generator
from typing import Any

import httpx
import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage.core.config import get_settings
from engage.core.database import Base
from engage.core.timeutils import as_utc
from engage.crm.models import CRMContact, CRMDeal, CRMNotification, CRMTask
from engage.workflows.actions import ActionContext, WorkflowActionRunner
from engage.workflows.engine import WorkflowEngine, conditions_match
from engage.workflows.models import Workflow, WorkflowExecution
from engage.workflows.schemas import WorkflowCreate
from engage.workflows.service import WorkflowService


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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def contact(db_session: Session, owner_id: uuid.UUID) -> CRMContact:
    row = CRMContact(owner_user_id=owner_id, first_name="Ada", last_name="Lovelace", email="ada@example.com")
    db_session.add(row)
    db_session.commit()
    return row


def _create_workflow(
    session: Session,
    owner_id: uuid.UUID,
    name: str,
    trigger_type: str,
    actions: list[dict],
    trigger_conditions: dict | None = None,
    service: WorkflowService | None = None,
) -> uuid.UUID:
    workflow = (service or WorkflowService()).create_workflow(
        session,
        owner_id,
        WorkflowCreate(
            name=name,
            trigger_type=trigger_type,
            trigger_conditions=trigger_conditions or {},
            actions=actions,
        ),
    )
    return workflow.id


def _count(session: Session, model: type) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


def test_conditions_match_semantics() -> None:
    assert conditions_match({}, {"stage": "won"})
    assert conditions_match(None, {})
    assert conditions_match({"stage": "won"}, {"stage": "won", "title": "Acme"})
    assert not conditions_match({"stage": "won"}, {"stage": "lost"})
    assert conditions_match({"stage": ["won", "negotiation"]}, {"stage": "negotiation"})
    assert not conditions_match({"stage": ["won"]}, {})


def test_failing_workflow_is_isolated_from_the_next(
    db_session: Session,
    owner_id: uuid.UUID,
    contact: CRMContact,
) -> None:
    failing_id = _create_workflow(
        db_session,
        owner_id,
        "Onboard and mislabel",
        "contact_created",
        [
            {"type": "create_task", "config": {"title": "Welcome call"}},
            {"type": "update_field", "config": {"entity": "contact", "field": "email", "value": "x@example.com"}},
        ],
    )
    notify_id = _create_workflow(
        db_session,
        owner_id,
        "Notify owner",
        "contact_created",
        [{"type": "send_notification", "config": {"title": "New contact", "message": "Say hello"}}],
    )

    executions = WorkflowEngine().evaluate_workflow(
        db_session,
        owner_id,
        "contact_created",
        {"contact_id": str(contact.id), "first_name": "Ada"},
    )

    assert [item.workflow_id for item in executions] == [failing_id, notify_id]
    assert executions[0].status == "error"
    assert "not updatable" in (executions[0].error_message or "")
    assert executions[0].action_results == []
    assert executions[1].status == "success"
    assert executions[1].action_results[0]["type"] == "send_notification"

    assert _count(db_session, CRMTask) == 0
    notification = db_session.scalar(select(CRMNotification))
    assert notification is not None
    assert notification.type == "workflow"
    assert notification.title == "New contact"
    assert _count(db_session, WorkflowExecution) == 2


def test_trigger_conditions_filter_workflows(db_session: Session, owner_id: uuid.UUID) -> None:
    deal = CRMDeal(owner_user_id=owner_id, title="Acme renewal", stage="won")
    db_session.add(deal)
    db_session.commit()
    _create_workflow(
        db_session,
        owner_id,
        "Won deals",
        "deal_stage_changed",
        [{"type": "create_task", "config": {"title": "Send contract", "due_in_days": 2}}],
        trigger_conditions={"stage": ["won"]},
    )
    engine = WorkflowEngine()

    lost = engine.evaluate_workflow(db_session, owner_id, "deal_stage_changed", {"deal_id": str(deal.id), "stage": "lost"})
    assert lost == []

    won = engine.evaluate_workflow(db_session, owner_id, "deal_stage_changed", {"deal_id": str(deal.id), "stage": "won"})
    assert len(won) == 1
    assert won[0].status == "success"
    task = db_session.scalar(select(CRMTask))
    assert task is not None
    assert task.title == "Send contract"
    assert task.deal_id == deal.id
    assert task.due_date is not None


def test_create_task_without_due_in_days_is_due_at_execution_time(db_session: Session, owner_id: uuid.UUID) -> None:
    _create_workflow(db_session, owner_id, "Call back", "manual", [{"type": "create_task", "config": {"title": "Call"}}])

    executions = WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {})
    assert [execution.status for execution in executions] == ["success"]

    task = db_session.scalar(select(CRMTask))
    assert task is not None
    assert task.due_date is not None
    assert as_utc(task.due_date) == as_utc(executions[0].executed_at)
    assert task.status == "pending"
    assert task.priority == "medium"
    assert _count(db_session, CRMNotification) == 0


def test_workflows_of_other_owners_and_inactive_ones_do_not_run(db_session: Session, owner_id: uuid.UUID) -> None:
    _create_workflow(db_session, uuid.uuid4(), "Someone else", "manual", [{"type": "create_task", "config": {}}])
    paused_id = _create_workflow(db_session, owner_id, "Paused", "manual", [{"type": "create_task", "config": {}}])
    paused = db_session.get(Workflow, paused_id)
    assert paused is not None
    paused.is_active = False
    db_session.commit()

    assert WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {}) == []


def test_update_field_changes_owned_entity(db_session: Session, owner_id: uuid.UUID) -> None:
    deal = CRMDeal(owner_user_id=owner_id, title="Acme renewal", stage="proposal")
    db_session.add(deal)
    db_session.commit()
    _create_workflow(
        db_session,
        owner_id,
        "Advance stage",
        "manual",
        [{"type": "update_field", "config": {"entity": "deal", "field": "stage", "value": "negotiation"}}],
    )

    executions = WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {"deal_id": str(deal.id)})
    assert executions[0].status == "success"
    assert executions[0].action_results == [
        {
            "type": "update_field",
            "entity": "deal",
            "entity_id": str(deal.id),
            "field": "stage",
            "previous": "proposal",
        }
    ]
    db_session.refresh(deal)
    assert deal.stage == "negotiation"


def test_update_field_cannot_touch_another_owners_row(db_session: Session, owner_id: uuid.UUID) -> None:
    foreign = CRMDeal(owner_user_id=uuid.uuid4(), title="Not yours", stage="proposal")
    db_session.add(foreign)
    db_session.commit()
    _create_workflow(
        db_session,
        owner_id,
        "Sneaky",
        "manual",
        [{"type": "update_field", "config": {"entity": "deal", "field": "stage", "value": "won"}}],
    )

    executions = WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {"deal_id": str(foreign.id)})
    assert executions[0].status == "error"
    assert executions[0].error_message == "Deal not found"
    db_session.refresh(foreign)
    assert foreign.stage == "proposal"


def test_unknown_action_type_fails_execution(db_session: Session, owner_id: uuid.UUID) -> None:
    db_session.add(
        Workflow(
            owner_user_id=owner_id,
            name="Legacy",
            trigger_type="manual",
            trigger_conditions={},
            actions=[{"type": "send_sms", "config": {"to": "+15550100"}}],
        )
    )
    db_session.commit()

    executions = WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {})
    assert executions[0].status == "error"
    assert executions[0].error_message == "Unknown action type: send_sms"


def test_unknown_action_type_rejected_on_create() -> None:
    with pytest.raises(ValidationError):
        WorkflowCreate(name="Bad", trigger_type="manual", actions=[{"type": "send_sms", "config": {}}])


def test_workflow_deadline_stops_remaining_actions(
    db_session: Session,
    owner_id: uuid.UUID,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("WORKFLOW_ACTION_TIMEOUT_SECONDS", "0")
    get_settings.cache_clear()
    _create_workflow(db_session, owner_id, "Too slow", "manual", [{"type": "create_task", "config": {}}])

    executions = WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {})
    assert executions[0].status == "error"
    assert "exceeded" in (executions[0].error_message or "")
    assert _count(db_session, CRMTask) == 0


class _OverrunningRunner(WorkflowActionRunner):
    def run(self, session: Session, action: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        result = super().run(session, action, context)
        context.deadline = time.monotonic() - 1
        return result


def test_action_that_overruns_the_deadline_is_rolled_back(db_session: Session, owner_id: uuid.UUID) -> None:
    _create_workflow(
        db_session,
        owner_id,
        "Slow insert",
        "manual",
        [
            {"type": "create_task", "config": {"title": "Follow up"}},
            {"type": "send_notification", "config": {"title": "Never sent"}},
        ],
    )

    executions = WorkflowEngine(runner=_OverrunningRunner()).evaluate_workflow(db_session, owner_id, "manual", {})
    assert executions[0].status == "error"
    assert "during action 1 of 2" in (executions[0].error_message or "")
    assert executions[0].action_results == []
    assert _count(db_session, CRMTask) == 0
    assert _count(db_session, CRMNotification) == 0


def test_webhook_posts_workflow_payload(db_session: Session, owner_id: uuid.UUID) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202, json={"ok": True})

    engine = WorkflowEngine(runner=WorkflowActionRunner(transport=httpx.MockTransport(handler)))
    workflow_id = _create_workflow(
        db_session,
        owner_id,
        "Notify Zapier",
        "task_completed",
        [{"type": "trigger_webhook", "config": {"url": "https://hooks.example.com/engage"}}],
    )

    executions = engine.evaluate_workflow(db_session, owner_id, "task_completed", {"task_id": "t-1", "title": "Call"})
    assert executions[0].status == "success"
    assert executions[0].action_results == [{"type": "trigger_webhook", "status_code": 202}]

    assert len(captured) == 1
    assert captured[0].method == "POST"
    assert str(captured[0].url) == "https://hooks.example.com/engage"
    body = json.loads(captured[0].content)
    assert body == {
        "workflow_id": str(workflow_id),
        "workflow_name": "Notify Zapier",
        "trigger_type": "task_completed",
        "trigger_data": {"task_id": "t-1", "title": "Call"},
    }


def test_webhook_error_status_fails_execution(db_session: Session, owner_id: uuid.UUID) -> None:
    engine = WorkflowEngine(
        runner=WorkflowActionRunner(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    )
    _create_workflow(
        db_session,
        owner_id,
        "Task then webhook",
        "manual",
        [
            {"type": "create_task", "config": {"title": "Rolled back"}},
            {"type": "trigger_webhook", "config": {"url": "https://hooks.example.com/fail"}},
        ],
    )

    executions = engine.evaluate_workflow(db_session, owner_id, "manual", {})
    assert executions[0].status == "error"
    assert "500" in (executions[0].error_message or "")
    assert _count(db_session, CRMTask) == 0


def test_webhook_timeout_is_reported(db_session: Session, owner_id: uuid.UUID) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("upstream too slow", request=request)

    engine = WorkflowEngine(runner=WorkflowActionRunner(transport=httpx.MockTransport(handler)))
    _create_workflow(
        db_session,
        owner_id,
        "Slow hook",
        "manual",
        [{"type": "trigger_webhook", "config": {"url": "https://hooks.example.com/slow"}}],
    )

    executions = engine.evaluate_workflow(db_session, owner_id, "manual", {})
    assert executions[0].status == "error"
    assert (executions[0].error_message or "").startswith("Webhook timed out")
