from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, time, timedelta, timezone

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage.automation.models import AutomationRule
from engage.automation.service import AutomationScanService
from engage.core.config import get_settings
from engage.core.database import Base
from engage.crm.models import CRMDeal
from engage.otel import setup_inmemory_otel
from engage.scheduling.schemas import AttendeeIn, AvailabilityReplaceRequest, AvailabilityWindowIn, SchedulingLinkCreate
from engage.scheduling.service import SchedulingService
from engage.workflows.engine import WorkflowEngine
from engage.workflows.models import Workflow


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


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
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


def test_scan_emits_scan_and_rule_spans(db_session: Session, span_exporter: InMemorySpanExporter) -> None:
    owner_id = uuid.uuid4()
    db_session.add(
        CRMDeal(owner_user_id=owner_id, title="Acme", stage="negotiation", updated_at=NOW - timedelta(minutes=5))
    )
    rule = AutomationRule(
        owner_user_id=owner_id,
        name="Negotiation",
        trigger_type="deal_stage_changed",
        trigger_config={"stage": "negotiation"},
        action_config={},
    )
    db_session.add(rule)
    db_session.commit()

    AutomationScanService().run_automation_scan(db_session, now=NOW)

    spans = {span.name: span for span in span_exporter.get_finished_spans()}
    assert "automation.scan" in spans
    rule_span = spans["automation.rule"]
    assert rule_span.attributes.get("automation.rule_id") == str(rule.id)
    assert rule_span.attributes.get("automation.trigger_type") == "deal_stage_changed"
    assert rule_span.attributes.get("automation.tasks_created") == 1
    assert rule_span.parent is not None
    assert rule_span.parent.span_id == spans["automation.scan"].context.span_id


def test_workflow_and_booking_spans(db_session: Session, span_exporter: InMemorySpanExporter) -> None:
    owner_id = uuid.uuid4()
    db_session.add(
        Workflow(
            owner_user_id=owner_id,
            name="Broken",
            trigger_type="manual",
            trigger_conditions={},
            actions=[{"type": "send_sms", "config": {}}],
        )
    )
    db_session.commit()
    WorkflowEngine().evaluate_workflow(db_session, owner_id, "manual", {})

    service = SchedulingService()
    link = service.create_link(db_session, owner_id, SchedulingLinkCreate(slug="span-call", title="Call"))
    service.replace_availability(
        db_session,
        owner_id,
        AvailabilityReplaceRequest(windows=[AvailabilityWindowIn(day_of_week=2, start_time=time(9), end_time=time(10))]),
    )
    service.book_slot(
        db_session,
        link.id,
        datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc),
        AttendeeIn(name="Ada", email="ada@example.com"),
        now=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )

    spans = {span.name: span for span in span_exporter.get_finished_spans()}
    workflow_span = spans["workflow.execute"]
    assert workflow_span.attributes.get("workflow.trigger_type") == "manual"
    assert not workflow_span.status.is_ok
    booking_span = spans["scheduling.book_slot"]
    assert booking_span.attributes.get("scheduling.link_id") == str(link.id)
    assert booking_span.attributes.get("scheduling.slot_start") == "2026-03-10T09:00:00+00:00"
