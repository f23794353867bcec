from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Any

from sqlalchemy.orm import Session

from engage.context import reset_correlation_id, set_correlation_id
from engage.core.config import get_settings
from engage.core.database import SessionLocal
from engage.core.events import InProcessEventBus, InternalEvent, event_bus
from engage.workflows.engine import WorkflowEngine

logger = logging.getLogger("engage.workflows.dispatcher")

EVENT_TRIGGER_TYPES: dict[str, str] = {
    "crm.contact.created": "contact_created",
    "crm.deal.stage_changed": "deal_stage_changed",
    "crm.task.completed": "task_completed",
}

SessionScope = Callable[[], AbstractContextManager[Session]]


@contextmanager
def default_session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def parse_envelope(event_name: str, envelope: Any) -> tuple[uuid.UUID, str, dict[str, Any]] | None:
    trigger_type = EVENT_TRIGGER_TYPES.get(event_name)
    if trigger_type is None or not isinstance(envelope, dict):
        return None
    try:
        owner_user_id = uuid.UUID(str(envelope.get("owner_user_id")))
    except ValueError:
        return None
    payload = envelope.get("payload")
    return owner_user_id, trigger_type, payload if isinstance(payload, dict) else {}


class WorkflowDispatcher:
    """Hands CRM domain events to the workflow engine.

    Runs inline in a fresh session when ``auto_run_workflow_jobs`` is set,
    otherwise enqueues ``engage.workflows.process_event``. Failures are logged
    and never reach the publisher.
    """

    def __init__(self, engine: WorkflowEngine | None = None, session_scope: SessionScope | None = None) -> None:
        self.engine = engine or WorkflowEngine()
        self.session_scope = session_scope or default_session_scope

    def register(self, bus: InProcessEventBus = event_bus) -> None:
        for event_name in EVENT_TRIGGER_TYPES:
            bus.subscribe(event_name, self.handle_event)

    def unregister(self, bus: InProcessEventBus = event_bus) -> None:
        for event_name in EVENT_TRIGGER_TYPES:
            bus.unsubscribe(event_name, self.handle_event)

    def handle_event(self, event: InternalEvent) -> None:
        parsed = parse_envelope(event.name, event.payload)
        if parsed is None:
            return
        owner_user_id, trigger_type, trigger_data = parsed
        correlation_id = event.payload.get("correlation_id")

        try:
            if get_settings().auto_run_workflow_jobs:
                token = set_correlation_id(correlation_id if isinstance(correlation_id, str) else None)
                try:
                    with self.session_scope() as session:
                        self.engine.evaluate_workflow(session, owner_user_id, trigger_type, trigger_data)
                finally:
                    reset_correlation_id(token)
            else:
                from engage.workflows.tasks import process_event

                process_event.delay(event.name, event.payload)
        except Exception as exc:
            logger.exception(
                "workflow_dispatch_failed",
                extra={"event_name": event.name, "trigger_type": trigger_type, "error": str(exc)[:500]},
            )
