from __future__ import annotations

import logging
from typing import Any

from engage.context import reset_correlation_id, set_correlation_id
from engage.core.celery_app import celery_app
from engage.core.database import SessionLocal
from engage.workflows.dispatcher import parse_envelope
from engage.workflows.engine import WorkflowEngine

logger = logging.getLogger("engage.workflows.tasks")
workflow_engine = WorkflowEngine()


@celery_app.task(name="engage.workflows.process_event")
def process_event(event_name: str, envelope: dict[str, Any]) -> dict[str, Any]:
    parsed = parse_envelope(event_name, envelope)
    if parsed is None:
        logger.warning("workflow_event_ignored", extra={"event_name": event_name})
        return {"executions": 0}
    owner_user_id, trigger_type, trigger_data = parsed

    correlation_id = envelope.get("correlation_id")
    token = set_correlation_id(correlation_id if isinstance(correlation_id, str) else None)
    session = SessionLocal()
    try:
        executions = workflow_engine.evaluate_workflow(session, owner_user_id, trigger_type, trigger_data)
    finally:
        session.close()
        reset_correlation_id(token)
    return {
        "executions": len(executions),
        "statuses": [execution.status for execution in executions],
    }
