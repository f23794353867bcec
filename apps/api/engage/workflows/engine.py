from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from engage.core.config import get_settings
from engage.core.timeutils import utcnow
from engage.errors import WorkflowTimeoutError
from engage.metrics import observe_workflow_execution
from engage.otel import set_span_attributes
from engage.workflows.actions import ActionContext, WorkflowActionRunner
from engage.workflows.models import Workflow, WorkflowExecution
from engage.workflows.schemas import WorkflowExecutionRead

logger = logging.getLogger("engage.workflows")
tracer = trace.get_tracer("engage.workflows")


def conditions_match(conditions: dict[str, Any] | None, trigger_data: dict[str, Any]) -> bool:
    """Every condition key must match the trigger data; a list means "any of"."""
    if not conditions:
        return True
    for key, expected in conditions.items():
        actual = trigger_data.get(key)
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


@dataclass(slots=True)
class WorkflowEngine:
    runner: WorkflowActionRunner = field(default_factory=WorkflowActionRunner)

    def evaluate_workflow(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        trigger_type: str,
        trigger_data: dict[str, Any],
    ) -> list[WorkflowExecutionRead]:
        workflows = session.scalars(
            select(Workflow)
            .where(
                and_(
                    Workflow.owner_user_id == owner_user_id,
                    Workflow.trigger_type == trigger_type,
                    Workflow.is_active.is_(True),
                )
            )
            .order_by(Workflow.created_at, Workflow.id)
        ).all()
        matched = [workflow for workflow in workflows if conditions_match(workflow.trigger_conditions, trigger_data)]

        executions: list[WorkflowExecutionRead] = []
        for workflow in matched:
            execution = self._run_workflow(session, workflow, trigger_type, trigger_data)
            if execution is not None:
                executions.append(execution)
        return executions

    def _run_workflow(
        self,
        session: Session,
        workflow: Workflow,
        trigger_type: str,
        trigger_data: dict[str, Any],
    ) -> WorkflowExecutionRead | None:
        workflow_id = workflow.id
        owner_user_id = workflow.owner_user_id
        actions = list(workflow.actions or [])
        timeout_seconds = get_settings().workflow_action_timeout_seconds
        started = time.perf_counter()
        executed_at = utcnow()
        context = ActionContext(
            owner_user_id=owner_user_id,
            workflow_id=workflow_id,
            workflow_name=workflow.name,
            trigger_type=trigger_type,
            trigger_data=trigger_data,
            now=executed_at,
            deadline=time.monotonic() + timeout_seconds,
        )
        action_results: list[dict[str, Any]] = []
        error_message: str | None = None

        with tracer.start_as_current_span("workflow.execute") as span:
            set_span_attributes(
                span,
                {"workflow.id": workflow_id, "workflow.trigger_type": trigger_type, "workflow.actions": len(actions)},
            )
            try:
                for index, action in enumerate(actions):
                    if context.remaining_seconds() <= 0:
                        raise WorkflowTimeoutError(
                            f"Workflow exceeded {timeout_seconds}s before action {index + 1} of {len(actions)}"
                        )
                    action_results.append(self.runner.run(session, action, context))
                    # A running statement is not interrupted; an overrun is caught here and rolled back.
                    if context.remaining_seconds() <= 0:
                        raise WorkflowTimeoutError(
                            f"Workflow exceeded {timeout_seconds}s during action {index + 1} of {len(actions)}"
                        )
            except Exception as exc:
                session.rollback()
                error_message = str(exc)[:1000]
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, error_message[:200]))
                logger.warning(
                    "workflow_execution_failed",
                    extra={
                        "workflow_id": str(workflow_id),
                        "trigger_type": trigger_type,
                        "owner_user_id": str(owner_user_id),
                        "error": error_message,
                    },
                )

        status = "error" if error_message is not None else "success"
        execution = WorkflowExecution(
            workflow_id=workflow_id,
            owner_user_id=owner_user_id,
            trigger_type=trigger_type,
            trigger_data=trigger_data,
            status=status,
            error_message=error_message,
            action_results=action_results if status == "success" else [],
            executed_at=executed_at,
            completed_at=utcnow(),
        )
        session.add(execution)
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception(
                "workflow_execution_log_failed",
                extra={"workflow_id": str(workflow_id), "error": str(exc)[:500]},
            )
            observe_workflow_execution(trigger_type, "error", time.perf_counter() - started)
            return None

        observe_workflow_execution(trigger_type, status, time.perf_counter() - started)
        logger.info(
            "workflow_execution_completed",
            extra={"workflow_id": str(workflow_id), "execution_id": str(execution.id), "status": status},
        )
        return WorkflowExecutionRead.model_validate(execution)
