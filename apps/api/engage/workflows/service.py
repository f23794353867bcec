from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from engage import audit
from engage.core.timeutils import utcnow
from engage.errors import NotFoundError
from engage.workflows.engine import WorkflowEngine
from engage.workflows.models import Workflow, WorkflowExecution
from engage.workflows.schemas import (
    WorkflowCreate,
    WorkflowExecutionRead,
    WorkflowRead,
    WorkflowTriggerRequest,
    WorkflowUpdate,
)


@dataclass(slots=True)
class WorkflowService:
    engine: WorkflowEngine = field(default_factory=WorkflowEngine)
    entity_type: str = "workflow"

    def list_workflows(self, session: Session, owner_user_id: uuid.UUID) -> list[WorkflowRead]:
        rows = session.scalars(
            select(Workflow).where(Workflow.owner_user_id == owner_user_id).order_by(Workflow.created_at.desc())
        ).all()
        return [WorkflowRead.model_validate(row) for row in rows]

    def create_workflow(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: WorkflowCreate,
        actor_user_id: str | None = None,
    ) -> WorkflowRead:
        workflow = Workflow(
            owner_user_id=owner_user_id,
            name=dto.name.strip(),
            description=dto.description,
            trigger_type=dto.trigger_type,
            trigger_conditions=dto.trigger_conditions,
            actions=dto.actions,
            is_active=dto.is_active,
        )
        session.add(workflow)
        session.flush()
        read_model = WorkflowRead.model_validate(workflow)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(workflow.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()
        return read_model

    def update_workflow(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        workflow_id: uuid.UUID,
        dto: WorkflowUpdate,
        actor_user_id: str | None = None,
    ) -> WorkflowRead:
        workflow = self._get_owned(session, owner_user_id, workflow_id)
        before = WorkflowRead.model_validate(workflow).model_dump(mode="json")
        for key, value in dto.model_dump(exclude_unset=True).items():
            if value is None and key != "description":
                continue
            setattr(workflow, key, value)
        workflow.updated_at = utcnow()
        session.flush()
        read_model = WorkflowRead.model_validate(workflow)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(workflow.id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()
        return read_model

    def delete_workflow(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        workflow_id: uuid.UUID,
        actor_user_id: str | None = None,
    ) -> None:
        workflow = self._get_owned(session, owner_user_id, workflow_id)
        session.delete(workflow)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(workflow_id),
            action="delete",
            before={"name": workflow.name},
            after=None,
        )
        session.commit()

    def trigger(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: WorkflowTriggerRequest,
    ) -> list[WorkflowExecutionRead]:
        return self.engine.evaluate_workflow(session, owner_user_id, dto.trigger_type, dto.trigger_data)

    def list_executions(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        workflow_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[WorkflowExecutionRead]:
        stmt = select(WorkflowExecution).where(WorkflowExecution.owner_user_id == owner_user_id)
        if workflow_id is not None:
            stmt = stmt.where(WorkflowExecution.workflow_id == workflow_id)
        rows = session.scalars(stmt.order_by(WorkflowExecution.executed_at.desc()).limit(limit)).all()
        return [WorkflowExecutionRead.model_validate(row) for row in rows]

    def _get_owned(self, session: Session, owner_user_id: uuid.UUID, workflow_id: uuid.UUID) -> Workflow:
        workflow = session.scalar(
            select(Workflow).where(and_(Workflow.id == workflow_id, Workflow.owner_user_id == owner_user_id))
        )
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow


workflow_service = WorkflowService()
