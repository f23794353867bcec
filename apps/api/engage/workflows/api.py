from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from engage.api.deps import ActorUser, get_current_user, require_user
from engage.core.database import get_db
from engage.workflows.schemas import (
    WorkflowCreate,
    WorkflowExecutionRead,
    WorkflowRead,
    WorkflowTriggerRequest,
    WorkflowUpdate,
)
from engage.workflows.service import workflow_service

router = APIRouter(prefix="/api/workflows", tags=["workflows"])


@router.get("", response_model=list[WorkflowRead])
def list_workflows(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[WorkflowRead]:
    require_user(user)
    return workflow_service.list_workflows(db, user.owner_id)


@router.post("", response_model=WorkflowRead, status_code=status.HTTP_201_CREATED)
def create_workflow(
    dto: WorkflowCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRead:
    require_user(user)
    return workflow_service.create_workflow(db, user.owner_id, dto, actor_user_id=user.user_id)


@router.post("/trigger", response_model=list[WorkflowExecutionRead])
def trigger_workflows(
    dto: WorkflowTriggerRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[WorkflowExecutionRead]:
    require_user(user)
    return workflow_service.trigger(db, user.owner_id, dto)


@router.get("/executions", response_model=list[WorkflowExecutionRead])
def list_executions(
    workflow_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[WorkflowExecutionRead]:
    require_user(user)
    return workflow_service.list_executions(db, user.owner_id, workflow_id=workflow_id, limit=limit)


@router.patch("/{workflow_id}", response_model=WorkflowRead)
def update_workflow(
    workflow_id: uuid.UUID,
    dto: WorkflowUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRead:
    require_user(user)
    return workflow_service.update_workflow(db, user.owner_id, workflow_id, dto, actor_user_id=user.user_id)


@router.delete("/{workflow_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_workflow(
    workflow_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, str]:
    require_user(user)
    workflow_service.delete_workflow(db, user.owner_id, workflow_id, actor_user_id=user.user_id)
    return {"status": "deleted"}
