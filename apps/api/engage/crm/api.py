from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from engage.api.deps import ActorUser, get_current_user, require_user
from engage.core.database import get_db
from engage.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    ContactCreate,
    ContactRead,
    DealChangeStageRequest,
    DealCreate,
    DealRead,
    NotificationRead,
    TaskRead,
)
from engage.crm.service import activity_service, contact_service, deal_service, notification_service, task_service

router = APIRouter(prefix="/api/crm", tags=["crm"])


@router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    dto: ContactCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead:
    require_user(user)
    return contact_service.create_contact(db, user.owner_id, dto, actor_user_id=user.user_id)


@router.post("/deals", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    dto: DealCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead:
    require_user(user)
    return deal_service.create_deal(db, user.owner_id, dto, actor_user_id=user.user_id)


@router.post("/deals/{deal_id}/stage", response_model=DealRead)
def change_deal_stage(
    deal_id: uuid.UUID,
    dto: DealChangeStageRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead:
    require_user(user)
    return deal_service.change_stage(db, user.owner_id, deal_id, dto, actor_user_id=user.user_id)


@router.post("/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ActivityRead:
    require_user(user)
    return activity_service.create_activity(db, user.owner_id, dto)


@router.get("/tasks", response_model=list[TaskRead])
def list_tasks(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TaskRead]:
    require_user(user)
    return task_service.list_tasks(db, user.owner_id, status_filter=status_filter, limit=limit)


@router.post("/tasks/{task_id}/complete", response_model=TaskRead)
def complete_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead:
    require_user(user)
    return task_service.complete_task(db, user.owner_id, task_id, actor_user_id=user.user_id)


@router.get("/notifications", response_model=list[NotificationRead])
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[NotificationRead]:
    require_user(user)
    return notification_service.list_notifications(db, user.owner_id, unread_only=unread_only, limit=limit)


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> NotificationRead:
    require_user(user)
    return notification_service.mark_read(db, user.owner_id, notification_id)


@router.delete("/notifications/{notification_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_notification(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, str]:
    require_user(user)
    notification_service.delete(db, user.owner_id, notification_id)
    return {"status": "deleted"}
