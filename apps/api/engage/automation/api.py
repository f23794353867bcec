from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from engage.api.deps import ActorUser, get_current_user, require_permission, require_user
from engage.automation.schemas import (
    AutomationExecutionLogRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    AutomationScanResponse,
)
from engage.automation.service import automation_rule_service, automation_scan_service
from engage.core.database import get_db

router = APIRouter(prefix="/api/automation", tags=["automation"])


@router.post("/scan", response_model=AutomationScanResponse)
def run_scan(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AutomationScanResponse:
    require_permission(user, "automation.scan")
    results = automation_scan_service.run_automation_scan(db)
    return AutomationScanResponse(rules_processed=len(results), results=results)


@router.get("/rules", response_model=list[AutomationRuleRead])
def list_rules(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AutomationRuleRead]:
    require_user(user)
    return automation_rule_service.list_rules(db, user.owner_id)


@router.post("/rules", response_model=AutomationRuleRead, status_code=status.HTTP_201_CREATED)
def create_rule(
    dto: AutomationRuleCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AutomationRuleRead:
    require_user(user)
    return automation_rule_service.create_rule(db, user.owner_id, dto, actor_user_id=user.user_id)


@router.patch("/rules/{rule_id}", response_model=AutomationRuleRead)
def update_rule(
    rule_id: uuid.UUID,
    dto: AutomationRuleUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AutomationRuleRead:
    require_user(user)
    return automation_rule_service.update_rule(db, user.owner_id, rule_id, dto, actor_user_id=user.user_id)


@router.post("/rules/{rule_id}/toggle", response_model=AutomationRuleRead)
def toggle_rule(
    rule_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AutomationRuleRead:
    require_user(user)
    return automation_rule_service.toggle_rule(db, user.owner_id, rule_id, actor_user_id=user.user_id)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_rule(
    rule_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, str]:
    require_user(user)
    automation_rule_service.delete_rule(db, user.owner_id, rule_id, actor_user_id=user.user_id)
    return {"status": "deleted"}


@router.get("/logs", response_model=list[AutomationExecutionLogRead])
def list_logs(
    rule_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AutomationExecutionLogRead]:
    require_user(user)
    return automation_rule_service.list_logs(db, user.owner_id, rule_id=rule_id, limit=limit)
