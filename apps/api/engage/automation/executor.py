from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from engage.automation.triggers import Candidate
from engage.crm.models import CRMNotification, CRMTask

logger = logging.getLogger("engage.automation.executor")

NOTIFICATION_TITLE = "New Task Created"
NOTIFICATION_TYPE = "automation"
NOTIFICATION_LINK = "/dashboard"


@dataclass(slots=True)
class ActionResult:
    success: bool
    task_id: uuid.UUID | None = None
    notification_id: uuid.UUID | None = None
    error: str | None = None

    def as_actions_performed(self) -> list[dict[str, str]]:
        performed: list[dict[str, str]] = []
        if self.task_id is not None:
            performed.append({"type": "create_task", "task_id": str(self.task_id)})
        if self.notification_id is not None:
            performed.append({"type": "create_notification", "notification_id": str(self.notification_id)})
        return performed


class ActionExecutor:
    def execute(
        self,
        session: Session,
        *,
        owner_user_id: uuid.UUID,
        candidate: Candidate,
        priority: str,
        now: datetime,
    ) -> ActionResult:
        try:
            task = CRMTask(
                owner_user_id=owner_user_id,
                contact_id=candidate.contact_id,
                deal_id=candidate.deal_id,
                title=candidate.title,
                description=candidate.description,
                priority=priority,
                status="pending",
                due_date=now,
            )
            notification = CRMNotification(
                owner_user_id=owner_user_id,
                title=NOTIFICATION_TITLE,
                message=candidate.notification_message,
                type=NOTIFICATION_TYPE,
                link=NOTIFICATION_LINK,
            )
            session.add_all([task, notification])
            session.flush()
        except SQLAlchemyError as exc:
            logger.warning(
                "automation_action_failed",
                extra={"owner_user_id": str(owner_user_id), "error": str(exc)[:500]},
            )
            return ActionResult(success=False, error=str(exc)[:500])
        return ActionResult(success=True, task_id=task.id, notification_id=notification.id)
