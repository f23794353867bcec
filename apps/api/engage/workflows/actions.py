from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from engage.core.config import get_settings
from engage.crm.models import CRMContact, CRMDeal, CRMNotification, CRMTask
from engage.errors import NotFoundError, UnknownActionError, ValidationError, WorkflowTimeoutError

logger = logging.getLogger("engage.workflows.actions")

UPDATABLE_FIELDS: dict[str, set[str]] = {
    "contact": {"first_name", "last_name", "phone", "status"},
    "deal": {"title", "stage"},
    "task": {"title", "description", "priority", "status"},
}

_ENTITY_MODELS: dict[str, type] = {
    "contact": CRMContact,
    "deal": CRMDeal,
    "task": CRMTask,
}


@dataclass(slots=True)
class ActionContext:
    owner_user_id: uuid.UUID
    workflow_id: uuid.UUID
    workflow_name: str
    trigger_type: str
    trigger_data: dict[str, Any]
    now: datetime
    deadline: float

    def remaining_seconds(self) -> float:
        return self.deadline - time.monotonic()


def _uuid_or_none(value: Any) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _owned_id(session: Session, model: type, value: Any, owner_user_id: uuid.UUID) -> uuid.UUID | None:
    entity_id = _uuid_or_none(value)
    if entity_id is None:
        return None
    return session.scalar(select(model.id).where(and_(model.id == entity_id, model.owner_user_id == owner_user_id)))


@dataclass(slots=True)
class WorkflowActionRunner:
    """Executes one workflow action against the session of the running workflow.

    Handlers raise on failure; the engine turns that into a failed execution.
    """

    transport: httpx.BaseTransport | None = None
    _handlers: dict[str, Callable[[Session, dict[str, Any], ActionContext], dict[str, Any]]] = field(
        init=False,
        default_factory=dict,
    )

    def __post_init__(self) -> None:
        self._handlers = {
            "create_task": self._create_task,
            "send_notification": self._send_notification,
            "update_field": self._update_field,
            "trigger_webhook": self._trigger_webhook,
        }

    def run(self, session: Session, action: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        action_type = str(action.get("type") or "")
        handler = self._handlers.get(action_type)
        if handler is None:
            raise UnknownActionError(f"Unknown action type: {action_type or '<missing>'}")
        config = action.get("config") or {}
        if not isinstance(config, dict):
            raise ValidationError(f"Action {action_type} config must be an object")
        return handler(session, config, context)

    def _create_task(self, session: Session, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        due_in_days = config.get("due_in_days")
        due_date = context.now + timedelta(days=int(due_in_days or 0))
        task = CRMTask(
            owner_user_id=context.owner_user_id,
            contact_id=_owned_id(session, CRMContact, context.trigger_data.get("contact_id"), context.owner_user_id),
            deal_id=_owned_id(session, CRMDeal, context.trigger_data.get("deal_id"), context.owner_user_id),
            title=str(config.get("title") or "Automated Task"),
            description=config.get("description"),
            priority=str(config.get("priority") or "medium"),
            status="pending",
            due_date=due_date,
        )
        session.add(task)
        session.flush()
        return {"type": "create_task", "task_id": str(task.id)}

    def _send_notification(self, session: Session, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        title = config.get("title")
        if not title:
            raise ValidationError("send_notification requires a title")
        notification = CRMNotification(
            owner_user_id=context.owner_user_id,
            title=str(title),
            message=config.get("message"),
            type="workflow",
            link=config.get("link"),
        )
        session.add(notification)
        session.flush()
        return {"type": "send_notification", "notification_id": str(notification.id)}

    def _update_field(self, session: Session, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        entity = str(config.get("entity") or "")
        field_name = str(config.get("field") or "")
        model = _ENTITY_MODELS.get(entity)
        if model is None:
            raise ValidationError(f"update_field does not support entity {entity!r}")
        if field_name not in UPDATABLE_FIELDS[entity]:
            raise ValidationError(f"Field {field_name!r} is not updatable on {entity}")

        entity_id = _uuid_or_none(config.get("entity_id") or context.trigger_data.get(f"{entity}_id"))
        if entity_id is None:
            raise ValidationError(f"update_field needs a {entity}_id in the trigger data")
        row = session.scalar(
            select(model).where(and_(model.id == entity_id, model.owner_user_id == context.owner_user_id))
        )
        if row is None:
            raise NotFoundError(entity.capitalize(), entity_id)

        previous = getattr(row, field_name)
        setattr(row, field_name, config.get("value"))
        if entity == "task" and field_name == "status" and config.get("value") == "completed":
            row.completed_at = context.now
        if hasattr(row, "updated_at"):
            row.updated_at = context.now
        session.flush()
        return {
            "type": "update_field",
            "entity": entity,
            "entity_id": str(entity_id),
            "field": field_name,
            "previous": previous if isinstance(previous, (str, int, float, bool)) or previous is None else str(previous),
        }

    def _trigger_webhook(self, session: Session, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        url = config.get("url")
        if not url:
            raise ValidationError("trigger_webhook requires a url")
        remaining = context.remaining_seconds()
        if remaining <= 0:
            raise WorkflowTimeoutError("Workflow deadline reached before webhook call")
        timeout = min(get_settings().workflow_webhook_timeout_seconds, remaining)

        body = {
            "workflow_id": str(context.workflow_id),
            "workflow_name": context.workflow_name,
            "trigger_type": context.trigger_type,
            "trigger_data": context.trigger_data,
        }
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(str(url), json=body)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise WorkflowTimeoutError(f"Webhook timed out after {timeout:.2f}s") from exc
        logger.info(
            "workflow_webhook_delivered",
            extra={"workflow_id": str(context.workflow_id), "status_code": response.status_code},
        )
        return {"type": "trigger_webhook", "status_code": response.status_code}
