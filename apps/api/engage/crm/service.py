from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from engage import audit, events
from engage.crm.models import CRMActivity, CRMCompany, CRMContact, CRMDeal, CRMNotification, CRMTask, utcnow
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
from engage.errors import NotFoundError, ValidationError

logger = logging.getLogger("engage.crm")


def _get_owned(session: Session, model: type, entity_id: uuid.UUID, owner_user_id: uuid.UUID, resource: str) -> Any:
    row = session.scalar(select(model).where(and_(model.id == entity_id, model.owner_user_id == owner_user_id)))
    if row is None:
        raise NotFoundError(resource, entity_id)
    return row


class ContactService:
    entity_type = "crm.contact"

    def create_contact(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: ContactCreate,
        actor_user_id: str | None = None,
    ) -> ContactRead:
        if dto.company_id is not None:
            _get_owned(session, CRMCompany, dto.company_id, owner_user_id, "Company")

        contact = CRMContact(
            owner_user_id=owner_user_id,
            company_id=dto.company_id,
            first_name=dto.first_name.strip(),
            last_name=dto.last_name.strip(),
            email=str(dto.email) if dto.email is not None else None,
            phone=dto.phone,
            status=dto.status,
        )
        session.add(contact)
        session.flush()
        read_model = ContactRead.model_validate(contact)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(contact.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()

        events.publish(
            events.build_envelope(
                "crm.contact.created",
                owner_user_id,
                {
                    "contact_id": str(contact.id),
                    "company_id": str(contact.company_id) if contact.company_id else None,
                    "first_name": contact.first_name,
                    "last_name": contact.last_name,
                    "email": contact.email,
                    "status": contact.status,
                },
            )
        )
        return read_model


class DealService:
    entity_type = "crm.deal"

    def create_deal(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: DealCreate,
        actor_user_id: str | None = None,
    ) -> DealRead:
        if dto.contact_id is not None:
            _get_owned(session, CRMContact, dto.contact_id, owner_user_id, "Contact")
        if dto.company_id is not None:
            _get_owned(session, CRMCompany, dto.company_id, owner_user_id, "Company")

        deal = CRMDeal(
            owner_user_id=owner_user_id,
            contact_id=dto.contact_id,
            company_id=dto.company_id,
            title=dto.title.strip(),
            stage=dto.stage,
            value=dto.value,
        )
        session.add(deal)
        session.flush()
        read_model = DealRead.model_validate(deal)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()
        return read_model

    def change_stage(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        deal_id: uuid.UUID,
        dto: DealChangeStageRequest,
        actor_user_id: str | None = None,
    ) -> DealRead:
        deal: CRMDeal = _get_owned(session, CRMDeal, deal_id, owner_user_id, "Deal")
        previous_stage = deal.stage
        if previous_stage == dto.stage:
            return DealRead.model_validate(deal)

        before = DealRead.model_validate(deal).model_dump(mode="json")
        deal.stage = dto.stage
        deal.updated_at = utcnow()
        session.flush()
        read_model = DealRead.model_validate(deal)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action="change_stage",
            before=before,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()

        events.publish(
            events.build_envelope(
                "crm.deal.stage_changed",
                owner_user_id,
                {
                    "deal_id": str(deal.id),
                    "contact_id": str(deal.contact_id) if deal.contact_id else None,
                    "title": deal.title,
                    "stage": deal.stage,
                    "previous_stage": previous_stage,
                },
            )
        )
        return read_model


class ActivityService:
    def create_activity(self, session: Session, owner_user_id: uuid.UUID, dto: ActivityCreate) -> ActivityRead:
        if dto.contact_id is None and dto.deal_id is None:
            raise ValidationError("Activity requires contact_id or deal_id")

        if dto.contact_id is not None:
            _get_owned(session, CRMContact, dto.contact_id, owner_user_id, "Contact")
        if dto.deal_id is not None:
            _get_owned(session, CRMDeal, dto.deal_id, owner_user_id, "Deal")

        activity = CRMActivity(
            owner_user_id=owner_user_id,
            contact_id=dto.contact_id,
            deal_id=dto.deal_id,
            activity_type=dto.activity_type,
            subject=dto.subject,
            body=dto.body,
        )
        session.add(activity)
        session.commit()
        session.refresh(activity)
        return ActivityRead.model_validate(activity)


class TaskService:
    entity_type = "crm.task"

    def list_tasks(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        status_filter: str | None = None,
        limit: int = 100,
    ) -> list[TaskRead]:
        stmt = select(CRMTask).where(CRMTask.owner_user_id == owner_user_id)
        if status_filter:
            stmt = stmt.where(CRMTask.status == status_filter)
        rows = session.scalars(stmt.order_by(CRMTask.created_at.desc()).limit(limit)).all()
        return [TaskRead.model_validate(row) for row in rows]

    def complete_task(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        task_id: uuid.UUID,
        actor_user_id: str | None = None,
    ) -> TaskRead:
        task: CRMTask = _get_owned(session, CRMTask, task_id, owner_user_id, "Task")
        if task.status == "completed":
            return TaskRead.model_validate(task)

        task.status = "completed"
        task.completed_at = utcnow()
        session.flush()
        read_model = TaskRead.model_validate(task)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(task.id),
            action="complete",
            before={"status": "pending"},
            after={"status": "completed"},
        )
        session.commit()

        events.publish(
            events.build_envelope(
                "crm.task.completed",
                owner_user_id,
                {
                    "task_id": str(task.id),
                    "contact_id": str(task.contact_id) if task.contact_id else None,
                    "deal_id": str(task.deal_id) if task.deal_id else None,
                    "title": task.title,
                    "priority": task.priority,
                },
            )
        )
        return read_model


class NotificationService:
    def list_notifications(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationRead]:
        stmt = select(CRMNotification).where(CRMNotification.owner_user_id == owner_user_id)
        if unread_only:
            stmt = stmt.where(CRMNotification.is_read.is_(False))
        rows = session.scalars(stmt.order_by(CRMNotification.created_at.desc()).limit(limit)).all()
        return [NotificationRead.model_validate(row) for row in rows]

    def mark_read(self, session: Session, owner_user_id: uuid.UUID, notification_id: uuid.UUID) -> NotificationRead:
        notification: CRMNotification = _get_owned(
            session, CRMNotification, notification_id, owner_user_id, "Notification"
        )
        notification.is_read = True
        session.commit()
        return NotificationRead.model_validate(notification)

    def delete(self, session: Session, owner_user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        notification = _get_owned(session, CRMNotification, notification_id, owner_user_id, "Notification")
        session.delete(notification)
        session.commit()


contact_service = ContactService()
deal_service = DealService()
activity_service = ActivityService()
task_service = TaskService()
notification_service = NotificationService()
