from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from engage.core.config import Settings
from engage.core.timeutils import as_utc
from engage.crm.models import CRMActivity, CRMContact, CRMDeal
from engage.scheduling.models import ScheduledMeeting, SchedulingLink


@dataclass(frozen=True, slots=True)
class RuleSnapshot:
    """Column values of an automation rule, read once at the start of a scan.

    Scans commit between rules, which expires ORM instances.
    """

    id: uuid.UUID
    owner_user_id: uuid.UUID
    name: str
    trigger_type: str
    trigger_config: dict[str, Any]
    action_config: dict[str, Any]


@dataclass(slots=True)
class Candidate:
    """One entity a rule wants to act on, with the task it should produce."""

    entity_type: str
    entity_id: uuid.UUID
    bucket_id: str
    title: str
    description: str
    notification_message: str
    contact_id: uuid.UUID | None = None
    deal_id: uuid.UUID | None = None
    trigger_data: dict[str, Any] = field(default_factory=dict)


def meeting_bucket(now: datetime, days_delay: int) -> tuple[datetime, datetime]:
    target_day = (as_utc(now) - timedelta(days=days_delay)).date()
    start = datetime.combine(target_day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def deal_stage_since(now: datetime, lookback_minutes: int) -> datetime:
    return as_utc(now) - timedelta(minutes=lookback_minutes)


def inactivity_cutoff(now: datetime, days_inactive: int) -> datetime:
    return as_utc(now) - timedelta(days=days_inactive)


def last_touch(updated_at: datetime, last_activity_at: datetime | None) -> datetime:
    touched = as_utc(updated_at)
    if last_activity_at is not None:
        touched = max(touched, as_utc(last_activity_at))
    return touched


def render_title(template: str, placeholder: str, value: str) -> str:
    return template.replace(placeholder, value)


def _int_config(config: dict[str, Any], key: str, default: int) -> int:
    value = config.get(key)
    if value is None:
        return default
    return int(value)


class TriggerEvaluator(Protocol):
    trigger_type: str

    def evaluate(
        self,
        session: Session,
        rule: RuleSnapshot,
        now: datetime,
        settings: Settings,
    ) -> list[Candidate]: ...


class MeetingScheduledEvaluator:
    trigger_type = "meeting_scheduled"

    def evaluate(
        self,
        session: Session,
        rule: RuleSnapshot,
        now: datetime,
        settings: Settings,
    ) -> list[Candidate]:
        days_delay = _int_config(rule.trigger_config, "days_delay", settings.automation_default_days_delay)
        bucket_start, bucket_end = meeting_bucket(now, days_delay)
        title_template = str(rule.action_config.get("title") or "Follow up with {name}")

        rows = session.execute(
            select(ScheduledMeeting, SchedulingLink.title)
            .join(SchedulingLink, SchedulingLink.id == ScheduledMeeting.scheduling_link_id)
            .where(
                and_(
                    SchedulingLink.owner_user_id == rule.owner_user_id,
                    ScheduledMeeting.start_time >= bucket_start,
                    ScheduledMeeting.start_time < bucket_end,
                )
            )
            .order_by(ScheduledMeeting.start_time)
        ).all()

        candidates: list[Candidate] = []
        for meeting, link_title in rows:
            contact_id = session.scalar(
                select(CRMContact.id)
                .where(
                    and_(
                        CRMContact.owner_user_id == rule.owner_user_id,
                        func.lower(CRMContact.email) == meeting.attendee_email.lower(),
                    )
                )
                .limit(1)
            )
            meeting_day = as_utc(meeting.start_time).date()
            candidates.append(
                Candidate(
                    entity_type="meeting",
                    entity_id=meeting.id,
                    bucket_id=bucket_start.date().isoformat(),
                    title=render_title(title_template, "{name}", meeting.attendee_name),
                    description=_description(rule, f"Follow up from meeting on {meeting_day.isoformat()}"),
                    notification_message=f'Automation rule "{rule.name}" created a follow-up task',
                    contact_id=contact_id,
                    trigger_data={
                        "meeting_id": str(meeting.id),
                        "attendee_name": meeting.attendee_name,
                        "attendee_email": meeting.attendee_email,
                        "meeting_title": link_title,
                        "start_time": as_utc(meeting.start_time).isoformat(),
                    },
                )
            )
        return candidates


class DealStageChangedEvaluator:
    trigger_type = "deal_stage_changed"

    def evaluate(
        self,
        session: Session,
        rule: RuleSnapshot,
        now: datetime,
        settings: Settings,
    ) -> list[Candidate]:
        stage = rule.trigger_config.get("stage")
        if not stage:
            raise ValueError("deal_stage_changed rule requires a stage")
        lookback = _int_config(rule.trigger_config, "lookback_minutes", settings.automation_deal_stage_lookback_minutes)
        since = deal_stage_since(now, lookback)
        title_template = str(rule.action_config.get("title") or "Follow up on {deal}")

        deals = session.scalars(
            select(CRMDeal)
            .where(
                and_(
                    CRMDeal.owner_user_id == rule.owner_user_id,
                    CRMDeal.stage == stage,
                    CRMDeal.updated_at >= since,
                )
            )
            .order_by(CRMDeal.updated_at)
        ).all()

        return [
            Candidate(
                entity_type="deal",
                entity_id=deal.id,
                bucket_id=as_utc(deal.updated_at).isoformat(),
                title=render_title(title_template, "{deal}", deal.title),
                description=_description(rule, f"Deal moved to {stage}"),
                notification_message=f'Automation rule "{rule.name}" created a task for {deal.title}',
                contact_id=deal.contact_id,
                deal_id=deal.id,
                trigger_data={
                    "deal_id": str(deal.id),
                    "title": deal.title,
                    "stage": deal.stage,
                    "updated_at": as_utc(deal.updated_at).isoformat(),
                },
            )
            for deal in deals
        ]


class ContactInactiveEvaluator:
    trigger_type = "contact_inactive"

    def evaluate(
        self,
        session: Session,
        rule: RuleSnapshot,
        now: datetime,
        settings: Settings,
    ) -> list[Candidate]:
        days_inactive = _int_config(rule.trigger_config, "days_inactive", settings.automation_default_days_inactive)
        cutoff = inactivity_cutoff(now, days_inactive)
        title_template = str(rule.action_config.get("title") or "Re-engage {contact}")

        latest_activity = (
            select(
                CRMActivity.contact_id.label("contact_id"),
                func.max(CRMActivity.created_at).label("last_activity_at"),
            )
            .where(CRMActivity.contact_id.is_not(None))
            .group_by(CRMActivity.contact_id)
            .subquery()
        )
        rows = session.execute(
            select(CRMContact, latest_activity.c.last_activity_at)
            .outerjoin(latest_activity, latest_activity.c.contact_id == CRMContact.id)
            .where(
                and_(
                    CRMContact.owner_user_id == rule.owner_user_id,
                    CRMContact.updated_at <= cutoff,
                    or_(
                        latest_activity.c.last_activity_at.is_(None),
                        latest_activity.c.last_activity_at <= cutoff,
                    ),
                )
            )
            .order_by(CRMContact.updated_at)
        ).all()

        candidates: list[Candidate] = []
        for contact, last_activity_at in rows:
            touched = last_touch(contact.updated_at, last_activity_at)
            candidates.append(
                Candidate(
                    entity_type="contact",
                    entity_id=contact.id,
                    bucket_id=touched.isoformat(),
                    title=render_title(title_template, "{contact}", contact.full_name),
                    description=_description(rule, f"Contact has been inactive for {days_inactive} days"),
                    notification_message=f'Automation rule "{rule.name}" created a re-engagement task',
                    contact_id=contact.id,
                    trigger_data={
                        "contact_id": str(contact.id),
                        "contact_name": contact.full_name,
                        "last_touch_at": touched.isoformat(),
                        "days_inactive": days_inactive,
                    },
                )
            )
        return candidates


def _description(rule: RuleSnapshot, default: str) -> str:
    configured = rule.action_config.get("description")
    return str(configured) if configured else default


EVALUATORS: dict[str, TriggerEvaluator] = {
    evaluator.trigger_type: evaluator
    for evaluator in (MeetingScheduledEvaluator(), DealStageChangedEvaluator(), ContactInactiveEvaluator())
}


def get_evaluator(trigger_type: str) -> TriggerEvaluator | None:
    return EVALUATORS.get(trigger_type)