from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from engage import audit
from engage.core.timeutils import as_utc, utcnow
from engage.errors import BookingFailedError, ConflictError, NotFoundError, SlotAlreadyTakenError, SlotUnavailableError
from engage.metrics import observe_booking
from engage.otel import set_span_attributes
from engage.scheduling.models import AvailabilitySlot, ScheduledMeeting, SchedulingLink
from engage.scheduling.schemas import (
    AttendeeIn,
    AvailabilityReplaceRequest,
    AvailabilitySlotRead,
    ScheduledMeetingRead,
    SchedulingLinkCreate,
    SchedulingLinkPublic,
    SchedulingLinkRead,
)
from engage.scheduling.slots import TimeSlot, day_bounds, day_of_week, generate_slots, get_timezone

logger = logging.getLogger("engage.scheduling")
tracer = trace.get_tracer("engage.scheduling")


@dataclass(slots=True)
class SchedulingService:
    def list_links(self, session: Session, owner_user_id: uuid.UUID) -> list[SchedulingLinkRead]:
        rows = session.scalars(
            select(SchedulingLink)
            .where(SchedulingLink.owner_user_id == owner_user_id)
            .order_by(SchedulingLink.created_at.desc())
        ).all()
        return [SchedulingLinkRead.model_validate(row) for row in rows]

    def create_link(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: SchedulingLinkCreate,
        actor_user_id: str | None = None,
    ) -> SchedulingLinkRead:
        link = SchedulingLink(
            owner_user_id=owner_user_id,
            slug=dto.slug,
            title=dto.title.strip(),
            description=dto.description,
            duration_minutes=dto.duration_minutes,
            timezone=get_timezone(dto.timezone).key,
            active=dto.active,
        )
        session.add(link)
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Scheduling link slug already in use", details={"slug": dto.slug}) from exc

        read_model = SchedulingLinkRead.model_validate(link)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type="scheduling.link",
            entity_id=str(link.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()
        return read_model

    def get_public_link(self, session: Session, slug: str) -> SchedulingLinkPublic:
        return SchedulingLinkPublic.model_validate(self._load_link_by_slug(session, slug))

    def get_availability(self, session: Session, owner_user_id: uuid.UUID) -> list[AvailabilitySlotRead]:
        rows = session.scalars(
            select(AvailabilitySlot)
            .where(AvailabilitySlot.owner_user_id == owner_user_id)
            .order_by(AvailabilitySlot.day_of_week, AvailabilitySlot.start_time)
        ).all()
        return [AvailabilitySlotRead.model_validate(row) for row in rows]

    def replace_availability(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: AvailabilityReplaceRequest,
    ) -> list[AvailabilitySlotRead]:
        session.execute(delete(AvailabilitySlot).where(AvailabilitySlot.owner_user_id == owner_user_id))
        for window in dto.windows:
            session.add(
                AvailabilitySlot(
                    owner_user_id=owner_user_id,
                    day_of_week=window.day_of_week,
                    start_time=window.start_time,
                    end_time=window.end_time,
                    is_active=window.is_active,
                )
            )
        session.commit()
        return self.get_availability(session, owner_user_id)

    def generate_slots(
        self,
        session: Session,
        scheduling_link_id: uuid.UUID,
        day: date,
        now: datetime | None = None,
    ) -> list[TimeSlot]:
        link = self._load_link(session, scheduling_link_id)
        return self._offered_slots(session, link, day, now or utcnow())

    def generate_slots_for_slug(
        self,
        session: Session,
        slug: str,
        day: date,
        now: datetime | None = None,
    ) -> list[TimeSlot]:
        link = self._load_link_by_slug(session, slug)
        return self._offered_slots(session, link, day, now or utcnow())

    def book_slot(
        self,
        session: Session,
        scheduling_link_id: uuid.UUID,
        slot_start: datetime,
        attendee: AttendeeIn,
        now: datetime | None = None,
    ) -> ScheduledMeetingRead:
        link = self._load_link(session, scheduling_link_id)
        return self._book(session, link, slot_start, attendee, now or utcnow())

    def book_slot_for_slug(
        self,
        session: Session,
        slug: str,
        slot_start: datetime,
        attendee: AttendeeIn,
        now: datetime | None = None,
    ) -> ScheduledMeetingRead:
        link = self._load_link_by_slug(session, slug)
        return self._book(session, link, slot_start, attendee, now or utcnow())

    def _book(
        self,
        session: Session,
        link: SchedulingLink,
        slot_start: datetime,
        attendee: AttendeeIn,
        now: datetime,
    ) -> ScheduledMeetingRead:
        link_id = link.id
        start = as_utc(slot_start)
        local_day = start.astimezone(get_timezone(link.timezone)).date()

        with tracer.start_as_current_span("scheduling.book_slot") as span:
            set_span_attributes(span, {"scheduling.link_id": link_id, "scheduling.slot_start": start.isoformat()})

            booked = set(self._booked_starts(session, link, local_day))
            offered = {slot.start: slot for slot in self._candidate_slots(session, link, local_day, now, booked=())}
            slot = offered.get(start)
            if slot is None:
                observe_booking("unavailable")
                raise SlotUnavailableError(
                    "Selected time is not an available slot",
                    details={"start": start.isoformat()},
                )
            if start in booked:
                observe_booking("conflict")
                logger.warning(
                    "booking_conflict",
                    extra={"scheduling_link_id": str(link_id), "slot_start": start.isoformat()},
                )
                raise SlotAlreadyTakenError(
                    "Selected time is no longer available",
                    details={"start": start.isoformat()},
                )

            meeting = ScheduledMeeting(
                scheduling_link_id=link_id,
                attendee_name=attendee.name.strip(),
                attendee_email=str(attendee.email),
                start_time=slot.start,
                end_time=slot.end,
                notes=attendee.notes,
            )
            session.add(meeting)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "slot_already_taken"))
                observe_booking("conflict")
                logger.warning(
                    "booking_conflict",
                    extra={"scheduling_link_id": str(link_id), "slot_start": start.isoformat()},
                )
                raise SlotAlreadyTakenError(
                    "Selected time is no longer available",
                    details={"start": start.isoformat()},
                ) from exc
            except SQLAlchemyError as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "booking_failed"))
                observe_booking("failed")
                logger.exception(
                    "booking_failed",
                    extra={"scheduling_link_id": str(link_id), "slot_start": start.isoformat(), "error": str(exc)[:500]},
                )
                raise BookingFailedError("Booking could not be saved, please retry") from exc

        observe_booking("booked")
        logger.info(
            "booking_created",
            extra={"scheduling_link_id": str(link_id), "slot_start": start.isoformat()},
        )
        return ScheduledMeetingRead.model_validate(meeting)

    def _offered_slots(self, session: Session, link: SchedulingLink, day: date, now: datetime) -> list[TimeSlot]:
        booked = self._booked_starts(session, link, day)
        return self._candidate_slots(session, link, day, now, booked=booked)

    def _candidate_slots(
        self,
        session: Session,
        link: SchedulingLink,
        day: date,
        now: datetime,
        booked: list[datetime] | set[datetime] | tuple[datetime, ...],
    ) -> list[TimeSlot]:
        windows = session.scalars(
            select(AvailabilitySlot)
            .where(
                and_(
                    AvailabilitySlot.owner_user_id == link.owner_user_id,
                    AvailabilitySlot.day_of_week == day_of_week(day),
                    AvailabilitySlot.is_active.is_(True),
                )
            )
            .order_by(AvailabilitySlot.start_time)
        ).all()
        return generate_slots(windows, booked, link.duration_minutes, day, now, tz=link.timezone)

    def _booked_starts(self, session: Session, link: SchedulingLink, day: date) -> list[datetime]:
        day_start, day_end = day_bounds(day, link.timezone)
        rows = session.scalars(
            select(ScheduledMeeting.start_time).where(
                and_(
                    ScheduledMeeting.scheduling_link_id == link.id,
                    ScheduledMeeting.start_time >= day_start,
                    ScheduledMeeting.start_time < day_end,
                )
            )
        ).all()
        return [as_utc(value) for value in rows]

    def _load_link(self, session: Session, scheduling_link_id: uuid.UUID) -> SchedulingLink:
        link = session.scalar(select(SchedulingLink).where(SchedulingLink.id == scheduling_link_id))
        if link is None or not link.active:
            raise NotFoundError("Scheduling link", scheduling_link_id)
        return link

    def _load_link_by_slug(self, session: Session, slug: str) -> SchedulingLink:
        link = session.scalar(select(SchedulingLink).where(SchedulingLink.slug == slug))
        if link is None or not link.active:
            raise NotFoundError("Scheduling link", slug)
        return link


scheduling_service = SchedulingService()
