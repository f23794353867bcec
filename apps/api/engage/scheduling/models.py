from __future__ import annotations

import uuid
from datetime import datetime, time, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from engage.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulingLink(Base):
    __tablename__ = "scheduling_link"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default="30")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC", server_default="UTC")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    meetings: Mapped[list[ScheduledMeeting]] = relationship("ScheduledMeeting", back_populates="scheduling_link")

    __table_args__ = (
        UniqueConstraint("slug", name="uq_scheduling_link_slug"),
        CheckConstraint("duration_minutes > 0", name="ck_scheduling_link_duration_positive"),
    )


class AvailabilitySlot(Base):
    __tablename__ = "availability_slot"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_slot_day_of_week"),
    )


class ScheduledMeeting(Base):
    __tablename__ = "scheduled_meeting"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    scheduling_link_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("scheduling_link.id", ondelete="CASCADE"),
        nullable=False,
    )
    attendee_name: Mapped[str] = mapped_column(Text, nullable=False)
    attendee_email: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    scheduling_link: Mapped[SchedulingLink] = relationship("SchedulingLink", back_populates="meetings")

    __table_args__ = (
        UniqueConstraint("scheduling_link_id", "start_time", name="uq_scheduled_meeting_link_start"),
    )


Index("ix_scheduling_link_owner", SchedulingLink.owner_user_id)
Index("ix_availability_slot_owner_day", AvailabilitySlot.owner_user_id, AvailabilitySlot.day_of_week)
Index("ix_scheduled_meeting_start_time", ScheduledMeeting.start_time)
