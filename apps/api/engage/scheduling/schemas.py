from __future__ import annotations

from datetime import datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class SchedulingLinkCreate(BaseModel):
    slug: str = Field(min_length=3, max_length=128, pattern=r"^[a-z0-9][a-z0-9-]*$")
    title: str = Field(min_length=1)
    description: str | None = None
    duration_minutes: int = Field(default=30, ge=5, le=480)
    timezone: str = "UTC"
    active: bool = True


class SchedulingLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    slug: str
    title: str
    description: str | None
    duration_minutes: int
    timezone: str
    active: bool
    created_at: datetime


class SchedulingLinkPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slug: str
    title: str
    description: str | None
    duration_minutes: int
    timezone: str


class AvailabilityWindowIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True

    @model_validator(mode="after")
    def validate_window(self) -> "AvailabilityWindowIn":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityReplaceRequest(BaseModel):
    windows: list[AvailabilityWindowIn] = Field(default_factory=list)


class AvailabilitySlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class TimeSlotRead(BaseModel):
    start: datetime
    end: datetime
    label: str


class AttendeeIn(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    notes: str | None = None


class BookingRequest(BaseModel):
    start: datetime
    attendee: AttendeeIn


class ScheduledMeetingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scheduling_link_id: UUID
    attendee_name: str
    attendee_email: str
    start_time: datetime
    end_time: datetime
    notes: str | None
    created_at: datetime
