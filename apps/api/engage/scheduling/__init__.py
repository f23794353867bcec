from engage.scheduling.api import public_router, router
from engage.scheduling.models import AvailabilitySlot, ScheduledMeeting, SchedulingLink
from engage.scheduling.schemas import (
    AttendeeIn,
    AvailabilityReplaceRequest,
    AvailabilitySlotRead,
    BookingRequest,
    ScheduledMeetingRead,
    SchedulingLinkCreate,
    SchedulingLinkPublic,
    SchedulingLinkRead,
    TimeSlotRead,
)
from engage.scheduling.service import SchedulingService, scheduling_service
from engage.scheduling.slots import TimeSlot, day_of_week, generate_slots

__all__ = [
    "router",
    "public_router",
    "AvailabilitySlot",
    "ScheduledMeeting",
    "SchedulingLink",
    "AttendeeIn",
    "AvailabilityReplaceRequest",
    "AvailabilitySlotRead",
    "BookingRequest",
    "ScheduledMeetingRead",
    "SchedulingLinkCreate",
    "SchedulingLinkPublic",
    "SchedulingLinkRead",
    "TimeSlotRead",
    "SchedulingService",
    "scheduling_service",
    "TimeSlot",
    "day_of_week",
    "generate_slots",
]
