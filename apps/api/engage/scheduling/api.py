from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from engage.api.deps import ActorUser, get_current_user, require_user
from engage.core.database import get_db
from engage.scheduling.schemas import (
    AvailabilityReplaceRequest,
    AvailabilitySlotRead,
    BookingRequest,
    ScheduledMeetingRead,
    SchedulingLinkCreate,
    SchedulingLinkPublic,
    SchedulingLinkRead,
    TimeSlotRead,
)
from engage.scheduling.service import scheduling_service

router = APIRouter(prefix="/api/scheduling", tags=["scheduling"])
public_router = APIRouter(prefix="/api/scheduling/public", tags=["scheduling.public"])


@router.get("/links", response_model=list[SchedulingLinkRead])
def list_links(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SchedulingLinkRead]:
    require_user(user)
    return scheduling_service.list_links(db, user.owner_id)


@router.post("/links", response_model=SchedulingLinkRead, status_code=status.HTTP_201_CREATED)
def create_link(
    dto: SchedulingLinkCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SchedulingLinkRead:
    require_user(user)
    return scheduling_service.create_link(db, user.owner_id, dto, actor_user_id=user.user_id)


@router.get("/availability", response_model=list[AvailabilitySlotRead])
def get_availability(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AvailabilitySlotRead]:
    require_user(user)
    return scheduling_service.get_availability(db, user.owner_id)


@router.put("/availability", response_model=list[AvailabilitySlotRead])
def replace_availability(
    dto: AvailabilityReplaceRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AvailabilitySlotRead]:
    require_user(user)
    return scheduling_service.replace_availability(db, user.owner_id, dto)


@public_router.get("/{slug}", response_model=SchedulingLinkPublic)
def get_public_link(slug: str, db: Session = Depends(get_db)) -> SchedulingLinkPublic:
    return scheduling_service.get_public_link(db, slug)


@public_router.get("/{slug}/slots", response_model=list[TimeSlotRead])
def list_public_slots(
    slug: str,
    day: date = Query(alias="date"),
    db: Session = Depends(get_db),
) -> list[TimeSlotRead]:
    slots = scheduling_service.generate_slots_for_slug(db, slug, day)
    return [TimeSlotRead(start=slot.start, end=slot.end, label=slot.label) for slot in slots]


@public_router.post("/{slug}/book", response_model=ScheduledMeetingRead, status_code=status.HTTP_201_CREATED)
def book_public_slot(
    slug: str,
    dto: BookingRequest,
    db: Session = Depends(get_db),
) -> ScheduledMeetingRead:
    return scheduling_service.book_slot_for_slug(db, slug, dto.start, dto.attendee)
