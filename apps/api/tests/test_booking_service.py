from __future__ import annotations

import threading
import uuid
from collections.abc import Generator
from datetime import date, datetime, time, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage.core.database import Base
from engage.errors import NotFoundError, SlotAlreadyTakenError, SlotUnavailableError
from engage.scheduling.models import ScheduledMeeting, SchedulingLink
from engage.scheduling.schemas import (
    AttendeeIn,
    AvailabilityReplaceRequest,
    AvailabilityWindowIn,
    SchedulingLinkCreate,
)
from engage.scheduling.service import SchedulingService


MONDAY = date(2026, 3, 9)
BEFORE = datetime(2026, 3, 1, tzinfo=timezone.utc)
NINE_THIRTY = datetime(2026, 3, 9, 9, 30, tzinfo=timezone.utc)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def service() -> SchedulingService:
    return SchedulingService()


def _seed_link(session: Session, service: SchedulingService, slug: str = "intro-call") -> uuid.UUID:
    owner_id = uuid.uuid4()
    link = service.create_link(
        session,
        owner_id,
        SchedulingLinkCreate(slug=slug, title="Intro call", duration_minutes=30),
    )
    service.replace_availability(
        session,
        owner_id,
        AvailabilityReplaceRequest(
            windows=[AvailabilityWindowIn(day_of_week=1, start_time=time(9), end_time=time(12))]
        ),
    )
    return link.id


def _attendee(name: str = "Ada Lovelace", email: str = "ada@example.com") -> AttendeeIn:
    return AttendeeIn(name=name, email=email)


def test_booking_removes_slot_and_second_attempt_conflicts(db_session: Session, service: SchedulingService) -> None:
    link_id = _seed_link(db_session, service)
    assert NINE_THIRTY in [slot.start for slot in service.generate_slots(db_session, link_id, MONDAY, now=BEFORE)]

    meeting = service.book_slot(db_session, link_id, NINE_THIRTY, _attendee(), now=BEFORE)
    assert meeting.attendee_email == "ada@example.com"
    assert meeting.scheduling_link_id == link_id

    remaining = [slot.start for slot in service.generate_slots(db_session, link_id, MONDAY, now=BEFORE)]
    assert NINE_THIRTY not in remaining
    assert len(remaining) == 5

    with pytest.raises(SlotAlreadyTakenError):
        service.book_slot(db_session, link_id, NINE_THIRTY, _attendee("Grace", "grace@example.com"), now=BEFORE)
    assert db_session.scalar(select(func.count()).select_from(ScheduledMeeting)) == 1


def test_start_outside_offered_slots_is_rejected(db_session: Session, service: SchedulingService) -> None:
    link_id = _seed_link(db_session, service)

    with pytest.raises(SlotUnavailableError):
        service.book_slot(db_session, link_id, datetime(2026, 3, 9, 9, 15, tzinfo=timezone.utc), _attendee(), now=BEFORE)
    with pytest.raises(SlotUnavailableError):
        service.book_slot(db_session, link_id, datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc), _attendee(), now=BEFORE)
    with pytest.raises(SlotUnavailableError):
        service.book_slot(db_session, link_id, NINE_THIRTY, _attendee(), now=datetime(2026, 3, 9, 10, tzinfo=timezone.utc))


def test_inactive_or_missing_link_is_not_found(db_session: Session, service: SchedulingService) -> None:
    link_id = _seed_link(db_session, service)
    link = db_session.get(SchedulingLink, link_id)
    assert link is not None
    link.active = False
    db_session.commit()

    with pytest.raises(NotFoundError):
        service.book_slot(db_session, link_id, NINE_THIRTY, _attendee(), now=BEFORE)
    with pytest.raises(NotFoundError):
        service.generate_slots(db_session, uuid.uuid4(), MONDAY, now=BEFORE)
    with pytest.raises(NotFoundError):
        service.generate_slots_for_slug(db_session, "intro-call", MONDAY, now=BEFORE)


def test_concurrent_bookings_for_same_slot_produce_one_meeting(tmp_path: Path, service: SchedulingService) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'bookings.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    with SessionLocal() as setup_session:
        link_id = _seed_link(setup_session, service)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def attempt(name: str) -> None:
        with SessionLocal() as session:
            barrier.wait()
            try:
                service.book_slot(session, link_id, NINE_THIRTY, _attendee(name, f"{name}@example.com"), now=BEFORE)
                outcome = "booked"
            except SlotAlreadyTakenError:
                outcome = "taken"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(name,)) for name in ("ada", "grace")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["booked", "taken"]
    with SessionLocal() as check_session:
        assert check_session.scalar(select(func.count()).select_from(ScheduledMeeting)) == 1
    engine.dispose()
