from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from engage.core.timeutils import as_utc


class TimeSlot(NamedTuple):
    """Bookable slot; start and end are UTC, label is owner-local wall time."""

    start: datetime
    end: datetime
    label: str


class AvailabilityWindow(Protocol):
    start_time: time
    end_time: time


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def get_timezone(name: str | None) -> ZoneInfo:
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def format_label(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def day_bounds(day: date, tz: str | None) -> tuple[datetime, datetime]:
    zone = get_timezone(tz)
    start = datetime.combine(day, time.min, tzinfo=zone).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone).astimezone(timezone.utc)
    return start, end


def generate_slots(
    windows: Iterable[AvailabilityWindow],
    booked_starts: Iterable[datetime],
    duration_minutes: int,
    day: date,
    now: datetime,
    tz: str | None = "UTC",
    dedupe: bool = True,
) -> list[TimeSlot]:
    """Slots for ``day`` stepping through each window by ``duration_minutes``.

    A slot is offered when it starts after ``now``, is not already booked and
    ends no later than its window. Overlapping windows produce the same start
    more than once; ``dedupe`` keeps the first and sorts by start.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    zone = get_timezone(tz)
    now_utc = as_utc(now)
    booked = {as_utc(value) for value in booked_starts}
    step = timedelta(minutes=duration_minutes)

    slots: list[TimeSlot] = []
    for window in windows:
        # Step in UTC; local wall-clock arithmetic skips or repeats an hour on DST days.
        start = datetime.combine(day, window.start_time, tzinfo=zone).astimezone(timezone.utc)
        window_end = datetime.combine(day, window.end_time, tzinfo=zone).astimezone(timezone.utc)
        while start + step <= window_end:
            if start > now_utc and start not in booked:
                slots.append(TimeSlot(start=start, end=start + step, label=format_label(start.astimezone(zone))))
            start += step

    if not dedupe:
        return slots

    unique: dict[datetime, TimeSlot] = {}
    for slot in slots:
        unique.setdefault(slot.start, slot)
    return sorted(unique.values(), key=lambda slot: slot.start)
