from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta


@dataclass(frozen=True)
class TimeSlot:
    time: str
    available: bool


def iso_day_of_week(day: date) -> int:
    """Monday is 1 and Sunday is 7, matching ``time_slots_config.day_of_week``."""
    return day.isoweekday()


def format_clock(value: time) -> str:
    return value.strftime("%H:%M:%S")


def generate_time_slots(
    start: time,
    end: time,
    duration_minutes: int,
    booked: Iterable[str] = (),
) -> list[TimeSlot]:
    if duration_minutes <= 0:
        raise ValueError("slot duration must be positive")

    booked_times = set(booked)
    anchor = date(2000, 1, 1)
    cursor = datetime.combine(anchor, start)
    limit = datetime.combine(anchor, end)
    step = timedelta(minutes=duration_minutes)

    slots: list[TimeSlot] = []
    while cursor < limit:
        label = format_clock(cursor.time())
        slots.append(TimeSlot(time=label, available=label not in booked_times))
        cursor += step
    return slots
