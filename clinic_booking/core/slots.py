import re
from datetime import datetime, time, timedelta
from typing import Tuple

from .exceptions import InvalidSlotFormat

# Only one appointment length is supported
APPOINTMENT_DURATION = timedelta(hours=1)

SLOT_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)-([01]\d|2[0-3]):([0-5]\d)$")
TIME_FORMAT = "%H:%M"


def parse_slot(slot: str) -> Tuple[time, time]:
    """Parse an ``HH:MM-HH:MM`` template into its start and end times."""
    match = SLOT_PATTERN.match(slot or "")
    if not match:
        raise InvalidSlotFormat(slot=slot)

    start_hour, start_minute, end_hour, end_minute = (int(part) for part in match.groups())
    start = time(start_hour, start_minute)
    end = time(end_hour, end_minute)
    if start >= end:
        raise InvalidSlotFormat(slot=slot)
    return start, end


def format_slot(start: datetime, duration: timedelta = APPOINTMENT_DURATION) -> str:
    """Render ``[start, start + duration)`` in the template format."""
    end = start + duration
    return f"{start.strftime(TIME_FORMAT)}-{end.strftime(TIME_FORMAT)}"


def slot_start_on(day, slot: str) -> datetime:
    start, _ = parse_slot(slot)
    return datetime.combine(day, start)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open intervals: back-to-back appointments do not overlap
    return a_start < b_end and b_start < a_end


def normalize_start(value: datetime) -> datetime:
    """Drop sub-minute precision and express aware datetimes as naive local time."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)
