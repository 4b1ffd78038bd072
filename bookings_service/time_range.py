import re

from .errors import InvalidTimeFormat, ValidationError

TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")
MINUTES_PER_DAY = 24 * 60


def to_minutes(value: str, field: str = "time") -> int:
    """
    Convert an ``HH:MM`` wall-clock string to minutes since midnight.

    Raises
    ------
    InvalidTimeFormat
        If the value is not a 24-hour ``HH:MM`` time.
    """
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise InvalidTimeFormat(f"{field} must be in HH:MM format", field=field)
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def from_minutes(total: int, field: str = "end_time") -> str:
    if total < 0 or total >= MINUTES_PER_DAY:
        raise ValidationError("Booking must end on the same day", field=field)
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(value: str, minutes: int) -> str:
    return from_minutes(to_minutes(value, field="start_time") + minutes)


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    # half-open intervals: touching ends do not overlap
    return start_a < end_b and start_b < end_a
