from typing import List, Optional

from . import models
from .errors import ValidationError
from .time_range import overlaps, to_minutes


def ensure_time_valid(start_time: str, end_time: str) -> None:
    """
    Validate that a booking time range is well-formed.

    Parameters
    ----------
    start_time : str
        Start of the requested booking (``HH:MM``).
    end_time : str
        End of the requested booking (``HH:MM``).

    Raises
    ------
    ValidationError
        If either bound is malformed or end_time is not strictly after
        start_time.
    """
    start = to_minutes(start_time, field="start_time")
    end = to_minutes(end_time, field="end_time")
    if end <= start:
        raise ValidationError("End time must be after start time", field="end_time")


def find_conflicts(
    repository,
    room_name: str,
    date: str,
    start_time: str,
    end_time: str,
    exclude_id: Optional[str] = None,
) -> List[models.Booking]:
    """
    Return every active booking that overlaps the requested slot.

    Candidates are the pending and approved bookings for the same room
    and calendar day (exact string match on ``date``), minus
    ``exclude_id``. The result is ordered by start time.

    Parameters
    ----------
    repository : BookingRepository
        Persistence collaborator used for the read.
    room_name : str
        Room to check.
    date : str
        Calendar day, ``YYYY-MM-DD``.
    start_time, end_time : str
        Requested half-open interval.
    exclude_id : Optional[str]
        Booking to ignore (the booking being edited or approved).
    """
    ensure_time_valid(start_time, end_time)
    start = to_minutes(start_time)
    end = to_minutes(end_time)

    candidates = [
        booking
        for booking in repository.find_by_room_and_date(
            room_name, date, models.ACTIVE_STATUSES
        )
        if exclude_id is None or booking.id != exclude_id
    ]
    candidates.sort(key=lambda booking: (to_minutes(booking.start_time), booking.id))

    return [
        booking
        for booking in candidates
        if overlaps(start, end, to_minutes(booking.start_time), to_minutes(booking.end_time))
    ]


def find_conflict(
    repository,
    room_name: str,
    date: str,
    start_time: str,
    end_time: str,
    exclude_id: Optional[str] = None,
) -> Optional[models.Booking]:
    """Return the first overlapping active booking, or None if the slot is free."""
    conflicts = find_conflicts(repository, room_name, date, start_time, end_time, exclude_id)
    return conflicts[0] if conflicts else None
