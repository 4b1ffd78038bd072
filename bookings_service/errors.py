from typing import Any, Dict, Optional

from fastapi import status


class BookingError(Exception):
    """
    Base class for every failure raised by the booking core.

    Subclasses carry the HTTP status the API layer maps them to and a
    short machine-readable ``kind`` used in error payloads.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    kind = "booking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message}


class ValidationError(BookingError):
    """Missing or malformed input field."""

    kind = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        return payload


class InvalidTimeFormat(ValidationError):
    kind = "invalid_time_format"


class SchedulingConflict(BookingError):
    """
    The requested slot overlaps an active booking.

    Attributes
    ----------
    conflicting : models.Booking
        The first overlapping booking, in start-time order.
    """

    status_code = status.HTTP_409_CONFLICT
    kind = "scheduling_conflict"

    def __init__(self, conflicting, message: Optional[str] = None):
        if message is None:
            message = (
                f"Time slot conflicts with existing booking by "
                f"{conflicting.booked_by_name} "
                f"({conflicting.start_time}-{conflicting.end_time} on {conflicting.date})"
            )
        super().__init__(message)
        self.conflicting = conflicting

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["conflicting_booking"] = {
            "id": self.conflicting.id,
            "room_name": self.conflicting.room_name,
            "date": self.conflicting.date,
            "start_time": self.conflicting.start_time,
            "end_time": self.conflicting.end_time,
            "booked_by": self.conflicting.booked_by_name,
            "status": self.conflicting.status.value,
        }
        return payload


class InvalidTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT
    kind = "invalid_transition"

    def __init__(self, current, attempted):
        current_value = getattr(current, "value", current)
        attempted_value = getattr(attempted, "value", attempted)
        super().__init__(
            f"Cannot move booking from '{current_value}' to '{attempted_value}'"
        )
        self.current = current_value
        self.attempted = attempted_value

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["current_status"] = self.current
        payload["attempted_status"] = self.attempted
        return payload


class Forbidden(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "forbidden"


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"

    def __init__(self, booking_id: str):
        super().__init__("Booking not found")
        self.booking_id = booking_id
