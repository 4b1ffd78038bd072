from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import Forbidden, InvalidTransition
from .models import Booking, BookingStatus, Role


class Action(str, PyEnum):
    """Capabilities a role may hold over bookings it does not own."""
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL_ANY = "cancel_any"
    UPDATE_ANY = "update_any"
    SET_STATUS = "set_status"
    SELF_APPROVE = "self_approve"


_ELEVATED: FrozenSet[Action] = frozenset(Action)

CAPABILITIES: Dict[Role, FrozenSet[Action]] = {
    Role.EMPLOYEE: frozenset(),
    Role.MANAGER: _ELEVATED,
    Role.HR: _ELEVATED,
    Role.ADMIN: _ELEVATED,
}

# status -> statuses reachable from it once the booking exists
TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.APPROVED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# action required for an actor to drive a booking into a status
_REQUIRED_ACTION = {
    BookingStatus.APPROVED: Action.APPROVE,
    BookingStatus.REJECTED: Action.REJECT,
}

UPCOMING = "upcoming"
IN_PROGRESS = "in progress"
COMPLETED = "completed"


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller of a booking operation.

    Built from the identity collaborator's claims; the core only uses it
    to authorize, never to authenticate.
    """
    user_id: str
    email: str
    role: Role
    name: Optional[str] = None
    employee_id: Optional[str] = None
    department: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def can(self, action: Action) -> bool:
        return action in CAPABILITIES[self.role]

    def owns(self, booking: Booking) -> bool:
        return bool(self.email) and booking.booked_by_email == self.email.lower()


def initial_status(actor: Actor) -> BookingStatus:
    if actor.can(Action.SELF_APPROVE):
        return BookingStatus.APPROVED
    return BookingStatus.PENDING


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(current, target)


def authorize_transition(booking: Booking, target: BookingStatus, actor: Actor) -> None:
    """
    Check that ``actor`` may move ``booking`` into ``target``.

    Raises
    ------
    Forbidden
        If the actor lacks the capability or ownership the move needs.
    """
    if target == BookingStatus.CANCELLED:
        if not (actor.owns(booking) or actor.can(Action.CANCEL_ANY)):
            raise Forbidden("Unauthorized to cancel this booking")
        return

    action = _REQUIRED_ACTION.get(target)
    if action is None or not actor.can(action):
        raise Forbidden(f"Unauthorized to mark booking as {target.value}")


def apply_transition(
    booking: Booking,
    target: BookingStatus,
    actor: Actor,
    now: datetime,
    note: Optional[str] = None,
) -> Booking:
    """
    Move an existing booking into ``target`` and apply its side effects.

    Conflict checks are the caller's job; this only enforces the
    transition table, the role guard and the field updates attached to
    each edge. ``note`` is the approval note, the rejection reason or
    the cancellation reason depending on the target.
    """
    ensure_transition(booking.status, target)
    authorize_transition(booking, target, actor)

    if target == BookingStatus.APPROVED:
        booking.approved_by = actor.display_name
        booking.approver_id = actor.employee_id or actor.user_id
        booking.approved_at = now
        booking.notes = note or f"Approved by {actor.role.value}"
    elif target == BookingStatus.REJECTED:
        booking.approved_by = actor.display_name
        booking.approver_id = actor.employee_id or actor.user_id
        booking.approved_at = now
        booking.rejection_reason = note or "Rejected by approver"
        booking.notes = note or ""
    elif target == BookingStatus.CANCELLED:
        if note:
            booking.rejection_reason = note

    booking.status = target
    booking.updated_at = now
    return booking


def apply_initial_status(booking: Booking, actor: Actor, now: datetime) -> Booking:
    booking.status = initial_status(actor)
    booking.submitted_at = now
    if booking.status == BookingStatus.APPROVED:
        booking.approved_by = actor.display_name
        booking.approver_id = actor.employee_id or actor.user_id
        booking.approved_at = now
        booking.notes = f"Auto-approved for {actor.role.value}"
    return booking


# ---------- Derived display state ----------


def _bounds(booking) -> Tuple[datetime, datetime]:
    start = datetime.strptime(f"{booking.date} {booking.start_time}", "%Y-%m-%d %H:%M")
    end = datetime.strptime(f"{booking.date} {booking.end_time}", "%Y-%m-%d %H:%M")
    return start, end


def derived_status(booking, now: datetime) -> str:
    """
    Read-time label layered over the persisted status.

    Approved bookings read as ``upcoming``, ``in progress`` or
    ``completed`` depending on where ``now`` falls relative to the
    half-open ``[start, end)`` interval; every other status reads as
    itself. Never persisted.
    """
    if booking.status != BookingStatus.APPROVED:
        return booking.status.value

    start, end = _bounds(booking)
    if now < start:
        return UPCOMING
    if now < end:
        return IN_PROGRESS
    return COMPLETED


def time_until(booking, now: datetime) -> str:
    """Short countdown shown in dashboards: ``45m``, ``3h``, ``2d`` or ``20m left``."""
    start, end = _bounds(booking)
    if now >= end:
        return ""
    if now >= start:
        remaining = int((end - now).total_seconds() // 60)
        return f"{remaining}m left"

    minutes = int((start - now).total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"
