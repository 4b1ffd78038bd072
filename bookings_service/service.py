import logging
import math
import re
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm.exc import StaleDataError

from . import config, models, schemas
from .conflicts import ensure_time_valid, find_conflict
from .errors import Forbidden, InvalidTransition, NotFound, SchedulingConflict, ValidationError
from .events import EventKind, EventPublisher
from .locking import room_day_locks
from .repository import BookingRepository
from .state_machine import (
    Action,
    Actor,
    apply_initial_status,
    apply_transition,
    authorize_transition,
    derived_status,
    ensure_transition,
    time_until,
)
from .time_range import add_minutes, from_minutes, to_minutes

logger = logging.getLogger("bookings.service")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_EVENT_FOR_STATUS = {
    models.BookingStatus.APPROVED: EventKind.APPROVED,
    models.BookingStatus.REJECTED: EventKind.REJECTED,
    models.BookingStatus.CANCELLED: EventKind.CANCELLED,
}


# ---------- Field validation ----------


def _require(value, field: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    return value.strip() if isinstance(value, str) else value


def normalize_time(value: str, field: str) -> str:
    """Return ``value`` as a zero-padded ``HH:MM`` string."""
    return from_minutes(to_minutes(value, field=field), field=field)


def validate_date(value: str, field: str = "date") -> str:
    if not DATE_PATTERN.match(value):
        raise ValidationError("Date must be in YYYY-MM-DD format", field=field)
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"{value} is not a valid calendar date", field=field)
    return value


def round_minutes(duration: float) -> int:
    """Round a duration to whole minutes, halves going up."""
    return int(math.floor(duration + 0.5))


def validate_duration(start_time: str, end_time: str) -> None:
    ensure_time_valid(start_time, end_time)
    minutes = to_minutes(end_time) - to_minutes(start_time)
    if minutes < config.MIN_DURATION_MINUTES:
        raise ValidationError(
            f"Minimum booking duration is {config.MIN_DURATION_MINUTES} minutes", field="end_time"
        )
    if minutes > config.MAX_DURATION_MINUTES:
        raise ValidationError(
            f"Maximum booking duration is {config.MAX_DURATION_MINUTES // 60} hours", field="end_time"
        )


def validate_attendees(value: int) -> int:
    if not config.MIN_ATTENDEES <= value <= config.MAX_ATTENDEES:
        raise ValidationError(
            f"Attendees must be between {config.MIN_ATTENDEES} and {config.MAX_ATTENDEES}",
            field="attendees",
        )
    return value


def _validate_length(value: Optional[str], limit: int, field: str) -> Optional[str]:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{field} must be at most {limit} characters", field=field)
    return value


class BookingService:
    """
    Orchestrates the booking workflow over a persistence collaborator.

    Every mutating operation reads the current persisted booking, runs
    all checks, and issues exactly one write; nothing is saved when a
    check fails. Operations that can create or extend an active
    reservation run inside the per-room-day critical section so the
    conflict check and the commit cannot interleave with another
    request for the same room and day. Events go out after the commit.

    Parameters
    ----------
    repository : BookingRepository
        Persistence collaborator.
    publisher : Optional[EventPublisher]
        Receives a :class:`BookingEvent` after each accepted write.
    clock : Optional[Callable[[], datetime]]
        Source of "now" as a naive local wall-clock time, the same frame
        the booking dates and times are expressed in.
    """

    def __init__(
        self,
        repository: BookingRepository,
        publisher: Optional[EventPublisher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.publisher = publisher or EventPublisher()
        self.clock = clock or datetime.now

    # ---------- internals ----------

    def _today(self) -> str:
        return self.clock().strftime("%Y-%m-%d")

    def _ensure_not_past(self, date: str) -> None:
        # both sides are YYYY-MM-DD, so string order is calendar order
        if date < self._today():
            raise ValidationError("Cannot book rooms for past dates", field="date")

    @contextmanager
    def _critical_section(self, *keys: Tuple[str, str]):
        with room_day_locks(self.repository, *keys):
            with self._write_scope():
                yield

    @contextmanager
    def _write_scope(self):
        try:
            yield
        except Exception:
            self.repository.discard()
            raise

    def _commit(self, booking: models.Booking, attempted: models.BookingStatus) -> models.Booking:
        try:
            return self.repository.save(booking)
        except StaleDataError:
            # another request committed this booking first
            current = self.get(booking.id)
            raise InvalidTransition(current.status, attempted)

    def _emit(self, kind: EventKind, booking: models.Booking, actor: Actor) -> None:
        self.publisher.emit(kind, booking, actor)

    # ---------- reads ----------

    def get(self, booking_id: str) -> models.Booking:
        booking = self.repository.find_by_id(booking_id)
        if booking is None:
            raise NotFound(booking_id)
        return booking

    def list_for_requester(self, actor: Actor) -> List[models.Booking]:
        return self.repository.list_for_requester(actor.email)

    def list_all(self, room_name=None, status=None, email=None) -> List[models.Booking]:
        return self.repository.list_all(room_name=room_name, status=status, email=email)

    def list_for_manager(self, manager_id: str) -> List[models.Booking]:
        return self.repository.list_for_manager(manager_id)

    def list_by_date_range(self, start_date, end_date, room_name=None) -> List[models.Booking]:
        if not start_date or not end_date:
            raise ValidationError("Start date and end date are required", field="start_date")
        validate_date(start_date, "start_date")
        validate_date(end_date, "end_date")
        return self.repository.list_by_date_range(start_date, end_date, room_name)

    def room_availability(self, date: str, room_name: Optional[str] = None) -> List[models.Booking]:
        validate_date(_require(date, "date"))
        return self.repository.list_active_for_date(date, room_name)

    def to_read(self, booking: models.Booking) -> schemas.BookingRead:
        """Render a booking with its derived, wall-clock dependent fields."""
        now = self.clock()
        manager = None
        if booking.manager_id or booking.manager_email:
            manager = schemas.ManagerRead(
                id=booking.manager_id,
                name=booking.manager_name,
                email=booking.manager_email,
                employee_id=booking.manager_employee_id,
            )
        return schemas.BookingRead(
            id=booking.id,
            room_name=booking.room_name,
            date=booking.date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            duration_minutes=to_minutes(booking.end_time) - to_minutes(booking.start_time),
            purpose=booking.purpose,
            description=booking.description,
            attendees=booking.attendees,
            equipment=list(booking.equipment or []),
            status=booking.status,
            derived_status=derived_status(booking, now),
            time_until=time_until(booking, now),
            is_today=booking.date == now.strftime("%Y-%m-%d"),
            booked_by=schemas.RequesterRead(
                name=booking.booked_by_name,
                email=booking.booked_by_email,
                employee_id=booking.booked_by_employee_id,
                role=booking.booked_by_role,
                department=booking.booked_by_department,
            ),
            manager=manager,
            priority=booking.priority,
            urgency=booking.urgency,
            approved_by=booking.approved_by,
            approver_id=booking.approver_id,
            approved_at=booking.approved_at,
            notes=booking.notes or "",
            rejection_reason=booking.rejection_reason,
            created_at=booking.created_at,
            submitted_at=booking.submitted_at,
            updated_at=booking.updated_at,
        )

    # ---------- create ----------

    def create(self, request: schemas.BookingCreate, actor: Actor) -> models.Booking:
        """
        Validate and store a new booking request.

        The requester snapshot is taken from the actor, completed by
        ``user_info`` where the token carries no name or department.
        Elevated requesters get their booking approved immediately.

        Raises
        ------
        ValidationError
            Missing/malformed fields, past date, bad duration.
        SchedulingConflict
            The slot overlaps an active booking in the same room.
        """
        room_name = _require(request.room_name, "room_name")
        date = validate_date(_require(request.date, "date"))
        start_time = normalize_time(_require(request.start_time, "start_time"), "start_time")
        if request.end_time:
            end_time = normalize_time(request.end_time, "end_time")
        elif request.duration is not None:
            end_time = add_minutes(start_time, round_minutes(request.duration))
        else:
            raise ValidationError("end_time or duration is required", field="end_time")
        attendees = validate_attendees(_require(request.attendees, "attendees"))
        purpose = _validate_length(_require(request.purpose, "purpose"), config.PURPOSE_MAX_LENGTH, "purpose")
        description = _validate_length(
            request.description or purpose, config.DESCRIPTION_MAX_LENGTH, "description"
        )
        validate_duration(start_time, end_time)
        self._ensure_not_past(date)

        user_info = request.user_info or schemas.PersonInfo()
        manager_info = request.manager_info or schemas.PersonInfo()
        now = self.clock()

        with self._critical_section((room_name, date)):
            conflict = find_conflict(self.repository, room_name, date, start_time, end_time)
            if conflict is not None:
                logger.info(
                    "create rejected: %s %s %s-%s overlaps booking %s",
                    room_name, date, start_time, end_time, conflict.id,
                )
                raise SchedulingConflict(conflict)

            booking = models.Booking(
                id=str(uuid.uuid4()),
                room_name=room_name,
                date=date,
                start_time=start_time,
                end_time=end_time,
                purpose=purpose,
                description=description,
                attendees=attendees,
                equipment=[item.strip() for item in request.equipment if item.strip()],
                booked_by_user_id=actor.user_id,
                booked_by_name=actor.name or user_info.name or actor.email,
                booked_by_email=actor.email.lower(),
                booked_by_employee_id=actor.employee_id or user_info.employee_id or actor.user_id,
                booked_by_role=actor.role,
                booked_by_department=actor.department or user_info.department,
                manager_id=request.manager_id,
                manager_name=manager_info.name,
                manager_email=manager_info.email.lower() if manager_info.email else None,
                manager_employee_id=manager_info.employee_id,
                priority=request.priority,
                urgency=request.urgency,
                notes="",
                created_at=now,
                updated_at=now,
            )
            apply_initial_status(booking, actor, now)
            booking = self._commit(booking, booking.status)

        logger.info("booking %s created as %s for %s", booking.id, booking.status.value, actor.email)
        self._emit(EventKind.CREATED, booking, actor)
        return booking

    # ---------- decisions ----------

    def approve(self, booking_id: str, actor: Actor, notes: Optional[str] = None) -> models.Booking:
        """
        Approve a pending booking after re-checking the slot.

        The booking is re-read inside the room-day critical section, so
        of two concurrent approvals the second sees the first's result
        and fails with InvalidTransition.
        """
        target = models.BookingStatus.APPROVED
        booking = self.get(booking_id)

        with self._critical_section((booking.room_name, booking.date)):
            booking = self.get(booking_id)
            ensure_transition(booking.status, target)
            authorize_transition(booking, target, actor)

            conflict = find_conflict(
                self.repository,
                booking.room_name,
                booking.date,
                booking.start_time,
                booking.end_time,
                exclude_id=booking.id,
            )
            if conflict is not None:
                raise SchedulingConflict(
                    conflict,
                    message="Cannot approve - time slot conflicts with another booking",
                )

            apply_transition(booking, target, actor, self.clock(), notes)
            booking = self._commit(booking, target)

        logger.info("booking %s approved by %s", booking.id, actor.email)
        self._emit(EventKind.APPROVED, booking, actor)
        return booking

    def reject(self, booking_id: str, actor: Actor, notes: Optional[str] = None) -> models.Booking:
        target = models.BookingStatus.REJECTED
        with self._write_scope():
            booking = self.get(booking_id)
            apply_transition(booking, target, actor, self.clock(), notes)
            booking = self._commit(booking, target)

        logger.info("booking %s rejected by %s", booking.id, actor.email)
        self._emit(EventKind.REJECTED, booking, actor)
        return booking

    def cancel(self, booking_id: str, actor: Actor, reason: Optional[str] = None) -> models.Booking:
        """
        Cancel a pending or approved booking.

        Allowed for the original requester and for elevated roles. A
        booking that is already rejected or cancelled answers
        InvalidTransition whoever asks.
        """
        target = models.BookingStatus.CANCELLED
        with self._write_scope():
            booking = self.get(booking_id)
            ensure_transition(booking.status, target)
            if not (actor.owns(booking) or actor.can(Action.CANCEL_ANY)):
                raise Forbidden("Unauthorized to cancel this booking")
            _validate_length(reason, config.REASON_MAX_LENGTH, "reason")
            apply_transition(booking, target, actor, self.clock(), reason)
            booking = self._commit(booking, target)

        logger.info("booking %s cancelled by %s", booking.id, actor.email)
        self._emit(EventKind.CANCELLED, booking, actor)
        return booking

    # ---------- edits ----------

    def update(self, booking_id: str, actor: Actor, changes: schemas.BookingUpdate) -> models.Booking:
        """
        Edit a booking's fields, and for elevated roles its status.

        Requesters may edit their own pending bookings; elevated roles may
        edit any non-terminal booking. Moving the booking in time or space
        re-runs the conflict check against every other active booking.
        When only ``start_time`` moves, the original duration is kept.

        The room days locked are those of the booking as read before
        locking. If a concurrent update moved the booking in between, the
        locks are dropped and taken again for its new slot.
        """
        new_room = _require(changes.room_name, "room_name") if changes.room_name is not None else None
        new_date = validate_date(changes.date) if changes.date is not None else None

        while True:
            current = self.get(booking_id)
            locked = (current.room_name, current.date)
            keys = {locked, (new_room or current.room_name, new_date or current.date)}

            with self._critical_section(*keys):
                booking = self.get(booking_id)
                if (booking.room_name, booking.date) == locked:
                    target = self._apply_update(booking, actor, changes, new_room, new_date)
                    booking = self._commit(booking, booking.status)
                    break
                self.repository.discard()

            logger.info("booking %s moved while waiting for its room-day lock, retrying", booking_id)

        kind = _EVENT_FOR_STATUS.get(target, EventKind.UPDATED)
        logger.info("booking %s updated by %s (%s)", booking.id, actor.email, kind.value)
        self._emit(kind, booking, actor)
        return booking

    def _apply_update(
        self,
        booking: models.Booking,
        actor: Actor,
        changes: schemas.BookingUpdate,
        new_room: Optional[str],
        new_date: Optional[str],
    ) -> Optional[models.BookingStatus]:
        target = changes.status if changes.status not in (None, booking.status) else None
        if booking.status in models.TERMINAL_STATUSES:
            raise InvalidTransition(booking.status, target or booking.status)
        if not (actor.owns(booking) or actor.can(Action.UPDATE_ANY)):
            raise Forbidden("Unauthorized to update this booking")
        if target is not None and not actor.can(Action.SET_STATUS):
            raise Forbidden("Only managers, HR or admins can change booking status")
        if booking.status != models.BookingStatus.PENDING and not actor.can(Action.UPDATE_ANY):
            raise Forbidden("Only pending bookings can be edited")
        if target is not None:
            ensure_transition(booking.status, target)

        room_name = new_room or booking.room_name
        date = new_date or booking.date
        start_time = (
            normalize_time(changes.start_time, "start_time")
            if changes.start_time is not None
            else booking.start_time
        )
        if changes.end_time is not None:
            end_time = normalize_time(changes.end_time, "end_time")
        elif changes.duration is not None:
            end_time = add_minutes(start_time, round_minutes(changes.duration))
        elif start_time != booking.start_time:
            end_time = add_minutes(
                start_time, to_minutes(booking.end_time) - to_minutes(booking.start_time)
            )
        else:
            end_time = booking.end_time

        schedule_changed = (room_name, date, start_time, end_time) != (
            booking.room_name,
            booking.date,
            booking.start_time,
            booking.end_time,
        )
        if schedule_changed:
            validate_duration(start_time, end_time)
            if date != booking.date:
                self._ensure_not_past(date)

        resulting_status = target or booking.status
        if resulting_status in models.ACTIVE_STATUSES and (
            schedule_changed or target == models.BookingStatus.APPROVED
        ):
            conflict = find_conflict(
                self.repository, room_name, date, start_time, end_time, exclude_id=booking.id
            )
            if conflict is not None:
                raise SchedulingConflict(
                    conflict,
                    message=(
                        f'This time slot is already booked! The room "{room_name}" is reserved '
                        f"from {conflict.start_time} to {conflict.end_time} on {conflict.date} "
                        f"by {conflict.booked_by_name}."
                    ),
                )

        if changes.attendees is not None:
            booking.attendees = validate_attendees(changes.attendees)
        if changes.purpose is not None:
            booking.purpose = _validate_length(
                _require(changes.purpose, "purpose"), config.PURPOSE_MAX_LENGTH, "purpose"
            )
        if changes.description is not None:
            booking.description = _validate_length(
                changes.description, config.DESCRIPTION_MAX_LENGTH, "description"
            )
        if changes.equipment is not None:
            booking.equipment = [item.strip() for item in changes.equipment if item.strip()]
        if changes.priority is not None:
            booking.priority = changes.priority
        if changes.urgency is not None:
            booking.urgency = changes.urgency

        booking.room_name = room_name
        booking.date = date
        booking.start_time = start_time
        booking.end_time = end_time

        now = self.clock()
        if target is not None:
            apply_transition(booking, target, actor, now, changes.reason)
        booking.updated_at = now
        return target
