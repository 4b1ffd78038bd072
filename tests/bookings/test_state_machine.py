import os
import sys
from datetime import datetime

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_bookings.db")

import pytest

from bookings_service.errors import Forbidden, InvalidTransition
from bookings_service.models import Booking, BookingStatus, Role
from bookings_service.state_machine import (
    Action,
    Actor,
    CAPABILITIES,
    apply_initial_status,
    apply_transition,
    derived_status,
    initial_status,
    time_until,
)

EMPLOYEE = Actor(user_id="1", email="alice@example.com", role=Role.EMPLOYEE, name="Alice")
OTHER = Actor(user_id="2", email="bob@example.com", role=Role.EMPLOYEE, name="Bob")
MANAGER = Actor(user_id="10", email="maria@example.com", role=Role.MANAGER, name="Maria", employee_id="M-10")
NOW = datetime(2024, 1, 10, 8, 0)


def make_booking(status=BookingStatus.PENDING, start="09:00", end="10:00", date="2024-01-10"):
    return Booking(
        id="b1",
        room_name="A",
        date=date,
        start_time=start,
        end_time=end,
        purpose="Standup",
        attendees=3,
        status=status,
        booked_by_name="Alice",
        booked_by_email="alice@example.com",
        booked_by_role=Role.EMPLOYEE,
        notes="",
    )


def test_role_parse_defaults_unknown_roles_to_employee():
    assert Role.parse("HR") is Role.HR
    assert Role.parse("facility_manager") is Role.EMPLOYEE
    assert Role.parse(None) is Role.EMPLOYEE


def test_capability_table_elevates_manager_hr_admin_only():
    assert CAPABILITIES[Role.EMPLOYEE] == frozenset()
    for role in (Role.MANAGER, Role.HR, Role.ADMIN):
        assert Action.APPROVE in CAPABILITIES[role]
        assert Action.SELF_APPROVE in CAPABILITIES[role]


def test_initial_status_depends_on_role():
    assert initial_status(EMPLOYEE) is BookingStatus.PENDING
    assert initial_status(MANAGER) is BookingStatus.APPROVED


def test_self_approval_on_creation_records_approver():
    booking = apply_initial_status(make_booking(), MANAGER, NOW)
    assert booking.status is BookingStatus.APPROVED
    assert booking.approved_by == "Maria"
    assert booking.approver_id == "M-10"
    assert booking.approved_at == NOW
    assert booking.submitted_at == NOW


def test_employee_creation_stays_pending():
    booking = apply_initial_status(make_booking(), EMPLOYEE, NOW)
    assert booking.status is BookingStatus.PENDING
    assert booking.approved_at is None


def test_approve_sets_decision_fields():
    booking = apply_transition(make_booking(), BookingStatus.APPROVED, MANAGER, NOW, "ok")
    assert booking.status is BookingStatus.APPROVED
    assert booking.approved_by == "Maria"
    assert booking.approved_at == NOW
    assert booking.notes == "ok"


def test_reject_records_reason_and_decision_time():
    booking = apply_transition(make_booking(), BookingStatus.REJECTED, MANAGER, NOW, "Room under repair")
    assert booking.status is BookingStatus.REJECTED
    assert booking.rejection_reason == "Room under repair"
    assert booking.approved_at == NOW


def test_employee_cannot_approve():
    with pytest.raises(Forbidden):
        apply_transition(make_booking(), BookingStatus.APPROVED, EMPLOYEE, NOW)


def test_only_owner_or_elevated_can_cancel():
    with pytest.raises(Forbidden):
        apply_transition(make_booking(), BookingStatus.CANCELLED, OTHER, NOW)

    booking = apply_transition(make_booking(), BookingStatus.CANCELLED, EMPLOYEE, NOW, "No longer needed")
    assert booking.status is BookingStatus.CANCELLED
    assert booking.rejection_reason == "No longer needed"

    approved = make_booking(status=BookingStatus.APPROVED)
    assert apply_transition(approved, BookingStatus.CANCELLED, MANAGER, NOW).status is BookingStatus.CANCELLED


def test_approved_cannot_be_rejected_or_reapproved():
    for target in (BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.PENDING):
        with pytest.raises(InvalidTransition) as exc:
            apply_transition(make_booking(status=BookingStatus.APPROVED), target, MANAGER, NOW)
        assert exc.value.current == "approved"
        assert exc.value.attempted == target.value


@pytest.mark.parametrize("terminal", [BookingStatus.REJECTED, BookingStatus.CANCELLED])
@pytest.mark.parametrize("target", list(BookingStatus))
def test_terminal_statuses_are_closed(terminal, target):
    booking = make_booking(status=terminal)
    with pytest.raises(InvalidTransition):
        apply_transition(booking, target, MANAGER, NOW)
    assert booking.status is terminal


@pytest.mark.parametrize(
    "now, expected",
    [
        (datetime(2024, 1, 9, 23, 0), "upcoming"),
        (datetime(2024, 1, 10, 8, 59), "upcoming"),
        (datetime(2024, 1, 10, 9, 0), "in progress"),
        (datetime(2024, 1, 10, 9, 59), "in progress"),
        (datetime(2024, 1, 10, 10, 0), "completed"),
        (datetime(2024, 1, 11, 9, 30), "completed"),
    ],
)
def test_derived_status_for_approved_booking(now, expected):
    assert derived_status(make_booking(status=BookingStatus.APPROVED), now) == expected


@pytest.mark.parametrize(
    "status", [BookingStatus.PENDING, BookingStatus.REJECTED, BookingStatus.CANCELLED]
)
def test_derived_status_passes_through_other_statuses(status):
    during = datetime(2024, 1, 10, 9, 30)
    assert derived_status(make_booking(status=status), during) == status.value


def test_derived_status_is_not_persisted():
    booking = make_booking(status=BookingStatus.APPROVED)
    derived_status(booking, datetime(2024, 1, 10, 9, 30))
    assert booking.status is BookingStatus.APPROVED


def test_time_until_labels():
    booking = make_booking(status=BookingStatus.APPROVED)
    assert time_until(booking, datetime(2024, 1, 10, 8, 15)) == "45m"
    assert time_until(booking, datetime(2024, 1, 10, 6, 0)) == "3h"
    assert time_until(booking, datetime(2024, 1, 8, 9, 0)) == "2d"
    assert time_until(booking, datetime(2024, 1, 10, 9, 40)) == "20m left"
    assert time_until(booking, datetime(2024, 1, 10, 10, 0)) == ""
