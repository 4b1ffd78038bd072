from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, Enum, Index, Integer, String, Text

from .database import Base


class BookingStatus(str, PyEnum):
    """
    Enumeration of persisted booking statuses.

    Values
    ------
    pending
        Booking has been requested and awaits a manager/HR decision.
    approved
        Booking holds the room for the given time range.
    rejected
        An approver declined the request. Terminal.
    cancelled
        Requester or an elevated role withdrew the booking. Terminal.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)
TERMINAL_STATUSES = (BookingStatus.REJECTED, BookingStatus.CANCELLED)


class Role(str, PyEnum):
    """
    Roles understood by the booking core.

    manager, hr and admin are elevated: they may approve, reject and
    have their own bookings approved on creation.
    """
    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR = "hr"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.EMPLOYEE


class Priority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Urgency(str, PyEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Booking(Base):
    """
    SQLAlchemy model representing a meeting-room booking.

    The ``booked_by_*`` columns are a snapshot of the requester taken at
    creation time; they are never refreshed from the user directory.

    Attributes
    ----------
    id : str
        Opaque UUID primary key.
    room_name : str
        Name of the booked room.
    date : str
        Calendar day in ``YYYY-MM-DD`` form.
    start_time, end_time : str
        Wall-clock ``HH:MM`` bounds of the half-open interval.
    status : BookingStatus
        Persisted workflow status.
    version : int
        Optimistic concurrency counter, bumped on every flush.
    """
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    room_name = Column(String(200), nullable=False)
    date = Column(String(10), nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)

    purpose = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    attendees = Column(Integer, nullable=False)
    equipment = Column(JSON, nullable=False, default=list)

    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING)

    booked_by_user_id = Column(String(64), nullable=True)
    booked_by_name = Column(String(200), nullable=False)
    booked_by_email = Column(String(320), nullable=False, index=True)
    booked_by_employee_id = Column(String(64), nullable=True, index=True)
    booked_by_role = Column(Enum(Role), nullable=False, default=Role.EMPLOYEE)
    booked_by_department = Column(String(200), nullable=True)

    manager_id = Column(String(64), nullable=True, index=True)
    manager_name = Column(String(200), nullable=True)
    manager_email = Column(String(320), nullable=True)
    manager_employee_id = Column(String(64), nullable=True)

    priority = Column(Enum(Priority), nullable=False, default=Priority.MEDIUM)
    urgency = Column(Enum(Urgency), nullable=False, default=Urgency.NORMAL)

    approved_by = Column(String(200), nullable=True)
    approver_id = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    notes = Column(String(500), nullable=False, default="")
    rejection_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    submitted_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_bookings_room_date_status", "room_name", "date", "status"),
        Index("ix_bookings_date_start", "date", "start_time"),
    )


class RoomDay(Base):
    """
    One row per ``(room_name, date)`` that has ever been booked.

    Mutating operations lock this row (``SELECT ... FOR UPDATE``) so the
    conflict check and the write commit as one critical section.
    """
    __tablename__ = "booking_room_days"

    room_name = Column(String(200), primary_key=True)
    date = Column(String(10), primary_key=True)
