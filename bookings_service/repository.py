from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models


class BookingRepository:
    """
    Persistence collaborator for the booking core.

    Wraps a SQLAlchemy session; every ``save`` is a single commit so a
    booking is written atomically or not at all.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, booking_id: str) -> Optional[models.Booking]:
        return (
            self.db.query(models.Booking)
            .filter(models.Booking.id == booking_id)
            .populate_existing()
            .first()
        )

    def find_by_room_and_date(
        self,
        room_name: str,
        date: str,
        statuses: Iterable[models.BookingStatus] = models.ACTIVE_STATUSES,
    ) -> List[models.Booking]:
        return (
            self.db.query(models.Booking)
            .filter(models.Booking.room_name == room_name)
            .filter(models.Booking.date == date)
            .filter(models.Booking.status.in_(list(statuses)))
            .order_by(models.Booking.start_time.asc(), models.Booking.created_at.asc())
            .all()
        )

    def save(self, booking: models.Booking) -> models.Booking:
        self.db.add(booking)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(booking)
        return booking

    def discard(self) -> None:
        """Drop pending changes and release row locks held by this session."""
        self.db.rollback()

    def lock_room_day(self, room_name: str, date: str) -> None:
        """
        Take a row lock on the ``(room_name, date)`` marker row.

        The row is created on first use. On backends without
        ``FOR UPDATE`` (SQLite) the clause is ignored and the in-process
        lock in :mod:`bookings_service.locking` does the serializing.
        """
        query = (
            self.db.query(models.RoomDay)
            .filter(models.RoomDay.room_name == room_name)
            .filter(models.RoomDay.date == date)
        )
        if query.with_for_update().first() is not None:
            return

        self.db.add(models.RoomDay(room_name=room_name, date=date))
        try:
            self.db.flush()
        except IntegrityError:
            # another worker inserted it first; wait on its row instead
            self.db.rollback()
            query.with_for_update().first()

    # ---------- read helpers ----------

    def list_for_requester(self, email: str) -> List[models.Booking]:
        return (
            self.db.query(models.Booking)
            .filter(models.Booking.booked_by_email == email.lower())
            .order_by(models.Booking.date.desc(), models.Booking.start_time.desc())
            .all()
        )

    def list_all(
        self,
        room_name: Optional[str] = None,
        status: Optional[models.BookingStatus] = None,
        email: Optional[str] = None,
    ) -> List[models.Booking]:
        q = self.db.query(models.Booking)

        if room_name is not None:
            q = q.filter(models.Booking.room_name == room_name)

        if status is not None:
            q = q.filter(models.Booking.status == status)

        if email is not None:
            q = q.filter(models.Booking.booked_by_email == email.lower())

        return q.order_by(models.Booking.date.desc(), models.Booking.start_time.desc()).all()

    def list_for_manager(self, manager_id: str) -> List[models.Booking]:
        return (
            self.db.query(models.Booking)
            .filter(models.Booking.manager_id == manager_id)
            .filter(
                models.Booking.status.in_(
                    [
                        models.BookingStatus.PENDING,
                        models.BookingStatus.APPROVED,
                        models.BookingStatus.REJECTED,
                    ]
                )
            )
            .order_by(models.Booking.submitted_at.desc(), models.Booking.created_at.desc())
            .all()
        )

    def list_by_date_range(
        self, start_date: str, end_date: str, room_name: Optional[str] = None
    ) -> List[models.Booking]:
        q = (
            self.db.query(models.Booking)
            .filter(models.Booking.date >= start_date)
            .filter(models.Booking.date <= end_date)
        )
        if room_name is not None:
            q = q.filter(models.Booking.room_name == room_name)
        return q.order_by(models.Booking.date.asc(), models.Booking.start_time.asc()).all()

    def list_active_for_date(
        self, date: str, room_name: Optional[str] = None
    ) -> List[models.Booking]:
        q = (
            self.db.query(models.Booking)
            .filter(models.Booking.date == date)
            .filter(models.Booking.status.in_(list(models.ACTIVE_STATUSES)))
        )
        if room_name is not None:
            q = q.filter(models.Booking.room_name == room_name)
        return q.order_by(models.Booking.room_name.asc(), models.Booking.start_time.asc()).all()
