import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional

import httpx

from common.cache import delete_prefix
from common.circuit_breaker import CircuitBreaker

from . import config
from .state_machine import Actor

logger = logging.getLogger("bookings.events")


class EventKind(str, PyEnum):
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    UPDATED = "updated"


@dataclass(frozen=True)
class BookingEvent:
    """
    Fact emitted after an accepted booking write.

    ``booking`` is a plain snapshot taken right after the commit, so
    sinks never touch the ORM instance or its session.
    """
    kind: EventKind
    booking: Dict[str, Any]
    actor: Dict[str, Any]
    occurred_at: datetime = field(default_factory=datetime.now)

    @property
    def booking_id(self) -> str:
        return self.booking["id"]

    @property
    def status(self) -> str:
        return self.booking["status"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.kind.value,
            "booking": self.booking,
            "actor": self.actor,
            "occurred_at": self.occurred_at.isoformat(),
        }


def booking_snapshot(booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "status": booking.status.value,
        "room_name": booking.room_name,
        "date": booking.date,
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "purpose": booking.purpose,
        "attendees": booking.attendees,
        "booked_by": {
            "name": booking.booked_by_name,
            "email": booking.booked_by_email,
            "employee_id": booking.booked_by_employee_id,
            "role": booking.booked_by_role.value,
        },
        "manager_id": booking.manager_id,
        "manager_email": booking.manager_email,
        "approved_by": booking.approved_by,
        "rejection_reason": booking.rejection_reason,
    }


def actor_snapshot(actor: Actor) -> Dict[str, Any]:
    return {
        "user_id": actor.user_id,
        "email": actor.email,
        "name": actor.name,
        "role": actor.role.value,
    }


def build_event(kind: EventKind, booking, actor: Actor) -> BookingEvent:
    return BookingEvent(kind=kind, booking=booking_snapshot(booking), actor=actor_snapshot(actor))


class LoggingEventSink:
    def __call__(self, event: BookingEvent) -> None:
        logger.info(
            "booking %s %s -> %s by %s",
            event.booking_id,
            event.kind.value,
            event.status,
            event.actor["email"],
        )


class CacheInvalidationSink:
    """Drop cached availability for every service that caches it."""

    def __init__(self, prefixes=(config.AVAILABILITY_CACHE_PREFIX, "rooms:availability:")):
        self.prefixes = tuple(prefixes)

    def __call__(self, event: BookingEvent) -> None:
        for prefix in self.prefixes:
            delete_prefix(prefix)


class HttpEventSink:
    """
    POST each event to a collaborator service (notifications, history).

    Guarded by a circuit breaker: while the circuit is open events are
    skipped with a warning instead of waiting on a dead service.
    """

    def __init__(
        self,
        name: str,
        url: str,
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = config.EVENT_SINK_TIMEOUT_SECONDS,
    ):
        self.name = name
        self.url = url
        self.breaker = breaker or CircuitBreaker(name=name, max_failures=3, reset_timeout_seconds=30)
        self.timeout = timeout

    def __call__(self, event: BookingEvent) -> None:
        if not self.breaker.allow_request():
            logger.warning(
                "%s circuit open, dropping %s event for booking %s",
                self.name,
                event.kind.value,
                event.booking_id,
            )
            return

        try:
            response = httpx.post(self.url, json=event.to_dict(), timeout=self.timeout)
        except httpx.RequestError:
            self.breaker.record_failure()
            raise

        if response.status_code >= 400:
            self.breaker.record_failure()
            raise RuntimeError(f"{self.name} returned HTTP {response.status_code}")

        self.breaker.record_success()


class EventPublisher:
    """
    Fan booking events out to the notification/history sinks.

    Delivery is fire-and-forget relative to the booking write: a failing
    sink is logged and the remaining sinks still run.
    """

    def __init__(self, sinks: Optional[List] = None):
        self.sinks = list(sinks or [])

    def subscribe(self, sink) -> None:
        self.sinks.append(sink)

    def emit(self, kind: EventKind, booking, actor: Actor) -> None:
        """
        Snapshot ``booking`` and publish it as a ``kind`` event.

        Runs after the booking write has committed, so a snapshot that
        cannot be built is logged and dropped like a failing sink.
        """
        try:
            event = build_event(kind, booking, actor)
        except Exception:
            logger.exception(
                "could not build %s event for booking %s", kind.value, getattr(booking, "id", None)
            )
            return
        self.publish(event)

    def publish(self, event: BookingEvent) -> None:
        for sink in self.sinks:
            try:
                sink(event)
            except Exception:
                logger.exception(
                    "event sink %r failed for %s on booking %s",
                    sink,
                    event.kind.value,
                    event.booking_id,
                )


def default_publisher() -> EventPublisher:
    publisher = EventPublisher([LoggingEventSink(), CacheInvalidationSink()])
    if config.NOTIFICATIONS_SERVICE_URL:
        publisher.subscribe(
            HttpEventSink("notifications_service", f"{config.NOTIFICATIONS_SERVICE_URL}/api/v1/notifications/events")
        )
    if config.HISTORY_SERVICE_URL:
        publisher.subscribe(
            HttpEventSink("history_service", f"{config.HISTORY_SERVICE_URL}/api/v1/history/events")
        )
    return publisher
