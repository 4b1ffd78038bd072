import os
import sys
import logging

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_bookings.db")

import httpx
import pytest

from common import cache
from common.circuit_breaker import CircuitBreaker
from bookings_service.events import (
    BookingEvent,
    CacheInvalidationSink,
    EventKind,
    EventPublisher,
    HttpEventSink,
)


def make_event(kind=EventKind.APPROVED):
    return BookingEvent(
        kind=kind,
        booking={"id": "b1", "status": "approved", "room_name": "A", "manager_id": "mgr-7"},
        actor={"user_id": "10", "email": "maria@example.com", "name": "Maria", "role": "manager"},
    )


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


def test_publisher_isolates_failing_sinks(caplog):
    delivered = []

    def broken(event):
        raise RuntimeError("boom")

    publisher = EventPublisher([broken, delivered.append])
    with caplog.at_level(logging.ERROR, logger="bookings.events"):
        publisher.publish(make_event())

    assert [e.booking_id for e in delivered] == ["b1"]
    assert "failed for approved on booking b1" in caplog.text


def test_http_sink_posts_event_payload(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse(202)

    monkeypatch.setattr(httpx, "post", fake_post)

    sink = HttpEventSink("notifications_service", "http://notifications:8005/events", timeout=1.5)
    sink(make_event())

    url, body, timeout = calls[0]
    assert url == "http://notifications:8005/events"
    assert body["event"] == "approved"
    assert body["booking"]["manager_id"] == "mgr-7"
    assert body["actor"]["role"] == "manager"
    assert timeout == 1.5
    assert sink.breaker.state == CircuitBreaker.CLOSED


def test_http_sink_opens_circuit_after_repeated_failures(monkeypatch):
    attempts = []

    def failing_post(url, json=None, timeout=None):
        attempts.append(url)
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx, "post", failing_post)

    sink = HttpEventSink(
        "history_service",
        "http://history:8006/events",
        breaker=CircuitBreaker("history_service", max_failures=2, reset_timeout_seconds=60),
    )
    publisher = EventPublisher([sink])
    for _ in range(4):
        publisher.publish(make_event())

    assert len(attempts) == 2
    assert sink.breaker.state == CircuitBreaker.OPEN


def test_http_sink_treats_error_status_as_failure(monkeypatch):
    monkeypatch.setattr(httpx, "post", lambda url, json=None, timeout=None: FakeResponse(500))
    sink = HttpEventSink("notifications_service", "http://notifications:8005/events")

    with pytest.raises(RuntimeError):
        sink(make_event())
    assert sink.breaker.failure_count == 1


def test_half_open_trial_failure_reopens_circuit():
    breaker = CircuitBreaker("x", max_failures=1, reset_timeout_seconds=0)
    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN

    assert breaker.allow_request() is True
    assert breaker.state == CircuitBreaker.HALF_OPEN
    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN

    assert breaker.allow_request() is True
    breaker.record_success()
    assert breaker.state == CircuitBreaker.CLOSED


def test_cache_invalidation_sink_clears_availability_prefixes(monkeypatch):
    cleared = []
    monkeypatch.setattr("bookings_service.events.delete_prefix", cleared.append)

    CacheInvalidationSink()(make_event(EventKind.CANCELLED))

    assert cleared == ["bookings:availability:", "rooms:availability:"]


def test_cache_is_disabled_without_redis(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    cache.reset_redis_client()

    assert cache.get_cached_json("bookings:availability:x") is None
    cache.set_cached_json("bookings:availability:x", [1])
    cache.delete_prefix("bookings:availability:")
