# bookings_service/locking.py
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

_registry_guard = threading.Lock()
# (room_name, date) -> [lock, number of holders and waiters]
_room_day_locks: Dict[Tuple[str, str], List] = {}


def _checkout(key: Tuple[str, str]) -> threading.Lock:
    with _registry_guard:
        entry = _room_day_locks.get(key)
        if entry is None:
            entry = [threading.Lock(), 0]
            _room_day_locks[key] = entry
        entry[1] += 1
        return entry[0]


def _checkin(key: Tuple[str, str]) -> None:
    with _registry_guard:
        entry = _room_day_locks[key]
        entry[1] -= 1
        if entry[1] == 0:
            del _room_day_locks[key]


@contextmanager
def room_day_locks(repository, *keys: Tuple[str, str]) -> Iterator[None]:
    """
    Serialize every conflict-check-then-write on the given room days.

    Holds a process-local lock per ``(room_name, date)`` and, inside
    them, the database row lock on each matching ``booking_room_days``
    row, so workers in other processes sharing the database wait as
    well. Keys are taken in sorted order; an update that moves a booking
    passes both its old and new slot. Row locks are released by the
    commit or rollback that ends the caller's transaction.

    A process-local lock lives only while someone holds or waits for it.
    """
    ordered = sorted(set(keys))
    checked_out = []
    acquired = []
    try:
        for key in ordered:
            lock = _checkout(key)
            checked_out.append(key)
            lock.acquire()
            acquired.append(lock)
        for room_name, date in ordered:
            repository.lock_room_day(room_name, date)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()
        for key in reversed(checked_out):
            _checkin(key)
