# availability_service/rate_limiter.py
import os
import time
from typing import Any, Dict, List

from fastapi import Depends, HTTPException, status

from .auth import get_current_user_claims

WINDOW_SECONDS = 60
MAX_SUBMISSIONS_PER_WINDOW = int(os.getenv("MAX_SUBMISSIONS_PER_WINDOW", "20"))

_user_request_log: Dict[str, List[float]] = {}


def booking_rate_limiter(claims: Dict[str, Any] = Depends(get_current_user_claims)):
    """
    Rate limit booking submissions and status changes per authenticated user.
    """
    user_id = claims["user_id"]
    now = time.time()
    window_start = now - WINDOW_SECONDS

    timestamps = _user_request_log.get(user_id, [])
    timestamps = [ts for ts in timestamps if ts >= window_start]

    if len(timestamps) >= MAX_SUBMISSIONS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking operations in a short time",
        )

    timestamps.append(now)
    _user_request_log[user_id] = timestamps


def reset_rate_limits() -> None:
    _user_request_log.clear()
