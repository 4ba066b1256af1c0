from __future__ import annotations

import time
from typing import Tuple

from fastapi import HTTPException, Request, status

from .config import get_settings


# (admin email, client ip, minute bucket) -> request count
_window_counts: dict[Tuple[str, str, int], int] = {}


def _prune(current_minute: int) -> None:
    for key in [k for k in _window_counts if k[2] < current_minute]:
        del _window_counts[key]


def rate_limit_check(request: Request, identity: str) -> None:
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    ip = request.client.host if request.client else "unknown"
    minute = int(time.time() // 60)
    _prune(minute)
    key = (identity, ip, minute)
    count = _window_counts.get(key, 0) + 1
    _window_counts[key] = count
    if count > settings.rate_limit_per_minute:
        retry_after = 60 - int(time.time() % 60)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(retry_after)},
        )
