from __future__ import annotations

"""
Month-safe date arithmetic shared by the grace, trainer and approval modules.

All timestamps are naive UTC datetimes, matching what the SQLite/Postgres
DateTime columns hand back.
"""

import calendar
import math
from datetime import date, datetime, timezone
from typing import Optional, TypeVar


SECONDS_PER_DAY = 86400

D = TypeVar("D", date, datetime)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def add_months(value: D, months: int) -> D:
    """Add calendar months, clamping the day to the end of the target month.

    ``add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)`` and
    ``add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)``. Works for
    negative offsets and keeps the time component of datetimes.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def ceil_days(later: datetime, earlier: datetime) -> int:
    """Whole days from ``earlier`` to ``later``, rounded up. Negative when later < earlier."""
    return math.ceil((later - earlier).total_seconds() / SECONDS_PER_DAY)


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


def membership_start(membership) -> Optional[datetime]:
    # membership_* columns are authoritative; start_date is the legacy mirror
    return membership.membership_start_date or membership.start_date


def membership_end(membership) -> Optional[datetime]:
    return membership.membership_end_date or membership.end_date
