from __future__ import annotations

"""
Grace period rules for memberships and trainer access.

A membership that passes its end date enters a 15-day grace window during
which a renewal reactivates the same membership; trainer access gets a
shorter 5-day window. All functions are pure and take ``now`` explicitly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .periods import ceil_days


GRACE_PERIOD_DAYS = 15
TRAINER_GRACE_PERIOD_DAYS = 5
MIN_TRAINER_RENEWAL_DURATION_DAYS = 30
GRACE_NOTIFICATION_MILESTONES = (15, 7, 2, 1)
EXPIRATION_WARNING_DAYS = 7

# "approved" predates the active status and still shows up on old rows
ACTIVE_VARIANTS = frozenset({"active", "approved"})


def calculate_grace_period_end(end: datetime) -> datetime:
    return end + timedelta(days=GRACE_PERIOD_DAYS)


def calculate_trainer_grace_period_end(period_end: datetime) -> datetime:
    return period_end + timedelta(days=TRAINER_GRACE_PERIOD_DAYS)


def is_in_grace_period(end: Optional[datetime], grace_end: Optional[datetime], now: datetime) -> bool:
    if end is None or grace_end is None:
        return False
    return end <= now <= grace_end


def is_trainer_in_grace_period(
    period_end: Optional[datetime], grace_end: Optional[datetime], now: datetime
) -> bool:
    return is_in_grace_period(period_end, grace_end, now)


def days_remaining(grace_end: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days (rounded up) until ``grace_end``; negative once it has passed."""
    if grace_end is None:
        return None
    return ceil_days(grace_end, now)


def should_transition_to_grace_period(
    status: str, end: Optional[datetime], grace_end: Optional[datetime], now: datetime
) -> bool:
    if status not in ACTIVE_VARIANTS or end is None:
        return False
    return end <= now and grace_end is None


def should_transition_trainer_to_grace_period(
    assigned: bool, period_end: Optional[datetime], grace_end: Optional[datetime], now: datetime
) -> bool:
    if not assigned or period_end is None:
        return False
    return period_end <= now and grace_end is None


def should_reactivate_membership(status: str, grace_end: Optional[datetime], now: datetime) -> bool:
    remaining = days_remaining(grace_end, now)
    return status == "grace_period" and remaining is not None and remaining > 0


def should_expire(status: str, grace_end: Optional[datetime], now: datetime) -> bool:
    return status == "grace_period" and grace_end is not None and now > grace_end


def grace_notification_milestone(grace_end: Optional[datetime], now: datetime) -> Optional[int]:
    """Return the milestone hit today, if any.

    Only an exact day-count match fires, so a sweep that skips a day never
    sends that day's notice late.
    """
    remaining = days_remaining(grace_end, now)
    if remaining is None or remaining <= 0:
        return None
    if remaining in GRACE_NOTIFICATION_MILESTONES:
        return remaining
    return None


def trainer_access_status(
    assigned: bool, period_end: Optional[datetime], grace_end: Optional[datetime], now: datetime
) -> str:
    if not assigned or period_end is None:
        return "none"
    if period_end > now:
        return "active"
    if is_trainer_in_grace_period(period_end, grace_end, now):
        return "grace_period"
    return "expired"


def has_active_trainer_access(
    assigned: bool, period_end: Optional[datetime], grace_end: Optional[datetime], now: datetime
) -> bool:
    return trainer_access_status(assigned, period_end, grace_end, now) in ("active", "grace_period")


@dataclass(frozen=True)
class ExpirationStatus:
    is_expiring_soon: bool
    is_expired: bool
    days_remaining: Optional[int]


def expiration_status(end: Optional[datetime], now: datetime) -> ExpirationStatus:
    """Calendar-day expiry status; ``days_remaining`` counts days past the end once expired."""
    if end is None:
        return ExpirationStatus(False, False, None)
    diff = (end.date() - now.date()).days
    if diff < 0:
        return ExpirationStatus(False, True, abs(diff))
    if diff <= EXPIRATION_WARNING_DAYS:
        return ExpirationStatus(True, False, diff)
    return ExpirationStatus(False, False, diff)
