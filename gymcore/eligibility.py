from __future__ import annotations

"""
Renewal eligibility for memberships and trainer access.

Membership renewal is only offered in the grace period. Trainer renewal needs
an active membership with at least ``MIN_TRAINER_RENEWAL_DURATION_DAYS`` left,
and a renewed trainer window can never run past the membership end.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import NotEligible
from .grace import (
    MIN_TRAINER_RENEWAL_DURATION_DAYS,
    days_remaining,
    is_in_grace_period,
    is_trainer_in_grace_period,
)
from .periods import add_months, ceil_days
from .periods import membership_end as current_membership_end


NOT_ACTIVE = "not_active"
MISSING_END_DATE = "missing_end_date"
INSUFFICIENT_REMAINING_DURATION = "insufficient_remaining_duration"
NOT_IN_GRACE_PERIOD = "not_in_grace_period"
GRACE_PERIOD_ENDED = "grace_period_ended"
NO_TRAINER_ASSIGNED = "no_trainer_assigned"
TRAINER_PERIOD_RUNNING = "trainer_period_running"


@dataclass(frozen=True)
class Eligibility:
    is_eligible: bool
    reason: Optional[str] = None
    failing_constraint: Optional[str] = None
    remaining_plan_days: Optional[int] = None
    max_trainer_renewal_days: Optional[int] = None
    grace_days_remaining: Optional[int] = None
    in_grace_period: bool = False

    def raise_for_status(self) -> "Eligibility":
        if not self.is_eligible:
            raise NotEligible(
                self.reason or "Not eligible",
                self.failing_constraint or "unknown",
                {"remaining_plan_days": self.remaining_plan_days},
            )
        return self


def _refuse(constraint: str, reason: str, **extra) -> Eligibility:
    return Eligibility(is_eligible=False, reason=reason, failing_constraint=constraint, **extra)


def check_trainer_renewal_eligibility(
    status: str, membership_end: Optional[datetime], now: datetime
) -> Eligibility:
    if status != "active":
        return _refuse(
            NOT_ACTIVE,
            f"Membership status is '{status}'. Trainer renewal requires an active membership.",
        )
    if membership_end is None:
        return _refuse(
            MISSING_END_DATE,
            "Membership end date is missing. Cannot calculate remaining plan duration.",
        )

    remaining = ceil_days(membership_end, now)
    if remaining < MIN_TRAINER_RENEWAL_DURATION_DAYS:
        return _refuse(
            INSUFFICIENT_REMAINING_DURATION,
            f"Remaining plan duration is {remaining} days. Trainer renewal requires at least "
            f"{MIN_TRAINER_RENEWAL_DURATION_DAYS} days remaining on your membership.",
            remaining_plan_days=remaining,
            max_trainer_renewal_days=max(0, remaining),
        )
    return Eligibility(is_eligible=True, remaining_plan_days=remaining, max_trainer_renewal_days=remaining)


def calculate_max_trainer_renewal_period(membership_end: datetime, now: datetime) -> tuple[int, datetime]:
    """Return ``(max_days, max_end)``; days never go below zero."""
    return max(0, ceil_days(membership_end, now)), membership_end


def calculate_trainer_renewal_end_date(start: datetime, months: int, membership_end: datetime) -> datetime:
    proposed = add_months(start, months)
    return proposed if proposed <= membership_end else membership_end


def check_membership_renewal_eligibility(
    status: str,
    membership_end: Optional[datetime],
    grace_end: Optional[datetime],
    now: datetime,
) -> Eligibility:
    if status != "grace_period":
        return _refuse(
            NOT_IN_GRACE_PERIOD,
            f"Membership status is '{status}'. Membership renewal is only available during grace period.",
        )
    if grace_end is None:
        return _refuse(MISSING_END_DATE, "Grace period end date is missing.")
    if not is_in_grace_period(membership_end or now, grace_end, now):
        return _refuse(GRACE_PERIOD_ENDED, "Grace period has ended. Membership can no longer be renewed.")
    return Eligibility(
        is_eligible=True,
        in_grace_period=True,
        grace_days_remaining=max(0, days_remaining(grace_end, now)),
    )


def check_trainer_renewal_eligibility_explicit(
    status: str,
    trainer_assigned: bool,
    trainer_period_end: Optional[datetime],
    trainer_grace_end: Optional[datetime],
    membership_end: Optional[datetime],
    now: datetime,
) -> Eligibility:
    """Stricter variant used for admin badges: the current trainer window must already be over."""
    if status != "active":
        return _refuse(
            NOT_ACTIVE,
            f"Membership status is '{status}'. Trainer renewal requires an active membership.",
        )
    if not trainer_assigned:
        return _refuse(NO_TRAINER_ASSIGNED, "No trainer is assigned to this membership.")
    if trainer_period_end is None:
        return _refuse(MISSING_END_DATE, "Trainer period end date is missing.")
    if trainer_period_end >= now:
        return _refuse(
            TRAINER_PERIOD_RUNNING,
            f"Trainer period is still active (ends {trainer_period_end.date().isoformat()}).",
        )

    in_grace = is_trainer_in_grace_period(trainer_period_end, trainer_grace_end, now)
    plan = check_trainer_renewal_eligibility(status, membership_end or now, now)
    if not plan.is_eligible:
        return _refuse(
            plan.failing_constraint,
            plan.reason,
            remaining_plan_days=plan.remaining_plan_days,
            in_grace_period=in_grace,
        )
    return Eligibility(
        is_eligible=True,
        remaining_plan_days=plan.remaining_plan_days,
        max_trainer_renewal_days=plan.max_trainer_renewal_days,
        in_grace_period=in_grace,
        grace_days_remaining=days_remaining(trainer_grace_end, now) if in_grace else None,
    )


@dataclass(frozen=True)
class RenewalEligibilityStatus:
    membership_renewal: Eligibility
    trainer_renewal: Eligibility

    @property
    def badge(self) -> Optional[str]:
        # the two are exclusive in practice; a grace-period membership wins
        if self.membership_renewal.is_eligible:
            return "membership_renewal"
        if self.trainer_renewal.is_eligible:
            return "trainer_renewal"
        return None


def get_renewal_eligibility_status(membership, now: datetime) -> RenewalEligibilityStatus:
    end = current_membership_end(membership)
    return RenewalEligibilityStatus(
        membership_renewal=check_membership_renewal_eligibility(
            membership.status, end, membership.grace_period_end, now
        ),
        trainer_renewal=check_trainer_renewal_eligibility_explicit(
            membership.status,
            membership.trainer_assigned,
            membership.trainer_period_end,
            membership.trainer_grace_period_end,
            end,
            now,
        ),
    )


def get_renewal_badge_type(membership, now: datetime) -> Optional[str]:
    return get_renewal_eligibility_status(membership, now).badge
