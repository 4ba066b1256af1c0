from __future__ import annotations

"""
Time-driven transitions, run by an external scheduler hitting
``/api/expiries.check``. Re-running the sweep is safe: every status move is
a conditional write and a transition that already happened is skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from . import audit as audit_actions
from . import notifications as notice
from .audit import AuditEntry, AuditSink, DatabaseAuditSink
from .grace import (
    ACTIVE_VARIANTS,
    calculate_grace_period_end,
    calculate_trainer_grace_period_end,
    grace_notification_milestone,
    should_expire,
    should_transition_to_grace_period,
    should_transition_trainer_to_grace_period,
)
from .models import ACTIVE, AWAITING_PAYMENT, EXPIRED, GRACE_PERIOD, PENDING, REJECTED, CANCELLED, Membership
from .outbox import NotificationTask, OutboundTask
from .periods import membership_end, utcnow
from .store import MembershipStore


logger = logging.getLogger(__name__)

# a verified payment on one of these means an approval never landed
UNSETTLED_STATUSES = (AWAITING_PAYMENT, PENDING)


@dataclass
class ExpiryReport:
    grace_started: int = 0
    grace_reminders: int = 0
    expired: int = 0
    expiring_soon: int = 0
    trainer_grace_started: int = 0
    trainer_expired: int = 0
    trainer_expiring_soon: int = 0
    orphaned_payments: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[OutboundTask] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "grace_started": self.grace_started,
            "grace_reminders": self.grace_reminders,
            "expired": self.expired,
            "expiring_soon": self.expiring_soon,
            "trainer_grace_started": self.trainer_grace_started,
            "trainer_expired": self.trainer_expired,
            "trainer_expiring_soon": self.trainer_expiring_soon,
            "orphaned_payments": len(self.orphaned_payments),
            "notifications": len(self.tasks),
        }


def _notify(report: ExpiryReport, recipient_id: Optional[str], type: str, content: str, membership: Membership) -> None:
    report.tasks.append(NotificationTask(recipient_id, type, content, {"membership_id": membership.id}))


def run_expiry_sweep(
    store: MembershipStore,
    now: Optional[datetime] = None,
    notification_days: int = 4,
    audit: Optional[AuditSink] = None,
) -> ExpiryReport:
    now = now or utcnow()
    audit = audit or DatabaseAuditSink(store.db)
    report = ExpiryReport()
    horizon = now + timedelta(days=notification_days)

    active = store.memberships_with_status(tuple(ACTIVE_VARIANTS))
    # snapshot first so memberships that enter grace in this run get no reminder yet
    in_grace = store.memberships_with_status((GRACE_PERIOD,))

    for membership in active:
        _sweep_active(store, audit, report, membership, now, horizon)

    for membership in in_grace:
        _sweep_grace(store, audit, report, membership, now)

    report.orphaned_payments = find_orphaned_payments(store)
    logger.info("expiry_sweep_done now=%s %s", now.isoformat(), " ".join(f"{k}={v}" for k, v in report.counts().items()))
    return report


def _sweep_active(
    store: MembershipStore,
    audit: AuditSink,
    report: ExpiryReport,
    membership: Membership,
    now: datetime,
    horizon: datetime,
) -> None:
    end = membership_end(membership)
    if should_transition_to_grace_period(membership.status, end, membership.grace_period_end, now):
        grace_end = calculate_grace_period_end(end)
        won = store.conditional_update_membership(
            membership.id, (membership.status,), {"status": GRACE_PERIOD, "grace_period_end": grace_end}
        )
        if not won:
            return
        report.grace_started += 1
        audit.record(
            AuditEntry(
                action=audit_actions.GRACE_PERIOD_STARTED,
                membership_id=membership.id,
                actor="system",
                previous_status=ACTIVE,
                new_status=GRACE_PERIOD,
                details=f"grace period until {grace_end.isoformat()}",
            )
        )
        _notify(
            report,
            membership.user_id,
            notice.GRACE_PERIOD_STARTED,
            f"Your {membership.plan_name} membership has ended. Renew before {grace_end.date().isoformat()} to keep it.",
            membership,
        )
        return

    if end is not None and now < end <= horizon:
        report.expiring_soon += 1
        _notify(
            report,
            membership.user_id,
            notice.MEMBERSHIP_EXPIRING,
            f"Your {membership.plan_name} membership will expire soon. Please renew.",
            membership,
        )

    _sweep_trainer(store, audit, report, membership, now, horizon)


def _sweep_trainer(
    store: MembershipStore,
    audit: AuditSink,
    report: ExpiryReport,
    membership: Membership,
    now: datetime,
    horizon: datetime,
) -> None:
    period_end = membership.trainer_period_end
    grace_end = membership.trainer_grace_period_end

    if should_transition_trainer_to_grace_period(membership.trainer_assigned, period_end, grace_end, now):
        trainer_grace_end = calculate_trainer_grace_period_end(period_end)
        if not store.conditional_update_membership(
            membership.id, (membership.status,), {"trainer_grace_period_end": trainer_grace_end}
        ):
            return
        report.trainer_grace_started += 1
        audit.record(
            AuditEntry(
                action=audit_actions.TRAINER_GRACE_PERIOD_STARTED,
                membership_id=membership.id,
                actor="system",
                details=f"trainer grace period until {trainer_grace_end.isoformat()}",
                metadata={"trainer_id": membership.trainer_id},
            )
        )
        _notify(
            report,
            membership.user_id,
            notice.TRAINER_GRACE_PERIOD_STARTED,
            "Your trainer access period has ended. Renew within 5 days to keep your trainer.",
            membership,
        )
        return

    if membership.trainer_assigned and grace_end is not None and now > grace_end:
        _unassign_trainer(store, audit, report, membership)
        return

    if membership.trainer_assigned and period_end is not None and now < period_end <= horizon:
        report.trainer_expiring_soon += 1
        _notify(
            report,
            membership.user_id,
            "trainer_period_expiring",
            "Your trainer access period will expire soon. Please renew.",
            membership,
        )


def _unassign_trainer(store: MembershipStore, audit: AuditSink, report: ExpiryReport, membership: Membership) -> None:
    trainer_id = membership.trainer_id
    trainer = store.get_trainer(trainer_id) if trainer_id else None
    store.update_membership(
        membership.id,
        {
            "trainer_assigned": False,
            "trainer_id": None,
            "trainer_period_end": None,
            "trainer_grace_period_end": None,
        },
    )
    expired = store.expire_assignments(membership.id)
    report.trainer_expired += 1
    audit.record(
        AuditEntry(
            action=audit_actions.TRAINER_GRACE_PERIOD_EXPIRED,
            membership_id=membership.id,
            actor="system",
            details="trainer access removed after grace period",
            metadata={"trainer_id": trainer_id, "assignments_expired": expired},
        )
    )
    _notify(
        report,
        membership.user_id,
        notice.TRAINER_ACCESS_EXPIRED,
        "Your trainer access period has expired. Please renew your trainer access.",
        membership,
    )
    if trainer is not None and trainer.user_id:
        _notify(
            report,
            trainer.user_id,
            "client_trainer_period_expired",
            "Client's trainer access period has expired.",
            membership,
        )


def _sweep_grace(
    store: MembershipStore, audit: AuditSink, report: ExpiryReport, membership: Membership, now: datetime
) -> None:
    if should_expire(membership.status, membership.grace_period_end, now):
        values: Dict[str, Any] = {"status": EXPIRED}
        if membership.trainer_assigned:
            values.update(trainer_assigned=False, trainer_grace_period_end=None)
        if not store.conditional_update_membership(membership.id, (GRACE_PERIOD,), values):
            return
        store.expire_assignments(membership.id)
        report.expired += 1
        audit.record(
            AuditEntry(
                action=audit_actions.MEMBERSHIP_EXPIRED,
                membership_id=membership.id,
                actor="system",
                previous_status=GRACE_PERIOD,
                new_status=EXPIRED,
            )
        )
        _notify(
            report,
            membership.user_id,
            notice.MEMBERSHIP_EXPIRED,
            f"Your {membership.plan_name} membership has expired. Please renew your plan.",
            membership,
        )
        return

    milestone = grace_notification_milestone(membership.grace_period_end, now)
    if milestone is not None:
        report.grace_reminders += 1
        day_word = "day" if milestone == 1 else "days"
        _notify(
            report,
            membership.user_id,
            notice.GRACE_PERIOD_REMINDER,
            f"{milestone} {day_word} left to renew your {membership.plan_name} membership.",
            membership,
        )


def find_orphaned_payments(store: MembershipStore) -> List[Dict[str, Any]]:
    """Verified payments whose membership never became active.

    Covers approvals that lost the status race after verifying the payment.
    Nothing is repaired here; the list is for an admin to act on.
    """
    found: Dict[int, Dict[str, Any]] = {}
    for payment in store.verified_payments_on(UNSETTLED_STATUSES + (REJECTED, CANCELLED)):
        membership = payment.membership
        if membership.status in (REJECTED, CANCELLED) and not _conflicted(store, payment.id):
            continue
        found[payment.id] = {
            "payment_id": payment.id,
            "membership_id": membership.id,
            "membership_status": membership.status,
            "verified_at": payment.verified_at.isoformat() if payment.verified_at else None,
        }
    if found:
        logger.warning("orphaned_verified_payments count=%s ids=%s", len(found), sorted(found))
    return [found[k] for k in sorted(found)]


def _conflicted(store: MembershipStore, payment_id: int) -> bool:
    for event in store.audit_events(audit_actions.APPROVAL_CONFLICT):
        if (event.meta or {}).get("payment_id") == payment_id:
            return True
    return False
