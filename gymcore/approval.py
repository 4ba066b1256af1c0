from __future__ import annotations

"""
Admin approval and rejection of memberships and trainer renewals.

Approval runs as a sequence of separately committed steps:

1. precondition on the membership status
2. renewal provenance (explicit reference, else verified payment count)
3. newest pending payment verified, sibling pending payments rejected
4. new membership dates
5. trainer assignment and addon activation for this cycle; a renewal without
   one clears the lapsed trainer access of the previous cycle
6. conditional status write, guarded on the status still being approvable
7. outbound notification and invoice tasks

Steps 3-5 are best effort: storage errors there are logged and the approval
carries on. Step 6 decides the outcome. When it loses a race the payment
stays verified; the conflict is audited and reported as ``ApprovalConflict``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from . import audit as audit_actions
from . import notifications as notice
from .audit import AuditEntry, AuditSink, DatabaseAuditSink
from .classifier import (
    AMOUNT_TOLERANCE_CENTS,
    TRAINER_RENEWAL,
    Classification,
    ClassificationContext,
    classify_payment,
    resolve_trainer_addon,
)
from .eligibility import check_trainer_renewal_eligibility
from .errors import ApprovalConflict, InvalidRequest, MissingEndDate, MissingReference, NotApprovable, StatusWriteError
from .grace import should_reactivate_membership
from .models import (
    ACTIVE,
    ADDON_ACTIVE,
    APPROVABLE_STATUSES,
    ASSIGNMENT_ADDON,
    ASSIGNMENT_ASSIGNED,
    ASSIGNMENT_INCLUDED,
    ASSIGNMENT_PENDING,
    PAYMENT_REJECTED,
    REJECTED,
    Membership,
    MembershipPayment,
    TrainerAssignment,
)
from .outbox import InvoiceTask, NotificationTask, OutboundTask
from .periods import add_months, membership_end, utcnow
from .store import MembershipStore
from .trainer_periods import (
    TrainerPeriod,
    TrainerPlanConfig,
    compute_trainer_period,
    compute_trainer_renewal_period,
    includes_trainer,
    is_regular_plan,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminIdentity:
    email: str
    id: Optional[str] = None


@dataclass(frozen=True)
class ExplicitRenewal:
    ref: int

    @property
    def is_renewal(self) -> bool:
        return True

    def describe(self) -> str:
        return f"explicit:{self.ref}"


@dataclass(frozen=True)
class InferredFromPaymentCount:
    verified_count: int

    @property
    def is_renewal(self) -> bool:
        return self.verified_count > 1

    def describe(self) -> str:
        return f"inferred_from_payment_count:{self.verified_count}"


RenewalProvenance = Union[ExplicitRenewal, InferredFromPaymentCount]


@dataclass
class ApprovalResult:
    membership: Membership
    provenance: Optional[RenewalProvenance] = None
    is_renewal: bool = False
    payment: Optional[MembershipPayment] = None
    classification: Optional[Classification] = None
    trainer_period: Optional[TrainerPeriod] = None
    superseded_payments: int = 0
    tasks: List[OutboundTask] = field(default_factory=list)


def resolve_renewal_provenance(store: MembershipStore, membership: Membership) -> RenewalProvenance:
    if membership.renewal_of_membership_id is not None:
        return ExplicitRenewal(membership.renewal_of_membership_id)
    return InferredFromPaymentCount(store.count_verified_payments(membership.id))


def compute_membership_dates(membership: Membership, is_renewal: bool, now: datetime) -> tuple[datetime, datetime]:
    """New ``(start, end)`` for an approval.

    Regular monthly plans always restart at ``now``; other tiers extend from
    the later of the current end and ``now`` when renewing.
    """
    months = membership.duration_months or 1
    if is_regular_plan(membership.plan_name) or not is_renewal:
        return now, add_months(now, months)
    current_end = membership_end(membership)
    start = current_end if current_end is not None and current_end > now else now
    return start, add_months(start, months)


def _classify(store: MembershipStore, membership: Membership, payment: MembershipPayment) -> Classification:
    context = ClassificationContext(
        payments=store.list_payments(membership.id),
        addons=store.list_addons(membership.id),
        assignments=store.list_assignments(membership.id),
    )
    return classify_payment(payment, context)


def _record(audit: AuditSink, entry: AuditEntry) -> None:
    try:
        audit.record(entry)
    except Exception:
        logger.exception("audit_record_failed action=%s membership_id=%s", entry.action, entry.membership_id)


def _settle_payments(
    store: MembershipStore, membership_id: int, payment: MembershipPayment, admin: AdminIdentity, now: datetime
) -> tuple[int, bool]:
    superseded = 0
    verified = False
    with store.best_effort("reject_other_pending", membership_id=membership_id, payment_id=payment.id):
        superseded = store.reject_other_pending(membership_id, payment.id)
    with store.best_effort("verify_payment", membership_id=membership_id, payment_id=payment.id):
        store.verify_payment(payment, admin.email, now)
        verified = True
    return superseded, verified


def approve_membership(
    store: MembershipStore,
    admin: AdminIdentity,
    membership_id: int,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
) -> ApprovalResult:
    now = now or utcnow()
    audit = audit or DatabaseAuditSink(store.db)

    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    previous_status = membership.status
    if previous_status not in APPROVABLE_STATUSES:
        raise NotApprovable(
            f"Membership status is '{previous_status}'; only pending or grace_period memberships can be approved",
            {"status": previous_status},
        )

    provenance = resolve_renewal_provenance(store, membership)
    reactivation = should_reactivate_membership(previous_status, membership.grace_period_end, now)
    is_renewal = provenance.is_renewal or reactivation
    logger.info(
        "approval_started membership_id=%s status=%s provenance=%s reactivation=%s",
        membership_id,
        previous_status,
        provenance.describe(),
        reactivation,
    )

    result = ApprovalResult(membership=membership, provenance=provenance, is_renewal=is_renewal)

    payment = store.newest_pending_payment(membership_id)
    verified = False
    if payment is not None:
        result.superseded_payments, verified = _settle_payments(store, membership_id, payment, admin, now)
        if result.superseded_payments:
            _record(
                audit,
                AuditEntry(
                    action=audit_actions.PAYMENTS_SUPERSEDED,
                    membership_id=membership_id,
                    actor=admin.email,
                    new_status=PAYMENT_REJECTED,
                    metadata={"kept_payment_id": payment.id, "rejected": result.superseded_payments},
                ),
            )
        if verified:
            result.payment = payment
            result.classification = _classify(store, membership, payment)
            _record(
                audit,
                AuditEntry(
                    action=audit_actions.PAYMENT_VERIFIED,
                    membership_id=membership_id,
                    actor=admin.email,
                    new_status="verified",
                    provenance=result.classification.source.value,
                    metadata={"payment_id": payment.id, "purpose": result.classification.purpose},
                ),
            )
    else:
        logger.warning("approval_without_pending_payment membership_id=%s", membership_id)

    start, end = compute_membership_dates(membership, is_renewal, now)
    values = {
        "status": ACTIVE,
        "start_date": start,
        "end_date": end,
        "membership_start_date": start,
        "membership_end_date": end,
        "grace_period_end": None,
    }

    values.update(_resolve_trainer(store, audit, admin, membership, start, end, result))

    try:
        won = store.conditional_update_membership(membership_id, APPROVABLE_STATUSES, values)
    except SQLAlchemyError as exc:
        store.db.rollback()
        logger.exception("approval_status_write_failed membership_id=%s", membership_id)
        raise StatusWriteError("Failed to activate membership", {"membership_id": membership_id}) from exc

    if not won:
        store.refresh(membership)
        _record(
            audit,
            AuditEntry(
                action=audit_actions.APPROVAL_CONFLICT,
                membership_id=membership_id,
                actor=admin.email,
                previous_status=previous_status,
                new_status=membership.status,
                provenance=provenance.describe(),
                details="membership status changed before the approval was committed",
                metadata={"payment_id": payment.id if verified else None},
            ),
        )
        logger.warning(
            "approval_conflict membership_id=%s current_status=%s payment_verified=%s",
            membership_id,
            membership.status,
            verified,
        )
        raise ApprovalConflict(
            "Membership was modified concurrently",
            {"status": membership.status, "payment_id": payment.id if verified else None},
        )

    _record(
        audit,
        AuditEntry(
            action=audit_actions.APPROVED,
            membership_id=membership_id,
            actor=admin.email,
            previous_status=previous_status,
            new_status=ACTIVE,
            provenance=provenance.describe(),
            details=f"active {start.isoformat()} to {end.isoformat()}",
            metadata={
                "is_renewal": is_renewal,
                "reactivation": reactivation,
                "payment_id": payment.id if verified else None,
                "payment_purpose_source": result.classification.source.value if result.classification else None,
            },
        ),
    )

    result.tasks.append(
        NotificationTask(
            recipient_id=membership.user_id,
            type=notice.MEMBERSHIP_APPROVED,
            content=f"Your {membership.plan_name} membership has been approved and is now active.",
            metadata={"membership_id": membership_id},
        )
    )
    if result.payment is not None and result.classification is not None:
        result.tasks.append(
            InvoiceTask(
                payment_id=result.payment.id,
                membership_id=membership_id,
                purpose=result.classification.purpose,
                approver=admin.email,
            )
        )
    logger.info(
        "approval_committed membership_id=%s start=%s end=%s renewal=%s",
        membership_id,
        start.isoformat(),
        end.isoformat(),
        is_renewal,
    )
    return result


def _resolve_trainer(
    store: MembershipStore,
    audit: AuditSink,
    admin: AdminIdentity,
    membership: Membership,
    start: datetime,
    end: datetime,
    result: ApprovalResult,
) -> dict:
    """Assign the trainer for a fresh membership window; returns membership columns to write."""
    # addons from earlier cycles are already active and spent
    pending_addons = store.pending_trainer_addons(membership.id)
    has_addon = bool(pending_addons)
    assignment = store.newest_pending_assignment(membership.id)

    trainer_id = assignment.trainer_id if assignment is not None else None
    if trainer_id is None and (assignment is not None or includes_trainer(membership.plan_name)):
        trainer_id = membership.trainer_id

    values: dict = {}
    if trainer_id is None:
        if assignment is not None or pending_addons or includes_trainer(membership.plan_name):
            logger.info("trainer_assignment_needed membership_id=%s plan=%s", membership.id, membership.plan_name)
            _record(
                audit,
                AuditEntry(
                    action=audit_actions.TRAINER_ASSIGNMENT_NEEDED,
                    membership_id=membership.id,
                    actor=admin.email,
                    details=f"{membership.plan_name} approved without a selected trainer",
                ),
            )
        return _lapsed_trainer_values(store, membership, start, result.is_renewal)

    period = compute_trainer_period(
        TrainerPlanConfig(
            plan_name=membership.plan_name,
            plan_mode=membership.plan_mode,
            has_trainer_addon=has_addon,
            selected_trainer_id=trainer_id,
            duration_months=membership.duration_months,
        ),
        start,
        end,
    )
    if period is None:
        logger.info("no_trainer_period membership_id=%s plan=%s", membership.id, membership.plan_name)
        return _lapsed_trainer_values(store, membership, start, result.is_renewal)

    with store.best_effort("trainer_assignment", membership_id=membership.id, trainer_id=trainer_id):
        if result.is_renewal:
            store.expire_assignments(membership.id)
        if assignment is None:
            assignment = TrainerAssignment(membership_id=membership.id, assignment_type=ASSIGNMENT_INCLUDED)
            store.db.add(assignment)
        assignment.trainer_id = trainer_id
        assignment.status = ASSIGNMENT_ASSIGNED
        assignment.period_start = period.start
        assignment.period_end = period.end

    with store.best_effort("activate_addons", membership_id=membership.id):
        for addon in pending_addons:
            addon.status = ADDON_ACTIVE
            if addon.trainer_id is None:
                addon.trainer_id = trainer_id

    result.trainer_period = period
    _record(
        audit,
        AuditEntry(
            action=audit_actions.TRAINER_ASSIGNED,
            membership_id=membership.id,
            actor=admin.email,
            details=f"trainer access until {period.end.isoformat()}",
            metadata={"trainer_id": trainer_id, "clamped": period.clamped, "type": period.assignment_type},
        ),
    )
    values.update(
        trainer_assigned=True,
        trainer_id=trainer_id,
        trainer_period_end=period.end,
        trainer_addon=has_addon,
        trainer_grace_period_end=None,
    )
    return values


def _lapsed_trainer_values(store: MembershipStore, membership: Membership, start: datetime, is_renewal: bool) -> dict:
    """Columns clearing a previous cycle's trainer access that this renewal does not carry over."""
    if not is_renewal or not membership.trainer_assigned:
        return {}
    if membership.trainer_period_end is not None and membership.trainer_period_end > start:
        return {}
    with store.best_effort("expire_previous_assignments", membership_id=membership.id):
        store.expire_assignments(membership.id)
    logger.info(
        "trainer_access_not_renewed membership_id=%s previous_end=%s",
        membership.id,
        membership.trainer_period_end.isoformat() if membership.trainer_period_end else None,
    )
    return {
        "trainer_assigned": False,
        "trainer_id": None,
        "trainer_addon": False,
        "trainer_grace_period_end": None,
    }


def reject_membership(
    store: MembershipStore,
    admin: AdminIdentity,
    membership_id: int,
    reason: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> ApprovalResult:
    audit = audit or DatabaseAuditSink(store.db)
    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    previous_status = membership.status
    reason = reason or "No reason provided"

    try:
        membership = store.update_membership(membership_id, {"status": REJECTED})
    except SQLAlchemyError as exc:
        store.db.rollback()
        raise StatusWriteError("Failed to reject membership", {"membership_id": membership_id}) from exc

    _record(
        audit,
        AuditEntry(
            action=audit_actions.REJECTED,
            membership_id=membership_id,
            actor=admin.email,
            previous_status=previous_status,
            new_status=REJECTED,
            details=reason,
        ),
    )
    result = ApprovalResult(membership=membership)
    result.tasks.append(
        NotificationTask(
            recipient_id=membership.user_id,
            type=notice.MEMBERSHIP_REJECTED,
            content=f"Your {membership.plan_name} membership application has been rejected. Reason: {reason}",
            metadata={"membership_id": membership_id},
        )
    )
    return result


def approve_trainer_renewal(
    store: MembershipStore,
    admin: AdminIdentity,
    membership_id: int,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
) -> ApprovalResult:
    now = now or utcnow()
    audit = audit or DatabaseAuditSink(store.db)

    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    if membership.status != ACTIVE:
        raise NotApprovable(
            f"Cannot approve trainer renewal. Membership status is '{membership.status}'. "
            "Trainer renewal requires an active membership.",
            {"status": membership.status},
        )
    plan_end = membership_end(membership)
    if plan_end is None:
        raise MissingEndDate("Membership end date is missing. Cannot calculate trainer renewal period.")
    check_trainer_renewal_eligibility(membership.status, plan_end, now).raise_for_status()

    payment = store.newest_pending_payment(membership_id)
    if payment is None:
        raise MissingReference("No pending payment found for trainer renewal")

    pending_assignments = [
        a
        for a in store.list_assignments(membership_id)
        if a.status == ASSIGNMENT_PENDING and a.assignment_type == ASSIGNMENT_ADDON
    ]
    match = resolve_trainer_addon(payment, store.pending_trainer_addons(membership_id), pending_assignments)
    if match.addon is None:
        raise MissingReference(
            "No pending trainer addon found for this payment", {"payment_id": payment.id}
        )
    addon = match.addon
    if abs(payment.amount_cents - addon.price_cents) > AMOUNT_TOLERANCE_CENTS:
        raise InvalidRequest(
            f"Payment amount ({payment.amount_cents}) does not match trainer addon price ({addon.price_cents})",
            {"payment_amount_cents": payment.amount_cents, "expected_amount_cents": addon.price_cents},
        )

    trainer_id = addon.trainer_id or membership.trainer_id
    period = compute_trainer_renewal_period(now, membership.trainer_period_end, plan_end, trainer_id=trainer_id)

    result = ApprovalResult(membership=membership, is_renewal=True, trainer_period=period)
    result.superseded_payments, verified = _settle_payments(store, membership_id, payment, admin, now)
    if verified:
        result.payment = payment
        result.classification = _classify(store, membership, payment)

    assignment = match.assignment
    with store.best_effort("trainer_renewal_assignment", membership_id=membership_id, addon_id=addon.id):
        addon.status = ADDON_ACTIVE
        addon.trainer_id = trainer_id
        if assignment is None:
            assignment = TrainerAssignment(membership_id=membership_id, assignment_type=ASSIGNMENT_ADDON)
            store.db.add(assignment)
        assignment.trainer_id = trainer_id
        assignment.status = ASSIGNMENT_ASSIGNED
        assignment.period_start = period.start
        assignment.period_end = period.end
        assignment.meta = {**(assignment.meta or {}), "payment_id": payment.id, "addon_id": addon.id, "renewal": True}

    previous_end = membership.trainer_period_end
    values = {
        "trainer_assigned": True,
        "trainer_id": trainer_id,
        "trainer_period_end": period.end,
        "trainer_addon": True,
        "trainer_grace_period_end": None,
    }
    try:
        won = store.conditional_update_membership(membership_id, (ACTIVE,), values)
    except SQLAlchemyError as exc:
        store.db.rollback()
        raise StatusWriteError("Failed to update membership trainer period", {"membership_id": membership_id}) from exc
    if not won:
        store.refresh(membership)
        _record(
            audit,
            AuditEntry(
                action=audit_actions.APPROVAL_CONFLICT,
                membership_id=membership_id,
                actor=admin.email,
                new_status=membership.status,
                details="membership left active before the trainer renewal was committed",
                metadata={"payment_id": payment.id if verified else None, "addon_id": addon.id},
            ),
        )
        raise ApprovalConflict("Membership is no longer active", {"status": membership.status})

    _record(
        audit,
        AuditEntry(
            action=audit_actions.TRAINER_RENEWAL_APPROVED,
            membership_id=membership_id,
            actor=admin.email,
            previous_status=previous_end.isoformat() if previous_end else "expired",
            new_status=period.end.isoformat(),
            provenance=match.method,
            details=f"trainer period extended to {period.end.isoformat()}",
            metadata={
                "payment_id": payment.id,
                "addon_id": addon.id,
                "assignment_id": assignment.id if assignment is not None else None,
                "trainer_id": trainer_id,
                "clamped": period.clamped,
            },
        ),
    )

    trainer = store.get_trainer(trainer_id) if trainer_id else None
    trainer_name = trainer.name if trainer is not None else "Trainer"
    result.tasks.append(
        NotificationTask(
            recipient_id=membership.user_id,
            type=notice.TRAINER_RENEWAL_APPROVED,
            content=(
                f"Your trainer access renewal has been approved. {trainer_name} access extended "
                f"until {period.end.date().isoformat()}."
            ),
            metadata={"membership_id": membership_id, "trainer_id": trainer_id},
        )
    )
    if result.payment is not None:
        # matched to a trainer addon above, even when inference disagrees
        result.tasks.append(
            InvoiceTask(payment_id=payment.id, membership_id=membership_id, purpose=TRAINER_RENEWAL, approver=admin.email)
        )
    return result


def reject_trainer_renewal(
    store: MembershipStore,
    admin: AdminIdentity,
    membership_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
) -> ApprovalResult:
    now = now or utcnow()
    audit = audit or DatabaseAuditSink(store.db)
    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    payment = store.newest_pending_payment(membership_id)
    if payment is None:
        raise MissingReference("No pending payment found for trainer renewal")
    reason_text = reason or "No reason provided"

    addon = next((a for a in store.pending_trainer_addons(membership_id) if a.created_at >= payment.created_at), None)
    assignment = next(
        (
            a
            for a in reversed(store.list_assignments(membership_id))
            if a.status == ASSIGNMENT_PENDING
            and a.assignment_type == ASSIGNMENT_ADDON
            and a.created_at >= payment.created_at
        ),
        None,
    )
    addon_id = addon.id if addon is not None else None
    assignment_id = assignment.id if assignment is not None else None

    try:
        payment.status = PAYMENT_REJECTED
        payment.verified_at = now
        payment.verified_by = admin.email
        store.db.commit()
    except SQLAlchemyError as exc:
        store.db.rollback()
        raise StatusWriteError("Failed to reject payment", {"payment_id": payment.id}) from exc

    with store.best_effort("discard_trainer_renewal_records", membership_id=membership_id):
        if addon is not None:
            store.db.delete(addon)
        if assignment is not None:
            store.db.delete(assignment)

    _record(
        audit,
        AuditEntry(
            action=audit_actions.TRAINER_RENEWAL_REJECTED,
            membership_id=membership_id,
            actor=admin.email,
            previous_status="pending",
            new_status=PAYMENT_REJECTED,
            details=reason_text,
            metadata={"payment_id": payment.id, "addon_id": addon_id, "assignment_id": assignment_id},
        ),
    )
    result = ApprovalResult(membership=membership, payment=payment)
    suffix = f" Reason: {reason}" if reason else ""
    result.tasks.append(
        NotificationTask(
            recipient_id=membership.user_id,
            type=notice.TRAINER_RENEWAL_REJECTED,
            content=f"Your trainer access renewal payment has been rejected.{suffix} Please contact admin for more information.",
            metadata={"membership_id": membership_id, "payment_id": payment.id},
        )
    )
    return result


def assign_trainer(
    store: MembershipStore,
    admin: AdminIdentity,
    membership_id: int,
    trainer_id: str,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
) -> ApprovalResult:
    """Manually attach a trainer, typically for included-trainer tiers approved without one."""
    now = now or utcnow()
    audit = audit or DatabaseAuditSink(store.db)
    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    trainer = store.get_trainer(trainer_id)
    if trainer is None or not trainer.is_active:
        raise MissingReference(f"Trainer {trainer_id} not found")

    start = membership.membership_start_date or membership.start_date or now
    end = membership_end(membership)
    addons = store.pending_trainer_addons(membership_id)
    period = compute_trainer_period(
        TrainerPlanConfig(
            plan_name=membership.plan_name,
            plan_mode=membership.plan_mode,
            has_trainer_addon=bool(addons),
            selected_trainer_id=trainer_id,
            duration_months=membership.duration_months,
        ),
        start,
        end,
    )
    if period is None:
        raise InvalidRequest(
            f"Plan '{membership.plan_name}' has no trainer access without a trainer addon",
            {"plan_name": membership.plan_name},
        )

    try:
        membership = store.update_membership(
            membership_id,
            {
                "trainer_assigned": True,
                "trainer_id": trainer_id,
                "trainer_period_end": period.end,
                "trainer_grace_period_end": None,
            },
        )
    except SQLAlchemyError as exc:
        store.db.rollback()
        raise StatusWriteError("Failed to assign trainer", {"membership_id": membership_id}) from exc

    with store.best_effort("assign_trainer_assignment", membership_id=membership_id, trainer_id=trainer_id):
        assignment = next(
            (
                a
                for a in store.list_assignments(membership_id)
                if a.status == ASSIGNMENT_PENDING and a.trainer_id in (None, trainer_id)
            ),
            None,
        )
        if assignment is None:
            assignment = TrainerAssignment(membership_id=membership_id, assignment_type=period.assignment_type)
            store.db.add(assignment)
        assignment.trainer_id = trainer_id
        assignment.status = ASSIGNMENT_ASSIGNED
        assignment.period_start = period.start
        assignment.period_end = period.end

    with store.best_effort("activate_addons", membership_id=membership_id):
        for addon in addons:
            addon.status = ADDON_ACTIVE
            if addon.trainer_id is None:
                addon.trainer_id = trainer_id

    _record(
        audit,
        AuditEntry(
            action=audit_actions.TRAINER_ASSIGNED,
            membership_id=membership_id,
            actor=admin.email,
            details=f"trainer {trainer.name} until {period.end.isoformat()}",
            metadata={"trainer_id": trainer_id, "clamped": period.clamped, "manual": True},
        ),
    )
    result = ApprovalResult(membership=membership, trainer_period=period)
    result.tasks.append(
        NotificationTask(
            recipient_id=membership.user_id,
            type=notice.TRAINER_ASSIGNED,
            content=f"Trainer {trainer.name} has been assigned to your membership.",
            metadata={"membership_id": membership_id, "trainer_id": trainer_id},
        )
    )
    if trainer.user_id:
        result.tasks.append(
            NotificationTask(
                recipient_id=trainer.user_id,
                type="client_assigned",
                content="A new client has been assigned to you.",
                metadata={"membership_id": membership_id},
            )
        )
    return result
