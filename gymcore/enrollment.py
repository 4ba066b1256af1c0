from __future__ import annotations

"""
Member-facing submissions: plan purchase, proof of payment and trainer
renewal requests. Each payment is tagged with its purpose when it is
created, so the classifier never has to guess for new rows.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .classifier import AMOUNT_TOLERANCE_CENTS, INITIAL_PURCHASE, MEMBERSHIP_RENEWAL, TRAINER_RENEWAL
from .eligibility import check_trainer_renewal_eligibility
from .errors import InvalidRequest, MissingEndDate, MissingReference
from .models import (
    ADDON_IN_GYM,
    ADDON_PERSONAL_TRAINER,
    ASSIGNMENT_ADDON,
    AWAITING_PAYMENT,
    GRACE_PERIOD,
    PENDING,
    Membership,
    MembershipAddon,
    MembershipPayment,
    Trainer,
    TrainerAssignment,
)
from .outbox import NotificationTask, OutboundTask
from .periods import add_months, membership_end, utcnow
from .store import MembershipStore
from .trainer_periods import (
    TRAINER_RENEWAL_MONTHS,
    TrainerPeriod,
    TrainerPlanConfig,
    compute_trainer_period,
    compute_trainer_renewal_period,
    includes_trainer,
)


logger = logging.getLogger(__name__)


@dataclass
class Submission:
    membership: Membership
    payment: Optional[MembershipPayment] = None
    addon: Optional[MembershipAddon] = None
    assignment: Optional[TrainerAssignment] = None
    trainer_period: Optional[TrainerPeriod] = None
    tasks: List[OutboundTask] = field(default_factory=list)


def _active_trainer(store: MembershipStore, trainer_id: str) -> Trainer:
    trainer = store.get_trainer(trainer_id)
    if trainer is None:
        raise MissingReference(f"Trainer {trainer_id} not found")
    if not trainer.is_active:
        raise InvalidRequest("Trainer is not active", {"trainer_id": trainer_id})
    return trainer


def submit_membership(
    store: MembershipStore,
    user_id: str,
    plan_name: str,
    duration_months: int,
    price_cents: int,
    plan_mode: str = "online",
    trainer_id: Optional[str] = None,
    trainer_addon: bool = False,
    in_gym_addon_cents: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Submission:
    now = now or utcnow()
    if duration_months < 1:
        raise InvalidRequest("duration_months must be at least 1")
    if price_cents < 0:
        raise InvalidRequest("price_cents must not be negative")
    if trainer_addon and not trainer_id:
        raise InvalidRequest("A trainer addon needs a selected trainer")

    trainer = _active_trainer(store, trainer_id) if trainer_id else None

    membership = Membership(
        user_id=user_id,
        plan_name=plan_name,
        plan_mode=plan_mode,
        duration_months=duration_months,
        price_cents=price_cents,
        status=AWAITING_PAYMENT,
        trainer_addon=trainer_addon,
        # included tiers keep the chosen trainer until approval assigns them
        trainer_id=trainer.id if trainer is not None and includes_trainer(plan_name) and not trainer_addon else None,
    )
    store.add(membership)
    result = Submission(membership=membership)

    if in_gym_addon_cents is not None:
        store.add(MembershipAddon(membership_id=membership.id, addon_type=ADDON_IN_GYM, price_cents=in_gym_addon_cents))

    if trainer_addon and trainer is not None:
        result.addon = store.add(
            MembershipAddon(
                membership_id=membership.id,
                addon_type=ADDON_PERSONAL_TRAINER,
                price_cents=trainer.price_cents,
                trainer_id=trainer.id,
            )
        )
        # placeholder window; approval recomputes it from the real start date
        period = compute_trainer_period(
            TrainerPlanConfig(
                plan_name=plan_name,
                plan_mode=plan_mode,
                has_trainer_addon=True,
                selected_trainer_id=trainer.id,
                duration_months=duration_months,
            ),
            now,
            add_months(now, duration_months),
        )
        result.trainer_period = period
        result.assignment = store.add(
            TrainerAssignment(
                membership_id=membership.id,
                trainer_id=trainer.id,
                assignment_type=period.assignment_type if period is not None else ASSIGNMENT_ADDON,
                period_start=period.start if period is not None else None,
                period_end=period.end if period is not None else None,
                meta={"addon_id": result.addon.id},
            )
        )

    logger.info(
        "membership_submitted membership_id=%s user_id=%s plan=%s trainer_addon=%s",
        membership.id,
        user_id,
        plan_name,
        trainer_addon,
    )
    return result


def submit_payment(
    store: MembershipStore,
    membership_id: int,
    amount_cents: int,
    transaction_id: Optional[str] = None,
    trainer_id: Optional[str] = None,
    trainer_addon: bool = False,
) -> Submission:
    """Record proof of payment for a new membership or a grace-period renewal.

    A renewal may buy a trainer addon for the renewed period; it gets a pending
    addon and assignment referencing the payment, resolved at approval.
    """
    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    if amount_cents <= 0:
        raise InvalidRequest("amount_cents must be positive")

    if membership.status == AWAITING_PAYMENT:
        purpose = INITIAL_PURCHASE
    elif membership.status == GRACE_PERIOD:
        purpose = MEMBERSHIP_RENEWAL
    else:
        raise InvalidRequest(
            f"Payments cannot be submitted while the membership is '{membership.status}'",
            {"status": membership.status},
        )
    if store.count_pending_payments(membership_id):
        raise InvalidRequest(
            "A payment is already pending for this membership. Please wait for admin approval."
        )

    trainer = None
    if trainer_addon:
        if purpose != MEMBERSHIP_RENEWAL:
            raise InvalidRequest(
                "A trainer addon can only be added to a renewal payment", {"status": membership.status}
            )
        if not trainer_id:
            raise InvalidRequest("A trainer addon needs a selected trainer")
        trainer = _active_trainer(store, trainer_id)

    payment = store.add(
        MembershipPayment(
            membership_id=membership_id,
            amount_cents=amount_cents,
            transaction_id=transaction_id,
            payment_purpose=purpose,
        )
    )

    if purpose == INITIAL_PURCHASE:
        store.conditional_update_membership(membership_id, (AWAITING_PAYMENT,), {"status": PENDING})
    else:
        # renewal of the same membership; status stays grace_period until approval
        store.conditional_update_membership(
            membership_id, (GRACE_PERIOD,), {"renewal_of_membership_id": membership_id}
        )
    store.refresh(membership)

    result = Submission(membership=membership, payment=payment)
    if trainer is not None:
        result.addon = store.add(
            MembershipAddon(
                membership_id=membership_id,
                addon_type=ADDON_PERSONAL_TRAINER,
                price_cents=trainer.price_cents,
                trainer_id=trainer.id,
            )
        )
        result.assignment = store.add(
            TrainerAssignment(
                membership_id=membership_id,
                trainer_id=trainer.id,
                assignment_type=ASSIGNMENT_ADDON,
                meta={"payment_id": payment.id, "addon_id": result.addon.id},
            )
        )
    result.tasks.append(
        NotificationTask(
            recipient_id=None,
            type="new_membership_payment",
            content=f"Payment submitted for {membership.plan_name} membership. Please verify.",
            metadata={"membership_id": membership_id, "payment_id": payment.id, "purpose": purpose},
        )
    )
    logger.info(
        "payment_submitted membership_id=%s payment_id=%s purpose=%s trainer_id=%s",
        membership_id,
        payment.id,
        purpose,
        trainer.id if trainer is not None else None,
    )
    return result


def request_trainer_renewal(
    store: MembershipStore,
    membership_id: int,
    trainer_id: str,
    amount_cents: int,
    duration_months: int = TRAINER_RENEWAL_MONTHS,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Submission:
    now = now or utcnow()
    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    if duration_months != TRAINER_RENEWAL_MONTHS:
        raise InvalidRequest(
            f"Trainer renewal is fixed to {TRAINER_RENEWAL_MONTHS} month",
            {"duration_months": duration_months},
        )

    plan_end = membership_end(membership)
    eligibility = check_trainer_renewal_eligibility(membership.status, plan_end, now)
    eligibility.raise_for_status()
    if plan_end is None:
        raise MissingEndDate("Membership end date is missing")

    trainer = _active_trainer(store, trainer_id)
    expected = trainer.price_cents * duration_months
    if abs(amount_cents - expected) > AMOUNT_TOLERANCE_CENTS:
        raise InvalidRequest(
            f"Payment amount ({amount_cents}) does not match expected trainer fee ({expected} for {duration_months} month(s))",
            {"expected_amount_cents": expected, "received_amount_cents": amount_cents},
        )
    if store.count_pending_payments(membership_id):
        raise InvalidRequest(
            "A payment is already pending for this membership. Please wait for admin approval."
        )

    period = compute_trainer_renewal_period(
        now, membership.trainer_period_end, plan_end, trainer_id=trainer.id
    )

    payment = store.add(
        MembershipPayment(
            membership_id=membership_id,
            amount_cents=amount_cents,
            transaction_id=transaction_id,
            payment_purpose=TRAINER_RENEWAL,
        )
    )
    addon = store.add(
        MembershipAddon(
            membership_id=membership_id,
            addon_type=ADDON_PERSONAL_TRAINER,
            price_cents=expected,
            trainer_id=trainer.id,
        )
    )
    assignment = store.add(
        TrainerAssignment(
            membership_id=membership_id,
            trainer_id=trainer.id,
            assignment_type=ASSIGNMENT_ADDON,
            period_start=period.start,
            period_end=period.end,
            meta={"renewal": True, "payment_id": payment.id, "addon_id": addon.id},
        )
    )

    result = Submission(membership=membership, payment=payment, addon=addon, assignment=assignment, trainer_period=period)
    result.tasks.append(
        NotificationTask(
            recipient_id=None,
            type="trainer_renewal_payment_submitted",
            content=(
                f"Trainer renewal payment submitted for {membership.plan_name} membership. "
                f"Trainer: {trainer.name}, duration: {duration_months} month(s)."
            ),
            metadata={
                "membership_id": membership_id,
                "payment_id": payment.id,
                "addon_id": addon.id,
                "assignment_id": assignment.id,
            },
        )
    )
    logger.info(
        "trainer_renewal_requested membership_id=%s payment_id=%s trainer_id=%s period_end=%s clamped=%s",
        membership_id,
        payment.id,
        trainer.id,
        period.end.isoformat(),
        period.clamped,
    )
    return result
