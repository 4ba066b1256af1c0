from __future__ import annotations

"""
Payment purpose classification.

Every payment resolves to exactly one of ``initial_purchase``,
``membership_renewal`` or ``trainer_renewal``. An explicit
``payment_purpose`` on the row always wins; rows created before explicit
tagging are classified by position and by the addon/assignment records that
renewal flows create right after the payment is captured. Inferred results
are marked ``PurposeSource.INFERRED`` so audit records can tell them apart.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .models import (
    ADDON_PERSONAL_TRAINER,
    ASSIGNMENT_ADDON,
    MembershipAddon,
    MembershipPayment,
    TrainerAssignment,
)


logger = logging.getLogger(__name__)

INITIAL_PURCHASE = "initial_purchase"
MEMBERSHIP_RENEWAL = "membership_renewal"
TRAINER_RENEWAL = "trainer_renewal"
PAYMENT_PURPOSES = (INITIAL_PURCHASE, MEMBERSHIP_RENEWAL, TRAINER_RENEWAL)

_PURPOSE_ALIASES = {
    "initial": INITIAL_PURCHASE,
    "renewal": MEMBERSHIP_RENEWAL,
    "trainer": TRAINER_RENEWAL,
}

CORRELATION_WINDOW = timedelta(minutes=2)
PRICE_MATCH_TOLERANCE_CENTS = 1000
# trainer renewal payments may differ from the trainer price by one currency unit
AMOUNT_TOLERANCE_CENTS = 100


class PurposeSource(str, Enum):
    EXPLICIT = "explicit"
    INFERRED = "inferred"


@dataclass(frozen=True)
class Classification:
    purpose: str
    source: PurposeSource
    reason: str

    @property
    def degraded(self) -> bool:
        return self.source is PurposeSource.INFERRED


@dataclass
class ClassificationContext:
    """Everything recorded against one membership that classification may look at."""

    payments: Sequence[MembershipPayment] = field(default_factory=list)
    addons: Sequence[MembershipAddon] = field(default_factory=list)
    assignments: Sequence[TrainerAssignment] = field(default_factory=list)

    @classmethod
    def for_membership(cls, membership) -> "ClassificationContext":
        return cls(
            payments=list(membership.payments),
            addons=list(membership.addons),
            assignments=list(membership.trainer_assignments),
        )


def normalize_purpose(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    lowered = value.strip().lower()
    if lowered in PAYMENT_PURPOSES:
        return lowered
    return _PURPOSE_ALIASES.get(lowered)


def _chronological_key(payment: MembershipPayment):
    return (payment.created_at, payment.id or 0)


def _created_within_window(created_at: Optional[datetime], anchor: datetime) -> bool:
    if created_at is None:
        return False
    return anchor < created_at <= anchor + CORRELATION_WINDOW


def _has_trainer_record_after(payment: MembershipPayment, context: ClassificationContext) -> bool:
    for addon in context.addons:
        if addon.addon_type == ADDON_PERSONAL_TRAINER and _created_within_window(addon.created_at, payment.created_at):
            return True
    for assignment in context.assignments:
        if assignment.assignment_type == ASSIGNMENT_ADDON and _created_within_window(
            assignment.created_at, payment.created_at
        ):
            return True
    return False


def classify_payment(payment: MembershipPayment, context: ClassificationContext) -> Classification:
    explicit = normalize_purpose(payment.payment_purpose)
    if explicit is not None:
        return Classification(explicit, PurposeSource.EXPLICIT, "payment_purpose column")
    if payment.payment_purpose:
        logger.warning(
            "unrecognized_payment_purpose payment_id=%s value=%r; inferring", payment.id, payment.payment_purpose
        )

    history = sorted(context.payments, key=_chronological_key)
    if not history or history[0].id == payment.id or _chronological_key(payment) <= _chronological_key(history[0]):
        return Classification(INITIAL_PURCHASE, PurposeSource.INFERRED, "first payment for membership")

    if _has_trainer_record_after(payment, context):
        return Classification(
            TRAINER_RENEWAL, PurposeSource.INFERRED, "trainer addon or assignment created within 2 minutes"
        )
    return Classification(MEMBERSHIP_RENEWAL, PurposeSource.INFERRED, "later payment without trainer records")


def classify_payments(
    payments: Iterable[MembershipPayment], context: ClassificationContext
) -> List[tuple[MembershipPayment, Classification]]:
    return [(payment, classify_payment(payment, context)) for payment in sorted(payments, key=_chronological_key)]


# Correlation methods, strongest first
EXPLICIT_REFERENCE = "explicit_reference"
TIME_WINDOW = "time_window"
PRICE_MATCH = "price_match"
MOST_RECENT = "most_recent"


@dataclass(frozen=True)
class Correlation:
    addon: Optional[MembershipAddon]
    assignment: Optional[TrainerAssignment]
    method: Optional[str]

    @property
    def degraded(self) -> bool:
        return self.method not in (None, EXPLICIT_REFERENCE)


def _meta_int(meta: Optional[dict], key: str) -> Optional[int]:
    if not meta or meta.get(key) is None:
        return None
    try:
        return int(meta[key])
    except (TypeError, ValueError):
        return None


def resolve_trainer_addon(
    payment: MembershipPayment,
    addons: Sequence[MembershipAddon],
    assignments: Sequence[TrainerAssignment] = (),
) -> Correlation:
    """Find the trainer addon (and assignment) a trainer-renewal payment paid for."""
    trainer_addons = [a for a in addons if a.addon_type == ADDON_PERSONAL_TRAINER]
    trainer_assignments = [a for a in assignments if a.assignment_type == ASSIGNMENT_ADDON]

    for assignment in trainer_assignments:
        if _meta_int(assignment.meta, "payment_id") == payment.id:
            addon_id = _meta_int(assignment.meta, "addon_id")
            addon = next((a for a in trainer_addons if a.id == addon_id), None)
            return Correlation(addon, assignment, EXPLICIT_REFERENCE)

    windowed = [a for a in trainer_addons if _created_within_window(a.created_at, payment.created_at)]
    if windowed:
        addon = min(windowed, key=lambda a: a.created_at)
        logger.warning("addon_correlation_degraded payment_id=%s method=%s addon_id=%s", payment.id, TIME_WINDOW, addon.id)
        return Correlation(addon, _assignment_near(addon, trainer_assignments), TIME_WINDOW)

    priced = [a for a in trainer_addons if abs((a.price_cents or 0) - payment.amount_cents) <= PRICE_MATCH_TOLERANCE_CENTS]
    if priced:
        addon = max(priced, key=lambda a: (a.created_at, a.id or 0))
        logger.warning("addon_correlation_degraded payment_id=%s method=%s addon_id=%s", payment.id, PRICE_MATCH, addon.id)
        return Correlation(addon, _assignment_near(addon, trainer_assignments), PRICE_MATCH)

    if trainer_addons:
        addon = max(trainer_addons, key=lambda a: (a.created_at, a.id or 0))
        logger.warning("addon_correlation_degraded payment_id=%s method=%s addon_id=%s", payment.id, MOST_RECENT, addon.id)
        return Correlation(addon, _assignment_near(addon, trainer_assignments), MOST_RECENT)

    return Correlation(None, None, None)


def _assignment_near(
    addon: MembershipAddon, assignments: Sequence[TrainerAssignment]
) -> Optional[TrainerAssignment]:
    for assignment in assignments:
        if _meta_int(assignment.meta, "addon_id") == addon.id:
            return assignment
    near = [a for a in assignments if a.created_at is not None and abs(a.created_at - addon.created_at) <= CORRELATION_WINDOW]
    if not near:
        return None
    return min(near, key=lambda a: abs(a.created_at - addon.created_at))
