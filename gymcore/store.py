from __future__ import annotations

"""
Persistence seam for lifecycle operations.

``MembershipStore`` wraps one SQLAlchemy session. Each logical write commits
on its own, so a failure in a later step never undoes an earlier one.
Transitions that can race (approval, grace, expiry) go through
``conditional_update_membership``, a compare-and-swap on the current status.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import (
    ADDON_PENDING,
    ADDON_PERSONAL_TRAINER,
    ASSIGNMENT_ASSIGNED,
    ASSIGNMENT_EXPIRED,
    ASSIGNMENT_PENDING,
    PAYMENT_PENDING,
    PAYMENT_REJECTED,
    PAYMENT_VERIFIED,
    AuditEvent,
    Membership,
    MembershipAddon,
    MembershipPayment,
    Trainer,
    TrainerAssignment,
)
from .periods import utcnow


logger = logging.getLogger(__name__)


class MembershipStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    # reads

    def get_membership(self, membership_id: int) -> Optional[Membership]:
        return self.db.get(Membership, membership_id)

    def get_trainer(self, trainer_id: str) -> Optional[Trainer]:
        return self.db.get(Trainer, trainer_id)

    def list_payments(self, membership_id: int) -> List[MembershipPayment]:
        stmt = (
            select(MembershipPayment)
            .where(MembershipPayment.membership_id == membership_id)
            .order_by(MembershipPayment.created_at.asc(), MembershipPayment.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def newest_pending_payment(self, membership_id: int) -> Optional[MembershipPayment]:
        stmt = (
            select(MembershipPayment)
            .where(MembershipPayment.membership_id == membership_id, MembershipPayment.status == PAYMENT_PENDING)
            .order_by(MembershipPayment.created_at.desc(), MembershipPayment.id.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def count_pending_payments(self, membership_id: int) -> int:
        stmt = select(func.count(MembershipPayment.id)).where(
            MembershipPayment.membership_id == membership_id, MembershipPayment.status == PAYMENT_PENDING
        )
        return int(self.db.execute(stmt).scalar_one())

    def count_verified_payments(self, membership_id: int) -> int:
        stmt = select(func.count(MembershipPayment.id)).where(
            MembershipPayment.membership_id == membership_id, MembershipPayment.status == PAYMENT_VERIFIED
        )
        return int(self.db.execute(stmt).scalar_one())

    def newest_pending_assignment(self, membership_id: int) -> Optional[TrainerAssignment]:
        stmt = (
            select(TrainerAssignment)
            .where(TrainerAssignment.membership_id == membership_id, TrainerAssignment.status == ASSIGNMENT_PENDING)
            .order_by(TrainerAssignment.created_at.desc(), TrainerAssignment.id.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def pending_trainer_addons(self, membership_id: int) -> List[MembershipAddon]:
        stmt = (
            select(MembershipAddon)
            .where(
                MembershipAddon.membership_id == membership_id,
                MembershipAddon.addon_type == ADDON_PERSONAL_TRAINER,
                MembershipAddon.status == ADDON_PENDING,
            )
            .order_by(MembershipAddon.created_at.desc(), MembershipAddon.id.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_addons(self, membership_id: int) -> List[MembershipAddon]:
        stmt = select(MembershipAddon).where(MembershipAddon.membership_id == membership_id)
        return list(self.db.execute(stmt.order_by(MembershipAddon.created_at.asc())).scalars().all())

    def list_assignments(self, membership_id: int) -> List[TrainerAssignment]:
        stmt = select(TrainerAssignment).where(TrainerAssignment.membership_id == membership_id)
        return list(self.db.execute(stmt.order_by(TrainerAssignment.created_at.asc())).scalars().all())

    def memberships_with_status(self, statuses: Sequence[str]) -> List[Membership]:
        stmt = select(Membership).where(Membership.status.in_(tuple(statuses))).order_by(Membership.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    def verified_payments_on(self, statuses: Sequence[str]) -> List[MembershipPayment]:
        stmt = (
            select(MembershipPayment)
            .join(Membership, Membership.id == MembershipPayment.membership_id)
            .where(MembershipPayment.status == PAYMENT_VERIFIED, Membership.status.in_(tuple(statuses)))
            .order_by(MembershipPayment.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def audit_events(self, action: str) -> List[AuditEvent]:
        stmt = select(AuditEvent).where(AuditEvent.action == action).order_by(AuditEvent.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    # writes

    def expire_assignments(self, membership_id: int) -> int:
        stmt = (
            update(TrainerAssignment)
            .where(TrainerAssignment.membership_id == membership_id, TrainerAssignment.status == ASSIGNMENT_ASSIGNED)
            .values(status=ASSIGNMENT_EXPIRED)
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount or 0

    def add(self, obj: Any) -> Any:
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def delete(self, obj: Any) -> None:
        self.db.delete(obj)
        self.db.commit()

    def reject_other_pending(self, membership_id: int, keep_payment_id: int) -> int:
        stmt = (
            update(MembershipPayment)
            .where(
                MembershipPayment.membership_id == membership_id,
                MembershipPayment.status == PAYMENT_PENDING,
                MembershipPayment.id != keep_payment_id,
            )
            .values(status=PAYMENT_REJECTED)
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount or 0

    def verify_payment(self, payment: MembershipPayment, verified_by: str, now: datetime) -> MembershipPayment:
        payment.status = PAYMENT_VERIFIED
        payment.verified_at = now
        payment.verified_by = verified_by
        self.db.add(payment)
        self.db.commit()
        return payment

    def conditional_update_membership(
        self, membership_id: int, expected_statuses: Sequence[str], values: Dict[str, Any]
    ) -> bool:
        """Apply ``values`` only while the row still has one of ``expected_statuses``.

        Returns False when another writer moved the status first.
        """
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        stmt = (
            update(Membership)
            .where(Membership.id == membership_id, Membership.status.in_(tuple(expected_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        if not result.rowcount:
            return False
        membership = self.db.get(Membership, membership_id)
        if membership is not None:
            self.db.refresh(membership)
        return True

    def update_membership(self, membership_id: int, values: Dict[str, Any]) -> Optional[Membership]:
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        self.db.execute(
            update(Membership)
            .where(Membership.id == membership_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        membership = self.db.get(Membership, membership_id)
        if membership is not None:
            self.db.refresh(membership)
        return membership

    def refresh(self, obj: Any) -> Any:
        self.db.refresh(obj)
        return obj

    @contextmanager
    def best_effort(self, step: str, **fields: Any) -> Iterator[None]:
        """Run one non-critical write; storage errors are rolled back and logged, never raised."""
        try:
            yield
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            extra = " ".join(f"{k}={v}" for k, v in fields.items())
            logger.exception("best_effort_step_failed step=%s %s", step, extra)
