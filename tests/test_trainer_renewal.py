from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

import pytest

# Ensure project root on path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gymcore import audit as audit_actions
from gymcore.approval import AdminIdentity, approve_trainer_renewal, reject_trainer_renewal
from gymcore.audit import MemoryAuditSink
from gymcore.classifier import EXPLICIT_REFERENCE, TIME_WINDOW
from gymcore.database import Base, build_engine, build_session_factory
from gymcore.enrollment import request_trainer_renewal
from gymcore.errors import InvalidRequest, MissingReference, NotApprovable, NotEligible
from gymcore.models import Membership, MembershipAddon, MembershipPayment, Trainer
from gymcore.outbox import InvoiceTask
from gymcore.store import MembershipStore


ADMIN = AdminIdentity(email="admin@example.com")
NOW = datetime(2024, 6, 1, 8, 0)


@pytest.fixture()
def store() -> Iterator[MembershipStore]:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    db = build_session_factory(engine)()
    db.add(Trainer(id="t1", name="Alex", price_cents=20000, user_id="trainer-user"))
    db.commit()
    try:
        yield MembershipStore(db)
    finally:
        db.close()
        engine.dispose()


def _active(store: MembershipStore, plan_days: int = 120, trainer_end: datetime = NOW - timedelta(days=1)) -> Membership:
    return store.add(
        Membership(
            user_id="u1",
            plan_name="Basic",
            duration_months=6,
            price_cents=60000,
            status="active",
            membership_start_date=NOW - timedelta(days=60),
            membership_end_date=NOW + timedelta(days=plan_days),
            trainer_id="t1",
            trainer_assigned=True,
            trainer_addon=True,
            trainer_period_end=trainer_end,
        )
    )


def test_request_records_explicit_references(store: MembershipStore) -> None:
    membership = _active(store)

    submission = request_trainer_renewal(store, membership.id, "t1", 20000, now=NOW)

    assert submission.payment.payment_purpose == "trainer_renewal"
    assert submission.addon.price_cents == 20000
    assert submission.addon.status == "pending"
    assert submission.assignment.meta == {
        "renewal": True,
        "payment_id": submission.payment.id,
        "addon_id": submission.addon.id,
    }
    assert submission.trainer_period.start == NOW
    assert submission.trainer_period.end == datetime(2024, 7, 1, 8, 0)
    assert submission.tasks[0].type == "trainer_renewal_payment_submitted"


def test_request_checks_amount_and_eligibility(store: MembershipStore) -> None:
    membership = _active(store)
    with pytest.raises(InvalidRequest):
        request_trainer_renewal(store, membership.id, "t1", 15000, now=NOW)
    # within one currency unit is accepted
    request_trainer_renewal(store, membership.id, "t1", 20050, now=NOW)
    with pytest.raises(InvalidRequest):
        request_trainer_renewal(store, membership.id, "t1", 20000, now=NOW)

    short = _active(store, plan_days=29)
    with pytest.raises(NotEligible) as exc:
        request_trainer_renewal(store, short.id, "t1", 20000, now=NOW)
    assert exc.value.constraint == "insufficient_remaining_duration"


def test_renewal_length_is_one_month(store: MembershipStore) -> None:
    membership = _active(store)
    with pytest.raises(InvalidRequest) as exc:
        request_trainer_renewal(store, membership.id, "t1", 60000, duration_months=3, now=NOW)
    assert exc.value.details == {"duration_months": 3}
    assert store.list_payments(membership.id) == []

    request_trainer_renewal(store, membership.id, "t1", 20000, now=NOW)
    approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=MemoryAuditSink())

    assert store.get_membership(membership.id).trainer_period_end == datetime(2024, 7, 1, 8, 0)


def test_approve_extends_trainer_period(store: MembershipStore) -> None:
    membership = _active(store)
    submission = request_trainer_renewal(store, membership.id, "t1", 20000, now=NOW)
    sink = MemoryAuditSink()

    result = approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=sink)

    refreshed = store.get_membership(membership.id)
    assert refreshed.trainer_period_end == datetime(2024, 7, 1, 8, 0)
    assert refreshed.trainer_assigned is True
    assert refreshed.trainer_grace_period_end is None
    assert store.db.get(MembershipPayment, submission.payment.id).status == "verified"
    assert store.db.get(MembershipAddon, submission.addon.id).status == "active"
    assignment = store.list_assignments(membership.id)[-1]
    assert assignment.status == "assigned"
    assert assignment.meta["payment_id"] == submission.payment.id

    approved = [e for e in sink.entries if e.action == audit_actions.TRAINER_RENEWAL_APPROVED][0]
    assert approved.provenance == EXPLICIT_REFERENCE
    assert approved.metadata["clamped"] is False

    invoice = [t for t in result.tasks if isinstance(t, InvoiceTask)][0]
    assert invoice.purpose == "trainer_renewal"
    assert "Alex access extended until 2024-07-01" in result.tasks[0].content


def test_running_period_is_extended_and_clamped(store: MembershipStore) -> None:
    membership = _active(store, plan_days=40, trainer_end=NOW + timedelta(days=20))
    request_trainer_renewal(store, membership.id, "t1", 20000, now=NOW)

    result = approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=MemoryAuditSink())

    assert result.trainer_period.start == NOW + timedelta(days=20)
    assert result.trainer_period.end == NOW + timedelta(days=40)
    assert result.trainer_period.clamped is True
    assert store.get_membership(membership.id).trainer_period_end <= store.get_membership(membership.id).membership_end_date


def test_legacy_payment_falls_back_to_time_window(store: MembershipStore) -> None:
    membership = _active(store)
    payment = store.add(
        MembershipPayment(membership_id=membership.id, amount_cents=20000, created_at=NOW - timedelta(minutes=5))
    )
    store.add(
        MembershipAddon(
            membership_id=membership.id,
            addon_type="personal_trainer",
            price_cents=20000,
            trainer_id="t1",
            created_at=payment.created_at + timedelta(seconds=40),
        )
    )
    sink = MemoryAuditSink()

    result = approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=sink)

    approved = [e for e in sink.entries if e.action == audit_actions.TRAINER_RENEWAL_APPROVED][0]
    assert approved.provenance == TIME_WINDOW
    assert result.payment.id == payment.id
    assert [t.purpose for t in result.tasks if isinstance(t, InvoiceTask)] == ["trainer_renewal"]


def test_approve_rejects_price_mismatch(store: MembershipStore) -> None:
    membership = _active(store)
    store.add(MembershipPayment(membership_id=membership.id, amount_cents=5000, payment_purpose="trainer_renewal"))
    store.add(MembershipAddon(membership_id=membership.id, addon_type="personal_trainer", price_cents=20000))

    with pytest.raises(InvalidRequest) as exc:
        approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=MemoryAuditSink())
    assert exc.value.details["expected_amount_cents"] == 20000


def test_approve_preconditions(store: MembershipStore) -> None:
    membership = _active(store)
    with pytest.raises(MissingReference):
        approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=MemoryAuditSink())

    store.add(MembershipPayment(membership_id=membership.id, amount_cents=20000))
    with pytest.raises(MissingReference):
        approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=MemoryAuditSink())

    store.update_membership(membership.id, {"status": "grace_period"})
    with pytest.raises(NotApprovable):
        approve_trainer_renewal(store, ADMIN, membership.id, now=NOW, audit=MemoryAuditSink())


def test_reject_discards_pending_records(store: MembershipStore) -> None:
    membership = _active(store)
    submission = request_trainer_renewal(store, membership.id, "t1", 20000, now=NOW)
    addon_id, assignment_id = submission.addon.id, submission.assignment.id
    sink = MemoryAuditSink()

    result = reject_trainer_renewal(store, ADMIN, membership.id, reason="Wrong amount", now=NOW, audit=sink)

    assert store.db.get(MembershipPayment, submission.payment.id).status == "rejected"
    assert store.db.get(MembershipAddon, addon_id) is None
    assert all(a.id != assignment_id for a in store.list_assignments(membership.id))
    entry = sink.entries[-1]
    assert entry.action == audit_actions.TRAINER_RENEWAL_REJECTED
    assert entry.details == "Wrong amount"
    assert entry.metadata == {"payment_id": submission.payment.id, "addon_id": addon_id, "assignment_id": assignment_id}
    assert "Reason: Wrong amount" in result.tasks[0].content
    assert store.get_membership(membership.id).trainer_period_end == NOW - timedelta(days=1)
