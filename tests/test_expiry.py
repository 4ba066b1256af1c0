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
from gymcore.audit import MemoryAuditSink
from gymcore.database import Base, build_engine, build_session_factory
from gymcore.expiry import run_expiry_sweep
from gymcore.models import Membership, MembershipPayment, Trainer, TrainerAssignment
from gymcore.store import MembershipStore


NOW = datetime(2024, 1, 12, 6, 0)


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


def _membership(store: MembershipStore, **kw) -> Membership:
    values = dict(user_id="u1", plan_name="Basic", duration_months=1, price_cents=10000, status="active")
    values.update(kw)
    return store.add(Membership(**values))


def test_ended_membership_enters_grace_once(store: MembershipStore) -> None:
    membership = _membership(store, membership_end_date=datetime(2024, 1, 10))
    sink = MemoryAuditSink()

    report = run_expiry_sweep(store, now=NOW, audit=sink)

    refreshed = store.get_membership(membership.id)
    assert refreshed.status == "grace_period"
    assert refreshed.grace_period_end == datetime(2024, 1, 25)
    assert report.grace_started == 1
    assert [t.type for t in report.tasks] == ["grace_period_started"]
    assert sink.actions() == [audit_actions.GRACE_PERIOD_STARTED]

    again = run_expiry_sweep(store, now=NOW, audit=sink)
    assert again.grace_started == 0
    assert again.expired == 0
    assert store.get_membership(membership.id).grace_period_end == datetime(2024, 1, 25)


def test_legacy_approved_status_and_end_date_are_swept(store: MembershipStore) -> None:
    membership = _membership(store, status="approved", end_date=datetime(2024, 1, 11))
    report = run_expiry_sweep(store, now=NOW, audit=MemoryAuditSink())
    assert report.grace_started == 1
    assert store.get_membership(membership.id).status == "grace_period"


def test_grace_period_lapses_to_expired(store: MembershipStore) -> None:
    membership = _membership(
        store,
        status="grace_period",
        membership_end_date=NOW - timedelta(days=16),
        grace_period_end=NOW - timedelta(seconds=1),
        trainer_id="t1",
        trainer_assigned=True,
        trainer_period_end=NOW - timedelta(days=16),
    )
    store.add(TrainerAssignment(membership_id=membership.id, trainer_id="t1", status="assigned"))
    sink = MemoryAuditSink()

    report = run_expiry_sweep(store, now=NOW, audit=sink)

    refreshed = store.get_membership(membership.id)
    assert refreshed.status == "expired"
    assert refreshed.trainer_assigned is False
    assert [a.status for a in store.list_assignments(membership.id)] == ["expired"]
    assert report.expired == 1
    assert sink.actions() == [audit_actions.MEMBERSHIP_EXPIRED]
    assert report.tasks[0].type == "membership_expired"


def test_grace_reminders_fire_on_milestones(store: MembershipStore) -> None:
    on_milestone = _membership(
        store, status="grace_period", membership_end_date=NOW - timedelta(days=8), grace_period_end=NOW + timedelta(days=7)
    )
    _membership(
        store, status="grace_period", membership_end_date=NOW - timedelta(days=4), grace_period_end=NOW + timedelta(days=11)
    )

    report = run_expiry_sweep(store, now=NOW, audit=MemoryAuditSink())

    assert report.grace_reminders == 1
    assert report.tasks[0].metadata == {"membership_id": on_milestone.id}
    assert report.tasks[0].content == "7 days left to renew your Basic membership."


def test_expiring_soon_notice(store: MembershipStore) -> None:
    _membership(store, membership_end_date=NOW + timedelta(days=3))
    _membership(store, membership_end_date=NOW + timedelta(days=10))

    report = run_expiry_sweep(store, now=NOW, notification_days=4, audit=MemoryAuditSink())

    assert report.expiring_soon == 1
    assert [t.type for t in report.tasks] == ["membership_expiring"]


def test_trainer_grace_then_unassignment(store: MembershipStore) -> None:
    membership = _membership(
        store,
        membership_end_date=NOW + timedelta(days=90),
        trainer_id="t1",
        trainer_assigned=True,
        trainer_period_end=NOW - timedelta(days=1),
    )
    store.add(TrainerAssignment(membership_id=membership.id, trainer_id="t1", status="assigned"))
    sink = MemoryAuditSink()

    first = run_expiry_sweep(store, now=NOW, audit=sink)
    assert first.trainer_grace_started == 1
    assert store.get_membership(membership.id).trainer_grace_period_end == NOW + timedelta(days=4)
    assert store.get_membership(membership.id).trainer_assigned is True

    later = NOW + timedelta(days=5)
    second = run_expiry_sweep(store, now=later, audit=sink)
    refreshed = store.get_membership(membership.id)
    assert second.trainer_expired == 1
    assert refreshed.trainer_assigned is False
    assert refreshed.trainer_id is None
    assert refreshed.status == "active"
    assert [a.status for a in store.list_assignments(membership.id)] == ["expired"]
    assert {t.recipient_id for t in second.tasks} == {"u1", "trainer-user"}
    assert sink.actions() == [
        audit_actions.TRAINER_GRACE_PERIOD_STARTED,
        audit_actions.TRAINER_GRACE_PERIOD_EXPIRED,
    ]


def test_trainer_expiring_soon(store: MembershipStore) -> None:
    _membership(
        store,
        membership_end_date=NOW + timedelta(days=90),
        trainer_id="t1",
        trainer_assigned=True,
        trainer_period_end=NOW + timedelta(days=2),
    )
    report = run_expiry_sweep(store, now=NOW, audit=MemoryAuditSink())
    assert report.trainer_expiring_soon == 1


def test_orphaned_payments_are_reported_not_repaired(store: MembershipStore) -> None:
    stuck = _membership(store, status="pending")
    payment = store.add(
        MembershipPayment(membership_id=stuck.id, amount_cents=100, status="verified", verified_at=NOW)
    )
    rejected = _membership(store, status="rejected")
    store.add(MembershipPayment(membership_id=rejected.id, amount_cents=100, status="verified"))

    report = run_expiry_sweep(store, now=NOW, audit=MemoryAuditSink())

    assert report.orphaned_payments == [
        {
            "payment_id": payment.id,
            "membership_id": stuck.id,
            "membership_status": "pending",
            "verified_at": NOW.isoformat(),
        }
    ]
    assert store.get_membership(stuck.id).status == "pending"
    assert report.counts()["orphaned_payments"] == 1


def test_no_reminder_in_the_sweep_that_starts_grace(store: MembershipStore) -> None:
    _membership(store, membership_end_date=NOW)
    report = run_expiry_sweep(store, now=NOW, audit=MemoryAuditSink())
    assert report.grace_started == 1
    assert report.grace_reminders == 0

    next_day = run_expiry_sweep(store, now=NOW + timedelta(days=8), audit=MemoryAuditSink())
    assert next_day.grace_reminders == 1
