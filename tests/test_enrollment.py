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

from gymcore.database import Base, build_engine, build_session_factory
from gymcore.enrollment import submit_membership, submit_payment
from gymcore.errors import InvalidRequest, MissingReference
from gymcore.models import Membership, Trainer
from gymcore.store import MembershipStore


@pytest.fixture()
def store() -> Iterator[MembershipStore]:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    db = build_session_factory(engine)()
    db.add_all(
        [
            Trainer(id="t1", name="Alex", price_cents=20000),
            Trainer(id="retired", name="Jo", price_cents=10000, is_active=False),
        ]
    )
    db.commit()
    try:
        yield MembershipStore(db)
    finally:
        db.close()
        engine.dispose()


def test_submit_with_trainer_addon(store: MembershipStore) -> None:
    submission = submit_membership(
        store, "u1", "Basic", duration_months=3, price_cents=30000, trainer_id="t1", trainer_addon=True
    )

    membership = submission.membership
    assert membership.status == "awaiting_payment"
    assert membership.trainer_addon is True
    assert membership.trainer_id is None
    assert submission.addon.addon_type == "personal_trainer"
    assert submission.addon.price_cents == 20000
    assert submission.addon.trainer_id == "t1"
    assert submission.assignment.status == "pending"
    assert submission.assignment.assignment_type == "addon"
    assert submission.assignment.meta == {"addon_id": submission.addon.id}
    assert submission.trainer_period is not None


def test_included_tier_keeps_selected_trainer(store: MembershipStore) -> None:
    submission = submit_membership(store, "u2", "Elite", duration_months=1, price_cents=50000, trainer_id="t1")
    assert submission.membership.trainer_id == "t1"
    assert submission.addon is None
    assert store.list_addons(submission.membership.id) == []


def test_in_gym_addon_is_recorded(store: MembershipStore) -> None:
    submission = submit_membership(
        store, "u3", "Regular Monthly", duration_months=1, price_cents=5000, plan_mode="in_gym", in_gym_addon_cents=1500
    )
    addons = store.list_addons(submission.membership.id)
    assert [(a.addon_type, a.price_cents) for a in addons] == [("in_gym", 1500)]


def test_submit_validation(store: MembershipStore) -> None:
    with pytest.raises(InvalidRequest):
        submit_membership(store, "u1", "Basic", duration_months=0, price_cents=100)
    with pytest.raises(InvalidRequest):
        submit_membership(store, "u1", "Basic", duration_months=1, price_cents=100, trainer_addon=True)
    with pytest.raises(InvalidRequest):
        submit_membership(store, "u1", "Basic", duration_months=1, price_cents=100, trainer_id="retired", trainer_addon=True)
    with pytest.raises(MissingReference):
        submit_membership(store, "u1", "Basic", duration_months=1, price_cents=100, trainer_id="ghost", trainer_addon=True)


def test_initial_payment_moves_membership_to_pending(store: MembershipStore) -> None:
    membership = submit_membership(store, "u1", "Premium", duration_months=1, price_cents=40000).membership

    submission = submit_payment(store, membership.id, 40000, transaction_id="TX-1")

    assert submission.payment.payment_purpose == "initial_purchase"
    assert submission.payment.status == "pending"
    assert store.get_membership(membership.id).status == "pending"
    task = submission.tasks[0]
    assert task.recipient_id is None
    assert task.metadata["purpose"] == "initial_purchase"

    with pytest.raises(InvalidRequest):
        submit_payment(store, membership.id, 40000)


def test_grace_period_payment_is_an_explicit_renewal(store: MembershipStore) -> None:
    end = datetime(2024, 1, 10)
    membership = store.add(
        Membership(
            user_id="u1",
            plan_name="Basic",
            duration_months=1,
            price_cents=10000,
            status="grace_period",
            membership_end_date=end,
            grace_period_end=end + timedelta(days=15),
        )
    )

    submission = submit_payment(store, membership.id, 10000)

    assert submission.payment.payment_purpose == "membership_renewal"
    refreshed = store.get_membership(membership.id)
    assert refreshed.status == "grace_period"
    assert refreshed.renewal_of_membership_id == membership.id

    with pytest.raises(InvalidRequest) as exc:
        submit_payment(store, membership.id, 10000)
    assert "already pending" in exc.value.message


def test_payments_refused_in_other_states(store: MembershipStore) -> None:
    for status in ("active", "expired", "rejected"):
        membership = store.add(
            Membership(user_id="u1", plan_name="Basic", duration_months=1, price_cents=1, status=status)
        )
        with pytest.raises(InvalidRequest):
            submit_payment(store, membership.id, 100)
    with pytest.raises(MissingReference):
        submit_payment(store, 12345, 100)
    with pytest.raises(InvalidRequest):
        submit_payment(store, membership.id, 0)


def test_renewal_payment_can_buy_trainer_addon(store: MembershipStore) -> None:
    end = datetime(2024, 1, 10)
    membership = store.add(
        Membership(
            user_id="u1",
            plan_name="Regular Monthly",
            duration_months=1,
            price_cents=5000,
            status="grace_period",
            membership_end_date=end,
            grace_period_end=end + timedelta(days=15),
        )
    )

    submission = submit_payment(store, membership.id, 25000, trainer_id="t1", trainer_addon=True)

    assert submission.payment.payment_purpose == "membership_renewal"
    assert submission.addon.status == "pending"
    assert submission.addon.price_cents == 20000
    assert submission.assignment.status == "pending"
    assert submission.assignment.trainer_id == "t1"
    assert submission.assignment.meta == {"payment_id": submission.payment.id, "addon_id": submission.addon.id}
    assert store.pending_trainer_addons(membership.id) == [submission.addon]


def test_trainer_addon_payment_validation(store: MembershipStore) -> None:
    fresh = submit_membership(store, "u1", "Regular Monthly", duration_months=1, price_cents=5000).membership
    with pytest.raises(InvalidRequest):
        submit_payment(store, fresh.id, 25000, trainer_id="t1", trainer_addon=True)
    assert store.list_payments(fresh.id) == []

    lapsed = store.add(
        Membership(
            user_id="u2",
            plan_name="Regular Monthly",
            duration_months=1,
            price_cents=5000,
            status="grace_period",
            membership_end_date=datetime(2024, 1, 10),
        )
    )
    with pytest.raises(InvalidRequest):
        submit_payment(store, lapsed.id, 25000, trainer_addon=True)
    with pytest.raises(InvalidRequest):
        submit_payment(store, lapsed.id, 25000, trainer_id="retired", trainer_addon=True)
    assert store.list_payments(lapsed.id) == []
