from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Iterator

import httpx
import pytest
from sqlalchemy import select

# Ensure project root on path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gymcore.config import get_settings
from gymcore.database import Base, build_engine, build_session_factory
from gymcore.errors import MissingReference
from gymcore.invoices import (
    LocalInvoiceGenerator,
    WebhookInvoiceGenerator,
    get_invoice_generator,
    make_invoice_number,
)
from gymcore.models import Invoice, Membership, MembershipAddon, MembershipPayment, Notification, TrainerAssignment
from gymcore.notifications import NotificationSink, WebhookNotificationSink, get_notification_sink
from gymcore.outbox import InvoiceTask, NotificationTask, dispatch_tasks


@pytest.fixture()
def engine(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GYM_NOTIFICATION_PROVIDER", "database")
    monkeypatch.setenv("GYM_INVOICE_PROVIDER", "local")
    monkeypatch.setenv("GYM_INVOICE_PREFIX", "GYM")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    built = build_engine("sqlite://")
    Base.metadata.create_all(bind=built)
    yield built
    built.dispose()
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def db(engine) -> Iterator:
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


def _paid_membership(db, purpose: str = "initial_purchase", amount_cents: int = 25000):
    membership = Membership(user_id="u1", plan_name="Basic", duration_months=1, price_cents=amount_cents, status="active")
    db.add(membership)
    db.commit()
    payment = MembershipPayment(
        membership_id=membership.id, amount_cents=amount_cents, status="verified", payment_purpose=purpose
    )
    db.add(payment)
    db.commit()
    return membership, payment


def test_invoice_number_format() -> None:
    assert re.fullmatch(r"INV-\d{8}-[0-9A-F]{6}", make_invoice_number())
    assert make_invoice_number("GYM").startswith("GYM-")


def test_dispatch_writes_notifications_and_invoices(engine, db) -> None:
    membership, payment = _paid_membership(db)
    tasks = [
        NotificationTask("u1", "membership_approved", "approved", {"membership_id": membership.id}),
        InvoiceTask(payment.id, membership.id, "initial_purchase", "admin@example.com"),
    ]

    assert dispatch_tasks(tasks, engine) == 2

    notes = db.execute(select(Notification)).scalars().all()
    assert [(n.recipient_id, n.type, n.meta) for n in notes] == [
        ("u1", "membership_approved", {"membership_id": membership.id})
    ]
    invoice = db.execute(select(Invoice)).scalar_one()
    assert invoice.invoice_type == "initial_purchase"
    assert invoice.amount_cents == 25000
    assert invoice.generated_by == "admin@example.com"
    assert invoice.invoice_number.startswith("GYM-")


def test_invoices_are_idempotent_per_payment(db) -> None:
    membership, payment = _paid_membership(db)
    generator = LocalInvoiceGenerator(db)

    first = generator.generate_invoice(payment.id, membership.id, "initial_purchase", None)
    second = generator.generate_invoice(payment.id, membership.id, "initial_purchase", None)

    assert first.created is True
    assert second.created is False
    assert second.invoice_number == first.invoice_number
    assert len(db.execute(select(Invoice)).scalars().all()) == 1


def test_trainer_renewal_invoice_resolves_addon(db) -> None:
    membership, payment = _paid_membership(db, purpose="trainer_renewal", amount_cents=20000)
    addon = MembershipAddon(membership_id=membership.id, addon_type="personal_trainer", price_cents=20000)
    db.add(addon)
    db.commit()
    db.add(
        TrainerAssignment(
            membership_id=membership.id, assignment_type="addon", meta={"payment_id": payment.id, "addon_id": addon.id}
        )
    )
    db.commit()

    LocalInvoiceGenerator(db).generate_invoice(payment.id, membership.id, "trainer_renewal", "admin@example.com")

    invoice = db.execute(select(Invoice)).scalar_one()
    assert invoice.addon_id == addon.id
    assert invoice.correlation == "explicit_reference"


def test_invoice_for_unknown_payment(db) -> None:
    with pytest.raises(MissingReference):
        LocalInvoiceGenerator(db).generate_invoice(404, 1, "initial_purchase", None)


class ExplodingSink(NotificationSink):
    def notify(self, recipient_id, type, content, metadata=None) -> None:
        raise RuntimeError("smtp down")


def test_dispatch_never_raises(engine, db, caplog: pytest.LogCaptureFixture) -> None:
    membership, payment = _paid_membership(db)
    tasks = [
        NotificationTask("u1", "membership_approved", "approved"),
        InvoiceTask(payment.id, membership.id, "initial_purchase"),
        InvoiceTask(9999, membership.id, "initial_purchase"),
    ]

    done = dispatch_tasks(tasks, engine, notifier_factory=lambda session: ExplodingSink())

    assert done == 1
    assert len(db.execute(select(Invoice)).scalars().all()) == 1
    assert "outbound_task_failed" in caplog.text


def test_provider_selection(monkeypatch: pytest.MonkeyPatch, db) -> None:
    monkeypatch.setenv("GYM_NOTIFICATION_PROVIDER", "webhook")
    monkeypatch.setenv("GYM_NOTIFICATION_WEBHOOK_URL", "http://notify.local/hook")
    monkeypatch.setenv("GYM_INVOICE_PROVIDER", "webhook")
    get_settings.cache_clear()  # type: ignore[attr-defined]

    sink = get_notification_sink(db)
    assert isinstance(sink, WebhookNotificationSink)
    assert sink.url == "http://notify.local/hook"
    with pytest.raises(RuntimeError):
        get_invoice_generator(db)


def test_webhook_invoice_generator_posts_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"invoice_id": 17, "invoice_number": "INV-REMOTE-1"})

    real_client = httpx.Client
    monkeypatch.setattr(httpx, "Client", lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw))

    ref = WebhookInvoiceGenerator("http://billing.local/invoices", token="secret").generate_invoice(
        5, 2, "membership_renewal", "admin@example.com"
    )

    assert (ref.invoice_id, ref.invoice_number, ref.created) == ("17", "INV-REMOTE-1", True)
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {
        "payment_id": 5,
        "membership_id": 2,
        "invoice_type": "membership_renewal",
        "generated_by": "admin@example.com",
    }
