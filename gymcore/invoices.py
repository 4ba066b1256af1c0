from __future__ import annotations

"""
Invoice generation for verified payments.

``LocalInvoiceGenerator`` writes one ``Invoice`` row per payment (repeat calls
return the existing one); ``WebhookInvoiceGenerator`` hands the same request
to an external renderer over HTTP.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from .classifier import TRAINER_RENEWAL, resolve_trainer_addon
from .config import get_settings
from .errors import MissingReference
from .models import Invoice, MembershipAddon, MembershipPayment, TrainerAssignment
from .periods import utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceRef:
    invoice_id: str
    invoice_number: str
    created: bool = True


class InvoiceGenerator:
    def generate_invoice(
        self, payment_id: int, membership_id: int, purpose: str, approver: Optional[str]
    ) -> InvoiceRef:  # pragma: no cover - interface
        raise NotImplementedError


def make_invoice_number(prefix: str = "INV") -> str:
    return f"{prefix}-{utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class LocalInvoiceGenerator(InvoiceGenerator):
    def __init__(self, db: Session, prefix: str = "INV") -> None:
        self.db = db
        self.prefix = prefix

    def generate_invoice(
        self, payment_id: int, membership_id: int, purpose: str, approver: Optional[str]
    ) -> InvoiceRef:
        existing = self.db.execute(select(Invoice).where(Invoice.payment_id == payment_id)).scalar_one_or_none()
        if existing is not None:
            return InvoiceRef(existing.id, existing.invoice_number, created=False)

        payment = self.db.get(MembershipPayment, payment_id)
        if payment is None or payment.membership_id != membership_id:
            raise MissingReference(f"Payment {payment_id} not found for membership {membership_id}")

        addon_id = None
        correlation = None
        if purpose == TRAINER_RENEWAL:
            addons = self.db.execute(
                select(MembershipAddon).where(MembershipAddon.membership_id == membership_id)
            ).scalars().all()
            assignments = self.db.execute(
                select(TrainerAssignment).where(TrainerAssignment.membership_id == membership_id)
            ).scalars().all()
            match = resolve_trainer_addon(payment, addons, assignments)
            addon_id = match.addon.id if match.addon is not None else None
            correlation = match.method

        invoice = Invoice(
            id=str(uuid.uuid4()),
            invoice_number=make_invoice_number(self.prefix),
            payment_id=payment_id,
            membership_id=membership_id,
            invoice_type=purpose,
            amount_cents=payment.amount_cents,
            addon_id=addon_id,
            correlation=correlation,
            generated_by=approver,
        )
        self.db.add(invoice)
        self.db.commit()
        logger.info(
            "invoice_generated number=%s payment_id=%s purpose=%s correlation=%s",
            invoice.invoice_number,
            payment_id,
            purpose,
            correlation,
        )
        return InvoiceRef(invoice.id, invoice.invoice_number)


class WebhookInvoiceGenerator(InvoiceGenerator):
    def __init__(self, url: str, token: Optional[str] = None, timeout: float = 10.0) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout

    def generate_invoice(
        self, payment_id: int, membership_id: int, purpose: str, approver: Optional[str]
    ) -> InvoiceRef:
        payload = {
            "payment_id": payment_id,
            "membership_id": membership_id,
            "invoice_type": purpose,
            "generated_by": approver,
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(self.url, headers=headers, json=payload)
            resp.raise_for_status()
            data = resp.json()
        return InvoiceRef(str(data["invoice_id"]), data["invoice_number"], created=bool(data.get("created", True)))


def get_invoice_generator(db: Session) -> InvoiceGenerator:
    settings = get_settings()
    if settings.invoice_provider == "webhook":
        if not settings.invoice_webhook_url:
            raise RuntimeError("Invoice webhook URL not configured")
        return WebhookInvoiceGenerator(
            settings.invoice_webhook_url, token=settings.api_token, timeout=settings.webhook_timeout_seconds
        )
    return LocalInvoiceGenerator(db, prefix=settings.invoice_prefix)
