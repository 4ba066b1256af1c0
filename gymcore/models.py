from __future__ import annotations

"""
Core data models: memberships and the payments, addons and trainer
assignments they own, plus the referenced trainers and the notification,
invoice and audit records produced by lifecycle operations.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .periods import utcnow


# Membership statuses
AWAITING_PAYMENT = "awaiting_payment"
PENDING = "pending"
ACTIVE = "active"
GRACE_PERIOD = "grace_period"
EXPIRED = "expired"
REJECTED = "rejected"
CANCELLED = "cancelled"

MEMBERSHIP_STATUSES = (AWAITING_PAYMENT, PENDING, ACTIVE, GRACE_PERIOD, EXPIRED, REJECTED, CANCELLED)
APPROVABLE_STATUSES = (PENDING, GRACE_PERIOD)

# Payment statuses
PAYMENT_PENDING = "pending"
PAYMENT_VERIFIED = "verified"
PAYMENT_REJECTED = "rejected"

# Addons
ADDON_PERSONAL_TRAINER = "personal_trainer"
ADDON_IN_GYM = "in_gym"
ADDON_PENDING = "pending"
ADDON_ACTIVE = "active"

# Trainer assignments
ASSIGNMENT_ADDON = "addon"
ASSIGNMENT_INCLUDED = "included"
ASSIGNMENT_PENDING = "pending"
ASSIGNMENT_ASSIGNED = "assigned"
ASSIGNMENT_EXPIRED = "expired"


class Trainer(Base):
    __tablename__ = "trainers"
    """Personal trainers; referenced by memberships, never owned by them."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Membership(Base):
    __tablename__ = "memberships"
    """
    Root aggregate of the lifecycle. ``membership_start_date``/``membership_end_date``
    are authoritative; ``start_date``/``end_date`` are kept in sync for legacy readers.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_name: Mapped[str] = mapped_column(String(128), nullable=False)
    plan_mode: Mapped[str] = mapped_column(String(16), default="online", nullable=False)
    duration_months: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default=AWAITING_PAYMENT, nullable=False)

    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    membership_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    membership_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    grace_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    trainer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("trainers.id"), nullable=True)
    trainer_assigned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trainer_addon: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trainer_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    trainer_grace_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    renewal_of_membership_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    payments: Mapped[list["MembershipPayment"]] = relationship(
        "MembershipPayment", back_populates="membership", cascade="all, delete-orphan", passive_deletes=True
    )
    addons: Mapped[list["MembershipAddon"]] = relationship(
        "MembershipAddon", back_populates="membership", cascade="all, delete-orphan", passive_deletes=True
    )
    trainer_assignments: Mapped[list["TrainerAssignment"]] = relationship(
        "TrainerAssignment", back_populates="membership", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_memberships_status", "status"),
        Index("ix_memberships_trainer_id", "trainer_id"),
    )


class MembershipPayment(Base):
    __tablename__ = "membership_payments"
    """Proof-of-payment submissions. ``payment_purpose`` is null on rows created before explicit tagging."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    membership_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=PAYMENT_PENDING, nullable=False)
    payment_purpose: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    membership: Mapped[Membership] = relationship(Membership, back_populates="payments")

    __table_args__ = (
        Index("ix_membership_payments_status", "membership_id", "status"),
        Index("ix_membership_payments_created_at", "created_at"),
    )


class MembershipAddon(Base):
    __tablename__ = "membership_addons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    membership_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False, index=True
    )
    addon_type: Mapped[str] = mapped_column(String(32), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ADDON_PENDING, nullable=False)
    trainer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("trainers.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    membership: Mapped[Membership] = relationship(Membership, back_populates="addons")

    __table_args__ = (
        Index("ix_membership_addons_type_status", "membership_id", "addon_type", "status"),
    )


class TrainerAssignment(Base):
    __tablename__ = "trainer_assignments"
    """
    Trainer access windows. ``meta`` (column ``metadata``) holds explicit
    back-references such as ``payment_id`` and ``addon_id``.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    membership_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trainer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("trainers.id"), nullable=True)
    assignment_type: Mapped[str] = mapped_column(String(16), default=ASSIGNMENT_ADDON, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ASSIGNMENT_PENDING, nullable=False)
    period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    membership: Mapped[Membership] = relationship(Membership, back_populates="trainer_assignments")

    __table_args__ = (
        Index("ix_trainer_assignments_status", "membership_id", "status"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"
    """One invoice per verified payment, typed by the payment's resolved purpose."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    payment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("membership_payments.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    membership_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    addon_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    correlation: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    generated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    """Append-only structured audit trail for lifecycle operations."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    membership_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    previous_status: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provenance: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("ix_audit_events_action", "action"),
    )
