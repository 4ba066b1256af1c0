from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class APIResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


# Trainers
class TrainerCreate(BaseModel):
    id: Optional[str] = None
    name: str
    price_cents: int = Field(ge=0)
    user_id: Optional[str] = None
    is_active: bool = True


class TrainerOut(BaseModel):
    id: str
    name: str
    price_cents: int
    is_active: bool
    user_id: Optional[str] = None

    model_config = dict(from_attributes=True)


class TrainersListResponse(BaseModel):
    items: List[TrainerOut]
    total: int


# Memberships
class MembershipCreate(BaseModel):
    user_id: str
    plan_name: str
    plan_mode: str = Field(default="online", pattern="^(online|in_gym)$")
    duration_months: int = Field(default=1, ge=1, le=36)
    price_cents: int = Field(ge=0)
    trainer_id: Optional[str] = None
    trainer_addon: bool = False
    in_gym_addon_cents: Optional[int] = Field(default=None, ge=0)


class MembershipRef(BaseModel):
    id: int


class MembershipOut(BaseModel):
    id: int
    user_id: str
    plan_name: str
    plan_mode: str
    duration_months: int
    price_cents: int
    status: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    membership_start_date: Optional[datetime] = None
    membership_end_date: Optional[datetime] = None
    grace_period_end: Optional[datetime] = None
    trainer_id: Optional[str] = None
    trainer_assigned: bool
    trainer_addon: bool
    trainer_period_end: Optional[datetime] = None
    trainer_grace_period_end: Optional[datetime] = None
    renewal_of_membership_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = dict(from_attributes=True)


class MembershipsListResponse(BaseModel):
    items: List[MembershipOut]
    total: int


class PaymentSubmit(BaseModel):
    id: int
    amount_cents: int = Field(gt=0)
    transaction_id: Optional[str] = None
    # renewal payments only
    trainer_id: Optional[str] = None
    trainer_addon: bool = False


class TrainerRenewalRequest(BaseModel):
    id: int
    trainer_id: str
    amount_cents: int = Field(gt=0)
    transaction_id: Optional[str] = None


class PaymentOut(BaseModel):
    id: int
    membership_id: int
    amount_cents: int
    status: str
    payment_purpose: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: datetime
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None

    model_config = dict(from_attributes=True)


class ClassifiedPaymentOut(PaymentOut):
    resolved_purpose: str
    purpose_source: str
    reason: str


class PaymentsListResponse(BaseModel):
    items: List[ClassifiedPaymentOut]
    total: int


class SubmissionResponse(BaseModel):
    ok: bool = True
    membership: MembershipOut
    payment: Optional[PaymentOut] = None
    addon_id: Optional[int] = None
    assignment_id: Optional[int] = None
    trainer_period_end: Optional[datetime] = None


# Admin actions
class RejectRequest(BaseModel):
    id: int
    reason: Optional[str] = None


class AssignTrainerRequest(BaseModel):
    id: int
    trainer_id: str


class ActionResponse(BaseModel):
    ok: bool = True
    membership: MembershipOut
    is_renewal: bool = False
    provenance: Optional[str] = None
    payment_id: Optional[int] = None
    payment_purpose: Optional[str] = None
    purpose_source: Optional[str] = None
    trainer_period_end: Optional[datetime] = None
    superseded_payments: int = 0
    tasks: List[Dict[str, Any]] = []


# Read models
class EligibilityOut(BaseModel):
    is_eligible: bool
    reason: Optional[str] = None
    failing_constraint: Optional[str] = None
    remaining_plan_days: Optional[int] = None
    max_trainer_renewal_days: Optional[int] = None
    grace_days_remaining: Optional[int] = None
    in_grace_period: bool = False


class RenewalEligibilityResponse(BaseModel):
    membership_id: int
    trainer_renewal: EligibilityOut
    membership_renewal: EligibilityOut
    trainer_renewal_explicit: EligibilityOut
    badge: Optional[str] = None
    trainer_access: str


class ChartResponsibilityOut(BaseModel):
    membership_id: int
    should_upload: str
    reason: str
    can_trainer_upload: bool
    can_admin_upload: bool
    needs_workout_charts: bool
    needs_diet_charts: bool


# Invoices
class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    payment_id: int
    membership_id: int
    invoice_type: str
    amount_cents: int
    addon_id: Optional[int] = None
    correlation: Optional[str] = None
    generated_by: Optional[str] = None
    created_at: datetime

    model_config = dict(from_attributes=True)


class InvoicesListResponse(BaseModel):
    items: List[InvoiceOut]
    total: int


# Expiry sweep
class ExpiryCheckRequest(BaseModel):
    now: Optional[datetime] = None
    notification_days: Optional[int] = Field(default=None, ge=0, le=60)


class ExpiryCheckResponse(BaseModel):
    ok: bool = True
    processed: Dict[str, int]
    orphaned_payments: List[Dict[str, Any]] = []
