from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..classifier import ClassificationContext, classify_payments
from ..deps import get_db, get_store, require_admin
from ..eligibility import (
    Eligibility,
    check_trainer_renewal_eligibility,
    get_renewal_eligibility_status,
)
from ..enrollment import request_trainer_renewal, submit_membership, submit_payment
from ..errors import MissingReference
from ..grace import trainer_access_status
from ..models import Membership
from ..outbox import dispatch_tasks
from ..periods import membership_end, membership_start, utcnow
from ..schemas import (
    APIResponse,
    ChartResponsibilityOut,
    ClassifiedPaymentOut,
    EligibilityOut,
    MembershipCreate,
    MembershipOut,
    MembershipRef,
    MembershipsListResponse,
    PaymentOut,
    PaymentsListResponse,
    PaymentSubmit,
    RenewalEligibilityResponse,
    SubmissionResponse,
    TrainerRenewalRequest,
)
from ..store import MembershipStore
from ..trainer_periods import needs_diet_charts, needs_workout_charts, resolve_chart_responsibility


router = APIRouter(prefix="/api", tags=["memberships"], dependencies=[Depends(require_admin)])


@router.post("/memberships.create", response_model=SubmissionResponse)
def memberships_create(payload: MembershipCreate, store: MembershipStore = Depends(get_store)):
    submission = submit_membership(
        store,
        user_id=payload.user_id,
        plan_name=payload.plan_name,
        duration_months=payload.duration_months,
        price_cents=payload.price_cents,
        plan_mode=payload.plan_mode,
        trainer_id=payload.trainer_id,
        trainer_addon=payload.trainer_addon,
        in_gym_addon_cents=payload.in_gym_addon_cents,
    )
    return _submission_out(submission)


@router.get("/memberships.get", response_model=MembershipOut)
def memberships_get(id: int = Query(...), store: MembershipStore = Depends(get_store)):
    return membership_out(_load(store, id))


@router.get("/memberships.list", response_model=MembershipsListResponse)
def memberships_list(
    db: Session = Depends(get_db),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    status: Optional[str] = None,
    user_id: Optional[str] = None,
):
    stmt = select(Membership)
    if status:
        stmt = stmt.where(Membership.status == status)
    if user_id:
        stmt = stmt.where(Membership.user_id == user_id)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.order_by(Membership.created_at.desc(), Membership.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    return {"items": [membership_out(m) for m in rows], "total": total}


@router.post("/memberships.delete", response_model=APIResponse)
def memberships_delete(payload: MembershipRef, store: MembershipStore = Depends(get_store)):
    membership = _load(store, payload.id)
    store.delete(membership)
    return APIResponse(ok=True, message="deleted")


@router.post("/memberships.submitPayment", response_model=SubmissionResponse)
def memberships_submit_payment(
    payload: PaymentSubmit,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
):
    submission = submit_payment(
        store,
        payload.id,
        payload.amount_cents,
        payload.transaction_id,
        trainer_id=payload.trainer_id,
        trainer_addon=payload.trainer_addon,
    )
    background_tasks.add_task(dispatch_tasks, submission.tasks, store.db.get_bind())
    return _submission_out(submission)


@router.post("/memberships.renewTrainer", response_model=SubmissionResponse)
def memberships_renew_trainer(
    payload: TrainerRenewalRequest,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
):
    submission = request_trainer_renewal(
        store,
        payload.id,
        payload.trainer_id,
        payload.amount_cents,
        transaction_id=payload.transaction_id,
    )
    background_tasks.add_task(dispatch_tasks, submission.tasks, store.db.get_bind())
    return _submission_out(submission)


@router.get("/memberships.eligibility", response_model=RenewalEligibilityResponse)
def memberships_eligibility(id: int = Query(...), store: MembershipStore = Depends(get_store)):
    membership = _load(store, id)
    now = utcnow()
    status = get_renewal_eligibility_status(membership, now)
    return RenewalEligibilityResponse(
        membership_id=membership.id,
        trainer_renewal=_eligibility_out(
            check_trainer_renewal_eligibility(membership.status, membership_end(membership), now)
        ),
        membership_renewal=_eligibility_out(status.membership_renewal),
        trainer_renewal_explicit=_eligibility_out(status.trainer_renewal),
        badge=status.badge,
        trainer_access=trainer_access_status(
            membership.trainer_assigned, membership.trainer_period_end, membership.trainer_grace_period_end, now
        ),
    )


@router.get("/memberships.chartResponsibility", response_model=ChartResponsibilityOut)
def memberships_chart_responsibility(id: int = Query(...), store: MembershipStore = Depends(get_store)):
    membership = _load(store, id)
    now = utcnow()
    start = membership_start(membership) or membership.created_at
    resolved = resolve_chart_responsibility(
        membership.plan_name, membership.trainer_addon, membership.trainer_period_end, start, now
    )
    return ChartResponsibilityOut(
        membership_id=membership.id,
        should_upload=resolved.should_upload,
        reason=resolved.reason,
        can_trainer_upload=resolved.can_trainer_upload,
        can_admin_upload=resolved.can_admin_upload,
        needs_workout_charts=needs_workout_charts(membership.plan_name, membership.trainer_addon),
        needs_diet_charts=needs_diet_charts(membership.plan_name, membership.trainer_addon),
    )


@router.get("/memberships.payments", response_model=PaymentsListResponse)
def memberships_payments(id: int = Query(...), store: MembershipStore = Depends(get_store)):
    membership = _load(store, id)
    context = ClassificationContext.for_membership(membership)
    items = []
    for payment, classification in classify_payments(context.payments, context):
        out = PaymentOut.model_validate(payment).model_dump()
        items.append(
            ClassifiedPaymentOut(
                **out,
                resolved_purpose=classification.purpose,
                purpose_source=classification.source.value,
                reason=classification.reason,
            )
        )
    return {"items": items, "total": len(items)}


def _load(store: MembershipStore, membership_id: int) -> Membership:
    membership = store.get_membership(membership_id)
    if membership is None:
        raise MissingReference(f"Membership {membership_id} not found")
    return membership


def membership_out(m: Membership) -> MembershipOut:
    return MembershipOut.model_validate(m)


def _eligibility_out(e: Eligibility) -> EligibilityOut:
    return EligibilityOut(
        is_eligible=e.is_eligible,
        reason=e.reason,
        failing_constraint=e.failing_constraint,
        remaining_plan_days=e.remaining_plan_days,
        max_trainer_renewal_days=e.max_trainer_renewal_days,
        grace_days_remaining=e.grace_days_remaining,
        in_grace_period=e.in_grace_period,
    )


def _submission_out(submission) -> SubmissionResponse:
    return SubmissionResponse(
        membership=membership_out(submission.membership),
        payment=PaymentOut.model_validate(submission.payment) if submission.payment is not None else None,
        addon_id=submission.addon.id if submission.addon is not None else None,
        assignment_id=submission.assignment.id if submission.assignment is not None else None,
        trainer_period_end=submission.trainer_period.end if submission.trainer_period is not None else None,
    )
