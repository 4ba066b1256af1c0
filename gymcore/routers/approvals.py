from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from fastapi import APIRouter, BackgroundTasks, Depends

from ..approval import (
    AdminIdentity,
    ApprovalResult,
    approve_membership,
    approve_trainer_renewal,
    assign_trainer,
    reject_membership,
    reject_trainer_renewal,
)
from ..deps import get_store, require_admin
from ..outbox import OutboundTask, dispatch_tasks
from ..schemas import ActionResponse, AssignTrainerRequest, MembershipRef, RejectRequest
from ..store import MembershipStore
from .memberships import membership_out


router = APIRouter(prefix="/api", tags=["approvals"])


@router.post("/memberships.approve", response_model=ActionResponse)
def memberships_approve(
    payload: MembershipRef,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
    admin: AdminIdentity = Depends(require_admin),
):
    result = approve_membership(store, admin, payload.id)
    return _respond(result, store, background_tasks)


@router.post("/memberships.reject", response_model=ActionResponse)
def memberships_reject(
    payload: RejectRequest,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
    admin: AdminIdentity = Depends(require_admin),
):
    result = reject_membership(store, admin, payload.id, payload.reason)
    return _respond(result, store, background_tasks)


@router.post("/memberships.approveTrainerRenewal", response_model=ActionResponse)
def memberships_approve_trainer_renewal(
    payload: MembershipRef,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
    admin: AdminIdentity = Depends(require_admin),
):
    result = approve_trainer_renewal(store, admin, payload.id)
    return _respond(result, store, background_tasks)


@router.post("/memberships.rejectTrainerRenewal", response_model=ActionResponse)
def memberships_reject_trainer_renewal(
    payload: RejectRequest,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
    admin: AdminIdentity = Depends(require_admin),
):
    result = reject_trainer_renewal(store, admin, payload.id, payload.reason)
    return _respond(result, store, background_tasks)


@router.post("/memberships.assignTrainer", response_model=ActionResponse)
def memberships_assign_trainer(
    payload: AssignTrainerRequest,
    background_tasks: BackgroundTasks,
    store: MembershipStore = Depends(get_store),
    admin: AdminIdentity = Depends(require_admin),
):
    result = assign_trainer(store, admin, payload.id, payload.trainer_id)
    return _respond(result, store, background_tasks)


def _respond(result: ApprovalResult, store: MembershipStore, background_tasks: BackgroundTasks) -> ActionResponse:
    if result.tasks:
        background_tasks.add_task(dispatch_tasks, list(result.tasks), store.db.get_bind())
    return ActionResponse(
        membership=membership_out(result.membership),
        is_renewal=result.is_renewal,
        provenance=result.provenance.describe() if result.provenance is not None else None,
        payment_id=result.payment.id if result.payment is not None else None,
        payment_purpose=result.classification.purpose if result.classification is not None else None,
        purpose_source=result.classification.source.value if result.classification is not None else None,
        trainer_period_end=result.trainer_period.end if result.trainer_period is not None else None,
        superseded_payments=result.superseded_payments,
        tasks=_tasks_out(result.tasks),
    )


def _tasks_out(tasks: List[OutboundTask]) -> List[Dict[str, Any]]:
    return [{"kind": type(t).__name__, **asdict(t)} for t in tasks]
