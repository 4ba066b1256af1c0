from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends

from ..config import get_settings
from ..deps import get_store, require_admin
from ..expiry import run_expiry_sweep
from ..outbox import dispatch_tasks
from ..periods import as_naive_utc
from ..schemas import ExpiryCheckRequest, ExpiryCheckResponse
from ..store import MembershipStore


router = APIRouter(prefix="/api", tags=["expiries"], dependencies=[Depends(require_admin)])


@router.post("/expiries.check", response_model=ExpiryCheckResponse)
def expiries_check(
    background_tasks: BackgroundTasks,
    payload: Optional[ExpiryCheckRequest] = Body(default=None),
    store: MembershipStore = Depends(get_store),
):
    payload = payload or ExpiryCheckRequest()
    days = payload.notification_days
    if days is None:
        days = get_settings().expiry_notification_days
    report = run_expiry_sweep(store, now=as_naive_utc(payload.now) if payload.now else None, notification_days=days)
    if report.tasks:
        background_tasks.add_task(dispatch_tasks, list(report.tasks), store.db.get_bind())
    return ExpiryCheckResponse(processed=report.counts(), orphaned_payments=report.orphaned_payments)
