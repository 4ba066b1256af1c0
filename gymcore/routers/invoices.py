from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..deps import get_db, require_admin
from ..models import Invoice
from ..schemas import InvoiceOut, InvoicesListResponse


router = APIRouter(prefix="/api", tags=["invoices"], dependencies=[Depends(require_admin)])


@router.get("/invoices.list", response_model=InvoicesListResponse)
def invoices_list(
    db: Session = Depends(get_db),
    membership_id: Optional[int] = None,
    invoice_type: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    stmt = select(Invoice)
    if membership_id is not None:
        stmt = stmt.where(Invoice.membership_id == membership_id)
    if invoice_type:
        stmt = stmt.where(Invoice.invoice_type == invoice_type)
    rows = db.execute(stmt.order_by(Invoice.created_at.desc()).limit(limit)).scalars().all()
    return {"items": [InvoiceOut.model_validate(r) for r in rows], "total": len(rows)}
