from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..deps import get_db, require_admin
from ..errors import InvalidRequest
from ..models import Trainer
from ..schemas import TrainerCreate, TrainerOut, TrainersListResponse


router = APIRouter(prefix="/api", tags=["trainers"], dependencies=[Depends(require_admin)])


@router.post("/trainers.create", response_model=TrainerOut)
def trainers_create(payload: TrainerCreate, db: Session = Depends(get_db)):
    trainer_id = payload.id or str(uuid.uuid4())
    if db.get(Trainer, trainer_id) is not None:
        raise InvalidRequest("Trainer already exists", {"trainer_id": trainer_id})
    trainer = Trainer(
        id=trainer_id,
        name=payload.name,
        price_cents=payload.price_cents,
        user_id=payload.user_id,
        is_active=payload.is_active,
    )
    db.add(trainer)
    db.commit()
    db.refresh(trainer)
    return trainer


@router.get("/trainers.list", response_model=TrainersListResponse)
def trainers_list(db: Session = Depends(get_db), active: Optional[bool] = None):
    stmt = select(Trainer).order_by(Trainer.name.asc())
    if active is not None:
        stmt = stmt.where(Trainer.is_active == active)
    items = db.execute(stmt).scalars().all()
    return {"items": [TrainerOut.model_validate(t) for t in items], "total": len(items)}
