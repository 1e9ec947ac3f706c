# gymcoach/routers/rms.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymcoach import auth, models, schemas
from gymcoach.database import get_db
from gymcoach.feature_guard import require_progress_tracking
from gymcoach.subscription_state import to_utc_naive

router = APIRouter(prefix="/rms", tags=["rms"])


@router.get("", response_model=list[schemas.RMOut])
def list_rms(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    return list(
        db.scalars(
            select(models.RMRecord)
            .where(models.RMRecord.user_id == user.id)
            .order_by(models.RMRecord.recorded_at.desc(), models.RMRecord.id.desc())
        )
    )


@router.post("", response_model=schemas.RMOut, status_code=200)
def create_rm(
    payload: schemas.RMCreateIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_progress_tracking),
):
    rm = models.RMRecord(
        user_id=user.id,
        exercise=payload.exercise,
        weight=payload.weight,
        recorded_at=to_utc_naive(payload.recorded_at) or models.utcnow(),
    )
    db.add(rm)
    db.commit()
    db.refresh(rm)
    return rm
