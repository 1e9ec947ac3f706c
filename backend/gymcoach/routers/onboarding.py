# gymcoach/routers/onboarding.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymcoach import auth, ledger, models, schemas
from gymcoach.database import get_db
from gymcoach.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=schemas.TokenOut, status_code=201)
def register(payload: schemas.RegisterIn, db: Session = Depends(get_db)):
    """
    Self-service signup.
      COACH   -> user + coach profile (no trial yet, see POST /coaches/trial)
      STUDENT -> user + active link to an existing coach
    """
    email = str(payload.email).strip().lower()
    if db.scalar(select(models.User).where(models.User.email == email)):
        raise ValidationError("Email already registered")

    coach_profile = None
    if payload.role == auth.ROLE_STUDENT:
        coach_profile = ledger.get_coach_profile(db, payload.coach_id)
        if not coach_profile:
            raise ValidationError("Unknown coach.", extra={"coach_id": payload.coach_id})

    user = models.User(
        email=email,
        hashed_password=auth.hash_password(payload.password),
        full_name=(payload.full_name or "").strip() or None,
        role=payload.role,
        is_active=True,
    )
    db.add(user)
    db.flush()

    if payload.role == auth.ROLE_COACH:
        db.add(
            models.CoachProfile(
                user_id=user.id,
                business_name=(payload.business_name or "").strip() or None,
            )
        )
    else:
        db.add(
            models.CoachStudentRelationship(
                coach_id=coach_profile.id,
                student_id=user.id,
                status="active",
                started_at=models.utcnow(),
            )
        )

    db.commit()
    db.refresh(user)
    logger.info("User registered user_id=%s role=%s", user.id, user.role)

    token = auth.create_access_token(user_id=user.id, subject=user.email, role=user.role)
    return schemas.TokenOut(access_token=token, user_id=user.id, role=user.role)
