# gymcoach/routers/student_plans.py
from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gymcoach import auth, entitlements, ledger, models, plans, schemas
from gymcoach.database import get_db
from gymcoach.dependencies import coach_profile_for
from gymcoach.errors import NotAuthorizedError, NotFoundError, ValidationError
from gymcoach.features import is_student_tier_allowed, unavailable_student_features

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student-plans", tags=["student-plans"])


def _slugify(s: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (s or "").strip().lower()).strip("-")
    return slug or "plan"


def _plan_out(plan: models.Plan) -> dict:
    return schemas.PlanOut.model_validate(plan).model_dump(mode="json")


def _active_student_plans(db: Session, coach_id: int) -> int:
    return db.scalar(
        select(func.count(models.Plan.id)).where(
            models.Plan.audience == plans.AUDIENCE_STUDENT,
            models.Plan.coach_id == coach_id,
            models.Plan.is_active == True,  # noqa: E712
        )
    ) or 0


@router.get("")
def list_student_plans(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    """Coaches see their own plans; students see the plans their coach offers."""
    if auth.is_coach(user):
        coach_id = coach_profile_for(db, user).id
    else:
        rel = ledger.get_active_relationship(db, user.id)
        if not rel:
            return {"plans": []}
        coach_id = rel.coach_id

    rows = db.scalars(
        select(models.Plan)
        .where(
            models.Plan.audience == plans.AUDIENCE_STUDENT,
            models.Plan.coach_id == coach_id,
            models.Plan.is_active == True,  # noqa: E712
        )
        .order_by(models.Plan.price, models.Plan.id)
    )
    return {"plans": [_plan_out(p) for p in rows]}


@router.post("", status_code=201)
def create_student_plan(
    payload: schemas.StudentPlanCreateIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.require_coach),
):
    """
    A coach may sell student plans only while it has access, up to its plan's
    tier and count limits, and only with features its own plan covers.
    """
    profile = coach_profile_for(db, user)
    plan_info = entitlements.resolve_coach_plan(db, profile.id)
    if plan_info is None:
        raise NotAuthorizedError("An active plan or trial is required to create student plans.")

    if not is_student_tier_allowed(plan_info.max_student_plan_tier, payload.tier):
        raise ValidationError(
            "Your plan does not allow this student plan tier.",
            extra={"tier": payload.tier, "max_tier": plan_info.max_student_plan_tier},
        )

    if _active_student_plans(db, profile.id) >= plan_info.max_student_plans:
        raise ValidationError(
            "Student plan limit reached for your plan.",
            extra={"max_student_plans": plan_info.max_student_plans},
        )

    missing = unavailable_student_features(payload.features, plan_info.features)
    if missing:
        raise ValidationError("Your plan does not cover these student features.", extra={"features": missing})

    plan = models.Plan(
        audience=plans.AUDIENCE_STUDENT,
        coach_id=profile.id,
        slug=_slugify(payload.name),
        name=payload.name.strip(),
        display_name=payload.name.strip(),
        description=payload.description,
        price=payload.price,
        currency=payload.currency.upper(),
        billing_interval=payload.billing_interval,
        tier=payload.tier,
        features=payload.features.model_dump(),
        version=1,
        is_active=True,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info("Student plan created plan_id=%s coach_id=%s tier=%s", plan.id, profile.id, plan.tier)
    return {"ok": True, "plan": _plan_out(plan)}


@router.delete("/{plan_id}")
def deactivate_student_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.require_coach),
):
    profile = coach_profile_for(db, user)
    plan = plans.get_plan(db, plan_id)
    if not plan or plan.audience != plans.AUDIENCE_STUDENT or plan.coach_id != profile.id:
        raise NotFoundError("Plan not found.")
    plan.is_active = False
    plan.updated_at = models.utcnow()
    db.commit()
    return {"ok": True}
