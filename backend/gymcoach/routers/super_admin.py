# gymcoach/routers/super_admin.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymcoach import auth, ledger, models, plans, schemas, subscriptions
from gymcoach.database import get_db
from gymcoach.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/superadmin",
    tags=["superadmin"],
    dependencies=[Depends(auth.require_admin)],
)


def _plan_out(plan: models.Plan) -> dict:
    return schemas.PlanOut.model_validate(plan).model_dump(mode="json")


def _sub_out(sub: models.Subscription) -> dict:
    return schemas.SubscriptionOut.model_validate(sub).model_dump(mode="json")


# -------------------------------------------------
# Coach plan catalog
# -------------------------------------------------
@router.get("/coach-plans")
def list_coach_plans(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return {"plans": [_plan_out(p) for p in plans.list_coach_plans(db, include_inactive=include_inactive)]}


@router.post("/coach-plans", status_code=201)
def create_coach_plan(payload: schemas.CoachPlanCreateIn, db: Session = Depends(get_db)):
    if plans.get_coach_plan_by_slug(db, payload.slug):
        raise ValidationError("Plan slug already exists.", extra={"slug": payload.slug})

    plan = models.Plan(
        audience=plans.AUDIENCE_COACH,
        slug=payload.slug,
        name=payload.name.strip(),
        display_name=(payload.display_name or "").strip() or payload.name.strip(),
        description=payload.description,
        price=payload.price,
        currency=payload.currency.upper(),
        billing_interval=payload.billing_interval,
        max_students=payload.max_students,
        commission_rate=payload.commission_rate,
        max_student_plans=payload.max_student_plans,
        max_student_plan_tier=payload.max_student_plan_tier,
        features=payload.features.model_dump(),
        version=1,
        is_active=True,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info("Coach plan created plan_id=%s slug=%s", plan.id, plan.slug)
    return {"ok": True, "plan": _plan_out(plan)}


@router.patch("/coach-plans/{plan_id}")
def update_coach_plan(plan_id: int, payload: schemas.CoachPlanUpdateIn, db: Session = Depends(get_db)):
    """
    Catalog edit. Feature changes bump the plan version; subscriptions already
    issued keep the features snapshot they were created with.
    """
    plan = plans.get_plan(db, plan_id)
    if not plan or plan.audience != plans.AUDIENCE_COACH:
        raise NotFoundError("Plan not found.")

    data = payload.model_dump(exclude_unset=True, exclude={"features"})
    for field, value in data.items():
        setattr(plan, field, value)

    features_changed = False
    if payload.features is not None:
        features_changed = plans.update_plan_features(plan, payload.features)

    plan.updated_at = models.utcnow()
    db.commit()
    db.refresh(plan)
    logger.info("Coach plan updated plan_id=%s version=%s features_changed=%s", plan.id, plan.version, features_changed)
    return {"ok": True, "plan": _plan_out(plan)}


# -------------------------------------------------
# Coach subscriptions
# -------------------------------------------------
@router.patch("/coaches/{coach_id}/plan")
def assign_coach_plan(coach_id: int, payload: schemas.AssignPlanIn, db: Session = Depends(get_db)):
    profile = ledger.get_coach_profile(db, coach_id)
    if not profile:
        raise NotFoundError("Coach not found.")
    coach_user = ledger.get_user(db, profile.user_id)

    sub = subscriptions.with_conflict_retry(
        db,
        lambda: subscriptions.change_plan(
            db,
            coach_user,
            payload.plan_id,
            period_start=payload.start_date,
            period_end=payload.end_date,
            allow_same_plan=True,
        ),
    )
    return {"ok": True, "subscription": _sub_out(sub)}


@router.patch("/subscriptions/{subscription_id}/reactivate")
def reactivate_subscription(
    subscription_id: int,
    payload: schemas.ReactivateIn | None = None,
    db: Session = Depends(get_db),
):
    payload = payload or schemas.ReactivateIn()
    sub = subscriptions.reactivate(
        db,
        subscription_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
    )
    return {"ok": True, "subscription": _sub_out(sub)}


@router.patch("/subscriptions/{subscription_id}/cancel")
def cancel_subscription_now(subscription_id: int, db: Session = Depends(get_db)):
    sub = subscriptions.cancel_now(db, subscription_id)
    return {"ok": True, "subscription": _sub_out(sub)}


# -------------------------------------------------
# Discipline reference data
# -------------------------------------------------
class DisciplineIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    color: str | None = None


class LevelIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None


@router.post("/disciplines", status_code=201)
def create_discipline(payload: DisciplineIn, db: Session = Depends(get_db)):
    d = models.Discipline(name=payload.name.strip(), color=payload.color, is_active=True)
    db.add(d)
    db.commit()
    db.refresh(d)
    return {"id": d.id, "name": d.name, "color": d.color, "is_active": d.is_active}


@router.post("/disciplines/{discipline_id}/levels", status_code=201)
def create_level(discipline_id: int, payload: LevelIn, db: Session = Depends(get_db)):
    if not db.get(models.Discipline, discipline_id):
        raise NotFoundError("Discipline not found.")
    lvl = models.DisciplineLevel(discipline_id=discipline_id, name=payload.name.strip(), description=payload.description)
    db.add(lvl)
    db.commit()
    db.refresh(lvl)
    return {"id": lvl.id, "discipline_id": lvl.discipline_id, "name": lvl.name}


@router.get("/disciplines")
def list_disciplines(db: Session = Depends(get_db)):
    rows = db.scalars(select(models.Discipline).order_by(models.Discipline.id))
    return {
        "disciplines": [
            {
                "id": d.id,
                "name": d.name,
                "color": d.color,
                "is_active": d.is_active,
                "levels": [{"id": lvl.id, "name": lvl.name} for lvl in d.levels],
            }
            for d in rows
        ]
    }
