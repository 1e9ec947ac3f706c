# gymcoach/plans.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pydantic
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .errors import ResolutionFailure
from .features import UNLIMITED, CoachPlanFeatures, parse_features
from .settings import BASELINE_PLAN_SLUG, BILLING_PERIOD_DAYS, YEARLY_PERIOD_DAYS

PLAN_START = "start"
PLAN_POWER = "power"
PLAN_ELITE = "elite"

AUDIENCE_COACH = "coach"
AUDIENCE_STUDENT = "student"


@dataclass(frozen=True)
class PlanInfo:
    """Resolved plan for one subscriber at one instant. Never persisted."""

    plan_id: int
    slug: str
    name: str
    display_name: str
    features: CoachPlanFeatures
    max_students: int
    commission_rate: Decimal
    max_student_plans: int
    max_student_plan_tier: str
    is_trial: bool = False
    subscription_id: Optional[int] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


def plan_info_from(
    plan: models.Plan,
    subscription: Optional[models.Subscription] = None,
    *,
    is_trial: bool = False,
) -> PlanInfo:
    """
    Build a PlanInfo.

    When a subscription carries a features snapshot, that snapshot wins over the
    live catalog row: editing a plan never changes what an already issued
    subscription grants.
    """
    raw = plan.features
    if subscription is not None and subscription.features_snapshot is not None:
        raw = subscription.features_snapshot

    try:
        features = parse_features(raw)
    except pydantic.ValidationError as e:
        raise ResolutionFailure("Stored plan features are malformed.", extra={"plan_id": plan.id}) from e

    return PlanInfo(
        plan_id=plan.id,
        slug=plan.slug,
        name=plan.name,
        display_name=plan.display_name,
        features=features,
        max_students=int(plan.max_students or 0),
        commission_rate=Decimal(plan.commission_rate or 0),
        max_student_plans=int(plan.max_student_plans or 0),
        max_student_plan_tier=plan.max_student_plan_tier or "basic",
        is_trial=is_trial,
        subscription_id=subscription.id if subscription is not None else None,
        current_period_start=subscription.current_period_start if subscription is not None else None,
        current_period_end=subscription.current_period_end if subscription is not None else None,
    )


def snapshot_features(plan: models.Plan) -> dict:
    """Validated, normalized copy of a plan's features for storing on a subscription."""
    return parse_features(plan.features).model_dump()


def period_end_for(plan: models.Plan, start: datetime) -> datetime:
    interval = (plan.billing_interval or "month").strip().lower()
    days = YEARLY_PERIOD_DAYS if interval == "year" else BILLING_PERIOD_DAYS
    return start + timedelta(days=days)


def get_plan(db: Session, plan_id: int) -> Optional[models.Plan]:
    return db.get(models.Plan, plan_id)


def get_coach_plan_by_slug(db: Session, slug: str) -> Optional[models.Plan]:
    return db.scalar(
        select(models.Plan).where(
            models.Plan.audience == AUDIENCE_COACH,
            models.Plan.slug == slug,
        )
    )


def get_baseline_plan(db: Session) -> Optional[models.Plan]:
    return get_coach_plan_by_slug(db, BASELINE_PLAN_SLUG)


def list_coach_plans(db: Session, include_inactive: bool = False) -> list[models.Plan]:
    stmt = select(models.Plan).where(models.Plan.audience == AUDIENCE_COACH)
    if not include_inactive:
        stmt = stmt.where(models.Plan.is_active == True)  # noqa: E712
    return list(db.scalars(stmt.order_by(models.Plan.price, models.Plan.id)))


def update_plan_features(plan: models.Plan, features: CoachPlanFeatures) -> bool:
    """Replace a plan's features. Bumps the version when anything changed."""
    new_raw = features.model_dump()
    if parse_features(plan.features).model_dump() == new_raw:
        return False
    plan.features = new_raw
    plan.version = int(plan.version or 1) + 1
    plan.updated_at = models.utcnow()
    return True


# -------------------------------------------------
# Default catalog
# -------------------------------------------------
DEFAULT_COACH_PLANS: tuple[dict, ...] = (
    {
        "slug": PLAN_START,
        "name": "Start",
        "display_name": "Start",
        "description": "For coaches getting started",
        "price": Decimal("9999.00"),
        "max_students": 20,
        "commission_rate": Decimal("5.00"),
        "max_student_plans": 2,
        "max_student_plan_tier": "standard",
        "features": {
            "planification_access": "daily",
            "max_disciplines": 2,
            "timer": True,
        },
    },
    {
        "slug": PLAN_POWER,
        "name": "Power",
        "display_name": "Power",
        "description": "Score tracking, community and payments",
        "price": Decimal("19999.00"),
        "max_students": 60,
        "commission_rate": Decimal("3.00"),
        "max_student_plans": 4,
        "max_student_plan_tier": "premium",
        "features": {
            "planification_access": "monthly",
            "max_disciplines": 3,
            "timer": True,
            "score_loading": True,
            "score_database": True,
            "mercadopago_connection": True,
            "whatsapp_integration": True,
            "community_forum": True,
            "custom_motivational_quotes": True,
        },
    },
    {
        "slug": PLAN_ELITE,
        "name": "Elite",
        "display_name": "Elite",
        "description": "Everything, unlimited",
        "price": Decimal("34999.00"),
        "max_students": UNLIMITED,
        "commission_rate": Decimal("2.00"),
        "max_student_plans": UNLIMITED,
        "max_student_plan_tier": "vip",
        "features": {
            "dashboard_custom": True,
            "planification_access": "unlimited",
            "max_disciplines": UNLIMITED,
            "timer": True,
            "score_loading": True,
            "score_database": True,
            "mercadopago_connection": True,
            "whatsapp_integration": True,
            "community_forum": True,
            "custom_motivational_quotes": True,
            "personalized_planifications": True,
        },
    },
)


def seed_default_plans(db: Session) -> int:
    """Insert the default coach plans that are missing. Existing rows are left alone."""
    created = 0
    for entry in DEFAULT_COACH_PLANS:
        if get_coach_plan_by_slug(db, entry["slug"]):
            continue
        data = dict(entry)
        data["features"] = parse_features(data["features"]).model_dump()
        db.add(models.Plan(audience=AUDIENCE_COACH, **data))
        created += 1
    if created:
        db.commit()
    return created
