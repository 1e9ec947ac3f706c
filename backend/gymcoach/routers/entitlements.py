# gymcoach/routers/entitlements.py
from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from gymcoach import auth, entitlements, models, settings
from gymcoach.database import get_db
from gymcoach.dependencies import coach_profile_for, ensure_self_or_admin
from gymcoach.errors import NotFoundError

router = APIRouter(tags=["entitlements"])


def _display_cache(response: Response) -> None:
    # Display only. The feature guard never reads anything a client cached.
    response.headers["Cache-Control"] = f"private, max-age={settings.ENTITLEMENT_CLIENT_CACHE_SECONDS}"


@router.get("/entitlements/me")
def my_entitlements(
    response: Response,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    _display_cache(response)
    return entitlements.entitlements_payload(db, user)


@router.get("/entitlements/{user_id}")
def user_entitlements(
    user_id: int,
    response: Response,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    ensure_self_or_admin(user, user_id)
    subject = db.get(models.User, user_id)
    if not subject:
        raise NotFoundError("User not found.")
    _display_cache(response)
    return entitlements.entitlements_payload(db, subject)


# -------------------------------------------------
# Coach views
# -------------------------------------------------
@router.get("/coaches/access")
def coach_access(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.require_coach),
):
    profile = coach_profile_for(db, user)
    access = entitlements.get_coach_access(db, profile.id)
    return entitlements.coach_access_payload(access)


@router.get("/coaches/plan-features")
def coach_plan_features(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.require_coach),
):
    profile = coach_profile_for(db, user)
    plan_info = entitlements.resolve_coach_plan(db, profile.id)
    return {
        "plan_id": plan_info.plan_id if plan_info else None,
        "plan_slug": plan_info.slug if plan_info else None,
        "plan_name": plan_info.display_name if plan_info else None,
        "is_trial": bool(plan_info and plan_info.is_trial),
        "features": plan_info.features.enabled() if plan_info else {},
        "planification_access": entitlements.planification_access(plan_info),
        "max_disciplines": entitlements.max_disciplines(plan_info),
        "max_students": plan_info.max_students if plan_info else 0,
        "max_student_plans": plan_info.max_student_plans if plan_info else 0,
        "max_student_plan_tier": plan_info.max_student_plan_tier if plan_info else None,
    }


@router.post("/coaches/trial")
def start_coach_trial(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.require_coach),
):
    """
    Starts the coach trial once. Calling it again returns the existing trial.
    """
    profile = coach_profile_for(db, user)
    started = False
    if profile.trial_ends_at is None:
        profile.trial_ends_at = models.utcnow() + timedelta(days=settings.TRIAL_DAYS)
        db.commit()
        started = True

    access = entitlements.get_coach_access(db, profile.id)
    return {"started": started, **entitlements.coach_access_payload(access)}
