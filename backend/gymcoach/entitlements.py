"""
Plan entitlement resolver.

Coach path:   coach -> coach's subscriptions + trial -> access status -> plan.
Student path: student -> active coach link -> coach path.

A student's features are always their coach's plan features. Nothing about
the student's own purchase unlocks a coach-plan feature.

Every call reads storage. There is no cross-request cache here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import ledger, models
from .features import CoachPlanFeatures, PlanificationAccess, has_feature
from .plans import PlanInfo, get_baseline_plan, plan_info_from
from .subscription_state import (
    AccessStatus,
    derive_access_status,
    select_active_subscription,
    to_utc_naive,
    trial_days_remaining,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoachAccess:
    coach_id: int
    access_status: AccessStatus
    trial_ends_at: Optional[datetime]
    subscription: Optional[models.Subscription]

    @property
    def has_access(self) -> bool:
        return self.access_status in (AccessStatus.ACTIVE, AccessStatus.TRIAL)

    @property
    def is_trial(self) -> bool:
        return self.access_status == AccessStatus.TRIAL


def _now(now: Optional[datetime]) -> datetime:
    return to_utc_naive(now) if now is not None else models.utcnow()


def get_coach_access(db: Session, coach_id: int, now: Optional[datetime] = None) -> Optional[CoachAccess]:
    """None when the coach profile does not exist."""
    now = _now(now)
    profile = ledger.get_coach_profile(db, coach_id)
    if not profile:
        return None

    subs = ledger.list_active_subscriptions(db, profile.user_id)
    status = derive_access_status(subs, profile.trial_ends_at, now)
    return CoachAccess(
        coach_id=profile.id,
        access_status=status,
        trial_ends_at=profile.trial_ends_at,
        subscription=select_active_subscription(subs) if status == AccessStatus.ACTIVE else None,
    )


def resolve_coach_plan(db: Session, coach_id: int, now: Optional[datetime] = None) -> Optional[PlanInfo]:
    """
    active  -> the subscribed plan (features from the subscription snapshot)
    trial   -> the baseline plan, whatever plan the coach intends to buy
    expired / inactive / unknown coach -> None
    """
    access = get_coach_access(db, coach_id, now)
    if access is None:
        logger.debug("No coach profile for coach_id=%s", coach_id)
        return None

    if access.access_status == AccessStatus.ACTIVE and access.subscription is not None:
        return plan_info_from(access.subscription.plan, access.subscription)

    if access.access_status == AccessStatus.TRIAL:
        baseline = get_baseline_plan(db)
        if baseline is None:
            logger.warning("Baseline plan missing; trial coach_id=%s resolves to no plan", coach_id)
            return None
        return plan_info_from(baseline, is_trial=True)

    return None


def resolve_student_plan(db: Session, student_id: int, now: Optional[datetime] = None) -> Optional[PlanInfo]:
    rel = ledger.get_active_relationship(db, student_id)
    if not rel:
        return None
    return resolve_coach_plan(db, rel.coach_id, now)


def resolve_user_plan(db: Session, user: models.User, now: Optional[datetime] = None) -> Optional[PlanInfo]:
    """Coaches resolve their own plan; everyone else goes through their coach."""
    if (user.role or "").upper() == "COACH":
        profile = ledger.get_coach_profile_for_user(db, user.id)
        return resolve_coach_plan(db, profile.id, now) if profile else None
    return resolve_student_plan(db, user.id, now)


def plan_has_feature(plan_info: Optional[PlanInfo], key: str) -> bool:
    return has_feature(plan_info.features if plan_info is not None else None, key)


def coach_has_feature(db: Session, coach_id: int, key: str, now: Optional[datetime] = None) -> bool:
    return plan_has_feature(resolve_coach_plan(db, coach_id, now), key)


def student_has_feature(db: Session, student_id: int, key: str, now: Optional[datetime] = None) -> bool:
    return plan_has_feature(resolve_student_plan(db, student_id, now), key)


def user_has_feature(db: Session, user: models.User, key: str, now: Optional[datetime] = None) -> bool:
    return plan_has_feature(resolve_user_plan(db, user, now), key)


# -------------------------------------------------
# Derived limits
# -------------------------------------------------
def planification_access(plan_info: Optional[PlanInfo]) -> PlanificationAccess:
    if plan_info is None:
        return "daily"
    return plan_info.features.planification_access


def max_disciplines(plan_info: Optional[PlanInfo]) -> int:
    if plan_info is None:
        return 0
    return plan_info.features.max_disciplines


# -------------------------------------------------
# Payloads
# -------------------------------------------------
def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _features_payload(features: Optional[CoachPlanFeatures]) -> dict[str, bool]:
    if features is None:
        return CoachPlanFeatures().enabled()
    return features.enabled()


def entitlements_payload(db: Session, user: models.User, now: Optional[datetime] = None) -> dict:
    """Shape returned by GET /entitlements/me."""
    now = _now(now)
    coach_id: Optional[int] = None

    if (user.role or "").upper() == "COACH":
        profile = ledger.get_coach_profile_for_user(db, user.id)
        coach_id = profile.id if profile else None
    else:
        rel = ledger.get_active_relationship(db, user.id)
        coach_id = rel.coach_id if rel else None

    access = get_coach_access(db, coach_id, now) if coach_id is not None else None
    plan_info = resolve_coach_plan(db, coach_id, now) if coach_id is not None else None

    return {
        "plan_name": plan_info.display_name if plan_info else None,
        "plan_slug": plan_info.slug if plan_info else None,
        "features": _features_payload(plan_info.features if plan_info else None),
        "planification_access": planification_access(plan_info),
        "max_disciplines": max_disciplines(plan_info),
        "access_status": (access.access_status if access else AccessStatus.INACTIVE).value,
        "is_trial": bool(plan_info and plan_info.is_trial),
        "coach_id": coach_id,
        "current_period_start": _iso(plan_info.current_period_start) if plan_info else None,
        "current_period_end": _iso(plan_info.current_period_end) if plan_info else None,
    }


def coach_access_payload(access: CoachAccess, now: Optional[datetime] = None) -> dict:
    """Shape returned by GET /coaches/access."""
    now = _now(now)
    sub = access.subscription
    return {
        "has_access": access.has_access,
        "access_status": access.access_status.value,
        "is_trial": access.is_trial,
        "trial_ends_at": _iso(access.trial_ends_at),
        "days_remaining": trial_days_remaining(access.trial_ends_at, now) if access.is_trial else 0,
        "subscription": (
            {
                "id": sub.id,
                "plan_id": sub.plan_id,
                "status": sub.status,
                "current_period_start": _iso(sub.current_period_start),
                "current_period_end": _iso(sub.current_period_end),
                "cancel_at_period_end": bool(sub.cancel_at_period_end),
            }
            if sub is not None
            else None
        ),
    }
