"""
Typed plan feature schema.

Plan features used to be an open JSON bag inspected ad hoc at every call site,
so a renamed key silently resolved to "no access". They are now a closed model:
unknown keys are rejected when a plan is written or loaded, and feature checks
only accept keys that exist in the schema.

Schema versions:
  1 - legacy planification flags (planification_unlimited / _monthly /
      daily_planification / planification_weeks)
  2 - planification_access ("daily" | "monthly" | "unlimited")
"""
from __future__ import annotations

from typing import Any, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator

FEATURE_SCHEMA_VERSION = 2

PlanificationAccess = Literal["daily", "monthly", "unlimited"]
StudentPlanTier = Literal["basic", "standard", "premium", "vip"]

# Boolean capabilities a coach plan can grant. Anything passed to has_feature()
# must be one of these.
FeatureKey = Literal[
    "dashboard_custom",
    "timer",
    "score_loading",
    "score_database",
    "mercadopago_connection",
    "whatsapp_integration",
    "community_forum",
    "custom_motivational_quotes",
    "personalized_planifications",
]
FEATURE_KEYS: frozenset[str] = frozenset(get_args(FeatureKey))

# Human-readable names for denial messages
FEATURE_NAMES: dict[str, str] = {
    "dashboard_custom": "a custom dashboard",
    "timer": "the professional timer",
    "score_loading": "score logging and progress tracking",
    "score_database": "the ranking and score database",
    "mercadopago_connection": "MercadoPago payments",
    "whatsapp_integration": "WhatsApp support",
    "community_forum": "the community forum",
    "custom_motivational_quotes": "custom motivational quotes",
    "personalized_planifications": "personalized planifications",
}

UNLIMITED = 999999

_LEGACY_PLANIFICATION_KEYS = (
    "planification_unlimited",
    "planification_monthly",
    "daily_planification",
    "planification_weeks",
)


def _legacy_planification(data: dict) -> PlanificationAccess:
    if data.get("planification_unlimited"):
        return "unlimited"
    if data.get("planification_monthly"):
        return "monthly"
    return "daily"


class CoachPlanFeatures(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: int = FEATURE_SCHEMA_VERSION

    dashboard_custom: bool = False
    planification_access: PlanificationAccess = "daily"
    max_disciplines: int = Field(default=0, ge=0)
    timer: bool = False
    score_loading: bool = False
    score_database: bool = False
    mercadopago_connection: bool = False
    whatsapp_integration: bool = False
    community_forum: bool = False
    custom_motivational_quotes: bool = False
    personalized_planifications: bool = False

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if not any(k in data for k in _LEGACY_PLANIFICATION_KEYS):
            return data

        upgraded = {k: v for k, v in data.items() if k not in _LEGACY_PLANIFICATION_KEYS}
        if "planification_access" not in upgraded:
            upgraded["planification_access"] = _legacy_planification(data)
        upgraded["schema_version"] = FEATURE_SCHEMA_VERSION
        return upgraded

    def enabled(self) -> dict[str, bool]:
        """Only the boolean capabilities, as the API exposes them."""
        return {k: bool(getattr(self, k)) for k in sorted(FEATURE_KEYS)}


def parse_features(raw: Optional[dict]) -> CoachPlanFeatures:
    """Load a stored feature bag. Raises pydantic.ValidationError on unknown keys or bad values."""
    return CoachPlanFeatures.model_validate(raw or {})


def has_feature(features: Optional[CoachPlanFeatures], key: str) -> bool:
    """
    Direct lookup on a resolved feature set.

    No plan -> False. Known but unset key -> False.
    A key that is not part of the schema is a programming error -> KeyError.
    """
    if key not in FEATURE_KEYS:
        raise KeyError(f"Unknown feature key: {key!r}")
    if features is None:
        return False
    return getattr(features, key) is True


# -------------------------------------------------
# Student plans
# -------------------------------------------------
class StudentPlanFeatures(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    whatsapp_support: bool = False
    community_access: bool = False
    progress_tracking: bool = False
    leaderboard_access: bool = False
    timer_access: bool = False
    personalized_workouts: bool = False


# student feature -> coach feature that must be granted for a coach to offer it
STUDENT_FEATURE_REQUIRES: dict[str, str] = {
    "whatsapp_support": "whatsapp_integration",
    "community_access": "community_forum",
    "progress_tracking": "score_loading",
    "leaderboard_access": "score_database",
    "timer_access": "timer",
    "personalized_workouts": "personalized_planifications",
}

_TIER_LEVELS: dict[str, int] = {"basic": 1, "standard": 2, "premium": 3, "vip": 4}


def is_student_tier_allowed(coach_tier: str, target_tier: str) -> bool:
    try:
        return _TIER_LEVELS[target_tier] <= _TIER_LEVELS[coach_tier]
    except KeyError:
        return False


def unavailable_student_features(
    student_features: StudentPlanFeatures,
    coach_features: Optional[CoachPlanFeatures],
) -> list[str]:
    """Student plan features the coach's own plan does not cover."""
    missing = []
    for student_key, coach_key in STUDENT_FEATURE_REQUIRES.items():
        if getattr(student_features, student_key) and not has_feature(coach_features, coach_key):
            missing.append(student_key)
    return missing
