# gymcoach/feature_guard.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from . import auth, entitlements, ledger, models
from .database import get_db
from .errors import EntitlementDenied, NotFoundError
from .features import FEATURE_KEYS, FEATURE_NAMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureGuardResult:
    allowed: bool
    http_status: int = 200
    body: dict[str, Any] = field(default_factory=dict)


def _denied(feature_key: str, human_name: str) -> FeatureGuardResult:
    err = EntitlementDenied(feature_key, human_name)
    return FeatureGuardResult(allowed=False, http_status=err.status_code, body=err.to_body())


def require_feature(db: Session, user_id: int, feature_key: str, human_name: Optional[str] = None) -> FeatureGuardResult:
    """
    Allow/deny a feature-gated request for user_id.

    Always resolves from current storage. If resolution itself fails (storage
    down, malformed plan data) the guard FAILS OPEN: the user is let through and
    the failure is logged once. This gate protects convenience features, not
    payment state; the state machine underneath still fails closed.
    """
    if feature_key not in FEATURE_KEYS:
        raise KeyError(f"Unknown feature key: {feature_key!r}")
    human_name = human_name or FEATURE_NAMES.get(feature_key, feature_key)

    try:
        user = ledger.get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        allowed = entitlements.user_has_feature(db, user, feature_key)
    except Exception:
        logger.exception("Feature check failed user_id=%s feature=%s; allowing", user_id, feature_key)
        # The request carries on with this session; drop whatever the failure left behind.
        db.rollback()
        return FeatureGuardResult(allowed=True)

    if not allowed:
        logger.info("Feature not available user_id=%s feature=%s", user_id, feature_key)
        return _denied(feature_key, human_name)
    return FeatureGuardResult(allowed=True)


def requires_feature(feature_key: str, human_name: Optional[str] = None) -> Callable[..., models.User]:
    """
    FastAPI dependency version:

        @router.post("/rms")
        def create_rm(user: models.User = Depends(requires_feature("score_loading"))): ...

    Denial raises EntitlementDenied (rendered as 403 FEATURE_NOT_AVAILABLE).
    """
    if feature_key not in FEATURE_KEYS:
        raise KeyError(f"Unknown feature key: {feature_key!r}")
    name = human_name or FEATURE_NAMES.get(feature_key, feature_key)

    def _dependency(
        db: Session = Depends(get_db),
        user: models.User = Depends(auth.get_current_user),
    ) -> models.User:
        result = require_feature(db, user.id, feature_key, name)
        if not result.allowed:
            raise EntitlementDenied(feature_key, name)
        return user

    return _dependency


# Named gates used by the student-facing endpoints
require_progress_tracking = requires_feature("score_loading")
require_ranking_access = requires_feature("score_database")
require_community_access = requires_feature("community_forum")
require_whatsapp_access = requires_feature("whatsapp_integration")
require_timer_access = requires_feature("timer")
require_personalized_planifications = requires_feature("personalized_planifications")
