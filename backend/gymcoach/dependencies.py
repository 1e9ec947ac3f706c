# gymcoach/dependencies.py
"""
Router-level helpers shared by several routers: ownership checks and the
shared-secret bearer checks used by machine callers (payment gateway, cron).
"""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from gymcoach import auth, ledger, models
from gymcoach.errors import NotAuthenticatedError, NotAuthorizedError, NotFoundError


def bearer_token(request: Request) -> Optional[str]:
    header = (request.headers.get("authorization") or "").strip()
    if not header.lower().startswith("bearer "):
        return None
    return header[7:].strip() or None


def check_shared_secret(request: Request, expected: str) -> None:
    """Constant-time compare of the bearer token against a configured secret."""
    got = bearer_token(request) or ""
    if not hmac.compare_digest(got.encode(), expected.encode()):
        raise NotAuthenticatedError("Invalid or missing bearer token.")


def ensure_self_or_admin(user: models.User, subject_id: int) -> None:
    if user.id != subject_id and not auth.is_admin(user):
        raise NotAuthorizedError("You can only act on your own account.")


def load_owned_subscription(db: Session, user: models.User, subscription_id: int) -> models.Subscription:
    sub = ledger.get_subscription(db, subscription_id)
    if not sub:
        raise NotFoundError("Subscription not found.")
    ensure_self_or_admin(user, sub.subscriber_id)
    return sub


def coach_profile_for(db: Session, user: models.User) -> models.CoachProfile:
    profile = ledger.get_coach_profile_for_user(db, user.id)
    if not profile:
        raise NotFoundError("Coach profile not found.")
    return profile
