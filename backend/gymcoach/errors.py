"""
Error taxonomy for the subscription & entitlement engine.

Every error carries the HTTP status it maps to and a stable machine code.
authz_errors.py renders them as flat JSON: {"error": ..., "code": ..., **extra}.

Two of these are normal business outcomes, not failures:
EntitlementDenied and LockedPreferenceChange. Do not log them as errors.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    headers: Optional[dict[str, str]] = None

    def __init__(self, message: str = "", *, extra: Optional[dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = dict(extra or {})

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


class ValidationError(AppError):
    """Missing/malformed ids or an invalid plan reference. Never retried."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotAuthenticatedError(AppError):
    status_code = 401
    code = "NOT_AUTHENTICATED"
    headers = {"WWW-Authenticate": "Bearer"}


class NotAuthorizedError(AppError):
    """Authenticated, but wrong role or not the owner of the resource."""

    status_code = 403
    code = "NOT_AUTHORIZED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class EntitlementDenied(AppError):
    status_code = 403
    code = "FEATURE_NOT_AVAILABLE"

    def __init__(self, feature: str, human_name: str):
        super().__init__(
            f"Your plan does not include {human_name}.",
            extra={"feature": feature},
        )
        self.feature = feature


class LockedPreferenceChange(AppError):
    status_code = 403
    code = "PREFERENCE_LOCKED"

    def __init__(self, next_change_date: Optional[datetime], reason: Optional[str] = None):
        super().__init__(
            reason or "Preferences can only be changed once per billing period.",
            extra={
                "next_change_date": next_change_date.isoformat() if next_change_date else None,
            },
        )
        self.next_change_date = next_change_date


class InvalidTransition(AppError):
    status_code = 409
    code = "INVALID_TRANSITION"


class ConcurrentWriteConflict(AppError):
    status_code = 409
    code = "CONCURRENT_WRITE_CONFLICT"


class ResolutionFailure(AppError):
    """Storage unreachable or plan data malformed while resolving entitlements."""

    status_code = 503
    code = "RESOLUTION_FAILURE"
