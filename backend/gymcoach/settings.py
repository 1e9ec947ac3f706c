"""
Central place for runtime configuration.

Everything comes from environment variables. A .env file found from the
working directory is loaded once, here, before any value is read.
Values that tests need to change are exposed through small getters
instead of module constants.
"""
from __future__ import annotations

import os

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True))


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v.strip() if v else default


def _int_env(name: str, default: int) -> int:
    try:
        return int(_env(name) or default)
    except ValueError:
        return default


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = _env("DATABASE_URL", "sqlite:///./gymcoach.db")

SECRET_KEY = _env("SECRET_KEY", "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG")
ACCESS_TOKEN_EXPIRE_MINUTES = _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 1440)

# Coach trial length. Trial users get the baseline plan, never the plan they intend to buy.
TRIAL_DAYS = _int_env("TRIAL_DAYS", 7)
BASELINE_PLAN_SLUG = _env("BASELINE_PLAN_SLUG", "start")

# Length of a billing period when nothing else (payment event, admin) provides bounds.
BILLING_PERIOD_DAYS = _int_env("BILLING_PERIOD_DAYS", 30)
YEARLY_PERIOD_DAYS = 365

# Display-only caching of GET /entitlements/me. Never used for authorization.
ENTITLEMENT_CLIENT_CACHE_SECONDS = _int_env("ENTITLEMENT_CLIENT_CACHE_SECONDS", 300)

LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()


def trial_timezone() -> str:
    """Zone whose calendar decides the last day of a trial."""
    return _env("TRIAL_TIMEZONE", "UTC")


def payment_webhook_token() -> str:
    return _env("PAYMENT_WEBHOOK_TOKEN")


def cron_secret() -> str:
    return _env("CRON_SECRET")


def bootstrap_key() -> str:
    return _env("BOOTSTRAP_KEY")


def seed_plans_enabled() -> bool:
    return _truthy(_env("SEED_PLANS", "true"))
