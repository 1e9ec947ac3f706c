# gymcoach/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .features import CoachPlanFeatures, StudentPlanFeatures, StudentPlanTier


# -----------------------------
# AUTH
# -----------------------------
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: Optional[int] = None
    role: Optional[str] = None


class BootstrapAdminIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: Optional[str] = None


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: Optional[str] = None
    role: Literal["COACH", "STUDENT"] = "STUDENT"
    business_name: Optional[str] = None
    # Students sign up under an existing coach
    coach_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v):
        return (v or "STUDENT").strip().upper()

    @model_validator(mode="after")
    def _student_needs_coach(self):
        if self.role == "STUDENT" and self.coach_id is None:
            raise ValueError("coach_id is required for students")
        return self


# -----------------------------
# PLANS
# -----------------------------
class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    audience: str
    slug: str
    name: str
    display_name: str
    description: Optional[str] = None
    price: Decimal
    currency: str
    billing_interval: str
    max_students: int
    commission_rate: Decimal
    max_student_plans: int
    max_student_plan_tier: str
    tier: Optional[str] = None
    features: dict
    version: int
    is_active: bool


class CoachPlanCreateIn(BaseModel):
    slug: str = Field(min_length=1, max_length=80)
    name: str = Field(min_length=1, max_length=120)
    display_name: Optional[str] = None
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    currency: str = "ARS"
    billing_interval: Literal["month", "year"] = "month"
    max_students: int = Field(default=0, ge=0)
    commission_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    max_student_plans: int = Field(default=2, ge=0)
    max_student_plan_tier: StudentPlanTier = "basic"
    features: CoachPlanFeatures = Field(default_factory=CoachPlanFeatures)

    @field_validator("slug")
    @classmethod
    def _slug(cls, v: str) -> str:
        return v.strip().lower()


class CoachPlanUpdateIn(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    max_students: Optional[int] = Field(default=None, ge=0)
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    max_student_plans: Optional[int] = Field(default=None, ge=0)
    max_student_plan_tier: Optional[StudentPlanTier] = None
    features: Optional[CoachPlanFeatures] = None
    is_active: Optional[bool] = None


class StudentPlanCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    currency: str = "ARS"
    billing_interval: Literal["month", "year"] = "month"
    tier: StudentPlanTier = "basic"
    features: StudentPlanFeatures = Field(default_factory=StudentPlanFeatures)


# -----------------------------
# SUBSCRIPTIONS
# -----------------------------
class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscriber_id: int
    plan_id: int
    status: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool


class ChangePlanIn(BaseModel):
    new_plan_id: int = Field(gt=0)
    # Admins may act on another subscriber; everyone else changes their own plan.
    subscriber_id: Optional[int] = Field(default=None, gt=0)


class ChangePlanOut(BaseModel):
    subscription_id: int
    status: str
    current_period_start: datetime
    current_period_end: datetime


class AssignPlanIn(BaseModel):
    plan_id: int = Field(gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _period(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ReactivateIn(BaseModel):
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class PaymentEventIn(BaseModel):
    external_payment_id: str = Field(min_length=1, max_length=120)
    subscriber_id: int = Field(gt=0)
    outcome: Literal["succeeded", "failed"]
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    plan_id: Optional[int] = Field(default=None, gt=0)


class PaymentEventOut(BaseModel):
    ok: bool = True
    duplicate: bool
    subscription_id: Optional[int] = None
    status: Optional[str] = None


# -----------------------------
# PREFERENCES
# -----------------------------
class PreferenceIn(BaseModel):
    discipline_id: Optional[int] = Field(default=None, gt=0)
    level_id: Optional[int] = Field(default=None, gt=0)


class PreferenceOut(BaseModel):
    user_id: int
    discipline_id: Optional[int] = None
    level_id: Optional[int] = None
    last_preference_change_date: Optional[datetime] = None
    can_change: bool
    next_change_date: Optional[datetime] = None


# -----------------------------
# RM RECORDS
# -----------------------------
class RMCreateIn(BaseModel):
    exercise: str = Field(min_length=1, max_length=120)
    weight: float = Field(gt=0)
    recorded_at: Optional[datetime] = None

    @field_validator("exercise")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("exercise is required")
        return v


class RMOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    exercise: str
    weight: float
    recorded_at: datetime
