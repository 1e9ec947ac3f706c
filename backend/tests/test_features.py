import pydantic
import pytest

from gymcoach.features import (
    FEATURE_KEYS,
    CoachPlanFeatures,
    StudentPlanFeatures,
    has_feature,
    is_student_tier_allowed,
    parse_features,
    unavailable_student_features,
)
from gymcoach.plans import DEFAULT_COACH_PLANS


def test_unknown_keys_are_rejected():
    with pytest.raises(pydantic.ValidationError):
        parse_features({"score_loadng": True})


def test_has_feature_rejects_keys_outside_schema():
    with pytest.raises(KeyError):
        has_feature(CoachPlanFeatures(), "score_loadng")
    with pytest.raises(KeyError):
        has_feature(None, "max_disciplines")


def test_has_feature_unset_and_missing_plan_are_false():
    assert has_feature(CoachPlanFeatures(), "score_loading") is False
    assert has_feature(None, "score_loading") is False
    assert has_feature(CoachPlanFeatures(score_loading=True), "score_loading") is True


def test_empty_bag_parses_to_defaults():
    f = parse_features(None)
    assert f.planification_access == "daily"
    assert f.max_disciplines == 0
    assert not any(f.enabled().values())


@pytest.mark.parametrize(
    "legacy,expected",
    [
        ({"planification_unlimited": True, "planification_monthly": True}, "unlimited"),
        ({"planification_monthly": True}, "monthly"),
        ({"daily_planification": True, "planification_weeks": 1}, "daily"),
    ],
)
def test_legacy_planification_flags_are_upgraded(legacy, expected):
    f = parse_features({**legacy, "timer": True})
    assert f.planification_access == expected
    assert f.schema_version == 2
    assert f.timer is True


def test_enabled_exposes_only_boolean_capabilities():
    enabled = CoachPlanFeatures(timer=True, max_disciplines=3).enabled()
    assert set(enabled) == FEATURE_KEYS
    assert enabled["timer"] is True
    assert "max_disciplines" not in enabled


def test_default_catalog_validates_and_is_ordered():
    by_slug = {p["slug"]: parse_features(p["features"]) for p in DEFAULT_COACH_PLANS}
    assert by_slug["start"].score_loading is False
    assert by_slug["power"].score_loading is True
    assert by_slug["elite"].personalized_planifications is True
    assert by_slug["start"].max_disciplines < by_slug["power"].max_disciplines < by_slug["elite"].max_disciplines


def test_student_tier_ordering():
    assert is_student_tier_allowed("premium", "standard")
    assert is_student_tier_allowed("premium", "premium")
    assert not is_student_tier_allowed("standard", "vip")
    assert not is_student_tier_allowed("standard", "platinum")


def test_student_features_need_matching_coach_features():
    wanted = StudentPlanFeatures(progress_tracking=True, timer_access=True)
    assert unavailable_student_features(wanted, CoachPlanFeatures(timer=True)) == ["progress_tracking"]
    assert unavailable_student_features(wanted, CoachPlanFeatures(timer=True, score_loading=True)) == []
    assert unavailable_student_features(wanted, None) == ["progress_tracking", "timer_access"]
