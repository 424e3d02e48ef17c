from datetime import datetime, timezone

import pytest

from syntaxstate.pricing import PLAN_LIMITS, format_price, get_plan_limits, get_tier_by_plan, next_reset_date
from syntaxstate.utils.feature_gate import (
	FeatureNotAvailableError,
	can_access,
	can_use_analogy_style,
	get_analogy_styles,
	get_available_features,
	get_model_tier_for_plan,
	require_feature,
)


def test_free_plan_is_told_the_cheapest_plan_that_unlocks():
	access = can_access("analogy_all_styles", "FREE")
	assert not access.allowed
	assert access.required_plan == "PRO"
	assert "PRO" in access.upgrade_message


def test_byok_needs_max():
	assert can_access("byok", "PRO").required_plan == "MAX"
	assert can_access("byok", "MAX").allowed


def test_require_feature_raises_with_required_plan():
	with pytest.raises(FeatureNotAvailableError) as exc:
		require_feature("analytics", "FREE")
	assert exc.value.feature == "analytics"
	assert exc.value.required_plan == "PRO"
	require_feature("analytics", "PRO")


def test_available_features_grow_with_plan():
	assert get_available_features("FREE") == []
	assert "byok" not in get_available_features("PRO")
	assert set(get_available_features("PRO")) < set(get_available_features("MAX"))


def test_analogy_styles_per_plan():
	assert get_analogy_styles("FREE") == ["professional"]
	assert get_analogy_styles("UNKNOWN") == ["professional"]
	assert can_use_analogy_style("simple", "PRO")
	assert not can_use_analogy_style("construction", "FREE")


def test_model_tier_for_plan():
	assert get_model_tier_for_plan("FREE") == "standard"
	assert get_model_tier_for_plan("MAX") == "advanced"
	assert get_model_tier_for_plan("bogus") == "standard"


def test_plan_limits_fall_back_to_free():
	assert get_plan_limits("pro") == PLAN_LIMITS["PRO"]
	assert get_plan_limits(None) == PLAN_LIMITS["FREE"]
	assert get_plan_limits("ENTERPRISE") == PLAN_LIMITS["FREE"]
	assert get_plan_limits("MAX").chat_messages == 1000


def test_next_reset_date_rolls_over_year():
	assert next_reset_date(datetime(2024, 12, 15, tzinfo=timezone.utc)) == datetime(2025, 1, 1, tzinfo=timezone.utc)
	assert next_reset_date(datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc)) == datetime(2024, 2, 1, tzinfo=timezone.utc)


def test_tiers_and_price_format():
	assert format_price(0) == "$0"
	assert format_price(19) == "$19"
	assert get_tier_by_plan("PRO").featured
	assert get_tier_by_plan("NOPE") is None
