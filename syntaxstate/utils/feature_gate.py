from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


AnalogyStyle = str
ANALOGY_STYLES: tuple[str, ...] = ("professional", "construction", "simple")

FEATURE_ACCESS_MAP: Dict[str, List[str]] = {
	"analogy_all_styles": ["PRO", "MAX"],
	"pdf_export": ["PRO", "MAX"],
	"byok": ["MAX"],
	"custom_prompts": ["MAX"],
	"advanced_ai": ["PRO", "MAX"],
	"custom_theme": ["PRO", "MAX"],
	"analytics": ["PRO", "MAX"],
}

ANALOGY_ACCESS_MAP: Dict[str, List[str]] = {
	"FREE": ["professional"],
	"PRO": ["professional", "construction", "simple"],
	"MAX": ["professional", "construction", "simple"],
}

PLAN_MODEL_TIER_MAP: Dict[str, str] = {
	"FREE": "standard",
	"PRO": "advanced",
	"MAX": "advanced",
}


@dataclass
class FeatureAccess:
	allowed: bool
	required_plan: Optional[str] = None
	upgrade_message: Optional[str] = None


class FeatureNotAvailableError(Exception):
	def __init__(self, feature: str, required_plan: Optional[str], message: str) -> None:
		super().__init__(message)
		self.feature = feature
		self.required_plan = required_plan


def can_access(feature: str, plan: str) -> FeatureAccess:
	allowed_plans = FEATURE_ACCESS_MAP[feature]
	if plan in allowed_plans:
		return FeatureAccess(allowed=True)
	# Lists are ordered cheapest first
	required_plan = allowed_plans[0]
	return FeatureAccess(
		allowed=False,
		required_plan=required_plan,
		upgrade_message=f"This feature requires a {required_plan} plan or higher. Please upgrade to access it.",
	)


def get_available_features(plan: str) -> List[str]:
	return [feature for feature, plans in FEATURE_ACCESS_MAP.items() if plan in plans]


def get_analogy_styles(plan: str) -> List[str]:
	return list(ANALOGY_ACCESS_MAP.get(plan, ANALOGY_ACCESS_MAP["FREE"]))


def get_model_tier_for_plan(plan: str) -> str:
	return PLAN_MODEL_TIER_MAP.get(plan, "standard")


def require_feature(feature: str, plan: str) -> None:
	access = can_access(feature, plan)
	if not access.allowed:
		raise FeatureNotAvailableError(
			feature,
			access.required_plan,
			access.upgrade_message or f'Feature "{feature}" requires a {access.required_plan} plan or higher.',
		)


def can_use_analogy_style(style: str, plan: str) -> bool:
	return style in get_analogy_styles(plan)
