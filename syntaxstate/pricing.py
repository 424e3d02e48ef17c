from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional


UserPlan = Literal["FREE", "PRO", "MAX"]
PLANS: tuple[str, ...] = ("FREE", "PRO", "MAX")

FREE_INTERVIEW_LIMIT = 3
PRO_INTERVIEW_LIMIT = 10
MAX_INTERVIEW_LIMIT = 50

FREE_ITERATION_LIMIT = 20
PRO_ITERATION_LIMIT = 100
MAX_ITERATION_LIMIT = 250

FREE_CHAT_MESSAGE_LIMIT = 50
PRO_CHAT_MESSAGE_LIMIT = 300
MAX_CHAT_MESSAGE_LIMIT = 1000


@dataclass(frozen=True)
class PlanLimits:
	interviews: int
	iterations: int
	chat_messages: int


PLAN_LIMITS: Dict[str, PlanLimits] = {
	"FREE": PlanLimits(FREE_INTERVIEW_LIMIT, FREE_ITERATION_LIMIT, FREE_CHAT_MESSAGE_LIMIT),
	"PRO": PlanLimits(PRO_INTERVIEW_LIMIT, PRO_ITERATION_LIMIT, PRO_CHAT_MESSAGE_LIMIT),
	"MAX": PlanLimits(MAX_INTERVIEW_LIMIT, MAX_ITERATION_LIMIT, MAX_CHAT_MESSAGE_LIMIT),
}


def get_plan_limits(plan: Optional[str]) -> PlanLimits:
	"""Unknown plans fall back to the FREE limits."""
	return PLAN_LIMITS.get((plan or "FREE").upper(), PLAN_LIMITS["FREE"])


@dataclass(frozen=True)
class PlanFeatureLine:
	name: str
	included: bool
	tooltip: Optional[str] = None
	upcoming: bool = False


@dataclass(frozen=True)
class PricingTier:
	id: Literal["free", "pro", "max"]
	name: str
	price: int
	period: str
	description: str
	limits: PlanLimits
	features: List[PlanFeatureLine] = field(default_factory=list)
	cta: str = ""
	plan: Optional[str] = None
	badge: Optional[str] = None
	featured: bool = False


PRICING_TIERS: List[PricingTier] = [
	PricingTier(
		id="free",
		name="Free",
		price=0,
		period="/month",
		description="Perfect for trying out the platform",
		limits=PLAN_LIMITS["FREE"],
		features=[
			PlanFeatureLine(f"{FREE_INTERVIEW_LIMIT} interviews/month", True),
			PlanFeatureLine(f"{FREE_ITERATION_LIMIT} iterations/month", True),
			PlanFeatureLine("Basic AI generation", True),
			PlanFeatureLine("Standard analogies", True),
			PlanFeatureLine("PDF export", False),
			PlanFeatureLine("Custom theme", False),
			PlanFeatureLine("BYOK option", False),
		],
		cta="Get Started",
		plan="FREE",
	),
	PricingTier(
		id="pro",
		name="Pro",
		price=19,
		period="/month",
		description="For active job seekers",
		limits=PLAN_LIMITS["PRO"],
		features=[
			PlanFeatureLine(f"{PRO_INTERVIEW_LIMIT} interviews/month", True),
			PlanFeatureLine(f"{PRO_ITERATION_LIMIT} iterations/month", True),
			PlanFeatureLine("Advanced AI generation", True),
			PlanFeatureLine("All analogy levels", True),
			PlanFeatureLine("PDF export", True),
			PlanFeatureLine("Custom theme", True),
			PlanFeatureLine("Analytics & Insights", True, tooltip="Track your preparation progress with visualizations"),
			PlanFeatureLine("BYOK option", False),
		],
		cta="Subscribe to Pro",
		plan="PRO",
		badge="Most Popular",
		featured=True,
	),
	PricingTier(
		id="max",
		name="Max",
		price=39,
		period="/month",
		description="For power users and teams",
		limits=PLAN_LIMITS["MAX"],
		features=[
			PlanFeatureLine(f"{MAX_INTERVIEW_LIMIT} interviews/month", True),
			PlanFeatureLine(f"{MAX_ITERATION_LIMIT} iterations/month", True),
			PlanFeatureLine("Everything in Pro", True),
			PlanFeatureLine("BYOK option", True, tooltip="Bring Your Own Key - use your own OpenRouter API key"),
			PlanFeatureLine("Custom system prompts", True),
			PlanFeatureLine("Multi-model chat", True),
			PlanFeatureLine("API access", True, upcoming=True),
		],
		cta="Subscribe to Max",
		plan="MAX",
	),
]


def get_tier_by_id(tier_id: str) -> Optional[PricingTier]:
	return next((t for t in PRICING_TIERS if t.id == tier_id), None)


def get_tier_by_plan(plan: str) -> Optional[PricingTier]:
	return next((t for t in PRICING_TIERS if t.plan == plan), None)


def format_price(price: int) -> str:
	return "$0" if price == 0 else f"${price}"


def next_reset_date(now: Optional[datetime] = None) -> datetime:
	"""First day of the following month, 00:00 UTC."""
	now = now or datetime.now(timezone.utc)
	if now.month == 12:
		return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
	return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
