from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from syntaxstate.db.client import USERS, new_id
from syntaxstate.db.models import ByokTierModel, QuotaCounter, User, utcnow
from syntaxstate.pricing import get_plan_limits, next_reset_date


logger = logging.getLogger(__name__)

COUNTERS = ("iterations", "interviews", "chat_messages")


class UserRepository:
	"""Users keyed by their Clerk id. Quota counters reset lazily on read."""

	def __init__(self, db: AsyncIOMotorDatabase) -> None:
		self._col = db[USERS]

	@staticmethod
	def _load(doc: Optional[Dict[str, Any]]) -> Optional[User]:
		return User.model_validate(doc) if doc else None

	async def _update_where(self, query: Dict[str, Any], update: Dict[str, Any]) -> Optional[User]:
		update.setdefault("$set", {})["updated_at"] = utcnow()
		doc = await self._col.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
		return self._load(doc)

	async def _update(self, clerk_id: str, update: Dict[str, Any]) -> Optional[User]:
		return await self._update_where({"clerk_id": clerk_id}, update)

	async def create(self, clerk_id: str, plan: str = "FREE") -> User:
		limits = get_plan_limits(plan)
		reset = next_reset_date()
		user = User(
			_id=new_id(),
			clerk_id=clerk_id,
			plan=plan,
			iterations=QuotaCounter(limit=limits.iterations, reset_date=reset),
			interviews=QuotaCounter(limit=limits.interviews, reset_date=reset),
			chat_messages=QuotaCounter(limit=limits.chat_messages, reset_date=reset),
		)
		await self._col.insert_one(user.to_mongo())
		return user

	async def find_by_clerk_id(self, clerk_id: str) -> Optional[User]:
		return self._load(await self._col.find_one({"clerk_id": clerk_id}))

	async def find_by_id(self, user_id: str) -> Optional[User]:
		return self._load(await self._col.find_one({"_id": user_id}))

	async def find_by_stripe_customer_id(self, customer_id: str) -> Optional[User]:
		return self._load(await self._col.find_one({"stripe_customer_id": customer_id}))

	async def update_plan(self, clerk_id: str, plan: str) -> Optional[User]:
		current = await self.find_by_clerk_id(clerk_id)
		limits = get_plan_limits(plan)
		reset = next_reset_date()
		fields: Dict[str, Any] = {"plan": plan}
		for name, limit in (("iterations", limits.iterations), ("interviews", limits.interviews), ("chat_messages", limits.chat_messages)):
			fields[f"{name}.limit"] = limit
			fields[f"{name}.count"] = 0
			fields[f"{name}.reset_date"] = reset
		# Tier overrides are a MAX feature
		if current is not None and current.plan == "MAX" and plan != "MAX":
			fields["byok_tier_config"] = {}
		return await self._update(clerk_id, {"$set": fields})

	async def update_stripe_customer_id(self, clerk_id: str, customer_id: str) -> Optional[User]:
		return await self._update(clerk_id, {"$set": {"stripe_customer_id": customer_id}})

	async def update_stripe_subscription_id(self, clerk_id: str, subscription_id: str) -> Optional[User]:
		return await self._update(clerk_id, {"$set": {"stripe_subscription_id": subscription_id}})

	async def clear_stripe_subscription_id(self, clerk_id: str) -> Optional[User]:
		return await self._update(clerk_id, {"$unset": {"stripe_subscription_id": ""}})

	async def increment_iteration(self, clerk_id: str, amount: float = 1) -> Optional[User]:
		return await self._update(clerk_id, {"$inc": {"iterations.count": amount}})

	async def increment_interview(self, clerk_id: str) -> Optional[User]:
		return await self._update(clerk_id, {"$inc": {"interviews.count": 1}})

	async def increment_chat_message(self, clerk_id: str) -> Optional[User]:
		return await self._update(clerk_id, {"$inc": {"chat_messages.count": 1}})

	async def reset_iterations(self, clerk_id: str) -> Optional[User]:
		return await self._update(clerk_id, {"$set": {"iterations.count": 0, "iterations.reset_date": next_reset_date()}})

	async def set_plan_by_id(self, user_id: str, plan: str) -> Optional[User]:
		"""Admin override: moves the limits to the plan's, leaving usage and billing alone."""
		limits = get_plan_limits(plan)
		return await self._update_where({"_id": user_id}, {"$set": {
			"plan": plan,
			"iterations.limit": limits.iterations,
			"interviews.limit": limits.interviews,
			"chat_messages.limit": limits.chat_messages,
		}})

	async def reset_iterations_by_id(self, user_id: str) -> Optional[User]:
		return await self._update_where({"_id": user_id}, {"$set": {"iterations.count": 0}})

	async def refresh_quotas(self, user: User, now: Optional[datetime] = None) -> User:
		"""Zero every counter whose reset date has passed."""
		now = now or datetime.now(timezone.utc)
		fields: Dict[str, Any] = {}
		for name in COUNTERS:
			counter: QuotaCounter = getattr(user, name)
			reset_date = counter.reset_date
			if reset_date.tzinfo is None:
				reset_date = reset_date.replace(tzinfo=timezone.utc)
			if reset_date <= now:
				fields[f"{name}.count"] = 0
				fields[f"{name}.reset_date"] = next_reset_date(now)
		if not fields:
			return user
		logger.info("Resetting quotas %s for user %s", sorted(k.split(".")[0] for k in fields if k.endswith(".count")), user.id)
		return await self._update(user.clerk_id, {"$set": fields}) or user

	async def update_byok(self, clerk_id: str, api_key: Optional[str], tier_config: Optional[Dict[str, ByokTierModel]] = None) -> Optional[User]:
		if not api_key:
			return await self._update(clerk_id, {"$set": {"byok_api_key": None, "byok_tier_config": {}}})
		config = {tier: model.model_dump() for tier, model in (tier_config or {}).items()}
		return await self._update(clerk_id, {"$set": {"byok_api_key": api_key, "byok_tier_config": config}})

	async def delete_by_clerk_id(self, clerk_id: str) -> bool:
		result = await self._col.delete_one({"clerk_id": clerk_id})
		return result.deleted_count > 0
