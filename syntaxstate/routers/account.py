from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from syntaxstate.db.ai_log_repository import AILogRepository
from syntaxstate.db.models import User
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.pricing import PRICING_TIERS
from syntaxstate.routers.deps import get_ai_log_repository, get_current_user, get_user_repository
from syntaxstate.schemas import ByokIn, MeOut, QuotaOut
from syntaxstate.utils.audit import auditor
from syntaxstate.utils.feature_gate import get_analogy_styles, get_available_features, get_model_tier_for_plan, require_feature


router = APIRouter()


def _me(user: User) -> MeOut:
	return MeOut(
		id=user.id,
		clerk_id=user.clerk_id,
		plan=user.plan,
		iterations=QuotaOut(**user.iterations.model_dump()),
		interviews=QuotaOut(**user.interviews.model_dump()),
		chat_messages=QuotaOut(**user.chat_messages.model_dump()),
		features=get_available_features(user.plan),
		analogy_styles=get_analogy_styles(user.plan),
		model_tier=get_model_tier_for_plan(user.plan),
		byok=user.is_byok,
	)


@router.get("/me", response_model=MeOut)
async def me(user: User = Depends(get_current_user)):
	return _me(user)


@router.put("/me/byok", response_model=MeOut)
async def update_byok(
	payload: ByokIn,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
):
	require_feature("byok", user.plan)
	api_key = (payload.api_key or "").strip() or None
	updated = await users.update_byok(user.clerk_id, api_key, payload.tier_config if api_key else None)
	if updated is None:
		raise HTTPException(status_code=404, detail="User not found")
	await auditor.log({"type": "byok_updated", "user_id": user.id, "enabled": bool(api_key)})
	return _me(updated)


@router.get("/me/analytics")
async def my_analytics(
	user: User = Depends(get_current_user),
	logs: AILogRepository = Depends(get_ai_log_repository),
):
	require_feature("analytics", user.plan)
	return await logs.aggregated_stats(user.id)


@router.get("/pricing")
async def pricing():
	return {"tiers": [asdict(tier) for tier in PRICING_TIERS]}
