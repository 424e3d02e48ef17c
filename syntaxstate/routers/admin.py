from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from syntaxstate.db.ai_log_repository import AILogRepository
from syntaxstate.db.models import User
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.routers.deps import get_ai_log_repository, get_user_repository, require_admin
from syntaxstate.schemas import AdminPlanIn
from syntaxstate.utils.audit import auditor


router = APIRouter(prefix="/admin")


@router.get("/ai-stats")
async def ai_stats(
	admin: User = Depends(require_admin),
	logs: AILogRepository = Depends(get_ai_log_repository),
):
	return {
		"stats": await logs.aggregated_stats(),
		"errors": await logs.error_stats(),
		"latency": await logs.latency_percentiles(),
	}


@router.get("/ai-usage")
async def ai_usage(
	admin: User = Depends(require_admin),
	logs: AILogRepository = Depends(get_ai_log_repository),
):
	return {"items": await logs.usage_by_action()}


@router.get("/ai-logs")
async def ai_logs(
	action: Optional[str] = None,
	user_id: Optional[str] = None,
	status: Optional[str] = None,
	limit: int = Query(default=50, ge=1, le=200),
	skip: int = Query(default=0, ge=0),
	admin: User = Depends(require_admin),
	logs: AILogRepository = Depends(get_ai_log_repository),
):
	items = await logs.query(action=action, user_id=user_id, status=status, limit=limit, skip=skip)
	return {"items": [log.model_dump(mode="json") for log in items]}


@router.get("/ai-logs/{log_id}")
async def ai_log(
	log_id: str,
	admin: User = Depends(require_admin),
	logs: AILogRepository = Depends(get_ai_log_repository),
):
	log = await logs.find_by_id(log_id)
	if log is None:
		raise HTTPException(status_code=404, detail="Log not found")
	return log.model_dump(mode="json")


@router.put("/users/{user_id}/plan")
async def set_user_plan(
	user_id: str,
	payload: AdminPlanIn,
	admin: User = Depends(require_admin),
	users: UserRepository = Depends(get_user_repository),
):
	updated = await users.set_plan_by_id(user_id, payload.plan)
	if updated is None:
		raise HTTPException(status_code=404, detail="User not found")
	await auditor.log({"type": "admin_plan_change", "admin": admin.clerk_id, "user_id": user_id, "plan": payload.plan})
	return {"id": updated.id, "plan": updated.plan, "iterations": updated.iterations.model_dump(mode="json")}


@router.post("/users/{user_id}/reset-iterations")
async def reset_user_iterations(
	user_id: str,
	admin: User = Depends(require_admin),
	users: UserRepository = Depends(get_user_repository),
):
	updated = await users.reset_iterations_by_id(user_id)
	if updated is None:
		raise HTTPException(status_code=404, detail="User not found")
	await auditor.log({"type": "admin_reset_iterations", "admin": admin.clerk_id, "user_id": user_id})
	return {"id": updated.id, "iterations": updated.iterations.model_dump(mode="json")}
