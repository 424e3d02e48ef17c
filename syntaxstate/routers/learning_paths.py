from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from syntaxstate.db.learning_path_repository import LearningPathRepository
from syntaxstate.db.models import User
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.routers.deps import (
	choose_model,
	ensure_quota,
	get_current_user,
	get_learning_path_repository,
	get_streams,
	get_user_repository,
	load_owned_path,
)
from syntaxstate.schemas import ActivityResultIn, ActivityResultOut, ActivityStreamIn, LearningPathCreate
from syntaxstate.services.activity_generator import ACTIVITY_TIERS, select_activity_type
from syntaxstate.services.activity_stream import ActivityStreamJob, cached_activity_frames
from syntaxstate.services.stream_store import StreamStore
from syntaxstate.utils.sse import SSE_HEADERS


router = APIRouter(prefix="/learning-paths")


async def _activity_body(request: Request) -> ActivityStreamIn:
	# An aborted, empty or non-object body counts as no options; bad fields are rejected
	try:
		raw = await request.body()
		data = json.loads(raw) if raw else {}
	except ValueError:
		data = {}
	if not isinstance(data, dict):
		data = {}
	try:
		return ActivityStreamIn.model_validate(data)
	except ValidationError as e:
		raise RequestValidationError(e.errors(include_url=False))


@router.post("")
async def create_learning_path(
	payload: LearningPathCreate,
	user: User = Depends(get_current_user),
	paths: LearningPathRepository = Depends(get_learning_path_repository),
):
	ids = [t.id for t in payload.topics]
	if len(set(ids)) != len(ids):
		raise HTTPException(status_code=400, detail="Topic ids must be unique")
	path = await paths.create(user.id, payload.goal, payload.topics, payload.difficulty)
	return path.model_dump(mode="json")


@router.get("")
async def list_learning_paths(
	user: User = Depends(get_current_user),
	paths: LearningPathRepository = Depends(get_learning_path_repository),
):
	items = await paths.find_by_user_id(user.id)
	return {"items": [p.model_dump(mode="json", exclude={"timeline"}) for p in items]}


@router.get("/{path_id}")
async def get_learning_path(
	path_id: str,
	user: User = Depends(get_current_user),
	paths: LearningPathRepository = Depends(get_learning_path_repository),
):
	path = await load_owned_path(path_id, user, paths)
	return path.model_dump(mode="json")


@router.post("/{path_id}/activity/result", response_model=ActivityResultOut)
async def record_activity_result(
	path_id: str,
	payload: ActivityResultIn,
	user: User = Depends(get_current_user),
	paths: LearningPathRepository = Depends(get_learning_path_repository),
):
	path = await load_owned_path(path_id, user, paths)
	try:
		updated = await paths.record_activity_result(path, payload.success)
	except ValueError:
		raise HTTPException(status_code=400, detail="No activity in progress")
	if updated is None:
		raise HTTPException(status_code=404, detail="Learning path not found")
	return ActivityResultOut(
		success=payload.success,
		difficulty_before=path.current_difficulty,
		difficulty_after=updated.current_difficulty,
	)


@router.post("/{path_id}/activity/stream")
async def stream_activity(
	path_id: str,
	request: Request,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	paths: LearningPathRepository = Depends(get_learning_path_repository),
	streams: StreamStore = Depends(get_streams),
):
	body = await _activity_body(request)
	path = await load_owned_path(path_id, user, paths)
	if not path.is_active:
		raise HTTPException(status_code=400, detail="Learning path is not active")

	if path.current_activity is not None and not body.regenerate:
		return StreamingResponse(
			cached_activity_frames(path.current_activity),
			headers={**SSE_HEADERS, "X-Cached-Activity": "true"},
		)

	topic_id = body.topic_id or path.current_topic_id
	if not topic_id:
		raise HTTPException(status_code=400, detail="No topic selected for activity generation")
	topic = path.find_topic(topic_id)
	if topic is None:
		raise HTTPException(status_code=404, detail="Topic not found in learning path")

	if not user.is_byok:
		ensure_quota(user.iterations, "Iteration")
		await users.increment_iteration(user.clerk_id)

	recent = [entry.activity_type for entry in path.timeline[-5:]]
	activity_type = body.activity_type or select_activity_type(topic.skill_cluster, recent)
	job = ActivityStreamJob(
		path=path,
		topic=topic,
		activity_type=activity_type,
		user_id=user.id,
		choice=choose_model(user, tier=ACTIVITY_TIERS[activity_type]),
		streams=streams,
		paths=paths,
		api_key=user.byok_api_key,
	)
	await job.register()
	return StreamingResponse(
		job.events(request.is_disconnected),
		headers={**SSE_HEADERS, "X-Stream-Id": job.stream_id},
		background=BackgroundTask(job.finalize),
	)
