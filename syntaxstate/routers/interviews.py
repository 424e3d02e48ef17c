from __future__ import annotations

import asyncio
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from syntaxstate.db.interview_repository import InterviewRepository
from syntaxstate.db.models import MODULES, ChatMessage, JobDetails, User
from syntaxstate.db.topic_chat_repository import TopicChatRepository
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.routers.deps import (
	choose_model,
	ensure_quota,
	get_current_user,
	get_interview_repository,
	get_streams,
	get_topic_chat_repository,
	get_user_repository,
	load_owned_interview,
)
from syntaxstate.schemas import (
	GenerateAllOut,
	InterviewList,
	InterviewSummary,
	ModuleStreamIn,
	RegenerateTopicIn,
	RegenerateTopicOut,
	TopicChatIn,
	VisibilityIn,
)
from syntaxstate.services.ai_logger import REGENERATE_ANALOGY, LoggerContext, ai_logger, extract_token_usage
from syntaxstate.services.interview_generator import GenerationContext, analogy_messages
from syntaxstate.services.llm_service import LLMError, llm_service
from syntaxstate.services.module_stream import ModuleStreamJob, generate_missing_modules, relay, resume_frames, spawn
from syntaxstate.services.stream_store import StreamStore
from syntaxstate.services.topic_chat_service import CHAT_ITERATION_COST, TopicChatTurn
from syntaxstate.utils.audit import auditor
from syntaxstate.utils.feature_gate import FeatureNotAvailableError, can_access, can_use_analogy_style
from syntaxstate.utils.sse import SSE_HEADERS
from syntaxstate.utils.text_extract import UnsupportedResumeError, extract_resume_text


router = APIRouter(prefix="/interviews")


def _summary(interview) -> InterviewSummary:
	return InterviewSummary(
		id=interview.id,
		job_title=interview.job_details.title,
		company=interview.job_details.company,
		is_public=interview.is_public,
		created_at=interview.created_at,
		modules_ready=[m for m in MODULES if not interview.modules.is_empty(m)],
	)


def _check_module(module: str) -> None:
	if module not in MODULES:
		raise HTTPException(status_code=400, detail=f"Unknown module: {module}")


def _find_topic(interview, topic_id: str):
	topic = next((t for t in interview.modules.revision_topics if t.id == topic_id), None)
	if topic is None:
		raise HTTPException(status_code=404, detail="Topic not found")
	return topic


@router.post("")
async def create_interview(
	job_title: str = Form(...),
	company: str = Form(...),
	job_description: str = Form(...),
	resume_text: Optional[str] = Form(default=None),
	resume: Optional[UploadFile] = File(default=None),
	custom_instructions: Optional[str] = Form(default=None),
	excluded_modules: Optional[str] = Form(default=None, description="Comma-separated module names"),
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	ensure_quota(user.interviews, "Interview")

	text = resume_text or ""
	if resume is not None and resume.filename:
		data = await resume.read()
		try:
			text = extract_resume_text(resume.filename, resume.content_type or "", data)
		except UnsupportedResumeError as e:
			raise HTTPException(status_code=415, detail=str(e))
		if not text.strip():
			raise HTTPException(status_code=400, detail="Uploaded resume appears empty.")

	excluded = [m.strip() for m in (excluded_modules or "").split(",") if m.strip()]
	for module in excluded:
		_check_module(module)
	if custom_instructions and len(custom_instructions) > 2000:
		raise HTTPException(status_code=400, detail="Custom instructions must be at most 2000 characters")

	try:
		job = JobDetails(title=job_title, company=company, description=job_description)
	except ValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))
	interview = await interviews.create(user.id, job, text, excluded, custom_instructions)
	await users.increment_interview(user.clerk_id)
	await auditor.log({"type": "interview_created", "interview_id": interview.id, "user_id": user.id})
	return interview.model_dump(mode="json")


@router.get("", response_model=InterviewList)
async def list_interviews(
	user: User = Depends(get_current_user),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	items = await interviews.find_by_user_id(user.id)
	return InterviewList(items=[_summary(i) for i in items])


@router.get("/{interview_id}")
async def get_interview(
	interview_id: str,
	user: User = Depends(get_current_user),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	interview = await load_owned_interview(interview_id, user, interviews, allow_public=True)
	return interview.model_dump(mode="json")


@router.delete("/{interview_id}")
async def delete_interview(
	interview_id: str,
	user: User = Depends(get_current_user),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	await load_owned_interview(interview_id, user, interviews)
	await interviews.delete(interview_id)
	return {"status": "ok"}


@router.patch("/{interview_id}/visibility")
async def set_visibility(
	interview_id: str,
	payload: VisibilityIn,
	user: User = Depends(get_current_user),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	await load_owned_interview(interview_id, user, interviews)
	await interviews.set_public(interview_id, payload.is_public)
	return {"id": interview_id, "is_public": payload.is_public}


@router.post("/{interview_id}/topics/{topic_id}/regenerate", response_model=RegenerateTopicOut)
async def regenerate_topic(
	interview_id: str,
	topic_id: str,
	payload: RegenerateTopicIn,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	if not can_use_analogy_style(payload.style, user.plan):
		access = can_access("analogy_all_styles", user.plan)
		raise FeatureNotAvailableError("analogy_all_styles", access.required_plan, access.upgrade_message or "Upgrade required")

	interview = await load_owned_interview(interview_id, user, interviews)
	topic = _find_topic(interview, topic_id)

	cached = topic.style_cache.get(payload.style)
	if cached:
		if topic.style != payload.style:
			await interviews.update_topic_style(interview_id, topic_id, cached, payload.style)
		return RegenerateTopicOut(topic_id=topic_id, style=payload.style, content=cached, cached=True)

	if not user.is_byok:
		ensure_quota(user.iterations, "Iteration")
		await users.increment_iteration(user.clerk_id)

	choice = choose_model(user)
	messages = analogy_messages(topic, payload.style, GenerationContext.from_interview(interview))
	loggerctx = LoggerContext(metadata={"streaming": False, "byok_used": user.is_byok, "style": payload.style})
	try:
		result = await llm_service.complete(
			messages,
			model=choice.model,
			temperature=choice.temperature,
			max_tokens=choice.max_tokens,
			api_key=user.byok_api_key,
		)
	except LLMError as e:
		await ai_logger.log_ai_error({
			"interview_id": interview_id,
			"user_id": user.id,
			"action": REGENERATE_ANALOGY,
			"model": choice.display_id,
			"prompt": messages[-1]["content"],
			"error_message": str(e),
			"latency_ms": loggerctx.latency_ms,
			"metadata": loggerctx.metadata,
		})
		raise HTTPException(status_code=502, detail=str(e))

	content = result.text.strip()
	await interviews.update_topic_style(interview_id, topic_id, content, payload.style)
	await ai_logger.log_ai_request({
		"interview_id": interview_id,
		"user_id": user.id,
		"action": REGENERATE_ANALOGY,
		"model": choice.display_id,
		"prompt": messages[-1]["content"],
		"response": content,
		"token_usage": extract_token_usage(result.usage),
		"latency_ms": loggerctx.latency_ms,
		"metadata": loggerctx.metadata,
	})
	return RegenerateTopicOut(topic_id=topic_id, style=payload.style, content=content)


@router.get("/{interview_id}/topics/{topic_id}/chat")
async def get_topic_chat(
	interview_id: str,
	topic_id: str,
	user: User = Depends(get_current_user),
	interviews: InterviewRepository = Depends(get_interview_repository),
	chats: TopicChatRepository = Depends(get_topic_chat_repository),
):
	await load_owned_interview(interview_id, user, interviews, allow_public=True)
	messages = await chats.get_messages(interview_id, topic_id)
	return {"messages": [m.model_dump(mode="json") for m in messages]}


@router.post("/{interview_id}/topics/{topic_id}/chat")
async def topic_chat(
	interview_id: str,
	topic_id: str,
	payload: TopicChatIn,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	interviews: InterviewRepository = Depends(get_interview_repository),
	chats: TopicChatRepository = Depends(get_topic_chat_repository),
):
	interview = await load_owned_interview(interview_id, user, interviews, allow_public=True)
	topic = _find_topic(interview, topic_id)
	last = payload.messages[-1]
	if last.role != "user" or not last.content.strip():
		raise HTTPException(status_code=400, detail="The last message must come from the user")

	if not user.is_byok:
		ensure_quota(user.iterations, "Iteration", cost=CHAT_ITERATION_COST)
		await users.increment_iteration(user.clerk_id, CHAT_ITERATION_COST)

	choice = choose_model(user, tier="low")
	await chats.find_or_create(interview_id, topic_id, user.id)
	await chats.add_message(interview_id, topic_id, ChatMessage(
		id=last.id or f"user_{uuid.uuid4().hex[:12]}",
		role="user",
		content=last.content,
	))
	turn = TopicChatTurn(
		interview=interview,
		topic=topic,
		user_id=user.id,
		messages=[m.model_dump() for m in payload.messages],
		choice=choice,
		chats=chats,
		api_key=user.byok_api_key,
	)
	return StreamingResponse(turn.stream(), headers={**SSE_HEADERS, "X-Model-Id": choice.display_id})


@router.post("/{interview_id}/modules/{module}/stream")
async def stream_module(
	interview_id: str,
	module: str,
	payload: ModuleStreamIn,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	interviews: InterviewRepository = Depends(get_interview_repository),
	streams: StreamStore = Depends(get_streams),
):
	_check_module(module)
	interview = await load_owned_interview(interview_id, user, interviews)
	if module in interview.excluded_modules:
		raise HTTPException(status_code=400, detail=f"Module {module} is excluded from this interview")
	if payload.append and module == "opening_brief":
		raise HTTPException(status_code=400, detail="The opening brief cannot be appended to")

	if not user.is_byok:
		ensure_quota(user.iterations, "Iteration")
		await users.increment_iteration(user.clerk_id)

	job = ModuleStreamJob(
		interview=interview,
		module=module,
		user_id=user.id,
		choice=choose_model(user),
		streams=streams,
		interviews=interviews,
		api_key=user.byok_api_key,
		instructions=payload.instructions,
		count=payload.count,
		append=payload.append,
	)
	await job.register()
	sink: asyncio.Queue = asyncio.Queue()
	spawn(job.run(sink))
	return StreamingResponse(relay(sink), headers={**SSE_HEADERS, "X-Stream-Id": job.stream_id})


@router.get("/{interview_id}/stream/{module}")
async def resume_module_stream(
	interview_id: str,
	module: str,
	user: User = Depends(get_current_user),
	interviews: InterviewRepository = Depends(get_interview_repository),
	streams: StreamStore = Depends(get_streams),
):
	await load_owned_interview(interview_id, user, interviews)
	record = await streams.get("interview", interview_id, module)
	buffered = await streams.get_content("interview", interview_id, module)
	if record is None and not buffered:
		return Response(status_code=204)

	headers = {**SSE_HEADERS, "X-Stream-Resumed": "true"}
	if record is not None:
		headers["X-Stream-Id"] = record.stream_id
	return StreamingResponse(resume_frames(streams, interview_id, module, record, buffered), headers=headers)


@router.post("/{interview_id}/generate", response_model=GenerateAllOut)
async def generate_all(
	interview_id: str,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	interviews: InterviewRepository = Depends(get_interview_repository),
):
	interview = await load_owned_interview(interview_id, user, interviews)
	if not user.is_byok:
		ensure_quota(user.iterations, "Iteration")
		await users.increment_iteration(user.clerk_id)
	results: List[dict] = await generate_missing_modules(
		interview,
		user.id,
		choose_model(user),
		interviews,
		api_key=user.byok_api_key,
	)
	return GenerateAllOut(interview_id=interview_id, results=results)
