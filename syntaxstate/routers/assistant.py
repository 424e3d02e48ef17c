from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from syntaxstate.db.conversation_repository import ConversationRepository
from syntaxstate.db.interview_repository import InterviewRepository
from syntaxstate.db.learning_path_repository import LearningPathRepository
from syntaxstate.db.models import ChatMessage, User
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.routers.deps import (
	choose_model,
	ensure_quota,
	get_conversation_repository,
	get_current_user,
	get_interview_repository,
	get_learning_path_repository,
	get_user_repository,
)
from syntaxstate.schemas import AssistantChatIn, ConversationList, ConversationSummary, ConversationTitleIn, MultiChatIn
from syntaxstate.services.assistant_service import (
	AssistantChat,
	AssistantContext,
	conversation_title,
	last_user_message,
	stream_multi_model,
)
from syntaxstate.services.llm_service import llm_service
from syntaxstate.utils.feature_gate import FeatureNotAvailableError
from syntaxstate.utils.sse import SSE_HEADERS


router = APIRouter()


async def _owned_conversation(conversation_id: str, user: User, conversations: ConversationRepository):
	conversation = await conversations.find_by_id(conversation_id)
	if conversation is None:
		raise HTTPException(status_code=404, detail="Conversation not found")
	if conversation.user_id != user.id:
		raise HTTPException(status_code=403, detail="Forbidden")
	return conversation


@router.post("/ai-assistant")
async def assistant_chat(
	payload: AssistantChatIn,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	conversations: ConversationRepository = Depends(get_conversation_repository),
	interviews: InterviewRepository = Depends(get_interview_repository),
	paths: LearningPathRepository = Depends(get_learning_path_repository),
):
	if not payload.messages:
		raise HTTPException(status_code=400, detail="Messages are required")

	if not user.is_byok:
		ensure_quota(user.chat_messages, "Chat message")
		await users.increment_chat_message(user.clerk_id)

	messages = [m.model_dump() for m in payload.messages]
	prompt = last_user_message(messages)
	conversation_id = payload.conversation_id
	is_new = False
	if conversation_id:
		await _owned_conversation(conversation_id, user, conversations)
	elif len(messages) == 1:
		conversation = await conversations.create(
			user.id,
			conversation_title(prompt),
			interview_id=payload.interview_id,
			learning_path_id=payload.learning_path_id,
		)
		conversation_id = conversation.id
		is_new = True

	last = payload.messages[-1]
	if conversation_id and last.role == "user":
		await conversations.add_message(conversation_id, ChatMessage(
			id=last.id or f"user_{len(messages)}",
			role="user",
			content=last.content,
		))

	interview = await interviews.find_by_id(payload.interview_id) if payload.interview_id else None
	path = await paths.find_by_id(payload.learning_path_id) if payload.learning_path_id else None
	choice = choose_model(user, selected_model=payload.selected_model_id if user.plan == "MAX" else None)

	chat = AssistantChat(
		user_id=user.id,
		messages=messages,
		choice=choice,
		context=AssistantContext.build(user.id, interview, path),
		conversation_id=conversation_id,
		conversations=conversations,
		api_key=user.byok_api_key,
		log_owner_id=payload.interview_id or payload.learning_path_id,
	)
	headers = {**SSE_HEADERS, "X-Model-Id": choice.display_id}
	if conversation_id:
		headers["X-Conversation-Id"] = conversation_id
		if is_new:
			headers["X-New-Conversation"] = "true"
	return StreamingResponse(chat.stream(), headers=headers)


@router.post("/ai-assistant/multi")
async def assistant_multi(
	payload: MultiChatIn,
	user: User = Depends(get_current_user),
	users: UserRepository = Depends(get_user_repository),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	if user.plan != "MAX":
		raise FeatureNotAvailableError("multi_model", "MAX", "Multi-model comparison requires a MAX plan.")
	if not user.is_byok:
		ensure_quota(user.chat_messages, "Chat message")
		if payload.should_increment_count:
			await users.increment_chat_message(user.clerk_id)
	if payload.conversation_id:
		await _owned_conversation(payload.conversation_id, user, conversations)

	if not llm_service.enabled_for(user.byok_api_key):
		raise HTTPException(status_code=503, detail="LLM provider is not configured")
	return StreamingResponse(
		stream_multi_model(user.id, payload.message, payload.model_id, api_key=user.byok_api_key),
		headers={**SSE_HEADERS, "X-Model-Id": payload.model_id},
	)


def _summaries(items) -> ConversationList:
	return ConversationList(items=[
		ConversationSummary(
			id=c.id,
			title=c.title,
			interview_id=c.interview_id,
			learning_path_id=c.learning_path_id,
			is_pinned=c.is_pinned,
			is_archived=c.is_archived,
			updated_at=c.updated_at,
		)
		for c in items
	])


@router.get("/conversations", response_model=ConversationList)
async def list_conversations(
	limit: int = Query(default=50, ge=1, le=200),
	include_archived: bool = False,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	return _summaries(await conversations.find_by_user_id(user.id, limit=limit, include_archived=include_archived))


@router.get("/conversations/archived", response_model=ConversationList)
async def list_archived_conversations(
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	return _summaries(await conversations.find_archived_by_user(user.id))


@router.get("/conversations/{conversation_id}")
async def get_conversation(
	conversation_id: str,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	conversation = await _owned_conversation(conversation_id, user, conversations)
	return conversation.model_dump(mode="json")


@router.patch("/conversations/{conversation_id}")
async def rename_conversation(
	conversation_id: str,
	payload: ConversationTitleIn,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	await _owned_conversation(conversation_id, user, conversations)
	title = payload.title.strip()
	if not title:
		raise HTTPException(status_code=400, detail="Title must not be blank")
	await conversations.update_title(conversation_id, title)
	return {"id": conversation_id, "title": title}


@router.post("/conversations/{conversation_id}/pin")
async def toggle_pin_conversation(
	conversation_id: str,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	conversation = await _owned_conversation(conversation_id, user, conversations)
	await conversations.toggle_pin(conversation_id)
	return {"id": conversation_id, "is_pinned": not conversation.is_pinned}


@router.post("/conversations/{conversation_id}/archive")
async def archive_conversation(
	conversation_id: str,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	await _owned_conversation(conversation_id, user, conversations)
	await conversations.archive(conversation_id)
	return {"id": conversation_id, "is_archived": True}


@router.post("/conversations/{conversation_id}/restore")
async def restore_conversation(
	conversation_id: str,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	await _owned_conversation(conversation_id, user, conversations)
	await conversations.restore(conversation_id)
	return {"id": conversation_id, "is_archived": False}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
	conversation_id: str,
	user: User = Depends(get_current_user),
	conversations: ConversationRepository = Depends(get_conversation_repository),
):
	await _owned_conversation(conversation_id, user, conversations)
	await conversations.delete(conversation_id)
	return {"status": "ok"}
