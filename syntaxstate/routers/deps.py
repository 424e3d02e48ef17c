from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException

from syntaxstate.config import settings
from syntaxstate.db.ai_log_repository import AILogRepository
from syntaxstate.db.client import get_db
from syntaxstate.db.conversation_repository import ConversationRepository
from syntaxstate.db.interview_repository import InterviewRepository
from syntaxstate.db.learning_path_repository import LearningPathRepository
from syntaxstate.db.models import Interview, LearningPath, QuotaCounter, User
from syntaxstate.db.topic_chat_repository import TopicChatRepository
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.services.llm_service import ModelChoice, llm_service
from syntaxstate.services.stream_store import StreamStore, get_stream_store
from syntaxstate.utils.security import get_auth_user_id


def get_user_repository() -> UserRepository:
	return UserRepository(get_db())


def get_interview_repository() -> InterviewRepository:
	return InterviewRepository(get_db())


def get_learning_path_repository() -> LearningPathRepository:
	return LearningPathRepository(get_db())


def get_conversation_repository() -> ConversationRepository:
	return ConversationRepository(get_db())


def get_ai_log_repository() -> AILogRepository:
	return AILogRepository(get_db())


def get_topic_chat_repository() -> TopicChatRepository:
	return TopicChatRepository(get_db())


def get_streams() -> StreamStore:
	return get_stream_store()


async def get_current_user(
	clerk_id: str = Depends(get_auth_user_id),
	users: UserRepository = Depends(get_user_repository),
) -> User:
	user = await users.find_by_clerk_id(clerk_id)
	if user is None:
		raise HTTPException(status_code=401, detail="User not found")
	return await users.refresh_quotas(user)


async def require_admin(user: User = Depends(get_current_user)) -> User:
	if user.clerk_id not in settings.admin_user_ids:
		raise HTTPException(status_code=403, detail="Forbidden")
	return user


class QuotaExceededError(Exception):
	"""Rendered as a 429 with {error, remaining, limit} by the app."""

	def __init__(self, label: str, limit: int) -> None:
		super().__init__(f"{label} limit reached. Please upgrade your plan.")
		self.limit = limit


def ensure_quota(counter: QuotaCounter, label: str, cost: float = 0) -> None:
	remaining = counter.limit - counter.count
	if remaining <= 0 or remaining < cost:
		raise QuotaExceededError(label, counter.limit)


async def load_owned_interview(interview_id: str, user: User, interviews: InterviewRepository, allow_public: bool = False) -> Interview:
	interview = await interviews.find_by_id(interview_id)
	if interview is None:
		raise HTTPException(status_code=404, detail="Interview not found")
	if interview.user_id != user.id and not (allow_public and interview.is_public):
		raise HTTPException(status_code=403, detail="Forbidden")
	return interview


async def load_owned_path(path_id: str, user: User, paths: LearningPathRepository) -> LearningPath:
	path = await paths.find_by_id(path_id)
	if path is None:
		raise HTTPException(status_code=404, detail="Learning path not found")
	if path.user_id != user.id:
		raise HTTPException(status_code=403, detail="Forbidden")
	return path


def choose_model(user: User, tier: Optional[str] = None, selected_model: Optional[str] = None) -> ModelChoice:
	if not llm_service.enabled_for(user.byok_api_key):
		raise HTTPException(status_code=503, detail="LLM provider is not configured")
	return llm_service.resolve_model(
		user.plan,
		byok_tier_config=user.byok_tier_config if user.is_byok else None,
		selected_model=selected_model,
		tier=tier,
		byok=user.is_byok,
	)
