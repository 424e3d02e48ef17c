"""
Shared fixtures: users per plan, mocked repositories, an in-memory stream
store, a scripted LLM, and an app wired with dependency overrides.
"""

from datetime import datetime, timedelta, timezone
from typing import List
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI

from syntaxstate.config import settings
from syntaxstate.db.models import (
	Interview,
	JobDetails,
	LearningPath,
	LearningTopic,
	QuotaCounter,
	User,
)
from syntaxstate.main import feature_not_available, quota_exceeded
from syntaxstate.routers import deps
from syntaxstate.routers.account import router as account_router
from syntaxstate.routers.admin import router as admin_router
from syntaxstate.routers.assistant import router as assistant_router
from syntaxstate.routers.billing import router as billing_router
from syntaxstate.routers.interviews import router as interviews_router
from syntaxstate.routers.learning_paths import router as learning_paths_router
from syntaxstate.routers.webhooks import router as webhooks_router
from syntaxstate.services.llm_service import LLMChunk, llm_service
from syntaxstate.services.stream_store import MemoryStreamStore
from syntaxstate.utils.audit import auditor
from syntaxstate.utils.feature_gate import FeatureNotAvailableError


def make_user(plan: str = "FREE", iterations_used: float = 0, chat_used: int = 0, byok_key: str | None = None) -> User:
	reset = datetime.now(timezone.utc) + timedelta(days=10)
	return User(
		_id=f"user-{plan.lower()}",
		clerk_id=f"clerk-{plan.lower()}",
		plan=plan,
		iterations=QuotaCounter(count=iterations_used, limit=20, reset_date=reset),
		interviews=QuotaCounter(count=0, limit=3, reset_date=reset),
		chat_messages=QuotaCounter(count=chat_used, limit=50, reset_date=reset),
		byok_api_key=byok_key,
	)


def make_interview(user_id: str = "user-free", **kwargs) -> Interview:
	return Interview(
		_id="interview-1",
		user_id=user_id,
		job_details=JobDetails(title="Backend Engineer", company="Acme", description="Build APIs in Python"),
		resume_context="Five years of Django and FastAPI",
		**kwargs,
	)


def make_path(user_id: str = "user-free", **kwargs) -> LearningPath:
	return LearningPath(
		_id="path-1",
		user_id=user_id,
		goal="Get ready for backend interviews",
		topics=[
			LearningTopic(id="t1", title="Hash maps", skill_cluster="dsa", key_concepts=["hashing", "collisions"]),
			LearningTopic(id="t2", title="Caching", skill_cluster="system-design"),
		],
		current_topic_id="t1",
		**kwargs,
	)


class ScriptedLLM:
	"""Replays fixed text chunks in place of a provider stream."""

	def __init__(self, chunks: List[str], usage: dict | None = None, error: Exception | None = None) -> None:
		self.chunks = chunks
		self.usage = usage
		self.error = error
		self.calls: List[dict] = []

	async def __call__(self, messages, *, model, temperature=None, max_tokens=None, api_key=None):
		self.calls.append({"messages": messages, "model": model, "api_key": api_key})
		for text in self.chunks:
			yield LLMChunk(text=text)
		if self.error is not None:
			raise self.error
		yield LLMChunk(usage=self.usage, finish_reason="stop")


@pytest.fixture(autouse=True)
def llm_settings(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", "test-key")
	monkeypatch.setattr(settings, "llm_provider", "openrouter")
	monkeypatch.setattr(settings, "stream_throttle_ms", 0)
	monkeypatch.setattr(settings, "analytics_path", None)
	monkeypatch.setattr(auditor, "_path", None)


@pytest.fixture
def scripted_llm(monkeypatch):
	def install(chunks: List[str], usage: dict | None = None, error: Exception | None = None) -> ScriptedLLM:
		fake = ScriptedLLM(chunks, usage, error)
		monkeypatch.setattr(llm_service, "stream_chat", fake)
		return fake
	return install


@pytest.fixture
def log_calls(monkeypatch):
	from syntaxstate.services.ai_logger import ai_logger
	mock = AsyncMock(return_value="log-1")
	monkeypatch.setattr(ai_logger, "log_ai_request", mock)
	return mock


@pytest.fixture
def store() -> MemoryStreamStore:
	return MemoryStreamStore()


@pytest.fixture
def repos():
	return {
		"users": AsyncMock(),
		"interviews": AsyncMock(),
		"paths": AsyncMock(),
		"conversations": AsyncMock(),
		"logs": AsyncMock(),
		"topic_chats": AsyncMock(),
	}


@pytest.fixture
def current_user():
	return {"user": make_user()}


@pytest.fixture
def app(repos, store, current_user) -> FastAPI:
	app = FastAPI()
	app.add_exception_handler(FeatureNotAvailableError, feature_not_available)
	app.add_exception_handler(deps.QuotaExceededError, quota_exceeded)
	routers = (interviews_router, learning_paths_router, assistant_router, billing_router, webhooks_router, account_router, admin_router)
	for router in routers:
		app.include_router(router, prefix="/api")
	app.dependency_overrides[deps.get_current_user] = lambda: current_user["user"]
	app.dependency_overrides[deps.get_user_repository] = lambda: repos["users"]
	app.dependency_overrides[deps.get_interview_repository] = lambda: repos["interviews"]
	app.dependency_overrides[deps.get_learning_path_repository] = lambda: repos["paths"]
	app.dependency_overrides[deps.get_conversation_repository] = lambda: repos["conversations"]
	app.dependency_overrides[deps.get_ai_log_repository] = lambda: repos["logs"]
	app.dependency_overrides[deps.get_topic_chat_repository] = lambda: repos["topic_chats"]
	app.dependency_overrides[deps.get_streams] = lambda: store
	return app


@pytest.fixture
async def client(app):
	async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
		yield c
