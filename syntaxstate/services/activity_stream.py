from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import anyio

from syntaxstate.config import settings
from syntaxstate.db.learning_path_repository import LearningPathRepository
from syntaxstate.db.models import Activity, LearningPath, LearningTopic
from syntaxstate.services.activity_generator import ActivityContext, activity_messages, finalize_activity
from syntaxstate.services.ai_logger import ACTIVITY_ACTIONS, LoggerContext, ai_logger, extract_token_usage
from syntaxstate.services.llm_service import ModelChoice, llm_service
from syntaxstate.services.stream_store import StreamRecord, StreamStore, now_ms
from syntaxstate.utils.sse import ThrottledEmitter, sse_event


logger = logging.getLogger(__name__)


def cached_activity_frames(activity: Activity) -> AsyncIterator[str]:
	async def _frames() -> AsyncIterator[str]:
		yield sse_event({"type": "complete", "activity": activity.model_dump(mode="json")})
		yield sse_event({"type": "done", "activity_type": activity.type, "cached": True})
	return _frames()


@dataclass
class ActivityStreamJob:
	"""Streams one learning-path activity; persistence happens in ``finalize``."""

	path: LearningPath
	topic: LearningTopic
	activity_type: str
	user_id: str
	choice: ModelChoice
	streams: StreamStore
	paths: LearningPathRepository
	api_key: Optional[str] = None
	stream_id: str = field(default_factory=lambda: uuid.uuid4().hex)

	def __post_init__(self) -> None:
		self.loggerctx = LoggerContext(metadata={"streaming": True, "byok_used": bool(self.api_key)})
		self.activity: Optional[Activity] = None
		self.response_text = ""
		self.usage: Any = None
		recent = [entry.activity_type for entry in self.path.timeline[-5:]]
		self.context = ActivityContext(
			goal=self.path.goal,
			topic=self.topic,
			difficulty=self.path.current_difficulty,
			previous_activities=recent,
		)

	@property
	def prompt(self) -> str:
		return f'Generate {self.activity_type} for topic "{self.topic.title}" in learning path'

	async def register(self) -> None:
		await self.streams.clear_content("learning_path", self.path.id)
		await self.streams.save_active("learning_path", StreamRecord(
			stream_id=self.stream_id,
			owner_id=self.path.id,
			channel=self.activity_type,
			user_id=self.user_id,
			created_at=now_ms(),
		))

	def _content_event(self, value: Any) -> dict:
		return {"type": "content", "data": value, "activity_type": self.activity_type}

	async def _buffer(self, frame: Optional[str]) -> Optional[str]:
		if frame is not None:
			await self.streams.append_content("learning_path", self.path.id, "", frame)
		return frame

	async def events(self, is_disconnected: Callable[[], Awaitable[bool]]) -> AsyncIterator[str]:
		emitter = ThrottledEmitter(self._content_event, settings.stream_throttle_ms)
		stream = llm_service.stream_object(
			activity_messages(self.context, self.activity_type),
			model=self.choice.model,
			temperature=self.choice.temperature,
			max_tokens=self.choice.max_tokens,
			api_key=self.api_key,
		)
		try:
			async for partial in stream:
				if await is_disconnected():
					logger.info("Client left activity stream %s for path %s", self.stream_id, self.path.id)
					await self.streams.update_status("learning_path", self.path.id, "", "error")
					return
				self.loggerctx.mark_first_token()
				frame = await self._buffer(emitter.offer(partial))
				if frame:
					yield frame
			frame = await self._buffer(emitter.flush())
			if frame:
				yield frame

			content = finalize_activity(self.activity_type, stream.result())
			self.response_text = stream.text
			self.usage = stream.usage
			self.activity = Activity(
				id=uuid.uuid4().hex,
				topic_id=self.topic.id,
				type=self.activity_type,
				content=content,
				difficulty=self.path.current_difficulty,
			)
			yield sse_event({"type": "complete", "activity": self.activity.model_dump(mode="json")})
			yield sse_event({"type": "done", "activity_type": self.activity_type})
		except (asyncio.CancelledError, GeneratorExit):
			# Starlette cancels or closes the body iterator when the client goes away
			if self.activity is None:
				logger.info("Activity stream %s for path %s closed early", self.stream_id, self.path.id)
				with anyio.CancelScope(shield=True):
					await self.streams.update_status("learning_path", self.path.id, "", "error")
			raise
		except Exception as e:
			logger.error("Activity stream for path %s failed: %s", self.path.id, e)
			await self.streams.update_status("learning_path", self.path.id, "", "error")
			yield sse_event({"type": "error", "error": str(e) or "Failed to generate activity", "activity_type": self.activity_type})
			await ai_logger.log_ai_error({
				"interview_id": self.path.id,
				"user_id": self.user_id,
				"action": ACTIVITY_ACTIONS[self.activity_type],
				"model": self.choice.display_id,
				"prompt": self.prompt,
				"error_message": str(e),
				"latency_ms": self.loggerctx.latency_ms,
				"time_to_first_token": self.loggerctx.time_to_first_token,
				"metadata": self.loggerctx.metadata,
			})

	async def finalize(self) -> None:
		"""Runs after the response is sent; a no-op unless an activity completed."""
		if self.activity is None:
			return
		await self.paths.set_current_activity(self.path.id, self.activity)
		await self.streams.update_status("learning_path", self.path.id, "", "completed")
		await self.streams.clear_content("learning_path", self.path.id)
		await ai_logger.log_ai_request({
			"interview_id": self.path.id,
			"user_id": self.user_id,
			"action": ACTIVITY_ACTIONS[self.activity_type],
			"model": self.choice.display_id,
			"prompt": self.prompt,
			"response": self.response_text,
			"tools_used": self.loggerctx.tools_used,
			"search_queries": self.loggerctx.search_queries,
			"search_results": self.loggerctx.search_results,
			"token_usage": extract_token_usage(self.usage),
			"latency_ms": self.loggerctx.latency_ms,
			"time_to_first_token": self.loggerctx.time_to_first_token,
			"metadata": self.loggerctx.metadata,
		})
