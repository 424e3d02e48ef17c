from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from syntaxstate.config import settings
from syntaxstate.db.interview_repository import InterviewRepository
from syntaxstate.db.models import LIST_MODULES, MODULES, Interview
from syntaxstate.services.ai_logger import MODULE_ACTIONS, LoggerContext, ai_logger, extract_token_usage, estimate_tokens
from syntaxstate.services.interview_generator import (
	SYSTEM_PROMPT,
	GenerationContext,
	build_messages,
	finalize_module,
	generate_module,
	module_value,
)
from syntaxstate.services.llm_service import ModelChoice, llm_service
from syntaxstate.services.stream_store import StreamRecord, StreamStore, now_ms
from syntaxstate.utils.audit import auditor
from syntaxstate.utils.concurrency import run_with_concurrency_limit
from syntaxstate.utils.sse import ThrottledEmitter, sse_event


logger = logging.getLogger(__name__)

RESUME_POLL_SECONDS = 0.2
RESUME_MAX_SECONDS = 5 * 60

# Strong references so detached generations are not garbage collected mid-run
_background_tasks: Set[asyncio.Task] = set()


def spawn(coro: Awaitable[Any]) -> asyncio.Task:
	task = asyncio.create_task(coro)
	_background_tasks.add(task)
	task.add_done_callback(_background_tasks.discard)
	return task


@dataclass
class ModuleStreamJob:
	"""Generates one interview module, buffering every frame for resumption.

	The generation runs detached from the HTTP response: a client that
	disconnects can reattach through the resume endpoint.
	"""

	interview: Interview
	module: str
	user_id: str
	choice: ModelChoice
	streams: StreamStore
	interviews: InterviewRepository
	api_key: Optional[str] = None
	instructions: Optional[str] = None
	count: Optional[int] = None
	append: bool = False
	stream_id: str = field(default_factory=lambda: uuid.uuid4().hex)

	async def register(self) -> None:
		await self.streams.clear_content("interview", self.interview.id, self.module)
		await self.streams.save_active("interview", StreamRecord(
			stream_id=self.stream_id,
			owner_id=self.interview.id,
			channel=self.module,
			user_id=self.user_id,
			created_at=now_ms(),
		))

	def _content_event(self, value: Any) -> Dict[str, Any]:
		return {"type": "content", "module": self.module, "data": value}

	async def _emit(self, frame: Optional[str], sink: asyncio.Queue) -> None:
		if frame is None:
			return
		await self.streams.append_content("interview", self.interview.id, self.module, frame)
		await sink.put(frame)

	async def run(self, sink: asyncio.Queue) -> None:
		"""Produce frames into ``sink``; a ``None`` item marks the end."""
		ctx = GenerationContext.from_interview(self.interview, self.module)
		messages = build_messages(self.module, ctx, self.count, self.instructions)
		prompt = messages[-1]["content"]
		loggerctx = LoggerContext(metadata={"streaming": True, "byok_used": bool(self.api_key), "append": self.append})
		emitter = ThrottledEmitter(self._content_event, settings.stream_throttle_ms)
		stream = llm_service.stream_object(
			messages,
			model=self.choice.model,
			temperature=self.choice.temperature,
			max_tokens=self.choice.max_tokens,
			api_key=self.api_key,
		)
		try:
			async for partial in stream:
				loggerctx.mark_first_token()
				await self._emit(emitter.offer(module_value(self.module, partial)), sink)
			value = finalize_module(self.module, stream.result())
			# The validated value replaces whatever partial was still pending
			await self._emit(emitter.offer(value, force=True), sink)

			if self.append and self.module in LIST_MODULES:
				await self.interviews.append_to_module(self.interview.id, self.module, value)
			else:
				await self.interviews.update_module(self.interview.id, self.module, value)
			await self.streams.update_status("interview", self.interview.id, self.module, "completed")
			await sink.put(sse_event({"type": "done", "module": self.module}))

			usage = extract_token_usage(stream.usage)
			await ai_logger.log_ai_request({
				"interview_id": self.interview.id,
				"user_id": self.user_id,
				"action": MODULE_ACTIONS[self.module],
				"model": self.choice.display_id,
				"prompt": prompt,
				"system_prompt": SYSTEM_PROMPT,
				"response": stream.text,
				"token_usage": {
					"input": usage["input"] or estimate_tokens(prompt),
					"output": usage["output"] or estimate_tokens(stream.text),
				},
				"latency_ms": loggerctx.latency_ms,
				"time_to_first_token": loggerctx.time_to_first_token,
				"metadata": {**loggerctx.metadata, "finish_reason": stream.finish_reason},
			})
			await auditor.log({"type": "module_generated", "interview_id": self.interview.id, "module": self.module})
		except Exception as e:
			logger.error("Module stream %s for interview %s failed: %s", self.module, self.interview.id, e)
			await self.streams.update_status("interview", self.interview.id, self.module, "error")
			await sink.put(sse_event({"type": "error", "error": str(e) or "Generation failed", "module": self.module}))
			await ai_logger.log_ai_error({
				"interview_id": self.interview.id,
				"user_id": self.user_id,
				"action": MODULE_ACTIONS[self.module],
				"model": self.choice.display_id,
				"prompt": prompt,
				"error_message": str(e),
				"latency_ms": loggerctx.latency_ms,
				"time_to_first_token": loggerctx.time_to_first_token,
				"metadata": loggerctx.metadata,
			})
		finally:
			await sink.put(None)


async def relay(sink: asyncio.Queue) -> AsyncIterator[str]:
	while True:
		frame = await sink.get()
		if frame is None:
			break
		yield frame


async def resume_frames(
	streams: StreamStore,
	interview_id: str,
	module: str,
	record: Optional[StreamRecord],
	buffered: Optional[str],
	poll_seconds: float = RESUME_POLL_SECONDS,
	max_seconds: float = RESUME_MAX_SECONDS,
	clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[str]:
	"""Replay a module stream's buffer, then follow it while it is active."""
	done = sse_event({"type": "done", "module": module})
	failed = sse_event({"type": "error", "error": "Stream failed", "module": module})

	if record is None or record.status == "completed":
		if buffered:
			yield buffered
		yield done
		return
	if record.status == "error":
		yield failed
		return

	if buffered:
		yield buffered
	sent = len(buffered or "")
	deadline = clock() + max_seconds
	while clock() < deadline:
		await asyncio.sleep(poll_seconds)
		current = await streams.get("interview", interview_id, module)
		content = await streams.get_content("interview", interview_id, module) or ""
		if len(content) > sent:
			yield content[sent:]
			sent = len(content)
		if current is None or current.status != "active":
			if current is not None and current.status == "completed":
				yield done
			elif current is not None and current.status == "error":
				yield failed
			return


async def generate_missing_modules(
	interview: Interview,
	user_id: str,
	choice: ModelChoice,
	interviews: InterviewRepository,
	api_key: Optional[str] = None,
	limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
	"""Fill every empty, non-excluded module, a few at a time."""
	pending = [
		m for m in MODULES
		if m not in interview.excluded_modules and interview.modules.is_empty(m)
	]

	def job(module: str) -> Callable[[], Awaitable[None]]:
		async def _run() -> None:
			loggerctx = LoggerContext(metadata={"streaming": False, "byok_used": bool(api_key)})
			try:
				value, result = await generate_module(interview, module, choice, api_key)
			except Exception as e:
				await ai_logger.log_ai_error({
					"interview_id": interview.id,
					"user_id": user_id,
					"action": MODULE_ACTIONS[module],
					"model": choice.display_id,
					"error_message": str(e),
					"latency_ms": loggerctx.latency_ms,
					"metadata": loggerctx.metadata,
				})
				raise
			await interviews.update_module(interview.id, module, value)
			await ai_logger.log_ai_request({
				"interview_id": interview.id,
				"user_id": user_id,
				"action": MODULE_ACTIONS[module],
				"model": choice.display_id,
				"response": result.text,
				"token_usage": extract_token_usage(result.usage),
				"latency_ms": loggerctx.latency_ms,
				"metadata": {**loggerctx.metadata, "finish_reason": result.finish_reason},
			})
		return _run

	outcomes = await run_with_concurrency_limit([job(m) for m in pending], limit or settings.generation_concurrency)
	by_module = dict(zip(pending, outcomes))

	results: List[Dict[str, Any]] = []
	for module in MODULES:
		outcome = by_module.get(module)
		if outcome is None:
			results.append({"module": module, "status": "skipped"})
		elif outcome.ok:
			results.append({"module": module, "status": "completed"})
		else:
			logger.warning("Generating %s for interview %s failed: %s", module, interview.id, outcome.error)
			results.append({"module": module, "status": "failed", "error": str(outcome.error)})
	return results
