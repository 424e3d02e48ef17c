from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from syntaxstate.db.conversation_repository import ConversationRepository
from syntaxstate.db.models import ChatMessage, Interview, LearningPath
from syntaxstate.services.ai_logger import AI_ASSISTANT_CHAT, LoggerContext, ai_logger, estimate_tokens
from syntaxstate.services.llm_service import RATE_LIMIT_MESSAGE, ModelChoice, is_rate_limit_error, llm_service
from syntaxstate.utils.sse import DONE_SENTINEL, sse_event


logger = logging.getLogger(__name__)

TITLE_LENGTH = 50

ASSISTANT_SYSTEM_PROMPT = (
	"You are SyntaxState's interview preparation assistant. You help candidates understand technical "
	"concepts, practice interview questions, review code, and plan their preparation.\n\n"
	"Guidelines:\n"
	"- Be accurate and practical; prefer concrete examples over abstract descriptions\n"
	"- Use markdown with fenced code blocks for code\n"
	"- When the candidate is preparing for a specific role, tailor answers to it\n"
	"- If you are unsure about something, say so instead of guessing"
)


def conversation_title(text: str) -> str:
	text = text.strip()
	if len(text) > TITLE_LENGTH:
		return text[:TITLE_LENGTH] + "..."
	return text


def last_user_message(messages: List[Dict[str, str]]) -> str:
	for message in reversed(messages):
		if message.get("role") == "user":
			return message.get("content") or ""
	return ""


@dataclass
class AssistantContext:
	interview: Optional[Dict[str, str]] = None
	learning: Optional[Dict[str, str]] = None

	@classmethod
	def build(cls, user_id: str, interview: Optional[Interview] = None, learning_path: Optional[LearningPath] = None) -> "AssistantContext":
		"""Only documents the caller owns contribute context."""
		ctx = cls()
		if interview is not None and interview.user_id == user_id:
			ctx.interview = {
				"job_title": interview.job_details.title,
				"company": interview.job_details.company,
				"resume_text": interview.resume_context,
			}
		if learning_path is not None and learning_path.user_id == user_id:
			topic = learning_path.find_topic(learning_path.current_topic_id or "")
			ctx.learning = {
				"goal": learning_path.goal,
				"current_topic": topic.title if topic else "",
				"difficulty": str(learning_path.current_difficulty),
			}
		return ctx

	def system_prompt(self) -> str:
		parts = [ASSISTANT_SYSTEM_PROMPT]
		if self.interview:
			parts.append(
				"The candidate is preparing for an interview.\n"
				f"Role: {self.interview['job_title']}\n"
				f"Company: {self.interview['company']}\n"
				f"Resume:\n{self.interview['resume_text'] or '(not provided)'}"
			)
		if self.learning:
			parts.append(
				"The candidate is following a learning path.\n"
				f"Goal: {self.learning['goal']}\n"
				f"Current topic: {self.learning['current_topic'] or '(none)'}\n"
				f"Difficulty: {self.learning['difficulty']}/10"
			)
		return "\n\n".join(parts)


@dataclass
class StreamFailure:
	message: str
	code: str
	is_retryable: bool = True

	@classmethod
	def from_exception(cls, exc: BaseException) -> "StreamFailure":
		if is_rate_limit_error(exc):
			return cls(message=RATE_LIMIT_MESSAGE, code="RATE_LIMIT")
		return cls(message=str(exc) or "Stream error occurred", code="STREAM_ERROR")

	def event(self) -> Dict[str, Any]:
		return {"type": "error", "error": self.message, "code": self.code, "is_retryable": self.is_retryable}


def _throughput(tokens_out: int, latency_ms: int) -> Optional[int]:
	if latency_ms <= 0 or not tokens_out:
		return None
	return round(tokens_out / latency_ms * 1000)


@dataclass
class AssistantChat:
	"""One assistant turn: relays the model stream as SSE, then persists and logs it."""

	user_id: str
	messages: List[Dict[str, str]]
	choice: ModelChoice
	context: AssistantContext = field(default_factory=AssistantContext)
	conversation_id: Optional[str] = None
	conversations: Optional[ConversationRepository] = None
	api_key: Optional[str] = None
	log_owner_id: Optional[str] = None
	clock: Any = time.monotonic

	def _elapsed_ms(self, start: float) -> int:
		return int((self.clock() - start) * 1000)

	def prompt_messages(self) -> List[Dict[str, str]]:
		history = [
			{"role": m["role"], "content": m.get("content") or ""}
			for m in self.messages
			if m.get("role") in ("user", "assistant")
		]
		return [{"role": "system", "content": self.context.system_prompt()}, *history]

	async def stream(self) -> AsyncIterator[str]:
		loggerctx = LoggerContext(metadata={"streaming": True, "byok_used": bool(self.api_key)})
		prompt = last_user_message(self.messages)
		start = self.clock()
		ttft: Optional[int] = None
		text_parts: List[str] = []
		reasoning_parts: List[str] = []
		usage: Optional[Dict[str, Any]] = None
		failure: Optional[StreamFailure] = None

		try:
			async for chunk in llm_service.stream_chat(
				self.prompt_messages(),
				model=self.choice.model,
				temperature=self.choice.temperature,
				max_tokens=self.choice.max_tokens,
				api_key=self.api_key,
			):
				if chunk.usage:
					usage = chunk.usage
				if not chunk.text and not chunk.reasoning:
					continue
				if ttft is None:
					ttft = self._elapsed_ms(start)
					loggerctx.mark_first_token()
					yield sse_event({"type": "start", "metadata": {"model": self.choice.display_id, "ttft": ttft}})
				if chunk.reasoning:
					reasoning_parts.append(chunk.reasoning)
					yield sse_event({"type": "reasoning", "content": chunk.reasoning})
				if chunk.text:
					text_parts.append(chunk.text)
					yield sse_event({"type": "text", "content": chunk.text})
		except Exception as e:
			logger.error("Assistant stream failed for user %s: %s", self.user_id, e)
			failure = StreamFailure.from_exception(e)

		text = "".join(text_parts)
		latency_ms = self._elapsed_ms(start)
		tokens_in = int((usage or {}).get("prompt_tokens") or 0) or estimate_tokens(prompt)
		tokens_out = int((usage or {}).get("completion_tokens") or 0) or estimate_tokens(text)
		metadata = {
			"model": self.choice.display_id,
			"tokens_in": tokens_in,
			"tokens_out": tokens_out,
			"total_tokens": int((usage or {}).get("total_tokens") or 0) or tokens_in + tokens_out,
			"latency_ms": latency_ms,
			"ttft": ttft,
			"throughput": _throughput(tokens_out, latency_ms),
		}

		if failure is not None:
			yield sse_event(failure.event())
		else:
			yield sse_event({"type": "finish", "metadata": metadata})
		yield DONE_SENTINEL

		await self._persist(text, "".join(reasoning_parts), metadata, failure)
		await ai_logger.log_ai_request({
			"interview_id": self.log_owner_id or "ai-assistant",
			"user_id": self.user_id,
			"action": AI_ASSISTANT_CHAT,
			"status": "error" if failure else "success",
			"model": self.choice.display_id,
			"prompt": prompt,
			"response": failure.message if failure else (text or "streaming-complete"),
			"error_message": failure.message if failure else None,
			"error_code": failure.code if failure else None,
			"tools_used": loggerctx.tools_used,
			"search_queries": loggerctx.search_queries,
			"search_results": loggerctx.search_results,
			"token_usage": {"input": tokens_in, "output": tokens_out},
			"latency_ms": latency_ms,
			"time_to_first_token": ttft,
			"metadata": {**loggerctx.metadata, "throughput": metadata["throughput"]},
		})

	async def _persist(self, text: str, reasoning: str, metadata: Dict[str, Any], failure: Optional[StreamFailure]) -> None:
		if not self.conversation_id or self.conversations is None:
			return
		if failure is not None:
			message = ChatMessage(
				id=f"error_{uuid.uuid4().hex[:12]}",
				role="error",
				content=failure.message,
				metadata={"code": failure.code, "is_retryable": failure.is_retryable},
			)
		elif text:
			message = ChatMessage(
				id=f"assistant_{uuid.uuid4().hex[:12]}",
				role="assistant",
				content=text,
				metadata={**metadata, **({"reasoning": reasoning} if reasoning else {})},
			)
		else:
			return
		try:
			await self.conversations.add_message(self.conversation_id, message)
		except Exception as e:
			# The client already has the reply; a lost history entry is only logged
			logger.error("Failed to store assistant message in %s: %s", self.conversation_id, e)


async def stream_multi_model(
	user_id: str,
	message: str,
	model: str,
	api_key: Optional[str] = None,
	clock: Any = time.monotonic,
) -> AsyncIterator[str]:
	"""Single prompt against an explicitly chosen model, for side-by-side comparison."""
	start = clock()
	ttft: Optional[int] = None
	parts: List[str] = []
	usage: Optional[Dict[str, Any]] = None
	failure: Optional[StreamFailure] = None
	messages = [
		{"role": "system", "content": ASSISTANT_SYSTEM_PROMPT},
		{"role": "user", "content": message},
	]
	try:
		async for chunk in llm_service.stream_chat(messages, model=model, api_key=api_key):
			if chunk.usage:
				usage = chunk.usage
			if (chunk.text or chunk.reasoning) and ttft is None:
				ttft = int((clock() - start) * 1000)
			if chunk.reasoning:
				yield sse_event({"type": "reasoning", "content": chunk.reasoning})
			if chunk.text:
				parts.append(chunk.text)
				yield sse_event({"type": "text", "content": chunk.text})
	except Exception as e:
		logger.error("Multi-model stream failed for %s: %s", model, e)
		failure = StreamFailure.from_exception(e)

	text = "".join(parts)
	latency_ms = int((clock() - start) * 1000)
	tokens_in = int((usage or {}).get("prompt_tokens") or 0) or estimate_tokens(message)
	tokens_out = int((usage or {}).get("completion_tokens") or 0) or estimate_tokens(text)
	if failure is not None:
		yield sse_event(failure.event())
	else:
		yield sse_event({
			"type": "metadata",
			"metadata": {"tokens_in": tokens_in, "tokens_out": tokens_out, "latency_ms": latency_ms, "ttft": ttft},
		})
	yield DONE_SENTINEL

	await ai_logger.log_ai_request({
		"interview_id": "ai-assistant-multi",
		"user_id": user_id,
		"action": AI_ASSISTANT_CHAT,
		"status": "error" if failure else "success",
		"model": model,
		"prompt": message,
		"response": failure.message if failure else text,
		"error_message": failure.message if failure else None,
		"error_code": failure.code if failure else None,
		"token_usage": {"input": tokens_in, "output": tokens_out},
		"latency_ms": latency_ms,
		"time_to_first_token": ttft,
		"metadata": {"multi_model": True, "byok_used": bool(api_key)},
	})
