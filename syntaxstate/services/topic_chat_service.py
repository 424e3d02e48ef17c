from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from syntaxstate.db.models import ChatMessage, Interview, RevisionTopic
from syntaxstate.db.topic_chat_repository import TopicChatRepository
from syntaxstate.services.ai_logger import TOPIC_CHAT, LoggerContext, ai_logger, estimate_tokens
from syntaxstate.services.assistant_service import StreamFailure, last_user_message
from syntaxstate.services.llm_service import ModelChoice, llm_service
from syntaxstate.utils.sse import DONE_SENTINEL, sse_event


logger = logging.getLogger(__name__)

# Each topic chat message spends a third of an iteration
CHAT_ITERATION_COST = 0.33


def topic_system_prompt(interview: Interview, topic: RevisionTopic) -> str:
	return (
		"You are an expert interview preparation assistant helping a candidate understand "
		f'"{topic.title}" for their upcoming interview.\n\n'
		"Job Context:\n"
		f"- Position: {interview.job_details.title}\n"
		f"- Company: {interview.job_details.company}\n\n"
		"Topic Being Discussed:\n"
		f"Title: {topic.title}\n"
		f"Reason for importance: {topic.reason}\n"
		f"Current explanation:\n{topic.content}\n\n"
		"Your role:\n"
		"- Help the candidate deeply understand this topic\n"
		"- Provide clear explanations with practical examples\n"
		"- Use code snippets when helpful (use markdown code blocks)\n"
		"- Relate concepts to real-world scenarios\n"
		"- Answer follow-up questions thoroughly\n"
		"- Suggest related concepts they should also understand\n"
		"- Keep responses focused and interview-relevant\n\n"
		"Be conversational but professional. Use markdown formatting for better readability."
	)


@dataclass
class TopicChatTurn:
	interview: Interview
	topic: RevisionTopic
	user_id: str
	messages: List[Dict[str, str]]
	choice: ModelChoice
	chats: TopicChatRepository
	api_key: Optional[str] = None
	clock: Any = time.monotonic

	def prompt_messages(self) -> List[Dict[str, str]]:
		history = [
			{"role": m["role"], "content": m.get("content") or ""}
			for m in self.messages
			if m.get("role") in ("user", "assistant")
		]
		return [{"role": "system", "content": topic_system_prompt(self.interview, self.topic)}, *history]

	async def stream(self) -> AsyncIterator[str]:
		loggerctx = LoggerContext(metadata={"streaming": True, "byok_used": bool(self.api_key)})
		prompt = last_user_message(self.messages)
		start = self.clock()
		ttft: Optional[int] = None
		parts: List[str] = []
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
				if not chunk.text:
					continue
				if ttft is None:
					ttft = int((self.clock() - start) * 1000)
					loggerctx.mark_first_token()
				parts.append(chunk.text)
				yield sse_event({"type": "text", "content": chunk.text})
		except Exception as e:
			logger.error("Topic chat failed for %s/%s: %s", self.interview.id, self.topic.id, e)
			failure = StreamFailure.from_exception(e)

		text = "".join(parts)
		latency_ms = int((self.clock() - start) * 1000)
		tokens_in = int((usage or {}).get("prompt_tokens") or 0) or estimate_tokens(prompt)
		tokens_out = int((usage or {}).get("completion_tokens") or 0) or estimate_tokens(text)
		if failure is not None:
			yield sse_event(failure.event())
		else:
			yield sse_event({
				"type": "finish",
				"metadata": {"model": self.choice.display_id, "tokens_in": tokens_in, "tokens_out": tokens_out, "latency_ms": latency_ms, "ttft": ttft},
			})
		yield DONE_SENTINEL

		if failure is None and text:
			try:
				await self.chats.add_message(self.interview.id, self.topic.id, ChatMessage(
					id=f"assistant_{uuid.uuid4().hex[:12]}",
					role="assistant",
					content=text,
				))
			except Exception as e:
				logger.error("Failed to store topic chat reply for %s/%s: %s", self.interview.id, self.topic.id, e)

		# Replies are not stored in the log
		await ai_logger.log_ai_request({
			"interview_id": self.interview.id,
			"user_id": self.user_id,
			"action": TOPIC_CHAT,
			"status": "error" if failure else "success",
			"model": self.choice.display_id,
			"prompt": prompt,
			"system_prompt": topic_system_prompt(self.interview, self.topic),
			"response": "",
			"error_message": failure.message if failure else None,
			"error_code": failure.code if failure else None,
			"token_usage": {"input": tokens_in, "output": tokens_out},
			"latency_ms": latency_ms,
			"time_to_first_token": ttft,
			"metadata": {**loggerctx.metadata, "topic_id": self.topic.id},
		})
