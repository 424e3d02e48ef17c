from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from syntaxstate.services.pricing_service import pricing_service


logger = logging.getLogger(__name__)

GENERATE_BRIEF = "GENERATE_BRIEF"
GENERATE_TOPICS = "GENERATE_TOPICS"
GENERATE_MCQ = "GENERATE_MCQ"
GENERATE_RAPID_FIRE = "GENERATE_RAPID_FIRE"
REGENERATE_ANALOGY = "REGENERATE_ANALOGY"
AI_ASSISTANT_CHAT = "AI_ASSISTANT_CHAT"
TOPIC_CHAT = "TOPIC_CHAT"

MODULE_ACTIONS: Dict[str, str] = {
	"opening_brief": GENERATE_BRIEF,
	"revision_topics": GENERATE_TOPICS,
	"mcqs": GENERATE_MCQ,
	"rapid_fire": GENERATE_RAPID_FIRE,
}

ACTIVITY_ACTIONS: Dict[str, str] = {
	"mcq": "GENERATE_ACTIVITY_MCQ",
	"coding-challenge": "GENERATE_ACTIVITY_CODING_CHALLENGE",
	"debugging-task": "GENERATE_ACTIVITY_DEBUGGING_TASK",
	"concept-explanation": "GENERATE_ACTIVITY_CONCEPT_EXPLANATION",
}


def _now_ms() -> float:
	return time.monotonic() * 1000


@dataclass
class LoggerContext:
	"""Collects timing and tool metadata while a generation streams."""

	metadata: Dict[str, Any] = field(default_factory=dict)
	clock: Callable[[], float] = _now_ms
	tools_used: List[str] = field(default_factory=list)
	search_queries: List[str] = field(default_factory=list)
	search_results: List[Dict[str, Any]] = field(default_factory=list)

	def __post_init__(self) -> None:
		self.start = self.clock()
		self.first_token_at: Optional[float] = None

	def mark_first_token(self) -> None:
		if self.first_token_at is None:
			self.first_token_at = self.clock()

	def add_tool_usage(self, name: str) -> None:
		if name not in self.tools_used:
			self.tools_used.append(name)

	def add_search_query(self, query: str) -> None:
		self.search_queries.append(query)

	def add_search_result(self, query: str, result_count: int, sources: Optional[List[str]] = None) -> None:
		self.search_results.append({"query": query, "result_count": result_count, "sources": list(sources or [])})

	def set_metadata(self, **values: Any) -> None:
		self.metadata.update(values)

	@property
	def latency_ms(self) -> int:
		return int(self.clock() - self.start)

	@property
	def time_to_first_token(self) -> Optional[int]:
		if self.first_token_at is None:
			return None
		return int(self.first_token_at - self.start)


def _first(source: Dict[str, Any], *keys: str) -> int:
	for key in keys:
		value = source.get(key)
		if value is not None:
			return int(value)
	return 0


def extract_token_usage(usage: Optional[Any]) -> Dict[str, int]:
	if not usage:
		return {"input": 0, "output": 0}
	if not isinstance(usage, dict):
		usage = getattr(usage, "model_dump", lambda: vars(usage))()
	return {
		"input": _first(usage, "prompt_tokens", "promptTokens", "input_tokens", "inputTokens"),
		"output": _first(usage, "completion_tokens", "completionTokens", "output_tokens", "outputTokens"),
	}


def extract_stop_reason(response: Optional[Dict[str, Any]]) -> Optional[str]:
	if not response:
		return None
	return response.get("finish_reason") or response.get("finishReason") or response.get("stop_reason") or response.get("stopReason")


def estimate_tokens(text: str) -> int:
	return math.ceil(len(text or "") / 4)


class AILogger:
	def __init__(self, repository=None) -> None:
		self._repository = repository

	def configure(self, repository) -> None:
		self._repository = repository

	async def log_ai_request(self, entry: Dict[str, Any]) -> Optional[str]:
		"""Persist one request; failures are logged and swallowed."""
		if self._repository is None:
			logger.debug("AI log skipped, no repository configured: %s", entry.get("action"))
			return None
		try:
			usage = entry.get("token_usage") or {"input": 0, "output": 0}
			cost = await pricing_service.estimate_cost(entry.get("model", ""), usage["input"], usage["output"])
			log = await self._repository.create({"status": "success", **entry, "estimated_cost": cost})
			return log.id
		except Exception as e:
			logger.error("Failed to log AI request %s: %s", entry.get("action"), e)
			return None

	async def log_ai_error(self, entry: Dict[str, Any]) -> Optional[str]:
		return await self.log_ai_request({**entry, "status": "error", "response": ""})


ai_logger = AILogger()
