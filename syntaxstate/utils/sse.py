from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Iterable, Iterator, Optional


SSE_HEADERS: Dict[str, str] = {
	"Content-Type": "text/event-stream",
	"Cache-Control": "no-cache, no-transform",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}

DONE_SENTINEL = "data: [DONE]\n\n"


def sse_event(payload: Dict[str, Any]) -> str:
	return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


def parse_sse_lines(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
	"""Yield JSON payloads from ``data:`` lines, skipping comments and [DONE]."""
	for line in lines:
		line = line.strip()
		if not line.startswith("data:"):
			continue
		body = line[5:].strip()
		if not body or body == "[DONE]":
			continue
		try:
			yield json.loads(body)
		except json.JSONDecodeError:
			continue


class ThrottledEmitter:
	"""Coalesce rapid partial updates into at most one frame per interval.

	Only the newest pending value survives; an older pending value is
	superseded since every partial object is a full snapshot.
	"""

	def __init__(self, build: Callable[[Any], Dict[str, Any]], interval_ms: int = 100, clock: Callable[[], float] = time.monotonic) -> None:
		self._build = build
		self._interval = interval_ms / 1000.0
		self._clock = clock
		self._last_sent: Optional[float] = None
		self._pending: Any = None
		self._has_pending = False

	@property
	def has_pending(self) -> bool:
		return self._has_pending

	def offer(self, data: Any, force: bool = False) -> Optional[str]:
		now = self._clock()
		self._pending = data
		self._has_pending = True
		if force or self._last_sent is None or now - self._last_sent >= self._interval:
			self._last_sent = now
			return self._take()
		return None

	def flush(self) -> Optional[str]:
		if not self._has_pending:
			return None
		return self._take()

	def _take(self) -> str:
		message = sse_event(self._build(self._pending))
		self._pending = None
		self._has_pending = False
		return message
