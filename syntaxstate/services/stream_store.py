from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Dict, List, Literal, Optional, Tuple

from redis.asyncio import Redis


logger = logging.getLogger(__name__)

StreamKind = Literal["interview", "learning_path"]
StreamStatus = Literal["active", "completed", "error"]

STREAM_TTL_SECONDS = 300
# Finished streams linger so a reconnecting client can see the outcome
INTERVIEW_FINISHED_TTL_SECONDS = 120
LEARNING_PATH_FINISHED_TTL_SECONDS = 30


@dataclass
class StreamRecord:
	stream_id: str
	owner_id: str
	channel: str
	user_id: str
	created_at: int
	status: StreamStatus = "active"


def now_ms() -> int:
	return int(time.time() * 1000)


def _keys(kind: StreamKind, owner_id: str, channel: str = "") -> Tuple[str, str]:
	if kind == "interview":
		return f"stream:{owner_id}:{channel}", f"stream-content:{owner_id}:{channel}"
	return f"lp-stream:{owner_id}", f"lp-stream-content:{owner_id}"


def _decode(raw: Optional[str]) -> Optional[StreamRecord]:
	if not raw:
		return None
	try:
		return StreamRecord(**json.loads(raw))
	except (ValueError, TypeError):
		return None


class StreamStore:
	"""Tracks in-flight generation streams and buffers their SSE frames.

	Subclasses provide the key/value primitives; the record semantics live here.
	"""

	async def _get(self, key: str) -> Optional[str]:
		raise NotImplementedError

	async def _setex(self, key: str, ttl: int, value: str) -> None:
		raise NotImplementedError

	async def _append(self, key: str, value: str, ttl: int) -> None:
		raise NotImplementedError

	async def _expire(self, key: str, ttl: int) -> None:
		raise NotImplementedError

	async def _delete(self, *keys: str) -> None:
		raise NotImplementedError

	async def _scan_prefix(self, prefix: str) -> List[str]:
		raise NotImplementedError

	async def save_active(self, kind: StreamKind, record: StreamRecord) -> None:
		record.status = "active"
		key, _ = _keys(kind, record.owner_id, record.channel)
		await self._setex(key, STREAM_TTL_SECONDS, json.dumps(asdict(record)))

	async def get(self, kind: StreamKind, owner_id: str, channel: str = "") -> Optional[StreamRecord]:
		key, _ = _keys(kind, owner_id, channel)
		return _decode(await self._get(key))

	async def update_status(self, kind: StreamKind, owner_id: str, channel: str, status: StreamStatus) -> None:
		key, content_key = _keys(kind, owner_id, channel)
		record = _decode(await self._get(key))
		if record is None:
			return
		record.status = status
		if kind == "interview":
			await self._setex(key, INTERVIEW_FINISHED_TTL_SECONDS, json.dumps(asdict(record)))
			await self._expire(content_key, INTERVIEW_FINISHED_TTL_SECONDS)
		else:
			await self._setex(key, LEARNING_PATH_FINISHED_TTL_SECONDS, json.dumps(asdict(record)))

	async def append_content(self, kind: StreamKind, owner_id: str, channel: str, content: str) -> None:
		_, content_key = _keys(kind, owner_id, channel)
		await self._append(content_key, content, STREAM_TTL_SECONDS)

	async def get_content(self, kind: StreamKind, owner_id: str, channel: str = "") -> Optional[str]:
		_, content_key = _keys(kind, owner_id, channel)
		return await self._get(content_key)

	async def clear_content(self, kind: StreamKind, owner_id: str, channel: str = "") -> None:
		_, content_key = _keys(kind, owner_id, channel)
		await self._delete(content_key)

	async def clear(self, kind: StreamKind, owner_id: str, channel: str = "") -> None:
		await self._delete(*_keys(kind, owner_id, channel))

	async def has_active(self, kind: StreamKind, owner_id: str, channel: str = "") -> bool:
		record = await self.get(kind, owner_id, channel)
		return record is not None and record.status == "active"

	async def list_for_owner(self, owner_id: str) -> List[StreamRecord]:
		"""Every interview module stream recorded for ``owner_id``."""
		records: List[StreamRecord] = []
		for key in await self._scan_prefix(f"stream:{owner_id}:"):
			record = _decode(await self._get(key))
			if record is not None:
				records.append(record)
		return records

	async def close(self) -> None:
		return None


class MemoryStreamStore(StreamStore):
	"""Single-process store for development and tests."""

	def __init__(self, clock=time.monotonic) -> None:
		self._data: Dict[str, Tuple[str, float]] = {}
		self._lock = asyncio.Lock()
		self._clock = clock

	def _live(self, key: str) -> Optional[str]:
		item = self._data.get(key)
		if item is None:
			return None
		value, expires_at = item
		if expires_at <= self._clock():
			del self._data[key]
			return None
		return value

	async def _get(self, key: str) -> Optional[str]:
		async with self._lock:
			return self._live(key)

	async def _setex(self, key: str, ttl: int, value: str) -> None:
		async with self._lock:
			self._data[key] = (value, self._clock() + ttl)

	async def _append(self, key: str, value: str, ttl: int) -> None:
		async with self._lock:
			current = self._live(key) or ""
			self._data[key] = (current + value, self._clock() + ttl)

	async def _expire(self, key: str, ttl: int) -> None:
		async with self._lock:
			value = self._live(key)
			if value is not None:
				self._data[key] = (value, self._clock() + ttl)

	async def _delete(self, *keys: str) -> None:
		async with self._lock:
			for key in keys:
				self._data.pop(key, None)

	async def _scan_prefix(self, prefix: str) -> List[str]:
		async with self._lock:
			return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]


class RedisStreamStore(StreamStore):
	def __init__(self, client: Redis) -> None:
		self._client = client

	@classmethod
	def from_url(cls, url: str) -> "RedisStreamStore":
		return cls(Redis.from_url(url, decode_responses=True))

	async def _get(self, key: str) -> Optional[str]:
		return await self._client.get(key)

	async def _setex(self, key: str, ttl: int, value: str) -> None:
		await self._client.setex(key, ttl, value)

	async def _append(self, key: str, value: str, ttl: int) -> None:
		async with self._client.pipeline(transaction=True) as pipe:
			pipe.append(key, value)
			pipe.expire(key, ttl)
			await pipe.execute()

	async def _expire(self, key: str, ttl: int) -> None:
		await self._client.expire(key, ttl)

	async def _delete(self, *keys: str) -> None:
		if keys:
			await self._client.delete(*keys)

	async def _scan_prefix(self, prefix: str) -> List[str]:
		return [key async for key in self._client.scan_iter(match=f"{prefix}*")]

	async def close(self) -> None:
		await self._client.aclose()


_store: StreamStore = MemoryStreamStore()


def configure_stream_store(redis_url: Optional[str]) -> StreamStore:
	global _store
	if redis_url:
		_store = RedisStreamStore.from_url(redis_url)
		logger.info("Stream store: redis")
	else:
		_store = MemoryStreamStore()
		logger.info("Stream store: in-process (REDIS_URL not set)")
	return _store


def get_stream_store() -> StreamStore:
	return _store
