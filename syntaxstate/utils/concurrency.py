from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar


T = TypeVar("T")


@dataclass
class TaskOutcome(Generic[T]):
	index: int
	value: Optional[T] = None
	error: Optional[Exception] = None

	@property
	def ok(self) -> bool:
		return self.error is None


async def run_with_concurrency_limit(
	tasks: Sequence[Callable[[], Awaitable[T]]],
	limit: int,
) -> List[TaskOutcome[T]]:
	"""Run task factories with at most ``limit`` awaiting at once.

	Outcomes come back in input order. An exception raised by one task is
	stored on its outcome and does not stop the others; cancellation is not
	captured and tears down every worker.
	"""
	if limit < 1:
		raise ValueError("concurrency limit must be at least 1")
	if not tasks:
		return []

	outcomes: List[TaskOutcome[T]] = [TaskOutcome(index=i) for i in range(len(tasks))]
	next_index = 0

	async def worker() -> None:
		nonlocal next_index
		while next_index < len(tasks):
			i = next_index
			next_index += 1
			try:
				outcomes[i].value = await tasks[i]()
			except Exception as e:
				outcomes[i].error = e

	workers = [asyncio.create_task(worker()) for _ in range(min(limit, len(tasks)))]
	try:
		await asyncio.gather(*workers)
	except BaseException:
		for w in workers:
			w.cancel()
		await asyncio.gather(*workers, return_exceptions=True)
		raise
	return outcomes


class ConcurrencySemaphore:
	"""Counting semaphore for ad hoc critical sections with visible counters."""

	def __init__(self, limit: int) -> None:
		if limit < 1:
			raise ValueError("concurrency limit must be at least 1")
		self._limit = limit
		self._semaphore = asyncio.Semaphore(limit)
		self._in_flight = 0

	@property
	def limit(self) -> int:
		return self._limit

	@property
	def in_flight(self) -> int:
		return self._in_flight

	@property
	def available(self) -> int:
		return self._limit - self._in_flight

	async def acquire(self) -> None:
		await self._semaphore.acquire()
		self._in_flight += 1

	def release(self) -> None:
		if self._in_flight == 0:
			raise RuntimeError("release() called without a matching acquire()")
		self._in_flight -= 1
		self._semaphore.release()

	async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
		async with self:
			return await fn(*args, **kwargs)

	async def __aenter__(self) -> "ConcurrencySemaphore":
		await self.acquire()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		self.release()
