from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from syntaxstate.db.client import AI_LOGS, new_id
from syntaxstate.db.models import AILog


def nearest_rank(sorted_values: Sequence[float], p: float) -> float:
	"""Nearest-rank percentile of an ascending sequence."""
	if not sorted_values:
		return 0
	index = math.ceil(p / 100 * len(sorted_values)) - 1
	return sorted_values[max(0, index)]


class AILogRepository:
	def __init__(self, db: AsyncIOMotorDatabase) -> None:
		self._col = db[AI_LOGS]

	async def create(self, data: Dict[str, Any]) -> AILog:
		log = AILog.model_validate({"_id": new_id(), **data})
		await self._col.insert_one(log.to_mongo())
		return log

	async def find_by_user_id(self, user_id: str, limit: int = 50, skip: int = 0) -> List[AILog]:
		return await self.query(user_id=user_id, limit=limit, skip=skip)

	async def find_by_id(self, log_id: str) -> Optional[AILog]:
		doc = await self._col.find_one({"_id": log_id})
		return AILog.model_validate(doc) if doc else None

	async def query(
		self,
		action: Optional[str] = None,
		user_id: Optional[str] = None,
		status: Optional[str] = None,
		limit: int = 50,
		skip: int = 0,
	) -> List[AILog]:
		filters = {k: v for k, v in (("action", action), ("user_id", user_id), ("status", status)) if v}
		cursor = self._col.find(filters).sort("timestamp", DESCENDING).skip(skip).limit(limit)
		return [AILog.model_validate(doc) async for doc in cursor]

	async def usage_by_action(self) -> List[Dict[str, Any]]:
		pipeline = [
			{"$group": {
				"_id": "$action",
				"count": {"$sum": 1},
				"avg_latency": {"$avg": "$latency_ms"},
				"total_tokens": {"$sum": {"$add": ["$token_usage.input", "$token_usage.output"]}},
			}},
			{"$sort": {"count": -1}},
		]
		results = await self._col.aggregate(pipeline).to_list(length=None)
		return [
			{
				"action": r["_id"],
				"count": r["count"],
				"avg_latency": round(r.get("avg_latency") or 0),
				"total_tokens": r.get("total_tokens") or 0,
			}
			for r in results
		]

	async def aggregated_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
		pipeline = [
			{"$match": {"user_id": user_id} if user_id else {}},
			{"$group": {
				"_id": None,
				"total_requests": {"$sum": 1},
				"total_input_tokens": {"$sum": "$token_usage.input"},
				"total_output_tokens": {"$sum": "$token_usage.output"},
				"avg_latency_ms": {"$avg": "$latency_ms"},
				"total_cost": {"$sum": {"$ifNull": ["$estimated_cost", 0]}},
				"error_count": {"$sum": {"$cond": [{"$eq": ["$status", "error"]}, 1, 0]}},
				"avg_time_to_first_token": {"$avg": "$time_to_first_token"},
			}},
		]
		results = await self._col.aggregate(pipeline).to_list(length=1)
		if not results:
			return {
				"total_requests": 0,
				"total_input_tokens": 0,
				"total_output_tokens": 0,
				"avg_latency_ms": 0,
				"total_cost": 0,
				"error_count": 0,
				"avg_time_to_first_token": 0,
			}
		r = results[0]
		return {
			"total_requests": r["total_requests"],
			"total_input_tokens": r["total_input_tokens"],
			"total_output_tokens": r["total_output_tokens"],
			"avg_latency_ms": round(r.get("avg_latency_ms") or 0),
			"total_cost": round(r.get("total_cost") or 0, 6),
			"error_count": r.get("error_count") or 0,
			"avg_time_to_first_token": round(r.get("avg_time_to_first_token") or 0),
		}

	async def error_stats(self, days: int = 7) -> List[Dict[str, Any]]:
		since = datetime.now(timezone.utc) - timedelta(days=days)
		pipeline = [
			{"$match": {"status": "error", "timestamp": {"$gte": since}}},
			{"$group": {"_id": "$error_code", "count": {"$sum": 1}, "last_occurred": {"$max": "$timestamp"}}},
			{"$sort": {"count": -1}},
		]
		results = await self._col.aggregate(pipeline).to_list(length=None)
		return [
			{"error_code": r["_id"] or "unknown", "count": r["count"], "last_occurred": r["last_occurred"]}
			for r in results
		]

	async def latency_percentiles(self) -> Dict[str, float]:
		cursor = self._col.find({"status": "success"}, {"latency_ms": 1})
		latencies = sorted([doc.get("latency_ms", 0) async for doc in cursor])
		return {f"p{p}": nearest_rank(latencies, p) for p in (50, 90, 95, 99)}
