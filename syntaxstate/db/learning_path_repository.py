from __future__ import annotations

from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from syntaxstate.db.client import LEARNING_PATHS, new_id
from syntaxstate.db.models import Activity, LearningPath, LearningTopic, TimelineEntry, utcnow


MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 10


def next_difficulty(current: int, success: bool) -> int:
	step = 1 if success else -1
	return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, current + step))


class LearningPathRepository:
	def __init__(self, db: AsyncIOMotorDatabase) -> None:
		self._col = db[LEARNING_PATHS]

	async def create(self, user_id: str, goal: str, topics: List[LearningTopic], difficulty: int = 3) -> LearningPath:
		path = LearningPath(
			_id=new_id(),
			user_id=user_id,
			goal=goal,
			topics=topics,
			current_topic_id=topics[0].id if topics else None,
			current_difficulty=difficulty,
		)
		await self._col.insert_one(path.to_mongo())
		return path

	async def find_by_id(self, path_id: str) -> Optional[LearningPath]:
		doc = await self._col.find_one({"_id": path_id})
		return LearningPath.model_validate(doc) if doc else None

	async def find_by_user_id(self, user_id: str) -> List[LearningPath]:
		cursor = self._col.find({"user_id": user_id}).sort("created_at", DESCENDING)
		return [LearningPath.model_validate(doc) async for doc in cursor]

	async def set_current_activity(self, path_id: str, activity: Activity) -> None:
		await self._col.update_one(
			{"_id": path_id},
			{"$set": {"current_activity": activity.model_dump(), "updated_at": utcnow()}},
		)

	async def record_activity_result(self, path: LearningPath, success: bool) -> Optional[LearningPath]:
		"""Push a timeline entry for the current activity and adapt difficulty."""
		activity = path.current_activity
		if activity is None:
			raise ValueError("learning path has no current activity")
		after = next_difficulty(path.current_difficulty, success)
		entry = TimelineEntry(
			activity_id=activity.id,
			activity_type=activity.type,
			topic_id=activity.topic_id,
			success=success,
			difficulty_before=path.current_difficulty,
			difficulty_after=after,
		)
		doc = await self._col.find_one_and_update(
			{"_id": path.id},
			{
				"$push": {"timeline": entry.model_dump()},
				"$set": {"current_difficulty": after, "current_activity": None, "updated_at": utcnow()},
			},
			return_document=ReturnDocument.AFTER,
		)
		return LearningPath.model_validate(doc) if doc else None

	async def set_current_topic(self, path_id: str, topic_id: str) -> None:
		await self._col.update_one(
			{"_id": path_id},
			{"$set": {"current_topic_id": topic_id, "current_activity": None, "updated_at": utcnow()}},
		)

	async def deactivate(self, path_id: str) -> None:
		await self._col.update_one({"_id": path_id}, {"$set": {"is_active": False, "updated_at": utcnow()}})
