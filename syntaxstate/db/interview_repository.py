from __future__ import annotations

from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from syntaxstate.db.client import INTERVIEWS, new_id
from syntaxstate.db.models import Interview, JobDetails, utcnow


class InterviewRepository:
	def __init__(self, db: AsyncIOMotorDatabase) -> None:
		self._col = db[INTERVIEWS]

	async def create(
		self,
		user_id: str,
		job_details: JobDetails,
		resume_context: str = "",
		excluded_modules: Optional[List[str]] = None,
		custom_instructions: Optional[str] = None,
	) -> Interview:
		interview = Interview(
			_id=new_id(),
			user_id=user_id,
			job_details=job_details,
			resume_context=resume_context,
			excluded_modules=list(excluded_modules or []),
			custom_instructions=custom_instructions or None,
		)
		await self._col.insert_one(interview.to_mongo())
		return interview

	async def find_by_id(self, interview_id: str) -> Optional[Interview]:
		doc = await self._col.find_one({"_id": interview_id})
		return Interview.model_validate(doc) if doc else None

	async def find_by_user_id(self, user_id: str) -> List[Interview]:
		cursor = self._col.find({"user_id": user_id}).sort("created_at", DESCENDING)
		return [Interview.model_validate(doc) async for doc in cursor]

	async def update_module(self, interview_id: str, module: str, content: Any) -> None:
		await self._col.update_one(
			{"_id": interview_id},
			{"$set": {f"modules.{module}": content, "updated_at": utcnow()}},
		)

	async def append_to_module(self, interview_id: str, module: str, items: List[Any]) -> None:
		await self._col.update_one(
			{"_id": interview_id},
			{"$push": {f"modules.{module}": {"$each": items}}, "$set": {"updated_at": utcnow()}},
		)

	async def update_topic_style(self, interview_id: str, topic_id: str, content: str, style: str) -> None:
		await self._col.update_one(
			{"_id": interview_id, "modules.revision_topics.id": topic_id},
			{"$set": {
				"modules.revision_topics.$.content": content,
				"modules.revision_topics.$.style": style,
				f"modules.revision_topics.$.style_cache.{style}": content,
				"updated_at": utcnow(),
			}},
		)

	async def set_public(self, interview_id: str, is_public: bool) -> None:
		await self._col.update_one({"_id": interview_id}, {"$set": {"is_public": is_public, "updated_at": utcnow()}})

	async def delete(self, interview_id: str) -> bool:
		result = await self._col.delete_one({"_id": interview_id})
		return result.deleted_count > 0
