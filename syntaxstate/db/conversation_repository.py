from __future__ import annotations

from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from syntaxstate.db.client import AI_CONVERSATIONS, new_id
from syntaxstate.db.models import ChatMessage, Conversation, utcnow


# Listing omits message bodies
SUMMARY_PROJECTION = {"messages": 0}


class ConversationRepository:
	def __init__(self, db: AsyncIOMotorDatabase) -> None:
		self._col = db[AI_CONVERSATIONS]

	async def create(
		self,
		user_id: str,
		title: str,
		interview_id: Optional[str] = None,
		learning_path_id: Optional[str] = None,
	) -> Conversation:
		conversation = Conversation(
			_id=new_id(),
			user_id=user_id,
			title=title,
			interview_id=interview_id,
			learning_path_id=learning_path_id,
		)
		await self._col.insert_one(conversation.to_mongo())
		return conversation

	async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
		doc = await self._col.find_one({"_id": conversation_id})
		return Conversation.model_validate(doc) if doc else None

	async def find_by_user_id(self, user_id: str, limit: int = 50, include_archived: bool = False) -> List[Conversation]:
		query = {"user_id": user_id}
		if not include_archived:
			query["is_archived"] = {"$ne": True}
		cursor = (
			self._col.find(query, SUMMARY_PROJECTION)
			.sort([("is_pinned", DESCENDING), ("updated_at", DESCENDING)])
			.limit(limit)
		)
		return [Conversation.model_validate(doc) async for doc in cursor]

	async def find_archived_by_user(self, user_id: str, limit: int = 50) -> List[Conversation]:
		cursor = (
			self._col.find({"user_id": user_id, "is_archived": True}, SUMMARY_PROJECTION)
			.sort("updated_at", DESCENDING)
			.limit(limit)
		)
		return [Conversation.model_validate(doc) async for doc in cursor]

	async def add_message(self, conversation_id: str, message: ChatMessage) -> None:
		now = utcnow()
		await self._col.update_one(
			{"_id": conversation_id},
			{"$push": {"messages": message.model_dump()}, "$set": {"updated_at": now, "last_message_at": now}},
		)

	async def _set(self, conversation_id: str, fields: dict) -> bool:
		result = await self._col.update_one({"_id": conversation_id}, {"$set": {**fields, "updated_at": utcnow()}})
		return result.matched_count > 0

	async def update_title(self, conversation_id: str, title: str) -> bool:
		return await self._set(conversation_id, {"title": title})

	async def toggle_pin(self, conversation_id: str) -> bool:
		# Pipeline update flips the flag without a read
		result = await self._col.update_one(
			{"_id": conversation_id},
			[{"$set": {"is_pinned": {"$not": [{"$ifNull": ["$is_pinned", False]}]}, "updated_at": utcnow()}}],
		)
		return result.matched_count > 0

	async def archive(self, conversation_id: str) -> bool:
		return await self._set(conversation_id, {"is_archived": True})

	async def restore(self, conversation_id: str) -> bool:
		return await self._set(conversation_id, {"is_archived": False})

	async def delete(self, conversation_id: str) -> bool:
		result = await self._col.delete_one({"_id": conversation_id})
		return result.deleted_count > 0
