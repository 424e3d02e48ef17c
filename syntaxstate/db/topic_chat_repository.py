from __future__ import annotations

from typing import List, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from syntaxstate.db.client import TOPIC_CHATS, new_id
from syntaxstate.db.models import ChatMessage, TopicChat, utcnow


class TopicChatRepository:
	"""One chat document per (interview, topic) pair."""

	def __init__(self, db: AsyncIOMotorDatabase) -> None:
		self._col = db[TOPIC_CHATS]

	async def find_or_create(self, interview_id: str, topic_id: str, user_id: str) -> TopicChat:
		now = utcnow()
		doc = await self._col.find_one_and_update(
			{"interview_id": interview_id, "topic_id": topic_id},
			{"$setOnInsert": {
				"_id": new_id(),
				"user_id": user_id,
				"messages": [],
				"created_at": now,
				"updated_at": now,
			}},
			upsert=True,
			return_document=ReturnDocument.AFTER,
		)
		return TopicChat.model_validate(doc)

	async def add_message(self, interview_id: str, topic_id: str, message: ChatMessage) -> None:
		await self.add_messages(interview_id, topic_id, [message])

	async def add_messages(self, interview_id: str, topic_id: str, messages: Sequence[ChatMessage]) -> None:
		await self._col.update_one(
			{"interview_id": interview_id, "topic_id": topic_id},
			{
				"$push": {"messages": {"$each": [m.model_dump() for m in messages]}},
				"$set": {"updated_at": utcnow()},
			},
		)

	async def get_messages(self, interview_id: str, topic_id: str) -> List[ChatMessage]:
		doc = await self._col.find_one({"interview_id": interview_id, "topic_id": topic_id}, {"messages": 1})
		return [ChatMessage.model_validate(m) for m in (doc or {}).get("messages", [])]
