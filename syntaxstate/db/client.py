from __future__ import annotations

import logging
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from syntaxstate.config import settings


logger = logging.getLogger(__name__)

USERS = "users"
INTERVIEWS = "interviews"
AI_LOGS = "ai_logs"
AI_CONVERSATIONS = "ai_conversations"
LEARNING_PATHS = "learning_paths"
TOPIC_CHATS = "topic_chats"

_client: Optional[AsyncIOMotorClient] = None


def new_id() -> str:
	return str(ObjectId())


def connect(uri: Optional[str] = None) -> AsyncIOMotorClient:
	global _client
	if _client is None:
		_client = AsyncIOMotorClient(uri or settings.mongodb_uri, tz_aware=True)
	return _client


def get_db() -> AsyncIOMotorDatabase:
	return connect()[settings.mongodb_db]


def close() -> None:
	global _client
	if _client is not None:
		_client.close()
		_client = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
	await db[USERS].create_index("clerk_id", unique=True)
	await db[USERS].create_index("stripe_customer_id", sparse=True)
	await db[INTERVIEWS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
	await db[AI_LOGS].create_index([("user_id", ASCENDING), ("timestamp", DESCENDING)])
	await db[AI_LOGS].create_index([("status", ASCENDING), ("timestamp", DESCENDING)])
	await db[AI_LOGS].create_index([("action", ASCENDING), ("timestamp", DESCENDING)])
	await db[AI_CONVERSATIONS].create_index([("user_id", ASCENDING), ("is_archived", ASCENDING), ("updated_at", DESCENDING)])
	await db[LEARNING_PATHS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
	await db[TOPIC_CHATS].create_index([("interview_id", ASCENDING), ("topic_id", ASCENDING)], unique=True)
	logger.info("MongoDB indexes ensured on %s", db.name)
