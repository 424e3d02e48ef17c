from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_path, make_user
from syntaxstate.db.ai_log_repository import AILogRepository
from syntaxstate.db.client import AI_CONVERSATIONS, AI_LOGS, LEARNING_PATHS, TOPIC_CHATS, USERS
from syntaxstate.db.conversation_repository import ConversationRepository
from syntaxstate.db.learning_path_repository import LearningPathRepository, next_difficulty
from syntaxstate.db.models import Activity, ChatMessage, TopicChat
from syntaxstate.db.topic_chat_repository import TopicChatRepository
from syntaxstate.db.user_repository import UserRepository


@pytest.fixture
def collection():
	return AsyncMock()


def test_difficulty_moves_one_step_within_bounds():
	assert next_difficulty(3, True) == 4
	assert next_difficulty(3, False) == 2
	assert next_difficulty(10, True) == 10
	assert next_difficulty(1, False) == 1


async def test_record_result_pushes_timeline_entry(collection):
	activity = Activity(id="act-1", topic_id="t1", type="mcq", content={}, difficulty=3)
	path = make_path(current_activity=activity)
	collection.find_one_and_update.return_value = make_path(current_difficulty=4).to_mongo()

	updated = await LearningPathRepository({LEARNING_PATHS: collection}).record_activity_result(path, True)

	assert updated.current_difficulty == 4
	query, update = collection.find_one_and_update.await_args.args
	assert query == {"_id": "path-1"}
	entry = update["$push"]["timeline"]
	assert (entry["activity_id"], entry["difficulty_before"], entry["difficulty_after"]) == ("act-1", 3, 4)
	assert update["$set"]["current_activity"] is None


async def test_record_result_without_activity(collection):
	with pytest.raises(ValueError):
		await LearningPathRepository({LEARNING_PATHS: collection}).record_activity_result(make_path(), False)
	collection.find_one_and_update.assert_not_awaited()


async def test_create_user_gets_plan_limits(collection):
	user = await UserRepository({USERS: collection}).create("clerk-new", plan="PRO")
	assert user.iterations.limit == 100
	assert user.chat_messages.limit == 300
	assert collection.insert_one.await_args.args[0]["clerk_id"] == "clerk-new"


async def test_refresh_leaves_current_counters_alone(collection):
	user = make_user(iterations_used=5)
	assert await UserRepository({USERS: collection}).refresh_quotas(user) is user
	collection.find_one_and_update.assert_not_awaited()


async def test_refresh_resets_expired_counters(collection):
	user = make_user(iterations_used=20)
	user.iterations.reset_date = datetime(2024, 3, 1, tzinfo=timezone.utc)
	refreshed = make_user()
	collection.find_one_and_update.return_value = refreshed.to_mongo()
	now = datetime(2024, 3, 2, tzinfo=timezone.utc)

	result = await UserRepository({USERS: collection}).refresh_quotas(user, now=now)

	assert result.iterations.count == 0
	fields = collection.find_one_and_update.await_args.args[1]["$set"]
	assert fields["iterations.count"] == 0
	assert fields["iterations.reset_date"] == datetime(2024, 4, 1, tzinfo=timezone.utc)
	assert "chat_messages.count" not in fields


async def test_downgrade_from_max_clears_tier_config(collection):
	collection.find_one.return_value = make_user(plan="MAX").to_mongo()
	collection.find_one_and_update.return_value = make_user(plan="PRO").to_mongo()

	await UserRepository({USERS: collection}).update_plan("clerk-max", "PRO")

	fields = collection.find_one_and_update.await_args.args[1]["$set"]
	assert fields["plan"] == "PRO"
	assert fields["iterations.limit"] == 100
	assert fields["byok_tier_config"] == {}


async def test_clearing_byok_drops_tier_config(collection):
	collection.find_one_and_update.return_value = make_user(plan="MAX").to_mongo()
	await UserRepository({USERS: collection}).update_byok("clerk-max", None)
	fields = collection.find_one_and_update.await_args.args[1]["$set"]
	assert fields["byok_api_key"] is None
	assert fields["byok_tier_config"] == {}


async def test_admin_plan_override_keeps_usage(collection):
	collection.find_one_and_update.return_value = make_user(plan="MAX", iterations_used=7).to_mongo()

	user = await UserRepository({USERS: collection}).set_plan_by_id("user-max", "MAX")

	assert user.iterations.count == 7
	query, update = collection.find_one_and_update.await_args.args
	assert query == {"_id": "user-max"}
	assert update["$set"]["plan"] == "MAX"
	assert "iterations.count" not in update["$set"]
	assert "byok_tier_config" not in update["$set"]


async def test_reset_iterations_by_id(collection):
	collection.find_one_and_update.return_value = None
	assert await UserRepository({USERS: collection}).reset_iterations_by_id("ghost") is None
	query, update = collection.find_one_and_update.await_args.args
	assert query == {"_id": "ghost"}
	assert update == {"$set": {"iterations.count": 0}}


async def test_fractional_iteration_increment(collection):
	collection.find_one_and_update.return_value = make_user(iterations_used=1.33).to_mongo()
	user = await UserRepository({USERS: collection}).increment_iteration("clerk-free", 0.33)
	assert user.iterations.count == 1.33
	assert collection.find_one_and_update.await_args.args[1] == {"$inc": {"iterations.count": 0.33}}


async def test_topic_chat_is_created_once_per_topic(collection):
	collection.find_one_and_update.return_value = TopicChat(
		_id="chat-1", interview_id="interview-1", topic_id="topic_1", user_id="user-free",
	).to_mongo()

	chat = await TopicChatRepository({TOPIC_CHATS: collection}).find_or_create("interview-1", "topic_1", "user-free")

	assert chat.id == "chat-1"
	query, update = collection.find_one_and_update.await_args.args
	assert query == {"interview_id": "interview-1", "topic_id": "topic_1"}
	assert set(update) == {"$setOnInsert"}
	assert update["$setOnInsert"]["messages"] == []
	assert collection.find_one_and_update.await_args.kwargs["upsert"] is True


async def test_topic_chat_messages_are_appended(collection):
	messages = [ChatMessage(id="m1", role="user", content="hi"), ChatMessage(id="m2", role="assistant", content="hello")]

	await TopicChatRepository({TOPIC_CHATS: collection}).add_messages("interview-1", "topic_1", messages)

	update = collection.update_one.await_args.args[1]
	assert [m["id"] for m in update["$push"]["messages"]["$each"]] == ["m1", "m2"]
	assert "updated_at" in update["$set"]


async def test_topic_chat_without_history(collection):
	collection.find_one.return_value = None
	assert await TopicChatRepository({TOPIC_CHATS: collection}).get_messages("interview-1", "topic_1") == []


async def test_toggle_pin_flips_in_one_update(collection):
	collection.update_one.return_value = MagicMock(matched_count=1)

	assert await ConversationRepository({AI_CONVERSATIONS: collection}).toggle_pin("conv-1") is True

	query, pipeline = collection.update_one.await_args.args
	assert query == {"_id": "conv-1"}
	assert pipeline[0]["$set"]["is_pinned"] == {"$not": [{"$ifNull": ["$is_pinned", False]}]}


async def test_archive_missing_conversation(collection):
	collection.update_one.return_value = MagicMock(matched_count=0)

	assert await ConversationRepository({AI_CONVERSATIONS: collection}).archive("ghost") is False

	fields = collection.update_one.await_args.args[1]["$set"]
	assert fields["is_archived"] is True


async def test_find_log_by_id(collection):
	collection.find_one.return_value = None
	assert await AILogRepository({AI_LOGS: collection}).find_by_id("nope") is None
	collection.find_one.assert_awaited_once_with({"_id": "nope"})
