from conftest import make_interview, make_user
from syntaxstate.config import settings
from syntaxstate.db.models import Conversation
from syntaxstate.services.assistant_service import AssistantContext, conversation_title
from syntaxstate.services.llm_service import RATE_LIMIT_MESSAGE, LLMError, LLMRateLimitError
from syntaxstate.utils.sse import DONE_SENTINEL, parse_sse_lines


QUESTION = "How do Python generators differ from iterators, and when would an interviewer care?"


def _events(resp):
	return list(parse_sse_lines(resp.text.splitlines()))


def _conversation(user_id="user-free"):
	return Conversation(_id="conv-1", user_id=user_id, title="Generators")


async def test_first_message_starts_a_conversation(client, repos, scripted_llm, log_calls):
	repos["conversations"].create.return_value = _conversation()
	scripted_llm(["Generators ", "are lazy."], usage={"prompt_tokens": 40, "completion_tokens": 6})

	resp = await client.post("/api/ai-assistant", json={"messages": [{"id": "m1", "role": "user", "content": QUESTION}]})

	assert resp.status_code == 200
	assert resp.headers["x-conversation-id"] == "conv-1"
	assert resp.headers["x-new-conversation"] == "true"
	assert resp.headers["x-model-id"] == f"medium - {settings.model_tier_medium}"
	title = repos["conversations"].create.await_args.args[1]
	assert title == QUESTION[:50] + "..."

	events = _events(resp)
	assert [e["type"] for e in events] == ["start", "text", "text", "finish"]
	assert events[0]["metadata"]["model"] == f"medium - {settings.model_tier_medium}"
	finish = events[-1]["metadata"]
	assert finish["tokens_in"] == 40
	assert finish["tokens_out"] == 6
	assert finish["total_tokens"] == 46
	assert resp.text.endswith(DONE_SENTINEL)

	stored = [c.args[1] for c in repos["conversations"].add_message.await_args_list]
	assert [(m.role, m.content) for m in stored] == [("user", QUESTION), ("assistant", "Generators are lazy.")]
	assert stored[1].metadata["tokens_out"] == 6
	repos["users"].increment_chat_message.assert_awaited_once_with("clerk-free")
	assert log_calls.await_args.args[0]["action"] == "AI_ASSISTANT_CHAT"


async def test_follow_up_uses_existing_conversation(client, repos, scripted_llm, log_calls):
	repos["conversations"].find_by_id.return_value = _conversation()
	llm = scripted_llm(["Sure."])
	messages = [
		{"role": "user", "content": "Explain decorators"},
		{"role": "assistant", "content": "They wrap functions."},
		{"role": "user", "content": "Show an example"},
	]

	resp = await client.post("/api/ai-assistant", json={"messages": messages, "conversation_id": "conv-1"})

	assert resp.headers["x-conversation-id"] == "conv-1"
	assert "x-new-conversation" not in resp.headers
	repos["conversations"].create.assert_not_awaited()
	sent = llm.calls[0]["messages"]
	assert sent[0]["role"] == "system"
	assert [m["content"] for m in sent[1:]] == ["Explain decorators", "They wrap functions.", "Show an example"]


async def test_foreign_conversation_is_forbidden(client, repos):
	repos["conversations"].find_by_id.return_value = _conversation(user_id="someone-else")
	resp = await client.post(
		"/api/ai-assistant",
		json={"messages": [{"role": "user", "content": "hi"}], "conversation_id": "conv-1"},
	)
	assert resp.status_code == 403


async def test_interview_context_reaches_system_prompt(client, repos, scripted_llm, log_calls):
	repos["conversations"].create.return_value = _conversation()
	repos["interviews"].find_by_id.return_value = make_interview()
	llm = scripted_llm(["ok"])

	await client.post(
		"/api/ai-assistant",
		json={"messages": [{"role": "user", "content": "What should I study?"}], "interview_id": "interview-1"},
	)

	system = llm.calls[0]["messages"][0]["content"]
	assert "Role: Backend Engineer" in system
	assert "Company: Acme" in system
	assert log_calls.await_args.args[0]["interview_id"] == "interview-1"


def test_context_ignores_documents_of_other_users():
	ctx = AssistantContext.build("user-free", make_interview(user_id="someone-else"))
	assert ctx.interview is None
	assert "Role:" not in ctx.system_prompt()


async def test_selected_model_is_honoured_for_max_only(client, repos, current_user, scripted_llm, log_calls):
	repos["conversations"].create.return_value = _conversation(user_id="user-max")
	current_user["user"] = make_user(plan="MAX")
	llm = scripted_llm(["ok"])
	body = {"messages": [{"role": "user", "content": "hi"}], "selected_model_id": "openai/gpt-4o"}

	resp = await client.post("/api/ai-assistant", json=body)

	assert resp.headers["x-model-id"] == "high - openai/gpt-4o"
	assert llm.calls[0]["model"] == "openai/gpt-4o"


async def test_selected_model_is_ignored_for_free(client, repos, scripted_llm, log_calls):
	repos["conversations"].create.return_value = _conversation()
	llm = scripted_llm(["ok"])
	body = {"messages": [{"role": "user", "content": "hi"}], "selected_model_id": "openai/gpt-4o"}

	await client.post("/api/ai-assistant", json=body)

	assert llm.calls[0]["model"] == settings.model_tier_medium


async def test_rate_limit_is_reported_as_retryable_error(client, repos, scripted_llm, log_calls):
	repos["conversations"].create.return_value = _conversation()
	scripted_llm(["Partial"], error=LLMRateLimitError(RATE_LIMIT_MESSAGE))

	resp = await client.post("/api/ai-assistant", json={"messages": [{"role": "user", "content": "hi"}]})

	events = _events(resp)
	assert [e["type"] for e in events] == ["start", "text", "error"]
	assert events[-1] == {"type": "error", "error": RATE_LIMIT_MESSAGE, "code": "RATE_LIMIT", "is_retryable": True}
	stored = repos["conversations"].add_message.await_args_list[-1].args[1]
	assert stored.role == "error"
	entry = log_calls.await_args.args[0]
	assert entry["status"] == "error"
	assert entry["error_code"] == "RATE_LIMIT"


async def test_other_failures_use_stream_error_code(client, repos, scripted_llm, log_calls):
	repos["conversations"].create.return_value = _conversation()
	scripted_llm([], error=LLMError("context length exceeded"))

	resp = await client.post("/api/ai-assistant", json={"messages": [{"role": "user", "content": "hi"}]})

	assert _events(resp) == [
		{"type": "error", "error": "context length exceeded", "code": "STREAM_ERROR", "is_retryable": True},
	]


async def test_empty_messages_are_rejected(client):
	resp = await client.post("/api/ai-assistant", json={"messages": []})
	assert resp.status_code == 400


async def test_chat_quota_body(client, current_user):
	current_user["user"] = make_user(chat_used=50)
	resp = await client.post("/api/ai-assistant", json={"messages": [{"role": "user", "content": "hi"}]})
	assert resp.status_code == 429
	assert resp.json() == {"error": "Chat message limit reached. Please upgrade your plan.", "remaining": 0, "limit": 50}


async def test_multi_model_needs_max(client):
	resp = await client.post("/api/ai-assistant/multi", json={"message": "hi", "model_id": "openai/gpt-4o"})
	assert resp.status_code == 403
	assert resp.json()["required_plan"] == "MAX"


async def test_multi_model_streams_metadata(client, repos, current_user, scripted_llm, log_calls):
	current_user["user"] = make_user(plan="MAX")
	llm = scripted_llm(["Four"], usage={"prompt_tokens": 12, "completion_tokens": 1})

	resp = await client.post(
		"/api/ai-assistant/multi",
		json={"message": "2+2?", "model_id": "mistral/large", "should_increment_count": False},
	)

	events = _events(resp)
	assert [e["type"] for e in events] == ["text", "metadata"]
	assert events[-1]["metadata"]["tokens_in"] == 12
	assert llm.calls[0]["model"] == "mistral/large"
	repos["users"].increment_chat_message.assert_not_awaited()
	assert log_calls.await_args.args[0]["interview_id"] == "ai-assistant-multi"


async def test_multi_model_without_provider(client, current_user, monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", None)
	current_user["user"] = make_user(plan="MAX")
	resp = await client.post("/api/ai-assistant/multi", json={"message": "hi", "model_id": "m"})
	assert resp.status_code == 503


def test_conversation_title_truncates():
	assert conversation_title("  short  ") == "short"
	assert conversation_title("x" * 60) == "x" * 50 + "..."


async def test_conversation_list_hides_archived_by_default(client, repos):
	repos["conversations"].find_by_user_id.return_value = [_conversation()]

	resp = await client.get("/api/conversations")

	assert [c["id"] for c in resp.json()["items"]] == ["conv-1"]
	repos["conversations"].find_by_user_id.assert_awaited_once_with("user-free", limit=50, include_archived=False)


async def test_conversation_list_can_include_archived(client, repos):
	repos["conversations"].find_by_user_id.return_value = []
	await client.get("/api/conversations", params={"include_archived": "true", "limit": 10})
	repos["conversations"].find_by_user_id.assert_awaited_once_with("user-free", limit=10, include_archived=True)


async def test_archived_conversations_are_listed_separately(client, repos):
	archived = Conversation(_id="conv-2", user_id="user-free", title="Old", is_archived=True)
	repos["conversations"].find_archived_by_user.return_value = [archived]

	resp = await client.get("/api/conversations/archived")

	assert resp.json()["items"][0]["is_archived"] is True
	repos["conversations"].find_archived_by_user.assert_awaited_once_with("user-free")


async def test_rename_conversation_trims_title(client, repos):
	repos["conversations"].find_by_id.return_value = _conversation()

	resp = await client.patch("/api/conversations/conv-1", json={"title": "  Generators vs iterators "})

	assert resp.json() == {"id": "conv-1", "title": "Generators vs iterators"}
	repos["conversations"].update_title.assert_awaited_once_with("conv-1", "Generators vs iterators")


async def test_blank_title_is_rejected(client, repos):
	repos["conversations"].find_by_id.return_value = _conversation()
	resp = await client.patch("/api/conversations/conv-1", json={"title": "   "})
	assert resp.status_code == 400
	repos["conversations"].update_title.assert_not_awaited()


async def test_pin_toggles_current_state(client, repos):
	pinned = Conversation(_id="conv-1", user_id="user-free", title="Generators", is_pinned=True)
	repos["conversations"].find_by_id.return_value = pinned

	resp = await client.post("/api/conversations/conv-1/pin")

	assert resp.json() == {"id": "conv-1", "is_pinned": False}
	repos["conversations"].toggle_pin.assert_awaited_once_with("conv-1")


async def test_archive_and_restore(client, repos):
	repos["conversations"].find_by_id.return_value = _conversation()

	archived = await client.post("/api/conversations/conv-1/archive")
	restored = await client.post("/api/conversations/conv-1/restore")

	assert archived.json()["is_archived"] is True
	assert restored.json()["is_archived"] is False
	repos["conversations"].archive.assert_awaited_once_with("conv-1")
	repos["conversations"].restore.assert_awaited_once_with("conv-1")


async def test_managing_foreign_conversation_is_forbidden(client, repos):
	repos["conversations"].find_by_id.return_value = _conversation(user_id="someone-else")

	for resp in (
		await client.patch("/api/conversations/conv-1", json={"title": "Mine now"}),
		await client.post("/api/conversations/conv-1/pin"),
		await client.post("/api/conversations/conv-1/archive"),
		await client.delete("/api/conversations/conv-1"),
	):
		assert resp.status_code == 403
	repos["conversations"].update_title.assert_not_awaited()
	repos["conversations"].toggle_pin.assert_not_awaited()
	repos["conversations"].archive.assert_not_awaited()
	repos["conversations"].delete.assert_not_awaited()


async def test_missing_conversation_is_not_found(client, repos):
	repos["conversations"].find_by_id.return_value = None
	resp = await client.post("/api/conversations/conv-1/restore")
	assert resp.status_code == 404
