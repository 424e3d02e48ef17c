import json

import httpx
import pytest

from syntaxstate.config import settings
from syntaxstate.db.models import ByokTierModel
from syntaxstate.services.llm_service import (
	RATE_LIMIT_MESSAGE,
	LLMError,
	LLMRateLimitError,
	LLMService,
	LLMUnavailableError,
	is_rate_limit_error,
)


def _sse(*payloads) -> bytes:
	lines = [": OPENROUTER PROCESSING"]
	for payload in payloads:
		lines.append("data: " + (payload if isinstance(payload, str) else json.dumps(payload)))
	return ("\n\n".join(lines) + "\n\n").encode()


def _service(handler) -> LLMService:
	return LLMService(transport=httpx.MockTransport(handler))


def test_plan_picks_default_tier():
	service = LLMService()
	free = service.resolve_model("FREE")
	assert free.tier == "medium"
	assert free.model == settings.model_tier_medium
	assert service.resolve_model("PRO").model == settings.model_tier_high


def test_explicit_tier_wins_over_plan():
	assert LLMService().resolve_model("PRO", tier="low").model == settings.model_tier_low


def test_byok_tier_override_carries_sampling():
	config = {"high": ByokTierModel(model="mistral/large", temperature=0.2, max_tokens=900)}
	choice = LLMService().resolve_model("MAX", config, byok=True)
	assert choice.model == "mistral/large"
	assert choice.temperature == 0.2
	assert choice.max_tokens == 900
	assert choice.display_id == "high - mistral/large"


def test_selected_model_overrides_everything():
	config = {"high": {"model": "mistral/large"}}
	assert LLMService().resolve_model("MAX", config, selected_model="openai/gpt-4o").model == "openai/gpt-4o"


def test_groq_provider_uses_its_model(monkeypatch):
	monkeypatch.setattr(settings, "llm_provider", "groq")
	assert LLMService().resolve_model("FREE").model == settings.groq_model
	assert LLMService().resolve_model("FREE", byok=True).model == settings.model_tier_medium


def test_enabled_for_byok_key(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", None)
	service = LLMService()
	assert not service.enabled
	assert service.enabled_for("sk-or-user")


async def test_openrouter_stream_yields_text_and_usage():
	seen = {}

	def handler(request: httpx.Request) -> httpx.Response:
		seen["auth"] = request.headers["authorization"]
		seen["body"] = json.loads(request.content)
		return httpx.Response(200, content=_sse(
			{"model": "acme/fast", "choices": [{"delta": {"reasoning": "thinking"}}]},
			{"choices": [{"delta": {"content": "Hel"}}]},
			{"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
			{"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 2}},
			"[DONE]",
		))

	chunks = [c async for c in _service(handler).stream_chat([{"role": "user", "content": "hi"}], model="acme/fast")]
	assert "".join(c.text for c in chunks) == "Hello"
	assert chunks[0].reasoning == "thinking"
	assert chunks[-1].usage == {"prompt_tokens": 9, "completion_tokens": 2}
	assert seen["auth"] == "Bearer test-key"
	assert seen["body"]["stream"] is True


async def test_user_key_is_sent_instead_of_platform_key():
	seen = {}

	def handler(request):
		seen["auth"] = request.headers["authorization"]
		return httpx.Response(200, content=_sse("[DONE]"))

	[c async for c in _service(handler).stream_chat([], model="m", api_key="sk-or-user")]
	assert seen["auth"] == "Bearer sk-or-user"


async def test_http_429_is_a_rate_limit():
	service = _service(lambda request: httpx.Response(429, json={"error": "slow down"}))
	with pytest.raises(LLMRateLimitError) as exc:
		[c async for c in service.stream_chat([], model="m")]
	assert str(exc.value) == RATE_LIMIT_MESSAGE


async def test_in_stream_error_is_raised():
	service = _service(lambda request: httpx.Response(200, content=_sse({"error": {"message": "context too long", "code": 400}})))
	with pytest.raises(LLMError, match="context too long"):
		[c async for c in service.stream_chat([], model="m")]


async def test_missing_key_is_unavailable(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", None)
	with pytest.raises(LLMUnavailableError):
		[c async for c in LLMService().stream_chat([], model="m")]


async def test_stream_object_yields_partials_and_result():
	def handler(request):
		return httpx.Response(200, content=_sse(
			{"choices": [{"delta": {"content": '{"items": [{"q": "a"'}}]},
			{"choices": [{"delta": {"content": '}, {"q": "b"}]}'}, "finish_reason": "stop"}]},
			"[DONE]",
		))

	stream = _service(handler).stream_object([], model="m")
	partials = [p async for p in stream]
	assert partials[0] == {"items": [{"q": "a"}]}
	assert stream.result() == {"items": [{"q": "a"}, {"q": "b"}]}
	assert stream.finish_reason == "stop"


def test_rate_limit_detection_from_text():
	assert is_rate_limit_error(RuntimeError("HTTP 429 Too Many Requests"))
	assert not is_rate_limit_error(RuntimeError("bad gateway"))
