from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import anyio
import google.generativeai as genai
import groq
import httpx
from groq import Groq

from syntaxstate.config import settings
from syntaxstate.utils.partial_json import parse_partial_json


logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = (
	"Rate limit exceeded. The AI model is temporarily unavailable. "
	"Please try again in a few moments or select a different model."
)

PLAN_TIERS: Dict[str, str] = {
	"FREE": "medium",
	"PRO": "high",
	"MAX": "high",
}


class LLMError(Exception):
	pass


class LLMUnavailableError(LLMError):
	pass


class LLMRateLimitError(LLMError):
	pass


def is_rate_limit_error(exc: BaseException) -> bool:
	if isinstance(exc, LLMRateLimitError):
		return True
	text = str(exc).lower()
	return "rate limit" in text or "rate_limit" in text or "429" in text


@dataclass
class LLMChunk:
	text: str = ""
	reasoning: str = ""
	usage: Optional[Dict[str, Any]] = None
	finish_reason: Optional[str] = None
	model: Optional[str] = None


@dataclass
class LLMResult:
	text: str
	usage: Optional[Dict[str, Any]] = None
	model: Optional[str] = None
	finish_reason: Optional[str] = None


@dataclass
class ModelChoice:
	model: str
	tier: str
	temperature: float
	max_tokens: int

	@property
	def display_id(self) -> str:
		return f"{self.tier} - {self.model}"


class ObjectStream:
	"""Wraps a text stream of a JSON document and yields repaired partial values.

	After iteration ``text``, ``usage`` and ``model`` describe the whole
	response and ``result()`` returns the final parsed document.
	"""

	def __init__(self, chunks: AsyncIterator[LLMChunk], model: str) -> None:
		self._chunks = chunks
		self.model = model
		self.text = ""
		self.usage: Optional[Dict[str, Any]] = None
		self.finish_reason: Optional[str] = None

	async def __aiter__(self) -> AsyncIterator[Any]:
		last: Any = None
		async for chunk in self._chunks:
			if chunk.usage:
				self.usage = chunk.usage
			if chunk.finish_reason:
				self.finish_reason = chunk.finish_reason
			if not chunk.text:
				continue
			self.text += chunk.text
			partial = parse_partial_json(self.text)
			if partial is not None and partial != last:
				last = partial
				yield partial

	def result(self) -> Any:
		value = parse_partial_json(self.text)
		if value is None:
			raise LLMError("Model response was not valid JSON")
		return value


class LLMService:
	def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
		self._client = None
		self._transport = transport

	@property
	def provider(self) -> str:
		return (settings.llm_provider or "openrouter").lower()

	def _ensure_client(self):
		provider = self.provider
		if provider == "groq":
			api_key = settings.groq_api_key
			if not api_key:
				self._client = None
				return None
			if self._client is None or not isinstance(self._client, Groq):
				self._client = Groq(api_key=api_key)
			return self._client
		elif provider == "gemini":
			api_key = settings.gemini_api_key
			if not api_key:
				return None
			# For gemini we return a configured module handle to keep usage simple
			genai.configure(api_key=api_key)
			return genai
		return None

	@property
	def enabled(self) -> bool:
		provider = self.provider
		if provider == "openrouter":
			return bool(settings.openrouter_api_key)
		if provider == "groq":
			return bool(settings.groq_api_key)
		if provider == "gemini":
			return bool(settings.gemini_api_key)
		return False

	def enabled_for(self, api_key: Optional[str]) -> bool:
		return bool(api_key) or self.enabled

	def tier_model(self, tier: str) -> str:
		return {
			"high": settings.model_tier_high,
			"medium": settings.model_tier_medium,
			"low": settings.model_tier_low,
		}[tier]

	def resolve_model(
		self,
		plan: str,
		byok_tier_config: Optional[Dict[str, Any]] = None,
		selected_model: Optional[str] = None,
		tier: Optional[str] = None,
		byok: bool = False,
	) -> ModelChoice:
		tier = tier or PLAN_TIERS.get(plan, "medium")
		temperature = settings.answer_temperature
		max_tokens = settings.max_output_tokens
		override = (byok_tier_config or {}).get(tier)
		if override is not None and not isinstance(override, dict):
			override = override.model_dump()
		if selected_model:
			model = selected_model
		elif override and override.get("model"):
			model = override["model"]
			if override.get("temperature") is not None:
				temperature = override["temperature"]
			if override.get("max_tokens"):
				max_tokens = override["max_tokens"]
		elif not byok and self.provider == "groq":
			model = settings.groq_model
		elif not byok and self.provider == "gemini":
			model = settings.gemini_model
		else:
			model = self.tier_model(tier)
		return ModelChoice(model=model, tier=tier, temperature=temperature, max_tokens=max_tokens)

	async def stream_chat(
		self,
		messages: List[Dict[str, str]],
		*,
		model: str,
		temperature: Optional[float] = None,
		max_tokens: Optional[int] = None,
		api_key: Optional[str] = None,
	) -> AsyncIterator[LLMChunk]:
		temperature = settings.answer_temperature if temperature is None else temperature
		max_tokens = max_tokens or settings.max_output_tokens
		# A user's own key always goes through OpenRouter
		provider = "openrouter" if api_key else self.provider
		if provider == "openrouter":
			stream = self._stream_openrouter(messages, model, temperature, max_tokens, api_key or settings.openrouter_api_key)
		elif provider == "groq":
			stream = self._stream_groq(messages, model, temperature, max_tokens)
		elif provider == "gemini":
			stream = self._stream_gemini(messages, model, temperature, max_tokens)
		else:
			raise LLMUnavailableError(f"Unknown LLM provider: {provider}")
		async for chunk in stream:
			yield chunk

	async def complete(self, messages: List[Dict[str, str]], **kwargs: Any) -> LLMResult:
		parts: List[str] = []
		result = LLMResult(text="", model=kwargs.get("model"))
		async for chunk in self.stream_chat(messages, **kwargs):
			parts.append(chunk.text)
			if chunk.usage:
				result.usage = chunk.usage
			if chunk.finish_reason:
				result.finish_reason = chunk.finish_reason
			if chunk.model:
				result.model = chunk.model
		result.text = "".join(parts)
		return result

	def stream_object(self, messages: List[Dict[str, str]], *, model: str, **kwargs: Any) -> ObjectStream:
		return ObjectStream(self.stream_chat(messages, model=model, **kwargs), model)

	async def _stream_openrouter(
		self,
		messages: List[Dict[str, str]],
		model: str,
		temperature: float,
		max_tokens: int,
		api_key: Optional[str],
	) -> AsyncIterator[LLMChunk]:
		if not api_key:
			raise LLMUnavailableError("OpenRouter API key is not configured")
		body = {
			"model": model,
			"messages": messages,
			"temperature": temperature,
			"max_tokens": max_tokens,
			"stream": True,
			"usage": {"include": True},
		}
		headers = {
			"Authorization": f"Bearer {api_key}",
			"HTTP-Referer": settings.public_app_url,
			"X-Title": "SyntaxState",
		}
		try:
			async with httpx.AsyncClient(
				base_url=settings.openrouter_base_url,
				timeout=settings.openrouter_timeout_seconds,
				transport=self._transport,
			) as client:
				async with client.stream("POST", "/chat/completions", json=body, headers=headers) as resp:
					if resp.status_code == 429:
						raise LLMRateLimitError(RATE_LIMIT_MESSAGE)
					if resp.status_code >= 400:
						detail = (await resp.aread()).decode("utf-8", errors="ignore")
						raise LLMError(f"OpenRouter returned {resp.status_code}: {detail[:300]}")
					async for line in resp.aiter_lines():
						line = line.strip()
						# Lines starting with ":" are keepalive comments
						if not line.startswith("data:"):
							continue
						data = line[5:].strip()
						if data == "[DONE]":
							break
						try:
							payload = json.loads(data)
						except json.JSONDecodeError:
							continue
						if payload.get("error"):
							error = payload["error"]
							message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
							code = error.get("code") if isinstance(error, dict) else None
							if code == 429 or "rate limit" in message.lower():
								raise LLMRateLimitError(RATE_LIMIT_MESSAGE)
							raise LLMError(message)
						choices = payload.get("choices") or [{}]
						delta = choices[0].get("delta") or {}
						yield LLMChunk(
							text=delta.get("content") or "",
							reasoning=delta.get("reasoning") or "",
							usage=payload.get("usage"),
							finish_reason=choices[0].get("finish_reason"),
							model=payload.get("model"),
						)
		except httpx.HTTPError as e:
			raise LLMError(f"OpenRouter request failed: {e}") from e

	async def _stream_groq(
		self,
		messages: List[Dict[str, str]],
		model: str,
		temperature: float,
		max_tokens: int,
	) -> AsyncIterator[LLMChunk]:
		client = self._ensure_client()
		if client is None:
			raise LLMUnavailableError("Groq API key is not configured")

		def _call_stream():
			return client.chat.completions.create(
				model=model,
				messages=messages,
				temperature=temperature,
				max_tokens=max_tokens,
				stream=True,
			)

		try:
			stream = await anyio.to_thread.run_sync(_call_stream)
			it = iter(stream)
			while True:
				chunk = await anyio.to_thread.run_sync(next, it, None)
				if chunk is None:
					break
				choice = chunk.choices[0] if chunk.choices else None
				usage = getattr(getattr(chunk, "x_groq", None), "usage", None)
				yield LLMChunk(
					text=(getattr(choice.delta, "content", None) or "") if choice else "",
					usage=usage.model_dump() if usage is not None else None,
					finish_reason=getattr(choice, "finish_reason", None) if choice else None,
					model=getattr(chunk, "model", None),
				)
		except groq.RateLimitError as e:
			raise LLMRateLimitError(RATE_LIMIT_MESSAGE) from e
		except groq.APIError as e:
			raise LLMError(str(e)) from e

	async def _stream_gemini(
		self,
		messages: List[Dict[str, str]],
		model: str,
		temperature: float,
		max_tokens: int,
	) -> AsyncIterator[LLMChunk]:
		client = self._ensure_client()
		if client is None:
			raise LLMUnavailableError("Gemini API key is not configured")
		system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
		turns = [m for m in messages if m["role"] != "system"]
		# Join to a single prompt, keeping the conversation order
		full_prompt = "\n\n".join(f"{m['role'].capitalize()}: {m['content']}" for m in turns).strip()

		def _one_shot():
			gmodel = client.GenerativeModel(model, system_instruction=system or None)
			return gmodel.generate_content(
				full_prompt,
				generation_config={"temperature": temperature, "max_output_tokens": max_tokens},
			)

		try:
			resp = await anyio.to_thread.run_sync(_one_shot)
		except Exception as e:
			if is_rate_limit_error(e):
				raise LLMRateLimitError(RATE_LIMIT_MESSAGE) from e
			raise LLMError(str(e)) from e
		meta = getattr(resp, "usage_metadata", None)
		usage = None
		if meta is not None:
			usage = {
				"prompt_tokens": getattr(meta, "prompt_token_count", 0) or 0,
				"completion_tokens": getattr(meta, "candidates_token_count", 0) or 0,
			}
		yield LLMChunk(text=getattr(resp, "text", "") or "", usage=usage, finish_reason="stop", model=model)


llm_service = LLMService()
