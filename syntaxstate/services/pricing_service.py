from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from syntaxstate.config import settings


logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 15 * 60


@dataclass(frozen=True)
class ModelPricing:
	input: float  # USD per 1M tokens
	output: float


FALLBACK_PRICING: Dict[str, ModelPricing] = {
	"anthropic/claude-sonnet-4": ModelPricing(3.0, 15.0),
	"anthropic/claude-3.5-sonnet": ModelPricing(3.0, 15.0),
	"anthropic/claude-3-opus": ModelPricing(15.0, 75.0),
	"anthropic/claude-3-haiku": ModelPricing(0.25, 1.25),
	"openai/gpt-4o": ModelPricing(2.5, 10.0),
	"openai/gpt-4o-mini": ModelPricing(0.15, 0.6),
	"openai/gpt-4-turbo": ModelPricing(10.0, 30.0),
	"openai/gpt-3.5-turbo": ModelPricing(0.5, 1.5),
	"google/gemini-pro-1.5": ModelPricing(1.25, 5.0),
	"meta-llama/llama-3.1-70b-instruct": ModelPricing(0.52, 0.75),
}

DEFAULT_PRICING = ModelPricing(1.0, 3.0)


def strip_tier_prefix(model_id: str) -> str:
	"""``"high - anthropic/claude-sonnet-4"`` -> ``"anthropic/claude-sonnet-4"``."""
	_, sep, rest = model_id.partition(" - ")
	return rest.strip() if sep else model_id.strip()


class PricingService:
	def __init__(
		self,
		base_url: Optional[str] = None,
		clock: Callable[[], float] = time.monotonic,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self._transport = transport
		self._base_url = (base_url or settings.openrouter_base_url).rstrip("/")
		self._clock = clock
		self._cache: Optional[Dict[str, ModelPricing]] = None
		self._cached_at = 0.0

	async def _fetch(self) -> Dict[str, ModelPricing]:
		try:
			async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
				resp = await client.get(f"{self._base_url}/models")
			if resp.status_code != 200:
				logger.warning("OpenRouter models returned %s, using fallback pricing", resp.status_code)
				return dict(FALLBACK_PRICING)
			table: Dict[str, ModelPricing] = {}
			for model in resp.json().get("data", []):
				pricing = model.get("pricing") or {}
				try:
					prompt = float(pricing.get("prompt") or 0)
					completion = float(pricing.get("completion") or 0)
				except (TypeError, ValueError):
					prompt = completion = 0.0
				# Prices are quoted per token
				table[model["id"]] = ModelPricing(prompt * 1_000_000, completion * 1_000_000)
			return table
		except (httpx.HTTPError, ValueError, KeyError) as e:
			logger.warning("Failed to fetch OpenRouter pricing: %s", e)
			return dict(FALLBACK_PRICING)

	def is_stale(self) -> bool:
		return self._cache is None or self._clock() - self._cached_at >= CACHE_TTL_SECONDS

	async def table(self) -> Dict[str, ModelPricing]:
		if self.is_stale():
			self._cache = await self._fetch()
			self._cached_at = self._clock()
		return self._cache

	async def refresh(self) -> None:
		self._cache = await self._fetch()
		self._cached_at = self._clock()

	async def get_model_pricing(self, model_id: str) -> ModelPricing:
		model_id = strip_tier_prefix(model_id)
		table = await self.table()
		return table.get(model_id) or FALLBACK_PRICING.get(model_id) or DEFAULT_PRICING

	async def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
		pricing = await self.get_model_pricing(model_id)
		cost = input_tokens / 1_000_000 * pricing.input + output_tokens / 1_000_000 * pricing.output
		return round(cost, 6)


pricing_service = PricingService()
