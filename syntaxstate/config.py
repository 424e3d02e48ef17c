from pydantic_settings import BaseSettings, NoDecode
from pydantic import field_validator
from typing import Annotated, List
from dotenv import load_dotenv


# Ensure .env is loaded eagerly
load_dotenv(dotenv_path=".env")


class Settings(BaseSettings):
	# Server
	host: str = "0.0.0.0"
	port: int = 8000
	cors_allow_origins: Annotated[List[str], NoDecode] = [
		"http://localhost:3000",
		"http://127.0.0.1:3000",
	]
	public_app_url: str = "http://localhost:3000"

	# Auth (Clerk)
	clerk_jwt_key: str | None = None  # PEM public key for networkless session verification
	clerk_authorized_parties: Annotated[List[str], NoDecode] = []
	clerk_webhook_secret: str | None = None  # whsec_...
	admin_user_ids: Annotated[List[str], NoDecode] = []

	# LLM Provider Selection
	llm_provider: str = "openrouter"  # options: openrouter, groq, gemini

	# OpenRouter
	openrouter_api_key: str | None = None
	openrouter_base_url: str = "https://openrouter.ai/api/v1"
	openrouter_timeout_seconds: float = 120.0

	# Groq
	groq_api_key: str | None = None
	groq_model: str = "llama-3.3-70b-versatile"

	# Google Gemini
	gemini_api_key: str | None = None
	gemini_model: str = "gemini-1.5-flash"

	# Model tiers (system defaults, overridable per user via BYOK tier config)
	model_tier_high: str = "anthropic/claude-sonnet-4"
	model_tier_medium: str = "openai/gpt-4o-mini"
	model_tier_low: str = "meta-llama/llama-3.1-70b-instruct"
	answer_temperature: float = 0.7
	max_output_tokens: int = 4096

	# Storage
	mongodb_uri: str = "mongodb://localhost:27017"
	mongodb_db: str = "syntaxstate"
	redis_url: str | None = None  # in-process stream store when unset

	# Stripe
	stripe_secret_key: str | None = None
	stripe_webhook_secret: str | None = None
	stripe_price_pro: str | None = None
	stripe_price_max: str | None = None

	# Generation
	generation_concurrency: int = 2
	stream_throttle_ms: int = 100

	# Logging
	log_level: str = "INFO"
	analytics_path: str | None = None  # e.g., logs/audit.jsonl

	@field_validator("answer_temperature")
	@classmethod
	def clamp_temperature(cls, v: float) -> float:
		return max(0.0, min(2.0, v))

	@field_validator("generation_concurrency")
	@classmethod
	def at_least_one(cls, v: int) -> int:
		return max(1, v)

	@field_validator("cors_allow_origins", "clerk_authorized_parties", "admin_user_ids", mode="before")
	@classmethod
	def parse_csv(cls, v):
		# Allow environment variable override
		if isinstance(v, str):
			return [item.strip() for item in v.split(",") if item.strip()]
		return v

	class Config:
		env_file = ".env"
		env_file_encoding = "utf-8"


settings = Settings()
