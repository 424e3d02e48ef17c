from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class Document(BaseModel):
	"""Base for Mongo documents; ``id`` maps to ``_id``."""

	model_config = ConfigDict(populate_by_name=True, extra="ignore")

	id: str = Field(alias="_id")

	def to_mongo(self) -> Dict[str, Any]:
		return self.model_dump(by_alias=True)


# Users

class QuotaCounter(BaseModel):
	# Topic chat spends fractions of an iteration
	count: Union[int, float] = 0
	limit: int
	reset_date: datetime


class ByokTierModel(BaseModel):
	model: str
	fallback: Optional[str] = None
	temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
	max_tokens: Optional[int] = Field(default=None, ge=1)


class User(Document):
	clerk_id: str
	plan: Literal["FREE", "PRO", "MAX"] = "FREE"
	stripe_customer_id: Optional[str] = None
	stripe_subscription_id: Optional[str] = None
	iterations: QuotaCounter
	interviews: QuotaCounter
	chat_messages: QuotaCounter
	byok_api_key: Optional[str] = None
	byok_tier_config: Dict[str, ByokTierModel] = Field(default_factory=dict)
	default_analogy: str = "professional"
	created_at: datetime = Field(default_factory=utcnow)
	updated_at: datetime = Field(default_factory=utcnow)

	@property
	def is_byok(self) -> bool:
		return bool(self.byok_api_key)


# Interviews

ModuleName = Literal["opening_brief", "revision_topics", "mcqs", "rapid_fire"]
MODULES: tuple[str, ...] = ("opening_brief", "revision_topics", "mcqs", "rapid_fire")
LIST_MODULES: tuple[str, ...] = ("revision_topics", "mcqs", "rapid_fire")


class JobDetails(BaseModel):
	title: str
	company: str
	description: str
	programming_language: Optional[str] = None


class OpeningBrief(BaseModel):
	content: str
	experience_match: int = Field(ge=0, le=100)
	key_skills: List[str] = Field(default_factory=list)
	prep_time: str
	version: int = Field(default=1, ge=1)


class RevisionTopic(BaseModel):
	id: str
	title: str
	content: str
	style: Literal["professional", "construction", "simple"] = "professional"
	reason: str
	confidence: Literal["low", "medium", "high"]
	status: Literal["not_started", "in_progress", "completed"] = "not_started"
	style_cache: Dict[str, str] = Field(default_factory=dict)


class MCQ(BaseModel):
	id: str
	question: str
	options: List[str] = Field(min_length=4, max_length=4)
	answer: str
	explanation: str
	source: Literal["ai", "search"] = "ai"


class RapidFire(BaseModel):
	id: str
	question: str
	answer: str


class InterviewModules(BaseModel):
	opening_brief: Optional[OpeningBrief] = None
	revision_topics: List[RevisionTopic] = Field(default_factory=list)
	mcqs: List[MCQ] = Field(default_factory=list)
	rapid_fire: List[RapidFire] = Field(default_factory=list)

	def is_empty(self, module: str) -> bool:
		return not getattr(self, module)


class Interview(Document):
	user_id: str
	is_public: bool = False
	job_details: JobDetails
	resume_context: str = ""
	modules: InterviewModules = Field(default_factory=InterviewModules)
	excluded_modules: List[str] = Field(default_factory=list)
	custom_instructions: Optional[str] = Field(default=None, max_length=2000)
	created_at: datetime = Field(default_factory=utcnow)
	updated_at: datetime = Field(default_factory=utcnow)


# Learning paths

ActivityType = Literal["mcq", "coding-challenge", "debugging-task", "concept-explanation"]
ACTIVITY_TYPES: tuple[str, ...] = ("mcq", "coding-challenge", "debugging-task", "concept-explanation")


class MCQActivity(BaseModel):
	type: Literal["mcq"] = "mcq"
	question: str
	options: List[str] = Field(min_length=4, max_length=4)
	correct_answer: str
	explanation: str


class CodingChallenge(BaseModel):
	type: Literal["coding-challenge"] = "coding-challenge"
	problem_description: str
	input_format: str
	output_format: str
	evaluation_criteria: List[str]
	starter_code: Optional[str] = None
	sample_input: str
	sample_output: str


class DebuggingTask(BaseModel):
	type: Literal["debugging-task"] = "debugging-task"
	buggy_code: str
	expected_behavior: str
	hints: List[str]


class ConceptExplanation(BaseModel):
	type: Literal["concept-explanation"] = "concept-explanation"
	content: str
	key_points: List[str]
	examples: List[str]


ACTIVITY_CONTENT_MODELS: Dict[str, type[BaseModel]] = {
	"mcq": MCQActivity,
	"coding-challenge": CodingChallenge,
	"debugging-task": DebuggingTask,
	"concept-explanation": ConceptExplanation,
}


class LearningTopic(BaseModel):
	id: str
	title: str
	description: str = ""
	skill_cluster: str = "backend"
	key_concepts: List[str] = Field(default_factory=list)
	common_mistakes: List[str] = Field(default_factory=list)
	interview_relevance: Optional[str] = None


class Activity(BaseModel):
	id: str
	topic_id: str
	type: ActivityType
	content: Dict[str, Any]
	difficulty: int = Field(ge=1, le=10)
	created_at: datetime = Field(default_factory=utcnow)


class TimelineEntry(BaseModel):
	activity_id: str
	activity_type: ActivityType
	topic_id: str
	success: bool
	difficulty_before: int
	difficulty_after: int
	timestamp: datetime = Field(default_factory=utcnow)


class LearningPath(Document):
	user_id: str
	goal: str
	topics: List[LearningTopic] = Field(default_factory=list)
	current_topic_id: Optional[str] = None
	current_difficulty: int = Field(default=3, ge=1, le=10)
	current_activity: Optional[Activity] = None
	timeline: List[TimelineEntry] = Field(default_factory=list)
	is_active: bool = True
	created_at: datetime = Field(default_factory=utcnow)
	updated_at: datetime = Field(default_factory=utcnow)

	def find_topic(self, topic_id: str) -> Optional[LearningTopic]:
		return next((t for t in self.topics if t.id == topic_id), None)


# AI logs

AIStatus = Literal["success", "error", "timeout", "rate_limited", "cancelled"]


class TokenUsage(BaseModel):
	input: int = 0
	output: int = 0


class SearchResult(BaseModel):
	query: str
	result_count: int
	sources: List[str] = Field(default_factory=list)


class AILog(Document):
	interview_id: Optional[str] = None
	user_id: str
	action: str
	status: AIStatus = "success"
	model: str
	prompt: str = ""
	system_prompt: Optional[str] = None
	response: str = ""
	error_message: Optional[str] = None
	error_code: Optional[str] = None
	tools_used: List[str] = Field(default_factory=list)
	search_queries: List[str] = Field(default_factory=list)
	search_results: List[SearchResult] = Field(default_factory=list)
	token_usage: TokenUsage = Field(default_factory=TokenUsage)
	estimated_cost: Optional[float] = None
	latency_ms: int = 0
	time_to_first_token: Optional[int] = None
	metadata: Dict[str, Any] = Field(default_factory=dict)
	timestamp: datetime = Field(default_factory=utcnow)


# Assistant conversations

class ChatMessage(BaseModel):
	id: str
	role: Literal["user", "assistant", "system", "error"]
	content: str
	metadata: Optional[Dict[str, Any]] = None
	created_at: datetime = Field(default_factory=utcnow)


class Conversation(Document):
	user_id: str
	title: str
	messages: List[ChatMessage] = Field(default_factory=list)
	interview_id: Optional[str] = None
	learning_path_id: Optional[str] = None
	is_pinned: bool = False
	is_archived: bool = False
	last_message_at: datetime = Field(default_factory=utcnow)
	created_at: datetime = Field(default_factory=utcnow)
	updated_at: datetime = Field(default_factory=utcnow)


class TopicChat(Document):
	"""Refinement chat about one revision topic of an interview."""

	interview_id: str
	topic_id: str
	user_id: str
	messages: List[ChatMessage] = Field(default_factory=list)
	created_at: datetime = Field(default_factory=utcnow)
	updated_at: datetime = Field(default_factory=utcnow)
