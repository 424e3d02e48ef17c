from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional, Union
from datetime import datetime

from syntaxstate.db.models import ByokTierModel, LearningTopic


class VisibilityIn(BaseModel):
	is_public: bool


class ModuleStreamIn(BaseModel):
	instructions: Optional[str] = Field(default=None, max_length=2000, description="Extra guidance for this generation only")
	count: Optional[int] = Field(default=None, ge=1, le=50, description="Items to generate for list modules")
	append: bool = Field(default=False, description="Add to the existing items instead of replacing them")


class ModuleOutcome(BaseModel):
	module: str
	status: Literal["completed", "failed", "skipped"]
	error: Optional[str] = None


class GenerateAllOut(BaseModel):
	interview_id: str
	results: List[ModuleOutcome]


class RegenerateTopicIn(BaseModel):
	style: Literal["professional", "construction", "simple"]


class RegenerateTopicOut(BaseModel):
	topic_id: str
	style: str
	content: str
	cached: bool = False


class InterviewSummary(BaseModel):
	id: str
	job_title: str
	company: str
	is_public: bool
	created_at: datetime
	modules_ready: List[str]


class InterviewList(BaseModel):
	items: List[InterviewSummary]


class LearningPathCreate(BaseModel):
	goal: str = Field(..., min_length=1, max_length=500)
	topics: List[LearningTopic] = Field(..., min_length=1)
	difficulty: int = Field(default=3, ge=1, le=10)


class ActivityStreamIn(BaseModel):
	activity_type: Optional[Literal["mcq", "coding-challenge", "debugging-task", "concept-explanation"]] = None
	topic_id: Optional[str] = None
	regenerate: bool = False


class ActivityResultIn(BaseModel):
	success: bool


class ActivityResultOut(BaseModel):
	success: bool
	difficulty_before: int
	difficulty_after: int


class AssistantMessageIn(BaseModel):
	id: Optional[str] = None
	role: Literal["user", "assistant", "system"]
	content: str = ""


class AssistantChatIn(BaseModel):
	messages: List[AssistantMessageIn] = Field(default_factory=list)
	interview_id: Optional[str] = None
	learning_path_id: Optional[str] = None
	conversation_id: Optional[str] = None
	selected_model_id: Optional[str] = Field(default=None, description="Honoured for MAX users only")


class MultiChatIn(BaseModel):
	message: str = Field(..., min_length=1)
	model_id: str = Field(..., min_length=1)
	conversation_id: Optional[str] = None
	should_increment_count: bool = Field(default=True, description="False for the 2nd..nth model of one comparison")


class ConversationSummary(BaseModel):
	id: str
	title: str
	interview_id: Optional[str] = None
	learning_path_id: Optional[str] = None
	is_pinned: bool = False
	is_archived: bool = False
	updated_at: datetime


class ConversationList(BaseModel):
	items: List[ConversationSummary]


class ConversationTitleIn(BaseModel):
	title: str = Field(..., min_length=1, max_length=100)


class TopicChatIn(BaseModel):
	messages: List[AssistantMessageIn] = Field(..., min_length=1)


class CheckoutIn(BaseModel):
	plan: Literal["PRO", "MAX"]
	success_url: str
	cancel_url: str


class PortalIn(BaseModel):
	return_url: str


class UrlOut(BaseModel):
	url: str


class ByokIn(BaseModel):
	api_key: Optional[str] = Field(default=None, description="OpenRouter key; empty clears BYOK")
	tier_config: Dict[Literal["high", "medium", "low"], ByokTierModel] = Field(default_factory=dict)


class QuotaOut(BaseModel):
	count: Union[int, float]
	limit: int
	reset_date: datetime


class MeOut(BaseModel):
	id: str
	clerk_id: str
	plan: str
	iterations: QuotaOut
	interviews: QuotaOut
	chat_messages: QuotaOut
	features: List[str]
	analogy_styles: List[str]
	model_tier: str
	byok: bool


class AdminPlanIn(BaseModel):
	plan: Literal["FREE", "PRO", "MAX"]
