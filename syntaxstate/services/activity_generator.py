from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from syntaxstate.db.models import ACTIVITY_CONTENT_MODELS, ACTIVITY_TYPES, LearningTopic
from syntaxstate.services.llm_service import LLMError


ACTIVITY_SYSTEM_PROMPT = (
	"You are an expert technical educator and interview preparation specialist. Your role is to generate "
	"high-quality learning activities that help users master technical concepts.\n\n"
	"Guidelines:\n"
	"- Create activities appropriate for the specified difficulty level (1-10 scale)\n"
	"- Ensure content is accurate, practical, and relevant to real-world scenarios\n"
	"- For MCQs, all options should be plausible to avoid obvious elimination\n"
	"- For coding challenges, provide clear problem statements and evaluation criteria\n"
	"- For debugging tasks, include realistic bugs that developers commonly encounter\n"
	"- Adapt complexity based on the skill cluster and topic context\n\n"
	"Respond with a single JSON object and nothing else. Keys are snake_case."
)

CLUSTER_WEIGHTS: Dict[str, Dict[str, float]] = {
	"dsa": {"coding-challenge": 3, "mcq": 2, "debugging-task": 1, "concept-explanation": 1},
	"oop": {"coding-challenge": 2, "mcq": 2, "debugging-task": 2, "concept-explanation": 2},
	"system-design": {"concept-explanation": 3, "mcq": 2, "coding-challenge": 1, "debugging-task": 1},
	"debugging": {"debugging-task": 4, "coding-challenge": 2, "mcq": 1, "concept-explanation": 1},
	"databases": {"coding-challenge": 2, "mcq": 2, "concept-explanation": 2, "debugging-task": 1},
	"api-design": {"coding-challenge": 2, "concept-explanation": 2, "mcq": 2, "debugging-task": 1},
	"testing": {"coding-challenge": 2, "debugging-task": 2, "mcq": 2, "concept-explanation": 1},
	"devops": {"concept-explanation": 2, "mcq": 2, "debugging-task": 2, "coding-challenge": 1},
	"frontend": {"coding-challenge": 2, "debugging-task": 2, "mcq": 2, "concept-explanation": 1},
	"backend": {"coding-challenge": 3, "debugging-task": 2, "mcq": 2, "concept-explanation": 1},
	"security": {"mcq": 2, "concept-explanation": 2, "debugging-task": 2, "coding-challenge": 1},
	"performance": {"debugging-task": 2, "coding-challenge": 2, "concept-explanation": 2, "mcq": 1},
}

RECENT_WINDOW = 5
RECENT_PENALTY = 0.5
MIN_WEIGHT = 0.1

# Concept explanations are plain structured prose; everything else needs the stronger tier
ACTIVITY_TIERS: Dict[str, str] = {
	"mcq": "high",
	"coding-challenge": "high",
	"debugging-task": "high",
	"concept-explanation": "medium",
}


@dataclass
class ActivityContext:
	goal: str
	topic: LearningTopic
	difficulty: int
	previous_activities: List[str] = field(default_factory=list)

	@property
	def skill_cluster(self) -> str:
		return self.topic.skill_cluster


def activity_weights(skill_cluster: str, recent_types: Sequence[str]) -> Dict[str, float]:
	base = CLUSTER_WEIGHTS.get(skill_cluster, {})
	recent = Counter(list(recent_types)[-RECENT_WINDOW:])
	return {
		t: max(MIN_WEIGHT, base.get(t, 1) - recent[t] * RECENT_PENALTY)
		for t in ACTIVITY_TYPES
	}


def select_activity_type(skill_cluster: str, recent_types: Sequence[str] = (), rng: Optional[random.Random] = None) -> str:
	"""Weighted random pick that steers away from recently used types."""
	weights = activity_weights(skill_cluster, recent_types)
	r = (rng or random).random() * sum(weights.values())
	for activity_type, weight in weights.items():
		r -= weight
		if r <= 0:
			return activity_type
	return ACTIVITY_TYPES[0]


def difficulty_description(difficulty: int) -> str:
	if difficulty <= 2:
		return "beginner-friendly, focusing on fundamentals"
	if difficulty <= 4:
		return "intermediate, requiring solid understanding"
	if difficulty <= 6:
		return "advanced, testing deeper knowledge"
	if difficulty <= 8:
		return "expert-level, requiring comprehensive mastery"
	return "extremely challenging, for senior/principal level expertise"


def build_topic_context(topic: LearningTopic) -> str:
	sections = [f"Topic: {topic.title}"]
	if topic.description:
		sections.append(f"Description: {topic.description}")
	if topic.key_concepts:
		sections.append(f"Key Concepts: {', '.join(topic.key_concepts)}")
	if topic.common_mistakes:
		sections.append(f"Common Mistakes to Address: {'; '.join(topic.common_mistakes)}")
	if topic.interview_relevance:
		sections.append(f"Interview Relevance: {topic.interview_relevance}")
	return "\n\n".join(sections)


_INSTRUCTIONS: Dict[str, str] = {
	"mcq": (
		"Create a question that tests understanding of the key concepts. Include 4 plausible options with one "
		"correct answer and a detailed explanation.\n\n"
		"Return a JSON object with type \"mcq\", question, options (exactly 4), correct_answer (matching one "
		"option exactly), and explanation."
	),
	"coding-challenge": (
		"Create a practical problem that tests the topic's key concepts with clear requirements and evaluation "
		"criteria.\n\n"
		"Return a JSON object with type \"coding-challenge\", problem_description, input_format, output_format, "
		"evaluation_criteria (array), starter_code (optional), sample_input, and sample_output."
	),
	"debugging-task": (
		"Create realistic buggy code that incorporates common mistakes. Provide hints appropriate for the "
		"difficulty level: more and clearer hints at low difficulty, fewer and subtler ones at high difficulty.\n\n"
		"Return a JSON object with type \"debugging-task\", buggy_code (formatted with real newlines and "
		"indentation, NOT on a single line), expected_behavior, and hints (array)."
	),
	"concept-explanation": (
		"Provide a thorough explanation covering all key concepts, with practical examples and key takeaways.\n\n"
		"Return a JSON object with type \"concept-explanation\", content (detailed markdown), key_points "
		"(5-7 items), and examples (2-4 practical examples)."
	),
}

_LEADS: Dict[str, str] = {
	"mcq": "Generate a multiple choice question",
	"coding-challenge": "Generate a coding challenge",
	"debugging-task": "Generate a debugging task",
	"concept-explanation": "Generate a comprehensive concept explanation",
}


def activity_messages(ctx: ActivityContext, activity_type: str) -> List[Dict[str, str]]:
	if activity_type not in _INSTRUCTIONS:
		raise ValueError(f"Unsupported activity type: {activity_type}")
	prompt = (
		f"{_LEADS[activity_type]} for learning about \"{ctx.topic.title}\".\n\n"
		"## Context\n"
		f"Learning Goal: {ctx.goal}\n"
		f"Skill Cluster: {ctx.skill_cluster}\n"
		f"Difficulty Level: {ctx.difficulty}/10 ({difficulty_description(ctx.difficulty)})\n\n"
		"## Topic Details\n"
		f"{build_topic_context(ctx.topic)}\n\n"
		f"{_INSTRUCTIONS[activity_type]}"
	)
	return [
		{"role": "system", "content": ACTIVITY_SYSTEM_PROMPT},
		{"role": "user", "content": prompt},
	]


def finalize_activity(activity_type: str, raw: Any) -> Dict[str, Any]:
	if not isinstance(raw, dict):
		raise LLMError("Model did not return an activity object")
	# The discriminator is ours to set; models sometimes omit or vary it
	data = {**raw, "type": activity_type}
	try:
		return ACTIVITY_CONTENT_MODELS[activity_type].model_validate(data).model_dump()
	except ValidationError as e:
		raise LLMError(f"Generated {activity_type} did not match the expected shape: {e.error_count()} errors") from e
