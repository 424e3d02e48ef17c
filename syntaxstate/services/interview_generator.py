from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from syntaxstate.db.models import MCQ, Interview, OpeningBrief, RapidFire, RevisionTopic
from syntaxstate.services.llm_service import LLMError, LLMResult, ModelChoice, llm_service
from syntaxstate.utils.partial_json import parse_partial_json


logger = logging.getLogger(__name__)


BASE_SYSTEM_PROMPT = (
	"You are an expert interview preparation assistant with deep knowledge across software engineering, "
	"system design, algorithms, and industry best practices. Your role is to help candidates prepare for "
	"technical interviews by generating comprehensive, in-depth, and highly relevant content based on their "
	"resume and the job description.\n\n"
	"Guidelines:\n"
	"- Be thorough and detailed in all content you generate\n"
	"- Provide explanations with real-world examples and practical applications\n"
	"- Cover edge cases, common pitfalls, and advanced considerations\n"
	"- Use the candidate's experience to personalize content and identify skill gaps\n"
	"- When generating MCQs, ensure all options are plausible and test deep understanding\n"
	"- Include industry best practices, performance considerations, and trade-offs\n"
	"- Always aim for interview-ready depth that would satisfy a senior interviewer"
)

SYSTEM_PROMPT = BASE_SYSTEM_PROMPT + (
	"\n\nOUTPUT FORMAT (MANDATORY):\n"
	"- Respond with a single JSON document and nothing else. No prose before or after it.\n"
	"- Use exactly the keys described in the request, in snake_case.\n"
)

DEFAULT_COUNTS: Dict[str, int] = {
	"revision_topics": 8,
	"mcqs": 10,
	"rapid_fire": 20,
}

ID_PREFIXES: Dict[str, str] = {
	"revision_topics": "topic",
	"mcqs": "mcq",
	"rapid_fire": "rf",
}

ITEM_MODELS = {
	"revision_topics": RevisionTopic,
	"mcqs": MCQ,
	"rapid_fire": RapidFire,
}

STYLE_DESCRIPTIONS: Dict[str, str] = {
	"professional": "Use professional, technical language appropriate for a senior developer or architect. Include industry terminology and best practices.",
	"construction": "Explain using house construction analogies. Compare software concepts to building a house and make technical concepts relatable through building metaphors.",
	"simple": "Explain as if to a 5-year-old. Use simple words, everyday examples, and avoid jargon.",
}


@dataclass
class GenerationContext:
	job_title: str
	company: str
	job_description: str
	resume_text: str = ""
	custom_instructions: Optional[str] = None
	existing: List[str] = field(default_factory=list)

	@classmethod
	def from_interview(cls, interview: Interview, module: Optional[str] = None) -> "GenerationContext":
		existing: List[str] = []
		if module == "revision_topics":
			existing = [t.title for t in interview.modules.revision_topics]
		elif module == "mcqs":
			existing = [q.question for q in interview.modules.mcqs]
		elif module == "rapid_fire":
			existing = [q.question for q in interview.modules.rapid_fire]
		return cls(
			job_title=interview.job_details.title,
			company=interview.job_details.company,
			job_description=interview.job_details.description,
			resume_text=interview.resume_context,
			custom_instructions=interview.custom_instructions,
			existing=existing,
		)


def _job_block(ctx: GenerationContext) -> str:
	return (
		f"Job Title: {ctx.job_title}\n"
		f"Company: {ctx.company}\n\n"
		f"Job Description:\n{ctx.job_description}\n\n"
		f"Candidate's Resume:\n{ctx.resume_text or '(not provided)'}\n"
	)


def _tail(ctx: GenerationContext, instructions: Optional[str]) -> str:
	parts = []
	if ctx.custom_instructions:
		parts.append(f"\n\nAdditional Instructions from user:\n{ctx.custom_instructions}")
	if instructions:
		parts.append(f"\n\nInstructions for this request:\n{instructions}")
	return "".join(parts)


def _existing(ctx: GenerationContext, label: str) -> str:
	if not ctx.existing:
		return ""
	return f"\n{label}:\n" + "\n".join(f"- {item}" for item in ctx.existing) + "\n"


def _brief_prompt(ctx: GenerationContext) -> str:
	return (
		"Generate a comprehensive opening brief for an interview preparation plan.\n\n"
		+ _job_block(ctx)
		+ "\nThe brief must cover: an executive summary of how the candidate matches the role, key skills to "
		"highlight, a gap analysis, company and role insights, and a preparation strategy.\n\n"
		"Return a JSON object with:\n"
		"- content: the brief in markdown\n"
		"- experience_match: integer 0-100\n"
		"- key_skills: array of 8-12 skills\n"
		"- prep_time: estimated preparation time, e.g. \"12 hours\"\n"
	)


def _topics_prompt(ctx: GenerationContext, count: int) -> str:
	return (
		f"Generate {count} comprehensive revision topics for interview preparation.\n\n"
		+ _job_block(ctx)
		+ _existing(ctx, "Existing topics to avoid duplicating")
		+ "\nEach topic's content is markdown with sections: Quick Overview, Core Concepts, How It Works, "
		"Practical Implementation (with a code example), Common Interview Questions, Best Practices & Pitfalls.\n\n"
		"Return a JSON object {\"items\": [...]} where each item has:\n"
		"- id: \"topic_<random>\"\n"
		"- title\n"
		"- content\n"
		"- reason: why this topic matters for THIS interview (2-3 sentences)\n"
		"- confidence: \"low\" | \"medium\" | \"high\"\n"
	)


def _mcqs_prompt(ctx: GenerationContext, count: int) -> str:
	return (
		f"Generate {count} challenging multiple choice questions for interview preparation.\n\n"
		+ _job_block(ctx)
		+ _existing(ctx, "Existing questions to avoid duplicating")
		+ "\nMix conceptual, scenario-based, code analysis and best-practice questions.\n\n"
		"Return a JSON object {\"items\": [...]} where each item has:\n"
		"- id: \"mcq_<random>\"\n"
		"- question\n"
		"- options: exactly 4 strings\n"
		"- answer: must match one of the options exactly\n"
		"- explanation: why the answer is right and the others are wrong\n"
	)


def _rapid_fire_prompt(ctx: GenerationContext, count: int) -> str:
	return (
		f"Generate {count} rapid-fire interview questions with concise but complete answers.\n\n"
		+ _job_block(ctx)
		+ _existing(ctx, "Existing questions to avoid duplicating")
		+ "\nEach answer is 2-4 sentences, what a strong candidate would say in 30-60 seconds.\n\n"
		"Return a JSON object {\"items\": [...]} where each item has:\n"
		"- id: \"rf_<random>\"\n"
		"- question\n"
		"- answer\n"
	)


def build_messages(module: str, ctx: GenerationContext, count: Optional[int] = None, instructions: Optional[str] = None) -> List[Dict[str, str]]:
	count = count or DEFAULT_COUNTS.get(module, 0)
	if module == "opening_brief":
		prompt = _brief_prompt(ctx)
	elif module == "revision_topics":
		prompt = _topics_prompt(ctx, count)
	elif module == "mcqs":
		prompt = _mcqs_prompt(ctx, count)
	elif module == "rapid_fire":
		prompt = _rapid_fire_prompt(ctx, count)
	else:
		raise ValueError(f"Unknown module: {module}")
	return [
		{"role": "system", "content": SYSTEM_PROMPT},
		{"role": "user", "content": prompt + _tail(ctx, instructions)},
	]


def module_value(module: str, raw: Any) -> Any:
	"""Extract the module payload from a (possibly partial) model document."""
	if module == "opening_brief":
		return raw if isinstance(raw, dict) else None
	if isinstance(raw, dict):
		items = raw.get("items")
		return items if isinstance(items, list) else []
	return raw if isinstance(raw, list) else []


def finalize_module(module: str, raw: Any) -> Any:
	"""Validate the final document; returns plain dicts ready to store."""
	value = module_value(module, raw)
	try:
		if module == "opening_brief":
			if value is None:
				raise LLMError("Model did not return an opening brief")
			return OpeningBrief.model_validate(value).model_dump()
		model = ITEM_MODELS[module]
		prefix = ID_PREFIXES[module]
		items = []
		for item in value:
			if not isinstance(item, dict):
				continue
			item = dict(item)
			item.setdefault("id", f"{prefix}_{uuid.uuid4().hex[:10]}")
			items.append(model.model_validate(item).model_dump())
		if not items:
			raise LLMError(f"Model returned no {module.replace('_', ' ')}")
		return items
	except ValidationError as e:
		raise LLMError(f"Generated {module} did not match the expected shape: {e.error_count()} errors") from e


async def generate_module(
	interview: Interview,
	module: str,
	choice: ModelChoice,
	api_key: Optional[str] = None,
	count: Optional[int] = None,
) -> tuple[Any, LLMResult]:
	messages = build_messages(module, GenerationContext.from_interview(interview, module), count)
	result = await llm_service.complete(
		messages,
		model=choice.model,
		temperature=choice.temperature,
		max_tokens=choice.max_tokens,
		api_key=api_key,
	)
	return finalize_module(module, parse_partial_json(result.text)), result


def analogy_messages(topic: RevisionTopic, style: str, ctx: GenerationContext) -> List[Dict[str, str]]:
	prompt = (
		"Regenerate the explanation for this interview topic using a different style.\n\n"
		f"Topic: {topic.title}\n"
		f"Reason for importance: {topic.reason}\n\n"
		f"New Style: {style}\n"
		f"Style Guidelines: {STYLE_DESCRIPTIONS[style]}\n\n"
		"Structure the content in markdown with a Quick Overview, a Detailed Explanation, and a Code Example "
		"where applicable. Return only the markdown content, not JSON."
		+ _tail(ctx, None)
	)
	return [
		{"role": "system", "content": BASE_SYSTEM_PROMPT},
		{"role": "user", "content": prompt},
	]
