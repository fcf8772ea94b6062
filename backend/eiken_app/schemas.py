from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
	# JSON uses camelCase (the front-end contract); Python code uses snake_case
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Choice(FrozenCamelModel):
	id: str
	text: str
	is_correct: bool = False


class DifficultyFeatures(FrozenCamelModel):
	pattern: str = ""
	anchors: int = 0
	movables: int = 0
	movable_types: List[str] = Field(default_factory=list)
	grammar_tier: int = 1
	token_count: int = 0
	difficulty_index: float = 0.0


class SubQuestion(FrozenCamelModel):
	id: str
	qtype: Optional[str] = None
	stem: str
	options: List[str]
	answer: str
	evidence: Optional[str] = None
	explanation_ja: Optional[str] = None


class GlossaryEntry(FrozenCamelModel):
	word: str
	translation: str = ""


class WordLimit(FrozenCamelModel):
	min: int
	max: int


class Rubric(FrozenCamelModel):
	content: str = ""
	organization: str = ""
	grammar: str = ""
	vocabulary: str = ""


class GeneratedQuestion(FrozenCamelModel):
	id: str
	grade: str
	question_type: str
	difficulty_band: str
	prompt_content: str
	explanation_ja: Optional[str] = None
	is_fallback: bool = False
	created_at: datetime = Field(default_factory=datetime.utcnow)

	# vocabulary / legacy
	choices: Optional[List[Choice]] = None
	correct_answer_text: Optional[str] = None
	distractor_notes: Optional[Dict[str, Any]] = None
	targets: Optional[Dict[str, Any]] = None

	# rearrangement
	tokens: Optional[List[str]] = None
	correct_sentence: Optional[str] = None
	uniqueness_rationale: Optional[str] = None
	difficulty_features: Optional[DifficultyFeatures] = None

	# reading comprehension
	passage_title: Optional[str] = None
	passage_text: Optional[str] = None
	passage_word_count: Optional[int] = None
	sub_questions: Optional[List[SubQuestion]] = None
	glossary: Optional[List[GlossaryEntry]] = None

	# essay
	topic_prompt: Optional[str] = None
	instructions_ja: Optional[str] = None
	word_limit: Optional[WordLimit] = None
	rubric: Optional[Rubric] = None
	reference_answer: Optional[str] = None


class GenerationRequest(CamelModel):
	# Fields stay loose so that missing or out-of-range values become a 400
	# from the generation service rather than a 422 from request parsing.
	grade: Optional[str] = Field(default=None, validation_alias=AliasChoices("grade", "level"))
	question_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("questionType", "question_type", "type"))
	count: Any = None
	topics: Optional[List[str]] = None
	custom_instructions: Optional[str] = Field(default=None, validation_alias=AliasChoices("customInstructions", "custom_instructions"))


class GenerationResponse(CamelModel):
	questions: List[GeneratedQuestion]
	total_generated: int
	generation_time: str
	grade: str
	question_type: str


class ApiUsage(CamelModel):
	daily_count: int
	daily_limit: int
	remaining: int
	validation_enabled: bool
	reset_date: str


class GenerationStatus(CamelModel):
	status: str
	service: str
	timestamp: str
	model: str
	gemini_configured: bool
	api_key_status: str
	error: Optional[str] = None
	api_usage: ApiUsage
