from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from . import normalizer, prompt_builder
from .ai_gateway import AIGateway
from .errors import InvalidRequestError, ResponseParseError
from .grade_profiles import Grade, QuestionType, lookup, parse_grade, parse_question_type
from .normalizer import ParsedPayload
from .schemas import GeneratedQuestion, GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

MIN_COUNT = 1
MAX_COUNT = 20
MAX_CUSTOM_INSTRUCTIONS = 1000


@dataclass(frozen=True)
class ValidatedRequest:
    grade: Grade
    question_type: QuestionType
    count: int
    topics: List[str]
    custom_instructions: Optional[str]


def _parse_count(value: Any) -> int:
    # JSON numbers and numeric strings; booleans and fractions are rejected
    if isinstance(value, bool):
        raise InvalidRequestError("count must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidRequestError("count must be an integer")


def validate_request(request: GenerationRequest) -> ValidatedRequest:
    if not request.grade or not request.question_type or request.count is None:
        raise InvalidRequestError("grade, questionType and count are required")
    grade = parse_grade(request.grade)
    question_type = parse_question_type(request.question_type)
    count = _parse_count(request.count)
    if not MIN_COUNT <= count <= MAX_COUNT:
        raise InvalidRequestError(f"count must be between {MIN_COUNT} and {MAX_COUNT}")
    custom = (request.custom_instructions or "").strip() or None
    if custom and len(custom) > MAX_CUSTOM_INSTRUCTIONS:
        raise InvalidRequestError(f"customInstructions must be at most {MAX_CUSTOM_INSTRUCTIONS} characters")
    topics = [t.strip() for t in (request.topics or []) if t and t.strip()]
    return ValidatedRequest(grade, question_type, count, topics, custom)


def _usable(questions: List[GeneratedQuestion]) -> int:
    return sum(1 for q in questions if not q.is_fallback)


class QuestionGenerator:
    """Runs one generation request end to end.

    prompt -> gateway (retries, quota) -> parse -> normalize -> optional
    validation pass. Request errors surface before any AI call is made.
    """

    def __init__(self, gateway: AIGateway, *, enable_validation: bool = False) -> None:
        self.gateway = gateway
        self.enable_validation = enable_validation

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        req = validate_request(request)
        started = time.monotonic()
        prompt = prompt_builder.build(req.grade, req.question_type, req.count, req.topics, req.custom_instructions)
        logger.info("Generating %d %s questions for %s", req.count, req.question_type.value, req.grade.value)

        raw = await self.gateway.generate(prompt)
        try:
            payload = normalizer.parse_payload(raw)
        except ResponseParseError as exc:
            logger.warning("AI response could not be parsed (%s); raw head: %r", exc, raw[:200])
            questions = normalizer.placeholders(req.grade, req.question_type, req.count)
        else:
            questions = normalizer.normalize_parsed(payload, req.grade, req.question_type, req.count)
            if self.enable_validation:
                questions = await self._validate(req, payload, questions)

        fallbacks = sum(1 for q in questions if q.is_fallback)
        logger.info(
            "Generated %d questions (%d placeholders) in %.2fs",
            len(questions), fallbacks, time.monotonic() - started,
        )
        return GenerationResponse(
            questions=questions,
            total_generated=len(questions),
            generation_time=datetime.utcnow().isoformat() + "Z",
            grade=req.grade.value,
            question_type=req.question_type.value,
        )

    async def _validate(
        self, req: ValidatedRequest, payload: ParsedPayload, questions: List[GeneratedQuestion]
    ) -> List[GeneratedQuestion]:
        try:
            prompt = prompt_builder.build_validation_prompt(lookup(req.grade), payload.data)
            revised = normalizer.parse_payload(await self.gateway.generate(prompt))
        except Exception as exc:
            logger.warning("Validation pass failed, keeping the original payload: %s", exc)
            return questions
        if revised.kind != payload.kind:
            logger.warning("Validation pass changed payload type %s -> %s; ignored", payload.kind.value, revised.kind.value)
            return questions
        revised_questions = normalizer.normalize_parsed(revised, req.grade, req.question_type, req.count)
        if _usable(revised_questions) < _usable(questions):
            logger.warning(
                "Validation pass produced %d usable questions against %d; ignored",
                _usable(revised_questions), _usable(questions),
            )
            return questions
        return revised_questions
