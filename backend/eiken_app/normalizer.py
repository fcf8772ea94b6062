"""
Turns the model's free-text reply into GeneratedQuestion records.

The reply is expected to wrap a single JSON object whose "type" field selects
one of the payload shapes (cloze_mcq, jumbled_sentence, reading_set,
writing_task) or the legacy {"questions": [...]} shape. ``normalize`` never
raises: anything that cannot be mapped is replaced by placeholder questions
so a worksheet can always be printed.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from . import difficulty
from .errors import ResponseParseError
from .grade_profiles import (
    QUESTION_TYPE_LABELS,
    Grade,
    QuestionType,
    difficulty_band,
    lookup,
    parse_grade,
    parse_question_type,
)
from .schemas import (
    Choice,
    DifficultyFeatures,
    GeneratedQuestion,
    GlossaryEntry,
    Rubric,
    SubQuestion,
    WordLimit,
)

logger = logging.getLogger(__name__)

FALLBACK_EXPLANATION = "AI生成に失敗したため、ダミーデータを表示しています。"
FALLBACK_CHOICES = ("選択肢A", "選択肢B", "選択肢C", "選択肢D")
OPTION_LETTERS = "ABCD"


class PayloadKind(str, Enum):
    CLOZE_MCQ = "cloze_mcq"
    JUMBLED_SENTENCE = "jumbled_sentence"
    READING_SET = "reading_set"
    WRITING_TASK = "writing_task"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ParsedPayload:
    kind: PayloadKind
    data: Dict[str, Any]


@dataclass(frozen=True)
class _Context:
    grade: Grade
    question_type: QuestionType
    band: str


def extract_json_span(text: Optional[str]) -> Optional[str]:
    """First '{' through last '}' of the text, or None."""
    if not text:
        return None
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return text[first : last + 1]


def _require_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if not isinstance(value, list) or not value:
        raise ResponseParseError(f"payload field '{key}' is missing or empty")
    return value


def parse_payload(text: Optional[str]) -> ParsedPayload:
    span = extract_json_span(text)
    if span is None:
        raise ResponseParseError("no JSON object found in the AI response")
    try:
        data = json.loads(span)
    except (ValueError, RecursionError) as exc:
        raise ResponseParseError(f"invalid JSON in the AI response: {exc}") from exc
    if not isinstance(data, dict):
        raise ResponseParseError("AI response JSON is not an object")

    raw_kind = data.get("type")
    if raw_kind in (PayloadKind.CLOZE_MCQ.value, PayloadKind.JUMBLED_SENTENCE.value):
        _require_list(data, "items")
        return ParsedPayload(PayloadKind(raw_kind), data)
    if raw_kind == PayloadKind.READING_SET.value:
        if not isinstance(data.get("sets"), list) and not isinstance(data.get("passage"), dict):
            raise ResponseParseError("reading_set has neither 'sets' nor 'passage'")
        return ParsedPayload(PayloadKind.READING_SET, data)
    if raw_kind == PayloadKind.WRITING_TASK.value:
        if not isinstance(data.get("tasks"), list) and not data.get("prompt"):
            raise ResponseParseError("writing_task has neither 'tasks' nor 'prompt'")
        return ParsedPayload(PayloadKind.WRITING_TASK, data)
    if isinstance(data.get("questions"), list):
        return ParsedPayload(PayloadKind.LEGACY, data)
    raise ResponseParseError(f"unknown payload type: {raw_kind!r}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _base(ctx: _Context, prompt_content: str, **fields: Any) -> GeneratedQuestion:
    return GeneratedQuestion(
        id=uuid.uuid4().hex,
        grade=ctx.grade.value,
        question_type=ctx.question_type.value,
        difficulty_band=ctx.band,
        prompt_content=prompt_content,
        **fields,
    )


def _correct_index(options: List[str], answer: str) -> int:
    if answer in options:
        return options.index(answer)
    letter = answer.strip().rstrip(".)").upper()
    if len(letter) == 1 and letter in OPTION_LETTERS[: len(options)]:
        return OPTION_LETTERS.index(letter)
    raise ResponseParseError(f"answer {answer!r} does not match any option")


def _map_cloze_item(item: Dict[str, Any], ctx: _Context) -> GeneratedQuestion:
    stem = _text(item.get("stem"))
    options = [_text(o) for o in (item.get("options") or [])]
    answer = _text(item.get("answer"))
    if not stem or len(options) < 2:
        raise ResponseParseError("cloze item without stem or options")
    correct = _correct_index(options, answer)
    choices = [Choice(id=f"choice_{i}", text=opt, is_correct=(i == correct)) for i, opt in enumerate(options)]
    notes = item.get("distractor_notes_ja")
    targets = item.get("targets")
    return _base(
        ctx,
        stem,
        choices=choices,
        correct_answer_text=options[correct],
        explanation_ja=_optional_text(item.get("rationale_ja")),
        distractor_notes=notes if isinstance(notes, dict) else {},
        targets=targets if isinstance(targets, dict) else {},
    )


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _map_jumbled_item(item: Dict[str, Any], ctx: _Context) -> GeneratedQuestion:
    tokens = [_text(t) for t in (item.get("tokens") or []) if _text(t)]
    answer = _text(item.get("answer"))
    if not tokens or not answer:
        raise ResponseParseError("jumbled item without tokens or answer")
    features = item.get("features") if isinstance(item.get("features"), dict) else {}
    anchors = _as_int(features.get("anchors"), 0)
    movables = _as_int(features.get("movables"), 0)
    grammar_tier = _as_int(features.get("grammar_tier"), 1)
    why_unique = _optional_text(features.get("why_unique_ja")) or _optional_text(item.get("why_unique_ja"))
    movable_types = features.get("movable_types")

    index = difficulty.score(len(tokens), anchors, movables, grammar_tier, ctx.grade)
    prompt = f"次の語句を正しい順序に並び替えて英文を作りなさい。\n[{', '.join(tokens)}]"
    japanese = _optional_text(item.get("japanese"))
    if japanese:
        prompt = f"{prompt}\n（{japanese}）"
    return _base(
        ctx,
        prompt,
        tokens=tokens,
        correct_sentence=answer,
        explanation_ja=why_unique or _optional_text(item.get("rationale_ja")),
        uniqueness_rationale=why_unique,
        difficulty_features=DifficultyFeatures(
            pattern=_text(features.get("pattern")),
            anchors=anchors,
            movables=movables,
            movable_types=[_text(t) for t in movable_types] if isinstance(movable_types, list) else [],
            grammar_tier=grammar_tier,
            token_count=len(tokens),
            difficulty_index=index,
        ),
    )


def _map_reading_set(block: Dict[str, Any], ctx: _Context) -> GeneratedQuestion:
    passage = block.get("passage")
    if not isinstance(passage, dict) or not _text(passage.get("text")):
        raise ResponseParseError("reading set without passage text")
    raw_questions = block.get("questions")
    if not isinstance(raw_questions, list) or not raw_questions:
        raise ResponseParseError("reading set without questions")

    sub_questions = []
    for i, q in enumerate(raw_questions):
        if not isinstance(q, dict):
            raise ResponseParseError("reading question is not an object")
        options = [_text(o) for o in (q.get("options") or [])]
        if not _text(q.get("stem")) or len(options) != 4:
            raise ResponseParseError("reading question needs a stem and 4 options")
        sub_questions.append(SubQuestion(
            id=f"q_{i}",
            qtype=_optional_text(q.get("qtype")),
            stem=_text(q.get("stem")),
            options=options,
            answer=_text(q.get("answer")),
            evidence=_optional_text(q.get("evidence")),
            explanation_ja=_optional_text(q.get("rationale_ja")),
        ))

    glossary = []
    for entry in block.get("glossary") or []:
        if isinstance(entry, dict) and _text(entry.get("word")):
            glossary.append(GlossaryEntry(word=_text(entry.get("word")), translation=_text(entry.get("ja") or entry.get("translation"))))

    title = _text(passage.get("title"))
    text = _text(passage.get("text"))
    word_count = passage.get("word_count")
    return _base(
        ctx,
        f"【{title}】\n\n{text}" if title else text,
        passage_title=title or None,
        passage_text=text,
        passage_word_count=_as_int(word_count, len(text.split())),
        sub_questions=sub_questions,
        glossary=glossary,
    )


def _map_writing_task(task: Dict[str, Any], ctx: _Context) -> GeneratedQuestion:
    prompt = _text(task.get("prompt"))
    if not prompt:
        raise ResponseParseError("writing task without prompt")
    profile = lookup(ctx.grade)
    limit = task.get("word_limit") if isinstance(task.get("word_limit"), dict) else {}
    rubric = task.get("rubric") if isinstance(task.get("rubric"), dict) else {}
    reference = task.get("reference_answer") or task.get("reference_answer_optional")
    return _base(
        ctx,
        prompt,
        topic_prompt=prompt,
        instructions_ja=_optional_text(task.get("instructions_ja")),
        word_limit=WordLimit(
            min=_as_int(limit.get("min"), profile.essay_word_range.min),
            max=_as_int(limit.get("max"), profile.essay_word_range.max),
        ),
        rubric=Rubric(**{k: _text(rubric.get(k)) for k in ("content", "organization", "grammar", "vocabulary")}),
        reference_answer=_optional_text(reference),
    )


def _legacy_correct_index(texts: List[str], flagged: List[bool], correct_answer: Optional[str]) -> int:
    if correct_answer:
        try:
            return _correct_index(texts, correct_answer)
        except ResponseParseError:
            if not any(flagged):
                raise
    if any(flagged):
        return flagged.index(True)
    raise ResponseParseError("legacy question has choices but no correct answer")


def _map_legacy_question(q: Dict[str, Any], ctx: _Context) -> GeneratedQuestion:
    content = _text(q.get("content"))
    if not content:
        raise ResponseParseError("legacy question without content")
    correct_answer = _optional_text(q.get("correctAnswer"))
    raw_choices = q.get("choices") or []
    if not isinstance(raw_choices, list):
        raise ResponseParseError("legacy choices is not a list")
    ids, texts, flagged = [], [], []
    for i, raw in enumerate(raw_choices):
        if isinstance(raw, dict):
            ids.append(_text(raw.get("id")) or f"choice_{i}")
            texts.append(_text(raw.get("text")))
            flagged.append(bool(raw.get("isCorrect")))
        else:
            ids.append(f"choice_{i}")
            texts.append(_text(raw))
            flagged.append(False)

    choices = []
    if texts:
        # Exactly one correct choice: correctAnswer wins, else the first flagged one
        correct = _legacy_correct_index(texts, flagged, correct_answer)
        choices = [Choice(id=ids[i], text=text, is_correct=(i == correct)) for i, text in enumerate(texts)]
        correct_answer = texts[correct]
    return _base(
        ctx,
        content,
        choices=choices,
        correct_answer_text=correct_answer,
        explanation_ja=_optional_text(q.get("explanation")),
    )


def _blocks(data: Dict[str, Any], list_key: str) -> List[Any]:
    # Multi-block payloads use a list; the older shape is a single top-level block
    value = data.get(list_key)
    if isinstance(value, list):
        return value
    return [data]


_Mapper = Callable[[Dict[str, Any], _Context], GeneratedQuestion]

_DISPATCH: Dict[PayloadKind, Callable[[Dict[str, Any]], List[Any]]] = {
    PayloadKind.CLOZE_MCQ: lambda data: data["items"],
    PayloadKind.JUMBLED_SENTENCE: lambda data: data["items"],
    PayloadKind.READING_SET: lambda data: _blocks(data, "sets"),
    PayloadKind.WRITING_TASK: lambda data: _blocks(data, "tasks"),
    PayloadKind.LEGACY: lambda data: data["questions"],
}

_MAPPERS: Dict[PayloadKind, _Mapper] = {
    PayloadKind.CLOZE_MCQ: _map_cloze_item,
    PayloadKind.JUMBLED_SENTENCE: _map_jumbled_item,
    PayloadKind.READING_SET: _map_reading_set,
    PayloadKind.WRITING_TASK: _map_writing_task,
    PayloadKind.LEGACY: _map_legacy_question,
}


def placeholder(ctx_or_grade: Union[_Context, str, Grade], question_type: Union[str, QuestionType, None] = None, index: int = 0) -> GeneratedQuestion:
    ctx = ctx_or_grade if isinstance(ctx_or_grade, _Context) else _context(ctx_or_grade, question_type)
    label = QUESTION_TYPE_LABELS[ctx.question_type]
    return _base(
        ctx,
        f"{ctx.grade.value} {label} 問題 {index + 1} (AI生成失敗)",
        choices=[Choice(id=f"choice_{i + 1}", text=text, is_correct=(i == 0)) for i, text in enumerate(FALLBACK_CHOICES)],
        correct_answer_text=FALLBACK_CHOICES[0],
        explanation_ja=FALLBACK_EXPLANATION,
        is_fallback=True,
    )


def _context(grade: Union[str, Grade], question_type: Union[str, QuestionType, None]) -> _Context:
    g = parse_grade(grade)
    return _Context(grade=g, question_type=parse_question_type(question_type), band=difficulty_band(g))


def normalize_payload(
    payload: ParsedPayload,
    grade: Union[str, Grade],
    question_type: Union[str, QuestionType],
    requested_count: int,
) -> List[GeneratedQuestion]:
    """Map a parsed payload onto exactly ``requested_count`` questions.

    Items that fail to map are replaced by placeholders in place; surplus
    items are dropped and a short payload is padded with placeholders.
    """
    ctx = _context(grade, question_type)
    blocks = _DISPATCH[payload.kind](payload.data)
    mapper = _MAPPERS[payload.kind]

    questions: List[GeneratedQuestion] = []
    for i, block in enumerate(blocks[:requested_count]):
        try:
            if not isinstance(block, dict):
                raise ResponseParseError(f"{payload.kind.value} entry {i} is not an object")
            questions.append(mapper(block, ctx))
        except (ResponseParseError, ValueError, TypeError, OverflowError, RecursionError) as exc:
            logger.warning("Dropping malformed %s entry %d: %s", payload.kind.value, i, exc)
            questions.append(placeholder(ctx, index=i))
    for i in range(len(questions), requested_count):
        questions.append(placeholder(ctx, index=i))
    return questions


def placeholders(grade: Union[str, Grade], question_type: Union[str, QuestionType], requested_count: int) -> List[GeneratedQuestion]:
    ctx = _context(grade, question_type)
    return [placeholder(ctx, index=i) for i in range(requested_count)]


def normalize(
    raw_text: Optional[str],
    grade: Union[str, Grade],
    question_type: Union[str, QuestionType],
    requested_count: int,
) -> List[GeneratedQuestion]:
    try:
        payload = parse_payload(raw_text)
    except ResponseParseError as exc:
        logger.warning("Could not parse AI response (%s); raw head: %r", exc, (raw_text or "")[:200])
        return placeholders(grade, question_type, requested_count)
    return normalize_parsed(payload, grade, question_type, requested_count)


def normalize_parsed(
    payload: ParsedPayload,
    grade: Union[str, Grade],
    question_type: Union[str, QuestionType],
    requested_count: int,
) -> List[GeneratedQuestion]:
    """``normalize_payload`` that falls back to placeholders instead of raising."""
    try:
        return normalize_payload(payload, grade, question_type, requested_count)
    except Exception as exc:
        logger.warning("Could not normalize AI payload: %s", exc)
        return placeholders(grade, question_type, requested_count)
