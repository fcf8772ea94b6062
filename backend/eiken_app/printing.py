"""
Server-side HTML for printed worksheets and answer sheets.

Questions in a set are plain dicts in either the generated shape
(promptContent, choices, correctAnswerText, ...) or the question-bank shape
(content, choices, correctAnswer, explanation). QR codes are drawn in the
browser from the ``data-qr-payload`` URLs emitted here.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime
from html import escape
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .schemas import CamelModel

FONT_SIZES = {"small": "12px", "medium": "14px", "large": "17px"}
QR_ENDPOINT = "/api/scores/qr"


class PrintSettings(CamelModel):
	include_answers: bool = False
	include_explanations: bool = False
	font_size: str = "medium"
	page_break: bool = False


class WorksheetRequest(CamelModel):
	student_id: Optional[int] = None
	student_name: Optional[str] = None
	date: Optional[str] = None
	custom_instructions: Optional[str] = None
	font_size: str = "medium"
	page_break: bool = True


class AnswerSheetRequest(CamelModel):
	student_name: Optional[str] = None
	date: Optional[str] = None
	include_explanations: bool = False
	font_size: str = "medium"
	page_break: bool = True


def qr_payload_url(payload: Dict[str, Any]) -> str:
	return f"{QR_ENDPOINT}?payload={quote(json.dumps(payload, ensure_ascii=False, separators=(',', ':')))}"


def question_text(q: Dict[str, Any]) -> str:
	return str(q.get("promptContent") or q.get("content") or "")


def question_answer(q: Dict[str, Any]) -> str:
	for key in ("correctAnswerText", "correctAnswer", "correctSentence", "referenceAnswer"):
		if q.get(key):
			return str(q[key])
	for choice in q.get("choices") or []:
		if isinstance(choice, dict) and choice.get("isCorrect"):
			return str(choice.get("text", ""))
	return ""


def question_explanation(q: Dict[str, Any]) -> str:
	return str(q.get("explanationJa") or q.get("explanation") or "")


def _choice_texts(q: Dict[str, Any]) -> List[str]:
	out = []
	for choice in q.get("choices") or []:
		out.append(str(choice.get("text", "")) if isinstance(choice, dict) else str(choice))
	return out


def _multiline(text: str) -> str:
	return escape(text).replace("\n", "<br>")


def _choices_html(choices: List[str]) -> str:
	if not choices:
		return ""
	items = "".join(f"<li>{escape(c)}</li>" for c in choices)
	return f'<ol class="choices" type="1">{items}</ol>'


def _sub_questions_html(q: Dict[str, Any], with_answers: bool, with_explanations: bool) -> str:
	subs = q.get("subQuestions") or []
	if not subs:
		return ""
	parts = ['<ol class="sub-questions">']
	for sub in subs:
		parts.append(f"<li><p>{escape(str(sub.get('stem', '')))}</p>")
		parts.append(_choices_html([str(o) for o in sub.get("options") or []]))
		if with_answers:
			parts.append(f'<p class="answer">正解: {escape(str(sub.get("answer", "")))}</p>')
		if with_explanations and sub.get("explanationJa"):
			parts.append(f'<p class="explanation">{escape(str(sub["explanationJa"]))}</p>')
		parts.append("</li>")
	parts.append("</ol>")
	return "".join(parts)


def _page(title: str, body: str, font_size: str, page_break: bool) -> str:
	size = FONT_SIZES.get(font_size, FONT_SIZES["medium"])
	brk = "page-break-inside: avoid;" if page_break else ""
	return (
		"<!DOCTYPE html>\n"
		'<html lang="ja"><head><meta charset="utf-8">'
		f"<title>{escape(title)}</title>"
		"<style>"
		f"body {{ font-family: 'Noto Sans JP', sans-serif; font-size: {size}; margin: 24px; }}"
		f".question {{ margin-bottom: 18px; {brk} }}"
		".qr { float: right; width: 72px; height: 72px; }"
		".answer { font-weight: bold; } .explanation { color: #444; }"
		"@media print { .no-print { display: none; } }"
		"</style></head><body>"
		f"{body}</body></html>"
	)


def _header(question_set: Dict[str, Any], heading: str, student_name: Optional[str], date: Optional[str]) -> str:
	name = escape(str(question_set.get("name", "")))
	level = escape(str(question_set.get("level", "")))
	printed = escape(date or datetime.utcnow().date().isoformat())
	student = escape(student_name) if student_name else "&nbsp;" * 12
	return (
		f'<header><h1>{name}</h1><p>{level} {heading}</p>'
		f'<p>氏名: <span class="student">{student}</span>　日付: {printed}</p></header>'
	)


def render_worksheet(question_set: Dict[str, Any], req: WorksheetRequest) -> str:
	set_id = question_set.get("id")
	base_id = uuid.uuid4().hex[:8]
	parts = [_header(question_set, "問題用紙", req.student_name, req.date)]
	student_qr = qr_payload_url({"eventType": "student", "studentId": req.student_id, "studentName": req.student_name, "questionSetId": set_id, "qrId": f"S-{base_id}"})
	parts.append(f'<div class="qr student-qr" data-qr-payload="{escape(student_qr)}"></div>')
	if req.custom_instructions:
		parts.append(f'<p class="instructions">{_multiline(req.custom_instructions)}</p>')

	for i, q in enumerate(question_set.get("questions") or [], start=1):
		qid = str(q.get("id", i))
		payload = qr_payload_url({"eventType": "question", "studentName": req.student_name, "questionSetId": set_id, "questionId": qid, "qrId": f"Q-{base_id}-{i}"})
		parts.append(f'<section class="question" data-question-id="{escape(qid)}">')
		parts.append(f'<div class="qr" data-qr-payload="{escape(payload)}"></div>')
		parts.append(f"<h2>問{i}</h2><p>{_multiline(question_text(q))}</p>")
		parts.append(_choices_html(_choice_texts(q)))
		parts.append(_sub_questions_html(q, with_answers=False, with_explanations=False))
		parts.append("</section>")

	done = qr_payload_url({"eventType": "complete", "studentName": req.student_name, "questionSetId": set_id, "qrId": f"C-{base_id}"})
	parts.append(f'<footer><div class="qr" data-qr-payload="{escape(done)}"></div><p>提出用</p></footer>')
	return _page(f"{question_set.get('name', '')} 問題用紙", "".join(parts), req.font_size, req.page_break)


def render_answer_sheet(question_set: Dict[str, Any], req: AnswerSheetRequest) -> str:
	parts = [_header(question_set, "解答用紙", req.student_name, req.date)]
	for i, q in enumerate(question_set.get("questions") or [], start=1):
		qid = str(q.get("id", i))
		parts.append(f'<section class="question" data-question-id="{escape(qid)}">')
		parts.append(f"<h2>問{i}</h2><p>{_multiline(question_text(q))}</p>")
		answer = question_answer(q)
		if answer:
			parts.append(f'<p class="answer">正解: {escape(answer)}</p>')
		if req.include_explanations:
			explanation = question_explanation(q)
			if explanation:
				parts.append(f'<p class="explanation">解説: {_multiline(explanation)}</p>')
		parts.append(_sub_questions_html(q, with_answers=True, with_explanations=req.include_explanations))
		parts.append("</section>")
	return _page(f"{question_set.get('name', '')} 解答用紙", "".join(parts), req.font_size, req.page_break)
