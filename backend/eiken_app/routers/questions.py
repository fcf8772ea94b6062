from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError, MissingFieldsError, RecordNotFoundError
from ..grade_profiles import parse_question_type
from ..models import BankQuestion
from ..schemas import CamelModel
from .common import Page, dumps, grade_label, iso, loads, missing_fields

router = APIRouter(prefix="/api/questions", tags=["questions"])

NOT_FOUND = "問題が見つかりません"
DIFFICULTIES = ("初級", "中級", "上級")
# Kept in the JSON payload column rather than as table columns
PAYLOAD_FIELDS = ("choices", "correct_answer", "explanation")


class BankQuestionIn(CamelModel):
    level: Optional[str] = None
    question_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("type", "questionType", "question_type"))
    difficulty: Optional[str] = None
    content: Optional[str] = None
    choices: Optional[List[Any]] = None
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None


def question_dict(q: BankQuestion) -> Dict[str, Any]:
    payload = loads(q.payload, {})
    return {
        "id": str(q.id),
        "level": q.level,
        "type": q.question_type,
        "difficulty": q.difficulty,
        "content": q.content,
        "choices": payload.get("choices") or [],
        "correctAnswer": payload.get("correctAnswer"),
        "explanation": payload.get("explanation"),
        "createdAt": iso(q.created_at),
        "updatedAt": iso(q.updated_at),
    }


def get_bank_question(db: Session, question_id: int) -> BankQuestion:
    row = db.get(BankQuestion, question_id)
    if row is None:
        raise RecordNotFoundError(NOT_FOUND, question_id)
    return row


def _difficulty(value: Optional[str]) -> str:
    if not value:
        return "中級"
    if value not in DIFFICULTIES:
        raise InvalidRequestError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
    return value


def _payload(body: Dict[str, Any], current: Optional[Dict[str, Any]] = None) -> str:
    payload = dict(current or {})
    if "choices" in body:
        payload["choices"] = body["choices"] or []
    if "correct_answer" in body:
        payload["correctAnswer"] = body["correct_answer"]
    if "explanation" in body:
        payload["explanation"] = body["explanation"]
    return dumps(payload)


@router.get("")
def list_questions(
    level: Optional[str] = None,
    type: Optional[str] = None,
    difficulty: Optional[str] = None,
    page: Page = Depends(),
    db: Session = Depends(get_db),
):
    q = db.query(BankQuestion)
    if level:
        q = q.filter(BankQuestion.level == level)
    if type:
        q = q.filter(BankQuestion.question_type == parse_question_type(type).value)
    if difficulty:
        q = q.filter(BankQuestion.difficulty == difficulty)
    total = q.count()
    rows = page.apply(q.order_by(BankQuestion.id)).all()
    return page.body("questions", [question_dict(r) for r in rows], total)


@router.get("/stats/summary")
def question_stats(db: Session = Depends(get_db)):
    rows = db.query(BankQuestion).all()
    recent = sorted(rows, key=lambda r: r.created_at, reverse=True)[:5]
    return {
        "total": len(rows),
        "byLevel": dict(Counter(r.level for r in rows)),
        "byType": dict(Counter(r.question_type for r in rows)),
        "byDifficulty": dict(Counter(r.difficulty for r in rows)),
        "recent": [question_dict(r) for r in recent],
    }


@router.get("/{question_id}")
def get_question(question_id: int, db: Session = Depends(get_db)):
    return question_dict(get_bank_question(db, question_id))


@router.post("", status_code=201)
def create_question(body: BankQuestionIn, db: Session = Depends(get_db)):
    data = body.model_dump()
    missing = missing_fields(data, ["level", "question_type", "content"])
    if missing:
        raise MissingFieldsError(["type" if m == "question_type" else m for m in missing])
    row = BankQuestion(
        level=grade_label(body.level),
        question_type=parse_question_type(body.question_type).value,
        difficulty=_difficulty(body.difficulty),
        content=body.content,
        payload=_payload({k: data[k] for k in PAYLOAD_FIELDS}),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return {"message": "問題が正常に作成されました", "question": question_dict(row)}


@router.put("/{question_id}")
def update_question(question_id: int, body: BankQuestionIn, db: Session = Depends(get_db)):
    row = get_bank_question(db, question_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("level"):
        row.level = grade_label(changes["level"])
    if changes.get("question_type"):
        row.question_type = parse_question_type(changes["question_type"]).value
    if changes.get("difficulty"):
        row.difficulty = _difficulty(changes["difficulty"])
    if changes.get("content"):
        row.content = changes["content"]
    if any(k in changes for k in PAYLOAD_FIELDS):
        row.payload = _payload(changes, loads(row.payload, {}))
    db.commit()
    db.refresh(row)
    return {"message": "問題が正常に更新されました", "question": question_dict(row)}


@router.delete("/{question_id}")
def delete_question(question_id: int, db: Session = Depends(get_db)):
    row = get_bank_question(db, question_id)
    deleted = question_dict(row)
    db.delete(row)
    db.commit()
    return {"message": "問題が正常に削除されました", "deletedQuestion": deleted}
