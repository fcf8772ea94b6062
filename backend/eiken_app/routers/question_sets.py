from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError, MissingFieldsError, RecordNotFoundError
from ..grade_profiles import parse_question_type
from ..models import QuestionSet
from ..schemas import CamelModel
from .common import Page, dumps, grade_label, iso, loads, missing_fields
from .questions import get_bank_question, question_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/question-sets", tags=["question-sets"])

NOT_FOUND = "問題セットが見つかりません"


class QuestionSetIn(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    level: Optional[str] = None
    question_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("questionType", "question_type", "type"))
    questions: Optional[List[Dict[str, Any]]] = None
    created_by: Optional[str] = None


class AddQuestionsIn(CamelModel):
    questions: Any = None
    question_ids: Any = None


def _with_ids(questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for q in questions:
        q = dict(q)
        q["id"] = str(q.get("id") or uuid.uuid4().hex)
        out.append(q)
    return out


def set_dict(s: QuestionSet) -> Dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "description": s.description or "",
        "level": s.level,
        "questionType": s.question_type,
        "questions": loads(s.questions, []),
        "createdBy": s.created_by,
        "createdAt": iso(s.created_at),
        "updatedAt": iso(s.updated_at),
    }


def get_question_set(db: Session, set_id: int) -> QuestionSet:
    row = db.get(QuestionSet, set_id)
    if row is None:
        raise RecordNotFoundError(NOT_FOUND, set_id)
    return row


@router.get("")
def list_question_sets(level: Optional[str] = None, page: Page = Depends(), db: Session = Depends(get_db)):
    q = db.query(QuestionSet)
    if level:
        q = q.filter(QuestionSet.level == level)
    total = q.count()
    rows = page.apply(q.order_by(QuestionSet.id)).all()
    return page.body("questionSets", [set_dict(s) for s in rows], total)


@router.get("/stats/summary")
def question_set_stats(db: Session = Depends(get_db)):
    rows = db.query(QuestionSet).all()
    sizes = [len(loads(s.questions, [])) for s in rows]
    total_questions = sum(sizes)
    recent = sorted(rows, key=lambda s: s.created_at, reverse=True)[:5]
    return {
        "total": len(rows),
        "byLevel": dict(Counter(s.level for s in rows)),
        "totalQuestions": total_questions,
        "averageQuestionsPerSet": round(total_questions / len(rows), 1) if rows else 0,
        "recent": [set_dict(s) for s in recent],
    }


@router.get("/{set_id}")
def get_set(set_id: int, db: Session = Depends(get_db)):
    return set_dict(get_question_set(db, set_id))


@router.post("", status_code=201)
def create_question_set(body: QuestionSetIn, db: Session = Depends(get_db)):
    missing = missing_fields(body.model_dump(), ["name", "level"])
    if missing:
        raise MissingFieldsError(missing)
    row = QuestionSet(
        name=body.name,
        description=body.description or "",
        level=grade_label(body.level),
        question_type=parse_question_type(body.question_type).value if body.question_type else None,
        questions=dumps(_with_ids(body.questions or [])),
        created_by=body.created_by,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created question set %d with %d questions", row.id, len(body.questions or []))
    return {"message": "問題セットが正常に作成されました", "questionSet": set_dict(row)}


@router.put("/{set_id}")
def update_question_set(set_id: int, body: QuestionSetIn, db: Session = Depends(get_db)):
    row = get_question_set(db, set_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("name"):
        row.name = changes["name"]
    if "description" in changes:
        row.description = changes["description"] or ""
    if changes.get("level"):
        row.level = grade_label(changes["level"])
    if changes.get("question_type"):
        row.question_type = parse_question_type(changes["question_type"]).value
    if changes.get("questions") is not None:
        row.questions = dumps(_with_ids(changes["questions"]))
    if "created_by" in changes:
        row.created_by = changes["created_by"]
    db.commit()
    db.refresh(row)
    return {"message": "問題セットが正常に更新されました", "questionSet": set_dict(row)}


@router.delete("/{set_id}")
def delete_question_set(set_id: int, db: Session = Depends(get_db)):
    row = get_question_set(db, set_id)
    deleted = set_dict(row)
    db.delete(row)
    db.commit()
    return {"message": "問題セットが正常に削除されました", "deletedSet": deleted}


@router.post("/{set_id}/questions")
def add_questions(set_id: int, body: AddQuestionsIn, db: Session = Depends(get_db)):
    row = get_question_set(db, set_id)
    if body.questions is None and body.question_ids is None:
        raise InvalidRequestError("questions or questionIds is required")
    if body.question_ids is not None and not isinstance(body.question_ids, list):
        raise InvalidRequestError("questionIdsは配列である必要があります")
    if body.questions is not None and not (isinstance(body.questions, list) and all(isinstance(q, dict) for q in body.questions)):
        raise InvalidRequestError("questionsはオブジェクトの配列である必要があります")

    candidates = _with_ids(body.questions or [])
    for raw_id in body.question_ids or []:
        try:
            bank_id = int(raw_id)
        except (TypeError, ValueError):
            raise InvalidRequestError(f"invalid question id: {raw_id!r}") from None
        candidates.append(question_dict(get_bank_question(db, bank_id)))

    current = loads(row.questions, [])
    seen = {str(q.get("id")) for q in current}
    added = []
    for q in candidates:
        if q["id"] in seen:
            continue
        seen.add(q["id"])
        added.append(q)
    if not added:
        raise InvalidRequestError("追加する新しい問題がありません")

    row.questions = dumps(current + added)
    db.commit()
    db.refresh(row)
    return {"message": f"{len(added)}問の問題が追加されました", "questionSet": set_dict(row)}


@router.delete("/{set_id}/questions/{question_id}")
def remove_question(set_id: int, question_id: str, db: Session = Depends(get_db)):
    row = get_question_set(db, set_id)
    current = loads(row.questions, [])
    remaining = [q for q in current if str(q.get("id")) != question_id]
    if len(remaining) == len(current):
        raise RecordNotFoundError("問題が見つかりません", question_id)
    row.questions = dumps(remaining)
    db.commit()
    db.refresh(row)
    return {"message": "問題が正常に削除されました", "questionSet": set_dict(row)}
