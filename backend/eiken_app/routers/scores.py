from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError, MissingFieldsError, RecordNotFoundError
from ..grade_profiles import parse_question_type
from ..models import QrEvent, ScoreRecord, Student
from ..schemas import CamelModel
from .common import Page, dumps, grade_label, iso, loads

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scores", tags=["scores"])

NOT_FOUND = "スコア履歴が見つかりません"
WEAK_THRESHOLD = 70
RECOMMENDATIONS = [
    "基礎的な問題から始めて段階的に難易度を上げる",
    "間違えた問題の復習を重点的に行う",
    "類似問題を繰り返し解く",
]
QR_EVENT_TYPES = ("student", "question", "complete")


class ScoreIn(CamelModel):
    student_id: Optional[int] = None
    question_set_id: Optional[int] = None
    level: Optional[str] = None
    question_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("type", "questionType", "question_type"))
    score: Optional[float] = None
    total_questions: Optional[int] = None
    correct_answers: Optional[int] = None
    time_spent: Optional[int] = None
    answers: Optional[List[Any]] = None


def score_dict(r: ScoreRecord) -> Dict[str, Any]:
    return {
        "id": r.id,
        "studentId": r.student_id,
        "questionSetId": r.question_set_id,
        "level": r.level,
        "type": r.question_type,
        "score": r.score,
        "totalQuestions": r.total_questions or 0,
        "correctAnswers": r.correct_answers or 0,
        "timeSpent": r.time_spent or 0,
        "answers": loads(r.answers, []),
        "completedAt": iso(r.completed_at),
    }


def event_dict(e: QrEvent) -> Dict[str, Any]:
    return {
        "id": e.id,
        "eventType": e.event_type,
        "studentId": e.student_id,
        "studentName": e.student_name,
        "questionSetId": e.question_set_id,
        "questionId": e.question_id,
        "correct": e.correct,
        "qrId": e.qr_id,
        "override": e.override,
        "scannedAt": iso(e.scanned_at),
    }


def _get(db: Session, score_id: int) -> ScoreRecord:
    row = db.get(ScoreRecord, score_id)
    if row is None:
        raise RecordNotFoundError(NOT_FOUND, score_id)
    return row


def _type_value(value: str) -> str:
    return parse_question_type(value).value


def _student_records(db: Session, student_id: int, level: Optional[str], type: Optional[str]):
    q = db.query(ScoreRecord).filter(ScoreRecord.student_id == student_id)
    if level:
        q = q.filter(ScoreRecord.level == level)
    if type:
        q = q.filter(ScoreRecord.question_type == _type_value(type))
    return q


def _averages(records: List[ScoreRecord], key) -> Dict[str, Dict[str, float]]:
    groups: Dict[str, Dict[str, float]] = {}
    for r in records:
        g = groups.setdefault(key(r), {"count": 0, "totalScore": 0.0, "averageScore": 0.0})
        g["count"] += 1
        g["totalScore"] += r.score
    for g in groups.values():
        g["averageScore"] = round(g["totalScore"] / g["count"], 1)
    return groups


@router.get("")
def list_scores(
    student_id: Optional[int] = Query(default=None, alias="studentId"),
    level: Optional[str] = None,
    type: Optional[str] = None,
    page: Page = Depends(),
    db: Session = Depends(get_db),
):
    q = db.query(ScoreRecord)
    if student_id is not None:
        q = q.filter(ScoreRecord.student_id == student_id)
    if level:
        q = q.filter(ScoreRecord.level == level)
    if type:
        q = q.filter(ScoreRecord.question_type == _type_value(type))
    total = q.count()
    rows = page.apply(q.order_by(ScoreRecord.completed_at.desc(), ScoreRecord.id.desc())).all()
    return page.body("scoreRecords", [score_dict(r) for r in rows], total)


@router.get("/qr")
def record_qr_scan(payload: str = Query(...), db: Session = Depends(get_db)):
    try:
        data = json.loads(payload)
    except ValueError:
        raise InvalidRequestError("payload must be JSON") from None
    if not isinstance(data, dict):
        raise InvalidRequestError("payload must be a JSON object")
    event_type = data.get("eventType") or data.get("type")
    if event_type not in QR_EVENT_TYPES:
        raise InvalidRequestError(f"eventType must be one of {', '.join(QR_EVENT_TYPES)}")

    def _int(value):
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    correct = data.get("correct")
    event = QrEvent(
        event_type=event_type,
        student_id=_int(data.get("studentId")),
        student_name=data.get("studentName"),
        question_set_id=_int(data.get("questionSetId")),
        question_id=str(data["questionId"]) if data.get("questionId") is not None else None,
        correct=bool(correct) if correct is not None else None,
        qr_id=data.get("qrId"),
        override=bool(data.get("override", False)),
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("QR %s scanned (%s)", event.event_type, event.qr_id)
    return {"message": "QRイベントを記録しました", "event": event_dict(event)}


@router.get("/qr-events")
def list_qr_events(
    event_type: Optional[str] = Query(default=None, alias="eventType"),
    student_name: Optional[str] = Query(default=None, alias="studentName"),
    page: Page = Depends(),
    db: Session = Depends(get_db),
):
    q = db.query(QrEvent)
    if event_type:
        q = q.filter(QrEvent.event_type == event_type)
    if student_name:
        q = q.filter(QrEvent.student_name == student_name)
    total = q.count()
    rows = page.apply(q.order_by(QrEvent.scanned_at.desc(), QrEvent.id.desc())).all()
    return page.body("events", [event_dict(e) for e in rows], total)


@router.get("/student/{student_id}/stats")
def student_score_stats(
    student_id: int,
    level: Optional[str] = None,
    type: Optional[str] = None,
    period: Optional[int] = Query(default=None, ge=1, description="Only records from the last N days"),
    db: Session = Depends(get_db),
):
    q = _student_records(db, student_id, level, type)
    if period:
        q = q.filter(ScoreRecord.completed_at >= datetime.utcnow() - timedelta(days=period))
    records = q.order_by(ScoreRecord.completed_at, ScoreRecord.id).all()
    if not records:
        return {
            "studentId": student_id,
            "totalRecords": 0,
            "averageScore": 0,
            "bestScore": 0,
            "totalQuestions": 0,
            "totalTime": 0,
            "byLevel": {},
            "byType": {},
            "progress": [],
        }
    return {
        "studentId": student_id,
        "totalRecords": len(records),
        "averageScore": round(sum(r.score for r in records) / len(records), 1),
        "bestScore": max(r.score for r in records),
        "totalQuestions": sum(r.total_questions or 0 for r in records),
        "totalTime": sum(r.time_spent or 0 for r in records),
        "byLevel": _averages(records, lambda r: r.level),
        "byType": _averages(records, lambda r: r.question_type),
        "progress": [
            {"date": iso(r.completed_at), "score": r.score, "type": r.question_type, "level": r.level}
            for r in records
        ],
    }


@router.get("/analysis/weakness/{student_id}")
def weakness_analysis(student_id: int, level: Optional[str] = None, type: Optional[str] = None, db: Session = Depends(get_db)):
    records = _student_records(db, student_id, level, type).all()
    if not records:
        return {"studentId": student_id, "analysis": None, "message": "分析するデータが不足しています"}
    by_type = _averages(records, lambda r: r.question_type)
    weak_points = [f"{t}の理解が不十分" for t, g in by_type.items() if g["totalScore"] / g["count"] < WEAK_THRESHOLD]
    return {
        "analysis": {
            "studentId": student_id,
            "level": level or "全級",
            "type": type or "全タイプ",
            "typeAverages": {t: g["averageScore"] for t, g in by_type.items()},
            "weakPoints": weak_points,
            "recommendedQuestions": list(RECOMMENDATIONS) if weak_points else [],
            "analysisDate": datetime.utcnow().isoformat(),
        }
    }


@router.get("/{score_id}")
def get_score(score_id: int, db: Session = Depends(get_db)):
    return score_dict(_get(db, score_id))


@router.post("", status_code=201)
def create_score(body: ScoreIn, db: Session = Depends(get_db)):
    required = {"studentId": body.student_id, "questionSetId": body.question_set_id, "level": body.level, "type": body.question_type, "score": body.score}
    missing = [name for name, value in required.items() if value in (None, "")]
    if missing:
        raise MissingFieldsError(missing)
    if db.get(Student, body.student_id) is None:
        raise RecordNotFoundError("塾生が見つかりません", body.student_id)
    row = ScoreRecord(
        student_id=body.student_id,
        question_set_id=body.question_set_id,
        level=grade_label(body.level),
        question_type=_type_value(body.question_type),
        score=body.score,
        total_questions=body.total_questions or 0,
        correct_answers=body.correct_answers or 0,
        time_spent=body.time_spent or 0,
        answers=dumps(body.answers or []),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return {"message": "スコア履歴が正常に作成されました", "scoreRecord": score_dict(row)}


@router.put("/{score_id}")
def update_score(score_id: int, body: ScoreIn, db: Session = Depends(get_db)):
    row = _get(db, score_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("level"):
        row.level = grade_label(changes["level"])
    if changes.get("question_type"):
        row.question_type = _type_value(changes["question_type"])
    if "answers" in changes:
        row.answers = dumps(changes["answers"] or [])
    for field in ("student_id", "question_set_id", "score", "total_questions", "correct_answers", "time_spent"):
        if changes.get(field) is not None:
            setattr(row, field, changes[field])
    db.commit()
    db.refresh(row)
    return {"message": "スコア履歴が正常に更新されました", "scoreRecord": score_dict(row)}


@router.delete("/{score_id}")
def delete_score(score_id: int, db: Session = Depends(get_db)):
    row = _get(db, score_id)
    deleted = score_dict(row)
    db.delete(row)
    db.commit()
    return {"message": "スコア履歴が正常に削除されました", "deletedRecord": deleted}
