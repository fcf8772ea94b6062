from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError, MissingFieldsError, RecordNotFoundError
from ..models import Student
from ..schemas import CamelModel
from .common import Page, grade_label, iso, missing_fields

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/students", tags=["students"])

NOT_FOUND = "塾生が見つかりません"


class StudentIn(CamelModel):
    name: Optional[str] = None
    level: Optional[str] = None
    email: Optional[str] = None
    school_grade: Optional[str] = Field(default=None, validation_alias=AliasChoices("schoolGrade", "school_grade", "grade"))
    school: Optional[str] = None
    is_active: Optional[bool] = None


def student_dict(s: Student) -> Dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "level": s.level,
        "email": s.email or "",
        "schoolGrade": s.school_grade or "",
        "school": s.school or "",
        "isActive": s.is_active,
        "joinedAt": iso(s.joined_at),
        "updatedAt": iso(s.updated_at),
    }


def _get(db: Session, student_id: int) -> Student:
    row = db.get(Student, student_id)
    if row is None:
        raise RecordNotFoundError(NOT_FOUND, student_id)
    return row


def _ensure_unique_name(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    q = db.query(Student).filter(Student.name == name)
    if exclude_id is not None:
        q = q.filter(Student.id != exclude_id)
    if q.first() is not None:
        raise InvalidRequestError(f"同じ名前の塾生が既に存在します: {name}")


@router.get("")
def list_students(
    level: Optional[str] = None,
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    page: Page = Depends(),
    db: Session = Depends(get_db),
):
    q = db.query(Student)
    if level:
        q = q.filter(Student.level == level)
    if is_active is not None:
        q = q.filter(Student.is_active == is_active)
    total = q.count()
    rows = page.apply(q.order_by(Student.id)).all()
    return page.body("students", [student_dict(s) for s in rows], total)


@router.get("/stats/summary")
def student_stats(db: Session = Depends(get_db)):
    rows = db.query(Student).all()
    active = [s for s in rows if s.is_active]
    recent = sorted(active, key=lambda s: s.joined_at, reverse=True)[:5]
    return {
        "total": len(rows),
        "active": len(active),
        "byLevel": dict(Counter(s.level for s in active)),
        "bySchoolGrade": dict(Counter(s.school_grade for s in active if s.school_grade)),
        "recent": [student_dict(s) for s in recent],
    }


@router.get("/search/{query}")
def search_students(query: str, limit: int = Query(default=20, ge=1, le=100), db: Session = Depends(get_db)):
    needle = f"%{query.lower()}%"
    rows = (
        db.query(Student)
        .filter(Student.is_active.is_(True))
        .filter(or_(
            func.lower(Student.name).like(needle),
            func.lower(func.coalesce(Student.email, "")).like(needle),
            func.lower(func.coalesce(Student.school, "")).like(needle),
        ))
        .order_by(Student.id)
        .limit(limit)
        .all()
    )
    return {"query": query, "results": [student_dict(s) for s in rows], "total": len(rows)}


@router.get("/{student_id}")
def get_student(student_id: int, db: Session = Depends(get_db)):
    return student_dict(_get(db, student_id))


@router.post("", status_code=201)
def create_student(body: StudentIn, db: Session = Depends(get_db)):
    missing = missing_fields(body.model_dump(), ["name", "level"])
    if missing:
        raise MissingFieldsError(missing)
    name = body.name.strip()
    _ensure_unique_name(db, name)
    row = Student(
        name=name,
        level=grade_label(body.level),
        email=body.email or "",
        school_grade=body.school_grade or "",
        school=body.school or "",
        is_active=True,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Registered student %d (%s)", row.id, row.level)
    return {"message": "塾生が正常に登録されました", "student": student_dict(row)}


@router.put("/{student_id}")
def update_student(student_id: int, body: StudentIn, db: Session = Depends(get_db)):
    row = _get(db, student_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("name"):
        name = changes["name"].strip()
        _ensure_unique_name(db, name, exclude_id=row.id)
        row.name = name
    if changes.get("level"):
        row.level = grade_label(changes["level"])
    for field in ("email", "school_grade", "school", "is_active"):
        if field in changes and changes[field] is not None:
            setattr(row, field, changes[field])
    db.commit()
    db.refresh(row)
    return {"message": "塾生情報が正常に更新されました", "student": student_dict(row)}


@router.delete("/{student_id}")
def delete_student(student_id: int, db: Session = Depends(get_db)):
    row = _get(db, student_id)
    # Scores keep referring to the student, so deletion only deactivates
    row.is_active = False
    db.commit()
    logger.info("Deactivated student %d", row.id)
    return {"message": "塾生が正常に削除されました", "id": row.id}
