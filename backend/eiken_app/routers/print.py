from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError
from ..models import PrintJob, QuestionSet
from ..printing import (
    FONT_SIZES,
    AnswerSheetRequest,
    PrintSettings,
    WorksheetRequest,
    render_answer_sheet,
    render_worksheet,
)
from .common import Page, dumps, iso, loads
from .question_sets import get_question_set, set_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/print", tags=["print"])

PRINT_KINDS = ("worksheet", "answer-sheet")


def job_dict(job: PrintJob, set_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": job.id,
        "type": job.kind,
        "questionSetId": job.question_set_id,
        "questionSetName": set_name,
        "studentName": job.student_name,
        "settings": loads(job.settings, {}),
        "printedAt": iso(job.printed_at),
        "status": "completed",
    }


def _check_font_size(font_size: str) -> None:
    if font_size not in FONT_SIZES:
        raise InvalidRequestError(f"fontSize must be one of {', '.join(FONT_SIZES)}")


def _record_job(db: Session, kind: str, set_id: int, student_name: Optional[str], settings: PrintSettings) -> PrintJob:
    job = PrintJob(
        kind=kind,
        question_set_id=set_id,
        student_name=student_name,
        settings=dumps(settings.model_dump(by_alias=True)),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Print job %d: %s for set %d", job.id, kind, set_id)
    return job


@router.get("/questions/{set_id}")
def print_data(
    set_id: int,
    include_answers: bool = Query(default=False, alias="includeAnswers"),
    include_explanations: bool = Query(default=False, alias="includeExplanations"),
    font_size: str = Query(default="medium", alias="fontSize"),
    page_break: bool = Query(default=False, alias="pageBreak"),
    db: Session = Depends(get_db),
):
    _check_font_size(font_size)
    question_set = set_dict(get_question_set(db, set_id))
    settings = PrintSettings(
        include_answers=include_answers,
        include_explanations=include_explanations,
        font_size=font_size,
        page_break=page_break,
    )
    return {
        "questionSet": question_set,
        "settings": settings.model_dump(by_alias=True),
        "generatedAt": datetime.utcnow().isoformat() + "Z",
    }


@router.post("/questions/{set_id}/worksheet", response_class=HTMLResponse)
def print_worksheet(set_id: int, body: WorksheetRequest, db: Session = Depends(get_db)):
    _check_font_size(body.font_size)
    question_set = set_dict(get_question_set(db, set_id))
    html = render_worksheet(question_set, body)
    settings = PrintSettings(font_size=body.font_size, page_break=body.page_break)
    job = _record_job(db, "worksheet", set_id, body.student_name, settings)
    return HTMLResponse(content=html, headers={"X-Print-Job-Id": str(job.id)})


@router.post("/questions/{set_id}/answer-sheet", response_class=HTMLResponse)
def print_answer_sheet(set_id: int, body: AnswerSheetRequest, db: Session = Depends(get_db)):
    _check_font_size(body.font_size)
    question_set = set_dict(get_question_set(db, set_id))
    html = render_answer_sheet(question_set, body)
    settings = PrintSettings(
        include_answers=True,
        include_explanations=body.include_explanations,
        font_size=body.font_size,
        page_break=body.page_break,
    )
    job = _record_job(db, "answer-sheet", set_id, body.student_name, settings)
    return HTMLResponse(content=html, headers={"X-Print-Job-Id": str(job.id)})


@router.get("/history")
def print_history(
    question_set_id: Optional[int] = Query(default=None, alias="questionSetId"),
    kind: Optional[str] = Query(default=None, alias="type"),
    page: Page = Depends(),
    db: Session = Depends(get_db),
):
    if kind and kind not in PRINT_KINDS:
        raise InvalidRequestError(f"type must be one of {', '.join(PRINT_KINDS)}")
    q = db.query(PrintJob)
    if question_set_id is not None:
        q = q.filter(PrintJob.question_set_id == question_set_id)
    if kind:
        q = q.filter(PrintJob.kind == kind)
    total = q.count()
    jobs = page.apply(q.order_by(PrintJob.printed_at.desc(), PrintJob.id.desc())).all()
    names = {s.id: s.name for s in db.query(QuestionSet).filter(QuestionSet.id.in_({j.question_set_id for j in jobs}))}
    return page.body("history", [job_dict(j, names.get(j.question_set_id)) for j in jobs], total)
