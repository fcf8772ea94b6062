from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, ForeignKey
from .db import Base


class Student(Base):
	__tablename__ = "students"
	id = Column(Integer, primary_key=True, index=True)
	name = Column(String(128), nullable=False, unique=True, index=True)
	# Eiken grade label, e.g. "3級"
	level = Column(String(16), nullable=False, index=True)
	email = Column(String(256), nullable=True)
	school_grade = Column(String(64), nullable=True)
	school = Column(String(256), nullable=True)
	is_active = Column(Boolean, default=True, nullable=False)
	joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class QuestionSet(Base):
	__tablename__ = "question_sets"
	id = Column(Integer, primary_key=True, index=True)
	name = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	level = Column(String(16), nullable=False, index=True)
	question_type = Column(String(64), nullable=True)
	questions = Column(Text, nullable=False, default="[]")  # JSON list of question dicts
	created_by = Column(String(128), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class BankQuestion(Base):
	__tablename__ = "questions"
	id = Column(Integer, primary_key=True, index=True)
	level = Column(String(16), nullable=False, index=True)
	question_type = Column(String(64), nullable=False, index=True)
	difficulty = Column(String(16), nullable=False, default="中級")
	content = Column(Text, nullable=False)
	payload = Column(Text, nullable=True)  # JSON object with choices, answer, explanation...
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ScoreRecord(Base):
	__tablename__ = "scores"
	id = Column(Integer, primary_key=True, index=True)
	student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
	question_set_id = Column(Integer, nullable=False)
	level = Column(String(16), nullable=False)
	question_type = Column(String(64), nullable=False)
	score = Column(Float, nullable=False)
	total_questions = Column(Integer, nullable=True)
	correct_answers = Column(Integer, nullable=True)
	time_spent = Column(Integer, nullable=True)  # seconds
	answers = Column(Text, nullable=True)  # JSON list
	completed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class QrEvent(Base):
	__tablename__ = "qr_events"
	id = Column(Integer, primary_key=True, index=True)
	# student | question | complete
	event_type = Column(String(32), nullable=False)
	student_id = Column(Integer, nullable=True)
	student_name = Column(String(128), nullable=True)
	question_set_id = Column(Integer, nullable=True)
	question_id = Column(String(64), nullable=True)
	correct = Column(Boolean, nullable=True)
	qr_id = Column(String(64), nullable=True)
	override = Column(Boolean, default=False, nullable=False)
	scanned_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PrintJob(Base):
	__tablename__ = "print_jobs"
	id = Column(Integer, primary_key=True, index=True)
	# worksheet | answer-sheet
	kind = Column(String(32), nullable=False)
	question_set_id = Column(Integer, nullable=False, index=True)
	student_name = Column(String(128), nullable=True)
	settings = Column(Text, nullable=True)  # JSON print settings
	printed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
