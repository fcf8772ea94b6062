from __future__ import annotations
import logging
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url or "sqlite:///./eiken.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first release: (table, column, DDL type)
_ADDED_COLUMNS = (
	("question_sets", "description", "TEXT"),
	("questions", "payload", "TEXT"),
	("qr_events", "override", "BOOLEAN DEFAULT 0 NOT NULL"),
	("print_jobs", "settings", "TEXT"),
)


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except SQLAlchemyError as exc:
		logger.warning("Schema inspection failed: %s", exc)
		return
	for table, column, ddl in _ADDED_COLUMNS:
		if table not in tables:
			continue
		cols = {c["name"] for c in inspector.get_columns(table)}
		if column in cols:
			continue
		with engine.begin() as conn:
			conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
		logger.info("Added column %s.%s", table, column)
