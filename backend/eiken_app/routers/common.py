from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Query
from sqlalchemy.orm import Query as OrmQuery

from ..grade_profiles import parse_grade


class Page:
    """limit/offset query parameters shared by every list endpoint."""

    def __init__(
        self,
        limit: int = Query(default=100, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
    ) -> None:
        self.limit = limit
        self.offset = offset

    def apply(self, query: OrmQuery) -> OrmQuery:
        return query.offset(self.offset).limit(self.limit)

    def body(self, key: str, items: Sequence[Dict[str, Any]], total: int) -> Dict[str, Any]:
        return {key: list(items), "total": total, "limit": self.limit, "offset": self.offset}


def loads(text: Optional[str], default: Any) -> Any:
    if not text:
        return default
    try:
        return json.loads(text)
    except ValueError:
        return default


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def grade_label(value: str) -> str:
    """Validated grade label; raises UnsupportedGradeError (400)."""
    return parse_grade(value).value


def missing_fields(body: Dict[str, Any], required: List[str]) -> List[str]:
    return [name for name in required if body.get(name) in (None, "", [])]
