from __future__ import annotations

from typing import Optional


class EikenError(Exception):
    status_code: int = 500
    title: str = "問題生成中にエラーが発生しました"

    def to_body(self) -> dict:
        return {"error": self.title, "message": str(self)}


class UnsupportedGradeError(EikenError):
    status_code = 400
    title = "対応していない級です"

    def __init__(self, grade: object) -> None:
        super().__init__(f"unsupported grade: {grade!r}")
        self.grade = grade


class UnsupportedQuestionTypeError(EikenError):
    status_code = 400
    title = "対応していない問題タイプです"

    def __init__(self, question_type: object) -> None:
        super().__init__(f"unsupported question type: {question_type!r}")
        self.question_type = question_type


class InvalidRequestError(EikenError):
    status_code = 400
    title = "リクエストが不正です"


class CredentialMissingOrInvalidError(EikenError):
    status_code = 401
    title = "Gemini APIキーが無効です"


class QuotaExceededError(EikenError):
    status_code = 429
    title = "Gemini APIの利用制限に達しました"

    def __init__(self, limit: int, used: int) -> None:
        super().__init__(f"API quota exceeded. Daily limit: {limit}, Used: {used}")
        self.limit = limit
        self.used = used


class GenerationExhaustedError(EikenError):
    title = "問題生成中にエラーが発生しました"

    def __init__(self, message: str, last_error: Optional[BaseException] = None, *, rate_limited: bool = False) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.rate_limited = rate_limited
        # Exhausting retries on rate limiting is reported like a quota error
        if rate_limited:
            self.status_code = 429
            self.title = QuotaExceededError.title


class ResponseParseError(EikenError):
    title = "AIの応答を解析できませんでした"


class RecordNotFoundError(EikenError):
    status_code = 404

    def __init__(self, title: str, record_id: object) -> None:
        super().__init__(f"{title}: {record_id}")
        self.title = title
        self.record_id = record_id

    def to_body(self) -> dict:
        return {"error": self.title, "id": str(self.record_id), "message": str(self)}


class MissingFieldsError(InvalidRequestError):
    title = "必須フィールドが不足しています"

    def __init__(self, required: list) -> None:
        super().__init__(f"required fields: {', '.join(required)}")
        self.required = list(required)

    def to_body(self) -> dict:
        return {"error": self.title, "message": str(self), "required": self.required}
