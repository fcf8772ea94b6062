"""
Shared fixtures. Everything runs offline: the database is a throwaway SQLite
file and AI calls go through ScriptedClient.
"""
import os
import sys
import tempfile

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

_TMP_DIR = tempfile.mkdtemp(prefix="eiken-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["RATE_LIMIT_MAX_REQUESTS"] = "0"
os.environ["ENABLE_VALIDATION"] = "false"
os.environ["DISABLE_QUOTA_CHECK"] = "false"

import pytest
from fastapi.testclient import TestClient

from eiken_app.ai_gateway import AIGateway, DailyQuotaCounter
from eiken_app.db import Base, engine
from eiken_app.generation_service import QuestionGenerator
from eiken_app.main import app
from eiken_app.routers.generation import get_question_generator, get_quota


class ScriptedClient:
    """Returns (or raises) the scripted replies in order and records prompts."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def client():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def quota():
    return DailyQuotaCounter(1400)


@pytest.fixture
def use_ai(quota):
    """Route generation requests through a ScriptedClient.

    Call ``use_ai(reply, ...)``; returns the client so tests can inspect the
    prompts that were sent.
    """

    def _install(*replies, validation: bool = False, max_retries: int = 3):
        scripted = ScriptedClient(*replies)

        def _generator():
            gateway = AIGateway(scripted, quota, max_retries=max_retries, base_delay=0.0, sleep=no_sleep)
            return QuestionGenerator(gateway, enable_validation=validation)

        app.dependency_overrides[get_question_generator] = _generator
        app.dependency_overrides[get_quota] = lambda: quota
        return scripted

    return _install
