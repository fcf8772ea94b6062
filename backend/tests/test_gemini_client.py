"""
Tests for the Gemini REST client against an in-process httpx transport.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
import json

import httpx
import pytest
from eiken_app.errors import CredentialMissingOrInvalidError
from eiken_app.gemini_client import GeminiClient


def _reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _run(client, prompt="prompt"):
    async def _go():
        try:
            return await client.generate(prompt)
        finally:
            await client.aclose()

    return asyncio.run(_go())


def _client(handler, api_key="test-key"):
    return GeminiClient(api_key, base_url="https://gemini.test/generate", transport=httpx.MockTransport(handler))


class TestGenerate:
    def test_returns_candidate_text_and_sends_key(self):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params.get("key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_reply('{"type": "cloze_mcq"}'))

        assert _run(_client(handler), "hello") == '{"type": "cloze_mcq"}'
        assert seen["key"] == "test-key"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "hello"
        assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"

    def test_missing_key_raises_per_call(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_reply("x"))

        client = _client(handler, api_key="")
        assert client.is_configured is False
        with pytest.raises(CredentialMissingOrInvalidError):
            _run(client)
        assert calls == []

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses_are_credential_errors(self, status):
        with pytest.raises(CredentialMissingOrInvalidError):
            _run(_client(lambda request: httpx.Response(status, json={"error": {"status": "PERMISSION_DENIED"}})))

    def test_invalid_key_400_is_credential_error(self):
        body = {"error": {"code": 400, "status": "INVALID_ARGUMENT", "details": [{"reason": "API_KEY_INVALID"}]}}
        with pytest.raises(CredentialMissingOrInvalidError):
            _run(_client(lambda request: httpx.Response(400, json=body)))

    def test_other_400_is_http_error(self):
        with pytest.raises(httpx.HTTPStatusError):
            _run(_client(lambda request: httpx.Response(400, json={"error": {"status": "INVALID_ARGUMENT"}})))

    def test_429_surfaces_for_retry(self):
        with pytest.raises(httpx.HTTPStatusError) as info:
            _run(_client(lambda request: httpx.Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED"}})))
        assert info.value.response.status_code == 429

    @pytest.mark.parametrize("body", [{"candidates": []}, {"promptFeedback": {}}, "not json"])
    def test_malformed_candidates(self, body):
        def handler(request):
            if isinstance(body, str):
                return httpx.Response(200, text=body)
            return httpx.Response(200, json=body)

        with pytest.raises(RuntimeError, match="Unexpected Gemini response"):
            _run(_client(handler))
