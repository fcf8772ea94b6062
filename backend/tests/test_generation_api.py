"""
End-to-end tests for /api/generation through FastAPI's TestClient with a
scripted AI client.
"""
import json

from eiken_app.ai_gateway import DailyQuotaCounter
from eiken_app.errors import CredentialMissingOrInvalidError
from eiken_app.main import app
from eiken_app.routers.generation import get_quota


def _cloze_reply(n):
    items = [
        {
            "stem": f"Sentence number {i} needs a ( ) word here.",
            "options": ["good", "well", "better", "best"],
            "answer": "good",
            "rationale_ja": "形容詞が必要。",
        }
        for i in range(n)
    ]
    return json.dumps({"type": "cloze_mcq", "grade": "3級", "items": items}, ensure_ascii=False)


class TestGenerate:
    def test_valid_reply(self, client, use_ai):
        ai = use_ai(_cloze_reply(3))
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 3})
        assert r.status_code == 200
        body = r.json()
        assert body["totalGenerated"] == 3
        assert body["grade"] == "3級"
        assert body["questionType"] == "vocabulary"
        assert all(q["grade"] == "3級" for q in body["questions"])
        assert not any(q["isFallback"] for q in body["questions"])
        assert body["generationTime"].endswith("Z")
        assert len(ai.prompts) == 1

    def test_prose_reply_gives_placeholders(self, client, use_ai):
        use_ai("Sorry, I cannot help with that today.")
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 3})
        assert r.status_code == 200
        body = r.json()
        assert body["totalGenerated"] == 3
        for q in body["questions"]:
            assert q["isFallback"] is True
            assert "AI生成に失敗" in q["explanationJa"]

    def test_count_out_of_range_rejected_before_ai(self, client, use_ai):
        ai = use_ai(_cloze_reply(3))
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 25})
        assert r.status_code == 400
        assert "message" in r.json()
        assert ai.prompts == []

    def test_non_integer_count_is_a_400(self, client, use_ai):
        ai = use_ai(_cloze_reply(1))
        for count in ("abc", 2.5, True, [1]):
            r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": count})
            assert r.status_code == 400, count
            assert set(r.json()) >= {"error", "message"}
        assert ai.prompts == []

    def test_numeric_string_count(self, client, use_ai):
        use_ai(_cloze_reply(2))
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": "2"})
        assert r.status_code == 200
        assert r.json()["totalGenerated"] == 2

    def test_infinite_features_still_return_questions(self, client, use_ai):
        use_ai('{"type":"jumbled_sentence","items":[{"tokens":["I","am","Ken","."],"answer":"I am Ken.","features":{"grammar_tier":Infinity}}]}')
        r = client.post("/api/generation/generate", json={"grade": "準2級", "questionType": "rearrangement", "count": 2})
        assert r.status_code == 200
        assert [q["isFallback"] for q in r.json()["questions"]] == [False, True]

    def test_legacy_keys_and_japanese_type(self, client, use_ai):
        use_ai(_cloze_reply(2))
        r = client.post("/api/generation/generate", json={"level": "3級", "type": "語彙", "count": 2})
        assert r.status_code == 200
        assert r.json()["questionType"] == "vocabulary"

    def test_missing_fields(self, client, use_ai):
        use_ai(_cloze_reply(1))
        r = client.post("/api/generation/generate", json={"grade": "3級"})
        assert r.status_code == 400

    def test_unknown_grade(self, client, use_ai):
        ai = use_ai(_cloze_reply(1))
        r = client.post("/api/generation/generate", json={"grade": "6級", "questionType": "vocabulary", "count": 1})
        assert r.status_code == 400
        assert r.json()["error"] == "対応していない級です"
        assert ai.prompts == []

    def test_custom_instructions_too_long(self, client, use_ai):
        use_ai(_cloze_reply(1))
        r = client.post("/api/generation/generate", json={
            "grade": "3級", "questionType": "vocabulary", "count": 1, "customInstructions": "x" * 1001,
        })
        assert r.status_code == 400

    def test_custom_instructions_reach_prompt(self, client, use_ai):
        ai = use_ai(_cloze_reply(1))
        client.post("/api/generation/generate", json={
            "grade": "3級", "questionType": "vocabulary", "count": 1, "customInstructions": "動物に関する問題にして",
        })
        assert ai.prompts[0].endswith("動物に関する問題にして")

    def test_credential_error_is_401(self, client, use_ai):
        use_ai(CredentialMissingOrInvalidError("bad key"))
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.status_code == 401
        assert r.json()["error"] == "Gemini APIキーが無効です"

    def test_quota_exhausted_is_429(self, client, use_ai, quota):
        use_ai(_cloze_reply(1))
        for _ in range(quota.limit):
            quota.reserve()
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.status_code == 429
        assert "Daily limit: 1400" in r.json()["message"]

    def test_rate_limited_retries_exhausted_is_429(self, client, use_ai):
        use_ai(RuntimeError("429 RESOURCE_EXHAUSTED"))
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.status_code == 429

    def test_transport_failure_is_500(self, client, use_ai):
        use_ai(RuntimeError("connection refused"))
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.status_code == 500
        assert "connection refused" in r.json()["message"]


class TestValidationPass:
    def test_revised_payload_replaces_original(self, client, use_ai):
        revised = json.dumps({"type": "cloze_mcq", "items": [{
            "stem": "Revised ( ) stem.", "options": ["a", "b", "c", "d"], "answer": "a",
        }]})
        ai = use_ai(_cloze_reply(1), revised, validation=True)
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.status_code == 200
        assert r.json()["questions"][0]["promptContent"] == "Revised ( ) stem."
        assert len(ai.prompts) == 2

    def test_failed_validation_keeps_original(self, client, use_ai):
        use_ai(_cloze_reply(1), "not json", validation=True)
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.json()["questions"][0]["promptContent"].startswith("Sentence number 0")

    def test_unmappable_revision_keeps_good_questions(self, client, use_ai):
        revised = json.dumps({"type": "cloze_mcq", "items": [{"oops": 1}]})
        use_ai(_cloze_reply(2), revised, validation=True)
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 2})
        assert r.status_code == 200
        assert [q["isFallback"] for q in r.json()["questions"]] == [False, False]

    def test_revision_can_repair_placeholders(self, client, use_ai):
        original = json.dumps({"type": "cloze_mcq", "items": [{"stem": "Broken"}]})
        use_ai(original, _cloze_reply(1), validation=True)
        r = client.post("/api/generation/generate", json={"grade": "3級", "questionType": "vocabulary", "count": 1})
        assert r.json()["questions"][0]["isFallback"] is False


class TestStatus:
    def test_reports_usage(self, client):
        counter = DailyQuotaCounter(50)
        counter.reserve()
        app.dependency_overrides[get_quota] = lambda: counter
        r = client.get("/api/generation/status")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "active"
        assert body["geminiConfigured"] is True
        assert body["apiUsage"]["dailyCount"] == 1
        assert body["apiUsage"]["dailyLimit"] == 50
        assert body["apiUsage"]["remaining"] == 49
        assert body["apiUsage"]["validationEnabled"] is False

    def test_reset_quota(self, client):
        counter = DailyQuotaCounter(50)
        counter.reserve()
        app.dependency_overrides[get_quota] = lambda: counter
        r = client.post("/api/generation/reset-quota")
        assert r.status_code == 200
        assert r.json()["dailyCount"] == 0
        assert counter.count == 0


class TestAppSurface:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_info(self, client):
        assert client.get("/info").json()["gemini_configured"] is True

    def test_security_headers(self, client):
        r = client.get("/health")
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert r.headers["X-Frame-Options"] == "DENY"
