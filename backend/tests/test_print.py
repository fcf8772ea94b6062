"""
Tests for printable worksheets, answer sheets and print history.
"""
import json
from urllib.parse import unquote

from eiken_app.printing import AnswerSheetRequest, WorksheetRequest, qr_payload_url, render_answer_sheet, render_worksheet


SAMPLE_SET = {
    "id": 7,
    "name": "3級 語彙セット",
    "level": "3級",
    "questions": [
        {
            "id": "q1",
            "promptContent": "I ( ) to school <every> day.",
            "choices": [{"id": "c0", "text": "go", "isCorrect": True}, {"id": "c1", "text": "goes", "isCorrect": False}],
            "correctAnswerText": "go",
            "explanationJa": "主語がIなので原形。",
        },
        {"id": "q2", "content": "Bank style question", "choices": ["am", "is"], "correctAnswer": "am", "explanation": "Iにはam"},
    ],
}


def _create_set(client):
    r = client.post("/api/question-sets", json={"name": SAMPLE_SET["name"], "level": "3級", "questions": SAMPLE_SET["questions"]})
    return r.json()["questionSet"]["id"]


class TestRendering:
    def test_worksheet_hides_answers_and_escapes(self):
        html = render_worksheet(SAMPLE_SET, WorksheetRequest(student_name="田中太郎"))
        assert "&lt;every&gt;" in html
        assert "<every>" not in html
        assert "正解" not in html
        assert "主語がIなので原形。" not in html
        assert "田中太郎" in html

    def test_worksheet_qr_payloads(self):
        html = render_worksheet(SAMPLE_SET, WorksheetRequest(student_name="Ken"))
        assert html.count('class="qr') == 4
        assert "/api/scores/qr?payload=" in html
        assert unquote(qr_payload_url({"eventType": "complete"})).endswith('{"eventType":"complete"}')

    def test_answer_sheet_answers_and_optional_explanations(self):
        without = render_answer_sheet(SAMPLE_SET, AnswerSheetRequest())
        assert "正解: go" in without
        assert "正解: am" in without
        assert "解説" not in without
        with_expl = render_answer_sheet(SAMPLE_SET, AnswerSheetRequest(include_explanations=True))
        assert "解説: 主語がIなので原形。" in with_expl
        assert "解説: Iにはam" in with_expl

    def test_font_size(self):
        html = render_worksheet(SAMPLE_SET, WorksheetRequest(font_size="large"))
        assert "font-size: 17px" in html


class TestEndpoints:
    def test_print_data(self, client):
        set_id = _create_set(client)
        r = client.get(f"/api/print/questions/{set_id}", params={"includeAnswers": "true", "fontSize": "small"})
        assert r.status_code == 200
        body = r.json()
        assert body["questionSet"]["id"] == set_id
        assert body["settings"] == {"includeAnswers": True, "includeExplanations": False, "fontSize": "small", "pageBreak": False}
        assert body["generatedAt"].endswith("Z")

    def test_print_data_404(self, client):
        assert client.get("/api/print/questions/123").status_code == 404

    def test_bad_font_size(self, client):
        set_id = _create_set(client)
        assert client.get(f"/api/print/questions/{set_id}", params={"fontSize": "huge"}).status_code == 400

    def test_worksheet_and_history(self, client):
        set_id = _create_set(client)
        r = client.post(f"/api/print/questions/{set_id}/worksheet", json={"studentName": "田中太郎"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/html")
        assert "問題用紙" in r.text
        assert r.headers["X-Print-Job-Id"]

        r = client.post(f"/api/print/questions/{set_id}/answer-sheet", json={"includeExplanations": True})
        assert "解答用紙" in r.text

        history = client.get("/api/print/history").json()
        assert history["total"] == 2
        assert [h["type"] for h in history["history"]] == ["answer-sheet", "worksheet"]
        assert history["history"][1]["studentName"] == "田中太郎"
        assert history["history"][0]["questionSetName"] == SAMPLE_SET["name"]
        assert history["history"][0]["settings"]["includeExplanations"] is True

        only = client.get("/api/print/history", params={"type": "worksheet", "questionSetId": set_id}).json()
        assert only["total"] == 1

    def test_history_rejects_unknown_type(self, client):
        assert client.get("/api/print/history", params={"type": "poster"}).status_code == 400

    def test_qr_payload_is_json(self):
        url = qr_payload_url({"eventType": "student", "studentName": "花子"})
        payload = json.loads(unquote(url.split("payload=", 1)[1]))
        assert payload == {"eventType": "student", "studentName": "花子"}
