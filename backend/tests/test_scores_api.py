"""
Tests for /api/scores: CRUD, per-student statistics, weakness analysis and
QR scan events.
"""
import json
from datetime import datetime, timedelta

from eiken_app.db import SessionLocal
from eiken_app.models import ScoreRecord


def _student(client, name="佐藤花子"):
    return client.post("/api/students", json={"name": name, "level": "3級"}).json()["student"]["id"]


def _score(client, student_id, score, type="vocabulary", level="3級", **extra):
    body = {"studentId": student_id, "questionSetId": 1, "level": level, "type": type, "score": score,
            "totalQuestions": 10, "correctAnswers": int(score // 10), "timeSpent": 300}
    body.update(extra)
    r = client.post("/api/scores", json=body)
    assert r.status_code == 201, r.text
    return r.json()["scoreRecord"]


class TestCrud:
    def test_create_and_get(self, client):
        sid = _student(client)
        rec = _score(client, sid, 80, answers=[{"questionId": "a", "correct": True}])
        fetched = client.get(f"/api/scores/{rec['id']}").json()
        assert fetched["score"] == 80
        assert fetched["answers"] == [{"questionId": "a", "correct": True}]

    def test_required_fields(self, client):
        r = client.post("/api/scores", json={"studentId": 1})
        assert r.status_code == 400
        assert set(r.json()["required"]) == {"questionSetId", "level", "type", "score"}

    def test_unknown_student(self, client):
        r = client.post("/api/scores", json={"studentId": 42, "questionSetId": 1, "level": "3級", "type": "vocabulary", "score": 50})
        assert r.status_code == 404

    def test_update_and_delete(self, client):
        sid = _student(client)
        rec = _score(client, sid, 50)
        assert client.put(f"/api/scores/{rec['id']}", json={"score": 65}).json()["scoreRecord"]["score"] == 65
        assert client.delete(f"/api/scores/{rec['id']}").status_code == 200
        assert client.get(f"/api/scores/{rec['id']}").status_code == 404

    def test_list_newest_first_with_filters(self, client):
        sid = _student(client)
        other = _student(client, "other")
        first = _score(client, sid, 50)
        second = _score(client, sid, 60, type="essay")
        _score(client, other, 70)
        body = client.get("/api/scores", params={"studentId": sid}).json()
        assert body["total"] == 2
        assert [r["id"] for r in body["scoreRecords"]] == [second["id"], first["id"]]
        body = client.get("/api/scores", params={"type": "英作文"}).json()
        assert [r["id"] for r in body["scoreRecords"]] == [second["id"]]


class TestStudentStats:
    def test_empty(self, client):
        stats = client.get("/api/scores/student/1/stats").json()
        assert stats["totalRecords"] == 0
        assert stats["progress"] == []

    def test_aggregates(self, client):
        sid = _student(client)
        _score(client, sid, 80)
        _score(client, sid, 65)
        _score(client, sid, 90, type="essay", level="準2級")
        stats = client.get(f"/api/scores/student/{sid}/stats").json()
        assert stats["totalRecords"] == 3
        assert stats["averageScore"] == 78.3
        assert stats["bestScore"] == 90
        assert stats["totalQuestions"] == 30
        assert stats["totalTime"] == 900
        assert stats["byType"]["vocabulary"]["count"] == 2
        assert stats["byType"]["vocabulary"]["averageScore"] == 72.5
        assert stats["byLevel"]["準2級"]["averageScore"] == 90
        assert [p["score"] for p in stats["progress"]] == [80, 65, 90]

    def test_level_and_period_filters(self, client):
        sid = _student(client)
        old = _score(client, sid, 40)
        _score(client, sid, 90)
        with SessionLocal() as db:
            row = db.get(ScoreRecord, old["id"])
            row.completed_at = datetime.utcnow() - timedelta(days=30)
            db.commit()
        stats = client.get(f"/api/scores/student/{sid}/stats", params={"period": 7}).json()
        assert stats["totalRecords"] == 1
        assert stats["averageScore"] == 90
        stats = client.get(f"/api/scores/student/{sid}/stats", params={"level": "2級"}).json()
        assert stats["totalRecords"] == 0


class TestWeakness:
    def test_no_data(self, client):
        body = client.get("/api/scores/analysis/weakness/1").json()
        assert body["analysis"] is None

    def test_types_under_70_are_weak(self, client):
        sid = _student(client)
        _score(client, sid, 60)
        _score(client, sid, 75)
        _score(client, sid, 90, type="essay")
        analysis = client.get(f"/api/scores/analysis/weakness/{sid}").json()["analysis"]
        assert analysis["weakPoints"] == ["vocabularyの理解が不十分"]
        assert len(analysis["recommendedQuestions"]) == 3
        assert analysis["level"] == "全級"

    def test_no_weak_points_no_recommendations(self, client):
        sid = _student(client)
        _score(client, sid, 70)
        analysis = client.get(f"/api/scores/analysis/weakness/{sid}").json()["analysis"]
        assert analysis["weakPoints"] == []
        assert analysis["recommendedQuestions"] == []


class TestQrEvents:
    def test_records_scan(self, client):
        payload = json.dumps({"eventType": "question", "studentName": "佐藤花子", "questionSetId": 3, "questionId": "q-1", "qrId": "Q-abc-1"})
        r = client.get("/api/scores/qr", params={"payload": payload})
        assert r.status_code == 200
        event = r.json()["event"]
        assert event["eventType"] == "question"
        assert event["questionSetId"] == 3
        assert event["override"] is False
        events = client.get("/api/scores/qr-events").json()
        assert events["total"] == 1
        assert events["events"][0]["qrId"] == "Q-abc-1"

    def test_rejects_bad_payloads(self, client):
        assert client.get("/api/scores/qr", params={"payload": "{oops"}).status_code == 400
        assert client.get("/api/scores/qr", params={"payload": json.dumps({"eventType": "lunch"})}).status_code == 400
        assert client.get("/api/scores/qr").status_code == 422

    def test_filter_by_type(self, client):
        for event_type in ("student", "question", "complete"):
            client.get("/api/scores/qr", params={"payload": json.dumps({"eventType": event_type, "qrId": event_type})})
        body = client.get("/api/scores/qr-events", params={"eventType": "complete"}).json()
        assert [e["qrId"] for e in body["events"]] == ["complete"]
