from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam import create_app, db
from mockexam.api import routes
from mockexam.config import TestConfig
from mockexam.models import ExamSession
from mockexam.services import mock_exam_sessions
from mockexam.services.authoring import import_payload
from mockexam.services.evaluation_oracle import RubricResult
from mockexam.services.outcomes import PersistenceFailure

HEADERS = {"X-Candidate-Id": "cand-42"}


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        import_payload(
            {
                "kind": "mock-test",
                "slug": "mock-1",
                "title": "Mock 1",
                "papers": [
                    {
                        "section": "listening",
                        "title": "Listening",
                        "audioUrl": "/audio/1.mp3",
                        "questions": [
                            {"number": 1, "type": "fill-blank", "answer": "near/beside/next to"}
                        ],
                    },
                    {
                        "section": "reading",
                        "title": "Reading",
                        "passage": "Bees...",
                        "questions": [
                            {"number": 1, "type": "true-false-not-given", "answer": "TRUE"}
                        ],
                    },
                    {"section": "writing", "title": "Writing", "tasks": [{"number": 1, "prompt": "Essay"}]},
                    {"section": "speaking", "title": "Speaking", "tasks": [{"number": 1, "prompt": "Talk"}]},
                ],
            }
        )
        import_payload(
            {
                "kind": "practice-paper",
                "section": "reading",
                "title": "Practice reading",
                "questions": [{"number": 1, "type": "matching", "options": ["A", "B"], "answer": "B"}],
            }
        )
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def _start(client) -> str:
    response = client.post("/api/mock-tests/1/sessions", headers=HEADERS, json={})
    assert response.status_code == 201
    return response.get_json()["value"]["sessionId"]


def test_candidate_header_is_required(client):
    response = client.get("/api/mock-tests")
    assert response.status_code == 401
    assert response.get_json()["ok"] is False


def test_catalogue_shows_latest_session(client):
    body = client.get("/api/mock-tests", headers=HEADERS).get_json()
    assert body["value"][0]["latestSession"] is None
    assert [paper["section"] for paper in body["value"][0]["papers"]] == [
        "listening",
        "reading",
        "writing",
        "speaking",
    ]

    session_id = _start(client)

    body = client.get("/api/mock-tests", headers=HEADERS).get_json()
    assert body["value"][0]["latestSession"]["sessionId"] == session_id
    assert body["value"][0]["latestSession"]["status"] == "not_started"


def test_start_then_resume(client):
    session_id = _start(client)

    resumed = client.post("/api/mock-tests/1/sessions", headers=HEADERS, json={})

    assert resumed.status_code == 200
    value = resumed.get_json()["value"]
    assert value["sessionId"] == session_id
    assert value["resumed"] is True
    assert value["redirect"] == "listening"


def test_unknown_mock_test_is_not_found(client):
    response = client.post("/api/mock-tests/99/sessions", headers=HEADERS, json={})
    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"


def test_locked_section_redirects(client):
    session_id = _start(client)

    response = client.post(f"/api/sessions/{session_id}/sections/writing/enter", headers=HEADERS)

    assert response.status_code == 409
    body = response.get_json()
    assert body == {
        "ok": False,
        "kind": "invalid_transition",
        "message": body["message"],
        "retryable": False,
        "redirect": "listening",
    }


def test_entry_hides_answer_keys(client):
    session_id = _start(client)

    response = client.post(f"/api/sessions/{session_id}/sections/listening/enter", headers=HEADERS)

    value = response.get_json()["value"]
    assert value["remainingSeconds"] == 30 * 60
    assert value["media"]["state"] == "unplayed"
    assert "answer" not in value["paper"]["questions"][0]


def test_listening_flow_through_audio_and_submit(app, client):
    session_id = _start(client)
    base = f"/api/sessions/{session_id}"
    client.post(f"{base}/sections/listening/enter", headers=HEADERS)

    locked = client.put(f"{base}/sections/listening/answers/1", headers=HEADERS, json={"value": "near"})
    assert locked.status_code == 409

    play = client.post(f"{base}/audio/play", headers=HEADERS).get_json()["value"]
    assert play["state"] == "warning"
    assert play["accepted"] is True

    session = db.session.get(ExamSession, session_id)
    session.media_warning_started_at = datetime.utcnow() - timedelta(seconds=3)
    db.session.commit()

    status = client.get(f"{base}/audio", headers=HEADERS).get_json()["value"]
    assert status["state"] == "playing"
    pause = client.post(f"{base}/audio/pause", headers=HEADERS).get_json()["value"]
    assert pause["accepted"] is False
    assert client.post(f"{base}/audio/ended", headers=HEADERS).get_json()["value"]["interactive"] is True

    saved = client.put(f"{base}/sections/listening/answers/1", headers=HEADERS, json={"value": "Beside"})
    assert saved.status_code == 200

    submitted = client.post(f"{base}/sections/listening/submit", headers=HEADERS, json={})
    value = submitted.get_json()["value"]
    assert value["result"]["band"] == 9.0
    assert value["redirect"] == "reading"

    again = client.post(f"{base}/sections/listening/submit", headers=HEADERS, json={})
    assert again.status_code == 409
    assert again.get_json()["redirect"] == "reading"


def test_unknown_audio_action_and_section(client):
    session_id = _start(client)
    client.post(f"/api/sessions/{session_id}/sections/listening/enter", headers=HEADERS)

    assert client.post(f"/api/sessions/{session_id}/audio/rewind", headers=HEADERS).status_code == 400
    assert (
        client.post(f"/api/sessions/{session_id}/sections/grammar/enter", headers=HEADERS).status_code
        == 400
    )


def test_oracle_failure_is_retryable(client):
    session_id = _start(client)
    base = f"/api/sessions/{session_id}"
    for section in ("listening", "reading"):
        client.post(f"{base}/sections/{section}/enter", headers=HEADERS)
        client.post(f"{base}/sections/{section}/submit", headers=HEADERS, json={})
    client.post(f"{base}/sections/writing/enter", headers=HEADERS)

    response = client.post(
        f"{base}/sections/writing/submit", headers=HEADERS, json={"answers": {"1": "An essay"}}
    )

    assert response.status_code == 502
    body = response.get_json()
    assert body["kind"] == "evaluation_oracle_failure"
    assert body["retryable"] is True
    detail = client.get(base, headers=HEADERS).get_json()["value"]
    assert detail["currentSection"] == "writing"


def test_results_after_completion(client, monkeypatch):
    monkeypatch.setattr(
        mock_exam_sessions,
        "evaluate_section",
        lambda request: RubricResult(
            band=7.0, criteria={"1": {}}, task_bands={1: 7.0}, strengths=[], improvements=[]
        ),
    )
    session_id = _start(client)
    base = f"/api/sessions/{session_id}"

    early = client.get(f"{base}/results", headers=HEADERS)
    assert early.status_code == 409

    answers = {"listening": {}, "reading": {"1": "true"}, "writing": {"1": "Essay"}, "speaking": {"1": "Talk"}}
    for section, payload in answers.items():
        client.post(f"{base}/sections/{section}/enter", headers=HEADERS)
        last = client.post(f"{base}/sections/{section}/submit", headers=HEADERS, json={"answers": payload})
    assert last.get_json()["value"]["redirect"] == "results"

    results = client.get(f"{base}/results", headers=HEADERS).get_json()["value"]
    # listening 1.0, reading 9.0, writing 7.0, speaking 7.0 -> 6.0
    assert results["overallBand"] == 6.0
    assert results["descriptor"] == "Competent User"
    reading = next(item for item in results["sections"] if item["section"] == "reading")
    assert reading["questions"][0]["correct"] is True
    assert reading["questions"][0]["answer"] == "TRUE"

    other = client.get(f"{base}/results", headers={"X-Candidate-Id": "someone-else"})
    assert other.status_code == 404


def test_practice_endpoints(client):
    papers = client.get("/api/practice/papers?section=reading", headers=HEADERS).get_json()["value"]
    assert [paper["title"] for paper in papers] == ["Practice reading"]
    paper_id = papers[0]["paperId"]

    submitted = client.post(
        f"/api/practice/papers/{paper_id}/submit",
        headers=HEADERS,
        json={"answers": {"1": "b"}, "timeSpentSeconds": 90},
    )
    assert submitted.status_code == 201
    assert submitted.get_json()["value"]["band"] == 9.0

    history = client.get("/api/practice/attempts", headers=HEADERS).get_json()["value"]
    assert [item["paperId"] for item in history] == [paper_id]
    assert client.get("/api/practice/attempts?section=essay", headers=HEADERS).status_code == 400


def test_premium_mock_test_needs_premium_tier(client):
    import_payload(
        {
            "kind": "mock-test",
            "slug": "premium-1",
            "title": "Premium 1",
            "isPremium": True,
            "papers": [
                {
                    "section": "listening",
                    "title": "Listening",
                    "audioUrl": "/audio/2.mp3",
                    "questions": [{"number": 1, "type": "form-field", "answer": "Leeds"}],
                },
                {
                    "section": "reading",
                    "title": "Reading",
                    "questions": [{"number": 1, "type": "true-false-not-given", "answer": "FALSE"}],
                },
                {"section": "writing", "title": "Writing", "tasks": [{"number": 1, "prompt": "Essay"}]},
                {"section": "speaking", "title": "Speaking", "tasks": [{"number": 1, "prompt": "Talk"}]},
            ],
        }
    )

    refused = client.post("/api/mock-tests/2/sessions", headers=HEADERS, json={})
    assert refused.status_code == 403
    assert refused.get_json()["kind"] == "premium_required"

    allowed = client.post(
        "/api/mock-tests/2/sessions", headers={**HEADERS, "X-Candidate-Tier": "premium"}, json={}
    )
    assert allowed.status_code == 201


def test_session_list_failures_use_the_error_envelope(client, monkeypatch):
    _start(client)

    def failing(session):
        raise PersistenceFailure("Your progress could not be saved. Please try again.")

    monkeypatch.setattr(routes, "ensure_session_active", failing)
    response = client.get("/api/sessions", headers=HEADERS)

    assert response.status_code == 503
    body = response.get_json()
    assert body["ok"] is False
    assert body["kind"] == "persistence_failure"
    assert body["retryable"] is True


def test_progress_reports_each_skill(client):
    papers = client.get("/api/practice/papers", headers=HEADERS).get_json()["value"]
    client.post(
        f"/api/practice/papers/{papers[0]['paperId']}/submit",
        headers=HEADERS,
        json={"answers": {"1": "B"}},
    )

    progress = client.get("/api/progress", headers=HEADERS).get_json()["value"]

    reading = next(skill for skill in progress["skills"] if skill["section"] == "reading")
    assert reading["attempts"] == 1
    assert reading["practiceAttempts"] == 1
    assert reading["bestBand"] == 9.0
    assert progress["recentActivity"][0]["source"] == "practice"
    assert progress["completedMockTests"] == 0
    assert client.get("/api/progress?section=grammar", headers=HEADERS).status_code == 400
