from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam import create_app, db
from mockexam.config import TestConfig
from mockexam.models import MockTest, Question, SectionPaper
from mockexam.services.authoring import AuthoringError, import_payload, validate_question


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _paper(section: str, **extra) -> dict:
    payload = {"section": section, "title": section.title()}
    if section in ("listening", "reading"):
        payload["questions"] = [{"number": 1, "type": "form-field", "answer": "Whitfield"}]
    else:
        payload["tasks"] = [{"number": 1, "prompt": "Prompt"}]
    if section == "listening":
        payload["audioUrl"] = "/audio/a.mp3"
    payload.update(extra)
    return payload


def _mock_test(**extra) -> dict:
    payload = {
        "kind": "mock-test",
        "slug": "academic-1",
        "title": "Academic 1",
        "papers": [_paper(name) for name in ("listening", "reading", "writing", "speaking")],
    }
    payload.update(extra)
    return payload


def test_import_mock_test_applies_default_durations(app):
    mock_test = import_payload(_mock_test())

    assert isinstance(mock_test, MockTest)
    durations = {paper.section: paper.duration_minutes for paper in mock_test.papers}
    assert durations == {"listening": 30, "reading": 60, "writing": 60, "speaking": 15}
    assert Question.query.count() == 2


def test_mock_test_needs_all_four_papers(app):
    payload = _mock_test(papers=[_paper("listening"), _paper("reading"), _paper("writing")])
    with pytest.raises(AuthoringError):
        import_payload(payload)
    assert MockTest.query.count() == 0


def test_duplicate_slug_is_rejected(app):
    import_payload(_mock_test())
    with pytest.raises(AuthoringError):
        import_payload(_mock_test())


def test_practice_paper_has_no_mock_test(app):
    paper = import_payload({"kind": "practice-paper", **_paper("writing")})
    assert isinstance(paper, SectionPaper)
    assert paper.is_practice is True


@pytest.mark.parametrize(
    "question",
    [
        {"number": 1, "type": "fill-blank", "answer": ""},
        {"number": 1, "type": "fill-blank", "answer": ["near", " "]},
        {"number": 1, "type": "essay", "answer": "x"},
        {"number": 1, "answer": "x"},
        {"number": 0, "type": "form-field", "answer": "x"},
        {"number": 1, "type": "single-choice", "options": ["a", "b"], "answer": 4},
        {"number": 1, "type": "single-choice", "options": ["a", "b"], "answer": "b"},
        {"number": 1, "type": "single-choice", "answer": 0},
        {"number": 1, "type": "multi-choice-set", "options": ["A", "B"], "answer": "A"},
        {"number": 1, "type": "matching", "answer": ["A", "B"]},
    ],
)
def test_question_invariants(question):
    with pytest.raises(AuthoringError):
        validate_question(question)


def test_valid_question_is_normalised():
    fields = validate_question(
        {"number": "3", "type": "Single-Choice", "options": ["a", "b", "c"], "answer": "2"}
    )
    assert fields["number"] == 3
    assert fields["question_type"] == "single-choice"
    assert fields["answer_key"] == 2


def test_duplicate_question_numbers_are_rejected(app):
    paper = _paper("reading")
    paper["questions"] = paper["questions"] * 2
    with pytest.raises(AuthoringError):
        import_payload({"kind": "practice-paper", **paper})


def test_unknown_kind_is_rejected(app):
    with pytest.raises(AuthoringError):
        import_payload({"kind": "quiz"})


@pytest.mark.parametrize(
    "extra",
    [
        {"durationMinutes": "an hour"},
        {"tasks": [{"number": 1, "prompt": "Prompt", "minWords": "many"}]},
    ],
)
def test_non_numeric_paper_settings_are_authoring_errors(app, extra):
    with pytest.raises(AuthoringError):
        import_payload({"kind": "practice-paper", **_paper("writing", **extra)})
    assert SectionPaper.query.count() == 0
