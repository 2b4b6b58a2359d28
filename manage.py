from __future__ import annotations

import json
from pathlib import Path

import click

from mockexam import create_app, db
from mockexam.services.authoring import import_payload
from mockexam.services.outcomes import ServiceError

app = create_app()


LISTENING_QUESTIONS = [
    {"number": 1, "type": "form-field", "group": "Questions 1-4", "prompt": "Surname of the caller", "answer": "Whitfield"},
    {"number": 2, "type": "form-field", "group": "Questions 1-4", "prompt": "Postcode", "answer": "BH7 4QD"},
    {"number": 3, "type": "fill-blank", "group": "Questions 1-4", "prompt": "The bike store is ____ the station.", "answer": "near/beside/next to"},
    {"number": 4, "type": "fill-blank", "group": "Questions 1-4", "prompt": "Lockers cost ____ and ____ per day.", "answer": ["two pounds/£2", "fifty pence/50p"]},
    {"number": 5, "type": "single-choice", "group": "Questions 5-6", "prompt": "Why did the speaker move?", "options": ["For work", "For study", "For family"], "answer": 1},
    {"number": 6, "type": "multi-choice-set", "group": "Questions 5-6", "prompt": "Which TWO facilities are free?", "options": ["A", "B", "C", "D", "E"], "answer": ["B", "D"]},
    {"number": 7, "type": "matching", "group": "Questions 7-8", "prompt": "Library", "options": ["A", "B", "C", "D"], "answer": "C"},
    {"number": 8, "type": "matching", "group": "Questions 7-8", "prompt": "Sports hall", "options": ["A", "B", "C", "D"], "answer": "A"},
]

READING_QUESTIONS = [
    {"number": 1, "type": "true-false-not-given", "group": "Questions 1-3", "prompt": "Honeybees were first domesticated in Europe.", "answer": "FALSE"},
    {"number": 2, "type": "true-false-not-given", "group": "Questions 1-3", "prompt": "Colony losses rose sharply after 2006.", "answer": "TRUE"},
    {"number": 3, "type": "true-false-not-given", "group": "Questions 1-3", "prompt": "Most beekeepers work part-time.", "answer": "NOT GIVEN"},
    {"number": 4, "type": "fill-blank", "group": "Questions 4-5", "prompt": "Worker bees communicate through a ____.", "answer": "waggle dance/dance"},
    {"number": 5, "type": "fill-blank", "group": "Questions 4-5", "prompt": "A single hive may contain up to ____ bees.", "answer": "60,000/sixty thousand"},
    {"number": 6, "type": "single-choice", "group": "Question 6", "prompt": "What is the writer's main purpose?", "options": ["To warn", "To explain", "To compare", "To entertain"], "answer": 1},
]

WRITING_TASKS = [
    {"number": 1, "prompt": "The chart shows household recycling rates in four countries. Summarise the information.", "minWords": 150},
    {"number": 2, "prompt": "Some people think cities should ban cars from their centres. Discuss both views and give your opinion.", "minWords": 250},
]

SPEAKING_TASKS = [
    {"number": 1, "prompt": "Part 1: Talk about your home town."},
    {"number": 2, "prompt": "Part 2: Describe a journey you remember well."},
    {"number": 3, "prompt": "Part 3: How has travel changed in your country?"},
]


def _demo_payloads() -> list[dict]:
    mock_test = {
        "kind": "mock-test",
        "slug": "academic-mock-1",
        "title": "Academic Mock Test 1",
        "description": "A full four-skill mock test under exam timing.",
        "papers": [
            {
                "section": "listening",
                "title": "Listening: Community Centre",
                "audioUrl": "/static/audio/academic-mock-1.mp3",
                "questions": LISTENING_QUESTIONS,
            },
            {
                "section": "reading",
                "title": "Reading: The Life of Bees",
                "passage": "Honeybees have lived alongside people for thousands of years...",
                "questions": READING_QUESTIONS,
            },
            {"section": "writing", "title": "Writing: Recycling and Cities", "tasks": WRITING_TASKS},
            {"section": "speaking", "title": "Speaking: Places and Journeys", "tasks": SPEAKING_TASKS},
        ],
    }
    practice = [
        {
            "kind": "practice-paper",
            "section": "reading",
            "title": "Reading practice: The Life of Bees",
            "difficulty": "easy",
            "durationMinutes": 20,
            "passage": "Honeybees have lived alongside people for thousands of years...",
            "questions": READING_QUESTIONS,
        },
        {
            "kind": "practice-paper",
            "section": "writing",
            "title": "Writing practice: Task 2 opinion essay",
            "durationMinutes": 40,
            "tasks": [WRITING_TASKS[1]],
        },
    ]
    return [mock_test, *practice]


@app.cli.command("init-db")
def init_db() -> None:
    """Initialise the database schema."""
    db.create_all()
    app.logger.info("Database tables created")


@app.cli.command("seed-demo")
def seed_demo() -> None:
    """Reset the database and load a demo mock test with practice papers."""
    db.drop_all()
    db.create_all()
    for payload in _demo_payloads():
        import_payload(payload)
    app.logger.info("Demo data created: mock test 'academic-mock-1' and two practice papers")


@app.cli.command("import-paper")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def import_paper(path: Path) -> None:
    """Import a mock test or practice paper from a JSON authoring file."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path} is not valid JSON: {exc}") from exc
    try:
        record = import_payload(payload)
    except ServiceError as exc:
        raise click.ClickException(str(exc)) from exc
    app.logger.info("Imported '%s' from %s", record.title, path)
