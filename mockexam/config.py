import os
from pathlib import Path

from sqlalchemy.engine import URL


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() not in {"0", "false", "no"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    default_db_path = Path(__file__).resolve().parent.parent / "instance" / "mockexam.db"
    default_db_uri = URL.create(
        drivername="sqlite",
        database=str(default_db_path),
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", str(default_db_uri))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity is established upstream; the gateway forwards the candidate id.
    CANDIDATE_HEADER = os.environ.get("CANDIDATE_HEADER", "X-Candidate-Id")
    # "premium" unlocks premium mock tests.
    CANDIDATE_TIER_HEADER = os.environ.get("CANDIDATE_TIER_HEADER", "X-Candidate-Tier")

    EVALUATION_ORACLE_ENABLED = _flag("EVALUATION_ORACLE_ENABLED", "1")
    EVALUATION_ORACLE_BASE_URL = os.environ.get(
        "EVALUATION_ORACLE_BASE_URL", "http://localhost:18899"
    )
    EVALUATION_ORACLE_TOKEN = os.environ.get("EVALUATION_ORACLE_TOKEN", "")
    EVALUATION_ORACLE_TIMEOUT = int(os.environ.get("EVALUATION_ORACLE_TIMEOUT", "60"))
    EVALUATION_ORACLE_WRITING_URL = os.environ.get(
        "EVALUATION_ORACLE_WRITING_URL", EVALUATION_ORACLE_BASE_URL
    )
    EVALUATION_ORACLE_SPEAKING_URL = os.environ.get(
        "EVALUATION_ORACLE_SPEAKING_URL", EVALUATION_ORACLE_BASE_URL
    )
    EVALUATION_ORACLE_WRITING_TIMEOUT = int(
        os.environ.get("EVALUATION_ORACLE_WRITING_TIMEOUT", EVALUATION_ORACLE_TIMEOUT)
    )
    EVALUATION_ORACLE_SPEAKING_TIMEOUT = int(
        os.environ.get("EVALUATION_ORACLE_SPEAKING_TIMEOUT", EVALUATION_ORACLE_TIMEOUT)
    )
    EVALUATION_ORACLE_ENDPOINTS = {
        "writing": {
            "base_url": EVALUATION_ORACLE_WRITING_URL,
            "token": EVALUATION_ORACLE_TOKEN,
            "timeout": EVALUATION_ORACLE_WRITING_TIMEOUT,
        },
        "speaking": {
            "base_url": EVALUATION_ORACLE_SPEAKING_URL,
            "token": EVALUATION_ORACLE_TOKEN,
            "timeout": EVALUATION_ORACLE_SPEAKING_TIMEOUT,
        },
    }

    # "academic-reading" or "general-reading"
    READING_BAND_SCALE = os.environ.get("READING_BAND_SCALE", "academic-reading")
    AUDIO_WARNING_SECONDS = int(os.environ.get("AUDIO_WARNING_SECONDS", "2"))
    AUTO_SUBMIT_RETRY_SECONDS = int(os.environ.get("AUTO_SUBMIT_RETRY_SECONDS", "1"))
    SECTION_TIMER_SCHEDULER = os.environ.get("SECTION_TIMER_SCHEDULER", "thread")
    SPEAKING_PREPARATION_SECONDS = int(os.environ.get("SPEAKING_PREPARATION_SECONDS", "60"))
    SPEAKING_RESPONSE_SECONDS = int(os.environ.get("SPEAKING_RESPONSE_SECONDS", "120"))


class TestConfig(Config):
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TESTING = True
    EVALUATION_ORACLE_ENABLED = False
    SECTION_TIMER_SCHEDULER = "manual"
