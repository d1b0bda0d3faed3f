"""Shared pytest fixtures for the narrative engine test suite."""

import pytest
from unittest.mock import AsyncMock


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite database path."""
    return tmp_path / "test_narrative.db"


@pytest.fixture
def db(tmp_db_path):
    """Return an initialized Database instance backed by a temp file."""
    from models.database import Database
    return Database(tmp_db_path)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    """Return a Settings instance with all paths pointing to tmp_path."""
    from config.settings import Settings
    return Settings(
        _env_file=None,
        sqlite_db_path=tmp_path / "narrative.db",
        log_dir=tmp_path / "logs",
        canon_check_timeout_seconds=2.0,
    )


@pytest.fixture
def engine(db, settings):
    """Return a NarrativeEngine over the temp database with the keyword classifier."""
    from engine.service import NarrativeEngine
    return NarrativeEngine(db, settings)


# ---------------------------------------------------------------------------
# LLM Client mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_agent_sdk():
    """Return an AsyncMock standing in for AgentSDKClient."""
    llm = AsyncMock()
    llm.chat.return_value = "test response"
    llm.chat_json.return_value = {"violations": []}
    return llm


# ---------------------------------------------------------------------------
# Sample data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_series(engine):
    """Insert and return a three-book series."""
    return engine.create_series(
        "author-1",
        "The Ember Crown",
        "fantasy",
        target_book_count=3,
        tone="Somber, hopeful",
        pacing="Slow burn",
        premise="A fallen queen reclaims a burning kingdom.",
        themes=["sacrifice", "legacy"],
    )


@pytest.fixture
def aria_world(engine, sample_series):
    """Aria dies at the end of book 1; a hard rule forbids her return.

    Returns a dict with the series and the created entities.
    """
    from models.enums import (
        CanonLockLevel, CharacterRole, CharacterStatus, RuleCategory, RuleType,
    )
    sid = sample_series.id
    aria = engine.create_character(
        sid, "Aria", role=CharacterRole.PROTAGONIST, status=CharacterStatus.DECEASED,
        canon_lock_level=CanonLockLevel.HARD,
    )
    bram = engine.create_character(sid, "Bram", role=CharacterRole.SUPPORTING)
    rule = engine.create_canon_rule(
        sid,
        "No resurrection",
        "Aria stays dead for the rest of the series.",
        rule_category=RuleCategory.CHARACTER,
        rule_type=RuleType.MUST_NOT,
        lock_level=CanonLockLevel.HARD,
        applies_from_book=2,
        invalid_examples=["Aria came back to life", "Aria was alive"],
        violation_message="Aria cannot return from death",
    )
    return {"series": sample_series, "aria": aria, "bram": bram, "rule": rule}
