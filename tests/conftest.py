"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from studyflow.study.models import (  # noqa: E402
    PomodoroSettings,
    PomodoroTask,
    StudyData,
    StudySequence,
    StudySequenceItem,
    Subject,
    Topic,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite + in-memory remote)")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


def make_subject(
    subject_id="math",
    name="Matemática",
    topics=0,
    completed=(),
    study_duration=None,
    revision_progress=0,
):
    """Subject with `topics` topics ordered 0..n-1; `completed` holds the orders marked done."""
    return Subject(
        id=subject_id,
        name=name,
        color="#ff0000",
        topics=tuple(
            Topic(
                id=f"{subject_id}-t{order}",
                subject_id=subject_id,
                name=f"Topic {order}",
                order=order,
                is_completed=order in completed,
            )
            for order in range(topics)
        ),
        revision_progress=revision_progress,
        study_duration=study_duration,
    )


def make_sequence(*subject_ids, studied=None, sequence_id="plan-1"):
    studied = studied or {}
    return StudySequence(
        id=sequence_id,
        name="Plan",
        sequence=tuple(
            StudySequenceItem(subject_id=s, total_time_studied=studied.get(i, 0))
            for i, s in enumerate(subject_ids)
        ),
    )


@pytest.fixture
def subject_factory():
    return make_subject


@pytest.fixture
def sequence_factory():
    return make_sequence


@pytest.fixture
def two_subject_state():
    """Two subjects with goals, a rotation plan [math, law, math], cursor at 0."""
    return StudyData(
        subjects=(
            make_subject("math", "Matemática", topics=3, study_duration=60),
            make_subject("law", "Direito", topics=2, study_duration=30),
        ),
        study_sequence=make_sequence("math", "law", "math"),
        sequence_index=0,
    )


@pytest.fixture
def short_pomodoro_settings():
    """Tasks of 30s and 10s, long break every 2nd cycle."""
    return PomodoroSettings(
        tasks=(
            PomodoroTask(id="a", name="Questões", duration=30),
            PomodoroTask(id="b", name="Anki", duration=10),
        ),
        short_break_duration=5,
        long_break_duration=15,
        cycles_until_long_break=2,
    )


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary database with no remote."""
    return Settings(
        state_db_path=tmp_path / "state.db",
        remote_url=None,
        persist_quiet_period_seconds=1.0,
        sync_max_retries=3,
        sync_backoff_base_seconds=2.0,
    )
