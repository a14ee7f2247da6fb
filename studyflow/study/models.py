"""Immutable records for the study domain.

Every record is a frozen dataclass; collections are tuples so a state
value can be shared between reducer calls without defensive copies.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum


class ItemType(str, Enum):
    """What a Pomodoro session is attached to."""

    TOPIC = "topic"
    REVISION = "revision"


class LogSource(str, Enum):
    """Where a study log entry came from."""

    MANUAL = "manual"
    POMODORO = "pomodoro"


@dataclass(frozen=True)
class Topic:
    id: str
    subject_id: str
    name: str
    order: int
    is_completed: bool = False
    description: str | None = None


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    color: str
    topics: tuple[Topic, ...] = ()
    revision_progress: int = 0
    study_duration: int | None = None  # minutes per sequence slot
    description: str | None = None
    material_url: str | None = None


@dataclass(frozen=True)
class StudyLogEntry:
    id: str
    subject_id: str
    topic_id: str
    date: str  # ISO-8601
    duration: int  # minutes
    start_page: int = 0
    end_page: int = 0
    questions_total: int = 0
    questions_correct: int = 0
    source: str = LogSource.MANUAL.value
    sequence_item_index: int | None = None


@dataclass(frozen=True)
class StudySequenceItem:
    subject_id: str
    total_time_studied: int = 0  # minutes


@dataclass(frozen=True)
class StudySequence:
    id: str
    name: str
    sequence: tuple[StudySequenceItem, ...] = ()


@dataclass(frozen=True)
class PomodoroTask:
    id: str
    name: str
    duration: int  # seconds


DEFAULT_POMODORO_TASKS: tuple[PomodoroTask, ...] = (
    PomodoroTask(id="task-1", name="Questões", duration=30 * 60),
    PomodoroTask(id="task-2", name="Anki", duration=10 * 60),
    PomodoroTask(id="task-3", name="Lei Seca", duration=20 * 60),
)


@dataclass(frozen=True)
class PomodoroSettings:
    tasks: tuple[PomodoroTask, ...] = DEFAULT_POMODORO_TASKS
    short_break_duration: int = 5 * 60
    long_break_duration: int = 15 * 60
    cycles_until_long_break: int = 4


@dataclass(frozen=True)
class TemplateTopic:
    name: str
    order: int


@dataclass(frozen=True)
class TemplateSubject:
    name: str
    color: str
    topics: tuple[TemplateTopic, ...] = ()
    study_duration: int | None = None
    description: str | None = None
    material_url: str | None = None


@dataclass(frozen=True)
class SubjectTemplate:
    id: str
    name: str
    subjects: tuple[TemplateSubject, ...] = ()


@dataclass(frozen=True)
class SchedulePlan:
    id: str
    name: str
    created_at: str  # ISO-8601
    weekly_hours: float
    session_duration: int  # minutes
    pomodoro_mode: str = "automatic"  # automatic | manual
    sessions_per_subject: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class StudyData:
    """Complete reducer state."""

    subjects: tuple[Subject, ...] = ()
    study_log: tuple[StudyLogEntry, ...] = ()  # newest first
    last_studied_date: str | None = None
    streak: int = 0
    study_sequence: StudySequence | None = None
    sequence_index: int = 0
    saved_study_sequences: tuple[StudySequence, ...] = ()
    pomodoro_settings: PomodoroSettings = field(default_factory=PomodoroSettings)
    templates: tuple[SubjectTemplate, ...] = ()
    schedule_plans: tuple[SchedulePlan, ...] = ()
    cycle_reset_count: int = 0


# =============================================================================
# Lookups
# =============================================================================


def find_subject(state: StudyData, subject_id: str) -> Subject | None:
    return next((s for s in state.subjects if s.id == subject_id), None)


def find_topic(state: StudyData, topic_id: str) -> Topic | None:
    for subject in state.subjects:
        for topic in subject.topics:
            if topic.id == topic_id:
                return topic
    return None


def find_log(state: StudyData, log_id: str) -> StudyLogEntry | None:
    return next((log for log in state.study_log if log.id == log_id), None)


def find_template(state: StudyData, template_id: str) -> SubjectTemplate | None:
    return next((t for t in state.templates if t.id == template_id), None)


def find_saved_sequence(state: StudyData, sequence_id: str) -> StudySequence | None:
    return next((s for s in state.saved_study_sequences if s.id == sequence_id), None)
