"""
Conversion between study records and plain JSON-compatible documents.

Documents are what the remote store and the local snapshot table hold.
Readers are lenient: missing optional keys fall back to record defaults
so older documents still load.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from studyflow.study.models import (
    PomodoroSettings,
    PomodoroTask,
    SchedulePlan,
    StudyData,
    StudyLogEntry,
    StudySequence,
    StudySequenceItem,
    Subject,
    SubjectTemplate,
    TemplateSubject,
    TemplateTopic,
    Topic,
)
from studyflow.study.revision import reclamp_subject

PROFILE_DOC_ID = "profile"
CURRENT_SEQUENCE_DOC_ID = "current"


def to_document(record: Any) -> dict[str, Any]:
    """Any study record as a JSON-compatible dict."""
    return json.loads(json.dumps(asdict(record)))


# =============================================================================
# Readers
# =============================================================================


def topic_from_document(doc: dict[str, Any]) -> Topic:
    return Topic(
        id=doc["id"],
        subject_id=doc["subject_id"],
        name=doc.get("name", ""),
        order=int(doc.get("order", 0)),
        is_completed=bool(doc.get("is_completed", False)),
        description=doc.get("description"),
    )


def subject_from_document(doc: dict[str, Any]) -> Subject:
    topics = sorted((topic_from_document(t) for t in doc.get("topics", [])), key=lambda t: t.order)
    return Subject(
        id=doc["id"],
        name=doc.get("name", ""),
        color=doc.get("color", ""),
        topics=tuple(topics),
        revision_progress=int(doc.get("revision_progress", 0)),
        study_duration=doc.get("study_duration"),
        description=doc.get("description"),
        material_url=doc.get("material_url"),
    )


def log_from_document(doc: dict[str, Any]) -> StudyLogEntry:
    return StudyLogEntry(
        id=doc["id"],
        subject_id=doc["subject_id"],
        topic_id=doc["topic_id"],
        date=doc["date"],
        duration=int(doc.get("duration", 0)),
        start_page=int(doc.get("start_page", 0)),
        end_page=int(doc.get("end_page", 0)),
        questions_total=int(doc.get("questions_total", 0)),
        questions_correct=int(doc.get("questions_correct", 0)),
        source=doc.get("source", "manual"),
        sequence_item_index=doc.get("sequence_item_index"),
    )


def sequence_from_document(doc: dict[str, Any] | None) -> StudySequence | None:
    if not doc:
        return None
    return StudySequence(
        id=doc["id"],
        name=doc.get("name", ""),
        sequence=tuple(
            StudySequenceItem(
                subject_id=item["subject_id"],
                total_time_studied=int(item.get("total_time_studied", 0)),
            )
            for item in doc.get("sequence", [])
        ),
    )


def settings_from_document(doc: dict[str, Any] | None) -> PomodoroSettings:
    if not doc:
        return PomodoroSettings()
    defaults = PomodoroSettings()
    tasks = doc.get("tasks")
    return PomodoroSettings(
        tasks=tuple(PomodoroTask(**task) for task in tasks) if tasks is not None else defaults.tasks,
        short_break_duration=int(doc.get("short_break_duration", defaults.short_break_duration)),
        long_break_duration=int(doc.get("long_break_duration", defaults.long_break_duration)),
        cycles_until_long_break=int(
            doc.get("cycles_until_long_break", defaults.cycles_until_long_break)
        ),
    )


def template_from_document(doc: dict[str, Any]) -> SubjectTemplate:
    return SubjectTemplate(
        id=doc["id"],
        name=doc.get("name", ""),
        subjects=tuple(
            TemplateSubject(
                name=s.get("name", ""),
                color=s.get("color", ""),
                topics=tuple(TemplateTopic(name=t["name"], order=int(t["order"])) for t in s.get("topics", [])),
                study_duration=s.get("study_duration"),
                description=s.get("description"),
                material_url=s.get("material_url"),
            )
            for s in doc.get("subjects", [])
        ),
    )


def schedule_from_document(doc: dict[str, Any]) -> SchedulePlan:
    return SchedulePlan(
        id=doc["id"],
        name=doc.get("name", ""),
        created_at=doc.get("created_at", ""),
        weekly_hours=float(doc.get("weekly_hours", 0)),
        session_duration=int(doc.get("session_duration", 0)),
        pomodoro_mode=doc.get("pomodoro_mode", "automatic"),
        sessions_per_subject=dict(doc.get("sessions_per_subject", {})),
    )


# =============================================================================
# Profile and whole-state snapshots
# =============================================================================


def profile_document(state: StudyData) -> dict[str, Any]:
    """The settings/profile document: counters plus Pomodoro settings."""
    return {
        "streak": state.streak,
        "last_studied_date": state.last_studied_date,
        "sequence_index": state.sequence_index,
        "cycle_reset_count": state.cycle_reset_count,
        "pomodoro_settings": to_document(state.pomodoro_settings),
    }


def _clamped_index(index: Any, sequence: StudySequence | None) -> int:
    """A persisted cursor pulled back into [0, len(plan)]."""
    length = len(sequence.sequence) if sequence is not None else 0
    return max(0, min(int(index or 0), length))


def state_to_document(state: StudyData) -> dict[str, Any]:
    return to_document(state)


def state_from_document(doc: dict[str, Any]) -> StudyData:
    sequence = sequence_from_document(doc.get("study_sequence"))
    return StudyData(
        subjects=tuple(reclamp_subject(subject_from_document(s)) for s in doc.get("subjects", [])),
        study_log=tuple(log_from_document(log) for log in doc.get("study_log", [])),
        last_studied_date=doc.get("last_studied_date"),
        streak=int(doc.get("streak", 0)),
        study_sequence=sequence,
        sequence_index=_clamped_index(doc.get("sequence_index", 0), sequence),
        saved_study_sequences=tuple(
            sequence_from_document(s) for s in doc.get("saved_study_sequences", []) if s
        ),
        pomodoro_settings=settings_from_document(doc.get("pomodoro_settings")),
        templates=tuple(template_from_document(t) for t in doc.get("templates", [])),
        schedule_plans=tuple(schedule_from_document(p) for p in doc.get("schedule_plans", [])),
        cycle_reset_count=int(doc.get("cycle_reset_count", 0)),
    )


def state_from_collections(collections: dict[str, dict[str, dict[str, Any]]]) -> StudyData:
    """
    Rebuild state from a full remote reload.

    Every document in "sequences" other than "current" is a saved plan.
    Revision progress and the plan cursor are clamped, since the remote
    may hold values written against an older subject or plan.

    Args:
        collections: Collection name -> {doc_id: document}, as returned by
            RemoteStore.fetch_all for each collection

    Returns:
        StudyData with logs ordered newest first
    """
    profile = collections.get("settings", {}).get(PROFILE_DOC_ID, {})
    sequence_docs = collections.get("sequences", {})
    sequence = sequence_from_document(sequence_docs.get(CURRENT_SEQUENCE_DOC_ID))

    logs = sorted(
        (log_from_document(d) for d in collections.get("logs", {}).values()),
        key=lambda log: log.date,
        reverse=True,
    )
    return StudyData(
        subjects=tuple(
            reclamp_subject(subject_from_document(d))
            for d in collections.get("subjects", {}).values()
        ),
        study_log=tuple(logs),
        last_studied_date=profile.get("last_studied_date"),
        streak=int(profile.get("streak", 0)),
        study_sequence=sequence,
        sequence_index=_clamped_index(profile.get("sequence_index", 0), sequence),
        saved_study_sequences=tuple(
            sequence_from_document(d)
            for doc_id, d in sequence_docs.items()
            if doc_id != CURRENT_SEQUENCE_DOC_ID and d
        ),
        pomodoro_settings=settings_from_document(profile.get("pomodoro_settings")),
        templates=tuple(
            template_from_document(d) for d in collections.get("templates", {}).values()
        ),
        schedule_plans=tuple(
            schedule_from_document(d) for d in collections.get("schedules", {}).values()
        ),
        cycle_reset_count=int(profile.get("cycle_reset_count", 0)),
    )
