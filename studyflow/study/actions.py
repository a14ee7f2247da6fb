"""
Action surface for the study store.

Actions describe what happened; the reducer decides how state changes.
Every identifier and timestamp is produced here so the reducer stays a
pure function of (state, action).

Usage:
    store.dispatch(Actions.add_subject(name="Direito Penal", color="#ff0000"))
    store.dispatch(Actions.toggle_topic_completed(subject_id, topic_id))
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from studyflow.study.models import (
    LogSource,
    PomodoroSettings,
    SchedulePlan,
    StudyData,
    StudyLogEntry,
    StudySequence,
    StudySequenceItem,
    Subject,
    SubjectTemplate,
)
from studyflow.study.templates import instantiate_template


class ActionType(str, Enum):
    """All action types understood by study_reducer."""

    # Hydration
    SET_STATE = "SET_STATE"

    # Subjects and topics
    ADD_SUBJECT = "ADD_SUBJECT"
    UPDATE_SUBJECT = "UPDATE_SUBJECT"
    DELETE_SUBJECT = "DELETE_SUBJECT"
    ADD_TOPIC = "ADD_TOPIC"
    TOGGLE_TOPIC_COMPLETED = "TOGGLE_TOPIC_COMPLETED"
    DELETE_TOPIC = "DELETE_TOPIC"
    UPDATE_TOPIC = "UPDATE_TOPIC"
    SET_REVISION_PROGRESS = "SET_REVISION_PROGRESS"

    # Study log
    ADD_STUDY_LOG = "ADD_STUDY_LOG"
    UPDATE_STUDY_LOG = "UPDATE_STUDY_LOG"
    DELETE_STUDY_LOG = "DELETE_STUDY_LOG"

    # Study sequence
    SAVE_STUDY_SEQUENCE = "SAVE_STUDY_SEQUENCE"
    RESET_STUDY_SEQUENCE = "RESET_STUDY_SEQUENCE"
    ADVANCE_SEQUENCE = "ADVANCE_SEQUENCE"
    SAVE_AS_NEW_SEQUENCE = "SAVE_AS_NEW_SEQUENCE"
    LOAD_SAVED_SEQUENCE = "LOAD_SAVED_SEQUENCE"
    DELETE_SAVED_SEQUENCE = "DELETE_SAVED_SEQUENCE"

    # Settings
    UPDATE_POMODORO_SETTINGS = "UPDATE_POMODORO_SETTINGS"

    # Templates
    SAVE_TEMPLATE = "SAVE_TEMPLATE"
    LOAD_TEMPLATE = "LOAD_TEMPLATE"
    DELETE_TEMPLATE = "DELETE_TEMPLATE"

    # Schedule plans
    ADD_SCHEDULE_PLAN = "ADD_SCHEDULE_PLAN"
    UPDATE_SCHEDULE_PLAN = "UPDATE_SCHEDULE_PLAN"
    DELETE_SCHEDULE_PLAN = "DELETE_SCHEDULE_PLAN"


@dataclass(frozen=True)
class Action:
    """An immutable description of a state change."""

    type: ActionType | str
    payload: dict[str, Any] = field(default_factory=dict)


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Actions:
    """
    Action creators.

    Usage:
        store.dispatch(Actions.add_study_log(subject_id, topic_id, duration=25))
    """

    @staticmethod
    def set_state(state: StudyData) -> Action:
        """Replace the whole state, used when hydrating from storage."""
        return Action(ActionType.SET_STATE, {"state": state})

    # -------------------------------------------------------------------------
    # Subjects
    # -------------------------------------------------------------------------

    @staticmethod
    def add_subject(
        name: str,
        color: str,
        study_duration: int | None = None,
        description: str | None = None,
        material_url: str | None = None,
        subject_id: str | None = None,
    ) -> Action:
        subject = Subject(
            id=subject_id or new_id(),
            name=name,
            color=color,
            study_duration=study_duration,
            description=description,
            material_url=material_url,
        )
        return Action(ActionType.ADD_SUBJECT, {"subject": subject})

    @staticmethod
    def update_subject(subject_id: str, **changes: Any) -> Action:
        """Patch name, color, description, study_duration or material_url."""
        return Action(ActionType.UPDATE_SUBJECT, {"id": subject_id, "changes": changes})

    @staticmethod
    def delete_subject(subject_id: str) -> Action:
        return Action(ActionType.DELETE_SUBJECT, {"id": subject_id})

    # -------------------------------------------------------------------------
    # Topics
    # -------------------------------------------------------------------------

    @staticmethod
    def add_topic(
        subject_id: str,
        name: str,
        description: str | None = None,
        topic_id: str | None = None,
    ) -> Action:
        return Action(
            ActionType.ADD_TOPIC,
            {
                "subject_id": subject_id,
                "topic_id": topic_id or new_id(),
                "name": name,
                "description": description,
            },
        )

    @staticmethod
    def toggle_topic_completed(subject_id: str, topic_id: str) -> Action:
        return Action(
            ActionType.TOGGLE_TOPIC_COMPLETED,
            {"subject_id": subject_id, "topic_id": topic_id},
        )

    @staticmethod
    def delete_topic(subject_id: str, topic_id: str) -> Action:
        return Action(ActionType.DELETE_TOPIC, {"subject_id": subject_id, "topic_id": topic_id})

    @staticmethod
    def update_topic(subject_id: str, topic_id: str, **changes: Any) -> Action:
        """Patch name, description or is_completed of one topic."""
        return Action(
            ActionType.UPDATE_TOPIC,
            {"subject_id": subject_id, "topic_id": topic_id, "changes": changes},
        )

    @staticmethod
    def set_revision_progress(subject_id: str, progress: int) -> Action:
        return Action(
            ActionType.SET_REVISION_PROGRESS,
            {"subject_id": subject_id, "progress": progress},
        )

    # -------------------------------------------------------------------------
    # Study log
    # -------------------------------------------------------------------------

    @staticmethod
    def add_study_log(
        subject_id: str,
        topic_id: str,
        duration: int,
        date: str | None = None,
        start_page: int = 0,
        end_page: int = 0,
        questions_total: int = 0,
        questions_correct: int = 0,
        source: str = LogSource.MANUAL.value,
        sequence_item_index: int | None = None,
        log_id: str | None = None,
    ) -> Action:
        log = StudyLogEntry(
            id=log_id or new_id(),
            subject_id=subject_id,
            topic_id=topic_id,
            date=date or utc_now_iso(),
            duration=duration,
            start_page=start_page,
            end_page=end_page,
            questions_total=questions_total,
            questions_correct=questions_correct,
            source=source,
            sequence_item_index=sequence_item_index,
        )
        return Action(ActionType.ADD_STUDY_LOG, {"log": log})

    @staticmethod
    def update_study_log(log: StudyLogEntry) -> Action:
        return Action(ActionType.UPDATE_STUDY_LOG, {"log": log})

    @staticmethod
    def delete_study_log(log_id: str) -> Action:
        return Action(ActionType.DELETE_STUDY_LOG, {"id": log_id})

    # -------------------------------------------------------------------------
    # Study sequence
    # -------------------------------------------------------------------------

    @staticmethod
    def save_study_sequence(sequence: StudySequence | None) -> Action:
        """Install or edit a plan; None clears it."""
        return Action(ActionType.SAVE_STUDY_SEQUENCE, {"sequence": sequence})

    @staticmethod
    def reset_study_sequence() -> Action:
        return Action(ActionType.RESET_STUDY_SEQUENCE)

    @staticmethod
    def advance_sequence() -> Action:
        return Action(ActionType.ADVANCE_SEQUENCE)

    @staticmethod
    def save_as_new_sequence(
        name: str,
        items: Sequence[StudySequenceItem],
        sequence_id: str | None = None,
    ) -> Action:
        """Add a plan to the saved-plan library without touching the active one."""
        sequence = StudySequence(id=sequence_id or new_id(), name=name, sequence=tuple(items))
        return Action(ActionType.SAVE_AS_NEW_SEQUENCE, {"sequence": sequence})

    @staticmethod
    def load_saved_sequence(sequence_id: str) -> Action:
        return Action(ActionType.LOAD_SAVED_SEQUENCE, {"id": sequence_id})

    @staticmethod
    def delete_saved_sequence(sequence_id: str) -> Action:
        return Action(ActionType.DELETE_SAVED_SEQUENCE, {"id": sequence_id})

    @staticmethod
    def update_pomodoro_settings(settings: PomodoroSettings) -> Action:
        return Action(ActionType.UPDATE_POMODORO_SETTINGS, {"settings": settings})

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @staticmethod
    def save_template(name: str, template_id: str | None = None) -> Action:
        """Snapshot the current subjects under a new template."""
        return Action(ActionType.SAVE_TEMPLATE, {"id": template_id or new_id(), "name": name})

    @staticmethod
    def load_template(template: SubjectTemplate) -> Action:
        """Materialize a template with fresh subject and topic ids."""
        return Action(
            ActionType.LOAD_TEMPLATE,
            {"template_id": template.id, "subjects": instantiate_template(template, new_id)},
        )

    @staticmethod
    def delete_template(template_id: str) -> Action:
        return Action(ActionType.DELETE_TEMPLATE, {"id": template_id})

    # -------------------------------------------------------------------------
    # Schedule plans
    # -------------------------------------------------------------------------

    @staticmethod
    def add_schedule_plan(
        name: str,
        weekly_hours: float,
        session_duration: int,
        sessions_per_subject: Mapping[str, int] | None = None,
        pomodoro_mode: str = "automatic",
        plan_id: str | None = None,
        created_at: str | None = None,
    ) -> Action:
        plan = SchedulePlan(
            id=plan_id or new_id(),
            name=name,
            created_at=created_at or utc_now_iso(),
            weekly_hours=weekly_hours,
            session_duration=session_duration,
            pomodoro_mode=pomodoro_mode,
            sessions_per_subject=dict(sessions_per_subject or {}),
        )
        return Action(ActionType.ADD_SCHEDULE_PLAN, {"plan": plan})

    @staticmethod
    def update_schedule_plan(plan_id: str, **changes: Any) -> Action:
        return Action(ActionType.UPDATE_SCHEDULE_PLAN, {"id": plan_id, "changes": changes})

    @staticmethod
    def delete_schedule_plan(plan_id: str) -> Action:
        return Action(ActionType.DELETE_SCHEDULE_PLAN, {"id": plan_id})
