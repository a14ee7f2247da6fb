"""
Study store reducer.

study_reducer(state, action) -> state is pure and total: every handler
builds a new StudyData, nothing raises, and unknown actions or references
to ids that do not exist hand back the input state untouched.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

from loguru import logger

from studyflow.study.actions import Action, ActionType
from studyflow.study.models import (
    PomodoroSettings,
    SchedulePlan,
    StudyData,
    StudyLogEntry,
    StudySequence,
    Subject,
    Topic,
    find_log,
    find_saved_sequence,
    find_subject,
    find_template,
)
from studyflow.study.revision import clamp_progress, reclamp_subject
from studyflow.study.sequence_tracker import (
    apply_duration_change,
    credit_log,
    debit_log,
    next_streak,
    zero_sequence,
)
from studyflow.study.templates import snapshot_template

SUBJECT_FIELDS = frozenset({"name", "color", "description", "study_duration", "material_url"})
TOPIC_FIELDS = frozenset({"name", "description", "is_completed"})
SCHEDULE_FIELDS = frozenset(
    {"name", "weekly_hours", "session_duration", "pomodoro_mode", "sessions_per_subject"}
)


def _pick(changes: Any, allowed: frozenset[str]) -> dict[str, Any]:
    if not isinstance(changes, dict):
        return {}
    return {key: value for key, value in changes.items() if key in allowed}


def _map_subject(
    state: StudyData,
    subject_id: str | None,
    update: Callable[[Subject], Subject | None],
) -> StudyData:
    """Apply update to one subject; a None result or missing id leaves state alone."""
    subject = find_subject(state, subject_id) if subject_id else None
    if subject is None:
        return state
    updated = update(subject)
    if updated is None or updated is subject:
        return state
    return replace(
        state,
        subjects=tuple(updated if s.id == subject_id else s for s in state.subjects),
    )


def _goal_minutes(state: StudyData, subject_id: str) -> int:
    subject = find_subject(state, subject_id)
    if subject is None or not subject.study_duration:
        return 0
    return subject.study_duration


# =============================================================================
# Subjects and topics
# =============================================================================


def _add_subject(state: StudyData, payload: dict[str, Any]) -> StudyData:
    subject = payload.get("subject")
    if not isinstance(subject, Subject) or find_subject(state, subject.id) is not None:
        return state
    return replace(state, subjects=state.subjects + (subject,))


def _update_subject(state: StudyData, payload: dict[str, Any]) -> StudyData:
    changes = _pick(payload.get("changes"), SUBJECT_FIELDS)
    if not changes:
        return state
    return _map_subject(state, payload.get("id"), lambda s: replace(s, **changes))


def _delete_subject(state: StudyData, payload: dict[str, Any]) -> StudyData:
    subject_id = payload.get("id")
    if find_subject(state, subject_id) is None:
        return state
    return replace(state, subjects=tuple(s for s in state.subjects if s.id != subject_id))


def _add_topic(state: StudyData, payload: dict[str, Any]) -> StudyData:
    subject_id = payload.get("subject_id")
    topic_id = payload.get("topic_id")
    if not topic_id:
        return state

    def add(subject: Subject) -> Subject:
        topic = Topic(
            id=topic_id,
            subject_id=subject.id,
            name=payload.get("name", ""),
            order=len(subject.topics),
            description=payload.get("description"),
        )
        return replace(subject, topics=subject.topics + (topic,))

    return _map_subject(state, subject_id, add)


def _with_topic(
    state: StudyData,
    payload: dict[str, Any],
    update: Callable[[Topic], Topic],
) -> StudyData:
    topic_id = payload.get("topic_id")

    def apply(subject: Subject) -> Subject | None:
        if not any(t.id == topic_id for t in subject.topics):
            return None
        topics = tuple(update(t) if t.id == topic_id else t for t in subject.topics)
        return reclamp_subject(replace(subject, topics=topics))

    return _map_subject(state, payload.get("subject_id"), apply)


def _toggle_topic(state: StudyData, payload: dict[str, Any]) -> StudyData:
    return _with_topic(state, payload, lambda t: replace(t, is_completed=not t.is_completed))


def _update_topic(state: StudyData, payload: dict[str, Any]) -> StudyData:
    changes = _pick(payload.get("changes"), TOPIC_FIELDS)
    if not changes:
        return state
    return _with_topic(state, payload, lambda t: replace(t, **changes))


def _delete_topic(state: StudyData, payload: dict[str, Any]) -> StudyData:
    topic_id = payload.get("topic_id")

    def remove(subject: Subject) -> Subject | None:
        remaining = [t for t in subject.topics if t.id != topic_id]
        if len(remaining) == len(subject.topics):
            return None
        topics = tuple(replace(t, order=index) for index, t in enumerate(remaining))
        return reclamp_subject(replace(subject, topics=topics))

    return _map_subject(state, payload.get("subject_id"), remove)


def _set_revision_progress(state: StudyData, payload: dict[str, Any]) -> StudyData:
    progress = payload.get("progress")
    if not isinstance(progress, int):
        return state
    return _map_subject(
        state,
        payload.get("subject_id"),
        lambda s: replace(s, revision_progress=clamp_progress(s, progress)),
    )


# =============================================================================
# Study log
# =============================================================================


def _add_study_log(state: StudyData, payload: dict[str, Any]) -> StudyData:
    log = payload.get("log")
    if not isinstance(log, StudyLogEntry) or find_subject(state, log.subject_id) is None:
        return state
    if find_log(state, log.id) is not None:
        return state

    try:
        streak, last_studied_date = next_streak(state.last_studied_date, state.streak, log.date)
    except ValueError:
        logger.warning("Log {} has an unparseable date {!r}; streak unchanged", log.id, log.date)
        streak, last_studied_date = state.streak, state.last_studied_date

    sequence, sequence_index = credit_log(
        state.study_sequence,
        state.sequence_index,
        log,
        _goal_minutes(state, log.subject_id),
    )
    return replace(
        state,
        study_log=(log,) + state.study_log,
        streak=streak,
        last_studied_date=last_studied_date,
        study_sequence=sequence,
        sequence_index=sequence_index,
    )


def _update_study_log(state: StudyData, payload: dict[str, Any]) -> StudyData:
    updated = payload.get("log")
    if not isinstance(updated, StudyLogEntry):
        return state
    original = find_log(state, updated.id)
    if original is None:
        return state
    return replace(
        state,
        study_log=tuple(updated if log.id == updated.id else log for log in state.study_log),
        study_sequence=apply_duration_change(state.study_sequence, original, updated),
    )


def _delete_study_log(state: StudyData, payload: dict[str, Any]) -> StudyData:
    log = find_log(state, payload.get("id"))
    if log is None:
        return state
    return replace(
        state,
        study_log=tuple(entry for entry in state.study_log if entry.id != log.id),
        study_sequence=debit_log(state.study_sequence, log),
    )


# =============================================================================
# Study sequence
# =============================================================================


def _save_study_sequence(state: StudyData, payload: dict[str, Any]) -> StudyData:
    sequence = payload.get("sequence")
    if sequence is None:
        return replace(state, study_sequence=None, sequence_index=0)
    if not isinstance(sequence, StudySequence):
        return state

    current = state.study_sequence
    if current is None or current.id != sequence.id:
        logger.debug("Installing new study plan {}", sequence.id)
        return replace(state, study_sequence=zero_sequence(sequence), sequence_index=0)

    index = state.sequence_index
    keep_cursor = (
        index < len(sequence.sequence)
        and index < len(current.sequence)
        and current.sequence[index].subject_id == sequence.sequence[index].subject_id
    )
    # A finished plan saved again with the same slots stays finished
    if index == len(current.sequence) == len(sequence.sequence):
        keep_cursor = [i.subject_id for i in current.sequence] == [
            i.subject_id for i in sequence.sequence
        ]
    return replace(state, study_sequence=sequence, sequence_index=index if keep_cursor else 0)


def _save_as_new_sequence(state: StudyData, payload: dict[str, Any]) -> StudyData:
    sequence = payload.get("sequence")
    if not isinstance(sequence, StudySequence) or find_saved_sequence(state, sequence.id):
        return state
    return replace(state, saved_study_sequences=state.saved_study_sequences + (sequence,))


def _load_saved_sequence(state: StudyData, payload: dict[str, Any]) -> StudyData:
    saved = find_saved_sequence(state, payload.get("id"))
    if saved is None:
        return state
    logger.debug("Loading saved study plan {}", saved.id)
    return replace(state, study_sequence=zero_sequence(saved), sequence_index=0)


def _delete_saved_sequence(state: StudyData, payload: dict[str, Any]) -> StudyData:
    sequence_id = payload.get("id")
    if find_saved_sequence(state, sequence_id) is None:
        return state
    return replace(
        state,
        saved_study_sequences=tuple(
            s for s in state.saved_study_sequences if s.id != sequence_id
        ),
    )


def _reset_study_sequence(state: StudyData, payload: dict[str, Any]) -> StudyData:
    if state.study_sequence is None:
        return state
    return replace(
        state,
        study_sequence=zero_sequence(state.study_sequence),
        sequence_index=0,
        cycle_reset_count=state.cycle_reset_count + 1,
    )


def _advance_sequence(state: StudyData, payload: dict[str, Any]) -> StudyData:
    sequence = state.study_sequence
    if sequence is None or state.sequence_index >= len(sequence.sequence):
        return state
    return replace(state, sequence_index=state.sequence_index + 1)


def _update_pomodoro_settings(state: StudyData, payload: dict[str, Any]) -> StudyData:
    settings = payload.get("settings")
    if not isinstance(settings, PomodoroSettings):
        return state
    return replace(state, pomodoro_settings=settings)


# =============================================================================
# Templates and schedule plans
# =============================================================================


def _save_template(state: StudyData, payload: dict[str, Any]) -> StudyData:
    template_id = payload.get("id")
    if not template_id or find_template(state, template_id) is not None:
        return state
    template = snapshot_template(template_id, payload.get("name", ""), state.subjects)
    return replace(state, templates=state.templates + (template,))


def _load_template(state: StudyData, payload: dict[str, Any]) -> StudyData:
    if find_template(state, payload.get("template_id")) is None:
        return state
    subjects = payload.get("subjects")
    if not isinstance(subjects, tuple):
        return state
    return replace(state, subjects=subjects)


def _delete_template(state: StudyData, payload: dict[str, Any]) -> StudyData:
    template_id = payload.get("id")
    if find_template(state, template_id) is None:
        return state
    return replace(state, templates=tuple(t for t in state.templates if t.id != template_id))


def _add_schedule_plan(state: StudyData, payload: dict[str, Any]) -> StudyData:
    plan = payload.get("plan")
    if not isinstance(plan, SchedulePlan) or any(p.id == plan.id for p in state.schedule_plans):
        return state
    return replace(state, schedule_plans=state.schedule_plans + (plan,))


def _update_schedule_plan(state: StudyData, payload: dict[str, Any]) -> StudyData:
    plan_id = payload.get("id")
    changes = _pick(payload.get("changes"), SCHEDULE_FIELDS)
    if not changes or not any(p.id == plan_id for p in state.schedule_plans):
        return state
    return replace(
        state,
        schedule_plans=tuple(
            replace(p, **changes) if p.id == plan_id else p for p in state.schedule_plans
        ),
    )


def _delete_schedule_plan(state: StudyData, payload: dict[str, Any]) -> StudyData:
    plan_id = payload.get("id")
    if not any(p.id == plan_id for p in state.schedule_plans):
        return state
    return replace(
        state,
        schedule_plans=tuple(p for p in state.schedule_plans if p.id != plan_id),
    )


def _set_state(state: StudyData, payload: dict[str, Any]) -> StudyData:
    new_state = payload.get("state")
    return new_state if isinstance(new_state, StudyData) else state


HANDLERS: dict[ActionType, Callable[[StudyData, dict[str, Any]], StudyData]] = {
    ActionType.SET_STATE: _set_state,
    ActionType.ADD_SUBJECT: _add_subject,
    ActionType.UPDATE_SUBJECT: _update_subject,
    ActionType.DELETE_SUBJECT: _delete_subject,
    ActionType.ADD_TOPIC: _add_topic,
    ActionType.TOGGLE_TOPIC_COMPLETED: _toggle_topic,
    ActionType.DELETE_TOPIC: _delete_topic,
    ActionType.UPDATE_TOPIC: _update_topic,
    ActionType.SET_REVISION_PROGRESS: _set_revision_progress,
    ActionType.ADD_STUDY_LOG: _add_study_log,
    ActionType.UPDATE_STUDY_LOG: _update_study_log,
    ActionType.DELETE_STUDY_LOG: _delete_study_log,
    ActionType.SAVE_STUDY_SEQUENCE: _save_study_sequence,
    ActionType.RESET_STUDY_SEQUENCE: _reset_study_sequence,
    ActionType.ADVANCE_SEQUENCE: _advance_sequence,
    ActionType.SAVE_AS_NEW_SEQUENCE: _save_as_new_sequence,
    ActionType.LOAD_SAVED_SEQUENCE: _load_saved_sequence,
    ActionType.DELETE_SAVED_SEQUENCE: _delete_saved_sequence,
    ActionType.UPDATE_POMODORO_SETTINGS: _update_pomodoro_settings,
    ActionType.SAVE_TEMPLATE: _save_template,
    ActionType.LOAD_TEMPLATE: _load_template,
    ActionType.DELETE_TEMPLATE: _delete_template,
    ActionType.ADD_SCHEDULE_PLAN: _add_schedule_plan,
    ActionType.UPDATE_SCHEDULE_PLAN: _update_schedule_plan,
    ActionType.DELETE_SCHEDULE_PLAN: _delete_schedule_plan,
}


def study_reducer(state: StudyData, action: Action) -> StudyData:
    """
    Compute the next state for an action.

    Args:
        state: Current state (never mutated)
        action: Action to apply

    Returns:
        The new state, or the same object when the action changes nothing
    """
    try:
        action_type = ActionType(action.type)
    except ValueError:
        logger.debug("Ignoring unknown action type {}", action.type)
        return state

    payload = action.payload if isinstance(action.payload, dict) else {}
    return HANDLERS[action_type](state, payload)
