"""
Sync Dispatcher - optimistic local update, then write-behind to the remote.

dispatch(action) applies the action to the local store synchronously and
returns the new state right away. The remote writes the action implies
are computed from the resulting state and queued for the sync worker.
Remote failures are never surfaced and never roll back local state.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from loguru import logger

from studyflow.study.actions import Action, ActionType
from studyflow.study.models import StudyData, find_subject, find_template
from studyflow.study.serialization import (
    CURRENT_SEQUENCE_DOC_ID,
    PROFILE_DOC_ID,
    profile_document,
    to_document,
)
from studyflow.study.store import StudyStore
from studyflow.sync.outbound_queue import OutboundQueue, RemoteWrite

SUBJECT_ACTIONS = frozenset(
    {
        ActionType.ADD_SUBJECT,
        ActionType.UPDATE_SUBJECT,
        ActionType.ADD_TOPIC,
        ActionType.TOGGLE_TOPIC_COMPLETED,
        ActionType.DELETE_TOPIC,
        ActionType.UPDATE_TOPIC,
        ActionType.SET_REVISION_PROGRESS,
    }
)
SEQUENCE_ACTIONS = frozenset(
    {
        ActionType.SAVE_STUDY_SEQUENCE,
        ActionType.RESET_STUDY_SEQUENCE,
        ActionType.ADVANCE_SEQUENCE,
        ActionType.LOAD_SAVED_SEQUENCE,
    }
)


def _profile_write(state: StudyData) -> RemoteWrite:
    return RemoteWrite.upsert("settings", PROFILE_DOC_ID, profile_document(state))


def _sequence_write(state: StudyData) -> RemoteWrite:
    if state.study_sequence is None:
        return RemoteWrite.delete("sequences", CURRENT_SEQUENCE_DOC_ID)
    return RemoteWrite.upsert(
        "sequences", CURRENT_SEQUENCE_DOC_ID, to_document(state.study_sequence)
    )


def _subject_id(action: Action) -> str | None:
    payload = action.payload
    subject = payload.get("subject")
    if subject is not None:
        return subject.id
    return payload.get("subject_id") or payload.get("id")


def remote_writes_for(action: Action, old_state: StudyData, new_state: StudyData) -> list[RemoteWrite]:
    """
    Remote writes implied by an action that has already been applied.

    Args:
        action: The dispatched action
        old_state: State before the action
        new_state: State after the action

    Returns:
        Writes in delivery order; empty when the action changed nothing
    """
    if new_state is old_state:
        return []
    try:
        action_type = ActionType(action.type)
    except ValueError:
        return []

    payload = action.payload

    if action_type in SUBJECT_ACTIONS:
        subject = find_subject(new_state, _subject_id(action) or "")
        return [RemoteWrite.upsert("subjects", subject.id, to_document(subject))] if subject else []

    if action_type == ActionType.DELETE_SUBJECT:
        return [RemoteWrite.delete("subjects", payload["id"])]

    if action_type == ActionType.ADD_STUDY_LOG:
        log = new_state.study_log[0]
        writes = [RemoteWrite.upsert("logs", log.id, to_document(log)), _profile_write(new_state)]
        if new_state.study_sequence is not None:
            writes.append(_sequence_write(new_state))
        return writes

    if action_type == ActionType.UPDATE_STUDY_LOG:
        log = payload["log"]
        writes = [RemoteWrite.upsert("logs", log.id, to_document(log))]
        if new_state.study_sequence is not None:
            writes.append(_sequence_write(new_state))
        return writes

    if action_type == ActionType.DELETE_STUDY_LOG:
        writes = [RemoteWrite.delete("logs", payload["id"])]
        if new_state.study_sequence is not None:
            writes.append(_sequence_write(new_state))
        return writes

    if action_type in SEQUENCE_ACTIONS:
        return [_sequence_write(new_state), _profile_write(new_state)]

    if action_type == ActionType.SAVE_AS_NEW_SEQUENCE:
        sequence = payload["sequence"]
        return [RemoteWrite.upsert("sequences", sequence.id, to_document(sequence))]

    if action_type == ActionType.DELETE_SAVED_SEQUENCE:
        return [RemoteWrite.delete("sequences", payload["id"])]

    if action_type == ActionType.UPDATE_POMODORO_SETTINGS:
        return [_profile_write(new_state)]

    if action_type == ActionType.SAVE_TEMPLATE:
        template = find_template(new_state, payload["id"])
        return [RemoteWrite.upsert("templates", template.id, to_document(template))] if template else []

    if action_type == ActionType.DELETE_TEMPLATE:
        return [RemoteWrite.delete("templates", payload["id"])]

    if action_type == ActionType.LOAD_TEMPLATE:
        kept = {s.id for s in new_state.subjects}
        writes = [
            RemoteWrite.delete("subjects", s.id) for s in old_state.subjects if s.id not in kept
        ]
        writes.extend(
            RemoteWrite.upsert("subjects", s.id, to_document(s)) for s in new_state.subjects
        )
        return writes

    if action_type in (ActionType.ADD_SCHEDULE_PLAN, ActionType.UPDATE_SCHEDULE_PLAN):
        plan_id = payload["plan"].id if action_type == ActionType.ADD_SCHEDULE_PLAN else payload["id"]
        plan = next((p for p in new_state.schedule_plans if p.id == plan_id), None)
        return [RemoteWrite.upsert("schedules", plan.id, to_document(plan))] if plan else []

    if action_type == ActionType.DELETE_SCHEDULE_PLAN:
        return [RemoteWrite.delete("schedules", payload["id"])]

    # SET_STATE and anything else stay local
    return []


class SyncDispatcher:
    """
    Single entry point for state changes.

    Args:
        store: Local study store
        queue: Outbound queue; None disables remote sync
        on_enqueued: Called after writes were queued (wakes the sync worker)
    """

    def __init__(
        self,
        store: StudyStore,
        queue: OutboundQueue | None = None,
        on_enqueued: Callable[[], None] | None = None,
    ):
        self.store = store
        self.queue = queue
        self._on_enqueued = on_enqueued

    @property
    def state(self) -> StudyData:
        return self.store.state

    def dispatch(self, action: Action) -> StudyData:
        """Apply locally, queue remote writes, return the new state."""
        old_state = self.store.state
        new_state = self.store.dispatch(action)

        if self.queue is None:
            return new_state

        writes = remote_writes_for(action, old_state, new_state)
        if not writes:
            return new_state

        try:
            for write in writes:
                self.queue.enqueue(write)
        except sqlite3.Error as e:
            logger.error("Could not queue remote writes for {}: {}", action.type, e)
            return new_state

        if self._on_enqueued is not None:
            self._on_enqueued()
        return new_state
