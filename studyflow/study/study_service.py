"""
Study Service - wires the engine together and validates user input.

Owns the local store, the sync dispatcher, the Pomodoro engine and its
timer, the snapshot persister, and (when a remote is configured) the
outbound queue and its worker. Every user-facing operation validates its
input here and raises ValidationError before anything is dispatched.

Lifecycle:
    service = StudyService()
    await service.start()      # load snapshot or remote, start workers
    service.add_subject(...)
    await service.shutdown()   # stop timer, flush queue and snapshot
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from loguru import logger

from config import Settings, get_settings
from studyflow.errors import RemoteStoreError, ValidationError
from studyflow.persistence.persister import DirtyFlagPersister
from studyflow.persistence.state_store import StateStore
from studyflow.study.actions import Action, Actions, new_id
from studyflow.study.models import (
    ItemType,
    PomodoroSettings,
    PomodoroTask,
    SchedulePlan,
    StudyData,
    StudyLogEntry,
    StudySequence,
    StudySequenceItem,
    Subject,
    SubjectTemplate,
    Topic,
    find_log,
    find_saved_sequence,
    find_subject,
    find_template,
)
from studyflow.study.pomodoro_engine import PomodoroEngine, PomodoroState, PomodoroTimer
from studyflow.study.revision import toggle_revision_step
from studyflow.study.sequence_tracker import active_sequence_item_index
from studyflow.study.serialization import state_from_collections, state_from_document
from studyflow.study.store import StudyStore
from studyflow.sync.outbound_queue import OutboundQueue
from studyflow.sync.remote_store import COLLECTIONS, HttpRemoteStore, RemoteStore
from studyflow.sync.sync_dispatcher import SyncDispatcher
from studyflow.sync.sync_worker import SyncStats, SyncWorker


class StudyService:
    """
    Application service for the study engine.

    Args:
        settings: Configuration (defaults to get_settings())
        remote: Remote document store; built from settings when omitted
        state_store: Local SQLite store; built from settings when omitted
        clock: Monotonic clock for the persister
    """

    def __init__(
        self,
        settings: Settings | None = None,
        remote: RemoteStore | None = None,
        state_store: StateStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.state_store = state_store or StateStore(self.settings.state_db_path)

        if remote is None and self.settings.has_remote_configured():
            remote = HttpRemoteStore(
                base_url=self.settings.remote_url,
                user_id=self.settings.user_id,
                api_key=self.settings.remote_api_key,
                timeout_ms=self.settings.remote_timeout_ms,
                retry_attempts=self.settings.remote_retry_attempts,
            )
        self.remote = remote

        self.sync_config = self.settings.get_sync_config()
        self.queue: OutboundQueue | None = None
        self.worker: SyncWorker | None = None
        if self.remote is not None and self.settings.sync_enabled:
            self.queue = OutboundQueue(
                self.state_store,
                max_retries=int(self.sync_config["max_retries"]),
                backoff_base_seconds=self.sync_config["backoff_base_seconds"],
            )
            self.worker = SyncWorker(
                self.queue,
                self.remote,
                poll_interval_seconds=self.sync_config["poll_interval_seconds"],
            )

        defaults = self.settings.get_pomodoro_defaults()
        self.store = StudyStore(StudyData(pomodoro_settings=PomodoroSettings(**defaults)))
        self.dispatcher = SyncDispatcher(
            self.store,
            self.queue,
            on_enqueued=self.worker.notify if self.worker else None,
        )
        self.persister = DirtyFlagPersister(
            self.state_store,
            lambda: self.store.state,
            quiet_period_seconds=self.settings.persist_quiet_period_seconds,
            clock=clock,
        )
        self.engine = PomodoroEngine(lambda: self.store.state, self.dispatcher.dispatch)
        self.timer = PomodoroTimer(self.engine, interval_seconds=self.settings.timer_interval_seconds)

        self.store.subscribe(self.persister.mark_dirty)
        self.store.subscribe(self._on_state_changed)

    @property
    def state(self) -> StudyData:
        return self.store.state

    @property
    def pomodoro(self) -> PomodoroState:
        return self.engine.state

    def dispatch(self, action: Action) -> StudyData:
        return self.dispatcher.dispatch(action)

    def _on_state_changed(self, old: StudyData, new: StudyData, action: Action) -> None:
        if old.pomodoro_settings != new.pomodoro_settings:
            self.engine.on_settings_changed(new.pomodoro_settings)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, background: bool = True) -> None:
        """
        Load state and start background workers.

        The local snapshot wins; the remote is only read when no snapshot
        exists yet (first run on this machine).
        """
        if not self.load_local() and self.remote is not None:
            await self.load_from_remote()

        if background:
            self.persister.start()
            if self.worker is not None:
                self.worker.start()

    def load_local(self) -> bool:
        """Hydrate from the SQLite snapshot. Returns True if one was found."""
        document = self.state_store.load_snapshot()
        if document is None:
            return False
        try:
            state = state_from_document(document)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Ignoring unreadable local snapshot: {}", e)
            return False
        self.store.dispatch(Actions.set_state(state))
        logger.info("Loaded {} subjects and {} logs from local snapshot", len(state.subjects), len(state.study_log))
        return True

    async def load_from_remote(self) -> bool:
        """Full reload from the remote store. Returns True on success."""
        if self.remote is None:
            return False
        try:
            collections = {name: await self.remote.fetch_all(name) for name in COLLECTIONS}
        except RemoteStoreError as e:
            logger.warning("Remote reload failed, starting from local state: {}", e)
            return False
        state = state_from_collections(collections)
        self.store.dispatch(Actions.set_state(state))
        logger.info("Loaded {} subjects from remote", len(state.subjects))
        return True

    async def flush_sync(self) -> SyncStats | None:
        """Deliver every queued write that is due now."""
        if self.worker is None:
            return None
        return await self.worker.drain()

    async def remote_healthy(self) -> bool | None:
        """Reachability of the remote store; None when no remote is configured."""
        if self.remote is None:
            return None
        return await self.remote.health_check()

    async def shutdown(self) -> None:
        """Stop the timer, give queued writes a last attempt, persist state."""
        await self.timer.stop()
        if self.worker is not None:
            await self.worker.stop(
                flush=True,
                flush_timeout_seconds=self.sync_config["shutdown_timeout_seconds"],
            )
        await self.persister.stop()
        if self.remote is not None:
            await self.remote.close()
        self.state_store.close()
        logger.debug("Study service shut down")

    # =========================================================================
    # Lookups
    # =========================================================================

    def require_subject(self, subject_id: str) -> Subject:
        subject = find_subject(self.state, subject_id)
        if subject is None:
            raise ValidationError(f"Unknown subject: {subject_id}")
        return subject

    def require_topic(self, subject_id: str, topic_id: str) -> Topic:
        subject = self.require_subject(subject_id)
        topic = next((t for t in subject.topics if t.id == topic_id), None)
        if topic is None:
            raise ValidationError(f"Topic {topic_id} does not belong to subject {subject.name}")
        return topic

    def require_log(self, log_id: str) -> StudyLogEntry:
        log = find_log(self.state, log_id)
        if log is None:
            raise ValidationError(f"Unknown study log: {log_id}")
        return log

    # =========================================================================
    # Subjects and topics
    # =========================================================================

    def add_subject(
        self,
        name: str,
        color: str,
        study_duration: int | None = None,
        description: str | None = None,
        material_url: str | None = None,
    ) -> Subject:
        if not name or not name.strip():
            raise ValidationError("Subject name is required")
        if study_duration is not None and study_duration <= 0:
            raise ValidationError("Study duration must be a positive number of minutes")
        action = Actions.add_subject(
            name=name.strip(),
            color=color,
            study_duration=study_duration,
            description=description,
            material_url=material_url,
        )
        self.dispatch(action)
        return action.payload["subject"]

    def update_subject(self, subject_id: str, **changes: Any) -> Subject:
        self.require_subject(subject_id)
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Subject name is required")
        duration = changes.get("study_duration")
        if duration is not None and duration <= 0:
            raise ValidationError("Study duration must be a positive number of minutes")
        self.dispatch(Actions.update_subject(subject_id, **changes))
        return self.require_subject(subject_id)

    def delete_subject(self, subject_id: str) -> None:
        self.require_subject(subject_id)
        self.dispatch(Actions.delete_subject(subject_id))

    def add_topic(self, subject_id: str, name: str, description: str | None = None) -> Topic:
        self.require_subject(subject_id)
        if not name or not name.strip():
            raise ValidationError("Topic name is required")
        action = Actions.add_topic(subject_id, name.strip(), description=description)
        self.dispatch(action)
        return self.require_topic(subject_id, action.payload["topic_id"])

    def toggle_topic(self, subject_id: str, topic_id: str) -> Topic:
        self.require_topic(subject_id, topic_id)
        self.dispatch(Actions.toggle_topic_completed(subject_id, topic_id))
        return self.require_topic(subject_id, topic_id)

    def update_topic(self, subject_id: str, topic_id: str, **changes: Any) -> Topic:
        self.require_topic(subject_id, topic_id)
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Topic name is required")
        self.dispatch(Actions.update_topic(subject_id, topic_id, **changes))
        return self.require_topic(subject_id, topic_id)

    def delete_topic(self, subject_id: str, topic_id: str) -> None:
        self.require_topic(subject_id, topic_id)
        self.dispatch(Actions.delete_topic(subject_id, topic_id))

    # =========================================================================
    # Revision
    # =========================================================================

    def set_revision_progress(self, subject_id: str, progress: int) -> int:
        self.require_subject(subject_id)
        self.dispatch(Actions.set_revision_progress(subject_id, progress))
        return self.require_subject(subject_id).revision_progress

    def toggle_revision_step(self, subject_id: str, index: int) -> int | None:
        """Mark the current step done or undo the previous one; other steps are inert."""
        subject = self.require_subject(subject_id)
        progress = toggle_revision_step(subject, index)
        if progress is None:
            return None
        self.dispatch(Actions.set_revision_progress(subject_id, progress))
        return progress

    # =========================================================================
    # Study log
    # =========================================================================

    def add_log(
        self,
        subject_id: str,
        topic_id: str,
        duration: int,
        date: str | None = None,
        start_page: int = 0,
        end_page: int = 0,
        questions_total: int = 0,
        questions_correct: int = 0,
        link_to_sequence: bool = True,
    ) -> StudyLogEntry:
        """
        Record a manual study session.

        With link_to_sequence, the entry is credited to the plan slot at
        the cursor when that slot belongs to the same subject.
        """
        self.require_topic(subject_id, topic_id)
        self._validate_log_fields(duration, start_page, end_page, questions_total, questions_correct)

        sequence_item_index = (
            active_sequence_item_index(self.state, subject_id) if link_to_sequence else None
        )
        action = Actions.add_study_log(
            subject_id=subject_id,
            topic_id=topic_id,
            duration=duration,
            date=date,
            start_page=start_page,
            end_page=end_page,
            questions_total=questions_total,
            questions_correct=questions_correct,
            sequence_item_index=sequence_item_index,
        )
        self.dispatch(action)
        return action.payload["log"]

    def update_log(self, log_id: str, **changes: Any) -> StudyLogEntry:
        """Edit a log; only the duration difference reaches its plan slot."""
        original = self.require_log(log_id)
        allowed = {
            "duration",
            "date",
            "start_page",
            "end_page",
            "questions_total",
            "questions_correct",
            "topic_id",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(sorted(unknown))} on a study log")
        updated = replace(original, **changes)
        self.require_topic(updated.subject_id, updated.topic_id)
        self._validate_log_fields(
            updated.duration,
            updated.start_page,
            updated.end_page,
            updated.questions_total,
            updated.questions_correct,
        )
        self.dispatch(Actions.update_study_log(updated))
        return updated

    def delete_log(self, log_id: str) -> None:
        self.require_log(log_id)
        self.dispatch(Actions.delete_study_log(log_id))

    @staticmethod
    def _validate_log_fields(
        duration: int,
        start_page: int,
        end_page: int,
        questions_total: int,
        questions_correct: int,
    ) -> None:
        if duration <= 0:
            raise ValidationError("Duration must be a positive number of minutes")
        if start_page < 0 or end_page < 0 or end_page < start_page:
            raise ValidationError("Page range is invalid")
        if questions_total < 0 or questions_correct < 0 or questions_correct > questions_total:
            raise ValidationError("Correct answers cannot exceed total questions")

    # =========================================================================
    # Study sequence
    # =========================================================================

    def save_sequence(
        self,
        subject_ids: Sequence[str],
        name: str = "Ciclo de estudos",
        edit_current: bool = False,
    ) -> StudySequence:
        """
        Install a plan, or edit the current one in place.

        Editing keeps the plan id, so accumulated time survives for slots
        whose subject did not change.
        """
        if not subject_ids:
            raise ValidationError("A study plan needs at least one subject")
        for subject_id in subject_ids:
            self.require_subject(subject_id)

        current = self.state.study_sequence
        if edit_current and current is not None:
            items = []
            for index, subject_id in enumerate(subject_ids):
                studied = 0
                if index < len(current.sequence) and current.sequence[index].subject_id == subject_id:
                    studied = current.sequence[index].total_time_studied
                items.append(StudySequenceItem(subject_id=subject_id, total_time_studied=studied))
            sequence = StudySequence(id=current.id, name=name, sequence=tuple(items))
        else:
            sequence = StudySequence(
                id=new_id(),
                name=name,
                sequence=tuple(StudySequenceItem(subject_id=s) for s in subject_ids),
            )
        self.dispatch(Actions.save_study_sequence(sequence))
        return self.state.study_sequence

    def clear_sequence(self) -> None:
        self.dispatch(Actions.save_study_sequence(None))

    def reset_sequence(self) -> None:
        if self.state.study_sequence is None:
            raise ValidationError("No study plan is active")
        self.dispatch(Actions.reset_study_sequence())

    def advance_sequence(self) -> int:
        if self.state.study_sequence is None:
            raise ValidationError("No study plan is active")
        self.dispatch(Actions.advance_sequence())
        return self.state.sequence_index

    def save_sequence_as(self, name: str, subject_ids: Sequence[str] | None = None) -> StudySequence:
        """
        Store a plan in the saved-plan library.

        Args:
            name: Display name of the saved plan
            subject_ids: Slots of the new plan; the active plan's slots when omitted

        Returns:
            The saved plan, with zeroed slot totals
        """
        if not name.strip():
            raise ValidationError("A saved plan needs a name")
        if subject_ids is None:
            current = self.state.study_sequence
            if current is None:
                raise ValidationError("No study plan is active")
            subject_ids = [item.subject_id for item in current.sequence]
        if not subject_ids:
            raise ValidationError("A study plan needs at least one subject")
        for subject_id in subject_ids:
            self.require_subject(subject_id)

        action = Actions.save_as_new_sequence(
            name, [StudySequenceItem(subject_id=s) for s in subject_ids]
        )
        self.dispatch(action)
        return action.payload["sequence"]

    def require_saved_sequence(self, sequence_id: str) -> StudySequence:
        sequence = find_saved_sequence(self.state, sequence_id)
        if sequence is None:
            raise ValidationError(f"Unknown saved plan: {sequence_id}")
        return sequence

    def load_saved_sequence(self, sequence_id: str) -> StudySequence:
        """Make a saved plan the active one, starting from its first slot."""
        self.require_saved_sequence(sequence_id)
        self.dispatch(Actions.load_saved_sequence(sequence_id))
        return self.state.study_sequence

    def delete_saved_sequence(self, sequence_id: str) -> None:
        self.require_saved_sequence(sequence_id)
        self.dispatch(Actions.delete_saved_sequence(sequence_id))

    # =========================================================================
    # Pomodoro
    # =========================================================================

    def update_pomodoro_settings(
        self,
        tasks: Sequence[tuple[str, int]] | None = None,
        short_break_duration: int | None = None,
        long_break_duration: int | None = None,
        cycles_until_long_break: int | None = None,
    ) -> PomodoroSettings:
        """
        Change Pomodoro settings.

        Args:
            tasks: (name, seconds) pairs replacing the task list
            short_break_duration: Seconds
            long_break_duration: Seconds
            cycles_until_long_break: Breaks per long break
        """
        current = self.state.pomodoro_settings
        changes: dict[str, Any] = {}
        if tasks is not None:
            if any(seconds <= 0 for _, seconds in tasks):
                raise ValidationError("Task durations must be positive")
            changes["tasks"] = tuple(
                PomodoroTask(id=f"task-{index + 1}", name=name, duration=seconds)
                for index, (name, seconds) in enumerate(tasks)
            )
        for key, value in (
            ("short_break_duration", short_break_duration),
            ("long_break_duration", long_break_duration),
            ("cycles_until_long_break", cycles_until_long_break),
        ):
            if value is None:
                continue
            if value <= 0:
                raise ValidationError(f"{key} must be positive")
            changes[key] = value

        settings = replace(current, **changes)
        self.dispatch(Actions.update_pomodoro_settings(settings))
        return settings

    def start_pomodoro(
        self,
        item_id: str,
        item_type: ItemType | str = ItemType.TOPIC,
        custom_duration_sec: int | None = None,
        navigate: Callable[[], None] | None = None,
    ) -> bool:
        if custom_duration_sec is not None and custom_duration_sec <= 0:
            raise ValidationError("Custom duration must be positive")
        return self.engine.start_for_item(
            item_id,
            item_type,
            navigate=navigate,
            custom_duration_sec=custom_duration_sec,
        )

    # =========================================================================
    # Templates and schedule plans
    # =========================================================================

    def save_template(self, name: str) -> SubjectTemplate:
        if not name or not name.strip():
            raise ValidationError("Template name is required")
        action = Actions.save_template(name.strip())
        self.dispatch(action)
        return find_template(self.state, action.payload["id"])

    def load_template(self, template_id: str) -> tuple[Subject, ...]:
        """Replace all subjects with a fresh copy of a template."""
        template = find_template(self.state, template_id)
        if template is None:
            raise ValidationError(f"Unknown template: {template_id}")
        self.dispatch(Actions.load_template(template))
        return self.state.subjects

    def delete_template(self, template_id: str) -> None:
        if find_template(self.state, template_id) is None:
            raise ValidationError(f"Unknown template: {template_id}")
        self.dispatch(Actions.delete_template(template_id))

    def add_schedule_plan(
        self,
        name: str,
        weekly_hours: float,
        session_duration: int,
        sessions_per_subject: dict[str, int] | None = None,
        pomodoro_mode: str = "automatic",
    ) -> SchedulePlan:
        if weekly_hours <= 0 or session_duration <= 0:
            raise ValidationError("Weekly hours and session duration must be positive")
        if pomodoro_mode not in ("automatic", "manual"):
            raise ValidationError("Pomodoro mode must be 'automatic' or 'manual'")
        for subject_id in sessions_per_subject or {}:
            self.require_subject(subject_id)
        action = Actions.add_schedule_plan(
            name=name,
            weekly_hours=weekly_hours,
            session_duration=session_duration,
            sessions_per_subject=sessions_per_subject,
            pomodoro_mode=pomodoro_mode,
        )
        self.dispatch(action)
        return action.payload["plan"]

    def delete_schedule_plan(self, plan_id: str) -> None:
        if not any(p.id == plan_id for p in self.state.schedule_plans):
            raise ValidationError(f"Unknown schedule plan: {plan_id}")
        self.dispatch(Actions.delete_schedule_plan(plan_id))
