"""
Pomodoro Engine.

Drives a focus/break timer attached to one topic (or one revision step,
which is still a topic). Two kinds of focus block exist:

- Task list: the configured tasks run back to back with no break in
  between; the block ends after the last task.
- Custom duration: a single focus period of a caller-chosen length.

When a focus block ends, the time actually spent is logged against the
topic as a "pomodoro" study log, and a short or long break follows.
Every cycles_until_long_break-th break is a long one. When a break ends
the next focus block starts from the first task.

State Flow:
    idle -> focus -> (next task)* -> short_break | long_break -> focus ...
    any running status <-> paused
    stop() -> idle

The engine does not own a clock. PomodoroTimer calls tick() once per
interval; tests call tick() directly.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from loguru import logger

from studyflow.study.actions import Action, Actions
from studyflow.study.models import (
    ItemType,
    LogSource,
    PomodoroSettings,
    StudyData,
    find_subject,
    find_topic,
)
from studyflow.study.sequence_tracker import active_sequence_item_index


class PomodoroStatus(str, Enum):
    IDLE = "idle"
    FOCUS = "focus"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"
    PAUSED = "paused"


RUNNING_STATUSES = frozenset(
    {PomodoroStatus.FOCUS, PomodoroStatus.SHORT_BREAK, PomodoroStatus.LONG_BREAK}
)
BREAK_STATUSES = frozenset({PomodoroStatus.SHORT_BREAK, PomodoroStatus.LONG_BREAK})


@dataclass(frozen=True)
class PomodoroState:
    """Ephemeral timer state; never persisted."""

    status: PomodoroStatus = PomodoroStatus.IDLE
    time_remaining: int = 0  # seconds
    current_cycle: int = 0
    current_task_index: int | None = None
    associated_item_id: str | None = None
    associated_item_type: ItemType | None = None
    is_custom_duration: bool = False
    original_duration: int | None = None  # seconds of the running segment
    previous_status: PomodoroStatus | None = None
    key: int = 0  # bumped on every restart of the countdown
    pomodoros_completed_today: int = 0
    manual_registration_expected: bool = False
    focus_elapsed: int = 0  # seconds from finished tasks of this focus block


def first_task_duration(settings: PomodoroSettings) -> int:
    return settings.tasks[0].duration if settings.tasks else 0


class PomodoroEngine:
    """
    Pomodoro state machine bound to a study store.

    Args:
        get_state: Returns the current StudyData (settings, subjects, plan)
        dispatch: Sends the completion log; usually SyncDispatcher.dispatch
    """

    def __init__(
        self,
        get_state: Callable[[], StudyData],
        dispatch: Callable[[Action], Any],
    ):
        self._get_state = get_state
        self._dispatch = dispatch
        self._state = PomodoroState(time_remaining=first_task_duration(self.settings))

    @property
    def state(self) -> PomodoroState:
        return self._state

    @property
    def settings(self) -> PomodoroSettings:
        return self._get_state().pomodoro_settings

    def _set(self, **changes: Any) -> PomodoroState:
        self._state = replace(self._state, **changes)
        return self._state

    # =========================================================================
    # Commands
    # =========================================================================

    def start_for_item(
        self,
        item_id: str,
        item_type: ItemType | str,
        navigate: Callable[[], None] | None = None,
        custom_duration_sec: int | None = None,
    ) -> bool:
        """
        Start a focus block for a topic or revision step.

        Args:
            item_id: Topic id (revision steps are topics too)
            item_type: ItemType.TOPIC or ItemType.REVISION
            navigate: Called after a successful start
            custom_duration_sec: Single focus period instead of the task list

        Returns:
            True if the timer started
        """
        study = self._get_state()
        topic = find_topic(study, item_id)
        if topic is None or find_subject(study, topic.subject_id) is None:
            logger.warning("Cannot start pomodoro: unknown item {}", item_id)
            return False

        settings = study.pomodoro_settings
        is_custom = bool(custom_duration_sec and custom_duration_sec > 0)
        if not is_custom and not settings.tasks:
            logger.warning("Cannot start pomodoro: no focus tasks configured")
            return False

        duration = custom_duration_sec if is_custom else settings.tasks[0].duration
        self._set(
            status=PomodoroStatus.FOCUS,
            time_remaining=duration,
            associated_item_id=item_id,
            associated_item_type=ItemType(item_type),
            current_task_index=None if is_custom else 0,
            is_custom_duration=is_custom,
            original_duration=duration,
            previous_status=None,
            current_cycle=0,
            focus_elapsed=0,
            key=self._state.key + 1,
        )
        logger.info(
            "Focus started on {} ({}s, {})",
            topic.name,
            duration,
            "custom" if is_custom else "task list",
        )

        if navigate is not None:
            navigate()
        return True

    def tick(self) -> None:
        """Count down one second; reaching zero fires the transition once."""
        if self._state.status not in RUNNING_STATUSES:
            return
        remaining = max(0, self._state.time_remaining - 1)
        self._set(time_remaining=remaining)
        if remaining == 0:
            self._on_expired(time_spent_override=None)

    def pause_or_resume(self) -> None:
        if self._state.status == PomodoroStatus.PAUSED:
            self.resume()
        else:
            self.pause()

    def pause(self) -> None:
        if self._state.status not in RUNNING_STATUSES:
            return
        self._set(status=PomodoroStatus.PAUSED, previous_status=self._state.status)
        logger.debug("Pomodoro paused with {}s left", self._state.time_remaining)

    def resume(self) -> None:
        if self._state.status != PomodoroStatus.PAUSED or self._state.previous_status is None:
            return
        self._set(
            status=self._state.previous_status,
            previous_status=None,
            key=self._state.key + 1,
        )
        logger.debug("Pomodoro resumed ({})", self._state.status.value)

    def advance(self, time_spent_override: int | None = None) -> None:
        """
        Finish the current segment now.

        In focus, the time spent is time_spent_override when given,
        otherwise original_duration - time_remaining.
        """
        if self._state.status == PomodoroStatus.IDLE:
            return
        if self._state.status == PomodoroStatus.PAUSED:
            self.resume()
        self._on_expired(time_spent_override=time_spent_override)

    def expect_manual_registration(self) -> None:
        """The user will log this block by hand; skip the next automatic log."""
        self._set(manual_registration_expected=True)

    def skip_to_break(self) -> None:
        """Jump from focus to a break, or from a break to focus, without logging."""
        status = self._state.status
        if status == PomodoroStatus.PAUSED:
            status = self._state.previous_status
        if status == PomodoroStatus.FOCUS:
            self._enter_break()
        elif status in BREAK_STATUSES:
            self._enter_focus_from_break()
        self._set(manual_registration_expected=False)

    def stop(self) -> None:
        """Back to idle without logging anything."""
        self._state = PomodoroState(
            time_remaining=first_task_duration(self.settings),
            key=self._state.key + 1,
            pomodoros_completed_today=self._state.pomodoros_completed_today,
        )
        logger.info("Pomodoro stopped")

    def on_settings_changed(self, settings: PomodoroSettings) -> None:
        """Reload the idle countdown from the first task of new settings."""
        if self._state.status != PomodoroStatus.IDLE:
            return
        self._set(time_remaining=first_task_duration(settings), key=self._state.key + 1)

    # =========================================================================
    # Transitions
    # =========================================================================

    def _on_expired(self, time_spent_override: int | None) -> None:
        state = self._state
        if state.status == PomodoroStatus.FOCUS:
            if time_spent_override is not None:
                spent = max(0, time_spent_override)
            else:
                spent = max(0, (state.original_duration or 0) - state.time_remaining)
            self._finish_focus_segment(spent)
        elif state.status in BREAK_STATUSES:
            self._enter_focus_from_break()

    def _finish_focus_segment(self, spent: int) -> None:
        state = self._state
        total = state.focus_elapsed + spent
        tasks = self.settings.tasks

        if not state.is_custom_duration:
            next_index = (state.current_task_index or 0) + 1
            if next_index < len(tasks):
                task = tasks[next_index]
                self._set(
                    current_task_index=next_index,
                    time_remaining=task.duration,
                    original_duration=task.duration,
                    focus_elapsed=total,
                    key=state.key + 1,
                )
                logger.info("Next task: {}", task.name)
                return

        self._log_completed_focus(total)
        self._enter_break()

    def _enter_break(self) -> None:
        settings = self.settings
        cycle = self._state.current_cycle + 1
        is_long = (
            cycle > 0
            and settings.cycles_until_long_break > 0
            and cycle % settings.cycles_until_long_break == 0
        )
        self._set(
            status=PomodoroStatus.LONG_BREAK if is_long else PomodoroStatus.SHORT_BREAK,
            time_remaining=settings.long_break_duration if is_long else settings.short_break_duration,
            original_duration=None,
            previous_status=None,
            current_cycle=cycle,
            focus_elapsed=0,
            pomodoros_completed_today=self._state.pomodoros_completed_today + 1,
            key=self._state.key + 1,
        )
        logger.info("{} break (cycle {})", "Long" if is_long else "Short", cycle)

    def _enter_focus_from_break(self) -> None:
        tasks = self.settings.tasks
        if not tasks:
            logger.warning("Break over but no focus tasks configured; stopping")
            self.stop()
            return
        self._set(
            status=PomodoroStatus.FOCUS,
            time_remaining=tasks[0].duration,
            original_duration=tasks[0].duration,
            current_task_index=0,
            is_custom_duration=False,
            previous_status=None,
            focus_elapsed=0,
            key=self._state.key + 1,
        )
        logger.info("Break over, back to focus: {}", tasks[0].name)

    def _log_completed_focus(self, seconds: int) -> None:
        if self._state.manual_registration_expected:
            self._set(manual_registration_expected=False)
            logger.info("Focus block finished; waiting for manual registration")
            return

        study = self._get_state()
        topic = find_topic(study, self._state.associated_item_id or "")
        if topic is None:
            logger.warning(
                "Focus block finished but item {} no longer exists; nothing logged",
                self._state.associated_item_id,
            )
            return

        minutes = seconds // 60
        if minutes <= 0:
            logger.debug("Focus block shorter than a minute; nothing logged")
            return

        self._dispatch(
            Actions.add_study_log(
                subject_id=topic.subject_id,
                topic_id=topic.id,
                duration=minutes,
                source=LogSource.POMODORO.value,
                sequence_item_index=active_sequence_item_index(study, topic.subject_id),
            )
        )
        logger.info("Logged {} min on {}", minutes, topic.name)


class PomodoroTimer:
    """
    Asyncio task that ticks an engine at a fixed interval.

    Args:
        engine: Engine to tick
        interval_seconds: Seconds between ticks
        sleep: Awaitable sleep, replaced in tests
        on_tick: Called with the engine state after every tick
    """

    def __init__(
        self,
        engine: PomodoroEngine,
        interval_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_tick: Callable[[PomodoroState], None] | None = None,
    ):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self.on_tick = on_tick
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            self.engine.tick()
            if self.on_tick is not None:
                self.on_tick(self.engine.state)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
