"""
Local study store.

Holds the single StudyData value, runs actions through study_reducer and
notifies subscribers when the state actually changed:

    Action -> dispatch -> study_reducer -> new state -> subscribers

Usage:
    store = StudyStore()
    unsubscribe = store.subscribe(lambda old, new, action: ...)
    store.dispatch(Actions.add_subject(name="Português", color="#00ff00"))
"""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from studyflow.study.actions import Action
from studyflow.study.models import StudyData
from studyflow.study.reducer import study_reducer

StateChangeCallback = Callable[[StudyData, StudyData, Action], None]
UnsubscribeFunction = Callable[[], None]


class StudyStore:
    """State holder with change subscriptions."""

    def __init__(self, initial_state: StudyData | None = None) -> None:
        self._state = initial_state or StudyData()
        self._subscribers: list[StateChangeCallback] = []
        self._is_dispatching = False

    @property
    def state(self) -> StudyData:
        """Current state (read-only)."""
        return self._state

    @property
    def is_dispatching(self) -> bool:
        return self._is_dispatching

    def dispatch(self, action: Action) -> StudyData:
        """
        Apply an action synchronously.

        Returns:
            The state after the action

        Subscribers run after the dispatch completes, so they may dispatch
        follow-up actions themselves.

        Raises:
            RuntimeError: If called while another action is being reduced
        """
        if self._is_dispatching:
            raise RuntimeError(f"Cannot dispatch {action.type} while a dispatch is in progress")

        try:
            self._is_dispatching = True
            old_state = self._state
            new_state = study_reducer(old_state, action)

            if new_state is old_state:
                logger.debug("State unchanged by {}", action.type)
                return old_state

            self._state = new_state
            logger.debug("State changed by {}", action.type)
        finally:
            self._is_dispatching = False

        self._notify_subscribers(old_state, new_state, action)
        return new_state

    def subscribe(self, callback: StateChangeCallback) -> UnsubscribeFunction:
        """Register callback(old_state, new_state, action); returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify_subscribers(self, old_state: StudyData, new_state: StudyData, action: Action) -> None:
        for callback in list(self._subscribers):
            try:
                callback(old_state, new_state, action)
            except Exception as e:
                name = getattr(callback, "__qualname__", repr(callback))
                logger.error("Subscriber {} failed on {}: {}", name, action.type, e)
