"""
Unit tests for StudyStore.
"""

import pytest

from studyflow.study.actions import Actions
from studyflow.study.models import StudyData
from studyflow.study.store import StudyStore


class TestStudyStore:
    def test_default_state(self):
        assert StudyStore().state == StudyData()

    def test_dispatch_returns_new_state(self):
        store = StudyStore()
        new_state = store.dispatch(Actions.add_subject("Português", "#00ff00"))

        assert new_state is store.state
        assert store.state.subjects[0].name == "Português"

    def test_subscribers_see_old_new_and_action(self):
        store = StudyStore()
        calls = []
        store.subscribe(lambda old, new, action: calls.append((old, new, action)))

        action = Actions.add_subject("Português", "#00ff00")
        store.dispatch(action)

        old, new, seen = calls[0]
        assert old.subjects == ()
        assert new is store.state
        assert seen is action

    def test_no_notification_when_nothing_changed(self):
        store = StudyStore()
        calls = []
        store.subscribe(lambda *args: calls.append(args))

        store.dispatch(Actions.delete_subject("missing"))

        assert calls == []

    def test_unsubscribe(self):
        store = StudyStore()
        calls = []
        unsubscribe = store.subscribe(lambda *args: calls.append(args))

        unsubscribe()
        unsubscribe()
        store.dispatch(Actions.add_subject("Português", "#00ff00"))

        assert calls == []

    def test_failing_subscriber_does_not_block_others(self):
        store = StudyStore()
        calls = []

        def broken(*_):
            raise ValueError("boom")

        store.subscribe(broken)
        store.subscribe(lambda *args: calls.append(args))

        store.dispatch(Actions.add_subject("Português", "#00ff00"))

        assert len(calls) == 1
        assert len(store.state.subjects) == 1

    def test_subscriber_may_dispatch_follow_up(self):
        store = StudyStore()

        def add_topic_once(old, new, action):
            if new.subjects and not new.subjects[0].topics:
                store.dispatch(Actions.add_topic(new.subjects[0].id, "Crase"))

        store.subscribe(add_topic_once)
        store.dispatch(Actions.add_subject("Português", "#00ff00"))

        assert store.state.subjects[0].topics[0].name == "Crase"

    def test_reentrant_dispatch_is_rejected(self, monkeypatch):
        store = StudyStore()

        def reducer(state, action):
            store.dispatch(action)
            return state

        monkeypatch.setattr("studyflow.study.store.study_reducer", reducer)

        with pytest.raises(RuntimeError):
            store.dispatch(Actions.advance_sequence())
        assert not store.is_dispatching
