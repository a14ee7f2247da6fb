"""
Unit tests for the SQLite state store and the dirty-flag persister.
"""

import sqlite3
from unittest.mock import MagicMock

import pytest

from studyflow.persistence.persister import DirtyFlagPersister
from studyflow.persistence.state_store import StateStore
from studyflow.study.actions import Actions
from studyflow.study.serialization import state_from_document
from studyflow.study.store import StudyStore


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestStateStore:
    def test_empty_store_has_no_snapshot(self, tmp_path):
        store = StateStore(tmp_path / "state.db")
        assert store.load_snapshot() is None
        store.close()

    def test_snapshot_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "state.db"
        store = StateStore(path)
        store.save_snapshot({"streak": 1})
        store.save_snapshot({"streak": 2})
        store.close()

        reopened = StateStore(path)
        assert reopened.load_snapshot() == {"streak": 2}
        reopened.close()

    def test_corrupt_snapshot_is_ignored(self):
        store = StateStore(":memory:")
        store.conn.execute(
            "INSERT INTO state_snapshot (id, document, saved_at) VALUES (1, '{not json', 'now')"
        )
        assert store.load_snapshot() is None
        store.close()

    def test_single_snapshot_row(self):
        store = StateStore(":memory:")
        with pytest.raises(sqlite3.IntegrityError):
            store.conn.execute(
                "INSERT INTO state_snapshot (id, document, saved_at) VALUES (2, '{}', 'now')"
            )
        store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def study_store(two_subject_state):
    return StudyStore(two_subject_state)


@pytest.fixture
def state_store():
    store = StateStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def persister(state_store, study_store, clock):
    persister = DirtyFlagPersister(
        state_store, lambda: study_store.state, quiet_period_seconds=1.0, clock=clock
    )
    study_store.subscribe(persister.mark_dirty)
    return persister


class TestDirtyFlagPersister:
    def test_clean_state_is_not_saved(self, persister, state_store):
        assert persister.maybe_flush() is False
        assert persister.flush() is False
        assert state_store.load_snapshot() is None

    def test_waits_for_quiet_period(self, persister, study_store, state_store, clock):
        study_store.dispatch(Actions.delete_subject("law"))
        clock.now = 0.5
        study_store.dispatch(Actions.advance_sequence())

        clock.now = 1.4
        assert persister.maybe_flush() is False

        clock.now = 1.5
        assert persister.maybe_flush() is True
        assert not persister.dirty

        saved = state_from_document(state_store.load_snapshot())
        assert [s.id for s in saved.subjects] == ["math"]
        assert saved.sequence_index == 1

    def test_flush_ignores_quiet_period(self, persister, study_store, state_store):
        study_store.dispatch(Actions.delete_subject("law"))
        assert persister.flush() is True
        assert state_store.load_snapshot() is not None

    def test_failed_save_stays_dirty(self, study_store, clock):
        broken = MagicMock()
        broken.save_snapshot.side_effect = sqlite3.OperationalError("database is locked")
        persister = DirtyFlagPersister(broken, lambda: study_store.state, clock=clock)

        persister.mark_dirty()
        assert persister.flush() is False
        assert persister.dirty

        broken.save_snapshot.side_effect = None
        assert persister.flush() is True
        assert not persister.dirty

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_change(self, persister, study_store, state_store):
        persister.start(check_interval_seconds=60)
        study_store.dispatch(Actions.delete_subject("law"))

        await persister.stop()

        assert state_store.load_snapshot() is not None
        assert not persister.dirty
