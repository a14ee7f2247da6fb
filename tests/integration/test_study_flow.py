"""
Integration Tests for the study flow.

Runs StudyService end to end against a real SQLite file and an
in-memory remote document store:

1. User actions update local state immediately
2. Writes are queued and mirrored to the remote
3. The snapshot survives a restart
4. A fresh machine rebuilds state from the remote
5. Shutdown with an unreachable remote returns without waiting on it
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from studyflow.errors import RemoteStoreError
from studyflow.study.models import ItemType, LogSource
from studyflow.study.pomodoro_engine import PomodoroStatus
from studyflow.study.study_service import StudyService
from studyflow.sync.remote_store import HttpRemoteStore, InMemoryRemoteStore

pytestmark = pytest.mark.integration


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def remote_settings(settings):
    return settings.model_copy(update={"remote_url": "https://api.example.test"})


async def _started(settings, remote):
    service = StudyService(settings=settings, remote=remote)
    await service.start(background=False)
    return service


class TestRemoteMirroring:
    @pytest.mark.asyncio
    async def test_actions_reach_remote_after_flush(self, remote_settings, remote):
        service = await _started(remote_settings, remote)
        subject = service.add_subject("Matemática", "#f00", study_duration=30)
        topic = service.add_topic(subject.id, "Frações")
        service.save_sequence([subject.id])
        log = service.add_log(subject.id, topic.id, 30)

        assert remote.documents == {}
        assert service.queue.pending_count() > 0

        while service.queue.pending_count():
            await service.flush_sync()

        assert remote.get("subjects", subject.id)["topics"][0]["name"] == "Frações"
        assert remote.get("logs", log.id)["duration"] == 30
        assert remote.get("sequences", "current")["sequence"][0]["total_time_studied"] == 30
        assert remote.get("settings", "profile")["sequence_index"] == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_remote_failure_never_rolls_back(self, remote_settings, remote):
        service = await _started(remote_settings, remote)
        remote.upsert = AsyncMock(side_effect=RemoteStoreError("offline"))

        subject = service.add_subject("Direito", "#00f")
        stats = await service.flush_sync()

        assert stats.retried == 1
        assert service.require_subject(subject.id).name == "Direito"
        assert service.queue.pending_count() == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_fresh_machine_loads_from_remote(self, remote_settings, remote, tmp_path):
        first = await _started(remote_settings, remote)
        subject = first.add_subject("Matemática", "#f00")
        topic = first.add_topic(subject.id, "Frações")
        first.add_log(subject.id, topic.id, 25, date="2026-03-10T09:00:00")
        await first.shutdown()

        other_machine = remote_settings.model_copy(update={"state_db_path": tmp_path / "other.db"})
        second = await _started(other_machine, remote)

        assert [s.name for s in second.state.subjects] == ["Matemática"]
        assert second.state.study_log[0].duration == 25
        assert second.state.streak == 1
        await second.shutdown()


    @pytest.mark.asyncio
    async def test_saved_plans_follow_to_a_fresh_machine(self, remote_settings, remote, tmp_path):
        first = await _started(remote_settings, remote)
        subject = first.add_subject("Matemática", "#f00")
        first.save_sequence([subject.id])
        saved = first.save_sequence_as("Reta final", [subject.id, subject.id])
        await first.shutdown()

        assert remote.get("sequences", saved.id)["name"] == "Reta final"

        other_machine = remote_settings.model_copy(update={"state_db_path": tmp_path / "other.db"})
        second = await _started(other_machine, remote)

        assert [s.id for s in second.state.saved_study_sequences] == [saved.id]
        assert second.state.study_sequence.id != saved.id
        await second.shutdown()


class TestOfflineShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_with_unreachable_remote_returns_promptly(self, remote_settings):
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        def offline(request):
            raise httpx.ConnectError("offline", request=request)

        remote = HttpRemoteStore(
            base_url="https://api.example.test",
            user_id="u1",
            transport=httpx.MockTransport(offline),
            sleep=record_sleep,
        )
        service = await _started(remote_settings, remote)
        sleeps.clear()

        for index in range(20):
            service.add_subject(f"Matéria {index}", "#000")
        assert await service.remote_healthy() is False

        await asyncio.wait_for(service.shutdown(), timeout=5)

        assert sleeps == []


class TestLocalPersistence:
    @pytest.mark.asyncio
    async def test_snapshot_survives_restart(self, settings):
        first = await _started(settings, None)
        subject = first.add_subject("Português", "#0f0", study_duration=45)
        first.add_topic(subject.id, "Crase")
        first.update_pomodoro_settings(short_break_duration=120)
        await first.shutdown()

        second = await _started(settings, None)

        assert second.require_subject(subject.id).topics[0].name == "Crase"
        assert second.state.pomodoro_settings.short_break_duration == 120
        await second.shutdown()

    @pytest.mark.asyncio
    async def test_local_snapshot_wins_over_remote(self, remote_settings, remote):
        await remote.upsert("subjects", "remote-only", {"id": "remote-only", "name": "Remoto", "color": "#000"})
        first = await _started(remote_settings, InMemoryRemoteStore())
        first.add_subject("Local", "#fff")
        await first.shutdown()

        second = await _started(remote_settings, remote)

        assert [s.name for s in second.state.subjects] == ["Local"]
        await second.shutdown()


class TestPomodoroFlow:
    @pytest.mark.asyncio
    async def test_focus_block_is_logged_and_mirrored(self, remote_settings, remote):
        service = await _started(remote_settings, remote)
        subject = service.add_subject("Matemática", "#f00", study_duration=25)
        topic = service.add_topic(subject.id, "Frações")
        service.save_sequence([subject.id])

        assert service.start_pomodoro(topic.id, ItemType.TOPIC, custom_duration_sec=25 * 60)
        for _ in range(25 * 60):
            service.engine.tick()

        assert service.pomodoro.status == PomodoroStatus.SHORT_BREAK
        log = service.state.study_log[0]
        assert log.source == LogSource.POMODORO.value
        assert log.duration == 25
        assert service.state.sequence_index == 1

        while service.queue.pending_count():
            await service.flush_sync()
        assert remote.get("logs", log.id)["source"] == "pomodoro"
        await service.shutdown()
