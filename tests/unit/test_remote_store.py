"""
Unit tests for the remote document stores.

HttpRemoteStore runs against httpx.MockTransport; backoff sleeps are
recorded instead of awaited.
"""

import json

import httpx
import pytest

from studyflow.errors import RemoteStoreError
from studyflow.sync.remote_store import HttpRemoteStore, InMemoryRemoteStore


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _store(handler, sleep=None, retry_attempts=3, write_attempts=1):
    return HttpRemoteStore(
        base_url="https://api.example.test/v1/",
        user_id="u1",
        api_key="secret",
        retry_attempts=retry_attempts,
        write_attempts=write_attempts,
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
    )


class TestInMemoryRemoteStore:
    @pytest.mark.asyncio
    async def test_documents_are_copied(self):
        store = InMemoryRemoteStore()
        doc = {"topics": [{"id": "t"}]}

        await store.upsert("subjects", "math", doc)
        doc["topics"].clear()
        fetched = await store.fetch_all("subjects")
        fetched["math"]["topics"].clear()

        assert store.get("subjects", "math") == {"topics": [{"id": "t"}]}

    @pytest.mark.asyncio
    async def test_delete_missing_is_fine(self):
        store = InMemoryRemoteStore()
        await store.delete("subjects", "ghost")
        assert await store.fetch_all("subjects") == {}


class TestHttpRemoteStore:
    @pytest.mark.asyncio
    async def test_upsert_puts_document(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        store = _store(handler)
        await store.upsert("subjects", "math", {"name": "Matemática"})
        await store.close()

        request = seen[0]
        assert request.method == "PUT"
        assert str(request.url) == "https://api.example.test/v1/users/u1/subjects/math"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {"name": "Matemática"}

    @pytest.mark.asyncio
    async def test_fetch_all(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/v1/users/u1/logs"
            return httpx.Response(200, json={"l1": {"duration": 10}})

        store = _store(handler)
        assert await store.fetch_all("logs") == {"l1": {"duration": 10}}
        await store.close()

    @pytest.mark.asyncio
    async def test_fetch_all_rejects_non_object(self):
        store = _store(lambda request: httpx.Response(200, json=[1, 2]))
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.fetch_all("logs")
        assert exc_info.value.retryable is False
        await store.close()

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_with_backoff(self):
        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json={})])
        sleep = RecordingSleep()

        store = _store(lambda request: next(responses), sleep=sleep)
        assert await store.fetch_all("subjects") == {}
        await store.close()

        assert sleep.calls == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        sleep = RecordingSleep()
        store = _store(lambda request: httpx.Response(500), sleep=sleep)

        with pytest.raises(RemoteStoreError) as exc_info:
            await store.fetch_all("subjects")
        await store.close()

        assert exc_info.value.retryable is True
        assert sleep.calls == [1, 2]

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={})

        store = _store(handler, write_attempts=2)
        await store.delete("logs", "l1")
        await store.close()

        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(403)

        store = _store(handler)
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.upsert("subjects", "math", {})
        await store.close()

        assert exc_info.value.retryable is False
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_delete_of_missing_document_succeeds(self):
        store = _store(lambda request: httpx.Response(404))
        await store.delete("logs", "gone")
        await store.close()

    @pytest.mark.asyncio
    async def test_health_check(self):
        def handler(request):
            return httpx.Response(200 if request.url.path == "/v1/health" else 404)

        store = _store(handler)
        assert await store.health_check() is True
        await store.close()

    @pytest.mark.asyncio
    async def test_writes_are_attempted_once_by_default(self):
        attempts = []
        sleep = RecordingSleep()

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("offline", request=request)

        store = _store(handler, sleep=sleep)
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.upsert("subjects", "math", {})
        with pytest.raises(RemoteStoreError):
            await store.delete("subjects", "math")
        await store.close()

        assert exc_info.value.retryable is True
        assert len(attempts) == 2
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        store = _store(handler)
        assert await store.health_check() is False
        await store.close()

    @pytest.mark.asyncio
    async def test_in_memory_store_is_always_healthy(self):
        assert await InMemoryRemoteStore().health_check() is True
