"""
Remote document store.

The remote side is an async document store keyed by (collection, doc_id)
under one user. Writes are whole-document upserts and deletes; reads are
only used to rebuild local state on startup.

Collections:
    subjects   one document per subject, topics nested
    logs       one document per study log entry
    sequences  the active plan under doc id "current", saved plans by their id
    templates  one document per subject template
    schedules  one document per schedule plan
    settings   counters and Pomodoro settings under doc id "profile"
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from loguru import logger

from studyflow.errors import RemoteStoreError

COLLECTIONS = ("subjects", "logs", "sequences", "templates", "schedules", "settings")


class RemoteStore(ABC):
    """Async document store interface."""

    @abstractmethod
    async def upsert(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or replace one document."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove one document; deleting a missing document is not an error."""

    @abstractmethod
    async def fetch_all(self, collection: str) -> dict[str, dict[str, Any]]:
        """All documents of a collection as {doc_id: document}."""

    async def close(self) -> None:
        return None

    async def health_check(self) -> bool:
        """True if the store is reachable."""
        return True


class InMemoryRemoteStore(RemoteStore):
    """Dict-backed store for tests and offline use."""

    def __init__(self):
        self.documents: dict[str, dict[str, dict[str, Any]]] = {}

    async def upsert(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.documents.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def delete(self, collection: str, doc_id: str) -> None:
        self.documents.get(collection, {}).pop(doc_id, None)

    async def fetch_all(self, collection: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self.documents.get(collection, {}))

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self.documents.get(collection, {}).get(doc_id)


class HttpRemoteStore(RemoteStore):
    """
    REST document API client.

    Routes:
        PUT    {base}/users/{user}/{collection}/{doc_id}
        DELETE {base}/users/{user}/{collection}/{doc_id}
        GET    {base}/users/{user}/{collection}  -> {doc_id: document}

    Reads retry timeouts, connection errors and 5xx responses with
    exponential backoff (1s, 2s, 4s...). Writes get write_attempts tries,
    one by default, since the outbound queue already retries them with its
    own backoff. 4xx responses are never retried.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        api_key: str | None = None,
        timeout_ms: int = 10000,
        retry_attempts: int = 3,
        write_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the document API
            user_id: Owner of all documents
            api_key: Sent as a bearer token when set
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Attempts per read before giving up
            write_attempts: Attempts per upsert or delete
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Backoff sleep, replaced in tests
        """
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.write_attempts = max(1, write_attempts)
        self._sleep = sleep

        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def _url(self, collection: str, doc_id: str | None = None) -> str:
        url = f"{self.base_url}/users/{self.user_id}/{collection}"
        return f"{url}/{doc_id}" if doc_id is not None else url

    async def _request(self, method: str, url: str, attempts: int, **kwargs: Any) -> httpx.Response:
        last_error: Exception | None = None

        for attempt in range(attempts):
            try:
                response = await self.client.request(method, url, **kwargs)
                if method == "DELETE" and response.status_code == 404:
                    return response
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    logger.error("Remote rejected {} {}: {}", method, url, e.response.status_code)
                    raise RemoteStoreError(
                        f"{method} {url} rejected with {e.response.status_code}",
                        retryable=False,
                    ) from e
                reason = f"server error {e.response.status_code}"
            except httpx.TimeoutException as e:
                last_error = e
                reason = "timeout"
            except httpx.RequestError as e:
                last_error = e
                reason = f"request error: {e}"

            wait_time = 2**attempt
            logger.warning(
                "Remote {} on attempt {}/{} for {} {}",
                reason,
                attempt + 1,
                attempts,
                method,
                url,
            )
            if attempt < attempts - 1:
                await self._sleep(wait_time)

        raise RemoteStoreError(
            f"{method} {url} failed after {attempts} attempt(s): {last_error}"
        )

    async def upsert(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._request(
            "PUT", self._url(collection, doc_id), self.write_attempts, json=data
        )

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._request("DELETE", self._url(collection, doc_id), self.write_attempts)

    async def fetch_all(self, collection: str) -> dict[str, dict[str, Any]]:
        response = await self._request("GET", self._url(collection), self.retry_attempts)
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteStoreError(f"Malformed response for {collection}", retryable=False) from e
        if not isinstance(data, dict):
            raise RemoteStoreError(f"Malformed response for {collection}", retryable=False)
        return data

    async def health_check(self) -> bool:
        """True if the API answers its health endpoint."""
        try:
            response = await self.client.get(f"{self.base_url}/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False
