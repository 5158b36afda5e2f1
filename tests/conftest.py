"""Shared pytest fixtures for matfinder-sync tests."""

from __future__ import annotations

import copy

import pytest

from matfinder_sync.core.async_utils import SingleWriter
from matfinder_sync.errors import RecordIOError, RemoteFetchError
from matfinder_sync.store.base import ChangeEvent, ChangeType
from matfinder_sync.store.local import SqlAlchemyLocalStore
from matfinder_sync.sync.links import PendingLinks
from matfinder_sync.sync.notifications import Notifier
from matfinder_sync.sync.registry import CollectionRegistry


class FakeSubscription:
    def __init__(self, remote: "FakeRemoteStore", collection: str, callback):
        self.remote = remote
        self.collection = collection
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        self.active = False


class FakeRemoteStore:
    """In-memory ``RemoteStore`` double.

    ``fail_list`` holds collection names whose listing fails,
    ``fail_fetch`` / ``fail_write`` hold document ids whose fetch or write
    fails.  ``emit()`` delivers a change to every active subscriber of a
    collection, as Firestore would from its watch thread.
    """

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, dict]] = {}
        self.writes: list[tuple[str, str, dict]] = []
        self.subscriptions: list[FakeSubscription] = []
        self.fail_list: set[str] = set()
        self.fail_fetch: set[str] = set()
        self.fail_write: set[str] = set()
        self.list_calls = 0

    def put(self, collection: str, doc_id: str, fields: dict) -> None:
        self.docs.setdefault(collection, {})[doc_id] = fields

    async def list_document_ids(self, collection: str) -> list[str]:
        self.list_calls += 1
        if collection in self.fail_list:
            raise RemoteFetchError(collection, "snapshot unavailable")
        return list(self.docs.get(collection, {}))

    async def fetch_document(self, collection: str, doc_id: str):
        if doc_id in self.fail_fetch:
            raise RecordIOError(collection, doc_id, "deadline exceeded")
        fields = self.docs.get(collection, {}).get(doc_id)
        return copy.deepcopy(fields) if fields is not None else None

    async def write_document(self, collection: str, doc_id: str, fields: dict):
        if doc_id in self.fail_write:
            raise RecordIOError(collection, doc_id, "permission denied")
        self.writes.append((collection, doc_id, fields))
        self.put(collection, doc_id, dict(fields))

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self.docs.get(collection, {}).pop(doc_id, None)

    def subscribe(self, collection: str, on_change) -> FakeSubscription:
        sub = FakeSubscription(self, collection, on_change)
        self.subscriptions.append(sub)
        return sub

    def emit(
        self,
        collection: str,
        change_type: ChangeType,
        doc_id: str,
        fields: dict | None = None,
    ) -> None:
        event = ChangeEvent(
            collection=collection,
            change_type=change_type,
            doc_id=doc_id,
            fields=fields or {},
        )
        for sub in self.subscriptions:
            if sub.active and sub.collection == collection:
                sub.callback(event)


class FakeConnectivity:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.calls = 0

    async def is_connected(self) -> bool:
        self.calls += 1
        return self.connected


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def local():
    store = SqlAlchemyLocalStore.from_url("sqlite://")
    yield store
    store.close()


@pytest.fixture
def writer():
    w = SingleWriter("test-writer")
    yield w
    w.shutdown()


@pytest.fixture
def registry():
    return CollectionRegistry()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def links(tmp_path):
    return PendingLinks(tmp_path / "state")


@pytest.fixture
def connectivity():
    return FakeConnectivity()


@pytest.fixture
def location_doc():
    """Factory for Mat_Finder-style location documents."""

    def _make(name="Gym A", **extra):
        fields = {
            "name": name,
            "location": "1 Main St, Springfield",
            "country": "US",
            "latitude": 40.0,
            "longitude": -75.0,
            "createdTimestamp": "2024-01-02T03:04:05Z",
        }
        fields.update(extra)
        return fields

    return _make
