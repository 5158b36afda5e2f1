"""Firestore implementation of the remote document store.

The ``google-cloud-firestore`` client is synchronous; every call is run
on a worker thread with ``run_sync`` so the event loop never blocks.
Live listeners use ``CollectionReference.on_snapshot``, whose callbacks
arrive on the client's watch thread.
"""

from __future__ import annotations

import logging
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore

from matfinder_sync.config import Settings
from matfinder_sync.core.async_utils import run_sync
from matfinder_sync.errors import RecordIOError, RemoteFetchError
from matfinder_sync.store.base import (
    ChangeCallback,
    ChangeEvent,
    ChangeType,
    FieldMap,
)

logger = logging.getLogger(__name__)

_API_ERRORS = (gexc.GoogleAPIError, gexc.RetryError)

_CHANGE_TYPES = {
    "ADDED": ChangeType.ADDED,
    "MODIFIED": ChangeType.MODIFIED,
    "REMOVED": ChangeType.REMOVED,
}


def create_firestore_client(settings: Settings) -> firestore.Client:
    """Build a Firestore client from settings.

    Uses the service account key file when one is configured, otherwise
    Application Default Credentials.
    """
    kwargs: dict[str, Any] = {}
    if settings.firestore_project:
        kwargs["project"] = settings.firestore_project
    if settings.firestore_database:
        kwargs["database"] = settings.firestore_database
    if settings.credentials_file:
        return firestore.Client.from_service_account_json(
            settings.credentials_file, **kwargs
        )
    return firestore.Client(**kwargs)


class _WatchHandle:
    def __init__(self, collection: str, watch: Any) -> None:
        self.collection = collection
        self._watch = watch

    def unsubscribe(self) -> None:
        logger.debug("Unsubscribing listener for %s", self.collection)
        self._watch.unsubscribe()


class FirestoreRemoteStore:
    """``RemoteStore`` backed by a ``google.cloud.firestore.Client``.

    Args:
        client: Firestore client.
        timeout: Per-request timeout in seconds; a timed-out request
            surfaces as a per-record failure.
    """

    def __init__(self, client: firestore.Client, timeout: float = 30.0) -> None:
        self.client = client
        self.timeout = timeout

    async def list_document_ids(self, collection: str) -> list[str]:
        def _list() -> list[str]:
            ref = self.client.collection(collection)
            return [snap.id for snap in ref.stream(timeout=self.timeout)]

        try:
            return await run_sync(_list)
        except _API_ERRORS as exc:
            raise RemoteFetchError(collection, str(exc)) from exc

    async def fetch_document(
        self, collection: str, doc_id: str
    ) -> FieldMap | None:
        def _get() -> FieldMap | None:
            snap = (
                self.client.collection(collection)
                .document(doc_id)
                .get(timeout=self.timeout)
            )
            if not snap.exists:
                return None
            return snap.to_dict() or {}

        try:
            return await run_sync(_get)
        except _API_ERRORS as exc:
            raise RecordIOError(collection, doc_id, str(exc)) from exc

    async def write_document(
        self, collection: str, doc_id: str, fields: FieldMap
    ) -> None:
        ref = self.client.collection(collection).document(doc_id)
        try:
            await run_sync(ref.set, fields, timeout=self.timeout)
        except _API_ERRORS as exc:
            raise RecordIOError(collection, doc_id, str(exc)) from exc

    async def delete_document(self, collection: str, doc_id: str) -> None:
        ref = self.client.collection(collection).document(doc_id)
        try:
            await run_sync(ref.delete, timeout=self.timeout)
        except _API_ERRORS as exc:
            raise RecordIOError(collection, doc_id, str(exc)) from exc

    def subscribe(
        self, collection: str, on_change: ChangeCallback
    ) -> _WatchHandle:
        def _on_snapshot(col_snapshot, changes, read_time) -> None:
            for change in changes:
                change_type = _CHANGE_TYPES.get(change.type.name)
                if change_type is None:
                    logger.warning(
                        "Ignoring unknown change type %s on %s",
                        change.type,
                        collection,
                    )
                    continue
                doc = change.document
                fields = (
                    {} if change_type is ChangeType.REMOVED else doc.to_dict() or {}
                )
                on_change(
                    ChangeEvent(
                        collection=collection,
                        change_type=change_type,
                        doc_id=doc.id,
                        fields=fields,
                    )
                )

        watch = self.client.collection(collection).on_snapshot(_on_snapshot)
        logger.info("Listening for changes on %s", collection)
        return _WatchHandle(collection, watch)
