"""Exception taxonomy for the sync engine.

Every failure inside a sync pass is caught at the boundary of the
operation it belongs to (record, collection or pass) and turned into a
log line plus a notification; these classes let that boundary tell the
kinds apart.
"""


class SyncError(Exception):
    """Base class for all sync engine errors."""


class RemoteFetchError(SyncError):
    """Listing or snapshotting a remote collection failed."""

    def __init__(self, collection: str, reason: str) -> None:
        self.collection = collection
        self.reason = reason
        super().__init__(
            f"Failed to fetch remote collection '{collection}': {reason}"
        )


class RecordError(SyncError):
    """Base class for failures tied to one record."""

    kind = "record"

    def __init__(self, collection: str, record_id: str, reason: str) -> None:
        self.collection = collection
        self.record_id = record_id
        self.reason = reason
        super().__init__(
            f"{self.kind} error for {collection} record {record_id}: {reason}"
        )


class RecordMappingError(RecordError):
    """A document or record could not be mapped (missing fields, bad id)."""

    kind = "mapping"


class RecordIOError(RecordError):
    """Fetching, writing or deleting a single record failed."""

    kind = "I/O"


class LocalSaveError(SyncError):
    """A local batch save failed; pending changes were rolled back."""


class UnknownCollectionError(SyncError, KeyError):
    """A collection name has no registry entry."""

    def __init__(self, collection: str) -> None:
        self.collection = collection
        super().__init__(f"Unknown collection: {collection}")

    def __str__(self) -> str:
        return f"Unknown collection: {self.collection}"


class StartupError(RuntimeError):
    """The engine could not start; the cause was already printed."""
