"""Collection registry.

A single table, built once, that ties each logical collection to its
remote collection name and its mapper.  The upload, download and listener
paths all resolve collections through it.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from matfinder_sync.config_schema import CollectionNames
from matfinder_sync.errors import UnknownCollectionError
from matfinder_sync.sync.mapper import MAPPERS, EntityMapper
from matfinder_sync.sync.records import SYNC_ORDER, Collection


@dataclass(frozen=True)
class CollectionSpec:
    """Everything the engine needs to know about one collection."""

    key: Collection
    remote_name: str
    mapper: EntityMapper

    @property
    def parent_key(self) -> Collection | None:
        return self.mapper.parent_collection

    @property
    def record_type(self) -> type:
        return self.mapper.record_type


class CollectionRegistry:
    """Lookup of ``CollectionSpec`` by logical key or remote name.

    Iteration yields specs in sync order: locations, day schedules,
    time slots, reviews.
    """

    def __init__(self, names: CollectionNames | None = None) -> None:
        names = names or CollectionNames()
        self._specs: dict[Collection, CollectionSpec] = {
            key: CollectionSpec(
                key=key,
                remote_name=getattr(names, key.value),
                mapper=MAPPERS[key],
            )
            for key in SYNC_ORDER
        }
        self._by_remote = {s.remote_name: s for s in self._specs.values()}

    def __iter__(self) -> Iterator[CollectionSpec]:
        return iter(self._specs[key] for key in SYNC_ORDER)

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, collection: Collection | str) -> CollectionSpec:
        """Resolve a logical key, its string value, or a remote name.

        Raises:
            UnknownCollectionError: If nothing matches.
        """
        if isinstance(collection, Collection):
            return self._specs[collection]
        try:
            return self._specs[Collection(collection)]
        except ValueError:
            pass
        spec = self._by_remote.get(collection)
        if spec is None:
            raise UnknownCollectionError(collection)
        return spec

    def children_of(self, collection: Collection) -> list[CollectionSpec]:
        """Specs whose records point at *collection* as their parent."""
        return [s for s in self if s.parent_key == collection]
