"""
Tile metadata: status and content fingerprint for every tile, and the
index that stores them.
"""

import enum
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from tilepyramid.coords import TileKey


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TileStatus(str, enum.Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    READY = "READY"
    FAILED = "FAILED"


class TileRecord(BaseModel):
    key: TileKey
    status: TileStatus
    content_hash: str | None = None
    "Short fingerprint of the encoded content, used for change detection."
    updated_at: datetime = Field(default_factory=utcnow)
    error: str | None = None
    "Reason for the last failure, if the tile is FAILED."


class MetadataIndex(ABC):
    """
    Record store keyed by tile. Writes are last-writer-wins per key; any I/O
    failure is raised as ``StorageError``.
    """

    def __init__(self):
        self.logger = structlog.get_logger()

    @abstractmethod
    def get(self, key: TileKey) -> TileRecord | None:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, record: TileRecord):
        raise NotImplementedError

    @abstractmethod
    def records(self, status: TileStatus | None = None) -> list[TileRecord]:
        """
        All records, optionally only those with the given status, ordered by
        zoom, x and y.
        """
        raise NotImplementedError


class InMemoryMetadataIndex(MetadataIndex):
    def __init__(self):
        self._records: dict[TileKey, TileRecord] = {}
        self._lock = threading.Lock()
        super().__init__()

    def get(self, key: TileKey) -> TileRecord | None:
        with self._lock:
            return self._records.get(key)

    def upsert(self, record: TileRecord):
        with self._lock:
            self._records[record.key] = record

        self.logger.debug(
            "metadata.inmemory.upserted", tile=record.key.hash, status=record.status
        )

    def records(self, status: TileStatus | None = None) -> list[TileRecord]:
        with self._lock:
            found = list(self._records.values())

        return sorted(
            (x for x in found if status is None or x.status == status),
            key=lambda x: (x.key.zoom, x.key.x, x.key.y),
        )
