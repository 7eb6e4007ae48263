"""
Accepting new leaf tiles.
"""

from concurrent.futures import Future

import structlog
from pydantic import BaseModel, ConfigDict

from tilepyramid.coords import TileKey
from tilepyramid.metadata.core import MetadataIndex, TileRecord, TileStatus
from tilepyramid.processing.codec import TileCodec
from tilepyramid.providers.core import TileStore

from .pyramid import Pyramid


class IngestResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: TileKey
    content_hash: str
    climb: Future
    "Resolves to the ClimbReport of the regeneration this upload started."


class Ingestor:
    codec: TileCodec
    store: TileStore
    index: MetadataIndex
    pyramid: Pyramid

    def __init__(
        self,
        codec: TileCodec,
        store: TileStore,
        index: MetadataIndex,
        pyramid: Pyramid,
    ):
        self.codec = codec
        self.store = store
        self.index = index
        self.pyramid = pyramid
        self.logger = structlog.get_logger()

    def ingest(self, key: TileKey, raw: bytes) -> IngestResult:
        """
        Store an uploaded image as the tile at ``key`` and start regenerating
        its ancestors in the background.

        Raises
        ------
        TileDecodeError
            If ``raw`` is not an image. Nothing is written in that case.
        StorageError
            If the tile or its record could not be written.
        """
        log = self.logger.bind(tile=key.hash, raw_size=len(raw))

        data = self.codec.normalize(raw)
        content_hash = self.codec.fingerprint(data)

        self.store.put(key, data)
        self.index.upsert(
            TileRecord(key=key, status=TileStatus.READY, content_hash=content_hash)
        )
        log.info("ingest.stored", content_hash=content_hash, size=len(data))

        return IngestResult(
            key=key, content_hash=content_hash, climb=self.pyramid.trigger(key)
        )
