"""
Single-flight gate for tile generation.

The coordinator owns the table of tiles currently being generated. A tile can
only be generated by whoever wins ``begin_generation`` for it, and the winner
must always hand it back through ``complete_generation``. These two calls are
also the only writers of the status and content hash of generated tiles.
"""

import enum
import threading

import structlog
from pydantic import BaseModel

from tilepyramid.coords import TileKey
from tilepyramid.metadata.core import MetadataIndex, TileRecord, TileStatus


class BeginResult(str, enum.Enum):
    PROCEED = "proceed"
    ALREADY_IN_FLIGHT = "already_in_flight"


class GenerationResult(BaseModel):
    content_hash: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, content_hash: str) -> "GenerationResult":
        return cls(content_hash=content_hash)

    @classmethod
    def failure(cls, error: str) -> "GenerationResult":
        return cls(error=error)


class GenerationCoordinator:
    index: MetadataIndex
    track_contention: bool
    "Remember when a duplicate trigger was turned away, so the winner can rerun."

    def __init__(self, index: MetadataIndex, track_contention: bool = False):
        self.index = index
        self.track_contention = track_contention
        self.logger = structlog.get_logger()

        # Tile -> whether a rerun was requested while it was in flight.
        self._in_flight: dict[TileKey, bool] = {}
        self._lock = threading.Lock()

    def in_flight(self, key: TileKey) -> bool:
        with self._lock:
            return key in self._in_flight

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def _previous_hash(self, key: TileKey) -> str | None:
        previous = self.index.get(key)
        return previous.content_hash if previous is not None else None

    def _release(self, key: TileKey) -> bool:
        with self._lock:
            return self._in_flight.pop(key, False)

    def mark_pending(self, key: TileKey) -> bool:
        """
        Record that a generation of ``key`` has been scheduled. Skipped (and
        False returned) if a generation of it is already in flight.

        Only the in-flight check holds the lock, not the index write. A
        generation claimed in between can have its record overwritten with
        PENDING, which the climb scheduled after this call settles again.
        """
        with self._lock:
            if key in self._in_flight:
                return False

        self.index.upsert(
            TileRecord(
                key=key,
                status=TileStatus.PENDING,
                content_hash=self._previous_hash(key),
            )
        )

        self.logger.debug("coordinator.generation.pending", tile=key.hash)
        return True

    def begin_generation(self, key: TileKey) -> BeginResult:
        """
        Claim ``key`` for generation.

        Returns ``ALREADY_IN_FLIGHT`` without waiting if someone else holds
        it. On ``PROCEED`` the caller holds the claim and must release it with
        ``complete_generation``.

        Raises
        ------
        StorageError
            If the GENERATING status could not be recorded. The claim is
            released before raising.
        """
        log = self.logger.bind(tile=key.hash)

        with self._lock:
            if key in self._in_flight:
                if self.track_contention:
                    self._in_flight[key] = True

                log.info("coordinator.generation.already_in_flight")
                return BeginResult.ALREADY_IN_FLIGHT

            self._in_flight[key] = False

        try:
            self.index.upsert(
                TileRecord(
                    key=key,
                    status=TileStatus.GENERATING,
                    content_hash=self._previous_hash(key),
                )
            )
        except BaseException:
            self._release(key)
            raise

        log.debug("coordinator.generation.begun")
        return BeginResult.PROCEED

    def complete_generation(self, key: TileKey, result: GenerationResult) -> bool:
        """
        Record the outcome of a generation and release the claim on ``key``.

        The claim is released even if recording the outcome fails, in which
        case the ``StorageError`` propagates.

        Returns
        -------
        bool
            Whether another trigger asked for ``key`` while it was in flight
            (only tracked with ``track_contention``).
        """
        log = self.logger.bind(tile=key.hash)

        try:
            if result.ok:
                self.index.upsert(
                    TileRecord(
                        key=key,
                        status=TileStatus.READY,
                        content_hash=result.content_hash,
                    )
                )
                log.debug(
                    "coordinator.generation.ready", content_hash=result.content_hash
                )
            else:
                log.warning("coordinator.generation.failed", error=result.error)
                self.index.upsert(
                    TileRecord(
                        key=key,
                        status=TileStatus.FAILED,
                        content_hash=self._previous_hash(key),
                        error=result.error,
                    )
                )
        finally:
            rerun = self._release(key)

        return rerun
