"""
Regeneration of the pyramid above a freshly written tile.

A climb walks from the triggering tile up to the root one level at a time,
rebuilding each ancestor from whichever of its children exist at that moment.
It stops early when another climb already holds the next ancestor, or when an
ancestor fails to generate; the tiles above a failure are left as they were.
"""

import enum
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from time import perf_counter

import structlog
from pydantic import BaseModel

from tilepyramid.coords import TileKey, children_of, parent_of
from tilepyramid.metadata.core import MetadataIndex
from tilepyramid.processing.codec import TileDecodeError
from tilepyramid.processing.compositor import Compositor
from tilepyramid.providers.core import StorageError, TileStore

from .coordinator import BeginResult, GenerationCoordinator, GenerationResult


class ClimbOutcome(str, enum.Enum):
    REACHED_ROOT = "reached_root"
    LOST_RACE = "lost_race"
    FAILED = "failed"


class ClimbReport(BaseModel):
    trigger: TileKey
    outcome: ClimbOutcome | None = None
    generated: list[TileKey] = []
    "Ancestors generated by this climb, in order."
    stopped_at: TileKey | None = None
    "The ancestor the climb stopped at, unless it reached the root."
    error: str | None = None


class Pyramid:
    store: TileStore
    index: MetadataIndex
    compositor: Compositor
    coordinator: GenerationCoordinator
    max_contention_reruns: int

    def __init__(
        self,
        store: TileStore,
        index: MetadataIndex,
        compositor: Compositor,
        coordinator: GenerationCoordinator | None = None,
        max_workers: int = 4,
        regenerate_on_contention: bool = False,
        max_contention_reruns: int = 1,
    ):
        self.store = store
        self.index = index
        self.compositor = compositor
        self.coordinator = coordinator or GenerationCoordinator(
            index=index, track_contention=regenerate_on_contention
        )
        self.max_contention_reruns = max_contention_reruns
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tilepyramid-climb"
        )
        self.logger = structlog.get_logger()

    def __enter__(self) -> "Pyramid":
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self, wait: bool = True):
        self.executor.shutdown(wait=wait)

    def fetch_children(self, key: TileKey) -> dict[TileKey, bytes]:
        children = {}

        for child in children_of(key):
            data = self.store.get(child)

            if data is not None:
                children[child] = data

        return children

    def _generate(self, key: TileKey) -> GenerationResult:
        tile = self.compositor.compose(key, self.fetch_children(key))
        self.store.put(key, tile.data)
        return GenerationResult.success(tile.content_hash)

    def _run_level(self, key: TileKey) -> tuple[GenerationResult, bool]:
        """
        Generate ``key``, whose claim the caller holds, and release the claim.
        Returns the result and whether a rerun was requested meanwhile.
        """
        log = self.logger.bind(tile=key.hash)

        try:
            result = self._generate(key)
        except (TileDecodeError, StorageError) as e:
            result = GenerationResult.failure(f"{type(e).__name__}: {e}")
        except Exception as e:
            try:
                self.coordinator.complete_generation(
                    key, GenerationResult.failure(f"{type(e).__name__}: {e}")
                )
            except StorageError as record_error:
                log.error("pyramid.level.record_failed", error=str(record_error))
            raise

        try:
            rerun = self.coordinator.complete_generation(key, result)
        except StorageError as e:
            log.error("pyramid.level.record_failed", error=str(e))
            return GenerationResult.failure(f"{type(e).__name__}: {e}"), False

        return result, rerun

    def _climb_level(
        self, key: TileKey, report: ClimbReport
    ) -> tuple[ClimbOutcome | None, bool]:
        """
        One step of a climb. Returns the outcome that ends the climb, or None
        to carry on, and whether the tile should be generated again.
        """
        log = self.logger.bind(trigger=report.trigger.hash, tile=key.hash)

        try:
            begun = self.coordinator.begin_generation(key)
        except StorageError as e:
            log.error("pyramid.level.begin_failed", error=str(e))
            report.error = f"{type(e).__name__}: {e}"
            return ClimbOutcome.FAILED, False

        if begun == BeginResult.ALREADY_IN_FLIGHT:
            return ClimbOutcome.LOST_RACE, False

        result, rerun = self._run_level(key)

        if not result.ok:
            log.warning("pyramid.level.failed", error=result.error)
            report.error = result.error
            return ClimbOutcome.FAILED, False

        log.debug("pyramid.level.generated", content_hash=result.content_hash)
        return None, rerun

    def climb(self, key: TileKey) -> ClimbReport:
        """
        Regenerate every ancestor of ``key``, from its parent up to the root.

        Performs at most ``key.zoom`` generations (plus contention reruns when
        enabled). Errors at a level are recorded on that level's tile and end
        the climb; they are not raised.
        """
        log = self.logger.bind(trigger=key.hash)
        log.info("pyramid.climb.started")
        start = perf_counter()

        report = ClimbReport(trigger=key)
        current = key

        while current.zoom > 0:
            parent = parent_of(current)

            stop, rerun = self._climb_level(parent, report)

            if stop is None:
                report.generated.append(parent)

            reruns = 0
            while stop is None and rerun and reruns < self.max_contention_reruns:
                reruns += 1
                log.info("pyramid.level.rerun", tile=parent.hash, rerun=reruns)
                stop, rerun = self._climb_level(parent, report)

            if stop is not None:
                report.outcome = stop
                report.stopped_at = parent
                log.info(
                    "pyramid.climb.stopped",
                    tile=parent.hash,
                    outcome=stop.value,
                    error=report.error,
                    duration=perf_counter() - start,
                )
                return report

            current = parent

        report.outcome = ClimbOutcome.REACHED_ROOT
        log.info(
            "pyramid.climb.finished",
            generated=len(report.generated),
            duration=perf_counter() - start,
        )
        return report

    def _climb_done(self, key: TileKey, future: Future):
        log = self.logger.bind(trigger=key.hash)

        if future.cancelled():
            log.warning("pyramid.climb.cancelled")
            return

        error = future.exception()

        if error is not None:
            log.error("pyramid.climb.crashed", exc_info=error)

    def trigger(self, key: TileKey) -> Future:
        """
        Start a climb from ``key`` in the background and return immediately.

        The returned future resolves to the ``ClimbReport``; callers are free
        to ignore it. Anything the climb raises goes to the log, never back
        to the caller, and so does a failure to schedule it, in which case
        the future holds that error.
        """
        log = self.logger.bind(trigger=key.hash)

        if key.zoom > 0:
            try:
                self.coordinator.mark_pending(parent_of(key))
            except StorageError as e:
                log.warning("pyramid.climb.pending_not_recorded", error=str(e))

        try:
            future = self.executor.submit(self.climb, key)
        except RuntimeError as e:
            # The executor has been shut down.
            log.error("pyramid.climb.not_scheduled", error=str(e))
            future = Future()
            future.set_exception(e)
            return future

        future.add_done_callback(partial(self._climb_done, key))
        log.debug("pyramid.climb.scheduled")

        return future
