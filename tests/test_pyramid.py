import threading
from collections import Counter

import numpy as np
import pytest
from structlog.testing import capture_logs

from tilepyramid.coords import TileKey
from tilepyramid.generation.pyramid import ClimbOutcome, Pyramid
from tilepyramid.metadata.core import TileStatus
from tilepyramid.processing.compositor import Compositor
from tilepyramid.providers.core import StorageError
from tilepyramid.providers.memory import InMemoryTileStore

from .conftest import BLUE, GREEN, RED, key, solid

LEAF = key(3, 5, 2)
SIBLING = key(3, 4, 2)
ANCESTORS = [key(2, 2, 1), key(1, 1, 0), key(0, 0, 0)]


class CountingCompositor(Compositor):
    """
    Counts generations per tile and can hold one tile's generation until
    released, to line up concurrent climbs.
    """

    def __init__(self, codec, block_on: TileKey | None = None):
        super().__init__(codec=codec)
        self.calls = Counter()
        self.block_on = block_on
        self.entered = threading.Event()
        self.release = threading.Event()

    def compose(self, parent, children):
        self.calls[parent] += 1

        if parent == self.block_on:
            self.entered.set()
            assert self.release.wait(timeout=10)

        return super().compose(parent, children)


class BrokenStore(InMemoryTileStore):
    def put(self, key, data):
        if key.zoom < 3:
            raise StorageError("disk full")
        super().put(key, data)


def quadrant(buffer: np.ndarray, dx: int, dy: int) -> np.ndarray:
    half = buffer.shape[0] // 2
    return buffer[dy * half : (dy + 1) * half, dx * half : (dx + 1) * half]


def test_climb_generates_every_ancestor(pyramid, store, index, codec):
    store.put(LEAF, solid(codec, RED))

    report = pyramid.climb(LEAF)

    assert report.outcome == ClimbOutcome.REACHED_ROOT
    assert report.generated == ANCESTORS
    assert report.stopped_at is None

    for ancestor in ANCESTORS:
        record = index.get(ancestor)
        assert record.status == TileStatus.READY
        assert record.content_hash == codec.fingerprint(store.get(ancestor))

    updated = [index.get(ancestor).updated_at for ancestor in ANCESTORS]
    assert updated == sorted(updated)

    # (3, 5, 2) is the top-right child of (2, 2, 1).
    parent = codec.decode(store.get(key(2, 2, 1)))
    assert (quadrant(parent, 1, 0) == RED).all()
    assert (quadrant(parent, 0, 0) == 0).all()


def test_climb_uses_children_present_at_each_level(pyramid, store, codec):
    store.put(LEAF, solid(codec, RED))
    store.put(key(2, 3, 1), solid(codec, BLUE))

    pyramid.climb(LEAF)

    level_one = codec.decode(store.get(key(1, 1, 0)))
    # (2, 2, 1) is bottom-left and (2, 3, 1) bottom-right of (1, 1, 0).
    assert (quadrant(level_one, 1, 1) == BLUE).all()
    assert (quadrant(level_one, 0, 0) == 0).all()


def test_climb_is_bounded_by_zoom(store, index, codec):
    compositor = CountingCompositor(codec)
    deep = key(9, 300, 17)
    store.put(deep, solid(codec, GREEN))

    with Pyramid(store=store, index=index, compositor=compositor) as pyramid:
        report = pyramid.climb(deep)

    assert report.outcome == ClimbOutcome.REACHED_ROOT
    assert sum(compositor.calls.values()) == 9
    assert [tile.zoom for tile in report.generated] == list(range(8, -1, -1))


def test_climb_from_root_does_nothing(pyramid, index):
    report = pyramid.climb(key(0, 0, 0))

    assert report.outcome == ClimbOutcome.REACHED_ROOT
    assert report.generated == []
    assert index.records() == []


def test_corrupt_child_stops_the_climb(pyramid, store, index, codec):
    store.put(LEAF, b"not an image")
    store.put(SIBLING, solid(codec, RED))

    report = pyramid.climb(LEAF)

    assert report.outcome == ClimbOutcome.FAILED
    assert report.stopped_at == key(2, 2, 1)
    assert "TileDecodeError" in report.error
    assert report.generated == []

    record = index.get(key(2, 2, 1))
    assert record.status == TileStatus.FAILED
    assert "TileDecodeError" in record.error
    assert store.get(key(2, 2, 1)) is None

    for untouched in ANCESTORS[1:]:
        assert index.get(untouched) is None
        assert store.get(untouched) is None

    assert pyramid.coordinator.in_flight_count == 0


def test_failed_tile_is_retried_by_next_trigger(pyramid, store, index, codec):
    store.put(LEAF, b"not an image")
    pyramid.climb(LEAF)

    store.put(LEAF, solid(codec, RED))
    report = pyramid.climb(SIBLING)

    assert report.outcome == ClimbOutcome.REACHED_ROOT
    assert index.get(key(2, 2, 1)).status == TileStatus.READY
    assert index.get(key(2, 2, 1)).error is None


def test_store_failure_marks_level_failed(index, compositor, codec):
    store = BrokenStore()
    store.put(LEAF, solid(codec, RED))

    with Pyramid(store=store, index=index, compositor=compositor) as pyramid:
        report = pyramid.climb(LEAF)

    assert report.outcome == ClimbOutcome.FAILED
    assert report.stopped_at == key(2, 2, 1)
    assert "StorageError" in report.error
    assert index.get(key(2, 2, 1)).status == TileStatus.FAILED
    assert index.get(key(1, 1, 0)) is None


def test_unexpected_error_releases_claim_and_propagates(store, index, codec):
    class Exploding(Compositor):
        def compose(self, parent, children):
            raise RuntimeError("bug")

    store.put(LEAF, solid(codec, RED))

    with Pyramid(store=store, index=index, compositor=Exploding(codec)) as pyramid:
        with pytest.raises(RuntimeError):
            pyramid.climb(LEAF)

        assert pyramid.coordinator.in_flight_count == 0

    assert index.get(key(2, 2, 1)).status == TileStatus.FAILED


def test_climb_stops_when_ancestor_in_flight(pyramid, store, index, codec):
    store.put(LEAF, solid(codec, RED))
    pyramid.coordinator.begin_generation(key(1, 1, 0))

    report = pyramid.climb(LEAF)

    assert report.outcome == ClimbOutcome.LOST_RACE
    assert report.generated == [key(2, 2, 1)]
    assert report.stopped_at == key(1, 1, 0)
    assert store.get(key(1, 1, 0)) is None
    assert index.get(key(1, 1, 0)).status == TileStatus.GENERATING
    assert index.get(key(0, 0, 0)) is None


def test_concurrent_climbs_generate_shared_ancestor_once(store, index, codec):
    compositor = CountingCompositor(codec, block_on=key(2, 2, 1))
    store.put(SIBLING, solid(codec, RED))
    store.put(LEAF, solid(codec, GREEN))

    with Pyramid(store=store, index=index, compositor=compositor) as pyramid:
        first = pyramid.trigger(SIBLING)
        assert compositor.entered.wait(timeout=10)

        second = pyramid.climb(LEAF)

        compositor.release.set()
        first = first.result(timeout=10)

    assert second.outcome == ClimbOutcome.LOST_RACE
    assert second.stopped_at == key(2, 2, 1)
    assert second.generated == []

    assert first.outcome == ClimbOutcome.REACHED_ROOT
    assert first.generated == ANCESTORS
    assert compositor.calls[key(2, 2, 1)] == 1

    # Both siblings were written before the winner fetched its children.
    parent = codec.decode(store.get(key(2, 2, 1)))
    assert (quadrant(parent, 0, 0) == RED).all()
    assert (quadrant(parent, 1, 0) == GREEN).all()


def test_contention_rerun_picks_up_late_sibling(store, index, codec):
    class LateSibling(CountingCompositor):
        """
        While (2, 2, 1) is being generated, a sibling lands and its own
        climb is turned away.
        """

        pyramid = None

        def compose(self, parent, children):
            if parent == key(2, 2, 1) and self.calls[parent] == 0:
                store.put(LEAF, solid(codec, GREEN))
                self.late = self.pyramid.climb(LEAF)

            return super().compose(parent, children)

    compositor = LateSibling(codec)
    store.put(SIBLING, solid(codec, RED))

    with Pyramid(
        store=store,
        index=index,
        compositor=compositor,
        regenerate_on_contention=True,
    ) as pyramid:
        compositor.pyramid = pyramid
        report = pyramid.climb(SIBLING)

    assert compositor.late.outcome == ClimbOutcome.LOST_RACE
    assert report.outcome == ClimbOutcome.REACHED_ROOT
    assert report.generated == ANCESTORS
    assert compositor.calls[key(2, 2, 1)] == 2

    parent = codec.decode(store.get(key(2, 2, 1)))
    assert (quadrant(parent, 1, 0) == GREEN).all()


def test_without_rerun_late_sibling_is_missed(store, index, codec):
    class LateSibling(CountingCompositor):
        pyramid = None

        def compose(self, parent, children):
            if parent == key(2, 2, 1) and self.calls[parent] == 0:
                store.put(LEAF, solid(codec, GREEN))
                self.pyramid.climb(LEAF)

            return super().compose(parent, children)

    compositor = LateSibling(codec)
    store.put(SIBLING, solid(codec, RED))

    with Pyramid(store=store, index=index, compositor=compositor) as pyramid:
        compositor.pyramid = pyramid
        pyramid.climb(SIBLING)

    assert compositor.calls[key(2, 2, 1)] == 1
    parent = codec.decode(store.get(key(2, 2, 1)))
    assert (quadrant(parent, 1, 0) == 0).all()


def test_trigger_returns_before_climb_finishes(store, index, codec):
    compositor = CountingCompositor(codec, block_on=key(2, 2, 1))
    store.put(LEAF, solid(codec, RED))

    with Pyramid(store=store, index=index, compositor=compositor) as pyramid:
        future = pyramid.trigger(LEAF)
        assert compositor.entered.wait(timeout=10)

        assert not future.done()
        assert index.get(key(2, 2, 1)).status == TileStatus.GENERATING

        compositor.release.set()
        assert future.result(timeout=10).outcome == ClimbOutcome.REACHED_ROOT


def test_trigger_marks_parent_pending(pyramid, index):
    pyramid.executor.shutdown(wait=True)

    with capture_logs() as logs:
        future = pyramid.trigger(LEAF)

    assert isinstance(future.exception(), RuntimeError)
    assert any(entry["event"] == "pyramid.climb.not_scheduled" for entry in logs)
    assert index.get(key(2, 2, 1)).status == TileStatus.PENDING


def test_trigger_logs_crashes(store, index, codec):
    class Exploding(Compositor):
        def compose(self, parent, children):
            raise RuntimeError("bug")

    store.put(LEAF, solid(codec, RED))

    with capture_logs() as logs:
        with Pyramid(store=store, index=index, compositor=Exploding(codec)) as pyramid:
            future = pyramid.trigger(LEAF)

    assert isinstance(future.exception(), RuntimeError)
    assert any(entry["event"] == "pyramid.climb.crashed" for entry in logs)
    assert index.get(key(2, 2, 1)).status == TileStatus.FAILED
