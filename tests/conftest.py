"""
Shared fixtures: a small lossless codec so that pixels can be compared
exactly, and in-memory collaborators.
"""

import numpy as np
import pytest

from tilepyramid.coords import TileKey
from tilepyramid.generation.pyramid import Pyramid
from tilepyramid.metadata.core import InMemoryMetadataIndex
from tilepyramid.processing.codec import TileCodec
from tilepyramid.processing.compositor import Compositor
from tilepyramid.providers.memory import InMemoryTileStore

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)


def solid(codec: TileCodec, colour: tuple[int, int, int, int]) -> bytes:
    buffer = np.empty((codec.tile_size, codec.tile_size, 4), dtype=np.uint8)
    buffer[:, :] = colour
    return codec.encode(buffer)


def key(zoom: int, x: int, y: int) -> TileKey:
    return TileKey(zoom=zoom, x=x, y=y)


@pytest.fixture
def codec():
    return TileCodec(tile_size=8, format="png")


@pytest.fixture
def store():
    return InMemoryTileStore()


@pytest.fixture
def index():
    return InMemoryMetadataIndex()


@pytest.fixture
def compositor(codec):
    return Compositor(codec=codec)


@pytest.fixture
def pyramid(store, index, compositor):
    with Pyramid(store=store, index=index, compositor=compositor) as pyramid:
        yield pyramid
