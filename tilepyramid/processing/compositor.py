"""
Composite up to four child tiles into their parent.
"""

from typing import Mapping

import numpy as np
import structlog
from pydantic import BaseModel

from tilepyramid.coords import TileKey, quadrant_offset

from .codec import TileCodec


class CompositeTile(BaseModel):
    key: TileKey
    data: bytes
    content_hash: str
    children: int
    "Number of children that contributed to this tile."


def downsample(buffer: np.ndarray) -> np.ndarray:
    """
    Halve a (2n, 2n, channels) uint8 buffer by averaging each 2x2 block,
    rounding halves up. Integer arithmetic keeps the result bit-for-bit
    reproducible.
    """
    wide = buffer.astype(np.uint16)

    tl = wide[::2, ::2]
    tr = wide[::2, 1::2]
    bl = wide[1::2, ::2]
    br = wide[1::2, 1::2]

    return ((tl + tr + bl + br + 2) // 4).astype(np.uint8)


class Compositor:
    codec: TileCodec
    background: tuple[int, int, int, int]
    "RGBA colour of quadrants with no child, defaults to fully transparent."

    def __init__(
        self,
        codec: TileCodec,
        background: tuple[int, int, int, int] = (0, 0, 0, 0),
    ):
        self.codec = codec
        self.background = tuple(background)
        self.logger = structlog.get_logger()

        return

    def blank(self) -> np.ndarray:
        size = self.codec.tile_size
        canvas = np.empty((size, size, 4), dtype=np.uint8)
        canvas[:, :] = self.background
        return canvas

    def compose_canvas(
        self, parent: TileKey, children: Mapping[TileKey, bytes]
    ) -> np.ndarray:
        """
        Build the parent buffer from whichever children are present.

        Parameters
        ----------
        parent : TileKey
            The tile being generated.
        children : Mapping[TileKey, bytes]
            Encoded child tiles keyed by their coordinates. Absent children
            are simply left out and their quadrant keeps the background.

        Raises
        ------
        TileDecodeError
            If any supplied child cannot be decoded. No partial tile is
            returned in that case.
        InvalidCoordinateError
            If a supplied key is not a child of ``parent``.
        """
        canvas = self.blank()
        half = self.codec.tile_size // 2

        for child, data in children.items():
            dx, dy = quadrant_offset(parent, child)
            quadrant = downsample(self.codec.decode(data))
            rows = np.s_[dy * half : (dy + 1) * half]
            cols = np.s_[dx * half : (dx + 1) * half]
            canvas[rows, cols] = quadrant

        return canvas

    def compose(
        self, parent: TileKey, children: Mapping[TileKey, bytes]
    ) -> CompositeTile:
        log = self.logger.bind(tile=parent.hash, children=len(children))

        if not children:
            log.warning("compositor.no_children")

        data = self.codec.encode(self.compose_canvas(parent, children))
        log.debug("compositor.composed", size=len(data))

        return CompositeTile(
            key=parent,
            data=data,
            content_hash=self.codec.fingerprint(data),
            children=len(children),
        )
