"""
Canonical tile encoding.

Every tile in the pyramid, whether uploaded or composited, is a square RGBA
image of ``tile_size`` pixels encoded with the same format and quality, so
that a leaf and its ancestors are interchangeable to readers.
"""

import hashlib
import io
from typing import Literal

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

TileFormat = Literal["webp", "png", "jpeg"]
HashType = Literal["short", "sha256"]


class TileDecodeError(Exception):
    pass


class TileCodec:
    tile_size: int
    "Edge length of every tile, in pixels."
    format: TileFormat
    "Image format tiles are stored in, defaults to 'webp'."
    quality: int
    "Quality passed to the lossy encoders; ignored for png."
    hash_type: HashType
    "Fingerprint used for change detection on encoded tiles."

    def __init__(
        self,
        tile_size: int = 256,
        format: TileFormat = "webp",
        quality: int = 90,
        hash_type: HashType = "short",
    ):
        if tile_size < 2 or tile_size % 2:
            raise ValueError(f"Tile size must be an even number, got {tile_size}")

        self.tile_size = tile_size
        self.format = format
        self.quality = quality
        self.hash_type = hash_type

        return

    @property
    def extension(self) -> str:
        return "jpg" if self.format == "jpeg" else self.format

    @property
    def pil_kwargs(self) -> dict:
        if self.format == "png":
            return {"optimize": False}

        return {"quality": self.quality}

    def _open(self, data: bytes) -> Image.Image:
        try:
            with Image.open(io.BytesIO(data)) as image:
                image.load()
                return image.convert("RGBA")
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
        ) as e:
            raise TileDecodeError(f"Could not decode tile data: {e}") from e

    def decode(self, data: bytes) -> np.ndarray:
        """
        Decode tile bytes into a (tile_size, tile_size, 4) uint8 RGBA buffer.

        Raises
        ------
        TileDecodeError
            If the bytes are not a readable image.
        """
        image = self._open(data)

        if image.size != (self.tile_size, self.tile_size):
            image = image.resize(
                (self.tile_size, self.tile_size), resample=Image.Resampling.BOX
            )

        return np.array(image, dtype=np.uint8)

    def encode(self, buffer: np.ndarray) -> bytes:
        image = Image.fromarray(np.ascontiguousarray(buffer, dtype=np.uint8))

        if self.format == "jpeg":
            image = image.convert("RGB")

        with io.BytesIO() as output:
            image.save(output, format=self.format.upper(), **self.pil_kwargs)
            return output.getvalue()

    def normalize(self, raw: bytes) -> bytes:
        """
        Turn an arbitrary uploaded image into a canonical tile: scale it to
        cover the tile square, crop the overflow around the centre and
        re-encode it.
        """
        image = ImageOps.fit(
            self._open(raw),
            (self.tile_size, self.tile_size),
            method=Image.Resampling.LANCZOS,
        )

        return self.encode(np.array(image, dtype=np.uint8))

    def fingerprint(self, data: bytes) -> str:
        if self.hash_type == "sha256":
            return hashlib.sha256(data).hexdigest()

        return hashlib.blake2b(data, digest_size=4).hexdigest()
