"""
Tile store living entirely in process memory.
"""

import threading

from tilepyramid.coords import TileKey

from .core import TileStore


class InMemoryTileStore(TileStore):
    tiles: dict[TileKey, bytes]

    def __init__(self):
        self.tiles = {}
        self._lock = threading.Lock()
        super().__init__()

    def get(self, key: TileKey) -> bytes | None:
        with self._lock:
            data = self.tiles.get(key)

        self.logger.debug(
            "provider.inmemory.hit" if data is not None else "provider.inmemory.miss",
            tile=key.hash,
        )
        return data

    def put(self, key: TileKey, data: bytes):
        with self._lock:
            self.tiles[key] = bytes(data)

        self.logger.debug("provider.inmemory.put", tile=key.hash, size=len(data))

    def __len__(self) -> int:
        with self._lock:
            return len(self.tiles)
