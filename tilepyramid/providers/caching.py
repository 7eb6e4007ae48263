"""
Caches and cache-like stores for tiles.
"""

import threading

from cachetools import LFUCache
from pymemcache.client.base import Client
from pymemcache.exceptions import MemcacheError

from tilepyramid.coords import TileKey

from .core import StorageError, TileStore


class CachingTileStore(TileStore):
    """
    A read-through, write-through LFU cache in front of another store.
    Absent tiles are never cached, so a tile written through a different
    store instance becomes visible as soon as it exists.
    """

    backing: TileStore
    cache: LFUCache

    def __init__(self, backing: TileStore, cache_size: int = 8192):
        self.backing = backing
        self.cache = LFUCache(maxsize=cache_size)
        self._lock = threading.Lock()

        # Tile -> write steps seen by this store. A read only fills the
        # cache if the count did not change while it was reading.
        self._writes: dict[TileKey, int] = {}
        super().__init__()

    def _count_write(self, key: TileKey):
        # Caller holds the lock.
        self._writes[key] = self._writes.get(key, 0) + 1

    def get(self, key: TileKey) -> bytes | None:
        log = self.logger.bind(tile=key.hash)

        with self._lock:
            cached = self.cache.get(key, None)
            writes = self._writes.get(key, 0)

        if cached is not None:
            log.debug("provider.lfu.hit")
            return cached

        log.debug("provider.lfu.miss")
        data = self.backing.get(key)

        if data is not None:
            with self._lock:
                if self._writes.get(key, 0) == writes:
                    self.cache[key] = data
                else:
                    log.debug("provider.lfu.fill_skipped")

        return data

    def put(self, key: TileKey, data: bytes):
        # Counted before and after the backing write, so that a read that
        # overlaps any part of it does not fill the cache.
        with self._lock:
            self._count_write(key)

        try:
            self.backing.put(key, data)
        except StorageError:
            # The backing store may or may not hold the new content now.
            with self._lock:
                self._count_write(key)
                self.cache.pop(key, None)
            raise

        with self._lock:
            self._count_write(key)
            self.cache[key] = data

        self.logger.debug("provider.lfu.pushed", tile=key.hash)


class MemcachedTileStore(TileStore):
    """
    A store that keeps tiles in Memcached. Memcached may evict entries, so
    this suits pyramids that can be rebuilt from their leaves.
    """

    client: Client

    def __init__(self, client: Client, prefix: str = "tile"):
        self.client = client
        self.prefix = prefix
        super().__init__()

    def cache_key(self, key: TileKey) -> str:
        return f"{self.prefix}-{key.hash}"

    def get(self, key: TileKey) -> bytes | None:
        log = self.logger.bind(tile=key.hash)

        try:
            res = self.client.get(self.cache_key(key), None)
        except (MemcacheError, OSError) as e:
            log.error("provider.memcached.read_failed", error=str(e))
            raise StorageError(f"Could not read tile {key}: {e}") from e

        if res is None:
            log.debug("provider.memcached.miss")
            return None

        log.debug("provider.memcached.hit")
        return bytes(res)

    def put(self, key: TileKey, data: bytes):
        log = self.logger.bind(tile=key.hash)

        try:
            stored = self.client.set(self.cache_key(key), data, noreply=False)
        except (MemcacheError, OSError) as e:
            log.error("provider.memcached.write_failed", error=str(e))
            raise StorageError(f"Could not write tile {key}: {e}") from e

        if not stored:
            log.error("provider.memcached.not_stored")
            raise StorageError(f"Memcached refused to store tile {key}")

        log.debug("provider.memcached.put", size=len(data))
