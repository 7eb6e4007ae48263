"""
Settings for the project.
"""

from pathlib import Path
from typing import Literal

from fastapi import FastAPI
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Canonical tile encoding, shared by uploads and generated tiles
    tile_size: int = 256
    "Edge length of every tile in pixels. Must be even."
    tile_format: Literal["webp", "png", "jpeg"] = "webp"
    tile_quality: int = 90
    "Quality parameter for the lossy formats."
    background: tuple[int, int, int, int] = (0, 0, 0, 0)
    "RGBA colour of quadrants whose child tile does not exist."
    hash_type: Literal["short", "sha256"] = "short"
    "Content fingerprint: 'short' (8 hex characters) or a full 'sha256' digest."

    # Tile store settings
    store_type: Literal["in_memory", "filesystem", "memcached"] = "in_memory"
    "Where tile content lives. Options are 'in_memory', 'filesystem', or 'memcached'."
    tile_directory: Path = Path("tiles")
    "Root directory for the 'filesystem' store."
    memcached_host: str = "localhost"
    "Host for the Memcached server."
    memcached_port: int = 11211
    "Port for the Memcached server."
    memcached_client_pool_size: int = 4
    "Number of connections in the Memcached client pool."
    memcached_timeout_seconds: float = 0.5
    "Timeout for Memcached operations in seconds."
    store_cache_size: int = 0
    "Number of tiles to keep in an in-process LFU cache in front of the store; 0 disables it."

    # Metadata index settings
    index_type: Literal["in_memory", "database"] = "in_memory"
    "Where tile records live. Options are 'in_memory' or 'database'."
    database_url: str = "sqlite:///tilepyramid.db"
    "SQLAlchemy URL for the 'database' index."

    # Regeneration settings
    max_workers: int = 4
    "Number of climbs that may run at the same time."
    regenerate_on_contention: bool = False
    "Regenerate a tile again if another climb was turned away while it was in flight."
    max_contention_reruns: int = 1
    "Upper bound on those extra generations, per tile and climb."

    class Config:
        env_prefix = "TILEPYRAMID_"

    @field_validator("tile_size")
    @classmethod
    def check_tile_size(cls, v):
        if v < 2 or v % 2:
            raise ValueError("Tile size must be an even number of pixels.")
        return v

    def create_codec(self):
        from tilepyramid.processing.codec import TileCodec

        return TileCodec(
            tile_size=self.tile_size,
            format=self.tile_format,
            quality=self.tile_quality,
            hash_type=self.hash_type,
        )

    def create_store(self):
        """
        Create a tile store based on the settings.
        """
        if self.store_type == "filesystem":
            from tilepyramid.providers.filesystem import FileSystemTileStore

            store = FileSystemTileStore(
                root=self.tile_directory, extension=self.create_codec().extension
            )
        elif self.store_type == "memcached":
            from pymemcache.client.base import PooledClient

            from tilepyramid.providers.caching import MemcachedTileStore

            client = PooledClient(
                server=(self.memcached_host, self.memcached_port),
                max_pool_size=self.memcached_client_pool_size,
                timeout=self.memcached_timeout_seconds,
                ignore_exc=False,
            )
            store = MemcachedTileStore(client=client)
        else:
            from tilepyramid.providers.memory import InMemoryTileStore

            store = InMemoryTileStore()

        if self.store_cache_size > 0:
            from tilepyramid.providers.caching import CachingTileStore

            store = CachingTileStore(backing=store, cache_size=self.store_cache_size)

        return store

    def create_index(self):
        """
        Create a metadata index based on the settings.
        """
        if self.index_type == "database":
            from tilepyramid.metadata.database import DatabaseMetadataIndex

            index = DatabaseMetadataIndex(database_url=self.database_url)
            index.create_tables()
            return index
        else:
            from tilepyramid.metadata.core import InMemoryMetadataIndex

            return InMemoryMetadataIndex()

    def create_pyramid(self, store=None, index=None):
        from tilepyramid.generation.pyramid import Pyramid
        from tilepyramid.processing.compositor import Compositor

        return Pyramid(
            store=store if store is not None else self.create_store(),
            index=index if index is not None else self.create_index(),
            compositor=Compositor(
                codec=self.create_codec(), background=self.background
            ),
            max_workers=self.max_workers,
            regenerate_on_contention=self.regenerate_on_contention,
            max_contention_reruns=self.max_contention_reruns,
        )

    def create_ingestor(self, pyramid):
        from tilepyramid.generation.ingest import Ingestor

        return Ingestor(
            codec=pyramid.compositor.codec,
            store=pyramid.store,
            index=pyramid.index,
            pyramid=pyramid,
        )

    def setup_app(self, app: FastAPI):
        app.pyramid = self.create_pyramid()
        app.ingestor = self.create_ingestor(app.pyramid)

        return app


settings = Settings()
