"""
Core (abstract) tile store.
"""

from abc import ABC, abstractmethod

import structlog
from structlog.types import FilteringBoundLogger

from tilepyramid.coords import TileKey


class StorageError(Exception):
    pass


class TileStore(ABC):
    """
    Holds exactly one current version of the encoded content of each tile.
    Writes replace the previous content entirely.
    """

    logger: FilteringBoundLogger

    def __init__(self):
        self.logger = structlog.get_logger()

    @abstractmethod
    def get(self, key: TileKey) -> bytes | None:
        """
        Current content of the tile, or None if it was never written.

        Raises
        ------
        StorageError
            If the backing storage could not be read.
        """
        raise NotImplementedError

    @abstractmethod
    def put(self, key: TileKey, data: bytes):
        """
        Replace the content of the tile.

        Raises
        ------
        StorageError
            If the backing storage could not be written.
        """
        raise NotImplementedError
