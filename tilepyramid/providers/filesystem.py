"""
Tile store writing one file per tile, laid out as {root}/{zoom}/{x}/{y}.{ext}.
"""

import os
import tempfile
from pathlib import Path

from tilepyramid.coords import TileKey

from .core import StorageError, TileStore


class FileSystemTileStore(TileStore):
    root: Path
    extension: str

    def __init__(self, root: Path | str, extension: str = "webp"):
        self.root = Path(root)
        self.extension = extension
        super().__init__()

    def path(self, key: TileKey) -> Path:
        return self.root / str(key.zoom) / str(key.x) / f"{key.y}.{self.extension}"

    def get(self, key: TileKey) -> bytes | None:
        log = self.logger.bind(tile=key.hash)

        try:
            data = self.path(key).read_bytes()
        except FileNotFoundError:
            log.debug("provider.filesystem.miss")
            return None
        except OSError as e:
            log.error("provider.filesystem.read_failed", error=str(e))
            raise StorageError(f"Could not read tile {key}: {e}") from e

        log.debug("provider.filesystem.hit")
        return data

    def put(self, key: TileKey, data: bytes):
        """
        Write to a temporary file next to the target and move it into place,
        so that concurrent readers see either the old or the new tile.
        """
        log = self.logger.bind(tile=key.hash)
        path = self.path(key)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            fd, temporary = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(temporary, path)
            except BaseException:
                Path(temporary).unlink(missing_ok=True)
                raise
        except OSError as e:
            log.error("provider.filesystem.write_failed", error=str(e))
            raise StorageError(f"Could not write tile {key}: {e}") from e

        log.debug("provider.filesystem.put", size=len(data))
