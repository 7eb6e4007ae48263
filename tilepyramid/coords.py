"""
Quadtree coordinate arithmetic.

Tiles are addressed by (zoom, x, y) with y growing downwards. Every tile at
zoom z > 0 has exactly one parent at zoom z - 1, and every tile has four
children at zoom z + 1, always listed in quadrant order:

    top-left, top-right, bottom-left, bottom-right
"""

from pydantic import BaseModel, ConfigDict, Field


class InvalidCoordinateError(Exception):
    pass


QUADRANTS: tuple[tuple[int, int], ...] = ((0, 0), (1, 0), (0, 1), (1, 1))
"(dx, dy) offsets of the four children, in the order used by children_of."


class TileKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    zoom: int = Field(ge=0, description="Zoom level; 0 is the root.")
    x: int
    y: int

    @property
    def hash(self) -> str:
        return f"{self.zoom}-{self.x}-{self.y}"

    def __str__(self) -> str:
        return f"({self.zoom}, {self.x}, {self.y})"


def parent_of(key: TileKey) -> TileKey:
    """
    The tile one level up that contains ``key``.

    Raises
    ------
    InvalidCoordinateError
        For the root tile, which has no parent.
    """
    if key.zoom <= 0:
        raise InvalidCoordinateError(f"Tile {key} is at the root and has no parent")

    return TileKey(zoom=key.zoom - 1, x=key.x // 2, y=key.y // 2)


def children_of(key: TileKey) -> tuple[TileKey, TileKey, TileKey, TileKey]:
    return tuple(
        TileKey(zoom=key.zoom + 1, x=2 * key.x + dx, y=2 * key.y + dy)
        for dx, dy in QUADRANTS
    )


def quadrant_offset(parent: TileKey, child: TileKey) -> tuple[int, int]:
    """
    The (dx, dy) quadrant slot that ``child`` occupies within ``parent``.
    """
    dx = child.x - 2 * parent.x
    dy = child.y - 2 * parent.y

    if child.zoom != parent.zoom + 1 or (dx, dy) not in QUADRANTS:
        raise InvalidCoordinateError(f"Tile {child} is not a child of {parent}")

    return dx, dy


def ancestors_of(key: TileKey) -> list[TileKey]:
    ancestors = []

    while key.zoom > 0:
        key = parent_of(key)
        ancestors.append(key)

    return ancestors
