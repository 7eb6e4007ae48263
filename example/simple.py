"""
An example of growing a pyramid one upload at a time.

Paints a gradient across the 8x8 grid of tiles at zoom 3, uploads the tiles
in random order, and writes the whole pyramid to ./example_tiles.
"""

import io
import random

import numpy as np
from PIL import Image

from tilepyramid.coords import TileKey
from tilepyramid.settings import Settings

settings = Settings(store_type="filesystem", tile_directory="example_tiles")

LEVEL = 3
GRID = 2**LEVEL
SIZE = settings.tile_size

# One large image covering the whole world at zoom 3.
x, y = np.meshgrid(np.arange(GRID * SIZE), np.arange(GRID * SIZE))
world = np.empty((GRID * SIZE, GRID * SIZE, 3), dtype=np.uint8)
world[..., 0] = (255 * x / x.max()).astype(np.uint8)
world[..., 1] = (255 * y / y.max()).astype(np.uint8)
world[..., 2] = 128

keys = [TileKey(zoom=LEVEL, x=i, y=j) for i in range(GRID) for j in range(GRID)]
random.shuffle(keys)

with settings.create_pyramid() as pyramid:
    ingestor = settings.create_ingestor(pyramid)
    climbs = []

    for key in keys:
        rows = np.s_[key.y * SIZE : (key.y + 1) * SIZE]
        cols = np.s_[key.x * SIZE : (key.x + 1) * SIZE]
        cutout = world[rows, cols]

        with io.BytesIO() as output:
            Image.fromarray(cutout).save(output, format="PNG")
            climbs.append(ingestor.ingest(key, output.getvalue()).climb)

    reports = [climb.result() for climb in climbs]

# Climbs that lost a race against a sibling stopped early; the ancestors they
# skipped show the uploads that had landed when the winning climb reached them.
for outcome in {report.outcome for report in reports}:
    print(outcome.value, sum(report.outcome == outcome for report in reports))
