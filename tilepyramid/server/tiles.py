"""
Endpoints for uploading tiles and inspecting their status.
"""

import structlog
from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, ValidationError

from tilepyramid.coords import TileKey
from tilepyramid.metadata.core import TileRecord, TileStatus
from tilepyramid.processing.codec import TileDecodeError
from tilepyramid.providers.core import StorageError

tiles_router = APIRouter(tags=["Tiles"])


class UploadResponse(BaseModel):
    success: bool
    message: str
    content_hash: str | None = None


def tile_key(z: int, x: int, y: int) -> TileKey:
    try:
        return TileKey(zoom=z, x=x, y=y)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid tile coordinates")


@tiles_router.post(
    "/upload/{z}/{x}/{y}",
    response_model=UploadResponse,
    summary="Upload a leaf tile.",
    description="Store an image as the tile at (z, x, y). The image is cropped and scaled to the canonical tile size. Ancestor tiles are regenerated in the background; their progress is visible through the status endpoint.",
)
def upload_tile(
    z: int,
    x: int,
    y: int,
    request: Request,
    tile: UploadFile | None = File(default=None),
):
    key = tile_key(z, x, y)
    log = structlog.get_logger().bind(tile=key.hash)

    if tile is None:
        raise HTTPException(status_code=400, detail="No file provided")

    if not (tile.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image")

    try:
        result = request.app.ingestor.ingest(key, tile.file.read())
    except TileDecodeError:
        log.warning("upload.not_an_image", filename=tile.filename)
        raise HTTPException(status_code=400, detail="File must be an image")
    except StorageError as e:
        log.error("upload.failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to upload tile")

    return UploadResponse(
        success=True,
        message="Tile uploaded successfully",
        content_hash=result.content_hash,
    )


@tiles_router.get(
    "/tiles/{z}/{x}/{y}/status",
    response_model=TileRecord,
    summary="Get the status of a tile.",
    description="The metadata record of one tile: its generation status, content fingerprint, and the last error if it failed.",
)
def get_tile_status(z: int, x: int, y: int, request: Request):
    record = request.app.pyramid.index.get(tile_key(z, x, y))

    if record is None:
        raise HTTPException(status_code=404, detail="Tile not found")

    return record


@tiles_router.get(
    "/tiles",
    response_model=list[TileRecord],
    summary="List tile records.",
    description="All tile records, optionally filtered by status (e.g. FAILED to find tiles awaiting a retry).",
)
def get_tile_records(request: Request, status: TileStatus | None = None):
    return request.app.pyramid.index.records(status=status)
