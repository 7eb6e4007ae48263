"""
Main server app.
"""

from fastapi import FastAPI

from ..settings import settings
from .tiles import tiles_router


async def lifespan(app: FastAPI):
    """
    Lifespan event handler for the FastAPI app.
    """

    settings.setup_app(app=app)

    yield

    # Let running climbs finish so that no tile is left GENERATING.
    app.pyramid.close(wait=True)


tags_metadata = [
    {
        "name": "Tiles",
        "description": "Operations to upload leaf tiles and follow the regeneration of the pyramid above them.",
    },
]

app = FastAPI(lifespan=lifespan, openapi_tags=tags_metadata)

app.include_router(tiles_router)
