"""
CLI components (using typer)
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tilepyramid.coords import TileKey
from tilepyramid.metadata.core import TileRecord, TileStatus

CONSOLE = Console()

APP = typer.Typer()


def print_records(records: list[TileRecord]):
    table = Table("Tile", "Status", "Hash", "Updated", "Error")

    for record in records:
        table.add_row(
            str(record.key),
            record.status.value,
            record.content_hash or "",
            record.updated_at.isoformat(timespec="seconds"),
            record.error or "",
        )

    CONSOLE.print(table)


@APP.command()
def serve(host: str = "127.0.0.1", port: int = 8000):
    """
    Start the tile upload server.
    """
    from uvicorn import run

    from tilepyramid.server.app import app

    run(app, host=host, port=port)


@APP.command()
def ingest(filename: Path, z: int, x: int, y: int):
    """
    Store an image as the tile at (z, x, y) and regenerate its ancestors.
    """
    from tilepyramid.settings import settings

    with settings.create_pyramid() as pyramid:
        ingestor = settings.create_ingestor(pyramid)
        result = ingestor.ingest(TileKey(zoom=z, x=x, y=y), filename.read_bytes())
        CONSOLE.print(f"Stored tile {result.key} ({result.content_hash}).")

        report = result.climb.result()

    CONSOLE.print(
        f"Climb {report.outcome.value}, generated {len(report.generated)} tiles."
    )
    print_records([pyramid.index.get(key) for key in report.generated])


@APP.command()
def rebuild(z: int, x: int, y: int):
    """
    Regenerate every ancestor of (z, x, y), e.g. to retry FAILED tiles.
    """
    from tilepyramid.settings import settings

    with settings.create_pyramid() as pyramid:
        report = pyramid.climb(TileKey(zoom=z, x=x, y=y))

    CONSOLE.print(
        f"Climb {report.outcome.value}, generated {len(report.generated)} tiles."
    )

    if report.stopped_at is not None:
        reason = report.error or "in flight elsewhere"
        CONSOLE.print(f"Stopped at {report.stopped_at}: {reason}")


@APP.command()
def status(status: Optional[TileStatus] = None):
    """
    List tile records, optionally only those with the given status.
    """
    from tilepyramid.settings import settings

    print_records(settings.create_index().records(status=status))


def main():
    global APP

    APP()
