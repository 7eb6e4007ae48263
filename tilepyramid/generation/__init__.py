"""
Regeneration of pyramid tiles above newly written leaves.
"""

from .coordinator import BeginResult, GenerationCoordinator, GenerationResult
from .ingest import Ingestor, IngestResult
from .pyramid import ClimbOutcome, ClimbReport, Pyramid

__all__ = (
    BeginResult,
    GenerationCoordinator,
    GenerationResult,
    Ingestor,
    IngestResult,
    ClimbOutcome,
    ClimbReport,
    Pyramid,
)
