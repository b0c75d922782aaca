"""Multi-photo album identification for vinyl records and CDs."""

from .errors import InvalidInputError
from .models import MatchStatus, PipelineResult
from .pipeline import ScanPipeline

__all__ = ["InvalidInputError", "MatchStatus", "PipelineResult", "ScanPipeline"]
