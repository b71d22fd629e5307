"""Branch facts: value-level history, merging and background re-extraction."""

from .extractor import BranchFactExtractor, ExtractionResult
from .merge import MergeStats, merge_facts
from .models import (
    ExtractedFact,
    ExtractedValue,
    FactMap,
    FactStatus,
    FactValue,
    active_facts,
)
from .parsing import parse_facts
from .worker import FactExtractionQueue

__all__ = [
    "BranchFactExtractor",
    "ExtractedFact",
    "ExtractedValue",
    "ExtractionResult",
    "FactExtractionQueue",
    "FactMap",
    "FactStatus",
    "FactValue",
    "MergeStats",
    "active_facts",
    "merge_facts",
    "parse_facts",
]
