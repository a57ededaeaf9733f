"""Diff model, parser, and delimited-output extraction."""

from .extractor import DIFF_DELIMITER, ExtractionEmpty, ExtractionResult, extract_diff, extract_payload
from .models import DiffSummary, FileDiff, FileStatus, JobDiff, count_changes
from .parser import parse_unified_diff

__all__ = [
    "DIFF_DELIMITER",
    "DiffSummary",
    "ExtractionEmpty",
    "ExtractionResult",
    "FileDiff",
    "FileStatus",
    "JobDiff",
    "count_changes",
    "extract_diff",
    "extract_payload",
    "parse_unified_diff",
]
