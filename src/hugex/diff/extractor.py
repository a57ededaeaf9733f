"""Locate the delimited diff payload inside raw agent console output.

The agent prints a line of 80 ``=`` characters immediately before and after
the diff it produced. Everything outside the markers is ordinary log text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import JobDiff
from .parser import parse_unified_diff

__all__ = ["DIFF_DELIMITER", "ExtractionEmpty", "ExtractionResult", "extract_diff", "extract_payload"]

DIFF_DELIMITER = "=" * 80

LOGGER = logging.getLogger(__name__)
_PREVIEW_CHARS = 200


@dataclass(slots=True, frozen=True)
class ExtractionEmpty:
    """Non-fatal notice that no diff payload could be isolated."""

    reason: str
    delimiter_count: int = 0


@dataclass(slots=True)
class ExtractionResult:
    """Outcome of scanning output for a diff payload."""

    diff: JobDiff
    payload: str = ""
    warning: ExtractionEmpty | None = None

    @property
    def ok(self) -> bool:
        return self.warning is None


def extract_payload(output: str) -> tuple[str, ExtractionEmpty | None]:
    """Return the trimmed diff payload found between the delimiter lines."""
    delimiter_count = output.count(DIFF_DELIMITER)
    end_index = output.rfind(DIFF_DELIMITER)
    if end_index == -1:
        return "", ExtractionEmpty("no delimiter found in output", delimiter_count)

    start_index = output.rfind(DIFF_DELIMITER, 0, end_index)
    if start_index != -1:
        payload = output[start_index + len(DIFF_DELIMITER) : end_index].strip()
        if not payload:
            return "", ExtractionEmpty("diff payload is empty after trimming", delimiter_count)
        return payload, None

    # A single marker: assume the diff follows it.
    payload = output[end_index + len(DIFF_DELIMITER) :].strip()
    if not payload:
        return "", ExtractionEmpty("only one delimiter and nothing after it", delimiter_count)
    return payload, None


def extract_diff(output: str, job_id: str) -> ExtractionResult:
    """Extract and parse the diff embedded in ``output``; never raises."""
    LOGGER.debug("Extracting diff from %d chars of output for job %s", len(output), job_id)
    payload, warning = extract_payload(output)
    if warning is not None:
        LOGGER.warning(
            "No diff extracted for job %s: %s (%d delimiter(s)); output starts with %r",
            job_id,
            warning.reason,
            warning.delimiter_count,
            output[:_PREVIEW_CHARS],
        )
        return ExtractionResult(diff=JobDiff.empty(job_id), warning=warning)

    LOGGER.debug("Diff payload for job %s starts with %r", job_id, payload[:_PREVIEW_CHARS])
    return ExtractionResult(diff=parse_unified_diff(payload, job_id), payload=payload)
