"""Forgiving line-oriented parser for multi-file unified diffs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .models import FileDiff, FileStatus, JobDiff

__all__ = ["parse_unified_diff"]

_DIFF_HEADER = re.compile(r"^diff --git a/(.+) b/(.+)$")


@dataclass(slots=True)
class _FileAccumulator:
    """Mutable state for the file currently being scanned."""

    filename: str
    status: FileStatus = FileStatus.MODIFIED
    old_filename: str | None = None
    additions: int = 0
    deletions: int = 0
    lines: list[str] = field(default_factory=list)
    in_header: bool = True

    def build(self) -> FileDiff:
        return FileDiff(
            filename=self.filename,
            status=self.status,
            additions=self.additions,
            deletions=self.deletions,
            patch="\n".join(self.lines),
            old_filename=self.old_filename,
        )


def _consume_header_line(current: _FileAccumulator, line: str) -> None:
    if line.startswith("new file mode"):
        current.status = FileStatus.ADDED
    elif line.startswith("deleted file mode"):
        current.status = FileStatus.DELETED
    elif line.startswith("rename from "):
        current.status = FileStatus.RENAMED
        current.old_filename = line[len("rename from ") :].strip() or None
    elif line.startswith("@@"):
        current.in_header = False
    elif not line:
        return
    current.lines.append(line)


def _consume_hunk_line(current: _FileAccumulator, line: str) -> None:
    if line.startswith("@@"):
        current.lines.append(line)
    elif line.startswith("+"):
        current.additions += 1
        current.lines.append(line)
    elif line.startswith("-"):
        current.deletions += 1
        current.lines.append(line)
    elif line.startswith(" ") or not line or line.startswith("\\"):
        current.lines.append(line)


def parse_unified_diff(text: str, job_id: str) -> JobDiff:
    """Parse unified-diff ``text`` into a :class:`JobDiff`.

    Malformed or truncated hunks never raise; they simply contribute fewer
    counted lines. Text before the first ``diff --git`` header is ignored.
    """
    files: list[FileDiff] = []
    current: _FileAccumulator | None = None

    for line in text.split("\n"):
        if line.startswith("diff --git "):
            if current is not None:
                files.append(current.build())
            match = _DIFF_HEADER.match(line)
            current = _FileAccumulator(filename=match.group(2), lines=[line]) if match else None
            continue
        if current is None:
            continue
        if current.in_header:
            _consume_header_line(current, line)
        else:
            _consume_hunk_line(current, line)

    if current is not None:
        files.append(current.build())

    return JobDiff(job_id=job_id, files=files)
