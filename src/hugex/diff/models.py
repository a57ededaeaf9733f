"""Structured representation of a job's multi-file change set."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, model_validator

__all__ = ["DiffSummary", "FileDiff", "FileStatus", "JobDiff", "count_changes"]


class FileStatus(str, Enum):
    """Kind of change recorded for a single file."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


def count_changes(patch: str) -> tuple[int, int]:
    """Return ``(additions, deletions)`` for the content lines of ``patch``.

    File headers (``---``/``+++``) that precede the first hunk are not counted.
    """
    additions = 0
    deletions = 0
    in_header = True
    for line in patch.split("\n"):
        if line.startswith("diff --git "):
            in_header = True
            continue
        if line.startswith("@@"):
            in_header = False
            continue
        if in_header:
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return additions, deletions


class DiffSummary(BaseModel):
    """Totals derived from the files of a :class:`JobDiff`."""

    model_config = ConfigDict(frozen=True)

    total_additions: int = 0
    total_deletions: int = 0
    total_files: int = 0


class FileDiff(BaseModel):
    """One file's change together with its raw unified-diff text.

    ``additions`` and ``deletions`` always mirror ``patch``; counts supplied by
    the caller are replaced with the ones computed by :func:`count_changes`.
    """

    model_config = ConfigDict(populate_by_name=True)

    filename: str
    status: FileStatus = FileStatus.MODIFIED
    additions: int = 0
    deletions: int = 0
    # Older payloads store the same text under ``diff``.
    patch: str = Field(default="", validation_alias=AliasChoices("patch", "diff"))
    old_filename: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("old_filename", "oldFilename"),
    )

    @model_validator(mode="after")
    def derive_counts(self) -> "FileDiff":
        self.additions, self.deletions = count_changes(self.patch)
        return self

    @classmethod
    def from_patch(
        cls,
        filename: str,
        patch: str,
        *,
        status: FileStatus = FileStatus.MODIFIED,
        old_filename: str | None = None,
    ) -> "FileDiff":
        """Build a record for ``patch``; the counts follow from the text."""
        return cls(
            filename=filename,
            status=status,
            patch=patch,
            old_filename=old_filename,
        )


class JobDiff(BaseModel):
    """Structured result of one job: ordered file changes and their totals."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(validation_alias=AliasChoices("job_id", "jobId"))
    files: List[FileDiff] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def summary(self) -> DiffSummary:
        return DiffSummary(
            total_additions=sum(item.additions for item in self.files),
            total_deletions=sum(item.deletions for item in self.files),
            total_files=len(self.files),
        )

    @classmethod
    def empty(cls, job_id: str) -> "JobDiff":
        return cls(job_id=job_id, files=[])

    @property
    def is_empty(self) -> bool:
        return not self.files
