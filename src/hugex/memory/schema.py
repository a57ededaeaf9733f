"""Typed records tracked by the job registry."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class JobStatus(str, Enum):
    """Lifecycle states for a job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class RepositoryRef(RecordModel):
    """Repository and branch a job runs against."""

    url: str
    branch: str = "main"


class JobChanges(RecordModel):
    """Change summary recorded when a job completes."""

    additions: int = 0
    deletions: int = 0
    files: int = 0


class Job(RecordModel):
    """One user-submitted coding task."""

    id: str
    title: str
    description: str
    status: JobStatus = JobStatus.PENDING
    repository: RepositoryRef
    environment: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict, repr=False)
    remote_job_id: Optional[str] = None
    changes: Optional[JobChanges] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["Job", "JobChanges", "JobStatus", "RecordModel", "RepositoryRef", "utc_now"]
