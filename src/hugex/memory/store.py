"""In-memory job registry with per-job serialised updates."""

from __future__ import annotations

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from ..diff.models import JobDiff
from ..errors import InvalidJobTransition, JobNotFound
from .schema import Job, JobChanges, JobStatus, utc_now

LOGGER = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: Mapping[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(slots=True)
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


@dataclass(slots=True)
class JobPage:
    """One page of :meth:`JobStore.list_jobs` results."""

    jobs: List[Job] = field(default_factory=list)
    pagination: Optional[Pagination] = None


class JobStore:
    """Key-value job persistence.

    Every mutation of a given job runs under that job's lock so concurrent
    tasks cannot interleave read-modify-write cycles. Stored jobs are copied
    on the way in and out; callers never hold a live reference.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._diffs: Dict[str, JobDiff] = {}
        self._logs: Dict[str, List[str]] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    async def create_job(self, job: Job) -> Job:
        async with self._locks[job.id]:
            self._jobs[job.id] = job.model_copy(deep=True)
        LOGGER.debug("Created job %s", job.id)
        return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    async def all_jobs(self) -> List[Job]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]

    async def list_jobs(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: JobStatus | str | None = None,
        search: Optional[str] = None,
        author: Optional[str] = None,
    ) -> JobPage:
        """Filter, sort newest first, and paginate the stored jobs."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")

        jobs = list(self._jobs.values())
        if status:
            wanted = JobStatus(status)
            jobs = [job for job in jobs if job.status is wanted]
        if search:
            needle = search.lower()
            jobs = [
                job for job in jobs if needle in job.title.lower() or needle in job.description.lower()
            ]
        if author:
            jobs = [job for job in jobs if job.author == author]

        jobs.sort(key=lambda item: item.created_at, reverse=True)

        total = len(jobs)
        total_pages = math.ceil(total / limit)
        offset = (page - 1) * limit
        return JobPage(
            jobs=[job.model_copy(deep=True) for job in jobs[offset : offset + limit]],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
        )

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        changes: Optional[JobChanges] = None,
    ) -> Job:
        async with self._locks[job_id]:
            job = self._require(job_id)
            if status not in _ALLOWED_TRANSITIONS[job.status]:
                raise InvalidJobTransition(
                    f"Job {job_id} cannot move from {job.status.value} to {status.value}",
                    details={"job_id": job_id, "from": job.status.value, "to": status.value},
                )
            update: Dict[str, object] = {"status": status, "updated_at": utc_now()}
            if changes is not None:
                update["changes"] = changes
            updated = job.model_copy(update=update, deep=True)
            self._jobs[job_id] = updated
        LOGGER.info("Job %s is now %s", job_id, status.value)
        return updated.model_copy(deep=True)

    async def update_job_environment(
        self,
        job_id: str,
        environment: Mapping[str, str],
        secrets: Optional[Mapping[str, str]] = None,
        remote_job_id: Optional[str] = None,
    ) -> Job:
        """Record what a run used. ``secrets`` must already be masked."""
        async with self._locks[job_id]:
            job = self._require(job_id)
            updated = job.model_copy(
                update={
                    "environment": dict(environment),
                    "secrets": dict(secrets or {}),
                    "remote_job_id": remote_job_id,
                    "updated_at": utc_now(),
                },
                deep=True,
            )
            self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    async def delete_job(self, job_id: str) -> bool:
        async with self._locks[job_id]:
            deleted = self._jobs.pop(job_id, None) is not None
            self._diffs.pop(job_id, None)
            self._logs.pop(job_id, None)
        self._locks.pop(job_id, None)
        return deleted

    async def set_job_diff(self, job_id: str, diff: JobDiff) -> None:
        async with self._locks[job_id]:
            self._diffs[job_id] = diff.model_copy(deep=True)

    async def get_job_diff(self, job_id: str) -> Optional[JobDiff]:
        diff = self._diffs.get(job_id)
        return diff.model_copy(deep=True) if diff is not None else None

    async def set_job_logs(self, job_id: str, logs: str) -> None:
        """Replace everything stored for ``job_id`` with ``logs``."""
        async with self._locks[job_id]:
            self._logs[job_id] = [logs]

    async def append_job_logs(self, job_id: str, chunk: str) -> None:
        """Add ``chunk`` to the end of the job's logs; readers may observe partial output."""
        async with self._locks[job_id]:
            self._logs.setdefault(job_id, []).append(chunk)

    async def get_job_logs(self, job_id: str) -> Optional[str]:
        chunks = self._logs.get(job_id)
        if chunks is None:
            return None
        if len(chunks) > 1:
            chunks[:] = ["".join(chunks)]
        return chunks[0]


__all__ = ["JobPage", "JobStore", "Pagination"]
