"""Job records and the in-memory registry."""

from .schema import Job, JobChanges, JobStatus, RepositoryRef
from .store import JobPage, JobStore, Pagination

__all__ = ["Job", "JobChanges", "JobPage", "JobStatus", "JobStore", "Pagination", "RepositoryRef"]
