"""Drive jobs through an execution backend and publish their results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .backends import ExecutionBackend, ExecutionRequest, create_backend
from .config import ExecutionMode, ExecutionProfile, Settings
from .credentials import Credentials
from .diff.extractor import ExtractionResult, extract_diff
from .diff.models import JobDiff
from .errors import ConfigError, JobNotFound
from .memory.schema import Job, JobChanges, JobStatus
from .memory.store import JobStore
from .publisher import PublishOptions, PublishResult
from .telemetry import emit_event, mask_secrets

LOGGER = logging.getLogger(__name__)

BackendFactory = Callable[[ExecutionMode, Settings], ExecutionBackend]


@dataclass(slots=True)
class JobRunResult:
    """What one ``process_job`` call produced."""

    job: Job
    diff: JobDiff
    output: str
    remote_job_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class JobOrchestrator:
    """Owns the active backend and runs jobs end to end against the registry."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        *,
        mode: ExecutionMode | str | None = None,
        backend_factory: BackendFactory = create_backend,
        profile: Optional[ExecutionProfile] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.profile = profile or settings.profile()
        self._backend_factory = backend_factory
        self._mode = ExecutionMode.parse(mode) if mode is not None else settings.mode
        self._backend = backend_factory(self._mode, settings)

    @property
    def execution_mode(self) -> ExecutionMode:
        return self._mode

    @property
    def backend(self) -> ExecutionBackend:
        return self._backend

    def switch_execution_mode(self, mode: ExecutionMode | str) -> ExecutionMode:
        """Replace the active backend; unknown modes are logged and ignored."""
        try:
            resolved = ExecutionMode.parse(mode)
        except ConfigError:
            LOGGER.warning("Invalid execution mode: %s. Valid modes are 'api' and 'docker'.", mode)
            return self._mode
        if resolved is not self._mode:
            self._mode = resolved
            self._backend = self._backend_factory(resolved, self.settings)
            LOGGER.info("Switched execution mode to %s", resolved.value)
        return self._mode

    async def health_check(self) -> bool:
        return await self._backend.health_check()

    async def process_job(self, job_id: str, credentials: Credentials) -> JobRunResult:
        """Run ``job_id`` on the active backend and record its outcome.

        Environment, logs and diff are stored before the job is marked
        ``completed``. Any failure marks the job ``failed`` and is re-raised.
        An output without a diff still completes with an empty diff.
        """
        await self.store.update_job_status(job_id, JobStatus.RUNNING)
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}", details={"job_id": job_id})

        request = ExecutionRequest(
            job_id=job_id,
            prompt=job.description,
            repository=job.repository,
            profile=self.profile,
            credentials=credentials,
            environment=job.environment,
            secrets=job.secrets,
            log_sink=self.store.append_job_logs,
        )

        try:
            result = await self._backend.execute(request)
            extraction: ExtractionResult = extract_diff(result.output, job_id)

            await self.store.update_job_environment(
                job_id,
                result.environment,
                mask_secrets(result.secrets),
                result.remote_job_id,
            )
            if result.output:
                await self.store.set_job_logs(job_id, result.output)
            await self.store.set_job_diff(job_id, extraction.diff)

            summary = extraction.diff.summary
            completed = await self.store.update_job_status(
                job_id,
                JobStatus.COMPLETED,
                JobChanges(
                    additions=summary.total_additions,
                    deletions=summary.total_deletions,
                    files=summary.total_files,
                ),
            )
        except Exception as error:
            LOGGER.error("Job %s failed in %s mode: %s", job_id, self._mode.value, error)
            emit_event("job.failed", job_id=job_id, mode=self._mode.value, error=type(error).__name__)
            await self.store.update_job_status(job_id, JobStatus.FAILED)
            raise

        warnings = list(result.warnings)
        if extraction.warning is not None:
            warnings.append(extraction.warning.reason)
        emit_event(
            "job.completed",
            job_id=job_id,
            mode=self._mode.value,
            files=summary.total_files,
            additions=summary.total_additions,
            deletions=summary.total_deletions,
            warnings=warnings,
        )
        LOGGER.info("Job %s completed via %s", job_id, self._mode.value)
        return JobRunResult(
            job=completed,
            diff=extraction.diff,
            output=result.output,
            remote_job_id=result.remote_job_id,
            warnings=warnings,
        )

    async def create_branch_and_push(self, options: PublishOptions) -> PublishResult:
        try:
            return await self._backend.publish_branch(options)
        except Exception as error:
            LOGGER.error("Failed to create branch and push %s: %s", options.branch, error)
            raise

    async def publish_job(
        self,
        job_id: str,
        branch: str,
        credentials: Credentials,
        *,
        base_branch: Optional[str] = None,
    ) -> PublishResult:
        """Publish the stored diff of ``job_id`` as ``branch``."""
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        diff = await self.store.get_job_diff(job_id) or JobDiff.empty(job_id)
        options = PublishOptions(
            repository_url=job.repository.url,
            branch=branch,
            base_branch=base_branch or job.repository.branch,
            title=job.title,
            description=job.description,
            files=diff.files,
            github_token=credentials.github_token,
        )
        return await self.create_branch_and_push(options)


__all__ = ["JobOrchestrator", "JobRunResult"]
