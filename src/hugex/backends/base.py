"""Execution backend interface and the request/result values it exchanges."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from ..config import ExecutionProfile
from ..credentials import Credentials
from ..memory.schema import RepositoryRef
from ..publisher import PublishOptions, PublishResult, RepositoryPublisher

LogSink = Callable[[str, str], Awaitable[None]]
"""``async sink(job_id, chunk)`` called with each new piece of output, in order."""

OUTPUT_UNAVAILABLE = "Job completed but output not available"


@dataclass(slots=True)
class ExecutionRequest:
    """Everything one backend run needs; nothing is read from global state."""

    job_id: str
    prompt: str
    repository: RepositoryRef
    profile: ExecutionProfile
    credentials: Credentials = field(default_factory=Credentials)
    environment: Mapping[str, str] = field(default_factory=dict)
    secrets: Mapping[str, str] = field(default_factory=dict, repr=False)
    log_sink: Optional[LogSink] = field(default=None, repr=False)

    def merged_environment(self, repo_url: Optional[str] = None) -> Dict[str, str]:
        """Base job fields, then profile defaults, then per-job values."""
        merged: Dict[str, str] = {
            "JOB_ID": self.job_id,
            "REPO_URL": repo_url or self.repository.url,
            "REPO_BRANCH": self.repository.branch,
            "PROMPT": self.prompt,
        }
        merged.update(self.profile.environment)
        merged.update(self.environment)
        return merged

    def merged_secrets(self) -> Dict[str, str]:
        """Credential-derived secrets, then profile defaults, then per-job values."""
        merged = self.credentials.agent_secrets()
        merged.update(self.profile.secrets)
        merged.update(self.secrets)
        return merged


@dataclass(slots=True)
class OutputRetrieval:
    """Output text plus a warning when retrieval only partially succeeded."""

    output: str
    warning: Optional[str] = None

    @classmethod
    def ok(cls, output: str) -> "OutputRetrieval":
        return cls(output=output)

    @classmethod
    def degraded(cls, output: str, warning: str) -> "OutputRetrieval":
        return cls(output=output, warning=warning)

    @property
    def is_degraded(self) -> bool:
        return self.warning is not None


@dataclass(slots=True)
class ExecutionResult:
    """Raw output of one run and the configuration it actually used.

    ``secrets`` holds real values; callers must mask them before persisting.
    """

    output: str
    environment: Dict[str, str] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict, repr=False)
    remote_job_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class ExecutionBackend(ABC):
    """Runs the coding agent for one request and returns its output."""

    def __init__(self, publisher: Optional[RepositoryPublisher] = None) -> None:
        self.publisher = publisher or RepositoryPublisher()

    @abstractmethod
    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run ``request`` to completion.

        Raises ``BackendUnavailable`` when the substrate cannot be reached,
        ``BackendTimeout`` when the run exceeds its bound and
        ``BackendRejected`` when the substrate reports a failure.
        """

    async def publish_branch(self, options: PublishOptions) -> PublishResult:
        return await self.publisher.publish(options)

    async def health_check(self) -> bool:
        return True


__all__ = [
    "ExecutionBackend",
    "ExecutionRequest",
    "ExecutionResult",
    "LogSink",
    "OUTPUT_UNAVAILABLE",
    "OutputRetrieval",
]
