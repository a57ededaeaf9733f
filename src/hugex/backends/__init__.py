"""Execution backends and the mode-based factory."""

from __future__ import annotations

from typing import Optional

from ..config import ExecutionMode, Settings
from ..publisher import RepositoryPublisher
from .base import ExecutionBackend, ExecutionRequest, ExecutionResult, LogSink, OutputRetrieval
from .container import DockerStreamDemuxer, LocalContainerBackend
from .remote import RemoteApiBackend


def create_backend(
    mode: ExecutionMode | str,
    settings: Settings,
    *,
    publisher: Optional[RepositoryPublisher] = None,
) -> ExecutionBackend:
    """Build the backend for ``mode``."""
    resolved = ExecutionMode.parse(mode)
    publisher = publisher or RepositoryPublisher(settings.git)
    if resolved is ExecutionMode.DOCKER:
        return LocalContainerBackend(settings.container, publisher=publisher)
    return RemoteApiBackend(settings.remote_api, publisher=publisher)


__all__ = [
    "DockerStreamDemuxer",
    "ExecutionBackend",
    "ExecutionRequest",
    "ExecutionResult",
    "LocalContainerBackend",
    "LogSink",
    "OutputRetrieval",
    "RemoteApiBackend",
    "create_backend",
]
