"""Backend that runs the agent in a local container via the Docker Engine API."""

from __future__ import annotations

import asyncio
import codecs
import logging
import struct
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..config import ContainerSettings
from ..errors import BackendRejected, BackendTimeout, BackendUnavailable, ImageNotFound
from ..publisher import RepositoryPublisher
from ..telemetry import emit_event, mask_secrets
from .base import ExecutionBackend, ExecutionRequest, ExecutionResult

LOGGER = logging.getLogger(__name__)

HEADER_SIZE = 8
_STREAM_TYPES = frozenset({0, 1, 2})
_DOCKER_BASE_URL = "http://docker"


class DemuxState(str, Enum):
    AWAITING_HEADER = "awaiting-header"
    AWAITING_PAYLOAD = "awaiting-payload"


class DockerStreamDemuxer:
    """Incremental parser for Docker's multiplexed stdout/stderr stream.

    Each frame is an 8-byte header (stream type, three zero bytes, big-endian
    payload length) followed by the payload. Partial headers and payloads are
    held until the next :meth:`feed`. A header that cannot be valid means the
    stream is not multiplexed (a TTY container); from then on every byte is
    passed through as raw text. Bytes still buffered at :meth:`finish` are
    emitted raw.
    """

    def __init__(self) -> None:
        self.state = DemuxState.AWAITING_HEADER
        self._buffer = bytearray()
        self._remaining = 0
        self._raw = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @staticmethod
    def _is_header(candidate: bytes) -> bool:
        return candidate[0] in _STREAM_TYPES and candidate[1:4] == b"\x00\x00\x00"

    def feed(self, data: bytes) -> str:
        """Consume ``data`` and return the text of every completed frame."""
        if self._raw:
            return self._decoder.decode(data)

        self._buffer.extend(data)
        out = bytearray()
        while True:
            if self.state is DemuxState.AWAITING_HEADER:
                if len(self._buffer) < HEADER_SIZE:
                    break
                header = bytes(self._buffer[:HEADER_SIZE])
                if not self._is_header(header):
                    LOGGER.debug("Container stream is not multiplexed; passing bytes through")
                    self._raw = True
                    out.extend(self._buffer)
                    self._buffer.clear()
                    break
                (size,) = struct.unpack(">I", header[4:])
                del self._buffer[:HEADER_SIZE]
                if size:
                    self._remaining = size
                    self.state = DemuxState.AWAITING_PAYLOAD
            else:
                if len(self._buffer) < self._remaining:
                    break
                out.extend(self._buffer[: self._remaining])
                del self._buffer[: self._remaining]
                self._remaining = 0
                self.state = DemuxState.AWAITING_HEADER
        return self._decoder.decode(bytes(out))

    def finish(self) -> str:
        """Flush buffered bytes as raw text at end of stream."""
        leftover = bytes(self._buffer)
        self._buffer.clear()
        self._remaining = 0
        self.state = DemuxState.AWAITING_HEADER
        return self._decoder.decode(leftover, final=True)


def flatten_environment(*maps: Dict[str, str]) -> List[str]:
    """Render mappings as ``KEY=VALUE`` entries, later maps after earlier ones."""
    entries: List[str] = []
    for mapping in maps:
        entries.extend(f"{key}={value}" for key, value in mapping.items())
    return entries


class LocalContainerBackend(ExecutionBackend):
    """Run the agent image locally and collect its combined output."""

    def __init__(
        self,
        settings: ContainerSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        publisher: Optional[RepositoryPublisher] = None,
    ) -> None:
        super().__init__(publisher)
        self.settings = settings
        self._client = client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        transport = httpx.AsyncHTTPTransport(uds=self.settings.socket_path)
        async with httpx.AsyncClient(transport=transport, base_url=_DOCKER_BASE_URL, timeout=30.0) as client:
            yield client

    async def health_check(self) -> bool:
        try:
            async with self._session() as client:
                response = await client.get("/_ping")
        except httpx.HTTPError as error:
            LOGGER.warning("Docker daemon ping failed: %s", error)
            return False
        return response.is_success

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        image = request.profile.image or self.settings.image
        environment = request.merged_environment()
        secrets = request.merged_secrets()
        LOGGER.info(
            "Running job %s in %s (%d env vars, secrets=%s)",
            request.job_id,
            image,
            len(environment),
            mask_secrets(secrets, show_unset=True),
        )

        async with self._session() as client:
            await self._ping(client)
            await self._ensure_image(client, image)
            container_id = await self._create_container(client, image, flatten_environment(environment, secrets))
            await self._request(client, "POST", f"/containers/{container_id}/start", "start container")
            emit_event("container.started", job_id=request.job_id, container=container_id[:12], image=image)
            try:
                output = await asyncio.wait_for(
                    self._follow_logs(client, container_id, request),
                    timeout=self.settings.timeout,
                )
            except asyncio.TimeoutError as error:
                await self._kill(client, container_id)
                raise BackendTimeout(
                    f"Container execution timeout after {self.settings.timeout:g}s",
                    details={"container": container_id, "timeout": self.settings.timeout},
                ) from error

        LOGGER.info("Container logs for job %s: %d characters", request.job_id, len(output))
        return ExecutionResult(output=output, environment=environment, secrets=secrets)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as error:
            raise BackendUnavailable(f"Docker daemon not available: {error}") from error
        if not response.is_success:
            raise BackendRejected(
                f"Docker failed to {action}: {response.status_code} {response.text.strip()}",
                details={"status_code": response.status_code, "action": action},
            )
        return response

    async def _ping(self, client: httpx.AsyncClient) -> None:
        try:
            response = await client.get("/_ping")
        except httpx.HTTPError as error:
            raise BackendUnavailable(f"Docker daemon not available: {error}") from error
        if not response.is_success:
            raise BackendUnavailable(f"Docker daemon not available: HTTP {response.status_code}")

    async def _ensure_image(self, client: httpx.AsyncClient, image: str) -> None:
        try:
            response = await client.get(f"/images/{image}/json")
        except httpx.HTTPError as error:
            raise BackendUnavailable(f"Docker daemon not available: {error}") from error
        if response.is_success:
            return
        if response.status_code != 404:
            raise BackendUnavailable(f"Could not inspect image {image}: HTTP {response.status_code}")

        available: List[str] = []
        try:
            listing = await client.get("/images/json")
            if listing.is_success:
                for entry in listing.json():
                    available.extend(entry.get("RepoTags") or ["<none>:<none>"])
        except (httpx.HTTPError, ValueError) as error:
            LOGGER.warning("Failed to list images: %s", error)
        LOGGER.error("Docker image not found: %s", image)
        raise ImageNotFound(image, tuple(available))

    async def _create_container(self, client: httpx.AsyncClient, image: str, env: List[str]) -> str:
        body = {
            "Image": image,
            "Cmd": list(self.settings.command),
            "Env": env,
            "WorkingDir": self.settings.working_dir,
            "Tty": False,
            "AttachStdout": True,
            "AttachStderr": True,
            "HostConfig": {
                "AutoRemove": True,
                "Memory": self.settings.memory_limit,
                "CpuShares": self.settings.cpu_shares,
            },
        }
        response = await self._request(client, "POST", "/containers/create", "create container", json=body)
        try:
            container_id = response.json()["Id"]
        except (ValueError, KeyError, TypeError) as error:
            raise BackendRejected("Docker create response did not include a container id") from error
        LOGGER.debug("Created container %s", container_id)
        return str(container_id)

    async def _follow_logs(self, client: httpx.AsyncClient, container_id: str, request: ExecutionRequest) -> str:
        demuxer = DockerStreamDemuxer()
        parts: List[str] = []
        params = {"follow": "1", "stdout": "1", "stderr": "1"}
        try:
            async with client.stream(
                "GET", f"/containers/{container_id}/logs", params=params, timeout=None
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise BackendRejected(
                        f"Docker failed to attach to logs: {response.status_code} {response.text.strip()}"
                    )
                async for chunk in response.aiter_bytes():
                    text = demuxer.feed(chunk)
                    if not text:
                        continue
                    parts.append(text)
                    await self._publish_progress(request, text)
        except httpx.HTTPError as error:
            raise BackendUnavailable(f"Container log stream failed: {error}") from error

        tail = demuxer.finish()
        if tail:
            parts.append(tail)
            await self._publish_progress(request, tail)
        return "".join(parts)

    async def _publish_progress(self, request: ExecutionRequest, chunk: str) -> None:
        if request.log_sink is None:
            return
        try:
            await request.log_sink(request.job_id, chunk)
        except Exception:
            LOGGER.warning("Failed to store incremental logs for job %s", request.job_id, exc_info=True)

    async def _kill(self, client: httpx.AsyncClient, container_id: str) -> None:
        try:
            response = await client.post(f"/containers/{container_id}/kill")
        except httpx.HTTPError as error:
            LOGGER.error("Failed to kill container %s: %s", container_id, error)
            return
        if not response.is_success:
            LOGGER.error("Failed to kill container %s: HTTP %s", container_id, response.status_code)


__all__ = [
    "DemuxState",
    "DockerStreamDemuxer",
    "HEADER_SIZE",
    "LocalContainerBackend",
    "flatten_environment",
]
