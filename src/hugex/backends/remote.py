"""Backend that runs the agent through a remote compute-job HTTP API."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config import RemoteApiSettings
from ..credentials import Credentials, authenticated_clone_url
from ..errors import BackendRejected, BackendTimeout, BackendUnavailable, MissingCredential
from ..publisher import RepositoryPublisher
from ..telemetry import emit_event, mask_secrets
from .base import OUTPUT_UNAVAILABLE, ExecutionBackend, ExecutionRequest, ExecutionResult, OutputRetrieval

LOGGER = logging.getLogger(__name__)

COMPLETED_STAGES = frozenset({"completed", "succeeded", "success", "finished", "done"})
FAILED_STAGES = frozenset({"failed", "error", "cancelled", "timeout", "aborted"})
_FRAME_PREFIX = "data: "

Sleep = Callable[[float], Awaitable[None]]


def job_stage(body: Any) -> str:
    """Return the lower-cased ``status.stage`` of a status response, or ``""``."""
    if not isinstance(body, dict):
        return ""
    status = body.get("status")
    if not isinstance(status, dict):
        return ""
    stage = status.get("stage")
    return stage.strip().lower() if isinstance(stage, str) else ""


def submitted_job_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for key in ("id", "jobId", "_id"):
        value = body.get(key)
        if value:
            return str(value)
    return None


def decode_log_frame(line: str) -> Optional[str]:
    """Return the ``data`` text of one ``data: {json}`` frame.

    Lines without the frame prefix or without a ``data`` value yield ``None``;
    undecodable frames raise ``ValueError``.
    """
    if not line.startswith(_FRAME_PREFIX):
        return None
    parsed = json.loads(line[len(_FRAME_PREFIX) :])
    if not isinstance(parsed, dict):
        raise ValueError("log frame is not a JSON object")
    data = parsed.get("data")
    if not data:
        return None
    return str(data)


class RemoteApiBackend(ExecutionBackend):
    """Submit, poll and collect logs from the remote job API."""

    def __init__(
        self,
        settings: RemoteApiSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
        publisher: Optional[RepositoryPublisher] = None,
    ) -> None:
        super().__init__(publisher)
        self.settings = settings
        self._client = client
        self._sleep = sleep

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.settings.request_timeout) as client:
            yield client

    def _user_url(self, username: str) -> str:
        return f"{self.settings.base_url}/{username}"

    @staticmethod
    def _require_credentials(credentials: Credentials) -> tuple[str, str]:
        if not credentials.hf_token:
            raise MissingCredential("A remote API token is required but was not provided in credentials")
        username = credentials.effective_username
        if not username:
            raise MissingCredential("No username available to namespace the remote job URL")
        return credentials.hf_token, username

    def build_payload(self, request: ExecutionRequest) -> Dict[str, Any]:
        repo_url = authenticated_clone_url(request.repository.url, request.credentials.github_token)
        return {
            "command": list(self.settings.command),
            "arguments": [],
            "environment": request.merged_environment(repo_url),
            "flavor": self.settings.flavor,
            "dockerImage": request.profile.image,
            "secrets": request.merged_secrets(),
            "timeoutSeconds": self.settings.timeout_seconds,
        }

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        token, username = self._require_credentials(request.credentials)
        headers = {"Authorization": f"Bearer {token}"}
        payload = self.build_payload(request)
        LOGGER.info(
            "Submitting job %s (image=%s, flavor=%s, secrets=%s)",
            request.job_id,
            payload["dockerImage"],
            payload["flavor"],
            mask_secrets(payload["secrets"], show_unset=True),
        )

        async with self._session() as client:
            remote_id = await self._submit(client, username, headers, payload)
            emit_event("remote.submitted", job_id=request.job_id, remote_job_id=remote_id)
            await self._poll(client, username, headers, remote_id)
            retrieval = await self._fetch_output(client, username, headers, remote_id)

        warnings: List[str] = []
        if retrieval.is_degraded:
            LOGGER.warning("Output for job %s degraded: %s", request.job_id, retrieval.warning)
            warnings.append(retrieval.warning or "")
        return ExecutionResult(
            output=retrieval.output,
            environment=request.merged_environment(),
            secrets=payload["secrets"],
            remote_job_id=remote_id,
            warnings=warnings,
        )

    async def _submit(
        self,
        client: httpx.AsyncClient,
        username: str,
        headers: Dict[str, str],
        payload: Dict[str, Any],
    ) -> str:
        try:
            response = await client.post(self._user_url(username), json=payload, headers=headers)
        except httpx.HTTPError as error:
            raise BackendUnavailable(f"Remote job API unreachable: {error}") from error

        if not response.is_success:
            raise BackendRejected(
                f"API request failed: {response.status_code} {response.reason_phrase} - {response.text}",
                details={"status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError as error:
            raise BackendRejected("Remote job API returned an undecodable submission response") from error

        remote_id = submitted_job_id(body)
        if remote_id is None:
            raise BackendRejected("Remote job API response did not include a job identifier")
        LOGGER.info("Job submitted to remote API with id %s", remote_id)
        return remote_id

    async def _poll(
        self,
        client: httpx.AsyncClient,
        username: str,
        headers: Dict[str, str],
        remote_id: str,
    ) -> None:
        """Poll the status endpoint until a terminal stage or the attempt budget runs out."""
        max_attempts = self.settings.max_poll_attempts
        status_url = f"{self._user_url(username)}/{remote_id}"

        for attempt in range(1, max_attempts + 1):
            LOGGER.debug("Polling attempt %d/%d for %s", attempt, max_attempts, remote_id)
            stage = await self._fetch_stage(client, status_url, headers)
            if stage in COMPLETED_STAGES:
                LOGGER.info("Remote job %s finished with stage %s", remote_id, stage)
                return
            if stage in FAILED_STAGES:
                raise BackendRejected(
                    f"Job failed with status: {stage}",
                    details={"remote_job_id": remote_id, "stage": stage},
                )
            if attempt < max_attempts:
                await self._sleep(self.settings.poll_interval)

        raise BackendTimeout(
            f"Job polling timeout - job did not complete within {max_attempts} attempts",
            details={"remote_job_id": remote_id, "attempts": max_attempts},
        )

    async def _fetch_stage(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> Optional[str]:
        """One status request; transient failures return ``None``."""
        try:
            response = await client.get(url, headers=headers)
        except httpx.HTTPError as error:
            LOGGER.warning("Status check failed: %s", error)
            return None
        if not response.is_success:
            LOGGER.warning("Status check failed: %s", response.status_code)
            return None
        try:
            body = response.json()
        except ValueError:
            LOGGER.warning("Status check returned an undecodable body")
            return None
        stage = job_stage(body)
        LOGGER.debug("Remote job stage: %s", stage or "unknown")
        return stage

    async def _fetch_output(
        self,
        client: httpx.AsyncClient,
        username: str,
        headers: Dict[str, str],
        remote_id: str,
    ) -> OutputRetrieval:
        """Stream the logs endpoint and join the ``data`` field of every frame."""
        logs_url = f"{self._user_url(username)}/{remote_id}/logs"
        collected: List[str] = []
        try:
            async with client.stream("GET", logs_url, headers=headers) as response:
                if not response.is_success:
                    return OutputRetrieval.degraded(
                        OUTPUT_UNAVAILABLE, f"log request returned HTTP {response.status_code}"
                    )
                async for line in response.aiter_lines():
                    try:
                        text = decode_log_frame(line)
                    except ValueError:
                        LOGGER.warning("Could not parse log frame: %r", line[:200])
                        continue
                    if text is not None:
                        collected.append(text)
        except httpx.HTTPError as error:
            partial = "\n".join(collected).strip()
            return OutputRetrieval.degraded(partial or OUTPUT_UNAVAILABLE, f"log stream interrupted: {error}")

        return OutputRetrieval.ok("\n".join(collected).strip())


__all__ = [
    "COMPLETED_STAGES",
    "FAILED_STAGES",
    "RemoteApiBackend",
    "decode_log_frame",
    "job_stage",
    "submitted_job_id",
]
