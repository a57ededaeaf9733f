"""Minimal async git helpers for the publish workflow.

Only the handful of commands needed to clone, branch, commit and push are
wrapped. Every invocation disables interactive prompts and is bounded by a
timeout; a command that overruns is killed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from ..errors import GitOperationFailed

LOGGER = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT = 300.0
_CREDENTIAL_IN_URL = re.compile(r"(https?://)[^/@\s]+@")


def redact_url(text: str) -> str:
    """Strip ``user:token@`` from any URLs contained in ``text``."""
    return _CREDENTIAL_IN_URL.sub(r"\1***@", text)


@dataclass(slots=True)
class GitResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def _git_environment(extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    if extra:
        env.update(extra)
    return env


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` together with helpers it spawned, such as ``git-remote-https``."""
    with contextlib.suppress(ProcessLookupError):
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()


async def run_git(
    args: Sequence[str],
    *,
    cwd: Path | str,
    timeout: float = DEFAULT_GIT_TIMEOUT,
    check: bool = True,
) -> GitResult:
    """Run ``git args`` in ``cwd`` and capture its output.

    Raises :class:`GitOperationFailed` when the command cannot start, exceeds
    ``timeout``, or exits non-zero while ``check`` is set. Credentials embedded
    in URLs are redacted from every message.
    """
    display = redact_url(" ".join(args))
    LOGGER.debug("git %s (cwd=%s)", display, cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd),
            env=_git_environment(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=hasattr(os, "killpg"),
        )
    except OSError as error:
        raise GitOperationFailed(f"git {display} could not start: {error}") from error

    try:
        raw_stdout, raw_stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as error:
        _kill_process_group(process)
        await process.wait()
        raise GitOperationFailed(
            f"git {display} timed out after {timeout:g}s",
            details={"args": display, "timeout": timeout},
        ) from error

    stdout = raw_stdout.decode("utf-8", errors="replace") if raw_stdout else ""
    stderr = raw_stderr.decode("utf-8", errors="replace") if raw_stderr else ""
    result = GitResult(tuple(args), process.returncode or 0, stdout, stderr)
    if check and result.returncode != 0:
        message = redact_url(result.stderr.strip() or result.stdout.strip() or "unknown git error")
        raise GitOperationFailed(
            f"git {display} failed: {message}",
            details={"args": display, "returncode": result.returncode},
        )
    return result


class GitRepository:
    """Lightweight async wrapper around ``git`` commands for one checkout."""

    def __init__(self, root: Path | str, *, timeout: float = DEFAULT_GIT_TIMEOUT) -> None:
        self.root = Path(root).resolve()
        self.timeout = timeout

    @classmethod
    async def clone(
        cls,
        url: str,
        destination: Path | str,
        *,
        branch: Optional[str] = None,
        depth: Optional[int] = 1,
        timeout: float = DEFAULT_GIT_TIMEOUT,
    ) -> "GitRepository":
        """Clone ``url`` into ``destination`` and return the repository."""
        target = Path(destination)
        args: List[str] = ["clone"]
        if depth:
            args.append(f"--depth={depth}")
        if branch:
            args.extend(["--branch", branch])
        args.extend([url, str(target)])
        await run_git(args, cwd=target.parent, timeout=timeout)
        return cls(target, timeout=timeout)

    async def git(self, *args: str, check: bool = True) -> GitResult:
        """Execute ``git`` with ``args`` relative to the repository root."""
        return await run_git(list(args), cwd=self.root, timeout=self.timeout, check=check)

    async def checkout_new_branch(self, branch: str) -> None:
        await self.git("checkout", "-b", branch)

    async def configure_identity(self, name: str, email: str) -> None:
        await self.git("config", "user.name", name)
        await self.git("config", "user.email", email)

    async def status_entries(self) -> List[tuple[str, Path]]:
        """Return porcelain status entries as ``(status, path)`` pairs."""
        result = await self.git("status", "--porcelain")
        entries: List[tuple[str, Path]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            entries.append((status.strip() or status, Path(raw_path.strip())))
        return entries

    async def has_changes(self) -> bool:
        return bool(await self.status_entries())

    async def add_all(self) -> None:
        await self.git("add", ".")

    async def commit(self, message: str) -> str:
        """Commit the index and return the new ``HEAD`` SHA."""
        await self.git("commit", "-m", message)
        return await self.head()

    async def head(self) -> str:
        result = await self.git("rev-parse", "HEAD")
        return result.stdout.strip()

    async def push(self, remote: str, branch: str) -> None:
        await self.git("push", remote, branch)


__all__ = ["DEFAULT_GIT_TIMEOUT", "GitRepository", "GitResult", "redact_url", "run_git"]
