"""Materialise a job's diff as a new branch on the remote repository."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from .config import GitSettings
from .credentials import authenticated_clone_url
from .diff.models import FileDiff
from .telemetry import emit_event
from .tools.patch import apply_file_changes
from .tools.vcs import DEFAULT_GIT_TIMEOUT, GitRepository, redact_url

LOGGER = logging.getLogger(__name__)

DEFAULT_GIT_SETTINGS = GitSettings(
    timeout=DEFAULT_GIT_TIMEOUT,
    bot_name="HugeX Bot",
    bot_email="hugex@users.noreply.github.com",
    marker_file=".hugex-branch-marker",
)


@dataclass(slots=True)
class PublishOptions:
    """Inputs of one branch-and-push request."""

    repository_url: str
    branch: str
    base_branch: str
    title: str
    description: str = ""
    files: Sequence[FileDiff] = field(default_factory=list)
    github_token: Optional[str] = field(default=None, repr=False)

    @property
    def commit_message(self) -> str:
        return f"{self.title}\n\n{self.description}"


@dataclass(slots=True, frozen=True)
class PublishResult:
    branch: str
    commit_hash: str


def _marker_content(options: PublishOptions) -> str:
    timestamp = datetime.now(timezone.utc).isoformat()
    return (
        "Branch created by Hugex\n"
        f"Timestamp: {timestamp}\n"
        f"Branch: {options.branch}\n"
        f"Repository: {redact_url(options.repository_url)}\n"
    )


class RepositoryPublisher:
    """Clone, branch, patch, commit and push inside a throwaway directory."""

    def __init__(self, settings: GitSettings = DEFAULT_GIT_SETTINGS) -> None:
        self.settings = settings

    async def publish(self, options: PublishOptions) -> PublishResult:
        """Run the publish workflow and return the pushed branch and commit.

        The temporary clone is removed however the workflow ends. Git and
        patch errors propagate unchanged.
        """
        files: List[FileDiff] = list(options.files)
        LOGGER.info(
            "Creating branch %s from %s@%s with %d file change(s)",
            options.branch,
            redact_url(options.repository_url),
            options.base_branch,
            len(files),
        )
        clone_url = authenticated_clone_url(options.repository_url, options.github_token)

        with tempfile.TemporaryDirectory(prefix="hugex-git-", ignore_cleanup_errors=True) as temp_dir:
            repo = await GitRepository.clone(
                clone_url,
                Path(temp_dir) / "repo",
                branch=options.base_branch,
                depth=1,
                timeout=self.settings.timeout,
            )
            await repo.checkout_new_branch(options.branch)

            await asyncio.to_thread(apply_file_changes, repo.root, files)

            if not await repo.has_changes():
                LOGGER.info("No changes after applying diff; writing %s", self.settings.marker_file)
                marker = repo.root / self.settings.marker_file
                marker.write_text(_marker_content(options), encoding="utf-8")

            await repo.configure_identity(self.settings.bot_name, self.settings.bot_email)
            await repo.add_all()
            commit_hash = await repo.commit(options.commit_message)
            await repo.push("origin", options.branch)

        emit_event(
            "publish.completed",
            branch=options.branch,
            commit=commit_hash,
            files=len(files),
        )
        LOGGER.info("Pushed branch %s at %s", options.branch, commit_hash)
        return PublishResult(branch=options.branch, commit_hash=commit_hash)


__all__ = ["PublishOptions", "PublishResult", "RepositoryPublisher"]
