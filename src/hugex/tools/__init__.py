"""Filesystem and git helpers used by the publish workflow."""

from .patch import apply_file_changes, apply_simple_patch, extract_content_from_diff
from .vcs import GitRepository, GitResult, redact_url, run_git

__all__ = [
    "GitRepository",
    "GitResult",
    "apply_file_changes",
    "apply_simple_patch",
    "extract_content_from_diff",
    "redact_url",
    "run_git",
]
