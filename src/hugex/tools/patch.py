"""Apply parsed file diffs to a working tree.

This is not a general patch engine. It reproduces the subset of
unified-diff behaviour the agent backends emit:

* ``added`` files are rebuilt from their ``+`` and context lines.
* ``modified`` files go through :func:`apply_simple_patch`, a line walker that
  trusts the hunk headers. A hunk ends once the number of processed lines
  reaches ``max(old_length, new_length)``, so hunks with inaccurate counts can
  be misapplied. Any exception falls back to content extraction.
* ``deleted`` files are removed; a file that is already gone is fine.
* ``renamed`` files are moved, falling back to creation when the source is
  missing.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterable

from ..diff.models import FileDiff, FileStatus
from ..errors import PatchApplicationFailed
from ..telemetry import emit_event

__all__ = ["apply_file_changes", "apply_simple_patch", "extract_content_from_diff"]

LOGGER = logging.getLogger(__name__)

_HUNK_HEADER = re.compile(r"@@ -(\d+),?(\d*) \+(\d+),?(\d*) @@")
_NO_NEWLINE_MARKER = "\\ No newline at end of file"
_HEADER_PREFIXES: tuple[str, ...] = (
    "-",
    "@@",
    "index",
    "diff",
    "+++",
    "---",
    "new file mode",
    "deleted file mode",
    "old mode",
    "new mode",
    "similarity index",
    "rename from",
    "rename to",
    "\\",
)


def _with_trailing_newline(lines: list[str], patch: str) -> str:
    content = "\n".join(lines)
    if lines and _NO_NEWLINE_MARKER not in patch:
        content += "\n"
    return content


def _fallback_hunk_lines(patch: str) -> list[str]:
    """Collect ``+``/context lines following the first hunk header."""
    hunk_start = patch.find("@@")
    second_marker = patch.find("@@", hunk_start + 2)
    if second_marker == -1:
        return []
    line_end = patch.find("\n", second_marker)
    if line_end == -1:
        return []
    extracted: list[str] = []
    for line in patch[line_end + 1 :].split("\n"):
        if line.startswith("+") or line.startswith(" "):
            extracted.append(line[1:])
    return extracted


def extract_content_from_diff(patch: str) -> str:
    """Rebuild full file content from the added and context lines of ``patch``."""
    if not patch or not patch.strip():
        return ""

    content: list[str] = []
    found_addition = False
    for line in patch.split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            content.append(line[1:])
            found_addition = True
        elif line.startswith(" "):
            content.append(line[1:])
        elif line and not line.startswith(_HEADER_PREFIXES):
            content.append(line)

    if not found_addition and "@@" in patch:
        fallback = _fallback_hunk_lines(patch)
        if fallback:
            return _with_trailing_newline(fallback, patch)

    return _with_trailing_newline(content, patch)


def apply_simple_patch(original: str, patch: str) -> str:
    """Apply the hunks of ``patch`` to ``original`` and return the new text.

    Raises ``IndexError`` when a hunk points past the end of ``original``.
    """
    original_lines = original.split("\n")
    result: list[str] = []
    original_index = 0
    in_hunk = False
    hunk_length = 0
    processed = 0

    for line in patch.split("\n"):
        if line.startswith("@@"):
            match = _HUNK_HEADER.match(line)
            if not match:
                continue
            hunk_start = int(match.group(1)) - 1
            old_length = int(match.group(2)) if match.group(2) else 1
            new_length = int(match.group(4)) if match.group(4) else 1
            hunk_length = max(old_length, new_length)
            while original_index < hunk_start:
                result.append(original_lines[original_index])
                original_index += 1
            in_hunk = True
            processed = 0
            continue

        if not in_hunk:
            continue

        if line.startswith("-"):
            original_index += 1
            processed += 1
        elif line.startswith("+"):
            result.append(line[1:])
            processed += 1
        elif line.startswith(" "):
            result.append(original_lines[original_index])
            original_index += 1
            processed += 1

        if processed >= hunk_length:
            in_hunk = False

    result.extend(original_lines[original_index:])
    return "\n".join(result)


def _resolve_target(root: Path, relative: str) -> Path:
    """Resolve ``relative`` inside ``root``, rejecting paths that escape it."""
    candidate = (root / relative).resolve()
    if candidate != root and root not in candidate.parents:
        raise PatchApplicationFailed(
            f"Refusing to write outside the working tree: {relative}",
            details={"path": relative},
        )
    return candidate


def _write_new_file(path: Path, patch: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(extract_content_from_diff(patch), encoding="utf-8")


def _write_modified_file(path: Path, patch: str) -> None:
    try:
        current = path.read_text(encoding="utf-8")
        patched = apply_simple_patch(current, patch)
    except Exception as error:
        LOGGER.warning("Patch walk failed for %s (%s); rebuilding from diff content", path, error)
        _write_new_file(path, patch)
        return
    path.write_text(patched, encoding="utf-8")


def _apply_single(root: Path, file_diff: FileDiff) -> None:
    target = _resolve_target(root, file_diff.filename)
    patch = file_diff.patch

    if file_diff.status is FileStatus.ADDED:
        _write_new_file(target, patch)
    elif file_diff.status is FileStatus.MODIFIED:
        _write_modified_file(target, patch)
    elif file_diff.status is FileStatus.DELETED:
        target.unlink(missing_ok=True)
    elif file_diff.status is FileStatus.RENAMED:
        if not file_diff.old_filename:
            _write_new_file(target, patch)
            return
        source = _resolve_target(root, file_diff.old_filename)
        if not source.exists():
            LOGGER.warning("Rename source %s missing; creating %s from diff", source, target)
            _write_new_file(target, patch)
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, target)
        if "@@" in patch:
            _write_modified_file(target, patch)


def apply_file_changes(root: Path | str, files: Iterable[FileDiff]) -> list[Path]:
    """Apply ``files`` under ``root`` in order and return the touched paths.

    A failure on any file aborts the whole operation with
    :class:`PatchApplicationFailed`.
    """
    root_path = Path(root).resolve()
    touched: list[Path] = []
    for file_diff in files:
        LOGGER.debug("Applying %s change to %s", file_diff.status.value, file_diff.filename)
        try:
            _apply_single(root_path, file_diff)
        except PatchApplicationFailed:
            raise
        except Exception as error:
            emit_event(
                "patch.file_failed",
                path=file_diff.filename,
                status=file_diff.status.value,
                error=str(error),
            )
            raise PatchApplicationFailed(
                f"Failed to apply changes to {file_diff.filename}: {error}",
                details={"path": file_diff.filename, "status": file_diff.status.value},
            ) from error
        touched.append(Path(file_diff.filename))

    emit_event("patch.applied", files=len(touched), paths=touched)
    return touched
