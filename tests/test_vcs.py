from __future__ import annotations

import asyncio
import os
import shlex
import time
from pathlib import Path

import pytest

from hugex.errors import GitOperationFailed
from hugex.tools.vcs import run_git

needs_process_groups = pytest.mark.skipif(not hasattr(os, "killpg"), reason="requires POSIX process groups")


@pytest.mark.asyncio
async def test_run_git_captures_output_without_check(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))

    result = await run_git(["rev-parse", "--git-dir"], cwd=tmp_path, check=False)

    assert result.returncode != 0
    assert result.args == ("rev-parse", "--git-dir")
    assert "not a git repository" in result.stderr.lower()


@pytest.mark.asyncio
async def test_failed_command_redacts_credentials(tmp_path: Path) -> None:
    with pytest.raises(GitOperationFailed) as excinfo:
        await run_git(["ls-remote", "https://tok@127.0.0.1:9/acme/widgets.git"], cwd=tmp_path, timeout=30)

    message = str(excinfo.value)
    assert "https://***@127.0.0.1:9/acme/widgets.git" in message
    assert "tok@" not in message
    assert excinfo.value.details["returncode"] != 0


@pytest.mark.asyncio
async def test_overrunning_command_is_killed(tmp_path: Path) -> None:
    started = time.monotonic()

    with pytest.raises(GitOperationFailed) as excinfo:
        await run_git(["-c", "alias.slp=!sleep 5", "slp"], cwd=tmp_path, timeout=0.3)

    assert "timed out after 0.3s" in str(excinfo.value)
    assert excinfo.value.details["timeout"] == 0.3
    assert time.monotonic() - started < 4


@needs_process_groups
@pytest.mark.asyncio
async def test_timeout_also_kills_spawned_helpers(tmp_path: Path) -> None:
    marker = tmp_path / "helper-finished"
    alias = f"alias.slow=!sleep 1 && touch {shlex.quote(str(marker))}"

    with pytest.raises(GitOperationFailed):
        await run_git(["-c", alias, "slow"], cwd=tmp_path, timeout=0.2)
    await asyncio.sleep(1.5)

    assert not marker.exists()


@needs_process_groups
@pytest.mark.asyncio
async def test_timeout_tolerates_process_that_already_exited(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    real_killpg = os.killpg

    def killpg_then_report_gone(pid: int, sig: int) -> None:
        real_killpg(pid, sig)
        raise ProcessLookupError(pid)

    monkeypatch.setattr(os, "killpg", killpg_then_report_gone)

    with pytest.raises(GitOperationFailed) as excinfo:
        await run_git(["-c", "alias.slp=!sleep 5", "slp"], cwd=tmp_path, timeout=0.3)

    assert "timed out" in str(excinfo.value)
