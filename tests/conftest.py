from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
OVERRIDE_VARIABLES = (
    "EXECUTION_MODE",
    "DOCKER_IMAGE",
    "DOCKER_MEMORY_LIMIT",
    "DOCKER_CPU_SHARES",
    "DOCKER_TIMEOUT",
    "REPO_URL",
    "REPO_BRANCH",
    "HUGEX_GIT_TIMEOUT",
)

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def run_git(*cmd: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *cmd],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@dataclass(slots=True)
class BareRemote:
    """A bare repository seeded with one commit on ``main``."""

    path: Path

    @property
    def url(self) -> str:
        return self.path.as_uri()

    def git(self, *args: str) -> str:
        return run_git(f"--git-dir={self.path}", *args, cwd=self.path)

    def show(self, revision: str, path: str) -> str:
        return self.git("show", f"{revision}:{path}")


@pytest.fixture()
def bare_remote(tmp_path: Path) -> BareRemote:
    """Create a bare remote whose ``main`` branch holds a tiny project."""

    remote = tmp_path / "remote.git"
    seed = tmp_path / "seed"
    seed.mkdir()

    run_git("init", "--bare", str(remote), cwd=tmp_path)
    run_git("init", cwd=seed)
    run_git("symbolic-ref", "HEAD", "refs/heads/main", cwd=seed)
    run_git("config", "user.email", "seed@example.com", cwd=seed)
    run_git("config", "user.name", "Seed Author", cwd=seed)

    (seed / "README.md").write_text("# Widgets\n\nA tiny project.\n", encoding="utf-8")
    (seed / "src").mkdir()
    (seed / "src" / "app.py").write_text(
        textwrap.dedent(
            """
            def greet(name):
                return "hello " + name


            def main():
                print(greet("world"))
            """
        ).lstrip(),
        encoding="utf-8",
    )
    (seed / "obsolete.txt").write_text("remove me\n", encoding="utf-8")

    run_git("add", ".", cwd=seed)
    run_git("commit", "-m", "Initial widgets state", cwd=seed)
    run_git("remote", "add", "origin", remote.as_uri(), cwd=seed)
    run_git("push", "origin", "main", cwd=seed)

    return BareRemote(path=remote)


@dataclass(slots=True)
class CliRunner:
    """Invoke ``python -m hugex.cli`` inside a scratch directory."""

    root: Path

    def run(self, *args: str, stdin: str | None = None, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
        merged = os.environ.copy()
        for key in OVERRIDE_VARIABLES:
            merged.pop(key, None)
        pythonpath = str(SRC)
        if merged.get("PYTHONPATH"):
            pythonpath = os.pathsep.join([pythonpath, merged["PYTHONPATH"]])
        merged["PYTHONPATH"] = pythonpath
        merged.update(env or {})

        command = [sys.executable, "-m", "hugex.cli", *args]
        return subprocess.run(  # noqa: S603 - command constructed from known values
            command,
            cwd=self.root,
            env=merged,
            input=stdin,
            capture_output=True,
            text=True,
            check=False,
        )


@pytest.fixture()
def cli(tmp_path: Path) -> CliRunner:
    workdir = tmp_path / "cli"
    workdir.mkdir()
    return CliRunner(root=workdir)
