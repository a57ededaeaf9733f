"""CLI commands for running jobs, extracting diffs, and publishing branches."""

from __future__ import annotations

import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, Settings, load_settings
from .credentials import Credentials
from .diff.extractor import extract_diff
from .diff.models import JobDiff
from .errors import HugexError
from .memory.schema import Job, RepositoryRef
from .memory.store import JobStore
from .orchestrator import JobOrchestrator
from .publisher import PublishOptions
from .telemetry import configure_logging

APP_HELP = "HugeX job engine CLI entry point."

app = typer.Typer(help=APP_HELP)


def _load(config: Optional[str]) -> Settings:
    try:
        settings = load_settings(Path(config) if config else None)
    except HugexError as error:
        typer.echo(f"Configuration error: {error}")
        raise typer.Exit(code=1) from error
    configure_logging(settings.log_level)
    return settings


def _parse_pairs(values: Optional[List[str]], label: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for raw in values or []:
        key, separator, value = raw.partition("=")
        if not separator or not key.strip():
            raise typer.BadParameter(f"{label} entries must look like KEY=VALUE, got {raw!r}")
        pairs[key.strip()] = value
    return pairs


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    source = Path(path)
    if not source.exists():
        raise typer.BadParameter(f"File not found: {source}")
    return source.read_text(encoding="utf-8")


def _echo_diff_summary(diff: JobDiff) -> None:
    summary = diff.summary
    typer.echo(
        f"Files: {summary.total_files} | +{summary.total_additions} | -{summary.total_deletions}"
    )
    for item in diff.files:
        typer.echo(f"- {item.status.value:<8} {item.filename} (+{item.additions}/-{item.deletions})")


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="Task description handed to the agent."),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Short job title (defaults to the prompt)."),
    repo_url: Optional[str] = typer.Option(None, "--repo-url", help="Repository to run against."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch to run against."),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Execution mode: api or docker."),
    env: List[str] = typer.Option(None, "--env", "-e", help="Job environment entry KEY=VALUE (repeatable)."),
    secret: List[str] = typer.Option(None, "--secret", "-s", help="Job secret entry KEY=VALUE (repeatable)."),
    diff_out: Optional[Path] = typer.Option(None, "--diff-out", help="Write the extracted diff as JSON."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (default: ./{DEFAULT_CONFIG_NAME} when present).",
    ),
) -> None:
    """Run a single job to completion and print its diff summary."""
    settings = _load(config)
    job = Job(
        id=uuid.uuid4().hex,
        title=title or prompt[:80],
        description=prompt,
        repository=RepositoryRef(
            url=repo_url or settings.repository.url,
            branch=branch or settings.repository.branch,
        ),
        environment=_parse_pairs(env, "--env"),
        secrets=_parse_pairs(secret, "--secret"),
    )

    async def _run():
        store = JobStore()
        orchestrator = JobOrchestrator(settings, store, mode=mode)
        await store.create_job(job)
        return await orchestrator.process_job(job.id, Credentials.from_env())

    try:
        result = asyncio.run(_run())
    except HugexError as error:
        typer.echo(f"Job {job.id} failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Job {job.id} {result.job.status.value}")
    if result.remote_job_id:
        typer.echo(f"Remote job: {result.remote_job_id}")
    for warning in result.warnings:
        typer.echo(f"Warning: {warning}")
    _echo_diff_summary(result.diff)
    if diff_out is not None:
        diff_out.write_text(result.diff.model_dump_json(indent=2), encoding="utf-8")
        typer.echo(f"Diff written to {diff_out}")


@app.command()
def extract(
    output_file: str = typer.Argument(..., help="Captured agent output, or '-' for stdin."),
    job_id: str = typer.Option("local", "--job-id", help="Job identifier recorded in the diff."),
    as_json: bool = typer.Option(False, "--json", help="Print the diff as JSON."),
) -> None:
    """Extract and parse the delimited diff from captured agent output."""
    result = extract_diff(_read_text(output_file), job_id)
    if as_json:
        typer.echo(result.diff.model_dump_json(indent=2))
        return
    if result.warning is not None:
        typer.echo(f"Warning: {result.warning.reason}")
    _echo_diff_summary(result.diff)


@app.command()
def publish(
    diff_file: str = typer.Argument(..., help="Diff JSON produced by 'extract --json' or 'run --diff-out'."),
    branch: str = typer.Option(..., "--branch", "-b", help="Name of the branch to create."),
    title: str = typer.Option(..., "--title", "-t", help="Commit title."),
    description: str = typer.Option("", "--description", "-d", help="Commit body."),
    repo_url: Optional[str] = typer.Option(None, "--repo-url", help="Repository to push to."),
    base_branch: Optional[str] = typer.Option(None, "--base-branch", help="Branch to start from."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (default: ./{DEFAULT_CONFIG_NAME} when present).",
    ),
) -> None:
    """Apply a diff to a fresh clone, commit it, and push it as a new branch."""
    settings = _load(config)
    try:
        diff = JobDiff.model_validate_json(_read_text(diff_file))
    except ValueError as error:
        typer.echo(f"Invalid diff file: {error}")
        raise typer.Exit(code=1) from error

    options = PublishOptions(
        repository_url=repo_url or settings.repository.url,
        branch=branch,
        base_branch=base_branch or settings.repository.branch,
        title=title,
        description=description,
        files=diff.files,
        github_token=Credentials.from_env().github_token,
    )
    orchestrator = JobOrchestrator(settings, JobStore())
    try:
        result = asyncio.run(orchestrator.create_branch_and_push(options))
    except HugexError as error:
        typer.echo(f"Publish failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Pushed branch {result.branch} at {result.commit_hash}")


@app.command()
def status(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (default: ./{DEFAULT_CONFIG_NAME} when present).",
    ),
    check: bool = typer.Option(False, "--check/--no-check", help="Probe the backend for availability."),
) -> None:
    """Validate configuration and report the active backend."""
    settings = _load(config)
    typer.echo(f"Execution mode: {settings.mode.value}")
    typer.echo(f"Repository: {settings.repository.url} ({settings.repository.branch})")
    typer.echo(f"Image: {settings.container.image}")
    typer.echo(f"Remote API: {settings.remote_api.base_url}")
    typer.echo(f"Git timeout: {settings.git.timeout:g}s")
    if settings.default_secrets:
        typer.echo(f"Default secrets: {', '.join(sorted(settings.default_secrets))}")

    if not check:
        return
    orchestrator = JobOrchestrator(settings, JobStore())
    healthy = asyncio.run(orchestrator.health_check())
    typer.echo(f"Backend available: {'yes' if healthy else 'no'}")
    if not healthy:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
