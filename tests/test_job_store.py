from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hugex.diff import JobDiff, parse_unified_diff
from hugex.errors import InvalidJobTransition, JobNotFound
from hugex.memory import Job, JobChanges, JobStatus, JobStore, RepositoryRef

pytestmark = pytest.mark.asyncio

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _job(job_id: str, *, minutes: int = 0, title: str = "Task", author: str | None = None, **kwargs) -> Job:
    return Job(
        id=job_id,
        title=title,
        description=f"Description of {job_id}",
        repository=RepositoryRef(url="https://github.com/acme/widgets"),
        author=author,
        created_at=EPOCH + timedelta(minutes=minutes),
        **kwargs,
    )


async def test_create_and_get_return_copies() -> None:
    store = JobStore()
    created = await store.create_job(_job("a", tags=["x"]))

    created.tags.append("mutated")
    fetched = await store.get_job("a")

    assert fetched is not None
    assert fetched.tags == ["x"]
    assert fetched.status is JobStatus.PENDING
    assert await store.get_job("missing") is None


async def test_lifecycle_transitions() -> None:
    store = JobStore()
    await store.create_job(_job("a"))

    running = await store.update_job_status("a", JobStatus.RUNNING)
    done = await store.update_job_status("a", JobStatus.COMPLETED, JobChanges(additions=3, deletions=1, files=2))

    assert running.status is JobStatus.RUNNING
    assert done.status is JobStatus.COMPLETED
    assert done.changes == JobChanges(additions=3, deletions=1, files=2)
    assert done.updated_at >= running.updated_at


@pytest.mark.parametrize(
    "path, target",
    [
        ((), JobStatus.COMPLETED),
        ((JobStatus.RUNNING, JobStatus.COMPLETED), JobStatus.RUNNING),
        ((JobStatus.FAILED,), JobStatus.RUNNING),
        ((JobStatus.RUNNING, JobStatus.FAILED), JobStatus.COMPLETED),
    ],
)
async def test_invalid_transitions_are_rejected(path, target) -> None:
    store = JobStore()
    await store.create_job(_job("a"))
    for status in path:
        await store.update_job_status("a", status)

    with pytest.raises(InvalidJobTransition):
        await store.update_job_status("a", target)


async def test_updates_on_unknown_job_raise() -> None:
    store = JobStore()

    with pytest.raises(JobNotFound):
        await store.update_job_status("ghost", JobStatus.RUNNING)
    with pytest.raises(JobNotFound):
        await store.update_job_environment("ghost", {})


async def test_concurrent_status_updates_allow_one_winner() -> None:
    store = JobStore()
    await store.create_job(_job("a"))
    await store.update_job_status("a", JobStatus.RUNNING)

    outcomes = await asyncio.gather(
        store.update_job_status("a", JobStatus.COMPLETED),
        store.update_job_status("a", JobStatus.FAILED),
        return_exceptions=True,
    )

    assert sum(isinstance(item, InvalidJobTransition) for item in outcomes) == 1
    final = await store.get_job("a")
    assert final is not None and final.status.is_terminal


async def test_update_environment_records_run_configuration() -> None:
    store = JobStore()
    await store.create_job(_job("a", secrets={"TOKEN": "raw"}))

    updated = await store.update_job_environment("a", {"JOB_ID": "a"}, {"TOKEN": "***"}, "remote-1")

    assert updated.environment == {"JOB_ID": "a"}
    assert updated.secrets == {"TOKEN": "***"}
    assert updated.remote_job_id == "remote-1"


async def test_list_jobs_filters_sorts_and_paginates() -> None:
    store = JobStore()
    for index in range(5):
        await store.create_job(_job(f"job-{index}", minutes=index, title=f"Task {index}", author="ana"))
    await store.create_job(_job("fix", minutes=10, title="Fix login bug", author="ben"))
    await store.update_job_status("job-1", JobStatus.RUNNING)

    first = await store.list_jobs(page=1, limit=4)
    assert [job.id for job in first.jobs] == ["fix", "job-4", "job-3", "job-2"]
    assert first.pagination is not None
    assert (first.pagination.total, first.pagination.total_pages) == (6, 2)
    assert first.pagination.has_next and not first.pagination.has_prev

    second = await store.list_jobs(page=2, limit=4)
    assert [job.id for job in second.jobs] == ["job-1", "job-0"]
    assert second.pagination is not None and second.pagination.has_prev

    assert [job.id for job in (await store.list_jobs(status="running")).jobs] == ["job-1"]
    assert [job.id for job in (await store.list_jobs(search="LOGIN")).jobs] == ["fix"]
    assert len((await store.list_jobs(author="ana")).jobs) == 5

    empty = await store.list_jobs(page=3, limit=4)
    assert empty.jobs == []

    with pytest.raises(ValueError):
        await store.list_jobs(page=0)


async def test_diff_and_logs_round_trip_and_delete() -> None:
    store = JobStore()
    await store.create_job(_job("a"))
    diff = parse_unified_diff("diff --git a/f b/f\n--- a/f\n+++ b/f\n@@ -1 +1 @@\n-x\n+y\n", "a")

    await store.set_job_diff("a", diff)
    await store.set_job_logs("a", "partial")
    await store.set_job_logs("a", "partial and more")

    stored = await store.get_job_diff("a")
    assert isinstance(stored, JobDiff)
    assert stored.summary.total_files == 1
    assert await store.get_job_logs("a") == "partial and more"

    assert await store.delete_job("a") is True
    assert await store.get_job("a") is None
    assert await store.get_job_diff("a") is None
    assert await store.get_job_logs("a") is None
    assert await store.delete_job("a") is False


async def test_appended_logs_accumulate_until_replaced() -> None:
    store = JobStore()
    await store.create_job(_job("a"))

    for chunk in ("one\n", "two\n", "three\n"):
        await store.append_job_logs("a", chunk)
    assert await store.get_job_logs("a") == "one\ntwo\nthree\n"

    await store.append_job_logs("a", "four\n")
    assert await store.get_job_logs("a") == "one\ntwo\nthree\nfour\n"

    await store.set_job_logs("a", "final output")
    assert await store.get_job_logs("a") == "final output"
    assert await store.get_job_logs("b") is None
