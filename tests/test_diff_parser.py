from __future__ import annotations

import textwrap

from hugex.diff import FileDiff, FileStatus, JobDiff, count_changes, parse_unified_diff

MULTI_FILE_DIFF = textwrap.dedent(
    """\
    diff --git a/README.md b/README.md
    index 1111111..2222222 100644
    --- a/README.md
    +++ b/README.md
    @@ -1,3 +1,4 @@
     # Widgets
    +More text
    -A tiny project.
    +A small project.

    diff --git a/src/cli.py b/src/cli.py
    new file mode 100644
    index 0000000..3333333
    --- /dev/null
    +++ b/src/cli.py
    @@ -0,0 +1,2 @@
    +import sys
    +print(sys.argv)
    \\ No newline at end of file
    diff --git a/obsolete.txt b/obsolete.txt
    deleted file mode 100644
    index 4444444..0000000
    --- a/obsolete.txt
    +++ /dev/null
    @@ -1 +0,0 @@
    -remove me
    """
)


def test_parse_multi_file_diff_counts_and_statuses() -> None:
    diff = parse_unified_diff(MULTI_FILE_DIFF, "job-1")

    assert diff.job_id == "job-1"
    assert [item.filename for item in diff.files] == ["README.md", "src/cli.py", "obsolete.txt"]
    assert [item.status for item in diff.files] == [
        FileStatus.MODIFIED,
        FileStatus.ADDED,
        FileStatus.DELETED,
    ]
    readme, cli, obsolete = diff.files
    assert (readme.additions, readme.deletions) == (2, 1)
    assert (cli.additions, cli.deletions) == (2, 0)
    assert (obsolete.additions, obsolete.deletions) == (0, 1)


def test_summary_is_always_derived_from_files() -> None:
    diff = parse_unified_diff(MULTI_FILE_DIFF, "job-1")

    assert diff.summary.total_additions == sum(item.additions for item in diff.files) == 4
    assert diff.summary.total_deletions == sum(item.deletions for item in diff.files) == 2
    assert diff.summary.total_files == len(diff.files) == 3


def test_counts_match_patch_content_lines() -> None:
    diff = parse_unified_diff(MULTI_FILE_DIFF, "job-1")

    for item in diff.files:
        assert count_changes(item.patch) == (item.additions, item.deletions)


def test_header_lines_are_kept_verbatim() -> None:
    diff = parse_unified_diff(MULTI_FILE_DIFF, "job-1")
    readme = diff.files[0].patch.split("\n")

    assert readme[0] == "diff --git a/README.md b/README.md"
    assert "index 1111111..2222222 100644" in readme
    assert "--- a/README.md" in readme
    assert "+++ b/README.md" in readme
    assert "@@ -1,3 +1,4 @@" in readme
    assert "\\ No newline at end of file" in diff.files[1].patch


def test_rename_headers_set_old_filename() -> None:
    text = textwrap.dedent(
        """\
        diff --git a/docs/old.md b/docs/new.md
        similarity index 90%
        rename from docs/old.md
        rename to docs/new.md
        --- a/docs/old.md
        +++ b/docs/new.md
        @@ -1 +1 @@
        -old title
        +new title
        """
    )

    (renamed,) = parse_unified_diff(text, "job-2").files

    assert renamed.status is FileStatus.RENAMED
    assert renamed.filename == "docs/new.md"
    assert renamed.old_filename == "docs/old.md"
    assert (renamed.additions, renamed.deletions) == (1, 1)


def test_text_before_first_header_is_ignored() -> None:
    text = "agent chatter\n+not a change\n-also not\n" + MULTI_FILE_DIFF

    diff = parse_unified_diff(text, "job-3")

    assert diff.summary.total_files == 3
    assert diff.summary.total_additions == 4


def test_truncated_hunk_degrades_without_error() -> None:
    text = "diff --git a/x.py b/x.py\n--- a/x.py\n+++ b/x.py\n@@ -1,10 +1,12 @@\n+only"

    (item,) = parse_unified_diff(text, "job-4").files

    assert item.additions == 1
    assert item.deletions == 0


def test_empty_text_yields_empty_diff() -> None:
    diff = parse_unified_diff("", "job-5")

    assert diff.is_empty
    assert diff.summary.total_files == 0


def test_legacy_diff_key_is_accepted_for_patch() -> None:
    item = FileDiff.model_validate({"filename": "a.txt", "status": "added", "diff": "+x"})

    assert item.patch == "+x"
    assert "diff" not in item.model_dump()


def test_supplied_summary_cannot_override_files() -> None:
    payload = {
        "jobId": "job-6",
        "files": [{"filename": "a.txt", "additions": 2, "deletions": 1, "patch": "@@ -1 +1,2 @@\n-a\n+b\n+c"}],
        "summary": {"total_additions": 99, "total_deletions": 99, "total_files": 99},
    }

    diff = JobDiff.model_validate(payload)

    assert diff.summary.total_additions == 2
    assert diff.summary.total_files == 1
    assert diff.model_dump()["summary"]["total_deletions"] == 1


def test_from_patch_derives_counts() -> None:
    item = FileDiff.from_patch("b.txt", "--- a/b.txt\n+++ b/b.txt\n@@ -1 +1,2 @@\n-a\n+b\n+c")

    assert (item.additions, item.deletions) == (2, 1)


def test_supplied_counts_are_replaced_by_patch_counts() -> None:
    item = FileDiff.model_validate(
        {"filename": "a.txt", "additions": 7, "deletions": 3, "patch": "@@ -1 +1 @@\n-a\n+b"}
    )
    diff = JobDiff(job_id="job-7", files=[item])

    assert (item.additions, item.deletions) == (1, 1)
    assert (diff.summary.total_additions, diff.summary.total_deletions) == (1, 1)
    assert FileDiff(filename="empty.txt", additions=4).additions == 0
