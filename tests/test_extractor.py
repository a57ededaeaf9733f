from __future__ import annotations

import pytest

from hugex.diff import DIFF_DELIMITER, FileStatus, extract_diff, extract_payload
from hugex.tools.patch import extract_content_from_diff

PAYLOAD = "diff --git a/notes.txt b/notes.txt\n--- a/notes.txt\n+++ b/notes.txt\n@@ -1 +1 @@\n-old\n+new"


def test_agent_output_with_embedded_new_file() -> None:
    output = (
        "hello\n"
        "================================================================================\n"
        "diff --git a/x.txt b/x.txt\n"
        "new file mode 100644\n"
        "--- /dev/null\n"
        "+++ b/x.txt\n"
        "@@ -0,0 +1,1 @@\n"
        "+hi\n"
        "================================================================================\n"
        "bye\n"
    )

    result = extract_diff(output, "job-a")

    assert result.ok
    (item,) = result.diff.files
    assert item.filename == "x.txt"
    assert item.status is FileStatus.ADDED
    assert item.additions == 1
    assert extract_content_from_diff(item.patch) == "hi\n"


@pytest.mark.parametrize(
    "prefix, suffix",
    [
        ("", ""),
        ("starting agent\nthinking...\n", ""),
        ("", "\nshutting down\n"),
        ("log line\n", "\ntrailing log\n"),
    ],
)
def test_payload_is_returned_wherever_it_is_embedded(prefix: str, suffix: str) -> None:
    output = f"{prefix}{DIFF_DELIMITER}\n{PAYLOAD}\n{DIFF_DELIMITER}{suffix}"

    payload, warning = extract_payload(output)

    assert warning is None
    assert payload == PAYLOAD


def test_last_delimited_block_wins() -> None:
    output = f"{DIFF_DELIMITER}\nstale block\n{DIFF_DELIMITER}\nmore logs\n{DIFF_DELIMITER}\n{PAYLOAD}\n{DIFF_DELIMITER}\n"

    payload, warning = extract_payload(output)

    assert warning is None
    assert payload == PAYLOAD


def test_no_delimiter_yields_empty_diff_with_warning() -> None:
    result = extract_diff("the agent crashed before printing a diff\n", "job-b")

    assert result.diff.is_empty
    assert result.diff.job_id == "job-b"
    assert result.warning is not None
    assert result.warning.delimiter_count == 0
    assert not result.ok


def test_single_delimiter_without_trailing_text_is_empty() -> None:
    result = extract_diff(f"some logs\n{DIFF_DELIMITER}\n   \n", "job-c")

    assert result.diff.is_empty
    assert result.warning is not None
    assert result.warning.delimiter_count == 1


def test_single_delimiter_uses_text_after_it() -> None:
    result = extract_diff(f"some logs\n{DIFF_DELIMITER}\n{PAYLOAD}\n", "job-d")

    assert result.ok
    assert [item.filename for item in result.diff.files] == ["notes.txt"]
    assert result.diff.summary.total_additions == 1
    assert result.diff.summary.total_deletions == 1


def test_blank_payload_between_delimiters_is_empty() -> None:
    result = extract_diff(f"{DIFF_DELIMITER}\n\n   \n{DIFF_DELIMITER}\n", "job-e")

    assert result.diff.is_empty
    assert result.warning is not None
    assert "empty" in result.warning.reason


def test_payload_without_diff_headers_parses_to_no_files() -> None:
    result = extract_diff(f"{DIFF_DELIMITER}\nNo changes were needed.\n{DIFF_DELIMITER}", "job-f")

    assert result.payload == "No changes were needed."
    assert result.diff.is_empty
