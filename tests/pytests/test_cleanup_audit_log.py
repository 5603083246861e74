from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

import pytest

from datastore_cleanup.audit_log import AuditLog, format_entry
from datastore_cleanup.errors import LoggingError


_LINE_PATTERN = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] .+$")


def test_append_writes_timestamped_lines_and_creates_parents(tmp_path: Path) -> None:
    log_path = tmp_path / "nested" / "dir" / "cleanup_log.txt"
    stamps = iter([datetime(2026, 1, 2, 3, 4, 5), datetime(2026, 1, 2, 3, 4, 6)])

    with AuditLog(log_path, now=lambda: next(stamps)) as audit_log:
        audit_log.append("first entry")
        audit_log.append("second entry")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "[2026-01-02 03:04:05] first entry",
        "[2026-01-02 03:04:06] second entry",
    ]


def test_append_adds_to_existing_file(tmp_path: Path) -> None:
    log_path = tmp_path / "cleanup_log.txt"
    log_path.write_text("[2025-12-31 23:59:59] earlier run\n", encoding="utf-8")

    with AuditLog(log_path) as audit_log:
        audit_log.append("new run")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("earlier run")
    assert all(_LINE_PATTERN.match(line) for line in lines)


def test_format_entry_adds_level_prefix_and_flattens_newlines() -> None:
    stamp = datetime(2026, 5, 6, 7, 8, 9)

    assert format_entry("disk full", timestamp=stamp, level="ERROR") == "[2026-05-06 07:08:09] ERROR: disk full"
    assert format_entry("careful", timestamp=stamp, level="warning") == "[2026-05-06 07:08:09] WARNING: careful"
    assert format_entry("a\nb", timestamp=stamp) == "[2026-05-06 07:08:09] a b"


def test_open_failure_raises_logging_error(tmp_path: Path) -> None:
    # A directory cannot be opened for appending.
    audit_log = AuditLog(tmp_path)

    with pytest.raises(LoggingError):
        audit_log.append("will not be written")


def test_close_is_idempotent_and_append_reopens(tmp_path: Path) -> None:
    log_path = tmp_path / "cleanup_log.txt"
    audit_log = AuditLog(log_path)
    audit_log.append("one")
    audit_log.close()
    audit_log.close()
    audit_log.append("two")
    audit_log.close()

    assert len(log_path.read_text(encoding="utf-8").splitlines()) == 2
