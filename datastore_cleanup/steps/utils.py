from __future__ import annotations

import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Iterable

from ..errors import DeletionError, StepTimeout
from ..utils import Deadline
from .base import StepOutcome, StepResult


def _retry_writable(func, path, exc_info) -> None:
    # Read-only entries (common on Windows) refuse deletion until the bit is cleared.
    error = exc_info[1] if isinstance(exc_info, tuple) else exc_info
    # chmod follows links; a link's target is never touched.
    if func not in (os.unlink, os.remove, os.rmdir) or os.path.islink(path):
        raise error
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


def remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_retry_writable)
        else:
            shutil.rmtree(path, onerror=_retry_writable)
        return

    try:
        path.unlink()
    except PermissionError:
        if path.is_symlink():
            raise
        os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
        path.unlink()


def is_excluded(name: str, exclusions: Iterable[str]) -> bool:
    normalized = os.path.normcase(name)
    return any(normalized == os.path.normcase(item) for item in exclusions)


def wipe_children(
    directory: Path,
    *,
    exclusions: Iterable[str] = (),
    deadline: Deadline | None = None,
) -> tuple[int, list[tuple[str, str]]]:
    """Remove every immediate child of *directory* not named in *exclusions*.

    Children are removed independently. Failures are collected and returned
    alongside the removal count; the remaining children are still attempted.
    When *deadline* expires the walk stops and the timeout is reported as one
    more failure, keeping everything collected up to that point.
    """
    deadline = deadline or Deadline(None)
    kept = list(exclusions)
    removed = 0
    failures: list[tuple[str, str]] = []

    try:
        children = sorted(directory.iterdir())
    except OSError as exc:
        return 0, [(str(directory), exc.strerror or str(exc))]

    for child in children:
        if is_excluded(child.name, kept):
            continue
        try:
            deadline.check(f"Cleaning {directory}")
        except StepTimeout as exc:
            failures.append((str(directory), str(exc)))
            break
        try:
            remove_path(child)
            removed += 1
        except OSError as exc:
            failures.append((str(child), exc.strerror or str(exc)))

    return removed, failures


def wipe_result(*, step: str, directory: Path, removed: int, failures: list[tuple[str, str]]) -> StepResult:
    if failures:
        return StepResult(
            step=step,
            outcome=StepOutcome.FAILED,
            detail=str(DeletionError(failures)),
            entries_removed=removed,
            failures=failures,
        )
    if removed == 0:
        return StepResult(step=step, outcome=StepOutcome.SKIPPED, detail=f"{directory}: nothing to clean")
    return StepResult(
        step=step,
        outcome=StepOutcome.SUCCESS,
        detail=f"Removed {removed} item(s) from {directory}",
        entries_removed=removed,
    )


def missing_result(*, step: str, directory: Path) -> StepResult:
    return StepResult(step=step, outcome=StepOutcome.SKIPPED, detail=f"{directory} does not exist")
