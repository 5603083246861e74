from __future__ import annotations

from pathlib import Path

from ..errors import StepTimeout
from ..utils import Deadline
from .base import CleanupStep, StepOutcome, StepResult
from .utils import missing_result, wipe_children


class WipeNamedSubdirectoriesStep(CleanupStep):
    """Empty each ``<datastore>/<parent>/<name>`` for a fixed list of names."""

    def __init__(self, parent: str, names: list[str] | tuple[str, ...]):
        self.parent = parent
        self.names = tuple(names)
        self.name = f"wipe-each:{parent}"

    def describe(self) -> str:
        joined = ", ".join(self.names) or "(none)"
        return f"Delete contents of '{self.parent}' subdirectories: {joined}"

    def execute(self, datastore: Path, *, deadline: Deadline | None = None) -> StepResult:
        parent = Path(datastore) / self.parent
        if not parent.is_dir():
            return missing_result(step=self.name, directory=parent)

        deadline = deadline or Deadline(None)
        notes: list[str] = []
        failures: list[tuple[str, str]] = []
        removed_total = 0

        for name in self.names:
            target = parent / name
            try:
                deadline.check(f"Cleaning {parent}")
            except StepTimeout as exc:
                failures.append((str(target), str(exc)))
                break
            if not target.is_dir():
                notes.append(f"{target} does not exist")
                continue

            removed, sub_failures = wipe_children(target, deadline=deadline)
            removed_total += removed
            failures.extend(sub_failures)
            if sub_failures:
                notes.append(f"{target}: removed {removed} item(s), {len(sub_failures)} failed")
            elif removed:
                notes.append(f"Removed {removed} item(s) from {target}")
            else:
                notes.append(f"{target}: nothing to clean")

        if failures:
            outcome = StepOutcome.FAILED
            detail = f"{len(failures)} path(s) under {parent} could not be removed"
        elif removed_total:
            outcome = StepOutcome.SUCCESS
            detail = f"Removed {removed_total} item(s) under {parent}"
        else:
            outcome = StepOutcome.SKIPPED
            detail = f"{parent}: nothing to clean"

        return StepResult(
            step=self.name,
            outcome=outcome,
            detail=detail,
            entries_removed=removed_total,
            notes=notes,
            failures=failures,
        )
