from __future__ import annotations

from pathlib import Path

from ..utils import Deadline
from .base import CleanupStep, StepResult
from .utils import missing_result, wipe_children, wipe_result


class WipeSubtreeStep(CleanupStep):
    """Empty ``<datastore>/<subpath>`` while keeping the directory itself."""

    def __init__(self, subpath: str):
        self.subpath = subpath
        self.name = f"wipe:{subpath}"

    def describe(self) -> str:
        return f"Delete all contents of '{self.subpath}'"

    def execute(self, datastore: Path, *, deadline: Deadline | None = None) -> StepResult:
        target = Path(datastore) / self.subpath
        if not target.is_dir():
            return missing_result(step=self.name, directory=target)

        removed, failures = wipe_children(target, deadline=deadline)
        return wipe_result(step=self.name, directory=target, removed=removed, failures=failures)
