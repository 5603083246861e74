from __future__ import annotations

from pathlib import Path

from ..utils import Deadline
from .base import CleanupStep, StepResult
from .utils import missing_result, wipe_children, wipe_result


class WipeExceptStep(CleanupStep):
    """Remove every immediate child of ``<datastore>/<subpath>`` except one.

    The exclusion is compared with :func:`os.path.normcase`, so on Windows
    ``default`` and ``Default`` name the same preserved folder.
    """

    def __init__(self, subpath: str, exclusion: str):
        if not str(exclusion or "").strip():
            raise ValueError("exclusion must be a non-empty name")
        self.subpath = subpath
        self.exclusion = exclusion
        self.name = f"wipe-except:{subpath}"

    def describe(self) -> str:
        return f"Delete everything in '{self.subpath}' except '{self.exclusion}'"

    def execute(self, datastore: Path, *, deadline: Deadline | None = None) -> StepResult:
        target = Path(datastore) / self.subpath
        if not target.is_dir():
            return missing_result(step=self.name, directory=target)

        removed, failures = wipe_children(target, exclusions=[self.exclusion], deadline=deadline)
        return wipe_result(step=self.name, directory=target, removed=removed, failures=failures)
