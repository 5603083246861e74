from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..utils import Deadline


class StepOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepResult:
    step: str
    outcome: StepOutcome
    detail: str
    entries_removed: int = 0
    notes: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)


class CleanupStep(ABC):
    name: str = ""

    @abstractmethod
    def describe(self) -> str:
        """Return a short human readable description for the audit log."""

    @abstractmethod
    def execute(self, datastore: Path, *, deadline: Deadline | None = None) -> StepResult:
        """Delete this step's content below *datastore* and report what happened."""
