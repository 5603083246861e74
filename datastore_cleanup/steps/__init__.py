from .base import CleanupStep, StepOutcome, StepResult
from .wipe_except import WipeExceptStep
from .wipe_named_subdirectories import WipeNamedSubdirectoriesStep
from .wipe_subtree import WipeSubtreeStep


COVERAGE_FILES_DIR = "Coverage Files"
LOGS_DIR = "Logs"
PROJECTS_DIR = "Projects"

DEFAULT_LOG_SUBDIRECTORIES: tuple[str, ...] = ("Server", "Collector", "Service")
DEFAULT_PROJECTS_EXCLUSION = "Default"


def build_cleanup_plan(
    *,
    log_subdirectories: tuple[str, ...] | list[str] = DEFAULT_LOG_SUBDIRECTORIES,
    projects_exclusion: str = DEFAULT_PROJECTS_EXCLUSION,
) -> list[CleanupStep]:
    return [
        WipeSubtreeStep(COVERAGE_FILES_DIR),
        WipeNamedSubdirectoriesStep(LOGS_DIR, tuple(log_subdirectories)),
        WipeExceptStep(PROJECTS_DIR, projects_exclusion),
    ]


__all__ = [
    "CleanupStep",
    "StepOutcome",
    "StepResult",
    "WipeExceptStep",
    "WipeNamedSubdirectoriesStep",
    "WipeSubtreeStep",
    "COVERAGE_FILES_DIR",
    "LOGS_DIR",
    "PROJECTS_DIR",
    "DEFAULT_LOG_SUBDIRECTORIES",
    "DEFAULT_PROJECTS_EXCLUSION",
    "build_cleanup_plan",
]
