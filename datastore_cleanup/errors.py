from __future__ import annotations


class CleanupError(Exception):
    """Base class for every error raised by datastore_cleanup."""


class ConfigError(CleanupError):
    pass


class PathNotFound(CleanupError):
    def __init__(self, path: str):
        super().__init__(f"Path does not exist or is not a directory: {path}")
        self.path = path


class ServiceError(CleanupError):
    def __init__(self, service_name: str, message: str):
        super().__init__(message)
        self.service_name = service_name


class ServiceNotFound(ServiceError):
    def __init__(self, service_name: str):
        super().__init__(service_name, f"Service '{service_name}' was not found")


class ServiceQueryError(ServiceError):
    pass


class ServiceRequestError(ServiceError):
    pass


class ServiceTransitionTimeout(ServiceError):
    def __init__(self, service_name: str, *, target: str, last_state: str, timeout_seconds: float):
        super().__init__(
            service_name,
            f"Service '{service_name}' did not reach {target} within {timeout_seconds:g}s "
            f"(last state: {last_state})",
        )
        self.target = target
        self.last_state = last_state
        self.timeout_seconds = timeout_seconds


class DeletionError(CleanupError):
    def __init__(self, failures: list[tuple[str, str]]):
        details = "; ".join(f"{path}: {reason}" for path, reason in failures)
        super().__init__(f"Failed to remove {len(failures)} path(s): {details}")
        self.failures = list(failures)


class StepTimeout(CleanupError):
    def __init__(self, what: str, timeout_seconds: float):
        super().__init__(f"{what} exceeded its {timeout_seconds:g}s time budget")
        self.timeout_seconds = timeout_seconds


class RunLockedError(CleanupError):
    def __init__(self, lock_path: str):
        super().__init__(f"Another cleanup run holds the lock {lock_path}")
        self.lock_path = lock_path


class LoggingError(CleanupError):
    """The audit log could not be written. Always fatal for a run."""
