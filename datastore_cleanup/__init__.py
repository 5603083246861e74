"""Threshold-triggered cleanup of a service-owned datastore directory."""

from .config import RunConfig, load_run_config, threshold_bytes_from_gb
from .orchestrator import CleanupOrchestrator, ExecutionReport, RunState
from .services import ServiceController, ServiceState
from .sizing import directory_size_bytes, format_size


__version__ = "0.1.0"

__all__ = [
    "CleanupOrchestrator",
    "ExecutionReport",
    "RunConfig",
    "RunState",
    "ServiceController",
    "ServiceState",
    "directory_size_bytes",
    "format_size",
    "load_run_config",
    "threshold_bytes_from_gb",
]
