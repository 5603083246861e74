from __future__ import annotations

from pathlib import Path

import pytest

from datastore_cleanup.config import RunConfig
from datastore_cleanup.errors import LoggingError
from datastore_cleanup.orchestrator import ExecutionReport
from datastore_cleanup.scheduler import CleanupScheduler


def _config(tmp_path: Path) -> RunConfig:
    return RunConfig(
        datastore_path=tmp_path,
        threshold_bytes=100,
        service_name="ncover",
        log_file=tmp_path / "cleanup_log.txt",
    )


class _GoodOrchestrator:
    def __init__(self, config: RunConfig):
        self.config = config

    def run(self) -> ExecutionReport:
        return ExecutionReport(threshold_bytes=self.config.threshold_bytes, pre_size_bytes=10)


class _BrokenOrchestrator:
    def __init__(self, config: RunConfig):
        pass

    def run(self) -> ExecutionReport:
        raise RuntimeError("boom")


class _UnauditableOrchestrator:
    def __init__(self, config: RunConfig):
        pass

    def run(self) -> ExecutionReport:
        raise LoggingError("read-only filesystem")


def test_scheduler_run_once_records_report(tmp_path: Path) -> None:
    scheduler = CleanupScheduler(config=_config(tmp_path), interval_seconds=999, orchestrator_factory=_GoodOrchestrator)

    report = scheduler.run_once()

    assert report is not None
    assert scheduler.last_report is report
    assert scheduler.is_running is False


def test_scheduler_run_once_survives_failed_runs(tmp_path: Path) -> None:
    config = _config(tmp_path)

    broken = CleanupScheduler(config=config, interval_seconds=999, orchestrator_factory=_BrokenOrchestrator)
    assert broken.run_once() is None
    assert broken.last_report is None

    unauditable = CleanupScheduler(config=config, interval_seconds=999, orchestrator_factory=_UnauditableOrchestrator)
    assert unauditable.run_once() is None


def test_scheduler_rejects_non_positive_interval(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        CleanupScheduler(config=_config(tmp_path), interval_seconds=0)
