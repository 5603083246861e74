from __future__ import annotations

from pathlib import Path

import pytest

from datastore_cleanup import cli
from datastore_cleanup.config import (
    ENV_CLEANUP_INTERVAL_MINUTES,
    ENV_DATASTORE_LOCATION,
    ENV_DIRECTORY_THRESHOLD_GB,
    ENV_ENSURE_SERVICE_RUNNING,
    ENV_LOG_FILE,
    ENV_SERVICE_NAME,
    RunConfig,
)
from datastore_cleanup.errors import LoggingError
from datastore_cleanup.orchestrator import ExecutionReport, RunState
from datastore_cleanup.sizing import GB


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for key in (
        ENV_CLEANUP_INTERVAL_MINUTES,
        ENV_DATASTORE_LOCATION,
        ENV_DIRECTORY_THRESHOLD_GB,
        ENV_ENSURE_SERVICE_RUNNING,
        ENV_LOG_FILE,
        ENV_SERVICE_NAME,
    ):
        monkeypatch.delenv(key, raising=False)


def _base_args(tmp_path: Path) -> list[str]:
    return [
        "--datastore-location",
        str(tmp_path / "ncoverdata"),
        "--log-file",
        str(tmp_path / "cleanup_log.txt"),
        "--env-file",
        str(tmp_path / "missing.env"),
    ]


class _RecordingOrchestrator:
    configs: list[RunConfig] = []

    def __init__(self, config: RunConfig):
        type(self).configs.append(config)
        self.config = config

    def run(self) -> ExecutionReport:
        report = ExecutionReport(threshold_bytes=self.config.threshold_bytes, pre_size_bytes=3 * GB, post_size_bytes=1 * GB)
        report.states.extend([RunState.IDLE, RunState.MEASURING, RunState.ABOVE_THRESHOLD, RunState.DONE])
        return report


def test_main_runs_once_and_prints_summary(tmp_path: Path, monkeypatch, capsys) -> None:
    _RecordingOrchestrator.configs = []
    monkeypatch.setattr(cli, "CleanupOrchestrator", _RecordingOrchestrator)

    cli.main([*_base_args(tmp_path), "--threshold-gb", "2", "--service-name", "svc", "--ensure-service-running"])

    config = _RecordingOrchestrator.configs[0]
    assert config.threshold_bytes == 2 * GB
    assert config.service_name == "svc"
    assert config.ensure_service_running is True
    assert config.skip_cleanup_on_stop_timeout is False

    out = capsys.readouterr().out
    assert "Cleanup ran: 3 GB -> 1 GB" in out
    assert "cleanup_log.txt" in out


def test_main_uses_environment_when_flags_missing(tmp_path: Path, monkeypatch) -> None:
    _RecordingOrchestrator.configs = []
    monkeypatch.setattr(cli, "CleanupOrchestrator", _RecordingOrchestrator)
    monkeypatch.setenv(ENV_SERVICE_NAME, "from-env")
    monkeypatch.setenv(ENV_ENSURE_SERVICE_RUNNING, "true")

    cli.main(_base_args(tmp_path))

    config = _RecordingOrchestrator.configs[0]
    assert config.service_name == "from-env"
    assert config.ensure_service_running is True


def test_main_exits_non_zero_on_invalid_threshold(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([*_base_args(tmp_path), "--threshold-gb", "-2"])

    assert "Invalid configuration" in str(excinfo.value.code)


def test_main_exits_non_zero_on_logging_failure(tmp_path: Path, monkeypatch) -> None:
    class _Unauditable:
        def __init__(self, config: RunConfig):
            pass

        def run(self) -> ExecutionReport:
            raise LoggingError("Cannot open audit log")

    monkeypatch.setattr(cli, "CleanupOrchestrator", _Unauditable)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(_base_args(tmp_path))

    assert "Audit log failure" in str(excinfo.value.code)


def test_main_switches_to_interval_mode(tmp_path: Path, monkeypatch) -> None:
    calls: list[float] = []
    monkeypatch.setattr(cli, "run_scheduled", lambda config, *, interval_minutes: calls.append(interval_minutes))

    cli.main([*_base_args(tmp_path), "--interval-minutes", "15"])

    assert calls == [15.0]


def test_main_rejects_bad_interval(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        cli.main([*_base_args(tmp_path), "--interval-minutes", "0"])


def test_end_to_end_below_threshold_writes_audit_log(tmp_path: Path, capsys) -> None:
    datastore = tmp_path / "ncoverdata"
    (datastore / "Projects").mkdir(parents=True)
    (datastore / "Projects" / "a.bin").write_bytes(b"x" * 100)

    cli.main([*_base_args(tmp_path), "--lock-dir", str(tmp_path / "locks")])

    lines = (tmp_path / "cleanup_log.txt").read_text(encoding="utf-8").splitlines()
    assert any("No cleanup needed" in line for line in lines)
    assert "no cleanup performed" in capsys.readouterr().out
