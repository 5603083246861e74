"""Command-line entry point for the datastore cleanup.

Each setting resolves as: CLI flag -> environment variable -> dotenv file
(``.env.cleanup`` by default) -> YAML config file -> built-in default.
"""
from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path

from .config import (
    DEFAULT_ENV_FILE,
    ENV_CLEANUP_INTERVAL_MINUTES,
    ENV_DATASTORE_LOCATION,
    ENV_DIRECTORY_THRESHOLD_GB,
    ENV_ENSURE_SERVICE_RUNNING,
    ENV_LOCK_DIR,
    ENV_LOG_FILE,
    ENV_LOG_SUBDIRECTORIES,
    ENV_PROJECTS_EXCLUSION,
    ENV_SERVICE_NAME,
    ENV_SERVICE_TIMEOUT_SECONDS,
    ENV_SKIP_CLEANUP_ON_STOP_TIMEOUT,
    ENV_STEP_TIMEOUT_SECONDS,
    RunConfig,
    load_run_config,
)
from .errors import ConfigError, LoggingError
from .orchestrator import CleanupOrchestrator, ExecutionReport
from .scheduler import CleanupScheduler
from .sizing import format_size


ENV_LOG_LEVEL = "DATASTORE_CLEANUP_LOG_LEVEL"
LOG_PREFIX = "[datastore-cleanup]"


def log_info(message: str, *, icon: str = "ℹ️") -> None:
    print(f"{LOG_PREFIX} {icon} {message}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="datastore-cleanup",
        description="Stop a service, clean its datastore when it exceeds a size threshold, and restart it",
    )
    parser.add_argument(
        "--datastore-location",
        default=None,
        help=f"Absolute path of the datastore. Resolution: CLI -> {ENV_DATASTORE_LOCATION} -> env file -> config file",
    )
    parser.add_argument(
        "--threshold-gb",
        default=None,
        help=f"Cleanup threshold in GB (1 GB = 2^30 bytes). Resolution: CLI -> {ENV_DIRECTORY_THRESHOLD_GB} -> ... -> 1.5",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help=f"Audit log file to append to. Resolution: CLI -> {ENV_LOG_FILE} -> ... -> cleanup_log.txt",
    )
    parser.add_argument(
        "--service-name",
        default=None,
        help=f"OS service that owns the datastore. Resolution: CLI -> {ENV_SERVICE_NAME} -> ... -> ncover",
    )
    parser.add_argument(
        "--service-timeout",
        default=None,
        help=f"Seconds to wait for the service to stop/start. Resolution: CLI -> {ENV_SERVICE_TIMEOUT_SECONDS} -> ... -> 30",
    )
    parser.add_argument(
        "--step-timeout",
        default=None,
        help=f"Time budget in seconds for each scan or cleanup step. Resolution: CLI -> {ENV_STEP_TIMEOUT_SECONDS} -> unbounded",
    )
    parser.add_argument(
        "--log-subdirectories",
        default=None,
        help=f"Comma-separated subdirectories of Logs to empty. Resolution: CLI -> {ENV_LOG_SUBDIRECTORIES} -> ...",
    )
    parser.add_argument(
        "--projects-exclusion",
        default=None,
        help=f"Child of Projects that is never deleted. Resolution: CLI -> {ENV_PROJECTS_EXCLUSION} -> ... -> Default",
    )
    parser.add_argument(
        "--lock-dir",
        default=None,
        help=f"Directory for the run lock file. Resolution: CLI -> {ENV_LOCK_DIR} -> system temp dir",
    )
    parser.add_argument(
        "--skip-cleanup-on-stop-timeout",
        action="store_true",
        help=f"Do not delete anything when the service stop is not confirmed (overrides {ENV_SKIP_CLEANUP_ON_STOP_TIMEOUT})",
    )
    parser.add_argument(
        "--ensure-service-running",
        action="store_true",
        help=f"Start the service when it is found stopped below the threshold (overrides {ENV_ENSURE_SERVICE_RUNNING})",
    )
    parser.add_argument(
        "--interval-minutes",
        default=None,
        help=f"Run repeatedly every N minutes instead of once. Resolution: CLI -> {ENV_CLEANUP_INTERVAL_MINUTES}",
    )
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_FILE,
        help=f"Dotenv file with settings (default: {DEFAULT_ENV_FILE}, ignored when missing)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML file with settings, either flat or a pipeline document with a 'variables' block",
    )
    return parser


def _overrides_from_args(args: argparse.Namespace) -> dict[str, str | None]:
    return {
        ENV_DATASTORE_LOCATION: args.datastore_location,
        ENV_DIRECTORY_THRESHOLD_GB: args.threshold_gb,
        ENV_LOG_FILE: args.log_file,
        ENV_SERVICE_NAME: args.service_name,
        ENV_SERVICE_TIMEOUT_SECONDS: args.service_timeout,
        ENV_STEP_TIMEOUT_SECONDS: args.step_timeout,
        ENV_LOG_SUBDIRECTORIES: args.log_subdirectories,
        ENV_PROJECTS_EXCLUSION: args.projects_exclusion,
        ENV_LOCK_DIR: args.lock_dir,
        # Unset flags must not mask the environment, so only pass explicit True.
        ENV_SKIP_CLEANUP_ON_STOP_TIMEOUT: "true" if args.skip_cleanup_on_stop_timeout else None,
        ENV_ENSURE_SERVICE_RUNNING: "true" if args.ensure_service_running else None,
    }


def parse_interval_minutes(value: str | None) -> float | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        minutes = float(text)
    except ValueError:
        raise ConfigError(f"Invalid interval '{value}': expected a number of minutes")
    if minutes <= 0:
        raise ConfigError(f"Invalid interval '{value}': must be greater than 0")
    return minutes


def print_summary(report: ExecutionReport, *, config: RunConfig) -> None:
    if not report.lock_acquired:
        log_info("Another cleanup run holds the lock; nothing was done.", icon="⚠️")
    elif report.measurement_error:
        log_info(f"Could not measure the datastore: {report.measurement_error}", icon="⚠️")
    elif not report.cleanup_ran:
        log_info(
            f"Size {format_size(report.pre_size_bytes or 0)} is within the "
            f"{format_size(config.threshold_bytes)} threshold; no cleanup performed.",
            icon="✅",
        )
    else:
        after = format_size(report.post_size_bytes) if report.post_size_bytes is not None else "unknown"
        log_info(f"Cleanup ran: {format_size(report.pre_size_bytes or 0)} -> {after}", icon="🧹")
        failed = report.failed_steps
        if failed:
            log_info(f"{len(failed)} cleanup step(s) failed: {', '.join(item.step for item in failed)}", icon="⚠️")
        for record in report.service_transitions:
            if record.outcome not in {"success", "noop"}:
                log_info(f"Service {record.action} {record.outcome}: {record.detail}", icon="⚠️")
    log_info(f"Audit log: {config.log_file}")


def run_single(config: RunConfig) -> ExecutionReport:
    try:
        report = CleanupOrchestrator(config).run()
    except LoggingError as exc:
        raise SystemExit(f"{LOG_PREFIX} Audit log failure, run halted: {exc}")
    print_summary(report, config=config)
    return report


def run_scheduled(config: RunConfig, *, interval_minutes: float) -> None:
    scheduler = CleanupScheduler(config=config, interval_seconds=max(int(interval_minutes * 60), 1))
    log_info(f"Running every {interval_minutes:g} minute(s); press Ctrl+C to stop.", icon="⏱️")
    scheduler.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log_info("Stopping scheduler.")
    finally:
        scheduler.stop()


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = str(os.getenv(ENV_LOG_LEVEL, "INFO")).upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO))

    try:
        config = load_run_config(
            overrides=_overrides_from_args(args),
            dotenv_path=Path(args.env_file) if args.env_file else None,
            config_path=Path(args.config) if args.config else None,
        )
        interval_minutes = parse_interval_minutes(
            args.interval_minutes or os.getenv(ENV_CLEANUP_INTERVAL_MINUTES)
        )
    except ConfigError as exc:
        raise SystemExit(f"{LOG_PREFIX} Invalid configuration: {exc}")

    if interval_minutes is None:
        run_single(config)
    else:
        run_scheduled(config, interval_minutes=interval_minutes)


if __name__ == "__main__":
    main()
