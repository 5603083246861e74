"""Threshold-triggered cleanup run.

A run walks a fixed state machine::

    IDLE -> MEASURING -> BELOW_THRESHOLD -> DONE
                      -> ABOVE_THRESHOLD -> STOPPING_SERVICE -> CLEANING_UP
                         -> REMEASURING -> STARTING_SERVICE -> DONE

Failures after the threshold decision are recorded and the run moves on to
the next state, so the service is always restarted once it has been stopped.
Only a failure to write the audit log (:class:`LoggingError`) ends a run early.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from .audit_log import AuditLog
from .config import RunConfig
from .errors import CleanupError, RunLockedError, ServiceError, ServiceNotFound, ServiceTransitionTimeout
from .locking import RunLock, lock_path_for
from .services import ServiceController, ServiceState
from .sizing import directory_size_bytes, format_size
from .steps import CleanupStep, StepOutcome, StepResult, build_cleanup_plan
from .utils import Clock, Deadline


LOGGER = logging.getLogger("datastore_cleanup")

SizeProbe = Callable[..., int]


class RunState(str, Enum):
    IDLE = "idle"
    MEASURING = "measuring"
    BELOW_THRESHOLD = "below_threshold"
    ABOVE_THRESHOLD = "above_threshold"
    STOPPING_SERVICE = "stopping_service"
    CLEANING_UP = "cleaning_up"
    REMEASURING = "remeasuring"
    STARTING_SERVICE = "starting_service"
    DONE = "done"


@dataclass
class ServiceTransitionRecord:
    action: str
    outcome: str
    detail: str


@dataclass
class ExecutionReport:
    threshold_bytes: int
    pre_size_bytes: int | None = None
    post_size_bytes: int | None = None
    states: list[RunState] = field(default_factory=list)
    steps: list[StepResult] = field(default_factory=list)
    service_transitions: list[ServiceTransitionRecord] = field(default_factory=list)
    lock_acquired: bool = True
    measurement_error: str | None = None

    @property
    def final_state(self) -> RunState:
        return self.states[-1] if self.states else RunState.IDLE

    @property
    def cleanup_ran(self) -> bool:
        return RunState.ABOVE_THRESHOLD in self.states

    @property
    def failed_steps(self) -> list[StepResult]:
        return [item for item in self.steps if item.outcome is StepOutcome.FAILED]

    @property
    def bytes_reclaimed(self) -> int | None:
        if self.pre_size_bytes is None or self.post_size_bytes is None:
            return None
        return max(self.pre_size_bytes - self.post_size_bytes, 0)


class CleanupOrchestrator:
    def __init__(
        self,
        config: RunConfig,
        *,
        controller: ServiceController | None = None,
        plan: list[CleanupStep] | None = None,
        size_probe: SizeProbe = directory_size_bytes,
        audit_log: AuditLog | None = None,
        clock: Clock = time.monotonic,
    ):
        self._config = config
        self._controller = controller or ServiceController(poll_interval_seconds=config.poll_interval_seconds)
        self._plan = plan if plan is not None else build_cleanup_plan(
            log_subdirectories=config.log_subdirectories,
            projects_exclusion=config.projects_exclusion,
        )
        self._size_probe = size_probe
        self._audit_log = audit_log or AuditLog(config.log_file)
        self._clock = clock

    def run(self) -> ExecutionReport:
        report = ExecutionReport(threshold_bytes=self._config.threshold_bytes)
        with self._audit_log:
            report.states.append(RunState.IDLE)
            self._log(
                f"Cleanup run started for {self._config.datastore_path} "
                f"(service '{self._config.service_name}', threshold {format_size(self._config.threshold_bytes)})"
            )

            lock = RunLock(
                lock_path_for(
                    datastore_path=self._config.datastore_path,
                    service_name=self._config.service_name,
                    lock_dir=self._config.lock_dir,
                )
            )
            try:
                lock.acquire()
            except (RunLockedError, OSError) as exc:
                report.lock_acquired = False
                self._log(f"Could not acquire run lock: {exc}. Skipping this run.", level="WARNING")
                self._enter(report, RunState.DONE)
                return report

            try:
                self._run_locked(report)
            finally:
                lock.release()
        return report

    def _run_locked(self, report: ExecutionReport) -> None:
        config = self._config

        self._enter(report, RunState.MEASURING)
        try:
            pre_size = self._measure()
        except (CleanupError, OSError) as exc:
            report.measurement_error = str(exc)
            self._log(f"Unable to measure {config.datastore_path}: {exc}", level="ERROR")
            self._enter(report, RunState.DONE)
            return

        report.pre_size_bytes = pre_size
        self._log(f"Directory size before cleanup: {format_size(pre_size)} ({pre_size} bytes)")

        if pre_size <= config.threshold_bytes:
            self._enter(report, RunState.BELOW_THRESHOLD)
            self._log(
                f"Directory size is within the {format_size(config.threshold_bytes)} threshold. No cleanup needed."
            )
            if config.ensure_service_running:
                self._ensure_service_running(report)
            self._enter(report, RunState.DONE)
            return

        self._enter(report, RunState.ABOVE_THRESHOLD)
        self._log(f"Directory size exceeds the {format_size(config.threshold_bytes)} threshold. Starting cleanup.")

        self._enter(report, RunState.STOPPING_SERVICE)
        stop_timed_out = self._stop_service(report)

        self._enter(report, RunState.CLEANING_UP)
        if stop_timed_out and config.skip_cleanup_on_stop_timeout:
            self._skip_steps(report, reason="service stop was not confirmed")
        else:
            self._run_steps(report)

        self._enter(report, RunState.REMEASURING)
        try:
            post_size = self._measure()
        except (CleanupError, OSError) as exc:
            self._log(f"Unable to measure {config.datastore_path} after cleanup: {exc}", level="ERROR")
        else:
            report.post_size_bytes = post_size
            self._log(f"Directory size after cleanup: {format_size(post_size)} ({post_size} bytes)")

        self._enter(report, RunState.STARTING_SERVICE)
        self._start_service(report)

        self._enter(report, RunState.DONE)
        self._log(
            f"Cleanup finished: {len(report.steps)} step(s), {len(report.failed_steps)} failed."
        )

    def _log(self, message: str, *, level: str = "INFO") -> None:
        self._audit_log.append(message, level=level)

    def _enter(self, report: ExecutionReport, state: RunState) -> None:
        previous = report.final_state
        report.states.append(state)
        self._log(f"State: {previous.value} -> {state.value}")

    def _measure(self) -> int:
        deadline = Deadline(self._config.step_timeout_seconds, clock=self._clock)
        return int(self._size_probe(self._config.datastore_path, deadline=deadline))

    def _record(self, report: ExecutionReport, action: str, outcome: str, detail: str) -> None:
        report.service_transitions.append(ServiceTransitionRecord(action=action, outcome=outcome, detail=detail))

    def _stop_service(self, report: ExecutionReport) -> bool:
        """Stop the service; returns True when the stop was requested but not confirmed."""
        name = self._config.service_name
        self._log(f"Stopping service '{name}'...")
        try:
            result = self._controller.stop(name, self._config.service_timeout_seconds)
        except ServiceNotFound as exc:
            self._record(report, "stop", "not_found", str(exc))
            self._log(f"{exc}; treating it as not running.", level="WARNING")
            return False
        except ServiceTransitionTimeout as exc:
            self._record(report, "stop", "timeout", str(exc))
            self._log(f"{exc}. Continuing with cleanup.", level="ERROR")
            return True
        except ServiceError as exc:
            self._record(report, "stop", "failed", str(exc))
            self._log(f"Could not stop service '{name}': {exc}. Treating it as not running.", level="ERROR")
            return False

        if result.changed:
            self._record(report, "stop", "success", result.detail)
            self._log(f"Service '{name}' stopped.")
        else:
            self._record(report, "stop", "noop", result.detail)
            self._log(f"Service '{name}' is already stopped.")
        return False

    def _start_service(self, report: ExecutionReport) -> None:
        name = self._config.service_name
        self._log(f"Starting service '{name}'...")
        try:
            result = self._controller.start(name, self._config.service_timeout_seconds)
        except ServiceNotFound as exc:
            self._record(report, "start", "not_found", str(exc))
            self._log(str(exc), level="WARNING")
            return
        except ServiceTransitionTimeout as exc:
            self._record(report, "start", "timeout", str(exc))
            self._log(str(exc), level="ERROR")
            return
        except ServiceError as exc:
            self._record(report, "start", "failed", str(exc))
            self._log(f"Could not start service '{name}': {exc}", level="ERROR")
            return

        if result.changed:
            self._record(report, "start", "success", result.detail)
            self._log(f"Service '{name}' started.")
        else:
            self._record(report, "start", "noop", result.detail)
            self._log(f"Service '{name}' is already running.")

    def _ensure_service_running(self, report: ExecutionReport) -> None:
        name = self._config.service_name
        try:
            state = self._controller.query(name)
        except ServiceError as exc:
            self._log(f"Could not query service '{name}': {exc}", level="WARNING")
            return
        if state is ServiceState.RUNNING:
            return
        self._log(
            f"Service '{name}' is {state.value}; a previous run may have been interrupted.",
            level="WARNING",
        )
        self._start_service(report)

    def _run_steps(self, report: ExecutionReport) -> None:
        datastore = Path(self._config.datastore_path)
        for step in self._plan:
            self._log(f"Step {step.name}: {step.describe()}")
            deadline = Deadline(self._config.step_timeout_seconds, clock=self._clock)
            try:
                result = step.execute(datastore, deadline=deadline)
            except Exception as exc:
                LOGGER.warning("[CLEANUP]: Step %s raised", step.name, exc_info=True)
                result = StepResult(step=step.name, outcome=StepOutcome.FAILED, detail=str(exc))

            report.steps.append(result)
            for note in result.notes:
                self._log(note)
            for path, reason in result.failures:
                self._log(f"Could not remove {path}: {reason}", level="ERROR")
            level = "ERROR" if result.outcome is StepOutcome.FAILED else "INFO"
            self._log(f"Step {step.name} {result.outcome.value}: {result.detail}", level=level)

    def _skip_steps(self, report: ExecutionReport, *, reason: str) -> None:
        for step in self._plan:
            result = StepResult(step=step.name, outcome=StepOutcome.SKIPPED, detail=f"Skipped: {reason}")
            report.steps.append(result)
            self._log(f"Step {step.name} skipped: {reason}", level="WARNING")
