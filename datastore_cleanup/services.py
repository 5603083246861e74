"""Query and transition the OS service that owns the datastore.

The controller never retries: a stop or start is requested once and then
polled until the target state is observed or the timeout elapses.
"""
from __future__ import annotations

import re
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .errors import ServiceNotFound, ServiceQueryError, ServiceRequestError, ServiceTransitionTimeout
from .utils import Clock, Sleep, wait_until


COMMAND_TIMEOUT_SECONDS = 30

# sc.exe exit code for ERROR_SERVICE_DOES_NOT_EXIST.
SC_SERVICE_DOES_NOT_EXIST = 1060

_SC_STATE_PATTERN = re.compile(r"^\s*STATE\s*:\s*\d+\s+(\w+)", re.MULTILINE)


class ServiceState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    PENDING = "pending"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TransitionResult:
    service_name: str
    action: str
    changed: bool
    state: ServiceState
    detail: str


class ServiceBackend(ABC):
    @abstractmethod
    def query_state(self, service_name: str) -> ServiceState:
        """Return the current state, raising ServiceNotFound for unknown names."""

    @abstractmethod
    def request_stop(self, service_name: str) -> None:
        """Ask the OS to stop the service without waiting for it."""

    @abstractmethod
    def request_start(self, service_name: str) -> None:
        """Ask the OS to start the service without waiting for it."""


def build_systemctl_show_cmd(*, service_name: str) -> list[str]:
    return ["systemctl", "show", service_name, "--property=LoadState,ActiveState"]


def build_systemctl_transition_cmd(*, action: str, service_name: str) -> list[str]:
    return ["systemctl", action, "--no-block", service_name]


def build_sc_query_cmd(*, service_name: str) -> list[str]:
    return ["sc.exe", "query", service_name]


def build_sc_transition_cmd(*, action: str, service_name: str) -> list[str]:
    return ["sc.exe", action, service_name]


def parse_systemctl_show(output: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for line in str(output or "").splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        out[key.strip()] = value.strip()
    return out


def parse_sc_state(output: str) -> str | None:
    match = _SC_STATE_PATTERN.search(str(output or ""))
    if not match:
        return None
    return match.group(1).upper()


def _result_text(result: subprocess.CompletedProcess) -> str:
    stderr = str(result.stderr or "").strip()
    stdout = str(result.stdout or "").strip()
    return stderr or stdout


class _CommandBackend(ServiceBackend):
    def _run(self, cmd: list[str], *, service_name: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=COMMAND_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired as exc:
            raise ServiceQueryError(
                service_name, f"'{' '.join(cmd)}' timed out after {COMMAND_TIMEOUT_SECONDS}s"
            ) from exc
        except OSError as exc:
            raise ServiceQueryError(service_name, f"Cannot run '{cmd[0]}': {exc}") from exc

    def _request(self, cmd: list[str], *, service_name: str, action: str) -> None:
        result = self._run(cmd, service_name=service_name)
        if result.returncode != 0:
            raise ServiceRequestError(
                service_name,
                f"Failed to {action} service '{service_name}' (exit code {result.returncode}). {_result_text(result)}".strip(),
            )


class SystemctlBackend(_CommandBackend):
    def query_state(self, service_name: str) -> ServiceState:
        result = self._run(build_systemctl_show_cmd(service_name=service_name), service_name=service_name)
        if result.returncode != 0:
            raise ServiceQueryError(
                service_name,
                f"systemctl show failed for '{service_name}' (exit code {result.returncode}). {_result_text(result)}".strip(),
            )

        properties = parse_systemctl_show(result.stdout)
        if properties.get("LoadState") == "not-found":
            raise ServiceNotFound(service_name)

        active_state = properties.get("ActiveState", "")
        if active_state == "active":
            return ServiceState.RUNNING
        if active_state in {"inactive", "failed"}:
            return ServiceState.STOPPED
        if active_state in {"activating", "deactivating", "reloading"}:
            return ServiceState.PENDING
        return ServiceState.UNKNOWN

    def request_stop(self, service_name: str) -> None:
        cmd = build_systemctl_transition_cmd(action="stop", service_name=service_name)
        self._request(cmd, service_name=service_name, action="stop")

    def request_start(self, service_name: str) -> None:
        cmd = build_systemctl_transition_cmd(action="start", service_name=service_name)
        self._request(cmd, service_name=service_name, action="start")


class WindowsServiceBackend(_CommandBackend):
    def query_state(self, service_name: str) -> ServiceState:
        result = self._run(build_sc_query_cmd(service_name=service_name), service_name=service_name)
        if result.returncode == SC_SERVICE_DOES_NOT_EXIST:
            raise ServiceNotFound(service_name)
        if result.returncode != 0:
            raise ServiceQueryError(
                service_name,
                f"sc.exe query failed for '{service_name}' (exit code {result.returncode}). {_result_text(result)}".strip(),
            )

        state = parse_sc_state(result.stdout)
        if state == "RUNNING":
            return ServiceState.RUNNING
        if state == "STOPPED":
            return ServiceState.STOPPED
        if state and state.endswith("_PENDING"):
            return ServiceState.PENDING
        return ServiceState.UNKNOWN

    def request_stop(self, service_name: str) -> None:
        cmd = build_sc_transition_cmd(action="stop", service_name=service_name)
        self._request(cmd, service_name=service_name, action="stop")

    def request_start(self, service_name: str) -> None:
        cmd = build_sc_transition_cmd(action="start", service_name=service_name)
        self._request(cmd, service_name=service_name, action="start")


def default_backend() -> ServiceBackend:
    if sys.platform.startswith("win"):
        return WindowsServiceBackend()
    return SystemctlBackend()


class ServiceController:
    def __init__(
        self,
        backend: ServiceBackend | None = None,
        *,
        poll_interval_seconds: float = 0.5,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        self._backend = backend or default_backend()
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._clock = clock
        self._sleep = sleep

    def query(self, service_name: str) -> ServiceState:
        return self._backend.query_state(service_name)

    def stop(self, service_name: str, timeout_seconds: float) -> TransitionResult:
        return self._transition(
            service_name,
            action="stop",
            target=ServiceState.STOPPED,
            timeout_seconds=timeout_seconds,
        )

    def start(self, service_name: str, timeout_seconds: float) -> TransitionResult:
        return self._transition(
            service_name,
            action="start",
            target=ServiceState.RUNNING,
            timeout_seconds=timeout_seconds,
        )

    def _transition(
        self,
        service_name: str,
        *,
        action: str,
        target: ServiceState,
        timeout_seconds: float,
    ) -> TransitionResult:
        expires_at = self._clock() + max(float(timeout_seconds), 0.0)
        current = self.query(service_name)
        if current is target:
            return TransitionResult(
                service_name=service_name,
                action=action,
                changed=False,
                state=current,
                detail=f"already {target.value}",
            )

        # A service mid-transition rejects new requests; let it settle first.
        if current is ServiceState.PENDING:
            current = self._wait_for(
                service_name,
                lambda state: state is not ServiceState.PENDING,
                target=target,
                expires_at=expires_at,
                timeout_seconds=timeout_seconds,
            )
            if current is target:
                return TransitionResult(
                    service_name=service_name,
                    action=action,
                    changed=True,
                    state=target,
                    detail=f"{target.value} after pending transition",
                )

        if target is ServiceState.STOPPED:
            self._backend.request_stop(service_name)
        else:
            self._backend.request_start(service_name)

        self._wait_for(
            service_name,
            lambda state: state is target,
            target=target,
            expires_at=expires_at,
            timeout_seconds=timeout_seconds,
        )
        return TransitionResult(
            service_name=service_name,
            action=action,
            changed=True,
            state=target,
            detail=target.value,
        )

    def _wait_for(
        self,
        service_name: str,
        accept: Callable[[ServiceState], bool],
        *,
        target: ServiceState,
        expires_at: float,
        timeout_seconds: float,
    ) -> ServiceState:
        observed = {"state": ServiceState.UNKNOWN}

        def _reached() -> bool:
            observed["state"] = self.query(service_name)
            return accept(observed["state"])

        reached = wait_until(
            _reached,
            timeout_seconds=max(expires_at - self._clock(), 0.0),
            poll_interval_seconds=self._poll_interval_seconds,
            clock=self._clock,
            sleep=self._sleep,
        )
        if not reached:
            raise ServiceTransitionTimeout(
                service_name,
                target=target.value,
                last_state=observed["state"].value,
                timeout_seconds=float(timeout_seconds),
            )
        return observed["state"]
