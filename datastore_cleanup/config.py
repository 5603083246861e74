from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import dotenv_values

from .errors import ConfigError
from .steps import DEFAULT_LOG_SUBDIRECTORIES, DEFAULT_PROJECTS_EXCLUSION


ENV_DATASTORE_LOCATION = "DATASTORE_LOCATION"
ENV_DIRECTORY_THRESHOLD_GB = "DIRECTORY_THRESHOLD_GB"
ENV_LOG_FILE = "CLEANUP_LOG_FILE"
ENV_SERVICE_NAME = "SERVICE_NAME"
ENV_SERVICE_TIMEOUT_SECONDS = "SERVICE_TIMEOUT_SECONDS"
ENV_POLL_INTERVAL_SECONDS = "POLL_INTERVAL_SECONDS"
ENV_STEP_TIMEOUT_SECONDS = "STEP_TIMEOUT_SECONDS"
ENV_LOG_SUBDIRECTORIES = "LOG_SUBDIRECTORIES"
ENV_PROJECTS_EXCLUSION = "PROJECTS_EXCLUSION"
ENV_LOCK_DIR = "CLEANUP_LOCK_DIR"
ENV_SKIP_CLEANUP_ON_STOP_TIMEOUT = "SKIP_CLEANUP_ON_STOP_TIMEOUT"
ENV_ENSURE_SERVICE_RUNNING = "ENSURE_SERVICE_RUNNING"
ENV_CLEANUP_INTERVAL_MINUTES = "CLEANUP_INTERVAL_MINUTES"

DEFAULT_ENV_FILE = ".env.cleanup"
DEFAULT_DATASTORE_LOCATION = r"C:\ProgramData\ncoverdata" if os.name == "nt" else "/var/lib/ncoverdata"
DEFAULT_DIRECTORY_THRESHOLD_GB = "1.5"
DEFAULT_LOG_FILE = "cleanup_log.txt"
DEFAULT_SERVICE_NAME = "ncover"
DEFAULT_SERVICE_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.5

# Variable names used by the scheduled pipeline that invokes the utility.
PIPELINE_VARIABLE_KEYS = {
    "datastoreLocation": ENV_DATASTORE_LOCATION,
    "directoryThresholdGB": ENV_DIRECTORY_THRESHOLD_GB,
    "logFile": ENV_LOG_FILE,
    "serviceName": ENV_SERVICE_NAME,
}


@dataclass(frozen=True)
class RunConfig:
    datastore_path: Path
    threshold_bytes: int
    service_name: str
    log_file: Path
    service_timeout_seconds: float = DEFAULT_SERVICE_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    step_timeout_seconds: float | None = None
    log_subdirectories: tuple[str, ...] = field(default=DEFAULT_LOG_SUBDIRECTORIES)
    projects_exclusion: str = DEFAULT_PROJECTS_EXCLUSION
    lock_dir: Path | None = None
    skip_cleanup_on_stop_timeout: bool = False
    ensure_service_running: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "datastore_path", Path(self.datastore_path))
        object.__setattr__(self, "log_file", Path(self.log_file))
        object.__setattr__(self, "log_subdirectories", tuple(self.log_subdirectories))
        if self.lock_dir is not None:
            object.__setattr__(self, "lock_dir", Path(self.lock_dir))

        if not self.datastore_path.is_absolute():
            raise ConfigError(f"datastore path must be absolute: {self.datastore_path}")
        if isinstance(self.threshold_bytes, bool) or int(self.threshold_bytes) <= 0:
            raise ConfigError("threshold must be greater than 0 bytes")
        if not str(self.service_name or "").strip():
            raise ConfigError("service name is required")
        if not str(self.log_file).strip():
            raise ConfigError("log file is required")
        if self.service_timeout_seconds <= 0:
            raise ConfigError("service timeout must be greater than 0 seconds")
        if self.poll_interval_seconds <= 0:
            raise ConfigError("poll interval must be greater than 0 seconds")
        if self.step_timeout_seconds is not None and self.step_timeout_seconds <= 0:
            raise ConfigError("step timeout must be greater than 0 seconds")
        if not str(self.projects_exclusion or "").strip():
            raise ConfigError("projects exclusion name is required")
        for name in self.log_subdirectories:
            if not name or name in {".", ".."} or "/" in name or "\\" in name:
                raise ConfigError(f"invalid log subdirectory name: {name!r}")


def threshold_bytes_from_gb(value: Any) -> int:
    """Convert a GB threshold into bytes using ``GB * 2**30``, floored."""
    try:
        gigabytes = Decimal(str(value).strip())
    except InvalidOperation:
        raise ConfigError(f"Invalid threshold '{value}': expected a positive decimal number of GB")
    if not gigabytes.is_finite() or gigabytes <= 0:
        raise ConfigError(f"Invalid threshold '{value}': must be greater than 0")

    threshold = int((gigabytes * (2**30)).to_integral_value(rounding=ROUND_FLOOR))
    if threshold <= 0:
        raise ConfigError(f"Invalid threshold '{value}': rounds down to 0 bytes")
    return threshold


def parse_boolish(value: str, *, default: bool = False) -> bool:
    normalized = str(value or "").strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_name_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in str(value or "").split(",") if item.strip())


def _parse_seconds(value: str, *, setting: str) -> float | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        raise ConfigError(f"Invalid {setting} '{value}': expected a number of seconds")


def read_dotenv_settings(dotenv_path: Path | None) -> dict[str, str]:
    if dotenv_path is None or not dotenv_path.exists():
        return {}
    raw = dotenv_values(dotenv_path)
    return {str(key): str(value) for key, value in raw.items() if value is not None}


def _coerce_setting_value(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    # Pipeline macros such as $(Build.ArtifactStagingDirectory) are expanded by the runner, not here.
    if "$(" in text:
        return None
    return text


def read_yaml_settings(config_path: Path | None) -> dict[str, str]:
    """Read settings from a YAML file.

    Accepts either a flat mapping or a pipeline document whose ``variables``
    block is a mapping or a list of ``{name, value}`` items. Pipeline keys such
    as ``datastoreLocation`` are translated to their environment names.
    """
    if config_path is None:
        return {}
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {config_path} is not valid YAML: {exc}")
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    variables = payload.get("variables", payload)
    if isinstance(variables, list):
        variables = {
            str(item.get("name")): item.get("value")
            for item in variables
            if isinstance(item, dict) and item.get("name")
        }
    if not isinstance(variables, dict):
        raise ConfigError(f"'variables' in {config_path} must be a mapping or a list")

    out: dict[str, str] = {}
    for key, value in variables.items():
        coerced = _coerce_setting_value(value)
        if coerced is None:
            continue
        out[PIPELINE_VARIABLE_KEYS.get(str(key), str(key))] = coerced
    return out


class SettingsResolver:
    """Resolve a setting: explicit value -> env var -> dotenv file -> YAML file -> default."""

    def __init__(
        self,
        *,
        env: Mapping[str, str] | None = None,
        dotenv_path: Path | None = None,
        config_path: Path | None = None,
    ):
        self._env = os.environ if env is None else env
        self._dotenv = read_dotenv_settings(dotenv_path)
        self._file = read_yaml_settings(config_path)

    def resolve(self, key: str, explicit: Any = None, *, default: str = "") -> str:
        for candidate in (explicit, self._env.get(key), self._dotenv.get(key), self._file.get(key)):
            text = str(candidate if candidate is not None else "").strip()
            if text:
                return text
        return default


def load_run_config(
    *,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    dotenv_path: Path | None = None,
    config_path: Path | None = None,
) -> RunConfig:
    """Build a validated :class:`RunConfig`.

    *overrides* holds values given on the command line, keyed by the same
    environment variable names that back each setting.
    """
    given = dict(overrides or {})
    resolver = SettingsResolver(env=env, dotenv_path=dotenv_path, config_path=config_path)

    def _get(key: str, default: str = "") -> str:
        return resolver.resolve(key, given.get(key), default=default)

    threshold_bytes = threshold_bytes_from_gb(_get(ENV_DIRECTORY_THRESHOLD_GB, DEFAULT_DIRECTORY_THRESHOLD_GB))
    service_timeout = _parse_seconds(_get(ENV_SERVICE_TIMEOUT_SECONDS), setting="service timeout")
    poll_interval = _parse_seconds(_get(ENV_POLL_INTERVAL_SECONDS), setting="poll interval")
    step_timeout = _parse_seconds(_get(ENV_STEP_TIMEOUT_SECONDS), setting="step timeout")
    log_subdirectories = parse_name_list(_get(ENV_LOG_SUBDIRECTORIES)) or DEFAULT_LOG_SUBDIRECTORIES
    lock_dir = _get(ENV_LOCK_DIR)

    return RunConfig(
        datastore_path=Path(_get(ENV_DATASTORE_LOCATION, DEFAULT_DATASTORE_LOCATION)),
        threshold_bytes=threshold_bytes,
        service_name=_get(ENV_SERVICE_NAME, DEFAULT_SERVICE_NAME),
        log_file=Path(_get(ENV_LOG_FILE, DEFAULT_LOG_FILE)),
        service_timeout_seconds=service_timeout if service_timeout is not None else DEFAULT_SERVICE_TIMEOUT_SECONDS,
        poll_interval_seconds=poll_interval if poll_interval is not None else DEFAULT_POLL_INTERVAL_SECONDS,
        step_timeout_seconds=step_timeout,
        log_subdirectories=log_subdirectories,
        projects_exclusion=_get(ENV_PROJECTS_EXCLUSION, DEFAULT_PROJECTS_EXCLUSION),
        lock_dir=Path(lock_dir) if lock_dir else None,
        skip_cleanup_on_stop_timeout=parse_boolish(_get(ENV_SKIP_CLEANUP_ON_STOP_TIMEOUT), default=False),
        ensure_service_running=parse_boolish(_get(ENV_ENSURE_SERVICE_RUNNING), default=False),
    )
