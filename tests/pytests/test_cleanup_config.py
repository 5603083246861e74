from __future__ import annotations

from pathlib import Path

import pytest

from datastore_cleanup.config import (
    DEFAULT_LOG_FILE,
    ENV_DATASTORE_LOCATION,
    ENV_DIRECTORY_THRESHOLD_GB,
    ENV_SERVICE_NAME,
    ENV_STEP_TIMEOUT_SECONDS,
    RunConfig,
    load_run_config,
    parse_boolish,
    parse_name_list,
    read_yaml_settings,
    threshold_bytes_from_gb,
)
from datastore_cleanup.errors import ConfigError
from datastore_cleanup.steps import DEFAULT_LOG_SUBDIRECTORIES


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_threshold_bytes_from_gb_uses_binary_gigabytes() -> None:
    assert threshold_bytes_from_gb("1.5") == 1610612736
    assert threshold_bytes_from_gb(2) == 2 * 2**30
    assert threshold_bytes_from_gb(" 0.001 ") == 1073741


@pytest.mark.parametrize("value", ["0", "-1", "abc", "", "nan", "inf", "1e-12"])
def test_threshold_bytes_from_gb_rejects_invalid_values(value: str) -> None:
    with pytest.raises(ConfigError):
        threshold_bytes_from_gb(value)


def test_run_config_validation(tmp_path: Path) -> None:
    base = {
        "datastore_path": tmp_path,
        "threshold_bytes": 100,
        "service_name": "ncover",
        "log_file": tmp_path / "cleanup_log.txt",
    }
    config = RunConfig(**base)
    assert config.log_subdirectories == DEFAULT_LOG_SUBDIRECTORIES

    with pytest.raises(ConfigError):
        RunConfig(**{**base, "threshold_bytes": 0})
    with pytest.raises(ConfigError):
        RunConfig(**{**base, "datastore_path": Path("relative/data")})
    with pytest.raises(ConfigError):
        RunConfig(**{**base, "service_name": " "})
    with pytest.raises(ConfigError):
        RunConfig(**{**base, "log_subdirectories": ("..",)})


def test_load_run_config_precedence(tmp_path: Path) -> None:
    cli_store = tmp_path / "cli"
    env_store = tmp_path / "env"
    dotenv_path = _write(
        tmp_path / ".env.cleanup",
        f"DATASTORE_LOCATION={tmp_path / 'dotenv'}\nSERVICE_NAME=from-dotenv\nDIRECTORY_THRESHOLD_GB=3\n",
    )
    config_path = _write(
        tmp_path / "cleanup.yml",
        "SERVICE_NAME: from-yaml\nDIRECTORY_THRESHOLD_GB: 4\nSTEP_TIMEOUT_SECONDS: 90\n",
    )

    config = load_run_config(
        overrides={ENV_DATASTORE_LOCATION: str(cli_store), ENV_SERVICE_NAME: None},
        env={ENV_DATASTORE_LOCATION: str(env_store), ENV_DIRECTORY_THRESHOLD_GB: "2"},
        dotenv_path=dotenv_path,
        config_path=config_path,
    )

    assert config.datastore_path == cli_store
    assert config.threshold_bytes == 2 * 2**30
    assert config.service_name == "from-dotenv"
    assert config.step_timeout_seconds == 90
    assert config.log_file == Path(DEFAULT_LOG_FILE)


def test_load_run_config_reads_pipeline_variables(tmp_path: Path) -> None:
    store = tmp_path / "ncoverdata"
    config_path = _write(
        tmp_path / "pipeline.yaml",
        f"""
trigger:
  branches:
    include:
      - main
variables:
  datastoreLocation: "{store.as_posix()}"
  directoryThresholdGB: "1.5"
  logFile: "$(Build.ArtifactStagingDirectory)\\\\cleanup_log.txt"
  serviceName: "ncover"
""",
    )

    config = load_run_config(env={}, config_path=config_path)

    assert config.datastore_path == Path(store.as_posix())
    assert config.threshold_bytes == 1610612736
    assert config.service_name == "ncover"
    assert config.log_file == Path(DEFAULT_LOG_FILE)


def test_read_yaml_settings_accepts_variable_list(tmp_path: Path) -> None:
    config_path = _write(
        tmp_path / "pipeline.yaml",
        "variables:\n  - name: serviceName\n    value: other\n  - name: directoryThresholdGB\n    value: 2.5\n",
    )

    assert read_yaml_settings(config_path) == {"SERVICE_NAME": "other", "DIRECTORY_THRESHOLD_GB": "2.5"}


def test_read_yaml_settings_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        read_yaml_settings(tmp_path / "missing.yml")
    with pytest.raises(ConfigError):
        read_yaml_settings(_write(tmp_path / "list.yml", "- a\n- b\n"))
    with pytest.raises(ConfigError):
        read_yaml_settings(_write(tmp_path / "broken.yml", "key: [unclosed\n"))


def test_load_run_config_rejects_bad_step_timeout(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_run_config(
            overrides={ENV_DATASTORE_LOCATION: str(tmp_path), ENV_STEP_TIMEOUT_SECONDS: "soon"},
            env={},
        )


def test_parse_helpers() -> None:
    assert parse_boolish("YES") is True
    assert parse_boolish("off", default=True) is False
    assert parse_boolish("", default=True) is True
    assert parse_name_list(" Server, ,Collector ") == ("Server", "Collector")
