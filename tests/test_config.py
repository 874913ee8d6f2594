from __future__ import annotations

import stat
from pathlib import Path

import pytest
from pydantic import ValidationError

from containercli.config import AppConfig, RetrySettings, load_config, retry_predicate, save_config
from containercli.retry import ExponentialBackoff, FixedBackoff, LinearBackoff, retry_on_transient
from containercli.runtime import RuntimeKind


@pytest.fixture(autouse=True)
def _clear_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CONTAINERCLI_BINARY", raising=False)
    monkeypatch.delenv("CONTAINERCLI_TIMEOUT", raising=False)


def test_load_defaults_when_config_missing(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "config.toml")

    assert cfg.runtime == "docker"
    assert cfg.binary == ""
    assert cfg.default_timeout_seconds == 30.0
    assert cfg.env == {}
    assert cfg.retry.max_attempts == 3
    assert cfg.retry.backoff == "exponential"
    assert cfg.retry.on == "default"
    assert cfg.log_level == "INFO"


def test_config_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.toml"
    original = AppConfig(
        runtime="podman",
        binary="/usr/local/bin/podman",
        default_timeout_seconds=45.5,
        env={"DOCKER_HOST": "unix:///run/user/1000/podman.sock", 'QUOTED"KEY': 'va"lue'},
        retry=RetrySettings(max_attempts=5, backoff="linear", initial_seconds=0.5, on="transient"),
        log_level="DEBUG",
    )

    saved = save_config(original, path)
    loaded = load_config(path)

    assert saved == path
    assert loaded.model_dump() == original.model_dump()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_invalid_values_fall_back_field_by_field(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                'runtime = "lxc"',
                'binary = "  nerdctl  "',
                "default_timeout_seconds = -5",
                'log_level = "LOUD"',
                "",
                "[retry]",
                "max_attempts = 0",
                'backoff = "fibonacci"',
                "multiplier = 3",
                'on = "everything"',
                "",
                "[env]",
                "GOOD = \"yes\"",
                "NUMBER = 7",
                "FLAG = true",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.runtime == "docker"
    assert cfg.binary == "nerdctl"
    assert cfg.default_timeout_seconds == 30.0
    assert cfg.log_level == "INFO"
    assert cfg.retry.max_attempts == 3
    assert cfg.retry.backoff == "exponential"
    assert cfg.retry.multiplier == 3.0
    assert cfg.retry.on == "default"
    assert cfg.env == {"GOOD": "yes", "NUMBER": "7"}


def test_broken_toml_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("runtime = [unterminated", encoding="utf-8")

    assert load_config(path).model_dump() == AppConfig().model_dump()


def test_environment_overrides_apply(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTAINERCLI_BINARY", "/opt/docker/bin/docker")
    monkeypatch.setenv("CONTAINERCLI_TIMEOUT", "90")

    cfg = load_config(tmp_path / "missing.toml")

    assert cfg.binary == "/opt/docker/bin/docker"
    assert cfg.default_timeout_seconds == 90.0


@pytest.mark.parametrize("value", ["soon", "0", "-3"])
def test_invalid_timeout_override_is_ignored(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    value: str,
) -> None:
    monkeypatch.setenv("CONTAINERCLI_TIMEOUT", value)
    assert load_config(tmp_path / "missing.toml").default_timeout_seconds == 30.0


def test_validate_assignment_rejects_bad_values() -> None:
    cfg = AppConfig()
    with pytest.raises(ValidationError):
        cfg.runtime = "lxc"
    with pytest.raises(ValidationError):
        cfg.default_timeout_seconds = 0
    with pytest.raises(ValidationError):
        cfg.retry.max_attempts = 0


def test_warning_log_level_is_normalized() -> None:
    assert AppConfig(log_level="warning").log_level == "WARN"


def test_engine_config_and_retry_policy_are_built_from_settings() -> None:
    cfg = AppConfig(
        runtime="podman",
        env={"A": "1"},
        default_timeout_seconds=10.0,
        retry=RetrySettings(max_attempts=4, backoff="fixed", initial_seconds=2.0, on="transient"),
    )

    engine = cfg.engine_config()
    policy = cfg.retry_policy()

    assert engine.runtime is RuntimeKind.PODMAN
    assert engine.env == {"A": "1"}
    assert engine.default_timeout_seconds == 10.0
    assert policy.max_attempts == 4
    assert policy.backoff == FixedBackoff(2.0)
    assert policy.retry_on is retry_on_transient


def test_backoff_names_map_to_strategies() -> None:
    assert RetrySettings(backoff="linear").strategy() == LinearBackoff(0.1, 0.1)
    assert RetrySettings(backoff="exponential", max_seconds=5.0).strategy() == ExponentialBackoff(0.1, 5.0, 2.0)
    assert retry_predicate("transient") is retry_on_transient
