"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing_extensions import TypedDict

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from containercli.logging import LOG_LEVELS, normalize_level
from containercli.retry import (
    BackoffStrategy,
    ExponentialBackoff,
    FixedBackoff,
    LinearBackoff,
    RetryPolicy,
    RetryPredicate,
    retry_on_all,
    retry_on_default,
    retry_on_timeout,
    retry_on_transient,
)
from containercli.runtime import DEFAULT_TIMEOUT_SECONDS, EngineConfig, RuntimeKind

DEFAULT_CONFIG_PATH = Path("~/.config/containercli/config.toml").expanduser()
BINARY_ENV = "CONTAINERCLI_BINARY"
TIMEOUT_ENV = "CONTAINERCLI_TIMEOUT"

BackoffName = Literal["fixed", "linear", "exponential"]
RetryOnName = Literal["default", "transient", "timeout", "all"]

_VALID_RUNTIMES = {kind.value for kind in RuntimeKind}
_VALID_BACKOFFS = {"fixed", "linear", "exponential"}
_VALID_RETRY_ON = {"default", "transient", "timeout", "all"}
_RETRY_PREDICATES: dict[str, RetryPredicate] = {
    "default": retry_on_default,
    "transient": retry_on_transient,
    "timeout": retry_on_timeout,
    "all": retry_on_all,
}


class RawRetryTable(TypedDict, total=False):
    max_attempts: int
    backoff: str
    initial_seconds: float
    increment_seconds: float
    max_seconds: float
    multiplier: float
    on: str


class RawConfig(TypedDict, total=False):
    runtime: str
    binary: str
    default_timeout_seconds: float
    log_level: str
    env: dict[str, str]
    retry: RawRetryTable


class RetrySettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    max_attempts: int = Field(default=3, ge=1, le=20)
    backoff: BackoffName = "exponential"
    initial_seconds: float = Field(default=0.1, ge=0)
    increment_seconds: float = Field(default=0.1, ge=0)
    max_seconds: float = Field(default=10.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    on: RetryOnName = "default"

    def strategy(self) -> BackoffStrategy:
        if self.backoff == "fixed":
            return FixedBackoff(self.initial_seconds)
        if self.backoff == "linear":
            return LinearBackoff(self.initial_seconds, self.increment_seconds)
        return ExponentialBackoff(self.initial_seconds, self.max_seconds, self.multiplier)


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    runtime: str = RuntimeKind.DOCKER.value
    binary: str = ""
    default_timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    env: dict[str, str] = Field(default_factory=dict)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    log_level: str = "INFO"

    @field_validator("runtime")
    @classmethod
    def _validate_runtime(cls, value: str) -> str:
        if value not in _VALID_RUNTIMES:
            raise ValueError(f"Invalid runtime: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = normalize_level(value)
        if normalized not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            runtime=RuntimeKind(self.runtime),
            binary=self.binary,
            env=dict(self.env),
            default_timeout_seconds=self.default_timeout_seconds,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry.max_attempts,
            backoff=self.retry.strategy(),
            retry_on=retry_predicate(self.retry.on),
        )


def retry_predicate(name: str) -> RetryPredicate:
    return _RETRY_PREDICATES[name]


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _normalize_env(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    normalized: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(key, str) or not key.strip():
            continue
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        normalized[key.strip()] = str(item)
    return normalized


def _sanitize_retry(value: object) -> RetrySettings:
    settings = RetrySettings()
    if not isinstance(value, dict):
        return settings

    max_attempts = value.get("max_attempts")
    if isinstance(max_attempts, int) and not isinstance(max_attempts, bool) and 1 <= max_attempts <= 20:
        settings.max_attempts = max_attempts

    backoff = value.get("backoff")
    if isinstance(backoff, str) and backoff in _VALID_BACKOFFS:
        settings.backoff = cast(BackoffName, backoff)

    for key in ("initial_seconds", "increment_seconds", "max_seconds"):
        number = _number(value.get(key))
        if number is not None and number >= 0:
            setattr(settings, key, number)

    multiplier = _number(value.get("multiplier"))
    if multiplier is not None and multiplier >= 1:
        settings.multiplier = multiplier

    retry_on = value.get("on")
    if isinstance(retry_on, str) and retry_on in _VALID_RETRY_ON:
        settings.on = cast(RetryOnName, retry_on)
    return settings


def _apply_env_overrides(cfg: AppConfig) -> None:
    binary = os.getenv(BINARY_ENV, "").strip()
    if binary:
        cfg.binary = binary
    timeout = os.getenv(TIMEOUT_ENV, "").strip()
    if timeout:
        with suppress(ValueError):
            seconds = float(timeout)
            if seconds > 0:
                cfg.default_timeout_seconds = seconds


def _sanitize(raw: RawConfig) -> AppConfig:
    cfg = AppConfig()

    runtime = raw.get("runtime", cfg.runtime)
    if isinstance(runtime, str) and runtime in _VALID_RUNTIMES:
        cfg.runtime = runtime

    binary = raw.get("binary", cfg.binary)
    if isinstance(binary, str):
        cfg.binary = binary.strip()

    timeout = _number(raw.get("default_timeout_seconds"))
    if timeout is not None and timeout > 0:
        cfg.default_timeout_seconds = timeout

    cfg.env = _normalize_env(raw.get("env", {}))
    cfg.retry = _sanitize_retry(raw.get("retry", {}))

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str) and normalize_level(log_level) in LOG_LEVELS:
        cfg.log_level = log_level

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    cfg = AppConfig()
    if resolved.exists():
        try:
            with resolved.open("rb") as handle:
                raw = tomllib.load(handle)
        except (tomllib.TOMLDecodeError, OSError):
            raw = {}
        if isinstance(raw, dict):
            cfg = _sanitize(cast(RawConfig, raw))
    _apply_env_overrides(cfg)
    return cfg


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"runtime = {_toml_scalar(config.runtime)}",
        f"binary = {_toml_scalar(config.binary)}",
        f"default_timeout_seconds = {_toml_scalar(float(config.default_timeout_seconds))}",
        f"log_level = {_toml_scalar(config.log_level)}",
        "",
        "[retry]",
        f"max_attempts = {_toml_scalar(config.retry.max_attempts)}",
        f"backoff = {_toml_scalar(config.retry.backoff)}",
        f"initial_seconds = {_toml_scalar(float(config.retry.initial_seconds))}",
        f"increment_seconds = {_toml_scalar(float(config.retry.increment_seconds))}",
        f"max_seconds = {_toml_scalar(float(config.retry.max_seconds))}",
        f"multiplier = {_toml_scalar(float(config.retry.multiplier))}",
        f"on = {_toml_scalar(config.retry.on)}",
    ]

    if config.env:
        lines.append("")
        lines.append("[env]")
        for key, value in sorted(config.env.items()):
            lines.append(f'"{_escape(key)}" = {_toml_scalar(value)}')

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
