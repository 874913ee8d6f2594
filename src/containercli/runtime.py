"""Container runtime resolution and capability checks."""

from __future__ import annotations

import logging as py_logging
import os
import platform
import shutil
import subprocess
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from containercli.errors import CommandError

logger = py_logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
_DETECT_TIMEOUT_SECONDS = 10.0

Which = Callable[[str], str | None]
Runner = Callable[..., subprocess.CompletedProcess[str]]


class RuntimeKind(str, Enum):
    DOCKER = "docker"
    PODMAN = "podman"
    COLIMA = "colima"
    ORBSTACK = "orbstack"
    RANCHER_DESKTOP = "rancher-desktop"
    DOCKER_DESKTOP = "docker-desktop"

    @property
    def command(self) -> str:
        return "podman" if self is RuntimeKind.PODMAN else "docker"

    def supports(self, feature: str) -> bool:
        return feature not in _UNSUPPORTED.get(self, frozenset())


# Podman has no buildx builder management.
_UNSUPPORTED: dict[RuntimeKind, frozenset[str]] = {
    RuntimeKind.PODMAN: frozenset(
        {"builder create", "builder rm", "builder stop", "builder use", "builder inspect"}
    ),
}


class EngineConfig(BaseModel):
    """Resolved engine invocation settings injected into an executor."""

    model_config = ConfigDict(frozen=True)

    runtime: RuntimeKind = RuntimeKind.DOCKER
    binary: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    default_timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)

    @field_validator("binary")
    @classmethod
    def _strip_binary(cls, value: str) -> str:
        return value.strip()

    @property
    def resolved_binary(self) -> str:
        return self.binary or self.runtime.command

    def supports(self, feature: str) -> bool:
        return self.runtime.supports(_normalize_feature(feature))

    def require_feature(self, feature: str) -> None:
        normalized = _normalize_feature(feature)
        if not self.runtime.supports(normalized):
            raise CommandError.unsupported_by_runtime(normalized, self.runtime.value)


def _normalize_feature(feature: str) -> str:
    return " ".join(feature.split())


def _run_quietly(runner: Runner, argv: list[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return runner(
            argv,
            capture_output=True,
            text=True,
            check=False,
            timeout=_DETECT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Runtime detection command failed argv=%s error=%s", argv, exc)
        return None


def _runtime_from_context(context: str) -> RuntimeKind:
    lowered = context.lower()
    if "colima" in lowered:
        return RuntimeKind.COLIMA
    if "orbstack" in lowered:
        return RuntimeKind.ORBSTACK
    if "rancher" in lowered:
        return RuntimeKind.RANCHER_DESKTOP
    if "desktop" in lowered:
        return RuntimeKind.DOCKER_DESKTOP
    return RuntimeKind.DOCKER


def _environment_for(runtime: RuntimeKind, system: str, home: Path) -> dict[str, str]:
    if os.getenv("DOCKER_HOST", "").strip():
        return {}
    if runtime is RuntimeKind.COLIMA and system == "Darwin":
        socket_path = home / ".colima" / "default" / "docker.sock"
        return {"DOCKER_HOST": f"unix://{socket_path}"}
    return {}


def detect_runtime(
    *,
    which: Which = shutil.which,
    runner: Runner = subprocess.run,
    system: str | None = None,
    home: Path | None = None,
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> EngineConfig:
    """Inspect the host for a usable engine and return an explicit configuration."""
    if which("podman"):
        result = _run_quietly(runner, ["podman", "version"])
        if result is not None and result.returncode == 0:
            logger.debug("Detected runtime=podman")
            return EngineConfig(runtime=RuntimeKind.PODMAN, default_timeout_seconds=default_timeout_seconds)

    runtime = RuntimeKind.DOCKER
    if which("docker"):
        result = _run_quietly(runner, ["docker", "context", "show"])
        if result is not None and result.returncode == 0:
            runtime = _runtime_from_context(result.stdout.strip())

    env = _environment_for(runtime, system or platform.system(), home or Path.home())
    logger.debug("Detected runtime=%s env=%s", runtime.value, sorted(env))
    return EngineConfig(runtime=runtime, env=env, default_timeout_seconds=default_timeout_seconds)
