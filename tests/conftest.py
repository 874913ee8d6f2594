from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from containercli.executor import CommandExecutor
from containercli.process import ProcessHandle
from containercli.runtime import EngineConfig


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))

        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


@pytest.fixture
def python_executor() -> CommandExecutor:
    """Executor whose engine binary is the running interpreter, driven with ``-c``."""
    return CommandExecutor(EngineConfig(binary=sys.executable, default_timeout_seconds=15.0))


@pytest.fixture
def fake_engine(tmp_path: Path) -> Callable[[str], str]:
    """Write an executable Python script standing in for the engine binary."""

    def factory(body: str, name: str = "engine") -> str:
        script = tmp_path / name
        script.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
        script.chmod(0o755)
        return str(script)

    return factory


@pytest.fixture
def spawned_processes(monkeypatch: pytest.MonkeyPatch) -> list[ProcessHandle]:
    """Record every ProcessHandle spawned during the test."""
    spawned: list[ProcessHandle] = []
    original = ProcessHandle.spawn.__func__  # type: ignore[attr-defined]

    def recording_spawn(cls: type[ProcessHandle], *args: object, **kwargs: object) -> ProcessHandle:
        handle = original(cls, *args, **kwargs)
        spawned.append(handle)
        return handle

    monkeypatch.setattr(ProcessHandle, "spawn", classmethod(recording_spawn))
    return spawned
