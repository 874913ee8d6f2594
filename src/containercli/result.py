"""Outcome of one completed, non-streaming invocation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def stdout_lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

    def stderr_lines(self) -> list[str]:
        return [line for line in self.stderr.splitlines() if line.strip()]

    def stdout_is_empty(self) -> bool:
        return not self.stdout.strip()

    def stderr_is_empty(self) -> bool:
        return not self.stderr.strip()
