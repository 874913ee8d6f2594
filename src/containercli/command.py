"""Argument-vector contract between command builders and the executor."""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class CommandPreview:
    command_line: str
    args: tuple[str, ...]

    def __str__(self) -> str:
        return self.command_line


@dataclass(frozen=True)
class CommandSpec:
    """Engine arguments (without the binary) plus per-call overrides."""

    args: tuple[str, ...]
    timeout: float | None = None
    extra_args: tuple[str, ...] = ()

    @classmethod
    def of(cls, *args: str, timeout: float | None = None) -> CommandSpec:
        return cls(args=tuple(args), timeout=timeout)

    @property
    def argv(self) -> list[str]:
        return [*self.args, *self.extra_args]

    def with_args(self, *extra: str) -> CommandSpec:
        return replace(self, extra_args=(*self.extra_args, *extra))

    def with_timeout(self, seconds: float) -> CommandSpec:
        return replace(self, timeout=seconds)

    def preview(self, binary: str = "docker") -> CommandPreview:
        argv = self.argv
        return CommandPreview(command_line=shlex.join([binary, *argv]), args=tuple(argv))


CommandArgs = Sequence[str] | CommandSpec


def as_spec(command: CommandArgs, timeout: float | None = None) -> CommandSpec:
    if isinstance(command, CommandSpec):
        spec = command
    elif isinstance(command, str):
        raise TypeError("Engine arguments must be a sequence of strings, not a single string")
    else:
        spec = CommandSpec(args=tuple(str(item) for item in command))
    if timeout is not None:
        spec = spec.with_timeout(timeout)
    return spec
