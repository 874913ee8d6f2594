"""Failure taxonomy and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

from containercli.logging import redact_argv

if TYPE_CHECKING:
    from containercli.result import CommandResult


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    LAUNCH_FAILED = 5
    TIMEOUT = 6
    CANCELLED = 7
    UNSUPPORTED_RUNTIME = 8


class FailureKind(str, Enum):
    LAUNCH_FAILED = "launch_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    COMMAND_FAILED = "command_failed"
    RETRY_EXHAUSTED = "retry_exhausted"
    UNSUPPORTED_BY_RUNTIME = "unsupported_by_runtime"

    @property
    def default_retryable(self) -> bool:
        # Only infrastructure-level deadline misses retry by default.
        return self is FailureKind.TIMEOUT


_KIND_EXIT_CODES = {
    FailureKind.LAUNCH_FAILED: ExitCode.LAUNCH_FAILED,
    FailureKind.TIMEOUT: ExitCode.TIMEOUT,
    FailureKind.CANCELLED: ExitCode.CANCELLED,
    FailureKind.UNSUPPORTED_BY_RUNTIME: ExitCode.UNSUPPORTED_RUNTIME,
}


def shell_exit_status(code: int) -> int:
    """Map a child's exit code to the status a shell would report.

    ``subprocess`` reports death by signal N as ``-N``; shells report ``128 + N``.
    """
    return 128 - code if code < 0 else code


_TRANSIENT_MARKERS = (
    "connection refused",
    "connection reset",
    "network is unreachable",
    "no route to host",
    "i/o timeout",
    "tls handshake timeout",
    "toomanyrequests",
    "rate limit",
    "502 bad gateway",
    "503 service unavailable",
    "504 gateway timeout",
    "is the docker daemon running",
    "cannot connect to the docker daemon",
    "port is already allocated",
)


@dataclass
class CommandError(Exception):
    """A failed engine invocation, tagged with its ``FailureKind``.

    Every variant keeps the data needed to print a full diagnostic without
    re-running the command: output and exit code for ``COMMAND_FAILED``,
    the deadline and elapsed time for ``TIMEOUT``, the wrapped failure for
    ``RETRY_EXHAUSTED``.
    """

    kind: FailureKind
    message: str
    command: tuple[str, ...] = ()
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    timeout: float | None = None
    elapsed: float | None = None
    feature: str = ""
    runtime: str = ""
    last_failure: CommandError | None = None
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message

    @property
    def retryable(self) -> bool:
        return self.kind.default_retryable

    @property
    def exit_status(self) -> int:
        """Process exit status the CLI should report for this failure."""
        if self.kind is FailureKind.COMMAND_FAILED and self.exit_code:
            return shell_exit_status(self.exit_code)
        if self.kind is FailureKind.RETRY_EXHAUSTED and self.last_failure is not None:
            return self.last_failure.exit_status
        return int(_KIND_EXIT_CODES.get(self.kind, ExitCode.RUNTIME_ERROR))

    def to_result(self) -> CommandResult | None:
        from containercli.result import CommandResult

        if self.exit_code is None:
            return None
        return CommandResult(stdout=self.stdout, stderr=self.stderr, exit_code=self.exit_code)

    def diagnostic(self) -> str:
        lines = [f"{self.kind.value}: {self.message}"]
        if self.command:
            lines.append(f"command: {' '.join(redact_argv(self.command))}")
        if self.exit_code is not None:
            lines.append(f"exit code: {self.exit_code}")
        if self.timeout is not None:
            lines.append(f"timeout: {self.timeout:.3f}s")
        if self.elapsed is not None:
            lines.append(f"elapsed: {self.elapsed:.3f}s")
        if self.feature:
            lines.append(f"feature: {self.feature} runtime: {self.runtime}")
        if self.stdout.strip():
            lines.append("stdout:")
            lines.append(self.stdout.rstrip("\n"))
        if self.stderr.strip():
            lines.append("stderr:")
            lines.append(self.stderr.rstrip("\n"))
        if self.last_failure is not None:
            lines.append("last failure:")
            lines.append(self.last_failure.diagnostic())
        return "\n".join(lines)

    @classmethod
    def launch_failed(cls, command: tuple[str, ...], reason: str) -> CommandError:
        return cls(
            FailureKind.LAUNCH_FAILED,
            f"Failed to launch {command[0] if command else 'engine binary'}: {reason}",
            command=command,
            hint="Check that the engine binary is installed and executable.",
        )

    @classmethod
    def timed_out(cls, command: tuple[str, ...], timeout: float, elapsed: float) -> CommandError:
        return cls(
            FailureKind.TIMEOUT,
            f"Command timed out after {timeout:g}s",
            command=command,
            timeout=timeout,
            elapsed=elapsed,
        )

    @classmethod
    def cancelled(cls, command: tuple[str, ...], elapsed: float) -> CommandError:
        return cls(
            FailureKind.CANCELLED,
            "Command was cancelled",
            command=command,
            elapsed=elapsed,
        )

    @classmethod
    def command_failed(
        cls,
        command: tuple[str, ...],
        exit_code: int,
        stdout: str,
        stderr: str,
    ) -> CommandError:
        detail = (stderr.strip() or stdout.strip())[:200]
        return cls(
            FailureKind.COMMAND_FAILED,
            f"Command '{' '.join(redact_argv(command))}' failed with exit code {exit_code}: {detail}",
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        )

    @classmethod
    def retry_exhausted(cls, attempts: int, last_failure: CommandError) -> CommandError:
        return cls(
            FailureKind.RETRY_EXHAUSTED,
            f"Gave up after {attempts} attempts: {last_failure.message}",
            command=last_failure.command,
            last_failure=last_failure,
        )

    @classmethod
    def unsupported_by_runtime(cls, feature: str, runtime: str) -> CommandError:
        return cls(
            FailureKind.UNSUPPORTED_BY_RUNTIME,
            f"Command '{feature}' is not supported by {runtime}",
            feature=feature,
            runtime=runtime,
            hint="Switch to a runtime that implements this command.",
        )


def is_transient(error: CommandError) -> bool:
    """True for failures caused by engine or network conditions that may clear up."""
    if error.kind is FailureKind.TIMEOUT:
        return True
    if error.kind is not FailureKind.COMMAND_FAILED:
        return False
    output = f"{error.stderr}\n{error.stdout}".lower()
    return any(marker in output for marker in _TRANSIENT_MARKERS)


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
