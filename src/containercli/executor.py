"""Engine CLI executor: blocking, asyncio, streaming and retrying entry points."""

from __future__ import annotations

import logging as py_logging
from dataclasses import dataclass

from containercli.command import CommandArgs, CommandPreview, CommandSpec, as_spec
from containercli.errors import CommandError
from containercli.execution import CancelToken, CommandRun, run_async, run_blocking
from containercli.logging import redact_argv
from containercli.process import ProcessHandle
from containercli.result import CommandResult
from containercli.retry import RetryPolicy, run_with_retry, run_with_retry_async
from containercli.runtime import EngineConfig
from containercli.stream import StreamHandle

logger = py_logging.getLogger(__name__)


@dataclass(frozen=True)
class VersionInfo:
    client_version: str
    server_version: str | None = None
    api_version: str | None = None
    go_version: str | None = None
    os: str | None = None
    arch: str | None = None


def parse_version_output(output: str) -> VersionInfo:
    section = ""
    values: dict[str, str | None] = {"client_version": "unknown"}
    for line in output.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("Client:"):
            section = "client"
        elif trimmed.startswith("Server:"):
            section = "server"
        elif trimmed.startswith("Version:"):
            version = trimmed.removeprefix("Version:").strip()
            if section == "client":
                values["client_version"] = version
            elif section == "server":
                values["server_version"] = version
        elif section == "client" and trimmed.startswith("API version:"):
            values["api_version"] = trimmed.removeprefix("API version:").strip()
        elif section == "client" and trimmed.startswith("Go version:"):
            values["go_version"] = trimmed.removeprefix("Go version:").strip()
        elif section == "client" and trimmed.startswith("OS/Arch:"):
            parts = trimmed.removeprefix("OS/Arch:").strip().split("/")
            if len(parts) >= 2:
                values["os"], values["arch"] = parts[0], parts[1]
    return VersionInfo(**values)  # type: ignore[arg-type]


class CommandExecutor:
    """Runs engine commands as subprocesses.

    Holds only immutable configuration, so one instance can serve any number
    of concurrent calls; each call owns its own process, pipes and drain
    workers.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    @property
    def binary(self) -> str:
        return self.config.resolved_binary

    def supports(self, feature: str) -> bool:
        return self.config.supports(feature)

    def require_feature(self, feature: str) -> None:
        self.config.require_feature(feature)

    def preview(self, command: CommandArgs) -> CommandPreview:
        return as_spec(command).preview(self.binary)

    def _start(self, spec: CommandSpec, cancel: CancelToken | None) -> CommandRun:
        timeout = spec.timeout if spec.timeout is not None else self.config.default_timeout_seconds
        logger.debug("Executing command=%s timeout=%ss", redact_argv(spec.argv), timeout)
        return CommandRun(
            self.binary,
            spec.argv,
            timeout=timeout,
            env=self.config.env,
            cancel=cancel,
        )

    def _check(self, run: CommandRun, result: CommandResult, check: bool) -> CommandResult:
        if check and not result.success:
            logger.debug("Command failed exit_code=%s command=%s", result.exit_code, redact_argv(run.command))
            raise CommandError.command_failed(run.command, result.exit_code, result.stdout, result.stderr)
        return result

    def execute(
        self,
        command: CommandArgs,
        timeout: float | None = None,
        *,
        cancel: CancelToken | None = None,
        check: bool = True,
    ) -> CommandResult:
        run = self._start(as_spec(command, timeout), cancel)
        return self._check(run, run_blocking(run), check)

    async def execute_async(
        self,
        command: CommandArgs,
        timeout: float | None = None,
        *,
        cancel: CancelToken | None = None,
        check: bool = True,
    ) -> CommandResult:
        run = self._start(as_spec(command, timeout), cancel)
        return self._check(run, await run_async(run), check)

    def execute_with_retry(
        self,
        command: CommandArgs,
        policy: RetryPolicy | None = None,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        spec = as_spec(command, timeout)
        return run_with_retry(
            lambda: self.execute(spec, cancel=cancel),
            policy=policy or RetryPolicy.DEFAULT,
            cancel=cancel,
        )

    async def execute_with_retry_async(
        self,
        command: CommandArgs,
        policy: RetryPolicy | None = None,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        spec = as_spec(command, timeout)
        return await run_with_retry_async(
            lambda: self.execute_async(spec, cancel=cancel),
            policy=policy or RetryPolicy.DEFAULT,
            cancel=cancel,
        )

    def stream(self, command: CommandArgs) -> StreamHandle:
        spec = as_spec(command)
        logger.debug("Streaming command=%s", redact_argv(spec.argv))
        process = ProcessHandle.spawn(self.binary, spec.argv, self.config.env)
        return StreamHandle(process)

    def version(self, timeout: float | None = None) -> VersionInfo:
        return parse_version_output(self.execute(["version"], timeout).stdout)
