"""Ownership of one spawned engine process."""

from __future__ import annotations

import logging as py_logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from contextlib import suppress
from typing import IO

from containercli.errors import CommandError
from containercli.logging import redact_argv

logger = py_logging.getLogger(__name__)


def build_environment(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    env = os.environ.copy()
    if overrides:
        env.update({str(key): str(value) for key, value in overrides.items()})
    return env


class ProcessHandle:
    """A spawned process with separate stdout/stderr pipes.

    The handle is owned by exactly one caller (an execution or a
    ``StreamHandle``) and must be reaped by that owner.
    """

    def __init__(self, process: subprocess.Popen[bytes], argv: Sequence[str]) -> None:
        self._process = process
        self.argv: tuple[str, ...] = tuple(argv)

    @classmethod
    def spawn(
        cls,
        binary: str,
        args: Sequence[str],
        env_overrides: Mapping[str, str] | None = None,
        *,
        cwd: str | None = None,
    ) -> ProcessHandle:
        argv = [binary, *args]
        logger.debug("Spawning process argv=%s", redact_argv(argv))
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=build_environment(env_overrides),
                cwd=cwd,
            )
        except OSError as exc:
            logger.error("Process launch failed binary=%s error=%s", binary, exc)
            raise CommandError.launch_failed(tuple(argv), exc.strerror or str(exc)) from exc
        logger.debug("Spawned process pid=%s", process.pid)
        return cls(process, argv)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> IO[bytes]:
        assert self._process.stdout is not None
        return self._process.stdout

    @property
    def stderr(self) -> IO[bytes]:
        assert self._process.stderr is not None
        return self._process.stderr

    @property
    def exit_code(self) -> int | None:
        return self._process.poll()

    def is_alive(self) -> bool:
        return self._process.poll() is None

    def wait_for_exit(self, timeout: float | None = None) -> int:
        """Block until the process exits; ``subprocess.TimeoutExpired`` past ``timeout``."""
        return self._process.wait(timeout=timeout)

    def terminate_forcibly(self) -> None:
        if not self.is_alive():
            return
        logger.debug("Killing process pid=%s", self.pid)
        with suppress(ProcessLookupError):
            self._process.kill()

    def close_pipes(self) -> None:
        for pipe in (self._process.stdout, self._process.stderr):
            if pipe is not None:
                with suppress(OSError):
                    pipe.close()
