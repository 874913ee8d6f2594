"""Single-invocation state machine shared by the blocking and asyncio drivers.

A ``CommandRun`` only decides what to wait for next and what a finished wait
means. The drivers below differ solely in how they wait on the pending
``concurrent.futures.Future`` objects: ``run_blocking`` parks the calling
thread, ``run_async`` suspends the calling task.
"""

from __future__ import annotations

import asyncio
import logging as py_logging
import time
from collections.abc import Callable, Collection, Mapping, Sequence
from concurrent import futures
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from threading import Lock

from containercli.errors import CommandError, FailureKind
from containercli.logging import redact_argv
from containercli.process import Drainer, ProcessHandle
from containercli.result import CommandResult

logger = py_logging.getLogger(__name__)


class RunState(str, Enum):
    RUNNING = "running"
    COLLECTING = "collecting"
    TERMINATING = "terminating"
    FINISHED = "finished"


class CancelToken:
    """External cancellation signal, observable from any thread or task."""

    def __init__(self) -> None:
        self._future: Future[None] = Future()
        self._lock = Lock()

    def cancel(self) -> None:
        with self._lock:
            if not self._future.done():
                self._future.set_result(None)

    @property
    def cancelled(self) -> bool:
        return self._future.done()

    @property
    def future(self) -> Future[None]:
        return self._future

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to ``timeout`` seconds; return True once cancelled."""
        futures.wait([self._future], timeout=timeout)
        return self.cancelled

    async def wait_async(self, timeout: float | None = None) -> bool:
        await asyncio.wait({asyncio.wrap_future(self._future)}, timeout=timeout)
        return self.cancelled


@dataclass(frozen=True)
class PendingWait:
    futures: tuple[Future[object], ...]
    timeout: float | None


class CommandRun:
    def __init__(
        self,
        binary: str,
        args: Sequence[str],
        *,
        timeout: float,
        env: Mapping[str, str] | None = None,
        cancel: CancelToken | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout!r}")
        self.timeout = timeout
        self._cancel = cancel
        self._clock = clock
        self._failure: CommandError | None = None
        self._result: CommandResult | None = None

        self._process = ProcessHandle.spawn(binary, args, env)
        self.command = self._process.argv
        self._started = clock()
        self._deadline = self._started + timeout
        self._pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="containercli-run")
        try:
            self._drainer = Drainer(self._process, self._pool)
            self._exit: Future[int] = self._pool.submit(self._process.wait_for_exit)
        except BaseException:
            self._process.terminate_forcibly()
            self._process.wait_for_exit()
            self._pool.shutdown(wait=False)
            raise
        self.state = RunState.RUNNING

    @property
    def process(self) -> ProcessHandle:
        return self._process

    @property
    def finished(self) -> bool:
        return self.state is RunState.FINISHED

    def pending(self) -> PendingWait:
        if self.state is RunState.TERMINATING:
            return PendingWait((self._exit,), None)
        if self.state is RunState.RUNNING:
            waiting: tuple[Future[object], ...] = (self._exit,)
        elif self.state is RunState.COLLECTING:
            waiting = self._drainer.futures
        else:
            raise RuntimeError("CommandRun has already finished")
        if self._cancel is not None:
            waiting = (*waiting, self._cancel.future)
        return PendingWait(waiting, max(self._deadline - self._clock(), 0.0))

    def advance(self, done: Collection[Future[object]]) -> None:
        del done  # state is re-read from the futures themselves
        if self.state is RunState.TERMINATING:
            if self._exit.done():
                self._finish_interrupted()
            return
        if self.state is RunState.RUNNING and self._exit.done():
            self.state = RunState.COLLECTING
        if self.state is RunState.COLLECTING and self._drainer.done:
            self._finish_completed()
            return
        if self._cancel is not None and self._cancel.cancelled:
            self.interrupt(FailureKind.CANCELLED)
        elif self._clock() >= self._deadline:
            self.interrupt(FailureKind.TIMEOUT)

    def interrupt(self, kind: FailureKind) -> None:
        """Enter TERMINATING: kill now, unwind only once exit is confirmed."""
        if self.state in (RunState.TERMINATING, RunState.FINISHED):
            return
        elapsed = self._clock() - self._started
        if kind is FailureKind.TIMEOUT:
            logger.warning(
                "Command timed out pid=%s timeout=%ss command=%s",
                self._process.pid,
                self.timeout,
                redact_argv(self.command),
            )
            self._failure = CommandError.timed_out(self.command, self.timeout, elapsed)
        else:
            logger.warning("Command cancelled pid=%s command=%s", self._process.pid, redact_argv(self.command))
            self._failure = CommandError.cancelled(self.command, elapsed)
        self.state = RunState.TERMINATING
        self._process.terminate_forcibly()
        if self._exit.done():
            self._finish_interrupted()

    def terminate_now(self) -> None:
        """Blocking kill-and-reap used when the calling thread is being torn down."""
        self.interrupt(FailureKind.CANCELLED)
        if self.state is RunState.TERMINATING:
            self._exit.result()
            self._finish_interrupted()

    def outcome(self) -> CommandResult:
        if not self.finished:
            raise RuntimeError("CommandRun has not finished")
        if self._failure is not None:
            raise self._failure
        assert self._result is not None
        return self._result

    def _finish_completed(self) -> None:
        try:
            stdout = self._drainer.stdout.result()
            stderr = self._drainer.stderr.result()
            exit_code = self._exit.result()
        finally:
            self._release()
        logger.debug("Command completed pid=%s exit_code=%s", self._process.pid, exit_code)
        self._result = CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    def _finish_interrupted(self) -> None:
        logger.debug("Process reaped after interrupt pid=%s", self._process.pid)
        self._release()

    def _release(self) -> None:
        self.state = RunState.FINISHED
        self._pool.shutdown(wait=False)
        if self._drainer.done:
            self._process.close_pipes()


def run_blocking(run: CommandRun) -> CommandResult:
    try:
        while not run.finished:
            pending = run.pending()
            done, _ = futures.wait(
                pending.futures,
                timeout=pending.timeout,
                return_when=futures.FIRST_COMPLETED,
            )
            run.advance(done)
    except BaseException:
        if not run.finished:
            run.terminate_now()
        raise
    return run.outcome()


async def run_async(run: CommandRun) -> CommandResult:
    interrupted = False
    while not run.finished:
        pending = run.pending()
        try:
            done = await _first_completed(pending)
        except asyncio.CancelledError:
            interrupted = True
            run.interrupt(FailureKind.CANCELLED)
            continue
        run.advance(done)
    if interrupted:
        raise asyncio.CancelledError
    return run.outcome()


async def _first_completed(pending: PendingWait) -> set[Future[object]]:
    wrapped = {asyncio.wrap_future(item): item for item in pending.futures}
    done, _ = await asyncio.wait(
        wrapped,
        timeout=pending.timeout,
        return_when=asyncio.FIRST_COMPLETED,
    )
    return {wrapped[item] for item in done}
