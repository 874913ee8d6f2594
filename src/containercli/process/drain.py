"""Concurrent draining of a process's output pipes."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import suppress
from typing import IO

from containercli.process.handle import ProcessHandle

_CHUNK_SIZE = 64 * 1024


def decode_output(payload: bytes) -> str:
    return payload.decode("utf-8", errors="replace")


def read_to_end(pipe: IO[bytes]) -> str:
    chunks: list[bytes] = []
    while True:
        chunk = pipe.read(_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
    return decode_output(b"".join(chunks))


def _drain(pipe: IO[bytes]) -> str:
    try:
        return read_to_end(pipe)
    finally:
        with suppress(OSError):
            pipe.close()


class Drainer:
    """Reads stdout and stderr to EOF on two independent pool workers.

    Neither stream waits on the other, so a child that fills one pipe while
    the caller reads the other cannot block.
    """

    def __init__(self, process: ProcessHandle, pool: ThreadPoolExecutor) -> None:
        self.stdout: Future[str] = pool.submit(_drain, process.stdout)
        self.stderr: Future[str] = pool.submit(_drain, process.stderr)

    @property
    def futures(self) -> tuple[Future[str], Future[str]]:
        return self.stdout, self.stderr

    @property
    def done(self) -> bool:
        return self.stdout.done() and self.stderr.done()
