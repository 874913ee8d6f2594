"""Line-by-line consumption of a still-running engine process."""

from __future__ import annotations

import codecs
import logging as py_logging
import threading
from collections.abc import Iterator
from contextlib import suppress
from types import TracebackType

from containercli.process import ProcessHandle, decode_output

logger = py_logging.getLogger(__name__)

_STDERR_JOIN_SECONDS = 1.0
_CHUNK_SIZE = 4096


class _StderrPump:
    """Keeps stderr flowing while the caller consumes stdout."""

    def __init__(self, process: ProcessHandle) -> None:
        self._pipe = process.stderr
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._chunks: list[str] = []
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._pump, name=f"containercli-stderr-{process.pid}", daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        while True:
            try:
                chunk = self._pipe.read1(_CHUNK_SIZE)
            except (OSError, ValueError):
                chunk = b""
            with self._lock:
                if not chunk:
                    self._chunks.append(self._decoder.decode(b"", final=True))
                    return
                self._chunks.append(self._decoder.decode(chunk))

    @property
    def finished(self) -> bool:
        return not self._thread.is_alive()

    def join(self, timeout: float | None = _STDERR_JOIN_SECONDS) -> None:
        self._thread.join(timeout)

    def take(self) -> str:
        with self._lock:
            text = "".join(self._chunks)
            self._chunks.clear()
        return text


class StreamHandle:
    """Single-pass view over a process's stdout lines.

    The handle owns the process: ``close()`` kills it if still running and
    waits for its exit. Reaching the end of stdout closes the handle
    automatically. Non-zero exit codes are never raised; inspect
    ``exit_code`` once the stream ends.

    Example::

        with executor.stream(["logs", "-f", "web"]) as handle:
            for line in handle:
                print(line)
        print(handle.exit_code, handle.read_remaining_stderr())
    """

    def __init__(self, process: ProcessHandle) -> None:
        self._process = process
        self._closed = False
        self._close_lock = threading.Lock()
        self._next_line: str | None = None
        self._exhausted = False
        self._stderr = _StderrPump(process)

    @property
    def process(self) -> ProcessHandle:
        return self._process

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_active(self) -> bool:
        return not self._closed and self._process.is_alive()

    @property
    def exit_code(self) -> int | None:
        return self._process.exit_code

    def has_next(self) -> bool:
        if self._exhausted:
            return False
        if self._next_line is not None:
            return True
        raw = b""
        if not self._closed:
            try:
                raw = self._process.stdout.readline()
            except (OSError, ValueError):
                raw = b""
        if not raw:
            self._exhausted = True
            self.close()
            return False
        self._next_line = decode_output(raw).rstrip("\r\n")
        return True

    def next_line(self) -> str:
        if self._next_line is None:
            raise RuntimeError("next_line() called without a pending line; call has_next() first")
        line = self._next_line
        self._next_line = None
        return line

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        if not self.has_next():
            raise StopIteration
        return self.next_line()

    def read_remaining_stderr(self) -> str:
        """Stderr captured since the last call; complete once the process has exited."""
        if not self._process.is_alive():
            self._stderr.join()
        return self._stderr.take()

    def wait_for_exit(self, timeout: float | None = None) -> int:
        return self._process.wait_for_exit(timeout=timeout)

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self._process.is_alive():
            logger.debug("Closing live stream pid=%s", self._process.pid)
            self._process.terminate_forcibly()
        exit_code = self._process.wait_for_exit()
        self._stderr.join()
        with suppress(OSError):
            self._process.stdout.close()
        if self._stderr.finished:
            with suppress(OSError):
                self._process.stderr.close()
        logger.debug("Stream closed pid=%s exit_code=%s", self._process.pid, exit_code)

    def __enter__(self) -> StreamHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
