"""Logging setup for the `containercli` logger tree.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed by ``configure_logging`` from the CLI (or by an embedding
application). Engine command lines are logged through ``redact_argv`` so
registry passwords and secret environment values never reach a log file.
"""

from __future__ import annotations

import logging as py_logging
import re
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import TextIO

ROOT_LOGGER = "containercli"
LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEFAULT_LOG_PATH = Path("~/.config/containercli/logs/containercli.log")
_FALLBACK_LOG_PATH = Path(".containercli/logs/containercli.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"

REDACTED = "***"
_SECRET_FLAGS = frozenset({"--password", "--secret", "--token"})
_ASSIGNMENT_FLAGS = frozenset({"-e", "--env", "--build-arg"})
_SECRET_NAME = re.compile(r"PASSWORD|PASSWD|SECRET|TOKEN|API_?KEY|CREDENTIAL", re.IGNORECASE)


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    return resolved if resolved.is_absolute() else resolved.resolve()


def normalize_level(level: str) -> str:
    normalized = level.strip().upper()
    return "WARN" if normalized == "WARNING" else normalized


def _is_secret_flag(flag: str, login: bool) -> bool:
    # `-p` is the password only for `login`; elsewhere it publishes ports.
    return flag in _SECRET_FLAGS or (login and flag == "-p")


def _mask(flag: str, value: str, login: bool) -> str:
    if _is_secret_flag(flag, login):
        return REDACTED
    if flag in _ASSIGNMENT_FLAGS:
        name, sep, _ = value.partition("=")
        if sep and _SECRET_NAME.search(name):
            return f"{name}={REDACTED}"
    return value


def redact_argv(argv: Iterable[str]) -> list[str]:
    """Mask secret-bearing values in an engine argument vector."""
    args = list(argv)
    login = "login" in args[:2]
    redacted: list[str] = []
    pending: str | None = None
    for arg in args:
        if pending is not None:
            redacted.append(_mask(pending, arg, login))
            pending = None
            continue
        flag, sep, value = arg.partition("=")
        if sep and flag.startswith("-"):
            redacted.append(f"{flag}={_mask(flag, value, login)}")
            continue
        redacted.append(arg)
        if _is_secret_flag(arg, login) or arg in _ASSIGNMENT_FLAGS:
            pending = arg
    return redacted


def _file_handler(log_file: str | Path) -> py_logging.Handler | None:
    try:
        path = Path(log_file).expanduser()
    except RuntimeError:
        path = Path(log_file)
    if not path.is_absolute():
        path = path.resolve()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(path, encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    return handler


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = LOG_LEVELS.get(normalize_level(level), py_logging.INFO)
    logger = py_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    handlers: list[py_logging.Handler] = [console]
    if log_file:
        file_handler = _file_handler(log_file)
        if file_handler is not None:
            handlers.append(file_handler)

    formatter = py_logging.Formatter(_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger
