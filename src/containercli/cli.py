"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path

from .config import AppConfig, load_config, retry_predicate
from .errors import CommandError, ExitCode, FailureKind, shell_exit_status, user_facing_error
from .executor import CommandExecutor
from .logging import configure_logging, default_log_path
from .runtime import EngineConfig, RuntimeKind, detect_runtime

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_VALID_RUNTIMES = tuple(kind.value for kind in RuntimeKind)
_VALID_RETRY_ON = ("default", "transient", "timeout", "all")

ExecutorFactory = Callable[[EngineConfig], CommandExecutor]


def _timeout_type(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--timeout must be a number of seconds") from exc
    if seconds <= 0:
        raise argparse.ArgumentTypeError("--timeout must be greater than zero")
    return seconds


def _retries_type(value: str) -> int:
    try:
        attempts = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--retries must be an integer") from exc
    if attempts < 1 or attempts > 20:
        raise argparse.ArgumentTypeError("--retries must be between 1 and 20")
    return attempts


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="containercli",
        description="Run container engine CLI commands with timeouts and retries.",
    )
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--binary", default=None, help="Engine executable to invoke")
    parser.add_argument("--runtime", choices=_VALID_RUNTIMES, default=None)
    parser.add_argument("--detect", action="store_true", help="Detect the engine runtime on this host")
    parser.add_argument("--timeout", type=_timeout_type, default=None)
    parser.add_argument("--retries", type=_retries_type, default=None, help="Maximum attempts")
    parser.add_argument("--retry-on", choices=_VALID_RETRY_ON, default=None)
    parser.add_argument("--follow", action="store_true", help="Stream stdout lines as they arrive")
    parser.add_argument("--dry-run", action="store_true", help="Print the command without running it")
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument("engine_args", nargs=argparse.REMAINDER, help="Arguments passed to the engine")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    namespace = parser.parse_args(argv)
    engine_args = list(namespace.engine_args)
    if engine_args and engine_args[0] == "--":
        engine_args = engine_args[1:]
    if not engine_args:
        parser.error("missing engine arguments (for example: containercli -- ps -a)")
    namespace.engine_args = engine_args
    return namespace


def resolve_engine_config(namespace: argparse.Namespace, config: AppConfig) -> EngineConfig:
    if namespace.detect:
        engine = detect_runtime(default_timeout_seconds=config.default_timeout_seconds)
    else:
        engine = config.engine_config()
    updates: dict[str, object] = {}
    if namespace.runtime:
        updates["runtime"] = RuntimeKind(namespace.runtime)
    if namespace.binary:
        updates["binary"] = namespace.binary.strip()
    if namespace.timeout is not None:
        updates["default_timeout_seconds"] = namespace.timeout
    if config.env and namespace.detect:
        updates["env"] = {**engine.env, **config.env}
    if updates:
        engine = engine.model_copy(update=updates)
    return engine


def run_follow(executor: CommandExecutor, engine_args: list[str]) -> int:
    with executor.stream(engine_args) as handle:
        for line in handle:
            print(line, flush=True)
    stderr = handle.read_remaining_stderr()
    if stderr:
        sys.stderr.write(stderr)
    return shell_exit_status(handle.exit_code or 0)


def run_command(executor: CommandExecutor, namespace: argparse.Namespace, config: AppConfig) -> int:
    policy = config.retry_policy()
    if namespace.retries is not None:
        policy = replace(policy, max_attempts=namespace.retries)
    if namespace.retry_on is not None:
        policy = replace(policy, retry_on=retry_predicate(namespace.retry_on))
    result = executor.execute_with_retry(namespace.engine_args, policy)
    sys.stdout.write(result.stdout)
    if result.stderr:
        sys.stderr.write(result.stderr)
    return int(ExitCode.SUCCESS)


def _echo_engine_output(exc: CommandError) -> None:
    failure = exc.last_failure if exc.kind is FailureKind.RETRY_EXHAUSTED and exc.last_failure else exc
    if failure.kind is not FailureKind.COMMAND_FAILED:
        return
    if failure.stdout:
        sys.stdout.write(failure.stdout)
    if failure.stderr:
        sys.stderr.write(failure.stderr)


def main(
    argv: Sequence[str] | None = None,
    *,
    executor_factory: ExecutorFactory | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    try:
        namespace = parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)

    try:
        engine = resolve_engine_config(namespace, config)
        executor = (executor_factory or CommandExecutor)(engine)
        if namespace.dry_run:
            print(executor.preview(namespace.engine_args).command_line)
            return int(ExitCode.SUCCESS)
        if namespace.follow:
            logger.debug("Starting follow flow")
            return run_follow(executor, namespace.engine_args)
        logger.debug("Starting command flow")
        return run_command(executor, namespace, config)
    except CommandError as exc:
        logger.error(
            "Handled CommandError (kind=%s): %s",
            exc.kind.value,
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        _echo_engine_output(exc)
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return exc.exit_status
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return int(ExitCode.CANCELLED)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
