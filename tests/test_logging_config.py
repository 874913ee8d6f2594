from __future__ import annotations

import io
import logging as py_logging
from pathlib import Path

import containercli.logging as cli_logging
from containercli.errors import CommandError


def test_default_log_path_is_expanded() -> None:
    path = cli_logging.default_log_path()

    assert path.is_absolute()
    assert path.name == "containercli.log"


def test_warning_alias_maps_to_warning_level() -> None:
    logger = cli_logging.configure_logging("warning")

    assert logger.level == cli_logging.LOG_LEVELS["WARN"]


def test_unknown_log_level_falls_back_to_info() -> None:
    logger = cli_logging.configure_logging("not-a-level")

    assert logger.level == py_logging.INFO


def test_configure_logging_resets_existing_handlers() -> None:
    logger = cli_logging.configure_logging("INFO")
    assert len(logger.handlers) == 1

    logger = cli_logging.configure_logging("INFO")

    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_module_loggers_write_key_value_records() -> None:
    stream = io.StringIO()
    cli_logging.configure_logging("DEBUG", stream=stream)

    py_logging.getLogger("containercli.executor").debug("Executing command=%s", "docker ps")

    assert "DEBUG containercli.executor" in stream.getvalue()
    assert "command=docker ps" in stream.getvalue()


def test_configure_logging_adds_debug_file_handler(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "containercli.log"

    logger = cli_logging.configure_logging("ERROR", log_file=log_file)
    file_handlers = [
        handler for handler in logger.handlers if isinstance(handler, py_logging.FileHandler)
    ]

    assert len(file_handlers) == 1
    assert file_handlers[0].level == py_logging.DEBUG
    assert log_file.exists()


def test_configure_logging_ignores_file_handler_oserror(monkeypatch, tmp_path: Path) -> None:
    def raise_os_error(*args: object, **kwargs: object) -> py_logging.Handler:
        raise OSError("disk full")

    monkeypatch.setattr(cli_logging.py_logging, "FileHandler", raise_os_error)

    logger = cli_logging.configure_logging("INFO", log_file=tmp_path / "nope" / "containercli.log")

    assert len(logger.handlers) == 1


def test_redact_argv_masks_login_password() -> None:
    argv = ["docker", "login", "-u", "ci", "-p", "hunter2", "registry.example.com"]
    assert cli_logging.redact_argv(argv) == [
        "docker",
        "login",
        "-u",
        "ci",
        "-p",
        cli_logging.REDACTED,
        "registry.example.com",
    ]
    assert cli_logging.redact_argv(["docker", "login", "--password=hunter2"]) == [
        "docker",
        "login",
        f"--password={cli_logging.REDACTED}",
    ]


def test_redact_argv_keeps_port_mappings_outside_login() -> None:
    argv = ["docker", "run", "-p", "8080:80", "nginx"]
    assert cli_logging.redact_argv(argv) == argv


def test_redact_argv_masks_secret_environment_values_only() -> None:
    argv = ["run", "-e", "DB_PASSWORD=s3cret", "--env=LOG_LEVEL=debug", "--env=API_KEY=abc", "alpine"]
    assert cli_logging.redact_argv(argv) == [
        "run",
        "-e",
        f"DB_PASSWORD={cli_logging.REDACTED}",
        "--env=LOG_LEVEL=debug",
        f"--env=API_KEY={cli_logging.REDACTED}",
        "alpine",
    ]


def test_command_failed_message_does_not_leak_secrets() -> None:
    error = CommandError.command_failed(("docker", "login", "--password", "hunter2"), 1, "", "denied")
    assert "hunter2" not in error.message
    assert "hunter2" not in error.diagnostic()
    assert error.command[-1] == "hunter2"
