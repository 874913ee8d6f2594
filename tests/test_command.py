from __future__ import annotations

import pytest

from containercli.command import CommandPreview, CommandSpec, as_spec


def test_spec_argv_appends_extra_args() -> None:
    spec = CommandSpec.of("ps", "-a").with_args("--format", "{{.ID}}")
    assert spec.argv == ["ps", "-a", "--format", "{{.ID}}"]
    assert spec.args == ("ps", "-a")


def test_with_timeout_returns_new_spec() -> None:
    spec = CommandSpec.of("pull", "alpine")
    timed = spec.with_timeout(120.0)
    assert spec.timeout is None
    assert timed.timeout == 120.0
    assert timed.args == spec.args


def test_preview_quotes_arguments() -> None:
    preview = CommandSpec.of("run", "-e", "GREETING=hello world", "alpine").preview()
    assert preview == CommandPreview(
        command_line="docker run -e 'GREETING=hello world' alpine",
        args=("run", "-e", "GREETING=hello world", "alpine"),
    )
    assert str(preview) == preview.command_line


def test_as_spec_accepts_sequences_and_applies_timeout() -> None:
    spec = as_spec(["images"], timeout=5.0)
    assert spec.args == ("images",)
    assert spec.timeout == 5.0
    assert as_spec(("ps",)).timeout is None


def test_as_spec_keeps_spec_timeout_when_none_given() -> None:
    spec = CommandSpec.of("ps", timeout=3.0)
    assert as_spec(spec) is spec
    assert as_spec(spec, timeout=1.0).timeout == 1.0


def test_as_spec_rejects_plain_string() -> None:
    with pytest.raises(TypeError):
        as_spec("ps -a")
