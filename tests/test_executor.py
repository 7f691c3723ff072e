from __future__ import annotations

import os
import sys
import time
from pathlib import Path
from typing import Any, Callable

import pytest

from mcptools.config import ProxySettings
from mcptools.errors import ExecutionError, ToolTimeoutError, ValidationError
from mcptools.executor import ToolExecutor, bind_arguments, render_value
from mcptools.registry import ToolDefinition
from mcptools.schema import parse_signature

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/sh"),
    reason="requires a POSIX shell",
)


def _command_tool(command: str, signature: str = "") -> ToolDefinition:
    return ToolDefinition(
        name="cmd",
        description="inline",
        parameters=parse_signature(signature),
        signature=signature,
        command=command,
    )


def _script_tool(path: Path, signature: str = "") -> ToolDefinition:
    return ToolDefinition(
        name="script",
        description="script",
        parameters=parse_signature(signature),
        signature=signature,
        script_path=str(path),
    )


@pytest.fixture
def executor(settings: ProxySettings) -> ToolExecutor:
    return ToolExecutor(settings)


@pytest.mark.parametrize(
    "value, expected",
    [
        (5, "5"),
        (-12, "-12"),
        (2.5, "2.5"),
        (5.0, "5"),
        (True, "true"),
        (False, "false"),
        ("hello world", "hello world"),
        (None, ""),
        ([1, "a"], '[1,"a"]'),
        ({"k": 1}, '{"k":1}'),
    ],
)
def test_render_value(value: Any, expected: str) -> None:
    assert render_value(value) == expected


def test_bind_arguments_rejects_unrepresentable_names() -> None:
    with pytest.raises(ValidationError):
        bind_arguments({"a=b": 1})
    with pytest.raises(ValidationError):
        bind_arguments({"": 1})
    with pytest.raises(ValidationError):
        bind_arguments({"a": "nul\0byte"})


def test_script_sees_arguments_as_environment(
    executor: ToolExecutor, make_script: Callable[[str, str], Path]
) -> None:
    script = make_script("add.sh", 'echo "$a + $b = $(($a+$b))"')

    result = executor.execute(_script_tool(script, "a:int,b:int"), {"a": 5, "b": 3})

    assert "5 + 3 = 8" in result.output
    assert result.exit_code == 0


def test_inline_command_expands_variables(executor: ToolExecutor) -> None:
    tool = _command_tool('echo "$a + $b = $(($a+$b))"', "a:int,b:int")

    result = executor.execute(tool, {"a": 5, "b": 3})

    assert result.output == "5 + 3 = 8"


def test_output_is_trimmed(executor: ToolExecutor) -> None:
    result = executor.execute(_command_tool("printf '\\n\\n  padded  \\n\\n'"), {})

    assert result.output == "padded"


def test_absent_parameters_are_not_set(executor: ToolExecutor, monkeypatch: Any) -> None:
    """A declared parameter missing from the call is unset even if the proxy inherited it."""

    monkeypatch.setenv("b", "inherited")
    tool = _command_tool('echo "${a}-${b:-unset}"', "a:int,b:int")

    assert executor.execute(tool, {"a": 1}).output == "1-unset"


def test_undeclared_arguments_are_still_bound(executor: ToolExecutor) -> None:
    tool = _command_tool('echo "$extra"', "a:int")

    assert executor.execute(tool, {"extra": True}).output == "true"


def test_values_are_passed_verbatim(executor: ToolExecutor) -> None:
    """Argument values reach the command as data and are never re-evaluated by the shell."""

    tool = _command_tool('printf "%s" "$msg"', "msg")

    assert executor.execute(tool, {"msg": "$(not expanded) ; `nor this`"}).output == (
        "$(not expanded) ; `nor this`"
    )


def test_non_zero_exit_raises_execution_error(executor: ToolExecutor) -> None:
    tool = _command_tool("echo partial; echo broken >&2; exit 3")

    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(tool, {})

    assert excinfo.value.exit_code == 3
    assert excinfo.value.stderr == "broken"


def test_missing_script_raises_execution_error(executor: ToolExecutor, tmp_path: Path) -> None:
    tool = _script_tool(tmp_path / "does-not-exist.sh")

    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(tool, {})

    assert excinfo.value.exit_code is None
    assert isinstance(excinfo.value.__cause__, OSError)


def test_non_executable_script_raises_execution_error(
    executor: ToolExecutor, tmp_path: Path
) -> None:
    script = tmp_path / "plain.sh"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    script.chmod(0o644)

    with pytest.raises(ExecutionError):
        executor.execute(_script_tool(script), {})


def test_timeout_kills_the_process(executor: ToolExecutor) -> None:
    """The process group is killed as soon as the timeout expires."""

    started = time.monotonic()

    with pytest.raises(ToolTimeoutError) as excinfo:
        executor.execute(_command_tool("sleep 5"), {}, timeout=0.3)

    assert time.monotonic() - started < 4
    assert excinfo.value.timeout == pytest.approx(0.3)


def test_configured_timeout_is_the_default(registry_path: Path) -> None:
    executor = ToolExecutor(ProxySettings(registry_path=registry_path, tool_timeout=0.3))

    with pytest.raises(ToolTimeoutError):
        executor.execute(_command_tool("sleep 5"), {})


def test_custom_shell_is_used(registry_path: Path) -> None:
    executor = ToolExecutor(ProxySettings(registry_path=registry_path, shell="/bin/sh"))

    assert executor.build_argv(_command_tool("echo hi")) == ["/bin/sh", "-c", "echo hi"]


def test_script_path_expands_user(executor: ToolExecutor, monkeypatch: Any, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))

    argv = executor.build_argv(_script_tool(Path("~/bin/tool.sh")))

    assert argv == [str(tmp_path / "bin" / "tool.sh")]
