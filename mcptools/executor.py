"""Process execution for proxied tools.

Arguments are bound as environment variables of the child process. Script
tools are spawned directly; command tools run through the configured shell
so their body can use ``$name`` expansion. Values are passed through
unescaped: registered tools are local code the user already controls.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .config import DEFAULT_SHELL, ProxySettings, load_settings
from .errors import ExecutionError, ToolTimeoutError, ValidationError
from .registry import ToolDefinition
from .schema import ParameterSpec

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"


@dataclass
class ExecutionResult:
    """Outcome of a successful tool run.

    Attributes:
        output: Captured standard output with surrounding whitespace removed.
        exit_code: Process exit status (always ``0`` for a returned result).
        stderr: Captured standard error text.
    """

    output: str
    exit_code: int = 0
    stderr: str = ""


def render_value(value: Any) -> str:
    """Render a JSON-decoded argument value as environment variable text.

    * ``bool`` becomes ``true`` or ``false``.
    * ``int`` becomes decimal text.
    * ``float`` with an integral value becomes plain integer text (``5.0``
      renders as ``5``); other floats use their shortest round-trip form.
    * ``str`` is passed verbatim.
    * ``None`` becomes an empty string.
    * Lists and objects become compact JSON.
    """

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e16:
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def bind_arguments(arguments: Mapping[str, Any] | None) -> dict[str, str]:
    """Turn call arguments into environment variable assignments.

    Every key is bound, declared in the signature or not.

    Raises:
        ValidationError: If a key or value cannot be stored in an environment
            variable.
    """

    bound: dict[str, str] = {}
    for key, value in (arguments or {}).items():
        if not isinstance(key, str) or not key or "=" in key or "\0" in key:
            raise ValidationError(f"Invalid argument name {key!r}.")
        text = render_value(value)
        if "\0" in text:
            raise ValidationError(f"Argument '{key}' contains a NUL character.")
        bound[key] = text
    return bound


class ToolExecutor:
    """Runs tool definitions as child processes.

    The executor keeps no per-call state: every call spawns an independent
    process and results are never cached.
    """

    def __init__(self, settings: ProxySettings | None = None) -> None:
        self._settings = settings if settings is not None else load_settings()

    @property
    def shell(self) -> str:
        return self._settings.shell or DEFAULT_SHELL

    def build_environment(
        self, arguments: Mapping[str, Any] | None, parameters: ParameterSpec = ()
    ) -> dict[str, str]:
        """Return the current environment overlaid with bound arguments.

        Declared parameters missing from ``arguments`` are removed so that a
        variable inherited from the proxy never stands in for them.
        """

        env = dict(os.environ)
        for param in parameters:
            env.pop(param.name, None)
        env.update(bind_arguments(arguments))
        return env

    def build_argv(self, definition: ToolDefinition) -> list[str]:
        """Return the command line used to run ``definition``."""

        if definition.script_path:
            return [str(Path(definition.script_path).expanduser())]
        if definition.command:
            return [self.shell, "-c", definition.command]
        raise ValidationError(f"Tool '{definition.name}' has no script or command.")

    def execute(
        self,
        definition: ToolDefinition,
        arguments: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run a tool and capture its output.

        Args:
            definition: The tool to run.
            arguments: JSON-decoded call arguments, bound as environment
                variables.
            timeout: Seconds to wait before killing the process. Defaults to
                the configured tool timeout; ``None`` waits indefinitely.

        Returns:
            The :class:`ExecutionResult` of a zero-exit run.

        Raises:
            ValidationError: If the arguments cannot be bound.
            ToolTimeoutError: If the process was killed after ``timeout``.
            ExecutionError: If the process could not start or exited non-zero.
        """

        env = self.build_environment(arguments, definition.parameters)
        argv = self.build_argv(definition)
        limit = timeout if timeout is not None else self._settings.tool_timeout

        logger.debug("Running tool '%s': %s", definition.name, argv)

        try:
            process = subprocess.Popen(
                argv,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=_POSIX,
            )
        except OSError as exc:
            message = f"Tool '{definition.name}' failed to start: {exc}"
            logger.warning(message)
            raise ExecutionError(message) from exc

        try:
            stdout, stderr = process.communicate(timeout=limit)
        except subprocess.TimeoutExpired as exc:
            _kill(process)
            _stdout, stderr = process.communicate()
            message = f"Tool '{definition.name}' timed out after {limit:g} seconds."
            logger.warning(message)
            raise ToolTimeoutError(message, timeout=limit or 0.0, stderr=stderr.strip()) from exc
        except BaseException:
            _kill(process)
            process.wait()
            raise

        if process.returncode != 0:
            message = f"Tool '{definition.name}' exited with status {process.returncode}."
            logger.warning(message)
            raise ExecutionError(message, exit_code=process.returncode, stderr=stderr.strip())

        logger.debug("Tool '%s' finished", definition.name)
        return ExecutionResult(
            output=stdout.strip(),
            exit_code=process.returncode,
            stderr=stderr.strip(),
        )


def _kill(process: subprocess.Popen) -> None:
    """Kill a tool process together with any children it started."""

    if _POSIX:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        return
    process.kill()
