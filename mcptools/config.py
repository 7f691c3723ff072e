"""Settings for the mcptools proxy.

Settings are read from environment variables into a :class:`ProxySettings`
instance which is passed explicitly to the registry, executor and server.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ValidationError

PROXY_CONFIG_ENV = "MCPTOOLS_PROXY_CONFIG"
SHELL_ENV = "MCPTOOLS_SHELL"
TOOL_TIMEOUT_ENV = "MCPTOOLS_TOOL_TIMEOUT"
LOG_LEVEL_ENV = "MCPTOOLS_LOG_LEVEL"

DEFAULT_SHELL = "/bin/sh"
DEFAULT_LOG_LEVEL = "WARNING"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValidationError):
    """Raised when a setting has an invalid value."""


def default_registry_path() -> Path:
    """Return the per-user location of the proxy tool registry."""

    return Path.home() / ".mcpt" / "proxy_config.json"


@dataclass
class ProxySettings:
    """Runtime options for the proxy.

    Attributes:
        registry_path: JSON file holding registered tools.
        shell: Interpreter used to run inline commands with ``-c``.
        tool_timeout: Seconds a tool may run before it is killed, or ``None``
            for no limit.
        log_level: Name of the logging level used by the CLI.
    """

    registry_path: Path
    shell: str = DEFAULT_SHELL
    tool_timeout: Optional[float] = None
    log_level: str = DEFAULT_LOG_LEVEL


def _parse_timeout(raw: str) -> Optional[float]:
    text = raw.strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError as exc:
        message = f"{TOOL_TIMEOUT_ENV} must be a number of seconds, got '{raw}'."
        raise ConfigError(message) from exc
    if value <= 0:
        message = f"{TOOL_TIMEOUT_ENV} must be positive, got '{raw}'."
        raise ConfigError(message)
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> ProxySettings:
    """Build settings from environment variables.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        A populated :class:`ProxySettings` instance.

    Raises:
        ConfigError: If a variable holds an invalid value.
    """

    source = os.environ if env is None else env

    raw_path = source.get(PROXY_CONFIG_ENV, "").strip()
    registry_path = Path(raw_path).expanduser() if raw_path else default_registry_path()

    shell = source.get(SHELL_ENV, "").strip() or DEFAULT_SHELL

    tool_timeout = _parse_timeout(source.get(TOOL_TIMEOUT_ENV, ""))

    log_level = (source.get(LOG_LEVEL_ENV, "").strip() or DEFAULT_LOG_LEVEL).upper()
    if log_level not in _LOG_LEVELS:
        message = f"{LOG_LEVEL_ENV} must be one of {', '.join(sorted(_LOG_LEVELS))}, got '{log_level}'."
        raise ConfigError(message)

    return ProxySettings(
        registry_path=registry_path,
        shell=shell,
        tool_timeout=tool_timeout,
        log_level=log_level,
    )
