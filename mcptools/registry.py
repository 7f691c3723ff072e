"""Persistent registry of proxied tools.

This module owns the on-disk representation of registered tools and the
in-memory registry that enforces registration rules:

* :class:`ToolRegistryStore` loads and atomically saves the JSON file.
* :class:`ToolRegistry` validates registrations and flushes every mutation
  before returning.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import NotFoundError, PersistenceError, ValidationError
from .schema import ParameterSpec, format_signature, parse_signature, spec_from_list

logger = logging.getLogger(__name__)

DESCRIPTION_KEY = "description"
PARAMETERS_KEY = "parameters"
SCRIPT_PATH_KEY = "scriptPath"
COMMAND_KEY = "command"


@dataclass(frozen=True)
class ToolDefinition:
    """A registered tool backed by a script file or an inline command.

    Attributes:
        name: Unique tool name.
        description: Human-readable description.
        parameters: Parsed parameter spec, for display and input schemas.
        signature: The raw signature string the parameters were parsed from.
        script_path: Executable to run, when the tool is script-backed.
        command: Shell command body, when the tool is command-backed.
    """

    name: str
    description: str
    parameters: ParameterSpec
    signature: str = ""
    script_path: Optional[str] = None
    command: Optional[str] = None

    @property
    def source(self) -> str:
        """Return the script path or command that backs this tool."""

        return self.script_path or self.command or ""

    def to_mapping(self) -> Dict[str, Any]:
        """Return the JSON object stored for this tool."""

        data: Dict[str, Any] = {
            DESCRIPTION_KEY: self.description,
            PARAMETERS_KEY: self.signature,
        }
        if self.script_path:
            data[SCRIPT_PATH_KEY] = self.script_path
        else:
            data[COMMAND_KEY] = self.command
        return data


def _clean_source(value: Any) -> Optional[str]:
    """Return a stripped execution source, or ``None`` when it is blank."""

    if not isinstance(value, str):
        return None
    return value.strip() or None


def _normalize_name(name: Optional[str]) -> str:
    return (name or "").strip()


def _tool_from_mapping(name: str, data: Any, path: Path) -> ToolDefinition:
    """Create a :class:`ToolDefinition` from a stored JSON object.

    Raises:
        PersistenceError: If the entry is not an object or has no execution
            source.
    """

    if not isinstance(data, dict):
        message = f"Tool '{name}' in {path} must be a JSON object."
        raise PersistenceError(message)

    description = data.get(DESCRIPTION_KEY, "")
    if not isinstance(description, str):
        description = str(description)

    raw_parameters = data.get(PARAMETERS_KEY, "")
    if isinstance(raw_parameters, list):
        parameters = spec_from_list(raw_parameters)
        signature = format_signature(parameters)
    elif isinstance(raw_parameters, str):
        signature = raw_parameters
        parameters = parse_signature(signature)
    else:
        signature = ""
        parameters = ()

    script_path = _clean_source(data.get(SCRIPT_PATH_KEY))
    command = _clean_source(data.get(COMMAND_KEY))

    if script_path is None and command is None:
        message = f"Tool '{name}' in {path} has neither '{SCRIPT_PATH_KEY}' nor '{COMMAND_KEY}'."
        raise PersistenceError(message)

    return ToolDefinition(
        name=name,
        description=description,
        parameters=parameters,
        signature=signature,
        script_path=script_path,
        command=None if script_path else command,
    )


class ToolRegistryStore:
    """Loads and saves the registry file.

    A missing file is an empty registry. Any other read problem is a hard
    failure so that a damaged file is never silently replaced.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        """Return the location of the registry file."""

        return self._path

    def load(self) -> Dict[str, ToolDefinition]:
        """Read all tool definitions from disk.

        Returns:
            A mapping from tool name to definition.

        Raises:
            PersistenceError: If the file cannot be read or is malformed.
        """

        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No registry file at %s, starting empty", self._path)
            return {}
        except OSError as exc:
            raise PersistenceError(f"Failed to read tool registry: {self._path}") from exc

        if not text.strip():
            return {}

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Invalid JSON in tool registry: {self._path}") from exc

        if not isinstance(data, dict):
            raise PersistenceError(f"Tool registry must contain a JSON object: {self._path}")

        tools: Dict[str, ToolDefinition] = {}
        for name, entry in data.items():
            tools[name] = _tool_from_mapping(name, entry, self._path)

        logger.debug("Loaded %d tool(s) from %s", len(tools), self._path)
        return tools

    def save(self, tools: Dict[str, ToolDefinition]) -> None:
        """Atomically replace the registry file with ``tools``.

        The content is written to a temporary file in the same directory,
        synced, then renamed over the target.

        Raises:
            PersistenceError: If any filesystem operation fails.
        """

        payload = {name: tools[name].to_mapping() for name in sorted(tools)}
        text = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"

        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=directory
            )
        except OSError as exc:
            raise PersistenceError(f"Failed to write tool registry: {self._path}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug("Could not remove temporary file %s", tmp_name)
            raise PersistenceError(f"Failed to write tool registry: {self._path}") from exc

        logger.debug("Saved %d tool(s) to %s", len(tools), self._path)


class ToolRegistry:
    """In-memory view of the registry with synchronous persistence.

    The registry is loaded once at construction. ``add_tool`` and
    ``remove_tool`` hold a lock across read-modify-flush so that concurrent
    mutations never lose updates, and roll the in-memory state back when the
    flush fails.
    """

    def __init__(self, store: ToolRegistryStore) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._tools: Dict[str, ToolDefinition] = store.load()

    @property
    def store(self) -> ToolRegistryStore:
        return self._store

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def reload(self) -> None:
        """Replace the in-memory state with the current file contents."""

        with self._lock:
            self._tools = self._store.load()

    def add_tool(
        self,
        name: str,
        description: str,
        signature: str,
        script_path: Optional[str] = None,
        command: Optional[str] = None,
    ) -> ToolDefinition:
        """Register or replace a tool and persist the registry.

        Surrounding whitespace is stripped from the name and both sources; a
        blank source counts as absent. When both ``script_path`` and
        ``command`` are given the script path wins and the command is dropped.

        Args:
            name: Unique tool name.
            description: Human-readable description.
            signature: Parameter signature such as ``a:int,b:int``.
            script_path: Executable backing the tool.
            command: Inline shell command backing the tool.

        Returns:
            The stored :class:`ToolDefinition`.

        Raises:
            ValidationError: If the name is empty or no source is given.
            PersistenceError: If the registry cannot be written.
        """

        name = _normalize_name(name)
        if not name:
            raise ValidationError("Tool name must not be empty.")

        script_path = _clean_source(script_path)
        command = _clean_source(command)
        if script_path is None and command is None:
            message = f"Tool '{name}' needs either a script path or a command."
            raise ValidationError(message)

        if script_path is not None and command is not None:
            logger.warning(
                "Tool '%s' was given both a script and a command; using the script", name
            )
            command = None

        signature = signature or ""
        definition = ToolDefinition(
            name=name,
            description=description or "",
            parameters=parse_signature(signature),
            signature=signature,
            script_path=script_path,
            command=command,
        )

        with self._lock:
            previous = self._tools.get(name)
            self._tools[name] = definition
            try:
                self._store.save(self._tools)
            except PersistenceError:
                if previous is None:
                    del self._tools[name]
                else:
                    self._tools[name] = previous
                raise

        logger.info("Registered tool '%s'", name)
        return definition

    def remove_tool(self, name: str) -> ToolDefinition:
        """Unregister a tool and persist the registry.

        Returns:
            The definition that was removed.

        Raises:
            NotFoundError: If no tool has this name.
            PersistenceError: If the registry cannot be written.
        """

        name = _normalize_name(name)
        with self._lock:
            previous = self._tools.pop(name, None)
            if previous is None:
                raise NotFoundError(name)
            try:
                self._store.save(self._tools)
            except PersistenceError:
                self._tools[name] = previous
                raise

        logger.info("Unregistered tool '%s'", name)
        return previous

    def list_tools(self) -> List[ToolDefinition]:
        """Return a snapshot of all definitions sorted by name."""

        with self._lock:
            snapshot = list(self._tools.values())
        return sorted(snapshot, key=lambda tool: tool.name)

    def lookup(self, name: str) -> Tuple[Optional[ToolDefinition], bool]:
        """Return ``(definition, found)`` for ``name``."""

        definition = self._tools.get(_normalize_name(name))
        return definition, definition is not None

    def get(self, name: str) -> ToolDefinition:
        """Return the definition for ``name`` or raise :class:`NotFoundError`."""

        definition, found = self.lookup(name)
        if not found or definition is None:
            raise NotFoundError(name)
        return definition
