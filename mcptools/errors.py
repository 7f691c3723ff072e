"""Error taxonomy for the tool proxy.

Every error carries a JSON-RPC style ``code`` so that the MCP server layer
can turn it into a protocol error response without inspecting messages.
"""

from __future__ import annotations

from typing import Optional

# JSON-RPC codes. INVALID_PARAMS and INTERNAL_ERROR match mcp.types; the
# remaining two live in the implementation-defined server error range.
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_NOT_FOUND = -32002
TOOL_EXECUTION_FAILED = -32000


class ProxyError(Exception):
    """Base exception for all tool proxy errors."""

    code: int = INTERNAL_ERROR


class ValidationError(ProxyError):
    """Raised when a registration or a set of call arguments is invalid."""

    code = INVALID_PARAMS


class NotFoundError(ProxyError):
    """Raised when a tool name is not present in the registry."""

    code = TOOL_NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is not registered.")
        self.name = name


class PersistenceError(ProxyError):
    """Raised when the registry file cannot be read or written."""

    code = INTERNAL_ERROR


class ExecutionError(ProxyError):
    """Raised when a tool process fails to start or exits non-zero.

    Attributes:
        exit_code: Process exit status, or ``None`` when the process never ran.
        stderr: Captured standard error text, possibly empty.
    """

    code = TOOL_EXECUTION_FAILED

    def __init__(
        self, message: str, exit_code: Optional[int] = None, stderr: str = ""
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class ToolTimeoutError(ExecutionError):
    """Raised when a tool process is killed after exceeding its timeout."""

    def __init__(self, message: str, timeout: float, stderr: str = "") -> None:
        super().__init__(message, exit_code=None, stderr=stderr)
        self.timeout = timeout
