"""MCP proxy server exposing registered local tools.

:class:`ProxyServer` is the façade used by both the command line and the
MCP protocol layer. It wires the :class:`ToolRegistry` to the
:class:`ToolExecutor` and converts results and errors into ``mcp.types``
objects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError

from .config import ProxySettings, load_settings
from .errors import ExecutionError, NotFoundError, ProxyError, ToolTimeoutError
from .executor import ToolExecutor
from .registry import ToolDefinition, ToolRegistry, ToolRegistryStore
from .schema import build_input_schema

logger = logging.getLogger(__name__)

SERVER_NAME = "mcptools-proxy"


def to_error_data(exc: ProxyError) -> types.ErrorData:
    """Convert a proxy error into a JSON-RPC error payload."""

    data: Optional[Dict[str, Any]] = None
    if isinstance(exc, ExecutionError):
        data = {"exitCode": exc.exit_code, "stderr": exc.stderr}
        if isinstance(exc, ToolTimeoutError):
            data["timeout"] = exc.timeout
    return types.ErrorData(code=exc.code, message=str(exc), data=data)


def _error_result(exc: ExecutionError) -> types.CallToolResult:
    lines = [str(exc)]
    if exc.exit_code is not None:
        lines.append(f"exit code: {exc.exit_code}")
    if exc.stderr:
        lines.append(f"stderr: {exc.stderr}")
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        isError=True,
    )


def _tool_descriptor(definition: ToolDefinition) -> types.Tool:
    return types.Tool(
        name=definition.name,
        description=definition.description,
        inputSchema=build_input_schema(definition.parameters),
    )


class ProxyServer:
    """Façade over the tool registry and executor.

    The registry is loaded from ``settings.registry_path`` when the server is
    constructed. The server is designed to live for a single CLI invocation
    and may be used as a context manager.
    """

    def __init__(
        self,
        settings: Optional[ProxySettings] = None,
        registry: Optional[ToolRegistry] = None,
        executor: Optional[ToolExecutor] = None,
    ) -> None:
        self._settings: ProxySettings = settings if settings is not None else load_settings()
        self._registry: ToolRegistry = (
            registry
            if registry is not None
            else ToolRegistry(ToolRegistryStore(self._settings.registry_path))
        )
        self._executor: ToolExecutor = executor if executor is not None else ToolExecutor(self._settings)
        self._closed = False

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def __enter__(self) -> "ProxyServer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Proxy server is closed.")

    def add_tool(
        self,
        name: str,
        description: str,
        signature: str,
        script_path: Optional[str] = None,
        command: Optional[str] = None,
    ) -> ToolDefinition:
        """Register a tool. See :meth:`ToolRegistry.add_tool`."""

        self._check_open()
        return self._registry.add_tool(name, description, signature, script_path, command)

    def remove_tool(self, name: str) -> ToolDefinition:
        """Unregister a tool. See :meth:`ToolRegistry.remove_tool`."""

        self._check_open()
        return self._registry.remove_tool(name)

    def list_tools(self) -> List[types.Tool]:
        """Return MCP tool descriptors for every registered tool."""

        self._check_open()
        return [_tool_descriptor(definition) for definition in self._registry.list_tools()]

    def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> types.CallToolResult:
        """Run a registered tool and wrap its output as an MCP result.

        A tool that runs and fails yields a result with ``isError`` set; an
        unknown tool raises instead, so the two cases stay distinguishable.

        Raises:
            NotFoundError: If ``name`` is not registered.
            ValidationError: If the arguments cannot be bound.
        """

        self._check_open()
        definition, found = self._registry.lookup(name)
        if not found or definition is None:
            raise NotFoundError(name)

        logger.info("Calling tool '%s'", name)
        try:
            result = self._executor.execute(definition, arguments or {}, timeout=timeout)
        except ExecutionError as exc:
            return _error_result(exc)

        return types.CallToolResult(
            content=[types.TextContent(type="text", text=result.output)],
            isError=False,
        )

    async def call_tool_async(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> types.CallToolResult:
        """Run :meth:`call_tool` in a worker thread."""

        return await asyncio.to_thread(self.call_tool, name, arguments)

    def build_server(self) -> Server:
        """Create an MCP server with ``tools/list`` and ``tools/call`` handlers.

        Proxy errors raised while handling a request are re-raised as
        :class:`McpError` so the SDK answers with a JSON-RPC error response.
        """

        server: Server = Server(SERVER_NAME)

        async def _handle_list_tools(_request: types.ListToolsRequest) -> types.ServerResult:
            try:
                tools = self.list_tools()
            except ProxyError as exc:
                raise McpError(to_error_data(exc)) from exc
            return types.ServerResult(types.ListToolsResult(tools=tools))

        async def _handle_call_tool(request: types.CallToolRequest) -> types.ServerResult:
            params = request.params
            try:
                result = await self.call_tool_async(params.name, params.arguments or {})
            except ProxyError as exc:
                logger.info("Tool call '%s' rejected: %s", params.name, exc)
                raise McpError(to_error_data(exc)) from exc
            return types.ServerResult(result)

        server.request_handlers[types.ListToolsRequest] = _handle_list_tools
        server.request_handlers[types.CallToolRequest] = _handle_call_tool
        return server

    async def serve_stdio(self) -> None:
        """Serve registered tools over standard input and output."""

        self._check_open()
        server = self.build_server()
        logger.info(
            "Serving %d tool(s) from %s", len(self._registry), self._registry.store.path
        )
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    def close(self) -> None:
        """Release the server. Running tool processes are left to finish."""

        if self._closed:
            return
        self._closed = True
        logger.debug("Proxy server closed")
