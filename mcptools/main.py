"""Entry point and CLI wiring for the mcptools command."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import click
import mcp.types as types
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigError, ProxySettings, load_settings
from .errors import ProxyError
from .log import configure_logging
from .server import ProxyServer

_LOG_LEVEL_CHOICES = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _open_proxy(settings: ProxySettings) -> ProxyServer:
    """Construct a proxy server, turning load failures into CLI errors."""

    try:
        return ProxyServer(settings)
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group(
    help=(
        "Command line tools for the Model Context Protocol. "
        "Use 'proxy' to expose local scripts and shell commands as MCP tools."
    )
)
@click.version_option(__version__, prog_name="mcptools")
@click.option(
    "--log-level",
    "log_level",
    type=click.Choice(_LOG_LEVEL_CHOICES, case_sensitive=False),
    default=None,
    help="Logging level for messages written to stderr.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Shortcut for --log-level DEBUG.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, verbose: bool) -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        raise click.ClickException(f"Configuration error: {exc}") from exc

    if verbose:
        settings.log_level = "DEBUG"
    elif log_level:
        settings.log_level = log_level.upper()

    configure_logging(settings.log_level)
    ctx.obj = settings


@cli.group()
def proxy() -> None:
    """Register local scripts and commands and serve them as MCP tools."""


@proxy.command("tool")
@click.argument("name")
@click.argument("description", required=False, default="")
@click.argument("parameters", required=False, default="")
@click.argument("script", required=False, default=None)
@click.option(
    "-e",
    "--command",
    "command",
    type=str,
    default=None,
    help="Inline shell command to run instead of a script. Arguments are available as $name.",
)
@click.option(
    "--unregister",
    is_flag=True,
    default=False,
    help="Remove the tool NAME instead of registering it.",
)
@click.pass_obj
def proxy_tool(
    settings: ProxySettings,
    name: str,
    description: str,
    parameters: str,
    script: str | None,
    command: str | None,
    unregister: bool,
) -> None:
    """Register a tool backed by SCRIPT or an inline --command.

    PARAMETERS is a signature such as "a:int,b:int". Supported types are
    int, float, string and bool.
    """

    proxy_server = _open_proxy(settings)
    with proxy_server:
        try:
            if unregister:
                removed = proxy_server.remove_tool(name)
                click.echo(f"Unregistered tool '{removed.name}'.")
                return

            script_path = None
            if script and script.strip():
                script_path = os.path.abspath(os.path.expanduser(script.strip()))
            definition = proxy_server.add_tool(name, description, parameters, script_path, command)
        except ProxyError as exc:
            raise click.ClickException(str(exc)) from exc

    click.echo(f"Registered tool '{definition.name}'.")


@proxy.command("list")
@click.option(
    "--output",
    "output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format for the tool list.",
)
@click.pass_obj
def proxy_list(settings: ProxySettings, output: str) -> None:
    """List registered tools."""

    proxy_server = _open_proxy(settings)
    with proxy_server:
        definitions = proxy_server.registry.list_tools()

    if output.lower() == "json":
        payload = {definition.name: definition.to_mapping() for definition in definitions}
        click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    if not definitions:
        click.echo("No tools registered.")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", no_wrap=True)
    table.add_column("Description")
    table.add_column("Parameters")
    table.add_column("Runs")
    for definition in definitions:
        table.add_row(
            definition.name,
            definition.description,
            definition.signature,
            definition.source,
        )
    Console().print(table)


@proxy.command("call")
@click.argument("name")
@click.option("--json", "json_arg", type=str, required=False, help="Inline JSON arguments for the tool.")
@click.option(
    "--json-file",
    "json_file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False, readable=True),
    required=False,
    help="Path to a JSON file containing arguments.",
)
@click.option(
    "--json-stdin",
    "json_stdin",
    is_flag=True,
    default=False,
    help="Read JSON arguments from standard input.",
)
@click.option(
    "--timeout",
    "timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait before killing the tool.",
)
@click.option(
    "--output",
    "output",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Output format for tool results.",
)
@click.pass_obj
def proxy_call(
    settings: ProxySettings,
    name: str,
    json_arg: str | None,
    json_file: Path | None,
    json_stdin: bool,
    timeout: float | None,
    output: str,
) -> None:
    """Run a registered tool locally and print its result."""

    try:
        arguments = _parse_json_arguments(json_arg, json_file, json_stdin)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    proxy_server = _open_proxy(settings)
    with proxy_server:
        try:
            result = proxy_server.call_tool(name, arguments, timeout=timeout)
        except ProxyError as exc:
            raise click.ClickException(str(exc)) from exc

    _print_result(result, output)
    if result.isError:
        sys.exit(1)


@proxy.command("start")
@click.pass_obj
def proxy_start(settings: ProxySettings) -> None:
    """Serve registered tools as an MCP server over stdio."""

    proxy_server = _open_proxy(settings)
    with proxy_server:
        asyncio.run(proxy_server.serve_stdio())


def _parse_json_arguments(
    json_arg: str | None,
    json_file: Path | None,
    json_stdin: bool,
) -> dict[str, Any]:
    """Parse JSON arguments from CLI options.

    At most one source may be given; none yields an empty argument object.
    """

    sources_provided = sum(bool(value) for value in (json_arg, json_file, json_stdin))
    if sources_provided > 1:
        raise ValueError("Only one of --json, --json-file or --json-stdin may be used at a time.")

    raw: str | None = None
    if json_stdin:
        raw = sys.stdin.read()
    elif json_file is not None:
        raw = json_file.read_text(encoding="utf-8")
    elif json_arg is not None:
        raw = json_arg

    if raw is None or not raw.strip():
        return {}

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("Failed to parse JSON arguments.") from exc

    if not isinstance(value, dict):
        raise ValueError("Tool arguments must be a JSON object.")

    return value


def _print_result(result: types.CallToolResult, output: str) -> None:
    """Print a tool result; error results go to stderr in red."""

    if output.lower() == "json":
        click.echo(json.dumps(result.model_dump(mode="json", exclude_none=True), ensure_ascii=False, indent=2))
        return

    for block in result.content:
        if not isinstance(block, types.TextContent):
            continue
        if result.isError:
            click.echo(click.style(block.text, fg="red"), err=True)
        else:
            click.echo(block.text)


def main() -> None:
    """Execute the mcptools CLI."""

    cli.main(args=sys.argv[1:], prog_name="mcptools", standalone_mode=True)


if __name__ == "__main__":  # pragma: no cover
    main()
