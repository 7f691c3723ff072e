"""Top-level package for the mcptools CLI.

This package registers local scripts and shell commands as MCP tools and
serves them through an MCP proxy server.
"""

from typing import List

__version__ = "0.1.0"

__all__: List[str] = ["__version__"]
