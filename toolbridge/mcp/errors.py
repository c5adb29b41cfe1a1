"""MCP Client — Error taxonomy.

Infrastructure-tier errors (configuration, connection, catalog, schema) are
absorbed by :class:`~toolbridge.mcp.manager.MCPManager` and the tool adapter;
invocation-tier errors reach the caller.
"""

from __future__ import annotations

import asyncio


class MCPAdapterError(Exception):
    """Base class for every error raised by ``toolbridge.mcp``."""


class ConfigurationError(MCPAdapterError):
    """A server spec or config file is malformed."""


class MCPConnectionError(MCPAdapterError):
    """Opening a transport or performing the session handshake failed."""

    def __init__(self, server_name: str, message: str) -> None:
        self.server_name = server_name
        super().__init__(f"mcp: server {server_name!r}: {message}")


class CapabilityLoadError(MCPAdapterError):
    """Fetching the tool catalog from an established session failed."""


class SchemaError(MCPAdapterError):
    """A tool input schema could not be repaired."""


class ToolInvocationError(MCPAdapterError):
    """A tool call failed remotely, in transit, or during input coercion."""

    def __init__(self, message: str, tool_name: str = "") -> None:
        self.message = message
        self.tool_name = tool_name
        super().__init__(message)


class ToolTimeoutError(ToolInvocationError, asyncio.TimeoutError):
    """A tool call did not answer before its deadline.

    The request is abandoned, not retracted: the server may still run it.
    """

    def __init__(self, tool_name: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Tool {tool_name} timed out after {timeout:g}s", tool_name=tool_name
        )
