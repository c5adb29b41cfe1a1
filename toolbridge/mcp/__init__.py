"""
MCP Client — Connect MCP servers, discover their tools, invoke them from an agent.

Usage::

    from toolbridge.mcp import MCPManager

    mcp = MCPManager({
        "fs": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]},
    })
    tools = await mcp.connect_all()
    text = await tools["fs"][0].invoke({"path": "/tmp"})
    await mcp.close()
"""

from toolbridge.mcp.coercion import coerce_input
from toolbridge.mcp.config import MCPManagerConfig, MCPServerConfig, load_config_file
from toolbridge.mcp.converter import MCPToolAdapter, convert_call_tool_result, load_mcp_tools
from toolbridge.mcp.errors import (
    CapabilityLoadError,
    ConfigurationError,
    MCPAdapterError,
    MCPConnectionError,
    SchemaError,
    ToolInvocationError,
    ToolTimeoutError,
)
from toolbridge.mcp.manager import MCPManager
from toolbridge.mcp.schema import EMPTY_OBJECT_SCHEMA, normalize_schema
from toolbridge.mcp.transport import (
    InProcessTransport,
    MCPTransport,
    SSETransport,
    StdioTransport,
    TransportState,
    create_transport,
)

__all__ = [
    "MCPManager",
    "MCPServerConfig",
    "MCPManagerConfig",
    "load_config_file",
    "MCPToolAdapter",
    "convert_call_tool_result",
    "load_mcp_tools",
    "coerce_input",
    "normalize_schema",
    "EMPTY_OBJECT_SCHEMA",
    "MCPTransport",
    "StdioTransport",
    "SSETransport",
    "InProcessTransport",
    "TransportState",
    "create_transport",
    "MCPAdapterError",
    "ConfigurationError",
    "MCPConnectionError",
    "CapabilityLoadError",
    "SchemaError",
    "ToolInvocationError",
    "ToolTimeoutError",
]
