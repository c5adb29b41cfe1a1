"""
toolbridge — use tools of MCP servers from an LLM agent.

Quick Start:
    from toolbridge import MCPManager, ToolRegistry

    async with MCPManager.from_config_file("mcp.json") as mcp:
        registry = ToolRegistry()
        mcp.inject_tools(registry)
        result = await registry.execute("mcp.math.add", {"a": 5, "b": 3})
"""

__version__ = "0.1.0"

from toolbridge.mcp.config import MCPManagerConfig, MCPServerConfig
from toolbridge.mcp.converter import MCPToolAdapter
from toolbridge.mcp.errors import MCPAdapterError, ToolInvocationError, ToolTimeoutError
from toolbridge.mcp.manager import MCPManager
from toolbridge.tools.openai_adapter import OpenAIToolAdapter
from toolbridge.tools.registry import ToolContext, ToolDef, ToolParam, ToolRegistry
from toolbridge.utils.logger import setup_logging

__all__ = [
    "MCPManager",
    "MCPServerConfig",
    "MCPManagerConfig",
    "MCPToolAdapter",
    "MCPAdapterError",
    "ToolInvocationError",
    "ToolTimeoutError",
    "ToolRegistry",
    "ToolDef",
    "ToolParam",
    "ToolContext",
    "OpenAIToolAdapter",
    "setup_logging",
]
