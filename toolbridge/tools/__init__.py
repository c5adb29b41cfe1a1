"""
Tool Calling — the agent-side contract MCP tools are delivered through.

``ToolRegistry`` manages and executes tools; ``OpenAIToolAdapter`` plugs a
registry into the OpenAI function calling API.

Quick Start::

    from toolbridge.mcp import MCPManager
    from toolbridge.tools import OpenAIToolAdapter, ToolRegistry

    registry = ToolRegistry()
    mcp.inject_tools(registry)
    adapter = OpenAIToolAdapter(registry)
    tools = adapter.to_openai_tools()
"""

from toolbridge.tools.openai_adapter import OpenAIToolAdapter, ToolCallResult
from toolbridge.tools.registry import (
    ToolContext,
    ToolDef,
    ToolParam,
    ToolRegistry,
)

__all__ = [
    "ToolRegistry",
    "ToolDef",
    "ToolParam",
    "ToolContext",
    "OpenAIToolAdapter",
    "ToolCallResult",
]
