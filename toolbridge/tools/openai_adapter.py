"""
OpenAIToolAdapter — dispatch OpenAI ``tool_calls`` to a ToolRegistry.

Calls of one response run concurrently; each produces exactly one
:class:`ToolCallResult`, in the order of the calls. A tool failure becomes the
result's ``error`` text so the model can see it and retry.

Usage::

    mcp_manager.inject_tools(registry)
    adapter = OpenAIToolAdapter(registry)
    response = await client.chat.completions.create(
        model="gpt-4o", messages=messages, tools=adapter.to_openai_tools(),
    )
    results = await adapter.handle_tool_calls(response.choices[0].message.tool_calls)
    messages.extend(adapter.results_to_messages(results))
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from toolbridge.mcp.errors import MCPAdapterError
from toolbridge.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger("toolbridge.tools")


@dataclass
class ToolCallResult:
    tool_call_id: str
    name: str
    content: str = ""
    error: Optional[str] = None

    def to_message(self) -> Dict[str, str]:
        """``{"role": "tool", "tool_call_id": ..., "content": ...}``"""
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "content": self.error if self.error is not None else self.content,
        }


def decode_arguments(raw: Any) -> Any:
    """Decode the JSON ``arguments`` string of a tool call.

    Text that is not valid JSON is returned unchanged; the registry's input
    coercion deals with it.
    """
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def serialize_output(output: Any) -> str:
    """Render a tool output as message content: text as-is, anything else as JSON."""
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


class OpenAIToolAdapter:

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def to_openai_tools(self) -> List[Dict[str, Any]]:
        """Export tools in OpenAI ``tools`` parameter format."""
        return self._registry.to_openai_schema()

    async def handle_tool_calls(
        self,
        tool_calls: Any,
        extra: Optional[Dict[str, Any]] = None,
    ) -> List[ToolCallResult]:
        """Execute the ``message.tool_calls`` of a response.

        Items may be SDK objects (``.id``, ``.function.name``,
        ``.function.arguments``) or the equivalent dicts.
        """
        return list(
            await asyncio.gather(*(self._handle_one(tc, extra) for tc in tool_calls or []))
        )

    async def _handle_one(self, tool_call: Any, extra: Optional[Dict[str, Any]]) -> ToolCallResult:
        call_id = _get(tool_call, "id", "")
        func = _get(tool_call, "function", tool_call)
        name = _get(func, "name", "")
        arguments = decode_arguments(_get(func, "arguments", None))
        ctx = ToolContext(tool_name=name, call_id=call_id, extra=dict(extra or {}))

        try:
            output = await self._registry.execute(name, arguments, ctx=ctx)
        except KeyError:
            logger.warning("Model called unknown tool %r", name)
            return ToolCallResult(call_id, name, error=f"Tool not found: {name}")
        except MCPAdapterError as e:
            logger.error("Tool call %s failed: %s", name, e)
            return ToolCallResult(call_id, name, error=str(e))
        return ToolCallResult(call_id, name, content=serialize_output(output))

    def results_to_messages(self, results: List[ToolCallResult]) -> List[Dict[str, str]]:
        return [r.to_message() for r in results]


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)
