"""
ToolRegistry — the agent-facing tool table MCP tools are injected into.

Every tool is called the same way: loosely structured input is coerced into an
argument mapping, checked against the tool's parameters (unless the tool checks
them itself, as MCP adapters do), and any failure surfaces as
:class:`~toolbridge.mcp.errors.ToolInvocationError`.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from toolbridge.mcp.coercion import coerce_input
from toolbridge.mcp.errors import ToolInvocationError

logger = logging.getLogger("toolbridge.tools")

_JSON_TYPES: Dict[str, tuple] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
    "null": (type(None),),
}


@dataclass
class ToolContext:
    """Per-call context handed to tool handlers.

    Attributes:
        tool_name: Registry name of the tool being invoked.
        call_id: Caller-provided call ID (e.g. an OpenAI ``tool_call.id``).
        extra: Arbitrary shared state.
    """

    tool_name: str = ""
    call_id: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolParam:
    """One top-level parameter of a tool's input schema."""

    name: str
    type: Any  # JSON Schema type: a string or a list of strings
    description: str = ""
    required: bool = True
    default: Any = None
    enum: Optional[List[Any]] = None

    def accepts(self, value: Any) -> bool:
        """Whether *value* has (one of) the declared JSON types. Unknown types accept anything."""
        types = self.type if isinstance(self.type, list) else [self.type]
        for t in types:
            expected = _JSON_TYPES.get(t) if isinstance(t, str) else None
            if expected is None:
                return True
            if isinstance(value, bool) and t in ("integer", "number"):
                continue
            if isinstance(value, expected):
                return True
        return False


def check_arguments(arguments: Dict[str, Any], params: List[ToolParam]) -> List[str]:
    """Return human-readable problems with *arguments*; empty when they fit."""
    problems: List[str] = []
    for p in params:
        if p.name not in arguments:
            if p.required:
                problems.append(f"missing required argument {p.name!r}")
            continue
        if not p.accepts(arguments[p.name]):
            problems.append(f"argument {p.name!r} should be of type {p.type}")
    return problems


# Handlers take (arguments, ctx) and may return an awaitable.
ToolHandler = Callable[[Dict[str, Any], ToolContext], Any]


@dataclass
class ToolDef:
    """A registered tool.

    Attributes:
        name: Unique registry name (``mcp.<server>.<tool>`` for MCP tools).
        description: Shown to the LLM.
        parameters: Top-level parameters, used for checks and schema export.
        handler: ``handler(arguments, ctx)``, sync or async.
        raw_json_schema: Full parameter schema to export as-is (MCP tools keep
            nested/oneOf/enum detail this way).
        source: Where the tool comes from, e.g. ``"mcp:fs"``; empty for local tools.
        checks_arguments: The handler coerces and validates input itself, so
            the registry passes *args* through untouched.
    """

    name: str
    description: str
    parameters: List[ToolParam] = field(default_factory=list)
    handler: Optional[ToolHandler] = None
    raw_json_schema: Optional[Dict[str, Any]] = None
    source: str = ""
    checks_arguments: bool = False

    def parameter_schema(self) -> Dict[str, Any]:
        if self.raw_json_schema is not None:
            return self.raw_json_schema

        properties: Dict[str, Any] = {}
        for p in self.parameters:
            prop: Dict[str, Any] = {"type": p.type}
            if p.description:
                prop["description"] = p.description
            if p.default is not None:
                prop["default"] = p.default
            if p.enum:
                prop["enum"] = p.enum
            properties[p.name] = prop
        schema: Dict[str, Any] = {"type": "object", "properties": properties}
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return schema

    def to_json_schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameter_schema(),
        }

    def to_openai_schema(self) -> Dict[str, Any]:
        """``{"type": "function", "function": {name, description, parameters}}``"""
        return {"type": "function", "function": self.to_json_schema()}


class ToolRegistry:
    """Name → :class:`ToolDef` table with schema export and uniform dispatch.

    Usage::

        registry = ToolRegistry()
        mcp_manager.inject_tools(registry)
        tools = registry.to_openai_schema()
        result = await registry.execute("mcp.math.add", {"a": 5, "b": 3})
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDef] = {}

    def register(self, tool_def: ToolDef) -> ToolDef:
        """Register a tool, overwriting any tool with the same name."""
        if tool_def.name in self._tools:
            logger.warning("Tool %r already registered, overwriting", tool_def.name)
        self._tools[tool_def.name] = tool_def
        return tool_def

    def get(self, name: str) -> Optional[ToolDef]:
        return self._tools.get(name)

    def list(self, source: Optional[str] = None) -> List[ToolDef]:
        """Return all tools, or only those from *source* (e.g. ``"mcp:fs"``)."""
        return [t for t in self._tools.values() if source is None or t.source == source]

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def remove(self, name: str) -> None:
        self._tools.pop(name, None)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def to_json_schema(self) -> List[Dict[str, Any]]:
        return [t.to_json_schema() for t in self._tools.values()]

    def to_openai_schema(self) -> List[Dict[str, Any]]:
        return [t.to_openai_schema() for t in self._tools.values()]

    async def execute(
        self,
        name: str,
        args: Any = None,
        ctx: Optional[ToolContext] = None,
    ) -> Any:
        """Run a tool by name.

        *args* may be a mapping or anything :func:`coerce_input` understands.

        Raises:
            KeyError: If the tool is not registered.
            ToolInvocationError: Bad arguments, or any failure of the handler.
        """
        tool_def = self._tools.get(name)
        if tool_def is None:
            raise KeyError(f"Tool not found: {name!r}")
        if tool_def.handler is None:
            raise ToolInvocationError(f"Tool {name} has no handler", tool_name=name)

        if ctx is None:
            ctx = ToolContext(tool_name=name)
        else:
            ctx.tool_name = name

        if tool_def.checks_arguments:
            arguments = args
        else:
            arguments = coerce_input(args)
            for p in tool_def.parameters:
                if p.name not in arguments and not p.required and p.default is not None:
                    arguments[p.name] = p.default
            problems = check_arguments(arguments, tool_def.parameters)
            if problems:
                raise ToolInvocationError(
                    f"Invalid input for tool {name}: {'; '.join(problems)}", tool_name=name
                )

        try:
            result = tool_def.handler(arguments, ctx)
            if inspect.isawaitable(result):
                result = await result
        except ToolInvocationError:
            raise
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            raise ToolInvocationError(f"Error calling tool {name}: {e}", tool_name=name) from e
        return result
