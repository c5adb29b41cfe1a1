"""MCP Client — Tool conversion (MCP tool → invocable adapter → SDK ToolDef)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from toolbridge.mcp.coercion import is_argument_mapping, try_coerce_input
from toolbridge.mcp.config import MCPManagerConfig, MCPServerConfig, is_tool_allowed
from toolbridge.mcp.errors import CapabilityLoadError, ToolInvocationError, ToolTimeoutError
from toolbridge.mcp.schema import empty_object_schema, normalize_schema
from toolbridge.tools.registry import ToolContext, ToolDef, ToolParam, check_arguments

logger = logging.getLogger("toolbridge.mcp.converter")

ToolOutput = Union[str, List[Dict[str, Any]], Any]


def _plain(value: Any) -> Any:
    """Dump pydantic models (``mcp.types``) to plain JSON-style data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    return value


def extract_tool_params(input_schema: Optional[Dict[str, Any]]) -> List[ToolParam]:
    """Extract top-level ToolParam from an MCP inputSchema for basic validation."""
    if not input_schema:
        return []
    props = input_schema.get("properties")
    if not isinstance(props, dict):
        return []

    required_set = set()
    req_raw = input_schema.get("required")
    if isinstance(req_raw, list):
        required_set = {r for r in req_raw if isinstance(r, str)}

    params: List[ToolParam] = []
    for name, prop_raw in props.items():
        if not isinstance(prop_raw, dict):
            continue
        enum = prop_raw.get("enum")
        params.append(
            ToolParam(
                name=name,
                type=prop_raw.get("type", "string"),
                description=prop_raw.get("description", ""),
                required=name in required_set,
                default=prop_raw.get("default"),
                enum=enum if isinstance(enum, list) else None,
            )
        )
    return params


def convert_call_tool_result(
    result: Any,
    tool_name: str = "",
    prefer_text: bool = False,
) -> ToolOutput:
    """Normalize a ``tools/call`` result.

    - Error results raise :class:`ToolInvocationError` with the first text item.
    - A single text item returns its text.
    - Otherwise the ordered list of content dicts is returned; with
      *prefer_text*, the text of the only text item wins.
    - Non-list content is returned unchanged.
    """
    if result is None:
        logger.warning("Tool %s returned no result", tool_name)
        return ""

    data = _plain(result)
    if not isinstance(data, dict):
        return data

    content = data.get("content")
    items = [_plain(c) for c in content] if isinstance(content, list) else None
    text_items = [c for c in items or [] if isinstance(c, dict) and c.get("type") == "text"]

    if data.get("isError"):
        first = text_items[0] if text_items else None
        if first and first.get("text"):
            logger.error("Tool %s returned an error: %s", tool_name, first["text"])
            raise ToolInvocationError(first["text"], tool_name=tool_name)
        raise ToolInvocationError("Tool execution failed", tool_name=tool_name)

    if items is None:
        logger.debug("Returning non-list content of tool %s as-is", tool_name)
        return data
    if not items:
        return ""
    if len(items) == 1 and text_items:
        return text_items[0].get("text", "")
    if prefer_text and len(text_items) == 1:
        return text_items[0].get("text", "")
    return items


# ──────────────────────────────────────────────
# MCPToolAdapter
# ──────────────────────────────────────────────


class MCPToolAdapter:
    """One remote tool, invocable as a local async callable.

    Attributes:
        name: Original MCP tool name (sent in ``tools/call``).
        description: Tool description as published by the server.
        raw_schema: ``inputSchema`` exactly as received (may be ``None``).
        parameter_schema: Repaired schema shown to LLMs.
        parameters: Top-level parameters derived from ``parameter_schema``.
        timeout: Default deadline in seconds (``None`` = wait forever).
        strict: Reject input that cannot be coerced or fails the schema check
            instead of sending it anyway.
    """

    def __init__(
        self,
        session: Any,
        name: str,
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None,
        server_name: str = "",
        timeout: Optional[float] = None,
        strict: bool = False,
        prefer_text: bool = False,
        trace_args: bool = False,
    ) -> None:
        self.session = session
        self.name = name
        self.description = description
        self.server_name = server_name
        self.raw_schema = input_schema
        self.timeout = timeout or None
        self.strict = strict
        self.prefer_text = prefer_text
        self.trace_args = trace_args

        try:
            schema = normalize_schema(input_schema)
            if schema is None:
                logger.warning("Tool %r has no input schema definition", name)
                schema = empty_object_schema()
            params = extract_tool_params(schema)
        except Exception as e:
            logger.error("Schema conversion error for tool %r, using empty schema: %s", name, e)
            schema = empty_object_schema()
            params = []

        if not params:
            logger.warning(
                "Tool %r has an empty input schema; it will be called with empty arguments",
                name,
            )
        self.parameter_schema: Dict[str, Any] = schema
        self.parameters: List[ToolParam] = params

    def __repr__(self) -> str:
        return f"MCPToolAdapter(server={self.server_name!r}, name={self.name!r})"

    # ── Input ──

    def prepare_arguments(self, raw_input: Any) -> Dict[str, Any]:
        """Coerce *raw_input* into an argument mapping and check it."""
        if is_argument_mapping(raw_input):
            arguments = dict(raw_input)
        else:
            coerced = try_coerce_input(raw_input)
            if coerced is None:
                if self.strict:
                    raise ToolInvocationError(
                        f"Could not coerce input for tool {self.name}", tool_name=self.name
                    )
                logger.warning("Could not coerce input for tool %s, sending {}", self.name)
                coerced = {}
            arguments = coerced

        problems = check_arguments(arguments, self.parameters)
        if problems:
            message = f"Invalid input for tool {self.name}: {'; '.join(problems)}"
            if self.strict:
                raise ToolInvocationError(message, tool_name=self.name)
            logger.debug(message)
        return arguments

    # ── Execution ──

    async def invoke(self, raw_input: Any = None, timeout: Optional[float] = None) -> ToolOutput:
        """Call the tool once and return its normalized result.

        Raises:
            ToolTimeoutError: The deadline passed before the response arrived.
            ToolInvocationError: Remote error result, transport/session failure,
                or (strict mode) unusable input.
        """
        arguments = self.prepare_arguments(raw_input)
        deadline = timeout if timeout is not None else self.timeout

        if self.trace_args:
            logger.debug("Executing tool %s with arguments: %s", self.name, arguments)

        start = time.monotonic()
        try:
            pending = self.session.call_tool(self.name, arguments)
            if deadline:
                result = await asyncio.wait_for(pending, timeout=deadline)
            else:
                result = await pending
        except ToolInvocationError:
            raise
        except asyncio.TimeoutError as e:
            if not deadline:
                raise ToolInvocationError(
                    f"Error calling tool {self.name}: {e!r}", tool_name=self.name
                ) from e
            logger.error("Tool %s timed out after %.1fs", self.name, deadline)
            raise ToolTimeoutError(self.name, deadline) from e
        except Exception as e:
            elapsed = (time.monotonic() - start) * 1000
            logger.error("Error calling tool %s after %.1fms: %s", self.name, elapsed, e)
            raise ToolInvocationError(
                f"Error calling tool {self.name}: {e}", tool_name=self.name
            ) from e

        logger.debug(
            "Tool %s completed in %.1fms", self.name, (time.monotonic() - start) * 1000
        )
        return convert_call_tool_result(result, self.name, self.prefer_text)

    # ── Agent framework ──

    def to_tool_def(self, sdk_name: Optional[str] = None) -> ToolDef:
        """Wrap this adapter as a :class:`ToolDef` for a ``ToolRegistry``."""

        async def _handler(raw_input: Any, ctx: ToolContext) -> Any:
            return await self.invoke(raw_input)

        prefix = f"[MCP:{self.server_name}] " if self.server_name else ""
        return ToolDef(
            name=sdk_name or self.name,
            description=f"{prefix}{self.description}",
            parameters=list(self.parameters),
            handler=_handler,
            raw_json_schema=self.parameter_schema,
            source=f"mcp:{self.server_name}" if self.server_name else "mcp",
            checks_arguments=True,
        )


def resolve_tool_timeout(
    config: Optional[MCPServerConfig],
    manager_config: MCPManagerConfig,
) -> Optional[float]:
    """Per-call deadline: the server's ``tool_timeout``, else the manager default.

    The server's ``timeout`` only bounds the connect handshake. ``0`` or unset
    everywhere means no deadline.
    """
    if config is not None and config.tool_timeout is not None:
        return config.tool_timeout or None
    return manager_config.tool_timeout or None


def _tool_entries(listing: Any) -> List[Dict[str, Any]]:
    """Accept both ``{tools: [...]}`` (standard) and bare ``[...]`` listings."""
    data = _plain(listing)
    tools_list: Optional[list] = None
    if isinstance(data, dict):
        tools_list = data.get("tools")
    elif isinstance(data, list):
        tools_list = data
    if not isinstance(tools_list, list):
        return []
    entries = [_plain(t) for t in tools_list]
    return [e for e in entries if isinstance(e, dict)]


async def load_mcp_tools(
    session: Any,
    server_name: str = "",
    config: Optional[MCPServerConfig] = None,
    manager_config: Optional[MCPManagerConfig] = None,
) -> List[MCPToolAdapter]:
    """List the session's tools and wrap each in an :class:`MCPToolAdapter`.

    Design:
    - Wildcard filtering matches original MCP tool name.
    - Nameless tools and tools whose adapter fails to build are skipped.
    - ``max_tools`` truncation applied after filtering.

    Raises:
        CapabilityLoadError: If ``list_tools`` itself fails.
    """
    manager_config = manager_config or MCPManagerConfig()
    start = time.monotonic()

    try:
        listing = await session.list_tools()
    except Exception as e:
        raise CapabilityLoadError(f"failed to list tools from server {server_name!r}: {e}") from e

    entries = _tool_entries(listing)
    logger.info("Found %d MCP tools on server %r", len(entries), server_name)

    timeout = resolve_tool_timeout(config, manager_config)
    adapters: List[MCPToolAdapter] = []
    failed = 0

    for entry in entries:
        name = entry.get("name")
        if not name:
            logger.warning("Skipping tool with missing name on server %r", server_name)
            failed += 1
            continue
        if config and not is_tool_allowed(name, config):
            continue

        try:
            adapters.append(
                MCPToolAdapter(
                    session,
                    name,
                    entry.get("description") or "",
                    entry.get("inputSchema"),
                    server_name=server_name,
                    timeout=timeout,
                    strict=manager_config.strict_schema,
                    prefer_text=manager_config.prefer_text,
                    trace_args=manager_config.trace_args,
                )
            )
        except Exception as e:
            failed += 1
            logger.error("Failed to load tool %r from server %r: %s", name, server_name, e)
            continue

        if config and config.max_tools > 0 and len(adapters) >= config.max_tools:
            break

    logger.info(
        "Tool loading complete for %r: %d loaded, %d failed, in %.1fms",
        server_name,
        len(adapters),
        failed,
        (time.monotonic() - start) * 1000,
    )
    return adapters
