"""MCP Client — Configuration types.

Supports declarative server specs (from code or a JSON ``servers`` file) and
manager-level settings from environment variables (.env).
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from toolbridge.mcp.errors import ConfigurationError

logger = logging.getLogger("toolbridge.mcp.config")

TRANSPORT_STDIO = "stdio"
TRANSPORT_SSE = "sse"
TRANSPORT_IN_PROCESS = "in_process"

TRANSPORTS = (TRANSPORT_STDIO, TRANSPORT_SSE, TRANSPORT_IN_PROCESS)
# Accepted spellings in config files
TRANSPORT_ALIASES = {"programmatic": TRANSPORT_IN_PROCESS}
ENCODING_ERROR_HANDLERS = ("strict", "ignore", "replace")


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class MCPServerConfig:
    """Connection configuration for a single MCP server.

    Attributes:
        name: Unique server identifier (e.g. ``"filesystem"``).
        transport: ``"stdio"``, ``"sse"`` or ``"in_process"``.
        command: Executable path (stdio).
        args: Command arguments (stdio).
        env: Extra environment variables (stdio).
        encoding: Text encoding of the child's standard streams (stdio).
        encoding_error_handler: ``"strict"``, ``"ignore"`` or ``"replace"`` (stdio).
        url: Event-stream endpoint (sse).
        headers: Custom HTTP headers (sse).
        use_alternate_stream_impl: Build the HTTP client ourselves so custom
            headers also reach the event-stream request (sse).
        server: A ``mcp.server.lowlevel.Server`` or ``FastMCP`` instance (in_process).
        timeout: Connect handshake timeout in seconds (0 = none).
        tool_timeout: Per-call tool deadline in seconds; ``None`` falls back to
            the manager's ``tool_timeout``, ``0`` disables it for this server.
        allowed_tools: Whitelist filter on **original MCP tool names** (wildcards via ``fnmatch``).
        blocked_tools: Blacklist filter (wildcards via ``fnmatch``).
        max_tools: Maximum tools to load (0 = no limit).
    """

    name: str = ""
    transport: str = TRANSPORT_STDIO

    # Stdio
    command: str = ""
    args: List[str] = field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    encoding: str = "utf-8"
    encoding_error_handler: str = "strict"

    # SSE
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    use_alternate_stream_impl: bool = False

    # In-process
    server: Any = None

    # General
    timeout: float = 30
    tool_timeout: Optional[float] = None

    # Tool filtering (matches original MCP tool name, NOT injected sdk name)
    allowed_tools: List[str] = field(default_factory=list)
    blocked_tools: List[str] = field(default_factory=list)
    max_tools: int = 0

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` if a transport-required field is missing."""
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"server {self.name!r}: unsupported transport {self.transport!r}"
            )
        if self.transport == TRANSPORT_STDIO:
            if not isinstance(self.command, str) or not self.command:
                raise ConfigurationError(f"server {self.name!r}: missing or invalid command")
            if not isinstance(self.args, list):
                raise ConfigurationError(f"server {self.name!r}: missing or invalid args")
            if self.encoding_error_handler not in ENCODING_ERROR_HANDLERS:
                raise ConfigurationError(
                    f"server {self.name!r}: invalid encoding_error_handler "
                    f"{self.encoding_error_handler!r}"
                )
        elif self.transport == TRANSPORT_SSE:
            if not isinstance(self.url, str) or not self.url:
                raise ConfigurationError(f"server {self.name!r}: missing or invalid URL")
        elif self.server is None:
            raise ConfigurationError(f"server {self.name!r}: missing server instance")


def _optional_str_map(raw: Mapping[str, Any], key: str) -> Optional[Dict[str, str]]:
    value = raw.get(key)
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    return None


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _is_seconds(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0


def server_config_from_dict(name: str, raw: Any) -> MCPServerConfig:
    """Build a validated :class:`MCPServerConfig` from a JSON-style mapping.

    A spec without ``transport`` is treated as stdio. Optional fields with the
    wrong type are ignored; missing required fields raise.

    Raises:
        ConfigurationError: If the spec is not a mapping or misses a
            transport-required field.
    """
    if isinstance(raw, MCPServerConfig):
        config = replace(raw, name=name)
        config.validate()
        return config
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"server {name!r}: spec must be a mapping")

    transport = raw.get("transport") or TRANSPORT_STDIO
    if isinstance(transport, str):
        transport = TRANSPORT_ALIASES.get(transport, transport)
    config = MCPServerConfig(name=name, transport=transport)

    if transport == TRANSPORT_STDIO:
        config.command = raw.get("command")
        config.args = raw.get("args")
        config.env = _optional_str_map(raw, "env")
        if isinstance(raw.get("encoding"), str):
            config.encoding = raw["encoding"]
        handler = _first(raw, "encoding_error_handler", "encodingErrorHandler")
        if handler in ENCODING_ERROR_HANDLERS:
            config.encoding_error_handler = handler
    elif transport == TRANSPORT_SSE:
        config.url = raw.get("url")
        config.headers = _optional_str_map(raw, "headers") or {}
        alternate = _first(
            raw, "use_alternate_stream_impl", "useAlternateStreamImpl", "useNodeEventSource"
        )
        if isinstance(alternate, bool):
            config.use_alternate_stream_impl = alternate
    elif transport == TRANSPORT_IN_PROCESS:
        config.server = raw.get("server")

    if _is_seconds(raw.get("timeout")):
        config.timeout = raw["timeout"]
    tool_timeout = _first(raw, "tool_timeout", "toolTimeout")
    if _is_seconds(tool_timeout):
        config.tool_timeout = tool_timeout
    for key in ("allowed_tools", "blocked_tools"):
        value = raw.get(key)
        if isinstance(value, list):
            setattr(config, key, [str(p) for p in value])
    if isinstance(raw.get("max_tools"), int):
        config.max_tools = raw["max_tools"]

    config.validate()
    return config


def load_config_file(path: str) -> Dict[str, Any]:
    """Read the ``servers`` mapping from a JSON config file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or has no
            ``servers`` mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Failed to load MCP configuration from %s: %s", path, e)
        raise ConfigurationError(f"failed to load MCP configuration: {e}") from e

    servers = data.get("servers") if isinstance(data, dict) else None
    if not isinstance(servers, dict):
        raise ConfigurationError(f"{path}: top-level 'servers' mapping is required")

    logger.info("Loaded MCP configuration from %s", path)
    return servers


@dataclass
class MCPManagerConfig:
    """Manager-level configuration.

    Attributes:
        tool_prefix: Name template for tools injected into a ``ToolRegistry``.
        trace_args: Log tool arguments at DEBUG level.
        strict_schema: Reject input that fails coercion or schema checks.
        prefer_text: Return the lone text item of a multi-item result.
        tool_timeout: Default tool deadline in seconds when the server config
            sets none (0 = no deadline).
        config_file: JSON file with a ``servers`` mapping.
    """

    tool_prefix: str = "mcp.{server}.{tool}"
    trace_args: bool = False
    strict_schema: bool = False
    prefer_text: bool = False
    tool_timeout: float = 0
    config_file: str = ""

    @classmethod
    def from_env(cls, env_file: str = ".env") -> MCPManagerConfig:
        """Load settings from a .env file and the environment.

        Environment variables take precedence over the .env file.
        """
        load_dotenv(env_file, override=False)

        return cls(
            tool_prefix=os.getenv("MCP_TOOL_PREFIX", "mcp.{server}.{tool}").strip(),
            trace_args=_to_bool(os.getenv("MCP_TRACE_ARGS")),
            strict_schema=_to_bool(os.getenv("MCP_STRICT_SCHEMA")),
            prefer_text=_to_bool(os.getenv("MCP_PREFER_TEXT")),
            tool_timeout=float(os.getenv("MCP_TOOL_TIMEOUT", "0")),
            config_file=os.getenv("MCP_CONFIG_FILE", "").strip(),
        )

    def sdk_tool_name(self, server: str, tool: str) -> str:
        """Name under which *tool* of *server* is injected into a registry."""
        return self.tool_prefix.format(server=server, tool=tool)


def match_tool_filter(pattern: str, tool_name: str) -> bool:
    """Check if *tool_name* matches a wildcard *pattern* (via ``fnmatch``)."""
    return fnmatch.fnmatch(tool_name, pattern)


def is_tool_allowed(name: str, config: MCPServerConfig) -> bool:
    """Check whether an original MCP tool name passes the filter.

    Blocked takes precedence over allowed.
    """
    for p in config.blocked_tools:
        if match_tool_filter(p, name):
            return False
    if not config.allowed_tools:
        return True
    for p in config.allowed_tools:
        if match_tool_filter(p, name):
            return True
    return False
