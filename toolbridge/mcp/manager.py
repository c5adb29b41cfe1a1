"""MCP Client — MCPManager: owns named server connections and their tools."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from toolbridge.mcp.config import (
    TRANSPORT_IN_PROCESS,
    TRANSPORT_SSE,
    TRANSPORT_STDIO,
    MCPManagerConfig,
    MCPServerConfig,
    load_config_file,
    server_config_from_dict,
)
from toolbridge.mcp.converter import MCPToolAdapter, ToolOutput, load_mcp_tools
from toolbridge.mcp.errors import CapabilityLoadError, ConfigurationError
from toolbridge.mcp.transport import MCPTransport, SessionFactory, create_transport
from toolbridge.tools.registry import ToolDef, ToolRegistry

logger = logging.getLogger("toolbridge.mcp.manager")

Cleanup = Callable[[], Awaitable[None]]


class _ServerConn:
    """Internal: one live connection (config, transport, session, cleanup, tools)."""

    def __init__(
        self,
        config: MCPServerConfig,
        transport: MCPTransport,
        session: Any,
        cleanup: Cleanup,
        tools: List[MCPToolAdapter],
    ) -> None:
        self.config = config
        self.transport = transport
        self.session = session
        self.cleanup = cleanup
        self.tools = tools


class MCPManager:
    """Manages multiple MCP server connections and exposes their tools as
    :class:`MCPToolAdapter` objects, or injects them into a :class:`ToolRegistry`.

    Failures are isolated per connection: a server that cannot be reached is
    left out, a server whose catalog cannot be listed contributes no tools.
    At most one live session exists per name.

    ``close()`` must not run concurrently with in-flight tool calls on the
    same connections.

    Usage::

        mcp = MCPManager({"math": {"command": "python", "args": ["math_server.py"]}})
        tools = await mcp.connect_all()
        mcp.inject_tools(registry)
        # ... agent uses MCP tools ...
        await mcp.close()
    """

    def __init__(
        self,
        connections: Optional[Mapping[str, Any]] = None,
        config: Optional[MCPManagerConfig] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._config = config or MCPManagerConfig()
        self._session_factory = session_factory
        self._specs: Dict[str, MCPServerConfig] = {}
        self._servers: Dict[str, _ServerConn] = {}
        self._tool_map: Dict[str, Tuple[str, str]] = {}  # sdk_name -> (server, tool)
        self._injected_tools: List[str] = []

        for name, spec in (connections or {}).items():
            self.register_server(name, spec)

    @classmethod
    def from_config_file(
        cls,
        path: str,
        config: Optional[MCPManagerConfig] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> MCPManager:
        """Create a manager from a JSON file with a top-level ``servers`` mapping.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        return cls(load_config_file(path), config=config, session_factory=session_factory)

    @property
    def config(self) -> MCPManagerConfig:
        return self._config

    async def __aenter__(self) -> MCPManager:
        await self.connect_all()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Server specs ──

    def register_server(self, name: str, spec: Any) -> bool:
        """Validate and remember a server spec. Invalid specs are logged and dropped."""
        try:
            config = server_config_from_dict(name, spec)
        except ConfigurationError as e:
            logger.warning("Skipping MCP server %r: %s", name, e)
            return False
        self._specs[name] = config
        return True

    def server_specs(self) -> Dict[str, MCPServerConfig]:
        """Return the registered (not necessarily connected) server specs."""
        return dict(self._specs)

    def _replace_specs(self, name: str, spec: Any) -> bool:
        discarded = [n for n in self._specs if n != name]
        if discarded:
            logger.warning(
                "Single-server connect replaces registered MCP servers %s; "
                "their live connections stay open",
                discarded,
            )
        self._specs.clear()
        return self.register_server(name, spec)

    # ── Connecting ──

    async def connect_all(self) -> Dict[str, List[MCPToolAdapter]]:
        """Connect every registered server in order and load its tools.

        Returns:
            ``{server_name: [MCPToolAdapter, ...]}`` for every live connection.
        """
        for config in list(self._specs.values()):
            await self._connect(config)
        return {name: list(conn.tools) for name, conn in self._servers.items()}

    async def add_server_with_transport(
        self, config: MCPServerConfig, transport: MCPTransport
    ) -> List[MCPToolAdapter]:
        """Connect one server over a caller-built transport.

        A live connection with the same name is kept if this one fails.

        Raises:
            MCPConnectionError: If the transport or handshake fails.
        """
        conn = await self._open(config, transport)
        self._specs[config.name] = config
        return list(conn.tools)

    async def _connect(self, config: MCPServerConfig) -> Optional[_ServerConn]:
        try:
            transport = create_transport(config)
            return await self._open(config, transport)
        except Exception as e:
            logger.error("Failed to connect to MCP server %r: %s", config.name, e)
            return None

    async def _open(self, config: MCPServerConfig, transport: MCPTransport) -> _ServerConn:
        # A live connection with the same name is only replaced once the new one is up.
        name = config.name
        logger.info("Connecting to MCP server %r via %s", name, config.transport)
        session = await transport.connect(self._session_factory, timeout=config.timeout or None)

        try:
            try:
                tools = await load_mcp_tools(session, name, config, self._config)
            except CapabilityLoadError as e:
                logger.error("Error loading tools from MCP server %r: %s", name, e)
                tools = []
            conn = _ServerConn(config, transport, session, transport.close, tools)
        except Exception:
            await self._discard(name, transport)
            raise

        if name in self._servers:
            logger.info("Superseding live connection to MCP server %r", name)
            await self._close_server(name)
        self._servers[name] = conn
        self._map_tools(name, tools)
        logger.info("Added server %r with %d tools", name, len(tools))
        return conn

    async def _discard(self, name: str, transport: MCPTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.error("Error closing MCP server %r after a failed connect: %s", name, e)

    # ── Single-server helpers (replace the registered spec set) ──

    async def connect_via_stdio(
        self,
        name: str,
        command: str,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        encoding: str = "utf-8",
        encoding_error_handler: str = "strict",
    ) -> Dict[str, List[MCPToolAdapter]]:
        """Connect to a child-process server. Replaces all registered specs."""
        self._replace_specs(
            name,
            {
                "transport": TRANSPORT_STDIO,
                "command": command,
                "args": args,
                "env": env,
                "encoding": encoding,
                "encoding_error_handler": encoding_error_handler,
            },
        )
        return await self.connect_all()

    async def connect_via_sse(
        self,
        name: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        use_alternate_stream_impl: bool = False,
    ) -> Dict[str, List[MCPToolAdapter]]:
        """Connect to a server over SSE. Replaces all registered specs."""
        self._replace_specs(
            name,
            {
                "transport": TRANSPORT_SSE,
                "url": url,
                "headers": headers,
                "use_alternate_stream_impl": use_alternate_stream_impl,
            },
        )
        return await self.connect_all()

    async def connect_in_process(self, name: str, server: Any) -> Dict[str, List[MCPToolAdapter]]:
        """Connect to a server object in this process. Replaces all registered specs."""
        self._replace_specs(name, {"transport": TRANSPORT_IN_PROCESS, "server": server})
        return await self.connect_all()

    # ── Lookup ──

    def get_session(self, name: str) -> Any:
        conn = self._servers.get(name)
        return conn.session if conn else None

    def get_client(self, name: str) -> Optional[MCPTransport]:
        conn = self._servers.get(name)
        return conn.transport if conn else None

    def get_tools(self, name: Optional[str] = None) -> List[MCPToolAdapter]:
        """Return the adapters of one server, or of all servers when *name* is None."""
        if name is None:
            return [t for conn in self._servers.values() for t in conn.tools]
        conn = self._servers.get(name)
        return list(conn.tools) if conn else []

    def server_names(self) -> List[str]:
        """Return the names of all connected servers."""
        return list(self._servers.keys())

    def list_tools(self, *servers: str) -> List[ToolDef]:
        """Return all (or server-specific) tools as SDK ToolDefs."""
        targets = servers or tuple(self._servers.keys())
        result: List[ToolDef] = []
        for name in targets:
            conn = self._servers.get(name)
            if conn:
                result.extend(
                    t.to_tool_def(self._config.sdk_tool_name(name, t.name)) for t in conn.tools
                )
        return result

    # ── Tool injection ──

    def _map_tools(self, server_name: str, tools: List[MCPToolAdapter]) -> None:
        for sdk_name, (srv, _) in list(self._tool_map.items()):
            if srv == server_name:
                del self._tool_map[sdk_name]
        for t in tools:
            self._tool_map[self._config.sdk_tool_name(server_name, t.name)] = (server_name, t.name)

    def inject_tools(self, registry: ToolRegistry) -> None:
        """Register all MCP tools into the registry (idempotent: removes old tools first)."""
        self.remove_tools(registry)
        for tool_def in self.list_tools():
            registry.register(tool_def)
            self._injected_tools.append(tool_def.name)

    def remove_tools(self, registry: ToolRegistry) -> None:
        """Precisely remove only MCP-injected tools from the registry."""
        for name in self._injected_tools:
            registry.remove(name)
        self._injected_tools.clear()

    # ── Tool invocation ──

    async def call_tool(
        self,
        sdk_tool_name: str,
        args: Any = None,
        timeout: Optional[float] = None,
    ) -> ToolOutput:
        """Route a call by injected tool name to the owning server's adapter.

        Raises:
            KeyError: If the tool or its server is unknown.
            ToolInvocationError: If the call fails (see :meth:`MCPToolAdapter.invoke`).
        """
        route = self._tool_map.get(sdk_tool_name)
        if route is None:
            raise KeyError(f"mcp: tool {sdk_tool_name!r} not found")
        server_name, tool_name = route

        conn = self._servers.get(server_name)
        if conn is None:
            raise KeyError(f"mcp: server {server_name!r} not found")

        for adapter in conn.tools:
            if adapter.name == tool_name:
                return await adapter.invoke(args, timeout=timeout)
        raise KeyError(f"mcp: tool {sdk_tool_name!r} not found")

    # ── Refresh ──

    async def refresh_tools(self, *servers: str) -> Dict[str, List[MCPToolAdapter]]:
        """Re-discover tools for specified (or all) servers.

        A server whose catalog cannot be listed keeps its previous tools.
        """
        targets = list(servers) if servers else list(self._servers.keys())
        refreshed: Dict[str, List[MCPToolAdapter]] = {}

        for name in targets:
            conn = self._servers.get(name)
            if conn is None:
                continue
            try:
                tools = await load_mcp_tools(conn.session, name, conn.config, self._config)
            except CapabilityLoadError as e:
                logger.error("Error refreshing tools of MCP server %r: %s", name, e)
                continue
            conn.tools = tools
            self._map_tools(name, tools)
            refreshed[name] = list(tools)

        return refreshed

    # ── Lifecycle ──

    async def _close_server(self, name: str) -> None:
        conn = self._servers.pop(name)
        self._map_tools(name, [])
        try:
            await conn.cleanup()
        except Exception as e:
            logger.error("Error closing MCP server %r: %s", name, e)

    async def remove_server(self, name: str) -> None:
        """Disconnect one server and forget its spec and tools."""
        if name not in self._servers:
            raise KeyError(f"mcp: server {name!r} not found")
        await self._close_server(name)
        self._specs.pop(name, None)

    async def close(self) -> None:
        """Close every connection (newest first) and clear internal state.

        Each cleanup runs exactly once; a failing cleanup is logged and does
        not stop the others.
        """
        for name, conn in reversed(list(self._servers.items())):
            try:
                await conn.cleanup()
            except Exception as e:
                logger.error("Error closing MCP server %r: %s", name, e)

        self._servers.clear()
        self._tool_map.clear()
        self._injected_tools.clear()
        logger.debug("All MCP connections closed")
