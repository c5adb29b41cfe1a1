"""MCP Client — Transport layer (Stdio, SSE, InProcess).

Every transport follows the same small state machine::

    CREATED --connect()--> CONNECTED --close()--> CLOSED

Message framing and the handshake belong to the ``mcp`` SDK session; a
transport only opens the stream pair and keeps it (and the session on top
of it) alive until :meth:`MCPTransport.close`.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Tuple

import anyio
import httpx
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.shared.memory import create_client_server_memory_streams

from toolbridge.mcp.config import (
    TRANSPORT_IN_PROCESS,
    TRANSPORT_SSE,
    TRANSPORT_STDIO,
    MCPServerConfig,
)
from toolbridge.mcp.errors import ConfigurationError, MCPConnectionError

logger = logging.getLogger("toolbridge.mcp.transport")

SessionFactory = Callable[[Any, Any], AsyncContextManager[Any]]
StreamPair = Tuple[Any, Any]


class TransportState(str, enum.Enum):
    CREATED = "created"
    CONNECTED = "connected"
    CLOSED = "closed"


# ──────────────────────────────────────────────
# Base transport
# ──────────────────────────────────────────────


class MCPTransport:
    """Base class: owns one stream pair and the session running over it.

    Architecture:
    - ``connect()`` starts a long-lived owner task that opens the streams,
      enters the session and performs the handshake.
    - The owner task parks until ``close()`` and then unwinds every context
      it entered, so connections can be closed in any order from any task.
    """

    kind = ""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.state = TransportState.CREATED
        self.session: Any = None
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._shutdown = asyncio.Event()
        self._connect_error: Optional[BaseException] = None
        self._close_error: Optional[BaseException] = None

    @property
    def label(self) -> str:
        return self.name or self.kind

    async def _open_streams(self, stack: AsyncExitStack) -> StreamPair:
        raise NotImplementedError

    async def connect(
        self,
        session_factory: Optional[SessionFactory] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Open the transport and return an initialized session.

        Raises:
            MCPConnectionError: On any transport or handshake failure, or if
                the handshake takes longer than *timeout* seconds.
        """
        if self.state is not TransportState.CREATED:
            raise MCPConnectionError(self.label, f"transport already {self.state.value}")

        factory = session_factory or ClientSession
        self._task = asyncio.create_task(self._run(factory), name=f"mcp-{self.kind}-{self.label}")

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout or None)
        except asyncio.TimeoutError:
            await self._abort()
            raise MCPConnectionError(self.label, f"handshake timed out after {timeout:g}s")

        if self._connect_error is not None:
            err = self._connect_error
            await self._abort()
            raise MCPConnectionError(self.label, f"connection failed: {err}") from err

        self.state = TransportState.CONNECTED
        logger.debug("[MCP:%s:%s] connected", self.kind, self.label)
        return self.session

    async def _run(self, factory: SessionFactory) -> None:
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await self._open_streams(stack)
                session = await stack.enter_async_context(factory(read_stream, write_stream))
                await session.initialize()
                self.session = session
                self._ready.set()
                await self._shutdown.wait()
        except Exception as e:
            if self._ready.is_set():
                logger.error("[MCP:%s:%s] transport failed: %s", self.kind, self.label, e)
                self._close_error = e
            else:
                self._connect_error = e
        finally:
            self._ready.set()

    async def _abort(self) -> None:
        self.state = TransportState.CLOSED
        self._shutdown.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})
        self.session = None

    async def close(self) -> None:
        """Close the transport. Safe to call repeatedly."""
        if self.state is TransportState.CLOSED:
            return
        self.state = TransportState.CLOSED
        self._shutdown.set()
        if self._task is not None:
            await asyncio.wait({self._task})
        self.session = None
        logger.debug("[MCP:%s:%s] closed", self.kind, self.label)

        if self._close_error is not None:
            err, self._close_error = self._close_error, None
            raise MCPConnectionError(self.label, f"error during close: {err}") from err


# ──────────────────────────────────────────────
# StdioTransport
# ──────────────────────────────────────────────


class StdioTransport(MCPTransport):
    """Child process speaking MCP over its stdin/stdout.

    stderr of the child goes to our stderr; stdout is never logged.
    """

    kind = TRANSPORT_STDIO

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        encoding: str = "utf-8",
        encoding_error_handler: str = "strict",
        name: str = "",
    ) -> None:
        super().__init__(name)
        self.command = command
        self.args = args or []
        self.env = env
        self.encoding = encoding
        self.encoding_error_handler = encoding_error_handler

    async def _open_streams(self, stack: AsyncExitStack) -> StreamPair:
        logger.debug(
            "[MCP:stdio:%s] spawning: %s %s", self.label, self.command, " ".join(self.args)
        )
        params = StdioServerParameters(
            command=self.command,
            args=self.args,
            env=self.env,
            encoding=self.encoding,
            encoding_error_handler=self.encoding_error_handler,
        )
        return await stack.enter_async_context(stdio_client(params))


# ──────────────────────────────────────────────
# SSETransport
# ──────────────────────────────────────────────


class SSETransport(MCPTransport):
    """Long-lived HTTP event stream plus POSTed requests.

    With ``use_alternate_stream_impl`` the httpx client is built here and a
    request hook pins the custom headers onto every outgoing request,
    including the event-stream GET.
    """

    kind = TRANSPORT_SSE

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30,
        sse_read_timeout: float = 300,
        use_alternate_stream_impl: bool = False,
        name: str = "",
    ) -> None:
        super().__init__(name)
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self.sse_read_timeout = sse_read_timeout
        self.use_alternate_stream_impl = use_alternate_stream_impl

    def create_http_client(
        self,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
        auth: Optional[httpx.Auth] = None,
    ) -> httpx.AsyncClient:
        pinned = dict(self.headers)

        async def _pin_headers(request: httpx.Request) -> None:
            for key, value in pinned.items():
                request.headers[key] = value

        return httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            auth=auth,
            follow_redirects=True,
            event_hooks={"request": [_pin_headers]},
        )

    async def _open_streams(self, stack: AsyncExitStack) -> StreamPair:
        logger.debug("[MCP:sse:%s] opening event stream: %s", self.label, self.url)
        kwargs: Dict[str, Any] = {
            "headers": self.headers or None,
            "timeout": self.timeout or 30,
            "sse_read_timeout": self.sse_read_timeout,
        }
        if self.headers:
            logger.debug("[MCP:sse:%s] using custom headers", self.label)
        if self.use_alternate_stream_impl:
            kwargs["httpx_client_factory"] = self.create_http_client
        return await stack.enter_async_context(sse_client(self.url, **kwargs))


# ──────────────────────────────────────────────
# InProcessTransport
# ──────────────────────────────────────────────


class InProcessTransport(MCPTransport):
    """Drives a server object in this process through linked memory streams.

    Used for embedding and for deterministic testing without external
    processes or network. Accepts a low-level ``Server`` or a ``FastMCP``.
    """

    kind = TRANSPORT_IN_PROCESS

    def __init__(self, server: Any, raise_exceptions: bool = False, name: str = "") -> None:
        super().__init__(name)
        self.server = server
        self.raise_exceptions = raise_exceptions

    @staticmethod
    def resolve_server(server: Any) -> Any:
        """Unwrap ``FastMCP`` to the low-level server it runs."""
        return getattr(server, "_mcp_server", server)

    async def _open_streams(self, stack: AsyncExitStack) -> StreamPair:
        server = self.resolve_server(self.server)
        client_streams, server_streams = await stack.enter_async_context(
            create_client_server_memory_streams()
        )
        server_read, server_write = server_streams

        tg = await stack.enter_async_context(anyio.create_task_group())
        stack.callback(tg.cancel_scope.cancel)
        tg.start_soon(
            functools.partial(
                server.run,
                server_read,
                server_write,
                server.create_initialization_options(),
                raise_exceptions=self.raise_exceptions,
            )
        )
        return client_streams


def create_transport(config: MCPServerConfig) -> MCPTransport:
    """Build the transport described by *config*."""
    if config.transport == TRANSPORT_STDIO:
        return StdioTransport(
            config.command,
            config.args,
            config.env,
            encoding=config.encoding,
            encoding_error_handler=config.encoding_error_handler,
            name=config.name,
        )
    if config.transport == TRANSPORT_SSE:
        return SSETransport(
            config.url,
            config.headers,
            timeout=config.timeout,
            use_alternate_stream_impl=config.use_alternate_stream_impl,
            name=config.name,
        )
    if config.transport == TRANSPORT_IN_PROCESS:
        return InProcessTransport(config.server, name=config.name)
    raise ConfigurationError(f"mcp: unsupported transport: {config.transport!r}")
