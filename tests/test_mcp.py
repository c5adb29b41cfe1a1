"""
MCPManager tests — deterministic fake sessions plus in-process FastMCP servers.
"""

import asyncio
import json
import os
import sys

import pytest
from mcp import types

from toolbridge.mcp.config import MCPManagerConfig, MCPServerConfig
from toolbridge.mcp.converter import MCPToolAdapter, load_mcp_tools
from toolbridge.mcp.errors import (
    MCPConnectionError,
    ToolInvocationError,
    ToolTimeoutError,
)
from toolbridge.mcp.manager import MCPManager
from toolbridge.tools.openai_adapter import OpenAIToolAdapter
from toolbridge.tools.registry import ToolDef, ToolRegistry

from mcp_fakes import FakeSession, FakeTransport, text_result
from servers.math_server import build_server

MATH_SERVER = os.path.join(os.path.dirname(__file__), "servers", "math_server.py")


async def add_fake_server(mgr, name, session=None, **kwargs):
    transport = FakeTransport(session, name=name, **kwargs)
    await mgr.add_server_with_transport(MCPServerConfig(name=name), transport)
    return transport


# ══════════════════════════════════════════════
# Spec registration
# ══════════════════════════════════════════════


class TestRegisterServer:

    def test_valid_and_invalid_specs(self):
        mgr = MCPManager({
            "math": {"command": "python", "args": ["math_server.py"]},
            "nocmd": {"args": []},
            "nourl": {"transport": "sse"},
            "weird": {"transport": "websocket", "url": "ws://x"},
        })
        assert list(mgr.server_specs()) == ["math"]

    def test_register_returns_flag(self):
        mgr = MCPManager()
        assert mgr.register_server("web", {"transport": "sse", "url": "http://x/sse"})
        assert not mgr.register_server("bad", {"transport": "sse"})
        assert not mgr.register_server("bad", None)

    def test_from_config_file(self, tmp_path):
        path = tmp_path / "mcp.json"
        path.write_text(json.dumps({"servers": {
            "math": {"transport": "stdio", "command": "python", "args": ["math_server.py"]},
            "broken": {"transport": "stdio"},
        }}), encoding="utf-8")
        mgr = MCPManager.from_config_file(str(path), config=MCPManagerConfig(prefer_text=True))
        assert list(mgr.server_specs()) == ["math"]
        assert mgr.config.prefer_text


# ══════════════════════════════════════════════
# connect_all
# ══════════════════════════════════════════════


class TestConnectAll:

    @pytest.mark.asyncio
    async def test_invalid_spec_omitted(self):
        mgr = MCPManager({
            "bad": {"transport": "sse"},
            "math": {"transport": "in_process", "server": build_server()},
            "nocmd": {"transport": "stdio", "args": []},
        })
        try:
            tools = await mgr.connect_all()
            assert list(tools) == ["math"]
            assert {t.name for t in tools["math"]} == {"add", "echo", "fail", "sleep"}
            assert all(isinstance(t, MCPToolAdapter) for t in tools["math"])
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_unreachable_server_omitted(self):
        mgr = MCPManager({
            "ghost": {"command": "/nonexistent/mcp-server-binary", "args": []},
            "math": {"transport": "in_process", "server": build_server()},
        })
        try:
            tools = await mgr.connect_all()
            assert list(tools) == ["math"]
            assert mgr.get_session("ghost") is None
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_unexpected_failure_contained(self, monkeypatch):
        async def flaky_load(session, server_name, *args):
            if server_name == "a":
                raise TypeError("unhashable tool name")
            return await load_mcp_tools(session, server_name, *args)

        monkeypatch.setattr("toolbridge.mcp.manager.load_mcp_tools", flaky_load)
        mgr = MCPManager({
            "a": {"transport": "in_process", "server": build_server("a")},
            "b": {"transport": "in_process", "server": build_server("b")},
        })
        try:
            tools = await mgr.connect_all()
            assert list(tools) == ["b"]
            assert mgr.get_session("a") is None
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_add_e2e(self):
        mgr = MCPManager()
        try:
            tools = await mgr.connect_in_process("math", build_server())
            add = next(t for t in tools["math"] if t.name == "add")
            assert await add.invoke({"a": 5, "b": 3}) == "8"
            assert add.parameter_schema["required"] == ["a", "b"]
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_remote_error_e2e(self):
        mgr = MCPManager()
        try:
            tools = await mgr.connect_in_process("math", build_server())
            fail = next(t for t in tools["math"] if t.name == "fail")
            with pytest.raises(ToolInvocationError, match="boom") as exc_info:
                await fail.invoke({})
            assert exc_info.value.tool_name == "fail"
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_timeout_e2e(self):
        mgr = MCPManager()
        try:
            tools = await mgr.connect_in_process("math", build_server())
            sleep = next(t for t in tools["math"] if t.name == "sleep")
            with pytest.raises(ToolTimeoutError):
                await sleep.invoke({"seconds": 30}, timeout=0.2)
            # the session stays usable after an abandoned call
            echo = next(t for t in tools["math"] if t.name == "echo")
            assert await echo.invoke({"text": "still here"}) == "still here"
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_stdio_e2e(self):
        mgr = MCPManager()
        try:
            tools = await mgr.connect_via_stdio("math", sys.executable, [MATH_SERVER])
            add = next(t for t in tools["math"] if t.name == "add")
            assert await add.invoke('{"a": 2, "b": 2}') == "4"
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with MCPManager({"math": {"transport": "in_process", "server": build_server()}}) as mgr:
            assert mgr.get_session("math") is not None
            assert await mgr.call_tool("mcp.math.add", {"a": 1, "b": 2}) == "3"
        assert mgr.get_session("math") is None

    @pytest.mark.asyncio
    async def test_convenience_methods_replace_specs(self):
        mgr = MCPManager({"web": {"transport": "sse", "url": "http://x/sse"}})
        try:
            await mgr.connect_in_process("a", build_server("a"))
            assert list(mgr.server_specs()) == ["a"]
            await mgr.connect_in_process("b", build_server("b"))
            assert list(mgr.server_specs()) == ["b"]
            # "a" is no longer registered but its connection stays open
            assert mgr.server_names() == ["a", "b"]
        finally:
            await mgr.close()

    @pytest.mark.asyncio
    async def test_concurrent_calls_across_servers(self):
        mgr = MCPManager({
            "a": {"transport": "in_process", "server": build_server("a")},
            "b": {"transport": "in_process", "server": build_server("b")},
        })
        try:
            await mgr.connect_all()
            results = await asyncio.gather(
                mgr.call_tool("mcp.a.add", {"a": 1, "b": 1}),
                mgr.call_tool("mcp.b.add", {"a": 2, "b": 2}),
                mgr.call_tool("mcp.a.echo", {"text": "x"}),
            )
            assert results == ["2", "4", "x"]
        finally:
            await mgr.close()


# ══════════════════════════════════════════════
# Manager with fake sessions
# ══════════════════════════════════════════════


class TestMCPManager:

    @pytest.mark.asyncio
    async def test_add_server(self):
        mgr = MCPManager()
        transport = await add_fake_server(mgr, "fs")
        assert mgr.server_names() == ["fs"]
        assert len(mgr.get_tools("fs")) == 3
        assert mgr.get_session("fs") is transport.fake_session
        assert mgr.get_client("fs") is transport
        assert [t.name for t in mgr.list_tools()] == [
            "mcp.fs.read_file", "mcp.fs.list_files", "mcp.fs.write_file",
        ]

    @pytest.mark.asyncio
    async def test_unknown_lookups(self):
        mgr = MCPManager()
        assert mgr.get_session("nope") is None
        assert mgr.get_client("nope") is None
        assert mgr.get_tools("nope") == []
        assert mgr.get_tools() == []
        assert mgr.list_tools("nope") == []

    @pytest.mark.asyncio
    async def test_connection_failure_raises(self):
        mgr = MCPManager()
        with pytest.raises(MCPConnectionError):
            await add_fake_server(mgr, "fs", FakeSession(init_error=RuntimeError("refused")))
        assert mgr.server_names() == []

    @pytest.mark.asyncio
    async def test_catalog_failure_keeps_session(self):
        mgr = MCPManager()
        await add_fake_server(mgr, "fs", FakeSession(list_error=RuntimeError("no tools/list")))
        assert mgr.server_names() == ["fs"]
        assert mgr.get_session("fs") is not None
        assert mgr.get_tools("fs") == []

    @pytest.mark.asyncio
    async def test_supersede_same_name(self):
        mgr = MCPManager()
        first = await add_fake_server(mgr, "fs")
        second = await add_fake_server(mgr, "fs")
        assert first.close_calls == 1
        assert second.close_calls == 0
        assert mgr.get_client("fs") is second
        assert mgr.server_names() == ["fs"]

    @pytest.mark.asyncio
    async def test_failed_reconnect_keeps_live_connection(self):
        mgr = MCPManager()
        first = await add_fake_server(mgr, "fs")
        with pytest.raises(MCPConnectionError, match="down"):
            await add_fake_server(mgr, "fs", FakeSession(init_error=RuntimeError("down")))
        assert mgr.server_names() == ["fs"]
        assert mgr.get_client("fs") is first
        assert mgr.get_session("fs") is first.fake_session
        assert first.close_calls == 0
        assert await mgr.call_tool("mcp.fs.read_file", {"path": "/a"}) == "contents of /a"

    @pytest.mark.asyncio
    async def test_unexpected_load_failure_closes_transport(self, monkeypatch):
        async def broken_load(*args):
            raise TypeError("unhashable tool name")

        monkeypatch.setattr("toolbridge.mcp.manager.load_mcp_tools", broken_load)
        mgr = MCPManager()
        transport = FakeTransport(name="fs")
        with pytest.raises(TypeError):
            await mgr.add_server_with_transport(MCPServerConfig(name="fs"), transport)
        assert transport.close_calls == 1
        assert transport.fake_session.exited
        assert mgr.server_names() == []
        assert mgr.server_specs() == {}

    @pytest.mark.asyncio
    async def test_remove_server(self):
        mgr = MCPManager()
        transport = await add_fake_server(mgr, "fs")
        await mgr.remove_server("fs")
        assert transport.close_calls == 1
        assert mgr.server_names() == []
        assert mgr.list_tools() == []
        with pytest.raises(KeyError):
            await mgr.remove_server("fs")

    @pytest.mark.asyncio
    async def test_inject_tools(self):
        mgr = MCPManager()
        await add_fake_server(mgr, "fs")
        registry = ToolRegistry()
        mgr.inject_tools(registry)
        assert len(registry) == 3
        assert "mcp.fs.read_file" in registry
        assert registry.get("mcp.fs.read_file").description.startswith("[MCP:fs]")

    @pytest.mark.asyncio
    async def test_inject_tools_idempotent(self):
        mgr = MCPManager()
        await add_fake_server(mgr, "fs")
        registry = ToolRegistry()
        mgr.inject_tools(registry)
        mgr.inject_tools(registry)
        assert len(registry) == 3

    @pytest.mark.asyncio
    async def test_remove_tools_precise(self):
        mgr = MCPManager()
        await add_fake_server(mgr, "fs")
        registry = ToolRegistry()

        async def local(arguments, ctx):
            return "local"

        registry.register(ToolDef(name="local_tool", description="", handler=local))
        mgr.inject_tools(registry)
        assert len(registry) == 4
        mgr.remove_tools(registry)
        assert registry.names() == ["local_tool"]

    @pytest.mark.asyncio
    async def test_custom_prefix(self):
        mgr = MCPManager(config=MCPManagerConfig(tool_prefix="{server}__{tool}"))
        await add_fake_server(mgr, "fs")
        assert await mgr.call_tool("fs__read_file", {"path": "/a"}) == "contents of /a"

    @pytest.mark.asyncio
    async def test_call_tool_routing(self):
        mgr = MCPManager()
        await add_fake_server(mgr, "fs")
        await add_fake_server(mgr, "db", FakeSession(
            tools=[types.Tool(name="query", inputSchema={"type": "object"})],
            call_handler=lambda name, args: text_result("rows"),
        ))
        assert await mgr.call_tool("mcp.fs.read_file", {"path": "/tmp/x"}) == "contents of /tmp/x"
        assert await mgr.call_tool("mcp.db.query") == "rows"
        with pytest.raises(KeyError):
            await mgr.call_tool("mcp.fs.unknown")

    @pytest.mark.asyncio
    async def test_call_tool_timeout(self):
        async def never(name, args):
            await asyncio.Event().wait()

        mgr = MCPManager()
        await add_fake_server(mgr, "slow", FakeSession(
            tools=[types.Tool(name="slow_tool", inputSchema={"type": "object"})],
            call_handler=never,
        ))
        with pytest.raises(ToolTimeoutError):
            await mgr.call_tool("mcp.slow.slow_tool", {}, timeout=0.1)

    @pytest.mark.asyncio
    async def test_refresh_tools(self):
        mgr = MCPManager()
        transport = await add_fake_server(mgr, "fs")
        transport.fake_session.tools = [
            types.Tool(name="read_file", inputSchema={"type": "object"}),
            types.Tool(name="stat", inputSchema={"type": "object"}),
        ]
        refreshed = await mgr.refresh_tools()
        assert [t.name for t in refreshed["fs"]] == ["read_file", "stat"]
        assert [t.name for t in mgr.get_tools("fs")] == ["read_file", "stat"]
        with pytest.raises(KeyError):
            await mgr.call_tool("mcp.fs.write_file", {"path": "a", "content": "b"})

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_tools(self):
        mgr = MCPManager()
        transport = await add_fake_server(mgr, "fs")
        transport.fake_session.list_error = RuntimeError("gone")
        assert await mgr.refresh_tools("fs", "unknown") == {}
        assert len(mgr.get_tools("fs")) == 3

    @pytest.mark.asyncio
    async def test_openai_dispatch(self):
        mgr = MCPManager(config=MCPManagerConfig(strict_schema=True))
        await add_fake_server(mgr, "fs")
        registry = ToolRegistry()
        mgr.inject_tools(registry)
        adapter = OpenAIToolAdapter(registry)

        tools = adapter.to_openai_tools()
        read = next(t for t in tools if t["function"]["name"] == "mcp.fs.read_file")
        assert read["function"]["parameters"]["required"] == ["path"]

        results = await adapter.handle_tool_calls([
            {"id": "c1", "function": {"name": "mcp.fs.read_file", "arguments": '{"path": "/etc/hosts"}'}},
            {"id": "c2", "function": {"name": "mcp.fs.write_file", "arguments": '{"path": "a"}'}},
        ])
        assert results[0].content == "contents of /etc/hosts"
        assert results[1].error == (
            "Invalid input for tool write_file: missing required argument 'content'"
        )


# ══════════════════════════════════════════════
# close()
# ══════════════════════════════════════════════


class TestClose:

    @pytest.mark.asyncio
    async def test_every_cleanup_runs_once(self):
        mgr = MCPManager()
        log = []
        a = await add_fake_server(mgr, "a", close_log=log)
        b = await add_fake_server(mgr, "b", close_log=log, close_error=RuntimeError("stuck"))
        c = await add_fake_server(mgr, "c", close_log=log)

        await mgr.close()

        assert [a.close_calls, b.close_calls, c.close_calls] == [1, 1, 1]
        assert log == ["c", "b", "a"]
        for name in ("a", "b", "c"):
            assert mgr.get_session(name) is None
        assert mgr.server_names() == []
        assert mgr.get_tools() == []

    @pytest.mark.asyncio
    async def test_close_twice(self):
        mgr = MCPManager()
        transport = await add_fake_server(mgr, "fs")
        await mgr.close()
        await mgr.close()
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_reconnect_after_close(self):
        mgr = MCPManager({"math": {"transport": "in_process", "server": build_server()}})
        await mgr.connect_all()
        await mgr.close()
        tools = await mgr.connect_all()
        try:
            assert "math" in tools
        finally:
            await mgr.close()
