"""Small FastMCP server used by the transport and manager tests."""

import asyncio

from mcp.server.fastmcp import FastMCP


def build_server(name="math"):
    server = FastMCP(name)

    @server.tool()
    def add(a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    @server.tool()
    def echo(text: str) -> str:
        """Echo the text back."""
        return text

    @server.tool()
    def fail(reason: str = "boom") -> str:
        """Always fails."""
        raise ValueError(reason)

    @server.tool()
    async def sleep(seconds: float) -> str:
        """Sleep, then answer."""
        await asyncio.sleep(seconds)
        return "awake"

    return server


if __name__ == "__main__":
    build_server().run()
