"""Example MCP daemon and its FastMCP bridge."""

from mcp_daemon_server.example import CounterState, build_server

__all__ = ["CounterState", "build_server"]
