"""Shared test fixtures."""

from __future__ import annotations

import pytest

from mcp_daemon import MCPServer
from mcp_daemon_server.example import CounterState, build_server


@pytest.fixture()
def anyio_backend() -> str:
    """Run async tests on asyncio only."""
    return "asyncio"


@pytest.fixture()
def counter() -> CounterState:
    """Provide a fresh counter for the example daemon."""
    return CounterState()


@pytest.fixture()
def example_server(counter: CounterState) -> MCPServer:
    """Provide the example daemon wired to ``counter``."""
    return build_server(counter)
