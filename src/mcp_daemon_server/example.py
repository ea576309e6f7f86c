"""Example daemon exposing a prompt, templated resources and a stateful tool."""

from __future__ import annotations

import threading
from typing import Annotated

from pydantic import Field

from mcp_daemon import Arg, MCPServer, ServerBuilder, ToolExecutionError


class CounterState:
    """Counter shared by every ``add_count`` invocation.

    Sync tools run in worker threads, so the counter guards itself with a lock; the
    dispatch core does not serialize handlers.
    """

    def __init__(self) -> None:
        """Start counting from zero."""
        self._count = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        """Add one and return the new value."""
        with self._lock:
            self._count += 1
            return self._count

    @property
    def value(self) -> int:
        with self._lock:
            return self._count


def build_server(state: CounterState | None = None) -> MCPServer:
    """Register the example capabilities and return the sealed server."""
    counter = state or CounterState()
    builder = ServerBuilder(
        name="mcp-daemon-example",
        version="0.1.0",
        instructions="Example prompts, files and a counting echo tool.",
    )

    @builder.prompt
    async def example_prompt() -> str:
        """Say hello."""
        return "Hello!"

    @builder.prompt(name="echo")
    async def echo_prompt(
        a: Annotated[str, Arg(description="Greeting target")],
        _b: Annotated[str, Arg("x", description="Suffix")],
    ) -> str:
        """Greet ``a`` followed by ``x``."""
        return f"Hello, {a} {_b}!"

    @builder.resource("example://x/y.txt", mime_type="text/plain")
    async def file_one() -> str:
        """A single fixed file."""
        return "one file"

    @builder.resource("example://files/{name}.txt", mime_type="text/plain")
    async def read_file(name: str) -> str:
        """Text file by name."""
        return f"Content of {name}.txt"

    @builder.resource("example://{a}/{+b}")
    async def file_ab(a: str, b: str) -> str:
        """Any path below a top-level directory."""
        return f"{a} and {b}"

    @builder.resource()
    async def file_any(url: str) -> str:
        """Fallback for URIs no template matches."""
        return f"any file: {url}"

    @builder.tool
    def add_count(
        message: Annotated[str, Field(description="Text to echo back")],
    ) -> str:
        """Echo the message with the number of calls so far."""
        return f"Echo: {message} {counter.increment()}"

    @builder.tool(name="echo")
    async def echo_tool(
        a: str,
        _b: Annotated[str, Arg("x", description="Suffix")],
    ) -> str:
        """Echo both arguments."""
        return f"Hello, {a} {_b}!"

    @builder.tool
    async def divide(numerator: float, denominator: float) -> dict[str, float]:
        """Divide two numbers."""
        if denominator == 0:
            raise ToolExecutionError("Cannot divide by zero")
        return {"quotient": numerator / denominator}

    return builder.build()
