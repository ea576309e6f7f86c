"""Entry point serving the example daemon over FastMCP."""

from __future__ import annotations

import argparse
import logging
from typing import Any

from mcp_daemon_server.example import build_server
from mcp_daemon_server.fastmcp_adapter import build_fastmcp_app


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the server entry point."""
    parser = argparse.ArgumentParser(description="MCP daemon example server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http", "sse", "streamable-http"],
        default="stdio",
        help="Transport used by FastMCP (default: %(default)s).",
    )
    parser.add_argument("--host", default=None, help="Bind address (HTTP only).")
    parser.add_argument("--port", type=int, default=None, help="Port (HTTP only).")
    parser.add_argument("--path", default=None, help="URL path for HTTP transports.")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: %(default)s).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Build the example server and hand it to FastMCP."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app, _ = build_fastmcp_app(build_server())
    run_kwargs: dict[str, Any] = {}
    if args.transport != "stdio":
        for key in ("host", "port", "path"):
            value = getattr(args, key)
            if value is not None:
                run_kwargs[key] = value
    app.run(transport=args.transport, **run_kwargs)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
