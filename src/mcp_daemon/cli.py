"""Command-line interface for inspecting and exercising an MCP server."""

from __future__ import annotations

import argparse
import json
from importlib import import_module

from mcp_daemon.server import MCPServer

DEFAULT_APP = "mcp_daemon_server.example:build_server"


def load_server(target: str) -> MCPServer:
    """Import ``module:attribute`` and return the server it names.

    The attribute may be an :class:`MCPServer` or a zero-argument factory returning
    one.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{target}'")
    candidate = getattr(import_module(module_name), attribute)
    server = candidate() if callable(candidate) else candidate
    if not isinstance(server, MCPServer):
        raise TypeError(f"'{target}' did not produce an MCPServer")
    return server


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description="Dispatch a single MCP request against a server."
    )
    parser.add_argument(
        "--app",
        default=DEFAULT_APP,
        help="Server to load, as module:attribute (default: %(default)s).",
    )
    parser.add_argument(
        "--catalog",
        action="store_true",
        help="Print every prompt, resource and tool listing as JSON.",
    )
    parser.add_argument(
        "--method",
        default="initialize",
        help="Request method to dispatch (default: %(default)s).",
    )
    parser.add_argument(
        "--params",
        type=json.loads,
        default=None,
        help="Request parameters as a JSON object.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    server = load_server(args.app)

    if args.catalog:
        print(json.dumps(server.to_catalog(), indent=2))
        return 0

    response = server.handle_sync(args.method, args.params)
    print(json.dumps(response.to_dict(), indent=2))
    return 1 if response.is_error else 0


if __name__ == "__main__":
    raise SystemExit(main())
