"""Serve an :class:`MCPServer` through FastMCP.

FastMCP owns the transport, the JSON-RPC envelope and the ``initialize`` handshake.
Every capability request is routed into the dispatch core, so template matching,
the catch-all resource, manual overrides and completion behave exactly as they do
for in-process dispatch. Core errors keep their code and data on the wire.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import mcp.types
from fastmcp import FastMCP
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, ValidationError

from mcp_daemon import MCPServer, ToolDescriptor
from mcp_daemon.dispatch import Method
from mcp_daemon.errors import ErrorCode

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[mcp.types.ServerResult]]

ROUTES: dict[type, tuple[Method, type[BaseModel]]] = {
    mcp.types.ListPromptsRequest: (Method.PROMPTS_LIST, mcp.types.ListPromptsResult),
    mcp.types.GetPromptRequest: (Method.PROMPTS_GET, mcp.types.GetPromptResult),
    mcp.types.ListResourcesRequest: (
        Method.RESOURCES_LIST,
        mcp.types.ListResourcesResult,
    ),
    mcp.types.ListResourceTemplatesRequest: (
        Method.RESOURCES_TEMPLATES_LIST,
        mcp.types.ListResourceTemplatesResult,
    ),
    mcp.types.ReadResourceRequest: (
        Method.RESOURCES_READ,
        mcp.types.ReadResourceResult,
    ),
    mcp.types.ListToolsRequest: (Method.TOOLS_LIST, mcp.types.ListToolsResult),
    mcp.types.CallToolRequest: (Method.TOOLS_CALL, mcp.types.CallToolResult),
    mcp.types.CompleteRequest: (
        Method.COMPLETION_COMPLETE,
        mcp.types.CompleteResult,
    ),
}


def route_to_core(
    server: MCPServer, method: Method, result_type: type[BaseModel]
) -> Handler:
    """Build a low-level request handler that forwards ``method`` to ``server``.

    Args:
        server: Sealed server whose dispatcher answers the request.
        method: Core method the request type corresponds to.
        result_type: ``mcp.types`` result model the core result is validated into.

    Returns:
        Coroutine function accepted by ``mcp``'s low-level request table.

    """

    async def handler(request: Any) -> mcp.types.ServerResult:
        params = None
        if request.params is not None:
            params = request.params.model_dump(
                mode="json", by_alias=True, exclude_none=True
            )
        response = await server.handle(method.value, params)
        if response.error is not None:
            raise McpError(response.error)
        try:
            result = result_type.model_validate(response.to_dict()["result"])
        except ValidationError as exc:
            logger.exception("%s result is not valid on the MCP wire", method.value)
            raise McpError(
                mcp.types.ErrorData(
                    code=int(ErrorCode.INTERNAL_ERROR), message="Internal error"
                )
            ) from exc
        return mcp.types.ServerResult(result)

    return handler


def build_fastmcp_app(server: MCPServer) -> tuple[FastMCP, Sequence[ToolDescriptor]]:
    """Create a FastMCP app whose capability requests are answered by ``server``.

    Returns:
        The app and the tool descriptors it serves.

    """
    app = FastMCP(
        name=server.name,
        instructions=server.dispatcher.instructions,
        version=server.dispatcher.server_info.version,
    )
    handlers = app._mcp_server.request_handlers
    for request_type, (method, result_type) in ROUTES.items():
        handlers[request_type] = route_to_core(server, method, result_type)
    return app, server.registry.list_tools()
