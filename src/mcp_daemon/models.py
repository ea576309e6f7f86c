"""MCP protocol objects used by the dispatch core.

Most request parameter and result types come from :mod:`mcp.types`. The models
defined here carry resource URIs: ``mcp.types`` validates those as absolute URLs,
while registered resources may use relative URIs such as ``/a/b`` or schemes such
as ``my_app://``. Field names follow the camelCase wire names of ``mcp.types``.
"""

from __future__ import annotations

from typing import Any

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    CallToolRequestParams,
    CallToolResult,
    CompleteRequestParams,
    CompleteResult,
    Completion,
    CompletionArgument,
    ContentBlock,
    EmptyResult,
    ErrorData,
    GetPromptRequestParams,
    GetPromptResult,
    ImageContent,
    Implementation,
    InitializeResult,
    ListPromptsResult,
    ListResourceTemplatesResult,
    ListToolsResult,
    Prompt,
    PromptArgument,
    PromptMessage,
    ResourceTemplate,
    ServerCapabilities,
    TextContent,
    Tool,
)
from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "LATEST_PROTOCOL_VERSION",
    "BlobResourceContents",
    "CallToolRequestParams",
    "CallToolResult",
    "CompleteRequestParams",
    "CompleteResult",
    "Completion",
    "CompletionArgument",
    "ContentBlock",
    "EmptyResult",
    "ErrorData",
    "GetPromptRequestParams",
    "GetPromptResult",
    "ImageContent",
    "Implementation",
    "InitializeParams",
    "InitializeResult",
    "ListParams",
    "ListPromptsResult",
    "ListResourceTemplatesResult",
    "ListResourcesResult",
    "ListToolsResult",
    "Prompt",
    "PromptArgument",
    "PromptMessage",
    "ReadResourceParams",
    "ReadResourceResult",
    "Resource",
    "ResourceTemplate",
    "ServerCapabilities",
    "TextContent",
    "TextResourceContents",
    "Tool",
    "to_wire",
]


def to_wire(model: BaseModel) -> dict[str, Any]:
    """Return the JSON-ready representation of a protocol object."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class ListParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    cursor: str | None = None


class InitializeParams(BaseModel):
    """Client half of the handshake; every field is optional."""

    model_config = ConfigDict(extra="allow")

    protocolVersion: str | int | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: dict[str, Any] | None = None


class ReadResourceParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    uri: str


class Resource(BaseModel):
    model_config = ConfigDict(extra="allow")

    uri: str
    name: str
    description: str | None = None
    mimeType: str | None = None


class TextResourceContents(BaseModel):
    uri: str
    mimeType: str | None = None
    text: str


class BlobResourceContents(BaseModel):
    uri: str
    mimeType: str | None = None
    blob: str


class ReadResourceResult(BaseModel):
    contents: list[TextResourceContents | BlobResourceContents]


class ListResourcesResult(BaseModel):
    resources: list[Resource]
    nextCursor: str | None = None
