"""Conversion of handler return values into MCP result envelopes."""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from mcp_daemon.errors import ToolExecutionError
from mcp_daemon.models import (
    BlobResourceContents,
    CallToolResult,
    Completion,
    CompleteResult,
    GetPromptResult,
    ImageContent,
    Prompt,
    PromptArgument,
    PromptMessage,
    ReadResourceResult,
    Resource,
    ResourceTemplate,
    TextContent,
    TextResourceContents,
    Tool,
)

if TYPE_CHECKING:
    from mcp_daemon.registry import (
        PromptDescriptor,
        ResourceDescriptor,
        ToolDescriptor,
    )


def _text(value: str) -> TextContent:
    return TextContent(type="text", text=value)


def _to_json_text(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(indent=2)
    return json.dumps(value, indent=2, default=str)


def _to_message(value: Any) -> PromptMessage:
    if isinstance(value, PromptMessage):
        return value
    if isinstance(value, str):
        return PromptMessage(role="user", content=_text(value))
    if isinstance(value, (TextContent, ImageContent)):
        return PromptMessage(role="user", content=value)
    if isinstance(value, Mapping) and "role" in value and "content" in value:
        content = value["content"]
        if isinstance(content, str):
            content = _text(content)
        return PromptMessage.model_validate({"role": value["role"], "content": content})
    raise TypeError(f"Unsupported prompt message of type {type(value).__name__}")


def prompt_result(descriptor: PromptDescriptor, value: Any) -> GetPromptResult:
    """Wrap a prompt handler's return value.

    Strings and single messages become one user message; sequences are converted
    item by item. A result without a description takes the descriptor's.
    """
    if isinstance(value, GetPromptResult):
        result = value
    elif isinstance(value, (list, tuple)):
        result = GetPromptResult(messages=[_to_message(item) for item in value])
    else:
        result = GetPromptResult(messages=[_to_message(value)])
    if result.description is None and descriptor.description:
        result = result.model_copy(update={"description": descriptor.description})
    return result


def resource_result(
    descriptor: ResourceDescriptor, uri: str, value: Any
) -> ReadResourceResult:
    """Wrap a resource handler's return value, echoing ``uri``."""
    if isinstance(value, ReadResourceResult):
        return value
    if isinstance(value, (TextResourceContents, BlobResourceContents)):
        return ReadResourceResult(contents=[value])
    mime_type = descriptor.mime_type
    if isinstance(value, (bytes, bytearray)):
        blob = base64.b64encode(bytes(value)).decode("ascii")
        return ReadResourceResult(
            contents=[BlobResourceContents(uri=uri, mimeType=mime_type, blob=blob)]
        )
    if isinstance(value, str):
        text = value
    elif isinstance(value, (Mapping, list, tuple, BaseModel)):
        text = _to_json_text(value)
        mime_type = mime_type or "application/json"
    else:
        text = str(value)
    return ReadResourceResult(
        contents=[TextResourceContents(uri=uri, mimeType=mime_type, text=text)]
    )


def tool_result(value: Any) -> CallToolResult:
    """Wrap a tool handler's return value."""
    if isinstance(value, CallToolResult):
        return value
    if value is None:
        return CallToolResult(content=[])
    if isinstance(value, (TextContent, ImageContent)):
        return CallToolResult(content=[value])
    if isinstance(value, str):
        return CallToolResult(content=[_text(value)])
    if isinstance(value, BaseModel):
        return CallToolResult(
            content=[_text(_to_json_text(value))],
            structuredContent=value.model_dump(mode="json"),
        )
    if isinstance(value, Mapping):
        return CallToolResult(
            content=[_text(_to_json_text(value))],
            structuredContent=dict(value),
        )
    if isinstance(value, (list, tuple)):
        return CallToolResult(content=[_text(_to_json_text(value))])
    return CallToolResult(content=[_text(str(value))])


def tool_error_result(error: ToolExecutionError) -> CallToolResult:
    """Describe a failed tool operation as a successful protocol response."""
    return CallToolResult(content=[_text(error.message)], isError=True)


def completion_result(value: Any) -> CompleteResult:
    """Wrap the value returned by a ``completion_complete`` override."""
    if isinstance(value, CompleteResult):
        return value
    if isinstance(value, Completion):
        return CompleteResult(completion=value)
    if value is None:
        return CompleteResult(completion=Completion(values=[]))
    values = [str(item) for item in value]
    return CompleteResult(completion=Completion(values=values, total=len(values)))


def prompt_summary(descriptor: PromptDescriptor) -> Prompt:
    arguments = [
        PromptArgument(
            name=spec.name, description=spec.description, required=spec.required
        )
        for spec in descriptor.arguments
    ]
    return Prompt(
        name=descriptor.name,
        description=descriptor.description or None,
        arguments=arguments or None,
    )


def resource_summary(descriptor: ResourceDescriptor) -> Resource:
    uri = descriptor.template.listable_uri() if descriptor.template else None
    if uri is None:
        raise ValueError(f"Resource '{descriptor.name}' has no concrete URI")
    return Resource(
        uri=uri,
        name=descriptor.name,
        description=descriptor.description or None,
        mimeType=descriptor.mime_type,
    )


def resource_template_summary(descriptor: ResourceDescriptor) -> ResourceTemplate:
    return ResourceTemplate(
        uriTemplate=str(descriptor.template),
        name=descriptor.name,
        description=descriptor.description or None,
        mimeType=descriptor.mime_type,
    )


def tool_summary(descriptor: ToolDescriptor) -> Tool:
    return Tool(
        name=descriptor.name,
        description=descriptor.description or None,
        inputSchema=descriptor.input_schema,
    )
