"""mcp_daemon package initialization."""

from mcp_daemon.arguments import Arg, ArgumentSpec, BindingKind, argument
from mcp_daemon.dispatch import Dispatcher, Method, Request, Response
from mcp_daemon.errors import (
    ErrorCode,
    InternalError,
    InvalidParamsError,
    MCPError,
    MethodNotFoundError,
    NotFoundError,
    PublicError,
    RegistrationError,
    TemplateParseError,
    ToolExecutionError,
    raise_mcp_error,
)
from mcp_daemon.registry import (
    CapabilityRegistry,
    ManualOverrides,
    PromptDescriptor,
    ResourceDescriptor,
    ToolDescriptor,
)
from mcp_daemon.server import MCPServer, ServerBuilder
from mcp_daemon.uri_template import UriTemplate, compile_template

__all__ = [
    "Arg",
    "ArgumentSpec",
    "BindingKind",
    "CapabilityRegistry",
    "Dispatcher",
    "ErrorCode",
    "InternalError",
    "InvalidParamsError",
    "MCPError",
    "MCPServer",
    "ManualOverrides",
    "Method",
    "MethodNotFoundError",
    "NotFoundError",
    "PromptDescriptor",
    "PublicError",
    "RegistrationError",
    "Request",
    "ResourceDescriptor",
    "Response",
    "ServerBuilder",
    "TemplateParseError",
    "ToolDescriptor",
    "ToolExecutionError",
    "UriTemplate",
    "argument",
    "compile_template",
    "raise_mcp_error",
]
