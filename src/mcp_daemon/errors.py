"""Error types for the MCP dispatch core."""

from __future__ import annotations

import uuid
from enum import IntEnum
from typing import NoReturn, TypedDict


class ErrorCode(IntEnum):
    """JSON-RPC error codes used by MCP."""

    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    RESOURCE_NOT_FOUND = -32002


class MCPErrorPayload(TypedDict):
    """Structured JSON payload for MCP errors."""

    error: dict[str, object | None]


class RegistrationError(ValueError):
    """Raised while registering capabilities; fatal before serving starts."""


class TemplateParseError(RegistrationError):
    """Raised for malformed URI templates."""

    def __init__(self, template: str, reason: str) -> None:
        """Describe why ``template`` could not be parsed."""
        super().__init__(f"Invalid URI template '{template}': {reason}")
        self.template = template
        self.reason = reason


class MCPError(Exception):
    """Structured MCP error that is safe to send to the peer."""

    code: int = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        data: object | None = None,
        *,
        code: int | None = None,
    ) -> None:
        """Create a structured MCP error payload."""
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.data = data
        self.error: MCPErrorPayload = {
            "error": {
                "code": int(self.code),
                "message": message,
                "data": data,
            }
        }

    def to_dict(self) -> MCPErrorPayload:
        """Return the structured error payload."""
        return self.error


class MethodNotFoundError(MCPError):
    """The request named an operation the server does not implement."""

    code = ErrorCode.METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        """Report ``method`` as unknown."""
        super().__init__(f"Method not found: {method}", {"method": method})


class NotFoundError(MCPError):
    """No prompt, tool or resource matched the request."""

    code = ErrorCode.INVALID_PARAMS


class InvalidParamsError(MCPError):
    """Request parameters or handler arguments failed to bind."""

    code = ErrorCode.INVALID_PARAMS


class PublicError(MCPError):
    """Handler failure whose message may be disclosed to the peer verbatim."""


class ToolExecutionError(PublicError):
    """A tool ran but its operation failed.

    Raised from a tool handler this becomes a successful ``tools/call`` response
    flagged with ``isError``; from any other handler it is a public error.
    """


class InternalError(MCPError):
    """Opaque failure reported in place of an unexpected handler exception."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, error_id: str | None = None) -> None:
        """Create the opaque error; ``error_id`` correlates with local logs."""
        self.error_id = error_id or uuid.uuid4().hex
        super().__init__("Internal error", {"errorId": self.error_id})


def raise_mcp_error(
    message: str, data: object | None = None, *, code: int | None = None
) -> NoReturn:
    """Raise a :class:`PublicError` with a structured payload."""
    raise PublicError(message, data, code=code)
