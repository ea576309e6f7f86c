"""Dispatch engine: route decoded requests to registered handlers.

The dispatcher keeps no mutable state of its own, so one instance serves any number
of concurrent requests. Coroutine handlers are awaited directly; plain functions run
in an anyio worker thread so a blocking handler never stalls other dispatches.
Cancellation raised by anyio is never caught here: a cancelled request propagates the
cancellation to its caller and produces no response.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import anyio.to_thread
from pydantic import BaseModel, ValidationError

from mcp_daemon import results
from mcp_daemon.errors import (
    InternalError,
    InvalidParamsError,
    MCPError,
    MethodNotFoundError,
    ToolExecutionError,
)
from mcp_daemon.models import (
    LATEST_PROTOCOL_VERSION,
    CallToolRequestParams,
    CompleteRequestParams,
    EmptyResult,
    ErrorData,
    GetPromptRequestParams,
    Implementation,
    InitializeParams,
    InitializeResult,
    ListParams,
    ListPromptsResult,
    ListResourcesResult,
    ListResourceTemplatesResult,
    ListToolsResult,
    ReadResourceParams,
    Resource,
    ServerCapabilities,
    to_wire,
)
from mcp_daemon.registry import CapabilityRegistry, HandlerDescriptor

logger = logging.getLogger(__name__)

Route = Callable[[Mapping[str, Any]], Awaitable[BaseModel]]


class Method(str, Enum):
    """Request methods understood by the dispatcher."""

    INITIALIZE = "initialize"
    PING = "ping"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    RESOURCES_TEMPLATES_LIST = "resources/templates/list"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    COMPLETION_COMPLETE = "completion/complete"


@dataclass(frozen=True)
class Request:
    """A decoded request: method name and parameter bag."""

    method: str
    params: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class Response:
    """Either a typed result or an error, ready for the transport to encode."""

    result: BaseModel | None = None
    error: ErrorData | None = None

    @classmethod
    def success(cls, result: BaseModel) -> Response:
        return cls(result=result)

    @classmethod
    def failure(cls, error: MCPError) -> Response:
        return cls(error=ErrorData.model_validate(error.to_dict()["error"]))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Return ``{"result": ...}`` or ``{"error": ...}``."""
        if self.error is not None:
            return {"error": to_wire(self.error)}
        if self.result is None:
            return {"result": {}}
        return {"result": to_wire(self.result)}


async def invoke(func: Callable[..., Any], kwargs: Mapping[str, Any]) -> Any:
    """Call ``func`` with ``kwargs``, in a worker thread unless it is a coroutine."""
    if inspect.iscoroutinefunction(func):
        return await func(**kwargs)
    value = await anyio.to_thread.run_sync(functools.partial(func, **kwargs))
    if inspect.isawaitable(value):
        value = await value
    return value


class Dispatcher:
    """Resolve requests against a sealed :class:`CapabilityRegistry`."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        server_info: Implementation | None = None,
        instructions: str | None = None,
    ) -> None:
        """Seal ``registry`` and build the method table.

        Args:
            registry: Registry consulted for every request.
            server_info: Identity reported by ``initialize`` unless overridden.
            instructions: Instructions reported by ``initialize`` unless overridden.

        """
        registry.seal()
        self.registry = registry
        self.server_info = server_info or Implementation(
            name="mcp-daemon", version="0.1.0"
        )
        self.instructions = instructions
        self._routes: dict[Method, Route] = {
            Method.INITIALIZE: self._initialize,
            Method.PING: self._ping,
            Method.PROMPTS_LIST: self._prompts_list,
            Method.PROMPTS_GET: self._prompts_get,
            Method.RESOURCES_LIST: self._resources_list,
            Method.RESOURCES_READ: self._resources_read,
            Method.RESOURCES_TEMPLATES_LIST: self._resources_templates_list,
            Method.TOOLS_LIST: self._tools_list,
            Method.TOOLS_CALL: self._tools_call,
            Method.COMPLETION_COMPLETE: self._completion_complete,
        }

    async def dispatch(self, request: Request) -> Response:
        """Handle one request and return its response.

        Protocol errors become error responses. Cancellation is not intercepted.
        """
        try:
            method = Method(request.method)
        except ValueError:
            logger.debug("Unknown method '%s'", request.method)
            return Response.failure(MethodNotFoundError(request.method))
        logger.debug("Dispatching %s", method.value)
        try:
            result = await self._routes[method](request.params or {})
        except MCPError as error:
            logger.debug("%s failed: %s", method.value, error.message)
            return Response.failure(error)
        return Response.success(result)

    async def _call(
        self, label: str, func: Callable[..., Any], kwargs: Mapping[str, Any]
    ) -> Any:
        """Invoke a handler, hiding unexpected failures behind InternalError."""
        try:
            return await invoke(func, kwargs)
        except MCPError:
            raise
        except Exception as exc:
            error = InternalError()
            logger.exception(
                "%s raised %s (error id %s)", label, type(exc).__name__, error.error_id
            )
            raise error from exc

    @staticmethod
    def _label(descriptor: HandlerDescriptor) -> str:
        return f"{descriptor.category.value.capitalize()} '{descriptor.name}'"

    @staticmethod
    def _assemble(label: str, build: Callable[[], BaseModel]) -> BaseModel:
        try:
            return build()
        except (TypeError, ValueError) as exc:
            error = InternalError()
            logger.exception(
                "Could not convert the value returned by %s (error id %s)",
                label,
                error.error_id,
            )
            raise error from exc

    async def _initialize(self, params: Mapping[str, Any]) -> BaseModel:
        _parse(InitializeParams, params)
        overrides = self.registry.overrides
        server_info = self.server_info
        if overrides.server_info is not None:
            server_info = await self._call(
                "server_info override", overrides.server_info, {}
            )
        instructions = self.instructions
        if overrides.instructions is not None:
            instructions = await self._call(
                "instructions override", overrides.instructions, {}
            )
        capabilities: dict[str, Any] = {}
        if self.registry.list_prompts():
            capabilities["prompts"] = {}
        if (
            self.registry.list_resources()
            or self.registry.list_resource_templates()
            or self.registry.catch_all is not None
            or overrides.resources_list is not None
        ):
            capabilities["resources"] = {}
        if self.registry.list_tools():
            capabilities["tools"] = {}
        if overrides.completion_complete is not None:
            capabilities["completions"] = {}
        return self._assemble(
            "initialize overrides",
            lambda: InitializeResult(
                protocolVersion=LATEST_PROTOCOL_VERSION,
                capabilities=ServerCapabilities.model_validate(capabilities),
                serverInfo=server_info,
                instructions=instructions,
            ),
        )

    async def _ping(self, params: Mapping[str, Any]) -> EmptyResult:
        return EmptyResult()

    async def _prompts_list(self, params: Mapping[str, Any]) -> ListPromptsResult:
        _parse(ListParams, params)
        return ListPromptsResult(
            prompts=[results.prompt_summary(d) for d in self.registry.list_prompts()]
        )

    async def _prompts_get(self, params: Mapping[str, Any]) -> BaseModel:
        request = _parse(GetPromptRequestParams, params)
        descriptor = self.registry.get_prompt(request.name)
        kwargs = descriptor.bind(request.arguments)
        value = await self._call(self._label(descriptor), descriptor.function, kwargs)
        return self._assemble(
            self._label(descriptor), lambda: results.prompt_result(descriptor, value)
        )

    async def _resources_list(self, params: Mapping[str, Any]) -> ListResourcesResult:
        _parse(ListParams, params)
        override = self.registry.overrides.resources_list
        if override is None:
            return ListResourcesResult(
                resources=[
                    results.resource_summary(d) for d in self.registry.list_resources()
                ]
            )
        value = await self._call("resources_list override", override, {})
        if isinstance(value, ListResourcesResult):
            return value
        return self._assemble(
            "resources_list override",
            lambda: ListResourcesResult(
                resources=[Resource.model_validate(item) for item in value]
            ),
        )

    async def _resources_read(self, params: Mapping[str, Any]) -> BaseModel:
        request = _parse(ReadResourceParams, params)
        descriptor, variables = self.registry.match_resource(request.uri)
        kwargs = descriptor.bind(request.uri, variables)
        value = await self._call(self._label(descriptor), descriptor.function, kwargs)
        return self._assemble(
            self._label(descriptor),
            lambda: results.resource_result(descriptor, request.uri, value),
        )

    async def _resources_templates_list(
        self, params: Mapping[str, Any]
    ) -> ListResourceTemplatesResult:
        _parse(ListParams, params)
        return ListResourceTemplatesResult(
            resourceTemplates=[
                results.resource_template_summary(d)
                for d in self.registry.list_resource_templates()
            ]
        )

    async def _tools_list(self, params: Mapping[str, Any]) -> ListToolsResult:
        _parse(ListParams, params)
        return ListToolsResult(
            tools=[results.tool_summary(d) for d in self.registry.list_tools()]
        )

    async def _tools_call(self, params: Mapping[str, Any]) -> BaseModel:
        request = _parse(CallToolRequestParams, params)
        descriptor = self.registry.get_tool(request.name)
        kwargs = descriptor.bind(request.arguments)
        try:
            value = await self._call(
                self._label(descriptor), descriptor.function, kwargs
            )
        except ToolExecutionError as error:
            logger.debug(
                "Tool '%s' reported failure: %s", descriptor.name, error.message
            )
            return results.tool_error_result(error)
        return self._assemble(
            self._label(descriptor), lambda: results.tool_result(value)
        )

    async def _completion_complete(self, params: Mapping[str, Any]) -> BaseModel:
        request = _parse(CompleteRequestParams, params)
        override = self.registry.overrides.completion_complete
        if override is None:
            return results.completion_result(None)
        value = await self._call(
            "completion_complete override", override, {"params": request}
        )
        return self._assemble(
            "completion_complete override", lambda: results.completion_result(value)
        )


def _parse(model: type[Any], params: Mapping[str, Any]) -> Any:
    """Validate a request parameter bag, raising :class:`InvalidParamsError`."""
    if not isinstance(params, Mapping):
        raise InvalidParamsError(
            "Request parameters must be an object",
            {
                "errors": [
                    {"field": "", "message": "Expected an object", "type": "type"}
                ]
            },
        )
    try:
        return model.model_validate(dict(params))
    except ValidationError as error:
        details = [
            {
                "field": ".".join(str(part) for part in item["loc"]),
                "message": item["msg"],
                "type": item["type"],
            }
            for item in error.errors()
        ]
        raise InvalidParamsError(
            "Invalid request parameters", {"errors": details}
        ) from error
