"""Registration API and server facade.

Capabilities are registered on a :class:`ServerBuilder` during startup. ``build()``
seals the registry and returns an :class:`MCPServer`, which only dispatches: no
handler can register another handler once serving begins. The server is free of
transport details; a transport feeds it decoded requests and encodes the responses.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

import anyio

from mcp_daemon.arguments import ArgumentSpec
from mcp_daemon.dispatch import Dispatcher, Method, Request, Response
from mcp_daemon.models import Implementation
from mcp_daemon.registry import (
    CapabilityRegistry,
    HandlerDescriptor,
    ManualOverrides,
    PromptDescriptor,
    ResourceDescriptor,
    ToolDescriptor,
)
from mcp_daemon.uri_template import UriTemplate

F = TypeVar("F", bound=Callable[..., Any])


class ServerBuilder:
    """Collects capability registrations before the server starts."""

    def __init__(
        self,
        name: str = "mcp-daemon",
        version: str = "0.1.0",
        instructions: str | None = None,
    ) -> None:
        """Start an empty registration phase.

        Args:
            name: Server name reported by ``initialize``.
            version: Server version reported by ``initialize``.
            instructions: Instructions reported by ``initialize``.

        """
        self.name = name
        self.version = version
        self.instructions = instructions
        self.registry = CapabilityRegistry()
        self._overrides: dict[str, Callable[..., Any]] = {}

    def register(self, descriptor: HandlerDescriptor) -> HandlerDescriptor:
        """Register a prebuilt descriptor.

        Raises:
            RegistrationError: If the descriptor conflicts with an earlier one.

        """
        self.registry.register(descriptor)
        return descriptor

    def register_prompt(
        self,
        name: str | None,
        fn: Callable[..., Any],
        arguments: Sequence[ArgumentSpec] | None = None,
        description: str | None = None,
    ) -> PromptDescriptor:
        """Register a prompt; arguments default to the handler's parameters."""
        descriptor = PromptDescriptor.from_function(
            fn, name=name, description=description, arguments=arguments
        )
        self.registry.register(descriptor)
        return descriptor

    def register_resource(
        self,
        template: str | UriTemplate | None,
        fn: Callable[..., Any],
        name: str | None = None,
        mime_type: str | None = None,
        arguments: Sequence[ArgumentSpec] | None = None,
        description: str | None = None,
    ) -> ResourceDescriptor:
        """Register a resource; ``template=None`` registers the catch-all."""
        descriptor = ResourceDescriptor.from_function(
            fn,
            template=template,
            name=name,
            mime_type=mime_type,
            description=description,
            arguments=arguments,
        )
        self.registry.register(descriptor)
        return descriptor

    def register_tool(
        self,
        name: str | None,
        fn: Callable[..., Any],
        arguments: Sequence[ArgumentSpec] | None = None,
        description: str | None = None,
    ) -> ToolDescriptor:
        """Register a tool; arguments default to the handler's parameters."""
        descriptor = ToolDescriptor.from_function(
            fn, name=name, description=description, arguments=arguments
        )
        self.registry.register(descriptor)
        return descriptor

    def prompt(
        self,
        func: F | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> Any:
        """Decorator form of :meth:`register_prompt`.

        Usage::

            @builder.prompt
            def hello() -> str:
                return "Hello!"

            @builder.prompt(name="greet")
            def greeting(who: str) -> str:
                return f"Hello, {who}!"

        """

        def decorator(fn: F) -> F:
            self.register_prompt(name, fn, description=description)
            return fn

        return decorator(func) if func is not None else decorator

    def resource(
        self,
        template: str | None = None,
        *,
        name: str | None = None,
        mime_type: str | None = None,
        description: str | None = None,
    ) -> Callable[[F], F]:
        """Decorator form of :meth:`register_resource`.

        Usage::

            @builder.resource("my_app://files/{name}.txt", mime_type="text/plain")
            def read_file(name: str) -> str:
                return f"Content of {name}.txt"

        """

        def decorator(fn: F) -> F:
            self.register_resource(
                template, fn, name=name, mime_type=mime_type, description=description
            )
            return fn

        return decorator

    def tool(
        self,
        func: F | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> Any:
        """Decorator form of :meth:`register_tool`."""

        def decorator(fn: F) -> F:
            self.register_tool(name, fn, description=description)
            return fn

        return decorator(func) if func is not None else decorator

    def override_server_info(self, fn: F) -> F:
        """Supply ``server_info`` directly; ``fn()`` returns an Implementation."""
        self._overrides["server_info"] = fn
        return fn

    def override_instructions(self, fn: F) -> F:
        """Supply ``instructions`` directly; ``fn()`` returns a string or ``None``."""
        self._overrides["instructions"] = fn
        return fn

    def override_completion_complete(self, fn: F) -> F:
        """Supply ``completion/complete``; ``fn(params)`` returns completion values."""
        self._overrides["completion_complete"] = fn
        return fn

    def override_resources_list(self, fn: F) -> F:
        """Replace the automatic ``resources/list`` entirely."""
        self._overrides["resources_list"] = fn
        return fn

    def build(self) -> MCPServer:
        """End the registration phase and return the serving facade."""
        self.registry.overrides = ManualOverrides(**self._overrides)
        return MCPServer(
            self.registry,
            name=self.name,
            version=self.version,
            instructions=self.instructions,
        )


class MCPServer:
    """Dispatching facade over a sealed capability registry."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        name: str = "mcp-daemon",
        version: str = "0.1.0",
        instructions: str | None = None,
    ) -> None:
        """Seal ``registry`` and prepare the dispatcher."""
        self.registry = registry
        self.name = name
        self.dispatcher = Dispatcher(
            registry,
            server_info=Implementation(name=name, version=version),
            instructions=instructions,
        )

    async def dispatch(self, request: Request) -> Response:
        """Dispatch a decoded request."""
        return await self.dispatcher.dispatch(request)

    async def handle(
        self, method: str, params: Mapping[str, Any] | None = None
    ) -> Response:
        """Dispatch ``method`` with ``params``."""
        return await self.dispatcher.dispatch(Request(method=method, params=params))

    def handle_sync(
        self, method: str, params: Mapping[str, Any] | None = None
    ) -> Response:
        """Dispatch from synchronous code by running a private event loop."""
        return anyio.run(self.handle, method, params)

    def available_tools(self) -> list[str]:
        """List the names of registered tools.

        Returns:
            Sorted list of tool names.

        """
        return sorted(descriptor.name for descriptor in self.registry.list_tools())

    async def catalog(self) -> dict[str, Any]:
        """Collect every listing the server advertises, keyed by method name."""
        catalog: dict[str, Any] = {}
        for method in (
            Method.PROMPTS_LIST,
            Method.RESOURCES_LIST,
            Method.RESOURCES_TEMPLATES_LIST,
            Method.TOOLS_LIST,
        ):
            catalog[method.value] = (await self.handle(method.value)).to_dict()
        return catalog

    def to_catalog(self) -> dict[str, Any]:
        """Produce a catalog for discovery from synchronous code."""
        return anyio.run(self.catalog)
