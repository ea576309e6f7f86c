"""Capability registry: handler descriptors for prompts, resources and tools."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from mcp_daemon.arguments import (
    ArgumentModel,
    ArgumentSpec,
    BindingKind,
    arguments_from_signature,
    bind_strings,
)
from mcp_daemon.errors import ErrorCode, NotFoundError, RegistrationError
from mcp_daemon.uri_template import UriTemplate

logger = logging.getLogger(__name__)


class Category(Enum):
    """Capability categories served by the registry."""

    PROMPT = "prompt"
    RESOURCE = "resource"
    TOOL = "tool"


def _description_of(func: Callable[..., Any]) -> str:
    return (func.__doc__ or "").strip()


def _name_of(func: Callable[..., Any]) -> str:
    return getattr(func, "__name__", type(func).__name__)


def _check_kind(
    specs: Sequence[ArgumentSpec], kind: BindingKind, owner: str
) -> tuple[ArgumentSpec, ...]:
    for spec in specs:
        if spec.kind is not kind:
            raise RegistrationError(
                f"Argument '{spec.name}' of {owner} must use {kind.name} binding"
            )
    names = [spec.name for spec in specs]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise RegistrationError(f"Duplicate argument names in {owner}: {duplicates}")
    return tuple(specs)


@dataclass(frozen=True)
class HandlerDescriptor:
    """Immutable record of one registered handler.

    Attributes:
        name: Exact name (prompts, tools) or display name (resources).
        function: Callable invoked with bound keyword arguments; may be a coroutine
            function.
        arguments: Declared arguments in order.
        description: Human-readable description sent to the client.

    """

    category: ClassVar[Category]

    name: str
    function: Callable[..., Any]
    arguments: tuple[ArgumentSpec, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class PromptDescriptor(HandlerDescriptor):
    """A named prompt whose arguments are parsed from strings."""

    category: ClassVar[Category] = Category.PROMPT

    @classmethod
    def from_function(
        cls,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        arguments: Sequence[ArgumentSpec] | None = None,
    ) -> PromptDescriptor:
        """Describe ``func`` as a prompt; omitted fields come from the function."""
        name = name or _name_of(func)
        if arguments is None:
            arguments = arguments_from_signature(func, BindingKind.STRING_PARSED)
        return cls(
            name=name,
            function=func,
            arguments=_check_kind(
                arguments, BindingKind.STRING_PARSED, f"prompt '{name}'"
            ),
            description=_description_of(func) if description is None else description,
        )

    def bind(self, values: Mapping[str, str | None] | None) -> dict[str, Any]:
        """Bind ``prompts/get`` arguments to handler keywords."""
        return bind_strings(self.arguments, values or {})


@dataclass(frozen=True)
class ResourceDescriptor(HandlerDescriptor):
    """A resource addressed by a URI template, or the catch-all when it has none."""

    category: ClassVar[Category] = Category.RESOURCE

    template: UriTemplate | None = None
    mime_type: str | None = None

    @classmethod
    def from_function(
        cls,
        func: Callable[..., Any],
        template: str | UriTemplate | None = None,
        name: str | None = None,
        mime_type: str | None = None,
        description: str | None = None,
        arguments: Sequence[ArgumentSpec] | None = None,
    ) -> ResourceDescriptor:
        """Describe ``func`` as a resource.

        Template variables bind positionally to ``arguments`` in declaration order, so
        both must have the same length. The catch-all (``template=None``) receives the
        whole URI through its single argument, or takes no arguments at all.

        Raises:
            TemplateParseError: If ``template`` is malformed.
            RegistrationError: If the arguments do not fit the template.

        """
        name = name or _name_of(func)
        if isinstance(template, str):
            template = UriTemplate.parse(template)
        if arguments is None:
            arguments = arguments_from_signature(func, BindingKind.STRING_PARSED)
        arguments = _check_kind(
            arguments, BindingKind.STRING_PARSED, f"resource '{name}'"
        )
        if template is None:
            if len(arguments) > 1:
                raise RegistrationError(
                    f"Catch-all resource '{name}' takes at most one argument (the URI)"
                )
        elif len(arguments) != len(template.variables):
            raise RegistrationError(
                f"Resource '{name}' declares {len(arguments)} argument(s) but template "
                f"'{template}' has {len(template.variables)} variable(s)"
            )
        return cls(
            name=name,
            function=func,
            arguments=arguments,
            description=_description_of(func) if description is None else description,
            template=template,
            mime_type=mime_type,
        )

    @property
    def catch_all(self) -> bool:
        """Whether this descriptor handles URIs no template matches."""
        return self.template is None

    @property
    def key(self) -> str:
        """Identity used for duplicate detection."""
        return "*" if self.template is None else self.template.text

    def bind(self, uri: str, variables: Mapping[str, str]) -> dict[str, Any]:
        """Bind extracted template variables (or the whole URI) to handler keywords."""
        if self.template is None:
            if not self.arguments:
                return {}
            spec = self.arguments[0]
            return {spec.source_name: spec.parse(uri)}
        values = {
            spec.name: variables.get(variable)
            for spec, variable in zip(self.arguments, self.template.variables)
        }
        return bind_strings(self.arguments, values)


@dataclass(frozen=True)
class ToolDescriptor(HandlerDescriptor):
    """A named tool whose arguments are validated against a generated schema."""

    category: ClassVar[Category] = Category.TOOL

    argument_model: ArgumentModel = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Generate the pydantic argument model for the declared arguments."""
        object.__setattr__(
            self,
            "argument_model",
            ArgumentModel(f"{self.name}Arguments", self.arguments),
        )

    @classmethod
    def from_function(
        cls,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        arguments: Sequence[ArgumentSpec] | None = None,
    ) -> ToolDescriptor:
        """Describe ``func`` as a tool; omitted fields come from the function."""
        name = name or _name_of(func)
        if arguments is None:
            arguments = arguments_from_signature(func, BindingKind.SCHEMA_VALIDATED)
        return cls(
            name=name,
            function=func,
            arguments=_check_kind(
                arguments, BindingKind.SCHEMA_VALIDATED, f"tool '{name}'"
            ),
            description=_description_of(func) if description is None else description,
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema of the structured arguments."""
        return self.argument_model.json_schema()

    def bind(self, payload: object) -> dict[str, Any]:
        """Validate a ``tools/call`` payload and return handler keywords."""
        return self.argument_model.bind(payload)


@dataclass(frozen=True)
class ManualOverrides:
    """Handlers supplied directly instead of through declarative registration.

    Attributes:
        server_info: Returns the :class:`~mcp_daemon.models.Implementation` reported
            by ``initialize``.
        instructions: Returns the instructions string reported by ``initialize``.
        completion_complete: Receives :class:`mcp.types.CompleteRequestParams`.
        resources_list: Replaces the automatic ``resources/list`` entirely.

    """

    server_info: Callable[[], Any] | None = None
    instructions: Callable[[], Any] | None = None
    completion_complete: Callable[[Any], Any] | None = None
    resources_list: Callable[[], Any] | None = None


class CapabilityRegistry:
    """Ordered store of handler descriptors.

    Descriptors are registered during startup. :meth:`seal` ends the registration
    phase, after which the registry is read-only and safe to share across concurrent
    dispatches.
    """

    def __init__(
        self,
        descriptors: Iterable[HandlerDescriptor] = (),
        overrides: ManualOverrides | None = None,
    ) -> None:
        """Register ``descriptors`` in order."""
        self._prompts: dict[str, PromptDescriptor] = {}
        self._tools: dict[str, ToolDescriptor] = {}
        self._resources: dict[str, ResourceDescriptor] = {}
        self._catch_all: ResourceDescriptor | None = None
        self._sealed = False
        self.overrides = overrides or ManualOverrides()
        for descriptor in descriptors:
            self.register(descriptor)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """End the registration phase."""
        self._sealed = True

    def register(self, descriptor: HandlerDescriptor) -> None:
        """Register a descriptor.

        Raises:
            RegistrationError: If the registry is sealed, the name (or resource
                template) is already taken in its category, or a second catch-all
                resource is registered.

        """
        if self._sealed:
            raise RegistrationError(
                f"Cannot register {descriptor.category.value} '{descriptor.name}': "
                "registration phase has ended"
            )
        if isinstance(descriptor, PromptDescriptor):
            self._add(self._prompts, descriptor.name, descriptor)
        elif isinstance(descriptor, ToolDescriptor):
            self._add(self._tools, descriptor.name, descriptor)
        elif isinstance(descriptor, ResourceDescriptor):
            if descriptor.catch_all:
                if self._catch_all is not None:
                    raise RegistrationError(
                        f"Catch-all resource '{self._catch_all.name}' is already "
                        f"registered; cannot add '{descriptor.name}'"
                    )
                self._catch_all = descriptor
            else:
                self._add(self._resources, descriptor.key, descriptor)
        else:
            raise RegistrationError(
                f"Unsupported descriptor type {type(descriptor).__name__}"
            )
        logger.debug("Registered %s '%s'", descriptor.category.value, descriptor.name)

    @staticmethod
    def _add(table: dict[str, Any], key: str, descriptor: HandlerDescriptor) -> None:
        if key in table:
            category = descriptor.category.value.capitalize()
            raise RegistrationError(f"{category} '{key}' is already registered")
        table[key] = descriptor

    def list_prompts(self) -> tuple[PromptDescriptor, ...]:
        return tuple(self._prompts.values())

    def list_tools(self) -> tuple[ToolDescriptor, ...]:
        return tuple(self._tools.values())

    def list_resources(self) -> tuple[ResourceDescriptor, ...]:
        """Resources whose templates have no variables.

        The dispatcher does not consult this listing when a ``resources_list``
        override is present.
        """
        return tuple(
            descriptor
            for descriptor in self._resources.values()
            if descriptor.template is not None and not descriptor.template.variables
        )

    def list_resource_templates(self) -> tuple[ResourceDescriptor, ...]:
        """Resources whose templates have at least one variable."""
        return tuple(
            descriptor
            for descriptor in self._resources.values()
            if descriptor.template is not None and descriptor.template.variables
        )

    @property
    def catch_all(self) -> ResourceDescriptor | None:
        return self._catch_all

    def get_prompt(self, name: str) -> PromptDescriptor:
        """Look up a prompt by exact name, raising :class:`NotFoundError`."""
        try:
            return self._prompts[name]
        except KeyError:
            raise NotFoundError(f"Prompt '{name}' not found", {"name": name}) from None

    def get_tool(self, name: str) -> ToolDescriptor:
        """Look up a tool by exact name, raising :class:`NotFoundError`."""
        try:
            return self._tools[name]
        except KeyError:
            raise NotFoundError(f"Tool '{name}' not found", {"name": name}) from None

    def match_resource(self, uri: str) -> tuple[ResourceDescriptor, dict[str, str]]:
        """Resolve ``uri`` to a resource descriptor and its variable bindings.

        A template without variables equal to ``uri`` wins outright. Otherwise the
        matching templates are ranked by literal prefix length, total literal length
        and variable count, with declaration order breaking ties. The catch-all is
        used only when nothing matches.

        Raises:
            NotFoundError: If no template matches and there is no catch-all.

        """
        exact = self._resources.get(uri)
        if exact is not None and exact.template and not exact.template.variables:
            return exact, {}
        best: tuple[tuple[int, ...], ResourceDescriptor, dict[str, str]] | None = None
        for order, descriptor in enumerate(self._resources.values()):
            template = descriptor.template
            if template is None or not template.variables:
                continue
            bindings = template.match(uri)
            if bindings is None:
                continue
            prefix, literal, variables = template.specificity
            rank = (-prefix, -literal, -variables, order)
            if best is None or rank < best[0]:
                best = (rank, descriptor, bindings)
        if best is not None:
            return best[1], best[2]
        if self._catch_all is not None:
            return self._catch_all, {}
        raise NotFoundError(
            f"Resource '{uri}' not found",
            {"uri": uri},
            code=ErrorCode.RESOURCE_NOT_FOUND,
        )
