"""Argument specifications and binding of raw request values to handler arguments."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Annotated, Any, get_args, get_origin

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic.fields import FieldInfo

from mcp_daemon.errors import InvalidParamsError

logger = logging.getLogger(__name__)

_MISSING: Any = inspect.Parameter.empty


class BindingKind(Enum):
    """How a raw request value becomes a typed argument."""

    STRING_PARSED = "string"
    SCHEMA_VALIDATED = "schema"


@dataclass(frozen=True)
class Arg:
    """``Annotated`` marker renaming or describing a handler parameter.

    Example:
        ``def echo(a: str, b: Annotated[str, Arg("x", description="Suffix")]): ...``

    """

    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ArgumentSpec:
    """Declared argument of a prompt, resource or tool handler.

    Attributes:
        name: External name used on the wire.
        source_name: Keyword the handler is called with.
        kind: Binding contract for the raw value.
        annotation: Target type of the argument.
        default: Default value, or ``inspect.Parameter.empty`` when required.
        description: Human-readable description sent to the client.

    """

    name: str
    source_name: str
    kind: BindingKind = BindingKind.STRING_PARSED
    annotation: Any = str
    default: Any = _MISSING
    description: str | None = None

    @property
    def required(self) -> bool:
        """Whether the caller must supply a value."""
        return self.default is _MISSING

    @cached_property
    def _adapter(self) -> TypeAdapter[Any] | None:
        if self.annotation in (str, Any, _MISSING):
            return None
        return TypeAdapter(self.annotation)

    def parse(self, raw: str) -> Any:
        """Convert a raw string into the annotated type.

        Raises:
            InvalidParamsError: If the string cannot be converted.

        """
        adapter = self._adapter
        if adapter is None:
            return raw
        try:
            return adapter.validate_strings(raw)
        except ValidationError as error:
            raise InvalidParamsError(
                f"Invalid value for argument '{self.name}'",
                {"errors": _error_details(error, prefix=(self.name,))},
            ) from error


def external_name(source_name: str) -> str:
    """Derive the wire name of a parameter by dropping one leading underscore."""
    if source_name.startswith("_") and len(source_name) > 1:
        return source_name[1:]
    return source_name


def argument(
    name: str,
    annotation: Any = str,
    *,
    source_name: str | None = None,
    kind: BindingKind = BindingKind.STRING_PARSED,
    default: Any = _MISSING,
    description: str | None = None,
) -> ArgumentSpec:
    """Build an :class:`ArgumentSpec` by hand."""
    return ArgumentSpec(
        name=name,
        source_name=source_name or name,
        kind=kind,
        annotation=annotation,
        default=default,
        description=description,
    )


def arguments_from_signature(
    func: Callable[..., Any], kind: BindingKind
) -> tuple[ArgumentSpec, ...]:
    """Derive argument specs from the parameters of ``func``.

    ``Annotated`` metadata is inspected for an :class:`Arg` marker (rename/describe)
    or a pydantic ``Field`` carrying a description.
    """
    specs: list[ArgumentSpec] = []
    for parameter in inspect.signature(func, eval_str=True).parameters.values():
        if parameter.name == "self":
            continue
        if parameter.kind in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            continue
        annotation = parameter.annotation
        name = external_name(parameter.name)
        description = None
        if get_origin(annotation) is Annotated:
            _, *metadata = get_args(annotation)
            for item in metadata:
                if isinstance(item, Arg):
                    name = item.name or name
                    description = item.description or description
                elif isinstance(item, FieldInfo) and item.description:
                    description = description or item.description
        specs.append(
            ArgumentSpec(
                name=name,
                source_name=parameter.name,
                kind=kind,
                annotation=Any if annotation is _MISSING else annotation,
                default=parameter.default,
                description=description,
            )
        )
    return tuple(specs)


def bind_strings(
    specs: Sequence[ArgumentSpec], values: Mapping[str, str | None]
) -> dict[str, Any]:
    """Bind string values to handler keywords in declaration order.

    Values equal to ``None`` count as absent. Names not declared by ``specs`` are
    ignored.

    Raises:
        InvalidParamsError: If a required argument is missing or fails to parse.

    """
    bound: dict[str, Any] = {}
    for spec in specs:
        raw = values.get(spec.name)
        if raw is None:
            if spec.required:
                raise InvalidParamsError(
                    f"Missing required argument '{spec.name}'",
                    {
                        "errors": [
                            {
                                "field": spec.name,
                                "message": "Field required",
                                "type": "missing",
                            }
                        ]
                    },
                )
            continue
        bound[spec.source_name] = spec.parse(raw)
    surplus = set(values) - {spec.name for spec in specs}
    if surplus:
        logger.debug("Ignoring undeclared arguments: %s", sorted(surplus))
    return bound


class ArgumentModel:
    """Pydantic model generated from schema-validated argument specs.

    The model forbids unexpected fields, publishes the JSON Schema advertised in
    ``tools/list`` and decodes payloads into typed handler keywords.
    """

    def __init__(self, title: str, specs: Sequence[ArgumentSpec]) -> None:
        """Generate the model for ``specs``; ``title`` names the schema."""
        self.specs = tuple(specs)
        fields: dict[str, Any] = {}
        self._source_names: dict[str, str] = {}
        for index, spec in enumerate(self.specs):
            field_name = f"arg{index}"
            self._source_names[field_name] = spec.source_name
            default = ... if spec.required else spec.default
            fields[field_name] = (
                Any if spec.annotation is _MISSING else spec.annotation,
                Field(
                    default,
                    alias=spec.name,
                    title=spec.name,
                    description=spec.description,
                ),
            )
        self.model: type[BaseModel] = create_model(
            title,
            __config__=ConfigDict(extra="forbid", arbitrary_types_allowed=True),
            **fields,
        )

    def json_schema(self) -> dict[str, Any]:
        """Return the JSON Schema describing the structured arguments."""
        return self.model.model_json_schema(by_alias=True)

    def bind(self, payload: object) -> dict[str, Any]:
        """Validate ``payload`` and return typed handler keywords.

        Raises:
            InvalidParamsError: If the payload is not an object or violates the schema.

        """
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise InvalidParamsError(
                "Arguments must be a JSON object",
                {
                    "errors": [
                        {"field": "", "message": "Expected an object", "type": "type"}
                    ]
                },
            )
        try:
            instance = self.model.model_validate(dict(payload))
        except ValidationError as error:
            details = _error_details(error)
            fields = ", ".join(detail["field"] or "<root>" for detail in details)
            raise InvalidParamsError(
                f"Invalid arguments: {fields}", {"errors": details}
            ) from error
        return {
            source: getattr(instance, field_name)
            for field_name, source in self._source_names.items()
        }


def _error_details(
    error: ValidationError, prefix: tuple[str | int, ...] = ()
) -> list[dict[str, str]]:
    """Flatten a pydantic error into ``{field, message, type}`` entries."""
    details = []
    for item in error.errors():
        location = prefix + tuple(item["loc"])
        details.append(
            {
                "field": ".".join(str(part) for part in location),
                "message": item["msg"],
                "type": item["type"],
            }
        )
    return details
