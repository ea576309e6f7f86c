"""RFC 6570 level 2 URI templates.

Templates are parsed once at registration time. Matching is a single left-to-right
scan, linear in the length of the URI. Three expression operators are supported:

* ``{var}``: simple expansion. Values are percent-encoded, so a match never crosses a
  reserved character such as ``/`` and therefore covers at most one path segment.
* ``{+var}``: reserved expansion. Reserved characters pass through unencoded, so a
  match may span the remainder of a path.
* ``{#var}``: fragment expansion. Like reserved expansion, prefixed with ``#``.

A variable followed by literal text takes the longest value after which that literal
occurs; the scan never revisits that choice.
"""

from __future__ import annotations

import re
import string
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote, unquote

from mcp_daemon.errors import TemplateParseError

MAX_URI_LENGTH = 8192

_RESERVED_SAFE = ":/?#[]@!$&'()*+,;="
_SIMPLE_CHARS = frozenset(string.ascii_letters + string.digits + "-._~")
_RESERVED_CHARS = _SIMPLE_CHARS | frozenset(_RESERVED_SAFE)
_HEXDIGITS = frozenset(string.hexdigits)

_VARCHAR = r"(?:[A-Za-z0-9_]|%[0-9A-Fa-f]{2})"
_VARNAME = re.compile(rf"{_VARCHAR}(?:\.?{_VARCHAR})*")
_PCT_TRIPLET = re.compile(r"%[0-9A-Fa-f]{2}")

# Operators from levels 3 and 4, plus the ones RFC 6570 reserves for future use.
_UNSUPPORTED_OPERATORS = frozenset("?/;.&=,!@|")


class Operator(Enum):
    """Expression operators understood at level 2."""

    SIMPLE = ""
    RESERVED = "+"
    FRAGMENT = "#"


@dataclass(frozen=True)
class LiteralPart:
    """Literal text copied verbatim between expressions."""

    text: str


@dataclass(frozen=True)
class VariablePart:
    """A single ``{op name}`` expression."""

    name: str
    operator: Operator = Operator.SIMPLE


TemplatePart = LiteralPart | VariablePart


@dataclass(frozen=True)
class UriTemplate:
    """A parsed URI template.

    Attributes:
        text: The template as written by the registrant.
        parts: Literal and variable parts in template order.

    """

    text: str
    parts: tuple[TemplatePart, ...]

    @classmethod
    def parse(cls, text: str) -> UriTemplate:
        """Parse ``text`` into a template.

        Raises:
            TemplateParseError: If the template is malformed or uses features beyond
                level 2.

        """
        parts: list[TemplatePart] = []
        seen: set[str] = set()
        position = 0
        while position < len(text):
            start = text.find("{", position)
            stray = text.find("}", position)
            if stray != -1 and (start == -1 or stray < start):
                raise TemplateParseError(text, f"unmatched '}}' at offset {stray}")
            if start == -1:
                parts.append(LiteralPart(text[position:]))
                break
            if start > position:
                parts.append(LiteralPart(text[position:start]))
            end = text.find("}", start + 1)
            if end == -1:
                raise TemplateParseError(text, f"unclosed '{{' at offset {start}")
            parts.append(_parse_expression(text, text[start + 1 : end], seen))
            position = end + 1
        return cls(text=text, parts=tuple(parts))

    @property
    def variables(self) -> tuple[str, ...]:
        """Variable names in the order they appear."""
        return tuple(part.name for part in self.parts if isinstance(part, VariablePart))

    @property
    def literal_prefix(self) -> str:
        """Literal text preceding the first variable."""
        prefix = []
        for part in self.parts:
            if isinstance(part, VariablePart):
                break
            prefix.append(part.text)
        return "".join(prefix)

    @property
    def literal_length(self) -> int:
        """Number of literal characters across the whole template."""
        return sum(
            len(part.text) for part in self.parts if isinstance(part, LiteralPart)
        )

    @property
    def specificity(self) -> tuple[int, int, int]:
        """Ranking key; larger tuples are more specific."""
        return (len(self.literal_prefix), self.literal_length, -len(self.variables))

    def match(self, uri: str) -> dict[str, str] | None:
        """Extract variable bindings from ``uri``.

        Simple variables are percent-decoded. Reserved and fragment values are returned
        as they appear in the URI. A fragment absent from the URI leaves its variable
        out of the result.

        URIs longer than :data:`MAX_URI_LENGTH` never match.

        Returns:
            Mapping of variable name to value, or ``None`` if ``uri`` does not match.

        """
        if len(uri) > MAX_URI_LENGTH:
            return None
        bindings: dict[str, str] = {}
        position = 0
        parts = self.parts
        for index, part in enumerate(parts):
            if isinstance(part, LiteralPart):
                if not uri.startswith(part.text, position):
                    return None
                position += len(part.text)
                continue
            if part.operator is Operator.FRAGMENT:
                if not uri.startswith("#", position):
                    continue
                position += 1
            allowed = (
                _SIMPLE_CHARS if part.operator is Operator.SIMPLE else _RESERVED_CHARS
            )
            ends = _value_ends(uri, position, allowed)
            following = parts[index + 1] if index + 1 < len(parts) else None
            if isinstance(following, LiteralPart):
                end = next(
                    (e for e in reversed(ends) if uri.startswith(following.text, e)),
                    None,
                )
                if end is None:
                    return None
            else:
                end = ends[-1]
            value = uri[position:end]
            if part.operator is Operator.SIMPLE:
                value = unquote(value)
            bindings[part.name] = value
            position = end
        return bindings if position == len(uri) else None

    def expand(self, bindings: Mapping[str, object]) -> str:
        """Expand the template; undefined variables expand to nothing."""
        pieces: list[str] = []
        for part in self.parts:
            if isinstance(part, LiteralPart):
                pieces.append(part.text)
                continue
            value = bindings.get(part.name)
            if value is None:
                continue
            text = str(value)
            if part.operator is Operator.SIMPLE:
                pieces.append(quote(text, safe=""))
            elif part.operator is Operator.RESERVED:
                pieces.append(_encode_reserved(text))
            else:
                pieces.append("#" + _encode_reserved(text))
        return "".join(pieces)

    def listable_uri(self) -> str | None:
        """Return the concrete URI of a template without variables."""
        if self.variables:
            return None
        return self.expand({})

    def __str__(self) -> str:
        """Return the template text."""
        return self.text


def compile_template(text: str) -> UriTemplate:
    """Parse and compile a template, raising :class:`TemplateParseError` if invalid."""
    return UriTemplate.parse(text)


def _parse_expression(template: str, body: str, seen: set[str]) -> VariablePart:
    if not body:
        raise TemplateParseError(template, "empty expression '{}'")
    operator = Operator.SIMPLE
    name = body
    if body[0] in "+#":
        operator = Operator(body[0])
        name = body[1:]
    elif body[0] in _UNSUPPORTED_OPERATORS:
        raise TemplateParseError(template, f"unsupported operator '{body[0]}'")
    if "," in name:
        raise TemplateParseError(
            template, f"variable lists are not supported: '{body}'"
        )
    if name.endswith("*") or ":" in name:
        raise TemplateParseError(
            template, f"value modifiers are not supported: '{body}'"
        )
    if not _VARNAME.fullmatch(name):
        raise TemplateParseError(template, f"invalid variable name '{name}'")
    if name in seen:
        raise TemplateParseError(template, f"duplicate variable '{name}'")
    seen.add(name)
    return VariablePart(name=name, operator=operator)


def _value_ends(uri: str, start: int, allowed: frozenset[str]) -> list[int]:
    """Offsets at which a value starting at ``start`` may end, shortest first.

    Characters outside ``allowed`` end the value; a pct-triplet counts as one unit.
    """
    ends = [start]
    position = start
    length = len(uri)
    while position < length:
        char = uri[position]
        if char in allowed:
            position += 1
        elif (
            char == "%"
            and position + 2 < length
            and uri[position + 1] in _HEXDIGITS
            and uri[position + 2] in _HEXDIGITS
        ):
            position += 3
        else:
            break
        ends.append(position)
    return ends


def _encode_reserved(text: str) -> str:
    """Encode ``text`` for reserved expansion, keeping existing pct-triplets."""
    pieces: list[str] = []
    last = 0
    for triplet in _PCT_TRIPLET.finditer(text):
        pieces.append(quote(text[last : triplet.start()], safe=_RESERVED_SAFE))
        pieces.append(triplet.group())
        last = triplet.end()
    pieces.append(quote(text[last:], safe=_RESERVED_SAFE))
    return "".join(pieces)
