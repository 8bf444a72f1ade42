"""Evaluate kubectl-style JSONPath field paths against generic object trees.

Only the subset needed to pull a scalar out of a Kubernetes object is
supported: ``{...}`` actions mixed with literal text, dotted and quoted
children (``\\.`` escapes a dot inside a dotted name), array indexes,
wildcards and simple equality filters.

A brace-free expression that starts with ``.`` or ``$`` is evaluated as a
single action. This relaxation is our own: a plain JSONPath template parser
(client-go ``jsonpath.Parse``) would render ``.data.x`` as the literal text.
Any other brace-free text is a literal here as well.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from .errors import EmptyValueError, FieldPathParseError, MissingKeyError

_QUOTES = ("'", '"')
_NAME_STOP = set(".[]{}()'\" \t")


@dataclass(frozen=True)
class Child:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Index:
    position: int

    def __str__(self) -> str:
        return f"[{self.position}]"


@dataclass(frozen=True)
class Wildcard:
    def __str__(self) -> str:
        return "*"


@dataclass(frozen=True)
class Filter:
    path: Tuple[Union[Child, Index], ...]
    operator: Optional[str]
    literal: Optional[str]

    def __str__(self) -> str:
        expression = "@" + "".join(f".{seg}" if isinstance(seg, Child) else str(seg) for seg in self.path)
        if self.operator:
            expression = f"{expression} {self.operator} {self.literal!r}"
        return f"[?({expression})]"

    def matches(self, item: Any) -> bool:
        try:
            nodes = _walk([item], self.path)
        except MissingKeyError:
            return False
        if self.operator is None:
            return True
        rendered = [_render(node) for node in nodes]
        if self.operator == "==":
            return self.literal in rendered
        return self.literal not in rendered


Segment = Union[Child, Index, Wildcard, Filter]


class FieldPath:
    """A parsed field path template."""

    def __init__(self, expression: str, parts: List[Union[str, Tuple[Segment, ...]]]) -> None:
        self.expression = expression
        self.parts = parts

    def evaluate(self, obj: Any) -> str:
        """Render the template against ``obj`` without mutating it."""

        chunks: List[str] = []
        for part in self.parts:
            if isinstance(part, str):
                chunks.append(part)
                continue
            nodes = _walk([obj], part)
            chunks.append(" ".join(_render(node) for node in nodes))
        value = "".join(chunks)
        if not value:
            raise EmptyValueError()
        return value

    def __repr__(self) -> str:
        return f"FieldPath({self.expression!r})"


def parse(expression: str) -> FieldPath:
    """Parse ``expression`` into a :class:`FieldPath`."""

    template = expression
    if "{" not in template and template.strip().startswith((".", "$")):
        template = "{" + template.strip() + "}"

    parts: List[Union[str, Tuple[Segment, ...]]] = []
    text: List[str] = []
    position = 0
    while position < len(template):
        char = template[position]
        if char != "{":
            text.append(char)
            position += 1
            continue
        end = _find_closing(template, position, "{", "}")
        if end < 0:
            raise FieldPathParseError(f"unclosed action in {expression!r}")
        action = template[position + 1:end].strip()
        if action and action[0] in _QUOTES:
            text.append(_unquote(action, expression))
        else:
            if text:
                parts.append("".join(text))
                text = []
            parts.append(tuple(_parse_action(action, expression)))
        position = end + 1
    if text:
        parts.append("".join(text))
    return FieldPath(expression, parts)


def extract(obj: Any, expression: str) -> str:
    """Return the value at ``expression`` in ``obj`` rendered as a string."""

    return parse(expression).evaluate(obj)


def _parse_action(action: str, expression: str) -> List[Segment]:
    if not action:
        raise FieldPathParseError(f"empty action in {expression!r}")
    position = 0
    if action[0] == "$":
        position = 1
    elif action[0] not in ".[":
        raise FieldPathParseError(f"unrecognized identifier {action.split()[0]!r}")

    segments: List[Segment] = []
    while position < len(action):
        char = action[position]
        if char == ".":
            if action.startswith("..", position):
                raise FieldPathParseError("recursive descent is not supported")
            position += 1
            if position >= len(action):
                break
            if action[position] == "*":
                segments.append(Wildcard())
                position += 1
                continue
            if action[position] == "[":
                continue
            start = position
            chars: List[str] = []
            while position < len(action) and action[position] not in _NAME_STOP:
                if action[position] == "\\":
                    position += 1
                    if position >= len(action):
                        raise FieldPathParseError(f"dangling escape in {action!r}")
                chars.append(action[position])
                position += 1
            name = "".join(chars)
            if not name:
                raise FieldPathParseError(f"invalid field name at {action[start:]!r}")
            segments.append(Child(name))
        elif char == "[":
            end = _find_closing(action, position, "[", "]")
            if end < 0:
                raise FieldPathParseError(f"unterminated array notation in {action!r}")
            segments.append(_parse_bracket(action[position + 1:end].strip(), expression))
            position = end + 1
        else:
            raise FieldPathParseError(f"unexpected {char!r} in {action!r}")
    return segments


def _parse_bracket(content: str, expression: str) -> Segment:
    if content == "*":
        return Wildcard()
    if content and content[0] in _QUOTES:
        return Child(_unquote(content, expression))
    if content.startswith("?"):
        return _parse_filter(content[1:].strip(), expression)
    if ":" in content:
        raise FieldPathParseError("array slices are not supported")
    try:
        return Index(int(content))
    except ValueError:
        raise FieldPathParseError(f"invalid array index {content!r}") from None


def _parse_filter(content: str, expression: str) -> Filter:
    if not (content.startswith("(") and content.endswith(")")):
        raise FieldPathParseError(f"invalid filter {content!r}")
    body = content[1:-1].strip()
    operator = None
    literal = None
    for candidate in ("==", "!="):
        left, sep, right = body.partition(candidate)
        if sep:
            operator = candidate
            body = left.strip()
            literal = right.strip()
            break
    if not body.startswith("@"):
        raise FieldPathParseError(f"filter must start with '@': {content!r}")
    path = _parse_action("$" + body[1:], expression) if len(body) > 1 else []
    for segment in path:
        if not isinstance(segment, (Child, Index)):
            raise FieldPathParseError(f"unsupported filter path {body!r}")
    if literal is not None:
        if not literal:
            raise FieldPathParseError(f"missing filter operand in {content!r}")
        if literal[0] in _QUOTES:
            literal = _unquote(literal, expression)
    return Filter(tuple(path), operator, literal)


def _unquote(token: str, expression: str) -> str:
    if len(token) < 2 or token[0] != token[-1] or token[0] not in _QUOTES:
        raise FieldPathParseError(f"unterminated string {token!r} in {expression!r}")
    return token[1:-1]


def _find_closing(text: str, start: int, opening: str, closing: str) -> int:
    depth = 0
    quote: Optional[str] = None
    for position in range(start, len(text)):
        char = text[position]
        if quote:
            if char == quote:
                quote = None
            continue
        if char in _QUOTES:
            quote = char
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return position
    return -1


def _walk(nodes: List[Any], segments: Tuple[Segment, ...]) -> List[Any]:
    for segment in segments:
        found: List[Any] = []
        for node in nodes:
            if isinstance(segment, Child):
                if not isinstance(node, dict) or segment.name not in node:
                    raise MissingKeyError(f"{segment.name} is not found")
                found.append(node[segment.name])
            elif isinstance(segment, Index):
                if not isinstance(node, list):
                    raise MissingKeyError(f"{segment} is not found")
                if not -len(node) <= segment.position < len(node):
                    raise MissingKeyError(
                        f"array index out of bounds: index {segment.position}, length {len(node)}"
                    )
                found.append(node[segment.position])
            elif isinstance(segment, Wildcard):
                if isinstance(node, dict):
                    found.extend(node[key] for key in sorted(node))
                elif isinstance(node, list):
                    found.extend(node)
            else:
                if isinstance(node, list):
                    found.extend(item for item in node if segment.matches(item))
        if not found:
            raise MissingKeyError(f"{segment} is not found")
        nodes = found
    return nodes


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)
