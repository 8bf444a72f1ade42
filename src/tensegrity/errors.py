"""Error types raised by the Tensegrity engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List


class TensegrityError(Exception):
    """Base class for all Tensegrity errors."""


class NotFoundError(TensegrityError):
    """A referenced object does not exist in the cluster."""

    def __init__(self, kind: str, name: str, namespace: str | None = None, message: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(message or f'{kind.lower()}s "{name}" not found')


class ExtractionError(TensegrityError):
    """A field path could not produce a value from an object."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"fieldPath: {detail}")


class FieldPathParseError(ExtractionError):
    """The field path expression is syntactically invalid."""


class MissingKeyError(ExtractionError):
    """A segment of the field path is absent from the object."""


class EmptyValueError(ExtractionError):
    """The field path resolved to an empty string."""

    def __init__(self) -> None:
        super().__init__("value is empty")


class UnsupportedDelegateKindError(TensegrityError):
    """A delegate references a scope kind the engine cannot search."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"unsupported delegate kind: {kind}")


class MissingDelegatesError(TensegrityError):
    """Keys are consumed but no delegates are declared."""

    def __init__(self) -> None:
        super().__init__("consumes are declared but delegates are empty")


@dataclass(frozen=True)
class FieldError:
    """A single spec validation failure."""

    path: str
    type: str
    detail: str

    def __str__(self) -> str:
        return f"{self.path}: {self.type}: {self.detail}"


class SpecValidationError(TensegrityError):
    """A Tensegrity spec violates one or more invariants."""

    def __init__(self, errors: List[FieldError]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(str(error) for error in self.errors))
