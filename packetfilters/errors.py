"""Errors raised while creating filters or converting their configuration."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import IntEnum
from typing import Any, TypeVar

T = TypeVar("T")


class FilterError(Exception):
    """Base class for every error raised while creating a filter."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args  # type: ignore[union-attr]

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class NotFoundError(FilterError):
    """No filter is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"filter `{self.name}` not found"


class MissingConfigError(FilterError):
    """A filter that needs configuration was given none."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"filter `{self.name}` requires configuration, but none provided"


class FieldInvalidError(FilterError):
    """A configuration field holds a value the filter cannot accept."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(field, reason)
        self.field = field
        self.reason = reason

    def __str__(self) -> str:
        return f"field `{self.field}` is invalid, reason: {self.reason}"


class DeserializeFailedError(FilterError):
    """The configuration could not be read into the filter's config type."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Deserialization failed: {self.message}"


class InitializeMetricsFailedError(FilterError):
    """The filter's metrics could not be registered."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Failed to initialize metrics: {self.message}"


class ConvertProtoConfigError(FilterError):
    """A protobuf configuration could not be converted to a filter config."""

    def __init__(self, reason: str, field: str | None = None) -> None:
        super().__init__(reason, field)
        self.reason = reason
        self.field = field

    def __str__(self) -> str:
        prefix = f"Field `{self.field}` " if self.field is not None else ""
        return f"{prefix}failed to convert protobuf config: {self.reason}"


def map_proto_enum(
    value: int,
    field: str,
    variants: Mapping[IntEnum, T] | Iterable[tuple[IntEnum, T]],
) -> T:
    """Map an integer protobuf enum value to its target enum member.

    ``variants`` pairs each protobuf enum member with the member it maps to.
    Raises :class:`ConvertProtoConfigError` when ``value`` matches none of them.
    """
    pairs: list[tuple[Any, T]] = list(
        variants.items() if isinstance(variants, Mapping) else variants
    )
    for proto, target in pairs:
        if value == int(proto):
            return target
    allowed = ", ".join(f"{proto.name} => {int(proto)}" for proto, _ in pairs)
    raise ConvertProtoConfigError(
        f"invalid value `{value}` provided: allowed values are {allowed}", field
    )