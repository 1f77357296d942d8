"""A filter that adds a fixed byte sequence to the start or end of each packet.

This is commonly used to attach an authentication token to every packet so
that it can be routed appropriately.
"""

from __future__ import annotations

import base64
import binascii
import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from packetfilters.context import ReadContext, ReadResponse, WriteContext, WriteResponse
from packetfilters.errors import map_proto_enum
from packetfilters.factory import CreateFilterArgs, Filter, FilterFactory, FilterInstance

NAME = "packetfilters.extensions.filters.concatenate_bytes.v1alpha1.ConcatenateBytes"


class Strategy(enum.Enum):
    """Where the configured bytes are placed in a packet."""

    APPEND = "APPEND"
    PREPEND = "PREPEND"
    DO_NOTHING = "DO_NOTHING"

    def apply(self, contents: bytes, extra: bytes) -> bytes:
        """Return ``contents`` with ``extra`` added according to this strategy."""
        if self is Strategy.APPEND:
            return contents + extra
        if self is Strategy.PREPEND:
            return extra + contents
        return contents


class ProtoStrategy(enum.IntEnum):
    """Protobuf enumeration of the concatenation strategies."""

    DO_NOTHING = 0
    APPEND = 1
    PREPEND = 2


_STRATEGY_VARIANTS = (
    (ProtoStrategy.DO_NOTHING, Strategy.DO_NOTHING),
    (ProtoStrategy.APPEND, Strategy.APPEND),
    (ProtoStrategy.PREPEND, Strategy.PREPEND),
)


@dataclass(frozen=True)
class ProtoConfig:
    """Protobuf form of the filter's configuration.

    ``on_read`` and ``on_write`` hold the raw enum values, or ``None`` when unset.
    """

    bytes: bytes = b""
    on_read: int | None = None
    on_write: int | None = None


def _strategy_from_mapping(mapping: Mapping[str, Any], key: str) -> Strategy:
    value = mapping.get(key)
    if value is None:
        return Strategy.DO_NOTHING
    if not isinstance(value, str):
        raise TypeError(f"field `{key}` must be a string, got {type(value).__name__}")
    try:
        return Strategy(value)
    except ValueError:
        allowed = ", ".join(member.value for member in Strategy)
        raise ValueError(
            f"unknown variant `{value}` for field `{key}`, expected one of {allowed}"
        ) from None


def _strategy_from_proto(value: int | None, field: str) -> Strategy:
    if value is None:
        return Strategy.DO_NOTHING
    return map_proto_enum(value, field, _STRATEGY_VARIANTS)


@dataclass(frozen=True)
class Config:
    """Configuration of a :class:`ConcatenateBytes` filter."""

    bytes: bytes
    #: What to do with the bytes on the read path.
    on_read: Strategy = Strategy.DO_NOTHING
    #: What to do with the bytes on the write path.
    on_write: Strategy = Strategy.DO_NOTHING

    @classmethod
    def from_mapping(cls, mapping: Any) -> Config:
        """Build a config from a mapping; ``bytes`` is base64 encoded."""
        if not isinstance(mapping, Mapping):
            raise TypeError(f"expected a mapping, got {type(mapping).__name__}")
        if "bytes" not in mapping:
            raise ValueError("missing field `bytes`")
        encoded = mapping["bytes"]
        if not isinstance(encoded, str):
            raise TypeError(
                f"field `bytes` must be a base64 string, got {type(encoded).__name__}"
            )
        try:
            data = base64.b64decode(encoded, validate=True)
        except binascii.Error as err:
            raise ValueError(f"field `bytes` is not valid base64: {err}") from err
        return cls(
            bytes=data,
            on_read=_strategy_from_mapping(mapping, "on_read"),
            on_write=_strategy_from_mapping(mapping, "on_write"),
        )

    @classmethod
    def from_proto(cls, proto: ProtoConfig) -> Config:
        """Build a config from its protobuf form."""
        return cls(
            bytes=bytes(proto.bytes),
            on_read=_strategy_from_proto(proto.on_read, "on_read"),
            on_write=_strategy_from_proto(proto.on_write, "on_write"),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "on_read": self.on_read.value,
            "on_write": self.on_write.value,
            "bytes": base64.b64encode(self.bytes).decode("ascii"),
        }


class ConcatenateBytes(Filter):
    """Adds the configured bytes to the beginning or end of each packet."""

    def __init__(self, config: Config) -> None:
        self.on_read = config.on_read
        self.on_write = config.on_write
        self.bytes = bytes(config.bytes)

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        ctx.contents = self.on_read.apply(ctx.contents, self.bytes)
        return ctx.into_response()

    def write(self, ctx: WriteContext) -> WriteResponse | None:
        ctx.contents = self.on_write.apply(ctx.contents, self.bytes)
        return ctx.into_response()


class ConcatBytesFactory(FilterFactory):
    """Creates :class:`ConcatenateBytes` filters; configuration is required."""

    name = NAME

    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        config_json, config = self.require_config(args.config).deserialize(Config, self.name)
        return FilterInstance(config_json, ConcatenateBytes(config))


def factory() -> ConcatBytesFactory:
    """Return a factory for concatenation filters."""
    return ConcatBytesFactory()