"""A filter that logs every packet passing through it."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from packetfilters.context import ReadContext, ReadResponse, WriteContext, WriteResponse
from packetfilters.factory import CreateFilterArgs, Filter, FilterFactory, FilterInstance

NAME = "packetfilters.extensions.filters.debug.v1alpha1.Debug"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProtoDebug:
    """Protobuf form of the debug filter's configuration."""

    id: str | None = None


@dataclass(frozen=True)
class Config:
    """Debug filter configuration."""

    #: Identifier that may be included with each log message.
    id: str | None = None

    @classmethod
    def from_mapping(cls, mapping: Any) -> Config:
        if not isinstance(mapping, Mapping):
            raise TypeError(f"expected a mapping, got {type(mapping).__name__}")
        ident = mapping.get("id")
        if ident is not None and not isinstance(ident, str):
            raise TypeError(f"field `id` must be a string, got {type(ident).__name__}")
        return cls(ident)

    @classmethod
    def from_proto(cls, proto: ProtoDebug) -> Config:
        return cls(proto.id)

    def to_json(self) -> dict[str, Any]:
        return {"id": self.id}


def packet_to_string(contents: bytes) -> str:
    """Decode packet contents as UTF-8, or describe the failure."""
    try:
        return bytes(contents).decode("utf-8")
    except UnicodeDecodeError:
        return "error decoding packet as UTF-8"


class Debug(Filter):
    """Logs all incoming and outgoing packets."""

    def __init__(self, id: str | None = None) -> None:
        self.id = id

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        logger.info(
            "Read filter event from=%s contents=%r",
            ctx.source,
            packet_to_string(ctx.contents),
        )
        return ctx.into_response()

    def write(self, ctx: WriteContext) -> WriteResponse | None:
        logger.info(
            "Write filter event endpoint=%s from=%s to=%s contents=%r",
            ctx.endpoint.address,
            ctx.source,
            ctx.dest,
            packet_to_string(ctx.contents),
        )
        return ctx.into_response()


class DebugFactory(FilterFactory):
    """Creates :class:`Debug` filters; configuration is optional."""

    name = NAME

    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        if args.config is None:
            config_json, config = None, None
        else:
            config_json, config = args.config.deserialize(Config, self.name)
        return FilterInstance(config_json, Debug(config.id if config else None))


def factory() -> DebugFactory:
    """Return a factory for debug filters."""
    return DebugFactory()