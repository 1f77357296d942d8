"""A filter that routes packets to the endpoints holding a matching token.

The token is read from the packet's dynamic metadata, typically placed there
by a filter earlier in the chain.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from packetfilters.context import (
    CAPTURED_BYTES,
    ReadContext,
    ReadResponse,
    RetainedItems,
    WriteContext,
    WriteResponse,
)
from packetfilters.factory import (
    CreateFilterArgs,
    Filter,
    FilterFactory,
    FilterInstance,
    MetricsRegistry,
)

NAME = "packetfilters.extensions.filters.token_router.v1alpha1.TokenRouter"

#: Only one in this many repeated drop events is logged.
LOG_SAMPLING_RATE = 1000

logger = logging.getLogger(__name__)


def _default_metadata_key() -> str:
    return CAPTURED_BYTES


@dataclass(frozen=True)
class ProtoConfig:
    """Protobuf form of the configuration; ``metadata_key`` is ``None`` when unset."""

    metadata_key: str | None = None


@dataclass(frozen=True)
class Config:
    """Configuration of a :class:`TokenRouter` filter."""

    #: Key under which the routing token is found in the packet's metadata.
    metadata_key: str = CAPTURED_BYTES

    @classmethod
    def from_mapping(cls, mapping: Any) -> Config:
        if not isinstance(mapping, Mapping):
            raise TypeError(f"expected a mapping, got {type(mapping).__name__}")
        key = mapping.get("metadataKey")
        if key is None:
            return cls()
        if not isinstance(key, str):
            raise TypeError(
                f"field `metadataKey` must be a string, got {type(key).__name__}"
            )
        return cls(key)

    @classmethod
    def from_proto(cls, proto: ProtoConfig) -> Config:
        if proto.metadata_key is None:
            return cls(_default_metadata_key())
        return cls(proto.metadata_key)

    def to_json(self) -> dict[str, Any]:
        return {"metadataKey": self.metadata_key}


class Metrics:
    """Counters of packets dropped, by reason."""

    def __init__(self, registry: MetricsRegistry) -> None:
        description = "Total number of packets dropped. Labels: reason."

        def counter(reason: str):
            return registry.counter(
                "packets_dropped_total", "TokenRouter", description, {"reason": reason}
            )

        self.packets_dropped_no_token_found = counter("NoTokenFound")
        self.packets_dropped_invalid_token = counter("InvalidToken")
        self.packets_dropped_no_endpoint_match = counter("NoEndpointMatch")


class TokenRouter(Filter):
    """Forwards packets only to endpoints whose tokens include the packet's token."""

    def __init__(self, config: Config, metrics: Metrics) -> None:
        self.metadata_key = config.metadata_key
        self.metrics = metrics

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        if self.metadata_key not in ctx.metadata:
            dropped = self.metrics.packets_dropped_no_token_found
            if dropped.value % LOG_SAMPLING_RATE == 0:
                logger.error(
                    "Packets are being dropped as no routing token was found in "
                    "filter dynamic metadata count=%d metadata_key=%r",
                    dropped.value,
                    self.metadata_key,
                )
            dropped.inc()
            return None

        token = ctx.metadata[self.metadata_key]
        if not isinstance(token, (bytes, bytearray, memoryview)):
            dropped = self.metrics.packets_dropped_invalid_token
            if dropped.value % LOG_SAMPLING_RATE == 0:
                logger.error(
                    "Packets are being dropped as routing token has invalid type: "
                    "expected bytes count=%d metadata_key=%r",
                    dropped.value,
                    self.metadata_key,
                )
            dropped.inc()
            return None

        token = bytes(token)
        retained = ctx.endpoints.retain(lambda endpoint: token in endpoint.tokens)
        if retained is RetainedItems.NONE:
            self.metrics.packets_dropped_no_endpoint_match.inc()
            return None
        return ctx.into_response()

    def write(self, ctx: WriteContext) -> WriteResponse | None:
        return ctx.into_response()


class TokenRouterFactory(FilterFactory):
    """Creates :class:`TokenRouter` filters; configuration is optional."""

    name = NAME

    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        if args.config is None:
            config = Config()
            config_json = config.to_json()
        else:
            config_json, config = args.config.deserialize(Config, self.name)
        return FilterInstance(
            config_json, TokenRouter(config, Metrics(args.metrics_registry))
        )


def factory() -> TokenRouterFactory:
    """Return a factory for token routing filters."""
    return TokenRouterFactory()