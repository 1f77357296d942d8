"""A filter that balances packets over the upstream endpoints."""

from __future__ import annotations

import enum
import hashlib
import random
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from packetfilters.context import EndpointAddress, ReadContext, ReadResponse
from packetfilters.errors import map_proto_enum
from packetfilters.factory import CreateFilterArgs, Filter, FilterFactory, FilterInstance

NAME = "packetfilters.extensions.filters.load_balancer.v1alpha1.LoadBalancer"


class EndpointChooser(ABC):
    """Chooses from the set of endpoints a packet may be sent to."""

    @abstractmethod
    def choose_endpoints(self, ctx: ReadContext) -> None:
        """Narrow ``ctx.endpoints`` down to the endpoint(s) to use."""


class RoundRobinEndpointChooser(EndpointChooser):
    """Chooses endpoints in turn."""

    def __init__(self) -> None:
        self._next = 0
        self._lock = threading.Lock()

    def choose_endpoints(self, ctx: ReadContext) -> None:
        with self._lock:
            count = self._next
            self._next += 1
        ctx.endpoints.keep(count % ctx.endpoints.size())


class RandomEndpointChooser(EndpointChooser):
    """Chooses endpoints at random."""

    def choose_endpoints(self, ctx: ReadContext) -> None:
        ctx.endpoints.keep(random.randrange(ctx.endpoints.size()))


def _address_hash(address: EndpointAddress) -> int:
    digest = hashlib.blake2b(
        address.host.packed + address.port.to_bytes(2, "big"), digest_size=8
    ).digest()
    return int.from_bytes(digest, "big")


class HashEndpointChooser(EndpointChooser):
    """Chooses endpoints by a hash of the packet's source IP and port."""

    def choose_endpoints(self, ctx: ReadContext) -> None:
        ctx.endpoints.keep(_address_hash(ctx.source) % ctx.endpoints.size())


class Policy(enum.Enum):
    """How packets are distributed across endpoints."""

    #: Send packets to endpoints in turns.
    ROUND_ROBIN = "ROUND_ROBIN"
    #: Send packets to endpoints chosen at random.
    RANDOM = "RANDOM"
    #: Send packets to endpoints based on a hash of source IP and port.
    HASH = "HASH"

    def as_endpoint_chooser(self) -> EndpointChooser:
        if self is Policy.RANDOM:
            return RandomEndpointChooser()
        if self is Policy.HASH:
            return HashEndpointChooser()
        return RoundRobinEndpointChooser()


class ProtoPolicy(enum.IntEnum):
    """Protobuf enumeration of the load balancing policies."""

    ROUND_ROBIN = 0
    RANDOM = 1
    HASH = 2


_POLICY_VARIANTS = (
    (ProtoPolicy.ROUND_ROBIN, Policy.ROUND_ROBIN),
    (ProtoPolicy.RANDOM, Policy.RANDOM),
    (ProtoPolicy.HASH, Policy.HASH),
)


@dataclass(frozen=True)
class ProtoConfig:
    """Protobuf form of the configuration; ``policy`` is the raw enum value or ``None``."""

    policy: int | None = None


@dataclass(frozen=True)
class Config:
    """Configuration of a :class:`LoadBalancer` filter."""

    policy: Policy = Policy.ROUND_ROBIN

    @classmethod
    def from_mapping(cls, mapping: Any) -> Config:
        if not isinstance(mapping, Mapping):
            raise TypeError(f"expected a mapping, got {type(mapping).__name__}")
        value = mapping.get("policy")
        if value is None:
            return cls()
        if not isinstance(value, str):
            raise TypeError(f"field `policy` must be a string, got {type(value).__name__}")
        try:
            return cls(Policy(value))
        except ValueError:
            allowed = ", ".join(member.value for member in Policy)
            raise ValueError(
                f"unknown variant `{value}` for field `policy`, expected one of {allowed}"
            ) from None

    @classmethod
    def from_proto(cls, proto: ProtoConfig) -> Config:
        if proto.policy is None:
            return cls()
        return cls(map_proto_enum(proto.policy, "policy", _POLICY_VARIANTS))

    def to_json(self) -> dict[str, Any]:
        return {"policy": self.policy.value}


class LoadBalancer(Filter):
    """Balances packets over the upstream endpoints."""

    def __init__(self, endpoint_chooser: EndpointChooser) -> None:
        self.endpoint_chooser = endpoint_chooser

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        self.endpoint_chooser.choose_endpoints(ctx)
        return ctx.into_response()


class LoadBalancerFilterFactory(FilterFactory):
    """Creates :class:`LoadBalancer` filters; configuration is required."""

    name = NAME

    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        config_json, config = self.require_config(args.config).deserialize(Config, self.name)
        return FilterInstance(config_json, LoadBalancer(config.policy.as_endpoint_chooser()))


def factory() -> LoadBalancerFilterFactory:
    """Return a factory for load balancing filters."""
    return LoadBalancerFilterFactory()