"""A filter that allows or blocks traffic by source IP network and port."""

from __future__ import annotations

import enum
import ipaddress
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from packetfilters.context import (
    EndpointAddress,
    ReadContext,
    ReadResponse,
    WriteContext,
    WriteResponse,
)
from packetfilters.errors import ConvertProtoConfigError, map_proto_enum
from packetfilters.factory import (
    Counter,
    CreateFilterArgs,
    Filter,
    FilterFactory,
    FilterInstance,
    MetricsRegistry,
)

NAME = "packetfilters.extensions.filters.firewall.v1alpha1.Firewall"

_MAX_PORT = 0xFFFF

logger = logging.getLogger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class Action(enum.Enum):
    """Whether a matching rule allows or denies a packet."""

    ALLOW = "ALLOW"
    DENY = "DENY"


class PortRangeError(ValueError):
    """The minimum of a port range is not below its maximum."""

    def __init__(self, min: int, max: int) -> None:
        super().__init__(
            f"invalid port range: min {min} is greater than or equal to max {max}"
        )
        self.min = min
        self.max = max


def _check_port(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _MAX_PORT:
        raise ValueError(f"{what} must be a port number between 0 and {_MAX_PORT}, got {value!r}")
    return value


def _parse_u16(text: str) -> int:
    digits = text[1:] if text.startswith("+") else text
    if not digits:
        raise ValueError("cannot parse integer from empty string")
    if not (digits.isascii() and digits.isdigit()):
        raise ValueError("invalid digit found in string")
    value = int(digits)
    if value > _MAX_PORT:
        raise ValueError("number too large to fit in target type")
    return value


@dataclass(frozen=True)
class PortRange:
    """A range of ports: ``start`` is inclusive, ``end`` is exclusive."""

    start: int
    end: int

    def __post_init__(self) -> None:
        _check_port(self.start, "range start")
        _check_port(self.end, "range end")
        if self.start >= self.end:
            raise PortRangeError(self.start, self.end)

    def contains(self, port: int) -> bool:
        return self.start <= port < self.end

    def __contains__(self, port: object) -> bool:
        return isinstance(port, int) and self.contains(port)

    @classmethod
    def parse(cls, text: Any) -> PortRange:
        """Parse a single port such as ``"10"`` or a range such as ``"10-20"``."""
        if isinstance(text, int) and not isinstance(text, bool):
            text = str(text)
        if not isinstance(text, str):
            raise TypeError(
                f"A port range in the format of '10' or '10-20' expected, got {type(text).__name__}"
            )
        first, sep, second = text.partition("-")
        if not sep:
            value = _parse_u16(first)
            return cls(value, value + 1)
        return cls(_parse_u16(first), _parse_u16(second))

    def to_json(self) -> str:
        """Render as a single port when the range holds one port, else ``min-max``."""
        if self.start == self.end - 1:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class Rule:
    """A source network, a set of port ranges and the action taken on a match."""

    action: Action
    source: IPNetwork
    ports: tuple[PortRange, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.source, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
            object.__setattr__(self, "source", ipaddress.ip_network(self.source, strict=False))
        object.__setattr__(self, "ports", tuple(self.ports))

    def contains(self, address: EndpointAddress) -> bool:
        """True if ``address`` is in the source network and in at least one port range."""
        host = address.host
        if host.version != self.source.version or host not in self.source:
            return False
        return any(port_range.contains(address.port) for port_range in self.ports)

    def to_json(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "source": str(self.source),
            "ports": [port_range.to_json() for port_range in self.ports],
        }


class ProtoAction(enum.IntEnum):
    """Protobuf enumeration of the rule actions."""

    ALLOW = 0
    DENY = 1


_ACTION_VARIANTS = (
    (ProtoAction.ALLOW, Action.ALLOW),
    (ProtoAction.DENY, Action.DENY),
)


@dataclass(frozen=True)
class ProtoPortRange:
    """Protobuf form of a port range."""

    min: int = 0
    max: int = 0


@dataclass(frozen=True)
class ProtoRule:
    """Protobuf form of a rule; ``action`` is the raw enum value."""

    action: int = 0
    source: str = ""
    ports: tuple[ProtoPortRange, ...] = ()


@dataclass(frozen=True)
class ProtoConfig:
    """Protobuf form of the firewall configuration."""

    on_read: tuple[ProtoRule, ...] = ()
    on_write: tuple[ProtoRule, ...] = ()


def _rule_from_mapping(mapping: Any) -> Rule:
    if not isinstance(mapping, Mapping):
        raise TypeError(f"expected a rule mapping, got {type(mapping).__name__}")
    for key in ("action", "source", "ports"):
        if key not in mapping:
            raise ValueError(f"missing field `{key}`")
    action_text = mapping["action"]
    try:
        action = Action(action_text)
    except ValueError:
        allowed = ", ".join(member.value for member in Action)
        raise ValueError(
            f"unknown variant `{action_text}` for field `action`, expected one of {allowed}"
        ) from None
    source = mapping["source"]
    if not isinstance(source, str):
        raise TypeError(f"field `source` must be a string, got {type(source).__name__}")
    ports = mapping["ports"]
    if isinstance(ports, (str, bytes)) or not isinstance(ports, Iterable):
        raise TypeError("field `ports` must be a list of port ranges")
    return Rule(
        action=action,
        source=ipaddress.ip_network(source, strict=False),
        ports=tuple(PortRange.parse(item) for item in ports),
    )


def _rules_from_mapping(mapping: Mapping[str, Any], key: str) -> tuple[Rule, ...]:
    if key not in mapping:
        raise ValueError(f"missing field `{key}`")
    rules = mapping[key]
    if isinstance(rules, (str, bytes, Mapping)) or not isinstance(rules, Iterable):
        raise TypeError(f"field `{key}` must be a list of rules")
    return tuple(_rule_from_mapping(rule) for rule in rules)


def _port_from_proto(port_range: ProtoPortRange) -> PortRange:
    if not 0 <= port_range.min <= _MAX_PORT:
        raise ConvertProtoConfigError(
            "min too large: out of range integral type conversion attempted", "port.min"
        )
    if not 0 <= port_range.max <= _MAX_PORT:
        raise ConvertProtoConfigError(
            "max too large: out of range integral type conversion attempted", "port.max"
        )
    try:
        return PortRange(port_range.min, port_range.max)
    except PortRangeError as err:
        raise ConvertProtoConfigError(str(err), "ports") from err


def _rule_from_proto(rule: ProtoRule) -> Rule:
    action = map_proto_enum(rule.action, "policy", _ACTION_VARIANTS)
    try:
        source = ipaddress.ip_network(rule.source, strict=False)
    except ValueError as err:
        raise ConvertProtoConfigError(f"invalid source: {err!r}", "source") from err
    return Rule(action, source, tuple(_port_from_proto(port) for port in rule.ports))


@dataclass(frozen=True)
class Config:
    """Rules applied on the read and write paths, checked in order."""

    on_read: tuple[Rule, ...] = field(default=())
    on_write: tuple[Rule, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "on_read", tuple(self.on_read))
        object.__setattr__(self, "on_write", tuple(self.on_write))

    @classmethod
    def from_mapping(cls, mapping: Any) -> Config:
        if not isinstance(mapping, Mapping):
            raise TypeError(f"expected a mapping, got {type(mapping).__name__}")
        return cls(
            on_read=_rules_from_mapping(mapping, "on_read"),
            on_write=_rules_from_mapping(mapping, "on_write"),
        )

    @classmethod
    def from_proto(cls, proto: ProtoConfig) -> Config:
        return cls(
            on_read=tuple(_rule_from_proto(rule) for rule in proto.on_read),
            on_write=tuple(_rule_from_proto(rule) for rule in proto.on_write),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "on_read": [rule.to_json() for rule in self.on_read],
            "on_write": [rule.to_json() for rule in self.on_write],
        }


class Metrics:
    """Counters of allowed and denied packets, per direction."""

    def __init__(self, registry: MetricsRegistry) -> None:
        def counter(name: str, description: str, event: str) -> Counter:
            return registry.counter(name, "Firewall", description, {"event": event})

        denied = "Total number of packets denied. Labels: event."
        allowed = "Total number of packets allowed. Labels: event."
        self.packets_denied_read = counter("packets_denied_total", denied, "read")
        self.packets_denied_write = counter("packets_denied_total", denied, "write")
        self.packets_allowed_read = counter("packets_allowed_total", allowed, "read")
        self.packets_allowed_write = counter("packets_allowed_total", allowed, "write")


class Firewall(Filter):
    """Allows or denies packets by their source; unmatched packets are denied."""

    def __init__(self, config: Config, metrics: Metrics) -> None:
        self.metrics = metrics
        self.on_read = config.on_read
        self.on_write = config.on_write

    @staticmethod
    def _allows(
        rules: Iterable[Rule],
        source: EndpointAddress,
        event: str,
        allowed: Counter,
        denied: Counter,
    ) -> bool:
        for rule in rules:
            if rule.contains(source):
                if rule.action is Action.ALLOW:
                    logger.debug("action=Allow event=%s from=%s", event, source)
                    allowed.inc()
                    return True
                logger.debug("action=Deny event=%s from=%s", event, source)
                denied.inc()
                return False
        logger.debug("action=default: Deny event=%s from=%s", event, source)
        denied.inc()
        return False

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        if self._allows(
            self.on_read,
            ctx.source,
            "read",
            self.metrics.packets_allowed_read,
            self.metrics.packets_denied_read,
        ):
            return ctx.into_response()
        return None

    def write(self, ctx: WriteContext) -> WriteResponse | None:
        if self._allows(
            self.on_write,
            ctx.source,
            "write",
            self.metrics.packets_allowed_write,
            self.metrics.packets_denied_write,
        ):
            return ctx.into_response()
        return None


class FirewallFactory(FilterFactory):
    """Creates :class:`Firewall` filters; configuration is required."""

    name = NAME

    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        config_json, config = self.require_config(args.config).deserialize(Config, self.name)
        return FilterInstance(config_json, Firewall(config, Metrics(args.metrics_registry)))


def factory() -> FirewallFactory:
    """Return a factory for firewall filters."""
    return FirewallFactory()