"""Endpoints and the contexts that carry packets through filters."""

from __future__ import annotations

import enum
import ipaddress
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Union

#: Default metadata key under which captured bytes of a packet are stored.
CAPTURED_BYTES = "packetfilters.dev/captured_bytes"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class EndpointAddress:
    """An IP address and port."""

    host: IPAddress
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.host, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            object.__setattr__(self, "host", ipaddress.ip_address(self.host))
        if (
            isinstance(self.port, bool)
            or not isinstance(self.port, int)
            or not 0 <= self.port <= 0xFFFF
        ):
            raise ValueError(f"invalid port: {self.port!r}")

    @classmethod
    def parse(cls, text: str) -> EndpointAddress:
        """Parse ``host:port``, with IPv6 hosts written in brackets."""
        host, sep, port = text.rpartition(":")
        if not sep or not host:
            raise ValueError(f"invalid socket address syntax: {text!r}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
            if ipaddress.ip_address(host).version != 6:
                raise ValueError(f"invalid socket address syntax: {text!r}")
        elif ":" in host:
            raise ValueError(f"invalid socket address syntax: {text!r}")
        if not port.isdigit():
            raise ValueError(f"invalid port in socket address: {text!r}")
        return cls(host, int(port))

    @property
    def ip(self) -> IPAddress:
        return self.host

    def __str__(self) -> str:
        if self.host.version == 6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Endpoint:
    """An upstream endpoint and the routing tokens it accepts."""

    address: EndpointAddress
    tokens: frozenset[bytes] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "tokens",
            frozenset(t.encode() if isinstance(t, str) else bytes(t) for t in self.tokens),
        )


class RetainedItems(enum.Enum):
    """How many endpoints survived a call to :meth:`UpstreamEndpoints.retain`."""

    NONE = "none"
    SOME = "some"
    ALL = "all"


class UpstreamEndpoints:
    """The endpoints a packet will be forwarded to, narrowed down by filters."""

    def __init__(self, endpoints: Iterable[Endpoint]) -> None:
        self._current = list(endpoints)
        if not self._current:
            raise ValueError("endpoint list must not be empty")

    def size(self) -> int:
        return len(self._current)

    def __len__(self) -> int:
        return len(self._current)

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self._current)

    def keep(self, index: int) -> None:
        """Keep only the endpoint at ``index``."""
        if not 0 <= index < len(self._current):
            raise IndexError(
                f"index {index} is out of range for {len(self._current)} endpoints"
            )
        self._current = [self._current[index]]

    def retain(self, predicate: Callable[[Endpoint], bool]) -> RetainedItems:
        """Keep the endpoints matching ``predicate``; leave them all if none match."""
        kept = [endpoint for endpoint in self._current if predicate(endpoint)]
        if not kept:
            return RetainedItems.NONE
        everything = len(kept) == len(self._current)
        self._current = kept
        return RetainedItems.ALL if everything else RetainedItems.SOME

    def __repr__(self) -> str:
        return f"UpstreamEndpoints({self._current!r})"


@dataclass
class ReadResponse:
    """The result of a filter's read step."""

    endpoints: UpstreamEndpoints
    contents: bytes
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReadContext:
    """A packet received from downstream, on its way upstream."""

    endpoints: UpstreamEndpoints
    source: EndpointAddress
    contents: bytes
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.contents = bytes(self.contents)

    def into_response(self) -> ReadResponse:
        return ReadResponse(self.endpoints, self.contents, self.metadata)

    @classmethod
    def with_response(cls, source: EndpointAddress, response: ReadResponse) -> ReadContext:
        """Build a context for the next filter from a previous response."""
        return cls(response.endpoints, source, response.contents, response.metadata)


@dataclass
class WriteResponse:
    """The result of a filter's write step."""

    contents: bytes
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WriteContext:
    """A packet received from an upstream endpoint, on its way downstream."""

    endpoint: Endpoint
    source: EndpointAddress
    dest: EndpointAddress
    contents: bytes
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.contents = bytes(self.contents)

    def into_response(self) -> WriteResponse:
        return WriteResponse(self.contents, self.metadata)