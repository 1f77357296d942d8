"""A filter that rate limits packets from each downstream source address."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from packetfilters.context import EndpointAddress, ReadContext, ReadResponse
from packetfilters.errors import FieldInvalidError
from packetfilters.factory import (
    CreateFilterArgs,
    Filter,
    FilterFactory,
    FilterInstance,
    MetricsRegistry,
)

NAME = "packetfilters.extensions.filters.local_rate_limit.v1alpha1.LocalRateLimit"

#: Seconds without traffic after which a source's rate limiting state is dropped.
SESSION_TIMEOUT_SECONDS = 60.0

#: Seconds between sweeps for expired sources.
SESSION_EXPIRY_POLL_INTERVAL = 60.0

_MAX_U32 = 0xFFFF_FFFF

Clock = Callable[[], float]


def _default_period() -> int:
    return 1


@dataclass(frozen=True)
class ProtoConfig:
    """Protobuf form of the configuration; ``period`` is ``None`` when unset."""

    max_packets: int = 0
    period: int | None = None


def _check_unsigned(mapping: Mapping[str, Any], key: str, limit: int | None) -> int:
    if key not in mapping:
        raise ValueError(f"missing field `{key}`")
    value = mapping[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"field `{key}` must be an integer, got {type(value).__name__}")
    if value < 0 or (limit is not None and value > limit):
        raise ValueError(f"field `{key}` is out of range: {value}")
    return value


@dataclass(frozen=True)
class Config:
    """Configuration of a :class:`LocalRateLimit` filter."""

    #: Maximum number of packets forwarded from a source within one period.
    max_packets: int
    #: Length of the period in seconds.
    period: int = 1

    @classmethod
    def from_mapping(cls, mapping: Any) -> Config:
        if not isinstance(mapping, Mapping):
            raise TypeError(f"expected a mapping, got {type(mapping).__name__}")
        return cls(
            max_packets=_check_unsigned(mapping, "max_packets", None),
            period=_check_unsigned(mapping, "period", _MAX_U32),
        )

    @classmethod
    def from_proto(cls, proto: ProtoConfig) -> Config:
        period = _default_period() if proto.period is None else proto.period
        return cls(max_packets=proto.max_packets, period=period)

    def to_json(self) -> dict[str, Any]:
        return {"max_packets": self.max_packets, "period": self.period}


@dataclass
class Bucket:
    """Packets counted in the current window, and when that window started."""

    counter: int
    window_start_time_secs: int


class _TtlMap:
    """A map whose entries expire when they have not been accessed for a while."""

    def __init__(self, ttl: float, poll_interval: float, clock: Clock) -> None:
        self._ttl = ttl
        self._poll_interval = poll_interval
        self._clock = clock
        self._start = clock()
        self._next_sweep = self._start + poll_interval
        self._entries: dict[EndpointAddress, tuple[Bucket, float]] = {}

    def now_relative_secs(self) -> int:
        """Whole seconds elapsed since the map was created."""
        return int(self._clock() - self._start)

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._entries = {
            key: entry for key, entry in self._entries.items() if entry[1] > now
        }
        self._next_sweep = now + self._poll_interval

    def get(self, key: EndpointAddress) -> Bucket | None:
        now = self._clock()
        self._sweep(now)
        entry = self._entries.get(key)
        if entry is None:
            return None
        bucket, expires_at = entry
        if expires_at <= now:
            del self._entries[key]
            return None
        self._entries[key] = (bucket, now + self._ttl)
        return bucket

    def insert(self, key: EndpointAddress, bucket: Bucket) -> None:
        self._entries[key] = (bucket, self._clock() + self._ttl)

    def __len__(self) -> int:
        return len(self._entries)


class Metrics:
    """Counter of packets dropped by rate limiting."""

    def __init__(self, registry: MetricsRegistry) -> None:
        self.packets_dropped_total = registry.counter(
            "packets_dropped",
            "LocalRateLimit",
            "Total number of packets dropped due to rate limiting",
        )


class LocalRateLimit(Filter):
    """Drops packets from a source once it exceeds ``max_packets`` per period.

    Only the read path is limited; packets from upstream pass untouched.
    """

    def __init__(
        self, config: Config, metrics: Metrics, clock: Clock | None = None
    ) -> None:
        self.config = config
        self.metrics = metrics
        self._state = _TtlMap(
            SESSION_TIMEOUT_SECONDS,
            SESSION_EXPIRY_POLL_INTERVAL,
            clock or time.monotonic,
        )
        self._lock = threading.Lock()

    def acquire_token(self, address: EndpointAddress) -> bool:
        """Return whether a packet from ``address`` may be forwarded now."""
        if self.config.max_packets == 0:
            return False

        with self._lock:
            bucket = self._state.get(address)
            now_secs = self._state.now_relative_secs()
            if bucket is None:
                self._state.insert(address, Bucket(1, now_secs))
                return True

            prev_count = bucket.counter
            bucket.counter += 1
            elapsed_secs = now_secs - bucket.window_start_time_secs
            start_new_window = elapsed_secs > self.config.period

            if prev_count >= self.config.max_packets and not start_new_window:
                return False

            if start_new_window:
                bucket.counter = 1
                bucket.window_start_time_secs = now_secs
            return True

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        if self.acquire_token(ctx.source):
            return ctx.into_response()
        self.metrics.packets_dropped_total.inc()
        return None


class LocalRateLimitFactory(FilterFactory):
    """Creates :class:`LocalRateLimit` filters; configuration is required."""

    name = NAME

    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        config_json, config = self.require_config(args.config).deserialize(Config, self.name)
        if config.period < 1:
            raise FieldInvalidError("period", "value must be at least 1 second")
        return FilterInstance(
            config_json, LocalRateLimit(config, Metrics(args.metrics_registry))
        )


def factory() -> LocalRateLimitFactory:
    """Return a factory for rate limiting filters."""
    return LocalRateLimitFactory()