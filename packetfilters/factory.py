"""Filter interface, factories, their arguments and metrics."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from packetfilters.context import ReadContext, ReadResponse, WriteContext, WriteResponse
from packetfilters.errors import (
    DeserializeFailedError,
    InitializeMetricsFailedError,
    MissingConfigError,
)


class Counter:
    """A monotonically increasing, thread-safe integer counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self) -> None:
        with self._lock:
            self._value += 1

    @property
    def value(self) -> int:
        return self._value

    def __repr__(self) -> str:
        return f"Counter({self._value})"


@dataclass
class _Family:
    description: str
    label_names: tuple[str, ...]
    series: dict[tuple[str, ...], Counter] = field(default_factory=dict)


class MetricsRegistry:
    """A registry of counters; registering an existing counter returns it."""

    def __init__(self) -> None:
        self._families: dict[tuple[str, str], _Family] = {}
        self._lock = threading.Lock()

    def counter(
        self,
        name: str,
        subsystem: str,
        description: str,
        labels: Mapping[str, str] | None = None,
    ) -> Counter:
        """Return the counter for ``name`` in ``subsystem`` with the given label values."""
        labels = dict(labels or {})
        label_names = tuple(sorted(labels))
        label_values = tuple(labels[key] for key in label_names)
        with self._lock:
            family = self._families.get((subsystem, name))
            if family is None:
                family = _Family(description, label_names)
                self._families[(subsystem, name)] = family
            elif family.label_names != label_names:
                raise InitializeMetricsFailedError(
                    f"counter `{subsystem}_{name}` already registered with labels "
                    f"{list(family.label_names)}, not {list(label_names)}"
                )
            return family.series.setdefault(label_values, Counter())


class Filter:
    """Processes packets; returning ``None`` drops the packet.

    Both steps pass packets through unchanged unless overridden.
    """

    def read(self, ctx: ReadContext) -> ReadResponse | None:
        return ctx.into_response()

    def write(self, ctx: WriteContext) -> WriteResponse | None:
        return ctx.into_response()


@dataclass
class FilterInstance:
    """A created filter together with the configuration that built it."""

    config: Any
    filter: Filter


@dataclass(frozen=True)
class ConfigType:
    """Filter configuration: a static mapping, or a dynamic protobuf message."""

    value: Any
    dynamic: bool = False

    def deserialize(self, config_cls: Any, filter_name: str) -> tuple[Any, Any]:
        """Build ``config_cls`` from this configuration.

        Returns the configuration as a JSON-compatible value, and the config object.
        """
        try:
            if self.dynamic:
                config = config_cls.from_proto(self.value)
            else:
                config = config_cls.from_mapping(self.value)
        except (TypeError, ValueError, KeyError, AttributeError) as err:
            raise DeserializeFailedError(f"{filter_name}: {err}") from err
        return config.to_json(), config


@dataclass(frozen=True)
class CreateFilterArgs:
    """Arguments needed to create a filter."""

    config: ConfigType | None = None
    metrics_registry: MetricsRegistry = field(default_factory=MetricsRegistry)

    @classmethod
    def fixed(cls, metrics_registry: MetricsRegistry, config: Any) -> CreateFilterArgs:
        """Arguments with a static configuration value, or none."""
        return cls(None if config is None else ConfigType(config), metrics_registry)

    @classmethod
    def dynamic(cls, metrics_registry: MetricsRegistry, config: Any) -> CreateFilterArgs:
        """Arguments with a protobuf configuration message, or none."""
        return cls(None if config is None else ConfigType(config, dynamic=True), metrics_registry)

    def with_metrics_registry(self, metrics_registry: MetricsRegistry) -> CreateFilterArgs:
        return replace(self, metrics_registry=metrics_registry)


class FilterFactory(ABC):
    """Names a kind of filter and creates instances of it."""

    #: Configuration name of the filter this factory creates.
    name: str = ""

    @abstractmethod
    def create_filter(self, args: CreateFilterArgs) -> FilterInstance:
        """Create a filter from ``args``."""

    def require_config(self, config: ConfigType | None) -> ConfigType:
        """Return ``config``, raising :class:`MissingConfigError` if it is ``None``."""
        if config is None:
            raise MissingConfigError(self.name)
        return config