from dataclasses import dataclass

import pytest

from packetfilters.context import (
    Endpoint,
    EndpointAddress,
    ReadContext,
    UpstreamEndpoints,
    WriteContext,
)
from packetfilters.errors import (
    DeserializeFailedError,
    InitializeMetricsFailedError,
    MissingConfigError,
)
from packetfilters.factory import (
    ConfigType,
    Counter,
    CreateFilterArgs,
    Filter,
    FilterFactory,
    FilterInstance,
    MetricsRegistry,
)


@dataclass
class _Proto:
    size: int


@dataclass
class _Cfg:
    size: int

    @classmethod
    def from_mapping(cls, mapping):
        size = mapping["size"]
        if not isinstance(size, int):
            raise TypeError("size must be an integer")
        return cls(size)

    @classmethod
    def from_proto(cls, proto):
        return cls(proto.size)

    def to_json(self):
        return {"size": self.size}


class _SizedFactory(FilterFactory):
    name = "sized"

    def create_filter(self, args):
        config_json, _ = self.require_config(args.config).deserialize(_Cfg, self.name)
        return FilterInstance(config_json, Filter())


def _read_ctx():
    return ReadContext(
        UpstreamEndpoints([Endpoint(EndpointAddress.parse("127.0.0.1:8080"))]),
        EndpointAddress.parse("127.0.0.1:8081"),
        b"abc",
    )


def test_counter_increments():
    counter = Counter()
    assert counter.value == 0
    counter.inc()
    counter.inc()
    assert counter.value == 2


def test_registry_returns_existing_counter():
    registry = MetricsRegistry()
    first = registry.counter("packets_dropped", "Sub", "help")
    first.inc()
    second = registry.counter("packets_dropped", "Sub", "help")
    assert second is first
    assert second.value == 1


def test_registry_labels_give_separate_series():
    registry = MetricsRegistry()
    read = registry.counter("total", "Sub", "help", {"event": "read"})
    write = registry.counter("total", "Sub", "help", {"event": "write"})
    read.inc()
    assert read is not write
    assert write.value == 0
    assert registry.counter("total", "Sub", "help", {"event": "read"}).value == 1


def test_registry_rejects_mismatched_labels():
    registry = MetricsRegistry()
    registry.counter("total", "Sub", "help", {"event": "read"})
    with pytest.raises(InitializeMetricsFailedError):
        registry.counter("total", "Sub", "help")


def test_separate_registries_are_independent():
    a = MetricsRegistry().counter("x", "Sub", "help")
    a.inc()
    assert MetricsRegistry().counter("x", "Sub", "help").value == 0


def test_default_filter_passes_packets_through():
    f = Filter()
    response = f.read(_read_ctx())
    assert response.contents == b"abc"
    assert [str(e.address) for e in response.endpoints] == ["127.0.0.1:8080"]
    write = f.write(
        WriteContext(
            Endpoint(EndpointAddress.parse("127.0.0.1:81")),
            EndpointAddress.parse("127.0.0.1:80"),
            EndpointAddress.parse("127.0.0.1:82"),
            b"xyz",
        )
    )
    assert write.contents == b"xyz"


def test_fixed_and_dynamic_args():
    registry = MetricsRegistry()
    fixed = CreateFilterArgs.fixed(registry, {"size": 1})
    assert fixed.config == ConfigType({"size": 1})
    assert fixed.metrics_registry is registry
    assert CreateFilterArgs.fixed(registry, None).config is None
    dynamic = CreateFilterArgs.dynamic(registry, _Proto(3))
    assert dynamic.config.dynamic is True
    assert CreateFilterArgs.dynamic(registry, None).config is None


def test_with_metrics_registry_keeps_config():
    args = CreateFilterArgs.fixed(MetricsRegistry(), {"size": 1})
    other = MetricsRegistry()
    moved = args.with_metrics_registry(other)
    assert moved.metrics_registry is other
    assert moved.config == args.config


def test_deserialize_static_and_dynamic():
    json_value, config = ConfigType({"size": 4}).deserialize(_Cfg, "sized")
    assert config == _Cfg(4)
    assert json_value == {"size": 4}
    json_value, config = ConfigType(_Proto(7), dynamic=True).deserialize(_Cfg, "sized")
    assert config == _Cfg(7)
    assert json_value == {"size": 7}


@pytest.mark.parametrize("value", [{}, {"size": "big"}])
def test_deserialize_failures_are_wrapped(value):
    with pytest.raises(DeserializeFailedError):
        ConfigType(value).deserialize(_Cfg, "sized")


def test_factory_requires_config():
    factory = _SizedFactory()
    with pytest.raises(MissingConfigError) as info:
        factory.create_filter(CreateFilterArgs.fixed(MetricsRegistry(), None))
    assert info.value == MissingConfigError("sized")


def test_factory_creates_instance():
    instance = _SizedFactory().create_filter(
        CreateFilterArgs.fixed(MetricsRegistry(), {"size": 2})
    )
    assert instance.config == {"size": 2}
    assert instance.filter.read(_read_ctx()).contents == b"abc"