import base64

import pytest

from packetfilters.concatenate_bytes import (
    NAME,
    ConcatBytesFactory,
    ConcatenateBytes,
    Config,
    ProtoConfig,
    ProtoStrategy,
    Strategy,
    factory,
)
from packetfilters.context import (
    Endpoint,
    EndpointAddress,
    ReadContext,
    UpstreamEndpoints,
    WriteContext,
)
from packetfilters.errors import (
    ConvertProtoConfigError,
    DeserializeFailedError,
    MissingConfigError,
)
from packetfilters.factory import CreateFilterArgs, MetricsRegistry

HELLO_B64 = base64.b64encode(b"hello").decode("ascii")


def _create(config):
    return factory().create_filter(CreateFilterArgs.fixed(MetricsRegistry(), config)).filter


def _assert_read(flt, expected):
    endpoints = [Endpoint(EndpointAddress.parse("127.0.0.1:81"))]
    response = flt.read(
        ReadContext(
            UpstreamEndpoints(endpoints),
            EndpointAddress.parse("127.0.0.1:80"),
            b"abc",
        )
    )
    assert response is not None
    assert list(response.endpoints) == endpoints
    assert response.contents == expected


def _assert_write(flt, expected):
    response = flt.write(
        WriteContext(
            Endpoint(EndpointAddress.parse("127.0.0.1:81")),
            EndpointAddress.parse("127.0.0.1:80"),
            EndpointAddress.parse("127.0.0.1:82"),
            b"abc",
        )
    )
    assert response is not None
    assert response.contents == expected


@pytest.mark.parametrize(
    "proto, expected",
    [
        (
            ProtoConfig(
                bytes=b"abc",
                on_write=ProtoStrategy.APPEND,
                on_read=ProtoStrategy.DO_NOTHING,
            ),
            Config(bytes=b"abc", on_write=Strategy.APPEND, on_read=Strategy.DO_NOTHING),
        ),
        (
            ProtoConfig(bytes=b"abc"),
            Config(bytes=b"abc", on_write=Strategy.DO_NOTHING, on_read=Strategy.DO_NOTHING),
        ),
    ],
    ids=["all-valid-values", "default-values"],
)
def test_convert_proto_config(proto, expected):
    assert Config.from_proto(proto) == expected


def test_convert_proto_config_invalid_strategy():
    with pytest.raises(ConvertProtoConfigError) as info:
        Config.from_proto(ProtoConfig(bytes=b"abc", on_read=42))
    assert info.value.field == "on_read"
    assert "invalid value `42`" in str(info.value)


def test_factory_valid_config_default_strategy():
    flt = _create({"bytes": HELLO_B64})
    _assert_read(flt, b"abc")
    _assert_write(flt, b"abc")


def test_factory_valid_config_read_strategies():
    _assert_read(_create({"bytes": HELLO_B64, "on_read": "APPEND"}), b"abchello")
    _assert_read(_create({"bytes": HELLO_B64, "on_read": "PREPEND"}), b"helloabc")


def test_factory_valid_config_write_strategies():
    _assert_write(_create({"bytes": HELLO_B64, "on_write": "APPEND"}), b"abchello")
    _assert_write(_create({"bytes": HELLO_B64, "on_write": "PREPEND"}), b"helloabc")


def test_factory_invalid_config_empty_mapping():
    with pytest.raises(DeserializeFailedError):
        _create({})


def test_factory_invalid_config_broken_strategy():
    with pytest.raises(DeserializeFailedError):
        _create({"strategy": "WRONG"})


def test_factory_unknown_strategy_value():
    with pytest.raises(DeserializeFailedError):
        _create({"bytes": HELLO_B64, "on_read": "WRONG"})


def test_factory_invalid_base64():
    with pytest.raises(DeserializeFailedError):
        _create({"bytes": "not base64!"})


def test_factory_requires_config():
    with pytest.raises(MissingConfigError) as info:
        _create(None)
    assert info.value.name == NAME


def test_factory_returns_config_json():
    instance = ConcatBytesFactory().create_filter(
        CreateFilterArgs.fixed(MetricsRegistry(), {"bytes": HELLO_B64, "on_read": "APPEND"})
    )
    assert instance.config == {
        "on_read": "APPEND",
        "on_write": "DO_NOTHING",
        "bytes": HELLO_B64,
    }


def test_factory_dynamic_config():
    proto = ProtoConfig(bytes=b"hello", on_write=ProtoStrategy.PREPEND)
    instance = factory().create_filter(CreateFilterArgs.dynamic(MetricsRegistry(), proto))
    _assert_write(instance.filter, b"helloabc")
    _assert_read(instance.filter, b"abc")


def test_factory_dynamic_invalid_strategy():
    proto = ProtoConfig(bytes=b"hello", on_write=42)
    with pytest.raises(ConvertProtoConfigError):
        factory().create_filter(CreateFilterArgs.dynamic(MetricsRegistry(), proto))


def test_write_create_append():
    _assert_read(ConcatenateBytes(Config(bytes=b"hello", on_read=Strategy.APPEND)), b"abchello")


def test_write_create_prepend():
    _assert_read(ConcatenateBytes(Config(bytes=b"hello", on_read=Strategy.PREPEND)), b"helloabc")


def test_write_append():
    _assert_write(ConcatenateBytes(Config(bytes=b"hello", on_write=Strategy.APPEND)), b"abchello")


def test_write_prepend():
    _assert_write(ConcatenateBytes(Config(bytes=b"hello", on_write=Strategy.PREPEND)), b"helloabc")


def test_read_noop():
    _assert_read(ConcatenateBytes(Config(bytes=b"")), b"abc")


def test_write_noop():
    _assert_write(ConcatenateBytes(Config(bytes=b"")), b"abc")


def test_mapping_round_trip():
    config = Config(bytes=b"\x00\xffdata", on_read=Strategy.PREPEND, on_write=Strategy.APPEND)
    assert Config.from_mapping(config.to_json()) == config