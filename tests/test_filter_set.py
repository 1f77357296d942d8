import pytest

from packetfilters import concatenate_bytes, debug, firewall, load_balancer
from packetfilters import local_rate_limit, token_router
from packetfilters.factory import CreateFilterArgs, Filter, FilterFactory, FilterInstance, MetricsRegistry
from packetfilters.filter_set import FilterSet
from packetfilters.registry import FilterRegistry

DEFAULT_NAMES = {
    debug.NAME,
    local_rate_limit.NAME,
    concatenate_bytes.NAME,
    load_balancer.NAME,
    token_router.NAME,
    firewall.NAME,
}


class _Custom(FilterFactory):
    def __init__(self, name):
        self.name = name

    def create_filter(self, args):
        return FilterInstance({"custom": self.name}, Filter())


def test_default_contains_builtin_filters():
    filters = FilterSet.default()
    assert set(filters.names()) == DEFAULT_NAMES
    assert len(filters) == len(DEFAULT_NAMES)
    assert {f.name for f in filters} == DEFAULT_NAMES


def test_default_with_adds_filter():
    custom = _Custom("custom.Filter")
    filters = FilterSet.default_with([custom])
    assert "custom.Filter" in filters
    assert filters["custom.Filter"] is custom
    assert len(filters) == len(DEFAULT_NAMES) + 1


def test_default_with_overrides_default():
    custom = _Custom(debug.NAME)
    filters = FilterSet.default_with([custom])
    assert filters[debug.NAME] is custom
    assert len(filters) == len(DEFAULT_NAMES)


def test_with_filters_has_no_defaults():
    custom = _Custom("custom.Filter")
    filters = FilterSet.with_filters([custom])
    assert filters.names() == ["custom.Filter"]
    assert debug.NAME not in filters


def test_later_duplicate_replaces_earlier():
    first, second = _Custom("dup"), _Custom("dup")
    filters = FilterSet.with_filters([first, second])
    assert list(filters) == [second]


def test_missing_name_raises_key_error():
    with pytest.raises(KeyError):
        FilterSet.with_filters([])["absent"]


def test_registry_from_default_set_creates_filter():
    registry = FilterRegistry(FilterSet.default())
    instance = registry.get(debug.NAME, CreateFilterArgs.fixed(MetricsRegistry(), None))
    assert isinstance(instance.filter, debug.Debug)
    custom_registry = FilterRegistry(FilterSet.default_with([_Custom(debug.NAME)]))
    created = custom_registry.get(debug.NAME, CreateFilterArgs.fixed(MetricsRegistry(), None))
    assert created.config == {"custom": debug.NAME}