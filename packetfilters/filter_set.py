"""Sets of filter factories to be registered with a filter registry."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from packetfilters import concatenate_bytes, debug, firewall, load_balancer
from packetfilters import local_rate_limit, token_router
from packetfilters.factory import FilterFactory


class FilterSet:
    """Filter factories keyed by name; a later factory replaces an earlier one."""

    def __init__(self, filters: Iterable[FilterFactory] = ()) -> None:
        self._factories: dict[str, FilterFactory] = {}
        for filter_factory in filters:
            self._factories[filter_factory.name] = filter_factory

    @classmethod
    def default(cls) -> FilterSet:
        """The default set of runtime configurable filters."""
        return cls.default_with(())

    @classmethod
    def default_with(cls, filters: Iterable[FilterFactory]) -> FilterSet:
        """The defaults plus ``filters``, which override defaults of the same name."""
        defaults = [
            debug.factory(),
            local_rate_limit.factory(),
            concatenate_bytes.factory(),
            load_balancer.factory(),
            token_router.factory(),
            firewall.factory(),
        ]
        return cls([*defaults, *filters])

    @classmethod
    def with_filters(cls, filters: Iterable[FilterFactory]) -> FilterSet:
        """A set of exactly ``filters``, without any defaults."""
        return cls(filters)

    def __iter__(self) -> Iterator[FilterFactory]:
        return iter(self._factories.values())

    def __len__(self) -> int:
        return len(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __getitem__(self, name: str) -> FilterFactory:
        return self._factories[name]

    def names(self) -> list[str]:
        return list(self._factories)