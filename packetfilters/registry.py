"""A registry of the filters that can be created by name."""

from __future__ import annotations

from collections.abc import Iterable

from packetfilters.errors import NotFoundError
from packetfilters.factory import CreateFilterArgs, FilterFactory, FilterInstance


class FilterRegistry:
    """Maps filter names to the factories that create them.

    Copies share the underlying mapping, which is never modified.
    """

    def __init__(self, factories: Iterable[FilterFactory] = ()) -> None:
        self._registry: dict[str, FilterFactory] = {
            filter_factory.name: filter_factory for filter_factory in factories
        }

    def get(self, key: str, args: CreateFilterArgs) -> FilterInstance:
        """Create the filter registered under ``key``.

        Raises :class:`NotFoundError` if there is none, or whatever the
        factory raises for a bad configuration.
        """
        filter_factory = self._registry.get(key)
        if filter_factory is None:
            raise NotFoundError(key)
        return filter_factory.create_filter(args)

    def __contains__(self, key: object) -> bool:
        return key in self._registry

    def __len__(self) -> int:
        return len(self._registry)