from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import is_dataclass
from typing import Any, cast, TypeVar

from .errors import EntityDefinitionError
from .geo import Point, Polygon
from .model import EntityDescriptor, PropertyDescriptor, TableOptions, describe_properties

T = TypeVar("T")


def default_discriminator(tp: type[Any]) -> str:
    return f"{tp.__module__}.{tp.__qualname__}"


POINT_DISCRIMINATOR = default_discriminator(Point)
POLYGON_DISCRIMINATOR = default_discriminator(Polygon)


class MappingContext:
    """Memoizes entity metadata and holds the discriminator registry.

    Descriptors are derived on first use and reused for the lifetime of the
    context. Safe to share between threads.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entities: dict[tuple[type[Any], str | None], EntityDescriptor[Any]] = {}
        self._properties: dict[type[Any], Mapping[str, PropertyDescriptor]] = {}
        self._by_name: dict[str, type[Any]] = {}
        self._names: dict[type[Any], str] = {}

    def entity(
        self,
        entity_type: type[T],
        *,
        table_name: str | None = None,
        options: TableOptions | None = None,
    ) -> EntityDescriptor[T]:
        key = (entity_type, table_name)
        with self._lock:
            cached = self._entities.get(key)
            if cached is not None and options is None:
                return cast(EntityDescriptor[T], cached)

            desc = EntityDescriptor.from_dataclass(entity_type, table_name=table_name, options=options)
            self._entities[key] = desc
            self._register(entity_type, None)
            return desc

    def properties(self, tp: type[Any]) -> Mapping[str, PropertyDescriptor]:
        with self._lock:
            cached = self._properties.get(tp)
            if cached is None:
                cached = describe_properties(tp)
                self._properties[tp] = cached
                self._register(tp, None)
            return cached

    def register_type(self, tp: type[Any], name: str | None = None) -> str:
        if not is_dataclass(tp):
            raise EntityDefinitionError(f"{getattr(tp, '__name__', tp)!s} must be a dataclass")
        with self._lock:
            return self._register(tp, name)

    def discriminator(self, tp: type[Any]) -> str:
        with self._lock:
            return self._register(tp, None)

    def resolve_discriminator(self, name: str) -> type[Any] | None:
        with self._lock:
            return self._by_name.get(name)

    def _register(self, tp: type[Any], name: str | None) -> str:
        existing = self._names.get(tp)
        if existing is not None and (name is None or name == existing):
            return existing

        name = name or default_discriminator(tp)
        owner = self._by_name.get(name)
        if owner is not None and owner is not tp:
            raise EntityDefinitionError(
                f"discriminator {name!r} is already registered for {default_discriminator(owner)}"
            )
        self._by_name[name] = tp
        self._names[tp] = name
        return name
