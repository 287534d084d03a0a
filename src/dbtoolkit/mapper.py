"""
Row-to-object mapping.

A `DataMapper` turns one `Row` into an instance of a result type. Mappers are
resolved per result type through a `MapperRegistry`:

1. a mapper registered for the type (`register_mapper`)
2. a `from_row(row)` classmethod on the type itself
3. the reflective `ReflectionDataMapper`, unless disabled in the settings

Reflective mapping matches columns to the type's writable attributes by
case-insensitive name and converts each value through a fixed ladder:
nullable unwrap, then enum, then UUID, then the generic `change_type`.
"""
import dataclasses
import inspect
import logging
import threading
import typing
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

import cachetools
from dbtoolkit.exceptions import MappingError, TypeConversionError
from dbtoolkit.row import Row
from dbtoolkit.types import change_type, unwrap_optional

__all__ = [
    'DataMapper',
    'ReflectionDataMapper',
    'RowMethodMapper',
    'MapperRegistry',
    'default_registry',
    'register_mapper',
    'writable_properties',
    'convert_column_value',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DataMapper(ABC, Generic[T]):
    """Maps the current row onto an instance of T.
    """

    @abstractmethod
    def map(self, row: Row) -> T:
        """Map one row.

        Args:
            row: The row to map

        Returns
            A new instance populated from the row
        """


_property_cache = cachetools.LRUCache(maxsize=256)
_property_cache_lock = threading.RLock()


@cachetools.cached(_property_cache, lock=_property_cache_lock)
def writable_properties(result_type: type) -> tuple[tuple[str, Any], ...]:
    """Return (name, type hint) for every assignable attribute of a class.

    Covers type-hinted class attributes (including dataclass fields) and
    properties with a setter. Private names and ClassVars are excluded. Order
    follows declaration, base classes first.
    """
    try:
        hints = typing.get_type_hints(result_type)
    except (NameError, TypeError):
        hints = {}
        for klass in reversed(result_type.__mro__):
            hints.update(getattr(klass, '__annotations__', {}))

    props: dict[str, Any] = {}
    for name, hint in hints.items():
        if name.startswith('_') or typing.get_origin(hint) is ClassVar or hint is ClassVar:
            continue
        props[name] = hint

    for name, member in inspect.getmembers(result_type, lambda m: isinstance(m, property)):
        if name.startswith('_'):
            continue
        if member.fset is None:
            props.pop(name, None)
            continue
        try:
            props[name] = typing.get_type_hints(member.fget).get('return', Any)
        except (NameError, TypeError):
            props[name] = Any

    if dataclasses.is_dataclass(result_type):
        for field in dataclasses.fields(result_type):
            props.setdefault(field.name, field.type)

    return tuple(props.items())


def _convert_enum(raw: Any, enum_type: type[Enum]) -> Enum:
    if isinstance(raw, enum_type):
        return raw
    if isinstance(raw, str):
        if raw in enum_type.__members__:
            return enum_type[raw]
        text = raw.strip()
        if text.lstrip('+-').isdigit() and all(isinstance(m.value, int) for m in enum_type):
            return enum_type(int(text))
        return enum_type(raw)
    return enum_type(int(raw))


def convert_column_value(raw: Any, target: Any) -> Any:
    """Convert a non-null column value to an attribute's declared type.

    Raises TypeError or ValueError when the value is not representable.
    """
    target = unwrap_optional(target)
    if isinstance(target, type) and issubclass(target, Enum):
        return _convert_enum(raw, target)
    if target is uuid.UUID:
        return raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
    return change_type(raw, target)


class ReflectionDataMapper(DataMapper[T]):
    """Maps columns onto attributes by case-insensitive name.

    The result type must be constructible without arguments. Columns with no
    matching attribute and NULL values are skipped, so the attribute keeps
    the value the constructor gave it.
    """

    def __init__(self, result_type: type[T]) -> None:
        self.result_type = result_type
        self._lookup: dict[str, tuple[str, Any]] = {}
        for name, hint in writable_properties(result_type):
            self._lookup.setdefault(name.casefold(), (name, hint))

    def __repr__(self) -> str:
        return f'ReflectionDataMapper({self.result_type.__name__})'

    def _instantiate(self) -> T:
        try:
            return self.result_type()
        except TypeError as exc:
            raise MappingError(
                f'{self.result_type.__name__} must be constructible without arguments '
                'to be mapped by reflection') from exc

    def map(self, row: Row) -> T:
        obj = self._instantiate()
        for i in range(row.field_count):
            column = row.get_name(i)
            match = self._lookup.get(column.casefold())
            if match is None or row.is_null(i):
                continue
            name, hint = match
            try:
                value = convert_column_value(row.get_value(i), hint)
            except (TypeError, ValueError, ArithmeticError) as exc:
                raise TypeConversionError(
                    f"Cannot convert column '{column}' value to type "
                    f"{getattr(unwrap_optional(hint), '__name__', hint)} "
                    f'for {self.result_type.__name__}.{name}.') from exc
            setattr(obj, name, value)
        return obj


class RowMethodMapper(DataMapper[T]):
    """Delegates to a `from_row(row)` classmethod on the result type."""

    def __init__(self, result_type: type[T]) -> None:
        self.result_type = result_type

    def map(self, row: Row) -> T:
        return self.result_type.from_row(row)


class MapperRegistry:
    """Result type -> mapper lookup with the reflective fallback.

    Thread-safe; mappers are expected to be stateless.
    """

    def __init__(self) -> None:
        self._mappers: dict[type, DataMapper] = {}
        self._lock = threading.RLock()

    def register(self, result_type: type[T], mapper: DataMapper[T]) -> None:
        with self._lock:
            self._mappers[result_type] = mapper
        logger.debug(f'Registered {type(mapper).__name__} for {result_type.__name__}')

    def unregister(self, result_type: type) -> None:
        with self._lock:
            self._mappers.pop(result_type, None)

    def get(self, result_type: type[T]) -> DataMapper[T] | None:
        """Return the mapper registered for the type, if any."""
        with self._lock:
            return self._mappers.get(result_type)

    def __contains__(self, result_type: type) -> bool:
        return self.get(result_type) is not None

    def resolve(self, result_type: type[T], reflection: bool = True) -> DataMapper[T]:
        """Resolve the mapper for a result type.

        Args:
            result_type: The type rows are mapped onto
            reflection: Whether the reflective fallback may be used

        Raises
            MappingError: If nothing can map the type
        """
        mapper = self.get(result_type)
        if mapper is not None:
            return mapper
        if callable(getattr(result_type, 'from_row', None)):
            return RowMethodMapper(result_type)
        if reflection:
            logger.debug(f'No mapper registered for {result_type.__name__}, using reflection')
            return ReflectionDataMapper(result_type)
        raise MappingError(f'No mapper registered for {result_type.__name__}')


default_registry = MapperRegistry()


def register_mapper(result_type: type, registry: MapperRegistry | None = None):
    """Class decorator registering a DataMapper implementation for a result type.

    Usage:
        @register_mapper(UserDto)
        class UserMapper(DataMapper[UserDto]):
            def map(self, row):
                ...
    """
    def decorator(cls: type[DataMapper]) -> type[DataMapper]:
        (registry or default_registry).register(result_type, cls())
        return cls
    return decorator
