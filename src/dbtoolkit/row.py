"""
Result row access.

`Column` holds the metadata of one entry of a DB-API `cursor.description`;
`Row` pairs a row's values with those columns and exposes them by ordinal or
by name, which is what data mappers consume.
"""
from collections.abc import Sequence
from typing import Any, Self

from dbtoolkit.types import is_null

from libb import attrdict

__all__ = ['Column', 'Row', 'columns_from_cursor_description']


class Column:
    """Database column metadata."""

    def __init__(self,
                 name: str,
                 type_code: Any = None,
                 display_size: int | None = None,
                 internal_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None,
                 nullable: bool | None = None):
        self.name = name
        self.type_code = type_code
        self.display_size = display_size
        self.internal_size = internal_size
        self.precision = precision
        self.scale = scale
        self.nullable = nullable

    @classmethod
    def from_cursor_description(cls, description_item: Sequence) -> Self:
        """Create a Column from a DB-API 7-item description entry."""
        items = list(description_item) + [None] * (7 - len(description_item))
        name, type_code, display_size, internal_size, precision, scale, nullable = items[:7]
        return cls(
            name=str(name) if name is not None else '',
            type_code=type_code,
            display_size=display_size,
            internal_size=internal_size,
            precision=precision,
            scale=scale,
            nullable=bool(nullable) if nullable is not None else None,
        )

    def __repr__(self) -> str:
        return f'Column(name={self.name!r}, type_code={self.type_code!r})'

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]


def columns_from_cursor_description(cursor: Any) -> list[Column]:
    """Create Column objects from cursor description."""
    if cursor.description is None:
        return []
    return [Column.from_cursor_description(desc) for desc in cursor.description]


class Row:
    """One result row, addressable by ordinal or case-insensitive column name.
    """

    __slots__ = ('columns', 'values', '_index')

    def __init__(self, columns: list[Column], values: Sequence[Any]) -> None:
        self.columns = columns
        self.values = tuple(values)
        self._index: dict[str, int] | None = None

    @property
    def field_count(self) -> int:
        return len(self.columns)

    def __len__(self) -> int:
        return self.field_count

    def get_name(self, ordinal: int) -> str:
        return self.columns[ordinal].name

    def get_value(self, ordinal: int) -> Any:
        return self.values[ordinal]

    def is_null(self, ordinal: int) -> bool:
        return is_null(self.values[ordinal])

    def get_ordinal(self, name: str) -> int:
        """Return the ordinal of the first column with the given name (case-insensitive)."""
        if self._index is None:
            self._index = {}
            for i, col in enumerate(self.columns):
                self._index.setdefault(col.name.casefold(), i)
        try:
            return self._index[name.casefold()]
        except KeyError:
            raise KeyError(name) from None

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, str):
            return self.values[self.get_ordinal(key)]
        return self.values[key]

    def keys(self) -> list[str]:
        return Column.get_names(self.columns)

    def to_dict(self) -> dict[str, Any]:
        return dict(zip(self.keys(), self.values))

    def to_attrdict(self) -> attrdict:
        return attrdict(self.to_dict())

    def __repr__(self) -> str:
        return f'Row({self.to_dict()!r})'
