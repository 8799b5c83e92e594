"""Column and schema value objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from query_engine.domain.value_objects.values import SqlType


@dataclass(frozen=True, slots=True)
class Column:
    """A named, typed column.

    Attributes:
        name: Column name as written in the relation.
        data_type: Declared SQL type.
        nullable: Whether NULL is a legal value.
    """

    name: str
    data_type: SqlType
    nullable: bool = True

    def __str__(self) -> str:
        suffix = "" if self.nullable else " NOT NULL"
        return f"{self.name} {self.data_type.value}{suffix}"


@dataclass(frozen=True, slots=True)
class Schema:
    """Ordered sequence of columns.

    Example:
        >>> schema = Schema.of(("id", SqlType.INTEGER), ("name", SqlType.TEXT))
        >>> schema.names
        ('id', 'name')
    """

    columns: tuple[Column, ...]

    @classmethod
    def of(cls, *columns: Column | tuple) -> Schema:
        """Build a schema from Column objects or (name, type[, nullable]) tuples."""
        built = []
        for col in columns:
            if isinstance(col, Column):
                built.append(col)
            else:
                built.append(Column(*col))
        return cls(tuple(built))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def index_of(self, name: str) -> int:
        """Position of the first column named `name`.

        Raises:
            KeyError: If no such column exists.
        """
        for i, col in enumerate(self.columns):
            if col.name == name:
                return i
        raise KeyError(f"Column '{name}' not found")

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)

    def __getitem__(self, index: int) -> Column:
        return self.columns[index]

    def __str__(self) -> str:
        return "(" + ", ".join(str(c) for c in self.columns) + ")"
