"""In-memory catalog.

Holds relations as Python sequences (or producer callables) for tests,
examples and callers whose data already lives in memory. The catalog is
mutable between executions; a bound plan picks up whatever rows the catalog
holds when it is executed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Sequence

from query_engine.domain.value_objects.schema import Schema

RowProducer = Callable[[], Iterable[Sequence[Any]]]


@dataclass
class InMemoryRelation:
    """A relation whose rows live in memory or come from a producer callable.

    Attributes:
        name: Relation name.
        schema: Relation schema.
        data: Row list, or a zero-argument callable returning an iterable of
            rows. A callable is invoked once per scan.
    """

    name: str
    schema: Schema
    data: list[tuple] | RowProducer = field(default_factory=list)

    def rows(self) -> Iterator[tuple]:
        source = self.data() if callable(self.data) else self.data
        for row in source:
            yield tuple(row)

    def __len__(self) -> int:
        if callable(self.data):
            raise TypeError(f"Relation '{self.name}' is backed by a producer")
        return len(self.data)


class InMemoryCatalog:
    """In-memory relation registry.

    Example:
        >>> catalog = InMemoryCatalog()
        >>> catalog.register("users", Schema.of(("id", SqlType.INTEGER)), [(1,), (2,)])
        >>> catalog.get_relation("users").schema.names
        ('id',)
    """

    def __init__(self, relations: Iterable[InMemoryRelation] = ()) -> None:
        self._relations: dict[str, InMemoryRelation] = {}
        for relation in relations:
            self._relations[relation.name] = relation

    def register(
        self,
        name: str,
        schema: Schema,
        rows: Iterable[Sequence[Any]] | RowProducer = (),
    ) -> InMemoryRelation:
        """Register (or replace) a relation."""
        data = rows if callable(rows) else [tuple(r) for r in rows]
        relation = InMemoryRelation(name=name, schema=schema, data=data)
        self._relations[name] = relation
        return relation

    def drop(self, name: str) -> bool:
        """Remove a relation. Returns False if it did not exist."""
        return self._relations.pop(name, None) is not None

    def get_relation(self, name: str) -> InMemoryRelation | None:
        return self._relations.get(name)

    def insert_row(self, name: str, row: Sequence[Any]) -> None:
        """Append a row to a list-backed relation.

        Raises:
            KeyError: If the relation does not exist.
            TypeError: If the relation is backed by a producer.
        """
        relation = self._relations[name]
        if callable(relation.data):
            raise TypeError(f"Relation '{name}' is backed by a producer")
        relation.data.append(tuple(row))

    def has(self, name: str) -> bool:
        return name in self._relations

    @property
    def names(self) -> list[str]:
        return list(self._relations)

    def __contains__(self, name: str) -> bool:
        return self.has(name)
