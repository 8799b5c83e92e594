"""Catalog port - the engine's view of caller-owned relations.

The catalog supplies, per named relation, a schema and a row producer.
The engine reads schemas at bind time and rows at execution time; it never
mutates or persists either.
"""

from __future__ import annotations

from typing import Iterator, Protocol, runtime_checkable

from query_engine.domain.value_objects.schema import Schema


@runtime_checkable
class Relation(Protocol):
    """A named schema plus a producer of rows.

    Each call to rows() starts a fresh, single-pass iteration. Rows are
    sequences of values positionally aligned to the schema. Errors raised
    by the producer reach callers as UpstreamIoError.
    """

    @property
    def name(self) -> str:
        """Relation name."""
        ...

    @property
    def schema(self) -> Schema:
        """Relation schema."""
        ...

    def rows(self) -> Iterator[tuple]:
        """Iterate over the relation's rows."""
        ...


@runtime_checkable
class Catalog(Protocol):
    """Lookup of relations by name."""

    def get_relation(self, name: str) -> Relation | None:
        """Return the relation, or None if the catalog has no such relation."""
        ...
