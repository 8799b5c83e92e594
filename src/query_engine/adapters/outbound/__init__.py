"""Outbound adapters - implementations of the engine's outbound ports.

Exports:
    - InMemoryCatalog: Catalog over in-memory relations
    - InMemoryRelation: Relation backed by a row list or producer callable
"""

from query_engine.adapters.outbound.in_memory_catalog import (
    InMemoryCatalog,
    InMemoryRelation,
)

__all__ = ["InMemoryCatalog", "InMemoryRelation"]
