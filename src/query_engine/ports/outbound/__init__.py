"""Outbound ports - interfaces the engine requires from its collaborators.

Exports:
    - Catalog: Lookup of relations by name
    - Relation: Named schema plus row producer
"""

from query_engine.ports.outbound.catalog import Catalog, Relation

__all__ = ["Catalog", "Relation"]
