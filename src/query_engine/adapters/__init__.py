"""Adapters layer - concrete implementations around the engine core.

Adapters provide the actual implementations:
- Inbound adapters: Turn external input (SQL text) into query descriptions
- Outbound adapters: Implement the catalog port (in-memory relations)
"""

from query_engine.adapters.inbound import ParseError, SQLParser
from query_engine.adapters.outbound import InMemoryCatalog, InMemoryRelation

__all__ = [
    # Inbound adapters
    "ParseError",
    "SQLParser",
    # Outbound adapters
    "InMemoryCatalog",
    "InMemoryRelation",
]
