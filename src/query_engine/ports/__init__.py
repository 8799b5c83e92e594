"""Ports layer for the query engine.

Ports define the interfaces between the engine core and the outside world.
Outbound ports describe what the engine needs from collaborators (relation
data); the engine's inbound surface is the programmatic API in the
application layer.
"""

from query_engine.ports.outbound import Catalog, Relation

__all__ = ["Catalog", "Relation"]
