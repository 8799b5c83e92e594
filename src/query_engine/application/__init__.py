"""Application layer for the query engine.

The application layer orchestrates domain logic to fulfill use cases:
executing bound plans, evaluating queries by brute force for comparison,
and the QueryEngine entry point.

Exports:
    QueryEngine:
        - QueryEngine: Main entry point wiring config, logging, metrics, tracing
        - QueryResult: Materialized result of a query
    Executor:
        - execute: Run a bound plan, returning a lazy ResultStream
        - QueryExecutor: Executes bound plans using the Volcano iterator model
        - ResultStream: Lazy, single-pass stream of rows
        - Row: A result row
        - build_operator: Bound plan node to operator tree
    Reference:
        - naive_execute: Brute-force evaluation of a query
"""

from query_engine.application.executor import (
    QueryExecutor,
    ResultStream,
    Row,
    StreamOutcome,
    build_operator,
    execute,
)
from query_engine.application.query_engine import QueryEngine, QueryResult
from query_engine.application.reference import naive_execute

__all__ = [
    "QueryEngine",
    "QueryResult",
    "QueryExecutor",
    "ResultStream",
    "Row",
    "StreamOutcome",
    "build_operator",
    "execute",
    "naive_execute",
]
