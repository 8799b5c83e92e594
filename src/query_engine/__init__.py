"""
Query Engine - logical SQL query execution over caller-supplied relations

Binds structured SELECT queries (or SQL text via sqlglot) against a catalog
of relations and executes them as pull-based operator pipelines, with
three-valued logic, grouping, joins, ordering and limits.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

from query_engine.adapters.inbound.sql_parser import ParseError, SQLParser
from query_engine.adapters.outbound.in_memory_catalog import InMemoryCatalog, InMemoryRelation
from query_engine.application.executor import ResultStream, Row, execute
from query_engine.application.query_engine import QueryEngine, QueryResult
from query_engine.application.reference import naive_execute
from query_engine.domain.entities.bound_plan import BoundPlan
from query_engine.domain.entities.query import (
    AggregateExpr,
    AggregateFunc,
    ArithmeticExpr,
    ComparisonExpr,
    JoinClause,
    JoinKind,
    LogicalExpr,
    NegateExpr,
    OrderByItem,
    ParameterExpr,
    QueryDescription,
    SelectItem,
    StarExpr,
    TableRef,
    col,
    lit,
)
from query_engine.domain.errors import (
    BindError,
    Cancelled,
    ExecutionError,
    QueryEngineError,
)
from query_engine.domain.services.binder import bind
from query_engine.domain.services.cancellation import CancellationToken
from query_engine.domain.value_objects.schema import Column, Schema
from query_engine.domain.value_objects.values import (
    ArithmeticOp,
    ComparisonOp,
    LogicalOp,
    SqlType,
)

__all__ = [
    "__version__",
    "bind",
    "execute",
    "naive_execute",
    "QueryEngine",
    "QueryResult",
    "ResultStream",
    "Row",
    "BoundPlan",
    "CancellationToken",
    "InMemoryCatalog",
    "InMemoryRelation",
    "SQLParser",
    "ParseError",
    "Column",
    "Schema",
    "SqlType",
    "ArithmeticOp",
    "ComparisonOp",
    "LogicalOp",
    "QueryDescription",
    "SelectItem",
    "TableRef",
    "JoinClause",
    "JoinKind",
    "OrderByItem",
    "AggregateExpr",
    "AggregateFunc",
    "ArithmeticExpr",
    "ComparisonExpr",
    "LogicalExpr",
    "NegateExpr",
    "ParameterExpr",
    "StarExpr",
    "col",
    "lit",
    "QueryEngineError",
    "BindError",
    "ExecutionError",
    "Cancelled",
]
