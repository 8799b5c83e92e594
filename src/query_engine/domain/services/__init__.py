"""Domain services for query binding and execution.

Services implement the engine's core logic: resolving a query description
against a catalog, evaluating bound expressions, and the pipeline operators
that produce result rows.
"""

from query_engine.domain.services.binder import Binder, Scope, ScopeEntry, bind
from query_engine.domain.services.cancellation import CancellationToken
from query_engine.domain.services.evaluator import (
    Accumulator,
    aggregate_result_type,
    aggregate_rows,
    create_accumulator,
    evaluate,
    evaluate_predicate,
)
from query_engine.domain.services.operators import (
    DistinctOperator,
    FilterOperator,
    HashAggregateOperator,
    HavingFilterOperator,
    LimitOffsetOperator,
    NestedLoopJoinOperator,
    Operator,
    ProjectOperator,
    ScanOperator,
    SortOperator,
    TrimOperator,
)
from query_engine.domain.services.parallel_aggregate import ParallelAggregateOperator

__all__ = [
    "Binder",
    "Scope",
    "ScopeEntry",
    "bind",
    "CancellationToken",
    "Accumulator",
    "aggregate_result_type",
    "aggregate_rows",
    "create_accumulator",
    "evaluate",
    "evaluate_predicate",
    "Operator",
    "ScanOperator",
    "NestedLoopJoinOperator",
    "FilterOperator",
    "HavingFilterOperator",
    "HashAggregateOperator",
    "ParallelAggregateOperator",
    "ProjectOperator",
    "DistinctOperator",
    "SortOperator",
    "TrimOperator",
    "LimitOffsetOperator",
]
