"""Domain entities for the query engine.

Exports:
    Query description (input):
        - QueryDescription: Parsed SELECT statement, one field per clause
        - Expression and its subclasses: ColumnExpr, LiteralExpr, ...
        - TableRef, JoinClause, SelectItem, OrderByItem: Clause items
        - col, lit: Expression builders

    Bound plan (output of binding):
        - BoundPlan: Immutable, reusable plan
        - BoundExpr and its subclasses: positional expressions
        - PlanNode and its subclasses: operator descriptors

    Group:
        - Group: Grouping key plus member rows
"""

from query_engine.domain.entities.bound_plan import (
    AggregateCall,
    AggregateNode,
    BoundArithmetic,
    BoundColumn,
    BoundComparison,
    BoundExpr,
    BoundLiteral,
    BoundLogical,
    BoundNegate,
    BoundPlan,
    DistinctNode,
    FilterNode,
    HavingNode,
    JoinNode,
    LimitNode,
    PlanNode,
    ProjectNode,
    ScanNode,
    SortKey,
    SortNode,
    TrimNode,
)
from query_engine.domain.entities.group import Group
from query_engine.domain.entities.query import (
    AggregateExpr,
    AggregateFunc,
    ArithmeticExpr,
    ColumnExpr,
    ColumnRef,
    ComparisonExpr,
    Expression,
    JoinClause,
    JoinKind,
    LiteralExpr,
    LogicalExpr,
    NegateExpr,
    OrderByItem,
    ParameterExpr,
    QueryDescription,
    SelectItem,
    StarExpr,
    TableRef,
    col,
    contains_aggregate,
    lit,
)

__all__ = [
    # Query description
    "QueryDescription",
    "Expression",
    "ColumnRef",
    "ColumnExpr",
    "LiteralExpr",
    "ParameterExpr",
    "ArithmeticExpr",
    "NegateExpr",
    "ComparisonExpr",
    "LogicalExpr",
    "AggregateExpr",
    "AggregateFunc",
    "StarExpr",
    "TableRef",
    "JoinClause",
    "JoinKind",
    "SelectItem",
    "OrderByItem",
    "col",
    "lit",
    "contains_aggregate",
    # Bound plan
    "BoundPlan",
    "BoundExpr",
    "BoundColumn",
    "BoundLiteral",
    "BoundArithmetic",
    "BoundNegate",
    "BoundComparison",
    "BoundLogical",
    "AggregateCall",
    "PlanNode",
    "ScanNode",
    "JoinNode",
    "FilterNode",
    "AggregateNode",
    "HavingNode",
    "ProjectNode",
    "DistinctNode",
    "SortKey",
    "SortNode",
    "TrimNode",
    "LimitNode",
    # Group
    "Group",
]
