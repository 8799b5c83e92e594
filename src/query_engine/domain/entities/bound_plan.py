"""Bound expressions and bound plan nodes.

Binding replaces every name with a position in the row the expression will
be evaluated against. Bound nodes are frozen: a bound plan never re-resolves
names during execution and may be executed any number of times, including
concurrently.

Plan trees read bottom-up in logical clause order:

    Limit
      -> Sort
        -> Distinct
          -> Project
            -> HavingFilter
              -> Aggregate
                -> Filter
                  -> Join
                    -> Scan ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator

from query_engine.domain.entities.query import AggregateFunc, JoinKind
from query_engine.domain.value_objects.schema import Column, Schema
from query_engine.domain.value_objects.values import (
    ArithmeticOp,
    ComparisonOp,
    LogicalOp,
    SqlType,
    format_value,
)


# Bound expressions


@dataclass(frozen=True)
class BoundExpr(ABC):
    """Base class for bound expressions."""

    @property
    @abstractmethod
    def data_type(self) -> SqlType:
        pass

    @abstractmethod
    def __str__(self) -> str:
        pass


@dataclass(frozen=True)
class BoundColumn(BoundExpr):
    """Positional column reference. The label is for display only."""

    index: int
    column_type: SqlType
    label: str = field(default="", compare=False)

    @property
    def data_type(self) -> SqlType:
        return self.column_type

    def __str__(self) -> str:
        return f"{self.label or '$'}#{self.index}"


@dataclass(frozen=True)
class BoundLiteral(BoundExpr):
    value: Any
    literal_type: SqlType

    @property
    def data_type(self) -> SqlType:
        return self.literal_type

    def __str__(self) -> str:
        return format_value(self.value)


@dataclass(frozen=True)
class BoundArithmetic(BoundExpr):
    left: BoundExpr
    op: ArithmeticOp
    right: BoundExpr
    result_type: SqlType

    @property
    def data_type(self) -> SqlType:
        return self.result_type

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"


@dataclass(frozen=True)
class BoundNegate(BoundExpr):
    operand: BoundExpr

    @property
    def data_type(self) -> SqlType:
        return self.operand.data_type

    def __str__(self) -> str:
        return f"-{self.operand}"


@dataclass(frozen=True)
class BoundComparison(BoundExpr):
    """Comparison; right is None for IS NULL / IS NOT NULL."""

    left: BoundExpr
    op: ComparisonOp
    right: BoundExpr | None = None

    @property
    def data_type(self) -> SqlType:
        return SqlType.BOOLEAN

    def __str__(self) -> str:
        if self.right is None:
            return f"{self.left} {self.op.value}"
        return f"{self.left} {self.op.value} {self.right}"


@dataclass(frozen=True)
class BoundLogical(BoundExpr):
    op: LogicalOp
    operands: tuple[BoundExpr, ...]

    @property
    def data_type(self) -> SqlType:
        return SqlType.BOOLEAN

    def __str__(self) -> str:
        if self.op is LogicalOp.NOT:
            return f"NOT ({self.operands[0]})"
        return "(" + f" {self.op.value} ".join(str(o) for o in self.operands) + ")"


@dataclass(frozen=True)
class AggregateCall(BoundExpr):
    """An aggregate over the rows of a group.

    The argument is bound against the aggregate's input row. Only valid in a
    group context; the binder lifts every call into an AggregateNode and
    replaces it with a BoundColumn over the aggregate output.
    """

    func: AggregateFunc
    arg: BoundExpr | None
    distinct: bool
    result_type: SqlType

    @property
    def data_type(self) -> SqlType:
        return self.result_type

    @property
    def is_count_star(self) -> bool:
        return self.func is AggregateFunc.COUNT and self.arg is None

    def __str__(self) -> str:
        if self.arg is None:
            return f"{self.func.value}(*)"
        distinct = "DISTINCT " if self.distinct else ""
        return f"{self.func.value}({distinct}{self.arg})"


# Plan nodes


@dataclass(frozen=True)
class PlanNode(ABC):
    """Base class for bound plan nodes."""

    @abstractmethod
    def describe(self) -> str:
        pass

    def inputs(self) -> tuple[PlanNode, ...]:
        return ()

    def walk(self) -> Iterator[PlanNode]:
        yield self
        for child in self.inputs():
            yield from child.walk()

    def explain(self, depth: int = 0) -> str:
        lines = ["  " * depth + ("-> " if depth else "") + self.describe()]
        for child in self.inputs():
            lines.append(child.explain(depth + 1))
        return "\n".join(lines)


@dataclass(frozen=True)
class ScanNode(PlanNode):
    """Scan a catalog relation."""

    relation: str
    qualifier: str
    schema: Schema

    def describe(self) -> str:
        if self.qualifier != self.relation:
            return f"Scan({self.relation} AS {self.qualifier})"
        return f"Scan({self.relation})"


@dataclass(frozen=True)
class JoinNode(PlanNode):
    """Nested-loop join; predicate None is a Cartesian product."""

    left: PlanNode
    right: PlanNode
    kind: JoinKind
    predicate: BoundExpr | None
    left_width: int
    right_width: int

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.left, self.right)

    def describe(self) -> str:
        on = f" ON {self.predicate}" if self.predicate is not None else ""
        return f"NestedLoopJoin({self.kind.value}{on})"


@dataclass(frozen=True)
class FilterNode(PlanNode):
    input: PlanNode
    predicate: BoundExpr

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        return f"Filter({self.predicate})"


@dataclass(frozen=True)
class AggregateNode(PlanNode):
    """Group rows by key and compute aggregates.

    Output rows are (key values..., aggregate results...). With no keys the
    whole input forms one implicit group, which exists even for empty input.
    """

    input: PlanNode
    keys: tuple[BoundExpr, ...]
    aggregates: tuple[AggregateCall, ...]

    @property
    def implicit_group(self) -> bool:
        return not self.keys

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        keys = ", ".join(str(k) for k in self.keys)
        aggs = ", ".join(str(a) for a in self.aggregates)
        return f"Aggregate(group=[{keys}], agg=[{aggs}])"


@dataclass(frozen=True)
class HavingNode(PlanNode):
    input: PlanNode
    predicate: BoundExpr

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        return f"HavingFilter({self.predicate})"


@dataclass(frozen=True)
class ProjectNode(PlanNode):
    """Evaluate output expressions.

    The first `visible` expressions are the SELECT list; any after that are
    hidden ORDER BY carry columns, trimmed after sorting.
    """

    input: PlanNode
    exprs: tuple[BoundExpr, ...]
    visible: int

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        cols = ", ".join(str(e) for e in self.exprs[: self.visible])
        hidden = len(self.exprs) - self.visible
        suffix = f" +{hidden} hidden" if hidden else ""
        return f"Project({cols}){suffix}"


@dataclass(frozen=True)
class DistinctNode(PlanNode):
    """Deduplicate on the first `width` columns; first occurrence wins."""

    input: PlanNode
    width: int

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        return f"Distinct(width={self.width})"


@dataclass(frozen=True)
class SortKey:
    expr: BoundExpr
    ascending: bool
    nulls_first: bool

    def __str__(self) -> str:
        direction = "ASC" if self.ascending else "DESC"
        nulls = "FIRST" if self.nulls_first else "LAST"
        return f"{self.expr} {direction} NULLS {nulls}"


@dataclass(frozen=True)
class SortNode(PlanNode):
    input: PlanNode
    keys: tuple[SortKey, ...]

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        return "Sort(" + ", ".join(str(k) for k in self.keys) + ")"


@dataclass(frozen=True)
class TrimNode(PlanNode):
    """Keep the first `width` columns, dropping hidden sort columns."""

    input: PlanNode
    width: int

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        return f"Trim(width={self.width})"


@dataclass(frozen=True)
class LimitNode(PlanNode):
    """Skip `offset` rows then yield at most `limit` (None is unbounded)."""

    input: PlanNode
    limit: int | None
    offset: int = 0

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def describe(self) -> str:
        limit = "ALL" if self.limit is None else str(self.limit)
        return f"LimitOffset({limit}, offset={self.offset})"


@dataclass(frozen=True)
class BoundPlan:
    """A fully bound query, ready to execute.

    Attributes:
        root: Root of the operator descriptor tree.
        output: Schema of the rows the plan produces.
        relations: Catalog relations the plan scans.
    """

    root: PlanNode
    output: Schema
    relations: tuple[str, ...]

    @property
    def columns(self) -> tuple[str, ...]:
        return self.output.names

    def output_columns(self) -> tuple[Column, ...]:
        return self.output.columns

    def explain(self) -> str:
        return self.root.explain()

    def __str__(self) -> str:
        return self.explain()
