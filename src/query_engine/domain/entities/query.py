"""Structured query description.

A QueryDescription is the already-parsed form of a SELECT statement: the
clauses are supplied as separate fields and are evaluated in logical order
no matter which order the caller filled them in.

Example:
    >>> query = QueryDescription(
    ...     select=[SelectItem(col("name"))],
    ...     from_=[TableRef("users")],
    ...     where=ComparisonExpr(col("age"), ComparisonOp.GT, lit(18)),
    ... )
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from query_engine.domain.value_objects.values import (
    ArithmeticOp,
    ComparisonOp,
    LogicalOp,
    format_value,
)


class AggregateFunc(Enum):
    """Aggregate functions."""

    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


class JoinKind(Enum):
    """Join kinds."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"
    CROSS = "CROSS"


@dataclass(frozen=True)
class ColumnRef:
    """Reference to a column, optionally qualified with a relation name or alias."""

    name: str
    table: str | None = None

    def __str__(self) -> str:
        if self.table:
            return f"{self.table}.{self.name}"
        return self.name


@dataclass(frozen=True)
class Expression(ABC):
    """Base class for expressions."""

    @abstractmethod
    def __str__(self) -> str:
        pass

    def children(self) -> tuple[Expression, ...]:
        return ()

    def walk(self) -> Iterator[Expression]:
        """Yield this expression and all of its descendants, pre-order."""
        yield self
        for child in self.children():
            yield from child.walk()


@dataclass(frozen=True)
class ColumnExpr(Expression):
    """Column reference expression."""

    column: ColumnRef

    def __str__(self) -> str:
        return str(self.column)


@dataclass(frozen=True)
class LiteralExpr(Expression):
    """Literal value expression."""

    value: Any

    def __str__(self) -> str:
        return format_value(self.value)


@dataclass(frozen=True)
class ParameterExpr(Expression):
    """Named parameter, substituted with a literal at bind time."""

    name: str

    def __str__(self) -> str:
        return f":{self.name}"


@dataclass(frozen=True)
class ArithmeticExpr(Expression):
    """Binary arithmetic expression (e.g., salary * 2)."""

    left: Expression
    op: ArithmeticOp
    right: Expression

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"

    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)


@dataclass(frozen=True)
class NegateExpr(Expression):
    """Unary minus."""

    operand: Expression

    def __str__(self) -> str:
        return f"-{self.operand}"

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)


@dataclass(frozen=True)
class ComparisonExpr(Expression):
    """Comparison expression (e.g., col = value)."""

    left: Expression
    op: ComparisonOp
    right: Expression | None = None  # None for IS NULL / IS NOT NULL

    def __str__(self) -> str:
        if self.right is None:
            return f"{self.left} {self.op.value}"
        return f"{self.left} {self.op.value} {self.right}"

    def children(self) -> tuple[Expression, ...]:
        if self.right is None:
            return (self.left,)
        return (self.left, self.right)


@dataclass(frozen=True)
class LogicalExpr(Expression):
    """Logical expression combining other expressions."""

    op: LogicalOp
    operands: tuple[Expression, ...] = ()

    def __str__(self) -> str:
        if self.op == LogicalOp.NOT:
            return f"NOT ({self.operands[0]})"
        op_str = f" {self.op.value} "
        return f"({op_str.join(str(o) for o in self.operands)})"

    def children(self) -> tuple[Expression, ...]:
        return self.operands


@dataclass(frozen=True)
class AggregateExpr(Expression):
    """Aggregate function expression."""

    func: AggregateFunc
    arg: Expression | None = None  # None for COUNT(*)
    distinct: bool = False

    def __str__(self) -> str:
        if self.arg is None:
            return f"{self.func.value}(*)"
        distinct_str = "DISTINCT " if self.distinct else ""
        return f"{self.func.value}({distinct_str}{self.arg})"

    def children(self) -> tuple[Expression, ...]:
        if self.arg is None:
            return ()
        return (self.arg,)


@dataclass(frozen=True)
class StarExpr(Expression):
    """`*` or `qualifier.*` in a SELECT list."""

    table: str | None = None

    def __str__(self) -> str:
        return f"{self.table}.*" if self.table else "*"


def contains_aggregate(expr: Expression | None) -> bool:
    if expr is None:
        return False
    return any(isinstance(e, AggregateExpr) for e in expr.walk())


# Clause items


@dataclass(frozen=True)
class TableRef:
    """A FROM source: a catalog relation with an optional alias."""

    name: str
    alias: str | None = None

    @property
    def qualifier(self) -> str:
        return self.alias or self.name

    def __str__(self) -> str:
        if self.alias:
            return f"{self.name} AS {self.alias}"
        return self.name


@dataclass(frozen=True)
class JoinClause:
    """A JOIN applied to the accumulated result of the sources before it."""

    table: TableRef
    kind: JoinKind = JoinKind.INNER
    condition: Expression | None = None

    def __str__(self) -> str:
        on = f" ON {self.condition}" if self.condition is not None else ""
        return f"{self.kind.value} JOIN {self.table}{on}"


@dataclass(frozen=True)
class SelectItem:
    """An item in a SELECT list."""

    expr: Expression
    alias: str | None = None


@dataclass(frozen=True)
class OrderByItem:
    """An item in an ORDER BY clause.

    nulls_first=None defers to the engine's null ordering policy.
    """

    expr: Expression
    ascending: bool = True
    nulls_first: bool | None = None


@dataclass
class QueryDescription:
    """Parsed SELECT statement, one field per clause."""

    select: list[SelectItem]
    from_: list[TableRef]
    joins: list[JoinClause] = field(default_factory=list)
    where: Expression | None = None
    group_by: list[Expression] = field(default_factory=list)
    having: Expression | None = None
    distinct: bool = False
    order_by: list[OrderByItem] = field(default_factory=list)
    limit: int | ParameterExpr | None = None
    offset: int | ParameterExpr | None = None

    def __str__(self) -> str:
        parts = ["SELECT"]
        if self.distinct:
            parts.append("DISTINCT")
        parts.append(
            ", ".join(
                f"{item.expr} AS {item.alias}" if item.alias else str(item.expr)
                for item in self.select
            )
        )
        parts.append("FROM " + ", ".join(str(t) for t in self.from_))
        parts.extend(str(j) for j in self.joins)
        if self.where is not None:
            parts.append(f"WHERE {self.where}")
        if self.group_by:
            parts.append("GROUP BY " + ", ".join(str(g) for g in self.group_by))
        if self.having is not None:
            parts.append(f"HAVING {self.having}")
        if self.order_by:
            parts.append(
                "ORDER BY "
                + ", ".join(
                    f"{o.expr} {'ASC' if o.ascending else 'DESC'}" for o in self.order_by
                )
            )
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        if self.offset is not None:
            parts.append(f"OFFSET {self.offset}")
        return " ".join(parts)


# Builders


def col(name: str, table: str | None = None) -> ColumnExpr:
    """Shorthand for a column reference; accepts 'table.name'."""
    if table is None and "." in name:
        table, name = name.split(".", 1)
    return ColumnExpr(ColumnRef(name=name, table=table))


def lit(value: Any) -> LiteralExpr:
    """Shorthand for a literal."""
    return LiteralExpr(value)
