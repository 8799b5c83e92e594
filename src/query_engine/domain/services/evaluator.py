"""Expression evaluation over rows and groups.

evaluate() interprets a bound expression against a context:

    - a row tuple, for scalar expressions (column positions index the tuple)
    - a Group, for aggregate calls (computed over the group's member rows)

Aggregates inside the operator pipeline do not go through evaluate(); the
aggregate operator keeps one incremental Accumulator per call per group
(see create_accumulator).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from query_engine.domain.entities.bound_plan import (
    AggregateCall,
    BoundArithmetic,
    BoundColumn,
    BoundComparison,
    BoundExpr,
    BoundLiteral,
    BoundLogical,
    BoundNegate,
)
from query_engine.domain.entities.group import Group
from query_engine.domain.entities.query import AggregateFunc
from query_engine.domain.value_objects.values import (
    ComparisonOp,
    LogicalOp,
    SqlType,
    arithmetic,
    check_int64,
    compare,
    like,
    logical_not,
    negate,
    value_key,
)


def evaluate(expr: BoundExpr, context: tuple | Group) -> Any:
    """Evaluate a bound expression.

    Args:
        expr: The bound expression.
        context: A row tuple, or a Group when evaluating an aggregate call.

    Returns:
        The resulting value; None stands for NULL and for Unknown.

    Raises:
        QueryArithmeticError: On division by zero or integer overflow.
        ValueConversionError: If values defy their declared types.
    """
    if isinstance(expr, BoundColumn):
        return context[expr.index]
    if isinstance(expr, BoundLiteral):
        return expr.value
    if isinstance(expr, BoundArithmetic):
        left = evaluate(expr.left, context)
        right = evaluate(expr.right, context)
        return arithmetic(expr.op, left, right, expr.result_type)
    if isinstance(expr, BoundNegate):
        return negate(evaluate(expr.operand, context), expr.data_type)
    if isinstance(expr, BoundComparison):
        return _evaluate_comparison(expr, context)
    if isinstance(expr, BoundLogical):
        return _evaluate_logical(expr, context)
    if isinstance(expr, AggregateCall):
        if not isinstance(context, Group):
            raise TypeError(f"Aggregate {expr} requires a group context")
        return aggregate_rows(expr, context.rows)
    raise TypeError(f"Unsupported expression: {type(expr).__name__}")


def evaluate_predicate(expr: BoundExpr, row: tuple) -> bool:
    """True only when the predicate is TRUE; FALSE and Unknown both reject."""
    return evaluate(expr, row) is True


def _evaluate_comparison(expr: BoundComparison, context: tuple | Group) -> bool | None:
    left = evaluate(expr.left, context)
    if expr.op is ComparisonOp.IS_NULL:
        return left is None
    if expr.op is ComparisonOp.IS_NOT_NULL:
        return left is not None
    right = evaluate(expr.right, context)
    if expr.op is ComparisonOp.LIKE:
        return like(left, right)
    return compare(expr.op, left, right)


def _evaluate_logical(expr: BoundLogical, context: tuple | Group) -> bool | None:
    if expr.op is LogicalOp.NOT:
        return logical_not(evaluate(expr.operands[0], context))

    # Short-circuit on the dominating value; remember Unknown.
    dominant = expr.op is LogicalOp.OR
    result: bool | None = not dominant
    for operand in expr.operands:
        value = evaluate(operand, context)
        if value is dominant:
            return dominant
        if value is None:
            result = None
    return result


# Aggregates


def aggregate_result_type(func: AggregateFunc, arg_type: SqlType | None) -> SqlType:
    """Result type of an aggregate given its argument type (None for COUNT(*))."""
    if func is AggregateFunc.COUNT:
        return SqlType.INTEGER
    if arg_type is None or arg_type is SqlType.NULL:
        return SqlType.FLOAT if func is AggregateFunc.AVG else SqlType.INTEGER
    if func is AggregateFunc.AVG:
        return SqlType.DECIMAL if arg_type is SqlType.DECIMAL else SqlType.FLOAT
    return arg_type


class Accumulator(ABC):
    """Incrementally maintained aggregate state for one group."""

    def __init__(self, call: AggregateCall) -> None:
        self._call = call

    def update(self, row: tuple) -> None:
        """Fold one input row into the state."""
        self.add(evaluate(self._call.arg, row))

    @abstractmethod
    def add(self, value: Any) -> None:
        pass

    @abstractmethod
    def result(self) -> Any:
        pass


class CountStarAccumulator(Accumulator):
    def __init__(self, call: AggregateCall) -> None:
        super().__init__(call)
        self._count = 0

    def update(self, row: tuple) -> None:
        self._count += 1

    def add(self, value: Any) -> None:
        self._count += 1

    def result(self) -> int:
        return self._count


class CountAccumulator(Accumulator):
    def __init__(self, call: AggregateCall) -> None:
        super().__init__(call)
        self._count = 0

    def add(self, value: Any) -> None:
        if value is not None:
            self._count += 1

    def result(self) -> int:
        return self._count


class SumAccumulator(Accumulator):
    def __init__(self, call: AggregateCall) -> None:
        super().__init__(call)
        self._total: Any = None

    def add(self, value: Any) -> None:
        if value is None:
            return
        if self._total is None:
            self._total = _as_type(value, self._call.result_type)
            return
        self._total = self._total + _as_type(value, self._call.result_type)
        if self._call.result_type is SqlType.INTEGER:
            check_int64(self._total)

    def result(self) -> Any:
        return self._total


class AvgAccumulator(Accumulator):
    def __init__(self, call: AggregateCall) -> None:
        super().__init__(call)
        self._total: Any = 0
        self._count = 0

    def add(self, value: Any) -> None:
        if value is None:
            return
        self._total += value
        self._count += 1

    def result(self) -> Any:
        if self._count == 0:
            return None
        if self._call.result_type is SqlType.DECIMAL:
            return Decimal(self._total) / self._count
        return float(self._total / self._count)


class MinMaxAccumulator(Accumulator):
    def __init__(self, call: AggregateCall) -> None:
        super().__init__(call)
        self._best: Any = None
        self._want_max = call.func is AggregateFunc.MAX

    def add(self, value: Any) -> None:
        if value is None:
            return
        if self._best is None:
            self._best = value
        elif self._want_max and compare(ComparisonOp.GT, value, self._best):
            self._best = value
        elif not self._want_max and compare(ComparisonOp.LT, value, self._best):
            self._best = value

    def result(self) -> Any:
        return self._best


class DistinctAccumulator(Accumulator):
    """Feeds each distinct non-NULL value to the wrapped accumulator once."""

    def __init__(self, call: AggregateCall, inner: Accumulator) -> None:
        super().__init__(call)
        self._inner = inner
        self._seen: set[tuple] = set()

    def add(self, value: Any) -> None:
        if value is None:
            return
        key = value_key(value)
        if key in self._seen:
            return
        self._seen.add(key)
        self._inner.add(value)

    def result(self) -> Any:
        return self._inner.result()


_ACCUMULATORS: dict[AggregateFunc, type[Accumulator]] = {
    AggregateFunc.COUNT: CountAccumulator,
    AggregateFunc.SUM: SumAccumulator,
    AggregateFunc.AVG: AvgAccumulator,
    AggregateFunc.MIN: MinMaxAccumulator,
    AggregateFunc.MAX: MinMaxAccumulator,
}


def create_accumulator(call: AggregateCall) -> Accumulator:
    """Create fresh state for one aggregate call in one group."""
    if call.is_count_star:
        return CountStarAccumulator(call)
    accumulator = _ACCUMULATORS[call.func](call)
    if call.distinct:
        return DistinctAccumulator(call, accumulator)
    return accumulator


def aggregate_rows(call: AggregateCall, rows: list[tuple]) -> Any:
    """Compute an aggregate over a materialized list of rows."""
    accumulator = create_accumulator(call)
    for row in rows:
        accumulator.update(row)
    return accumulator.result()


def _as_type(value: Any, sql_type: SqlType) -> Any:
    if sql_type is SqlType.FLOAT:
        return float(value)
    if sql_type is SqlType.DECIMAL and not isinstance(value, Decimal):
        return Decimal(value)
    return value
