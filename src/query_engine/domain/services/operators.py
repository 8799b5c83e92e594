"""Pipeline operators using the Volcano iterator model.

Each operator is an iterator with open(), next() and close():

    - open() prepares state and opens children; it never pulls rows
    - next() returns the next row tuple, or None when exhausted
    - close() releases buffers and closes children; it is idempotent

Operators pull from their children on demand. Streaming operators (Scan,
Filter, Project, Trim, LimitOffset) hold at most one row; blocking operators
(HashAggregate, Distinct, Sort, and the right side of a join) drain their
input on the first next() call, so an unconsumed pipeline reads nothing.

Every next() checks the cancellation token, if one is attached.

References:
    - Graefe, "Volcano" (1994)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator

from query_engine.domain.entities.bound_plan import AggregateCall, BoundExpr, SortKey
from query_engine.domain.entities.query import JoinKind
from query_engine.domain.errors import ExecutionError, UpstreamIoError, ValueConversionError
from query_engine.domain.services.cancellation import CancellationToken
from query_engine.domain.services.evaluator import (
    Accumulator,
    create_accumulator,
    evaluate,
    evaluate_predicate,
)
from query_engine.domain.value_objects.schema import Schema
from query_engine.domain.value_objects.values import (
    conform_value,
    null_sorts_high,
    row_key,
    sort_key,
)
from query_engine.ports.outbound.catalog import Relation


class Operator(ABC):
    """Base class for pipeline operators (Volcano model)."""

    def __init__(self, token: CancellationToken | None = None) -> None:
        self._token = token

    @abstractmethod
    def open(self) -> None:
        """Initialize the operator."""
        pass

    @abstractmethod
    def next(self) -> tuple | None:
        """Return the next row or None if exhausted."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Clean up resources."""
        pass

    def _check(self) -> None:
        if self._token is not None:
            self._token.check()

    def _drain(self, child: Operator) -> Iterator[tuple]:
        """Pull every remaining row from a child."""
        while True:
            row = child.next()
            if row is None:
                return
            yield row

    def __iter__(self) -> Iterator[tuple]:
        """Allow iteration over operator results."""
        self.open()
        try:
            while True:
                row = self.next()
                if row is None:
                    break
                yield row
        finally:
            self.close()


class ScanOperator(Operator):
    """Stream a relation's rows, conforming each value to the column type.

    Exceptions raised by the relation's producer surface as UpstreamIoError.
    """

    def __init__(
        self,
        relation: Relation,
        schema: Schema,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._relation = relation
        self._schema = schema
        self._iterator: Iterator[tuple] | None = None

    def open(self) -> None:
        self._iterator = None

    def next(self) -> tuple | None:
        self._check()
        try:
            if self._iterator is None:
                self._iterator = iter(self._relation.rows())
            raw = next(self._iterator)
        except StopIteration:
            return None
        except ExecutionError:
            raise
        except Exception as e:
            raise UpstreamIoError(
                f"Relation '{self._relation.name}' failed while producing rows: {e}"
            ) from e
        return self._conform(raw)

    def close(self) -> None:
        iterator, self._iterator = self._iterator, None
        close = getattr(iterator, "close", None)
        if close is not None:
            close()

    def _conform(self, raw: tuple) -> tuple:
        if len(raw) != len(self._schema):
            raise ValueConversionError(
                f"Relation '{self._relation.name}' produced a row of width {len(raw)}, "
                f"expected {len(self._schema)}"
            )
        try:
            return tuple(
                conform_value(value, column.data_type, column.nullable)
                for value, column in zip(raw, self._schema)
            )
        except ValueConversionError as e:
            raise ValueConversionError(f"Relation '{self._relation.name}': {e}") from e


class NestedLoopJoinOperator(Operator):
    """Nested-loop join.

    The right input is materialized once; the left input streams. Output rows
    are left values followed by right values, NULL-padded on the side that
    found no match for LEFT, RIGHT and FULL joins. Unmatched right rows are
    emitted after the left input is exhausted.
    """

    def __init__(
        self,
        left: Operator,
        right: Operator,
        kind: JoinKind,
        predicate: BoundExpr | None,
        left_width: int,
        right_width: int,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._left = left
        self._right = right
        self._kind = kind
        self._predicate = predicate
        self._left_pad = (None,) * left_width
        self._right_pad = (None,) * right_width
        self._reset()

    def _reset(self) -> None:
        self._right_rows: list[tuple] | None = None
        self._right_matched: list[bool] = []
        self._left_row: tuple | None = None
        self._left_matched = False
        self._left_done = False
        self._right_pos = 0
        self._unmatched_pos = 0

    def open(self) -> None:
        self._reset()
        self._left.open()
        self._right.open()

    def next(self) -> tuple | None:
        self._check()
        if self._right_rows is None:
            self._right_rows = list(self._drain(self._right))
            self._right_matched = [False] * len(self._right_rows)

        while not self._left_done:
            if self._left_row is None:
                row = self._left.next()
                if row is None:
                    self._left_done = True
                    break
                self._left_row = row
                self._left_matched = False
                self._right_pos = 0

            while self._right_pos < len(self._right_rows):
                position = self._right_pos
                self._right_pos += 1
                combined = self._left_row + self._right_rows[position]
                if self._predicate is None or evaluate_predicate(self._predicate, combined):
                    self._left_matched = True
                    self._right_matched[position] = True
                    return combined

            left_row, self._left_row = self._left_row, None
            if not self._left_matched and self._kind in (JoinKind.LEFT, JoinKind.FULL):
                return left_row + self._right_pad
            self._check()

        if self._kind in (JoinKind.RIGHT, JoinKind.FULL):
            while self._unmatched_pos < len(self._right_rows):
                position = self._unmatched_pos
                self._unmatched_pos += 1
                if not self._right_matched[position]:
                    return self._left_pad + self._right_rows[position]
        return None

    def close(self) -> None:
        self._left.close()
        self._right.close()
        self._reset()


class FilterOperator(Operator):
    """Keep rows whose predicate is TRUE; FALSE and Unknown are dropped."""

    def __init__(
        self,
        child: Operator,
        predicate: BoundExpr,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._predicate = predicate

    def open(self) -> None:
        self._child.open()

    def next(self) -> tuple | None:
        while True:
            self._check()
            row = self._child.next()
            if row is None:
                return None
            if evaluate_predicate(self._predicate, row):
                return row

    def close(self) -> None:
        self._child.close()


class HavingFilterOperator(FilterOperator):
    """Filter over aggregate output rows."""


@dataclass
class GroupState:
    """Running aggregate state for one group."""

    key: tuple
    accumulators: list[Accumulator]
    first_seen: int


class HashAggregateOperator(Operator):
    """Hash-based grouping with incremental accumulators.

    Emits one row per group, (key values..., aggregate results...), in order
    of each group's first appearance. With no keys the whole input is one
    implicit group, emitted even when the input is empty.
    """

    def __init__(
        self,
        child: Operator,
        keys: tuple[BoundExpr, ...],
        aggregates: tuple[AggregateCall, ...],
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._keys = keys
        self._aggregates = aggregates
        self._output: list[tuple] | None = None
        self._position = 0

    def open(self) -> None:
        self._child.open()
        self._output = None
        self._position = 0

    def next(self) -> tuple | None:
        self._check()
        if self._output is None:
            self._output = self._build_groups()
            self._position = 0
        if self._position >= len(self._output):
            return None
        row = self._output[self._position]
        self._position += 1
        return row

    def close(self) -> None:
        self._child.close()
        self._output = None
        self._position = 0

    def _build_groups(self) -> list[tuple]:
        groups = self._accumulate(self._tag(self._drain(self._child)))
        return self._emit(groups.values())

    def _tag(self, rows) -> Iterator[tuple[int, tuple, tuple]]:
        """Pair each row with its arrival index and grouping key."""
        for seq, row in enumerate(rows):
            self._check()
            yield seq, tuple(evaluate(key, row) for key in self._keys), row

    def _accumulate(self, tagged) -> dict[tuple, GroupState]:
        groups: dict[tuple, GroupState] = {}
        for seq, key, row in tagged:
            hashed = row_key(key)
            state = groups.get(hashed)
            if state is None:
                state = GroupState(
                    key=key,
                    accumulators=[create_accumulator(call) for call in self._aggregates],
                    first_seen=seq,
                )
                groups[hashed] = state
            for accumulator in state.accumulators:
                accumulator.update(row)
        return groups

    def _emit(self, states) -> list[tuple]:
        ordered = sorted(states, key=lambda state: state.first_seen)
        if not ordered and not self._keys:
            ordered = [
                GroupState(
                    key=(),
                    accumulators=[create_accumulator(call) for call in self._aggregates],
                    first_seen=0,
                )
            ]
        return [
            state.key + tuple(acc.result() for acc in state.accumulators)
            for state in ordered
        ]


class ProjectOperator(Operator):
    """Evaluate output expressions against each input row."""

    def __init__(
        self,
        child: Operator,
        exprs: tuple[BoundExpr, ...],
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._exprs = exprs

    def open(self) -> None:
        self._child.open()

    def next(self) -> tuple | None:
        self._check()
        row = self._child.next()
        if row is None:
            return None
        return tuple(evaluate(expr, row) for expr in self._exprs)

    def close(self) -> None:
        self._child.close()


class DistinctOperator(Operator):
    """Drop rows whose first `width` values were already seen.

    Drains its input before emitting; the first occurrence of each distinct
    prefix is kept, in input order, together with its remaining columns.
    """

    def __init__(
        self,
        child: Operator,
        width: int,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._width = width
        self._output: list[tuple] | None = None
        self._position = 0

    def open(self) -> None:
        self._child.open()
        self._output = None
        self._position = 0

    def next(self) -> tuple | None:
        self._check()
        if self._output is None:
            self._output = self._deduplicate()
        if self._position >= len(self._output):
            return None
        row = self._output[self._position]
        self._position += 1
        return row

    def close(self) -> None:
        self._child.close()
        self._output = None
        self._position = 0

    def _deduplicate(self) -> list[tuple]:
        seen: set[tuple] = set()
        rows = []
        for row in self._drain(self._child):
            self._check()
            key = row_key(row[: self._width])
            if key not in seen:
                seen.add(key)
                rows.append(row)
        return rows


class SortOperator(Operator):
    """Stable multi-key sort.

    Keys are applied from last to first; Python's sort is stable (also with
    reverse=True), so rows equal on every key keep their input order.
    """

    def __init__(
        self,
        child: Operator,
        keys: tuple[SortKey, ...],
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._keys = keys
        self._sorted_rows: list[tuple] | None = None
        self._current_idx = 0

    def open(self) -> None:
        self._child.open()
        self._sorted_rows = None
        self._current_idx = 0

    def next(self) -> tuple | None:
        self._check()
        if self._sorted_rows is None:
            self._sorted_rows = self._sort(list(self._drain(self._child)))
            self._current_idx = 0
        if self._current_idx >= len(self._sorted_rows):
            return None
        row = self._sorted_rows[self._current_idx]
        self._current_idx += 1
        return row

    def close(self) -> None:
        self._child.close()
        self._sorted_rows = None
        self._current_idx = 0

    def _sort(self, rows: list[tuple]) -> list[tuple]:
        for key in reversed(self._keys):
            self._check()
            nulls_high = null_sorts_high(key.ascending, key.nulls_first)
            try:
                rows.sort(
                    key=lambda row, expr=key.expr: sort_key(evaluate(expr, row), nulls_high),
                    reverse=not key.ascending,
                )
            except TypeError as e:
                raise ValueConversionError(f"Cannot order by {key.expr}: {e}") from e
        return rows


class TrimOperator(Operator):
    """Keep the first `width` values of each row."""

    def __init__(
        self,
        child: Operator,
        width: int,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._width = width

    def open(self) -> None:
        self._child.open()

    def next(self) -> tuple | None:
        self._check()
        row = self._child.next()
        if row is None:
            return None
        return row[: self._width]

    def close(self) -> None:
        self._child.close()


class LimitOffsetOperator(Operator):
    """Skip `offset` rows, then yield at most `limit` rows.

    Once the limit is reached the upstream pipeline is closed and never
    pulled again; LIMIT 0 never pulls at all.
    """

    def __init__(
        self,
        child: Operator,
        limit: int | None,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(token)
        self._child = child
        self._limit = limit
        self._offset = offset
        self._returned = 0
        self._skipped = 0
        self._done = False

    def open(self) -> None:
        self._child.open()
        self._returned = 0
        self._skipped = 0
        self._done = False

    def next(self) -> tuple | None:
        self._check()
        if self._done:
            return None
        if self._limit is not None and self._returned >= self._limit:
            self._finish()
            return None

        while self._skipped < self._offset:
            if self._child.next() is None:
                self._finish()
                return None
            self._skipped += 1

        row = self._child.next()
        if row is None:
            self._finish()
            return None
        self._returned += 1
        if self._limit is not None and self._returned >= self._limit:
            self._finish()
        return row

    def close(self) -> None:
        self._finish()

    def _finish(self) -> None:
        if not self._done:
            self._done = True
            self._child.close()
