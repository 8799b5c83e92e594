"""Unit tests for pipeline operators."""

from __future__ import annotations

import random

import pytest

from query_engine.adapters.outbound import InMemoryRelation
from query_engine.domain.entities import (
    AggregateCall,
    AggregateFunc,
    BoundArithmetic,
    BoundColumn,
    BoundComparison,
    JoinKind,
    SortKey,
)
from query_engine.domain.errors import (
    Cancelled,
    QueryArithmeticError,
    UpstreamIoError,
    ValueConversionError,
)
from query_engine.domain.services import (
    CancellationToken,
    DistinctOperator,
    FilterOperator,
    HashAggregateOperator,
    LimitOffsetOperator,
    NestedLoopJoinOperator,
    ParallelAggregateOperator,
    ProjectOperator,
    ScanOperator,
    SortOperator,
    TrimOperator,
)
from query_engine.domain.services.operators import Operator
from query_engine.domain.value_objects import (
    ArithmeticOp,
    Column,
    ComparisonOp,
    Schema,
    SqlType,
)

PAIR = Schema.of(("k", SqlType.INTEGER), ("v", SqlType.TEXT))


class RecordingOperator(Operator):
    """Yields fixed rows and records pulls and closes."""

    def __init__(self, rows: list[tuple], token: CancellationToken | None = None) -> None:
        super().__init__(token)
        self.rows = rows
        self.pulls = 0
        self.opens = 0
        self.closes = 0
        self._position = 0

    def open(self) -> None:
        self.opens += 1
        self._position = 0

    def next(self) -> tuple | None:
        self._check()
        if self._position >= len(self.rows):
            return None
        self.pulls += 1
        row = self.rows[self._position]
        self._position += 1
        return row

    def close(self) -> None:
        self.closes += 1


def scan(rows, schema: Schema = PAIR, token: CancellationToken | None = None) -> ScanOperator:
    return ScanOperator(InMemoryRelation("t", schema, rows), schema, token)


def run(operator: Operator) -> list[tuple]:
    return list(operator)


def key(index: int, ascending: bool = True, nulls_first: bool = False) -> SortKey:
    return SortKey(BoundColumn(index, SqlType.INTEGER), ascending, nulls_first)


def agg(func: AggregateFunc, index: int | None = None, distinct: bool = False) -> AggregateCall:
    arg = BoundColumn(index, SqlType.INTEGER) if index is not None else None
    result = SqlType.FLOAT if func is AggregateFunc.AVG else SqlType.INTEGER
    return AggregateCall(func, arg, distinct, result)


@pytest.mark.unit
class TestScanOperator:
    """Tests for relation scans."""

    def test_conforms_values(self) -> None:
        schema = Schema.of(("x", SqlType.FLOAT), ("y", SqlType.TEXT))
        rows = run(scan([(1, "a"), (2.5, None)], schema))

        assert rows == [(1.0, "a"), (2.5, None)]
        assert isinstance(rows[0][0], float)

    def test_wrong_width(self) -> None:
        with pytest.raises(ValueConversionError, match="width 3"):
            run(scan([(1, "a", "extra")]))

    def test_null_in_non_nullable_column(self) -> None:
        schema = Schema.of(Column("k", SqlType.INTEGER, nullable=False))
        with pytest.raises(ValueConversionError):
            run(scan([(1,), (None,)], schema))

    def test_wrong_type(self) -> None:
        with pytest.raises(ValueConversionError, match="Relation 't'"):
            run(scan([("one", "a")]))

    def test_producer_failure_is_wrapped(self) -> None:
        def producer():
            yield (1, "a")
            raise OSError("disk gone")

        operator = scan(producer)
        operator.open()
        assert operator.next() == (1, "a")
        with pytest.raises(UpstreamIoError) as exc_info:
            operator.next()
        assert isinstance(exc_info.value.__cause__, OSError)
        operator.close()

    def test_producer_not_called_before_first_pull(self) -> None:
        calls = []

        def producer():
            calls.append(1)
            return [(1, "a")]

        operator = scan(producer)
        operator.open()
        assert calls == []
        assert operator.next() == (1, "a")
        assert calls == [1]
        operator.close()

    def test_rescan_after_close(self) -> None:
        operator = scan([(1, "a"), (2, "b")])
        assert run(operator) == run(operator)


@pytest.mark.unit
class TestNestedLoopJoin:
    """Tests for join semantics."""

    LEFT = [(1, "a"), (2, "b"), (3, "c"), (None, "n")]
    RIGHT = [(1, "x"), (1, "y"), (4, "z"), (None, "m")]
    ON = BoundComparison(
        BoundColumn(0, SqlType.INTEGER), ComparisonOp.EQ, BoundColumn(2, SqlType.INTEGER)
    )

    def join(self, kind: JoinKind, predicate=ON) -> list[tuple]:
        operator = NestedLoopJoinOperator(
            scan(self.LEFT), scan(self.RIGHT), kind, predicate, 2, 2
        )
        return run(operator)

    def test_inner(self) -> None:
        assert self.join(JoinKind.INNER) == [(1, "a", 1, "x"), (1, "a", 1, "y")]

    def test_left(self) -> None:
        assert self.join(JoinKind.LEFT) == [
            (1, "a", 1, "x"),
            (1, "a", 1, "y"),
            (2, "b", None, None),
            (3, "c", None, None),
            (None, "n", None, None),
        ]

    def test_right(self) -> None:
        assert self.join(JoinKind.RIGHT) == [
            (1, "a", 1, "x"),
            (1, "a", 1, "y"),
            (None, None, 4, "z"),
            (None, None, None, "m"),
        ]

    def test_full(self) -> None:
        rows = self.join(JoinKind.FULL)

        assert rows[:2] == [(1, "a", 1, "x"), (1, "a", 1, "y")]
        assert set(rows[2:]) == {
            (2, "b", None, None),
            (3, "c", None, None),
            (None, "n", None, None),
            (None, None, 4, "z"),
            (None, None, None, "m"),
        }
        assert len(rows) == 7

    def test_cross(self) -> None:
        rows = self.join(JoinKind.CROSS, predicate=None)

        assert len(rows) == 16
        assert rows[0] == (1, "a", 1, "x")
        assert rows[-1] == (None, "n", None, "m")

    def test_empty_right_side(self) -> None:
        operator = NestedLoopJoinOperator(
            scan(self.LEFT), scan([]), JoinKind.LEFT, self.ON, 2, 2
        )
        assert [r[2:] for r in run(operator)] == [(None, None)] * 4

    def test_right_side_read_once(self) -> None:
        right = RecordingOperator(self.RIGHT)
        operator = NestedLoopJoinOperator(scan(self.LEFT), right, JoinKind.INNER, self.ON, 2, 2)
        run(operator)

        assert right.pulls == len(self.RIGHT)


@pytest.mark.unit
class TestFilterAndProject:
    """Tests for streaming operators."""

    def test_filter_drops_false_and_unknown(self) -> None:
        predicate = BoundComparison(
            BoundColumn(0, SqlType.INTEGER), ComparisonOp.GT, BoundColumn(0, SqlType.INTEGER)
        )
        positive = BoundComparison(
            BoundColumn(0, SqlType.INTEGER),
            ComparisonOp.GT,
            BoundArithmetic(
                BoundColumn(0, SqlType.INTEGER),
                ArithmeticOp.SUB,
                BoundColumn(0, SqlType.INTEGER),
                SqlType.INTEGER,
            ),
        )
        rows = [(1, "a"), (None, "b"), (0, "c")]

        assert run(FilterOperator(scan(rows), predicate)) == []
        assert run(FilterOperator(scan(rows), positive)) == [(1, "a")]

    def test_project_evaluates_expressions(self) -> None:
        doubled = BoundArithmetic(
            BoundColumn(0, SqlType.INTEGER),
            ArithmeticOp.MUL,
            BoundColumn(0, SqlType.INTEGER),
            SqlType.INTEGER,
        )
        operator = ProjectOperator(
            scan([(3, "a"), (None, "b")]), (BoundColumn(1, SqlType.TEXT), doubled)
        )

        assert run(operator) == [("a", 9), ("b", None)]

    def test_error_surfaces_at_failing_pull(self) -> None:
        quotient = BoundArithmetic(
            BoundColumn(0, SqlType.INTEGER),
            ArithmeticOp.DIV,
            BoundColumn(0, SqlType.INTEGER),
            SqlType.INTEGER,
        )
        operator = ProjectOperator(scan([(2, "a"), (0, "b")]), (quotient,))
        operator.open()

        assert operator.next() == (1,)
        with pytest.raises(QueryArithmeticError):
            operator.next()
        operator.close()

    def test_trim(self) -> None:
        assert run(TrimOperator(scan([(1, "a")]), 1)) == [(1,)]


@pytest.mark.unit
class TestHashAggregate:
    """Tests for grouping."""

    ROWS = [(1, "a"), (2, "b"), (None, "a"), (5, None), (1, None)]
    GROUPED = Schema.of(("v", SqlType.INTEGER), ("g", SqlType.TEXT))

    def test_groups_in_first_appearance_order(self) -> None:
        operator = HashAggregateOperator(
            scan(self.ROWS, self.GROUPED),
            (BoundColumn(1, SqlType.TEXT),),
            (agg(AggregateFunc.COUNT), agg(AggregateFunc.SUM, 0), agg(AggregateFunc.COUNT, 0)),
        )

        assert run(operator) == [("a", 2, 1, 1), ("b", 1, 2, 1), (None, 2, 6, 2)]

    def test_implicit_group_on_empty_input(self) -> None:
        operator = HashAggregateOperator(
            scan([], self.GROUPED),
            (),
            (agg(AggregateFunc.COUNT), agg(AggregateFunc.SUM, 0), agg(AggregateFunc.AVG, 0)),
        )

        assert run(operator) == [(0, None, None)]

    def test_no_groups_when_keyed_input_is_empty(self) -> None:
        operator = HashAggregateOperator(
            scan([], self.GROUPED), (BoundColumn(1, SqlType.TEXT),), (agg(AggregateFunc.COUNT),)
        )

        assert run(operator) == []

    def test_numeric_keys_group_across_types(self) -> None:
        schema = Schema.of(("n", SqlType.FLOAT))
        operator = HashAggregateOperator(
            scan([(1,), (1.0,), (2,)], schema),
            (BoundColumn(0, SqlType.FLOAT),),
            (agg(AggregateFunc.COUNT),),
        )

        assert run(operator) == [(1.0, 2), (2.0, 1)]


@pytest.mark.unit
class TestParallelAggregate:
    """Tests for partitioned aggregation."""

    AGGREGATES = (
        agg(AggregateFunc.COUNT),
        agg(AggregateFunc.SUM, 1),
        agg(AggregateFunc.MIN, 1),
        agg(AggregateFunc.MAX, 1),
        agg(AggregateFunc.AVG, 1),
        agg(AggregateFunc.COUNT, 1, distinct=True),
    )
    SCHEMA = Schema.of(("g", SqlType.INTEGER), ("v", SqlType.INTEGER))

    def rows(self, seed: int, count: int) -> list[tuple]:
        rng = random.Random(seed)
        return [
            (
                rng.choice([None, *range(13)]),
                rng.choice([None, *range(-50, 50)]),
            )
            for _ in range(count)
        ]

    @pytest.mark.parametrize("workers", [2, 4, 7])
    def test_matches_serial_aggregate(self, workers: int) -> None:
        rows = self.rows(seed=workers, count=2000)
        keys = (BoundColumn(0, SqlType.INTEGER),)

        serial = run(HashAggregateOperator(scan(rows, self.SCHEMA), keys, self.AGGREGATES))
        parallel = run(
            ParallelAggregateOperator(scan(rows, self.SCHEMA), keys, self.AGGREGATES, workers)
        )

        assert parallel == serial

    def test_small_inputs_run_serially(self) -> None:
        rows = self.rows(seed=1, count=20)
        keys = (BoundColumn(0, SqlType.INTEGER),)
        operator = ParallelAggregateOperator(
            scan(rows, self.SCHEMA), keys, self.AGGREGATES, workers=4, min_rows=1000
        )

        assert run(operator) == run(
            HashAggregateOperator(scan(rows, self.SCHEMA), keys, self.AGGREGATES)
        )

    def test_implicit_group(self) -> None:
        operator = ParallelAggregateOperator(scan([], self.SCHEMA), (), self.AGGREGATES, 4)

        assert run(operator) == [(0, None, None, None, None, 0)]


@pytest.mark.unit
class TestDistinct:
    """Tests for duplicate elimination."""

    def test_first_occurrence_wins(self) -> None:
        rows = [(1, "a"), (2, "b"), (1, "c"), (None, "d"), (None, "e")]
        operator = DistinctOperator(scan(rows), width=1)

        assert run(operator) == [(1, "a"), (2, "b"), (None, "d")]

    def test_full_width(self) -> None:
        rows = [(1, "a"), (1, "a"), (1, None), (1, None)]

        assert run(DistinctOperator(scan(rows), width=2)) == [(1, "a"), (1, None)]


@pytest.mark.unit
class TestSort:
    """Tests for ordering."""

    ROWS = [(1, "b"), (2, "a"), (3, "b"), (4, "a")]

    def sort(self, rows, *keys: SortKey) -> list[tuple]:
        schema = Schema.of(("k", SqlType.INTEGER), ("v", SqlType.TEXT))
        return run(SortOperator(scan(rows, schema), keys))

    def test_stable(self) -> None:
        by_text = SortKey(BoundColumn(1, SqlType.TEXT), True, False)
        by_text_desc = SortKey(BoundColumn(1, SqlType.TEXT), False, True)

        assert self.sort(self.ROWS, by_text) == [(2, "a"), (4, "a"), (1, "b"), (3, "b")]
        assert self.sort(self.ROWS, by_text_desc) == [(1, "b"), (3, "b"), (2, "a"), (4, "a")]

    def test_multiple_keys(self) -> None:
        by_text_desc = SortKey(BoundColumn(1, SqlType.TEXT), False, True)

        assert self.sort(self.ROWS, by_text_desc, key(0, ascending=False)) == [
            (3, "b"),
            (1, "b"),
            (4, "a"),
            (2, "a"),
        ]

    @pytest.mark.parametrize(
        "ascending,nulls_first,expected",
        [
            (True, False, [1, 3, None]),
            (True, True, [None, 1, 3]),
            (False, True, [None, 3, 1]),
            (False, False, [3, 1, None]),
        ],
    )
    def test_null_placement(self, ascending: bool, nulls_first: bool, expected: list) -> None:
        rows = [(1, "x"), (None, "y"), (3, "z")]
        result = self.sort(rows, key(0, ascending, nulls_first))

        assert [r[0] for r in result] == expected


@pytest.mark.unit
class TestLimitOffset:
    """Tests for LIMIT/OFFSET short-circuiting."""

    def test_limit_and_offset(self) -> None:
        rows = [(i, str(i)) for i in range(10)]

        assert run(LimitOffsetOperator(scan(rows), 3, 2)) == [(2, "2"), (3, "3"), (4, "4")]
        assert run(LimitOffsetOperator(scan(rows), None, 8)) == [(8, "8"), (9, "9")]
        assert run(LimitOffsetOperator(scan(rows), 5, 20)) == []

    def test_stops_pulling_at_limit(self) -> None:
        produced = []

        def producer():
            for i in range(1000):
                produced.append(i)
                yield (i, "x")

        assert run(LimitOffsetOperator(scan(producer), 2, 1)) == [(1, "x"), (2, "x")]
        assert produced == [0, 1, 2]

    def test_limit_zero_never_pulls(self) -> None:
        child = RecordingOperator([(1, "a")])

        assert run(LimitOffsetOperator(child, 0)) == []
        assert child.pulls == 0

    def test_upstream_closed_once(self) -> None:
        child = RecordingOperator([(1, "a"), (2, "b")])
        operator = LimitOffsetOperator(child, 1)
        operator.open()

        assert operator.next() == (1, "a")
        assert child.closes == 1
        assert operator.next() is None
        operator.close()
        operator.close()
        assert child.closes == 1


@pytest.mark.unit
class TestLifecycle:
    """Tests for close() and cancellation."""

    @pytest.mark.parametrize(
        "build",
        [
            lambda child: FilterOperator(
                child, BoundComparison(BoundColumn(0, SqlType.INTEGER), ComparisonOp.IS_NOT_NULL)
            ),
            lambda child: ProjectOperator(child, (BoundColumn(0, SqlType.INTEGER),)),
            lambda child: DistinctOperator(child, 1),
            lambda child: SortOperator(child, (key(0),)),
            lambda child: HashAggregateOperator(child, (), (agg(AggregateFunc.COUNT),)),
            lambda child: TrimOperator(child, 1),
        ],
    )
    def test_close_is_idempotent(self, build) -> None:
        operator = build(scan([(1, "a"), (2, "b")]))
        operator.open()
        operator.next()
        operator.close()
        operator.close()

    def test_blocking_operator_reads_nothing_until_pulled(self) -> None:
        child = RecordingOperator([(1, "a"), (2, "b")])
        operator = SortOperator(child, (key(0),))
        operator.open()

        assert child.pulls == 0
        operator.next()
        assert child.pulls == 2
        operator.close()

    def test_cancelled_token_stops_pull(self) -> None:
        token = CancellationToken()
        operator = ProjectOperator(
            scan([(1, "a"), (2, "b")], token=token), (BoundColumn(0, SqlType.INTEGER),), token
        )
        operator.open()
        assert operator.next() == (1,)

        token.cancel()
        with pytest.raises(Cancelled, match="cancelled"):
            operator.next()
        operator.close()

    def test_cancel_while_draining(self) -> None:
        token = CancellationToken()

        def producer():
            for i in range(100):
                if i == 10:
                    token.cancel()
                yield (i, "x")

        operator = SortOperator(scan(producer, token=token), (key(0),), token)
        with pytest.raises(Cancelled):
            run(operator)

    def test_expired_deadline(self) -> None:
        token = CancellationToken(timeout_seconds=0)

        assert token.expired
        with pytest.raises(Cancelled, match="timeout"):
            run(scan([(1, "a")], token=token))
