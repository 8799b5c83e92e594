"""Query executor using the Volcano iterator model.

This module turns a bound plan into a tree of pull-based operators and
exposes the result as a lazy, single-pass ResultStream.

    - Nothing is read from any relation until the first row is requested
    - Relations are looked up in the catalog when the stream starts, so a
      plan bound once observes whatever snapshot the catalog holds when it
      is executed
    - An error while pulling closes the pipeline and propagates; the stream
      yields no further rows and the plan stays reusable

References:
    - Graefe, "Volcano" (1994)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from query_engine.domain.entities.bound_plan import (
    AggregateNode,
    BoundPlan,
    DistinctNode,
    FilterNode,
    HavingNode,
    JoinNode,
    LimitNode,
    PlanNode,
    ProjectNode,
    ScanNode,
    SortNode,
    TrimNode,
)
from query_engine.domain.errors import Cancelled, UpstreamIoError
from query_engine.domain.services.cancellation import CancellationToken
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
from query_engine.infrastructure.config import ExecutionConfig
from query_engine.infrastructure.metrics import MetricsRegistry
from query_engine.ports.outbound.catalog import Catalog


@dataclass(frozen=True)
class Row:
    """A result row.

    Values can be accessed by column name or by position. Where several
    output columns share a name, name access returns the first.
    """

    columns: tuple[str, ...]
    values: tuple[Any, ...]

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self.values[key]
        try:
            idx = self.columns.index(key)
            return self.values[idx]
        except ValueError as e:
            raise KeyError(f"Column '{key}' not found") from e

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self.columns, self.values))

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{c}={v!r}" for c, v in zip(self.columns, self.values))
        return f"Row({pairs})"


@dataclass(frozen=True)
class StreamOutcome:
    """How a result stream ended.

    Attributes:
        status: "success", "error", "cancelled", or "closed" when the caller
            stopped consuming before the end.
        rows: Rows delivered to the caller.
        elapsed_seconds: Time from the first pull to the end of the stream.
        error: The exception that ended the stream, if any.
    """

    status: str
    rows: int
    elapsed_seconds: float
    error: BaseException | None = None


class ResultStream:
    """Lazy, single-pass stream of result rows.

    The operator tree is built on the first pull. Closing the stream (or
    leaving its `with` block) releases every operator's resources.

    Example:
        >>> with execute(plan, catalog) as stream:
        ...     for row in stream:
        ...         print(row["name"])
    """

    def __init__(
        self,
        build: Callable[[], Operator],
        columns: tuple[str, ...],
        on_finish: Callable[[StreamOutcome], None] | None = None,
    ) -> None:
        self._build = build
        self._columns = columns
        self._on_finish = on_finish
        self._root: Operator | None = None
        self._started_at: float | None = None
        self._rows = 0
        self._finished = False

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    @property
    def rows_emitted(self) -> int:
        return self._rows

    @property
    def finished(self) -> bool:
        return self._finished

    def __iter__(self) -> ResultStream:
        return self

    def __next__(self) -> Row:
        if self._finished:
            raise StopIteration
        try:
            if self._root is None:
                self._started_at = time.perf_counter()
                self._root = self._build()
                self._root.open()
            values = self._root.next()
        except Exception as e:
            status = "cancelled" if isinstance(e, Cancelled) else "error"
            self._finish(status, e)
            raise
        if values is None:
            self._finish("success")
            raise StopIteration
        self._rows += 1
        return Row(columns=self._columns, values=values)

    def fetchall(self) -> list[Row]:
        """Consume the remaining rows into a list."""
        return list(self)

    def close(self) -> None:
        """Stop the stream early and release resources."""
        if not self._finished:
            self._finish("closed")

    def __enter__(self) -> ResultStream:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _finish(self, status: str, error: BaseException | None = None) -> None:
        self._finished = True
        root, self._root = self._root, None
        if root is not None:
            root.close()
        if self._on_finish is not None:
            elapsed = 0.0
            if self._started_at is not None:
                elapsed = time.perf_counter() - self._started_at
            self._on_finish(StreamOutcome(status, self._rows, elapsed, error))


def build_operator(
    node: PlanNode,
    catalog: Catalog,
    token: CancellationToken | None = None,
    config: ExecutionConfig | None = None,
) -> Operator:
    """Build a physical operator tree from a bound plan node.

    Raises:
        UpstreamIoError: If a scanned relation is no longer in the catalog.
    """
    config = config or ExecutionConfig()
    if isinstance(node, ScanNode):
        relation = catalog.get_relation(node.relation)
        if relation is None:
            raise UpstreamIoError(f"Relation '{node.relation}' is not in the catalog")
        return ScanOperator(relation, node.schema, token)
    elif isinstance(node, JoinNode):
        return NestedLoopJoinOperator(
            left=build_operator(node.left, catalog, token, config),
            right=build_operator(node.right, catalog, token, config),
            kind=node.kind,
            predicate=node.predicate,
            left_width=node.left_width,
            right_width=node.right_width,
            token=token,
        )
    elif isinstance(node, HavingNode):
        child = build_operator(node.input, catalog, token, config)
        return HavingFilterOperator(child, node.predicate, token)
    elif isinstance(node, FilterNode):
        child = build_operator(node.input, catalog, token, config)
        return FilterOperator(child, node.predicate, token)
    elif isinstance(node, AggregateNode):
        child = build_operator(node.input, catalog, token, config)
        if config.parallel_aggregate_workers > 1:
            return ParallelAggregateOperator(
                child,
                node.keys,
                node.aggregates,
                workers=config.parallel_aggregate_workers,
                min_rows=config.parallel_aggregate_min_rows,
                token=token,
            )
        return HashAggregateOperator(child, node.keys, node.aggregates, token)
    elif isinstance(node, ProjectNode):
        child = build_operator(node.input, catalog, token, config)
        return ProjectOperator(child, node.exprs, token)
    elif isinstance(node, DistinctNode):
        child = build_operator(node.input, catalog, token, config)
        return DistinctOperator(child, node.width, token)
    elif isinstance(node, SortNode):
        child = build_operator(node.input, catalog, token, config)
        return SortOperator(child, node.keys, token)
    elif isinstance(node, TrimNode):
        child = build_operator(node.input, catalog, token, config)
        return TrimOperator(child, node.width, token)
    elif isinstance(node, LimitNode):
        child = build_operator(node.input, catalog, token, config)
        return LimitOffsetOperator(child, node.limit, node.offset, token)
    else:
        raise ValueError(f"Unsupported plan node: {type(node).__name__}")


class QueryExecutor:
    """Executes bound plans against a catalog.

    The executor holds no per-query state; one instance may run any number
    of plans concurrently, each execution getting its own operator tree.
    """

    def __init__(
        self,
        config: ExecutionConfig | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._config = config or ExecutionConfig()
        self._metrics = metrics

    @property
    def config(self) -> ExecutionConfig:
        return self._config

    def execute(
        self,
        plan: BoundPlan,
        catalog: Catalog,
        *,
        cancel_token: CancellationToken | None = None,
        on_finish: Callable[[StreamOutcome], None] | None = None,
    ) -> ResultStream:
        """Start executing a plan.

        Args:
            plan: The bound plan.
            catalog: Catalog supplying the plan's relations.
            cancel_token: Optional token to cancel the execution. Without one,
                the configured query timeout (if any) applies.
            on_finish: Called once when the stream ends, however it ends.

        Returns:
            A lazy ResultStream; nothing runs until it is consumed.
        """
        token = cancel_token
        if token is None and self._config.query_timeout_seconds is not None:
            token = CancellationToken(self._config.query_timeout_seconds)

        def build() -> Operator:
            return build_operator(plan.root, catalog, token, self._config)

        def finished(outcome: StreamOutcome) -> None:
            self._record(outcome)
            if on_finish is not None:
                on_finish(outcome)

        return ResultStream(build, plan.columns, finished)

    def _record(self, outcome: StreamOutcome) -> None:
        if self._metrics is None:
            return
        self._metrics.executions_total.labels(status=outcome.status).inc()
        self._metrics.rows_emitted_total.inc(outcome.rows)
        self._metrics.execution_latency_seconds.observe(outcome.elapsed_seconds)
        if outcome.error is not None:
            self._metrics.execution_errors_total.labels(
                error=type(outcome.error).__name__
            ).inc()


def execute(
    plan: BoundPlan,
    catalog: Catalog,
    *,
    cancel_token: CancellationToken | None = None,
    config: ExecutionConfig | None = None,
) -> ResultStream:
    """Execute a bound plan, returning a lazy stream of rows.

    Rows are pulled on demand; errors surface from the iteration that
    encounters them. A plan may be executed any number of times, including
    concurrently from several threads.
    """
    return QueryExecutor(config).execute(plan, catalog, cancel_token=cancel_token)
