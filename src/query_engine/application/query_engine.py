"""Query Engine - unified entry point.

This module provides the QueryEngine class, which wires binding, execution,
configuration, structured logging, metrics and tracing around a catalog.

Usage:
    from query_engine.application import QueryEngine
    from query_engine.adapters.outbound import InMemoryCatalog

    catalog = InMemoryCatalog()
    catalog.register("users", Schema.of(("id", SqlType.INTEGER), ("name", SqlType.TEXT)),
                     [(1, "Alice"), (2, "Bob")])

    engine = QueryEngine(catalog)
    result = engine.sql("SELECT name FROM users WHERE id > 1")
    result.rows[0]["name"]  # 'Bob'

    # Bind once, execute many times
    plan = engine.bind(query)
    for row in engine.execute(plan):
        ...
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from query_engine.adapters.inbound.sql_parser import SQLParser
from query_engine.adapters.outbound.in_memory_catalog import InMemoryCatalog
from query_engine.application.executor import QueryExecutor, ResultStream, Row, StreamOutcome
from query_engine.domain.entities.bound_plan import BoundPlan
from query_engine.domain.entities.query import QueryDescription
from query_engine.domain.errors import BindError
from query_engine.domain.services.binder import Binder
from query_engine.domain.services.cancellation import CancellationToken
from query_engine.infrastructure.config import Config, get_config
from query_engine.infrastructure.logging import (
    bind_query_context,
    clear_query_context,
    configure_logging,
    get_logger,
)
from query_engine.infrastructure.metrics import MetricsRegistry, get_metrics
from query_engine.infrastructure.tracing import configure_tracing, trace_span
from query_engine.ports.outbound.catalog import Catalog


@dataclass
class QueryResult:
    """Materialized result of running a query."""

    columns: tuple[str, ...]
    rows: list[Row] = field(default_factory=list)
    query_id: str = ""
    elapsed_seconds: float = 0.0

    def tuples(self) -> list[tuple]:
        return [row.values for row in self.rows]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)


def _new_query_id() -> str:
    return uuid.uuid4().hex[:16]


class QueryEngine:
    """Main query engine entry point.

    The engine holds a catalog and the ambient services (configuration,
    logging, metrics, tracing). Bound plans are immutable; any number of
    them may be executed concurrently through one engine.

    Thread Safety:
        bind, execute and run may be called from several threads. Replacing
        the catalog affects executions started afterwards only.
    """

    def __init__(
        self,
        catalog: Catalog | None = None,
        config: Config | None = None,
        metrics: MetricsRegistry | None = None,
        parser: SQLParser | None = None,
    ) -> None:
        """Initialize the query engine.

        Args:
            catalog: Relation catalog. Defaults to an empty InMemoryCatalog.
            config: Configuration. Defaults to the environment-derived config.
            metrics: Metrics registry. Defaults to the global registry when
                metrics are enabled.
            parser: SQL parser for sql(). Defaults to the postgres dialect.
        """
        self._config = config or get_config()
        self._catalog: Catalog = catalog if catalog is not None else InMemoryCatalog()
        if metrics is None and self._config.observability.metrics_enabled:
            metrics = get_metrics()
        self._metrics = metrics
        self._parser = parser or SQLParser()
        self._executor = QueryExecutor(self._config.execution, self._metrics)
        self._logger = get_logger(__name__)

    @classmethod
    def from_config(
        cls, config: Config | None = None, catalog: Catalog | None = None
    ) -> QueryEngine:
        """Create an engine after setting up process-wide logging and tracing."""
        config = config or get_config()
        configure_logging(config.observability)
        configure_tracing(config.observability)
        return cls(catalog=catalog, config=config)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @catalog.setter
    def catalog(self, catalog: Catalog) -> None:
        """Swap in a new catalog snapshot for subsequent executions."""
        self._catalog = catalog

    def bind(
        self,
        query: QueryDescription,
        params: Mapping[str, Any] | None = None,
    ) -> BoundPlan:
        """Bind a query against the current catalog.

        Raises:
            BindError: If the query is invalid.
        """
        binder = Binder(
            self._catalog,
            params=params,
            nulls_sort_high=self._config.execution.nulls_sort_high,
        )
        with trace_span("query_engine.bind") as span:
            try:
                plan = binder.bind(query)
            except BindError as e:
                stage = e.stage.value if e.stage is not None else None
                if stage is not None:
                    span.set_attribute("bind.stage", stage)
                self._record_bind("error", e)
                self._logger.warning(
                    "query_bind_failed",
                    error=type(e).__name__,
                    stage=stage,
                    message=str(e),
                )
                raise
            span.set_attribute("bind.relations", list(plan.relations))
        self._record_bind("success")
        self._logger.debug(
            "query_bound",
            relations=list(plan.relations),
            columns=list(plan.columns),
        )
        return plan

    def execute(
        self,
        plan: BoundPlan,
        cancel_token: CancellationToken | None = None,
        query_id: str | None = None,
    ) -> ResultStream:
        """Execute a bound plan, returning a lazy stream of rows."""
        query_id = query_id or _new_query_id()
        logger = self._logger.bind(query_id=query_id)

        def on_finish(outcome: StreamOutcome) -> None:
            if outcome.error is None:
                logger.info(
                    "query_completed",
                    status=outcome.status,
                    rows=outcome.rows,
                    elapsed_ms=round(outcome.elapsed_seconds * 1000, 3),
                )
            else:
                logger.warning(
                    "query_failed",
                    status=outcome.status,
                    rows=outcome.rows,
                    error=type(outcome.error).__name__,
                    message=str(outcome.error),
                )

        return self._executor.execute(
            plan, self._catalog, cancel_token=cancel_token, on_finish=on_finish
        )

    def run(
        self,
        query: QueryDescription,
        params: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> QueryResult:
        """Bind and execute a query, materializing every row."""
        query_id = _new_query_id()
        bind_query_context(query_id=query_id)
        try:
            start = time.perf_counter()
            plan = self.bind(query, params)
            with trace_span("query_engine.execute", {"query_id": query_id}) as span:
                with self.execute(plan, cancel_token, query_id) as stream:
                    rows = stream.fetchall()
                span.set_attribute("rows", len(rows))
            return QueryResult(
                columns=plan.columns,
                rows=rows,
                query_id=query_id,
                elapsed_seconds=time.perf_counter() - start,
            )
        finally:
            clear_query_context("query_id")

    def sql(
        self,
        text: str,
        params: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> QueryResult:
        """Parse, bind and execute a SQL SELECT statement.

        Raises:
            ParseError: If the SQL is invalid or unsupported.
            BindError: If the query is invalid.
            ExecutionError: If execution fails.
        """
        return self.run(self._parser.parse(text), params, cancel_token)

    def explain(
        self,
        query: QueryDescription | str,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        """Return the bound operator tree for a query or SQL text."""
        if isinstance(query, str):
            query = self._parser.parse(query)
        return self.bind(query, params).explain()

    def _record_bind(self, status: str, error: BindError | None = None) -> None:
        if self._metrics is None:
            return
        self._metrics.binds_total.labels(status=status).inc()
        if error is not None:
            self._metrics.bind_errors_total.labels(error=type(error).__name__).inc()
