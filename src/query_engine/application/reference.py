"""Brute-force reference evaluator.

naive_execute() evaluates a query by straightforward list manipulation:
nested comprehensions for joins, linear search for groups, a comparator
sort, and quadratic duplicate elimination. It shares the binder and the
scalar expression semantics with the pipeline but none of its operators,
which makes it an oracle for differential testing:

    execute(bind(q, catalog), catalog) == naive_execute(q, catalog)

as multisets, and as sequences when ORDER BY fully determines the order.

Because both sides walk the same bound plan, the plan's shape (ORDER BY
resolution, hidden sort columns and their trimming) is not checked by the
differential; tests with hand-computed results cover it.
"""

from __future__ import annotations

import functools
from typing import Any, Mapping

from query_engine.application.executor import Row
from query_engine.domain.entities.bound_plan import (
    AggregateNode,
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
from query_engine.domain.entities.query import JoinKind, QueryDescription
from query_engine.domain.errors import ExecutionError, UpstreamIoError, ValueConversionError
from query_engine.domain.services.binder import bind
from query_engine.domain.services.evaluator import evaluate, evaluate_predicate
from query_engine.domain.value_objects.values import conform_value
from query_engine.ports.outbound.catalog import Catalog, Relation


class _MappingCatalog:
    """Catalog view over a name -> relation mapping."""

    def __init__(self, relations: Mapping[str, Relation]) -> None:
        self._relations = relations

    def get_relation(self, name: str) -> Relation | None:
        return self._relations.get(name)


def naive_execute(
    query: QueryDescription,
    relations: Mapping[str, Relation] | Catalog,
    *,
    params: Mapping[str, Any] | None = None,
    nulls_sort_high: bool = True,
) -> list[Row]:
    """Evaluate a query by brute force.

    Args:
        query: The query description.
        relations: A catalog, or a mapping from relation name to relation.
        params: Values for named parameters.
        nulls_sort_high: Engine-wide NULL ordering policy.

    Returns:
        The fully materialized result rows.

    Raises:
        BindError: Exactly as bind() would.
        ExecutionError: As the pipeline would for the same data.
    """
    catalog = relations if isinstance(relations, Catalog) else _MappingCatalog(relations)
    plan = bind(query, catalog, params=params, nulls_sort_high=nulls_sort_high)
    return [Row(columns=plan.columns, values=values) for values in _run(plan.root, catalog)]


def _run(node: PlanNode, catalog: Catalog) -> list[tuple]:
    if isinstance(node, ScanNode):
        return _scan(node, catalog)
    if isinstance(node, JoinNode):
        return _join(node, _run(node.left, catalog), _run(node.right, catalog))
    if isinstance(node, (FilterNode, HavingNode)):
        return [row for row in _run(node.input, catalog) if evaluate_predicate(node.predicate, row)]
    if isinstance(node, AggregateNode):
        return _aggregate(node, _run(node.input, catalog))
    if isinstance(node, ProjectNode):
        return [tuple(evaluate(e, row) for e in node.exprs) for row in _run(node.input, catalog)]
    if isinstance(node, DistinctNode):
        return _distinct(_run(node.input, catalog), node.width)
    if isinstance(node, SortNode):
        return _sort(_run(node.input, catalog), node.keys)
    if isinstance(node, TrimNode):
        return [row[: node.width] for row in _run(node.input, catalog)]
    if isinstance(node, LimitNode):
        rows = _run(node.input, catalog)
        if node.limit is None:
            return rows[node.offset :]
        return rows[node.offset : node.offset + node.limit]
    raise ValueError(f"Unsupported plan node: {type(node).__name__}")


def _scan(node: ScanNode, catalog: Catalog) -> list[tuple]:
    relation = catalog.get_relation(node.relation)
    if relation is None:
        raise UpstreamIoError(f"Relation '{node.relation}' is not in the catalog")
    try:
        raw_rows = [tuple(row) for row in relation.rows()]
    except ExecutionError:
        raise
    except Exception as e:
        raise UpstreamIoError(
            f"Relation '{node.relation}' failed while producing rows: {e}"
        ) from e

    rows = []
    for raw in raw_rows:
        if len(raw) != len(node.schema):
            raise ValueConversionError(
                f"Relation '{node.relation}' produced a row of width {len(raw)}, "
                f"expected {len(node.schema)}"
            )
        rows.append(
            tuple(conform_value(v, c.data_type, c.nullable) for v, c in zip(raw, node.schema))
        )
    return rows


def _join(node: JoinNode, left: list[tuple], right: list[tuple]) -> list[tuple]:
    def matches(combined: tuple) -> bool:
        return node.predicate is None or evaluate_predicate(node.predicate, combined)

    out = []
    matched_right: set[int] = set()
    for lrow in left:
        hits = [i for i, rrow in enumerate(right) if matches(lrow + rrow)]
        out.extend(lrow + right[i] for i in hits)
        matched_right.update(hits)
        if not hits and node.kind in (JoinKind.LEFT, JoinKind.FULL):
            out.append(lrow + (None,) * node.right_width)
    if node.kind in (JoinKind.RIGHT, JoinKind.FULL):
        out.extend(
            (None,) * node.left_width + rrow
            for i, rrow in enumerate(right)
            if i not in matched_right
        )
    return out


def _same(a: tuple, b: tuple) -> bool:
    """Grouping equality: NULLs match each other and nothing else."""
    return all(
        (x is None and y is None) or (x is not None and y is not None and x == y)
        for x, y in zip(a, b)
    )


def _aggregate(node: AggregateNode, rows: list[tuple]) -> list[tuple]:
    groups: list[Group] = []
    for row in rows:
        key = tuple(evaluate(k, row) for k in node.keys)
        for group in groups:
            if _same(group.key, key):
                group.rows.append(row)
                break
        else:
            groups.append(Group(key=key, rows=[row]))
    if not groups and node.implicit_group:
        groups.append(Group(key=(), rows=[]))
    return [g.key + tuple(evaluate(call, g) for call in node.aggregates) for g in groups]


def _distinct(rows: list[tuple], width: int) -> list[tuple]:
    out: list[tuple] = []
    for row in rows:
        if not any(_same(row[:width], kept[:width]) for kept in out):
            out.append(row)
    return out


def _sort(rows: list[tuple], keys: tuple[SortKey, ...]) -> list[tuple]:
    def compare_rows(a: tuple, b: tuple) -> int:
        for key in keys:
            x, y = evaluate(key.expr, a), evaluate(key.expr, b)
            if x is None and y is None:
                continue
            if x is None:
                return -1 if key.nulls_first else 1
            if y is None:
                return 1 if key.nulls_first else -1
            order = (x > y) - (x < y)
            if order:
                return order if key.ascending else -order
        return 0

    return sorted(rows, key=functools.cmp_to_key(compare_rows))
