"""Binder: name resolution and clause-visibility rules.

The binder walks a QueryDescription stage by stage in logical order

    FROM/JOIN -> WHERE -> GROUP BY -> HAVING -> SELECT -> DISTINCT
              -> ORDER BY -> LIMIT/OFFSET

and resolves every name against the scope of the stage being bound, never
against a later one. The result is a BoundPlan whose expressions hold
positions only.

Scopes per stage:

    FROM/JOIN   columns of the relations joined so far
    WHERE       FROM/JOIN output
    GROUP BY    FROM/JOIN output
    HAVING      group keys + aggregate results
    SELECT      FROM/JOIN output, or group keys + aggregates when grouped
    ORDER BY    SELECT output, then the SELECT input scope
    LIMIT       none

A grouped query evaluates HAVING, SELECT and ORDER BY over the aggregate
output row (keys..., aggregates...). Expressions are matched to group keys
on their bound form, so `d.name` and `name` denote the same key when they
resolve to the same column.

Every error is raised before execution starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

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
from query_engine.domain.entities.query import (
    AggregateExpr,
    AggregateFunc,
    ArithmeticExpr,
    ColumnExpr,
    ColumnRef,
    ComparisonExpr,
    Expression,
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
    contains_aggregate,
)
from query_engine.domain.errors import (
    AggregateNotAllowedHere,
    AliasNotVisible,
    AmbiguousColumn,
    DuplicateRelationAlias,
    InvalidHavingReference,
    InvalidLimitOffset,
    Stage,
    TypeMismatch,
    UngroupedColumn,
    UnknownColumn,
    UnknownParameter,
    UnknownRelation,
    ValueConversionError,
)
from query_engine.domain.services.evaluator import aggregate_result_type
from query_engine.domain.value_objects.schema import Column, Schema
from query_engine.domain.value_objects.values import (
    ComparisonOp,
    SqlType,
    conform_value,
    infer_type,
    is_comparable,
    numeric_result_type,
    parse_timestamp,
)
from query_engine.ports.outbound.catalog import Catalog

Leaf = Callable[[Expression], "BoundExpr | None"]


@dataclass(frozen=True)
class ScopeEntry:
    """One resolvable column at a stage."""

    qualifier: str
    name: str
    index: int
    data_type: SqlType


class Scope:
    """Names resolvable at one stage, mapped to positions in that stage's row."""

    def __init__(self, stage: Stage, entries: list[ScopeEntry]) -> None:
        self.stage = stage
        self.entries = tuple(entries)

    def resolve(self, ref: ColumnRef, stage: Stage) -> ScopeEntry | None:
        """Find the column a reference names.

        Raises:
            AmbiguousColumn: If an unqualified name matches several relations.
        """
        if ref.table is not None:
            matches = [
                e for e in self.entries if e.qualifier == ref.table and e.name == ref.name
            ]
        else:
            matches = [e for e in self.entries if e.name == ref.name]
        if len(matches) > 1:
            owners = ", ".join(sorted({m.qualifier for m in matches}))
            raise AmbiguousColumn(
                f"Column '{ref}' is ambiguous (present in {owners})", stage
            )
        return matches[0] if matches else None

    def has_qualifier(self, qualifier: str) -> bool:
        return any(e.qualifier == qualifier for e in self.entries)

    def columns_of(self, qualifier: str | None) -> list[ScopeEntry]:
        if qualifier is None:
            return list(self.entries)
        return [e for e in self.entries if e.qualifier == qualifier]

    def __len__(self) -> int:
        return len(self.entries)


class Binder:
    """Binds query descriptions against a catalog.

    A Binder holds no per-query state and may be shared.

    Example:
        >>> binder = Binder(catalog)
        >>> plan = binder.bind(query)
        >>> print(plan.explain())
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        params: Mapping[str, Any] | None = None,
        nulls_sort_high: bool = True,
    ) -> None:
        """Initialize the binder.

        Args:
            catalog: Source of relation schemas.
            params: Values for named parameters.
            nulls_sort_high: Null ordering policy for ORDER BY keys that do
                not say NULLS FIRST/LAST. True sorts NULL above every value
                (NULLS LAST ascending, NULLS FIRST descending).
        """
        self._catalog = catalog
        self._params = dict(params or {})
        self._nulls_sort_high = nulls_sort_high

    def bind(self, query: QueryDescription) -> BoundPlan:
        """Bind a query.

        Raises:
            BindError: The first rule violation found, tagged with its stage.
        """
        return _QueryBinder(self, query).run()


def bind(
    query: QueryDescription,
    catalog: Catalog,
    *,
    params: Mapping[str, Any] | None = None,
    nulls_sort_high: bool = True,
) -> BoundPlan:
    """Bind a query description into an executable plan."""
    return Binder(catalog, params=params, nulls_sort_high=nulls_sort_high).bind(query)


class _QueryBinder:
    """State for binding one query."""

    def __init__(self, binder: Binder, query: QueryDescription) -> None:
        self._catalog = binder._catalog
        self._params = binder._params
        self._nulls_sort_high = binder._nulls_sort_high
        self._query = query
        self._stage: Stage | None = None

        # SELECT aliases are known up front only so that earlier stages can
        # report AliasNotVisible instead of UnknownColumn.
        self._select_aliases = {item.alias for item in query.select if item.alias}

        self._from_scope: Scope | None = None
        self._relations: list[str] = []
        self._grouped = (
            bool(query.group_by)
            or query.having is not None
            or any(contains_aggregate(i.expr) for i in query.select)
            or any(contains_aggregate(o.expr) for o in query.order_by)
        )
        self._keys: list[BoundExpr] = []
        self._aggregates: list[AggregateCall] = []

        self._select_exprs: list[Expression] = []
        self._output: list[Column] = []
        self._projected: list[BoundExpr] = []
        self._hidden: list[BoundExpr] = []

    def run(self) -> BoundPlan:
        plan = self._bind_from()
        where = self._bind_where()
        self._bind_group_by()
        having = self._bind_having()
        self._bind_select()
        self._enter(Stage.DISTINCT)
        sort_keys = self._bind_order_by()
        limit, offset = self._bind_limit()

        # Assemble operators in logical order.
        if where is not None:
            plan = FilterNode(plan, where)
        if self._grouped:
            plan = AggregateNode(plan, tuple(self._keys), tuple(self._aggregates))
            if having is not None:
                plan = HavingNode(plan, having)
        visible = len(self._projected)
        plan = ProjectNode(plan, tuple(self._projected + self._hidden), visible)
        if self._query.distinct:
            plan = DistinctNode(plan, visible)
        if sort_keys:
            plan = SortNode(plan, tuple(sort_keys))
        if self._hidden:
            plan = TrimNode(plan, visible)
        if limit is not None or offset:
            plan = LimitNode(plan, limit, offset)

        return BoundPlan(
            root=plan,
            output=Schema(tuple(self._output)),
            relations=tuple(self._relations),
        )

    def _enter(self, stage: Stage) -> None:
        if self._stage is not None and stage.position <= self._stage.position:
            raise RuntimeError(f"Stage {stage.value} entered after {self._stage.value}")
        self._stage = stage

    # FROM / JOIN

    def _bind_from(self) -> PlanNode:
        self._enter(Stage.FROM)
        if not self._query.from_:
            raise UnknownRelation("Query has no FROM source", Stage.FROM)

        entries: list[ScopeEntry] = []
        plan: PlanNode | None = None
        for table in self._query.from_:
            scan = self._scan(table, entries)
            if plan is None:
                plan = scan
            else:
                plan = JoinNode(
                    plan, scan, JoinKind.CROSS, None, len(entries), len(scan.schema)
                )
            entries.extend(self._entries_for(scan, offset=len(entries)))

        for join in self._query.joins:
            scan = self._scan(join.table, entries)
            left_width = len(entries)
            entries.extend(self._entries_for(scan, offset=left_width))
            predicate = None
            if join.condition is not None:
                # The ON clause sees the relations joined so far.
                scope = Scope(Stage.FROM, entries)
                predicate = self._bind(join.condition, Stage.FROM, self._scalar_leaf(scope, Stage.FROM))
                self._require_boolean(predicate, Stage.FROM, "JOIN condition")
            plan = JoinNode(plan, scan, join.kind, predicate, left_width, len(scan.schema))

        self._from_scope = Scope(Stage.FROM, entries)
        return plan

    def _scan(self, table: TableRef, entries: list[ScopeEntry]) -> ScanNode:
        relation = self._catalog.get_relation(table.name)
        if relation is None:
            raise UnknownRelation(f"Relation '{table.name}' does not exist", Stage.FROM)
        if any(e.qualifier == table.qualifier for e in entries):
            raise DuplicateRelationAlias(
                f"Relation name '{table.qualifier}' specified more than once", Stage.FROM
            )
        self._relations.append(table.name)
        return ScanNode(relation=table.name, qualifier=table.qualifier, schema=relation.schema)

    @staticmethod
    def _entries_for(scan: ScanNode, offset: int) -> list[ScopeEntry]:
        return [
            ScopeEntry(scan.qualifier, column.name, offset + i, column.data_type)
            for i, column in enumerate(scan.schema)
        ]

    # WHERE / GROUP BY / HAVING

    def _bind_where(self) -> BoundExpr | None:
        self._enter(Stage.WHERE)
        if self._query.where is None:
            return None
        predicate = self._bind(
            self._query.where, Stage.WHERE, self._scalar_leaf(self._from_scope, Stage.WHERE)
        )
        self._require_boolean(predicate, Stage.WHERE, "WHERE")
        return predicate

    def _bind_group_by(self) -> None:
        self._enter(Stage.GROUP_BY)
        leaf = self._scalar_leaf(self._from_scope, Stage.GROUP_BY)
        self._keys = [self._bind(expr, Stage.GROUP_BY, leaf) for expr in self._query.group_by]

    def _bind_having(self) -> BoundExpr | None:
        self._enter(Stage.HAVING)
        if self._query.having is None:
            return None
        predicate = self._bind(self._query.having, Stage.HAVING, self._grouped_leaf(Stage.HAVING))
        self._require_boolean(predicate, Stage.HAVING, "HAVING")
        return predicate

    # SELECT

    def _bind_select(self) -> None:
        self._enter(Stage.SELECT)
        leaf = self._input_leaf(Stage.SELECT)
        for item in self._expand_stars(self._query.select):
            bound = self._bind(item.expr, Stage.SELECT, leaf)
            self._select_exprs.append(item.expr)
            self._projected.append(bound)
            self._output.append(Column(_output_name(item), bound.data_type))

    def _expand_stars(self, items: list[SelectItem]) -> list[SelectItem]:
        expanded: list[SelectItem] = []
        for item in items:
            if not isinstance(item.expr, StarExpr):
                expanded.append(item)
                continue
            qualifier = item.expr.table
            if qualifier is not None and not self._from_scope.has_qualifier(qualifier):
                raise UnknownColumn(f"Relation '{qualifier}' is not in FROM", Stage.SELECT)
            for entry in self._from_scope.columns_of(qualifier):
                ref = ColumnRef(name=entry.name, table=entry.qualifier)
                expanded.append(SelectItem(ColumnExpr(ref), alias=entry.name))
        return expanded

    # ORDER BY

    def _bind_order_by(self) -> list[SortKey]:
        self._enter(Stage.ORDER_BY)
        keys = []
        for item in self._query.order_by:
            expr = self._bind_order_key(item)
            nulls_first = item.nulls_first
            if nulls_first is None:
                nulls_first = (not item.ascending) if self._nulls_sort_high else item.ascending
            keys.append(SortKey(expr, item.ascending, nulls_first))
        return keys

    def _bind_order_key(self, item: OrderByItem) -> BoundExpr:
        expr = item.expr
        visible = len(self._projected)

        if isinstance(expr, LiteralExpr) and type(expr.value) is int:
            position = expr.value
            if not 1 <= position <= visible:
                raise UnknownColumn(
                    f"ORDER BY position {position} is not in select list", Stage.ORDER_BY
                )
            return self._output_ref(position - 1)

        if expr in self._select_exprs:
            return self._output_ref(self._select_exprs.index(expr))

        if isinstance(expr, ColumnExpr) and expr.column.table is None:
            matches = [i for i, c in enumerate(self._output) if c.name == expr.column.name]
            if matches:
                first = self._projected[matches[0]]
                if any(self._projected[i] != first for i in matches[1:]):
                    raise AmbiguousColumn(
                        f"ORDER BY '{expr.column.name}' is ambiguous", Stage.ORDER_BY
                    )
                return self._output_ref(matches[0])

        if not self._references_output(expr):
            return self._carry(expr)
        return self._bind(expr, Stage.ORDER_BY, self._order_leaf)

    def _order_leaf(self, expr: Expression) -> BoundExpr | None:
        """Leaf for expressions nested inside an ORDER BY key.

        Nested names resolve against the SELECT input first and fall back to
        SELECT output names.
        """
        if isinstance(expr, ColumnExpr):
            if self._resolvable_in_input(expr.column):
                return self._carry(expr)
            matches = [i for i, c in enumerate(self._output) if c.name == expr.column.name]
            if matches and expr.column.table is None:
                return self._output_ref(matches[0])
            return self._carry(expr)
        if isinstance(expr, (LiteralExpr, ParameterExpr)):
            return None
        if not self._references_output(expr):
            return self._carry(expr)
        return None

    def _references_output(self, expr: Expression) -> bool:
        """Whether expr names a SELECT output column not visible in the input."""
        output_names = {c.name for c in self._output}
        for node in expr.walk():
            if (
                isinstance(node, ColumnExpr)
                and node.column.table is None
                and node.column.name in output_names
                and not self._resolvable_in_input(node.column)
            ):
                return True
        return False

    def _resolvable_in_input(self, ref: ColumnRef) -> bool:
        return self._from_scope.resolve(ref, Stage.ORDER_BY) is not None

    def _carry(self, expr: Expression) -> BoundExpr:
        """Bind against the SELECT input and reference it from the projected row."""
        bound = self._bind(expr, Stage.ORDER_BY, self._input_leaf(Stage.ORDER_BY))
        if isinstance(bound, BoundLiteral):
            return bound
        if bound in self._projected:
            return self._output_ref(self._projected.index(bound))
        if bound not in self._hidden:
            self._hidden.append(bound)
        index = len(self._projected) + self._hidden.index(bound)
        return BoundColumn(index, bound.data_type, str(expr))

    def _output_ref(self, index: int) -> BoundColumn:
        column = self._output[index]
        return BoundColumn(index, column.data_type, column.name)

    # LIMIT / OFFSET

    def _bind_limit(self) -> tuple[int | None, int]:
        self._enter(Stage.LIMIT)
        limit = self._count(self._query.limit, "LIMIT")
        offset = self._count(self._query.offset, "OFFSET")
        return limit, offset or 0

    def _count(self, value: int | ParameterExpr | None, clause: str) -> int | None:
        if isinstance(value, ParameterExpr):
            value = self._param(value, Stage.LIMIT)
        if value is None:
            return None
        if type(value) is not int:
            raise InvalidLimitOffset(
                f"{clause} must be an integer, got {value!r}", Stage.LIMIT
            )
        if value < 0:
            raise InvalidLimitOffset(f"{clause} must not be negative, got {value}", Stage.LIMIT)
        return value

    def _param(self, expr: ParameterExpr, stage: Stage) -> Any:
        if expr.name not in self._params:
            raise UnknownParameter(f"No value supplied for parameter :{expr.name}", stage)
        return self._params[expr.name]

    # Leaves

    def _input_leaf(self, stage: Stage) -> Leaf:
        if self._grouped:
            return self._grouped_leaf(stage)
        return self._scalar_leaf(self._from_scope, stage)

    def _scalar_leaf(self, scope: Scope, stage: Stage) -> Leaf:
        def leaf(expr: Expression) -> BoundExpr | None:
            if isinstance(expr, AggregateExpr):
                raise AggregateNotAllowedHere(
                    f"Aggregate {expr} is not allowed in {stage.value}", stage
                )
            if isinstance(expr, ColumnExpr):
                return self._resolve_column(expr.column, scope, stage)
            return None

        return leaf

    def _grouped_leaf(self, stage: Stage) -> Leaf:
        scalar = self._scalar_leaf(self._from_scope, stage)

        def leaf(expr: Expression) -> BoundExpr | None:
            if isinstance(expr, AggregateExpr):
                return self._register_aggregate(expr, stage)
            if isinstance(expr, (LiteralExpr, ParameterExpr)) or contains_aggregate(expr):
                return None
            bound = self._bind(expr, stage, scalar)
            if bound in self._keys:
                index = self._keys.index(bound)
                return BoundColumn(index, bound.data_type, str(expr))
            if isinstance(expr, ColumnExpr):
                if stage is Stage.HAVING:
                    raise InvalidHavingReference(
                        f"Column '{expr.column}' must appear in GROUP BY "
                        "or be used in an aggregate function",
                        stage,
                    )
                raise UngroupedColumn(
                    f"Column '{expr.column}' must appear in GROUP BY "
                    "or be used in an aggregate function",
                    stage,
                )
            return None

        return leaf

    def _resolve_column(self, ref: ColumnRef, scope: Scope, stage: Stage) -> BoundColumn:
        entry = scope.resolve(ref, stage)
        if entry is not None:
            return BoundColumn(entry.index, entry.data_type, str(ref))
        if (
            ref.table is None
            and ref.name in self._select_aliases
            and stage.position < Stage.SELECT.position
        ):
            raise AliasNotVisible(
                f"SELECT alias '{ref.name}' is not visible in {stage.value}", stage
            )
        if ref.table is not None and not scope.has_qualifier(ref.table):
            raise UnknownColumn(f"Relation '{ref.table}' is not in FROM", stage)
        raise UnknownColumn(f"Column '{ref}' does not exist", stage)

    def _register_aggregate(self, expr: AggregateExpr, stage: Stage) -> BoundColumn:
        arg = None
        if expr.arg is not None:
            arg = self._bind(expr.arg, stage, self._scalar_leaf(self._from_scope, stage))
            if expr.func in (AggregateFunc.SUM, AggregateFunc.AVG) and not (
                arg.data_type.is_numeric or arg.data_type is SqlType.NULL
            ):
                raise TypeMismatch(
                    f"{expr.func.value} requires a numeric argument, got {arg.data_type.value}",
                    stage,
                )
        result_type = aggregate_result_type(expr.func, arg.data_type if arg else None)
        call = AggregateCall(expr.func, arg, expr.distinct, result_type)
        if call not in self._aggregates:
            self._aggregates.append(call)
        index = len(self._keys) + self._aggregates.index(call)
        return BoundColumn(index, result_type, str(expr))

    # Structural binding

    def _bind(self, expr: Expression, stage: Stage, leaf: Leaf) -> BoundExpr:
        bound = leaf(expr)
        if bound is not None:
            return bound

        if isinstance(expr, LiteralExpr):
            return self._literal(expr.value, stage)
        if isinstance(expr, ParameterExpr):
            return self._literal(self._param(expr, stage), stage)
        if isinstance(expr, ArithmeticExpr):
            left = self._bind(expr.left, stage, leaf)
            right = self._bind(expr.right, stage, leaf)
            for side in (left, right):
                if not (side.data_type.is_numeric or side.data_type is SqlType.NULL):
                    raise TypeMismatch(
                        f"Operator {expr.op.value} requires numeric operands, "
                        f"got {side.data_type.value} in {expr}",
                        stage,
                    )
            result_type = numeric_result_type(left.data_type, right.data_type)
            return BoundArithmetic(left, expr.op, right, result_type)
        if isinstance(expr, NegateExpr):
            operand = self._bind(expr.operand, stage, leaf)
            if not (operand.data_type.is_numeric or operand.data_type is SqlType.NULL):
                raise TypeMismatch(f"Cannot negate {operand.data_type.value}", stage)
            return BoundNegate(operand)
        if isinstance(expr, ComparisonExpr):
            return self._bind_comparison(expr, stage, leaf)
        if isinstance(expr, LogicalExpr):
            operands = tuple(self._bind(o, stage, leaf) for o in expr.operands)
            for operand in operands:
                self._require_boolean(operand, stage, expr.op.value)
            return BoundLogical(expr.op, operands)
        if isinstance(expr, StarExpr):
            raise UnknownColumn(f"'{expr}' is only allowed in the SELECT list", stage)
        if isinstance(expr, (ColumnExpr, AggregateExpr)):
            raise RuntimeError(f"Unbound {type(expr).__name__} reached structural binding")
        raise TypeMismatch(f"Unsupported expression {type(expr).__name__}", stage)

    def _bind_comparison(self, expr: ComparisonExpr, stage: Stage, leaf: Leaf) -> BoundExpr:
        left = self._bind(expr.left, stage, leaf)
        if expr.op in (ComparisonOp.IS_NULL, ComparisonOp.IS_NOT_NULL):
            return BoundComparison(left, expr.op, None)
        if expr.right is None:
            raise TypeMismatch(f"Operator {expr.op.value} requires two operands", stage)
        right = self._bind(expr.right, stage, leaf)

        if expr.op is ComparisonOp.LIKE:
            for side in (left, right):
                if side.data_type not in (SqlType.TEXT, SqlType.NULL):
                    raise TypeMismatch(
                        f"LIKE requires TEXT operands, got {side.data_type.value}", stage
                    )
            return BoundComparison(left, expr.op, right)

        left, right = self._coerce_timestamp_literal(left, right, stage)
        right, left = self._coerce_timestamp_literal(right, left, stage)
        if not is_comparable(left.data_type, right.data_type):
            raise TypeMismatch(
                f"Cannot compare {left.data_type.value} with {right.data_type.value} in {expr}",
                stage,
            )
        return BoundComparison(left, expr.op, right)

    @staticmethod
    def _coerce_timestamp_literal(
        target: BoundExpr, other: BoundExpr, stage: Stage
    ) -> tuple[BoundExpr, BoundExpr]:
        """Read a TEXT literal compared against a TIMESTAMP as a timestamp."""
        if (
            target.data_type is SqlType.TIMESTAMP
            and isinstance(other, BoundLiteral)
            and other.data_type is SqlType.TEXT
        ):
            try:
                other = BoundLiteral(parse_timestamp(other.value), SqlType.TIMESTAMP)
            except ValueError as e:
                raise TypeMismatch(f"Invalid timestamp literal {other}", stage) from e
        return target, other

    def _literal(self, value: Any, stage: Stage) -> BoundLiteral:
        try:
            sql_type = infer_type(value)
            return BoundLiteral(conform_value(value, sql_type), sql_type)
        except ValueConversionError as e:
            raise TypeMismatch(str(e), stage) from e

    @staticmethod
    def _require_boolean(expr: BoundExpr, stage: Stage, clause: str) -> None:
        if expr.data_type not in (SqlType.BOOLEAN, SqlType.NULL):
            raise TypeMismatch(
                f"{clause} operand must be BOOLEAN, got {expr.data_type.value}", stage
            )


def _output_name(item: SelectItem) -> str:
    if item.alias:
        return item.alias
    if isinstance(item.expr, ColumnExpr):
        return item.expr.column.name
    return str(item.expr)
