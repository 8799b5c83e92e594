"""Unit tests for the binder."""

from __future__ import annotations

import pytest

from query_engine.adapters.outbound import InMemoryCatalog
from query_engine.domain.entities import (
    AggregateExpr,
    AggregateFunc,
    AggregateNode,
    ArithmeticExpr,
    BoundColumn,
    BoundLiteral,
    ComparisonExpr,
    JoinClause,
    JoinKind,
    JoinNode,
    LimitNode,
    LogicalExpr,
    OrderByItem,
    ParameterExpr,
    QueryDescription,
    SelectItem,
    SortNode,
    StarExpr,
    TableRef,
    TrimNode,
    col,
    lit,
)
from query_engine.domain.errors import (
    AggregateNotAllowedHere,
    AliasNotVisible,
    AmbiguousColumn,
    BindError,
    DuplicateRelationAlias,
    InvalidHavingReference,
    InvalidLimitOffset,
    Stage,
    TypeMismatch,
    UngroupedColumn,
    UnknownColumn,
    UnknownParameter,
    UnknownRelation,
)
from query_engine.domain.services.binder import Binder, bind
from query_engine.domain.value_objects import ArithmeticOp, ComparisonOp, LogicalOp, SqlType

COUNT_STAR = AggregateExpr(AggregateFunc.COUNT)


def select(*items: str | SelectItem) -> list[SelectItem]:
    return [SelectItem(col(i)) if isinstance(i, str) else i for i in items]


def employees(**clauses) -> QueryDescription:
    clauses.setdefault("from_", [TableRef("employees")])
    return QueryDescription(**clauses)


def joined(**clauses) -> QueryDescription:
    """employees e JOIN departments d ON e.department_id = d.id"""
    return QueryDescription(
        from_=[TableRef("employees", "e")],
        joins=[
            JoinClause(
                TableRef("departments", "d"),
                JoinKind.INNER,
                ComparisonExpr(col("e.department_id"), ComparisonOp.EQ, col("d.id")),
            )
        ],
        **clauses,
    )


def node_types(plan) -> list[str]:
    return [type(node).__name__ for node in plan.root.walk()]


@pytest.mark.unit
class TestBindBasics:
    """Tests for successful binding."""

    def test_simple_projection(self, catalog: InMemoryCatalog) -> None:
        plan = bind(employees(select=select("name", "salary")), catalog)

        assert plan.columns == ("name", "salary")
        assert plan.output[1].data_type is SqlType.INTEGER
        assert plan.relations == ("employees",)
        assert node_types(plan) == ["ProjectNode", "ScanNode"]

    def test_output_names(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[
                SelectItem(col("salary"), alias="pay"),
                SelectItem(ArithmeticExpr(col("salary"), ArithmeticOp.MUL, lit(2))),
            ]
        )
        plan = bind(query, catalog)

        assert plan.columns == ("pay", "(salary * 2)")

    def test_star_expansion(self, catalog: InMemoryCatalog) -> None:
        plan = bind(employees(select=[SelectItem(StarExpr())]), catalog)

        assert plan.columns == (
            "id",
            "name",
            "department_id",
            "salary",
            "hire_date",
            "manager_id",
        )

    def test_qualified_star(self, catalog: InMemoryCatalog) -> None:
        plan = bind(joined(select=[SelectItem(StarExpr("d")), SelectItem(col("e.name"))]), catalog)

        assert plan.columns == ("id", "department_name", "name")

    def test_qualified_names_resolve_in_join(self, catalog: InMemoryCatalog) -> None:
        plan = bind(joined(select=select("e.id", "d.id", "department_name")), catalog)

        project = plan.root
        assert [e.index for e in project.exprs] == [0, 6, 7]

    def test_case_sensitive_identifiers(self, catalog: InMemoryCatalog) -> None:
        with pytest.raises(UnknownColumn):
            bind(employees(select=select("Name")), catalog)

    def test_explain(self, catalog: InMemoryCatalog) -> None:
        query = joined(
            select=select("department_name"),
            where=ComparisonExpr(col("salary"), ComparisonOp.GT, lit(60000)),
            limit=3,
        )
        text = bind(query, catalog).explain()

        assert text.splitlines()[0].startswith("LimitOffset(3")
        assert "NestedLoopJoin(INNER ON" in text
        assert "Scan(employees AS e)" in text
        assert "Filter(" in text


@pytest.mark.unit
class TestFromBinding:
    """Tests for FROM and JOIN binding."""

    def test_unknown_relation(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(select=select("x"), from_=[TableRef("nope")])
        with pytest.raises(UnknownRelation) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.FROM

    def test_missing_from(self, catalog: InMemoryCatalog) -> None:
        with pytest.raises(UnknownRelation):
            bind(QueryDescription(select=[SelectItem(lit(1))], from_=[]), catalog)

    def test_duplicate_alias(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(
            select=select("name"), from_=[TableRef("employees"), TableRef("employees")]
        )
        with pytest.raises(DuplicateRelationAlias):
            bind(query, catalog)

    def test_self_join_with_aliases(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(
            select=select("e.name", "m.name"),
            from_=[TableRef("employees", "e")],
            joins=[
                JoinClause(
                    TableRef("employees", "m"),
                    JoinKind.LEFT,
                    ComparisonExpr(col("e.manager_id"), ComparisonOp.EQ, col("m.id")),
                )
            ],
        )
        plan = bind(query, catalog)

        join = next(n for n in plan.root.walk() if isinstance(n, JoinNode))
        assert join.kind is JoinKind.LEFT
        assert (join.left_width, join.right_width) == (6, 6)
        assert plan.columns == ("name", "name")

    def test_comma_sources_cross_join(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(
            select=select("name", "department_name"),
            from_=[TableRef("employees"), TableRef("departments")],
        )
        plan = bind(query, catalog)

        join = next(n for n in plan.root.walk() if isinstance(n, JoinNode))
        assert join.kind is JoinKind.CROSS
        assert join.predicate is None

    def test_on_cannot_see_later_relations(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(
            select=select("e.name"),
            from_=[TableRef("employees", "e")],
            joins=[
                JoinClause(
                    TableRef("departments", "d"),
                    JoinKind.INNER,
                    ComparisonExpr(col("d.id"), ComparisonOp.EQ, col("m.id")),
                ),
                JoinClause(
                    TableRef("employees", "m"),
                    JoinKind.INNER,
                    ComparisonExpr(col("e.manager_id"), ComparisonOp.EQ, col("m.id")),
                ),
            ],
        )
        with pytest.raises(UnknownColumn) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.FROM

    def test_ambiguous_column(self, catalog: InMemoryCatalog) -> None:
        with pytest.raises(AmbiguousColumn):
            bind(joined(select=select("id")), catalog)

    def test_join_condition_must_be_boolean(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(
            select=select("name"),
            from_=[TableRef("employees")],
            joins=[JoinClause(TableRef("departments"), JoinKind.INNER, col("departments.id"))],
        )
        with pytest.raises(TypeMismatch):
            bind(query, catalog)


@pytest.mark.unit
class TestClauseVisibility:
    """Tests for clause-ordering scope rules."""

    @pytest.mark.parametrize("alias", ["double_pay", "pay"])
    def test_alias_not_visible_in_where(self, catalog: InMemoryCatalog, alias: str) -> None:
        query = employees(
            select=[SelectItem(ArithmeticExpr(col("salary"), ArithmeticOp.MUL, lit(2)), alias)],
            where=ComparisonExpr(col(alias), ComparisonOp.GT, lit(10)),
        )
        with pytest.raises(AliasNotVisible) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.WHERE

    def test_alias_not_visible_in_nested_where(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("salary"), "pay")],
            where=LogicalExpr(
                LogicalOp.OR,
                (
                    ComparisonExpr(col("id"), ComparisonOp.EQ, lit(1)),
                    ComparisonExpr(col("pay"), ComparisonOp.GT, lit(10)),
                ),
            ),
        )
        with pytest.raises(AliasNotVisible):
            bind(query, catalog)

    def test_alias_not_visible_in_group_by(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("department_id"), "dept"), SelectItem(COUNT_STAR)],
            group_by=[col("dept")],
        )
        with pytest.raises(AliasNotVisible) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.GROUP_BY

    def test_alias_not_visible_in_having(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("department_id")), SelectItem(COUNT_STAR, "n")],
            group_by=[col("department_id")],
            having=ComparisonExpr(col("n"), ComparisonOp.GT, lit(1)),
        )
        with pytest.raises(AliasNotVisible) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.HAVING

    def test_base_column_wins_over_alias_in_where(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("salary"), "name")],
            where=ComparisonExpr(col("name"), ComparisonOp.EQ, lit("Bob")),
        )
        plan = bind(query, catalog)

        assert plan.columns == ("name",)

    def test_aggregate_not_allowed_in_where(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"),
            where=ComparisonExpr(COUNT_STAR, ComparisonOp.GT, lit(1)),
        )
        with pytest.raises(AggregateNotAllowedHere) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.WHERE

    def test_aggregate_not_allowed_in_group_by(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=[SelectItem(COUNT_STAR)], group_by=[COUNT_STAR])
        with pytest.raises(AggregateNotAllowedHere):
            bind(query, catalog)

    def test_aggregate_not_allowed_in_join_condition(self, catalog: InMemoryCatalog) -> None:
        query = QueryDescription(
            select=select("name"),
            from_=[TableRef("employees")],
            joins=[
                JoinClause(
                    TableRef("departments"),
                    JoinKind.INNER,
                    ComparisonExpr(COUNT_STAR, ComparisonOp.GT, lit(0)),
                )
            ],
        )
        with pytest.raises(AggregateNotAllowedHere):
            bind(query, catalog)

    def test_errors_follow_logical_order(self, catalog: InMemoryCatalog) -> None:
        # Both WHERE and SELECT are wrong; WHERE is bound first.
        query = employees(
            select=select("nope"),
            where=ComparisonExpr(col("missing"), ComparisonOp.EQ, lit(1)),
        )
        with pytest.raises(UnknownColumn) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.WHERE


@pytest.mark.unit
class TestGrouping:
    """Tests for GROUP BY, HAVING and aggregate binding."""

    def test_grouped_plan(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("department_id")), SelectItem(COUNT_STAR, "n")],
            group_by=[col("department_id")],
            having=ComparisonExpr(COUNT_STAR, ComparisonOp.GT, lit(1)),
        )
        plan = bind(query, catalog)

        assert node_types(plan) == ["ProjectNode", "HavingNode", "AggregateNode", "ScanNode"]
        aggregate = next(n for n in plan.root.walk() if isinstance(n, AggregateNode))
        # COUNT(*) in HAVING and SELECT is computed once.
        assert len(aggregate.aggregates) == 1
        assert plan.columns == ("department_id", "n")

    def test_implicit_group(self, catalog: InMemoryCatalog) -> None:
        plan = bind(employees(select=[SelectItem(COUNT_STAR)]), catalog)

        aggregate = next(n for n in plan.root.walk() if isinstance(n, AggregateNode))
        assert aggregate.implicit_group
        assert plan.columns == ("COUNT(*)",)

    def test_ungrouped_column(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("name")), SelectItem(COUNT_STAR)],
            group_by=[col("department_id")],
        )
        with pytest.raises(UngroupedColumn) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.SELECT

    def test_ungrouped_column_with_implicit_group(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=[SelectItem(col("name")), SelectItem(COUNT_STAR)])
        with pytest.raises(UngroupedColumn):
            bind(query, catalog)

    def test_ungrouped_column_inside_expression(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(ArithmeticExpr(col("salary"), ArithmeticOp.ADD, lit(1)))],
            group_by=[col("department_id")],
        )
        with pytest.raises(UngroupedColumn):
            bind(query, catalog)

    def test_invalid_having_reference(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("department_id"),
            group_by=[col("department_id")],
            having=ComparisonExpr(col("salary"), ComparisonOp.GT, lit(1)),
        )
        with pytest.raises(InvalidHavingReference) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.HAVING

    def test_group_key_expression_reused(self, catalog: InMemoryCatalog) -> None:
        key = ArithmeticExpr(col("salary"), ArithmeticOp.DIV, lit(1000))
        query = employees(select=[SelectItem(key), SelectItem(COUNT_STAR)], group_by=[key])
        plan = bind(query, catalog)

        assert plan.root.exprs[0] == BoundColumn(0, SqlType.INTEGER)

    def test_qualified_and_unqualified_key_match(self, catalog: InMemoryCatalog) -> None:
        query = joined(
            select=[SelectItem(col("department_name")), SelectItem(COUNT_STAR)],
            group_by=[col("d.department_name")],
        )
        plan = bind(query, catalog)

        assert plan.columns == ("department_name", "COUNT(*)")

    def test_aggregate_of_key_expression(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[
                SelectItem(col("department_id")),
                SelectItem(AggregateExpr(AggregateFunc.MAX, col("salary"))),
            ],
            group_by=[col("department_id")],
        )
        plan = bind(query, catalog)

        assert plan.output[1].data_type is SqlType.INTEGER

    def test_sum_requires_numeric(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=[SelectItem(AggregateExpr(AggregateFunc.SUM, col("name")))])
        with pytest.raises(TypeMismatch):
            bind(query, catalog)

    def test_avg_result_type(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=[SelectItem(AggregateExpr(AggregateFunc.AVG, col("salary")))])
        assert bind(query, catalog).output[0].data_type is SqlType.FLOAT


@pytest.mark.unit
class TestOrderBy:
    """Tests for ORDER BY resolution."""

    def sort_keys(self, plan):
        return next(n for n in plan.root.walk() if isinstance(n, SortNode)).keys

    def test_ordinal(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=select("name", "salary"), order_by=[OrderByItem(lit(2), False)])
        plan = bind(query, catalog)

        key = self.sort_keys(plan)[0]
        assert key.expr == BoundColumn(1, SqlType.INTEGER)
        assert not key.ascending

    @pytest.mark.parametrize("position", [0, 3])
    def test_ordinal_out_of_range(self, catalog: InMemoryCatalog, position: int) -> None:
        query = employees(select=select("name", "salary"), order_by=[OrderByItem(lit(position))])
        with pytest.raises(UnknownColumn) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.ORDER_BY

    def test_alias(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("name")), SelectItem(col("salary"), "pay")],
            order_by=[OrderByItem(col("pay"))],
        )
        plan = bind(query, catalog)

        assert self.sort_keys(plan)[0].expr == BoundColumn(1, SqlType.INTEGER)
        assert not isinstance(plan.root, TrimNode)

    def test_unprojected_column_is_trimmed(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=select("name"), order_by=[OrderByItem(col("salary"))])
        plan = bind(query, catalog)

        assert node_types(plan) == ["TrimNode", "SortNode", "ProjectNode", "ScanNode"]
        assert plan.root.width == 1
        assert plan.columns == ("name",)

    def test_expression_over_alias(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("salary"), "pay")],
            order_by=[OrderByItem(ArithmeticExpr(col("pay"), ArithmeticOp.MUL, lit(-1)))],
        )
        plan = bind(query, catalog)

        assert not isinstance(plan.root, TrimNode)
        assert self.sort_keys(plan)[0].expr.data_type is SqlType.INTEGER

    def test_aggregate_not_in_select(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("department_id"),
            group_by=[col("department_id")],
            order_by=[OrderByItem(COUNT_STAR, ascending=False)],
        )
        plan = bind(query, catalog)

        assert isinstance(plan.root, TrimNode)
        assert plan.columns == ("department_id",)

    def test_ungrouped_order_column(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("department_id"),
            group_by=[col("department_id")],
            order_by=[OrderByItem(col("salary"))],
        )
        with pytest.raises(UngroupedColumn) as exc_info:
            bind(query, catalog)
        assert exc_info.value.stage is Stage.ORDER_BY

    def test_ambiguous_output_name(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=[SelectItem(col("name"), "x"), SelectItem(col("salary"), "x")],
            order_by=[OrderByItem(col("x"))],
        )
        with pytest.raises(AmbiguousColumn):
            bind(query, catalog)

    def test_null_policy_defaults(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name", "salary"),
            order_by=[OrderByItem(col("salary")), OrderByItem(col("name"), False)],
        )
        asc, desc = self.sort_keys(bind(query, catalog))
        assert (asc.nulls_first, desc.nulls_first) == (False, True)

        asc, desc = self.sort_keys(bind(query, catalog, nulls_sort_high=False))
        assert (asc.nulls_first, desc.nulls_first) == (True, False)

    def test_explicit_nulls_first(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("salary"), order_by=[OrderByItem(col("salary"), True, True)]
        )
        assert self.sort_keys(bind(query, catalog))[0].nulls_first is True


@pytest.mark.unit
class TestTypesAndLimits:
    """Tests for type checks, parameters and LIMIT/OFFSET."""

    def test_text_integer_comparison(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"), where=ComparisonExpr(col("name"), ComparisonOp.GT, lit(5))
        )
        with pytest.raises(TypeMismatch) as exc_info:
            bind(query, catalog)
        assert isinstance(exc_info.value, BindError)

    def test_where_must_be_boolean(self, catalog: InMemoryCatalog) -> None:
        with pytest.raises(TypeMismatch):
            bind(employees(select=select("name"), where=col("salary")), catalog)

    def test_arithmetic_requires_numbers(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=[SelectItem(ArithmeticExpr(col("name"), ArithmeticOp.ADD, lit(1)))])
        with pytest.raises(TypeMismatch):
            bind(query, catalog)

    def test_like_requires_text(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"),
            where=ComparisonExpr(col("salary"), ComparisonOp.LIKE, lit("1%")),
        )
        with pytest.raises(TypeMismatch):
            bind(query, catalog)

    def test_timestamp_literal_coercion(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"),
            where=ComparisonExpr(col("hire_date"), ComparisonOp.GT, lit("2020-01-01")),
        )
        plan = bind(query, catalog)

        predicate = next(n for n in plan.root.walk() if hasattr(n, "predicate")).predicate
        assert isinstance(predicate.right, BoundLiteral)
        assert predicate.right.data_type is SqlType.TIMESTAMP

    def test_invalid_timestamp_literal(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"),
            where=ComparisonExpr(lit("yesterday"), ComparisonOp.LT, col("hire_date")),
        )
        with pytest.raises(TypeMismatch):
            bind(query, catalog)

    def test_null_literal_compares_with_anything(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"), where=ComparisonExpr(col("name"), ComparisonOp.EQ, lit(None))
        )
        bind(query, catalog)

    def test_limit_offset(self, catalog: InMemoryCatalog) -> None:
        plan = bind(employees(select=select("name"), limit=5, offset=2), catalog)

        assert isinstance(plan.root, LimitNode)
        assert (plan.root.limit, plan.root.offset) == (5, 2)

    def test_offset_only(self, catalog: InMemoryCatalog) -> None:
        plan = bind(employees(select=select("name"), offset=2), catalog)

        assert plan.root.limit is None

    @pytest.mark.parametrize("limit,offset", [(-1, None), (1, -1), (1.5, None), (True, None)])
    def test_invalid_limit_offset(self, catalog: InMemoryCatalog, limit, offset) -> None:
        with pytest.raises(InvalidLimitOffset) as exc_info:
            bind(employees(select=select("name"), limit=limit, offset=offset), catalog)
        assert exc_info.value.stage is Stage.LIMIT

    def test_parameters(self, catalog: InMemoryCatalog) -> None:
        query = employees(
            select=select("name"),
            where=ComparisonExpr(col("salary"), ComparisonOp.GT, ParameterExpr("min_salary")),
            limit=ParameterExpr("n"),
        )
        plan = Binder(catalog, params={"min_salary": 70000, "n": 2}).bind(query)

        assert plan.root.limit == 2

    def test_missing_parameter(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=select("name"), limit=ParameterExpr("n"))
        with pytest.raises(UnknownParameter):
            bind(query, catalog)

    def test_negative_parameter_limit(self, catalog: InMemoryCatalog) -> None:
        query = employees(select=select("name"), limit=ParameterExpr("n"))
        with pytest.raises(InvalidLimitOffset):
            bind(query, catalog, params={"n": -3})

    def test_binding_reads_no_rows(self) -> None:
        from query_engine.domain.value_objects import Schema

        def producer():
            raise AssertionError("rows read during bind")

        catalog = InMemoryCatalog()
        catalog.register("t", Schema.of(("a", SqlType.INTEGER)), producer)
        plan = bind(QueryDescription(select=select("a"), from_=[TableRef("t")]), catalog)

        assert plan.columns == ("a",)
