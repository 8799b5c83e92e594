"""SQL Parser using sqlglot.

This module converts SQL SELECT text into a QueryDescription that can be
bound and executed. Parsing is purely syntactic: names are not checked
against any catalog here.

Supported syntax:
    - SELECT [DISTINCT] items with aliases, *, table.*
    - FROM with aliases, comma joins
    - [INNER | LEFT | RIGHT | FULL | CROSS] JOIN ... ON
    - WHERE, GROUP BY, HAVING
    - ORDER BY with ASC/DESC and NULLS FIRST/LAST
    - LIMIT / OFFSET with integer literals or :name parameters
    - Arithmetic, comparisons, IS [NOT] NULL, [NOT] LIKE, AND/OR/NOT
    - COUNT/SUM/AVG/MIN/MAX, with DISTINCT
    - CAST of literals (TIMESTAMP '...' and CAST('...' AS TIMESTAMP))

References:
    - sqlglot documentation: https://sqlglot.com/
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import sqlglot
from sqlglot import exp

from query_engine.domain.entities.query import (
    AggregateExpr,
    AggregateFunc,
    ArithmeticExpr,
    ColumnExpr,
    ColumnRef,
    ComparisonExpr,
    Expression,
    JoinClause,
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
)
from query_engine.domain.value_objects.values import (
    ArithmeticOp,
    ComparisonOp,
    LogicalOp,
    parse_timestamp,
)


class ParseError(Exception):
    """Error during SQL parsing."""

    pass


_COMPARISONS: dict[type[exp.Expression], ComparisonOp] = {
    exp.EQ: ComparisonOp.EQ,
    exp.NEQ: ComparisonOp.NE,
    exp.LT: ComparisonOp.LT,
    exp.LTE: ComparisonOp.LE,
    exp.GT: ComparisonOp.GT,
    exp.GTE: ComparisonOp.GE,
}

_ARITHMETIC: dict[type[exp.Expression], ArithmeticOp] = {
    exp.Add: ArithmeticOp.ADD,
    exp.Sub: ArithmeticOp.SUB,
    exp.Mul: ArithmeticOp.MUL,
    exp.Div: ArithmeticOp.DIV,
    exp.Mod: ArithmeticOp.MOD,
}

_AGGREGATES: dict[type[exp.Expression], AggregateFunc] = {
    exp.Count: AggregateFunc.COUNT,
    exp.Sum: AggregateFunc.SUM,
    exp.Avg: AggregateFunc.AVG,
    exp.Min: AggregateFunc.MIN,
    exp.Max: AggregateFunc.MAX,
}

_TIMESTAMP_TYPES = {
    exp.DataType.Type.TIMESTAMP,
    exp.DataType.Type.DATETIME,
    exp.DataType.Type.DATE,
}


class SQLParser:
    """SQL parser using sqlglot.

    Example:
        >>> parser = SQLParser()
        >>> query = parser.parse("SELECT name FROM users WHERE age > 18")
        >>> query.from_
        [TableRef(name='users', alias=None)]
    """

    def __init__(self, dialect: str = "postgres") -> None:
        """Initialize the parser.

        Args:
            dialect: SQL dialect to use for parsing (default: postgres).
        """
        self._dialect = dialect

    def parse(self, sql: str) -> QueryDescription:
        """Parse a SQL SELECT statement.

        Args:
            sql: The SQL statement to parse.

        Returns:
            The query description.

        Raises:
            ParseError: If the SQL is invalid or unsupported.
        """
        try:
            statements = sqlglot.parse(sql, dialect=self._dialect)
        except Exception as e:
            raise ParseError(f"Failed to parse SQL: {e}") from e

        statements = [s for s in statements if s is not None]
        if not statements:
            raise ParseError("Empty SQL statement")
        if len(statements) > 1:
            raise ParseError("Multiple statements not supported")

        stmt = statements[0]
        if not isinstance(stmt, exp.Select):
            raise ParseError(f"Unsupported statement type: {type(stmt).__name__}")
        return self._convert_select(stmt)

    def _convert_select(self, stmt: exp.Select) -> QueryDescription:
        """Convert a SELECT statement to a query description."""
        from_clause = stmt.args.get("from") or stmt.args.get("from_")
        from_: list[TableRef] = []
        if from_clause is not None:
            from_.append(self._convert_table(from_clause.this))

        joins: list[JoinClause] = []
        for join in stmt.args.get("joins") or []:
            clause = self._convert_join(join)
            if clause is None and not joins:
                # Comma join: another FROM source.
                from_.append(self._convert_table(join.this))
            elif clause is None:
                # A comma source after a JOIN keeps its textual position.
                joins.append(
                    JoinClause(table=self._convert_table(join.this), kind=JoinKind.CROSS)
                )
            else:
                joins.append(clause)

        where = stmt.args.get("where")
        group = stmt.args.get("group")
        having = stmt.args.get("having")
        order = stmt.args.get("order")

        return QueryDescription(
            select=[self._convert_select_item(item) for item in stmt.expressions],
            from_=from_,
            joins=joins,
            where=self._convert_expression(where.this) if where is not None else None,
            group_by=[self._convert_expression(e) for e in group.expressions] if group else [],
            having=self._convert_expression(having.this) if having is not None else None,
            distinct=stmt.args.get("distinct") is not None,
            order_by=[self._convert_ordered(e) for e in order.expressions] if order else [],
            limit=self._convert_count(stmt.args.get("limit"), "LIMIT"),
            offset=self._convert_count(stmt.args.get("offset"), "OFFSET"),
        )

    def _convert_table(self, table: exp.Expression) -> TableRef:
        if not isinstance(table, exp.Table):
            raise ParseError(f"Unsupported FROM source: {table.sql()}")
        return TableRef(name=table.name, alias=table.alias or None)

    def _convert_join(self, join: exp.Join) -> JoinClause | None:
        """Convert a JOIN; returns None for a comma join."""
        side = (join.side or "").upper()
        kind = (join.kind or "").upper()
        on = join.args.get("on")
        if join.args.get("using"):
            raise ParseError("JOIN ... USING is not supported")

        if side == "LEFT":
            join_kind = JoinKind.LEFT
        elif side == "RIGHT":
            join_kind = JoinKind.RIGHT
        elif side == "FULL":
            join_kind = JoinKind.FULL
        elif kind == "CROSS":
            join_kind = JoinKind.CROSS
        elif kind in ("INNER", "") and on is not None:
            join_kind = JoinKind.INNER
        elif kind == "" and on is None:
            return None
        else:
            raise ParseError(f"Unsupported join: {join.sql()}")

        if join_kind is not JoinKind.CROSS and on is None:
            raise ParseError(f"{join_kind.value} JOIN requires an ON condition")
        condition = self._convert_expression(on) if on is not None else None
        return JoinClause(table=self._convert_table(join.this), kind=join_kind, condition=condition)

    def _convert_select_item(self, item: exp.Expression) -> SelectItem:
        """Convert a SELECT item."""
        alias = None
        if isinstance(item, exp.Alias):
            alias = item.alias
            item = item.this
        return SelectItem(expr=self._convert_expression(item), alias=alias)

    def _convert_ordered(self, item: exp.Expression) -> OrderByItem:
        """Convert an ORDER BY item.

        sqlglot fills in the dialect's implicit NULL placement; when that
        matches the default (NULLS LAST ascending, FIRST descending) the item
        defers to the engine-wide policy.
        """
        if not isinstance(item, exp.Ordered):
            return OrderByItem(expr=self._convert_expression(item))
        ascending = not item.args.get("desc")
        nulls_first = item.args.get("nulls_first")
        if nulls_first is not None and bool(nulls_first) == (not ascending):
            nulls_first = None
        return OrderByItem(
            expr=self._convert_expression(item.this),
            ascending=ascending,
            nulls_first=None if nulls_first is None else bool(nulls_first),
        )

    def _convert_count(self, node: exp.Expression | None, clause: str) -> int | ParameterExpr | None:
        """Convert a LIMIT or OFFSET value."""
        if node is None:
            return None
        # Newer sqlglot versions keep the value in .expression
        value = node.args.get("expression") or node.args.get("this")
        if isinstance(value, exp.Placeholder):
            return ParameterExpr(name=value.name)
        if isinstance(value, exp.Literal) and value.is_int:
            return int(value.this)
        if isinstance(value, exp.Neg) and isinstance(value.this, exp.Literal) and value.this.is_int:
            # Rejected by the binder with a stage-tagged error.
            return -int(value.this.this)
        raise ParseError(f"{clause} must be an integer literal or parameter")

    def _convert_aggregate(self, func: exp.AggFunc) -> AggregateExpr:
        """Convert an aggregate function."""
        agg = _AGGREGATES.get(type(func))
        if agg is None:
            raise ParseError(f"Unsupported aggregate function: {func.sql()}")

        arg = func.this
        if isinstance(func, exp.Count) and (arg is None or isinstance(arg, exp.Star)):
            return AggregateExpr(func=agg, arg=None)

        distinct = False
        if isinstance(arg, exp.Distinct):
            if len(arg.expressions) != 1:
                raise ParseError(f"{agg.value}(DISTINCT ...) takes one argument")
            distinct = True
            arg = arg.expressions[0]
        if arg is None:
            raise ParseError(f"{agg.value} requires an argument")
        return AggregateExpr(func=agg, arg=self._convert_expression(arg), distinct=distinct)

    def _convert_expression(self, expr: exp.Expression) -> Expression:
        """Convert a sqlglot expression to our internal representation."""
        if isinstance(expr, exp.Column):
            if isinstance(expr.this, exp.Star):
                return StarExpr(table=expr.table or None)
            return ColumnExpr(column=ColumnRef(name=expr.name, table=expr.table or None))
        elif isinstance(expr, exp.Star):
            return StarExpr()
        elif isinstance(expr, exp.Literal):
            return LiteralExpr(value=self._convert_literal(expr))
        elif isinstance(expr, exp.Boolean):
            return LiteralExpr(value=bool(expr.this))
        elif isinstance(expr, exp.Null):
            return LiteralExpr(value=None)
        elif isinstance(expr, exp.Placeholder):
            return ParameterExpr(name=expr.name)
        elif isinstance(expr, exp.Paren):
            return self._convert_expression(expr.this)
        elif isinstance(expr, exp.Neg):
            if isinstance(expr.this, exp.Literal) and expr.this.is_number:
                return LiteralExpr(value=-self._convert_literal(expr.this))
            return NegateExpr(operand=self._convert_expression(expr.this))
        elif type(expr) in _ARITHMETIC:
            return ArithmeticExpr(
                left=self._convert_expression(expr.left),
                op=_ARITHMETIC[type(expr)],
                right=self._convert_expression(expr.right),
            )
        elif type(expr) in _COMPARISONS:
            return ComparisonExpr(
                left=self._convert_expression(expr.left),
                op=_COMPARISONS[type(expr)],
                right=self._convert_expression(expr.right),
            )
        elif isinstance(expr, exp.Is):
            return self._convert_null_test(expr, negated=bool(expr.args.get("negate")))
        elif isinstance(expr, exp.Like):
            like = ComparisonExpr(
                left=self._convert_expression(expr.this),
                op=ComparisonOp.LIKE,
                right=self._convert_expression(expr.expression),
            )
            if expr.args.get("negate"):
                return LogicalExpr(op=LogicalOp.NOT, operands=(like,))
            return like
        elif isinstance(expr, exp.And):
            return self._flatten(expr, exp.And, LogicalOp.AND)
        elif isinstance(expr, exp.Or):
            return self._flatten(expr, exp.Or, LogicalOp.OR)
        elif isinstance(expr, exp.Not):
            inner = expr.this
            if isinstance(inner, exp.Paren):
                inner = inner.this
            if isinstance(inner, exp.Is):
                return self._convert_null_test(inner, negated=not inner.args.get("negate"))
            return LogicalExpr(op=LogicalOp.NOT, operands=(self._convert_expression(expr.this),))
        elif isinstance(expr, exp.Cast):
            return LiteralExpr(value=self._convert_cast(expr))
        elif isinstance(expr, exp.AggFunc):
            return self._convert_aggregate(expr)
        elif isinstance(expr, exp.Alias):
            return self._convert_expression(expr.this)
        else:
            raise ParseError(f"Unsupported expression: {expr.sql()}")

    def _convert_null_test(self, expr: exp.Is, negated: bool) -> ComparisonExpr:
        """Convert IS [NOT] NULL. Newer sqlglot marks NOT with a negate flag."""
        if not isinstance(expr.expression, exp.Null):
            raise ParseError(f"Unsupported IS expression: {expr.sql()}")
        op = ComparisonOp.IS_NOT_NULL if negated else ComparisonOp.IS_NULL
        return ComparisonExpr(left=self._convert_expression(expr.this), op=op)

    def _flatten(
        self, expr: exp.Expression, node_type: type[exp.Expression], op: LogicalOp
    ) -> LogicalExpr:
        """Collapse a left-deep chain of AND (or OR) into one n-ary node."""
        operands: list[Expression] = []
        stack = [expr]
        while stack:
            node = stack.pop()
            if isinstance(node, node_type):
                stack.append(node.right)
                stack.append(node.left)
            else:
                operands.append(self._convert_expression(node))
        return LogicalExpr(op=op, operands=tuple(operands))

    def _convert_literal(self, literal: exp.Literal) -> Any:
        if literal.is_string:
            return literal.this
        text = literal.this
        if literal.is_int:
            return int(text)
        return float(text)

    def _convert_cast(self, cast: exp.Cast) -> Any:
        """Fold a CAST of a literal into a typed literal value."""
        operand = cast.this
        if not isinstance(operand, exp.Literal):
            raise ParseError(f"CAST is only supported on literals: {cast.sql()}")
        target = cast.to.this
        text = operand.this
        try:
            if target in _TIMESTAMP_TYPES:
                return parse_timestamp(text)
            if target is exp.DataType.Type.DECIMAL:
                return Decimal(text)
            if target in (exp.DataType.Type.INT, exp.DataType.Type.BIGINT):
                return int(text)
            if target in (exp.DataType.Type.DOUBLE, exp.DataType.Type.FLOAT):
                return float(text)
            if target in (exp.DataType.Type.TEXT, exp.DataType.Type.VARCHAR):
                return str(text)
        except (ValueError, InvalidOperation) as e:
            raise ParseError(f"Invalid literal for CAST: {cast.sql()}") from e
        raise ParseError(f"Unsupported CAST target: {cast.to.sql()}")


def parse_sql(sql: str, dialect: str = "postgres") -> QueryDescription:
    """Parse SQL text with a default parser."""
    return SQLParser(dialect=dialect).parse(sql)


__all__ = ["ParseError", "SQLParser", "parse_sql"]
