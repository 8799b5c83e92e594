"""Scalar values, SQL types and the rules that govern them.

Values are plain Python objects tagged by a SqlType:

    NULL       None
    INTEGER    int (signed 64-bit range enforced on arithmetic)
    FLOAT      float
    DECIMAL    decimal.Decimal
    TEXT       str
    BOOLEAN    bool
    TIMESTAMP  datetime.datetime

Comparisons follow three-valued logic: any comparison involving NULL yields
Unknown, represented as None. Filters treat Unknown as false.

Ordering of NULLs is not a comparison; it is decided by the sort policy
(see sort_key), which places NULLs first or last per key.
"""

from __future__ import annotations

import functools
import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from query_engine.domain.errors import QueryArithmeticError, ValueConversionError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class SqlType(Enum):
    """SQL data types understood by the engine."""

    NULL = "NULL"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    DECIMAL = "DECIMAL"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"

    @property
    def is_numeric(self) -> bool:
        return self in _NUMERIC_TYPES


_NUMERIC_TYPES = frozenset({SqlType.INTEGER, SqlType.FLOAT, SqlType.DECIMAL})


class ArithmeticOp(Enum):
    """Binary arithmetic operators."""

    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"


class ComparisonOp(Enum):
    """Comparison operators for predicates."""

    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"
    LIKE = "LIKE"


class LogicalOp(Enum):
    """Logical operators for combining predicates."""

    AND = "AND"
    OR = "OR"
    NOT = "NOT"


# Type rules


def infer_type(value: Any) -> SqlType:
    """Infer the SqlType of a Python literal."""
    if value is None:
        return SqlType.NULL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return SqlType.BOOLEAN
    if isinstance(value, int):
        return SqlType.INTEGER
    if isinstance(value, float):
        return SqlType.FLOAT
    if isinstance(value, Decimal):
        return SqlType.DECIMAL
    if isinstance(value, str):
        return SqlType.TEXT
    if isinstance(value, datetime):
        return SqlType.TIMESTAMP
    if isinstance(value, date):
        return SqlType.TIMESTAMP
    raise ValueConversionError(f"Unsupported literal type: {type(value).__name__}")


def numeric_result_type(left: SqlType, right: SqlType) -> SqlType:
    """Result type of arithmetic between two numeric (or NULL) operands."""
    if left is SqlType.NULL:
        return right
    if right is SqlType.NULL:
        return left
    if SqlType.FLOAT in (left, right):
        return SqlType.FLOAT
    if SqlType.DECIMAL in (left, right):
        return SqlType.DECIMAL
    return SqlType.INTEGER


def is_comparable(left: SqlType, right: SqlType) -> bool:
    """Whether values of two types may be compared with =, <, etc."""
    if SqlType.NULL in (left, right):
        return True
    if left.is_numeric and right.is_numeric:
        return True
    return left is right


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO-8601 date or timestamp string.

    Raises:
        ValueError: If the text is not a valid ISO-8601 value.
    """
    return datetime.fromisoformat(text.strip())


def conform_value(value: Any, data_type: SqlType, nullable: bool = True) -> Any:
    """Conform a value supplied by a relation to its declared column type.

    Lossless widenings are applied (int to float/Decimal, date to datetime).

    Raises:
        ValueConversionError: If the value cannot represent the declared type.
    """
    if value is None:
        if not nullable:
            raise ValueConversionError("NULL value in non-nullable column")
        return None

    if data_type is SqlType.INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            if INT64_MIN <= value <= INT64_MAX:
                return value
            raise ValueConversionError(f"Integer {value} is outside the 64-bit range")
    elif data_type is SqlType.FLOAT:
        if isinstance(value, float):
            return value
        if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            return float(value)
    elif data_type is SqlType.DECIMAL:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return Decimal(value)
    elif data_type is SqlType.TEXT:
        if isinstance(value, str):
            return value
    elif data_type is SqlType.BOOLEAN:
        if isinstance(value, bool):
            return value
    elif data_type is SqlType.TIMESTAMP:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            try:
                return parse_timestamp(value)
            except ValueError as e:
                raise ValueConversionError(f"Invalid timestamp {value!r}") from e

    raise ValueConversionError(
        f"Value {value!r} of type {type(value).__name__} is not a valid {data_type.value}"
    )


# Arithmetic


def check_int64(value: int) -> int:
    """Raise QueryArithmeticError if an integer leaves the signed 64-bit range."""
    if value < INT64_MIN or value > INT64_MAX:
        raise QueryArithmeticError("integer out of range")
    return value


def _coerce_numeric(value: Any, target: SqlType) -> Any:
    if target is SqlType.FLOAT:
        return float(value)
    if target is SqlType.DECIMAL and not isinstance(value, Decimal):
        return Decimal(value)
    return value


def arithmetic(op: ArithmeticOp, left: Any, right: Any, result_type: SqlType) -> Any:
    """Apply a binary arithmetic operator. NULL in, NULL out.

    Raises:
        QueryArithmeticError: On division by zero or integer overflow.
    """
    if left is None or right is None:
        return None

    left = _coerce_numeric(left, result_type)
    right = _coerce_numeric(right, result_type)

    if op in (ArithmeticOp.DIV, ArithmeticOp.MOD) and right == 0:
        raise QueryArithmeticError("division by zero")

    try:
        if op is ArithmeticOp.ADD:
            result = left + right
        elif op is ArithmeticOp.SUB:
            result = left - right
        elif op is ArithmeticOp.MUL:
            result = left * right
        elif op is ArithmeticOp.DIV:
            if result_type is SqlType.INTEGER:
                quotient = abs(left) // abs(right)
                result = quotient if (left < 0) == (right < 0) else -quotient
            else:
                result = left / right
        else:
            if result_type is SqlType.INTEGER:
                remainder = abs(left) % abs(right)
                result = -remainder if left < 0 else remainder
            elif result_type is SqlType.FLOAT:
                result = math.fmod(left, right)
            else:
                result = left % right
    except (OverflowError, InvalidOperation) as e:
        raise QueryArithmeticError(f"numeric overflow in {op.value}") from e

    if result_type is SqlType.INTEGER:
        return check_int64(result)
    return result


def negate(value: Any, result_type: SqlType) -> Any:
    if value is None:
        return None
    if result_type is SqlType.INTEGER:
        return check_int64(-value)
    return -value


# Comparison and three-valued logic


def compare(op: ComparisonOp, left: Any, right: Any) -> bool | None:
    """Compare two values. Returns None (Unknown) if either side is NULL."""
    if left is None or right is None:
        return None
    try:
        if op is ComparisonOp.EQ:
            return left == right
        if op is ComparisonOp.NE:
            return left != right
        if op is ComparisonOp.LT:
            return left < right
        if op is ComparisonOp.LE:
            return left <= right
        if op is ComparisonOp.GT:
            return left > right
        if op is ComparisonOp.GE:
            return left >= right
    except TypeError as e:
        raise ValueConversionError(
            f"Cannot compare {type(left).__name__} with {type(right).__name__}"
        ) from e
    raise ValueError(f"Not a binary comparison: {op}")


@functools.lru_cache(maxsize=256)
def _like_pattern(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def like(value: Any, pattern: Any) -> bool | None:
    """SQL LIKE with % and _ wildcards (case-sensitive)."""
    if value is None or pattern is None:
        return None
    return _like_pattern(pattern).fullmatch(value) is not None


def logical_and(values: list[bool | None]) -> bool | None:
    """Three-valued AND: FALSE dominates, then Unknown."""
    result: bool | None = True
    for value in values:
        if value is False:
            return False
        if value is None:
            result = None
    return result


def logical_or(values: list[bool | None]) -> bool | None:
    """Three-valued OR: TRUE dominates, then Unknown."""
    result: bool | None = False
    for value in values:
        if value is True:
            return True
        if value is None:
            result = None
    return result


def logical_not(value: bool | None) -> bool | None:
    if value is None:
        return None
    return not value


# Grouping, dedup and ordering keys


_NULL_KEY = ("null",)


def value_key(value: Any) -> tuple:
    """Hashable key under which equal SQL values collide.

    NULLs share one key (they group and deduplicate together). Numbers of
    different Python types share a bucket so 1, 1.0 and Decimal("1") are
    one value.
    """
    if value is None:
        return _NULL_KEY
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (int, float, Decimal)):
        return ("num", value)
    return (type(value).__name__, value)


def row_key(values: tuple | list) -> tuple:
    """Serialized key for whole-row equality (GROUP BY keys, DISTINCT)."""
    return tuple(value_key(v) for v in values)


def null_sorts_high(ascending: bool, nulls_first: bool) -> bool:
    """Whether NULL must rank above every value for a single sort pass.

    A sort pass runs with reverse=not ascending, so NULLs ranked high come
    last when ascending and first when descending.
    """
    return ascending != nulls_first


def sort_key(value: Any, nulls_high: bool) -> tuple:
    """Key for one ORDER BY column; NULLs never reach a value comparison."""
    if value is None:
        return (1,) if nulls_high else (-1,)
    return (0, value)


def format_value(value: Any) -> str:
    """Render a value the way it appears in expressions and plans."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        return f"'{value}'"
    if isinstance(value, datetime):
        return f"TIMESTAMP '{value.isoformat(sep=' ')}'"
    return str(value)
