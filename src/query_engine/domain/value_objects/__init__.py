"""Value objects for the query engine domain.

Value objects are immutable types that represent domain concepts.
They have no identity - two value objects with the same attributes are equal.

Exports:
    Values:
        - SqlType: SQL data types (INTEGER, FLOAT, DECIMAL, TEXT, ...)
        - ArithmeticOp, ComparisonOp, LogicalOp: Operator enumerations
        - compare, arithmetic, like: Three-valued scalar operations
        - row_key, sort_key: Grouping/dedup and ordering keys

    Schema:
        - Column: Named, typed column
        - Schema: Ordered sequence of columns
"""

from query_engine.domain.value_objects.schema import Column, Schema
from query_engine.domain.value_objects.values import (
    INT64_MAX,
    INT64_MIN,
    ArithmeticOp,
    ComparisonOp,
    LogicalOp,
    SqlType,
    arithmetic,
    compare,
    conform_value,
    format_value,
    infer_type,
    is_comparable,
    like,
    logical_and,
    logical_not,
    logical_or,
    negate,
    null_sorts_high,
    numeric_result_type,
    parse_timestamp,
    row_key,
    sort_key,
    value_key,
)

__all__ = [
    # Values
    "SqlType",
    "ArithmeticOp",
    "ComparisonOp",
    "LogicalOp",
    "INT64_MIN",
    "INT64_MAX",
    "arithmetic",
    "compare",
    "conform_value",
    "format_value",
    "infer_type",
    "is_comparable",
    "like",
    "logical_and",
    "logical_not",
    "logical_or",
    "negate",
    "null_sorts_high",
    "numeric_result_type",
    "parse_timestamp",
    "row_key",
    "sort_key",
    "value_key",
    # Schema
    "Column",
    "Schema",
]
