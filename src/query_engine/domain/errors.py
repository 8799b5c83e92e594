"""Error families raised by the query engine.

Two disjoint families:

    BindError       raised by the binder before any row is read; the caller
                    fixes the query and binds again.
    ExecutionError  raised at the pull that discovered it; the stream ends
                    and the bound plan remains reusable.

Neither family is retried by the engine.
"""

from __future__ import annotations

from enum import Enum


class Stage(Enum):
    """Logical clause stages, in evaluation order."""

    FROM = "FROM"
    WHERE = "WHERE"
    GROUP_BY = "GROUP BY"
    HAVING = "HAVING"
    SELECT = "SELECT"
    DISTINCT = "DISTINCT"
    ORDER_BY = "ORDER BY"
    LIMIT = "LIMIT/OFFSET"

    @property
    def position(self) -> int:
        return _STAGE_ORDER.index(self)


_STAGE_ORDER = list(Stage)


class QueryEngineError(Exception):
    """Base class for all query engine errors."""

    pass


# Bind errors


class BindError(QueryEngineError):
    """Query failed validation at bind time.

    Attributes:
        stage: The clause stage in which the error was detected.
    """

    def __init__(self, message: str, stage: Stage | None = None) -> None:
        self.stage = stage
        if stage is not None:
            message = f"[{stage.value}] {message}"
        super().__init__(message)


class UnknownColumn(BindError):
    """A name does not resolve in the stage's scope."""


class AmbiguousColumn(BindError):
    """An unqualified name matches columns of more than one relation."""


class AliasNotVisible(BindError):
    """A SELECT alias is referenced by a clause evaluated before SELECT."""


class AggregateNotAllowedHere(BindError):
    """An aggregate appears in a clause that cannot contain one."""


class UngroupedColumn(BindError):
    """A grouped SELECT or ORDER BY references a column outside the group key."""


class InvalidHavingReference(BindError):
    """HAVING references a column that is neither a group key nor aggregated."""


class InvalidLimitOffset(BindError):
    """LIMIT or OFFSET is negative or not an integer."""


class TypeMismatch(BindError):
    """Operand types are incompatible for the operation."""


class UnknownRelation(BindError):
    """A FROM or JOIN source is not in the catalog."""


class DuplicateRelationAlias(BindError):
    """Two sources in the same FROM clause share a qualifier."""


class UnknownParameter(BindError):
    """A named parameter has no supplied value."""


# Execution errors


class ExecutionError(QueryEngineError):
    """Query failed while rows were being pulled."""

    pass


class QueryArithmeticError(ExecutionError, ArithmeticError):
    """Division by zero or numeric overflow."""


class ValueConversionError(ExecutionError, ValueError):
    """A value does not conform to its declared type."""


class UpstreamIoError(ExecutionError):
    """The relation collaborator failed; the original error is the __cause__."""


class Cancelled(ExecutionError):
    """Execution was cancelled or exceeded its deadline."""
