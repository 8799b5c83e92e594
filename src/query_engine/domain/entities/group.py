"""Group entity produced by GROUP BY."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Group:
    """Rows sharing one grouping-key tuple.

    Attributes:
        key: The evaluated grouping-key values.
        rows: Member rows in input order.
    """

    key: tuple
    rows: list[tuple] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)
