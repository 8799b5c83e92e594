"""Partitioned parallel aggregation.

Rows are partitioned by a hash of their grouping key, so every group lives
in exactly one partition. Each worker aggregates its partition with private
accumulators; the merge step unions the partial group tables and restores
first-appearance order using each group's arrival index. The result is
identical to HashAggregateOperator's.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from query_engine.domain.entities.bound_plan import AggregateCall, BoundExpr
from query_engine.domain.services.cancellation import CancellationToken
from query_engine.domain.services.operators import GroupState, HashAggregateOperator, Operator
from query_engine.domain.value_objects.values import row_key


class ParallelAggregateOperator(HashAggregateOperator):
    """HashAggregate that spreads accumulation over a thread pool.

    Inputs smaller than `min_rows` are aggregated serially.
    """

    def __init__(
        self,
        child: Operator,
        keys: tuple[BoundExpr, ...],
        aggregates: tuple[AggregateCall, ...],
        workers: int,
        min_rows: int = 0,
        token: CancellationToken | None = None,
    ) -> None:
        super().__init__(child, keys, aggregates, token)
        self._workers = workers
        self._min_rows = min_rows

    def _build_groups(self) -> list[tuple]:
        tagged = list(self._tag(self._drain(self._child)))
        if self._workers <= 1 or not self._keys or len(tagged) < self._min_rows:
            return self._emit(self._accumulate(tagged).values())

        partitions: list[list[tuple[int, tuple, tuple]]] = [[] for _ in range(self._workers)]
        for item in tagged:
            partitions[hash(row_key(item[1])) % self._workers].append(item)

        with ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="query-aggregate"
        ) as executor:
            futures = [
                executor.submit(self._accumulate, partition)
                for partition in partitions
                if partition
            ]
            partials = [future.result() for future in futures]

        self._check()
        return self._emit(self._merge(partials))

    @staticmethod
    def _merge(partials: list[dict[tuple, GroupState]]) -> list[GroupState]:
        merged: list[GroupState] = []
        for partial in partials:
            merged.extend(partial.values())
        return merged
