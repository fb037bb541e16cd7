"""
Type-driven batch generator.

One ``BatchGenerator`` owns the random stream of a scenario and a row buffer of
fixed capacity. Every call to ``next_batch`` overwrites that buffer in place, so
the working set stays at one batch no matter how many rows the scenario asks
for. Callers must finish with a batch (insert it everywhere) before asking for
the next one.

Usage:
    generator = BatchGenerator(dataset, batch_size=10_000, seed=42)
    for batch in generator.batches(row_count=1_000_000):
        distribute(batch)
"""

from __future__ import annotations

import math
import random
from typing import Any, Iterator, List, Optional

from schemabench.domain.columns import ResolvedDataset
from schemabench.domain.models import Batch


def next_batch(
    dataset: ResolvedDataset,
    batch_size: int,
    rng: random.Random,
    index: int = 0,
) -> Batch:
    """
    Produce a fresh batch of ``batch_size`` rows from ``rng``.

    Deterministic for a given rng state; the rng is advanced by the call.
    """
    rules = [column.rule for column in dataset.columns]
    rows = [[rule.generate(rng) for rule in rules] for _ in range(batch_size)]
    return Batch(index=index, column_names=dataset.column_names, rows=rows)


class BatchGenerator:
    """
    Deterministic generator reusing a single row buffer across batches.
    """

    def __init__(self, dataset: ResolvedDataset, batch_size: int, seed: int) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.dataset = dataset
        self.batch_size = batch_size
        self.seed = seed
        self._rng = random.Random(seed)
        self._rules = [column.rule for column in dataset.columns]
        width = len(self._rules)
        self._buffer: List[List[Any]] = [[None] * width for _ in range(batch_size)]
        self._index = 0

    @property
    def batches_emitted(self) -> int:
        return self._index

    def next_batch(self, size: Optional[int] = None) -> Batch:
        """
        Fill the buffer with ``size`` rows (default: full capacity) and return it as a batch.
        """
        size = self.batch_size if size is None else size
        if not 0 < size <= self.batch_size:
            raise ValueError(f"batch size {size} outside (0, {self.batch_size}]")
        rng = self._rng
        rules = self._rules
        buffer = self._buffer
        if len(buffer) > size:
            del buffer[size:]
        while len(buffer) < size:
            buffer.append([None] * len(rules))
        for row in buffer:
            for position, rule in enumerate(rules):
                row[position] = rule.generate(rng)
        batch = Batch(index=self._index, column_names=self.dataset.column_names, rows=buffer)
        self._index += 1
        return batch

    def batches(self, row_count: int) -> Iterator[Batch]:
        """
        Yield ``ceil(row_count / batch_size)`` batches totalling exactly ``row_count`` rows.
        """
        remaining = row_count
        while remaining > 0:
            size = min(self.batch_size, remaining)
            yield self.next_batch(size)
            remaining -= size


def batch_count(row_count: int, batch_size: int) -> int:
    return math.ceil(row_count / batch_size)


__all__ = ["BatchGenerator", "next_batch", "batch_count"]
