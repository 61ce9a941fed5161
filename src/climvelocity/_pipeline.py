"""Worker-pool helpers for per-cell computations.

Cells are independent for the trend, gradient, trajectory and analogue
stages, so work is split into row batches (or one task per seed) and
run on a thread pool. Each helper returns only after every task has
finished, which gives callers a barrier between stages.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_MIN_BATCH_ROWS = 8


def row_batches(nrows: int, max_workers: int) -> list[range]:
    """Split ``range(nrows)`` into contiguous batches for *max_workers*.

    Uses roughly four batches per worker so that uneven rows (masked
    land, short series) balance out.

    Args:
        nrows: Number of grid rows.
        max_workers: Worker count.

    Returns:
        Non-empty, ordered, non-overlapping ranges covering every row.

    Example:
        >>> row_batches(10, 1)
        [range(0, 10)]
    """
    if nrows <= 0:
        return []
    if max_workers <= 1:
        return [range(nrows)]
    n_batches = min(nrows, max_workers * 4)
    size = max(_MIN_BATCH_ROWS, -(-nrows // n_batches))
    return [range(start, min(start + size, nrows)) for start in range(0, nrows, size)]


def run_tasks(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int,
    label: str = "tasks",
) -> list[R]:
    """Apply *func* to every item, optionally on a thread pool.

    Results keep the order of *items*. An exception raised by a task
    propagates to the caller after the pool shuts down.

    Args:
        func: Function applied to each item.
        items: Work items.
        max_workers: Thread count; 1 runs serially in the caller's thread.
        label: Name used in debug logs.

    Returns:
        List of results in input order.
    """
    work: Sequence[T] = list(items)
    started = time.perf_counter()
    if max_workers <= 1 or len(work) <= 1:
        results = [func(item) for item in work]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(func, work))
    logger.debug(
        "Ran %d %s on %d worker(s) in %.3fs",
        len(work),
        label,
        max(1, max_workers),
        time.perf_counter() - started,
    )
    return results


def run_row_batches(
    func: Callable[[range], None],
    nrows: int,
    max_workers: int,
    label: str = "row batches",
) -> None:
    """Run *func* over row batches; *func* writes into preallocated arrays.

    Batches cover disjoint rows, so concurrent writes never overlap.
    """
    run_tasks(func, row_batches(nrows, max_workers), max_workers, label=label)
