# ABOUTME: Static range partitioning for per-splat stages
# ABOUTME: Maps a kernel over contiguous index ranges on a thread pool

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple, TypeVar

T = TypeVar('T')


def split_ranges(count: int, batch_size: int) -> List[Tuple[int, int]]:
    """Split [0, count) into contiguous (start, end) ranges of at most batch_size items."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [(start, min(start + batch_size, count)) for start in range(0, count, batch_size)]


def resolve_workers(workers: Optional[int]) -> int:
    if workers is None:
        return os.cpu_count() or 1
    return max(1, int(workers))


def parallel_for(count: int,
                 batch_size: int,
                 kernel: Callable[[int, int], T],
                 workers: Optional[int] = None) -> List[T]:
    """
    Run ``kernel(start, end)`` over static ranges covering [0, count).

    Kernels must only write to output slots inside their own range. Results
    are returned in range order regardless of completion order, and the first
    worker exception is re-raised once all submitted work has been collected.

    Args:
        count: Number of items
        batch_size: Items per work unit
        kernel: Callable receiving a half-open index range
        workers: Thread count (None = CPU count, 1 = run inline)

    Returns:
        List of kernel results, one per range
    """
    ranges = split_ranges(count, batch_size)
    workers = resolve_workers(workers)

    if workers == 1 or len(ranges) <= 1:
        return [kernel(start, end) for start, end in ranges]

    with ThreadPoolExecutor(max_workers=min(workers, len(ranges))) as executor:
        futures = [executor.submit(kernel, start, end) for start, end in ranges]
        return [future.result() for future in futures]
