"""
Work partitioning for parallel pairwise comparison.

Splits an ordered list of independent work items into contiguous 1-based
ranges, one per worker. This is a distribution heuristic rather than an
optimal balancer: the number of ranges stays at or below the worker count and
any remainder is absorbed by the final range.
"""

from typing import List, Tuple

from .errors import ConfigurationError


BatchRange = Tuple[int, int]


def partition(total: int, workers: int) -> List[BatchRange]:
    """
    Divide work items 1..total into contiguous inclusive ranges.

    Args:
        total: Number of work items (must be positive)
        workers: Number of parallel workers (must be 2 or more)

    Returns:
        Ordered list of (start, end) tuples covering 1..total exactly once,
        with at most `workers` entries

    Raises:
        ConfigurationError: If workers <= 1 or total < 1
    """
    if workers <= 1:
        raise ConfigurationError(
            f"parallelism requires 2 or more workers (got {workers})"
        )
    if total < 1:
        raise ConfigurationError(f"Number of work items must be positive (got {total})")

    # Fewer items than workers: one item per range
    if total <= workers:
        return [(i, i) for i in range(1, total + 1)]

    # Up to two items per worker: pair consecutive items
    if total <= workers * 2:
        ranges = [(start, start + 1) for start in range(1, total, 2)]
        if total % 2 == 1:
            # Fold the unmatched last item into the final pair
            ranges[-1] = (ranges[-1][0], total)
        return ranges

    batch = total // workers
    ranges = [(1 + i * batch, (i + 1) * batch) for i in range(workers - 1)]

    # Remainder goes to the final batch
    ranges.append((ranges[-1][1] + 1, total))
    return ranges


def batch_sizes(ranges: List[BatchRange]) -> List[int]:
    """Number of work items in each range."""
    return [end - start + 1 for start, end in ranges]
