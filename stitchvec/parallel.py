"""Ordered, chunked parallel map over index ranges."""
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Tuple, TypeVar

T = TypeVar('T')

DEFAULT_CHUNK_SIZE = 16384


def resolve_workers(parallel_workers: int = -1) -> int:
    """Map the config value (-1 = auto) to a worker count."""
    if parallel_workers is None or parallel_workers <= 0:
        return os.cpu_count() or 1
    return int(parallel_workers)


def chunk_ranges(n: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[Tuple[int, int]]:
    """Split [0, n) into consecutive half-open ranges."""
    chunk_size = max(int(chunk_size), 1)
    return [(start, min(start + chunk_size, n)) for start in range(0, n, chunk_size)]


def map_chunks(
    func: Callable[[int, int], T],
    n: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    parallel_workers: int = -1
) -> List[T]:
    """
    Apply func(start, stop) to every chunk of [0, n).

    Results come back in chunk order regardless of which worker finished
    first, so callers can concatenate them deterministically.

    Args:
        func: Worker taking a half-open index range
        n: Total number of items
        chunk_size: Items per chunk
        parallel_workers: Thread count, -1 for auto

    Returns:
        List of per-chunk results in index order
    """
    ranges = chunk_ranges(n, chunk_size)
    workers = min(resolve_workers(parallel_workers), len(ranges))

    if workers <= 1:
        return [func(start, stop) for start, stop in ranges]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda r: func(r[0], r[1]), ranges))
