"""
Batch driver fanning independent per-query (or per-site) work across threads.

Each worker owns exactly one :class:`EvaluationCache` and writes into a disjoint
contiguous slice of the output, so the only synchronisation is waiting for every
worker to finish. The first error aborts the batch: the other workers stop at
their next block boundary and the error is re-raised to the caller.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from natural_neighbours.cache import EvaluationCache, make_caches
from natural_neighbours.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)

# Items processed between checks of the abort flag
BLOCK_SIZE = 256

Kernel = Callable[[int, int, EvaluationCache], None]


def default_worker_count() -> int:
    return os.cpu_count() or 1


def partition(n: int, n_workers: int) -> list[tuple[int, int]]:
    """Split ``range(n)`` into at most ``n_workers`` contiguous, near-equal slices."""
    n_workers = max(1, min(int(n_workers), n))
    size, extra = divmod(n, n_workers)
    bounds = []
    start = 0
    for w in range(n_workers):
        stop = start + size + (1 if w < extra else 0)
        bounds.append((start, stop))
        start = stop
    return bounds


def run_partitioned(
    kernel: Kernel,
    n: int,
    parallel: bool = True,
    caches: Sequence[EvaluationCache] | None = None,
    max_workers: int | None = None,
) -> None:
    """Run ``kernel(start, stop, cache)`` over ``range(n)``.

    Args:
        kernel: Callable processing the items ``start <= k < stop`` with the given cache.
        n: Number of items.
        parallel: Use one worker per available CPU; otherwise a single worker.
        caches: One cache per worker. Fresh caches are created if omitted.
        max_workers: Upper bound on the number of workers.
    """
    if n <= 0:
        return

    n_workers = default_worker_count() if parallel else 1
    if max_workers is not None:
        n_workers = min(n_workers, max_workers)
    chunks = partition(n, n_workers)

    if caches is None:
        caches = make_caches(len(chunks))
    elif len(caches) < len(chunks):
        msg = f"Expected at least {len(chunks)} caches for {len(chunks)} workers, got {len(caches)}."
        raise InvalidConfigurationError(msg)

    if len(chunks) == 1:
        kernel(0, n, caches[0])
        return

    logger.debug("Running %d items on %d workers", n, len(chunks))
    abort = threading.Event()

    def worker(start: int, stop: int, cache: EvaluationCache) -> None:
        for block in range(start, stop, BLOCK_SIZE):
            if abort.is_set():
                return
            try:
                kernel(block, min(block + BLOCK_SIZE, stop), cache)
            except BaseException:
                abort.set()
                raise

    with ThreadPoolExecutor(max_workers=len(chunks)) as executor:
        futures = [
            executor.submit(worker, start, stop, cache) for (start, stop), cache in zip(chunks, caches)
        ]
        try:
            for future in as_completed(futures):
                future.result()
        except BaseException:
            abort.set()
            for future in futures:
                future.cancel()
            raise
