"""Bounded worker pool for blocking store and index calls."""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """Runs blocking callables off the event loop on a fixed set of threads.

    SQLite, ChromaDB and the cross-encoder are synchronous. Routing them through
    a bounded pool keeps a slow call from stalling unrelated requests, and caps
    how many such calls run at once.
    """

    def __init__(self, max_workers: int) -> None:
        self._max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="chunkhub-store",
        )

    @property
    def max_workers(self) -> int:
        return self._max_workers

    async def run(self, fn: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` on the pool and await its result."""
        loop = asyncio.get_running_loop()
        call = functools.partial(fn, *args, **kwargs)
        return await loop.run_in_executor(self._executor, call)

    def shutdown(self) -> None:
        """Stop accepting work and wait for running calls to finish."""
        logger.info(f"Shutting down worker pool ({self._max_workers} threads)")
        self._executor.shutdown(wait=True)
