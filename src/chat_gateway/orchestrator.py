"""
Concurrent fan-out for batch and comparison runs.

Each call is independent: a GatewayError raised by one call is recorded
against its key and the other calls carry on. Anything else (programming
errors, cancellation) cancels the calls still in flight and propagates.
"""

import asyncio
import contextlib
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .core.config import DEFAULT_MAX_CONCURRENCY
from .core.errors import GatewayError
from .models.batch import BatchItemResult
from .models.response import CompletionResult

logger = logging.getLogger(__name__)

CallFactory = Callable[[], Awaitable[CompletionResult]]


class BatchOrchestrator:
    """
    Runs keyed calls concurrently behind a semaphore.

    Args:
        max_concurrency: Upper bound on calls in flight; 0 or None means
            unbounded
    """

    def __init__(self, max_concurrency: Optional[int] = DEFAULT_MAX_CONCURRENCY):
        if max_concurrency is not None and max_concurrency < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {max_concurrency}")
        self.max_concurrency = max_concurrency or None

    async def _run_one(
        self,
        key: str,
        factory: CallFactory,
        semaphore: Optional[asyncio.Semaphore],
    ) -> BatchItemResult:
        guard = semaphore if semaphore is not None else contextlib.nullcontext()
        async with guard:
            try:
                result = await factory()
            except GatewayError as e:
                logger.warning(f"Call for {key!r} failed: {e}")
                return BatchItemResult(key=key, error=e)
        return BatchItemResult(key=key, result=result)

    async def run(self, calls: Sequence[Tuple[str, CallFactory]]) -> List[BatchItemResult]:
        """
        Execute all calls and return their outcomes in input order.

        Args:
            calls: (key, factory) pairs; each factory creates the coroutine
                for one call when it is scheduled

        Returns:
            One BatchItemResult per call, same order as `calls`
        """
        if not calls:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        start = time.perf_counter()

        tasks = [
            asyncio.ensure_future(self._run_one(key, factory, semaphore))
            for key, factory in calls
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = sum(1 for r in results if not r.ok)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Fan-out finished: {len(results) - failed}/{len(results)} succeeded "
            f"in {elapsed_ms:.0f}ms (max_concurrency={self.max_concurrency or 'unbounded'})"
        )
        return list(results)
