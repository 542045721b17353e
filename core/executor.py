"""Per-product sweep executor.

ProductSweep runs one async job per product concurrently and collects the
results. It handles timeouts and fault isolation so callers (spike detection,
bulk correlation) do not have to.

The key guarantee: one product failing never causes other products to be
skipped. Each product runs in its own task with its own exception boundary.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 30


class ProductSweep:
    """Runs a job for every product concurrently and returns the results.

    Uses asyncio.TaskGroup to schedule all products at once. Each product
    runs in an isolated task; if one raises or times out, the others
    continue unaffected.

    Attributes:
        timeout_seconds: Maximum time to wait for a single product's job
            before cancelling it and moving on. Defaults to 30.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    async def run(
        self,
        products: list[str],
        job: Callable[[str], Awaitable[T]],
    ) -> dict[str, T]:
        """Run job(product) for every product concurrently.

        Failed and timed-out products are logged and excluded from the
        returned mapping.

        Args:
            products: Product keys to sweep. Duplicates are run once.
            job: Coroutine function taking a product key.

        Returns:
            Mapping of product key to job result, for products whose job
            completed. Insertion order follows products. May be empty.
        """
        unique = list(dict.fromkeys(products))
        if not unique:
            return {}

        async with asyncio.TaskGroup() as tg:
            tasks = {
                product: tg.create_task(self._run_safely(product, job), name=f"sweep:{product}")
                for product in unique
            }

        results: dict[str, T] = {}
        for product, task in tasks.items():
            ok, value = task.result()
            if ok:
                results[product] = value
        return results

    async def _run_safely(
        self,
        product: str,
        job: Callable[[str], Awaitable[T]],
    ) -> tuple[bool, T | None]:
        """Run one product's job with timeout and exception handling.

        Never raises, so one failure cannot cancel the TaskGroup. Returns
        (False, None) on failure since None is a legitimate job result.
        """
        start = time.perf_counter()
        try:
            value = await asyncio.wait_for(job(product), timeout=self.timeout_seconds)
            return True, value

        except asyncio.TimeoutError:
            logger.error(
                "Sweep for product '%s' timed out after %.1fs (limit: %ss), skipping.",
                product, time.perf_counter() - start, self.timeout_seconds,
            )
            return False, None

        except Exception as exc:
            logger.error(
                "Sweep for product '%s' raised after %.0fms, skipping. Error: %s",
                product, (time.perf_counter() - start) * 1000, exc,
            )
            return False, None
