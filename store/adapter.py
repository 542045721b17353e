"""Store adapter: timeout and retry policy around any EventStore backend.

Every call goes through the same policy:

    attempt 1  run under timeout_seconds
    on failure sleep backoff_seconds, log a warning
    attempt 2  run under timeout_seconds
    on failure raise StoreUnavailable (original error chained)

Only infrastructure failures are retried: timeouts, OS-level socket errors,
httpx transport/status errors, and StoreBackendError. Anything else is a bug
in the caller or backend and propagates unchanged.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from core.errors import StoreUnavailable
from store.base import EventStore, StoreBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_BACKOFF_SECONDS = 0.5

RETRYABLE_ERRORS = (TimeoutError, OSError, httpx.HTTPError, StoreBackendError)


class StoreAdapter(EventStore):
    """Wraps a backend so every call gets a timeout and exactly one retry.

    The adapter is itself an EventStore, so components cannot tell whether
    they hold a bare backend or a wrapped one.

    Attributes:
        backend: The wrapped store.
        timeout_seconds: Per-attempt timeout.
        backoff_seconds: Fixed sleep between the two attempts.
    """

    def __init__(
        self,
        backend: EventStore,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds

    async def _call(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn with the timeout/retry policy.

        Args:
            op: Operation name for log lines (e.g. "append_event").
            fn: Zero-argument callable returning a fresh awaitable. Called
                once per attempt.

        Raises:
            StoreUnavailable: If both attempts fail with a retryable error.
        """
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except RETRYABLE_ERRORS as exc:
            logger.warning(
                "Store %s failed (%s: %s), retrying in %.2fs.",
                op, type(exc).__name__, exc, self.backoff_seconds,
            )

        await asyncio.sleep(self.backoff_seconds)

        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except RETRYABLE_ERRORS as exc:
            logger.error("Store %s failed after retry: %s: %s", op, type(exc).__name__, exc)
            raise StoreUnavailable(f"Event store unavailable during {op}.") from exc

    # ── Events ────────────────────────────────────────────────────────────────

    async def append_event(self, event):
        return await self._call("append_event", lambda: self.backend.append_event(event))

    async def query_events(self, product=None, since=None, until=None):
        return await self._call(
            "query_events", lambda: self.backend.query_events(product, since, until),
        )

    async def count_events(self, product=None, since=None, until=None):
        return await self._call(
            "count_events", lambda: self.backend.count_events(product, since, until),
        )

    async def list_products(self):
        return await self._call("list_products", self.backend.list_products)

    # ── Deployments ───────────────────────────────────────────────────────────

    async def add_deployment(self, deployment):
        return await self._call("add_deployment", lambda: self.backend.add_deployment(deployment))

    async def get_deployment(self, deployment_id):
        return await self._call(
            "get_deployment", lambda: self.backend.get_deployment(deployment_id),
        )

    async def list_deployments(self, product=None, since=None):
        return await self._call(
            "list_deployments", lambda: self.backend.list_deployments(product, since),
        )

    # ── Spike alerts ──────────────────────────────────────────────────────────

    async def insert_alert_if_quiet(self, alert, quiet_since):
        return await self._call(
            "insert_alert_if_quiet",
            lambda: self.backend.insert_alert_if_quiet(alert, quiet_since),
        )

    async def latest_alert(self, product):
        return await self._call("latest_alert", lambda: self.backend.latest_alert(product))

    async def get_alert(self, alert_id):
        return await self._call("get_alert", lambda: self.backend.get_alert(alert_id))

    async def list_alerts(self, product=None, unacknowledged_only=False):
        return await self._call(
            "list_alerts", lambda: self.backend.list_alerts(product, unacknowledged_only),
        )

    async def acknowledge_alert(self, alert_id, at):
        return await self._call(
            "acknowledge_alert", lambda: self.backend.acknowledge_alert(alert_id, at),
        )

    # ── Status ledger ─────────────────────────────────────────────────────────

    async def upsert_status(self, row):
        return await self._call("upsert_status", lambda: self.backend.upsert_status(row))

    async def upsert_statuses(self, rows):
        return await self._call("upsert_statuses", lambda: self.backend.upsert_statuses(rows))

    async def get_status(self, fingerprint, product):
        return await self._call(
            "get_status", lambda: self.backend.get_status(fingerprint, product),
        )

    async def list_statuses(self, product=None):
        return await self._call("list_statuses", lambda: self.backend.list_statuses(product))
