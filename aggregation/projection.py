"""Refreshable group projection.

A cached read model over GroupAggregator. Reads serve the last computed
snapshot; refresh() recomputes it and swaps it in whole, so a reader never
sees a half-built list. Until the first refresh, reads trigger one.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from aggregation.aggregator import GroupAggregator
from core.errors import NotFound
from schemas.groups import ErrorGroup
from utils.timeutil import utc_now

logger = logging.getLogger(__name__)

# Groups with no events in this window drop out of the projection.
DEFAULT_LOOKBACK = timedelta(days=90)


class GroupProjection:
    """Snapshot of every error group, refreshed on demand.

    Attributes:
        aggregator: Source of truth for recomputation.
        lookback: Only events newer than now - lookback are included.
        refreshed_at: Time of the last successful refresh, or None.
    """

    def __init__(
        self,
        aggregator: GroupAggregator,
        lookback: timedelta = DEFAULT_LOOKBACK,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.aggregator = aggregator
        self.lookback = lookback
        self.refreshed_at: datetime | None = None
        self._clock = clock
        self._groups: list[ErrorGroup] | None = None
        self._refresh_lock = asyncio.Lock()

    async def refresh(self) -> list[ErrorGroup]:
        """Recompute every group and replace the snapshot.

        Concurrent refresh() calls are serialized. A failed refresh leaves
        the previous snapshot in place and re-raises.
        """
        async with self._refresh_lock:
            now = self._clock()
            groups = await self.aggregator.aggregate(since=now - self.lookback)
            self._groups = groups
            self.refreshed_at = now
        logger.info("Group projection refreshed: %d groups.", len(groups))
        return groups

    async def groups(self, product: str | None = None) -> list[ErrorGroup]:
        snapshot = self._groups
        if snapshot is None:
            snapshot = await self.refresh()
        return [g for g in snapshot if product is None or g.product == product]

    async def get_group(self, fingerprint: str, product: str) -> ErrorGroup:
        """Return one group from the snapshot.

        Raises:
            NotFound: If no group with this key exists in the snapshot.
        """
        for group in await self.groups(product):
            if group.fingerprint == fingerprint:
                return group
        raise NotFound(f"Error group '{fingerprint}' not found for product '{product}'.")
