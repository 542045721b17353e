"""Group aggregator.

Rolls raw error events up into one ErrorGroup per (fingerprint, product):

    occurrence_count   all events in the group
    affected_users     distinct non-null user_id values
    occurrences_24h    events with occurred_at > now - 24h
    occurrences_7d     events with occurred_at > now - 7d
    first_seen         min occurred_at
    last_seen          max occurred_at
    message / stack    from the representative event (latest occurred_at,
                       ties go to the later-inserted event)

build_groups() is pure: the same events and the same now always give the
same groups. GroupAggregator only adds the store read and the clock.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from schemas.events import ErrorEvent
from schemas.groups import ErrorGroup
from store.base import EventStore
from utils.timeutil import ensure_utc, utc_now

WINDOW_24H = timedelta(hours=24)
WINDOW_7D = timedelta(days=7)


@dataclass
class _Rollup:
    representative: ErrorEvent
    count: int = 0
    users: set[str] = field(default_factory=set)
    count_24h: int = 0
    count_7d: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None


def build_groups(events: list[ErrorEvent], now: datetime) -> list[ErrorGroup]:
    """Aggregate events into groups.

    Args:
        events: Events in insertion order. Order matters only for breaking
            ties between representatives with equal occurred_at.
        now: Reference time for the trailing 24h and 7d counts.

    Returns:
        Groups ordered by last_seen descending, then product and fingerprint.
        Empty list for empty input.
    """
    now = ensure_utc(now)
    cutoff_24h = now - WINDOW_24H
    cutoff_7d = now - WINDOW_7D

    rollups: dict[tuple[str, str], _Rollup] = {}

    for event in events:
        ts = ensure_utc(event.occurred_at)
        key = (event.fingerprint, event.product)
        rollup = rollups.get(key)
        if rollup is None:
            rollup = rollups[key] = _Rollup(representative=event, first_seen=ts, last_seen=ts)

        rollup.count += 1
        if event.user_id is not None:
            rollup.users.add(event.user_id)
        if ts > cutoff_24h:
            rollup.count_24h += 1
        if ts > cutoff_7d:
            rollup.count_7d += 1
        rollup.first_seen = min(rollup.first_seen, ts)
        rollup.last_seen = max(rollup.last_seen, ts)
        # >= so that a later-inserted event wins a tie on occurred_at
        if ts >= ensure_utc(rollup.representative.occurred_at):
            rollup.representative = event

    groups = [
        ErrorGroup(
            fingerprint=fingerprint,
            product=product,
            message=r.representative.message,
            stack_trace=r.representative.stack_trace,
            error_type=r.representative.error_type,
            source=r.representative.source,
            occurrence_count=r.count,
            affected_users=len(r.users),
            occurrences_24h=r.count_24h,
            occurrences_7d=r.count_7d,
            first_seen=r.first_seen,
            last_seen=r.last_seen,
        )
        for (fingerprint, product), r in rollups.items()
    ]
    groups.sort(key=lambda g: (g.product, g.fingerprint))
    groups.sort(key=lambda g: g.last_seen, reverse=True)
    return groups


class GroupAggregator:
    """Computes error groups from the event store on demand.

    Holds no state between calls, so concurrent aggregate() calls are safe
    and need no locking.
    """

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    async def aggregate(
        self,
        product: str | None = None,
        since: datetime | None = None,
    ) -> list[ErrorGroup]:
        """Return groups for one product (or all) from events since a cutoff.

        Args:
            product: Restrict to this product. None means every product.
            since: Only events at or after this time contribute. None means
                all stored events.

        Returns:
            Ordered list of ErrorGroup. Empty if no events match.

        Raises:
            StoreUnavailable: If the event read fails after retry.
        """
        events = await self.store.query_events(product=product, since=since)
        return build_groups(events, self._clock())
