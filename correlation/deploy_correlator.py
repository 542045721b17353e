"""Deploy correlator. Error volume around a deployment, bucketed and badged.

For a deployment at time d with window w and bucket size b:

    buckets     every b-sized bucket from floor(d - w) onward,
                ceil(2w / b) + 1 of them, empty ones included
    new errors  fingerprints with >= 1 event in [d, d + w] and none in
                [d - w, d), at most 3, by first appearance after d
    pre_count   events in [d - 1h, d)
    post_count  events in [d, d + 1h)

Badge rules, first match wins:

    pre == 0 and post == 0     none   pct 0
    post > 2 * pre             red    pct round((post - pre) / pre * 100), or 100 if pre == 0
    pre > 0 and post < pre / 2 green  pct round((pre - post) / pre * 100)
    otherwise                  gray   pct 0
"""

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from core.errors import InvalidInput, NotFound
from schemas.deployments import (
    Badge,
    CorrelationResult,
    DeployCorrelation,
    Deployment,
    DeploySummary,
    NewError,
    TimeBucket,
)
from schemas.events import ErrorEvent
from store.base import EventStore
from utils.timeutil import ensure_utc, floor_to_bucket, utc_now

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 1
DEFAULT_BUCKET_MINUTES = 15
COMPARISON_WINDOW = timedelta(hours=1)
MAX_NEW_ERRORS = 3
MAX_BUCKETS = 10_000

RED_RATIO = 2.0    # post must exceed this multiple of pre
GREEN_RATIO = 0.5  # post must fall below this fraction of pre


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def classify_badge(
    pre_count: int,
    post_count: int,
    red_ratio: float = RED_RATIO,
    green_ratio: float = GREEN_RATIO,
) -> DeployCorrelation:
    """Compare error counts either side of a deploy and pick a badge."""
    if pre_count == 0 and post_count == 0:
        badge, pct = Badge.NONE, 0
    elif post_count > pre_count * red_ratio:
        badge = Badge.RED
        pct = _round_half_up((post_count - pre_count) / pre_count * 100) if pre_count > 0 else 100
    elif pre_count > 0 and post_count < pre_count * green_ratio:
        badge = Badge.GREEN
        pct = _round_half_up((pre_count - post_count) / pre_count * 100)
    else:
        badge, pct = Badge.GRAY, 0

    return DeployCorrelation(
        pre_count=pre_count, post_count=post_count, badge=badge, pct_change=pct,
    )


def build_buckets(
    events: list[ErrorEvent],
    start: datetime,
    window: timedelta,
    bucket: timedelta,
) -> list[TimeBucket]:
    """Count events into every bucket of a window, including empty buckets.

    Args:
        events: Events to count. Events outside the bucket range are ignored.
        start: Window start (deployed_at - window). Floored to a bucket edge.
        window: Half-width of the window around the deploy.
        bucket: Bucket width.

    Returns:
        ceil(2 * window / bucket) + 1 buckets in ascending order.
    """
    first = floor_to_bucket(start, bucket)
    n = math.ceil(2 * window / bucket) + 1
    starts = [first + i * bucket for i in range(n)]
    counts = dict.fromkeys(starts, 0)

    for event in events:
        key = floor_to_bucket(event.occurred_at, bucket)
        if key in counts:
            counts[key] += 1

    return [TimeBucket(bucket_start=s, count=counts[s]) for s in starts]


def find_new_errors(
    events: list[ErrorEvent],
    deployed_at: datetime,
    limit: int = MAX_NEW_ERRORS,
) -> list[NewError]:
    """Fingerprints that appear only at or after the deploy, in first-seen order."""
    deployed_at = ensure_utc(deployed_at)
    ordered = sorted(events, key=lambda e: ensure_utc(e.occurred_at))

    before = {e.fingerprint for e in ordered if ensure_utc(e.occurred_at) < deployed_at}
    found: dict[str, str] = {}
    for event in ordered:
        if ensure_utc(event.occurred_at) < deployed_at:
            continue
        if event.fingerprint in before or event.fingerprint in found:
            continue
        found[event.fingerprint] = event.message
        if len(found) >= limit:
            break

    return [NewError(fingerprint=fp, message=msg) for fp, msg in found.items()]


class DeployCorrelator:
    """Correlates deployments with error volume from the event store.

    Read-only over the store, so concurrent calls need no locking.
    """

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    async def correlate(
        self,
        deployment: Deployment,
        window_hours: float = DEFAULT_WINDOW_HOURS,
        bucket_minutes: float = DEFAULT_BUCKET_MINUTES,
    ) -> CorrelationResult:
        """Bucket errors around a deployment and classify its impact.

        Args:
            deployment: The deployment to correlate.
            window_hours: Half-width of the bucketed window. Must be > 0.
            bucket_minutes: Bucket width. Must be > 0.

        Returns:
            CorrelationResult with buckets, new errors, and badge. Never
            fails on a product with no events.

        Raises:
            InvalidInput: If window_hours or bucket_minutes is not positive,
                the bucket is narrower than 1 ms, or the window would need
                more than MAX_BUCKETS buckets.
            StoreUnavailable: If the store read fails after retry.
        """
        if window_hours <= 0 or bucket_minutes <= 0:
            raise InvalidInput("window_hours and bucket_minutes must be positive.")

        deployed_at = ensure_utc(deployment.deployed_at)
        try:
            window = timedelta(hours=window_hours)
            # Buckets are whole milliseconds so bucket keys stay exact.
            bucket = timedelta(milliseconds=round(bucket_minutes * 60_000))
            start, end = deployed_at - window, deployed_at + window
            # until is exclusive; widen by 1us so an event exactly at end counts.
            until = end + timedelta(microseconds=1)
        except (OverflowError, ValueError):
            raise InvalidInput("window_hours or bucket_minutes is out of range.") from None
        if not bucket:
            raise InvalidInput("bucket_minutes must be at least 1 millisecond.")
        if math.ceil(2 * window / bucket) + 1 > MAX_BUCKETS:
            raise InvalidInput(f"window_hours / bucket_minutes would produce more than {MAX_BUCKETS} buckets.")

        events = await self.store.query_events(deployment.product, since=start, until=until)

        correlation = await self._compare(deployment.product, deployed_at)

        return CorrelationResult(
            deployment_id=deployment.id,
            product=deployment.product,
            deployed_at=deployed_at,
            buckets=build_buckets(events, start, window, bucket),
            new_errors=find_new_errors(events, deployed_at),
            correlation=correlation,
        )

    async def correlate_by_id(self, deployment_id: str, **kwargs) -> CorrelationResult:
        """Look up a deployment and correlate it.

        Raises:
            NotFound: If no deployment has this id.
        """
        deployment = await self.store.get_deployment(deployment_id)
        if deployment is None:
            raise NotFound("Deployment not found")
        return await self.correlate(deployment, **kwargs)

    async def summarize(self, product: str | None = None, days: int = 7) -> list[DeploySummary]:
        """Badge every deployment from the last `days` days, newest first."""
        try:
            since = self._clock() - timedelta(days=days)
        except OverflowError:
            raise InvalidInput("days is out of range.") from None
        deployments = await self.store.list_deployments(product, since=since)
        summaries = []
        for deployment in deployments:
            correlation = await self._compare(deployment.product, ensure_utc(deployment.deployed_at))
            summaries.append(DeploySummary(deployment=deployment, correlation=correlation))
        return summaries

    async def _compare(self, product: str, deployed_at: datetime) -> DeployCorrelation:
        pre = await self.store.count_events(
            product, since=deployed_at - COMPARISON_WINDOW, until=deployed_at,
        )
        post = await self.store.count_events(
            product, since=deployed_at, until=deployed_at + COMPARISON_WINDOW,
        )
        return classify_badge(pre, post)
