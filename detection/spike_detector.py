"""Spike detector. Compares each product's last hour against its weekly baseline.

For each product at time now:

    current  = events in [now - 1h, now]
    baseline = events in [now - 7d, now - 1h) / 167     (avg per hour)

    baseline > 0  and current >= threshold * baseline   -> spike
    baseline == 0 and current >  absolute_floor         -> new-errors spike
    otherwise                                           -> no alert

A spike only produces an alert if the product has no alert (acknowledged or
not) with alerted_at inside the cooldown window. The cooldown is read from
the store, never from process memory, so it holds across restarts and across
instances. The insert itself is conditional in the store and also guarded by
a per-product lock within this process.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta

from core.errors import NotFound
from core.executor import ProductSweep
from detection.alerter import Alerter, LoggingAlerter, SpikeNotice
from schemas.alerts import SpikeAlert
from store.base import EventStore
from utils.timeutil import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_MULTIPLIER = 3.0
DEFAULT_COOLDOWN_HOURS = 2.0
DEFAULT_ABSOLUTE_FLOOR = 5

CURRENT_WINDOW = timedelta(hours=1)
BASELINE_WINDOW = timedelta(days=7)
BASELINE_HOURS = 167  # 7 * 24 - the current hour
TOP_FINGERPRINTS = 3


def classify(
    current: int,
    baseline: float,
    threshold_multiplier: float = DEFAULT_THRESHOLD_MULTIPLIER,
    absolute_floor: int = DEFAULT_ABSOLUTE_FLOOR,
) -> float | None:
    """Decide whether counts constitute a spike.

    Args:
        current: Events in the trailing hour.
        baseline: Average events per hour over the baseline window.
        threshold_multiplier: Required current / baseline ratio.
        absolute_floor: With zero baseline, current must exceed this.

    Returns:
        The spike multiplier if this is a spike, else None. For a zero
        baseline the multiplier is current itself.
    """
    if baseline <= 0:
        return float(current) if current > absolute_floor else None
    if current >= threshold_multiplier * baseline:
        return current / baseline
    return None


class SpikeDetector:
    """Detects hourly error spikes per product and records alerts.

    Attributes:
        store: Event and alert storage.
        alerter: Receives every newly inserted alert.
        sweep: Runs per-product checks concurrently with fault isolation.
        threshold_multiplier: Default ratio for detect_spikes().
        cooldown_hours: Default debounce window for detect_spikes().
        absolute_floor: Zero-baseline floor.
        product_names: Optional product key -> display name, for alerts.
    """

    def __init__(
        self,
        store: EventStore,
        alerter: Alerter | None = None,
        sweep: ProductSweep | None = None,
        threshold_multiplier: float = DEFAULT_THRESHOLD_MULTIPLIER,
        cooldown_hours: float = DEFAULT_COOLDOWN_HOURS,
        absolute_floor: int = DEFAULT_ABSOLUTE_FLOOR,
        product_names: dict[str, str] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.alerter = alerter or LoggingAlerter()
        self.sweep = sweep or ProductSweep()
        self.threshold_multiplier = threshold_multiplier
        self.cooldown_hours = cooldown_hours
        self.absolute_floor = absolute_floor
        self.product_names = product_names or {}
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def detect_spikes(
        self,
        threshold_multiplier: float | None = None,
        cooldown_hours: float | None = None,
        products: list[str] | None = None,
    ) -> list[SpikeAlert]:
        """Check every product and return the alerts created by this run.

        Products whose check fails are logged and skipped; the rest are
        still checked.

        Args:
            threshold_multiplier: Overrides the configured multiplier.
            cooldown_hours: Overrides the configured cooldown.
            products: Products to check. Defaults to every product the
                store knows about.

        Returns:
            Newly created alerts, in product order. Empty when nothing
            spiked or every spike was inside its cooldown.
        """
        threshold = self.threshold_multiplier if threshold_multiplier is None else threshold_multiplier
        cooldown = self.cooldown_hours if cooldown_hours is None else cooldown_hours
        if products is None:
            products = await self.store.list_products()

        now = self._clock()
        results = await self.sweep.run(
            products, lambda product: self.check_product(product, threshold, cooldown, now),
        )
        alerts = [alert for alert in results.values() if alert is not None]
        logger.info("Spike detection checked %d products, %d new alerts.", len(products), len(alerts))
        return alerts

    async def check_product(
        self,
        product: str,
        threshold_multiplier: float,
        cooldown_hours: float,
        now: datetime | None = None,
    ) -> SpikeAlert | None:
        """Check one product and insert an alert if it spiked.

        Returns:
            The inserted alert, or None if there was no spike or the product
            was inside its cooldown.
        """
        now = ensure_utc(now or self._clock())
        hour_ago = now - CURRENT_WINDOW

        async with self._locks[product]:
            current = await self.store.count_events(product, since=hour_ago)
            baseline_count = await self.store.count_events(
                product, since=now - BASELINE_WINDOW, until=hour_ago,
            )
            baseline = baseline_count / BASELINE_HOURS

            multiplier = classify(current, baseline, threshold_multiplier, self.absolute_floor)
            if multiplier is None:
                return None

            quiet_since = now - timedelta(hours=cooldown_hours)
            latest = await self.store.latest_alert(product)
            if latest is not None and ensure_utc(latest.alerted_at) >= quiet_since:
                logger.debug("Spike for '%s' suppressed by cooldown (last alert %s).", product, latest.alerted_at)
                return None

            top = await self._top_errors(product, hour_ago)
            alert = SpikeAlert(
                product=product,
                current_count=current,
                baseline_avg=round(baseline, 2),
                spike_multiplier=round(multiplier, 1),
                top_fingerprints=list(top),
                alerted_at=now,
            )
            if not await self.store.insert_alert_if_quiet(alert, quiet_since):
                logger.debug("Spike for '%s' suppressed by conditional insert.", product)
                return None

        logger.info(
            "Spike detected for %s: %d errors (%.1fx baseline).",
            product, current, alert.spike_multiplier,
        )
        await self._notify(alert, list(top.values()))
        return alert

    async def acknowledge(self, alert_id: str) -> SpikeAlert:
        """Acknowledge an alert. Idempotent.

        Raises:
            NotFound: If no alert has this id.
        """
        alert = await self.store.acknowledge_alert(alert_id, self._clock())
        if alert is None:
            raise NotFound(f"Spike alert '{alert_id}' not found.")
        return alert

    async def list_alerts(
        self,
        product: str | None = None,
        unacknowledged_only: bool = False,
    ) -> list[SpikeAlert]:
        return await self.store.list_alerts(product, unacknowledged_only)

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _top_errors(self, product: str, since: datetime) -> dict[str, str]:
        """Most recent distinct fingerprints since a cutoff, mapped to a message."""
        events = await self.store.query_events(product, since=since)
        # Stable sort keeps insertion order among equal timestamps; reversing
        # makes the later-inserted event come first.
        ordered = sorted(events, key=lambda e: ensure_utc(e.occurred_at))
        top: dict[str, str] = {}
        for event in reversed(ordered):
            if event.fingerprint not in top:
                top[event.fingerprint] = event.message
            if len(top) >= TOP_FINGERPRINTS:
                break
        return top

    async def _notify(self, alert: SpikeAlert, top_messages: list[str]) -> None:
        notice = SpikeNotice(
            alert=alert,
            product_name=self.product_names.get(alert.product, alert.product),
            top_messages=top_messages,
        )
        try:
            await self.alerter.send(notice)
        except Exception:
            logger.exception("Alerter failed for spike alert %s; alert is kept.", alert.id)
