"""In-memory event store.

Process-local backend used by tests, the CLI demo, and single-instance
deployments that can afford to lose history on restart. No disk, no network.

All state lives in plain lists and dicts guarded by one lock, so concurrent
ingestion threads and the asyncio loop see consistent snapshots. Readers get
copies; stored events are frozen models and safe to share.
"""

import threading
from datetime import datetime

from schemas.alerts import SpikeAlert
from schemas.deployments import Deployment
from schemas.events import ErrorEvent
from schemas.groups import ErrorGroupStatus
from store.base import EventStore
from utils.timeutil import ensure_utc


def _in_range(ts: datetime, since: datetime | None, until: datetime | None) -> bool:
    ts = ensure_utc(ts)
    if since is not None and ts < ensure_utc(since):
        return False
    if until is not None and ts >= ensure_utc(until):
        return False
    return True


class InMemoryEventStore(EventStore):
    """EventStore backed by Python containers.

    Attributes:
        _events: Append-only list of events in insertion order.
        _deployments: Deployments keyed by id.
        _alerts: Spike alerts keyed by id, in insertion order.
        _statuses: Status rows keyed by (fingerprint, product).
    """

    def __init__(self) -> None:
        self._events: list[ErrorEvent] = []
        self._deployments: dict[str, Deployment] = {}
        self._alerts: dict[str, SpikeAlert] = {}
        self._statuses: dict[tuple[str, str], ErrorGroupStatus] = {}
        self._lock = threading.Lock()

    # ── Events ────────────────────────────────────────────────────────────────

    async def append_event(self, event: ErrorEvent) -> ErrorEvent:
        with self._lock:
            self._events.append(event)
        return event

    async def query_events(self, product=None, since=None, until=None) -> list[ErrorEvent]:
        with self._lock:
            snapshot = list(self._events)
        return [
            e for e in snapshot
            if (product is None or e.product == product)
            and _in_range(e.occurred_at, since, until)
        ]

    async def count_events(self, product=None, since=None, until=None) -> int:
        return len(await self.query_events(product, since, until))

    async def list_products(self) -> list[str]:
        with self._lock:
            return sorted({e.product for e in self._events})

    # ── Deployments ───────────────────────────────────────────────────────────

    async def add_deployment(self, deployment: Deployment) -> Deployment:
        with self._lock:
            self._deployments[deployment.id] = deployment
        return deployment

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        with self._lock:
            return self._deployments.get(deployment_id)

    async def list_deployments(self, product=None, since=None) -> list[Deployment]:
        with self._lock:
            snapshot = list(self._deployments.values())
        matches = [
            d for d in snapshot
            if (product is None or d.product == product)
            and _in_range(d.deployed_at, since, None)
        ]
        return sorted(matches, key=lambda d: ensure_utc(d.deployed_at), reverse=True)

    # ── Spike alerts ──────────────────────────────────────────────────────────

    async def insert_alert_if_quiet(self, alert: SpikeAlert, quiet_since: datetime) -> bool:
        with self._lock:
            recent = any(
                a.product == alert.product
                and ensure_utc(a.alerted_at) >= ensure_utc(quiet_since)
                for a in self._alerts.values()
            )
            if recent:
                return False
            self._alerts[alert.id] = alert
            return True

    async def latest_alert(self, product: str) -> SpikeAlert | None:
        with self._lock:
            alerts = [a for a in self._alerts.values() if a.product == product]
        return max(alerts, key=lambda a: ensure_utc(a.alerted_at), default=None)

    async def get_alert(self, alert_id: str) -> SpikeAlert | None:
        with self._lock:
            return self._alerts.get(alert_id)

    async def list_alerts(self, product=None, unacknowledged_only=False) -> list[SpikeAlert]:
        with self._lock:
            snapshot = list(self._alerts.values())
        matches = [
            a for a in snapshot
            if (product is None or a.product == product)
            and not (unacknowledged_only and a.acknowledged)
        ]
        return sorted(matches, key=lambda a: ensure_utc(a.alerted_at), reverse=True)

    async def acknowledge_alert(self, alert_id: str, at: datetime) -> SpikeAlert | None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.acknowledged:
                return alert
            updated = alert.model_copy(update={"acknowledged": True, "acknowledged_at": at})
            self._alerts[alert_id] = updated
            return updated

    # ── Status ledger ─────────────────────────────────────────────────────────

    async def upsert_status(self, row: ErrorGroupStatus) -> ErrorGroupStatus:
        with self._lock:
            self._statuses[(row.fingerprint, row.product)] = row
        return row

    async def upsert_statuses(self, rows: list[ErrorGroupStatus]) -> int:
        with self._lock:
            for row in rows:
                self._statuses[(row.fingerprint, row.product)] = row
        return len(rows)

    async def get_status(self, fingerprint: str, product: str) -> ErrorGroupStatus | None:
        with self._lock:
            return self._statuses.get((fingerprint, product))

    async def list_statuses(self, product=None) -> list[ErrorGroupStatus]:
        with self._lock:
            return [
                s for s in self._statuses.values()
                if product is None or s.product == product
            ]
