"""EventStore abstract base class.

Defines the interface every storage backend must implement. The engine's
components depend only on this interface, never on a concrete backend.
Moving from the in-memory store to the REST backend (or any other) means
writing a new class that satisfies this interface, with no changes to the
aggregator, detector, correlator, or ledger.

Contract shared by every backend:
    - Events are append-only. Nothing updates or deletes an event.
    - Time ranges are half-open: since is inclusive, until is exclusive.
    - query_events returns events in insertion order.
    - insert_alert_if_quiet is atomic with respect to other inserts for the
      same product.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from schemas.alerts import SpikeAlert
from schemas.deployments import Deployment
from schemas.events import ErrorEvent
from schemas.groups import ErrorGroupStatus


class StoreBackendError(Exception):
    """A backend failed in a way that is worth one retry.

    Backends raise this for transport failures and unexpected server
    responses. StoreAdapter retries it once and then reports
    StoreUnavailable.
    """


class EventStore(ABC):
    """Abstract base class for all event store backends.

    Components receive an EventStore (normally wrapped in a StoreAdapter)
    at construction time.
    """

    # ── Events ────────────────────────────────────────────────────────────────

    @abstractmethod
    async def append_event(self, event: ErrorEvent) -> ErrorEvent:
        """Persist one event and return it as stored."""
        ...

    @abstractmethod
    async def query_events(
        self,
        product: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ErrorEvent]:
        """Return events matching the filters, in insertion order.

        Args:
            product: Only events for this product. None means all products.
            since: Inclusive lower bound on occurred_at. None means unbounded.
            until: Exclusive upper bound on occurred_at. None means unbounded.
        """
        ...

    @abstractmethod
    async def count_events(
        self,
        product: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        """Return the number of events query_events would return."""
        ...

    @abstractmethod
    async def list_products(self) -> list[str]:
        """Return every product that has at least one stored event, sorted."""
        ...

    # ── Deployments ───────────────────────────────────────────────────────────

    @abstractmethod
    async def add_deployment(self, deployment: Deployment) -> Deployment:
        ...

    @abstractmethod
    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        ...

    @abstractmethod
    async def list_deployments(
        self,
        product: str | None = None,
        since: datetime | None = None,
    ) -> list[Deployment]:
        """Return deployments newest first."""
        ...

    # ── Spike alerts ──────────────────────────────────────────────────────────

    @abstractmethod
    async def insert_alert_if_quiet(self, alert: SpikeAlert, quiet_since: datetime) -> bool:
        """Insert alert unless the product already has one at or after quiet_since.

        Acknowledged alerts count. The check and the insert must be atomic
        for a given product.

        Returns:
            True if the alert was inserted, False if it was suppressed.
        """
        ...

    @abstractmethod
    async def latest_alert(self, product: str) -> SpikeAlert | None:
        """Return the product's most recent alert by alerted_at, or None."""
        ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> SpikeAlert | None:
        ...

    @abstractmethod
    async def list_alerts(
        self,
        product: str | None = None,
        unacknowledged_only: bool = False,
    ) -> list[SpikeAlert]:
        """Return alerts newest first."""
        ...

    @abstractmethod
    async def acknowledge_alert(self, alert_id: str, at: datetime) -> SpikeAlert | None:
        """Mark an alert acknowledged and return it.

        Acknowledging an already-acknowledged alert leaves acknowledged_at
        unchanged. Returns None if alert_id is unknown.
        """
        ...

    # ── Status ledger ─────────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_status(self, row: ErrorGroupStatus) -> ErrorGroupStatus:
        """Insert or fully replace the row for (row.fingerprint, row.product)."""
        ...

    @abstractmethod
    async def upsert_statuses(self, rows: list[ErrorGroupStatus]) -> int:
        """Upsert many rows in one call and return how many were written."""
        ...

    @abstractmethod
    async def get_status(self, fingerprint: str, product: str) -> ErrorGroupStatus | None:
        ...

    @abstractmethod
    async def list_statuses(self, product: str | None = None) -> list[ErrorGroupStatus]:
        ...
