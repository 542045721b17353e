"""Error engine. The top-level orchestrator.

ErrorEngine is the single entry point for the whole system. It wires every
component around one store adapter and one Settings object:

    raw event ──> IngestionGate ──> StoreAdapter ──> backend
                                         │
         GroupAggregator / GroupProjection ┤  (reads)
                             SpikeDetector ┤  (reads, conditional alert insert)
                           DeployCorrelator ┤  (reads)
                              StatusLedger ┘  (status upserts)

Components are created once at construction and reused across calls. The
HTTP layer and the CLI only ever talk to this class.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from aggregation.aggregator import GroupAggregator
from aggregation.projection import GroupProjection
from core.config import Settings
from core.executor import ProductSweep
from core.registry import ProductRegistry
from correlation.deploy_correlator import DeployCorrelator
from detection.alerter import Alerter
from detection.spike_detector import SpikeDetector
from ingestion.gate import IngestionGate, IngestResult
from ingestion.rate_limiter import FixedWindowRateLimiter
from ledger.status_ledger import StatusLedger
from schemas.alerts import SpikeAlert
from schemas.deployments import CorrelationResult, Deployment, DeploySummary
from schemas.groups import ErrorGroupStatus, GroupView
from store.adapter import StoreAdapter
from store.base import EventStore
from store.memory import InMemoryEventStore
from store.rest import RestEventStore
from utils.timeutil import utc_now

logger = logging.getLogger(__name__)


class ErrorEngine:
    """Owns every component and exposes the operations callers need.

    Attributes:
        settings: Validated configuration.
        store: The StoreAdapter every component shares.
        registry: Known products. May be empty, in which case spike sweeps
            cover every product that has stored events.
        gate: Ingestion gate.
        aggregator: On-demand group aggregation.
        projection: Cached group read model.
        detector: Spike detector.
        correlator: Deploy correlator.
        ledger: Status ledger.
    """

    def __init__(
        self,
        store: EventStore,
        settings: Settings | None = None,
        registry: ProductRegistry | None = None,
        alerter: Alerter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Wire the components.

        Args:
            store: A backend or an already-configured StoreAdapter. Bare
                backends are wrapped using the settings' timeout and backoff.
            settings: Configuration. Defaults to Settings() (all defaults).
            registry: Product roster. Defaults to one built from
                settings.products.
            alerter: Receives new spike alerts. Defaults to LoggingAlerter.
            clock: Returns the current UTC time. Injected by tests.
        """
        self.settings = settings or Settings()
        if isinstance(store, StoreAdapter):
            self.store = store
        else:
            self.store = StoreAdapter(
                store,
                timeout_seconds=self.settings.store_timeout_seconds,
                backoff_seconds=self.settings.store_retry_backoff_seconds,
            )
        self.registry = registry or ProductRegistry.from_names(self.settings.product_names)

        self.gate = IngestionGate(
            self.store,
            rate_limiter=FixedWindowRateLimiter(
                limit=self.settings.rate_limit_per_window,
                window_seconds=self.settings.rate_limit_window_seconds,
            ),
            fingerprint_policy=self.settings.fingerprint_policy,
            clock=clock,
        )
        self.aggregator = GroupAggregator(self.store, clock=clock)
        self.projection = GroupProjection(self.aggregator, clock=clock)
        self.detector = SpikeDetector(
            self.store,
            alerter=alerter,
            sweep=ProductSweep(),
            threshold_multiplier=self.settings.spike_threshold_multiplier,
            cooldown_hours=self.settings.spike_cooldown_hours,
            absolute_floor=self.settings.spike_absolute_floor,
            product_names=self.registry.display_names(),
            clock=clock,
        )
        self.correlator = DeployCorrelator(self.store, clock=clock)
        self.ledger = StatusLedger(self.store, clock=clock)

    # ── Ingestion ─────────────────────────────────────────────────────────────

    async def ingest(self, payload: Any) -> IngestResult:
        return await self.gate.ingest(payload)

    # ── Groups ────────────────────────────────────────────────────────────────

    async def groups(self, product: str | None = None) -> list[GroupView]:
        """Return groups from the projection with operator status overlaid."""
        groups = await self.projection.groups(product)
        return await self.ledger.overlay(groups, product)

    async def refresh_groups(self) -> int:
        return len(await self.projection.refresh())

    async def get_group(self, fingerprint: str, product: str) -> GroupView:
        """Return one group with its status.

        Raises:
            NotFound: If the group is not in the projection.
        """
        group = await self.projection.get_group(fingerprint, product)
        views = await self.ledger.overlay([group], product)
        return views[0]

    async def set_status(self, fingerprint: str, product: str, status: str,
                         notes: str | None = None) -> ErrorGroupStatus:
        return await self.ledger.set_status(fingerprint, product, status, notes)

    async def bulk_set_status(self, items: Any, status: str) -> int:
        return await self.ledger.bulk_set_status(items, status)

    # ── Spikes ────────────────────────────────────────────────────────────────

    async def detect_spikes(
        self,
        threshold_multiplier: float | None = None,
        cooldown_hours: float | None = None,
    ) -> list[SpikeAlert]:
        """Run one spike sweep.

        Registered active products are checked when the registry is
        non-empty; otherwise every product with stored events is.
        """
        products = self.registry.active_keys() or None
        return await self.detector.detect_spikes(threshold_multiplier, cooldown_hours, products)

    async def acknowledge_spike(self, alert_id: str) -> SpikeAlert:
        return await self.detector.acknowledge(alert_id)

    async def list_spikes(self, product: str | None = None,
                          unacknowledged_only: bool = False) -> list[SpikeAlert]:
        return await self.detector.list_alerts(product, unacknowledged_only)

    # ── Deployments ───────────────────────────────────────────────────────────

    async def record_deployment(self, deployment: Deployment) -> Deployment:
        stored = await self.store.add_deployment(deployment)
        logger.info(
            "Recorded deployment %s for %s at %s (%s).",
            stored.id, stored.product, stored.deployed_at.isoformat(), stored.commit_hash or "no commit",
        )
        return stored

    async def correlate_deployment(self, deployment_id: str, **kwargs) -> CorrelationResult:
        return await self.correlator.correlate_by_id(deployment_id, **kwargs)

    async def summarize_deployments(self, product: str | None = None,
                                    days: int = 7) -> list[DeploySummary]:
        return await self.correlator.summarize(product, days)

    async def aclose(self) -> None:
        backend = self.store.backend
        if isinstance(backend, RestEventStore):
            await backend.aclose()


def build_engine(settings: Settings, alerter: Alerter | None = None) -> ErrorEngine:
    """Create an engine with the backend selected by settings.store_backend.

    Raises:
        ValueError: If the REST backend is selected without URL and key.
    """
    if settings.store_backend == "rest":
        if not settings.store_rest_url or not settings.store_rest_key:
            raise ValueError("STORE_REST_URL and STORE_REST_KEY are required when STORE_BACKEND=rest.")
        backend: EventStore = RestEventStore(settings.store_rest_url, settings.store_rest_key)
    else:
        backend = InMemoryEventStore()

    logger.info("Error engine starting with %s store backend.", settings.store_backend)
    return ErrorEngine(backend, settings=settings, alerter=alerter)
