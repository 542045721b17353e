"""REST event store backend.

Talks to a PostgREST-compatible HTTP API (for example a hosted Postgres with
its REST gateway) over httpx. Tables:

    auto_errors          one row per ErrorEvent
    deployments          one row per Deployment
    error_spike_alerts   one row per SpikeAlert
    error_group_status   one row per (fingerprint, product), PK on both
    bcc_products         product roster, filtered on is_active

The debounced alert insert is a server-side function so the quiet-period
check and the insert run in one transaction:

    POST /rpc/insert_spike_alert_if_quiet  -> true | false

Non-2xx responses raise httpx.HTTPStatusError via raise_for_status(). The
StoreAdapter wrapping this backend turns repeated failures into
StoreUnavailable.

Required settings:
    STORE_REST_URL: Base URL of the project (the /rest/v1 suffix is added).
    STORE_REST_KEY: Service key sent as both apikey and bearer token.
"""

import logging
import re
from datetime import datetime

import httpx

from schemas.alerts import SpikeAlert
from schemas.deployments import Deployment
from schemas.events import ErrorEvent
from schemas.groups import ErrorGroupStatus
from store.base import EventStore, StoreBackendError
from utils.timeutil import isoformat_z

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000

EVENTS_TABLE = "auto_errors"
DEPLOYMENTS_TABLE = "deployments"
ALERTS_TABLE = "error_spike_alerts"
STATUS_TABLE = "error_group_status"
PRODUCTS_TABLE = "bcc_products"
ALERT_RPC = "insert_spike_alert_if_quiet"

_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)$")

# ErrorEvent field -> auto_errors column, where they differ.
_EVENT_COLUMNS = {"message": "error_message", "occurred_at": "created_at"}


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def event_to_row(event: ErrorEvent) -> dict:
    row = event.model_dump(mode="json")
    for field, column in _EVENT_COLUMNS.items():
        row[column] = row.pop(field)
    return row


def row_to_event(row: dict) -> ErrorEvent:
    data = dict(row)
    for field, column in _EVENT_COLUMNS.items():
        data[field] = data.pop(column)
    data["metadata"] = data.get("metadata") or {}
    return ErrorEvent.model_validate(data)


def _time_filters(column: str, since: datetime | None, until: datetime | None) -> list[tuple[str, str]]:
    filters = []
    if since is not None:
        filters.append((column, f"gte.{isoformat_z(since)}"))
    if until is not None:
        filters.append((column, f"lt.{isoformat_z(until)}"))
    return filters


class RestEventStore(EventStore):
    """EventStore backed by a PostgREST HTTP API.

    One httpx.AsyncClient is held for the life of the store; call aclose()
    on shutdown.

    Attributes:
        client: Configured async HTTP client.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            base_url: Project URL, e.g. "https://xyz.example.co".
            api_key: Service key with read/write access to the tables.
            timeout: httpx-level timeout. The adapter applies its own too.
            transport: Optional transport override. Tests pass
                httpx.MockTransport.
        """
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _select(self, table: str, params: list[tuple[str, str]]) -> list[dict]:
        """GET every matching row, following pages of PAGE_SIZE."""
        rows: list[dict] = []
        offset = 0
        while True:
            page_params = params + [("limit", str(PAGE_SIZE)), ("offset", str(offset))]
            resp = await self.client.get(f"/{table}", params=page_params)
            resp.raise_for_status()
            page = resp.json()
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    async def _insert(self, table: str, row: dict) -> dict:
        resp = await self.client.post(
            f"/{table}", json=row, headers={"Prefer": "return=representation"},
        )
        resp.raise_for_status()
        created = resp.json()
        return created[0] if isinstance(created, list) and created else row

    # ── Events ────────────────────────────────────────────────────────────────

    async def append_event(self, event: ErrorEvent) -> ErrorEvent:
        await self._insert(EVENTS_TABLE, event_to_row(event))
        return event

    def _event_params(self, product, since, until) -> list[tuple[str, str]]:
        params = [("select", "*")]
        if product is not None:
            params.append(("product", f"eq.{product}"))
        params.extend(_time_filters("created_at", since, until))
        return params

    async def query_events(self, product=None, since=None, until=None) -> list[ErrorEvent]:
        params = self._event_params(product, since, until) + [("order", "created_at.asc,id.asc")]
        rows = await self._select(EVENTS_TABLE, params)
        return [row_to_event(r) for r in rows]

    async def count_events(self, product=None, since=None, until=None) -> int:
        """Count with a HEAD request; the total is in the Content-Range header."""
        params = self._event_params(product, since, until)
        params[0] = ("select", "id")
        resp = await self.client.head(
            f"/{EVENTS_TABLE}", params=params, headers={"Prefer": "count=exact"},
        )
        resp.raise_for_status()
        match = _CONTENT_RANGE_TOTAL.search(resp.headers.get("content-range", ""))
        if match is None:
            raise StoreBackendError(
                f"Count response missing Content-Range total: {resp.headers.get('content-range')!r}"
            )
        return int(match.group(1))

    async def list_products(self) -> list[str]:
        """Return active products from the roster table.

        PostgREST has no DISTINCT, so the roster stands in for "products
        with events".
        """
        rows = await self._select(
            PRODUCTS_TABLE, [("select", "id"), ("is_active", "eq.true"), ("order", "id.asc")],
        )
        return [r["id"] for r in rows]

    # ── Deployments ───────────────────────────────────────────────────────────

    async def add_deployment(self, deployment: Deployment) -> Deployment:
        await self._insert(DEPLOYMENTS_TABLE, deployment.model_dump(mode="json"))
        return deployment

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        rows = await self._select(
            DEPLOYMENTS_TABLE, [("select", "*"), ("id", f"eq.{deployment_id}")],
        )
        return Deployment.model_validate(rows[0]) if rows else None

    async def list_deployments(self, product=None, since=None) -> list[Deployment]:
        params = [("select", "*")]
        if product is not None:
            params.append(("product", f"eq.{product}"))
        params.extend(_time_filters("deployed_at", since, None))
        params.append(("order", "deployed_at.desc"))
        rows = await self._select(DEPLOYMENTS_TABLE, params)
        return [Deployment.model_validate(r) for r in rows]

    # ── Spike alerts ──────────────────────────────────────────────────────────

    async def insert_alert_if_quiet(self, alert: SpikeAlert, quiet_since: datetime) -> bool:
        payload = {
            "p_alert": alert.model_dump(mode="json"),
            "p_quiet_since": isoformat_z(quiet_since),
        }
        resp = await self.client.post(f"/rpc/{ALERT_RPC}", json=payload)
        resp.raise_for_status()
        inserted = resp.json()
        if not isinstance(inserted, bool):
            raise StoreBackendError(f"{ALERT_RPC} returned {inserted!r}, expected a boolean.")
        return inserted

    async def latest_alert(self, product: str) -> SpikeAlert | None:
        resp = await self.client.get(
            f"/{ALERTS_TABLE}",
            params=[
                ("select", "*"),
                ("product", f"eq.{product}"),
                ("order", "alerted_at.desc"),
                ("limit", "1"),
            ],
        )
        resp.raise_for_status()
        rows = resp.json()
        return SpikeAlert.model_validate(rows[0]) if rows else None

    async def get_alert(self, alert_id: str) -> SpikeAlert | None:
        rows = await self._select(ALERTS_TABLE, [("select", "*"), ("id", f"eq.{alert_id}")])
        return SpikeAlert.model_validate(rows[0]) if rows else None

    async def list_alerts(self, product=None, unacknowledged_only=False) -> list[SpikeAlert]:
        params = [("select", "*")]
        if product is not None:
            params.append(("product", f"eq.{product}"))
        if unacknowledged_only:
            params.append(("acknowledged", "eq.false"))
        params.append(("order", "alerted_at.desc"))
        rows = await self._select(ALERTS_TABLE, params)
        return [SpikeAlert.model_validate(r) for r in rows]

    async def acknowledge_alert(self, alert_id: str, at: datetime) -> SpikeAlert | None:
        # Filtering on acknowledged=false keeps the first acknowledged_at.
        resp = await self.client.patch(
            f"/{ALERTS_TABLE}",
            params=[("id", f"eq.{alert_id}"), ("acknowledged", "eq.false")],
            json={"acknowledged": True, "acknowledged_at": isoformat_z(at)},
            headers={"Prefer": "return=representation"},
        )
        resp.raise_for_status()
        rows = resp.json()
        if rows:
            return SpikeAlert.model_validate(rows[0])
        return await self.get_alert(alert_id)

    # ── Status ledger ─────────────────────────────────────────────────────────

    async def upsert_statuses(self, rows: list[ErrorGroupStatus]) -> int:
        if not rows:
            return 0
        resp = await self.client.post(
            f"/{STATUS_TABLE}",
            params={"on_conflict": "fingerprint,product"},
            json=[r.model_dump(mode="json") for r in rows],
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        resp.raise_for_status()
        return len(resp.json())

    async def upsert_status(self, row: ErrorGroupStatus) -> ErrorGroupStatus:
        await self.upsert_statuses([row])
        return row

    async def get_status(self, fingerprint: str, product: str) -> ErrorGroupStatus | None:
        rows = await self._select(
            STATUS_TABLE,
            [("select", "*"), ("fingerprint", f"eq.{fingerprint}"), ("product", f"eq.{product}")],
        )
        return ErrorGroupStatus.model_validate(rows[0]) if rows else None

    async def list_statuses(self, product=None) -> list[ErrorGroupStatus]:
        params = [("select", "*")]
        if product is not None:
            params.append(("product", f"eq.{product}"))
        rows = await self._select(STATUS_TABLE, params)
        return [ErrorGroupStatus.model_validate(r) for r in rows]
