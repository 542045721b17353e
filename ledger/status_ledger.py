"""Status ledger. Operator lifecycle state per (fingerprint, product).

Writes are full-row upserts with last-writer-wins semantics:

    status == resolved  -> resolved_at = now
    otherwise           -> resolved_at = None
    always              -> updated_at  = now

A key with no row reads as "active". The ledger never touches events or
groups; overlay() joins it onto groups at read time.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from core.errors import InvalidInput, StoreUnavailable
from schemas.groups import ErrorGroup, ErrorGroupStatus, GroupStatus, GroupView
from store.base import EventStore
from utils.timeutil import utc_now

logger = logging.getLogger(__name__)

BULK_MAX_ITEMS = 200

_STATUSES = [s.value for s in GroupStatus]


def parse_status(value: Any) -> GroupStatus:
    try:
        return GroupStatus(value)
    except (ValueError, TypeError):
        raise InvalidInput(f"status must be one of: {', '.join(_STATUSES)}") from None


def _parse_items(items: Any) -> list[tuple[str, str, str | None]]:
    """Validate a bulk item list; the whole call fails on any bad item."""
    if not isinstance(items, list) or not items:
        raise InvalidInput("items must be a non-empty array")
    if len(items) > BULK_MAX_ITEMS:
        raise InvalidInput(f"Maximum {BULK_MAX_ITEMS} items per request")

    parsed = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidInput("Each item must have fingerprint and product strings")
        fingerprint, product = item.get("fingerprint"), item.get("product")
        if not isinstance(fingerprint, str) or not isinstance(product, str) or not fingerprint or not product:
            raise InvalidInput("Each item must have fingerprint and product strings")
        notes = item.get("notes")
        parsed.append((fingerprint, product, notes if isinstance(notes, str) else None))
    return parsed


class StatusLedger:
    """Reads and writes ErrorGroupStatus rows."""

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    def _row(self, fingerprint: str, product: str, status: GroupStatus,
             notes: str | None, now: datetime) -> ErrorGroupStatus:
        return ErrorGroupStatus(
            fingerprint=fingerprint,
            product=product,
            status=status,
            notes=notes,
            resolved_at=now if status == GroupStatus.RESOLVED else None,
            updated_at=now,
        )

    async def set_status(
        self,
        fingerprint: str,
        product: str,
        status: GroupStatus | str,
        notes: str | None = None,
    ) -> ErrorGroupStatus:
        """Upsert the status row for one group.

        Raises:
            InvalidInput: Unknown status or empty key.
            StoreUnavailable: Store write failed after retry.
        """
        if not fingerprint or not product:
            raise InvalidInput("fingerprint and product are required")
        row = self._row(fingerprint, product, parse_status(status), notes, self._clock())
        stored = await self.store.upsert_status(row)
        logger.info("Status of %s/%s set to %s.", product, fingerprint, row.status.value)
        return stored

    async def bulk_set_status(self, items: Any, status: GroupStatus | str) -> int:
        """Apply one status to up to BULK_MAX_ITEMS groups.

        The batch is validated as a whole before any write. If the batch
        write fails, rows are retried one at a time so that a partial
        failure still reports what was written.

        Args:
            items: List of {"fingerprint", "product", optional "notes"}.
            status: Status to apply to every item.

        Returns:
            Number of rows actually written.

        Raises:
            InvalidInput: Empty list, more than BULK_MAX_ITEMS, a malformed
                item, or an unknown status.
            StoreUnavailable: Nothing could be written.
        """
        parsed_status = parse_status(status)
        parsed_items = _parse_items(items)
        now = self._clock()
        rows = [self._row(fp, product, parsed_status, notes, now) for fp, product, notes in parsed_items]

        try:
            updated = await self.store.upsert_statuses(rows)
        except StoreUnavailable:
            logger.warning("Bulk status write failed, retrying %d rows individually.", len(rows))
            updated = await self._upsert_each(rows)

        logger.info("Bulk status %s applied to %d of %d groups.", parsed_status.value, updated, len(rows))
        return updated

    async def get_status(self, fingerprint: str, product: str) -> ErrorGroupStatus:
        """Return the stored row, or a default active row when none exists."""
        row = await self.store.get_status(fingerprint, product)
        return row or ErrorGroupStatus(fingerprint=fingerprint, product=product)

    async def overlay(self, groups: list[ErrorGroup], product: str | None = None) -> list[GroupView]:
        """Join status rows onto groups. Groups without a row show as active."""
        rows = await self.store.list_statuses(product)
        by_key = {(r.fingerprint, r.product): r for r in rows}
        views = []
        for group in groups:
            row = by_key.get((group.fingerprint, group.product))
            extra = {}
            if row is not None:
                extra = {
                    "status": row.status,
                    "notes": row.notes,
                    "resolved_at": row.resolved_at,
                    "status_updated_at": row.updated_at,
                }
            views.append(GroupView(**group.model_dump(), **extra))
        return views

    async def _upsert_each(self, rows: list[ErrorGroupStatus]) -> int:
        written = 0
        last_error: StoreUnavailable | None = None
        for row in rows:
            try:
                await self.store.upsert_status(row)
                written += 1
            except StoreUnavailable as exc:
                last_error = exc
                logger.error("Status write failed for %s/%s.", row.product, row.fingerprint)
        if written == 0 and last_error is not None:
            raise last_error
        return written
