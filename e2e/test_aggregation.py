"""Tests for the group aggregator and the group projection.

Events are built with a fixed reference time. No network calls.
"""

from datetime import datetime, timedelta, timezone

import pytest

from aggregation.aggregator import GroupAggregator, build_groups
from aggregation.projection import GroupProjection
from core.errors import NotFound
from schemas.events import ErrorEvent
from store.memory import InMemoryEventStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
U1 = "11111111-1111-4111-8111-111111111111"
U2 = "22222222-2222-4222-8222-222222222222"


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_event(
    fp: str = "fp-checkout",
    product: str = "storefront",
    ago: timedelta = timedelta(minutes=5),
    **overrides,
) -> ErrorEvent:
    data = {
        "product": product,
        "message": "TypeError: boom",
        "error_type": "client_crash",
        "source": "client",
        "fingerprint": fp,
        "occurred_at": NOW - ago,
    }
    data.update(overrides)
    return ErrorEvent(**data)


# ── build_groups() ────────────────────────────────────────────────────────────

class TestBuildGroups:
    def test_empty_input_gives_no_groups(self):
        assert build_groups([], NOW) == []

    def test_counts_and_distinct_users(self):
        events = [
            make_event(user_id=U1, ago=timedelta(hours=5)),
            make_event(user_id=U1, ago=timedelta(hours=4)),
            make_event(user_id=U2, ago=timedelta(hours=3)),
            make_event(user_id=None, ago=timedelta(hours=2)),
            make_event(user_id=U2, ago=timedelta(hours=1)),
        ]
        [group] = build_groups(events, NOW)

        assert group.occurrence_count == 5
        assert group.affected_users == 2
        assert group.occurrences_24h == 5
        assert group.first_seen == NOW - timedelta(hours=5)
        assert group.last_seen == NOW - timedelta(hours=1)

    def test_trailing_windows(self):
        events = [
            make_event(ago=timedelta(hours=1)),
            make_event(ago=timedelta(hours=30)),
            make_event(ago=timedelta(days=8)),
        ]
        [group] = build_groups(events, NOW)

        assert group.occurrence_count == 3
        assert group.occurrences_7d == 2
        assert group.occurrences_24h == 1

    def test_window_boundaries_are_exclusive(self):
        events = [
            make_event(ago=timedelta(hours=24)),
            make_event(ago=timedelta(days=7)),
        ]
        [group] = build_groups(events, NOW)

        assert group.occurrences_24h == 0
        assert group.occurrences_7d == 1

    def test_representative_is_latest_event(self):
        events = [
            make_event(ago=timedelta(minutes=1), message="newest"),
            make_event(ago=timedelta(minutes=30), message="older"),
        ]
        [group] = build_groups(events, NOW)
        assert group.message == "newest"

    def test_representative_tie_goes_to_later_insertion(self):
        events = [
            make_event(ago=timedelta(minutes=1), message="first", stack_trace="a"),
            make_event(ago=timedelta(minutes=1), message="second", stack_trace="b"),
        ]
        [group] = build_groups(events, NOW)
        assert group.message == "second"
        assert group.stack_trace == "b"

    def test_same_fingerprint_different_products_are_separate(self):
        events = [make_event(product="storefront"), make_event(product="admin")]
        groups = build_groups(events, NOW)
        assert {(g.product, g.fingerprint) for g in groups} == {
            ("storefront", "fp-checkout"), ("admin", "fp-checkout"),
        }

    def test_ordered_by_last_seen_descending(self):
        events = [
            make_event("fp-a", ago=timedelta(hours=3)),
            make_event("fp-b", ago=timedelta(minutes=10)),
            make_event("fp-c", ago=timedelta(hours=1)),
        ]
        assert [g.fingerprint for g in build_groups(events, NOW)] == ["fp-b", "fp-c", "fp-a"]

    def test_is_idempotent(self):
        events = [make_event("fp-a"), make_event("fp-b", ago=timedelta(hours=2))]
        assert build_groups(events, NOW) == build_groups(events, NOW)

    def test_count_chain_holds(self):
        events = [make_event(ago=timedelta(days=d)) for d in (0, 1, 3, 6, 9, 20)]
        [group] = build_groups(events, NOW)
        assert group.occurrence_count >= group.occurrences_7d >= group.occurrences_24h


# ── GroupAggregator ───────────────────────────────────────────────────────────

class TestGroupAggregator:
    async def test_product_filter_and_since(self):
        store = InMemoryEventStore()
        await store.append_event(make_event("fp-a", ago=timedelta(hours=1)))
        await store.append_event(make_event("fp-b", ago=timedelta(days=40)))
        await store.append_event(make_event("fp-c", product="admin"))

        aggregator = GroupAggregator(store, clock=lambda: NOW)

        assert len(await aggregator.aggregate()) == 3
        groups = await aggregator.aggregate("storefront", since=NOW - timedelta(days=30))
        assert [g.fingerprint for g in groups] == ["fp-a"]

    async def test_no_events_no_groups(self):
        aggregator = GroupAggregator(InMemoryEventStore(), clock=lambda: NOW)
        assert await aggregator.aggregate("storefront") == []


# ── GroupProjection ───────────────────────────────────────────────────────────

class TestGroupProjection:
    def make_projection(self, store: InMemoryEventStore) -> GroupProjection:
        return GroupProjection(GroupAggregator(store, clock=lambda: NOW), clock=lambda: NOW)

    async def test_first_read_refreshes(self):
        store = InMemoryEventStore()
        await store.append_event(make_event())
        projection = self.make_projection(store)

        assert projection.refreshed_at is None
        assert len(await projection.groups()) == 1
        assert projection.refreshed_at == NOW

    async def test_reads_serve_snapshot_until_refresh(self):
        store = InMemoryEventStore()
        await store.append_event(make_event("fp-a"))
        projection = self.make_projection(store)
        await projection.refresh()

        await store.append_event(make_event("fp-b"))
        assert len(await projection.groups()) == 1

        await projection.refresh()
        assert len(await projection.groups()) == 2

    async def test_lookback_drops_stale_groups(self):
        store = InMemoryEventStore()
        await store.append_event(make_event("fp-old", ago=timedelta(days=120)))
        await store.append_event(make_event("fp-new"))
        projection = self.make_projection(store)

        assert [g.fingerprint for g in await projection.refresh()] == ["fp-new"]

    async def test_get_group(self):
        store = InMemoryEventStore()
        await store.append_event(make_event("fp-a"))
        projection = self.make_projection(store)

        group = await projection.get_group("fp-a", "storefront")
        assert group.occurrence_count == 1
        with pytest.raises(NotFound):
            await projection.get_group("fp-a", "admin")
