"""Schema validation tests.

These tests verify that all Pydantic models accept valid data, reject invalid
data, and enforce field constraints. No store or external services required.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from schemas.alerts import SpikeAlert
from schemas.deployments import (
    Badge,
    CorrelationResult,
    DeployCorrelation,
    Deployment,
    NewError,
    TimeBucket,
)
from schemas.events import Environment, ErrorEvent, ErrorSource, ErrorType
from schemas.groups import ErrorGroup, ErrorGroupStatus, GroupStatus, GroupView

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────────

def make_event(**overrides) -> ErrorEvent:
    defaults = dict(
        product="storefront",
        message="TypeError: boom",
        error_type="client_crash",
        source="client",
        fingerprint="a1b2c3d4e5f60718",
        occurred_at=NOW,
    )
    return ErrorEvent(**{**defaults, **overrides})


def make_group(**overrides) -> ErrorGroup:
    defaults = dict(
        fingerprint="a1b2c3d4e5f60718",
        product="storefront",
        message="TypeError: boom",
        occurrence_count=10,
        affected_users=3,
        occurrences_24h=2,
        occurrences_7d=5,
        first_seen=NOW - timedelta(days=3),
        last_seen=NOW,
    )
    return ErrorGroup(**{**defaults, **overrides})


# ── ErrorEvent ────────────────────────────────────────────────────────────────

class TestErrorEvent:
    def test_valid_event(self):
        event = make_event()
        assert event.error_type == ErrorType.CLIENT_CRASH
        assert event.source == ErrorSource.CLIENT
        assert event.environment == Environment.PRODUCTION
        assert event.metadata == {}

    def test_id_is_valid_uuid(self):
        uuid.UUID(make_event().id)

    def test_each_event_gets_unique_id(self):
        assert make_event().id != make_event().id

    def test_unknown_error_type_raises(self):
        with pytest.raises(ValidationError):
            make_event(error_type="segfault")

    def test_missing_required_field_raises(self):
        with pytest.raises(ValidationError):
            ErrorEvent(product="storefront", message="boom", error_type="api_error", source="server")

    def test_events_are_immutable(self):
        event = make_event()
        with pytest.raises(ValidationError):
            event.product = "admin"


# ── ErrorGroup ────────────────────────────────────────────────────────────────

class TestErrorGroup:
    def test_valid_group(self):
        assert make_group().occurrence_count == 10

    def test_equal_counts_are_valid(self):
        group = make_group(occurrence_count=4, occurrences_7d=4, occurrences_24h=4)
        assert group.occurrences_24h == 4

    def test_24h_above_7d_raises(self):
        with pytest.raises(ValidationError):
            make_group(occurrences_24h=6, occurrences_7d=5)

    def test_7d_above_total_raises(self):
        with pytest.raises(ValidationError):
            make_group(occurrences_7d=11)

    def test_negative_count_raises(self):
        with pytest.raises(ValidationError):
            make_group(affected_users=-1)

    def test_first_seen_after_last_seen_raises(self):
        with pytest.raises(ValidationError):
            make_group(first_seen=NOW + timedelta(seconds=1))

    def test_view_defaults_to_active(self):
        view = GroupView(**make_group().model_dump())
        assert view.status == GroupStatus.ACTIVE
        assert view.resolved_at is None


# ── ErrorGroupStatus ──────────────────────────────────────────────────────────

class TestErrorGroupStatus:
    def test_defaults_to_active(self):
        row = ErrorGroupStatus(fingerprint="fp", product="storefront")
        assert row.status == GroupStatus.ACTIVE

    def test_resolved_requires_resolved_at(self):
        with pytest.raises(ValidationError):
            ErrorGroupStatus(fingerprint="fp", product="storefront", status="resolved")

    def test_resolved_at_only_when_resolved(self):
        with pytest.raises(ValidationError):
            ErrorGroupStatus(fingerprint="fp", product="storefront", status="ignored", resolved_at=NOW)

    def test_unknown_status_raises(self):
        with pytest.raises(ValidationError):
            ErrorGroupStatus(fingerprint="fp", product="storefront", status="closed")


# ── SpikeAlert ────────────────────────────────────────────────────────────────

class TestSpikeAlert:
    def test_valid_alert(self):
        alert = SpikeAlert(product="storefront", current_count=30, baseline_avg=2.5,
                           spike_multiplier=12.0, alerted_at=NOW)
        assert not alert.acknowledged
        assert alert.top_fingerprints == []
        uuid.UUID(alert.id)

    def test_more_than_three_fingerprints_raises(self):
        with pytest.raises(ValidationError):
            SpikeAlert(product="storefront", current_count=30, baseline_avg=2.5, spike_multiplier=12.0,
                       top_fingerprints=["a", "b", "c", "d"], alerted_at=NOW)

    def test_negative_baseline_raises(self):
        with pytest.raises(ValidationError):
            SpikeAlert(product="storefront", current_count=30, baseline_avg=-1,
                       spike_multiplier=12.0, alerted_at=NOW)


# ── Deployments ───────────────────────────────────────────────────────────────

class TestDeployment:
    def test_defaults(self):
        deployment = Deployment(product="storefront", deployed_at=NOW)
        assert deployment.branch == "main"
        assert deployment.environment == Environment.PRODUCTION
        uuid.UUID(deployment.id)

    def test_commit_hash_over_40_chars_raises(self):
        with pytest.raises(ValidationError):
            Deployment(product="storefront", deployed_at=NOW, commit_hash="a" * 41)

    def test_commit_message_over_500_chars_raises(self):
        with pytest.raises(ValidationError):
            Deployment(product="storefront", deployed_at=NOW, commit_message="m" * 501)

    def test_correlation_result_exposes_new_error_fingerprints(self):
        result = CorrelationResult(
            deployment_id="d-1",
            product="storefront",
            deployed_at=NOW,
            buckets=[TimeBucket(bucket_start=NOW, count=1)],
            new_errors=[NewError(fingerprint="fp-a", message="boom")],
            correlation=DeployCorrelation(pre_count=0, post_count=1, badge=Badge.RED, pct_change=100),
        )
        assert result.new_error_fingerprints == ["fp-a"]
        assert result.model_dump(mode="json")["new_error_fingerprints"] == ["fp-a"]
