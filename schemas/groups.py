"""Error group and status ledger schemas.

An ErrorGroup is the rollup of every event sharing one (fingerprint, product)
key. Groups are derived data: they are recomputed from the event store by
GroupAggregator and never written back.

An ErrorGroupStatus is the operator's lifecycle decision for one group. It is
stored independently of the events and joined onto groups for display as a
GroupView.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from schemas.events import ErrorSource, ErrorType


class GroupStatus(str, Enum):
    """Operator lifecycle state of an error group.

    A group with no status row is treated as ACTIVE.
    """

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class ErrorGroup(BaseModel):
    """Aggregated view of all events for one (fingerprint, product) key.

    The representative message and stack trace come from the event with the
    latest occurred_at in the group.

    Attributes:
        fingerprint: Grouping key shared by every event in the group.
        product: Product that reported the events.
        message: Representative error message.
        stack_trace: Representative stack trace, if any.
        error_type: Error type of the representative event.
        source: Source of the representative event.
        occurrence_count: Total events in the group.
        affected_users: Distinct non-null user ids across the group.
        occurrences_24h: Events in the trailing 24 hours.
        occurrences_7d: Events in the trailing 7 days.
        first_seen: Earliest occurred_at.
        last_seen: Latest occurred_at.
    """

    fingerprint: str
    product: str
    message: str
    stack_trace: str | None = None
    error_type: ErrorType | None = None
    source: ErrorSource | None = None
    occurrence_count: int = Field(ge=0)
    affected_users: int = Field(ge=0)
    occurrences_24h: int = Field(ge=0)
    occurrences_7d: int = Field(ge=0)
    first_seen: datetime
    last_seen: datetime

    @model_validator(mode="after")
    def _check_counts(self) -> "ErrorGroup":
        if not self.occurrence_count >= self.occurrences_7d >= self.occurrences_24h:
            raise ValueError(
                "occurrence_count >= occurrences_7d >= occurrences_24h must hold "
                f"(got {self.occurrence_count}, {self.occurrences_7d}, {self.occurrences_24h})."
            )
        if self.first_seen > self.last_seen:
            raise ValueError("first_seen must not be after last_seen.")
        return self


class ErrorGroupStatus(BaseModel):
    """Operator-owned status row for one (fingerprint, product) key.

    resolved_at is set if and only if status is RESOLVED.
    """

    fingerprint: str
    product: str
    status: GroupStatus = GroupStatus.ACTIVE
    notes: str | None = None
    resolved_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_resolved_at(self) -> "ErrorGroupStatus":
        if (self.status == GroupStatus.RESOLVED) != (self.resolved_at is not None):
            raise ValueError("resolved_at must be set if and only if status is 'resolved'.")
        return self


class GroupView(ErrorGroup):
    """An ErrorGroup with its operator status overlaid, for display."""

    status: GroupStatus = GroupStatus.ACTIVE
    notes: str | None = None
    resolved_at: datetime | None = None
    status_updated_at: datetime | None = None
