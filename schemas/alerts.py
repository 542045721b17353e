"""Spike alert schema."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class SpikeAlert(BaseModel):
    """A record that one product's hourly error rate spiked.

    Written once by SpikeDetector through the store's conditional insert.
    The only later change is acknowledgement by an operator.

    Attributes:
        id: UUID4 string.
        product: Product whose error rate spiked.
        current_count: Events in the trailing hour at detection time.
        baseline_avg: Average hourly events over the prior 167 hours,
            rounded to 2 decimals. 0 for a new-errors alert.
        spike_multiplier: current_count / baseline_avg rounded to 1 decimal,
            or current_count itself when the baseline is zero.
        top_fingerprints: Up to 3 distinct fingerprints seen in the trailing
            hour, most recent first.
        alerted_at: Detection time.
        acknowledged: Whether an operator has acknowledged the alert.
        acknowledged_at: Time of the first acknowledgement.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product: str
    current_count: int = Field(ge=0)
    baseline_avg: float = Field(ge=0)
    spike_multiplier: float = Field(ge=0)
    top_fingerprints: list[str] = Field(default_factory=list, max_length=3)
    alerted_at: datetime
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
