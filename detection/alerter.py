"""Spike alert delivery.

The detector hands every newly inserted alert to an Alerter. Delivery
mechanics (email, chat, paging) live outside the engine; the shipped
LoggingAlerter writes the alert summary to the log so a deployment without a
delivery channel still has a record.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from schemas.alerts import SpikeAlert

logger = logging.getLogger(__name__)

TOP_MESSAGE_MAX_CHARS = 120


@dataclass
class SpikeNotice:
    """Everything an alerter needs to describe one spike.

    Attributes:
        alert: The stored alert row.
        product_name: Human-readable product name (falls back to the key).
        top_messages: Messages for alert.top_fingerprints, same order.
    """

    alert: SpikeAlert
    product_name: str
    top_messages: list[str] = field(default_factory=list)


class Alerter(Protocol):
    async def send(self, notice: SpikeNotice) -> None: ...


def format_spike_alert(notice: SpikeNotice) -> str:
    """Render a plain-text summary of a spike.

    Example:
        Error spike detected in Storefront.

        Errors in last hour: 42
        Baseline (7-day avg/hr): 3.1
        Spike multiplier: 13.5x

        Top errors:
        1. TypeError: Cannot read properties of undefined (reading 'id')
    """
    alert = notice.alert
    baseline = f"{alert.baseline_avg:.1f}" if alert.baseline_avg > 0 else "0"
    lines = [
        f"Error spike detected in {notice.product_name}.",
        "",
        f"Errors in last hour: {alert.current_count}",
        f"Baseline (7-day avg/hr): {baseline}",
        f"Spike multiplier: {alert.spike_multiplier:.1f}x",
    ]
    if notice.top_messages:
        lines += ["", "Top errors:"]
        lines += [
            f"{i}. {msg[:TOP_MESSAGE_MAX_CHARS]}"
            for i, msg in enumerate(notice.top_messages[:3], start=1)
        ]
    return "\n".join(lines)


class LoggingAlerter:
    """Alerter that writes the spike summary to the log at WARNING."""

    async def send(self, notice: SpikeNotice) -> None:
        logger.warning("%s", format_spike_alert(notice))
