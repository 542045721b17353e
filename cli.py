"""Error engine CLI demo runner.

Seeds an in-memory store with a deterministic week of synthetic errors for
three products, then runs the engine end to end and renders each stage with
Rich:

    1. ingest a few raw payloads through the gate (accepted and rejected)
    2. aggregate error groups and mark one resolved
    3. run a spike sweep
    4. correlate the most recent deploy and list every deploy with its badge

Usage:
    uv run python cli.py
"""

import asyncio
import logging

from rich.console import Console
from rich.logging import RichHandler

from core.config import Settings
from core.engine import ErrorEngine
from core.registry import ProductRegistry
from display.tables import alerts_table, correlation_panel, deploys_table, groups_table
from grouping.fingerprint import fingerprint
from store.memory import InMemoryEventStore
from stubs import DEMO_PRODUCTS, seed_demo_store
from utils.timeutil import utc_now

console = Console()


def _demo_payloads() -> list[dict]:
    message = "TypeError: Cannot read properties of undefined (reading 'price')"
    return [
        {
            "product": "storefront",
            "error_message": message,
            "error_type": "client_crash",
            "source": "client",
            "fingerprint": fingerprint(message),
            "user_id": "not-a-uuid",
            "environment": "qa",
        },
        {
            "product": "storefront",
            "error_message": "",
            "error_type": "client_crash",
            "source": "client",
            "fingerprint": "abc",
        },
        {
            "product": "admin",
            "error_message": "boom",
            "error_type": "segfault",
            "source": "server",
            "fingerprint": "abc",
        },
    ]


async def _run() -> None:
    now = utc_now()
    store = InMemoryEventStore()
    deployments = await seed_demo_store(store, now)

    engine = ErrorEngine(
        store,
        settings=Settings(store_retry_backoff_seconds=0),
        registry=ProductRegistry.from_names(DEMO_PRODUCTS),
        clock=lambda: now,
    )

    console.rule("[bold]Error Engine[/bold]")
    console.print(f"  products    [cyan]{', '.join(DEMO_PRODUCTS)}[/cyan]")
    console.print(f"  events      [cyan]{len(await store.query_events())} seeded[/cyan]")
    console.print(f"  deploys     [cyan]{len(deployments)} seeded[/cyan]")
    console.print()

    # ── Ingestion ─────────────────────────────────────────────────────────────
    console.rule("Ingestion", style="bright_black")
    for payload in _demo_payloads():
        result = await engine.ingest(payload)
        colour = "green" if result.accepted else "red"
        console.print(f"  [{colour}]{result.status_code}[/{colour}]  {result.to_response()}")
    console.print()

    # ── Groups ────────────────────────────────────────────────────────────────
    await engine.refresh_groups()
    groups = await engine.groups()
    if groups:
        oldest = groups[-1]
        await engine.set_status(oldest.fingerprint, oldest.product, "resolved",
                                notes="Fixed by null-check in CartTotal")
        groups = await engine.groups()
    console.print(groups_table(groups))
    console.print()

    # ── Spikes ────────────────────────────────────────────────────────────────
    await engine.detect_spikes()
    # A second sweep inside the cooldown must not add alerts.
    repeat = await engine.detect_spikes()
    console.print(alerts_table(await engine.list_spikes(), DEMO_PRODUCTS))
    console.print(f"  [dim]repeat sweep inside cooldown created {len(repeat)} alerts[/dim]\n")

    # ── Deploys ───────────────────────────────────────────────────────────────
    latest = max(deployments, key=lambda d: d.deployed_at)
    console.print(correlation_panel(await engine.correlate_deployment(latest.id)))
    console.print(deploys_table(await engine.summarize_deployments()))
    console.print()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    asyncio.run(_run())
