"""Rich renderers for engine output.

Pure presentation: every function takes engine results and returns a Rich
renderable. Nothing here reads the store or mutates state, so the CLI decides
what to show and when.
"""

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from schemas.alerts import SpikeAlert
from schemas.deployments import Badge, CorrelationResult, DeploySummary
from schemas.groups import GroupStatus, GroupView

BAR_WIDTH = 40

_BADGE_STYLE = {
    Badge.RED: "bold red",
    Badge.GREEN: "bold green",
    Badge.GRAY: "bright_black",
    Badge.NONE: "dim",
}

_STATUS_STYLE = {
    GroupStatus.ACTIVE: "yellow",
    GroupStatus.ACKNOWLEDGED: "cyan",
    GroupStatus.RESOLVED: "green",
    GroupStatus.IGNORED: "dim",
}


def _short(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def groups_table(groups: list[GroupView]) -> Table:
    """One row per error group, newest activity first."""
    table = Table(title="Error Groups", show_lines=False, border_style="bright_black")
    table.add_column("Product",     style="cyan",  min_width=10)
    table.add_column("Fingerprint", style="dim",   width=16)
    table.add_column("Message",     min_width=30)
    table.add_column("Total",       justify="right")
    table.add_column("24h",         justify="right")
    table.add_column("7d",          justify="right")
    table.add_column("Users",       justify="right")
    table.add_column("Status",      justify="center")

    for g in groups:
        status_style = _STATUS_STYLE[g.status]
        hot = "bold red" if g.occurrences_24h >= 10 else ""
        table.add_row(
            g.product,
            g.fingerprint,
            _short(g.message),
            str(g.occurrence_count),
            Text(str(g.occurrences_24h), style=hot),
            str(g.occurrences_7d),
            str(g.affected_users),
            f"[{status_style}]{g.status.value}[/{status_style}]",
        )
    return table


def alerts_table(alerts: list[SpikeAlert], product_names: dict[str, str] | None = None) -> Table:
    names = product_names or {}
    table = Table(title="Spike Alerts", border_style="bright_black")
    table.add_column("Product",     style="cyan")
    table.add_column("Last hour",   justify="right")
    table.add_column("Baseline/hr", justify="right")
    table.add_column("Multiplier",  justify="right", style="bold")
    table.add_column("Top fingerprints", style="dim")
    table.add_column("Ack",         justify="center")

    for a in alerts:
        table.add_row(
            names.get(a.product, a.product),
            str(a.current_count),
            f"{a.baseline_avg:.2f}",
            f"{a.spike_multiplier:.1f}x",
            ", ".join(a.top_fingerprints),
            "[green]✓[/green]" if a.acknowledged else "[red]•[/red]",
        )
    return table


def correlation_panel(result: CorrelationResult) -> Panel:
    """Bucket histogram around a deploy, with badge and new errors."""
    corr = result.correlation
    peak = max((b.count for b in result.buckets), default=0) or 1

    # The deploy falls in the last bucket that starts at or before it.
    deploy_index = max(
        (i for i, b in enumerate(result.buckets) if b.bucket_start <= result.deployed_at),
        default=-1,
    )

    lines: list[Text] = []
    for i, bucket in enumerate(result.buckets):
        marker = "▶" if i == deploy_index else " "
        bar = "█" * round(bucket.count / peak * BAR_WIDTH)
        lines.append(Text(f"{marker} {bucket.bucket_start:%H:%M}  {bar} {bucket.count}"))

    style = _BADGE_STYLE[corr.badge]
    summary = Text.assemble(
        ("badge ", "dim"), (corr.badge.value, style),
        (f"   pre {corr.pre_count} → post {corr.post_count}", ""),
        (f"   ({corr.pct_change}%)" if corr.pct_change else "", style),
    )
    body: list = [summary, Text(""), *lines]
    if result.new_errors:
        body.append(Text(""))
        body.append(Text("New after deploy:", style="bold"))
        body.extend(Text(f"  {e.fingerprint}  {_short(e.message, 70)}") for e in result.new_errors)

    return Panel(
        Group(*body),
        title=f"Deploy {result.product} @ {result.deployed_at:%Y-%m-%d %H:%M} UTC",
        border_style=style if corr.badge != Badge.NONE else "bright_black",
    )


def deploys_table(summaries: list[DeploySummary]) -> Table:
    table = Table(title="Deployments", border_style="bright_black")
    table.add_column("When (UTC)", style="dim")
    table.add_column("Product",    style="cyan")
    table.add_column("Commit",     style="dim", width=8)
    table.add_column("Message",    min_width=24)
    table.add_column("Pre → Post", justify="center")
    table.add_column("Badge",      justify="center")

    for s in summaries:
        d, c = s.deployment, s.correlation
        style = _BADGE_STYLE[c.badge]
        pct = f" {c.pct_change}%" if c.pct_change else ""
        table.add_row(
            f"{d.deployed_at:%m-%d %H:%M}",
            d.product,
            (d.commit_hash or "")[:7],
            _short(d.commit_message or "", 40),
            f"{c.pre_count} → {c.post_count}",
            f"[{style}]{c.badge.value}{pct}[/{style}]",
        )
    return table
