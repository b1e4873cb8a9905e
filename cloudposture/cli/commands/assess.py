"""Posture assessment command."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
import structlog
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cloudposture.config import PostureConfig, get_config
from cloudposture.core.exceptions import PostureError
from cloudposture.core.findings import Finding, Severity
from cloudposture.core.inventory import SnapshotInventory
from cloudposture.core.pipeline import PostureAggregator
from cloudposture.core.results import CombinedResult

console = Console()

logger = structlog.get_logger(__name__)

SEVERITY_STYLES = {
    Severity.CRITICAL: ("red", "🚨 CRITICAL FINDINGS"),
    Severity.HIGH: ("yellow", "⚠️  HIGH SEVERITY FINDINGS"),
    Severity.MEDIUM: ("blue", "ℹ️  MEDIUM SEVERITY FINDINGS"),
    Severity.LOW: ("white", "📋 LOW SEVERITY FINDINGS"),
}


def _score_color(score: float) -> str:
    if score >= 80:
        return "green"
    if score >= 60:
        return "yellow"
    return "red"


async def _run_assessment(
    snapshot: Path,
    subscriptions: list,
    client_id: Optional[str],
    org_id: Optional[str],
    settings: PostureConfig,
) -> CombinedResult:
    delegated = bool(client_id and org_id)
    inventory = SnapshotInventory.from_file(snapshot, allow_delegated=delegated)
    aggregator = PostureAggregator(inventory, policy=settings.scoring)
    if delegated:
        return await aggregator.run_with_delegated_identity(subscriptions, client_id, org_id)
    return await aggregator.run(subscriptions)


@click.command(name="assess")
@click.option(
    "--snapshot",
    "-s",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Resource snapshot JSON file (defaults to the configured snapshot_path)",
)
@click.option(
    "--subscription",
    "subscriptions",
    multiple=True,
    help="Subscription id to assess (can specify multiple)",
)
@click.option(
    "--client-id",
    help="OAuth client id for a delegated assessment",
)
@click.option(
    "--org-id",
    help="Organization id for a delegated assessment",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Save the combined result to a JSON file",
)
@click.option(
    "--severity-filter",
    type=click.Choice(["critical", "high", "medium", "low"], case_sensitive=False),
    help="Only show findings of specified severity or higher",
)
@click.pass_context
def assess(
    ctx: click.Context,
    snapshot: Optional[Path],
    subscriptions: tuple,
    client_id: Optional[str],
    org_id: Optional[str],
    output: Optional[Path],
    severity_filter: Optional[str],
) -> None:
    """Assess the security posture of a resource snapshot.

    Example:
        cloudposture assess \\
            --snapshot resources.json \\
            --subscription 00000000-0000-0000-0000-000000000000 \\
            --output assessment.json
    """
    settings = (ctx.obj or {}).get("config") or get_config()
    snapshot = snapshot or settings.snapshot_path
    if snapshot is None:
        raise click.UsageError("No snapshot given; pass --snapshot or set CLOUDPOSTURE_SNAPSHOT_PATH")
    if bool(client_id) != bool(org_id):
        raise click.UsageError("--client-id and --org-id must be given together")

    client_id = client_id or settings.client_id
    org_id = org_id or settings.organization_id
    subscription_ids = list(subscriptions) or list(settings.subscription_ids)

    try:
        console.print(f"\n[cyan]Assessing security posture from {snapshot}...[/cyan]\n")
        result = asyncio.run(_run_assessment(snapshot, subscription_ids, client_id, org_id, settings))
    except (PostureError, OSError) as e:
        logger.error("assessment_failed", error=str(e))
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        raise click.Abort() from e

    _display_summary(result)
    _display_domains(result)

    minimum = Severity.parse(severity_filter) if severity_filter else Severity.LOW
    findings = result.findings_at_least(minimum)
    for severity in sorted(SEVERITY_STYLES, reverse=True):
        group = [f for f in findings if f.severity == severity]
        if not group:
            continue
        color, heading = SEVERITY_STYLES[severity]
        console.print(f"\n[bold {color}]{heading}:[/bold {color}]\n")
        for finding in group:
            _display_finding(finding, color)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2)
        console.print(f"\n[green]✓[/green] Assessment saved to: {output}")

    critical = len(result.findings_at_least(Severity.CRITICAL))
    if critical:
        console.print(f"\n[red]⚠️  Found {critical} CRITICAL security issues![/red]")


def _display_summary(result: CombinedResult) -> None:
    color = _score_color(result.score)
    counts = {s: sum(1 for f in result.findings if f.severity == s) for s in Severity}
    console.print(
        Panel(
            f"[bold]Security Score: [{color}]{result.score}/100[/{color}][/bold]\n\n"
            f"Base Score: {result.base_score}\n"
            f"Cross-Domain Penalty: {result.cross_domain_penalty}\n"
            f"Resources Assessed: {result.resources_assessed}\n"
            f"Delegated Identity: {'yes' if result.delegated else 'no'}\n\n"
            f"[bold red]Critical:[/bold red] {counts[Severity.CRITICAL]}\n"
            f"[bold yellow]High:[/bold yellow] {counts[Severity.HIGH]}\n"
            f"[bold blue]Medium:[/bold blue] {counts[Severity.MEDIUM]}\n"
            f"[bold white]Low:[/bold white] {counts[Severity.LOW]}",
            title="[bold cyan]Security Posture Assessment[/bold cyan]",
            border_style="cyan",
        )
    )


def _display_domains(result: CombinedResult) -> None:
    table = Table(title="Domain Scores", box=box.ROUNDED)
    table.add_column("Domain", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Findings", justify="right")
    table.add_column("Details", style="white")

    network = result.network
    platform = result.platform
    table.add_row(
        "Network",
        f"[{_score_color(network.score)}]{network.score}[/]",
        str(len(network.findings)),
        f"{network.network_security_groups} NSGs, {network.open_to_internet_rules} open rules, "
        f"{network.overly_permissive_rules} permissive rules",
    )
    table.add_row(
        "Platform",
        f"[{_score_color(platform.score)}]{platform.score}[/]",
        str(len(platform.findings)),
        f"{platform.enabled_plans} plans enabled, secure score estimate {platform.secure_score_estimate}",
    )
    console.print(table)


def _display_finding(finding: Finding, color: str) -> None:
    """Display a single finding with details."""
    console.print(
        Panel(
            f"[bold]{finding.resource_name}[/bold]\n\n"
            f"{finding.issue}\n\n"
            f"[bold]Control:[/bold] {finding.control}\n"
            f"[bold]Framework:[/bold] {finding.framework or 'n/a'}\n\n"
            f"[bold]Recommendation:[/bold]\n{finding.recommendation}",
            title=f"[{color}]{finding.category.value} - {finding.severity.value.upper()}[/{color}]",
            border_style=color,
        )
    )
