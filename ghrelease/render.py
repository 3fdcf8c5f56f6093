"""
Rendering functions for ghrelease output.

This module handles all pretty-printing and table formatting.
Services return data, this module makes it human-readable.
"""

from rich.table import Table
from rich.console import Console
from rich import box
from typing import Any, Dict, Optional

from .domain.operation import OperationStatus, OperationSummary

console = Console(stderr=True)

_STATUS_STYLES = {
    OperationStatus.SUCCESS: "green",
    OperationStatus.DRY_RUN: "cyan",
    OperationStatus.SKIPPED: "yellow",
    OperationStatus.FAILED: "red",
}

_ASSET_STYLES = {
    'uploaded': "green",
    'replaced': "cyan",
    'skipped': "dim",
    'failed': "red",
}


def _short_digest(digest: Optional[str]) -> str:
    return digest[:12] if digest else "-"


def _human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def render_dist_summary(summary: OperationSummary, title: Optional[str] = None) -> None:
    """
    Render per-target results of a dist run as a table.

    Args:
        summary: OperationSummary from DistService
        title: Optional table title
    """
    if not summary.details:
        console.print("[yellow]No targets were built.[/yellow]")
        return

    table = Table(
        title=title or f"Dist {summary.tag}",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta"
    )
    table.add_column("Target", style="cyan")
    table.add_column("Status")
    table.add_column("Archive")
    table.add_column("Size", justify="right")
    table.add_column("SHA256")
    table.add_column("Error", style="red")

    for detail in summary.details:
        style = _STATUS_STYLES.get(detail.status, "white")
        table.add_row(
            detail.target,
            f"[{style}]{detail.status.value}[/{style}]",
            detail.archive or "-",
            _human_size(detail.size) if detail.archive else "-",
            _short_digest(detail.sha256),
            detail.error or "",
        )

    console.print(table)

    counts = f"[green]{summary.successful} succeeded[/green]"
    if summary.failed:
        counts += f", [red]{summary.failed} failed[/red]"
    console.print(counts)


def render_release_report(report: Dict[str, Any]) -> None:
    """
    Render a reconcile report (ReconcileReport.to_dict()) as a table.
    """
    action = report.get('release_action') or "not published"
    console.print(f"\n[bold]Release {report.get('tag')}[/bold] on {report.get('repo')}: {action}")
    if report.get('html_url'):
        console.print(f"[dim]{report['html_url']}[/dim]")

    assets = report.get('assets', [])
    if assets:
        table = Table(box=box.ROUNDED, show_header=True, header_style="bold magenta")
        table.add_column("Asset", style="cyan")
        table.add_column("Action")
        table.add_column("SHA256")
        table.add_column("Error", style="red")
        for asset in assets:
            style = _ASSET_STYLES.get(asset['action'], "white")
            table.add_row(
                asset['filename'],
                f"[{style}]{asset['action']}[/{style}]",
                _short_digest(asset.get('sha256')),
                asset.get('error', ''),
            )
        console.print(table)

    for tag in report.get('pruned', []):
        console.print(f"[yellow]Pruned[/yellow] {tag}")
    for failure in report.get('prune_errors', []):
        console.print(f"[red]Could not prune {failure['tag']}:[/red] {failure['error']}")


def render_install_outcome(outcome) -> None:
    """Render an InstallOutcome."""
    data = outcome.to_dict()

    table = Table(
        title=f"Install {data['repo']}",
        box=box.ROUNDED,
        show_header=False,
    )
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Target", data['target'])
    if 'tag' in data:
        table.add_row("Tag", f"{data['tag']['raw']} ({data['tag']['kind']})")
    if 'release' in data:
        table.add_row("Release", data['release'])
    if 'asset' in data:
        table.add_row("Asset", data['asset'])
    if 'fallback_ref' in data:
        ref = data['fallback_ref']
        table.add_row("Source build", f"{ref['kind']} {ref['value']}")
    elif outcome.used_fallback:
        table.add_row("Source build", "default branch")
    for path in data.get('installed', []):
        table.add_row("Installed", f"[green]{path}[/green]")

    state_style = "green" if outcome.success else "red"
    table.add_row("State", f"[{state_style}]{data['state']}[/{state_style}]")
    console.print(table)

    for warning in data.get('warnings', []):
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if outcome.error is not None:
        console.print(f"[red]Error:[/red] {outcome.error}")


def render_error(error_obj: Dict[str, Any]) -> None:
    """Render one error object (GhReleaseError.to_dict()) for humans."""
    console.print(f"[red]Error:[/red] {error_obj.get('error')}")
    context = {k: v for k, v in error_obj.items() if k not in ('error', 'type', 'exit_code')}
    for key, value in context.items():
        if isinstance(value, (list, tuple)):
            value = ', '.join(str(v) for v in value)
        console.print(f"  [dim]{key}:[/dim] {value}")
