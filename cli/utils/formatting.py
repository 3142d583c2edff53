"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _status(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Kind", justify="center", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Progress", justify="right", style="yellow")
    table.add_column("Step", justify="left", style="white")
    table.add_column("Retries", justify="center")

    for job in jobs:
        table.add_row(
            job.get("id", "")[:8],  # Short ID
            job.get("kind", ""),
            _status(job.get("status", "")),
            f"{job.get('progress', 0)}%",
            job.get("current_step") or "—",
            f"{job.get('retry_count', 0)}/{job.get('max_retries', 0)}",
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create formatted panel for a single job"""
    lines = [
        f"🆔 [bold]ID:[/bold] [cyan]{job.get('id', 'unknown')}[/cyan]",
        f"📝 [bold]Kind:[/bold] [magenta]{job.get('kind', 'unknown')}[/magenta]",
        f"📊 [bold]Status:[/bold] {_status(job.get('status', 'unknown'))}",
        f"⏳ [bold]Progress:[/bold] {job.get('progress', 0)}% ({job.get('current_step') or '—'})",
        f"🔁 [bold]Retries:[/bold] {job.get('retry_count', 0)}/{job.get('max_retries', 0)}",
        f"📅 [bold]Created:[/bold] [blue]{job.get('created_at', 'unknown')}[/blue]",
    ]
    if job.get("owner_id"):
        lines.append(f"👤 [bold]Owner:[/bold] {job['owner_id']}")
    if job.get("completed_at"):
        lines.append(f"🏁 [bold]Finished:[/bold] [blue]{job['completed_at']}[/blue]")
    if job.get("error_message"):
        lines.append(f"❌ [bold]Error:[/bold] [red]{job['error_message']}[/red]")

    return Panel("\n".join(lines), title="Job", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for job statistics"""
    content = f"""
📊 [bold blue]Job Statistics[/bold blue]

• Total: [cyan]{stats.get("total", 0)}[/cyan]
• Pending: [yellow]{stats.get("pending", 0)}[/yellow]
• Processing: [blue]{stats.get("processing", 0)}[/blue]
• Completed: [green]{stats.get("completed", 0)}[/green]
• Failed: [red]{stats.get("failed", 0)}[/red]
• Cancelled: [dim]{stats.get("cancelled", 0)}[/dim]
"""
    by_kind = stats.get("by_kind", {})
    if by_kind:
        content += "\n[bold]By kind[/bold]\n"
        content += "\n".join(f"• {kind}: {count}" for kind, count in by_kind.items())

    return Panel(content, title="Job Stats", border_style="green")
