"""Generation Worker CLI - Main Entry Point"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import WorkerAPIError, WorkerClient
from .commands import config, jobs
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="generation-worker",
    help="🎨 Generation Worker - background job CLI",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API connectivity and processor health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with WorkerClient(base_url) as client:
            health = client.health_check()
    except WorkerAPIError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the worker API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"Or point the CLI elsewhere with:\n"
                f"[cyan]GENERATION_WORKER_API_URL=<url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    processor = health.get("processor") or {}
    database = health.get("database") or {}
    console.print(
        Panel(
            f"🚀 [green]Connected Successfully![/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Database: {'connected' if database.get('connected') else 'unavailable'}\n"
            f"• Processor: {processor.get('status', 'unknown')} "
            f"({processor.get('active_jobs', 0)}/{processor.get('capacity', 0)} active)\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green",
        )
    )


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(
        Panel(
            f"🎨 [bold cyan]Generation Worker CLI[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]",
            title="Version Info",
            border_style="cyan",
        )
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    🎨 Generation Worker CLI

    Create generation jobs, follow their progress and inspect the processor.
    """
    if version:
        from . import __version__

        console.print(f"Generation Worker CLI v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
