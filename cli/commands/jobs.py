"""Job Commands - Create, inspect and cancel generation jobs"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import WorkerAPIError, WorkerClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Generation job management commands")

KINDS = ("storybook", "auto-story", "scenes", "cartoonize", "image-generation")


def _load_input(input_json: str | None, input_file: Path | None) -> dict:
    if input_json and input_file:
        raise typer.BadParameter("Use either --input or --input-file, not both")
    raw = input_file.read_text() if input_file else (input_json or "{}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Input is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise typer.BadParameter("Input must be a JSON object")
    return data


@app.command("create")
def create_job(
    kind: str = typer.Argument(..., help=f"Job kind: {', '.join(KINDS)}"),
    input_json: str | None = typer.Option(
        None, "--input", "-i", help="Kind input as a JSON object"
    ),
    input_file: Path | None = typer.Option(
        None, "--input-file", "-f", help="Read the kind input from a JSON file"
    ),
    owner: str | None = typer.Option(None, "--owner", "-o", help="Owning user ID"),
    max_retries: int | None = typer.Option(
        None, "--max-retries", help="Override the retry budget"
    ),
):
    """➕ Create a generation job"""
    if kind not in KINDS:
        print_error(f"Unknown job kind '{kind}'. Choose one of: {', '.join(KINDS)}")
        raise typer.Exit(1)

    input_data = _load_input(input_json, input_file)
    base_url = config.get("api.base_url")

    try:
        with WorkerClient(base_url) as client:
            created = client.create_job(kind, input_data, owner, max_retries)
            print_success(f"Created {kind} job [cyan]{created.get('job_id')}[/cyan]")
            print_info(f"Follow it with: generation-worker jobs get {created.get('job_id')}")

    except WorkerAPIError as e:
        print_error(f"Failed to create job: {e}")
        raise typer.Exit(1) from None


@app.command("get")
def get_job(
    job_id: str = typer.Argument(..., help="Job ID to show"),
    show_result: bool = typer.Option(
        False, "--result", "-r", help="Print the stored result"
    ),
):
    """🔍 Show a job"""
    base_url = config.get("api.base_url")

    try:
        with WorkerClient(base_url) as client:
            job = client.get_job(job_id)
            console.print(create_job_panel(job))

            if show_result and job.get("result_data"):
                console.print_json(data=job["result_data"])

    except WorkerAPIError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    kind: str | None = typer.Option(None, "--kind", "-k", help="Filter by kind"),
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    owner: str | None = typer.Option(None, "--owner", "-o", help="Filter by owner"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of jobs to show"),
):
    """📋 List jobs, newest first"""
    base_url = config.get("api.base_url")

    try:
        with WorkerClient(base_url) as client:
            data = client.list_jobs(kind=kind, status=status, owner_id=owner, limit=limit)
            jobs = data.get("jobs", [])

            if not jobs:
                console.print(
                    Panel(
                        "📭 [yellow]No jobs found![/yellow]\n\n"
                        f"• Kind: {kind or 'any'}\n"
                        f"• Status: {status or 'any'}",
                        title="Empty Results",
                        border_style="yellow",
                    )
                )
                return

            console.print(create_jobs_table(jobs))
            console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] jobs")

    except WorkerAPIError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(..., help="Job ID to cancel"),
):
    """🛑 Cancel a pending or processing job"""
    base_url = config.get("api.base_url")

    try:
        with WorkerClient(base_url) as client:
            client.cancel_job(job_id)
            print_success(f"Cancelled job {job_id}")

    except WorkerAPIError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None


@app.command("stats")
def job_stats(
    owner: str | None = typer.Option(None, "--owner", "-o", help="Filter by owner"),
):
    """📈 Show job counts per status"""
    base_url = config.get("api.base_url")

    try:
        with WorkerClient(base_url) as client:
            console.print(create_stats_panel(client.job_stats(owner)))

    except WorkerAPIError as e:
        print_error(f"Failed to get job stats: {e}")
        raise typer.Exit(1) from None


@app.command("cleanup")
def cleanup_jobs(
    days: int | None = typer.Option(
        None, "--days", "-d", help="Delete terminal jobs older than this many days"
    ),
):
    """🧹 Delete old completed, failed and cancelled jobs"""
    base_url = config.get("api.base_url")

    try:
        with WorkerClient(base_url) as client:
            result = client.cleanup_jobs(days)
            print_success(f"Deleted {result.get('deleted', 0)} old jobs")

    except WorkerAPIError as e:
        print_error(f"Failed to clean up jobs: {e}")
        raise typer.Exit(1) from None
