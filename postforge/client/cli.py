# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Thin client CLI commands that delegate to the REST API."""
import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from postforge.client.api import (
    DEFAULT_BASE_URL,
    PostforgeClient,
    PostforgeClientError,
    ServerUnreachableError,
    UnauthorizedError,
)
from postforge.core.types import Category, DeployAction, ReviewAction, Template


console = Console()

BaseUrlOption = Annotated[
    str,
    typer.Option("--url", envvar="POSTFORGE_URL", help="Postforge server URL"),
]


def _handle_api_error(exc: PostforgeClientError | ValidationError) -> None:
    """Print an API error with recovery guidance and exit with code 1.

    Raises:
        typer.Exit: Always.
    """
    if isinstance(exc, ServerUnreachableError):
        console.print(f"[red]Error:[/red] {exc}")
        console.print("\n[yellow]Start the server:[/yellow] postforge server")
    elif isinstance(exc, UnauthorizedError):
        console.print(f"[red]Error:[/red] {exc}")
    elif isinstance(exc, ValidationError):
        console.print(f"[red]Error:[/red] {exc.errors()[0]['msg']}")
    else:
        console.print(f"[red]Error:[/red] {exc}")

    raise typer.Exit(1) from None


def _print_event(event: dict[str, Any]) -> None:
    event_type = event.get("type")
    if event_type == "progress":
        console.print(
            f"  [dim]{event.get('progress', 0):>3}%[/dim] "
            f"[cyan]{event.get('step')}[/cyan] {event.get('message')}"
        )
    elif event_type == "review-required":
        console.print("[yellow]Waiting for human review[/yellow]")
    elif event_type == "pending-deploy":
        console.print(f"[yellow]Waiting for deploy approval:[/yellow] {event.get('filepath')}")
    elif event_type == "complete":
        pr_result = event.get("prResult") or {}
        console.print(f"[green]✓[/green] Completed: {event.get('filepath')}")
        if pr_result.get("prUrl"):
            console.print(f"  PR: {pr_result['prUrl']}")
    elif event_type == "error":
        console.print(f"[red]✗ Failed:[/red] {event.get('message')}")


def generate_command(
    topic: Annotated[str, typer.Argument(help="Topic of the post")],
    category: Annotated[
        Category, typer.Option("--category", "-c", help="Post category")
    ] = Category.TECH,
    template: Annotated[
        Template | None, typer.Option("--template", "-t", help="Post template")
    ] = None,
    target_reader: Annotated[
        str | None, typer.Option("--reader", help="Target reader")
    ] = None,
    keywords: Annotated[
        list[str] | None, typer.Option("--keyword", "-k", help="Keyword (repeatable)")
    ] = None,
    follow: Annotated[
        bool, typer.Option("--follow", "-f", help="Stream progress until the job stops")
    ] = False,
    url: BaseUrlOption = DEFAULT_BASE_URL,
) -> None:
    """Create a post generation job."""
    client = PostforgeClient(url)

    async def _generate() -> None:
        job = await client.create_job(
            topic,
            category=category,
            template=template,
            target_reader=target_reader,
            keywords=keywords,
        )
        console.print(f"[green]✓[/green] Job created: [bold]{job.id}[/bold]")
        console.print(f"  Topic: {topic}")
        console.print(f"  Status: {job.status}")
        if not follow:
            console.print(f"\n[dim]Stream: {url}{job.stream_url}[/dim]")
            return
        async for event in client.stream_job(job.id):
            _print_event(event)
            if event.get("type") in ("review-required", "pending-deploy"):
                console.print(f"\n[dim]Decide with: postforge review {job.id} ...[/dim]")
                return

    try:
        asyncio.run(_generate())
    except (PostforgeClientError, ValidationError) as e:
        _handle_api_error(e)


def status_command(
    job_id: Annotated[
        str | None, typer.Argument(help="Job ID (lists recent jobs when omitted)")
    ] = None,
    url: BaseUrlOption = DEFAULT_BASE_URL,
) -> None:
    """Show a job and its progress log, or list recent jobs."""
    client = PostforgeClient(url)

    try:
        if job_id is None:
            result = asyncio.run(client.list_jobs())
            if not result.jobs:
                console.print("[dim]No jobs[/dim]")
                return
            table = Table(title=f"Jobs ({result.total})")
            table.add_column("ID", style="cyan")
            table.add_column("Topic")
            table.add_column("Status", style="bold")
            table.add_column("Progress", justify="right")
            for job in result.jobs:
                table.add_row(job.id, job.topic, job.status, f"{job.progress}%")
            console.print(table)
            return

        detail = asyncio.run(client.get_job(job_id))
    except (PostforgeClientError, ValidationError) as e:
        _handle_api_error(e)
        return

    job = detail.job
    console.print(f"[bold]{job.topic}[/bold] ({job.id})")
    console.print(f"  Status: {job.status}  Progress: {job.progress}%")
    if job.filepath:
        console.print(f"  File: {job.filepath}")
    if job.pr_result and job.pr_result.pr_url:
        console.print(f"  PR: {job.pr_result.pr_url}")
    if job.error:
        console.print(f"  [red]Error:[/red] {job.error}")

    table = Table(title="Progress log")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Message")
    for log in detail.logs:
        table.add_row(log.step, log.status, log.message)
    console.print(table)


def review_command(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    action: Annotated[ReviewAction, typer.Argument(help="Review decision")],
    feedback: Annotated[
        str | None, typer.Option("--feedback", "-m", help="Feedback for a rewrite")
    ] = None,
    url: BaseUrlOption = DEFAULT_BASE_URL,
) -> None:
    """Approve, hold, or send feedback on a draft awaiting review."""
    client = PostforgeClient(url)

    try:
        result = asyncio.run(client.submit_review(job_id, action, feedback))
    except (PostforgeClientError, ValidationError) as e:
        _handle_api_error(e)
        return

    console.print(f"[green]✓[/green] {result.message}")
    console.print(f"  Status: {result.status}")


def edit_command(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    content_file: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, readable=True, help="Markdown file"),
    ],
    url: BaseUrlOption = DEFAULT_BASE_URL,
) -> None:
    """Replace the content of a draft awaiting review with a file's contents."""
    client = PostforgeClient(url)

    try:
        result = asyncio.run(
            client.edit_content(job_id, content_file.read_text(encoding="utf-8"))
        )
    except (PostforgeClientError, ValidationError) as e:
        _handle_api_error(e)
        return

    console.print(f"[green]✓[/green] {result.message}")
    console.print(f"  Status: {result.status}")


def deploy_command(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    action: Annotated[DeployAction, typer.Argument(help="Deploy decision")],
    url: BaseUrlOption = DEFAULT_BASE_URL,
) -> None:
    """Approve or reject deploying a validated post."""
    client = PostforgeClient(url)

    try:
        result = asyncio.run(client.decide_deploy(job_id, action))
    except (PostforgeClientError, ValidationError) as e:
        _handle_api_error(e)
        return

    console.print(f"[green]✓[/green] {result.message}")
    console.print(f"  Status: {result.status}")


def cron_command(
    secret: Annotated[
        str | None,
        typer.Option("--secret", envvar="POSTFORGE_CRON_SECRET", help="Cron secret"),
    ] = None,
    url: BaseUrlOption = DEFAULT_BASE_URL,
) -> None:
    """Run every due schedule once."""
    client = PostforgeClient(url)

    try:
        result = asyncio.run(client.trigger_cron(secret))
    except (PostforgeClientError, ValidationError) as e:
        _handle_api_error(e)
        return

    console.print(
        f"Processed {result.processed} schedule(s): "
        f"[green]{result.successful} ok[/green], [red]{result.failed} failed[/red]"
    )
    for run in result.results:
        if run.success:
            console.print(f"  [green]✓[/green] {run.name}: {run.topic} ({run.job_id})")
        else:
            console.print(f"  [red]✗[/red] {run.name}: {run.error}")
