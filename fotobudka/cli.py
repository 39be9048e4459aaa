"""Operator CLI for the fotobudka generation client.

Usage:
    fotobudka login
    fotobudka tokens
    fotobudka catalog
    fotobudka effects
    fotobudka effect photo.jpg --template-id 7 [--video]
    fotobudka history [--kind photo|video]
    fotobudka retry JOB_ID
    fotobudka remove JOB_ID
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.table import Table

from fotobudka.app import AppServices, open_services
from fotobudka.config import load_settings
from fotobudka.errors import FotobudkaError
from fotobudka.models import GenerationJobRecord, JobKind, JobStatus

console = Console()

_DEFAULT_CONFIG = "config.yaml"


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet down httpx unless debugging
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _run(ctx: click.Context, action: Callable[[AppServices], Awaitable[Any]]) -> Any:
    """Load settings, open the services and run ``action`` on them."""

    async def _main() -> Any:
        async with open_services(settings) as services:
            return await action(services)

    try:
        settings = load_settings(ctx.obj["config"])
        return asyncio.run(_main())
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        sys.exit(1)
    except FotobudkaError as exc:
        console.print(f"[red]Request failed: {exc}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Unfinished jobs are not kept.[/yellow]")
        sys.exit(130)


def _status_str(record: GenerationJobRecord) -> str:
    if record.status is JobStatus.SUCCESS:
        return "[green]SUCCESS[/green]"
    if record.status is JobStatus.ERROR:
        return "[red]ERROR[/red]"
    return "[yellow]PROCESSING[/yellow]"


def _print_record(services: AppServices, record: GenerationJobRecord | None) -> None:
    if record is None:
        console.print("[yellow]Job no longer exists.[/yellow]")
    elif record.status is JobStatus.SUCCESS:
        path = services.store.resolve_path(record.result_path or "")
        console.print(f"[green]Job {record.id} done -> {path}[/green]")
    elif record.status is JobStatus.ERROR:
        console.print(f"[red]Job {record.id} failed: {record.error_message}[/red]")
        console.print(f"[dim]Retry with: fotobudka retry {record.id}[/dim]")
    else:
        console.print(f"[yellow]Job {record.id} is still processing.[/yellow]")


async def _require_session(services: AppServices) -> bool:
    await services.session.bootstrap()
    if not services.session.is_authorized:
        console.print("[red]Not authorized. Check identity settings and try again.[/red]")
        return False
    return True


@click.group()
@click.option("--config", "-c", default=_DEFAULT_CONFIG, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """fotobudka AI photo/video generation client."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    _setup_logging(verbose)


@cli.command("login")
@click.pass_context
def cmd_login(ctx: click.Context) -> None:
    """Register/authorize against the backend."""

    async def action(services: AppServices) -> None:
        state = await services.session.bootstrap()
        color = "green" if services.session.is_authorized else "red"
        console.print(f"[{color}]Session: {state.value}[/{color}]")

    _run(ctx, action)


@cli.command("logout")
@click.pass_context
def cmd_logout(ctx: click.Context) -> None:
    """Forget the stored user id and token."""

    async def action(services: AppServices) -> None:
        services.session.sign_out()
        console.print("[green]Signed out.[/green]")

    _run(ctx, action)


@cli.command("tokens")
@click.pass_context
def cmd_tokens(ctx: click.Context) -> None:
    """Show the current token balance."""

    async def action(services: AppServices) -> None:
        if not await _require_session(services):
            sys.exit(1)
        await services.ledger.load()
        console.print(f"Tokens: [bold]{services.ledger.balance}[/bold]")
        console.print(f"Avatar tokens: [bold]{services.ledger.avatar_balance}[/bold]")

    _run(ctx, action)


@cli.command("catalog")
@click.pass_context
def cmd_catalog(ctx: click.Context) -> None:
    """Resolve and show the product catalog."""

    async def action(services: AppServices) -> None:
        resolver = services.catalog
        entries = await resolver.fetch_catalog()

        table = Table(title=f"Catalog ({resolver.provider_name or 'none'})", show_lines=True)
        table.add_column("Group", style="cyan")
        table.add_column("Products")
        for entry in entries:
            table.add_row(entry.identifier, "\n".join(entry.product_ids))
        for group in sorted(resolver.unavailable_groups):
            table.add_row(group, "[red]unavailable[/red]")
        console.print(table)
        console.print(f"State: [bold]{resolver.state.value}[/bold]")

    _run(ctx, action)


@cli.command("effects")
@click.option("--lang", default="en", help="Language of template titles")
@click.pass_context
def cmd_effects(ctx: click.Context, lang: str) -> None:
    """List photo effects and video templates."""

    async def action(services: AppServices) -> None:
        if not await _require_session(services):
            sys.exit(1)
        effects = await services.generation.fetch_effects(lang)
        templates = await services.generation.fetch_video_templates(lang)

        table = Table(title="Photo effects", show_lines=True)
        table.add_column("Group", style="cyan")
        table.add_column("Template ID", justify="right")
        table.add_column("Title")
        for group in effects:
            for item in group.effects:
                table.add_row(group.title or str(group.id), str(item.id), item.title or "")
        console.print(table)

        table = Table(title="Video templates", show_lines=True)
        table.add_column("Group", style="cyan")
        table.add_column("Template ID", justify="right")
        table.add_column("Title")
        for group in templates:
            for video in group.videos:
                title = f"{video.title} [magenta](new)[/magenta]" if video.is_new else video.title
                table.add_row(group.title or str(group.id), str(video.id), title)
        console.print(table)

    _run(ctx, action)


@cli.command("effect")
@click.argument("photo", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--template-id", "-t", required=True, type=int, help="Effect or video template id")
@click.option("--video", is_flag=True, help="Generate a video from a video template")
@click.pass_context
def cmd_effect(ctx: click.Context, photo: Path, template_id: int, video: bool) -> None:
    """Run an effect on PHOTO and wait for the result."""
    kind = JobKind.VIDEO_EFFECT if video else JobKind.PHOTO_EFFECT

    async def action(services: AppServices) -> None:
        if not await _require_session(services):
            sys.exit(1)
        job_id = services.store.start_job(photo.read_bytes(), template_id, kind)
        with console.status(f"Generating ({kind.value}, job {job_id})..."):
            record = await services.store.wait(job_id)
        _print_record(services, record)
        await services.ledger.load()
        console.print(f"Tokens left: [bold]{services.ledger.balance}[/bold]")

    _run(ctx, action)


@cli.command("history")
@click.option("--kind", type=click.Choice(["photo", "video"]), default=None, help="Filter by kind")
@click.pass_context
def cmd_history(ctx: click.Context, kind: str | None) -> None:
    """Show stored generation jobs, newest first."""

    async def action(services: AppServices) -> None:
        store = services.store
        if kind == "photo":
            records = store.photo_records
        elif kind == "video":
            records = store.video_records
        else:
            records = store.records

        if not records:
            console.print("[yellow]No generations yet.[/yellow]")
            return

        table = Table(title="Generations", show_lines=True)
        table.add_column("Job ID", style="cyan")
        table.add_column("Kind")
        table.add_column("Template", justify="right")
        table.add_column("Created")
        table.add_column("Status", justify="center")
        table.add_column("Result / Error", max_width=50)
        for record in records:
            created = datetime.fromtimestamp(record.created_at).strftime("%Y-%m-%d %H:%M")
            detail = record.result_path or record.error_message or ""
            table.add_row(
                record.id, record.kind.value, str(record.template_id),
                created, _status_str(record), detail,
            )
        console.print(table)

    _run(ctx, action)


@cli.command("retry")
@click.argument("job_id")
@click.pass_context
def cmd_retry(ctx: click.Context, job_id: str) -> None:
    """Retry a failed job from its saved input."""

    async def action(services: AppServices) -> None:
        if not await _require_session(services):
            sys.exit(1)
        if not services.store.retry_job(job_id):
            console.print(f"[yellow]Job {job_id} cannot be retried.[/yellow]")
            return
        with console.status(f"Retrying job {job_id}..."):
            record = await services.store.wait(job_id)
        _print_record(services, record)

    _run(ctx, action)


@cli.command("remove")
@click.argument("job_id")
@click.pass_context
def cmd_remove(ctx: click.Context, job_id: str) -> None:
    """Delete a job and its files."""

    async def action(services: AppServices) -> None:
        if services.store.remove_job(job_id):
            console.print(f"[green]Removed {job_id}.[/green]")
        else:
            console.print(f"[yellow]No job {job_id}.[/yellow]")

    _run(ctx, action)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
