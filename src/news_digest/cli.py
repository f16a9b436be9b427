"""Command-line entry points for the news digest pipeline."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich import print as rprint
from rich.table import Table

from .channels import build_channels
from .config import Settings, get_settings, write_env_template
from .db import Store
from .errors import ConfigError, DigestError
from .finalizer import DeliveryReport, NothingToSummarize
from .lifecycle import FetchLifecycleManager
from .llm import client_from_settings, extract_highlights, filter_candidates
from .logging_setup import configure_logging
from .pipeline import RunResult, resume_delivery, run_pipeline
from .sources import WebScraper

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Collect news about one subject, filter it against the last digest and deliver it."
)


def _fail(exc: Exception) -> NoReturn:
    rprint(f"[red]{exc}[/red]")
    raise typer.Exit(code=1)


def _open_store(settings: Settings) -> Store:
    return Store.open(settings.database_url)


def _print_delivery(report: DeliveryReport) -> None:
    if report.already_sent:
        rprint(f"[cyan]Summary for fetch {report.fetch_id} was already sent.[/cyan]")
        return
    for result in report.results:
        if result.ok:
            rprint(f"[green]Delivered via {result.channel}[/green]")
        else:
            rprint(f"[red]{result.channel} failed: {result.error}[/red]")
    if report.sent:
        rprint(f"[green]Summary for fetch {report.fetch_id} marked sent.[/green]")
    else:
        rprint(
            f"[yellow]Summary for fetch {report.fetch_id} is drafted but not sent; "
            "run `news-digest resume` to retry.[/yellow]"
        )


def _print_run(result: RunResult) -> None:
    if result.fetch_id is None:
        rprint("[cyan]No new articles found. Everything is up to date.[/cyan]")
        return
    rprint(f"[cyan]Fetch {result.fetch_id}: stored {result.articles_stored} articles.[/cyan]")
    for url, error in (result.scrape_failures or {}).items():
        rprint(f"[yellow]Skipped {url}: {error}[/yellow]")
    if result.decisions is not None:
        rprint(
            f"[cyan]{result.candidates} candidate bullets, "
            f"{len(result.decisions.pending)} left undecided.[/cyan]"
        )
    if isinstance(result.draft, NothingToSummarize):
        rprint("[cyan]No new highlights since the last digest; nothing to send.[/cyan]")
    if result.delivery is not None:
        _print_delivery(result.delivery)


@app.command("run")
def run_command(
    no_ai: bool = typer.Option(
        False, "--no-ai", help="Only scrape and store articles; skip extraction and delivery."
    ),
    no_email: bool = typer.Option(False, "--no-email", help="Do not send the email digest."),
    no_telegram: bool = typer.Option(
        False, "--no-telegram", help="Do not send the Telegram digest."
    ),
):
    """
    Run one scheduled pass: scrape, extract, filter, summarize and deliver.

    Exits with code 1 when the run stops before the summary is sent.
    """
    settings = get_settings()
    configure_logging(settings)
    try:
        if not settings.sources:
            raise ConfigError(
                "No SOURCES configured. Run `news-digest init-config` and edit the .env file."
            )
        channels = []
        extract_fn = filter_fn = None
        if not no_ai:
            channels = build_channels(settings, no_email=no_email, no_telegram=no_telegram)
            client = client_from_settings(settings)
            extract_fn = partial(extract_highlights, client=client, settings=settings)
            filter_fn = partial(filter_candidates, client=client, settings=settings)

        store = _open_store(settings)
        try:
            result = run_pipeline(
                store,
                scraper=WebScraper(settings.sources),
                extract_fn=extract_fn,
                filter_fn=filter_fn,
                channels=channels,
                skip_ai=no_ai,
            )
        finally:
            store.close()
    except DigestError as exc:
        _fail(exc)
    except Exception:
        logger.exception("Run stopped by an unexpected error")
        raise

    _print_run(result)
    if not result.completed:
        raise typer.Exit(code=1)


@app.command("resume")
def resume_command(
    fetch_id: Optional[int] = typer.Argument(
        None, help="Fetch to deliver; defaults to the latest fetch."
    ),
    no_email: bool = typer.Option(False, "--no-email", help="Do not send the email digest."),
    no_telegram: bool = typer.Option(
        False, "--no-telegram", help="Do not send the Telegram digest."
    ),
):
    """Retry delivery of a drafted summary that was not sent."""
    settings = get_settings()
    configure_logging(settings)
    try:
        channels = build_channels(settings, no_email=no_email, no_telegram=no_telegram)
        store = _open_store(settings)
        try:
            report = resume_delivery(store, channels, fetch_id=fetch_id)
        finally:
            store.close()
    except DigestError as exc:
        _fail(exc)

    _print_delivery(report)
    if not report.sent:
        raise typer.Exit(code=1)


@app.command("status")
def status_command(
    fetch_id: Optional[int] = typer.Argument(
        None, help="Fetch to inspect; defaults to the latest fetch."
    ),
):
    """Show article, bullet and summary state for a fetch."""
    settings = get_settings()
    store = _open_store(settings)
    try:
        target = fetch_id if fetch_id is not None else store.latest_fetch_id()
        status = store.fetch_status(target) if target is not None else None
    finally:
        store.close()
    if status is None:
        rprint("[yellow]No matching fetch.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"Fetch {status.fetch_id}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("fetched_at", status.fetched_at.isoformat())
    table.add_row("articles", str(status.articles))
    table.add_row("pending", str(status.pending))
    table.add_row("accepted", str(status.accepted))
    table.add_row("rejected", str(status.rejected))
    table.add_row("summary", status.summary_state.value)
    rprint(table)


@app.command("rejected")
def rejected_command():
    """List the bullets the filter rejected in the latest fetch."""
    settings = get_settings()
    store = _open_store(settings)
    try:
        rows = store.latest_rejected_bullets()
    finally:
        store.close()
    if not rows:
        rprint("[cyan]No rejected bullets in the latest fetch.[/cyan]")
        return
    table = Table(title=f"Rejected bullets ({rows[0].fetched_at.isoformat()})")
    table.add_column("id", justify="right")
    table.add_column("text")
    for row in rows:
        table.add_row(str(row.id), row.text)
    rprint(table)


@app.command("prune")
def prune_command(
    keep_days: int = typer.Option(
        ..., "--keep-days", help="Delete fetches older than this many days."
    ),
):
    """Delete old fetches with their articles, bullets and summaries."""
    if keep_days < 0:
        raise typer.BadParameter("keep-days must be >= 0.")
    settings = get_settings()
    configure_logging(settings)
    store = _open_store(settings)
    try:
        removed = FetchLifecycleManager(store).prune(keep_days)
    finally:
        store.close()
    rprint(f"[green]Removed {len(removed)} fetches.[/green]")


@app.command("init-config")
def init_config_command(
    path: Path = typer.Option(Path(".env"), "--path", help="Where to write the template."),
):
    """Write a commented .env template to fill in."""
    if write_env_template(path):
        rprint(f"[green]Wrote template config to {path}[/green]")
    else:
        rprint(f"[yellow]Config already exists at {path}; left unchanged.[/yellow]")


def main():
    app()


if __name__ == "__main__":
    main()
