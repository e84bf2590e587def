"""
CLI interface for studydeck.

Provides command-line access to usage limits, study progress, exports and
the HTTP server.
"""

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from studydeck.config.loader import load_config
from studydeck.core.export import export_cards, export_filename
from studydeck.core.progress import ProgressService
from studydeck.core.quota import QuotaLedger, format_token_usage
from studydeck.logging_config import configure_logging
from studydeck.storage.db import resolve_db_path
from studydeck.storage.repository import StudyRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DB_OPTION = typer.Option(None, "--db", help="SQLite database path")


def _repository(db_path: Optional[str]) -> StudyRepository:
    return StudyRepository(resolve_db_path(db_path))


def _format_remaining(value: Optional[int]) -> str:
    return "unlimited" if value is None else f"{value:,}"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """studydeck CLI."""
    if ctx.invoked_subcommand is None:
        console.print("studydeck - Use --help to see available commands")


@app.command()
def init(db: Optional[str] = DB_OPTION):
    """Initialize the studydeck database."""
    try:
        initialize_schema(resolve_db_path(db))
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def limits(
    user_id: str = typer.Argument(..., help="Profile id"),
    db: Optional[str] = DB_OPTION,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
):
    """Show a user's monthly usage limits."""
    app_config = load_config(config)
    ledger = QuotaLedger(_repository(db), app_config.plans)

    stats = ledger.get_usage_stats(user_id)
    if stats is None:
        console.print(f"[red]Error:[/] profile {user_id} not found")
        sys.exit(EXIT_CODE_FAIL)

    usage = ledger.check_limits(user_id)

    table = Table(title=f"Usage limits for {user_id}")
    table.add_column("Resource")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Allowed")
    table.add_row(
        "Decks",
        f"{stats.decks_created_this_month:,}",
        _format_remaining(usage.decks_remaining),
        "yes" if usage.can_create_deck else "no",
    )
    table.add_row(
        "Tokens",
        f"{stats.tokens_processed_this_month:,}",
        _format_remaining(usage.tokens_remaining),
        "yes" if usage.can_process_tokens else "no",
    )
    console.print(table)
    console.print(f"Plan: [bold]{usage.plan.value}[/bold]")
    console.print(format_token_usage(stats.tokens_processed_this_month, stats.plan,
                                     app_config.plans))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    user_id: str = typer.Argument(..., help="Profile id"),
    db: Optional[str] = DB_OPTION,
):
    """Show study streak and mastery for a user and each of their decks."""
    repository = _repository(db)
    progress = ProgressService(repository)

    user = progress.user_stats(user_id)
    console.print(f"\n[bold]Study streak:[/bold] {user.study_streak} day(s)")
    console.print(f"[bold]Overall mastery:[/bold] {user.mastery_percentage}%")
    console.print(f"[bold]Reviews recorded:[/bold] {user.total_reviews:,}")

    decks = repository.list_decks(user_id)
    if not decks:
        console.print("\n[dim]No decks found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Decks")
    table.add_column("Deck")
    table.add_column("Cards", justify="right")
    table.add_column("Mastery", justify="right")
    for deck in decks:
        deck_stats = progress.deck_stats(deck.id)
        table.add_row(deck.title, str(deck_stats.card_count),
                      f"{deck_stats.mastery_percentage}%")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def export(
    deck_id: str = typer.Argument(..., help="Deck id"),
    fmt: str = typer.Option("csv", "--format", "-f", help="Export format: csv or txt"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output file (defaults to <title>-flashcards.<format>)"
    ),
    db: Optional[str] = DB_OPTION,
):
    """Export a deck's flashcards."""
    repository = _repository(db)
    deck = repository.get_deck(deck_id)
    if deck is None:
        console.print(f"[red]Error:[/] deck {deck_id} not found")
        sys.exit(EXIT_CODE_FAIL)

    try:
        content = export_cards(repository.list_flashcards(deck_id), fmt)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    path = output or Path(export_filename(deck.title, fmt))
    path.write_text(content, encoding="utf-8")
    console.print(f"[green]✓[/] Exported {deck.title} to {path}")
    sys.exit(EXIT_CODE_PASS)


@app.command("reset-usage")
def reset_usage(
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Only reset this profile"),
    db: Optional[str] = DB_OPTION,
):
    """Zero monthly usage counters (run at the start of each billing period)."""
    try:
        count = _repository(db).reset_monthly_usage(user_id)
    except Exception as e:
        console.print(f"[red]Error resetting usage:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Reset usage for {count} profile(s)")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
):
    """Run the HTTP API."""
    import uvicorn

    from studydeck.web.app import create_app

    configure_logging()
    uvicorn.run(create_app(), host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
