"""Nudge command line interface.

Wires the Strava client, token manager, document store and sync service
together for local use.
"""

from __future__ import annotations

import asyncio
from typing import Any

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from nudge.analytics.personal_records import format_duration, get_cycling_prs, get_general_prs, get_running_prs
from nudge.config.settings import settings
from nudge.core.encryption import TokenCipher
from nudge.core.logger import setup_logger
from nudge.db.session import get_engine
from nudge.db.store import DocumentStore, StoreUnavailableError
from nudge.ingestion.sync import SyncResult, SyncService
from nudge.integrations.strava.client import StravaClient
from nudge.integrations.strava.errors import AuthenticationError
from nudge.integrations.strava.schemas import AuthSession
from nudge.integrations.strava.tokens import TokenManager
from nudge.state.session_repository import FileSessionRepository

console = Console()

app = typer.Typer(
    name="nudge",
    help="Nudge - mirror Strava activities and compute personal records",
    add_completion=False,
)


def _session_repository() -> FileSessionRepository:
    return FileSessionRepository(settings.session_file, TokenCipher(settings.encryption_key))


def _sync_service(repository: FileSessionRepository) -> SyncService:
    config = settings.strava_config()
    return SyncService(
        store=DocumentStore(get_engine()),
        token_manager=TokenManager(config),
        client_factory=lambda token: StravaClient(token, config=config),
        session_repository=repository,
    )


def _require_session(repository: FileSessionRepository) -> AuthSession:
    session = repository.load()
    if session is None:
        console.print("[red]Not logged in.[/red] Run [bold]nudge authorize-url[/bold] then [bold]nudge login CODE[/bold].")
        raise typer.Exit(1)
    return session


def _progress(message: str) -> None:
    console.print(f"[dim]→[/dim] {message}")


def _print_sync_result(result: SyncResult) -> None:
    table = Table(title="Sync results")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Details")
    for name in ("athlete", "stats", "activities"):
        stage = getattr(result.results, name)
        if stage is None:
            table.add_row(name, "[dim]skipped[/dim]", "")
        elif stage.success:
            table.add_row(name, "[green]ok[/green]", stage.message or "")
        else:
            table.add_row(name, "[red]failed[/red]", stage.error or "")
    console.print(table)

    if result.success:
        console.print(Panel(Text("Sync completed", style="bold green"), subtitle=result.last_sync_time, border_style="green"))
    else:
        console.print(Panel(Text("Sync completed with errors", style="bold yellow"), subtitle=result.last_sync_time, border_style="yellow"))


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    setup_logger(settings, debug=debug)


@app.command()
def authorize_url() -> None:
    """Print the Strava authorization URL to open in a browser."""
    console.print(TokenManager(settings.strava_config()).authorization_url())


@app.command()
def login(code: str = typer.Argument(..., help="Authorization code from the Strava redirect")) -> None:
    """Exchange an authorization code and store the session."""
    repository = _session_repository()
    try:
        session = asyncio.run(TokenManager(settings.strava_config()).exchange_code(code))
    except AuthenticationError as e:
        console.print(f"[red]Login failed:[/red] {e}")
        raise typer.Exit(1) from e
    repository.save(session)
    athlete = session.athlete or {}
    name = " ".join(part for part in (athlete.get("firstname"), athlete.get("lastname")) if part)
    console.print(f"[green]Logged in[/green] as {name or 'athlete'} (id={session.athlete_id})")


@app.command()
def logout() -> None:
    """Forget the stored session."""
    _session_repository().clear()
    console.print("Logged out")


@app.command()
def sync(
    since: str | None = typer.Option(None, "--since", help="Fetch activities since this ISO date (default: last 3 months)"),
    only: list[str] = typer.Option([], "--only", help="Sync only these data types: athlete, stats, activities"),
) -> None:
    """Sync Strava data into the local store."""
    repository = _session_repository()
    session = _require_session(repository)
    service = _sync_service(repository)

    try:
        if only:
            results = asyncio.run(service.quick_sync(session, only, _progress, start_date=since))
            for name, stage in results.items():
                status = "[green]ok[/green]" if stage.success else f"[red]failed[/red] {stage.error}"
                console.print(f"{name}: {status}")
            if not all(stage.success for stage in results.values()):
                raise typer.Exit(1)
            return
        result = asyncio.run(service.sync_all(session, _progress, start_date=since))
    except (AuthenticationError, StoreUnavailableError) as e:
        console.print(f"[red]Sync failed:[/red] {e}")
        raise typer.Exit(1) from e

    _print_sync_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def auto_sync(
    max_age_hours: float = typer.Option(settings.sync_max_age_hours, "--max-age-hours", help="Sync when the last sync is older than this"),
) -> None:
    """Sync only when the stored data is stale."""
    repository = _session_repository()
    session = _require_session(repository)
    try:
        result = asyncio.run(_sync_service(repository).auto_sync(session, max_age_hours, _progress))
    except (AuthenticationError, StoreUnavailableError) as e:
        console.print(f"[red]Sync failed:[/red] {e}")
        raise typer.Exit(1) from e
    if result is not None:
        _print_sync_result(result)


@app.command()
def status() -> None:
    """Show the last sync status."""
    repository = _session_repository()
    session = _require_session(repository)
    store = DocumentStore(get_engine())
    try:
        sync_status = asyncio.run(store.get_sync_status(session.athlete_id))
    except StoreUnavailableError as e:
        logger.error(f"Reading sync status failed: {e}")
        console.print(f"[red]Store unavailable:[/red] {e}")
        raise typer.Exit(1) from e
    if sync_status is None:
        console.print("Never synced")
        return
    state = "[green]success[/green]" if sync_status.success else "[red]failed[/red]"
    console.print(f"Last sync: {sync_status.last_sync_time} ({state})")
    for error in sync_status.errors:
        console.print(f"  [red]•[/red] {error}")


def _record_value(record: dict[str, Any] | None) -> tuple[str, str]:
    if record is None:
        return "-", ""
    activity = record.get("activity") or {}
    meta = f"{activity.get('name') or ''} • {(activity.get('start_date') or '')[:10]}" if activity else ""
    if "time_seconds" in record:
        return format_duration(record["time_seconds"]), f"{meta} ({record['method']})"
    if "distance" in record:
        return f"{record['distance'] / 1000:.2f} km", meta
    if "elevation" in record:
        return f"{round(record['elevation'])} m", meta
    return f"{round(record['total'])} m", ""


def _print_records(title: str, records: dict[str, dict[str, Any] | None]) -> None:
    table = Table(title=title)
    table.add_column("Record")
    table.add_column("Value", justify="right")
    table.add_column("Activity")
    for label, record in records.items():
        value, meta = _record_value(record)
        table.add_row(label, value, meta)
    console.print(table)


@app.command()
def prs(sport: str = typer.Argument("all", help="run, ride or all")) -> None:
    """Show personal records computed from the stored activities."""
    if sport not in {"run", "ride", "all"}:
        console.print("[red]Error:[/red] sport must be one of: run, ride, all")
        raise typer.Exit(1)
    session = _require_session(_session_repository())
    store = DocumentStore(get_engine())

    try:
        if sport in {"run", "all"}:
            _print_records("Running", asyncio.run(get_running_prs(store, session.athlete_id)))
        if sport in {"ride", "all"}:
            _print_records("Cycling", asyncio.run(get_cycling_prs(store, session.athlete_id)))
        if sport == "all":
            table = Table(title="By sport")
            for column in ("Sport", "Count", "Longest", "Fastest avg", "Biggest climb"):
                table.add_column(column)
            for name, group in asyncio.run(get_general_prs(store, session.athlete_id)).items():
                longest, fastest, climb = group["longest"], group["fastest"], group["biggest_climb"]
                table.add_row(
                    name,
                    str(group["count"]),
                    f"{longest['distance'] / 1000:.2f} km" if longest else "-",
                    f"{fastest['average_speed'] * 3.6:.1f} km/h" if fastest else "-",
                    f"{round(climb['elevation'])} m" if climb else "-",
                )
            console.print(table)
    except StoreUnavailableError as e:
        logger.error(f"PR computation failed: {e}")
        console.print(f"[red]Store unavailable:[/red] {e}")
        raise typer.Exit(1) from e


if __name__ == "__main__":
    app()
