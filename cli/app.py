from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_import_summary, render_ingest_stats, render_records
from logging_config import configure_logging
from models.errors import ImportAborted
from services.ingest_service import build_default_service
from settings import get_settings
from storage.flat_file import FlatFileStore


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Run the weather ingester and read back stored readings.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Ingest API base URL (defaults to API_BASE_URL env or http://localhost:8080).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for API responses.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("ingest")
def ingest_command(
    bulk_import: bool = typer.Option(
        False,
        "--bulk-import/--no-bulk-import",
        help="Import a flat-file store into the configured sink instead of streaming.",
    ),
    import_path: Optional[Path] = typer.Option(
        None,
        "--import-path",
        dir_okay=False,
        help="Store to import (defaults to WXDB_PATH).",
    ),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        min=1,
        help="Maximum points per import write.",
    ),
) -> None:
    """Stream from the bridge into the sink, or run a one-time bulk import."""
    configure_logging()
    settings = get_settings()
    service = build_default_service()
    try:
        if bulk_import:
            store = FlatFileStore(import_path) if import_path is not None else service.store
            if not store.path.exists():
                raise typer.BadParameter(f"Store {store.path} does not exist.")
            typer.echo(f"Importing {store.path} ...")
            try:
                summary = service.bulk_import(store, batch_size=batch_size)
            except ImportAborted as exc:
                typer.secho(
                    f"Import aborted after {exc.points_written} point(s): {exc}",
                    fg=typer.colors.RED,
                    err=True,
                )
                raise typer.Exit(code=1)
            render_import_summary(summary)
            return

        typer.echo(f"Streaming from {settings.stream_url} ...")
        stats = service.run_streaming(settings.stream_url)
        render_ingest_stats(stats)
        if not service.health.healthy:
            typer.secho("Ingester gave up on the bridge stream.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
    finally:
        service.shutdown()


@app.command("replay")
def replay_command() -> None:
    """Write spilled batches from the spool back into the sink."""
    configure_logging()
    service = build_default_service()
    try:
        summary = service.replay_spool()
    except ImportAborted as exc:
        typer.secho(f"Replay aborted: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        service.shutdown()
    render_import_summary(summary)


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    start: Optional[float] = typer.Option(None, "--start", help="Window start, epoch seconds."),
    end: Optional[float] = typer.Option(None, "--end", help="Window end, epoch seconds."),
    exact: bool = typer.Option(False, "--exact", help="Exact inclusive range instead of bracketing."),
) -> None:
    """Fetch stored readings, optionally bounded by a time window."""
    if (start is None) != (end is None):
        raise typer.BadParameter("--start and --end must be given together.")
    state = _get_state(ctx)
    records = state.client.get_readings(start=start, end=end, exact=exact)
    render_records(records)


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the most recent reading per model."""
    state = _get_state(ctx)
    render_records(state.client.get_latest(), title="Latest")
