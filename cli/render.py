from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

from services.importer import ImportSummary
from services.ingest import IngestStats

_TIME_KEYS = ("time", "unix_time")
_HIDDEN_KEYS = {"model", *_TIME_KEYS}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _record_time(record: Dict[str, Any]) -> Any:
    for key in _TIME_KEYS:
        if key in record:
            return record[key]
    return "?"


def render_records(records: List[Dict[str, Any]], title: str = "Readings") -> None:
    echo_heading(f"{title} ({len(records)})")
    if not records:
        typer.echo("No records.")
        return
    for record in records:
        values = " ".join(
            f"{key}={value}" for key, value in record.items() if key not in _HIDDEN_KEYS
        )
        typer.echo(f"  {_record_time(record)} {record.get('model', '?')} {values}")


def render_import_summary(summary: ImportSummary) -> None:
    echo_heading("Import Summary")
    echo_key_values([("records", summary.records), ("batches", summary.batches)])


def render_ingest_stats(stats: IngestStats) -> None:
    echo_heading("Ingest Summary")
    echo_key_values([("elements", stats.total)])
    echo_key_values(
        sorted((outcome.value, count) for outcome, count in stats.counts.items())
    )
