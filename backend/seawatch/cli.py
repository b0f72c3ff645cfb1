"""SeaWatch CLI: cross-source deduplication of maritime incident reports.

Commands:
  dedup    - run one deduplication pass (use --dry-run to preview)
  runs     - recent runs from the local ledger
  review   - merges flagged for manual review (conflicting incident links)
  init-db  - create the ledger tables
  serve    - run the HTTP API
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from seawatch.config import settings

app = typer.Typer(
    name="seawatch",
    help="Cross-source deduplication of maritime security incident reports.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("dedup")
def dedup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Score and report pairs without writing"),
    confidence_threshold: float = typer.Option(
        settings.DEDUP_CONFIDENCE_THRESHOLD, "--confidence-threshold", min=0.0, max=1.0,
        help="Minimum score for a pair to be merged",
    ),
    max_records: int = typer.Option(settings.DEDUP_MAX_RECORDS, "--max-records", min=1),
    lookback_days: int = typer.Option(settings.DEDUP_LOOKBACK_DAYS, "--lookback-days", min=1),
):
    """Run cross-source deduplication over recent unmerged raw records."""
    from seawatch.database import SessionLocal, init_db
    from seawatch.modules.cross_source_dedup import DedupFetchError
    from seawatch.modules.downstream_trigger import DownstreamTriggerError
    from seawatch.schemas.dedup import DedupRunOptions

    logging.basicConfig(level=settings.LOG_LEVEL)
    options = DedupRunOptions(
        dry_run=dry_run,
        confidence_threshold=confidence_threshold,
        max_records=max_records,
        lookback_days=lookback_days,
    )

    init_db()
    db = SessionLocal()
    try:
        with console.status("[bold]Deduplicating raw records..."):
            result = asyncio.run(_run_dedup(options, db))
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2)
    except DedupFetchError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except DownstreamTriggerError as e:
        if e.result is not None:
            _print_summary(e.result, console)
        console.print(f"[red]Merges applied but downstream trigger failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    _print_summary(result, console)
    if dry_run:
        _print_pairs(result, console)
    if result.review_flags:
        console.print(
            f"[yellow]{result.review_flags} merge(s) linked to different incidents. "
            "Run [cyan]seawatch review[/cyan] to inspect.[/yellow]"
        )


@app.command("runs")
def runs(
    limit: int = typer.Option(10, "--limit", min=1, help="Number of runs to show"),
):
    """Show recent dedup runs."""
    from seawatch.database import SessionLocal, init_db
    from seawatch.models.dedup_run import DedupRun

    init_db()
    db = SessionLocal()
    try:
        rows = (
            db.query(DedupRun)
            .order_by(DedupRun.started_at.desc(), DedupRun.run_id.desc())
            .limit(limit)
            .all()
        )
        if not rows:
            console.print("[dim]No dedup runs recorded yet.[/dim]")
            return

        table = Table(title=f"Recent Dedup Runs ({len(rows)})")
        table.add_column("ID", style="cyan")
        table.add_column("Started")
        table.add_column("Status")
        table.add_column("Dry run")
        table.add_column("Analyzed")
        table.add_column("Matches")
        table.add_column("Merged")
        for r in rows:
            summary = r.summary_json or {}
            status_style = "green" if r.status == "completed" else "red"
            table.add_row(
                str(r.run_id),
                str(r.started_at)[:19] if r.started_at else "?",
                f"[{status_style}]{r.status}[/{status_style}]",
                "yes" if r.dry_run else "no",
                str(summary.get("recordsAnalyzed", "-")),
                str(summary.get("potentialMatchesFound", "-")),
                str(summary.get("mergesPerformed", "-")),
            )
        console.print(table)
    finally:
        db.close()


@app.command("review")
def review(
    limit: int = typer.Option(50, "--limit", min=1),
):
    """List merges flagged for manual review."""
    from seawatch.database import SessionLocal, init_db
    from seawatch.models.merge_operation import MergeOperation

    init_db()
    db = SessionLocal()
    try:
        ops = (
            db.query(MergeOperation)
            .filter(MergeOperation.needs_review == True)  # noqa: E712
            .order_by(MergeOperation.merge_op_id.desc())
            .limit(limit)
            .all()
        )
        if not ops:
            console.print("[green]No merges need review.[/green]")
            return

        table = Table(title=f"Merges Flagged for Review ({len(ops)})")
        table.add_column("Op", style="cyan")
        table.add_column("Run")
        table.add_column("Primary")
        table.add_column("Secondary")
        table.add_column("Kept incident")
        table.add_column("Reason")
        for op in ops:
            table.add_row(
                str(op.merge_op_id),
                str(op.run_id),
                f"{op.primary_source or '?'} - {op.primary_record_id}",
                f"{op.secondary_source or '?'} - {op.secondary_record_id}",
                op.linked_incident_id or "-",
                op.review_reason or "",
            )
        console.print(table)
    finally:
        db.close()


@app.command("init-db")
def init_db_command():
    """Create the run-ledger tables."""
    from seawatch.database import init_db

    init_db()
    console.print("[green]Ledger tables ready.[/green]")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the HTTP API (POST /api/v1/dedup/cross-source)."""
    import uvicorn

    console.print(f"SeaWatch API listening on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run("seawatch.main:app", host=host, port=port)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _run_dedup(options, db):
    """Wire the Airtable stores, vocabulary and trigger, then run one pass."""
    from seawatch.modules.cross_source_dedup import run_cross_source_dedup
    from seawatch.modules.dedup_config import load_dedup_config
    from seawatch.modules.downstream_trigger import HttpDownstreamTrigger
    from seawatch.modules.record_store import AirtableRecordStore
    from seawatch.modules.reference_data import AirtableIncidentTypeVocabulary

    config = load_dedup_config()
    async with AirtableRecordStore.from_settings() as store, AirtableRecordStore.from_settings(
        table=settings.AIRTABLE_INCIDENT_TYPE_TABLE
    ) as reference_store:
        vocabulary = AirtableIncidentTypeVocabulary(
            reference_store, config.incident_type_groups, config.similarity.type_group_score
        )
        trigger = None
        if settings.PUBLIC_URL:
            trigger = HttpDownstreamTrigger.from_settings(store)
        elif not options.dry_run:
            console.print("[yellow]PUBLIC_URL not set, downstream trigger disabled.[/yellow]")
        return await run_cross_source_dedup(
            store, options=options, trigger=trigger, vocabulary=vocabulary, config=config, db=db,
        )


def _print_summary(result, con: Console) -> None:
    table = Table(title="Dry Run Summary" if result.dry_run else "Dedup Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Records analyzed", str(result.records_analyzed))
    table.add_row("Sources", str(result.source_count))
    table.add_row("Pairs compared", str(result.pairs_compared))
    table.add_row("Potential matches", str(result.potential_matches_found))
    table.add_row("  high confidence", str(result.high_confidence_matches))
    table.add_row("  medium confidence", str(result.medium_confidence_matches))
    table.add_row("Merges performed", str(result.merges_performed))
    table.add_row("Merge errors", str(result.merge_errors))
    table.add_row("Review flags", str(result.review_flags))
    con.print(table)


def _print_pairs(result, con: Console) -> None:
    if not result.per_pair_results:
        return
    table = Table(title=f"Candidate Pairs ({len(result.per_pair_results)})")
    table.add_column("Record 1")
    table.add_column("Record 2")
    table.add_column("Score", justify="right")
    table.add_column("Confidence")
    table.add_column("Action")
    table.add_column("Primary", style="cyan")
    for p in result.per_pair_results:
        table.add_row(
            f"{p.record1_source or '?'} - {p.record1_id}",
            f"{p.record2_source or '?'} - {p.record2_id}",
            f"{p.score:.3f}",
            p.confidence,
            p.action,
            p.primary_id or "-",
        )
    con.print(table)


if __name__ == "__main__":
    app()
