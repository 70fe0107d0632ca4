"""
pure-ingest — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Make sure the schema exists (idempotent).
  4. Run the stage or the scheduler.
  5. Report the result to stdout.

Install and run::

    pip install -e .
    pure-ingest --help
    pure-ingest init-db
    pure-ingest validate-config
    pure-ingest sync-products
    pure-ingest sync-transactions
    pure-ingest run
    pure-ingest backfill-event-types --skip-market-refresh
    pure-ingest backfill-image-urls
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="pure-ingest",
    help="Pure marketplace ingestion service — catalog, trades and event types into SQLite.",
    add_completion=False,
)

_DB_PATH_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")
_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from pure_ingest.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config) -> None:
    from pure_ingest.utils.logging import configure_logging
    configure_logging(config.logging)


def _prepare(config_path: Optional[str], db_path: Optional[str]):
    """Load config, configure logging, ensure the schema. Returns ``(config, db)``."""
    from pure_ingest.db.connection import get_connection
    from pure_ingest.db.migrations import init_database

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    target_db = db_path or config.database.db_path

    with get_connection(
        target_db,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        init_database(conn)
    return config, target_db


def _run_stage(stage, label: str, **kwargs):
    """Run a stage, echoing its status; exit 1 if it raised."""
    typer.echo(f"{label} ...")
    try:
        report = stage.run(**kwargs)
    except Exception as exc:
        typer.echo(f"[FAILED] {label}: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"  status={report.run.status} | written={report.rows_written} "
        f"| skipped={report.rows_skipped}"
    )
    return report


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Create the SQLite database, apply the schema and pending migrations.

    Safe to run multiple times.
    """
    from pure_ingest.db.connection import get_connection
    from pure_ingest.db.migrations import init_database
    from pure_ingest.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        migrations_applied = init_database(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print the full config as JSON."),
) -> None:
    """Validate the configuration and print the resolved values.

    The API key is always masked.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  API base URL:      {config.api.base_url}")
    typer.echo(f"  API key:           {'set' if config.api.api_key else 'MISSING'}")
    typer.echo(f"  Product sync:      every {config.sync.product_interval_seconds:g}s")
    typer.echo(f"  Transaction sync:  every {config.sync.transaction_interval_seconds:g}s")
    typer.echo(
        f"  Retry:             {config.retry.max_retries} retries, "
        f"{config.retry.initial_backoff_seconds:g}s backoff, "
        f"{config.retry.rate_limit_delay_seconds:g}s pre-call delay"
    )
    typer.echo(f"  Product batch:     {config.batch.product_batch_size}")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(mode="json"), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("sync-products")
def sync_products(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Fetch the Pure catalog once and upsert every variant."""
    from pure_ingest.pipeline.product_sync import ProductSyncStage

    config, target_db = _prepare(config_path, db_path)
    report = _run_stage(ProductSyncStage(config=config, db_path=target_db), "Product sync")
    typer.echo(
        f"  products fetched={report.products_fetched}/{report.products_requested} "
        f"| failed batches={len(report.failed_batches)} "
        f"| join misses={len(report.join_misses)}"
    )


@app.command("sync-transactions")
def sync_transactions(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Fetch trade activity for every stored variant once."""
    from pure_ingest.pipeline.transaction_sync import TransactionSyncStage

    config, target_db = _prepare(config_path, db_path)
    report = _run_stage(
        TransactionSyncStage(config=config, db_path=target_db), "Transaction sync"
    )
    typer.echo(
        f"  variants={report.variants_total} (failed {len(report.variants_failed)}) "
        f"| events={report.events_received} | parse errors={report.parse_errors}"
    )


@app.command("run")
def run_scheduler(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Start the sync scheduler. Blocks until Ctrl-C (or SIGTERM)."""
    from pure_ingest.scheduler import SyncScheduler

    config, target_db = _prepare(config_path, db_path)
    scheduler = SyncScheduler.from_config(config, db_path=target_db)
    scheduler.install_signal_handlers()
    typer.echo(f"Scheduler running against {target_db} (Ctrl-C to stop).")
    scheduler.run()
    typer.echo("[OK] Scheduler stopped.")


@app.command("backfill-event-types")
def backfill_event_types(
    skip_market_refresh: bool = typer.Option(
        False,
        "--skip-market-refresh",
        help="Classify against stored snapshots without refetching the catalog.",
    ),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Re-derive buy/sell/unknown for every stored transaction."""
    from pure_ingest.pipeline.backfill import EventTypeBackfill

    config, target_db = _prepare(config_path, db_path)
    report = _run_stage(
        EventTypeBackfill(config=config, db_path=target_db),
        "Event type backfill",
        refresh_market_data=not skip_market_refresh,
    )
    typer.echo(
        f"  pages={report.pages} | reclassified={report.reclassified.succeeded} "
        f"| orphaned={len(report.orphaned_transaction_ids)}"
    )


@app.command("backfill-image-urls")
def backfill_image_urls(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Set image URLs on stored products from the current catalog."""
    from pure_ingest.pipeline.backfill import ImageUrlBackfill

    config, target_db = _prepare(config_path, db_path)
    report = _run_stage(ImageUrlBackfill(config=config, db_path=target_db), "Image URL backfill")
    typer.echo(f"  updated={report.updated} | unmatched={len(report.unmatched)}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
