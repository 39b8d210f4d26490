# ruff: noqa: I001
"""CLI for the ``backoffice`` package.

Command handlers (``cmd_*``) return process exit codes and are wrapped by a
Typer console interface. ``.env`` is loaded with ``python-dotenv`` and
logging configured before any command runs. Business logic lives in
``backoffice.api`` and the modules it orchestrates.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging


def _database(database_url: str | None):
    from db.client import Database

    return Database.from_env(database_url=database_url)


def _config(config_path: Path | None):
    from .config import default_ingest_config, load_ingest_config

    return load_ingest_config(config_path) if config_path else default_ingest_config()


def cmd_parse_statement(path: Path, *, config_path: Path | None = None) -> int:
    """Parse a statement workbook and print the transactions as JSON."""

    from .api import parse_statement_upload

    try:
        data = path.read_bytes()
    except OSError as e:
        print(f"Error: cannot read {path}: {e}", file=sys.stderr)
        return 1
    status, payload = parse_statement_upload(path.name, data, config=_config(config_path))
    if status != 200:
        print(f"Error: {payload.get('message')}", file=sys.stderr)
        if payload.get("error"):
            print(payload["error"], file=sys.stderr)
        return 1
    print(json.dumps(payload, indent=2))
    return 0


def cmd_export_csv(path: Path, output: Path | None = None, *, config_path: Path | None = None) -> int:
    """Parse a statement workbook and write it as CSV (stdout when no output)."""

    from .errors import SheetReadError, UnsupportedFileTypeError
    from .ingest.csv_export import transactions_to_csv
    from .ingest.statement_parser import parse_statement_file

    try:
        transactions = parse_statement_file(
            path.read_bytes(), filename=path.name, config=_config(config_path).statement
        )
    except (OSError, SheetReadError, UnsupportedFileTypeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    text = transactions_to_csv(transactions)
    if output is None:
        print(text)
    else:
        output.write_text(text, encoding="utf-8")
        print(f"Wrote {len(transactions)} transactions to {output}")
    return 0


def cmd_import_statement(
    path: Path,
    *,
    source: str,
    database_url: str | None = None,
    config_path: Path | None = None,
) -> int:
    """Parse a statement workbook and upsert its rows into ``bo_transactions``."""

    from .errors import SheetReadError, UnsupportedFileTypeError
    from .ingest.statement_parser import parse_statement_file
    from .persistence import upsert_statement_transactions

    try:
        transactions = parse_statement_file(
            path.read_bytes(), filename=path.name, config=_config(config_path).statement
        )
    except (OSError, SheetReadError, UnsupportedFileTypeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if not transactions:
        print("No transactions found in the file")
        return 0
    database = _database(database_url)
    try:
        with database.session_scope() as session:
            summary = upsert_statement_transactions(
                session, source=source, transactions=transactions
            )
    finally:
        database.dispose()
    print(f"Imported {summary.inserted} new and refreshed {summary.updated} transactions")
    return 0


def cmd_seed_suppliers(path: Path, *, database_url: str | None = None) -> int:
    from .suppliers import seed_suppliers_from_json

    database = _database(database_url)
    try:
        with database.session_scope() as session:
            count = seed_suppliers_from_json(session, path)
    finally:
        database.dispose()
    print(f"Seeded {count} suppliers")
    return 0


def cmd_reconcile_inventory(
    *,
    supplier: str | None = None,
    apply: bool = False,
    database_url: str | None = None,
) -> int:
    """Compare stored stock with ledger history; optionally fix drifted stock."""

    from .ledger import reconcile_all, set_stock_to_calculated

    database = _database(database_url)
    drifted = 0
    try:
        with database.session_scope() as session:
            for r in reconcile_all(session, supplier=supplier):
                if r.difference == 0:
                    continue
                drifted += 1
                print(
                    f"{r.product_id}\t{r.product_name}\tcurrent={r.current_stock:g}"
                    f"\tcalculated={r.calculated_stock:g}\tdiff={r.difference:+g}"
                )
                if apply:
                    set_stock_to_calculated(session, r.product_id, r.calculated_stock)
    finally:
        database.dispose()
    action = "corrected" if apply else "drifted"
    print(f"{drifted} products {action}")
    return 0


def cmd_suggest_mapping(
    source_text: str,
    *,
    mapping_type: str,
    max_results: int | None = None,
    database_url: str | None = None,
) -> int:
    from .mappings import mapping_to_json, suggest_mappings
    from .models import MappingType

    try:
        kind = MappingType(mapping_type)
    except ValueError:
        valid = ", ".join(m.value for m in MappingType)
        print(f"Error: unknown mapping type {mapping_type!r} (expected one of {valid})", file=sys.stderr)
        return 1
    database = _database(database_url)
    try:
        with database.session_scope() as session:
            rows = suggest_mappings(session, kind, source_text, max_results=max_results)
            payload = [mapping_to_json(r) for r in rows]
    finally:
        database.dispose()
    print(json.dumps(payload, indent=2))
    return 0


def cmd_db_ping(*, database_url: str | None = None) -> int:
    database = _database(database_url)
    try:
        ok = database.ping()
    finally:
        database.dispose()
    print("ok" if ok else "unreachable")
    return 0 if ok else 1


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Back-office ingestion: card statements, supplier invoices and inventory "
        "reconciliation. Loads DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects keep calls out of parameter defaults (ruff B008).
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
CONFIG_OPTION: OptionInfo = typer.Option(
    None,
    "--config",
    help="Ingest config JSON (falls back to BACKOFFICE_CONFIG, then the packaged default).",
    dir_okay=False,
)


@app.command("parse-statement")
def parse_statement_cmd(
    path: Path = typer.Argument(..., help="Statement workbook (.xlsx)", dir_okay=False),
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Print the transactions parsed from a statement workbook as JSON."""

    raise typer.Exit(cmd_parse_statement(path, config_path=config_path))


@app.command("export-csv")
def export_csv_cmd(
    path: Path = typer.Argument(..., help="Statement workbook (.xlsx)", dir_okay=False),
    output: Path | None = typer.Option(None, "--output", "-o", help="CSV destination."),
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Convert a statement workbook to the normalized CSV layout."""

    raise typer.Exit(cmd_export_csv(path, output, config_path=config_path))


@app.command("import-statement")
def import_statement_cmd(
    path: Path = typer.Argument(..., help="Statement workbook (.xlsx)", dir_okay=False),
    source: str = typer.Option("amex", help="Source identifier stored with each row."),
    database_url: str | None = DATABASE_URL_OPTION,
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Parse a statement workbook and upsert it into the database."""

    raise typer.Exit(
        cmd_import_statement(
            path, source=source, database_url=database_url, config_path=config_path
        )
    )


@app.command("seed-suppliers")
def seed_suppliers_cmd(
    path: Path = typer.Argument(..., help="Supplier seed JSON", dir_okay=False),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Insert or update suppliers from a JSON seed file."""

    raise typer.Exit(cmd_seed_suppliers(path, database_url=database_url))


@app.command("reconcile-inventory")
def reconcile_inventory_cmd(
    supplier: str | None = typer.Option(None, help="Only products of this supplier."),
    apply: bool = typer.Option(False, help="Overwrite drifted stock with the ledger value."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Report products whose stock disagrees with the inventory ledger."""

    raise typer.Exit(
        cmd_reconcile_inventory(supplier=supplier, apply=apply, database_url=database_url)
    )


@app.command("suggest-mapping")
def suggest_mapping_cmd(
    source_text: str = typer.Argument(..., help="Free text to look up"),
    mapping_type: str = typer.Option("product_names", "--type", help="Mapping type."),
    max_results: int | None = typer.Option(None, help="Maximum suggestions."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Show learned mappings for a piece of text."""

    raise typer.Exit(
        cmd_suggest_mapping(
            source_text,
            mapping_type=mapping_type,
            max_results=max_results,
            database_url=database_url,
        )
    )


@app.command("db-ping")
def db_ping_cmd(database_url: str | None = DATABASE_URL_OPTION) -> None:
    """Check that the database answers a trivial query."""

    raise typer.Exit(cmd_db_ping(database_url=database_url))


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Log level (falls back to BACKOFFICE_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps variables already set in the environment
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    app()
