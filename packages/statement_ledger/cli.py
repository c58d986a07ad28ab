# ruff: noqa: I001
"""CLI for the ``statement_ledger`` package.

A Typer console interface over :class:`statement_ledger.api.LedgerService`.
Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY`` and the
``LEDGER_*`` settings) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Business logic lives in
``statement_ledger.api`` and the modules behind it.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .api import ErrorInfo, LedgerService, ServiceResult
from .ingest import JsonStatementParser
from .logging_setup import configure_logging
from .persistence import init_db
from .settings import LedgerSettings
from .summary import summarize_transactions

console = Console()

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Ingest parsed bank statements into a deduplicated ledger, link internal "
        "transfers and resolve vendors and categories. Loads .env before running."
    ),
)

DatabaseUrl = Annotated[
    str | None,
    typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var)."),
]
UserId = Annotated[str, typer.Option("--user-id", help="Owner of the transactions.")]
OptionalUserId = Annotated[
    str | None, typer.Option("--user-id", help="Prefer this user's own mappings.")
]


# ---- Small module-level helpers used by CLI commands -------------------------


def _settings(database_url: str | None) -> LedgerSettings:
    settings = LedgerSettings.from_env()
    if database_url:
        settings = dataclasses.replace(settings, database_url=database_url)
    return settings


def _service(database_url: str | None) -> LedgerService:
    return LedgerService.from_settings(_settings(database_url), parser=JsonStatementParser())


def _fail(code: str, message: str) -> NoReturn:
    console.print(f"[red]Error ({code}):[/red] {escape(message)}")
    raise typer.Exit(1)


def _fail_result(result: ServiceResult[Any]) -> NoReturn:
    error = result.error or ErrorInfo("PROCESSING_FAILED", "operation returned no result")
    _fail(error.code, error.message)


def _print_errors(errors: list[str]) -> None:
    for err in errors:
        console.print(f"[yellow]warning:[/yellow] {escape(err)}")


# ---- Commands ----------------------------------------------------------------


@app.command("init-db")
def init_db_cmd(database_url: DatabaseUrl = None) -> None:
    """Create the ledger tables and seed the system categories."""

    try:
        created = init_db(_settings(database_url).database_url)
    except Exception as e:
        _fail("PROCESSING_FAILED", f"database initialization failed: {e}")
    console.print(f"[green]Database ready.[/green] Seeded {created} system categories.")


@app.command("ingest")
def ingest_cmd(
    statement: Annotated[
        Path,
        typer.Argument(help="Parsed statement JSON file.", dir_okay=False, exists=False),
    ],
    user_id: UserId,
    *,
    filename: Annotated[
        str | None, typer.Option(help="Name recorded for the statement file.")
    ] = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Parse, store and process a statement, then sweep for transfers."""

    try:
        document = statement.read_bytes()
    except FileNotFoundError:
        _fail("PARSING_FAILED", f"file not found: {statement}")
    except PermissionError:
        _fail("PARSING_FAILED", f"permission denied: {statement}")

    result = _service(database_url).process_statement(
        user_id, filename or statement.name, document
    )
    if not result.success or result.data is None:
        _fail_result(result)
    outcome = result.data
    console.print(
        f"[cyan]File {outcome.file_id}:[/cyan] stored={outcome.ingest.stored} "
        f"processed={outcome.processing.processed} "
        f"duplicates={outcome.ingest.duplicates + outcome.processing.duplicates} "
        f"internal_transfers={outcome.processing.internal_transfers} "
        f"linked_by_sweep={outcome.linking.linked}"
    )
    _print_errors(outcome.ingest.errors + outcome.processing.errors + outcome.linking.errors)


@app.command("process-file")
def process_file_cmd(
    file_id: Annotated[int, typer.Argument(help="Statement file id.")],
    user_id: UserId,
    database_url: DatabaseUrl = None,
) -> None:
    """(Re)build canonical transactions from a file's raw rows."""

    result = _service(database_url).process_file_transactions(file_id, user_id)
    console.print(
        f"processed={result.processed} duplicates={result.duplicates} "
        f"internal_transfers={result.internal_transfers}"
    )
    _print_errors(result.errors)
    if result.errors and result.processed == 0 and result.duplicates == 0:
        raise typer.Exit(1)


@app.command("link-transfers")
def link_transfers_cmd(user_id: UserId, database_url: DatabaseUrl = None) -> None:
    """Pair unlinked transfer legs across all of a user's files."""

    result = _service(database_url).detect_and_link_internal_transfers(user_id)
    console.print(f"linked={result.linked}")
    _print_errors(result.errors)


@app.command("resolve-vendor")
def resolve_vendor_cmd(
    text: Annotated[str, typer.Argument(help="Raw statement descriptor.")],
    user_id: OptionalUserId = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Resolve a descriptor to a clean vendor name."""

    result = _service(database_url).resolve_vendor(text, user_id)
    if not result.success or result.data is None:
        _fail_result(result)
    r = result.data
    console.print(f"{r.resolved_name}\t{r.confidence:.2f}\t{r.source}\t{r.tier}")


@app.command("resolve-category")
def resolve_category_cmd(
    vendor_name: Annotated[str, typer.Argument(help="Resolved vendor name.")],
    amount: Annotated[str, typer.Option(help="Transaction amount (positive).")],
    type_: Annotated[str, typer.Option("--type", help="DEBIT or CREDIT.")] = "DEBIT",
    *,
    description: Annotated[
        str | None, typer.Option(help="Original descriptor for extra context.")
    ] = None,
    user_id: OptionalUserId = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Suggest a category for a vendor."""

    result = _service(database_url).resolve_category(
        vendor_name, amount, type_, user_id, description=description
    )
    if not result.success or result.data is None:
        _fail_result(result)
    r = result.data
    console.print(f"{r.category_name}\t{r.confidence:.2f}\t{r.source}\t{r.tier}")


@app.command("learn")
def learn_cmd(
    text: Annotated[str, typer.Argument(help="Descriptor or vendor name being corrected.")],
    value: Annotated[str, typer.Argument(help="Corrected vendor name, or category id/name.")],
    user_id: UserId,
    kind: Annotated[str, typer.Option(help="vendor or category.")] = "vendor",
    database_url: DatabaseUrl = None,
) -> None:
    """Record a user correction and report consensus promotion."""

    if kind not in ("vendor", "category"):
        _fail("VALIDATION_ERROR", "--kind must be 'vendor' or 'category'")
    result = _service(database_url).learn_from_correction(
        text, value, user_id, kind=kind  # type: ignore[arg-type]
    )
    if not result.success or result.data is None:
        _fail_result(result)
    outcome = result.data
    console.print(
        f"[green]Learned[/green] {outcome.record.key!r} -> {outcome.record.resolved_value} "
        f"(agreeing users: {outcome.agreeing_users})"
    )
    if outcome.promoted is not None:
        console.print("[cyan]Promoted to a global mapping.[/cyan]")


@app.command("resolve-vendors")
def resolve_vendors_cmd(
    transaction_ids: Annotated[list[int], typer.Argument(help="Transaction ids (max 100).")],
    user_id: UserId,
    *,
    apply: Annotated[
        bool, typer.Option("--apply/--no-apply", help="Write confident vendor names.")
    ] = True,
    database_url: DatabaseUrl = None,
) -> None:
    """Resolve the raw descriptors of transactions to clean vendor names."""

    result = _service(database_url).resolve_transaction_vendors(
        transaction_ids, user_id, auto_apply=apply
    )
    if not result.success or result.data is None:
        _fail_result(result)

    table = Table(title="Vendor suggestions")
    table.add_column("id", justify="right")
    table.add_column("descriptor")
    table.add_column("vendor")
    table.add_column("confidence", justify="right")
    table.add_column("applied")
    for s in result.data.suggestions:
        if s.resolution is None:
            table.add_row(str(s.transaction_id), s.original_text, s.error or "-", "", "")
            continue
        table.add_row(
            str(s.transaction_id),
            s.original_text,
            s.resolution.resolved_name,
            f"{s.resolution.confidence:.2f}",
            "yes" if s.applied else "",
        )
    console.print(table)
    console.print(f"applied={result.data.applied} failed={result.data.failed}")


@app.command("categorize")
def categorize_cmd(
    transaction_ids: Annotated[list[int], typer.Argument(help="Transaction ids (max 50).")],
    user_id: UserId,
    *,
    apply: Annotated[
        bool, typer.Option("--apply/--no-apply", help="Write confident suggestions.")
    ] = True,
    database_url: DatabaseUrl = None,
) -> None:
    """Suggest categories for transactions, applying confident ones."""

    result = _service(database_url).categorize_transactions(
        transaction_ids, user_id, auto_apply=apply
    )
    if not result.success or result.data is None:
        _fail_result(result)

    table = Table(title="Category suggestions")
    table.add_column("id", justify="right")
    table.add_column("vendor")
    table.add_column("category")
    table.add_column("confidence", justify="right")
    table.add_column("applied")
    for s in result.data.suggestions:
        if s.resolution is None:
            table.add_row(str(s.transaction_id), s.vendor_name, s.error or "-", "", "")
            continue
        table.add_row(
            str(s.transaction_id),
            s.vendor_name,
            s.resolution.category_name,
            f"{s.resolution.confidence:.2f}",
            "yes" if s.applied else "",
        )
    console.print(table)


@app.command("summary")
def summary_cmd(user_id: UserId, database_url: DatabaseUrl = None) -> None:
    """Income, expenses and payment methods for a user's ledger."""

    summary = summarize_transactions(_service(database_url).list_transactions(user_id))

    totals = Table(title=f"Ledger summary for {user_id}", show_header=False)
    totals.add_column("metric")
    totals.add_column("value", justify="right")
    totals.add_row("Transactions", str(summary.total_transactions))
    totals.add_row("Income", f"{summary.total_income:,.2f}")
    totals.add_row("Expenses", f"{summary.total_expenses:,.2f}")
    totals.add_row("Net", f"{summary.net_balance:,.2f}")
    totals.add_row("Internal transfers", f"{summary.internal_transfers:,.2f}")
    console.print(totals)

    methods = Table(title="Payment methods")
    methods.add_column("method")
    methods.add_column("count", justify="right")
    methods.add_column("amount", justify="right")
    for name, t in summary.payment_methods.items():
        methods.add_row(name, str(t.count), f"{t.amount:,.2f}")
    console.print(methods)


@app.command("mapping-stats")
def mapping_stats_cmd(
    user_id: OptionalUserId = None,
    kind: Annotated[str, typer.Option(help="vendor or category.")] = "vendor",
    database_url: DatabaseUrl = None,
) -> None:
    """Counts of cached mappings visible to a user."""

    if kind not in ("vendor", "category"):
        _fail("VALIDATION_ERROR", "--kind must be 'vendor' or 'category'")
    stats = _service(database_url).mapping_stats(user_id, kind=kind)  # type: ignore[arg-type]
    console.print(
        f"total={stats.total} user={stats.user} global={stats.global_} "
        f"high_confidence={stats.high_confidence} "
        f"effectiveness={stats.cache_effectiveness:.2f}"
    )


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps already-set environment variables
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
