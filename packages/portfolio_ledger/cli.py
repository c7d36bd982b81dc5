# ruff: noqa: I001
"""CLI for the ``portfolio_ledger`` package.

Command handlers (``cmd_reconcile``, ``cmd_apply``, ...) return a process exit
code and are wrapped by a Typer console interface. ``DATABASE_URL`` and
``PORTFOLIO_LEDGER_LOG_LEVEL`` are read from a local ``.env`` through
``python-dotenv`` before any command runs. Business logic lives in
``portfolio_ledger.ledger``, ``portfolio_ledger.importing`` and
``portfolio_ledger.persistence``.
"""

from __future__ import annotations

import csv
import json
import sys
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typer.models import ArgumentInfo, OptionInfo

from .ingest import LoadedBatch, load_records
from .logging_setup import configure_logging
from .models import LedgerEntry, ReconciliationResult
from .money import ZERO, format_brl, format_plain, format_quantity, to_cents, to_decimal


# ---- Small module-level helpers used by CLI commands -------------------------


def _read_batch(input_path: Path) -> LoadedBatch | None:
    """Load ``input_path``; print a one-line error and return ``None`` on failure."""

    try:
        return load_records(input_path)
    except FileNotFoundError:
        print(f"Error: File not found: {input_path}", file=sys.stderr)
    except PermissionError:
        print(f"Error: Permission denied: {input_path}", file=sys.stderr)
    except csv.Error as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
    except ValueError as e:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        print(f"Error: Failed to read '{input_path}': {e}", file=sys.stderr)
    return None


def _read_text(input_path: Path) -> str | None:
    try:
        return input_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: File not found: {input_path}", file=sys.stderr)
    except PermissionError:
        print(f"Error: Permission denied: {input_path}", file=sys.stderr)
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: Failed to read '{input_path}': {e}", file=sys.stderr)
    return None


def _parse_opening_balance(raw: str) -> Decimal | None:
    try:
        value = to_cents(to_decimal(raw))
    except ValueError:
        print(f"Error: invalid --initial-balance: {raw}", file=sys.stderr)
        return None
    if value < 0:
        print("Error: --initial-balance must not be negative", file=sys.stderr)
        return None
    return value


def _entries_table(entries: list[LedgerEntry], *, title: str | None = None) -> Table:
    table = Table(title=title)
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Ticker")
    table.add_column("Qty", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Amount", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Notes")
    for e in entries:
        tx = e.transaction
        table.add_row(
            tx.date.isoformat(),
            tx.type.value,
            tx.ticker or "",
            format_quantity(tx.quantity) or "",
            format_quantity(tx.price) or "",
            format_brl(tx.cash_effect),
            format_brl(e.balance_after),
            escape(tx.notes or ""),
        )
    return table


def _print_messages(console: Console, errors: list[str], warnings: list[str]) -> None:
    for message in errors:
        console.print(f"[red]error:[/red] {escape(message)}")
    for message in warnings:
        console.print(f"[yellow]warning:[/yellow] {escape(message)}")


def _emit_result(result: ReconciliationResult, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return
    console = Console()
    console.print(_entries_table(list(result.entries)))
    _print_messages(console, result.errors, result.warnings)
    console.print(
        f"Balance: {format_brl(result.initial_balance)} -> {format_brl(result.final_balance)}"
    )


# ---- Command handlers --------------------------------------------------------


def cmd_reconcile(input_path: Path, *, initial_balance: str = "0", as_json: bool = False) -> int:
    """Reconcile a JSON/CSV batch against ``initial_balance`` and print the result.

    Rejected records are reported next to the accepted ones; they do not
    change the exit status. Returns ``1`` only when the input cannot be read
    or the opening balance is malformed.
    """

    from .ledger import reconcile
    from .reporting import Reporter

    opening = _parse_opening_balance(initial_balance)
    if opening is None:
        return 1
    batch = _read_batch(input_path)
    if batch is None:
        return 1

    reporter = Reporter()
    reporter.extend_upstream(batch.errors, batch.warnings)
    result = reconcile(opening, batch.records, reporter=reporter)
    _emit_result(result, as_json=as_json)
    return 0


def cmd_import_response(
    input_path: Path, *, initial_balance: str = "0", as_json: bool = False
) -> int:
    """Reconcile the JSON envelope embedded in a raw extraction response."""

    from .errors import ExtractionError
    from .importing import import_transactions, parse_extraction_response

    opening = _parse_opening_balance(initial_balance)
    if opening is None:
        return 1
    text = _read_text(input_path)
    if text is None:
        return 1

    try:
        envelope = parse_extraction_response(text)
    except ExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit_result(import_transactions(envelope, opening), as_json=as_json)
    return 0


def cmd_filter_input(input_path: Path) -> int:
    """Print ``input_path`` with options and futures lines removed."""

    from .importing import strip_derivatives

    text = _read_text(input_path)
    if text is None:
        return 1
    print(strip_derivatives(text).text)
    return 0


def cmd_apply(
    input_path: Path,
    *,
    portfolio: str,
    database_url: str | None = None,
    pending: bool = False,
    as_json: bool = False,
) -> int:
    """Reconcile a batch against a stored portfolio and persist the result.

    The batch is reconciled against the portfolio's current cash balance, so
    contributions are synthesized for purchases the stored cash cannot cover.
    Rows that would still overdraw the stored history (e.g. a withdrawal dated
    before existing purchases) are refused and reported. With ``pending`` the
    rows are staged for review instead (see ``confirm``/``reject``).
    """

    from db.client import session_scope
    from .ledger import reconcile
    from .persistence import (
        TransactionStatus,
        apply_transactions,
        current_cash_balance,
        get_or_create_portfolio,
    )
    from .reporting import Reporter

    batch = _read_batch(input_path)
    if batch is None:
        return 1

    status = TransactionStatus.PENDING if pending else TransactionStatus.EXECUTED
    try:
        with session_scope(database_url=database_url) as session:
            target = get_or_create_portfolio(session, portfolio)
            opening = current_cash_balance(session, target.id)
            reporter = Reporter()
            reporter.extend_upstream(batch.errors, batch.warnings)
            result = reconcile(opening, batch.records, reporter=reporter)
            outcome = apply_transactions(session, target.id, result.transactions, status=status)
    except Exception as e:
        print(f"Error: persistence failed: {e}", file=sys.stderr)
        return 1

    errors = [*result.errors, *outcome.errors]
    warnings = [*result.warnings, *outcome.warnings]
    summary: dict[str, Any] = {
        "portfolio": portfolio.strip(),
        "status": status.value,
        "created": outcome.created,
        "created_ids": outcome.created_ids,
        "errors": errors,
        "warnings": warnings,
        "final_balance": format_plain(outcome.final_balance),
    }
    if as_json:
        print(json.dumps(summary, ensure_ascii=False, indent=2))
        return 0

    console = Console()
    _print_messages(console, errors, warnings)
    verb = "Staged" if pending else "Saved"
    console.print(
        f"{verb} {outcome.created} transaction(s) to '{escape(summary['portfolio'])}'. "
        f"Cash balance: {format_brl(outcome.final_balance)}"
    )
    return 0


def cmd_balances(portfolio: str, *, database_url: str | None = None, as_json: bool = False) -> int:
    """Recalculate and print the stored running balances of ``portfolio``."""

    from db.client import session_scope
    from .balances import replay_balances, summarize
    from .persistence import find_portfolio, load_transactions, recalculate_cash_balances

    try:
        with session_scope(database_url=database_url) as session:
            target = find_portfolio(session, portfolio.strip())
            if target is None:
                print(f"Error: portfolio not found: {portfolio}", file=sys.stderr)
                return 1
            final = recalculate_cash_balances(session, target.id)
            entries = replay_balances(load_transactions(session, target.id), presorted=True)
    except Exception as e:
        print(f"Error: failed to recalculate balances: {e}", file=sys.stderr)
        return 1

    if as_json:
        body = {
            "portfolio": target.name,
            "final_balance": format_plain(final),
            "transactions": [
                {
                    **e.transaction.to_record(),
                    "cash_balance_before": format_plain(e.balance_before),
                    "cash_balance_after": format_plain(e.balance_after),
                }
                for e in entries
            ],
        }
        print(json.dumps(body, ensure_ascii=False, indent=2))
        return 0

    console = Console()
    console.print(_entries_table(entries, title=escape(target.name)))
    for kind, total in summarize(e.transaction for e in entries).items():
        if total != ZERO:
            console.print(f"{kind.value}: {format_brl(total)}")
    console.print(f"Cash balance: {format_brl(final)}")
    return 0


def cmd_transactions(
    portfolio: str,
    *,
    status: str | None = None,
    database_url: str | None = None,
    as_json: bool = False,
) -> int:
    """List the stored rows of ``portfolio`` with their ids and review status."""

    from db.client import session_scope
    from .persistence import TransactionStatus, find_portfolio, list_transactions

    statuses = None
    if status is not None:
        try:
            statuses = [TransactionStatus(status.strip().upper())]
        except ValueError:
            print(f"Error: unknown status: {status}", file=sys.stderr)
            return 1

    try:
        with session_scope(database_url=database_url) as session:
            target = find_portfolio(session, portfolio.strip())
            if target is None:
                print(f"Error: portfolio not found: {portfolio}", file=sys.stderr)
                return 1
            rows = [
                {
                    "id": r.id,
                    "status": r.status,
                    "date": r.date.isoformat(),
                    "type": r.type,
                    "ticker": r.ticker,
                    "amount": format_plain(r.amount),
                    "notes": r.notes,
                    "rejection_reason": r.rejection_reason,
                }
                for r in list_transactions(session, target.id, statuses=statuses)
            ]
    except Exception as e:
        print(f"Error: failed to list transactions: {e}", file=sys.stderr)
        return 1

    if as_json:
        body = {"portfolio": portfolio.strip(), "transactions": rows}
        print(json.dumps(body, ensure_ascii=False, indent=2))
        return 0

    table = Table(title=escape(portfolio.strip()))
    for name in ("ID", "Date", "Type", "Ticker", "Amount", "Status", "Notes"):
        table.add_column(name, justify="right" if name in ("ID", "Amount") else "left")
    for r in rows:
        table.add_row(
            str(r["id"]),
            r["date"],
            r["type"],
            r["ticker"] or "",
            r["amount"],
            r["status"],
            escape(r["rejection_reason"] or r["notes"] or ""),
        )
    Console().print(table)
    return 0


def _run_review(
    describe: str,
    op: Callable[[Any], Decimal | dict[int, Decimal]],
    *,
    database_url: str | None = None,
) -> int:
    """Run one review operation in its own transaction and report the new balance."""

    from db.client import session_scope
    from .errors import LedgerError

    try:
        with session_scope(database_url=database_url) as session:
            result = op(session)
    except LedgerError as e:
        # not found, wrong status, or the change would overdraw the history
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {describe} failed: {e}", file=sys.stderr)
        return 1

    print(f"{describe}: done.")
    if isinstance(result, dict):
        for portfolio_id, final in result.items():
            print(f"Cash balance (portfolio {portfolio_id}): {format_brl(final)}")
    else:
        print(f"Cash balance: {format_brl(result)}")
    return 0


def cmd_confirm(transaction_ids: list[int], *, database_url: str | None = None) -> int:
    """Confirm pending rows; all of them or none."""

    from .persistence import confirm_transactions

    return _run_review(
        f"confirm {len(transaction_ids)} transaction(s)",
        lambda session: confirm_transactions(session, transaction_ids),
        database_url=database_url,
    )


def cmd_reject(
    transaction_id: int, *, reason: str | None = None, database_url: str | None = None
) -> int:
    from .persistence import reject_transaction

    return _run_review(
        f"reject transaction {transaction_id}",
        lambda session: reject_transaction(session, transaction_id, reason),
        database_url=database_url,
    )


def cmd_revert(transaction_id: int, *, database_url: str | None = None) -> int:
    from .persistence import revert_transaction

    return _run_review(
        f"revert transaction {transaction_id}",
        lambda session: revert_transaction(session, transaction_id),
        database_url=database_url,
    )


def cmd_delete(transaction_id: int, *, database_url: str | None = None) -> int:
    from .persistence import delete_transaction

    return _run_review(
        f"delete transaction {transaction_id}",
        lambda session: delete_transaction(session, transaction_id),
        database_url=database_url,
    )


def cmd_init_db(*, database_url: str | None = None) -> int:
    """Create the ledger tables when they do not exist yet."""

    from db.client import init_schema

    try:
        init_schema(database_url=database_url)
    except Exception as e:
        print(f"Error: failed to initialize database: {e}", file=sys.stderr)
        return 1
    print("Database schema is ready.")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Reconcile brokerage transactions against a cash balance, synthesizing "
        "contributions for uncovered purchases. Loads DATABASE_URL from a local .env."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Required ones are used through ``Annotated``.
INPUT_OPTION: OptionInfo = typer.Option(
    ...,  # required
    "--input",
    "-i",
    help="Path to the input file.",
    dir_okay=False,
    file_okay=True,
    exists=False,  # missing files are reported by the handlers
)
INITIAL_BALANCE_OPTION: OptionInfo = typer.Option(
    "0", "--initial-balance", help="Cash available before the first transaction (BRL)."
)
JSON_OPTION: OptionInfo = typer.Option(False, "--json", help="Print JSON instead of a table.")
PORTFOLIO_OPTION: OptionInfo = typer.Option(..., "--portfolio", "-p", help="Portfolio name.")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
LOG_LEVEL_OPTION: OptionInfo = typer.Option(
    None, "--log-level", help="Override PORTFOLIO_LEDGER_LOG_LEVEL (e.g. DEBUG)."
)

PENDING_OPTION: OptionInfo = typer.Option(
    False, "--pending", help="Stage the rows as PENDING for review instead of executing them."
)
STATUS_OPTION: OptionInfo = typer.Option(
    None, "--status", help="Only rows with this status (EXECUTED, CONFIRMED, PENDING, REJECTED)."
)
REASON_OPTION: OptionInfo = typer.Option(None, "--reason", help="Why the row was rejected.")
TRANSACTION_IDS_ARGUMENT: ArgumentInfo = typer.Argument(..., help="Stored transaction id(s).")
TRANSACTION_ID_ARGUMENT: ArgumentInfo = typer.Argument(..., help="Stored transaction id.")


@app.command("reconcile")
def reconcile_cmd(
    input_path: Annotated[Path, INPUT_OPTION],
    initial_balance: str = INITIAL_BALANCE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Reconcile a JSON or CSV batch of transactions."""

    raise typer.Exit(cmd_reconcile(input_path, initial_balance=initial_balance, as_json=as_json))


@app.command("import-response")
def import_response_cmd(
    input_path: Annotated[Path, INPUT_OPTION],
    initial_balance: str = INITIAL_BALANCE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Reconcile the transactions inside a raw extraction response."""

    raise typer.Exit(
        cmd_import_response(input_path, initial_balance=initial_balance, as_json=as_json)
    )


@app.command("filter-input")
def filter_input_cmd(input_path: Annotated[Path, INPUT_OPTION]) -> None:
    """Strip options and futures lines from a statement before extraction."""

    raise typer.Exit(cmd_filter_input(input_path))


@app.command("apply")
def apply_cmd(
    input_path: Annotated[Path, INPUT_OPTION],
    portfolio: Annotated[str, PORTFOLIO_OPTION],
    database_url: str | None = DATABASE_URL_OPTION,
    pending: bool = PENDING_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Reconcile a batch against a stored portfolio and save it."""

    raise typer.Exit(
        cmd_apply(
            input_path,
            portfolio=portfolio,
            database_url=database_url,
            pending=pending,
            as_json=as_json,
        )
    )


@app.command("balances")
def balances_cmd(
    portfolio: Annotated[str, PORTFOLIO_OPTION],
    database_url: str | None = DATABASE_URL_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Recalculate and show a portfolio's running cash balances."""

    raise typer.Exit(cmd_balances(portfolio, database_url=database_url, as_json=as_json))


@app.command("transactions")
def transactions_cmd(
    portfolio: Annotated[str, PORTFOLIO_OPTION],
    status: str | None = STATUS_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """List stored transactions with their ids and status."""

    raise typer.Exit(
        cmd_transactions(portfolio, status=status, database_url=database_url, as_json=as_json)
    )


@app.command("confirm")
def confirm_cmd(
    transaction_ids: Annotated[list[int], TRANSACTION_IDS_ARGUMENT],
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Confirm pending transactions so they move cash."""

    raise typer.Exit(cmd_confirm(transaction_ids, database_url=database_url))


@app.command("reject")
def reject_cmd(
    transaction_id: Annotated[int, TRANSACTION_ID_ARGUMENT],
    reason: str | None = REASON_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Reject a pending transaction."""

    raise typer.Exit(cmd_reject(transaction_id, reason=reason, database_url=database_url))


@app.command("revert")
def revert_cmd(
    transaction_id: Annotated[int, TRANSACTION_ID_ARGUMENT],
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Send a confirmed or rejected transaction back to pending."""

    raise typer.Exit(cmd_revert(transaction_id, database_url=database_url))


@app.command("delete")
def delete_cmd(
    transaction_id: Annotated[int, TRANSACTION_ID_ARGUMENT],
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Delete a stored transaction (confirmed ones must be reverted first)."""

    raise typer.Exit(cmd_delete(transaction_id, database_url=database_url))


@app.command("init-db")
def init_db_cmd(database_url: str | None = DATABASE_URL_OPTION) -> None:
    """Create the portfolio tables."""

    raise typer.Exit(cmd_init_db(database_url=database_url))


@app.callback()
def _root(log_level: str | None = LOG_LEVEL_OPTION) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover
    app()
