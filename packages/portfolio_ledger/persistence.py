# ruff: noqa: I001
"""Persistence integration for portfolio_ledger.

Functions here read and write the ``portfolio_transactions`` table owned by
``libs/db``. They take a caller-provided SQLAlchemy session and never commit;
wrap calls in :func:`db.client.session_scope` for a transactional unit.

Scope:
- Load a portfolio's history as :class:`~portfolio_ledger.models.Transaction`.
- Apply a reconciled batch, refusing rows that would overdraw the history.
  An automatic contribution and the purchase after it are written together
  or not at all.
- Move rows through the review lifecycle (pending -> confirmed/rejected and
  back), always recalculating the stored balances afterwards.
- Recalculate the stored before/after cash balances in ``(date, id)`` order.
"""

from __future__ import annotations

import bisect
import dataclasses
import datetime as dt
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.portfolio import Portfolio, PortfolioTransaction
from .balances import lowest_balance, replay_balances, summarize
from .errors import InsufficientCashError, TransactionNotFoundError, TransactionStateError
from .logging_setup import get_logger
from .models import Transaction, TransactionType
from .money import ZERO, format_brl, to_cents


class TransactionStatus(StrEnum):
    EXECUTED = "EXECUTED"
    CONFIRMED = "CONFIRMED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"


# Statuses whose rows move cash.
ACTIVE_STATUSES: tuple[str, ...] = (TransactionStatus.CONFIRMED.value, TransactionStatus.EXECUTED.value)
# Stored balances may dip this far below zero from historical rounding.
NEGATIVE_TOLERANCE = Decimal("-0.01")


@dataclass(frozen=True, slots=True)
class ApplyOutcome:
    """Result of :func:`apply_transactions`."""

    created_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    final_balance: Decimal = ZERO

    @property
    def created(self) -> int:
        return len(self.created_ids)


# ---------------------------------------------------------------------------
# Portfolios
# ---------------------------------------------------------------------------


def find_portfolio(session: Session, name: str) -> Portfolio | None:
    return session.execute(select(Portfolio).where(Portfolio.name == name)).scalar_one_or_none()


def get_or_create_portfolio(session: Session, name: str) -> Portfolio:
    clean = (name or "").strip()
    if not clean:
        raise ValueError("portfolio name is required")
    portfolio = find_portfolio(session, clean)
    if portfolio is None:
        portfolio = Portfolio(name=clean)
        session.add(portfolio)
        session.flush()
    return portfolio


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def _to_transaction(row: PortfolioTransaction) -> Transaction:
    return Transaction(
        type=TransactionType(row.type),
        date=row.date,
        amount=Decimal(row.amount),
        ticker=row.ticker,
        price=Decimal(row.price) if row.price is not None else None,
        quantity=Decimal(row.quantity) if row.quantity is not None else None,
        notes=row.notes,
    )


def list_transactions(
    session: Session, portfolio_id: int, *, statuses: Iterable[str] | None = None
) -> list[PortfolioTransaction]:
    """Stored rows of ``portfolio_id`` in ``(date, id)`` order, optionally by status."""

    stmt = select(PortfolioTransaction).where(PortfolioTransaction.portfolio_id == portfolio_id)
    if statuses is not None:
        stmt = stmt.where(PortfolioTransaction.status.in_(list(statuses)))
    stmt = stmt.order_by(PortfolioTransaction.date, PortfolioTransaction.id)
    return list(session.execute(stmt).scalars())


def _active_rows(session: Session, portfolio_id: int) -> list[PortfolioTransaction]:
    return list_transactions(session, portfolio_id, statuses=ACTIVE_STATUSES)


def load_transactions(session: Session, portfolio_id: int) -> list[Transaction]:
    """Confirmed/executed transactions in ``(date, id)`` order."""

    return [_to_transaction(r) for r in _active_rows(session, portfolio_id)]


def current_cash_balance(session: Session, portfolio_id: int) -> Decimal:
    entries = replay_balances(load_transactions(session, portfolio_id), presorted=True)
    return entries[-1].balance_after if entries else ZERO


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def recalculate_cash_balances(
    session: Session, portfolio_id: int, *, logger: logging.Logger | None = None
) -> Decimal:
    """Rewrite ``cash_balance_before/after`` for every active row; return the final balance."""

    log = logger or get_logger("portfolio_ledger.persistence")
    rows = _active_rows(session, portfolio_id)
    entries = replay_balances((_to_transaction(r) for r in rows), presorted=True)
    for row, entry in zip(rows, entries, strict=True):
        row.cash_balance_before = entry.balance_before
        row.cash_balance_after = entry.balance_after
    session.flush()

    final = entries[-1].balance_after if entries else ZERO
    totals = summarize(e.transaction for e in entries)
    log.info(
        "recalculated %d transaction(s) for portfolio %s; final balance %s",
        len(rows),
        portfolio_id,
        format_brl(final),
    )
    log.debug("totals by type: %s", {k.value: str(v) for k, v in totals.items()})
    return final


def insert_covered(history: list[Transaction], tx: Transaction) -> list[Transaction]:
    """Return ``history`` with ``tx`` placed after every row of the same date.

    Raises :class:`InsufficientCashError` when any running balance of the
    result would fall below :data:`NEGATIVE_TOLERANCE`.
    """

    at = bisect.bisect_right(history, tx.date, key=lambda t: t.date)
    candidate = [*history[:at], tx, *history[at:]]
    entries = replay_balances(candidate, presorted=True)
    low = lowest_balance(entries)
    if low is not None and low < NEGATIVE_TOLERANCE:
        what = "compra" if tx.type is TransactionType.BUY else "saque"
        raise InsufficientCashError(
            balance=entries[at].balance_before,
            requested=tx.amount,
            message=(
                f"Saldo insuficiente para {what}. Você precisa de "
                f"{format_brl(-low)} adicionais em caixa."
            ),
        )
    return candidate


def size_contribution(
    history: list[Transaction], contribution: Transaction, purchase: Transaction
) -> Transaction:
    """Grow ``contribution`` so ``purchase`` is covered where it lands in ``history``.

    A batch reconciled against the final stored balance can under-size the
    contribution for a backdated purchase: the balance on the purchase date,
    or any later one, may be lower. The result is never smaller than
    ``contribution``.
    """

    at = bisect.bisect_right(history, purchase.date, key=lambda t: t.date)
    entries = replay_balances([*history[:at], purchase, *history[at:]], presorted=True)
    needed = to_cents(-min(e.balance_after for e in entries[at:]))
    if needed <= contribution.amount:
        return contribution
    return dataclasses.replace(contribution, amount=needed)


def _add_row(session: Session, portfolio_id: int, tx: Transaction, status: str) -> int:
    row = PortfolioTransaction(
        portfolio_id=portfolio_id,
        date=tx.date,
        type=tx.type.value,
        ticker=tx.ticker,
        amount=tx.amount,
        price=tx.price,
        quantity=tx.quantity,
        notes=tx.notes,
        status=str(status),
    )
    session.add(row)
    session.flush()
    return row.id


def _is_paired(batch: Sequence[Transaction], i: int) -> bool:
    tx = batch[i]
    if not tx.is_automatic_contribution or i + 1 >= len(batch):
        return False
    nxt = batch[i + 1]
    return nxt.type is TransactionType.BUY and nxt.date == tx.date


def apply_transactions(
    session: Session,
    portfolio_id: int,
    transactions: Iterable[Transaction],
    *,
    status: str = TransactionStatus.EXECUTED,
    logger: logging.Logger | None = None,
) -> ApplyOutcome:
    """Insert ``transactions`` in input order, then refresh stored balances.

    Each transaction is checked against the stored history as it would look
    after the insert (it lands after existing rows of the same date). When any
    running balance would fall below :data:`NEGATIVE_TOLERANCE` the row is
    refused and reported as ``"Transação N: ..."`` (1-based); the remaining
    transactions are still applied. The caller commits.

    An automatic contribution followed by the purchase it backs is one unit:
    the contribution is resized with :func:`size_contribution` when needed, and
    both rows are written or neither is.

    With ``status="PENDING"`` the rows are staged for review without the
    balance check; they move no cash until confirmed.
    """

    log = logger or get_logger("portfolio_ledger.persistence")
    if status not in (TransactionStatus.EXECUTED, TransactionStatus.PENDING):
        raise ValueError(f"cannot import transactions as {status}")
    batch = list(transactions)

    if status == TransactionStatus.PENDING:
        staged = [_add_row(session, portfolio_id, tx, status) for tx in batch]
        log.info("staged %d pending transaction(s) for portfolio %s", len(staged), portfolio_id)
        return ApplyOutcome(
            created_ids=staged, final_balance=current_cash_balance(session, portfolio_id)
        )

    history = load_transactions(session, portfolio_id)
    created: list[int] = []
    errors: list[str] = []
    warnings: list[str] = []

    i = 0
    while i < len(batch):
        unit = [batch[i]]
        if _is_paired(batch, i):
            unit = [size_contribution(history, batch[i], batch[i + 1]), batch[i + 1]]
        candidate = history
        try:
            for offset, tx in enumerate(unit):
                position = i + offset + 1
                candidate = insert_covered(candidate, tx)
        except InsufficientCashError as exc:
            errors.append(f"Transação {position}: {exc}")
            log.warning(
                "refused transaction %d (%s %s): balance before it is %s",
                position,
                tx.type,
                tx.amount,
                exc.balance,
            )
            i += len(unit)
            continue

        if unit[0] is not batch[i]:
            warnings.append(
                f"Aporte automático para compra de {batch[i + 1].ticker} ajustado de "
                f"{format_brl(batch[i].amount)} para {format_brl(unit[0].amount)}: o saldo em "
                f"{unit[1].date:%d/%m/%Y} é menor que o saldo atual"
            )
        created.extend(_add_row(session, portfolio_id, tx, status) for tx in unit)
        history = candidate
        i += len(unit)

    final = recalculate_cash_balances(session, portfolio_id, logger=log) if created else (
        current_cash_balance(session, portfolio_id)
    )
    return ApplyOutcome(created_ids=created, errors=errors, warnings=warnings, final_balance=final)


# ---------------------------------------------------------------------------
# Review lifecycle
# ---------------------------------------------------------------------------


def _get_row(session: Session, transaction_id: int) -> PortfolioTransaction:
    row = session.get(PortfolioTransaction, transaction_id)
    if row is None:
        raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
    return row


def _require_status(row: PortfolioTransaction, *allowed: TransactionStatus, action: str) -> None:
    if row.status not in allowed:
        names = " or ".join(s.lower() for s in allowed)
        raise TransactionStateError(
            f"Only {names} transactions can be {action} (transaction {row.id} is {row.status})"
        )


def _check_active_history(
    session: Session,
    portfolio_id: int,
    *,
    adding: Sequence[PortfolioTransaction] = (),
    removing: Sequence[PortfolioTransaction] = (),
) -> None:
    """Raise :class:`InsufficientCashError` if the change would overdraw the history."""

    removed = {r.id for r in removing}
    rows = [r for r in _active_rows(session, portfolio_id) if r.id not in removed]
    rows = sorted([*rows, *adding], key=lambda r: (r.date, r.id))
    entries = replay_balances((_to_transaction(r) for r in rows), presorted=True)
    low = lowest_balance(entries)
    if low is None or low >= NEGATIVE_TOLERANCE:
        return
    worst = min(entries, key=lambda e: e.balance_after)
    raise InsufficientCashError(
        balance=worst.balance_before,
        requested=sum((Decimal(r.amount) for r in [*adding, *removing]), ZERO),
        message=(
            f"Saldo insuficiente: o caixa ficaria em {format_brl(low)} em "
            f"{worst.transaction.date:%d/%m/%Y}."
        ),
    )


def _now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def confirm_transactions(
    session: Session, transaction_ids: Iterable[int], *, logger: logging.Logger | None = None
) -> dict[int, Decimal]:
    """Confirm pending rows; return the recalculated final balance per portfolio.

    Every id must exist and be PENDING, and confirming them must not overdraw
    any affected portfolio. Otherwise nothing changes.
    """

    log = logger or get_logger("portfolio_ledger.persistence")
    rows = [_get_row(session, i) for i in dict.fromkeys(transaction_ids)]
    by_portfolio: dict[int, list[PortfolioTransaction]] = {}
    for row in rows:
        _require_status(row, TransactionStatus.PENDING, action="confirmed")
        by_portfolio.setdefault(row.portfolio_id, []).append(row)
    for portfolio_id, group in by_portfolio.items():
        _check_active_history(session, portfolio_id, adding=group)

    now = _now()
    for row in rows:
        row.status = TransactionStatus.CONFIRMED.value
        row.confirmed_at = now
    session.flush()
    log.info("confirmed %d transaction(s)", len(rows))
    return {pid: recalculate_cash_balances(session, pid, logger=log) for pid in by_portfolio}


def confirm_transaction(
    session: Session, transaction_id: int, *, logger: logging.Logger | None = None
) -> Decimal:
    row = _get_row(session, transaction_id)
    return confirm_transactions(session, [transaction_id], logger=logger)[row.portfolio_id]


def reject_transaction(
    session: Session,
    transaction_id: int,
    reason: str | None = None,
    *,
    logger: logging.Logger | None = None,
) -> Decimal:
    """Mark a pending row REJECTED with an optional reason."""

    log = logger or get_logger("portfolio_ledger.persistence")
    row = _get_row(session, transaction_id)
    _require_status(row, TransactionStatus.PENDING, action="rejected")
    row.status = TransactionStatus.REJECTED.value
    row.rejected_at = _now()
    row.rejection_reason = (reason or "").strip() or None
    session.flush()
    log.info("rejected transaction %s", transaction_id)
    return recalculate_cash_balances(session, row.portfolio_id, logger=log)


def revert_transaction(
    session: Session, transaction_id: int, *, logger: logging.Logger | None = None
) -> Decimal:
    """Send a confirmed or rejected row back to PENDING.

    Reverting a confirmed row removes its cash effect, so it is refused when
    the remaining history would be overdrawn.
    """

    log = logger or get_logger("portfolio_ledger.persistence")
    row = _get_row(session, transaction_id)
    _require_status(
        row, TransactionStatus.CONFIRMED, TransactionStatus.REJECTED, action="reverted"
    )
    if row.status == TransactionStatus.CONFIRMED:
        _check_active_history(session, row.portfolio_id, removing=[row])
    row.status = TransactionStatus.PENDING.value
    row.confirmed_at = None
    row.rejected_at = None
    row.rejection_reason = None
    session.flush()
    log.info("reverted transaction %s to pending", transaction_id)
    return recalculate_cash_balances(session, row.portfolio_id, logger=log)


def delete_transaction(
    session: Session, transaction_id: int, *, logger: logging.Logger | None = None
) -> Decimal:
    """Delete a row; confirmed rows must be reverted to pending first."""

    log = logger or get_logger("portfolio_ledger.persistence")
    row = _get_row(session, transaction_id)
    if row.status == TransactionStatus.CONFIRMED:
        raise TransactionStateError(
            f"Cannot delete confirmed transaction {row.id}. Revert to pending first."
        )
    portfolio_id = row.portfolio_id
    if row.status in ACTIVE_STATUSES:
        _check_active_history(session, portfolio_id, removing=[row])
    session.delete(row)
    session.flush()
    log.info("deleted transaction %s", transaction_id)
    return recalculate_cash_balances(session, portfolio_id, logger=log)


__all__ = [
    "ACTIVE_STATUSES",
    "ApplyOutcome",
    "TransactionStatus",
    "find_portfolio",
    "get_or_create_portfolio",
    "list_transactions",
    "load_transactions",
    "current_cash_balance",
    "recalculate_cash_balances",
    "insert_covered",
    "size_contribution",
    "apply_transactions",
    "confirm_transactions",
    "confirm_transaction",
    "reject_transaction",
    "revert_transaction",
    "delete_transaction",
]
