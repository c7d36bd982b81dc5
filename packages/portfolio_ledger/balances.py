"""Balance replay over an already-recorded transaction history.

Unlike :func:`portfolio_ledger.ledger.reconcile`, nothing here synthesizes or
rejects transactions: the history is taken as-is and only the running balance
is recomputed. Persistence uses it to refresh the stored before/after columns
after retroactive inserts, and tests use it to check ledger invariants.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from .models import LedgerEntry, Transaction, TransactionType
from .money import ZERO, to_cents, to_decimal
from .sequencing import sort_chronologically


def replay_balances(
    transactions: Iterable[Transaction],
    initial_balance: Decimal | int | str = ZERO,
    *,
    presorted: bool = False,
) -> list[LedgerEntry]:
    """Return one :class:`LedgerEntry` per transaction in chronological order.

    Pass ``presorted=True`` when the caller already holds the authoritative
    order (e.g. ``(date, id)`` from the database) and it must be kept as-is.
    """

    ordered = list(transactions) if presorted else sort_chronologically(transactions)
    balance = to_cents(to_decimal(initial_balance))
    entries: list[LedgerEntry] = []
    for tx in ordered:
        after = balance + tx.cash_effect
        entries.append(LedgerEntry(tx, balance, after))
        balance = after
    return entries


def cash_balance(
    transactions: Iterable[Transaction], initial_balance: Decimal | int | str = ZERO
) -> Decimal:
    balance = to_cents(to_decimal(initial_balance))
    for tx in transactions:
        balance += tx.cash_effect
    return balance


def lowest_balance(entries: Sequence[LedgerEntry]) -> Decimal | None:
    """Minimum balance seen at any prefix (``None`` for an empty history)."""

    if not entries:
        return None
    return min(min(e.balance_before, e.balance_after) for e in entries)


def summarize(transactions: Iterable[Transaction]) -> dict[TransactionType, Decimal]:
    """Total amount per transaction kind; every kind is present."""

    totals = {kind: ZERO for kind in TransactionType}
    for tx in transactions:
        totals[tx.type] += tx.amount
    return totals


__all__ = ["replay_balances", "cash_balance", "lowest_balance", "summarize"]
