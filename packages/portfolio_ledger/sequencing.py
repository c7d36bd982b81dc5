"""Chronological ordering of transactions.

Sorting is stable: transactions that share a date keep the order the caller
supplied, so a same-day "contribution then purchase" pair stays in that order.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import Transaction


def sort_chronologically(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda t: t.date)


def order_with_positions(transactions: Iterable[Transaction]) -> list[tuple[int, Transaction]]:
    """Like :func:`sort_chronologically` but keeps each item's input position."""

    return sorted(enumerate(transactions), key=lambda pair: pair[1].date)


def is_chronological(transactions: Iterable[Transaction]) -> bool:
    previous = None
    for tx in transactions:
        if previous is not None and tx.date < previous:
            return False
        previous = tx.date
    return True


__all__ = ["sort_chronologically", "order_with_positions", "is_chronological"]
