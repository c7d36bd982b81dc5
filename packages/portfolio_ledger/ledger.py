"""Cash-balance ledger: chronological replay with automatic contributions.

The ledger walks a batch of validated transactions in date order while
holding a single running cash balance:

- ``CASH_CREDIT``, ``DIVIDEND`` and ``SELL_WITHDRAWAL`` add their amount.
- ``CASH_DEBIT`` subtracts its amount, or is rejected when the balance cannot
  cover it (balance untouched, nothing emitted).
- ``BUY`` first checks the shortfall ``amount - balance``. A positive
  shortfall is covered by a synthesized ``CASH_CREDIT`` of exactly that value,
  dated like the purchase and emitted immediately before it.

The pass is single and forward-only; a later transaction never revisits an
earlier decision. Re-running it over its own output synthesizes nothing new,
because every purchase in that output is already covered.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal

from .errors import IssueCode
from .logging_setup import get_logger
from .models import (
    CASH_INFLOWS,
    LedgerEntry,
    RawTransaction,
    ReconciliationResult,
    Transaction,
    TransactionType,
    automatic_contribution_note,
)
from .money import ZERO, format_brl, to_cents, to_decimal
from .parsing import parse_positioned
from .reporting import Reporter
from .sequencing import order_with_positions


def insufficient_balance_message(balance: Decimal, requested: Decimal) -> str:
    return (
        f"Saldo insuficiente para saque. Saldo atual: {format_brl(balance)}, "
        f"valor solicitado: {format_brl(requested)}"
    )


class CashLedger:
    """Running cash balance for one reconciliation pass.

    Instances are not shared: each call to :func:`reconcile` builds its own,
    which is what makes independent batches safe to process in parallel.
    """

    def __init__(
        self,
        initial_balance: Decimal | int | str = ZERO,
        *,
        reporter: Reporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.initial_balance = to_cents(to_decimal(initial_balance))
        self.balance = self.initial_balance
        self._logger = logger or get_logger("portfolio_ledger.ledger")
        self.reporter = reporter or Reporter(self._logger)
        self.entries: list[LedgerEntry] = []

    def _emit(self, tx: Transaction, delta: Decimal) -> LedgerEntry:
        before = self.balance
        self.balance = before + delta
        entry = LedgerEntry(tx, before, self.balance)
        self.entries.append(entry)
        return entry

    def apply(self, tx: Transaction, *, position: int | None = None) -> list[LedgerEntry]:
        """Apply one transaction and return the entries it produced (0, 1 or 2)."""

        kind = tx.type
        if kind in CASH_INFLOWS:
            return [self._emit(tx, tx.amount)]

        if kind is TransactionType.CASH_DEBIT:
            if tx.amount > self.balance:
                self.reporter.error(
                    IssueCode.INSUFFICIENT_BALANCE,
                    insufficient_balance_message(self.balance, tx.amount),
                    position=position,
                )
                return []
            return [self._emit(tx, -tx.amount)]

        if kind is TransactionType.BUY:
            produced: list[LedgerEntry] = []
            shortfall = to_cents(tx.amount - self.balance)
            if shortfall > 0:
                credit = Transaction(
                    type=TransactionType.CASH_CREDIT,
                    date=tx.date,
                    amount=shortfall,
                    notes=automatic_contribution_note(tx.ticker),
                )
                produced.append(self._emit(credit, shortfall))
                self.reporter.warning(
                    IssueCode.AUTOMATIC_CONTRIBUTION,
                    f"Aporte automático de {format_brl(shortfall)} criado para cobrir a compra "
                    f"de {tx.ticker}",
                    position=position,
                )
            produced.append(self._emit(tx, -tx.amount))
            return produced

        self._logger.debug("passing through unhandled transaction type %r", kind)
        return [self._emit(tx, ZERO)]

    def result(self) -> ReconciliationResult:
        return ReconciliationResult(
            initial_balance=self.initial_balance,
            final_balance=self.balance,
            entries=tuple(self.entries),
            issues=self.reporter.issues,
        )


def reconcile(
    initial_balance: Decimal | int | str,
    transactions: Iterable[Transaction | RawTransaction],
    *,
    logger: logging.Logger | None = None,
    reporter: Reporter | None = None,
) -> ReconciliationResult:
    """Validate, order and replay ``transactions`` against ``initial_balance``.

    Raw mappings are validated first; invalid ones become errors and are left
    out. The function never raises for a single bad record.

    Parameters
    ----------
    initial_balance:
        Cash available before the first transaction (quantized to cents).
    transactions:
        :class:`Transaction` objects and/or raw records in any order.
    logger:
        Destination for trace output; defaults to the package logger.
    reporter:
        Pre-seeded reporter (e.g. carrying upstream advisories). A fresh one
        is created when omitted.
    """

    log = logger or get_logger("portfolio_ledger.ledger")
    ledger = CashLedger(initial_balance, reporter=reporter or Reporter(log), logger=log)

    positioned = parse_positioned(transactions, ledger.reporter)
    ordered = order_with_positions(tx for _, tx in positioned)
    for index, tx in ordered:
        ledger.apply(tx, position=positioned[index][0])

    result = ledger.result()
    log.debug(
        "reconciled %d transactions (%d synthesized, %d errors); balance %s -> %s",
        len(result.entries),
        len(result.synthesized),
        len(result.errors),
        result.initial_balance,
        result.final_balance,
    )
    return result


__all__ = ["CashLedger", "reconcile", "insufficient_balance_message"]
