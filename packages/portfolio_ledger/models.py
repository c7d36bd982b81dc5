"""Data models and type aliases for ``portfolio_ledger``.

Transactions are immutable. Every derivation step (price from amount and
quantity, ticker normalization, synthesized contributions) builds a new
instance with :func:`dataclasses.replace`; nothing in the package mutates a
record in place.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from .errors import IssueCode
from .money import ZERO, format_plain, format_quantity

# ---------------------------------------------------------------------------
# Transaction kinds
# ---------------------------------------------------------------------------


class TransactionType(StrEnum):
    """The five transaction kinds recognized by the cash ledger."""

    CASH_CREDIT = "CASH_CREDIT"
    CASH_DEBIT = "CASH_DEBIT"
    BUY = "BUY"
    SELL_WITHDRAWAL = "SELL_WITHDRAWAL"
    DIVIDEND = "DIVIDEND"


TICKER_REQUIRED: frozenset[TransactionType] = frozenset(
    {TransactionType.BUY, TransactionType.SELL_WITHDRAWAL, TransactionType.DIVIDEND}
)

# Kinds that put money into the cash account; the rest take it out.
CASH_INFLOWS: frozenset[TransactionType] = frozenset(
    {TransactionType.CASH_CREDIT, TransactionType.DIVIDEND, TransactionType.SELL_WITHDRAWAL}
)
CASH_OUTFLOWS: frozenset[TransactionType] = frozenset(
    {TransactionType.CASH_DEBIT, TransactionType.BUY}
)

AUTO_CONTRIBUTION_PREFIX = "Aporte automático"


def automatic_contribution_note(ticker: str | None) -> str:
    return f"{AUTO_CONTRIBUTION_PREFIX} para compra de {ticker or 'ativo'}"


# ---------------------------------------------------------------------------
# Core record
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A validated portfolio transaction.

    Attributes
    ----------
    type:
        One of :class:`TransactionType`.
    date:
        Calendar date the transaction settles on.
    amount:
        Cash value in BRL, positive and quantized to cents.
    ticker:
        Upper-case B3 ticker; required for BUY, SELL_WITHDRAWAL and DIVIDEND.
    price, quantity:
        Per-share price and share count. For BUY both are always present after
        parsing (the missing one is derived).
    notes:
        Free text. Synthesized contributions carry
        ``"Aporte automático para compra de <TICKER>"``.
    """

    type: TransactionType
    date: date
    amount: Decimal
    ticker: str | None = None
    price: Decimal | None = None
    quantity: Decimal | None = None
    notes: str | None = None

    @property
    def cash_effect(self) -> Decimal:
        """Signed change this transaction applies to the cash balance."""

        if self.type in CASH_INFLOWS:
            return self.amount
        if self.type in CASH_OUTFLOWS:
            return -self.amount
        return ZERO

    @property
    def is_automatic_contribution(self) -> bool:
        return (
            self.type is TransactionType.CASH_CREDIT
            and self.notes is not None
            and self.notes.startswith(AUTO_CONTRIBUTION_PREFIX)
        )

    def to_record(self) -> dict[str, Any]:
        """Return a JSON-friendly mapping using the import field names."""

        return {
            "type": self.type.value,
            "ticker": self.ticker,
            "amount": format_plain(self.amount),
            "price": format_quantity(self.price),
            "quantity": format_quantity(self.quantity),
            "date": self.date.isoformat(),
            "notes": self.notes,
        }


# A raw, loosely-typed record as produced by the text-extraction service or a
# CSV/JSON file: ``type, ticker, amount, price, quantity, date, notes`` with
# arbitrary value types.
type RawTransaction = Mapping[str, Any]

type Transactions = Iterable[Transaction]


# ---------------------------------------------------------------------------
# Ledger output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """A transaction with the cash balance immediately before and after it."""

    transaction: Transaction
    balance_before: Decimal
    balance_after: Decimal


type Severity = Literal["error", "warning"]


@dataclass(frozen=True, slots=True)
class Issue:
    """A single reconciliation finding.

    ``position`` is the 0-based index of the offending record in the caller's
    input when the finding is tied to one; ``None`` for advisory messages and
    for ledger findings that refer to a transaction rather than an input slot.
    """

    severity: Severity
    code: IssueCode
    message: str
    position: int | None = None


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """Outcome of one reconciliation pass.

    ``entries`` are in replay order: chronological, with every synthesized
    contribution immediately before the purchase it covers.
    """

    initial_balance: Decimal
    final_balance: Decimal
    entries: tuple[LedgerEntry, ...] = ()
    issues: tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def transactions(self) -> list[Transaction]:
        return [e.transaction for e in self.entries]

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]

    @property
    def synthesized(self) -> list[Transaction]:
        return [t for t in self.transactions if t.is_automatic_contribution]

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactions": [t.to_record() for t in self.transactions],
            "errors": self.errors,
            "warnings": self.warnings,
            "final_balance": format_plain(self.final_balance),
        }


__all__ = [
    "TransactionType",
    "TICKER_REQUIRED",
    "CASH_INFLOWS",
    "CASH_OUTFLOWS",
    "AUTO_CONTRIBUTION_PREFIX",
    "automatic_contribution_note",
    "Transaction",
    "RawTransaction",
    "Transactions",
    "LedgerEntry",
    "Severity",
    "Issue",
    "ReconciliationResult",
]
