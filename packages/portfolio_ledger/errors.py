"""Exception types and issue codes for ``portfolio_ledger``.

Per-record problems never escape a batch call: the parser raises
:class:`TransactionValidationError` for a single record and the batch helpers
turn it into an :class:`~portfolio_ledger.models.Issue`. The remaining
exceptions describe failures of a whole operation (an unreadable model
response, a persistence write that would overdraw the stored history, a status
change the stored row does not allow).
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum


class IssueCode(StrEnum):
    """Machine-readable classification of reconciliation findings."""

    INVALID_TYPE = "invalid_type"
    MISSING_TICKER = "missing_ticker"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_DATE = "invalid_date"
    INVALID_PRICE = "invalid_price"
    INVALID_QUANTITY = "invalid_quantity"
    MISSING_BUY_FIELDS = "missing_buy_fields"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    AUTOMATIC_CONTRIBUTION = "automatic_contribution"
    UPSTREAM = "upstream"


class LedgerError(Exception):
    """Base class for errors raised by this package."""


class TransactionValidationError(LedgerError, ValueError):
    """A single raw record could not be turned into a transaction."""

    def __init__(self, code: IssueCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ExtractionError(LedgerError, ValueError):
    """The text-extraction response carried no usable JSON envelope."""


class InsufficientCashError(LedgerError):
    """A write would leave the stored cash history below zero."""

    def __init__(self, balance: Decimal, requested: Decimal, message: str) -> None:
        super().__init__(message)
        self.balance = balance
        self.requested = requested


class TransactionNotFoundError(LedgerError, LookupError):
    """No stored transaction has the requested id."""


class TransactionStateError(LedgerError):
    """The stored transaction's status does not allow the requested change."""


__all__ = [
    "IssueCode",
    "LedgerError",
    "TransactionValidationError",
    "ExtractionError",
    "InsufficientCashError",
    "TransactionNotFoundError",
    "TransactionStateError",
]
