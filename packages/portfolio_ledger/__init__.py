"""Public interface for the ``portfolio_ledger`` package.

This module exposes the reconciliation entry points and the public models as
the stable import surface. There is no runtime logic here, only symbol
re-exports. Persistence helpers live in :mod:`portfolio_ledger.persistence`
and are not imported here so the core stays usable without a database.
"""

from .balances import cash_balance, lowest_balance, replay_balances, summarize
from .errors import (
    ExtractionError,
    InsufficientCashError,
    IssueCode,
    LedgerError,
    TransactionNotFoundError,
    TransactionStateError,
    TransactionValidationError,
)
from .importing import (
    ExtractionEnvelope,
    import_transactions,
    parse_extraction_response,
    strip_derivatives,
)
from .ledger import CashLedger, reconcile
from .models import (
    Issue,
    LedgerEntry,
    RawTransaction,
    ReconciliationResult,
    Transaction,
    Transactions,
    TransactionType,
)
from .parsing import parse_batch, parse_transaction
from .reporting import Reporter
from .sequencing import sort_chronologically

__all__ = [
    # Reconciliation
    "reconcile",
    "CashLedger",
    "Reporter",
    "parse_transaction",
    "parse_batch",
    "sort_chronologically",
    # Import pipeline
    "strip_derivatives",
    "ExtractionEnvelope",
    "parse_extraction_response",
    "import_transactions",
    # Balance replay
    "replay_balances",
    "cash_balance",
    "lowest_balance",
    "summarize",
    # Models
    "Transaction",
    "TransactionType",
    "RawTransaction",
    "Transactions",
    "LedgerEntry",
    "Issue",
    "ReconciliationResult",
    # Errors
    "IssueCode",
    "LedgerError",
    "TransactionValidationError",
    "TransactionNotFoundError",
    "TransactionStateError",
    "ExtractionError",
    "InsufficientCashError",
]
