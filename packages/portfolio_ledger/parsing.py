"""Validation of raw transaction records.

Raw records come from an untrusted extractor (an LLM response, a CSV file, a
JSON payload) with the keys ``type, ticker, amount, price, quantity, date,
notes`` and arbitrary value types. :func:`parse_transaction` turns one record
into a :class:`~portfolio_ledger.models.Transaction` or raises
:class:`~portfolio_ledger.errors.TransactionValidationError`;
:func:`parse_batch` applies it to a whole input and reports failures without
aborting.

User-facing messages are in Portuguese because they are shown verbatim next to
the transactions the user typed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .errors import IssueCode, TransactionValidationError
from .models import TICKER_REQUIRED, Issue, RawTransaction, Transaction, TransactionType
from .money import CENT, to_cents, to_decimal, to_price
from .reporting import Reporter

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")

# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_type(raw: Any) -> TransactionType:
    if isinstance(raw, TransactionType):
        return raw
    name = raw.strip().upper() if isinstance(raw, str) else None
    try:
        return TransactionType(name)
    except ValueError:
        raise TransactionValidationError(
            IssueCode.INVALID_TYPE, f"Tipo de transação inválido: {raw}"
        ) from None


def _parse_positive(raw: Any, *, code: IssueCode, label: str) -> Decimal | None:
    """Return ``None`` for blank input, a positive ``Decimal`` otherwise."""

    if _is_blank(raw):
        return None
    try:
        d = to_decimal(raw)
    except ValueError:
        raise TransactionValidationError(code, f"{label}: {raw}") from None
    if d <= 0:
        raise TransactionValidationError(code, f"{label}: {raw}")
    return d


def parse_date(raw: Any) -> date:
    """Parse ``raw`` as a calendar date.

    Accepts ``date``/``datetime`` objects, ``YYYY-MM-DD``, ISO-8601 datetimes
    (time part dropped) and the Brazilian ``DD/MM/YYYY``.
    """

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and raw.strip():
        s = raw.strip()
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(s).date()
        except ValueError:
            pass
    raise TransactionValidationError(IssueCode.INVALID_DATE, f"Data inválida: {raw}")


def _clean_text(value: Any) -> str | None:
    if _is_blank(value):
        return None
    return " ".join(str(value).split())


# ---------------------------------------------------------------------------
# Purchase derivation
# ---------------------------------------------------------------------------


def _missing_buy_fields_message(ticker: str) -> str:
    return (
        f"Transação de compra de {ticker}: deve informar quantidade de ações ou preço "
        f"por ação. Exemplo: 'Compra de 100 {ticker}' ou 'Compra de {ticker} a R$ 32,50 cada'"
    )


def derive_purchase(tx: Transaction) -> Transaction:
    """Fill in the missing member of ``amount``/``price``/``quantity`` for a BUY.

    - ``amount`` + ``quantity`` without ``price``: ``price = amount / quantity``.
    - ``quantity`` + ``price``: ``amount = quantity * price`` (a supplied
      amount that disagrees by more than a cent is overwritten).

    Anything short of that is rejected.
    """

    ticker = tx.ticker or "ativo"
    if tx.price is None and tx.quantity is None:
        raise TransactionValidationError(
            IssueCode.MISSING_BUY_FIELDS, _missing_buy_fields_message(ticker)
        )

    derived = tx
    if tx.quantity is not None and tx.price is None:
        derived = replace(tx, price=to_price(tx.amount / tx.quantity))
    elif tx.quantity is not None and tx.price is not None:
        total = to_cents(tx.quantity * tx.price)
        # A derived 6-place price times a large quantity can land a cent off
        # the amount it came from; keep the stated amount in that case.
        if abs(total - tx.amount) > CENT:
            derived = replace(tx, amount=total)

    if derived.price is None or derived.quantity is None:
        raise TransactionValidationError(
            IssueCode.MISSING_BUY_FIELDS,
            f"Transação de compra de {ticker}: dados insuficientes. Informe valor total + "
            "quantidade OU quantidade + preço por ação.",
        )
    if derived.price <= 0:
        raise TransactionValidationError(
            IssueCode.INVALID_PRICE,
            f"Transação de compra de {ticker}: preço calculado inválido (R$ {derived.price:.2f})",
        )
    if derived.amount <= 0:
        raise TransactionValidationError(
            IssueCode.INVALID_AMOUNT, f"Valor inválido: {derived.amount}"
        )
    return derived


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_transaction(raw: RawTransaction) -> Transaction:
    """Validate one raw record and return a fully-derived transaction."""

    if not isinstance(raw, Mapping):
        raise TransactionValidationError(
            IssueCode.INVALID_TYPE, f"Registro de transação inválido: {raw!r}"
        )

    kind = _parse_type(raw.get("type"))

    ticker = _clean_text(raw.get("ticker"))
    ticker = ticker.upper() if ticker else None
    if kind in TICKER_REQUIRED and not ticker:
        raise TransactionValidationError(
            IssueCode.MISSING_TICKER, f"Ticker é obrigatório para transação do tipo {kind}"
        )

    price = _parse_positive(raw.get("price"), code=IssueCode.INVALID_PRICE, label="Preço inválido")
    quantity = _parse_positive(
        raw.get("quantity"), code=IssueCode.INVALID_QUANTITY, label="Quantidade inválida"
    )

    raw_amount = raw.get("amount")
    amount = _parse_positive(raw_amount, code=IssueCode.INVALID_AMOUNT, label="Valor inválido")
    if amount is None and kind in (TransactionType.BUY, TransactionType.SELL_WITHDRAWAL):
        if price is not None and quantity is not None:
            amount = price * quantity
    if amount is None or to_cents(amount) <= 0:
        raise TransactionValidationError(IssueCode.INVALID_AMOUNT, f"Valor inválido: {raw_amount}")

    tx = Transaction(
        type=kind,
        date=parse_date(raw.get("date")),
        amount=to_cents(amount),
        ticker=ticker,
        price=price,
        quantity=quantity,
        notes=_clean_text(raw.get("notes")),
    )
    if kind is TransactionType.BUY:
        tx = derive_purchase(tx)
    return tx


def parse_positioned(
    records: Iterable[RawTransaction | Transaction], reporter: Reporter
) -> list[tuple[int, Transaction]]:
    """Validate every record, keeping each valid one's input position."""

    valid: list[tuple[int, Transaction]] = []
    for pos, record in enumerate(records):
        if isinstance(record, Transaction):
            valid.append((pos, record))
            continue
        try:
            valid.append((pos, parse_transaction(record)))
        except TransactionValidationError as exc:
            reporter.error(exc.code, exc.message, position=pos)
    return valid


def parse_batch(
    records: Iterable[RawTransaction | Transaction],
    *,
    reporter: Reporter | None = None,
) -> tuple[list[Transaction], list[Issue]]:
    """Validate every record; invalid ones become error issues.

    Already-built :class:`Transaction` objects pass through untouched. Returns
    the valid transactions in input order and the issues recorded for this
    batch (also appended to ``reporter`` when one is given).
    """

    reporter = reporter or Reporter()
    before = len(reporter)
    valid = parse_positioned(records, reporter)
    return [tx for _, tx in valid], list(reporter.issues[before:])


__all__ = [
    "parse_transaction",
    "parse_positioned",
    "parse_batch",
    "parse_date",
    "derive_purchase",
]
