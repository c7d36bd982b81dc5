"""Decimal helpers for monetary values (BRL).

Every amount that reaches the ledger is a ``Decimal`` quantized to cents with
``ROUND_HALF_UP``. Balances built from such values are exact, so replaying a
reconciled batch can never produce a one-cent shortfall out of float noise.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
PRICE_QUANTUM = Decimal("0.000001")
ZERO = Decimal("0.00")


def to_decimal(raw: Any) -> Decimal:
    """Parse ``raw`` into a finite ``Decimal``.

    Accepted inputs: ``int``, ``Decimal``, ``float`` (through ``str`` to avoid
    binary artefacts) and strings in either ``3250.00`` or Brazilian
    ``R$ 3.250,00`` notation. Raises ``ValueError`` for anything else.
    """

    if raw is None:
        raise ValueError("value is required")
    if isinstance(raw, bool):
        raise ValueError(f"invalid number: {raw!r}")
    if isinstance(raw, Decimal):
        d = raw
    elif isinstance(raw, (int, float)):
        d = Decimal(str(raw))
    elif isinstance(raw, str):
        d = _parse_text(raw)
    else:
        raise ValueError(f"invalid number: {raw!r}")
    if not d.is_finite():
        raise ValueError(f"invalid number: {raw!r}")
    return d


def _parse_text(raw: str) -> Decimal:
    s = raw.strip()
    negative = False
    if s.startswith("-"):
        negative = True
        s = s[1:].lstrip()
    currency = s.upper().startswith("R$")
    if currency:
        s = s[2:].strip()
    if s.startswith("-"):
        negative = not negative
        s = s[1:].lstrip()
    s = s.replace(" ", "").replace("\u00a0", "")
    if not s:
        raise ValueError(f"invalid number: {raw!r}")

    try:
        d = Decimal(_normalize_separators(s, currency=currency))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid number: {raw!r}") from exc
    return -d if negative else d


_GROUPED = {sep: re.compile(rf"\d{{1,3}}(?:{re.escape(sep)}\d{{3}})+") for sep in ".,"}


def _normalize_separators(s: str, *, currency: bool) -> str:
    """Rewrite ``s`` with ``.`` as the only decimal mark and no grouping.

    With both separators present the last one is the decimal mark. A single
    comma is decimal (``32,50``); repeated commas group thousands. A single dot
    is decimal (``32.50``) unless a ``R$`` amount has exactly three digits after
    it (``R$ 3.250``); repeated dots group thousands. Grouping must come in
    blocks of three digits.
    """

    dot, comma = s.rfind("."), s.rfind(",")
    if dot < 0 and comma < 0:
        return s
    if dot >= 0 and comma >= 0:
        mark, group = (".", ",") if dot > comma else (",", ".")
    elif comma >= 0:
        mark, group = ("," if s.count(",") == 1 else None), ","
    else:
        grouped = s.count(".") > 1 or (currency and len(s) - dot - 1 == 3)
        mark, group = (None if grouped else "."), "."

    if mark is None:
        integer, fraction = s, None
    else:
        integer, fraction = s.rsplit(mark, 1)
    if group in integer:
        if not _GROUPED[group].fullmatch(integer):
            raise ValueError(f"misplaced thousands separator in {s!r}")
        integer = integer.replace(group, "")
    return integer if fraction is None else f"{integer}.{fraction}"


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_price(value: Decimal) -> Decimal:
    return value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def format_brl(value: Decimal | int | float) -> str:
    """Render ``value`` as ``R$ 5.000,00``; negatives as ``-R$ 5.000,00``."""

    q = to_cents(to_decimal(value))
    body = f"{abs(q):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"-R$ {body}" if q < 0 else f"R$ {body}"


def format_plain(value: Decimal | None) -> str | None:
    """Two-decimal ASCII string for JSON/CSV output (``None`` passes through)."""

    if value is None:
        return None
    return f"{to_cents(value):.2f}"


def format_quantity(value: Decimal | None) -> str | None:
    """Shortest exact string for prices/quantities; at least two decimals when fractional."""

    if value is None:
        return None
    if value == value.to_integral_value():
        return f"{value.to_integral_value():f}"
    if value == to_cents(value):
        return f"{to_cents(value):.2f}"
    return f"{value.normalize():f}"


__all__ = [
    "CENT",
    "ZERO",
    "to_decimal",
    "to_cents",
    "to_price",
    "format_brl",
    "format_plain",
    "format_quantity",
]
