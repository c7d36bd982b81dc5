"""Import pipeline around the text-extraction step.

The extractor itself (an LLM turning a broker statement into JSON) is an
external collaborator. This module owns what happens on either side of it:

- :func:`strip_derivatives` removes options and futures lines from the user's
  text before it is sent out; the ledger only tracks cash and spot assets.
- :class:`ExtractionEnvelope` / :func:`parse_extraction_response` validate the
  JSON object that comes back.
- :func:`import_transactions` merges the extractor's advisory messages with
  the reconciliation of its transactions.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import ExtractionError
from .ledger import reconcile
from .logging_setup import get_logger
from .models import ReconciliationResult
from .reporting import Reporter

# ---------------------------------------------------------------------------
# Derivatives filter
# ---------------------------------------------------------------------------

_OPTION_KEYWORDS = re.compile(r"OPÇÃO|OPCAO|EXERCÍCIO|EXERCICIO|\bCALL\b|\bPUT\b")
_FUTURES = re.compile(r"\bFUTURO|\b(?:WDO|WIN)(?:[A-Z]?\d+)?\b")
_TICKER_CANDIDATE = re.compile(r"\b[A-Z]{3,6}[0-9]{2,4}[A-Z]?\b")

# Real-estate funds and units: four letters followed by 10-19 (HGLG11, TAEE11).
_FII = re.compile(r"^[A-Z]{4}1[0-9]$")
# Option series: root letters, a month letter K-Z, strike digits, optional E.
_OPTION_PATTERNS = (
    re.compile(r"^[A-Z]{4}[K-Z][0-9]{2,4}E?$"),
    re.compile(r"^[A-Z]{3,5}[K-Z][0-9]{2,4}E?$"),
    re.compile(r"^[A-Z]{3,6}[K-Z][0-9]+E$"),
)


@dataclass(frozen=True, slots=True)
class FilterResult:
    text: str
    removed: tuple[str, ...] = ()


def is_derivative_line(line: str) -> bool:
    """True when ``line`` describes a B3 option or futures trade."""

    upper = line.upper()
    if _OPTION_KEYWORDS.search(upper) or _FUTURES.search(upper):
        return True

    has_option = False
    has_fii = False
    for ticker in _TICKER_CANDIDATE.findall(upper):
        if _FII.match(ticker):
            has_fii = True
            continue
        if any(p.match(ticker) for p in _OPTION_PATTERNS):
            has_option = True
            break
    return has_option and not has_fii


def strip_derivatives(text: str, *, logger: logging.Logger | None = None) -> FilterResult:
    """Drop option/futures lines from ``text``; blank lines are preserved."""

    log = logger or get_logger("portfolio_ledger.importing")
    kept: list[str] = []
    removed: list[str] = []
    for line in text.split("\n"):
        if line.strip() and is_derivative_line(line):
            removed.append(line)
            log.debug("dropping derivatives line: %.80s", line)
            continue
        kept.append(line)
    if removed:
        log.info("removed %d options/futures line(s) from input", len(removed))
    return FilterResult("\n".join(kept), tuple(removed))


# ---------------------------------------------------------------------------
# Extraction envelope
# ---------------------------------------------------------------------------


class ExtractionEnvelope(BaseModel):
    """The JSON object returned by the extraction service.

    ``transactions`` stay loosely typed here; each item is validated by
    :mod:`portfolio_ledger.parsing` so that one bad item does not discard the
    others. ``errors``/``warnings`` are advisory strings for the user.
    """

    model_config = ConfigDict(extra="ignore")

    transactions: list[dict[str, Any]]
    errors: list[str] = []
    warnings: list[str] = []

    @field_validator("errors", "warnings", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_extraction_response(text: str) -> ExtractionEnvelope:
    """Pull the JSON object out of a model response and validate it.

    Models often wrap the payload in prose or Markdown fences; everything
    outside the outermost braces is ignored.
    """

    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ExtractionError("Resposta da IA não contém JSON válido")
    try:
        body = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Resposta da IA não contém JSON válido: {exc}") from exc
    try:
        return ExtractionEnvelope.model_validate(body)
    except ValidationError as exc:
        raise ExtractionError(f"Estrutura de resposta inválida: {exc}") from exc


def import_transactions(
    envelope: ExtractionEnvelope | str,
    initial_balance: Decimal | int | str = 0,
    *,
    logger: logging.Logger | None = None,
) -> ReconciliationResult:
    """Reconcile an extraction envelope (or raw response text).

    The envelope's own errors and warnings come first in the result, followed
    by validation and ledger findings in processing order.
    """

    if isinstance(envelope, str):
        envelope = parse_extraction_response(envelope)
    log = logger or get_logger("portfolio_ledger.importing")
    reporter = Reporter(log)
    reporter.extend_upstream(envelope.errors, envelope.warnings)
    return reconcile(initial_balance, envelope.transactions, logger=log, reporter=reporter)


__all__ = [
    "FilterResult",
    "is_derivative_line",
    "strip_derivatives",
    "ExtractionEnvelope",
    "parse_extraction_response",
    "import_transactions",
]
