"""Accumulator for reconciliation findings.

Errors reject a single record; warnings are advisory. Neither stops the batch.
The reporter keeps them in arrival order so callers can show the user the
same sequence the ledger saw.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .errors import IssueCode
from .logging_setup import get_logger
from .models import Issue


class Reporter:
    """Collect :class:`Issue` objects and mirror them to a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._issues: list[Issue] = []
        self._logger = logger or get_logger("portfolio_ledger.reporting")

    def error(self, code: IssueCode, message: str, *, position: int | None = None) -> Issue:
        issue = Issue("error", code, message, position)
        self._issues.append(issue)
        self._logger.warning("rejected record (%s) at %s: %s", code.value, position, message)
        return issue

    def warning(self, code: IssueCode, message: str, *, position: int | None = None) -> Issue:
        issue = Issue("warning", code, message, position)
        self._issues.append(issue)
        self._logger.info("%s: %s", code.value, message)
        return issue

    def extend_upstream(
        self, errors: Iterable[str] = (), warnings: Iterable[str] = ()
    ) -> None:
        """Merge advisory strings from the extraction step, errors first."""

        for message in errors:
            if message and message.strip():
                self._issues.append(Issue("error", IssueCode.UPSTREAM, message.strip()))
        for message in warnings:
            if message and message.strip():
                self._issues.append(Issue("warning", IssueCode.UPSTREAM, message.strip()))

    @property
    def issues(self) -> tuple[Issue, ...]:
        return tuple(self._issues)

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self._issues if i.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self._issues if i.severity == "warning"]

    def __len__(self) -> int:
        return len(self._issues)


__all__ = ["Reporter"]
