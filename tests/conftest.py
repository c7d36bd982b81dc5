"""Pytest configuration for test isolation.

Commands and persistence helpers fall back to ``DATABASE_URL`` and load a
``.env`` from the current directory, and the CLI configures package logging
once per process. Any of those leaking between tests makes results depend on
test order, so every test runs in its own working directory with the database
variable cleared, and cached engines/log handlers are dropped afterwards.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from db.client import dispose_engines
from portfolio_ledger.logging_setup import reset_logging


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    workdir = tmp_path / "cwd"
    workdir.mkdir(parents=True, exist_ok=True)
    monkeypatch.chdir(workdir)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    # Keep CLI output free of INFO log lines.
    monkeypatch.setenv("PORTFOLIO_LEDGER_LOG_LEVEL", "ERROR")
    yield
    dispose_engines()
    reset_logging()
