from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from db.client import session_scope
from db.models.portfolio import Portfolio, PortfolioTransaction
from portfolio_ledger import persistence
from portfolio_ledger.errors import (
    InsufficientCashError,
    TransactionNotFoundError,
    TransactionStateError,
)
from portfolio_ledger.ledger import reconcile
from portfolio_ledger.models import Transaction, TransactionType
from portfolio_ledger.persistence import (
    apply_transactions,
    confirm_transaction,
    confirm_transactions,
    current_cash_balance,
    delete_transaction,
    get_or_create_portfolio,
    insert_covered,
    load_transactions,
    recalculate_cash_balances,
    reject_transaction,
    revert_transaction,
    size_contribution,
)
from tests.helpers.db import bootstrap_sqlite_db, seed_portfolio, stored_balances, stored_rows


def _tx(kind: TransactionType, amount: str, day: int, **kw) -> Transaction:
    return Transaction(kind, date(2024, 1, day), Decimal(amount), **kw)


def _buy(amount: str, day: int) -> Transaction:
    return _tx(
        TransactionType.BUY,
        amount,
        day,
        ticker="PETR4",
        price=Decimal(amount) / 10,
        quantity=Decimal("10"),
    )


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.db")


def test_get_or_create_portfolio_is_idempotent(db_url: str):
    with session_scope(database_url=db_url) as session:
        first = get_or_create_portfolio(session, " Principal ")
        again = get_or_create_portfolio(session, "Principal")
        assert first.id == again.id
        assert session.query(Portfolio).count() == 1

        with pytest.raises(ValueError):
            get_or_create_portfolio(session, "   ")


def test_apply_reconciled_batch_stores_running_balances(db_url: str):
    result = reconcile(0, [{"type": "BUY", "ticker": "PETR4", "amount": 3250, "quantity": 100, "date": "2024-01-15"}])

    with session_scope(database_url=db_url) as session:
        portfolio = get_or_create_portfolio(session, "main")
        outcome = apply_transactions(session, portfolio.id, result.transactions)
        pid = portfolio.id

    assert outcome.created == 2
    assert outcome.errors == []
    assert outcome.final_balance == Decimal("0.00")
    assert stored_balances(database_url=db_url, portfolio_id=pid) == [
        ("CASH_CREDIT", Decimal("0.00"), Decimal("3250.00")),
        ("BUY", Decimal("3250.00"), Decimal("0.00")),
    ]

    with session_scope(database_url=db_url) as session:
        stored = load_transactions(session, pid)
    assert stored[0].is_automatic_contribution
    assert stored[1].price == Decimal("32.50")
    assert stored[1].quantity == Decimal("100")


def test_retroactive_withdrawal_that_overdraws_history_is_refused(db_url: str):
    pid = seed_portfolio(
        database_url=db_url,
        name="main",
        transactions=[_tx(TransactionType.CASH_CREDIT, "1000", 1), _buy("1000", 10)],
    )
    batch = [_tx(TransactionType.CASH_DEBIT, "500", 5), _tx(TransactionType.CASH_CREDIT, "50", 20)]

    with session_scope(database_url=db_url) as session:
        outcome = apply_transactions(session, pid, batch)

    assert outcome.created == 1
    assert outcome.errors == [
        "Transação 1: Saldo insuficiente para saque. Você precisa de R$ 500,00 adicionais em caixa."
    ]
    assert outcome.final_balance == Decimal("50.00")
    assert [row[0] for row in stored_balances(database_url=db_url, portfolio_id=pid)] == [
        "CASH_CREDIT",
        "BUY",
        "CASH_CREDIT",
    ]


def test_same_date_insert_lands_after_existing_rows(db_url: str):
    pid = seed_portfolio(
        database_url=db_url, name="main", transactions=[_tx(TransactionType.CASH_CREDIT, "100", 5)]
    )
    with session_scope(database_url=db_url) as session:
        outcome = apply_transactions(session, pid, [_tx(TransactionType.CASH_DEBIT, "100", 5)])

    assert outcome.errors == []
    assert stored_balances(database_url=db_url, portfolio_id=pid)[-1] == (
        "CASH_DEBIT",
        Decimal("100.00"),
        Decimal("0.00"),
    )


def test_recalculate_fixes_stale_columns_per_portfolio(db_url: str):
    pid = seed_portfolio(
        database_url=db_url,
        name="main",
        transactions=[_tx(TransactionType.CASH_CREDIT, "700", 2), _buy("200", 3)],
    )
    seed_portfolio(
        database_url=db_url,
        name="other",
        transactions=[_tx(TransactionType.CASH_CREDIT, "999", 1)],
        status="PENDING",
    )

    with session_scope(database_url=db_url) as session:
        final = recalculate_cash_balances(session, pid)
        assert current_cash_balance(session, pid) == final == Decimal("500.00")

    assert stored_balances(database_url=db_url, portfolio_id=pid) == [
        ("CASH_CREDIT", Decimal("0.00"), Decimal("700.00")),
        ("BUY", Decimal("700.00"), Decimal("500.00")),
    ]


def test_pending_rows_do_not_count_towards_the_balance(db_url: str):
    pid = seed_portfolio(
        database_url=db_url,
        name="pending",
        transactions=[_tx(TransactionType.CASH_CREDIT, "999", 1)],
        status="PENDING",
    )
    with session_scope(database_url=db_url) as session:
        assert load_transactions(session, pid) == []
        assert current_cash_balance(session, pid) == Decimal("0.00")


def test_insert_covered_raises_with_the_balance_before_the_transaction():
    history = [_tx(TransactionType.CASH_CREDIT, "100", 1)]
    with pytest.raises(InsufficientCashError) as excinfo:
        insert_covered(history, _buy("250", 2))

    assert excinfo.value.balance == Decimal("100.00")
    assert excinfo.value.requested == Decimal("250")
    assert "Você precisa de R$ 150,00 adicionais em caixa" in str(excinfo.value)

    # a cent of historical rounding is tolerated
    assert len(insert_covered(history, _tx(TransactionType.CASH_DEBIT, "100.01", 2))) == 2


# ---- contribution + purchase pairs -------------------------------------------


def _backdated_purchase(db_url: str) -> tuple[int, list[Transaction]]:
    """Stored R$ 300 in March; a January purchase of R$ 500 reconciled against it."""

    pid = seed_portfolio(
        database_url=db_url,
        name="main",
        transactions=[Transaction(TransactionType.CASH_CREDIT, date(2024, 3, 1), Decimal("300"))],
    )
    with session_scope(database_url=db_url) as session:
        opening = current_cash_balance(session, pid)
    result = reconcile(
        opening,
        [{"type": "BUY", "ticker": "PETR4", "amount": 500, "quantity": 5, "date": "2024-01-01"}],
    )
    assert [t.amount for t in result.transactions] == [Decimal("200.00"), Decimal("500.00")]
    return pid, result.transactions


def test_backdated_purchase_grows_its_contribution_to_the_balance_on_that_date(db_url: str):
    pid, batch = _backdated_purchase(db_url)

    with session_scope(database_url=db_url) as session:
        outcome = apply_transactions(session, pid, batch)

    assert outcome.created == 2
    assert outcome.errors == []
    assert outcome.warnings == [
        "Aporte automático para compra de PETR4 ajustado de R$ 200,00 para R$ 500,00: "
        "o saldo em 01/01/2024 é menor que o saldo atual"
    ]
    assert outcome.final_balance == Decimal("300.00")
    assert stored_balances(database_url=db_url, portfolio_id=pid) == [
        ("CASH_CREDIT", Decimal("0.00"), Decimal("500.00")),
        ("BUY", Decimal("500.00"), Decimal("0.00")),
        ("CASH_CREDIT", Decimal("0.00"), Decimal("300.00")),
    ]


def test_refused_purchase_takes_its_contribution_with_it(db_url: str, monkeypatch: pytest.MonkeyPatch):
    pid, batch = _backdated_purchase(db_url)
    monkeypatch.setattr(persistence, "size_contribution", lambda history, credit, purchase: credit)

    with session_scope(database_url=db_url) as session:
        outcome = apply_transactions(session, pid, batch)

    assert outcome.created == 0
    assert outcome.errors == [
        "Transação 2: Saldo insuficiente para compra. Você precisa de R$ 300,00 adicionais em caixa."
    ]
    assert [r[1] for r in stored_rows(database_url=db_url, portfolio_id=pid)] == ["CASH_CREDIT"]


def test_sufficient_contribution_is_kept_as_reconciled():
    history = [_tx(TransactionType.CASH_CREDIT, "100", 1)]
    credit = _tx(TransactionType.CASH_CREDIT, "150", 2, notes="Aporte automático para compra de PETR4")
    assert size_contribution(history, credit, _buy("250", 2)) is credit

    grown = size_contribution(history, credit, _buy("300", 2))
    assert grown.amount == Decimal("200.00")
    assert grown.notes == credit.notes


# ---- review lifecycle --------------------------------------------------------


def _staged(db_url: str) -> tuple[int, int, int]:
    pid = seed_portfolio(
        database_url=db_url, name="main", transactions=[_tx(TransactionType.CASH_CREDIT, "1000", 1)]
    )
    with session_scope(database_url=db_url) as session:
        outcome = apply_transactions(
            session,
            pid,
            [_tx(TransactionType.CASH_DEBIT, "300", 5), _tx(TransactionType.CASH_DEBIT, "900", 6)],
            status="PENDING",
        )
    assert outcome.created == 2
    assert outcome.final_balance == Decimal("1000.00")
    first, second = outcome.created_ids
    return pid, first, second


def test_pending_rows_move_cash_only_once_confirmed(db_url: str):
    pid, first, second = _staged(db_url)

    with session_scope(database_url=db_url) as session:
        assert confirm_transaction(session, first) == Decimal("700.00")
        with pytest.raises(InsufficientCashError) as excinfo:
            confirm_transaction(session, second)
        assert str(excinfo.value) == "Saldo insuficiente: o caixa ficaria em -R$ 200,00 em 06/01/2024."

        assert reject_transaction(session, second, " duplicada ") == Decimal("700.00")
        row = session.get(PortfolioTransaction, second)
        assert (row.status, row.rejection_reason) == ("REJECTED", "duplicada")
        assert row.rejected_at is not None

    assert stored_balances(database_url=db_url, portfolio_id=pid) == [
        ("CASH_CREDIT", Decimal("0.00"), Decimal("1000.00")),
        ("CASH_DEBIT", Decimal("1000.00"), Decimal("700.00")),
        ("CASH_DEBIT", Decimal("0.00"), Decimal("0.00")),
    ]

    with session_scope(database_url=db_url) as session:
        assert revert_transaction(session, second) == Decimal("700.00")
        assert revert_transaction(session, first) == Decimal("1000.00")
        row = session.get(PortfolioTransaction, second)
        assert (row.status, row.rejection_reason, row.rejected_at) == ("PENDING", None, None)

    assert [r[2] for r in stored_rows(database_url=db_url, portfolio_id=pid)] == [
        "EXECUTED",
        "PENDING",
        "PENDING",
    ]


def test_status_changes_check_the_current_status(db_url: str):
    pid, first, second = _staged(db_url)
    executed = stored_rows(database_url=db_url, portfolio_id=pid)[0][0]

    with session_scope(database_url=db_url) as session:
        with pytest.raises(TransactionStateError, match="Only pending transactions can be confirmed"):
            confirm_transaction(session, executed)
        with pytest.raises(TransactionStateError, match="Only pending transactions can be rejected"):
            reject_transaction(session, executed)
        with pytest.raises(
            TransactionStateError, match="Only confirmed or rejected transactions can be reverted"
        ):
            revert_transaction(session, first)
        with pytest.raises(TransactionNotFoundError):
            confirm_transaction(session, 9999)
        # one bad id leaves the whole batch pending
        with pytest.raises(TransactionStateError):
            confirm_transactions(session, [first, executed])

    assert [r[2] for r in stored_rows(database_url=db_url, portfolio_id=pid)] == [
        "EXECUTED",
        "PENDING",
        "PENDING",
    ]


def test_delete_refuses_a_row_the_history_depends_on(db_url: str):
    pid = seed_portfolio(
        database_url=db_url,
        name="main",
        transactions=[_tx(TransactionType.CASH_CREDIT, "1000", 1), _buy("1000", 10)],
    )
    credit_id, buy_id = (r[0] for r in stored_rows(database_url=db_url, portfolio_id=pid))

    with session_scope(database_url=db_url) as session:
        with pytest.raises(InsufficientCashError):
            delete_transaction(session, credit_id)
        assert delete_transaction(session, buy_id) == Decimal("1000.00")

    assert stored_rows(database_url=db_url, portfolio_id=pid) == [(credit_id, "CASH_CREDIT", "EXECUTED")]


def test_confirmed_rows_are_reverted_before_deleting(db_url: str):
    pid, first, second = _staged(db_url)

    with session_scope(database_url=db_url) as session:
        confirm_transactions(session, [first])
        with pytest.raises(TransactionStateError, match="Revert to pending first"):
            delete_transaction(session, first)
        assert delete_transaction(session, second) == Decimal("700.00")

    assert [r[0] for r in stored_rows(database_url=db_url, portfolio_id=pid)][1:] == [first]
