from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from portfolio_ledger.cli import app
from tests.helpers.db import bootstrap_sqlite_db

runner = CliRunner()
# rich wraps tables to COLUMNS when output is not a terminal
WIDE = {"COLUMNS": "200"}

BUY_WITHOUT_CASH = [
    {"type": "BUY", "ticker": "PETR4", "amount": 3250, "quantity": 100, "date": "2024-01-15"}
]


def _write(path: Path, body: object) -> Path:
    path.write_text(body if isinstance(body, str) else json.dumps(body), encoding="utf-8")
    return path


# ---- reconcile ---------------------------------------------------------------


def test_reconcile_json_output(tmp_path: Path):
    src = _write(tmp_path / "batch.json", BUY_WITHOUT_CASH)
    result = runner.invoke(app, ["reconcile", "--input", str(src), "--json"])

    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert [t["type"] for t in body["transactions"]] == ["CASH_CREDIT", "BUY"]
    assert body["transactions"][0]["amount"] == "3250.00"
    assert body["transactions"][1]["price"] == "32.50"
    assert body["errors"] == []
    assert len(body["warnings"]) == 1
    assert body["final_balance"] == "0.00"


def test_reconcile_reports_rejections_without_failing(tmp_path: Path):
    src = _write(tmp_path / "batch.json", [{"type": "CASH_DEBIT", "amount": 10000, "date": "2024-01-15"}])
    result = runner.invoke(
        app, ["reconcile", "--input", str(src), "--initial-balance", "R$ 5.000,00", "--json"]
    )

    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["transactions"] == []
    assert body["errors"] == [
        "Saldo insuficiente para saque. Saldo atual: R$ 5.000,00, valor solicitado: R$ 10.000,00"
    ]


def test_reconcile_csv_renders_a_table(tmp_path: Path):
    src = _write(
        tmp_path / "batch.csv",
        "type,ticker,amount,quantity,price,date,notes\n"
        "BUY,PETR4,3250,100,,2024-01-15,\n"
        "BUY,VALE3,500,,,2024-01-16,\n",
    )
    result = runner.invoke(app, ["reconcile", "--input", str(src)], env=WIDE)

    assert result.exit_code == 0, result.output
    assert "PETR4" in result.stdout
    assert "CASH_CREDIT" in result.stdout
    assert "deve informar quantidade" in result.stdout
    assert "R$ 0,00" in result.stdout


@pytest.mark.parametrize(
    ("args", "message"),
    [
        (["--input", "missing.json"], "Error: File not found"),
        (["--input", "batch.txt"], "Error: Failed to read"),
        (["--input", "batch.json", "--initial-balance", "lots"], "Error: invalid --initial-balance"),
        (["--input", "batch.json", "--initial-balance=-10"], "must not be negative"),
    ],
)
def test_reconcile_input_failures_exit_1(args: list[str], message: str):
    _write(Path("batch.json"), BUY_WITHOUT_CASH)
    _write(Path("batch.txt"), "hello")
    result = runner.invoke(app, ["reconcile", *args])

    assert result.exit_code == 1
    assert message in result.output


def test_reconcile_bad_csv_header_exit_1(tmp_path: Path):
    src = _write(tmp_path / "batch.csv", "kind,value\nBUY,1\n")
    result = runner.invoke(app, ["reconcile", "--input", str(src)])
    assert result.exit_code == 1
    assert "Error: Failed to parse CSV" in result.output


# ---- import pipeline ---------------------------------------------------------


def test_import_response(tmp_path: Path):
    response = (
        "Claro! Segue o JSON:\n"
        + json.dumps({"transactions": BUY_WITHOUT_CASH, "errors": [], "warnings": ["Data assumida"]})
        + "\nAlgo mais?"
    )
    src = _write(tmp_path / "response.txt", response)
    result = runner.invoke(app, ["import-response", "--input", str(src), "--json"])

    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["warnings"][0] == "Data assumida"
    assert len(body["transactions"]) == 2


def test_import_response_without_json_exit_1(tmp_path: Path):
    src = _write(tmp_path / "response.txt", "Desculpe, não entendi.")
    result = runner.invoke(app, ["import-response", "--input", str(src)])
    assert result.exit_code == 1
    assert "Resposta da IA não contém JSON válido" in result.output


def test_filter_input(tmp_path: Path):
    src = _write(tmp_path / "statement.txt", "Compra 100 PETR4\nVenda PETRX245\nCompra WDOZ24\n")
    result = runner.invoke(app, ["filter-input", "--input", str(src)])
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["Compra 100 PETR4", ""]


# ---- database commands -------------------------------------------------------


def test_init_apply_and_balances(tmp_path: Path):
    url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"
    assert runner.invoke(app, ["init-db", "--database-url", url]).exit_code == 0

    deposit = _write(tmp_path / "deposit.json", [{"type": "CASH_CREDIT", "amount": 1000, "date": "2024-01-10"}])
    result = runner.invoke(
        app, ["apply", "--input", str(deposit), "--portfolio", "main", "--database-url", url, "--json"]
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["final_balance"] == "1000.00"

    # Reconciled against the stored R$ 1.000,00: only R$ 2.250,00 is synthesized.
    buy = _write(tmp_path / "buy.json", BUY_WITHOUT_CASH)
    result = runner.invoke(
        app, ["apply", "--input", str(buy), "--portfolio", "main", "--database-url", url, "--json"]
    )
    body = json.loads(result.stdout)
    assert body["created"] == 2
    assert body["warnings"] == ["Aporte automático de R$ 2.250,00 criado para cobrir a compra de PETR4"]
    assert body["final_balance"] == "0.00"

    result = runner.invoke(app, ["balances", "--portfolio", "main", "--database-url", url, "--json"])
    assert result.exit_code == 0, result.output
    rows = json.loads(result.stdout)["transactions"]
    assert [(r["type"], r["cash_balance_after"]) for r in rows] == [
        ("CASH_CREDIT", "1000.00"),
        ("CASH_CREDIT", "3250.00"),
        ("BUY", "0.00"),
    ]

    table = runner.invoke(app, ["balances", "--portfolio", "main", "--database-url", url], env=WIDE)
    assert table.exit_code == 0
    assert "Cash balance: R$ 0,00" in table.stdout


def test_apply_refusal_is_reported(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "cli.db")
    seed = _write(
        tmp_path / "seed.json",
        [
            {"type": "CASH_CREDIT", "amount": 1000, "date": "2024-01-01"},
            {"type": "BUY", "ticker": "ITUB4", "amount": 1000, "quantity": 40, "date": "2024-01-10"},
            {"type": "CASH_CREDIT", "amount": 500, "date": "2024-01-20"},
        ],
    )
    assert runner.invoke(app, ["apply", "-i", str(seed), "-p", "main", "--database-url", url]).exit_code == 0

    late = _write(tmp_path / "late.json", [{"type": "CASH_DEBIT", "amount": 300, "date": "2024-01-05"}])
    result = runner.invoke(app, ["apply", "-i", str(late), "-p", "main", "--database-url", url, "--json"])

    body = json.loads(result.stdout)
    assert body["created"] == 0
    assert body["errors"] == [
        "Transação 1: Saldo insuficiente para saque. Você precisa de R$ 300,00 adicionais em caixa."
    ]


def test_apply_backdated_purchase_reports_the_resized_contribution(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "cli.db")
    march = _write(tmp_path / "march.json", [{"type": "CASH_CREDIT", "amount": 300, "date": "2024-03-01"}])
    assert runner.invoke(app, ["apply", "-i", str(march), "-p", "main", "--database-url", url]).exit_code == 0

    january = _write(
        tmp_path / "january.json",
        [{"type": "BUY", "ticker": "PETR4", "amount": 500, "quantity": 5, "date": "2024-01-01"}],
    )
    result = runner.invoke(app, ["apply", "-i", str(january), "-p", "main", "--database-url", url, "--json"])

    body = json.loads(result.stdout)
    assert body["created"] == 2
    assert body["errors"] == []
    assert body["warnings"] == [
        "Aporte automático de R$ 200,00 criado para cobrir a compra de PETR4",
        "Aporte automático para compra de PETR4 ajustado de R$ 200,00 para R$ 500,00: "
        "o saldo em 01/01/2024 é menor que o saldo atual",
    ]
    assert body["final_balance"] == "300.00"


def test_review_commands(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "cli.db")
    db = ["--database-url", url]
    deposit = _write(tmp_path / "deposit.json", [{"type": "CASH_CREDIT", "amount": 1000, "date": "2024-01-10"}])
    assert runner.invoke(app, ["apply", "-i", str(deposit), "-p", "main", *db]).exit_code == 0

    staged = _write(
        tmp_path / "staged.json",
        [
            {"type": "CASH_DEBIT", "amount": 300, "date": "2024-01-12"},
            {"type": "CASH_DEBIT", "amount": 200, "date": "2024-01-13"},
        ],
    )
    result = runner.invoke(app, ["apply", "-i", str(staged), "-p", "main", "--pending", "--json", *db])
    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert (body["status"], body["created"], body["final_balance"]) == ("PENDING", 2, "1000.00")
    first, second = body["created_ids"]

    listing = runner.invoke(app, ["transactions", "-p", "main", "--status", "pending", "--json", *db])
    assert [r["id"] for r in json.loads(listing.stdout)["transactions"]] == [first, second]

    confirm = runner.invoke(app, ["confirm", str(first), *db])
    assert confirm.exit_code == 0, confirm.output
    assert "Cash balance (portfolio 1): R$ 700,00" in confirm.stdout

    again = runner.invoke(app, ["confirm", str(first), *db])
    assert again.exit_code == 1
    assert "Error: Only pending transactions can be confirmed" in again.output

    reject = runner.invoke(app, ["reject", str(second), "--reason", "duplicada", *db])
    assert reject.exit_code == 0, reject.output
    assert "Cash balance: R$ 700,00" in reject.stdout

    table = runner.invoke(app, ["transactions", "-p", "main", *db], env=WIDE)
    assert table.exit_code == 0
    assert "REJECTED" in table.stdout
    assert "duplicada" in table.stdout

    refused = runner.invoke(app, ["delete", str(first), *db])
    assert refused.exit_code == 1
    assert "Revert to pending first" in refused.output

    assert runner.invoke(app, ["revert", str(first), *db]).exit_code == 0
    deleted = runner.invoke(app, ["delete", str(first), *db])
    assert deleted.exit_code == 0, deleted.output
    assert "Cash balance: R$ 1.000,00" in deleted.stdout


@pytest.mark.parametrize(
    ("args", "message"),
    [
        (["reject", "999"], "Error: Transaction not found: 999"),
        (["revert", "999"], "Error: Transaction not found: 999"),
        (["transactions", "-p", "main", "--status", "done"], "Error: unknown status: done"),
        (["transactions", "-p", "nobody"], "Error: portfolio not found: nobody"),
    ],
)
def test_review_command_failures_exit_1(tmp_path: Path, args: list[str], message: str):
    url = bootstrap_sqlite_db(tmp_path / "cli.db")
    result = runner.invoke(app, [*args, "--database-url", url])

    assert result.exit_code == 1
    assert message in result.output


def test_database_url_is_read_from_dotenv(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "env.db")
    Path(".env").write_text(f"DATABASE_URL={url}\n", encoding="utf-8")
    try:
        result = runner.invoke(app, ["balances", "--portfolio", "nobody"])
    finally:
        os.environ.pop("DATABASE_URL", None)

    assert result.exit_code == 1
    assert "Error: portfolio not found: nobody" in result.output


def test_database_commands_without_url_exit_1():
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 1
    assert "DATABASE_URL is not set" in result.output
