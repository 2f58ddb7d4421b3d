from __future__ import annotations

import datetime as dt
import json

import pytest
from typer.testing import CliRunner

from portfolio_ledger import cli
from portfolio_ledger.db import session as db_session


@pytest.fixture()
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'ledger.db'}")
    monkeypatch.setattr(db_session, "_ENGINE", None)
    r = CliRunner()
    result = r.invoke(cli.app, ["init-db"])
    assert result.exit_code == 0, result.output
    from portfolio_ledger.db.models import Account

    with db_session.get_session() as s:
        s.add(Account(name="Brokerage"))
        s.commit()
    yield r
    db_session.get_engine().dispose()


def test_add_list_and_delete_flow(runner):
    result = runner.invoke(
        cli.app,
        ["add-flow", "--account", "1", "--date", "2024-02-01", "--category", "deposit", "--amount", "250"],
    )
    assert result.exit_code == 0, result.output
    assert "Created manual flow id=1" in result.output

    result = runner.invoke(cli.app, ["ledger", "--format", "json"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert [f["id"] for f in doc["flows"]] == ["1"]
    assert doc["summary"]["deposits"] == 250.0

    result = runner.invoke(cli.app, ["delete-flow", "1"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli.app, ["delete-flow", "1"])
    assert result.exit_code == 2


def test_add_flow_rejects_unknown_category(runner):
    result = runner.invoke(
        cli.app,
        ["add-flow", "--account", "1", "--date", "2024-02-01", "--category", "bonus", "--amount", "5"],
    )
    assert result.exit_code == 2


def test_tax_report_with_no_activity(runner):
    result = runner.invoke(cli.app, ["tax-report", "--year", "2024"])
    assert result.exit_code == 0, result.output
    assert "Fiscal Year: 2024-2025" in result.output


def test_metrics_with_no_snapshots(runner):
    result = runner.invoke(cli.app, ["metrics"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert doc["twr"] == 0.0
    assert doc["warnings"]


def _seed_two_accounts():
    from portfolio_ledger.db.models import Account, HoldingRow, ValuationSnapshotRow

    def snap(account_id, d, mv, holdings=()):
        row = ValuationSnapshotRow(
            account_id=account_id,
            as_of_date=d,
            total_market_value=mv,
            total_cost_basis=mv,
            total_unrealized_gain=0.0,
        )
        row.holdings = [
            HoldingRow(symbol=sym, quantity=qty, market_value=value, cost_basis=value, unrealized_gain=0.0)
            for sym, qty, value in holdings
        ]
        return row

    with db_session.get_session() as s:
        s.add(Account(name="IRA"))
        s.flush()
        s.add_all(
            [
                snap(1, dt.date(2024, 1, 1), 1000.0, [("AAPL", 4.0, 1000.0)]),
                snap(1, dt.date(2025, 1, 1), 1000.0, [("AAPL", 5.0, 600.0), ("MSFT", 1.0, 400.0)]),
                snap(2, dt.date(2024, 7, 1), 1000.0, [("AAPL", 5.0, 1000.0)]),
                snap(2, dt.date(2025, 1, 1), 1000.0, [("AAPL (A)", 5.0, 600.0), ("VTI", 2.0, 300.0)]),
            ]
        )
        s.commit()


def test_metrics_over_accounts_opened_at_different_times(runner):
    _seed_two_accounts()
    result = runner.invoke(cli.app, ["metrics"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert abs(doc["twr"]) < 1e-9
    assert abs(doc["total_return"]) < 1e-9
    assert abs(doc["irr"]) < 1e-3
    assert doc["warnings"] == []

    result = runner.invoke(cli.app, ["metrics", "--account", "2"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert abs(doc["twr"]) < 1e-9
    assert len(doc["period_returns"]) == 1


def test_holdings_aggregate_uses_latest_snapshots(runner):
    _seed_two_accounts()
    result = runner.invoke(cli.app, ["holdings", "--aggregate"])
    assert result.exit_code == 0, result.output
    rows = json.loads(result.stdout)
    assert [r["symbol"] for r in rows] == ["AAPL", "MSFT", "VTI"]
    aapl = rows[0]
    assert abs(aapl["quantity"] - 10.0) < 1e-9
    assert abs(aapl["market_value"] - 1200.0) < 1e-9
    assert sorted(aapl["accounts"]) == ["1", "2"]

    result = runner.invoke(cli.app, ["holdings", "--account", "1"])
    assert result.exit_code == 0, result.output
    rows = json.loads(result.stdout)
    assert sorted(r["symbol"] for r in rows) == ["AAPL", "MSFT"]


def test_add_transfer_produces_both_legs(runner):
    from portfolio_ledger.db.models import Account

    with db_session.get_session() as s:
        s.add(Account(name="IRA"))
        s.commit()

    result = runner.invoke(
        cli.app,
        [
            "add-transfer",
            "--symbol",
            "aapl",
            "--quantity",
            "5",
            "--date",
            "2024-03-01",
            "--from-account",
            "1",
            "--to-account",
            "2",
            "--cost-basis",
            "400",
            "--market-value",
            "500",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Created share transfer id=1" in result.output

    result = runner.invoke(cli.app, ["ledger", "--format", "json"])
    assert result.exit_code == 0, result.output
    legs = {(f["account_id"], f["category"], f["amount"]) for f in json.loads(result.stdout)["flows"]}
    assert legs == {("1", "transfer_out", 500.0), ("2", "transfer_in", 500.0)}

    result = runner.invoke(cli.app, ["ledger", "--format", "json", "--account", "2"])
    doc = json.loads(result.stdout)
    assert [(f["category"], f["date"]) for f in doc["flows"]] == [("transfer_in", "2024-03-01")]


def test_add_transfer_needs_an_internal_account(runner):
    result = runner.invoke(
        cli.app,
        ["add-transfer", "--symbol", "AAPL", "--quantity", "1", "--date", "2024-03-01"],
    )
    assert result.exit_code == 2
