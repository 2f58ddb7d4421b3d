from __future__ import annotations

import datetime as dt

from portfolio_ledger.core.records import Holding
from portfolio_ledger.core.snapshots import (
    AggregatedHolding,
    DetailedHolding,
    HoldingsView,
    account_openings,
    holdings_view,
    latest_snapshots,
    normalize_symbol,
    reconcile_order,
    valuation_series,
)
from portfolio_ledger.utils.time import UTC


def test_reconcile_order_puts_undated_first_then_created_at(make_snapshot):
    snaps = [
        make_snapshot("b", "A", dt.date(2024, 2, 1), 1.0, 1.0, dt.datetime(2024, 2, 1, tzinfo=UTC)),
        make_snapshot("a2", "A", dt.date(2024, 1, 1), 1.0, 1.0, dt.datetime(2024, 1, 5, tzinfo=UTC)),
        make_snapshot("a1", "A", dt.date(2024, 1, 1), 1.0, 1.0, dt.datetime(2024, 1, 2, tzinfo=UTC)),
        make_snapshot("u", "A", None, 1.0, 1.0, dt.datetime(2024, 3, 1, tzinfo=UTC)),
    ]
    assert [s.id for s in reconcile_order(snaps)] == ["u", "a1", "a2", "b"]


def test_latest_snapshot_prefers_undated_upload(make_snapshot):
    snaps = [
        make_snapshot("a1", "A", dt.date(2024, 5, 1), 1.0, 1.0),
        make_snapshot("a2", "A", None, 1.0, 1.0),
        make_snapshot("b1", "B", dt.date(2024, 5, 1), 1.0, 1.0, dt.datetime(2024, 5, 1, tzinfo=UTC)),
        make_snapshot("b2", "B", dt.date(2024, 5, 1), 1.0, 1.0, dt.datetime(2024, 5, 2, tzinfo=UTC)),
    ]
    latest = latest_snapshots(snaps)
    assert latest["A"].id == "a2"
    assert latest["B"].id == "b2"


def test_normalize_symbol():
    assert normalize_symbol("GP (A)") == "GP"
    assert normalize_symbol("VTI") == "VTI"


def _holdings_fixture(make_snapshot):
    snaps = [
        make_snapshot("a-old", "A", dt.date(2024, 1, 1), 1.0, 1.0),
        make_snapshot("a-new", "A", dt.date(2024, 2, 1), 1.0, 1.0),
        make_snapshot("b-new", "B", dt.date(2024, 2, 1), 1.0, 1.0),
    ]
    holdings = [
        Holding(snapshot_id="a-old", symbol="OLD", quantity=1.0, cost_basis=1.0, market_value=999.0),
        Holding(snapshot_id="a-new", symbol="GP (A)", quantity=10.0, cost_basis=100.0, market_value=150.0, unrealized_gain=50.0),
        Holding(snapshot_id="a-new", symbol="VTI", quantity=1.0, cost_basis=200.0, market_value=250.0, unrealized_gain=50.0),
        Holding(snapshot_id="b-new", symbol="GP", quantity=30.0, cost_basis=500.0, market_value=450.0, unrealized_gain=-50.0),
    ]
    return snaps, holdings


def test_detailed_view_uses_latest_snapshot_per_account(make_snapshot):
    snaps, holdings = _holdings_fixture(make_snapshot)
    rows = holdings_view(snaps, holdings, mode=HoldingsView.DETAILED)
    assert all(isinstance(r, DetailedHolding) for r in rows)
    assert [(r.account_id, r.symbol) for r in rows] == [("B", "GP"), ("A", "VTI"), ("A", "GP (A)")]


def test_aggregated_view_collapses_symbols(make_snapshot):
    snaps, holdings = _holdings_fixture(make_snapshot)
    rows = holdings_view(snaps, holdings, mode=HoldingsView.AGGREGATED)
    assert all(isinstance(r, AggregatedHolding) for r in rows)
    assert [r.symbol for r in rows] == ["GP", "VTI"]
    gp = rows[0]
    assert abs(gp.quantity - 40.0) < 1e-9
    assert abs(gp.market_value - 600.0) < 1e-9
    assert abs(gp.average_cost - 15.0) < 1e-9
    # 600 / 850
    assert abs(gp.weight - 600.0 / 850.0 * 100.0) < 1e-9
    assert sorted(gp.accounts) == ["A", "B"]


def test_valuation_series_carries_accounts_forward(make_snapshot):
    snaps = [
        make_snapshot("a1", "A", dt.date(2024, 1, 1), 100.0, 100.0),
        make_snapshot("b1", "B", dt.date(2024, 1, 15), 50.0, 50.0),
        make_snapshot("a2", "A", dt.date(2024, 2, 1), 120.0, 100.0),
        make_snapshot("u", "A", None, 999.0, 999.0),
    ]
    assert valuation_series(snaps) == [
        (dt.date(2024, 1, 1), 100.0),
        (dt.date(2024, 1, 15), 150.0),
        (dt.date(2024, 2, 1), 170.0),
    ]


def test_account_openings_use_first_dated_snapshot(make_snapshot):
    snaps = [
        make_snapshot("b2", "B", dt.date(2024, 9, 1), 80.0, 50.0),
        make_snapshot("a1", "A", dt.date(2024, 1, 1), 100.0, 100.0),
        make_snapshot("b1", "B", dt.date(2024, 7, 1), 50.0, 50.0),
        make_snapshot("u", "B", None, 999.0, 999.0),
        make_snapshot("c", "C", None, 10.0, 10.0),
    ]
    assert account_openings(snaps) == [
        (dt.date(2024, 1, 1), 100.0),
        (dt.date(2024, 7, 1), 50.0),
    ]
