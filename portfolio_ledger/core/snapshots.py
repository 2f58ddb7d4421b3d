from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Union

from portfolio_ledger.core.records import Holding, ValuationSnapshot


def group_by_account(snapshots: Iterable[ValuationSnapshot]) -> dict[str, list[ValuationSnapshot]]:
    out: dict[str, list[ValuationSnapshot]] = {}
    for s in snapshots:
        out.setdefault(s.account_id, []).append(s)
    return out


def _reconcile_key(s: ValuationSnapshot) -> tuple[int, dt.date, dt.datetime]:
    # Undated snapshots sort first; they can be a `prev` but never anchor a period.
    if s.as_of_date is None:
        return (0, dt.date.min, s.created_at)
    return (1, s.as_of_date, s.created_at)


def reconcile_order(snapshots: Iterable[ValuationSnapshot]) -> list[ValuationSnapshot]:
    """Ascending order used when pairing consecutive snapshots of one account."""
    return sorted(snapshots, key=_reconcile_key)


def _recency_key(s: ValuationSnapshot) -> tuple[int, dt.date, dt.datetime]:
    # An undated snapshot is a fresh upload: it outranks every dated one.
    if s.as_of_date is None:
        return (1, dt.date.max, s.created_at)
    return (0, s.as_of_date, s.created_at)


def latest_snapshots(snapshots: Iterable[ValuationSnapshot]) -> dict[str, ValuationSnapshot]:
    """Most recent snapshot per account."""
    out: dict[str, ValuationSnapshot] = {}
    for account_id, snaps in group_by_account(snapshots).items():
        out[account_id] = max(snaps, key=_recency_key)
    return out


class HoldingsView(str, Enum):
    DETAILED = "detailed"
    AGGREGATED = "aggregated"


@dataclass(frozen=True)
class DetailedHolding:
    symbol: str
    quantity: float
    market_value: float
    account_id: str
    snapshot_id: str
    cost_basis: float
    unrealized_gain: float
    company_name: Optional[str] = None


@dataclass(frozen=True)
class AggregatedHolding:
    symbol: str
    quantity: float
    market_value: float
    total_cost: float
    average_cost: float
    unrealized_gain: float
    weight: float  # percent of total market value
    accounts: list[str] = field(default_factory=list)
    company_name: Optional[str] = None


HoldingsViewRow = Union[DetailedHolding, AggregatedHolding]

_SUFFIX_RE = re.compile(r"\s*\([^)]*\)\s*$")


def normalize_symbol(symbol: str) -> str:
    """Drop a trailing parenthesized suffix, e.g. "GP (A)" -> "GP"."""
    return _SUFFIX_RE.sub("", symbol or "").strip()


def _detailed(latest: dict[str, ValuationSnapshot], holdings: Iterable[Holding]) -> list[DetailedHolding]:
    account_by_snapshot = {s.id: s.account_id for s in latest.values()}
    rows: list[DetailedHolding] = []
    for h in holdings:
        account_id = account_by_snapshot.get(h.snapshot_id)
        if account_id is None:
            continue
        rows.append(
            DetailedHolding(
                symbol=h.symbol,
                quantity=float(h.quantity),
                market_value=float(h.market_value),
                account_id=account_id,
                snapshot_id=h.snapshot_id,
                cost_basis=float(h.cost_basis),
                unrealized_gain=float(h.unrealized_gain),
                company_name=h.company_name,
            )
        )
    rows.sort(key=lambda r: r.market_value, reverse=True)
    return rows


def _aggregated(detailed: list[DetailedHolding]) -> list[AggregatedHolding]:
    agg: dict[str, dict] = {}
    total_mv = 0.0
    for h in detailed:
        sym = normalize_symbol(h.symbol)
        a = agg.setdefault(
            sym,
            {"qty": 0.0, "cost": 0.0, "mv": 0.0, "ug": 0.0, "accounts": [], "name": h.company_name},
        )
        a["qty"] += h.quantity
        a["cost"] += h.cost_basis
        a["mv"] += h.market_value
        a["ug"] += h.unrealized_gain
        if h.account_id not in a["accounts"]:
            a["accounts"].append(h.account_id)
        total_mv += h.market_value

    rows = [
        AggregatedHolding(
            symbol=sym,
            quantity=a["qty"],
            market_value=a["mv"],
            total_cost=a["cost"],
            average_cost=(a["cost"] / a["qty"]) if a["qty"] > 0 else 0.0,
            unrealized_gain=a["ug"],
            weight=(a["mv"] / total_mv * 100.0) if total_mv > 0 else 0.0,
            accounts=list(a["accounts"]),
            company_name=a["name"],
        )
        for sym, a in agg.items()
    ]
    rows.sort(key=lambda r: r.market_value, reverse=True)
    return rows


def holdings_view(
    snapshots: Iterable[ValuationSnapshot],
    holdings: Iterable[Holding],
    *,
    mode: HoldingsView = HoldingsView.DETAILED,
) -> list[HoldingsViewRow]:
    """
    Holdings from the latest snapshot of each account.

    `DETAILED` keeps one row per (account, symbol); `AGGREGATED` collapses rows across accounts
    by normalized symbol with summed quantities/values, average cost and portfolio weight.
    """
    detailed = _detailed(latest_snapshots(snapshots), holdings)
    if HoldingsView(mode) is HoldingsView.AGGREGATED:
        return list(_aggregated(detailed))
    return list(detailed)


def valuation_series(snapshots: Iterable[ValuationSnapshot]) -> list[tuple[dt.date, float]]:
    """
    Combined market value per snapshot date across accounts.

    Each account contributes its most recent value on or before the date, so an account without
    a snapshot on that day is carried forward. Undated snapshots are left out.
    """
    dated = [s for s in snapshots if s.as_of_date is not None]
    by_account = {a: reconcile_order(snaps) for a, snaps in group_by_account(dated).items()}
    dates = sorted({s.as_of_date for s in dated})
    series: list[tuple[dt.date, float]] = []
    for d in dates:
        total = 0.0
        for snaps in by_account.values():
            last: Optional[ValuationSnapshot] = None
            for s in snaps:
                if s.as_of_date > d:
                    break
                last = s
            if last is not None:
                total += float(last.total_market_value)
        series.append((d, total))
    return series


def account_openings(snapshots: Iterable[ValuationSnapshot]) -> list[tuple[dt.date, float]]:
    """
    (date, market value) of each account's earliest dated snapshot, sorted by date.

    When an account starts reporting partway through a combined `valuation_series`, its opening
    value is new capital entering the total rather than a return.
    """
    out: list[tuple[dt.date, float]] = []
    for snaps in group_by_account(s for s in snapshots if s.as_of_date is not None).values():
        first = min(snaps, key=_reconcile_key)
        out.append((first.as_of_date, float(first.total_market_value)))
    out.sort(key=lambda x: x[0])
    return out
