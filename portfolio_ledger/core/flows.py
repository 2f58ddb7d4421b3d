from __future__ import annotations

import datetime as dt
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import ClassVar, Iterable, Optional

from portfolio_ledger.core.reconciler import IMPLIED_FLOW_TOLERANCE, ReconciledFlows, derive_flows
from portfolio_ledger.core.records import (
    FLOW_CATEGORIES,
    CashFlowEvent,
    DividendRecord,
    LedgerInputs,
    ManualFlowRecord,
    PeriodReturn,
    Provenance,
    ShareTransfer,
    TradeRecord,
)
from portfolio_ledger.core.types import NetCashFlows

logger = logging.getLogger(__name__)


def manual_flows(records: Iterable[ManualFlowRecord]) -> list[CashFlowEvent]:
    return [
        CashFlowEvent(
            id=r.id,
            account_id=r.account_id,
            flow_date=r.flow_date,
            amount=abs(float(r.amount)),
            category=r.category,
            description=r.description or "",
            provenance="manual",
        )
        for r in records
    ]


def dividend_flows(dividends: Iterable[DividendRecord]) -> list[CashFlowEvent]:
    return [
        CashFlowEvent(
            id=f"dividend-{d.id}",
            account_id=d.account_id,
            flow_date=d.dividend_date,
            amount=float(d.amount),
            category="dividend",
            description=f"{d.symbol} dividend",
            provenance="dividend",
        )
        for d in dividends
    ]


def fee_flows(trades: Iterable[TradeRecord]) -> list[CashFlowEvent]:
    out: list[CashFlowEvent] = []
    for t in trades:
        total = t.total_fees
        if total <= 0:
            continue
        out.append(
            CashFlowEvent(
                id=f"fee-{t.id}",
                account_id=t.account_id,
                flow_date=t.transaction_date,
                amount=total,
                category="fee",
                description=f"{t.symbol} {t.transaction_type} fees",
                provenance="transaction-fee",
            )
        )
    return out


def transfer_flows(transfers: Iterable[ShareTransfer]) -> list[CashFlowEvent]:
    """Two legs per transfer valued at market value; the external end (None) emits nothing."""
    out: list[CashFlowEvent] = []
    for t in transfers:
        shares = f"{t.symbol} ({float(t.quantity):g} shares)"
        if t.from_account_id is not None:
            out.append(
                CashFlowEvent(
                    id=f"transfer-out-{t.id}",
                    account_id=t.from_account_id,
                    flow_date=t.transfer_date,
                    amount=float(t.market_value),
                    category="transfer_out",
                    description=f"{shares} transferred out",
                    provenance="transfer",
                )
            )
        if t.to_account_id is not None:
            out.append(
                CashFlowEvent(
                    id=f"transfer-in-{t.id}",
                    account_id=t.to_account_id,
                    flow_date=t.transfer_date,
                    amount=float(t.market_value),
                    category="transfer_in",
                    description=f"{shares} transferred in",
                    provenance="transfer",
                )
            )
    return out


class FlowSource(ABC):
    """
    One origin of cash-flow evidence.

    Each source owns a single provenance tag and declares the categories it may emit. The ledger
    is a plain union of sources, so (category, provenance) pairs must never overlap between two
    sources; `check_disjoint` enforces this before merging.
    """

    provenance: ClassVar[Provenance]
    categories: ClassVar[frozenset[str]]

    @abstractmethod
    def events(self) -> list[CashFlowEvent]: ...

    def collect(self) -> list[CashFlowEvent]:
        out = self.events()
        for e in out:
            if e.provenance != self.provenance or e.category not in self.categories:
                raise ValueError(
                    f"{type(self).__name__} emitted ({e.category}, {e.provenance}); "
                    f"allowed: {sorted(self.categories)} / {self.provenance}"
                )
        return out


@dataclass
class ManualFlowSource(FlowSource):
    provenance: ClassVar[Provenance] = "manual"
    categories: ClassVar[frozenset[str]] = frozenset(FLOW_CATEGORIES)

    records: list[ManualFlowRecord] = field(default_factory=list)

    def events(self) -> list[CashFlowEvent]:
        return manual_flows(self.records)


@dataclass
class DividendFlowSource(FlowSource):
    provenance: ClassVar[Provenance] = "dividend"
    categories: ClassVar[frozenset[str]] = frozenset({"dividend"})

    dividends: list[DividendRecord] = field(default_factory=list)

    def events(self) -> list[CashFlowEvent]:
        return dividend_flows(self.dividends)


@dataclass
class FeeFlowSource(FlowSource):
    provenance: ClassVar[Provenance] = "transaction-fee"
    categories: ClassVar[frozenset[str]] = frozenset({"fee"})

    trades: list[TradeRecord] = field(default_factory=list)

    def events(self) -> list[CashFlowEvent]:
        return fee_flows(self.trades)


@dataclass
class TransferFlowSource(FlowSource):
    provenance: ClassVar[Provenance] = "transfer"
    categories: ClassVar[frozenset[str]] = frozenset({"transfer_in", "transfer_out"})

    transfers: list[ShareTransfer] = field(default_factory=list)

    def events(self) -> list[CashFlowEvent]:
        return transfer_flows(self.transfers)


@dataclass
class ImpliedFlowSource(FlowSource):
    provenance: ClassVar[Provenance] = "implied"
    categories: ClassVar[frozenset[str]] = frozenset({"deposit", "withdrawal"})

    reconciled: ReconciledFlows = field(default_factory=ReconciledFlows)

    def events(self) -> list[CashFlowEvent]:
        return list(self.reconciled.implied_flows)


def check_disjoint(sources: Iterable[FlowSource]) -> None:
    seen: dict[tuple[str, str], str] = {}
    for src in sources:
        name = type(src).__name__
        for cat in src.categories:
            key = (cat, src.provenance)
            if key in seen:
                raise ValueError(f"Flow sources {seen[key]} and {name} both emit {key}")
            seen[key] = name


@dataclass(frozen=True)
class Ledger:
    flows: list[CashFlowEvent] = field(default_factory=list)
    period_returns: list[PeriodReturn] = field(default_factory=list)


def _in_range(d: dt.date, start: Optional[dt.date], end: Optional[dt.date]) -> bool:
    if start is not None and d < start:
        return False
    if end is not None and d > end:
        return False
    return True


def combined_ledger(
    inputs: LedgerInputs,
    *,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    account_ids: Optional[Iterable[str]] = None,
    tolerance: float = IMPLIED_FLOW_TOLERANCE,
) -> Ledger:
    """
    Merge manual, dividend, fee, transfer and implied flows into one ledger.

    Flows are filtered to [start, end] on `flow_date` (both ends inclusive, either optional) and
    sorted by `flow_date` descending; period returns are filtered on `end_date`. `account_ids`
    narrows both to the given accounts (None = every account in `inputs`). Nothing is cached:
    every call recomputes from `inputs`.
    """
    reconciled = derive_flows(inputs.snapshots, inputs.transfers, tolerance=tolerance)
    sources: list[FlowSource] = [
        ManualFlowSource(records=list(inputs.manual_flows)),
        DividendFlowSource(dividends=list(inputs.dividends)),
        FeeFlowSource(trades=list(inputs.trades)),
        TransferFlowSource(transfers=list(inputs.transfers)),
        ImpliedFlowSource(reconciled=reconciled),
    ]
    check_disjoint(sources)

    merged: list[CashFlowEvent] = []
    for src in sources:
        events = src.collect()
        logger.debug("flow source %s: %d event(s)", src.provenance, len(events))
        merged.extend(events)

    scope = set(account_ids) if account_ids is not None else None
    flows = [
        f for f in merged if _in_range(f.flow_date, start, end) and (scope is None or f.account_id in scope)
    ]
    flows.sort(key=lambda f: f.flow_date, reverse=True)
    returns = [
        r
        for r in reconciled.period_returns
        if _in_range(r.end_date, start, end) and (scope is None or r.account_id in scope)
    ]
    return Ledger(flows=flows, period_returns=returns)


def net_cash_flows(flows: Iterable[CashFlowEvent]) -> NetCashFlows:
    """
    Summarize flows by direction.

    Deposits and dividend/interest income raise the net flow; withdrawals, fees and taxes lower
    it. Transfers are balance-neutral at the portfolio level and are left out entirely.
    """
    deposits = withdrawals = income = expenses = net = 0.0
    for f in flows:
        amt = float(f.amount)
        if f.category == "deposit":
            deposits += amt
            net += amt
        elif f.category == "withdrawal":
            withdrawals += amt
            net -= amt
        elif f.category in ("dividend", "interest"):
            income += amt
            net += amt
        elif f.category in ("fee", "tax"):
            expenses += amt
            net -= amt
    return NetCashFlows(deposits=deposits, withdrawals=withdrawals, income=income, expenses=expenses, net_flow=net)
