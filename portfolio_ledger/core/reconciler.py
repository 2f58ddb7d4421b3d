from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Iterable

from portfolio_ledger.core.records import CashFlowEvent, PeriodReturn, ShareTransfer, ValuationSnapshot
from portfolio_ledger.core.snapshots import group_by_account, reconcile_order

logger = logging.getLogger(__name__)

IMPLIED_FLOW_TOLERANCE = 0.01


@dataclass(frozen=True)
class ReconciledFlows:
    implied_flows: list[CashFlowEvent] = field(default_factory=list)
    period_returns: list[PeriodReturn] = field(default_factory=list)


@dataclass(frozen=True)
class _TransferTotals:
    transfer_in: float
    transfer_out: float


def _window_start(prev: ValuationSnapshot) -> dt.date:
    if prev.as_of_date is not None:
        return prev.as_of_date
    return prev.created_at.date()


def _transfer_totals(
    transfers: Iterable[ShareTransfer],
    *,
    account_id: str,
    start: dt.date,
    end: dt.date,
) -> _TransferTotals:
    """Cost basis of securities moved in/out of `account_id` in (start, end]."""
    t_in = 0.0
    t_out = 0.0
    for t in transfers:
        if not (start < t.transfer_date <= end):
            continue
        if t.from_account_id == account_id:
            t_out += float(t.cost_basis)
        if t.to_account_id == account_id:
            t_in += float(t.cost_basis)
    return _TransferTotals(transfer_in=t_in, transfer_out=t_out)


def _reconcile_pair(
    prev: ValuationSnapshot,
    curr: ValuationSnapshot,
    transfers: list[ShareTransfer],
    *,
    end: dt.date,
    tolerance: float,
) -> tuple[CashFlowEvent | None, PeriodReturn]:
    start = _window_start(prev)
    totals = _transfer_totals(transfers, account_id=curr.account_id, start=start, end=end)

    # Cost basis moved by received/sent securities is not owner cash.
    cost_basis_change = float(curr.total_cost_basis) - float(prev.total_cost_basis)
    net_deposit = cost_basis_change - totals.transfer_in + totals.transfer_out

    market_value_change = float(curr.total_market_value) - float(prev.total_market_value)
    net_transfer = totals.transfer_in - totals.transfer_out
    period_return = market_value_change - net_deposit - net_transfer

    start_value = float(prev.total_market_value)
    avg_investment = start_value + net_deposit / 2.0
    return_percent = (period_return / avg_investment) * 100.0 if avg_investment > 0 else 0.0

    implied: CashFlowEvent | None = None
    if abs(net_deposit) > tolerance:
        category = "deposit" if net_deposit > 0 else "withdrawal"
        since = prev.as_of_date.isoformat() if prev.as_of_date is not None else "initial"
        implied = CashFlowEvent(
            id=f"implied-{curr.id}",
            account_id=curr.account_id,
            flow_date=end,
            amount=abs(net_deposit),
            category=category,
            description=f"Implied {category} (cost basis change from {since}, adjusted for transfers)",
            provenance="implied",
        )

    pr = PeriodReturn(
        account_id=curr.account_id,
        start_date=start,
        end_date=end,
        start_value=start_value,
        end_value=float(curr.total_market_value),
        net_deposits=net_deposit,
        net_transfers=net_transfer,
        period_return=period_return,
        return_percent=return_percent,
    )
    return implied, pr


def derive_flows(
    snapshots: Iterable[ValuationSnapshot],
    transfers: Iterable[ShareTransfer],
    *,
    tolerance: float = IMPLIED_FLOW_TOLERANCE,
) -> ReconciledFlows:
    """
    Infer deposits/withdrawals and per-period returns from consecutive valuation snapshots.

    For each account, consecutive snapshot pairs (in reconcile order) are compared:

    - net deposit = cost basis change - transfers in + transfers out (transfers valued at cost)
    - period return = market value change - net deposit - net transfer
    - return % = period return / (start value + net deposit / 2), 0 when that base is not positive

    An implied flow is emitted when |net deposit| exceeds `tolerance`; a PeriodReturn is emitted
    for every pair. The whole net effect is attributed to the later snapshot's date. Pairs whose
    later snapshot has no `as_of_date` are skipped; accounts with fewer than 2 snapshots yield
    nothing.
    """
    transfer_list = list(transfers)
    implied: list[CashFlowEvent] = []
    returns: list[PeriodReturn] = []

    for account_id, snaps in group_by_account(snapshots).items():
        ordered = reconcile_order(snaps)
        if len(ordered) < 2:
            continue
        pairs = 0
        for prev, curr in zip(ordered, ordered[1:]):
            if curr.as_of_date is None:
                continue
            flow, pr = _reconcile_pair(prev, curr, transfer_list, end=curr.as_of_date, tolerance=tolerance)
            if flow is not None:
                implied.append(flow)
            returns.append(pr)
            pairs += 1
        logger.debug("reconciled account %s: %d snapshot(s), %d period(s)", account_id, len(ordered), pairs)

    return ReconciledFlows(implied_flows=implied, period_returns=returns)
