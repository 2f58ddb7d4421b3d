from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from portfolio_ledger.core.records import (
    FLOW_CATEGORIES,
    DividendRecord,
    Holding,
    LedgerInputs,
    ManualFlowRecord,
    ShareTransfer,
    TradeRecord,
    ValuationSnapshot,
)
from portfolio_ledger.db.audit import log_change, row_snapshot
from portfolio_ledger.db.models import (
    Account,
    DividendRow,
    HoldingRow,
    ManualCashFlow,
    ShareTransferRow,
    TradeRow,
    ValuationSnapshotRow,
)
from portfolio_ledger.exceptions import InvalidFlowError, ManualFlowNotFound

logger = logging.getLogger(__name__)

# Engine records carry string ids; the tables use integer keys.


def _ids(account_ids: Optional[Iterable[str | int]]) -> Optional[list[int]]:
    if account_ids is None:
        return None
    return [int(a) for a in account_ids]


def _opt_str(v: Optional[int]) -> Optional[str]:
    return str(v) if v is not None else None


def load_snapshots(session: Session, *, account_ids: Optional[Iterable[str | int]] = None) -> list[ValuationSnapshot]:
    ids = _ids(account_ids)
    q = session.query(ValuationSnapshotRow)
    if ids is not None:
        q = q.filter(ValuationSnapshotRow.account_id.in_(ids))
    return [
        ValuationSnapshot(
            id=str(r.id),
            account_id=str(r.account_id),
            as_of_date=r.as_of_date,
            total_market_value=float(r.total_market_value or 0.0),
            total_cost_basis=float(r.total_cost_basis or 0.0),
            total_unrealized_gain=float(r.total_unrealized_gain or 0.0),
            created_at=r.created_at,
        )
        for r in q.order_by(ValuationSnapshotRow.id.asc()).all()
    ]


def load_holdings(session: Session, *, snapshot_ids: Optional[Iterable[str | int]] = None) -> list[Holding]:
    q = session.query(HoldingRow)
    if snapshot_ids is not None:
        q = q.filter(HoldingRow.snapshot_id.in_([int(s) for s in snapshot_ids]))
    return [
        Holding(
            snapshot_id=str(r.snapshot_id),
            symbol=r.symbol,
            quantity=float(r.quantity or 0.0),
            cost_basis=float(r.cost_basis or 0.0),
            market_value=float(r.market_value or 0.0),
            unrealized_gain=float(r.unrealized_gain or 0.0),
            company_name=r.company_name,
        )
        for r in q.order_by(HoldingRow.id.asc()).all()
    ]


def load_transfers(session: Session, *, account_ids: Optional[Iterable[str | int]] = None) -> list[ShareTransfer]:
    """Transfers touching any account in scope, on either side."""
    ids = _ids(account_ids)
    q = session.query(ShareTransferRow)
    if ids is not None:
        q = q.filter(or_(ShareTransferRow.from_account_id.in_(ids), ShareTransferRow.to_account_id.in_(ids)))
    rows = q.order_by(ShareTransferRow.transfer_date.asc(), ShareTransferRow.id.asc()).all()

    known = {int(a) for (a,) in session.query(Account.id).all()}
    out: list[ShareTransfer] = []
    for r in rows:
        for side in (r.from_account_id, r.to_account_id):
            if side is not None and int(side) not in known:
                logger.warning("transfer %s references unknown account %s", r.id, side)
        out.append(
            ShareTransfer(
                id=str(r.id),
                from_account_id=_opt_str(r.from_account_id),
                to_account_id=_opt_str(r.to_account_id),
                symbol=r.symbol,
                quantity=float(r.quantity),
                cost_basis=float(r.cost_basis or 0.0),
                market_value=float(r.market_value or 0.0),
                transfer_date=r.transfer_date,
            )
        )
    return out


def _manual_record(r: ManualCashFlow) -> ManualFlowRecord:
    return ManualFlowRecord(
        id=str(r.id),
        account_id=str(r.account_id),
        flow_date=r.flow_date,
        category=r.category,
        amount=float(r.amount),
        description=r.description or "",
    )


def load_manual_flows(session: Session, *, account_ids: Optional[Iterable[str | int]] = None) -> list[ManualFlowRecord]:
    ids = _ids(account_ids)
    q = session.query(ManualCashFlow)
    if ids is not None:
        q = q.filter(ManualCashFlow.account_id.in_(ids))
    return [_manual_record(r) for r in q.order_by(ManualCashFlow.id.asc()).all()]


def load_dividends(session: Session, *, account_ids: Optional[Iterable[str | int]] = None) -> list[DividendRecord]:
    ids = _ids(account_ids)
    q = session.query(DividendRow)
    if ids is not None:
        q = q.filter(DividendRow.account_id.in_(ids))
    return [
        DividendRecord(
            id=str(r.id),
            account_id=str(r.account_id),
            symbol=r.symbol,
            amount=float(r.amount),
            dividend_date=r.dividend_date,
            tax_withheld=float(r.tax_withheld or 0.0),
            is_qualified=bool(r.is_qualified),
        )
        for r in q.order_by(DividendRow.dividend_date.asc(), DividendRow.id.asc()).all()
    ]


def load_trades(session: Session, *, account_ids: Optional[Iterable[str | int]] = None) -> list[TradeRecord]:
    ids = _ids(account_ids)
    q = session.query(TradeRow)
    if ids is not None:
        q = q.filter(TradeRow.account_id.in_(ids))
    return [
        TradeRecord(
            id=str(r.id),
            account_id=str(r.account_id),
            symbol=r.symbol,
            transaction_type=r.transaction_type,
            quantity=float(r.quantity),
            price=float(r.price),
            total_amount=float(r.total_amount or 0.0),
            transaction_date=r.transaction_date,
            commission=float(r.commission or 0.0),
            fees=float(r.fees or 0.0),
        )
        for r in q.order_by(TradeRow.transaction_date.asc(), TradeRow.id.asc()).all()
    ]


def load_ledger_inputs(session: Session, *, account_ids: Optional[Iterable[str | int]] = None) -> LedgerInputs:
    """
    Everything `combined_ledger` needs for the given accounts (None = all accounts).

    Transfers are loaded for either side of the scope, so an account's ledger includes transfers
    to and from accounts outside it.
    """
    ids = _ids(account_ids)
    inputs = LedgerInputs(
        snapshots=load_snapshots(session, account_ids=ids),
        transfers=load_transfers(session, account_ids=ids),
        manual_flows=load_manual_flows(session, account_ids=ids),
        dividends=load_dividends(session, account_ids=ids),
        trades=load_trades(session, account_ids=ids),
    )
    logger.debug(
        "loaded %d snapshot(s), %d transfer(s), %d manual flow(s), %d dividend(s), %d trade(s)",
        len(inputs.snapshots),
        len(inputs.transfers),
        len(inputs.manual_flows),
        len(inputs.dividends),
        len(inputs.trades),
    )
    return inputs


def create_manual_flow(
    session: Session,
    *,
    account_id: str | int,
    flow_date: dt.date,
    category: str,
    amount: float,
    description: str = "",
    actor: str = "cli",
) -> ManualFlowRecord:
    cat = (category or "").strip().lower()
    if cat not in FLOW_CATEGORIES:
        raise InvalidFlowError(f"Unknown flow category {category!r}; expected one of {', '.join(FLOW_CATEGORIES)}")
    if amount is None or float(amount) < 0:
        raise InvalidFlowError(f"Flow amount must be a non-negative magnitude, got {amount}")
    try:
        acct = int(account_id)
    except (TypeError, ValueError):
        raise InvalidFlowError(f"Unknown account {account_id!r}") from None
    if session.get(Account, acct) is None:
        raise InvalidFlowError(f"Unknown account {account_id!r}")

    row = ManualCashFlow(
        account_id=acct,
        flow_date=flow_date,
        category=cat,
        amount=float(amount),
        description=description or None,
    )
    session.add(row)
    session.flush()
    log_change(session, actor=actor, action="CREATE", row=row, new=row_snapshot(row), note="manual cash flow")
    logger.debug("created manual flow id=%s account=%s %s %.2f", row.id, row.account_id, cat, row.amount)
    return _manual_record(row)


def delete_manual_flow(session: Session, flow_id: str | int, *, actor: str = "cli") -> None:
    """Delete a stored manual flow. Derived flows are never stored and cannot be deleted."""
    try:
        key = int(flow_id)
    except (TypeError, ValueError):
        raise ManualFlowNotFound(f"Manual flow {flow_id!r} not found") from None
    row = session.get(ManualCashFlow, key)
    if row is None:
        raise ManualFlowNotFound(f"Manual flow {flow_id!r} not found")
    old = row_snapshot(row)
    log_change(session, actor=actor, action="DELETE", row=row, old=old, note="manual cash flow")
    session.delete(row)
    session.flush()
    logger.debug("deleted manual flow id=%s", key)


def create_share_transfer(
    session: Session,
    *,
    from_account_id: Optional[str | int],
    to_account_id: Optional[str | int],
    symbol: str,
    quantity: float,
    cost_basis: float,
    market_value: float,
    transfer_date: dt.date,
    notes: Optional[str] = None,
    actor: str = "cli",
) -> ShareTransfer:
    if from_account_id is None and to_account_id is None:
        raise ValueError("A share transfer needs at least one internal account")
    if float(quantity) <= 0:
        raise ValueError(f"Transfer quantity must be positive, got {quantity}")
    row = ShareTransferRow(
        from_account_id=int(from_account_id) if from_account_id is not None else None,
        to_account_id=int(to_account_id) if to_account_id is not None else None,
        symbol=symbol.strip().upper(),
        quantity=float(quantity),
        cost_basis=float(cost_basis),
        market_value=float(market_value),
        transfer_date=transfer_date,
        notes=notes,
    )
    session.add(row)
    session.flush()
    log_change(session, actor=actor, action="CREATE", row=row, new=row_snapshot(row), note="share transfer")
    return ShareTransfer(
        id=str(row.id),
        from_account_id=_opt_str(row.from_account_id),
        to_account_id=_opt_str(row.to_account_id),
        symbol=row.symbol,
        quantity=row.quantity,
        cost_basis=row.cost_basis,
        market_value=row.market_value,
        transfer_date=row.transfer_date,
    )
