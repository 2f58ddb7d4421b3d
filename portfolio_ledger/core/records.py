from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Literal, Optional, get_args

FlowCategory = Literal[
    "deposit",
    "withdrawal",
    "dividend",
    "interest",
    "fee",
    "tax",
    "transfer_in",
    "transfer_out",
]
Provenance = Literal["manual", "dividend", "transaction-fee", "transfer", "implied"]
CostBasisMethod = Literal["FIFO", "LIFO", "HIFO", "AVERAGE"]

FLOW_CATEGORIES: tuple[str, ...] = get_args(FlowCategory)
COST_BASIS_METHODS: tuple[str, ...] = get_args(CostBasisMethod)


@dataclass(frozen=True)
class ValuationSnapshot:
    id: str
    account_id: str
    as_of_date: Optional[dt.date]
    total_market_value: float
    total_cost_basis: float
    total_unrealized_gain: float
    created_at: dt.datetime


@dataclass(frozen=True)
class ShareTransfer:
    id: str
    from_account_id: Optional[str]  # None = external
    to_account_id: Optional[str]  # None = external
    symbol: str
    quantity: float
    cost_basis: float
    market_value: float
    transfer_date: dt.date


@dataclass(frozen=True)
class CashFlowEvent:
    id: str
    account_id: str
    flow_date: dt.date
    amount: float  # always a non-negative magnitude; direction comes from category
    category: FlowCategory
    description: str
    provenance: Provenance


@dataclass(frozen=True)
class PeriodReturn:
    account_id: str
    start_date: dt.date
    end_date: dt.date
    start_value: float
    end_value: float
    net_deposits: float
    net_transfers: float
    period_return: float
    return_percent: float


@dataclass(frozen=True)
class ManualFlowRecord:
    id: str
    account_id: str
    flow_date: dt.date
    category: FlowCategory
    amount: float
    description: str = ""


@dataclass(frozen=True)
class DividendRecord:
    id: str
    account_id: str
    symbol: str
    amount: float  # gross
    dividend_date: dt.date
    tax_withheld: float = 0.0
    is_qualified: bool = False


@dataclass(frozen=True)
class TradeRecord:
    id: str
    account_id: str
    symbol: str
    transaction_type: str  # buy|sell
    quantity: float
    price: float
    total_amount: float
    transaction_date: dt.date
    commission: float = 0.0
    fees: float = 0.0

    @property
    def total_fees(self) -> float:
        return float(self.commission or 0.0) + float(self.fees or 0.0)


@dataclass
class TaxLot:
    symbol: str
    quantity: float  # remaining; reduced as sales consume the lot
    purchase_date: dt.date
    purchase_price: float
    cost_basis: float
    id: str = ""
    listed: bool = True

    def consume(self, qty: float) -> float:
        """Take up to `qty` units from the lot; returns the quantity actually taken."""
        take = min(max(0.0, float(qty)), self.quantity)
        if take <= 0:
            return 0.0
        if self.quantity > 0:
            self.cost_basis -= self.cost_basis * (take / self.quantity)
        self.quantity -= take
        if self.quantity < 1e-12:
            self.quantity = 0.0
            self.cost_basis = 0.0
        return take


@dataclass(frozen=True)
class SaleTransaction:
    symbol: str
    quantity: float
    sale_date: dt.date
    sale_price: float
    proceeds: Optional[float] = None
    listed: bool = True

    @property
    def total_proceeds(self) -> float:
        if self.proceeds is not None:
            return float(self.proceeds)
        return float(self.quantity) * float(self.sale_price)


@dataclass(frozen=True)
class CapitalGain:
    symbol: str
    quantity: float
    purchase_date: dt.date
    sale_date: dt.date
    cost_basis: float
    proceeds: float
    gain: float
    holding_period_days: int
    is_long_term: bool
    tax_rate: float
    tax_amount: float
    lot_id: str = ""


@dataclass(frozen=True)
class Holding:
    snapshot_id: str
    symbol: str
    quantity: float
    cost_basis: float
    market_value: float
    unrealized_gain: float = 0.0
    company_name: Optional[str] = None


@dataclass(frozen=True)
class LedgerInputs:
    """Source records for one explicit account scope, as fetched by the storage layer."""

    snapshots: list[ValuationSnapshot] = field(default_factory=list)
    transfers: list[ShareTransfer] = field(default_factory=list)
    manual_flows: list[ManualFlowRecord] = field(default_factory=list)
    dividends: list[DividendRecord] = field(default_factory=list)
    trades: list[TradeRecord] = field(default_factory=list)
