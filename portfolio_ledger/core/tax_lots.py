from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from portfolio_ledger.core.records import COST_BASIS_METHODS, CapitalGain, CostBasisMethod, SaleTransaction, TaxLot
from portfolio_ledger.settings import TaxRates

logger = logging.getLogger(__name__)

LONG_TERM_DAYS = 365
_EPS = 1e-12


def holding_period_days(purchase_date: dt.date, sale_date: dt.date) -> int:
    return (sale_date - purchase_date).days


def is_long_term(purchase_date: dt.date, sale_date: dt.date) -> bool:
    return holding_period_days(purchase_date, sale_date) > LONG_TERM_DAYS


@dataclass(frozen=True)
class SaleMatch:
    gains: list[CapitalGain]
    matched_quantity: float
    unmatched_quantity: float
    warnings: list[str] = field(default_factory=list)
    # (lot, quantity) consumed from each source lot; used by LotBook to deplete lots.
    allocations: list[tuple[TaxLot, float]] = field(default_factory=list, repr=False, compare=False)


def _tax_rate(sale: SaleTransaction, rates: TaxRates, override: Optional[float]) -> float:
    if override is not None:
        return float(override)
    return rates.capital_gains_listed if sale.listed else rates.capital_gains_unlisted


def _ordered(lots: list[TaxLot], method: str) -> list[TaxLot]:
    if method == "FIFO":
        return sorted(lots, key=lambda l: l.purchase_date)
    if method == "LIFO":
        return sorted(lots, key=lambda l: l.purchase_date, reverse=True)
    if method == "HIFO":
        return sorted(lots, key=lambda l: l.purchase_price, reverse=True)
    raise ValueError(f"unsupported lot order: {method}")


def _gain(
    *,
    sale: SaleTransaction,
    qty: float,
    unit_cost: float,
    purchase_date: dt.date,
    unit_proceeds: float,
    rate: float,
    lot_id: str,
) -> CapitalGain:
    cost = qty * unit_cost
    proceeds = qty * unit_proceeds
    gain = proceeds - cost
    days = holding_period_days(purchase_date, sale.sale_date)
    return CapitalGain(
        symbol=sale.symbol,
        quantity=qty,
        purchase_date=purchase_date,
        sale_date=sale.sale_date,
        cost_basis=cost,
        proceeds=proceeds,
        gain=gain,
        holding_period_days=days,
        is_long_term=is_long_term(purchase_date, sale.sale_date),
        tax_rate=rate,
        tax_amount=max(0.0, gain * rate),
        lot_id=lot_id,
    )


def match_sale(
    lots: Iterable[TaxLot],
    sale: SaleTransaction,
    method: CostBasisMethod = "FIFO",
    *,
    rates: Optional[TaxRates] = None,
    tax_rate: Optional[float] = None,
) -> SaleMatch:
    """
    Match a sale against open lots of the same symbol without modifying the lots.

    FIFO/LIFO consume by purchase date, HIFO by highest purchase price. AVERAGE treats all open
    lots as one lot priced at total cost basis / total quantity and dated at the earliest
    purchase. Proceeds are allocated per unit sold. When the lots run out, the remaining quantity
    is reported as `unmatched_quantity`; no basis is invented for it.
    """
    method_u = str(method or "").upper()
    if method_u not in COST_BASIS_METHODS:
        raise ValueError(f"unknown cost basis method: {method!r}")
    if float(sale.quantity) <= 0:
        raise ValueError(f"sale quantity must be positive, got {sale.quantity}")

    rates = rates or TaxRates()
    rate = _tax_rate(sale, rates, tax_rate)
    unit_proceeds = sale.total_proceeds / float(sale.quantity)
    open_lots = [l for l in lots if l.symbol == sale.symbol and float(l.quantity) > 0]

    gains: list[CapitalGain] = []
    allocations: list[tuple[TaxLot, float]] = []
    remaining = float(sale.quantity)

    if method_u == "AVERAGE":
        total_qty = sum(float(l.quantity) for l in open_lots)
        if total_qty > 0:
            avg_cost = sum(float(l.cost_basis) for l in open_lots) / total_qty
            earliest = min(l.purchase_date for l in open_lots)
            take = min(remaining, total_qty)
            gains.append(
                _gain(
                    sale=sale,
                    qty=take,
                    unit_cost=avg_cost,
                    purchase_date=earliest,
                    unit_proceeds=unit_proceeds,
                    rate=rate,
                    lot_id="average",
                )
            )
            # Pro-rata depletion keeps the average cost of what is left unchanged.
            allocations = [(l, take * float(l.quantity) / total_qty) for l in open_lots]
            remaining -= take
    else:
        for lot in _ordered(open_lots, method_u):
            if remaining <= _EPS:
                break
            take = min(float(lot.quantity), remaining)
            gains.append(
                _gain(
                    sale=sale,
                    qty=take,
                    unit_cost=float(lot.purchase_price),
                    purchase_date=lot.purchase_date,
                    unit_proceeds=unit_proceeds,
                    rate=rate,
                    lot_id=lot.id,
                )
            )
            allocations.append((lot, take))
            remaining -= take

    unmatched = remaining if remaining > _EPS else 0.0
    warnings: list[str] = []
    if unmatched > 0:
        warnings.append(
            f"{sale.symbol}: sale on {sale.sale_date.isoformat()} exceeds available lots by "
            f"{unmatched:.6g} units (basis unknown, not matched)."
        )
    return SaleMatch(
        gains=gains,
        matched_quantity=float(sale.quantity) - unmatched,
        unmatched_quantity=unmatched,
        warnings=warnings,
        allocations=allocations,
    )


def calculate_capital_gains(
    lots: Iterable[TaxLot],
    sale: SaleTransaction,
    method: CostBasisMethod = "FIFO",
    *,
    rates: Optional[TaxRates] = None,
    tax_rate: Optional[float] = None,
) -> list[CapitalGain]:
    m = match_sale(lots, sale, method, rates=rates, tax_rate=tax_rate)
    for w in m.warnings:
        logger.warning(w)
    return m.gains


class LotBook:
    """
    Working copy of open lots that is depleted as sales are realized in order.

    The caller's lots are copied on construction and never modified.
    """

    def __init__(self, lots: Iterable[TaxLot]):
        self.lots: list[TaxLot] = [replace(l) for l in lots]

    def open_lots(self, symbol: Optional[str] = None) -> list[TaxLot]:
        return [l for l in self.lots if l.quantity > 0 and (symbol is None or l.symbol == symbol)]

    def realize(
        self,
        sale: SaleTransaction,
        method: CostBasisMethod = "FIFO",
        *,
        rates: Optional[TaxRates] = None,
        tax_rate: Optional[float] = None,
    ) -> SaleMatch:
        # Lots bought after the sale date cannot cover it.
        eligible = [l for l in self.lots if l.purchase_date <= sale.sale_date]
        m = match_sale(eligible, sale, method, rates=rates, tax_rate=tax_rate)
        for lot, qty in m.allocations:
            lot.consume(qty)
        for w in m.warnings:
            logger.warning(w)
        return m
