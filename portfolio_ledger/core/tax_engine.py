from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional

from portfolio_ledger.core.records import (
    CapitalGain,
    CostBasisMethod,
    DividendRecord,
    SaleTransaction,
    TaxLot,
    TradeRecord,
)
from portfolio_ledger.core.tax_lots import LotBook
from portfolio_ledger.core.types import DividendTaxSummary, TaxSummary
from portfolio_ledger.settings import TaxRates


def calculate_dividend_tax(dividends: Iterable[DividendRecord], *, rates: Optional[TaxRates] = None) -> DividendTaxSummary:
    rates = rates or TaxRates()
    divs = list(dividends)
    gross = sum(float(d.amount) for d in divs)
    withheld = sum(float(d.tax_withheld or 0.0) for d in divs)
    qualified = sum(float(d.amount) for d in divs if d.is_qualified)
    ordinary = sum(float(d.amount) for d in divs if not d.is_qualified)

    taxable = max(0.0, gross - rates.tax_free_dividend_limit)
    total_due = taxable * rates.dividend_tax
    return DividendTaxSummary(
        total_gross=gross,
        total_tax_withheld=withheld,
        total_net=gross - withheld,
        qualified=qualified,
        ordinary=ordinary,
        total_tax_due=total_due,
        additional_tax_due=max(0.0, total_due - withheld),
    )


def generate_tax_summary(
    gains: Iterable[CapitalGain],
    dividends: Iterable[DividendRecord],
    fiscal_year: str,
    *,
    rates: Optional[TaxRates] = None,
    unmatched_quantity: float = 0.0,
    warnings: Optional[list[str]] = None,
) -> TaxSummary:
    """
    Fiscal-year summary: gains and losses split short/long term, dividend income, and the
    estimated liability (capital gains tax on each gain plus dividend tax not already withheld).
    """
    gs = list(gains)
    st_gains = sum(g.gain for g in gs if not g.is_long_term and g.gain > 0)
    lt_gains = sum(g.gain for g in gs if g.is_long_term and g.gain > 0)
    st_losses = abs(sum(g.gain for g in gs if not g.is_long_term and g.gain < 0))
    lt_losses = abs(sum(g.gain for g in gs if g.is_long_term and g.gain < 0))

    div = calculate_dividend_tax(dividends, rates=rates)
    cg_tax = sum(g.tax_amount for g in gs)

    return TaxSummary(
        fiscal_year=fiscal_year,
        short_term_gains=st_gains,
        long_term_gains=lt_gains,
        total_gains=st_gains + lt_gains,
        short_term_losses=st_losses,
        long_term_losses=lt_losses,
        total_losses=st_losses + lt_losses,
        net_gain=st_gains + lt_gains - st_losses - lt_losses,
        qualified_dividends=div.qualified,
        ordinary_dividends=div.ordinary,
        total_dividends=div.total_gross,
        dividend_tax_withheld=div.total_tax_withheld,
        estimated_tax_liability=cg_tax + div.additional_tax_due,
        unmatched_quantity=unmatched_quantity,
        warnings=list(warnings or []),
    )


def fiscal_year_bounds(year: int, start_month: int = 7) -> tuple[dt.date, dt.date, str]:
    """(first day, last day, label) of the fiscal year starting in `year`."""
    start = dt.date(int(year), int(start_month), 1)
    if start_month == 1:
        return start, dt.date(int(year), 12, 31), str(year)
    end = dt.date(int(year) + 1, int(start_month), 1) - dt.timedelta(days=1)
    return start, end, f"{year}-{int(year) + 1}"


def lots_from_trades(trades: Iterable[TradeRecord]) -> list[TaxLot]:
    """One lot per buy; cost basis includes commission and fees."""
    lots: list[TaxLot] = []
    for t in trades:
        if (t.transaction_type or "").strip().lower() != "buy":
            continue
        qty = float(t.quantity or 0.0)
        if qty <= 0:
            continue
        lots.append(
            TaxLot(
                id=t.id,
                symbol=t.symbol,
                quantity=qty,
                purchase_date=t.transaction_date,
                purchase_price=float(t.price),
                cost_basis=qty * float(t.price) + t.total_fees,
            )
        )
    return lots


def sales_from_trades(trades: Iterable[TradeRecord]) -> list[SaleTransaction]:
    sales: list[SaleTransaction] = []
    for t in trades:
        if (t.transaction_type or "").strip().lower() != "sell":
            continue
        qty = float(t.quantity or 0.0)
        if qty <= 0:
            continue
        proceeds = float(t.total_amount) if t.total_amount else None
        sales.append(
            SaleTransaction(
                symbol=t.symbol,
                quantity=qty,
                sale_date=t.transaction_date,
                sale_price=float(t.price),
                proceeds=proceeds,
            )
        )
    return sales


def fiscal_year_tax_summary(
    *,
    lots: Iterable[TaxLot],
    sales: Iterable[SaleTransaction],
    dividends: Iterable[DividendRecord],
    year: int,
    method: CostBasisMethod = "FIFO",
    start_month: int = 7,
    rates: Optional[TaxRates] = None,
) -> TaxSummary:
    """
    Realize every sale up to the end of the fiscal year in date order, so earlier sales deplete
    lots first, then summarize the gains and dividends that fall inside the year.
    """
    start, end, label = fiscal_year_bounds(year, start_month)
    book = LotBook(lots)
    gains: list[CapitalGain] = []
    warnings: list[str] = []
    unmatched = 0.0
    for sale in sorted(sales, key=lambda s: s.sale_date):
        if sale.sale_date > end:
            break
        m = book.realize(sale, method, rates=rates)
        if sale.sale_date < start:
            continue
        gains.extend(m.gains)
        warnings.extend(m.warnings)
        unmatched += m.unmatched_quantity

    in_year = [d for d in dividends if start <= d.dividend_date <= end]
    return generate_tax_summary(
        gains,
        in_year,
        label,
        rates=rates,
        unmatched_quantity=unmatched,
        warnings=warnings,
    )
