from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class NetCashFlows(BaseModel):
    deposits: float = 0.0
    withdrawals: float = 0.0
    income: float = 0.0
    expenses: float = 0.0
    net_flow: float = 0.0


class PerformanceMetrics(BaseModel):
    irr: float
    twr: float
    cagr: float
    total_return: float
    annualized_return: float
    std_dev: float
    downside_dev: float
    sharpe: float
    sortino: float
    max_drawdown: float
    max_drawdown_peak_date: Optional[str] = None
    max_drawdown_date: Optional[str] = None
    beta: float
    alpha: float
    treynor: float
    tracking_error: float
    info_ratio: float
    correlation: float
    r_squared: float
    period_returns: list[float] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class DividendTaxSummary(BaseModel):
    total_gross: float
    total_tax_withheld: float
    total_net: float
    qualified: float
    ordinary: float
    total_tax_due: float
    additional_tax_due: float


class TaxSummary(BaseModel):
    fiscal_year: str
    short_term_gains: float
    long_term_gains: float
    total_gains: float
    short_term_losses: float
    long_term_losses: float
    total_losses: float
    net_gain: float
    qualified_dividends: float
    ordinary_dividends: float
    total_dividends: float
    dividend_tax_withheld: float
    estimated_tax_liability: float
    unmatched_quantity: float = 0.0
    warnings: list[str] = Field(default_factory=list)
