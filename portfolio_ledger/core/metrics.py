from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, Optional

from portfolio_ledger.core.performance import (
    IRR_MAX_ITERATIONS,
    IRR_TOLERANCE,
    calculate_alpha,
    calculate_beta,
    calculate_cagr,
    calculate_correlation,
    calculate_downside_deviation,
    calculate_information_ratio,
    calculate_irr,
    calculate_max_drawdown,
    calculate_r_squared,
    calculate_sharpe_ratio,
    calculate_sortino_ratio,
    calculate_standard_deviation,
    calculate_tracking_error,
    calculate_treynor_ratio,
)
from portfolio_ledger.core.records import CashFlowEvent
from portfolio_ledger.core.types import PerformanceMetrics
from portfolio_ledger.utils.time import years_between

logger = logging.getLogger(__name__)

# Portfolio perspective: money entering the account is positive.
_INFLOWS = {"deposit", "transfer_in"}
_OUTFLOWS = {"withdrawal", "transfer_out"}


def _added_between(openings: list[tuple[dt.date, float]], start: dt.date, end: dt.date) -> float:
    return sum(float(v) for d, v in openings if start < d <= end)


def period_returns_from_values(
    values: list[tuple[dt.date, float]],
    openings: Optional[list[tuple[dt.date, float]]] = None,
) -> list[float]:
    """
    Percent return of each consecutive pair; pairs starting at a non-positive value are skipped.

    Opening values of accounts that join within a pair are taken out of its end value, so each
    sub-period only measures the accounts present at both ends.
    """
    pts = sorted(values, key=lambda x: x[0])
    joined = list(openings or [])
    out: list[float] = []
    for (d0, v0), (d1, v1) in zip(pts, pts[1:]):
        if float(v0) <= 0:
            continue
        end_value = float(v1) - _added_between(joined, d0, d1)
        out.append((end_value / float(v0) - 1.0) * 100.0)
    return out


def irr_cash_flows(
    flows: Iterable[CashFlowEvent],
    *,
    initial: Optional[tuple[dt.date, float]] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    openings: Iterable[tuple[dt.date, float]] = (),
) -> list[tuple[dt.date, float]]:
    """
    Signed (date, amount) pairs for IRR.

    `initial` (first valuation) is an inflow at its date. Deposits and incoming transfers are
    positive, withdrawals and outgoing transfers negative. Dividends, interest, fees and taxes stay
    inside the portfolio and are not external flows. Flows on or before `start` are already part of
    the initial value and are dropped, as are flows after `end`. `openings` (accounts that start
    reporting later) are inflows at their dates within the same window.
    """
    out: list[tuple[dt.date, float]] = []
    if initial is not None:
        out.append((initial[0], float(initial[1])))
    for f in flows:
        if start is not None and f.flow_date <= start:
            continue
        if end is not None and f.flow_date > end:
            continue
        if f.category in _INFLOWS:
            out.append((f.flow_date, float(f.amount)))
        elif f.category in _OUTFLOWS:
            out.append((f.flow_date, -float(f.amount)))
    for d, v in openings:
        if start is not None and d <= start:
            continue
        if end is not None and d > end:
            continue
        out.append((d, float(v)))
    out.sort(key=lambda x: x[0])
    return out


def _chain(returns: list[float]) -> float:
    g = 1.0
    for r in returns:
        g *= 1.0 + r / 100.0
    return (g - 1.0) * 100.0


def build_performance_metrics(
    flows: Iterable[CashFlowEvent],
    valuations: list[tuple[dt.date, float]],
    *,
    openings: Optional[list[tuple[dt.date, float]]] = None,
    benchmark_returns: Optional[list[float]] = None,
    risk_free_rate: float = 5.0,
    as_of: Optional[dt.date] = None,
    irr_max_iterations: int = IRR_MAX_ITERATIONS,
    irr_tolerance: float = IRR_TOLERANCE,
) -> PerformanceMetrics:
    """
    Assemble the metrics bundle for one valuation series and its ledger flows.

    `valuations` is the account (or combined) market value over time. For a combined series,
    `openings` lists each account's first valuation; those that fall after the first point are
    treated as capital added rather than growth. `benchmark_returns`, when given, must line up
    one-to-one with the portfolio's period returns; a series of another length is ignored with a
    warning. All percentages are pre-multiplied by 100 and `risk_free_rate` is an
    annual percent. The ratios compare the annualized TWR (TWR / years) with the risk-free rate.
    """
    warnings: list[str] = []
    pts = sorted(((d, float(v)) for d, v in valuations if d is not None), key=lambda x: x[0])
    flow_list = list(flows)
    joined = sorted(openings or [], key=lambda x: x[0])

    if len(pts) < 2:
        warnings.append("Fewer than 2 valuation points; return metrics are zero.")
    first = pts[0] if pts else None
    last = pts[-1] if pts else None

    irr = 0.0
    if first is not None and last is not None and len(pts) >= 2:
        end = as_of or last[0]
        cfs = irr_cash_flows(flow_list, initial=first, start=first[0], end=end, openings=joined)
        irr = calculate_irr(
            cfs,
            last[1],
            as_of=end,
            max_iterations=irr_max_iterations,
            tolerance=irr_tolerance,
        )

    rets = period_returns_from_values(pts, joined)
    twr = _chain(rets)
    years = years_between(first[0], last[0]) if first and last else 0.0
    end_value = last[1] - _added_between(joined, first[0], last[0]) if first and last else 0.0
    cagr = calculate_cagr(first[1], end_value, years) if first and last else 0.0
    total_return = 0.0
    if first is not None and last is not None and first[1] > 0:
        total_return = (end_value - first[1]) / first[1] * 100.0
    annualized = twr / years if years > 0 else 0.0

    std_dev = calculate_standard_deviation(rets)
    downside = calculate_downside_deviation(rets)
    drawdown = calculate_max_drawdown(pts)

    bench = list(benchmark_returns or [])
    if bench and len(bench) != len(rets):
        warnings.append(
            f"Benchmark has {len(bench)} period returns but the portfolio has {len(rets)}; benchmark ignored."
        )
        bench = []
    paired_p = rets if bench else []
    beta = calculate_beta(paired_p, bench)
    correlation = calculate_correlation(paired_p, bench)
    tracking_error = calculate_tracking_error(paired_p, bench)
    bench_total = _chain(bench) if bench else 0.0

    rf_period = risk_free_rate * years
    metrics = PerformanceMetrics(
        irr=irr,
        twr=twr,
        cagr=cagr,
        total_return=total_return,
        annualized_return=annualized,
        std_dev=std_dev,
        downside_dev=downside,
        sharpe=calculate_sharpe_ratio(annualized, risk_free_rate, std_dev),
        sortino=calculate_sortino_ratio(annualized, risk_free_rate, downside),
        max_drawdown=drawdown.max_drawdown,
        max_drawdown_peak_date=drawdown.peak_date.isoformat() if drawdown.peak_date else None,
        max_drawdown_date=drawdown.trough_date.isoformat() if drawdown.trough_date else None,
        beta=beta,
        alpha=calculate_alpha(twr, bench_total, rf_period, beta),
        treynor=calculate_treynor_ratio(annualized, risk_free_rate, beta),
        tracking_error=tracking_error,
        info_ratio=calculate_information_ratio(twr, bench_total, tracking_error),
        correlation=correlation,
        r_squared=calculate_r_squared(correlation),
        period_returns=rets,
        warnings=warnings,
    )
    logger.debug("metrics: %d valuation point(s), %d flow(s), irr=%.4f twr=%.4f", len(pts), len(flow_list), irr, twr)
    return metrics
