from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Optional

from portfolio_ledger.utils.time import DAYS_PER_YEAR, utctoday

logger = logging.getLogger(__name__)

# Each function below is self-contained so it can be checked against hand-computed values.
# Return series are plain percentages (e.g. 2.5 for +2.5%) unless a docstring says otherwise.

IRR_MAX_ITERATIONS = 100
IRR_TOLERANCE = 1e-4
IRR_MIN_RATE = -0.99
IRR_MAX_RATE = 10.0


def calculate_irr(
    cashflows: list[tuple[dt.date, float]],
    final_value: float,
    *,
    as_of: Optional[dt.date] = None,
    max_iterations: int = IRR_MAX_ITERATIONS,
    tolerance: float = IRR_TOLERANCE,
) -> float:
    """
    Money-weighted return (percent) by Newton-Raphson on sum(CF / (1 + r) ** t) = 0.

    Contributions into the portfolio are positive. The ending value is appended as an outflow
    of `-final_value` at `as_of` (today by default). `t` is years since the first flow on a
    365.25-day year. The rate is clamped to [-0.99, 10] after every step and the last rate is
    returned when the iteration cap is reached.
    """
    if not cashflows:
        return 0.0
    cfs = sorted(((d, float(a)) for d, a in cashflows), key=lambda x: x[0])
    d0 = cfs[0][0]
    end = as_of or utctoday()
    flows = [((d - d0).days / DAYS_PER_YEAR, a) for d, a in cfs]
    flows.append(((end - d0).days / DAYS_PER_YEAR, -float(final_value)))

    rate = 0.1
    for i in range(int(max_iterations)):
        npv = 0.0
        derivative = 0.0
        for years, amount in flows:
            npv += amount / ((1.0 + rate) ** years)
            derivative -= years * amount / ((1.0 + rate) ** (years + 1.0))
        if abs(npv) < tolerance or derivative == 0:
            logger.debug("IRR stopped after %d iteration(s): rate=%.6f npv=%.6g", i, rate, npv)
            break
        rate = rate - npv / derivative
        rate = max(IRR_MIN_RATE, min(IRR_MAX_RATE, rate))
    else:
        logger.warning("IRR did not converge in %d iterations; returning rate=%.6f", max_iterations, rate)
    return rate * 100.0


def calculate_twr(values: list[tuple[dt.date, float]]) -> float:
    """
    Time-weighted return (percent): chain-linked sub-period returns of a valuation series.

    Sub-periods whose starting value is not positive are skipped. Fewer than 2 points -> 0.
    """
    if len(values) < 2:
        return 0.0
    pts = sorted(values, key=lambda x: x[0])
    cumulative = 1.0
    for (_d0, v0), (_d1, v1) in zip(pts, pts[1:]):
        if float(v0) <= 0:
            continue
        cumulative *= 1.0 + (float(v1) / float(v0) - 1.0)
    return (cumulative - 1.0) * 100.0


def calculate_cagr(start_value: float, end_value: float, years: float) -> float:
    if start_value <= 0 or end_value <= 0 or years <= 0:
        return 0.0
    return ((float(end_value) / float(start_value)) ** (1.0 / float(years)) - 1.0) * 100.0


def calculate_standard_deviation(returns: list[float]) -> float:
    """Sample standard deviation (n - 1)."""
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    var = sum((r - mean) ** 2 for r in returns) / (n - 1)
    return math.sqrt(var)


def calculate_downside_deviation(returns: list[float], target_return: float = 0.0) -> float:
    """Root mean square shortfall below `target_return`, divided by the full count n."""
    below = [r for r in returns if r < target_return]
    if not below:
        return 0.0
    var = sum((r - target_return) ** 2 for r in below) / len(returns)
    return math.sqrt(var)


def calculate_sharpe_ratio(portfolio_return: float, risk_free_rate: float, standard_deviation: float) -> float:
    if standard_deviation == 0:
        return 0.0
    return (portfolio_return - risk_free_rate) / standard_deviation


def calculate_sortino_ratio(portfolio_return: float, risk_free_rate: float, downside_deviation: float) -> float:
    if downside_deviation == 0:
        return 0.0
    return (portfolio_return - risk_free_rate) / downside_deviation


def calculate_treynor_ratio(portfolio_return: float, risk_free_rate: float, beta: float) -> float:
    if beta == 0:
        return 0.0
    return (portfolio_return - risk_free_rate) / beta


@dataclass(frozen=True)
class Drawdown:
    max_drawdown: float  # percent, positive number
    peak_date: dt.date | None
    trough_date: dt.date | None


def calculate_max_drawdown(values: list[tuple[dt.date, float]]) -> Drawdown:
    if len(values) < 2:
        return Drawdown(max_drawdown=0.0, peak_date=None, trough_date=None)
    pts = sorted(values, key=lambda x: x[0])
    peak = float(pts[0][1])
    peak_date: dt.date | None = pts[0][0]
    mdd = 0.0
    mdd_peak: dt.date | None = None
    trough: dt.date | None = None
    for d, v in pts:
        v = float(v)
        if v > peak:
            peak = v
            peak_date = d
        if peak <= 0:
            continue
        dd = (peak - v) / peak
        if dd > mdd:
            mdd = dd
            mdd_peak = peak_date
            trough = d
    return Drawdown(max_drawdown=mdd * 100.0, peak_date=mdd_peak, trough_date=trough)


def _check_paired(a: list[float], b: list[float], what: str) -> None:
    if len(a) != len(b):
        raise ValueError(f"{what}: return series lengths differ ({len(a)} != {len(b)})")


def calculate_beta(portfolio_returns: list[float], benchmark_returns: list[float]) -> float:
    """cov(p, b) / var(b); 1.0 when undefined (fewer than 2 points or flat benchmark)."""
    _check_paired(portfolio_returns, benchmark_returns, "beta")
    n = len(portfolio_returns)
    if n < 2:
        return 1.0
    mp = sum(portfolio_returns) / n
    mb = sum(benchmark_returns) / n
    cov = 0.0
    var_b = 0.0
    for p, b in zip(portfolio_returns, benchmark_returns):
        cov += (p - mp) * (b - mb)
        var_b += (b - mb) ** 2
    if var_b == 0:
        return 1.0
    return cov / var_b


def calculate_alpha(portfolio_return: float, benchmark_return: float, risk_free_rate: float, beta: float) -> float:
    """Jensen's alpha."""
    return portfolio_return - (risk_free_rate + beta * (benchmark_return - risk_free_rate))


def calculate_tracking_error(portfolio_returns: list[float], benchmark_returns: list[float]) -> float:
    """Sample standard deviation of per-period excess returns."""
    _check_paired(portfolio_returns, benchmark_returns, "tracking error")
    excess = [p - b for p, b in zip(portfolio_returns, benchmark_returns)]
    n = len(excess)
    if n < 2:
        return 0.0
    mean = sum(excess) / n
    return math.sqrt(sum((x - mean) ** 2 for x in excess) / (n - 1))


def calculate_information_ratio(portfolio_return: float, benchmark_return: float, tracking_error: float) -> float:
    if tracking_error == 0:
        return 0.0
    return (portfolio_return - benchmark_return) / tracking_error


def calculate_correlation(returns_a: list[float], returns_b: list[float]) -> float:
    """Pearson correlation; 0.0 when undefined."""
    _check_paired(returns_a, returns_b, "correlation")
    n = len(returns_a)
    if n < 2:
        return 0.0
    ma = sum(returns_a) / n
    mb = sum(returns_b) / n
    cov = var_a = var_b = 0.0
    for a, b in zip(returns_a, returns_b):
        cov += (a - ma) * (b - mb)
        var_a += (a - ma) ** 2
        var_b += (b - mb) ** 2
    denom = math.sqrt(var_a * var_b)
    if denom == 0:
        return 0.0
    return cov / denom


def calculate_r_squared(correlation: float) -> float:
    return correlation**2
