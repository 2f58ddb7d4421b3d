from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from portfolio_ledger.core.flows import Ledger
from portfolio_ledger.core.types import TaxSummary
from portfolio_ledger.utils.time import utctoday

LEDGER_COLUMNS = ["date", "account_id", "category", "provenance", "amount", "description", "id"]

_RULE = "=" * 63
_SUBRULE = "-" * 63


def _amt(v: float) -> str:
    return f"{float(v):,.2f}"


def _line(label: str, value: float) -> str:
    return f"{label:<32}{_amt(value):>16}"


def format_tax_report(summary: TaxSummary, *, generated: Optional[dt.date] = None) -> str:
    """Plain-text fiscal-year tax report."""
    day = generated or utctoday()
    parts = [
        "INVESTMENT INCOME TAX SUMMARY",
        f"Fiscal Year: {summary.fiscal_year}",
        f"Generated: {day.isoformat()}",
        "",
        _RULE,
        "",
        "CAPITAL GAINS & LOSSES",
        _SUBRULE,
        _line("Short-Term Gains (<=1 year):", summary.short_term_gains),
        _line("Long-Term Gains (>1 year):", summary.long_term_gains),
        _line("Total Capital Gains:", summary.total_gains),
        "",
        _line("Short-Term Losses:", summary.short_term_losses),
        _line("Long-Term Losses:", summary.long_term_losses),
        _line("Total Capital Losses:", summary.total_losses),
        "",
        _line("NET CAPITAL GAIN/(LOSS):", summary.net_gain),
        "",
        _RULE,
        "",
        "DIVIDEND INCOME",
        _SUBRULE,
        _line("Qualified Dividends:", summary.qualified_dividends),
        _line("Ordinary Dividends:", summary.ordinary_dividends),
        _line("Total Dividends:", summary.total_dividends),
        _line("Tax Withheld:", summary.dividend_tax_withheld),
        "",
        _RULE,
        "",
        "TAX LIABILITY ESTIMATE",
        _SUBRULE,
        _line("Estimated Total Tax:", summary.estimated_tax_liability),
        "",
    ]
    if summary.warnings:
        parts.append("WARNINGS")
        parts.append(_SUBRULE)
        parts.extend(f"- {w}" for w in summary.warnings)
        parts.append("")
    parts.extend(
        [
            _RULE,
            "",
            "Note: This is an estimate for informational purposes only.",
            "Consult a tax professional for accurate tax filing.",
        ]
    )
    return "\n".join(parts)


def ledger_rows(ledger: Ledger) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for f in ledger.flows:
        rows.append(
            {
                "date": f.flow_date.isoformat(),
                "account_id": f.account_id,
                "category": f.category,
                "provenance": f.provenance,
                "amount": round(float(f.amount), 2),
                "description": f.description,
                "id": f.id,
            }
        )
    return rows
