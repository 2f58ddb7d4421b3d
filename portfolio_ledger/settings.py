from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from portfolio_ledger.core.records import CostBasisMethod


class TaxRates(BaseModel):
    capital_gains_listed: float = 0.10
    capital_gains_unlisted: float = 0.15
    dividend_tax: float = 0.10
    tax_free_dividend_limit: float = 50000.0


class EngineSettings(BaseModel):
    risk_free_rate: float = 5.0  # percent per year
    implied_flow_tolerance: float = 0.01
    default_cost_basis_method: CostBasisMethod = "FIFO"
    fiscal_year_start_month: int = 7
    irr_max_iterations: int = 100
    irr_tolerance: float = 1e-4
    tax_rates: TaxRates = Field(default_factory=TaxRates)

    @field_validator("fiscal_year_start_month")
    @classmethod
    def _valid_month(cls, v: int) -> int:
        if not 1 <= int(v) <= 12:
            raise ValueError("fiscal_year_start_month must be 1..12")
        return int(v)


_ENV_OVERRIDES = {
    "LEDGER_RISK_FREE_RATE": "risk_free_rate",
    "LEDGER_COST_BASIS_METHOD": "default_cost_basis_method",
    "LEDGER_FISCAL_YEAR_START_MONTH": "fiscal_year_start_month",
}


def _candidate_paths() -> list[Path]:
    paths = [Path("portfolio_ledger.yaml")]
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".portfolio_ledger" / "portfolio_ledger.yaml")
    return paths


def _apply_env(data: dict) -> dict:
    out = dict(data)
    for env_name, key in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        val = raw.strip()
        if key == "default_cost_basis_method":
            val = val.upper()
        out[key] = val
    return out


def load_settings(path: Optional[Path] = None) -> tuple[EngineSettings, Optional[str]]:
    """
    Load engine settings from YAML, then apply `LEDGER_*` environment overrides.

    Returns (settings, error). On a missing file the defaults are used; on an unreadable or
    invalid file the defaults are used and `error` describes the problem.
    """
    candidates = [Path(path)] if path is not None else _candidate_paths()
    data: dict = {}
    source: Optional[Path] = None
    for p in candidates:
        if p.exists():
            source = p
            try:
                data = yaml.safe_load(p.read_text()) or {}
            except yaml.YAMLError as e:
                return EngineSettings(), f"Failed to parse {p}: {e}"
            break
    if not isinstance(data, dict):
        return EngineSettings(), f"Expected a mapping in {source}"
    try:
        return EngineSettings.model_validate(_apply_env(data)), None
    except ValidationError as e:
        return EngineSettings(), f"Invalid settings in {source or 'environment'}: {e}"

