from __future__ import annotations

from portfolio_ledger.settings import EngineSettings, load_settings


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for k in ("LEDGER_RISK_FREE_RATE", "LEDGER_COST_BASIS_METHOD", "LEDGER_FISCAL_YEAR_START_MONTH"):
        monkeypatch.delenv(k, raising=False)
    settings, err = load_settings()
    assert err is None
    assert settings == EngineSettings()
    assert settings.tax_rates.tax_free_dividend_limit == 50000.0
    assert settings.fiscal_year_start_month == 7


def test_yaml_file_and_env_override(tmp_path, monkeypatch):
    p = tmp_path / "portfolio_ledger.yaml"
    p.write_text(
        "risk_free_rate: 3.5\n"
        "default_cost_basis_method: LIFO\n"
        "tax_rates:\n"
        "  dividend_tax: 0.15\n"
    )
    monkeypatch.setenv("LEDGER_COST_BASIS_METHOD", "hifo")
    monkeypatch.delenv("LEDGER_RISK_FREE_RATE", raising=False)
    monkeypatch.delenv("LEDGER_FISCAL_YEAR_START_MONTH", raising=False)
    settings, err = load_settings(p)
    assert err is None
    assert settings.risk_free_rate == 3.5
    assert settings.default_cost_basis_method == "HIFO"
    assert settings.tax_rates.dividend_tax == 0.15
    assert settings.tax_rates.capital_gains_listed == 0.10


def test_invalid_file_falls_back_to_defaults(tmp_path, monkeypatch):
    for k in ("LEDGER_RISK_FREE_RATE", "LEDGER_COST_BASIS_METHOD", "LEDGER_FISCAL_YEAR_START_MONTH"):
        monkeypatch.delenv(k, raising=False)
    p = tmp_path / "bad.yaml"
    p.write_text("fiscal_year_start_month: 13\n")
    settings, err = load_settings(p)
    assert err is not None
    assert settings == EngineSettings()


def test_unparseable_yaml_is_reported(tmp_path):
    p = tmp_path / "broken.yaml"
    p.write_text("risk_free_rate: [1, 2\n")
    settings, err = load_settings(p)
    assert err is not None and "Failed to parse" in err
    assert settings.risk_free_rate == 5.0
