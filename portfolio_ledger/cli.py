from __future__ import annotations

import csv
import datetime as dt
import io
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

app = typer.Typer(help="Portfolio cash-flow ledger, performance and tax reports")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _date_opt(value: Optional[str], name: str) -> Optional[dt.date]:
    if value is None:
        return None
    from portfolio_ledger.utils.time import parse_date

    d = parse_date(value)
    if d is None:
        typer.echo(f"Invalid {name}: {value!r}", err=True)
        raise typer.Exit(code=2)
    return d


def _settings():
    from portfolio_ledger.settings import load_settings

    settings, err = load_settings()
    if err:
        typer.echo(f"Warning: {err}; using defaults.", err=True)
    return settings


def _scope(accounts: Optional[list[str]]) -> Optional[list[str]]:
    return list(accounts) if accounts else None


@app.command("init-db")
def init_db_cmd():
    from portfolio_ledger.db.session import get_database_url, init_db

    init_db()
    typer.echo(f"Initialized {get_database_url()}")


@app.command("ledger")
def ledger_cmd(
    account: Optional[list[str]] = typer.Option(None, "--account", "-a", help="Account id (repeatable); default all"),
    start: Optional[str] = typer.Option(None, help="First flow date (inclusive)"),
    end: Optional[str] = typer.Option(None, help="Last flow date (inclusive)"),
    fmt: str = typer.Option("csv", "--format", help="csv|json"),
    out: Optional[Path] = typer.Option(None, help="Write to a file instead of stdout"),
):
    from portfolio_ledger.core.flows import combined_ledger, net_cash_flows
    from portfolio_ledger.core.reports import LEDGER_COLUMNS, ledger_rows
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import load_ledger_inputs

    if fmt not in {"csv", "json"}:
        typer.echo(f"Unknown format {fmt!r}; expected csv or json", err=True)
        raise typer.Exit(code=2)
    start_d = _date_opt(start, "start")
    end_d = _date_opt(end, "end")
    settings = _settings()
    scope = _scope(account)

    with get_session() as session:
        inputs = load_ledger_inputs(session, account_ids=scope)
    ledger = combined_ledger(
        inputs,
        start=start_d,
        end=end_d,
        account_ids=scope,
        tolerance=settings.implied_flow_tolerance,
    )
    rows = ledger_rows(ledger)

    if fmt == "json":
        text = json.dumps(
            {"flows": rows, "summary": net_cash_flows(ledger.flows).model_dump()},
            indent=2,
            default=str,
        )
    else:
        buf = io.StringIO()
        w = csv.DictWriter(buf, fieldnames=LEDGER_COLUMNS)
        w.writeheader()
        for r in rows:
            w.writerow(r)
        text = buf.getvalue()

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text)
        typer.echo(f"Wrote {len(rows)} flow(s) to {out}")
    else:
        typer.echo(text)


@app.command("metrics")
def metrics_cmd(
    account: Optional[list[str]] = typer.Option(None, "--account", "-a", help="Account id (repeatable); default all"),
    start: Optional[str] = typer.Option(None, help="First valuation date (inclusive)"),
    end: Optional[str] = typer.Option(None, help="Last valuation date (inclusive)"),
    benchmark_json: Optional[Path] = typer.Option(
        None, exists=True, dir_okay=False, help="JSON list of benchmark period returns (percent)"
    ),
):
    from portfolio_ledger.core.flows import combined_ledger
    from portfolio_ledger.core.metrics import build_performance_metrics
    from portfolio_ledger.core.snapshots import account_openings, valuation_series
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import load_ledger_inputs

    start_d = _date_opt(start, "start")
    end_d = _date_opt(end, "end")
    settings = _settings()
    scope = _scope(account)

    benchmark: Optional[list[float]] = None
    if benchmark_json is not None:
        try:
            benchmark = [float(x) for x in json.loads(benchmark_json.read_text())]
        except (ValueError, TypeError) as e:
            typer.echo(f"Invalid benchmark file {benchmark_json}: {e}", err=True)
            raise typer.Exit(code=2)

    with get_session() as session:
        inputs = load_ledger_inputs(session, account_ids=scope)
    ledger = combined_ledger(
        inputs,
        start=start_d,
        end=end_d,
        account_ids=scope,
        tolerance=settings.implied_flow_tolerance,
    )
    series = [
        (d, v)
        for d, v in valuation_series(inputs.snapshots)
        if (start_d is None or d >= start_d) and (end_d is None or d <= end_d)
    ]
    metrics = build_performance_metrics(
        ledger.flows,
        series,
        openings=account_openings(inputs.snapshots),
        benchmark_returns=benchmark,
        risk_free_rate=settings.risk_free_rate,
        irr_max_iterations=settings.irr_max_iterations,
        irr_tolerance=settings.irr_tolerance,
    )
    typer.echo(metrics.model_dump_json(indent=2))


@app.command("tax-report")
def tax_report_cmd(
    year: int = typer.Option(..., help="Calendar year the fiscal year starts in"),
    account: Optional[list[str]] = typer.Option(None, "--account", "-a", help="Account id (repeatable); default all"),
    method: Optional[str] = typer.Option(None, help="FIFO|LIFO|HIFO|AVERAGE (default from settings)"),
    as_json: bool = typer.Option(False, "--json", help="Emit the summary as JSON"),
):
    from portfolio_ledger.core.records import COST_BASIS_METHODS
    from portfolio_ledger.core.reports import format_tax_report
    from portfolio_ledger.core.tax_engine import fiscal_year_tax_summary, lots_from_trades, sales_from_trades
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import load_dividends, load_trades

    settings = _settings()
    m = (method or settings.default_cost_basis_method).upper()
    if m not in COST_BASIS_METHODS:
        typer.echo(f"Unknown cost basis method {method!r}", err=True)
        raise typer.Exit(code=2)
    scope = _scope(account)

    with get_session() as session:
        trades = load_trades(session, account_ids=scope)
        dividends = load_dividends(session, account_ids=scope)
    summary = fiscal_year_tax_summary(
        lots=lots_from_trades(trades),
        sales=sales_from_trades(trades),
        dividends=dividends,
        year=year,
        method=m,
        start_month=settings.fiscal_year_start_month,
        rates=settings.tax_rates,
    )
    if as_json:
        typer.echo(summary.model_dump_json(indent=2))
    else:
        typer.echo(format_tax_report(summary))


@app.command("add-flow")
def add_flow_cmd(
    account: str = typer.Option(..., "--account", "-a"),
    flow_date: str = typer.Option(..., "--date"),
    category: str = typer.Option(..., help="deposit|withdrawal|dividend|interest|fee|tax|transfer_in|transfer_out"),
    amount: float = typer.Option(..., help="Positive magnitude; direction comes from the category"),
    description: str = typer.Option(""),
    actor: str = typer.Option("cli", help="Audit actor"),
):
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import create_manual_flow
    from portfolio_ledger.exceptions import InvalidFlowError

    d = _date_opt(flow_date, "date")
    with get_session() as session:
        try:
            rec = create_manual_flow(
                session,
                account_id=account,
                flow_date=d,
                category=category,
                amount=amount,
                description=description,
                actor=actor,
            )
        except InvalidFlowError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)
        session.commit()
    typer.echo(f"Created manual flow id={rec.id}")


@app.command("delete-flow")
def delete_flow_cmd(
    flow_id: str = typer.Argument(..., help="Manual flow id"),
    actor: str = typer.Option("cli", help="Audit actor"),
):
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import delete_manual_flow
    from portfolio_ledger.exceptions import ManualFlowNotFound

    with get_session() as session:
        try:
            delete_manual_flow(session, flow_id, actor=actor)
        except ManualFlowNotFound as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)
        session.commit()
    typer.echo(f"Deleted manual flow id={flow_id}")


@app.command("add-transfer")
def add_transfer_cmd(
    symbol: str = typer.Option(...),
    quantity: float = typer.Option(...),
    transfer_date: str = typer.Option(..., "--date"),
    from_account: Optional[str] = typer.Option(None, help="Source account id; omit for external"),
    to_account: Optional[str] = typer.Option(None, help="Destination account id; omit for external"),
    cost_basis: float = typer.Option(0.0),
    market_value: float = typer.Option(0.0),
    actor: str = typer.Option("cli", help="Audit actor"),
):
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import create_share_transfer

    d = _date_opt(transfer_date, "date")
    with get_session() as session:
        try:
            t = create_share_transfer(
                session,
                from_account_id=from_account,
                to_account_id=to_account,
                symbol=symbol,
                quantity=quantity,
                cost_basis=cost_basis,
                market_value=market_value,
                transfer_date=d,
                actor=actor,
            )
        except ValueError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)
        session.commit()
    typer.echo(f"Created share transfer id={t.id}")


@app.command("holdings")
def holdings_cmd(
    account: Optional[list[str]] = typer.Option(None, "--account", "-a", help="Account id (repeatable); default all"),
    aggregate: bool = typer.Option(False, help="Collapse the same symbol across accounts"),
):
    from dataclasses import asdict

    from portfolio_ledger.core.snapshots import HoldingsView, holdings_view, latest_snapshots
    from portfolio_ledger.db.session import get_session
    from portfolio_ledger.db.store import load_holdings, load_snapshots

    with get_session() as session:
        snaps = load_snapshots(session, account_ids=_scope(account))
        latest_ids = [s.id for s in latest_snapshots(snaps).values()]
        holdings = load_holdings(session, snapshot_ids=latest_ids)
    mode = HoldingsView.AGGREGATED if aggregate else HoldingsView.DETAILED
    rows = holdings_view(snaps, holdings, mode=mode)
    typer.echo(json.dumps([asdict(r) for r in rows], indent=2, default=str))


if __name__ == "__main__":
    app()
