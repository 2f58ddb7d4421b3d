from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_ledger.core.records import ValuationSnapshot
from portfolio_ledger.db.models import Base
from portfolio_ledger.utils.time import UTC


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)
    with SessionLocal() as s:
        yield s


@pytest.fixture()
def make_snapshot():
    return _snapshot


def _snapshot(
    id: str,
    account_id: str,
    as_of: dt.date | None,
    mv: float,
    cb: float,
    created: dt.datetime | None = None,
) -> ValuationSnapshot:
    return ValuationSnapshot(
        id=id,
        account_id=account_id,
        as_of_date=as_of,
        total_market_value=mv,
        total_cost_basis=cb,
        total_unrealized_gain=mv - cb,
        created_at=created or dt.datetime(2024, 1, 1, tzinfo=UTC),
    )
