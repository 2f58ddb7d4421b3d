from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./data/portfolio_ledger.db"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


_ENGINE: Engine | None = None


def get_engine() -> Engine:
    global _ENGINE
    if _ENGINE is not None:
        return _ENGINE
    url = get_database_url()
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    _ENGINE = create_engine(url, future=True, connect_args=connect_args)
    return _ENGINE


def get_session() -> Session:
    return sessionmaker(bind=get_engine(), class_=Session, autoflush=False, autocommit=False)()


def init_db() -> None:
    from portfolio_ledger.db.models import Base

    Base.metadata.create_all(bind=get_engine())
