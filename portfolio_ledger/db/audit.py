from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from portfolio_ledger.db.models import AuditLog, ManualCashFlow, ShareTransferRow
from portfolio_ledger.utils.time import utcnow


def row_snapshot(row: ManualCashFlow | ShareTransferRow) -> dict[str, Any]:
    """JSON-safe copy of an audited row's columns."""
    out: dict[str, Any] = {}
    for col in row.__table__.columns:
        v = getattr(row, col.name)
        out[col.name] = v.isoformat() if hasattr(v, "isoformat") else v
    return out


def log_change(
    session: Session,
    *,
    actor: str,
    action: str,
    row: ManualCashFlow | ShareTransferRow,
    old: Optional[dict[str, Any]] = None,
    new: Optional[dict[str, Any]] = None,
    note: Optional[str] = None,
) -> AuditLog:
    entry = AuditLog(
        at=utcnow(),
        actor=actor,
        action=action,
        entity=type(row).__name__,
        entity_id=str(row.id) if row.id is not None else None,
        old_json=old,
        new_json=new,
        note=note,
    )
    session.add(entry)
    return entry
