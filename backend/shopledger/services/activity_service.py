# Overview: Append-only activity log written alongside ledger mutations.

from __future__ import annotations

from ..extensions import db
from ..models import ActivityLog

"""
Activity log invariants

- Append-only; rows are never updated or deleted.
- Written inside the same DB transaction as the operation it records, so a
  rolled back sale leaves no activity behind.
- No business logic here.
"""


def append_activity(
    *,
    shop_id: int,
    action: str,
    staff_id: int | None = None,
    details: dict | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        shop_id=shop_id,
        staff_id=staff_id,
        action=action,
        details=details or {},
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_activity(shop_id: int, *, action: str | None = None, limit: int = 100) -> list[ActivityLog]:
    query = db.session.query(ActivityLog).filter(ActivityLog.shop_id == shop_id)
    if action:
        query = query.filter(ActivityLog.action == action)
    return query.order_by(ActivityLog.id.desc()).limit(limit).all()
