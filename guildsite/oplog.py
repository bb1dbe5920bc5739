"""Persistent operations log (the ``web_logs`` table)."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import sqlalchemy as sa

from .database import current_schema, insert_entity
from .models import db

logger = logging.getLogger(__name__)

STATUSES = ("success", "error", "warning", "info")


def log_operation(
    operation: str,
    status: str,
    details: str,
    user_id: Optional[int] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    *,
    duration: Optional[int] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> int:
    """Write one operations-log row and commit it. Returns the new row id."""
    if status not in STATUSES:
        raise ValueError(f"status must be one of {', '.join(STATUSES)}")
    row = {
        "operation": operation,
        "status": status,
        "details": details,
        "user_id": user_id,
        "duration": duration,
        "ip_address": ip_address,
        "user_agent": (user_agent or "")[:512] or None,
        "metadata": json.dumps(metadata, default=str) if metadata is not None else None,
    }
    try:
        log_id = insert_entity("web_logs", row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return log_id


def log_operation_quietly(*args, **kwargs) -> Optional[int]:
    """Best-effort variant for request hooks and error handlers."""
    try:
        return log_operation(*args, **kwargs)
    except Exception:
        logger.exception("Failed to log operation %r", args[0] if args else kwargs.get("operation"))
        return None


def recent_operations(
    limit: int = 100,
    operation: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    logs = current_schema().web_logs
    q = sa.select(logs).order_by(logs.c.id.desc()).limit(max(1, min(int(limit), 1000)))
    if operation:
        q = q.where(logs.c.operation == operation)
    if status:
        q = q.where(logs.c.status == status)
    out = []
    for row in db.session.execute(q).mappings():
        item = dict(row)
        ts = item.get("timestamp")
        item["timestamp"] = ts.isoformat() if hasattr(ts, "isoformat") else ts
        if item.get("metadata"):
            try:
                item["metadata"] = json.loads(item["metadata"])
            except ValueError:
                pass
        out.append(item)
    return out
