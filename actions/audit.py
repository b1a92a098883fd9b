from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select

from actions.helpers import clamp_int, get_date, get_str, page_out, require_auth
from models import AuditLog
from utils import AuthContext, json_loads_dict, to_iso_utc


def serialize_audit(row: AuditLog) -> dict[str, Any]:
    return {
        "logId": row.logId,
        "entityType": row.entityType or "",
        "entityId": row.entityId or "",
        "action": row.action or "",
        "fromState": row.fromState or "",
        "toState": row.toState or "",
        "remark": row.remark or "",
        "userId": row.actorUserId or "",
        "userRole": row.actorRole or "",
        "userEmail": row.actorEmail or "",
        "at": row.at or "",
        "correlationId": row.correlationId or "",
        "before": json_loads_dict(row.beforeJson) or None,
        "after": json_loads_dict(row.afterJson) or None,
        "meta": json_loads_dict(row.metaJson) or None,
    }


def audit_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=50, min_v=1, max_v=200)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)

    q = select(AuditLog).where(AuditLog.tenantId == auth.tenantId)
    filters = {"userId": AuditLog.actorUserId, "action": AuditLog.action, "entityType": AuditLog.entityType, "entityId": AuditLog.entityId}
    for key, col in filters.items():
        value = get_str(payload, key)
        if value:
            q = q.where(col == value)
    start = get_date(payload, "startDate")
    if start:
        q = q.where(AuditLog.at >= start)
    end = get_date(payload, "endDate")
    if end:
        # `at` is a full timestamp; compare against the start of the following day.
        q = q.where(AuditLog.at < (datetime.fromisoformat(end) + timedelta(days=1)).date().isoformat())

    total = int(db.execute(select(func.count()).select_from(q.subquery())).scalar_one() or 0)
    rows = db.execute(q.order_by(AuditLog.at.desc(), AuditLog.logId.desc()).offset(skip).limit(limit)).scalars().all()
    return page_out([serialize_audit(r) for r in rows], total=total, limit=limit, skip=skip)


def audit_stats(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    days = clamp_int((data or {}).get("days"), default=7, min_v=1, max_v=365)
    since = to_iso_utc(datetime.now(timezone.utc) - timedelta(days=days))

    def _grouped(col, limit: int | None = None) -> list[dict[str, Any]]:
        n = func.count().label("n")
        q = (
            select(col, n)
            .where(AuditLog.tenantId == auth.tenantId)
            .where(AuditLog.at >= since)
            .group_by(col)
            .order_by(n.desc(), col.asc())
        )
        if limit:
            q = q.limit(limit)
        return [{"key": k or "", "count": int(c)} for k, c in db.execute(q).all()]

    total = db.execute(
        select(func.count()).select_from(AuditLog).where(AuditLog.tenantId == auth.tenantId).where(AuditLog.at >= since)
    ).scalar_one()
    return {
        "days": days,
        "since": since,
        "total": int(total or 0),
        "byAction": _grouped(AuditLog.action),
        "byEntityType": _grouped(AuditLog.entityType),
        "byUser": _grouped(AuditLog.actorUserId, limit=20),
    }
