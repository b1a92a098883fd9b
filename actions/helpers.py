from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from flask import g, has_request_context
from sqlalchemy import select

from models import AuditLog, IdCounter
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_date_maybe, safe_json_string


def require_auth(auth: AuthContext | None) -> AuthContext:
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    if not auth.tenantId:
        raise ApiError("FORBIDDEN", "Session is not bound to a tenant")
    return auth


def actor_id(auth: AuthContext | None) -> str:
    if not auth:
        return "SYSTEM"
    return str(auth.userId or auth.email or "SYSTEM")


def is_self_service(auth: AuthContext | None) -> bool:
    return bool(auth) and normalize_role(auth.role) == "EMPLOYEE"


def clamp_int(value: Any, *, default: int, min_v: int, max_v: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = int(default)
    return max(int(min_v), min(int(max_v), n))


def get_str(data: dict[str, Any] | None, key: str, *, max_len: int | None = None, label: str | None = None) -> str:
    s = str((data or {}).get(key) or "").strip()
    if max_len is not None and len(s) > max_len:
        raise ApiError("BAD_REQUEST", f"{label or key} must be at most {max_len} characters")
    return s


def require_str(
    data: dict[str, Any] | None, key: str, *, min_len: int = 1, max_len: int | None = None, label: str | None = None
) -> str:
    s = get_str(data, key, max_len=max_len, label=label)
    if not s:
        raise ApiError("BAD_REQUEST", f"Missing {label or key}")
    if len(s) < min_len:
        raise ApiError("BAD_REQUEST", f"{label or key} must be at least {min_len} characters")
    return s


def enum_value(value: Any, allowed: Iterable[str], *, field: str, default: str = "") -> str:
    s = str(value or "").strip()
    if not s:
        return default
    allowed_l = list(allowed)
    if s not in allowed_l:
        raise ApiError("BAD_REQUEST", f"Invalid {field}: {s}. Allowed: {', '.join(allowed_l)}")
    return s


def get_number(
    data: dict[str, Any] | None,
    key: str,
    *,
    default: float | None = None,
    min_v: float | None = None,
    max_v: float | None = None,
) -> float | None:
    raw = (data or {}).get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise ApiError("BAD_REQUEST", f"{key} must be a number")
    try:
        n = float(raw)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", f"{key} must be a number")
    if min_v is not None and n < min_v:
        raise ApiError("BAD_REQUEST", f"{key} must be >= {min_v:g}")
    if max_v is not None and n > max_v:
        raise ApiError("BAD_REQUEST", f"{key} must be <= {max_v:g}")
    return n


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def get_date(data: dict[str, Any] | None, key: str, *, required: bool = False) -> str:
    raw = (data or {}).get(key)
    if raw is None or str(raw).strip() == "":
        if required:
            raise ApiError("BAD_REQUEST", f"Missing {key}")
        return ""
    d = parse_date_maybe(raw)
    if not d:
        raise ApiError("BAD_REQUEST", f"Invalid {key}, expected YYYY-MM-DD")
    return d.isoformat()


def get_list(data: dict[str, Any] | None, key: str) -> list[Any]:
    raw = (data or {}).get(key)
    if raw is None or raw == "":
        return []
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", f"{key} must be a list")
    return raw


def get_dict(data: dict[str, Any] | None, key: str) -> dict[str, Any]:
    raw = (data or {}).get(key)
    if raw is None or raw == "":
        return {}
    if not isinstance(raw, dict):
        raise ApiError("BAD_REQUEST", f"{key} must be an object")
    return raw


def get_tenant_row(db, model, pk_attr: str, pk_value: Any, tenant_id: str, *, message: str, for_update: bool = False):
    """Load one row of the caller's tenant; another tenant's row reads as missing."""
    pk = str(pk_value or "").strip()
    if not pk:
        raise ApiError("BAD_REQUEST", f"Missing {pk_attr}")
    q = select(model).where(getattr(model, pk_attr) == pk).where(model.tenantId == tenant_id)
    if for_update:
        q = q.with_for_update()
    row = db.execute(q).scalar_one_or_none()
    if not row:
        raise ApiError("NOT_FOUND", message)
    return row


def page_out(items: list[Any], *, total: int, limit: int, skip: int) -> dict[str, Any]:
    return {"items": items, "total": int(total), "limit": int(limit), "skip": int(skip)}


def app_tz(cfg) -> ZoneInfo:
    # APP_TIMEZONE is checked by Config.validate at startup
    return ZoneInfo(cfg.APP_TIMEZONE or "UTC")


def local_day(cfg, moment: datetime) -> date:
    return moment.astimezone(app_tz(cfg)).date()


def local_today(cfg) -> date:
    return local_day(cfg, datetime.now(timezone.utc))


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    fromState: str = "",
    toState: str = "",
    stageTag: str = "",
    remark: str = "",
    actor: Optional[AuthContext] = None,
    tenant_id: str = "",
    at: str | None = None,
    before: Any = None,
    after: Any = None,
    meta: Any = None,
) -> None:
    correlation_id = ""
    if has_request_context():
        correlation_id = str(getattr(g, "request_id", "") or "")
    db.add(
        AuditLog(
            logId=f"LOG-{new_uuid()}",
            tenantId=str(tenant_id or (actor.tenantId if actor else "") or ""),
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or ""),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or action or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId) if actor else "SYSTEM",
            actorRole=str(actor.role) if actor else "SYSTEM",
            actorEmail=str(actor.email or "") if actor else "",
            at=at or iso_utc_now(),
            correlationId=correlation_id,
            beforeJson=safe_json_string(before) if before is not None else "",
            afterJson=safe_json_string(after) if after is not None else "",
            metaJson=safe_json_string(meta) if meta is not None else "",
        )
    )


def next_prefixed_id(db, *, counter_key: str, prefix: str, pad: int = 6) -> str:
    row = db.execute(select(IdCounter).where(IdCounter.key == counter_key).with_for_update()).scalar_one_or_none()
    if not row:
        row = IdCounter(key=counter_key, nextValue=1)
        db.add(row)
        db.flush()

    n = int(row.nextValue or 1)
    row.nextValue = n + 1
    return f"{prefix}{n:0{int(pad)}d}"


def dumps(value: Any) -> str:
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def scoped_employee_id(auth: AuthContext, requested: str, *, required: bool = True) -> str:
    """EMPLOYEE callers are pinned to their linked employee; other roles may name one."""
    requested = str(requested or "").strip()
    if is_self_service(auth):
        if not auth.employeeId:
            raise ApiError("FORBIDDEN", "No employee record is linked to this account")
        if requested and requested != auth.employeeId:
            raise ApiError("FORBIDDEN", "You can only access your own records")
        return auth.employeeId
    employee_id = requested or auth.employeeId
    if required and not employee_id:
        raise ApiError("BAD_REQUEST", "Missing employeeId")
    return employee_id
