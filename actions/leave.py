from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from sqlalchemy import func, select

from actions.employees import get_employee, years_between
from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_date,
    get_list,
    get_str,
    get_tenant_row,
    is_self_service,
    local_today,
    parse_bool,
    require_auth,
    scoped_employee_id,
)
from actions.notifications import notify_from_template, users_for_employee, users_with_roles
from models import Employee, Leave
from utils import ApiError, AuthContext, iso_utc_now, json_loads_list, new_uuid, normalize_role, parse_date_maybe


LEAVE_TYPES = ["vacation", "sick", "personal", "maternity", "paternity", "bereavement", "study", "unpaid", "other"]
LEAVE_STATUSES = ["pending", "approved", "rejected", "cancelled"]

# (min years of service at 31 Dec, vacation days)
VACATION_ENTITLEMENT = [(20, 35), (10, 28), (5, 21), (0, 14)]


def business_days(start: date, end: date, half_day: bool = False) -> float:
    """Mon-Fri days in [start, end], halved for half-day requests."""
    count = 0
    cur = start
    while cur <= end:
        if cur.weekday() < 5:
            count += 1
        cur += timedelta(days=1)
    return count / 2 if half_day else float(count)


def vacation_entitlement(hire_date: date | None, year: int) -> int:
    years = years_between(hire_date, date(year, 12, 31)) or 0
    for min_years, days in VACATION_ENTITLEMENT:
        if years >= min_years:
            return days
    return 14


def serialize_leave(lv: Leave) -> dict[str, Any]:
    return {
        "leaveId": lv.leaveId,
        "employeeId": lv.employeeId,
        "employeeName": lv.employeeName or "",
        "type": lv.type,
        "startDate": lv.startDate,
        "endDate": lv.endDate,
        "days": float(lv.days or 0),
        "halfDay": bool(lv.halfDay),
        "reason": lv.reason or "",
        "description": lv.description or "",
        "status": lv.status,
        "requestedAt": lv.requestedAt or "",
        "approvedBy": lv.approvedBy or "",
        "approvedByName": lv.approvedByName or "",
        "approvedAt": lv.approvedAt or "",
        "rejectedReason": lv.rejectedReason or "",
        "attachments": json_loads_list(lv.attachmentsJson),
        "notes": lv.notes or "",
        "createdAt": lv.createdAt or "",
        "updatedAt": lv.updatedAt or "",
    }


def _dates(start: str, end: str) -> tuple[date, date]:
    s = parse_date_maybe(start)
    e = parse_date_maybe(end)
    if not s or not e:
        raise ApiError("BAD_REQUEST", "Invalid startDate/endDate")
    if e < s:
        raise ApiError("BAD_REQUEST", "endDate must be on or after startDate")
    return s, e


def _assert_no_overlap(db, tenant_id: str, employee_id: str, start: str, end: str, exclude_id: str = "") -> None:
    q = (
        select(Leave.leaveId)
        .where(Leave.tenantId == tenant_id)
        .where(Leave.employeeId == employee_id)
        .where(Leave.status == "approved")
        .where(Leave.startDate <= end)
        .where(Leave.endDate >= start)
    )
    if exclude_id:
        q = q.where(Leave.leaveId != exclude_id)
    if db.execute(q).first():
        raise ApiError("CONFLICT", "The employee already has an approved leave overlapping these dates")


def _get_leave(db, auth: AuthContext, leave_id: Any) -> Leave:
    lv = get_tenant_row(db, Leave, "leaveId", leave_id, auth.tenantId, message="Leave not found")
    if is_self_service(auth) and lv.employeeId != auth.employeeId:
        raise ApiError("NOT_FOUND", "Leave not found")
    return lv


def _notify_vars(lv: Leave) -> dict[str, Any]:
    return {
        "employeeName": lv.employeeName,
        "type": lv.type,
        "startDate": lv.startDate,
        "endDate": lv.endDate,
        "days": f"{float(lv.days or 0):g}",
        "reason": lv.rejectedReason or "",
    }


def leave_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    emp = get_employee(db, auth.tenantId, scoped_employee_id(auth, get_str(payload, "employeeId")))
    leave_type = enum_value(payload.get("type"), LEAVE_TYPES, field="type", default="")
    if not leave_type:
        raise ApiError("BAD_REQUEST", "Missing type")
    start_s = get_date(payload, "startDate", required=True)
    end_s = get_date(payload, "endDate", required=True)
    start, end = _dates(start_s, end_s)
    half_day = parse_bool(payload.get("halfDay"))
    days = business_days(start, end, half_day)
    if days <= 0:
        raise ApiError("BAD_REQUEST", "The requested range has no business days")
    _assert_no_overlap(db, auth.tenantId, emp.employeeId, start_s, end_s)

    now = iso_utc_now()
    by = actor_id(auth)
    lv = Leave(
        leaveId=f"LEV-{new_uuid()}",
        tenantId=auth.tenantId,
        employeeId=emp.employeeId,
        employeeName=emp.name or "",
        type=leave_type,
        startDate=start_s,
        endDate=end_s,
        days=days,
        halfDay=half_day,
        reason=get_str(payload, "reason", max_len=500),
        description=get_str(payload, "description", max_len=2000),
        status="pending",
        requestedAt=now,
        approvedBy="",
        approvedByName="",
        approvedAt="",
        rejectedReason="",
        attachmentsJson=dumps([str(a) for a in get_list(payload, "attachments")]),
        notes=get_str(payload, "notes", max_len=2000),
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )
    db.add(lv)

    approvers = users_with_roles(db, auth.tenantId, ["HR", "ADMIN"])
    if emp.managerId:
        approvers += users_for_employee(db, auth.tenantId, emp.managerId)
    notify_from_template(
        db,
        tenant_id=auth.tenantId,
        user_ids=[u for u in approvers if u != auth.userId],
        template="LEAVE_REQUESTED",
        variables=_notify_vars(lv),
        action_url=f"/leaves/{lv.leaveId}",
        data={"leaveId": lv.leaveId},
        created_by=by,
    )
    append_audit(db, entityType="LEAVE", entityId=lv.leaveId, action="LEAVE_CREATE", toState="pending", actor=auth, at=now, after=serialize_leave(lv))
    return {"leave": serialize_leave(lv)}


def leave_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=50, min_v=1, max_v=200)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)

    base = select(Leave).where(Leave.tenantId == auth.tenantId)
    employee_id = scoped_employee_id(auth, get_str(payload, "employeeId"), required=False)
    if employee_id and (is_self_service(auth) or get_str(payload, "employeeId")):
        base = base.where(Leave.employeeId == employee_id)
    leave_type = enum_value(payload.get("type"), LEAVE_TYPES, field="type", default="")
    if leave_type:
        base = base.where(Leave.type == leave_type)
    status = enum_value(payload.get("status"), LEAVE_STATUSES, field="status", default="")
    if status:
        base = base.where(Leave.status == status)
    start = get_date(payload, "startDate")
    end = get_date(payload, "endDate")
    if start:
        base = base.where(Leave.endDate >= start)
    if end:
        base = base.where(Leave.startDate <= end)

    year = clamp_int(payload.get("year"), default=0, min_v=0, max_v=9999)
    if year:
        month = clamp_int(payload.get("month"), default=0, min_v=0, max_v=12)
        if month:
            first = date(year, month, 1)
            last = (first.replace(day=28) + timedelta(days=4)).replace(day=1) - timedelta(days=1)
        else:
            first, last = date(year, 1, 1), date(year, 12, 31)
        base = base.where(Leave.startDate <= last.isoformat()).where(Leave.endDate >= first.isoformat())

    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    rows = db.execute(base.order_by(Leave.startDate.desc(), Leave.createdAt.desc()).offset(skip).limit(limit)).scalars().all()
    return {"items": [serialize_leave(lv) for lv in rows], "total": total, "limit": limit, "skip": skip}


def leave_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"leave": serialize_leave(_get_leave(db, auth, (data or {}).get("leaveId")))}


def leave_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    lv = _get_leave(db, auth, payload.get("leaveId"))
    if lv.status != "pending":
        raise ApiError("BAD_REQUEST", "Only pending leave requests can be updated")
    before = serialize_leave(lv)

    if "type" in payload:
        lv.type = enum_value(payload.get("type"), LEAVE_TYPES, field="type", default=lv.type)
    if "startDate" in payload:
        lv.startDate = get_date(payload, "startDate", required=True)
    if "endDate" in payload:
        lv.endDate = get_date(payload, "endDate", required=True)
    if "halfDay" in payload:
        lv.halfDay = parse_bool(payload.get("halfDay"))
    for key, max_len in (("reason", 500), ("description", 2000), ("notes", 2000)):
        if key in payload:
            setattr(lv, key, get_str(payload, key, max_len=max_len))
    if "attachments" in payload:
        lv.attachmentsJson = dumps([str(a) for a in get_list(payload, "attachments")])

    start, end = _dates(lv.startDate, lv.endDate)
    lv.days = business_days(start, end, bool(lv.halfDay))
    if lv.days <= 0:
        raise ApiError("BAD_REQUEST", "The requested range has no business days")
    _assert_no_overlap(db, auth.tenantId, lv.employeeId, lv.startDate, lv.endDate, exclude_id=lv.leaveId)

    lv.updatedAt = iso_utc_now()
    lv.updatedBy = actor_id(auth)
    after = serialize_leave(lv)
    append_audit(db, entityType="LEAVE", entityId=lv.leaveId, action="LEAVE_UPDATE", actor=auth, before=before, after=after)
    return {"leave": after}


def leave_decide(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    lv = get_tenant_row(db, Leave, "leaveId", payload.get("leaveId"), auth.tenantId, message="Leave not found")
    if "approved" not in payload:
        raise ApiError("BAD_REQUEST", "Missing approved")
    if lv.status != "pending":
        raise ApiError("BAD_REQUEST", "Leave request was already processed")

    if normalize_role(auth.role) == "MANAGER":
        emp_manager = db.execute(
            select(Employee.managerId).where(Employee.employeeId == lv.employeeId).where(Employee.tenantId == auth.tenantId)
        ).scalar_one_or_none()
        if not auth.employeeId or emp_manager != auth.employeeId:
            raise ApiError("FORBIDDEN", "Managers can only decide leave of their direct reports")
    if auth.employeeId and auth.employeeId == lv.employeeId:
        raise ApiError("FORBIDDEN", "You cannot decide your own leave request")

    approved = parse_bool(payload.get("approved"))
    if approved:
        _assert_no_overlap(db, auth.tenantId, lv.employeeId, lv.startDate, lv.endDate, exclude_id=lv.leaveId)

    now = iso_utc_now()
    lv.status = "approved" if approved else "rejected"
    if not approved:
        lv.rejectedReason = get_str(payload, "reason", max_len=500) or "Rejected"
    lv.approvedBy = auth.userId
    lv.approvedByName = auth.fullName or auth.email
    lv.approvedAt = now
    lv.updatedAt = now
    lv.updatedBy = actor_id(auth)

    notify_from_template(
        db,
        tenant_id=auth.tenantId,
        user_ids=users_for_employee(db, auth.tenantId, lv.employeeId),
        template="LEAVE_APPROVED" if approved else "LEAVE_REJECTED",
        variables=_notify_vars(lv),
        action_url=f"/leaves/{lv.leaveId}",
        data={"leaveId": lv.leaveId},
        created_by=actor_id(auth),
    )
    append_audit(
        db, entityType="LEAVE", entityId=lv.leaveId, action="LEAVE_DECIDE", fromState="pending", toState=lv.status,
        remark=lv.rejectedReason or "", actor=auth, at=now,
    )
    return {"leave": serialize_leave(lv)}


def leave_cancel(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    lv = _get_leave(db, auth, (data or {}).get("leaveId"))
    if lv.status in {"cancelled", "rejected"}:
        raise ApiError("BAD_REQUEST", f"Leave is already {lv.status}")
    if lv.status == "approved" and lv.startDate <= local_today(cfg).isoformat():
        raise ApiError("BAD_REQUEST", "An approved leave that already started cannot be cancelled")
    from_status = lv.status
    lv.status = "cancelled"
    lv.updatedAt = iso_utc_now()
    lv.updatedBy = actor_id(auth)
    append_audit(db, entityType="LEAVE", entityId=lv.leaveId, action="LEAVE_CANCEL", fromState=from_status, toState="cancelled", actor=auth)
    return {"leave": serialize_leave(lv)}


def leave_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    lv = _get_leave(db, auth, (data or {}).get("leaveId"))
    if lv.status not in {"pending", "rejected"}:
        raise ApiError("BAD_REQUEST", "Only pending or rejected leave requests can be deleted")
    db.delete(lv)
    append_audit(db, entityType="LEAVE", entityId=lv.leaveId, action="LEAVE_DELETE", fromState=lv.status, actor=auth, before=serialize_leave(lv))
    return {"ok": True, "leaveId": lv.leaveId}


def compute_balance(db, tenant_id: str, emp: Employee, year: int) -> dict[str, Any]:
    first, last = f"{year:04d}-01-01", f"{year:04d}-12-31"
    rows = db.execute(
        select(Leave.type, Leave.status, Leave.days)
        .where(Leave.tenantId == tenant_id)
        .where(Leave.employeeId == emp.employeeId)
        .where(Leave.startDate <= last)
        .where(Leave.endDate >= first)
    ).all()

    def _sum(types: set[str] | None, status: str, *, exclude: bool = False) -> float:
        total = 0.0
        for t, s, d in rows:
            in_types = types is None or (t in types)
            if exclude:
                in_types = not in_types
            if in_types and s == status:
                total += float(d or 0)
        return total

    entitled = vacation_entitlement(parse_date_maybe(emp.hireDate), year)
    vac_used = _sum({"vacation"}, "approved")
    vac_pending = _sum({"vacation"}, "pending")
    return {
        "employeeId": emp.employeeId,
        "employeeName": emp.name or "",
        "year": year,
        "vacation": {"total": entitled, "used": vac_used, "pending": vac_pending, "available": entitled - vac_used - vac_pending},
        "sick": {"used": _sum({"sick"}, "approved"), "pending": _sum({"sick"}, "pending")},
        "other": {
            "used": _sum({"vacation", "sick"}, "approved", exclude=True),
            "pending": _sum({"vacation", "sick"}, "pending", exclude=True),
        },
    }


def leave_balance(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    emp = get_employee(db, auth.tenantId, scoped_employee_id(auth, get_str(data, "employeeId")))
    year = clamp_int((data or {}).get("year"), default=local_today(cfg).year, min_v=1970, max_v=2100)
    return {"balance": compute_balance(db, auth.tenantId, emp, year)}
