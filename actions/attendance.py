from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select

from actions.employees import get_employee
from actions.helpers import (
    actor_id,
    app_tz,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_date,
    get_dict,
    get_number,
    get_str,
    get_tenant_row,
    is_self_service,
    local_day,
    require_auth,
    scoped_employee_id,
)
from models import Attendance, Employee
from utils import ApiError, AuthContext, iso_utc_now, json_loads_dict, new_uuid, parse_datetime_maybe, round2, to_iso_utc


ATTENDANCE_STATUSES = ["present", "absent", "late", "half_day", "leave", "holiday"]
DEFAULT_REGULAR_HOURS = 8.0


def _now() -> datetime:
    return datetime.now(timezone.utc)


def regular_hours_per_day(monthly_hours: Any, working_days: int) -> float:
    try:
        mh = float(monthly_hours or 0)
    except (TypeError, ValueError):
        mh = 0.0
    if mh <= 0 or working_days <= 0:
        return DEFAULT_REGULAR_HOURS
    return mh / working_days


def compute_hours(check_in: Optional[datetime], check_out: Optional[datetime], break_minutes: int, regular_per_day: float) -> dict[str, float]:
    """Worked hours net of breaks, split into regular and overtime."""
    if not check_in or not check_out:
        return {"hoursWorked": 0.0, "regularHours": 0.0, "overtimeHours": 0.0}
    total = (check_out - check_in).total_seconds() / 3600.0 - max(0, int(break_minutes or 0)) / 60.0
    worked = max(0.0, round(total, 2))
    return {
        "hoursWorked": worked,
        "regularHours": round2(min(worked, regular_per_day)),
        "overtimeHours": round2(max(0.0, worked - regular_per_day)),
    }


def late_minutes(cfg, check_in: datetime) -> int:
    tz = app_tz(cfg)
    local = check_in.astimezone(tz)
    expected = datetime(local.year, local.month, local.day, int(cfg.WORKDAY_START_HOUR), 0, tzinfo=tz)
    diff = math.floor((local - expected).total_seconds() / 60.0)
    return max(0, diff)


def serialize_attendance(a: Attendance) -> dict[str, Any]:
    return {
        "attendanceId": a.attendanceId,
        "employeeId": a.employeeId,
        "employeeName": a.employeeName or "",
        "date": a.date,
        "checkIn": a.checkIn or "",
        "checkOut": a.checkOut or "",
        "breakStart": a.breakStart or "",
        "breakEnd": a.breakEnd or "",
        "breakMinutes": int(a.breakMinutes or 0),
        "hoursWorked": round2(a.hoursWorked),
        "regularHours": round2(a.regularHours),
        "overtimeHours": round2(a.overtimeHours),
        "checkInLocation": json_loads_dict(a.checkInLocationJson),
        "checkOutLocation": json_loads_dict(a.checkOutLocationJson),
        "status": a.status or "present",
        "lateMinutes": int(a.lateMinutes or 0),
        "notes": a.notes or "",
        "approvedBy": a.approvedBy or "",
        "approvedAt": a.approvedAt or "",
        "createdAt": a.createdAt or "",
        "updatedAt": a.updatedAt or "",
    }


def _resolve_employee_id(auth: AuthContext, data: dict[str, Any] | None) -> str:
    return scoped_employee_id(auth, get_str(data, "employeeId"))


def _find_day(db, tenant_id: str, employee_id: str, day: str) -> Attendance | None:
    return db.execute(
        select(Attendance)
        .where(Attendance.tenantId == tenant_id)
        .where(Attendance.employeeId == employee_id)
        .where(Attendance.date == day)
    ).scalar_one_or_none()


def _new_row(emp: Employee, day: str, by: str, now: str) -> Attendance:
    return Attendance(
        attendanceId=f"ATT-{new_uuid()}",
        tenantId=emp.tenantId,
        employeeId=emp.employeeId,
        employeeName=emp.name or "",
        date=day,
        checkIn="",
        checkOut="",
        breakStart="",
        breakEnd="",
        breakMinutes=0,
        hoursWorked=0,
        regularHours=0,
        overtimeHours=0,
        checkInLocationJson="",
        checkOutLocationJson="",
        status="present",
        lateMinutes=0,
        notes="",
        approvedBy="",
        approvedAt="",
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )


def _recalculate(db, cfg, row: Attendance) -> None:
    monthly = db.execute(
        select(Employee.monthlyHours).where(Employee.employeeId == row.employeeId).where(Employee.tenantId == row.tenantId)
    ).scalar_one_or_none()
    hours = compute_hours(
        parse_datetime_maybe(row.checkIn),
        parse_datetime_maybe(row.checkOut),
        int(row.breakMinutes or 0),
        regular_hours_per_day(monthly, int(cfg.WORKING_DAYS_PER_MONTH)),
    )
    row.hoursWorked = hours["hoursWorked"]
    row.regularHours = hours["regularHours"]
    row.overtimeHours = hours["overtimeHours"]


def _location(data: dict[str, Any] | None) -> str:
    loc = get_dict(data, "location")
    if not loc:
        return ""
    for key in ("latitude", "longitude"):
        if key in loc:
            get_number(loc, key, min_v=-180, max_v=180)
    return dumps({k: loc.get(k) for k in ("latitude", "longitude", "address") if k in loc})


def attendance_check_in(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    emp = get_employee(db, auth.tenantId, _resolve_employee_id(auth, data))
    moment = _now()
    day = local_day(cfg, moment).isoformat()
    now = to_iso_utc(moment)
    by = actor_id(auth)

    row = _find_day(db, auth.tenantId, emp.employeeId, day)
    if row and row.checkIn:
        raise ApiError("BAD_REQUEST", "Already checked in today")
    if not row:
        row = _new_row(emp, day, by, now)
        db.add(row)

    row.checkIn = now
    row.checkInLocationJson = _location(data)
    row.status = "present"
    notes = get_str(data, "notes", max_len=1000)
    if notes:
        row.notes = notes
    row.lateMinutes = late_minutes(cfg, moment)
    if row.lateMinutes > int(cfg.LATE_GRACE_MINUTES):
        row.status = "late"
    row.updatedAt = now
    row.updatedBy = by

    append_audit(
        db, entityType="ATTENDANCE", entityId=row.attendanceId, action="ATTENDANCE_CHECK_IN", toState=row.status, actor=auth, at=now,
        meta={"employeeId": emp.employeeId, "date": day, "lateMinutes": row.lateMinutes},
    )
    return {"attendance": serialize_attendance(row)}


def attendance_check_out(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    employee_id = _resolve_employee_id(auth, data)
    moment = _now()
    day = local_day(cfg, moment).isoformat()
    now = to_iso_utc(moment)

    row = _find_day(db, auth.tenantId, employee_id, day)
    if not row:
        raise ApiError("BAD_REQUEST", "No check-in record found for today")
    if row.checkOut:
        raise ApiError("BAD_REQUEST", "Already checked out today")
    if not row.checkIn:
        raise ApiError("BAD_REQUEST", "Cannot check out without checking in first")

    row.checkOut = now
    row.checkOutLocationJson = _location(data)
    notes = get_str(data, "notes", max_len=1000)
    if notes:
        row.notes = notes
    _recalculate(db, cfg, row)
    row.updatedAt = now
    row.updatedBy = actor_id(auth)

    append_audit(
        db, entityType="ATTENDANCE", entityId=row.attendanceId, action="ATTENDANCE_CHECK_OUT", actor=auth, at=now,
        meta={"employeeId": employee_id, "date": day, "hoursWorked": row.hoursWorked},
    )
    return {"attendance": serialize_attendance(row)}


def attendance_break(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    employee_id = _resolve_employee_id(auth, data)
    moment = _now()
    day = local_day(cfg, moment).isoformat()

    row = _find_day(db, auth.tenantId, employee_id, day)
    if not row:
        raise ApiError("BAD_REQUEST", "No check-in record found for today")

    kind = enum_value((data or {}).get("type"), ["start", "end"], field="type", default="")
    start_raw = (data or {}).get("breakStart")
    end_raw = (data or {}).get("breakEnd")
    if not kind and not start_raw and not end_raw:
        raise ApiError("BAD_REQUEST", "Provide type (start|end) or breakStart/breakEnd")

    if kind == "start" or start_raw:
        start = parse_datetime_maybe(start_raw, app_timezone=cfg.APP_TIMEZONE) if start_raw else moment
        if not start:
            raise ApiError("BAD_REQUEST", "Invalid breakStart")
        row.breakStart = to_iso_utc(start)
        row.breakEnd = ""
    if kind == "end" or end_raw:
        end = parse_datetime_maybe(end_raw, app_timezone=cfg.APP_TIMEZONE) if end_raw else moment
        if not end:
            raise ApiError("BAD_REQUEST", "Invalid breakEnd")
        start = parse_datetime_maybe(row.breakStart)
        if not start:
            raise ApiError("BAD_REQUEST", "Break has not started")
        if end < start:
            raise ApiError("BAD_REQUEST", "breakEnd must be after breakStart")
        row.breakEnd = to_iso_utc(end)
        row.breakMinutes = int((end - start).total_seconds() // 60)

    if row.checkOut:
        _recalculate(db, cfg, row)
    row.updatedAt = to_iso_utc(moment)
    row.updatedBy = actor_id(auth)
    return {"attendance": serialize_attendance(row)}


def attendance_today(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    employee_id = _resolve_employee_id(auth, data)
    day = local_day(cfg, _now()).isoformat()
    row = _find_day(db, auth.tenantId, employee_id, day)
    if not row:
        return {"attendance": {"employeeId": employee_id, "date": day, "status": "absent", "message": "Not checked in yet"}}
    return {"attendance": serialize_attendance(row)}


def _filtered_query(auth: AuthContext, data: dict[str, Any] | None):
    q = select(Attendance).where(Attendance.tenantId == auth.tenantId)
    if is_self_service(auth) or get_str(data, "employeeId"):
        q = q.where(Attendance.employeeId == _resolve_employee_id(auth, data))
    status = enum_value((data or {}).get("status"), ATTENDANCE_STATUSES, field="status", default="")
    if status:
        q = q.where(Attendance.status == status)
    start = get_date(data, "startDate")
    end = get_date(data, "endDate")
    if start and end and end < start:
        raise ApiError("BAD_REQUEST", "endDate must be on or after startDate")
    if start:
        q = q.where(Attendance.date >= start)
    if end:
        q = q.where(Attendance.date <= end)
    return q


def attendance_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    limit = clamp_int((data or {}).get("limit"), default=50, min_v=1, max_v=200)
    skip = clamp_int((data or {}).get("skip"), default=0, min_v=0, max_v=1_000_000)
    base = _filtered_query(auth, data)
    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    rows = db.execute(base.order_by(Attendance.date.desc(), Attendance.checkIn.desc()).offset(skip).limit(limit)).scalars().all()
    return {"items": [serialize_attendance(a) for a in rows], "total": total, "limit": limit, "skip": skip}


def summarize(rows: list[Attendance]) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "totalDays": len(rows),
        "present": 0,
        "absent": 0,
        "late": 0,
        "halfDay": 0,
        "leave": 0,
        "holiday": 0,
        "totalHours": 0.0,
        "regularHours": 0.0,
        "overtimeHours": 0.0,
        "averageHoursPerDay": 0.0,
    }
    for a in rows:
        key = "halfDay" if a.status == "half_day" else (a.status or "present")
        if key in summary:
            summary[key] += 1
        summary["totalHours"] += float(a.hoursWorked or 0)
        summary["regularHours"] += float(a.regularHours or 0)
        summary["overtimeHours"] += float(a.overtimeHours or 0)
    for key in ("totalHours", "regularHours", "overtimeHours"):
        summary[key] = round2(summary[key])
    if rows:
        summary["averageHoursPerDay"] = round2(summary["totalHours"] / len(rows))
    return summary


def attendance_summary(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = dict(data or {})
    employee_id = _resolve_employee_id(auth, payload)
    payload["employeeId"] = employee_id
    if not payload.get("startDate"):
        today = local_day(cfg, _now())
        payload["startDate"] = today.replace(day=1).isoformat()
        payload.setdefault("endDate", today.isoformat())
    rows = db.execute(_filtered_query(auth, payload)).scalars().all()
    return {
        "employeeId": employee_id,
        "startDate": payload.get("startDate") or "",
        "endDate": payload.get("endDate") or "",
        "summary": summarize(list(rows)),
    }


def attendance_mark_absence(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    emp = get_employee(db, auth.tenantId, (data or {}).get("employeeId"))
    day = get_date(data, "date", required=True)
    now = iso_utc_now()
    by = actor_id(auth)

    row = _find_day(db, auth.tenantId, emp.employeeId, day)
    before = row.status if row else ""
    if not row:
        row = _new_row(emp, day, by, now)
        db.add(row)
    row.status = "absent"
    reason = get_str(data, "reason", max_len=1000)
    if reason:
        row.notes = reason
    row.updatedAt = now
    row.updatedBy = by
    append_audit(
        db, entityType="ATTENDANCE", entityId=row.attendanceId, action="ATTENDANCE_MARK_ABSENCE", fromState=before, toState="absent",
        actor=auth, at=now, meta={"employeeId": emp.employeeId, "date": day},
    )
    return {"attendance": serialize_attendance(row)}


def attendance_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    row = get_tenant_row(db, Attendance, "attendanceId", payload.get("attendanceId"), auth.tenantId, message="Attendance record not found")
    before = serialize_attendance(row)
    recalc = False

    if "status" in payload:
        row.status = enum_value(payload.get("status"), ATTENDANCE_STATUSES, field="status", default=row.status)
    if "notes" in payload:
        row.notes = get_str(payload, "notes", max_len=1000)
    for key in ("checkIn", "checkOut"):
        if key in payload:
            raw = payload.get(key)
            if raw in (None, ""):
                setattr(row, key, "")
            else:
                dt = parse_datetime_maybe(raw, app_timezone=cfg.APP_TIMEZONE)
                if not dt:
                    raise ApiError("BAD_REQUEST", f"Invalid {key}")
                setattr(row, key, to_iso_utc(dt))
            recalc = True
    if "breakMinutes" in payload:
        row.breakMinutes = int(get_number(payload, "breakMinutes", default=0, min_v=0, max_v=24 * 60) or 0)
        recalc = True
    if "approvedBy" in payload:
        row.approvedBy = get_str(payload, "approvedBy", max_len=100) or actor_id(auth)
        row.approvedAt = iso_utc_now()

    cin = parse_datetime_maybe(row.checkIn)
    cout = parse_datetime_maybe(row.checkOut)
    if cin and cout and cout < cin:
        raise ApiError("BAD_REQUEST", "checkOut must be after checkIn")
    if recalc:
        _recalculate(db, cfg, row)

    row.updatedAt = iso_utc_now()
    row.updatedBy = actor_id(auth)
    after = serialize_attendance(row)
    append_audit(
        db, entityType="ATTENDANCE", entityId=row.attendanceId, action="ATTENDANCE_UPDATE", fromState=before["status"],
        toState=after["status"], actor=auth, before=before, after=after,
    )
    return {"attendance": after}


def attendance_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    row = get_tenant_row(db, Attendance, "attendanceId", (data or {}).get("attendanceId"), auth.tenantId, message="Attendance record not found")
    db.delete(row)
    append_audit(db, entityType="ATTENDANCE", entityId=row.attendanceId, action="ATTENDANCE_DELETE", actor=auth, before=serialize_attendance(row))
    return {"ok": True, "attendanceId": row.attendanceId}


def month_bounds(period: str) -> tuple[str, str]:
    """`YYYY-MM` -> first and last day, both inclusive."""
    try:
        first = datetime.strptime(str(period or "").strip(), "%Y-%m").date()
    except ValueError:
        raise ApiError("BAD_REQUEST", "Invalid period, expected YYYY-MM")
    nxt = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first.isoformat(), (nxt - timedelta(days=1)).isoformat()
