"""
Detailed attendance, workforce and leave reports.

Every report here is read-only and tenant scoped. Date ranges default to the
current local month unless stated otherwise.
"""
from __future__ import annotations

import statistics
from collections import defaultdict
from datetime import date, timedelta
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import select

from actions.attendance import summarize
from actions.employees import get_employee, years_between
from actions.helpers import clamp_int, enum_value, get_date, get_str, local_today, parse_bool, require_auth
from actions.leave import LEAVE_TYPES, vacation_entitlement
from actions.reports import _date_range
from models import Attendance, Employee, Leave
from utils import ApiError, AuthContext, parse_date_maybe, round2

NO_DEPARTMENT = "Unassigned"

# (label, min years, max years exclusive)
SENIORITY_BANDS = [("<1", 0, 1), ("1-3", 1, 3), ("3-5", 3, 5), ("5-10", 5, 10), ("10+", 10, 999)]

# Days accrued per year for the projected leave types; vacation uses the seniority table.
ACCRUAL_DAYS = {"sick": 10, "personal": 5}


def _employees(db, tenant_id: str, department: str = "", *, active_only: bool = True) -> list[Employee]:
    q = select(Employee).where(Employee.tenantId == tenant_id)
    if active_only:
        q = q.where(Employee.status == "active")
    if department:
        q = q.where(Employee.department == department)
    return list(db.execute(q.order_by(Employee.name.asc())).scalars())


def _attendance(db, tenant_id: str, start: str, end: str, employee_ids: list[str] | None = None) -> list[Attendance]:
    q = select(Attendance).where(Attendance.tenantId == tenant_id).where(Attendance.date.between(start, end))
    if employee_ids is not None:
        if not employee_ids:
            return []
        q = q.where(Attendance.employeeId.in_(employee_ids))
    return list(db.execute(q.order_by(Attendance.date.asc())).scalars())


def _approved_leaves(db, tenant_id: str, start: str, end: str) -> list[Leave]:
    return list(
        db.execute(
            select(Leave)
            .where(Leave.tenantId == tenant_id)
            .where(Leave.status == "approved")
            .where(Leave.startDate <= end)
            .where(Leave.endDate >= start)
        ).scalars()
    )


# ---------- attendance ----------


def report_overtime(data, auth: AuthContext | None, db, cfg):
    """Overtime per employee in the range, heaviest first."""
    auth = require_auth(auth)
    start, end = _date_range(data, cfg)
    department = get_str(data, "department")
    employees = {e.employeeId: e for e in _employees(db, auth.tenantId, department)}

    per_emp: dict[str, dict[str, float]] = defaultdict(lambda: {"days": 0, "overtime": 0.0, "hours": 0.0})
    for a in _attendance(db, auth.tenantId, start, end, list(employees)):
        if float(a.overtimeHours or 0) <= 0:
            continue
        p = per_emp[a.employeeId]
        p["days"] += 1
        p["overtime"] += float(a.overtimeHours)
        p["hours"] += float(a.hoursWorked or 0)

    rows = []
    for emp_id, p in per_emp.items():
        e = employees[emp_id]
        rows.append(
            {
                "employeeId": emp_id,
                "employeeName": e.name or "",
                "department": e.department or "",
                "daysWithOvertime": int(p["days"]),
                "overtimeHours": round2(p["overtime"]),
                "averageOvertimePerDay": round2(p["overtime"] / p["days"]),
                "totalHours": round2(p["hours"]),
            }
        )
    rows.sort(key=lambda r: (-r["overtimeHours"], r["employeeName"]))
    return {
        "startDate": start,
        "endDate": end,
        "department": department,
        "rows": rows,
        "total": len(rows),
        "totalOvertimeHours": round2(sum(r["overtimeHours"] for r in rows)),
    }


def report_absences(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    start, end = _date_range(data, cfg)
    department = get_str(data, "department")
    include_leaves = parse_bool((data or {}).get("includeLeaves"), default=False)
    employees = {e.employeeId: e for e in _employees(db, auth.tenantId, department)}

    absences: dict[str, list[str]] = defaultdict(list)
    for a in _attendance(db, auth.tenantId, start, end, list(employees)):
        if a.status == "absent":
            absences[a.employeeId].append(a.date)

    leave_days: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    if include_leaves:
        for lv in _approved_leaves(db, auth.tenantId, start, end):
            if lv.employeeId in employees:
                leave_days[lv.employeeId][lv.type] += float(lv.days or 0)

    rows = []
    for emp_id in sorted(set(absences) | set(leave_days), key=lambda k: employees[k].name or ""):
        e = employees[emp_id]
        row = {
            "employeeId": emp_id,
            "employeeName": e.name or "",
            "department": e.department or "",
            "absentDays": len(absences.get(emp_id, [])),
            "absentDates": absences.get(emp_id, []),
        }
        if include_leaves:
            by_type = {t: round2(d) for t, d in leave_days.get(emp_id, {}).items()}
            row |= {"leaveDays": round2(sum(by_type.values())), "leaveByType": by_type}
        rows.append(row)
    return {
        "startDate": start,
        "endDate": end,
        "includeLeaves": include_leaves,
        "rows": rows,
        "total": len(rows),
        "totalAbsentDays": sum(r["absentDays"] for r in rows),
    }


def _week_key(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year:04d}-W{week:02d}"


def report_attendance_trend(data, auth: AuthContext | None, db, cfg):
    """Attendance totals per ISO week or calendar month, in date order."""
    auth = require_auth(auth)
    start, end = _date_range(data, cfg)
    group_by = enum_value((data or {}).get("groupBy"), ["week", "month"], field="groupBy", default="week")
    department = get_str(data, "department")
    ids = [e.employeeId for e in _employees(db, auth.tenantId, department)] if department else None

    buckets: dict[str, list[Attendance]] = defaultdict(list)
    for a in _attendance(db, auth.tenantId, start, end, ids):
        day = parse_date_maybe(a.date)
        if day:
            buckets[_week_key(day) if group_by == "week" else day.strftime("%Y-%m")].append(a)

    rows = []
    for key in sorted(buckets):
        s = summarize(buckets[key])
        attended = s["present"] + s["late"] + s["halfDay"]
        rows.append(
            {
                "period": key,
                "records": s["totalDays"],
                "present": s["present"],
                "late": s["late"],
                "absent": s["absent"],
                "totalHours": s["totalHours"],
                "overtimeHours": s["overtimeHours"],
                "attendanceRate": round2(attended / s["totalDays"] * 100) if s["totalDays"] else 0.0,
            }
        )
    return {"startDate": start, "endDate": end, "groupBy": group_by, "rows": rows, "total": len(rows)}


# ---------- workforce ----------


def _hired_on(e: Employee) -> str:
    return e.hireDate or (e.createdAt or "")[:10]


def _left_on(e: Employee) -> str:
    return e.endDate if e.status == "terminated" else ""


def _on_payroll(e: Employee, day: str) -> bool:
    hired = _hired_on(e)
    left = _left_on(e)
    return bool(hired) and hired <= day and (not left or left > day)


def report_turnover(data, auth: AuthContext | None, db, cfg):
    """
    Hires, terminations and turnover rate in a range (default: year to date).

    Turnover rate is terminations over the average of the opening and closing
    headcount, as a percentage.
    """
    auth = require_auth(auth)
    today = local_today(cfg)
    start = get_date(data, "startDate") or f"{today.year:04d}-01-01"
    end = get_date(data, "endDate") or today.isoformat()
    if end < start:
        raise ApiError("BAD_REQUEST", "endDate must be on or after startDate")

    employees = _employees(db, auth.tenantId, get_str(data, "department"), active_only=False)
    opening_day = (date.fromisoformat(start) - timedelta(days=1)).isoformat()

    def _tally(rows: list[Employee]) -> dict[str, Any]:
        hires = sum(1 for e in rows if start <= _hired_on(e) <= end)
        exits = sum(1 for e in rows if _left_on(e) and start <= _left_on(e) <= end)
        opening = sum(1 for e in rows if _on_payroll(e, opening_day))
        closing = sum(1 for e in rows if _on_payroll(e, end))
        average = (opening + closing) / 2
        return {
            "hires": hires,
            "terminations": exits,
            "openingHeadcount": opening,
            "closingHeadcount": closing,
            "averageHeadcount": round2(average),
            "turnoverRate": round2(exits / average * 100) if average else 0.0,
        }

    by_dept: dict[str, list[Employee]] = defaultdict(list)
    for e in employees:
        by_dept[e.department or NO_DEPARTMENT].append(e)
    return {
        "startDate": start,
        "endDate": end,
        **_tally(employees),
        "byDepartment": [{"department": d} | _tally(rows) for d, rows in sorted(by_dept.items())],
    }


def report_headcount_trend(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    group_by = enum_value(payload.get("groupBy"), ["month", "quarter"], field="groupBy", default="month")
    periods = clamp_int(payload.get("periods"), default=12, min_v=1, max_v=36)
    employees = _employees(db, auth.tenantId, get_str(payload, "department"), active_only=False)

    today = local_today(cfg)
    step = 3 if group_by == "quarter" else 1
    anchor = today.replace(day=1)
    if group_by == "quarter":
        anchor = anchor.replace(month=(anchor.month - 1) // 3 * 3 + 1)

    rows = []
    for i in reversed(range(periods)):
        first = anchor - relativedelta(months=i * step)
        last = min(first + relativedelta(months=step) - timedelta(days=1), today)
        label = f"{first.year:04d}-Q{(first.month - 1) // 3 + 1}" if group_by == "quarter" else first.strftime("%Y-%m")
        f_iso, l_iso = first.isoformat(), last.isoformat()
        rows.append(
            {
                "period": label,
                "headcount": sum(1 for e in employees if _on_payroll(e, l_iso)),
                "hires": sum(1 for e in employees if f_iso <= _hired_on(e) <= l_iso),
                "terminations": sum(1 for e in employees if _left_on(e) and f_iso <= _left_on(e) <= l_iso),
            }
        )
    return {"groupBy": group_by, "rows": rows, "total": len(rows)}


def _seniority_band(e: Employee, today: date) -> str:
    years = years_between(parse_date_maybe(e.hireDate), today) or 0
    for label, lo, hi in SENIORITY_BANDS:
        if lo <= years < hi:
            return label
    return SENIORITY_BANDS[-1][0]


def _salary_stats(salaries: list[float]) -> dict[str, Any]:
    if not salaries:
        return {"count": 0, "average": 0.0, "median": 0.0, "min": 0.0, "max": 0.0, "total": 0.0}
    return {
        "count": len(salaries),
        "average": round2(statistics.fmean(salaries)),
        "median": round2(statistics.median(salaries)),
        "min": round2(min(salaries)),
        "max": round2(max(salaries)),
        "total": round2(sum(salaries)),
    }


def report_salary_distribution(data, auth: AuthContext | None, db, cfg):
    """Base salary statistics for active staff by department, position or seniority band."""
    auth = require_auth(auth)
    group_by = enum_value((data or {}).get("groupBy"), ["department", "position", "seniority"], field="groupBy", default="department")
    today = local_today(cfg)
    employees = _employees(db, auth.tenantId)

    groups: dict[str, list[float]] = defaultdict(list)
    for e in employees:
        if group_by == "seniority":
            key = _seniority_band(e, today)
        elif group_by == "position":
            key = e.role or "Unspecified"
        else:
            key = e.department or NO_DEPARTMENT
        groups[key].append(float(e.baseSalary or 0))

    if group_by == "seniority":
        order = [label for label, _, _ in SENIORITY_BANDS if label in groups]
    else:
        order = sorted(groups)
    rows = [{"group": key} | _salary_stats(groups[key]) for key in order]
    return {
        "groupBy": group_by,
        "rows": rows,
        "total": len(rows),
        "overall": _salary_stats([float(e.baseSalary or 0) for e in employees]),
    }


def _next_birthday(born: date, today: date) -> date:
    for year in (today.year, today.year + 1):
        try:
            candidate = born.replace(year=year)
        except ValueError:
            # 29 Feb in a common year
            candidate = date(year, 2, 28)
        if candidate >= today:
            return candidate
    return candidate


def report_birthdays(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    days = clamp_int((data or {}).get("days"), default=30, min_v=0, max_v=366)
    today = local_today(cfg)

    rows = []
    for e in _employees(db, auth.tenantId, get_str(data, "department")):
        born = parse_date_maybe(e.dateOfBirth)
        if not born:
            continue
        nxt = _next_birthday(born, today)
        until = (nxt - today).days
        if until <= days:
            rows.append(
                {
                    "employeeId": e.employeeId,
                    "employeeName": e.name or "",
                    "department": e.department or "",
                    "dateOfBirth": e.dateOfBirth,
                    "birthday": nxt.isoformat(),
                    "daysUntil": until,
                    "turningAge": nxt.year - born.year,
                }
            )
    rows.sort(key=lambda r: (r["daysUntil"], r["employeeName"]))
    return {"asOf": today.isoformat(), "days": days, "rows": rows, "total": len(rows)}


# ---------- leave ----------


def report_leave_usage(data, auth: AuthContext | None, db, cfg):
    """Approved leave days per employee and type for a calendar year."""
    auth = require_auth(auth)
    year = clamp_int((data or {}).get("year"), default=local_today(cfg).year, min_v=1970, max_v=2100)
    employees = {e.employeeId: e for e in _employees(db, auth.tenantId, get_str(data, "department"))}

    used: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for lv in _approved_leaves(db, auth.tenantId, f"{year:04d}-01-01", f"{year:04d}-12-31"):
        if lv.employeeId in employees:
            used[lv.employeeId][lv.type] += float(lv.days or 0)

    rows = []
    for emp_id, e in employees.items():
        by_type = {t: round2(used[emp_id].get(t, 0)) for t in LEAVE_TYPES}
        rows.append(
            {
                "employeeId": emp_id,
                "employeeName": e.name or "",
                "department": e.department or "",
                "totalDays": round2(sum(by_type.values())),
            }
            | by_type
        )
    totals = {t: round2(sum(r[t] for r in rows)) for t in LEAVE_TYPES}
    return {"year": year, "rows": rows, "total": len(rows), "totals": totals}


def report_leave_statistics(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    start, end = _date_range(data, cfg)
    group_by = enum_value((data or {}).get("groupBy"), ["type", "month", "department"], field="groupBy", default="type")

    leaves = list(
        db.execute(
            select(Leave).where(Leave.tenantId == auth.tenantId).where(Leave.startDate.between(start, end))
        ).scalars()
    )
    departments: dict[str, str] = {}
    if group_by == "department" and leaves:
        departments = {
            emp_id: dept
            for emp_id, dept in db.execute(
                select(Employee.employeeId, Employee.department)
                .where(Employee.tenantId == auth.tenantId)
                .where(Employee.employeeId.in_(sorted({lv.employeeId for lv in leaves})))
            ).all()
        }

    groups: dict[str, list[float]] = defaultdict(list)
    by_status: dict[str, int] = defaultdict(int)
    for lv in leaves:
        by_status[lv.status] += 1
        if lv.status != "approved":
            continue
        if group_by == "type":
            key = lv.type
        elif group_by == "month":
            key = lv.startDate[:7]
        else:
            key = departments.get(lv.employeeId) or NO_DEPARTMENT
        groups[key].append(float(lv.days or 0))

    rows = [
        {"group": key, "count": len(days), "totalDays": round2(sum(days)), "averageDays": round2(sum(days) / len(days))}
        for key, days in groups.items()
    ]
    if group_by == "month":
        rows.sort(key=lambda r: r["group"])
    else:
        rows.sort(key=lambda r: (-r["totalDays"], r["group"]))
    return {
        "startDate": start,
        "endDate": end,
        "groupBy": group_by,
        "rows": rows,
        "total": len(rows),
        "byStatus": dict(by_status),
        "totalRequests": len(leaves),
    }


def report_leave_projections(data, auth: AuthContext | None, db, cfg):
    """
    Month-by-month projection of accrued and available leave for one employee.

    Balances accrue monthly and reset each January: vacation at the employee's
    seniority entitlement over twelve, sick and personal at fixed yearly rates.
    Usage counts approved and pending requests of each projected year.
    """
    auth = require_auth(auth)
    emp = get_employee(db, auth.tenantId, get_str(data, "employeeId"))
    months = clamp_int((data or {}).get("months"), default=6, min_v=0, max_v=24)
    today = local_today(cfg)
    hire = parse_date_maybe(emp.hireDate)

    rows = db.execute(
        select(Leave.type, Leave.startDate, Leave.days)
        .where(Leave.tenantId == auth.tenantId)
        .where(Leave.employeeId == emp.employeeId)
        .where(Leave.status.in_(["approved", "pending"]))
        .where(Leave.type.in_(["vacation", *ACCRUAL_DAYS]))
    ).all()
    used: dict[tuple[int, str], float] = defaultdict(float)
    for l_type, start, days in rows:
        if start[:4].isdigit():
            used[(int(start[:4]), l_type)] += float(days or 0)

    projections = []
    for i in range(months + 1):
        month = today.replace(day=1) + relativedelta(months=i)
        yearly = {"vacation": vacation_entitlement(hire, month.year), **ACCRUAL_DAYS}
        balances = {}
        for l_type, per_year in yearly.items():
            accrued = per_year / 12 * month.month
            spent = used.get((month.year, l_type), 0.0)
            balances[l_type] = {
                "accrued": round2(accrued),
                "used": round2(spent),
                "available": round2(max(0.0, accrued - spent)),
            }
        projections.append({"month": month.strftime("%Y-%m"), "balances": balances})
    return {"employeeId": emp.employeeId, "employeeName": emp.name or "", "months": months, "projections": projections}
