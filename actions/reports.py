from __future__ import annotations

import csv
import io
from collections import defaultdict
from datetime import date
from typing import Any

from sqlalchemy import func, select

from actions.applications import PIPELINE_STAGES
from actions.attendance import month_bounds, summarize
from actions.helpers import clamp_int, get_date, get_str, local_today, require_auth
from actions.leave import compute_balance
from actions.payroll import validate_period
from cache_layer import cache_get_or_set, make_cache_key
from models import Application, Attendance, Candidate, Employee, Leave, Payroll, Vacancy
from utils import ApiError, AuthContext, round2


def _count(db, q) -> int:
    return int(db.execute(select(func.count()).select_from(q.subquery())).scalar_one() or 0)


def _grouped(db, col, *filters) -> dict[str, int]:
    q = select(col, func.count()).where(*filters).group_by(col)
    return {str(k or ""): int(n) for k, n in db.execute(q).all()}


def build_dashboard(db, tenant_id: str, today: date) -> dict[str, Any]:
    period = today.strftime("%Y-%m")
    first, last = month_bounds(period)
    year_start = f"{today.year:04d}-01-01"

    by_stage = _grouped(db, Application.status, Application.tenantId == tenant_id)
    recruitment = {
        "totalCandidates": _count(db, select(Candidate.candidateId).where(Candidate.tenantId == tenant_id)),
        "openVacancies": _count(db, select(Vacancy.vacancyId).where(Vacancy.tenantId == tenant_id).where(Vacancy.status == "open")),
        "applicationsThisMonth": _count(
            db, select(Application.applicationId).where(Application.tenantId == tenant_id).where(Application.createdAt >= first)
        ),
        "applicationsByStage": {key: by_stage.get(key, 0) for key, _, _ in PIPELINE_STAGES},
    }

    active = (Employee.tenantId == tenant_id, Employee.status == "active")
    employees = {
        "active": _count(db, select(Employee.employeeId).where(*active)),
        "newHiresThisMonth": _count(
            db, select(Employee.employeeId).where(Employee.tenantId == tenant_id).where(Employee.hireDate.between(first, last))
        ),
        "newHiresThisYear": _count(
            db, select(Employee.employeeId).where(Employee.tenantId == tenant_id).where(Employee.hireDate >= year_start)
        ),
        "byDepartment": _grouped(db, Employee.department, *active),
    }

    month_rows = (Attendance.tenantId == tenant_id, Attendance.date.between(first, last))
    by_status = _grouped(db, Attendance.status, *month_rows)
    overtime = db.execute(select(func.coalesce(func.sum(Attendance.overtimeHours), 0)).where(*month_rows)).scalar_one()
    attendance = {
        "records": sum(by_status.values()),
        "present": by_status.get("present", 0),
        "late": by_status.get("late", 0),
        "absent": by_status.get("absent", 0),
        "overtimeHours": round2(overtime),
    }

    leave = {
        "pending": _count(db, select(Leave.leaveId).where(Leave.tenantId == tenant_id).where(Leave.status == "pending")),
        "approvedThisMonth": _count(
            db,
            select(Leave.leaveId)
            .where(Leave.tenantId == tenant_id)
            .where(Leave.status == "approved")
            .where(Leave.startDate <= last)
            .where(Leave.endDate >= first),
        ),
    }
    return {"period": period, "recruitment": recruitment, "employees": employees, "attendance": attendance, "leave": leave}


def dashboard_kpis(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    today = local_today(cfg)
    key = make_cache_key("DASHBOARD", tenant_id=auth.tenantId, params={"day": today.isoformat()})
    return cache_get_or_set(key, lambda: build_dashboard(db, auth.tenantId, today))


def _date_range(data: dict[str, Any] | None, cfg) -> tuple[str, str]:
    start = get_date(data, "startDate")
    end = get_date(data, "endDate")
    if not start or not end:
        first, last = month_bounds(local_today(cfg).strftime("%Y-%m"))
        start, end = start or first, end or last
    if end < start:
        raise ApiError("BAD_REQUEST", "endDate must be on or after startDate")
    return start, end


def report_attendance(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    start, end = _date_range(data, cfg)
    department = get_str(data, "department")

    emp_q = select(Employee).where(Employee.tenantId == auth.tenantId).where(Employee.status == "active")
    if department:
        emp_q = emp_q.where(Employee.department == department)
    employees = db.execute(emp_q.order_by(Employee.name.asc())).scalars().all()

    by_emp: dict[str, list[Attendance]] = defaultdict(list)
    if employees:
        rows = db.execute(
            select(Attendance)
            .where(Attendance.tenantId == auth.tenantId)
            .where(Attendance.employeeId.in_([e.employeeId for e in employees]))
            .where(Attendance.date.between(start, end))
        ).scalars()
        for a in rows:
            by_emp[a.employeeId].append(a)

    out = []
    for e in employees:
        s = summarize(by_emp.get(e.employeeId, []))
        out.append({"employeeId": e.employeeId, "employeeName": e.name or "", "department": e.department or ""} | s)
    return {"startDate": start, "endDate": end, "department": department, "rows": out, "total": len(out)}


def report_leave_balances(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    year = clamp_int((data or {}).get("year"), default=local_today(cfg).year, min_v=1970, max_v=2100)
    employees = db.execute(
        select(Employee).where(Employee.tenantId == auth.tenantId).where(Employee.status == "active").order_by(Employee.name.asc())
    ).scalars()
    out = []
    for e in employees:
        b = compute_balance(db, auth.tenantId, e, year)
        out.append(
            {
                "employeeId": e.employeeId,
                "employeeName": e.name or "",
                "department": e.department or "",
                "vacationTotal": b["vacation"]["total"],
                "vacationUsed": b["vacation"]["used"],
                "vacationPending": b["vacation"]["pending"],
                "vacationAvailable": b["vacation"]["available"],
                "sickUsed": b["sick"]["used"],
                "otherUsed": b["other"]["used"],
            }
        )
    return {"year": year, "rows": out, "total": len(out)}


def report_headcount(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    tenant = Employee.tenantId == auth.tenantId
    q = (
        select(Employee.department, func.count(), func.avg(Employee.baseSalary))
        .where(tenant)
        .where(Employee.status == "active")
        .group_by(Employee.department)
        .order_by(Employee.department.asc())
    )
    rows = [{"department": d or "", "headcount": int(n), "averageSalary": round2(avg)} for d, n, avg in db.execute(q).all()]
    avg_all = db.execute(select(func.avg(Employee.baseSalary)).where(tenant).where(Employee.status == "active")).scalar_one()
    return {
        "rows": rows,
        "byStatus": _grouped(db, Employee.status, tenant),
        "byContractType": _grouped(db, Employee.contractType, tenant, Employee.status == "active"),
        "totalActive": sum(r["headcount"] for r in rows),
        "averageSalary": round2(avg_all),
    }


def report_payroll(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    period = validate_period((data or {}).get("period") or local_today(cfg).strftime("%Y-%m"))
    payrolls = db.execute(
        select(Payroll)
        .where(Payroll.tenantId == auth.tenantId)
        .where(Payroll.period == period)
        .where(Payroll.status != "cancelled")
        .order_by(Payroll.employeeName.asc())
    ).scalars().all()
    rows = [
        {
            "payrollId": p.payrollId,
            "employeeId": p.employeeId,
            "employeeName": p.employeeName or "",
            "status": p.status,
            "gross": round2(p.grossTotal),
            "nonRemuneratives": round2(p.nonRemunerativeTotal),
            "deductions": round2((p.deductions or 0) + (p.conceptsDeductions or 0)),
            "taxes": round2(p.taxes),
            "contributions": round2(p.contributions),
            "net": round2(p.netTotal),
        }
        for p in payrolls
    ]
    totals = {k: round2(sum(r[k] for r in rows)) for k in ("gross", "nonRemuneratives", "deductions", "taxes", "contributions", "net")}
    return {"period": period, "rows": rows, "totals": totals, "total": len(rows)}


def report_pipeline(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    status = get_str(data, "status")
    vq = select(Vacancy).where(Vacancy.tenantId == auth.tenantId)
    if status:
        vq = vq.where(Vacancy.status == status)
    vacancies = db.execute(vq.order_by(Vacancy.createdAt.desc())).scalars().all()

    counts: dict[str, dict[str, int]] = defaultdict(dict)
    for vacancy_id, stage, n in db.execute(
        select(Application.vacancyId, Application.status, func.count())
        .where(Application.tenantId == auth.tenantId)
        .group_by(Application.vacancyId, Application.status)
    ).all():
        counts[vacancy_id][stage] = int(n)

    rows = []
    for v in vacancies:
        per_stage = {key: counts[v.vacancyId].get(key, 0) for key, _, _ in PIPELINE_STAGES}
        rows.append({"vacancyId": v.vacancyId, "title": v.title or "", "status": v.status} | per_stage | {"total": sum(per_stage.values())})
    return {"rows": rows, "total": len(rows)}


# CSV exports: kind -> (action, columns).
CSV_REPORTS: dict[str, tuple[str, list[str]]] = {
    "attendance": (
        "REPORT_ATTENDANCE",
        ["employeeId", "employeeName", "department", "totalDays", "present", "late", "absent", "totalHours", "overtimeHours"],
    ),
    "leave-balances": (
        "REPORT_LEAVE_BALANCES",
        ["employeeId", "employeeName", "department", "vacationTotal", "vacationUsed", "vacationPending", "vacationAvailable", "sickUsed", "otherUsed"],
    ),
    "headcount": ("REPORT_HEADCOUNT", ["department", "headcount", "averageSalary"]),
    "payroll": (
        "REPORT_PAYROLL",
        ["payrollId", "employeeId", "employeeName", "status", "gross", "nonRemuneratives", "deductions", "taxes", "contributions", "net"],
    ),
    "pipeline": ("REPORT_PIPELINE", ["vacancyId", "title", "status"] + [key for key, _, _ in PIPELINE_STAGES] + ["total"]),
    "overtime": (
        "REPORT_OVERTIME",
        ["employeeId", "employeeName", "department", "daysWithOvertime", "overtimeHours", "averageOvertimePerDay", "totalHours"],
    ),
    "headcount-trend": ("REPORT_HEADCOUNT_TREND", ["period", "headcount", "hires", "terminations"]),
    "salary-distribution": ("REPORT_SALARY_DISTRIBUTION", ["group", "count", "average", "median", "min", "max", "total"]),
    "birthdays": ("REPORT_BIRTHDAYS", ["employeeId", "employeeName", "department", "birthday", "daysUntil", "turningAge"]),
}


def rows_to_csv(columns: list[str], rows: list[dict[str, Any]], *, max_rows: int) -> bytes:
    """UTF-8 with BOM so spreadsheet apps pick the right encoding."""
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for row in rows[: max(0, int(max_rows))]:
        writer.writerow(row)
    return out.getvalue().encode("utf-8-sig")
