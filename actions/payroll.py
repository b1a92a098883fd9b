from __future__ import annotations

import re
from typing import Any

from sqlalchemy import func, select

from actions.attendance import month_bounds
from actions.employees import get_employee
from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_dict,
    get_number,
    get_str,
    get_tenant_row,
    parse_bool,
    require_auth,
)
from actions.notifications import notify_from_template, users_for_employee
from models import Attendance, Payroll
from services.payroll_calc import auto_concepts, compute_derived, employer_contributions, normalize_concepts
from utils import ApiError, AuthContext, iso_utc_now, json_loads_list, new_uuid, round2


PAYROLL_TYPES = ["mensual", "final", "extraordinaria", "vacaciones"]
PAYROLL_STATUSES = ["pending", "approved", "paid", "cancelled"]
STATUS_ALIASES = {
    "borrador": "pending",
    "pendiente": "pending",
    "aprobado": "approved",
    "aprobada": "approved",
    "pagada": "paid",
    "pagado": "paid",
    "anulada": "cancelled",
    "anulado": "cancelled",
}
# Allowed moves for PAYROLL_STATUS_SET; any non-paid payroll may also be cancelled.
STATUS_TRANSITIONS = {"pending": {"approved"}, "approved": {"paid"}}
PAYROLL_SORT_FIELDS = {
    "createdAt": Payroll.createdAt,
    "updatedAt": Payroll.updatedAt,
    "period": Payroll.period,
    "net": Payroll.netTotal,
}
_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_NUMERIC_INPUTS = ["baseSalary", "bonuses", "overtimeHours", "overtimeRate", "deductions", "taxRate", "contributionsRate"]


def normalize_status(value: Any, *, default: str = "") -> str:
    s = str(value or "").strip()
    if not s:
        return default
    s = STATUS_ALIASES.get(s.lower(), s.lower())
    if s not in PAYROLL_STATUSES:
        raise ApiError("BAD_REQUEST", f"Invalid status: {value}. Allowed: {', '.join(PAYROLL_STATUSES)}")
    return s


def validate_period(value: Any) -> str:
    s = str(value or "").strip()
    if not _PERIOD_RE.match(s):
        raise ApiError("BAD_REQUEST", "Invalid period, expected YYYY-MM")
    return s


def _inputs_from(payload: dict[str, Any], current: dict[str, Any] | None = None) -> dict[str, Any]:
    out = dict(current or {})
    for key in _NUMERIC_INPUTS:
        if key in payload or key not in out:
            max_v = 100 if key in {"taxRate", "contributionsRate"} else None
            out[key] = get_number(payload, key, default=out.get(key, 0.0) or 0.0, min_v=0, max_v=max_v)
    if "concepts" in payload or "concepts" not in out:
        out["concepts"] = normalize_concepts(payload.get("concepts"))
    return out


def _apply_derived(p: Payroll, inputs: dict[str, Any]) -> dict[str, float]:
    d = compute_derived(**inputs)
    for key in _NUMERIC_INPUTS:
        setattr(p, key, float(inputs[key] or 0))
    p.conceptsJson = dumps(inputs["concepts"])
    p.overtimeAmount = d["overtimeAmount"]
    p.grossTotal = d["gross"]
    p.nonRemunerativeTotal = d["nonRemuneratives"]
    p.conceptsDeductions = d["conceptsDeductions"]
    p.taxes = d["taxes"]
    p.contributions = d["contributions"]
    p.netTotal = d["net"]
    return d


def _stored_inputs(p: Payroll) -> dict[str, Any]:
    return {key: float(getattr(p, key) or 0) for key in _NUMERIC_INPUTS} | {"concepts": json_loads_list(p.conceptsJson)}


def _push_history(p: Payroll, auth: AuthContext, action: str, *, from_status: str = "", to_status: str = "", at: str = "") -> None:
    history = json_loads_list(p.historyJson)
    history.append({"at": at or iso_utc_now(), "by": actor_id(auth), "action": action, "from": from_status, "to": to_status})
    p.historyJson = dumps(history)


def serialize_payroll(p: Payroll) -> dict[str, Any]:
    return {
        "payrollId": p.payrollId,
        "employeeId": p.employeeId,
        "employeeName": p.employeeName or "",
        "period": p.period,
        "type": p.type or "mensual",
        "status": p.status or "pending",
        "currency": p.currency or "ARS",
        "baseSalary": round2(p.baseSalary),
        "bonuses": round2(p.bonuses),
        "overtimeHours": round2(p.overtimeHours),
        "overtimeRate": round2(p.overtimeRate),
        "deductions": round2(p.deductions),
        "taxRate": round2(p.taxRate),
        "contributionsRate": round2(p.contributionsRate),
        "concepts": json_loads_list(p.conceptsJson),
        "notes": p.notes or "",
        "overtimeAmount": round2(p.overtimeAmount),
        "gross": round2(p.grossTotal),
        "nonRemuneratives": round2(p.nonRemunerativeTotal),
        "conceptsDeductions": round2(p.conceptsDeductions),
        "taxes": round2(p.taxes),
        "contributions": round2(p.contributions),
        "net": round2(p.netTotal),
        "approvedBy": p.approvedBy or "",
        "approvedAt": p.approvedAt or "",
        "paidAt": p.paidAt or "",
        "history": json_loads_list(p.historyJson),
        "createdAt": p.createdAt or "",
        "updatedAt": p.updatedAt or "",
    }


def payroll_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=20, min_v=1, max_v=100)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)
    sort_field = enum_value(payload.get("sortField"), PAYROLL_SORT_FIELDS.keys(), field="sortField", default="createdAt")
    sort_dir = enum_value(payload.get("sortDir"), ["asc", "desc"], field="sortDir", default="desc")

    base = select(Payroll).where(Payroll.tenantId == auth.tenantId)
    if get_str(payload, "period"):
        base = base.where(Payroll.period == validate_period(payload.get("period")))
    if get_str(payload, "employeeId"):
        base = base.where(Payroll.employeeId == get_str(payload, "employeeId"))
    status = normalize_status(payload.get("status"))
    if status:
        base = base.where(Payroll.status == status)
    q = get_str(payload, "q")
    if q:
        base = base.where(Payroll.employeeName.ilike(f"%{q}%"))

    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    col = PAYROLL_SORT_FIELDS[sort_field]
    rows = (
        db.execute(base.order_by(col.asc() if sort_dir == "asc" else col.desc(), Payroll.payrollId.asc()).offset(skip).limit(limit))
        .scalars()
        .all()
    )
    return {"items": [serialize_payroll(p) for p in rows], "total": total, "limit": limit, "skip": skip}


def _get_payroll(db, auth: AuthContext, payroll_id: Any) -> Payroll:
    return get_tenant_row(db, Payroll, "payrollId", payroll_id, auth.tenantId, message="Payroll not found")


def payroll_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"payroll": serialize_payroll(_get_payroll(db, auth, (data or {}).get("payrollId")))}


def payroll_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = dict(data or {})
    emp = get_employee(db, auth.tenantId, payload.get("employeeId"))
    period = validate_period(payload.get("period"))
    dup = db.execute(
        select(Payroll.payrollId)
        .where(Payroll.tenantId == auth.tenantId)
        .where(Payroll.employeeId == emp.employeeId)
        .where(Payroll.period == period)
    ).first()
    if dup:
        raise ApiError("CONFLICT", f"A payroll for {period} already exists for this employee")
    if payload.get("baseSalary") in (None, ""):
        payload["baseSalary"] = float(emp.baseSalary or 0)

    now = iso_utc_now()
    by = actor_id(auth)
    p = Payroll(
        payrollId=f"PAY-{new_uuid()}",
        tenantId=auth.tenantId,
        employeeId=emp.employeeId,
        employeeName=emp.name or "",
        period=period,
        type=enum_value(payload.get("type"), PAYROLL_TYPES, field="type", default="mensual"),
        status=normalize_status(payload.get("status"), default="pending"),
        currency=(get_str(payload, "currency", max_len=3) or "ARS").upper(),
        notes=get_str(payload, "notes", max_len=2000),
        approvedBy="",
        approvedAt="",
        paidAt="",
        historyJson="",
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )
    if p.status != "pending":
        raise ApiError("BAD_REQUEST", "A payroll is created as pending")
    _apply_derived(p, _inputs_from(payload))
    _push_history(p, auth, "created", to_status="pending", at=now)
    db.add(p)
    append_audit(db, entityType="PAYROLL", entityId=p.payrollId, action="PAYROLL_CREATE", toState=p.status, actor=auth, at=now, after=serialize_payroll(p))
    return {"payroll": serialize_payroll(p)}


def payroll_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    p = _get_payroll(db, auth, payload.get("payrollId"))
    if p.status != "pending":
        raise ApiError("BAD_REQUEST", "Only pending payrolls can be edited")
    before = serialize_payroll(p)

    if "type" in payload:
        p.type = enum_value(payload.get("type"), PAYROLL_TYPES, field="type", default=p.type)
    if "currency" in payload:
        p.currency = (get_str(payload, "currency", max_len=3) or "ARS").upper()
    if "notes" in payload:
        p.notes = get_str(payload, "notes", max_len=2000)
    if "period" in payload:
        period = validate_period(payload.get("period"))
        if period != p.period:
            clash = db.execute(
                select(Payroll.payrollId)
                .where(Payroll.tenantId == auth.tenantId)
                .where(Payroll.employeeId == p.employeeId)
                .where(Payroll.period == period)
            ).first()
            if clash:
                raise ApiError("CONFLICT", f"A payroll for {period} already exists for this employee")
            p.period = period
    _apply_derived(p, _inputs_from(payload, _stored_inputs(p)))

    now = iso_utc_now()
    p.updatedAt = now
    p.updatedBy = actor_id(auth)
    _push_history(p, auth, "updated", at=now)
    after = serialize_payroll(p)
    append_audit(db, entityType="PAYROLL", entityId=p.payrollId, action="PAYROLL_UPDATE", actor=auth, at=now, before=before, after=after)
    return {"payroll": after}


def _set_status(db, auth: AuthContext, p: Payroll, to_status: str) -> None:
    from_status = p.status or "pending"
    if to_status == from_status:
        raise ApiError("BAD_REQUEST", f"Payroll is already {from_status}")
    if to_status == "cancelled":
        if from_status == "paid":
            raise ApiError("BAD_REQUEST", "A paid payroll cannot be cancelled")
    elif to_status not in STATUS_TRANSITIONS.get(from_status, set()):
        raise ApiError("BAD_REQUEST", f"Invalid status transition: {from_status} -> {to_status}")

    now = iso_utc_now()
    p.status = to_status
    if to_status == "approved":
        p.approvedBy = actor_id(auth)
        p.approvedAt = now
    if to_status == "paid":
        p.paidAt = now
    p.updatedAt = now
    p.updatedBy = actor_id(auth)
    _push_history(p, auth, "status", from_status=from_status, to_status=to_status, at=now)

    if to_status == "approved":
        notify_from_template(
            db,
            tenant_id=auth.tenantId,
            user_ids=users_for_employee(db, auth.tenantId, p.employeeId),
            template="PAYROLL_APPROVED",
            variables={"period": p.period, "net": f"{round2(p.netTotal):.2f}", "currency": p.currency or "ARS"},
            action_url=f"/payroll/{p.payrollId}",
            data={"payrollId": p.payrollId},
            created_by=actor_id(auth),
        )
    append_audit(
        db, entityType="PAYROLL", entityId=p.payrollId, action="PAYROLL_STATUS_SET", fromState=from_status, toState=to_status, actor=auth, at=now
    )


def payroll_approve(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    p = _get_payroll(db, auth, (data or {}).get("payrollId"))
    _set_status(db, auth, p, "approved")
    return {"payroll": serialize_payroll(p)}


def payroll_status_set(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    p = _get_payroll(db, auth, (data or {}).get("payrollId"))
    to_status = normalize_status((data or {}).get("status"))
    if not to_status:
        raise ApiError("BAD_REQUEST", "Missing status")
    _set_status(db, auth, p, to_status)
    return {"payroll": serialize_payroll(p)}


def payroll_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    p = _get_payroll(db, auth, (data or {}).get("payrollId"))
    if p.status == "paid":
        raise ApiError("BAD_REQUEST", "A paid payroll cannot be deleted")
    db.delete(p)
    append_audit(db, entityType="PAYROLL", entityId=p.payrollId, action="PAYROLL_DELETE", fromState=p.status, actor=auth, before=serialize_payroll(p))
    return {"ok": True, "payrollId": p.payrollId}


def payroll_calculate(data, auth: AuthContext | None, db, cfg):
    require_auth(auth)
    inputs = _inputs_from(data or {})
    return {"inputs": inputs, "derived": compute_derived(**inputs)}


def payroll_auto_concepts(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    emp = get_employee(db, auth.tenantId, payload.get("employeeId"))
    period = validate_period(payload.get("period"))
    first, last = month_bounds(period)
    base = get_number(payload, "baseSalary", default=float(emp.baseSalary or 0), min_v=0) or 0.0
    options = get_dict(payload, "options")

    rows = db.execute(
        select(Attendance.status, Attendance.hoursWorked, Attendance.overtimeHours)
        .where(Attendance.tenantId == auth.tenantId)
        .where(Attendance.employeeId == emp.employeeId)
        .where(Attendance.date >= first)
        .where(Attendance.date <= last)
    ).all()
    result = auto_concepts(
        base,
        [{"status": s, "hoursWorked": h, "overtimeHours": o} for s, h, o in rows],
        overtime_multiplier=get_number(options, "overtimeRate", default=float(cfg.OVERTIME_MULTIPLIER), min_v=1, max_v=5) or 1.5,
        absence_rate=get_number(options, "absenceDeductionRate", default=1.0, min_v=0, max_v=5) or 0.0,
        include_overtime=parse_bool(options.get("includeOvertime"), default=True),
        include_presenteeism=parse_bool(options.get("includePresenteeism"), default=True),
        include_absences=parse_bool(options.get("includeAbsenceDeductions"), default=True),
    )
    # Same items in the shape PAYROLL_CREATE accepts as `concepts`.
    payroll_concepts = [
        {"id": c["code"], "name": c["label"], "type": c["type"], "mode": "monto", "value": c["amount"]} for c in result["concepts"]
    ] + [{"id": d["code"], "name": d["label"], "type": "deduccion", "mode": "monto", "value": d["amount"]} for d in result["deductions"]]
    return {
        "employeeId": emp.employeeId,
        "period": period,
        "baseSalary": round2(base),
        **result,
        "payrollConcepts": payroll_concepts,
    }


def payroll_employer_contributions(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    emp = get_employee(db, auth.tenantId, payload.get("employeeId"))
    period = validate_period(payload.get("period")) if get_str(payload, "period") else ""
    base = get_number(payload, "baseSalary", default=float(emp.baseSalary or 0), min_v=0) or 0.0
    return {"employeeId": emp.employeeId, "period": period, "baseSalary": round2(base), **employer_contributions(base)}
