from __future__ import annotations

from datetime import date
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_, select

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_date,
    get_dict,
    get_list,
    get_number,
    get_str,
    get_tenant_row,
    local_today,
    next_prefixed_id,
    parse_bool,
    require_auth,
    require_str,
)
from actions.tenants import enforce_limit, validate_email
from models import Employee
from utils import ApiError, AuthContext, iso_utc_now, json_loads_dict, json_loads_list, parse_date_maybe, round2, today_iso


GENDERS = ["M", "F", "X", "other"]
CONTRACT_TYPES = ["fulltime", "parttime", "contract", "temporary", "intern"]
EMPLOYEE_STATUSES = ["active", "on_leave", "suspended", "terminated"]
MAX_IMPORT_ROWS = 500

# Plain string fields accepted on create/update, with their max length.
_TEXT_FIELDS = {
    "phone": 50,
    "maritalStatus": 50,
    "nationality": 100,
    "department": 100,
    "healthInsurance": 200,
    "taxId": 50,
    "notes": 5000,
}


def years_between(start: date | None, end: date) -> int | None:
    if not start:
        return None
    return max(0, relativedelta(end, start).years)


def serialize_employee(e: Employee, *, today: date | None = None) -> dict[str, Any]:
    ref = today or date.today()
    hire = parse_date_maybe(e.hireDate)
    born = parse_date_maybe(e.dateOfBirth)
    return {
        "employeeId": e.employeeId,
        "name": e.name or "",
        "email": e.email or "",
        "role": e.role or "",
        "phone": e.phone or "",
        "dni": e.dni or "",
        "cuil": e.cuil or "",
        "dateOfBirth": e.dateOfBirth or "",
        "gender": e.gender or "",
        "maritalStatus": e.maritalStatus or "",
        "nationality": e.nationality or "",
        "address": json_loads_dict(e.addressJson),
        "emergencyContact": json_loads_dict(e.emergencyContactJson),
        "department": e.department or "",
        "managerId": e.managerId or "",
        "hireDate": e.hireDate or "",
        "endDate": e.endDate or "",
        "baseSalary": round2(e.baseSalary),
        "monthlyHours": float(e.monthlyHours or 160),
        "contractType": e.contractType or "",
        "status": e.status or "active",
        "bankInfo": json_loads_dict(e.bankInfoJson),
        "healthInsurance": e.healthInsurance or "",
        "taxId": e.taxId or "",
        "skills": json_loads_list(e.skillsJson),
        "certifications": json_loads_list(e.certificationsJson),
        "jobHistory": json_loads_list(e.jobHistoryJson),
        "notes": e.notes or "",
        "yearsOfService": years_between(hire, ref) or 0,
        "age": years_between(born, ref),
        "createdAt": e.createdAt or "",
        "updatedAt": e.updatedAt or "",
    }


def _assert_unique_ids(db, tenant_id: str, *, dni: str, cuil: str, exclude_id: str = "") -> None:
    for field, value in (("dni", dni), ("cuil", cuil)):
        if not value:
            continue
        q = select(Employee.employeeId).where(Employee.tenantId == tenant_id).where(getattr(Employee, field) == value)
        if exclude_id:
            q = q.where(Employee.employeeId != exclude_id)
        if db.execute(q).first():
            raise ApiError("CONFLICT", f"An employee with this {field.upper()} already exists")


def _assert_manager(db, tenant_id: str, manager_id: str, employee_id: str = "") -> None:
    if not manager_id:
        return
    if manager_id == employee_id:
        raise ApiError("BAD_REQUEST", "An employee cannot be their own manager")
    found = db.execute(
        select(Employee.employeeId).where(Employee.employeeId == manager_id).where(Employee.tenantId == tenant_id)
    ).first()
    if not found:
        raise ApiError("BAD_REQUEST", f"Manager not found: {manager_id}")


def _apply_fields(db, e: Employee, payload: dict[str, Any], *, creating: bool) -> None:
    if creating or "name" in payload:
        e.name = require_str(payload, "name", min_len=2, max_len=200)
    if creating or "role" in payload:
        e.role = require_str(payload, "role", min_len=2, max_len=200, label="role (position)")
    if "email" in payload:
        e.email = validate_email(payload.get("email")) if get_str(payload, "email") else ""
    for key, max_len in _TEXT_FIELDS.items():
        if key in payload:
            setattr(e, key, get_str(payload, key, max_len=max_len))
    if "dni" in payload:
        e.dni = get_str(payload, "dni", max_len=20)
    if "cuil" in payload:
        e.cuil = get_str(payload, "cuil", max_len=20)
    if "gender" in payload:
        e.gender = enum_value(payload.get("gender"), GENDERS, field="gender", default="")
    if "dateOfBirth" in payload:
        e.dateOfBirth = get_date(payload, "dateOfBirth")
    if "hireDate" in payload:
        e.hireDate = get_date(payload, "hireDate")
    if "endDate" in payload:
        e.endDate = get_date(payload, "endDate")
    if "managerId" in payload:
        e.managerId = get_str(payload, "managerId")
    if creating or "baseSalary" in payload:
        e.baseSalary = get_number(payload, "baseSalary", default=0.0 if creating else e.baseSalary, min_v=0)
    if creating or "monthlyHours" in payload:
        hours = get_number(payload, "monthlyHours", default=160.0 if creating else e.monthlyHours, max_v=744)
        if hours is None or hours <= 0:
            raise ApiError("BAD_REQUEST", "monthlyHours must be > 0")
        e.monthlyHours = hours
    if "contractType" in payload:
        e.contractType = enum_value(payload.get("contractType"), CONTRACT_TYPES, field="contractType", default="")
    if creating or "status" in payload:
        e.status = enum_value(payload.get("status"), EMPLOYEE_STATUSES, field="status", default=e.status or "active")
    if "address" in payload:
        e.addressJson = dumps(get_dict(payload, "address"))
    if "emergencyContact" in payload:
        e.emergencyContactJson = dumps(get_dict(payload, "emergencyContact"))
    if "bankInfo" in payload:
        e.bankInfoJson = dumps(get_dict(payload, "bankInfo"))
    if "skills" in payload:
        e.skillsJson = dumps([str(s).strip() for s in get_list(payload, "skills") if str(s).strip()])
    if "certifications" in payload:
        e.certificationsJson = dumps(get_list(payload, "certifications"))

    if e.hireDate and e.endDate and e.endDate < e.hireDate:
        raise ApiError("BAD_REQUEST", "endDate must be on or after hireDate")


def _blank_employee(tenant_id: str, by: str, now: str) -> Employee:
    return Employee(
        tenantId=tenant_id,
        status="active",
        monthlyHours=160,
        baseSalary=0,
        addressJson="",
        emergencyContactJson="",
        bankInfoJson="",
        skillsJson="",
        certificationsJson="",
        jobHistoryJson="",
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )


def _build_employee(db, tenant_id: str, payload: dict[str, Any], *, by: str, now: str, allocate_id: bool = True) -> Employee:
    e = _blank_employee(tenant_id, by, now)
    _apply_fields(db, e, payload, creating=True)
    _assert_unique_ids(db, tenant_id, dni=e.dni or "", cuil=e.cuil or "")
    _assert_manager(db, tenant_id, e.managerId or "")
    if allocate_id:
        e.employeeId = next_prefixed_id(db, counter_key="EMP", prefix="EMP-", pad=6)
    e.jobHistoryJson = dumps(
        [{"date": e.hireDate or now[:10], "role": e.role, "salary": round2(e.baseSalary), "reason": "hire"}]
    )
    return e


def get_employee(db, tenant_id: str, employee_id: Any) -> Employee:
    return get_tenant_row(db, Employee, "employeeId", employee_id, tenant_id, message="Employee not found")


def _filtered_employees(tenant_id: str, payload: dict[str, Any]):
    search = get_str(payload, "search") or get_str(payload, "q")
    department = get_str(payload, "department")
    status = enum_value(payload.get("status"), EMPLOYEE_STATUSES, field="status", default="")

    base = select(Employee).where(Employee.tenantId == tenant_id)
    if search:
        like = f"%{search}%"
        base = base.where(
            or_(Employee.name.ilike(like), Employee.email.ilike(like), Employee.role.ilike(like), Employee.department.ilike(like))
        )
    if department:
        base = base.where(Employee.department == department)
    if status:
        base = base.where(Employee.status == status)
    return base


def employee_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=50, min_v=1, max_v=100)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)

    base = _filtered_employees(auth.tenantId, payload)
    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    rows = db.execute(base.order_by(Employee.createdAt.desc(), Employee.employeeId.desc()).offset(skip).limit(limit)).scalars().all()
    today = local_today(cfg)
    return {"items": [serialize_employee(e, today=today) for e in rows], "total": total, "limit": limit, "skip": skip}


EXPORT_COLUMNS = [
    "employeeId",
    "name",
    "email",
    "role",
    "department",
    "managerId",
    "dni",
    "cuil",
    "phone",
    "hireDate",
    "contractType",
    "status",
    "baseSalary",
    "monthlyHours",
    "yearsOfService",
]


def employee_export(data, auth: AuthContext | None, db, cfg):
    """Flat rows for the CSV download; same filters as EMPLOYEE_LIST, no paging."""
    auth = require_auth(auth)
    base = _filtered_employees(auth.tenantId, data or {})
    today = local_today(cfg)
    rows = []
    for e in db.execute(base.order_by(Employee.name.asc(), Employee.employeeId.asc()).limit(cfg.MAX_EXPORT_ROWS + 1)).scalars():
        full = serialize_employee(e, today=today)
        rows.append({k: full[k] for k in EXPORT_COLUMNS})
    return {"rows": rows, "total": len(rows)}


def employee_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"employee": serialize_employee(get_employee(db, auth.tenantId, (data or {}).get("employeeId")))}


def employee_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    enforce_limit(db, auth.tenantId, "employees")
    e = _build_employee(db, auth.tenantId, data or {}, by=actor_id(auth), now=iso_utc_now())
    db.add(e)
    out = serialize_employee(e)
    append_audit(db, entityType="EMPLOYEE", entityId=e.employeeId, action="EMPLOYEE_CREATE", toState=e.status, actor=auth, after=out)
    return {"employee": out}


def employee_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    e = get_employee(db, auth.tenantId, payload.get("employeeId"))
    before = serialize_employee(e)

    _apply_fields(db, e, payload, creating=False)
    _assert_unique_ids(db, auth.tenantId, dni=e.dni or "", cuil=e.cuil or "", exclude_id=e.employeeId)
    _assert_manager(db, auth.tenantId, e.managerId or "", e.employeeId)

    salary_changed = round2(e.baseSalary) != before["baseSalary"]
    role_changed = (e.role or "") != before["role"]
    if salary_changed or role_changed:
        history = json_loads_list(e.jobHistoryJson)
        history.append(
            {
                "date": get_date(payload, "effectiveDate") or today_iso(),
                "role": e.role,
                "previousRole": before["role"],
                "salary": round2(e.baseSalary),
                "previousSalary": before["baseSalary"],
                "reason": get_str(payload, "changeReason", max_len=500) or ("promotion" if role_changed else "salary_update"),
                "by": actor_id(auth),
            }
        )
        e.jobHistoryJson = dumps(history)

    e.updatedAt = iso_utc_now()
    e.updatedBy = actor_id(auth)
    after = serialize_employee(e)
    append_audit(
        db,
        entityType="EMPLOYEE",
        entityId=e.employeeId,
        action="EMPLOYEE_UPDATE",
        fromState=before["status"],
        toState=after["status"],
        actor=auth,
        before=before,
        after=after,
    )
    return {"employee": after}


def employee_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    e = get_employee(db, auth.tenantId, (data or {}).get("employeeId"))
    reports = db.execute(
        select(func.count()).select_from(Employee).where(Employee.tenantId == auth.tenantId).where(Employee.managerId == e.employeeId)
    ).scalar_one()
    if reports:
        raise ApiError("CONFLICT", f"Employee is the manager of {int(reports)} employee(s)")
    db.delete(e)
    append_audit(db, entityType="EMPLOYEE", entityId=e.employeeId, action="EMPLOYEE_DELETE", fromState=e.status, actor=auth, before=serialize_employee(e))
    return {"ok": True, "employeeId": e.employeeId}


def employee_import(data, auth: AuthContext | None, db, cfg):
    """Bulk create employees. Bad rows are reported, good rows are created.

    `dryRun` validates without writing; `updateExisting` updates a row whose
    email matches an existing employee instead of reporting it.
    """
    auth = require_auth(auth)
    rows = get_list(data, "rows")
    if not rows:
        raise ApiError("BAD_REQUEST", "rows must be a non-empty array")
    if len(rows) > MAX_IMPORT_ROWS:
        raise ApiError("BAD_REQUEST", f"Max {MAX_IMPORT_ROWS} rows per import")
    dry_run = parse_bool((data or {}).get("dryRun"))
    update_existing = parse_bool((data or {}).get("updateExisting"))

    by = actor_id(auth)
    now = iso_utc_now()
    by_email = {
        str(e.email or "").lower(): e
        for e in db.execute(select(Employee).where(Employee.tenantId == auth.tenantId).where(Employee.email != "")).scalars().all()
    }
    seen_dni: set[str] = set()
    seen_cuil: set[str] = set()
    to_create: list[Employee] = []
    updated = 0
    errors: list[dict[str, Any]] = []

    for idx, raw in enumerate(rows, start=1):
        try:
            if not isinstance(raw, dict):
                raise ApiError("BAD_REQUEST", "Row must be an object")
            email = str(raw.get("email") or "").strip().lower()
            existing = by_email.get(email) if email else None
            if existing is not None:
                if not update_existing:
                    raise ApiError("CONFLICT", f"An employee with email {email} already exists")
                merged = _blank_employee(auth.tenantId, by, now)
                _apply_fields(db, merged, {**serialize_employee(existing), **raw}, creating=True)
                _assert_unique_ids(db, auth.tenantId, dni=merged.dni or "", cuil=merged.cuil or "", exclude_id=existing.employeeId)
                if not dry_run:
                    _apply_fields(db, existing, raw, creating=False)
                    existing.updatedAt = now
                    existing.updatedBy = by
                updated += 1
                continue

            dni = str(raw.get("dni") or "").strip()
            cuil = str(raw.get("cuil") or "").strip()
            if dni and dni in seen_dni:
                raise ApiError("CONFLICT", "Duplicate DNI in import")
            if cuil and cuil in seen_cuil:
                raise ApiError("CONFLICT", "Duplicate CUIL in import")
            e = _build_employee(db, auth.tenantId, raw, by=by, now=now, allocate_id=not dry_run)
            seen_dni.add(dni)
            seen_cuil.add(cuil)
            if email:
                by_email[email] = e
            to_create.append(e)
        except ApiError as ex:
            errors.append({"row": idx, "message": ex.message})

    if to_create and not dry_run:
        enforce_limit(db, auth.tenantId, "employees", adding=len(to_create))
        db.add_all(to_create)

    append_audit(
        db,
        entityType="EMPLOYEE",
        entityId="IMPORT",
        action="EMPLOYEE_IMPORT",
        actor=auth,
        at=now,
        meta={"rows": len(rows), "created": len(to_create), "updated": updated, "failed": len(errors), "dryRun": dry_run},
    )
    return {
        "created": len(to_create),
        "updated": updated,
        "employeeIds": [] if dry_run else [e.employeeId for e in to_create],
        "errors": errors,
        "dryRun": dry_run,
    }
