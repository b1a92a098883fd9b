from __future__ import annotations

from typing import Any

from sqlalchemy import select

from actions.helpers import actor_id, append_audit, get_list, get_str, require_auth
from actions.tenants import enforce_limit, validate_email
from auth import invalidate_rbac_cache, is_role_active, revoke_user_sessions
from models import Employee, User
from passwords import hash_password
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role


USER_STATUSES = {"ACTIVE", "DISABLED"}


def _serialize_user(u: User) -> dict[str, Any]:
    return {
        "userId": u.userId,
        "email": u.email or "",
        "fullName": u.fullName or "",
        "role": normalize_role(u.role),
        "status": str(u.status or "ACTIVE").upper(),
        "employeeId": u.employeeId or "",
        "hasPassword": bool(u.passwordHash),
        "lastLoginAt": u.lastLoginAt or "",
        "createdAt": u.createdAt or "",
        "updatedAt": u.updatedAt or "",
    }


def users_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    q = get_str(data, "q").lower()
    role = normalize_role((data or {}).get("role"))

    stmt = select(User).where(User.tenantId == auth.tenantId)
    if role:
        stmt = stmt.where(User.role == role)
    rows = db.execute(stmt.order_by(User.createdAt.asc())).scalars().all()
    items = [_serialize_user(u) for u in rows]
    if q:
        items = [it for it in items if q in f"{it['email']} {it['fullName']}".lower()]
    return {"items": items, "total": len(items)}


def users_upsert(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    items = get_list(data, "items")
    if not items:
        raise ApiError("BAD_REQUEST", "items must be a non-empty array")
    if len(items) > 100:
        raise ApiError("BAD_REQUEST", "Max 100 items per batch")

    now = iso_utc_now()
    by = actor_id(auth)
    existing = {u.userId: u for u in db.execute(select(User).where(User.tenantId == auth.tenantId)).scalars().all()}
    existing_by_email = {str(u.email or "").lower(): u for u in existing.values()}

    created = 0
    updated = 0
    out: list[dict[str, Any]] = []

    for it in items:
        if not isinstance(it, dict):
            raise ApiError("BAD_REQUEST", "Each item must be an object")
        user_id = str(it.get("userId") or "").strip()
        email = validate_email(it.get("email"))
        full_name = str(it.get("fullName") or "").strip()
        role = normalize_role(it.get("role") or "EMPLOYEE")
        status = str(it.get("status") or "ACTIVE").strip().upper()
        employee_id = str(it.get("employeeId") or "").strip()
        password = str(it.get("password") or "")

        if status not in USER_STATUSES:
            raise ApiError("BAD_REQUEST", f"Invalid status: {status}")
        if not is_role_active(db, role, auth.tenantId):
            raise ApiError("BAD_REQUEST", f"Unknown or inactive role: {role}")
        if employee_id:
            emp = db.execute(
                select(Employee.employeeId).where(Employee.employeeId == employee_id).where(Employee.tenantId == auth.tenantId)
            ).first()
            if not emp:
                raise ApiError("NOT_FOUND", f"Employee not found: {employee_id}")

        row = existing.get(user_id) if user_id else existing_by_email.get(email)
        if user_id and not row:
            raise ApiError("NOT_FOUND", f"User not found: {user_id}")

        clash = db.execute(select(User.userId).where(User.email == email)).scalar_one_or_none()
        if clash and (not row or clash != row.userId):
            raise ApiError("CONFLICT", f"Email already registered: {email}")

        if not row:
            enforce_limit(db, auth.tenantId, "users")
            row = User(
                userId=f"USR-{new_uuid()}",
                tenantId=auth.tenantId,
                email=email,
                fullName=full_name,
                role=role,
                status=status,
                passwordHash=hash_password(password) if password else "",
                employeeId=employee_id,
                authVersion=0,
                lastLoginAt="",
                createdAt=now,
                createdBy=by,
                updatedAt=now,
                updatedBy=by,
            )
            db.add(row)
            db.flush()
            existing[row.userId] = row
            existing_by_email[email] = row
            created += 1
        else:
            if row.userId == auth.userId and (role != "ADMIN" or status != "ACTIVE"):
                raise ApiError("BAD_REQUEST", "You cannot demote or disable your own account")
            access_changed = normalize_role(row.role) != role or str(row.status or "").upper() != status
            row.email = email
            row.fullName = full_name or row.fullName
            row.role = role
            row.status = status
            row.employeeId = employee_id
            if password:
                row.passwordHash = hash_password(password)
            if access_changed:
                row.authVersion = int(row.authVersion or 0) + 1
                revoke_user_sessions(db, user_id=row.userId, revoked_by=by)
            row.updatedAt = now
            row.updatedBy = by
            updated += 1
        out.append(_serialize_user(row))

    invalidate_rbac_cache(auth.tenantId)
    append_audit(
        db,
        entityType="USER",
        entityId="BATCH",
        action="USERS_UPSERT",
        actor=auth,
        at=now,
        meta={"created": created, "updated": updated},
    )
    return {"items": out, "created": created, "updated": updated}
