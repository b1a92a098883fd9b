from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from actions.helpers import actor_id, append_audit, get_list, get_str, parse_bool, require_auth, require_str
from auth import (
    BUILTIN_ROLES,
    PUBLIC_ACTIONS,
    STATIC_RBAC_PERMISSIONS,
    invalidate_rbac_cache,
    is_builtin_role,
    is_valid_permission_pattern,
    known_action_keys,
    permissions_for_role,
)
from models import Permission, Role, User
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_roles_csv


def _clean_permissions(raw: list[Any]) -> list[str]:
    out: list[str] = []
    for p in raw:
        key = str(p or "").strip().upper()
        if not key:
            continue
        if key in PUBLIC_ACTIONS or not is_valid_permission_pattern(key):
            raise ApiError("BAD_REQUEST", f"Invalid permission: {key}")
        if key not in out:
            out.append(key)
    if not out:
        raise ApiError("BAD_REQUEST", "A role needs at least one permission")
    return out


def _serialize_role(r: Role, *, users: int = 0) -> dict[str, Any]:
    return {
        "roleId": r.roleId,
        "roleCode": r.roleCode,
        "roleName": r.roleName or r.roleCode,
        "description": r.description or "",
        "permissions": [p for p in str(r.permissionsCsv or "").split(",") if p],
        "status": str(r.status or "ACTIVE").upper(),
        "isBuiltin": False,
        "userCount": users,
        "createdAt": r.createdAt or "",
        "updatedAt": r.updatedAt or "",
    }


def _get_custom_role(db, tenant_id: str, role_id: str) -> Role:
    if not role_id:
        raise ApiError("BAD_REQUEST", "Missing roleId")
    row = db.execute(select(Role).where(Role.roleId == role_id).where(Role.tenantId == tenant_id)).scalar_one_or_none()
    if not row:
        raise ApiError("NOT_FOUND", "Role not found")
    return row


def _user_counts(db, tenant_id: str) -> dict[str, int]:
    rows = db.execute(select(User.role, func.count()).where(User.tenantId == tenant_id).group_by(User.role)).all()
    return {normalize_role(r): int(n or 0) for r, n in rows}


def roles_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    counts = _user_counts(db, auth.tenantId)
    builtin = [
        {
            "roleCode": code,
            "roleName": code.title(),
            "description": desc,
            "permissions": permissions_for_role(db, code, auth.tenantId)["actionKeys"],
            "status": "ACTIVE",
            "isBuiltin": True,
            "userCount": counts.get(code, 0),
        }
        for code, desc in BUILTIN_ROLES.items()
    ]
    custom = [
        _serialize_role(r, users=counts.get(normalize_role(r.roleCode), 0))
        for r in db.execute(select(Role).where(Role.tenantId == auth.tenantId).order_by(Role.roleCode)).scalars().all()
    ]
    return {"builtin": builtin, "custom": custom}


def role_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    name = require_str(data, "name", min_len=2, max_len=50)
    code = normalize_role(get_str(data, "roleCode") or name)
    if is_builtin_role(code) or code == "PUBLIC":
        raise ApiError("BAD_REQUEST", f"{code} is a reserved role name")
    permissions = _clean_permissions(get_list(data, "permissions"))

    exists = db.execute(select(Role.roleId).where(Role.tenantId == auth.tenantId).where(Role.roleCode == code)).first()
    if exists:
        raise ApiError("CONFLICT", f"Role already exists: {code}")

    now = iso_utc_now()
    row = Role(
        roleId=f"ROLE-{new_uuid()}",
        tenantId=auth.tenantId,
        roleCode=code,
        roleName=name,
        description=get_str(data, "description", max_len=500),
        permissionsCsv=",".join(permissions),
        status="ACTIVE",
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    db.add(row)
    invalidate_rbac_cache(auth.tenantId)
    append_audit(db, entityType="ROLE", entityId=row.roleId, action="ROLE_CREATE", actor=auth, after=_serialize_role(row))
    return {"role": _serialize_role(row)}


def role_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    row = _get_custom_role(db, auth.tenantId, get_str(data, "roleId"))
    before = _serialize_role(row)
    payload = data or {}

    if "name" in payload:
        row.roleName = require_str(payload, "name", min_len=2, max_len=50)
    if "description" in payload:
        row.description = get_str(payload, "description", max_len=500)
    if "permissions" in payload:
        row.permissionsCsv = ",".join(_clean_permissions(get_list(payload, "permissions")))
    if "status" in payload:
        status = str(payload.get("status") or "").strip().upper()
        if status not in {"ACTIVE", "INACTIVE"}:
            raise ApiError("BAD_REQUEST", f"Invalid status: {status}")
        row.status = status

    row.updatedAt = iso_utc_now()
    row.updatedBy = actor_id(auth)
    invalidate_rbac_cache(auth.tenantId)
    after = _serialize_role(row)
    append_audit(db, entityType="ROLE", entityId=row.roleId, action="ROLE_UPDATE", actor=auth, before=before, after=after)
    return {"role": after}


def role_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    row = _get_custom_role(db, auth.tenantId, get_str(data, "roleId"))
    in_use = _user_counts(db, auth.tenantId).get(normalize_role(row.roleCode), 0)
    if in_use:
        raise ApiError("CONFLICT", f"Role is assigned to {in_use} user(s)")
    db.delete(row)
    invalidate_rbac_cache(auth.tenantId)
    append_audit(db, entityType="ROLE", entityId=row.roleId, action="ROLE_DELETE", actor=auth, before=_serialize_role(row))
    return {"ok": True, "roleId": row.roleId}


def permissions_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    overrides = db.execute(select(Permission).where(Permission.tenantId == auth.tenantId)).scalars().all()
    return {
        "actions": [
            {"action": a, "defaultRoles": list(STATIC_RBAC_PERMISSIONS.get(a) or [])}
            for a in known_action_keys()
            if a not in PUBLIC_ACTIONS
        ],
        "overrides": [
            {
                "permType": p.permType,
                "permKey": p.permKey,
                "rolesCsv": p.rolesCsv or "",
                "enabled": bool(p.enabled),
                "updatedAt": p.updatedAt or "",
                "updatedBy": p.updatedBy or "",
            }
            for p in overrides
        ],
    }


def permissions_upsert(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    items = get_list(data, "items")
    if not items:
        raise ApiError("BAD_REQUEST", "items must be a non-empty array")
    if len(items) > 500:
        raise ApiError("BAD_REQUEST", "Max 500 items per batch")

    now = iso_utc_now()
    existing = {
        (p.permType, p.permKey): p
        for p in db.execute(select(Permission).where(Permission.tenantId == auth.tenantId)).scalars().all()
    }
    upserted = 0
    for it in items:
        if not isinstance(it, dict):
            raise ApiError("BAD_REQUEST", "Each item must be an object")
        perm_type = str(it.get("permType") or "ACTION").strip().upper()
        perm_key = str(it.get("permKey") or "").strip().upper()
        if perm_type not in {"ACTION", "UI"}:
            raise ApiError("BAD_REQUEST", f"Invalid permType: {perm_type}")
        if not perm_key:
            raise ApiError("BAD_REQUEST", "permKey is required")
        if perm_type == "ACTION" and (perm_key not in STATIC_RBAC_PERMISSIONS or perm_key in PUBLIC_ACTIONS):
            raise ApiError("BAD_REQUEST", f"Unknown action: {perm_key}")
        roles_csv = ",".join(parse_roles_csv(str(it.get("rolesCsv") or "")))
        enabled = parse_bool(it.get("enabled"), default=True)

        row = existing.get((perm_type, perm_key))
        if not row:
            row = Permission(tenantId=auth.tenantId, permType=perm_type, permKey=perm_key)
            db.add(row)
            existing[(perm_type, perm_key)] = row
        row.rolesCsv = roles_csv
        row.enabled = enabled
        row.updatedAt = now
        row.updatedBy = actor_id(auth)
        upserted += 1

    invalidate_rbac_cache(auth.tenantId)
    append_audit(db, entityType="PERMISSION", entityId="BATCH", action="PERMISSIONS_UPSERT", actor=auth, meta={"upserted": upserted})
    return {"upserted": upserted}
