from __future__ import annotations

import re
import unicodedata
from typing import Any

from sqlalchemy import func, select

from actions.applications import seed_pipeline_stages
from actions.helpers import (
    actor_id,
    append_audit,
    dumps,
    enum_value,
    get_dict,
    get_str,
    require_auth,
    require_str,
)
from auth import issue_session_token
from cache_layer import cache_invalidate_tenant
from models import Employee, Tenant, User
from passwords import hash_password
from utils import ApiError, AuthContext, iso_utc_now, json_loads_dict, new_uuid


TENANT_STATUSES = ["active", "inactive", "suspended"]
TENANT_PLANS = ["free", "basic", "professional", "enterprise"]

DEFAULT_LIMITS = {"maxUsers": 5, "maxEmployees": 50}
LIMIT_CAPS = {"maxUsers": 1000, "maxEmployees": 10000}

DEFAULT_FEATURES = ["recruitment", "employees", "attendance", "leave", "payroll", "evaluations", "reports"]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(value: Any, *, field: str = "email") -> str:
    e = str(value or "").strip().lower()
    if not e:
        raise ApiError("BAD_REQUEST", f"Missing {field}")
    if len(e) > 254 or not _EMAIL_RE.match(e):
        raise ApiError("BAD_REQUEST", f"Invalid {field}")
    return e


def slugify(name: str) -> str:
    s = unicodedata.normalize("NFKD", str(name or "")).encode("ascii", "ignore").decode("ascii")
    s = s.lower().strip()
    s = re.sub(r"[^a-z0-9\s-]", "", s)
    s = re.sub(r"[\s_]+", "-", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    return s or "company"


def unique_slug(db, name: str) -> str:
    base = slugify(name)
    taken = set(db.execute(select(Tenant.slug).where(Tenant.slug.like(f"{base}%"))).scalars())
    if base not in taken:
        return base
    n = 1
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def tenant_settings(tenant: Tenant) -> dict[str, Any]:
    settings = {**DEFAULT_LIMITS, "features": list(DEFAULT_FEATURES)}
    settings.update(json_loads_dict(tenant.settingsJson))
    return settings


def serialize_tenant(t: Tenant) -> dict[str, Any]:
    return {
        "tenantId": t.tenantId,
        "name": t.name or "",
        "slug": t.slug or "",
        "email": t.email or "",
        "status": t.status or "active",
        "plan": t.plan or "free",
        "settings": tenant_settings(t),
        "branding": json_loads_dict(t.brandingJson),
        "createdAt": t.createdAt or "",
        "updatedAt": t.updatedAt or "",
    }


def get_tenant(db, tenant_id: str) -> Tenant:
    t = db.execute(select(Tenant).where(Tenant.tenantId == tenant_id)).scalar_one_or_none()
    if not t:
        raise ApiError("NOT_FOUND", "Tenant not found")
    return t


def enforce_limit(db, tenant_id: str, kind: str, *, adding: int = 1) -> None:
    """Reject creating users/employees past the tenant's configured limit."""
    settings = tenant_settings(get_tenant(db, tenant_id))
    if kind == "users":
        current = db.execute(select(func.count()).select_from(User).where(User.tenantId == tenant_id)).scalar_one()
        limit = int(settings.get("maxUsers") or 0)
    else:
        current = db.execute(
            select(func.count()).select_from(Employee).where(Employee.tenantId == tenant_id).where(Employee.status != "terminated")
        ).scalar_one()
        limit = int(settings.get("maxEmployees") or 0)
    if limit and int(current or 0) + adding > limit:
        raise ApiError("BAD_REQUEST", f"Tenant limit reached: at most {limit} {kind}")


def create_tenant_with_admin(
    db,
    *,
    name: str,
    email: str,
    plan: str,
    admin_email: str,
    admin_name: str,
    admin_password: str,
    actor: str = "SYSTEM_INIT",
) -> tuple[Tenant, User]:
    """Adds tenant, admin user and default pipeline stages to the session; caller commits once."""
    if db.execute(select(Tenant.tenantId).where(Tenant.email == email)).first():
        raise ApiError("CONFLICT", "A company with this email already exists")
    if db.execute(select(User.userId).where(User.email == admin_email)).first():
        raise ApiError("CONFLICT", "A user with this email already exists")

    now = iso_utc_now()
    tenant = Tenant(
        tenantId=f"TEN-{new_uuid()}",
        name=name,
        slug=unique_slug(db, name),
        email=email,
        status="active",
        plan=plan,
        settingsJson="",
        brandingJson="",
        createdAt=now,
        createdBy=actor,
        updatedAt=now,
        updatedBy=actor,
    )
    db.add(tenant)

    user = User(
        userId=f"USR-{new_uuid()}",
        tenantId=tenant.tenantId,
        email=admin_email,
        fullName=admin_name,
        role="ADMIN",
        status="ACTIVE",
        passwordHash=hash_password(admin_password),
        employeeId="",
        authVersion=0,
        lastLoginAt="",
        createdAt=now,
        createdBy=actor,
        updatedAt=now,
        updatedBy=actor,
    )
    db.add(user)
    db.flush()

    seed_pipeline_stages(db, tenant.tenantId)
    return tenant, user


def tenant_create(data, auth: AuthContext | None, db, cfg):
    name = require_str(data, "name", min_len=2, max_len=100)
    email = validate_email((data or {}).get("email"))
    plan = enum_value((data or {}).get("plan"), TENANT_PLANS, field="plan", default="free")

    admin = get_dict(data, "admin")
    admin_email = validate_email(admin.get("email") or email, field="admin email")
    admin_name = str(admin.get("name") or admin.get("fullName") or "").strip() or name
    admin_password = str(admin.get("password") or (data or {}).get("password") or "")

    tenant, user = create_tenant_with_admin(
        db,
        name=name,
        email=email,
        plan=plan,
        admin_email=admin_email,
        admin_name=admin_name,
        admin_password=admin_password,
        actor="SIGNUP",
    )

    ses = issue_session_token(
        db,
        user_id=user.userId,
        tenant_id=tenant.tenantId,
        email=user.email,
        role=user.role,
        user_status=user.status,
        auth_version=0,
        session_ttl_minutes=cfg.SESSION_TTL_MINUTES,
    )

    append_audit(
        db,
        entityType="TENANT",
        entityId=tenant.tenantId,
        action="TENANT_CREATE",
        toState="active",
        tenant_id=tenant.tenantId,
        remark=tenant.slug,
        after={"name": name, "email": email, "plan": plan, "adminEmail": admin_email},
    )

    return {
        "tenant": serialize_tenant(tenant),
        "user": {"userId": user.userId, "email": user.email, "fullName": user.fullName, "role": user.role},
        "sessionToken": ses["sessionToken"],
        "expiresAt": ses["expiresAt"],
    }


def tenant_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"tenant": serialize_tenant(get_tenant(db, auth.tenantId))}


def tenant_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    t = get_tenant(db, auth.tenantId)
    before = serialize_tenant(t)
    payload = data or {}

    if "name" in payload:
        t.name = require_str(payload, "name", min_len=2, max_len=100)
    if "email" in payload:
        email = validate_email(payload.get("email"))
        clash = db.execute(select(Tenant.tenantId).where(Tenant.email == email).where(Tenant.tenantId != t.tenantId)).first()
        if clash:
            raise ApiError("CONFLICT", "A company with this email already exists")
        t.email = email
    if "plan" in payload:
        t.plan = enum_value(payload.get("plan"), TENANT_PLANS, field="plan", default=t.plan)
    if "status" in payload:
        t.status = enum_value(payload.get("status"), TENANT_STATUSES, field="status", default=t.status)
    if "settings" in payload:
        settings = json_loads_dict(t.settingsJson)
        incoming = get_dict(payload, "settings")
        for key in ("maxUsers", "maxEmployees"):
            if key in incoming:
                try:
                    value = int(incoming[key])
                except (TypeError, ValueError):
                    raise ApiError("BAD_REQUEST", f"settings.{key} must be an integer")
                if not 1 <= value <= LIMIT_CAPS[key]:
                    raise ApiError("BAD_REQUEST", f"settings.{key} must be between 1 and {LIMIT_CAPS[key]}")
                settings[key] = value
        if "features" in incoming:
            if not isinstance(incoming["features"], list):
                raise ApiError("BAD_REQUEST", "settings.features must be a list")
            settings["features"] = [str(f) for f in incoming["features"]]
        t.settingsJson = dumps(settings)
    if "branding" in payload:
        branding = json_loads_dict(t.brandingJson)
        for key, val in get_dict(payload, "branding").items():
            if key in {"logo", "primaryColor", "secondaryColor", "description", "website"}:
                branding[key] = str(val or "")[:1000]
        t.brandingJson = dumps(branding)

    t.updatedAt = iso_utc_now()
    t.updatedBy = actor_id(auth)
    after = serialize_tenant(t)
    if (before["status"], before["plan"]) != (after["status"], after["plan"]):
        cache_invalidate_tenant(t.tenantId)

    append_audit(
        db,
        entityType="TENANT",
        entityId=t.tenantId,
        action="TENANT_UPDATE",
        fromState=before["status"],
        toState=after["status"],
        actor=auth,
        before=before,
        after=after,
    )
    return {"tenant": after}
