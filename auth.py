from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select

from cache_layer import cache_get, cache_invalidate_prefix, cache_set
from models import Permission, Role, Session as DbSession, Tenant, User
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, parse_roles_csv, sha256_hex, to_iso_utc


PUBLIC_ACTIONS = {
    "LOGIN",
    "LOGIN_EXCHANGE",
    "TENANT_CREATE",
}

BUILTIN_ROLES: dict[str, str] = {
    "ADMIN": "Full access to every module of the tenant",
    "HR": "People operations: employees, attendance, leave, payroll, evaluations",
    "MANAGER": "Team lead: approves leave and reviews evaluations of direct reports",
    "RECRUITER": "Recruitment: candidates, vacancies and the application pipeline",
    "EMPLOYEE": "Self-service: own attendance, leave, evaluations and notifications",
}

_ALL = ["ADMIN", "HR", "MANAGER", "RECRUITER", "EMPLOYEE"]
_PEOPLE = ["ADMIN", "HR"]
_PEOPLE_LEADS = ["ADMIN", "HR", "MANAGER"]
_RECRUITING = ["ADMIN", "HR", "RECRUITER"]
_RECRUITING_READ = ["ADMIN", "HR", "RECRUITER", "MANAGER"]


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    # Auth / session
    "LOGIN": ["PUBLIC"],
    "LOGIN_EXCHANGE": ["PUBLIC"],
    "LOGOUT": _ALL,
    "SESSION_VALIDATE": _ALL,
    "GET_ME": _ALL,
    "MY_PERMISSIONS_GET": _ALL,
    "CHANGE_PASSWORD": _ALL,
    # Tenants
    "TENANT_CREATE": ["PUBLIC"],
    "TENANT_GET": _ALL,
    "TENANT_UPDATE": ["ADMIN"],
    # Users / roles / permissions
    "USERS_LIST": ["ADMIN"],
    "USERS_UPSERT": ["ADMIN"],
    "ROLES_LIST": ["ADMIN"],
    "ROLE_CREATE": ["ADMIN"],
    "ROLE_UPDATE": ["ADMIN"],
    "ROLE_DELETE": ["ADMIN"],
    "PERMISSIONS_LIST": ["ADMIN"],
    "PERMISSIONS_UPSERT": ["ADMIN"],
    # Candidates
    "CANDIDATE_LIST": _RECRUITING_READ,
    "CANDIDATE_GET": _RECRUITING_READ,
    "CANDIDATE_CREATE": _RECRUITING,
    "CANDIDATE_UPDATE": _RECRUITING,
    "CANDIDATE_DELETE": _PEOPLE,
    # Vacancies
    "VACANCY_LIST": _RECRUITING_READ,
    "VACANCY_GET": _RECRUITING_READ,
    "VACANCY_CREATE": _RECRUITING,
    "VACANCY_UPDATE": _RECRUITING,
    "VACANCY_DELETE": _PEOPLE,
    "VACANCY_CHECKLIST_LIST": _RECRUITING_READ,
    "VACANCY_CHECKLIST_ADD": _RECRUITING,
    "VACANCY_CHECKLIST_UPDATE": _RECRUITING,
    "VACANCY_CHECKLIST_DELETE": _RECRUITING,
    "VACANCY_NOTES_LIST": _RECRUITING_READ,
    "VACANCY_NOTES_ADD": _RECRUITING_READ,
    "VACANCY_NOTES_DELETE": _RECRUITING,
    # Applications / pipeline
    "PIPELINE_STAGES_LIST": _RECRUITING_READ,
    "PIPELINE_BOARD_GET": _RECRUITING_READ,
    "APPLICATION_LIST": _RECRUITING_READ,
    "APPLICATION_CREATE": _RECRUITING,
    "APPLICATION_UPDATE": _RECRUITING,
    "APPLICATION_DELETE": _RECRUITING,
    "APPLICATION_REORDER": _RECRUITING,
    # Employees
    "EMPLOYEE_LIST": _PEOPLE_LEADS,
    "EMPLOYEE_GET": _PEOPLE_LEADS,
    "EMPLOYEE_CREATE": _PEOPLE,
    "EMPLOYEE_UPDATE": _PEOPLE,
    "EMPLOYEE_DELETE": ["ADMIN"],
    "EMPLOYEE_IMPORT": _PEOPLE,
    "EMPLOYEE_EXPORT": _PEOPLE,
    # Attendance
    "ATTENDANCE_CHECK_IN": _ALL,
    "ATTENDANCE_CHECK_OUT": _ALL,
    "ATTENDANCE_BREAK": _ALL,
    "ATTENDANCE_TODAY": _ALL,
    "ATTENDANCE_LIST": _ALL,
    "ATTENDANCE_SUMMARY": _ALL,
    "ATTENDANCE_MARK_ABSENCE": _PEOPLE,
    "ATTENDANCE_UPDATE": _PEOPLE,
    "ATTENDANCE_DELETE": _PEOPLE,
    # Leave
    "LEAVE_CREATE": _ALL,
    "LEAVE_LIST": _ALL,
    "LEAVE_GET": _ALL,
    "LEAVE_UPDATE": _ALL,
    "LEAVE_DECIDE": _PEOPLE_LEADS,
    "LEAVE_CANCEL": _ALL,
    "LEAVE_DELETE": _ALL,
    "LEAVE_BALANCE": _ALL,
    # Payroll
    "PAYROLL_LIST": _PEOPLE,
    "PAYROLL_GET": _PEOPLE,
    "PAYROLL_CREATE": _PEOPLE,
    "PAYROLL_UPDATE": _PEOPLE,
    "PAYROLL_APPROVE": _PEOPLE,
    "PAYROLL_STATUS_SET": _PEOPLE,
    "PAYROLL_DELETE": _PEOPLE,
    "PAYROLL_CALCULATE": _PEOPLE,
    "PAYROLL_AUTO_CONCEPTS": _PEOPLE,
    "PAYROLL_EMPLOYER_CONTRIBUTIONS": _PEOPLE,
    # Evaluations
    "EVAL_TEMPLATE_LIST": _PEOPLE_LEADS,
    "EVAL_TEMPLATE_GET": _PEOPLE_LEADS,
    "EVAL_TEMPLATE_CREATE": _PEOPLE,
    "EVAL_TEMPLATE_UPDATE": _PEOPLE,
    "EVAL_TEMPLATE_DELETE": _PEOPLE,
    "EVAL_CYCLE_LIST": _PEOPLE_LEADS,
    "EVAL_CYCLE_GET": _PEOPLE_LEADS,
    "EVAL_CYCLE_CREATE": _PEOPLE,
    "EVAL_CYCLE_UPDATE": _PEOPLE,
    "EVAL_CYCLE_DELETE": _PEOPLE,
    "EVAL_CYCLE_LAUNCH": _PEOPLE,
    "EVALUATION_LIST": _ALL,
    "EVALUATION_GET": _ALL,
    "EVALUATION_START": _ALL,
    "EVALUATION_SAVE": _ALL,
    "EVALUATION_SUBMIT": _ALL,
    "EVALUATION_MANAGER_REVIEW": _PEOPLE_LEADS,
    "EVALUATION_HR_REVIEW": _PEOPLE,
    "EVALUATION_EMPLOYEE_SUMMARY": _ALL,
    "EVAL_ANALYTICS_CYCLE": _PEOPLE_LEADS,
    "EVAL_ANALYTICS_DEPARTMENTS": _PEOPLE_LEADS,
    "EVAL_ANALYTICS_TOP_PERFORMERS": _PEOPLE_LEADS,
    "EVAL_ANALYTICS_COMPETENCIES": _PEOPLE_LEADS,
    "EVAL_ANALYTICS_TRENDS": _PEOPLE_LEADS,
    "EVAL_ANALYTICS_EMPLOYEE_HISTORY": _ALL,
    # Workflows
    "WORKFLOW_CREATE": _ALL,
    "WORKFLOW_GET": _ALL,
    "WORKFLOW_LIST": _ALL,
    "WORKFLOW_STEP_COMPLETE": _ALL,
    "WORKFLOW_STEP_REJECT": _ALL,
    "WORKFLOW_CANCEL": _ALL,
    "WORKFLOW_STATS": _ALL,
    "WORKFLOW_SEND_REMINDERS": _PEOPLE,
    # Notifications
    "NOTIFICATION_LIST": _ALL,
    "NOTIFICATION_MARK_READ": _ALL,
    "NOTIFICATION_MARK_ALL_READ": _ALL,
    "NOTIFICATION_DELETE": _ALL,
    "NOTIFICATION_STATS": _ALL,
    "NOTIFICATION_SEND": _PEOPLE,
    # Audit
    "AUDIT_LIST": ["ADMIN"],
    "AUDIT_STATS": ["ADMIN"],
    # Reports
    "DASHBOARD_KPIS": ["ADMIN", "HR", "MANAGER", "RECRUITER"],
    "REPORT_ATTENDANCE": _PEOPLE_LEADS,
    "REPORT_LEAVE_BALANCES": _PEOPLE,
    "REPORT_HEADCOUNT": _PEOPLE,
    "REPORT_PAYROLL": _PEOPLE,
    "REPORT_PIPELINE": _RECRUITING_READ,
    "REPORT_OVERTIME": _PEOPLE_LEADS,
    "REPORT_ABSENCES": _PEOPLE_LEADS,
    "REPORT_ATTENDANCE_TREND": _PEOPLE_LEADS,
    "REPORT_TURNOVER": _PEOPLE,
    "REPORT_HEADCOUNT_TREND": _PEOPLE,
    "REPORT_SALARY_DISTRIBUTION": _PEOPLE,
    "REPORT_BIRTHDAYS": _PEOPLE_LEADS,
    "REPORT_LEAVE_USAGE": _PEOPLE_LEADS,
    "REPORT_LEAVE_STATISTICS": _PEOPLE_LEADS,
    "REPORT_LEAVE_PROJECTIONS": _PEOPLE,
}

# Always allowed for any active role so the app shell can load.
_SESSION_ACTIONS = {"SESSION_VALIDATE", "GET_ME", "MY_PERMISSIONS_GET", "LOGOUT", "CHANGE_PASSWORD"}

_RBAC_CACHE_PREFIX = "RBAC:"


def _rbac_prefix(tenant_id: str) -> str:
    return f"{_RBAC_CACHE_PREFIX}{tenant_id or '-'}:"


def invalidate_rbac_cache(tenant_id: str = "") -> int:
    if tenant_id:
        return cache_invalidate_prefix(_rbac_prefix(tenant_id))
    return cache_invalidate_prefix(_RBAC_CACHE_PREFIX)


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def is_builtin_role(role: str) -> bool:
    return normalize_role(role) in BUILTIN_ROLES


def known_action_keys() -> list[str]:
    return sorted(STATIC_RBAC_PERMISSIONS.keys())


def action_pattern_matches(pattern: str, action: str) -> bool:
    """`*` matches everything, `PREFIX_*` matches every action starting with `PREFIX_`."""
    p = str(pattern or "").strip().upper()
    a = str(action or "").strip().upper()
    if not p or not a:
        return False
    if p == "*":
        return True
    if p.endswith("*"):
        return a.startswith(p[:-1])
    return p == a


def is_valid_permission_pattern(pattern: str) -> bool:
    p = str(pattern or "").strip().upper()
    if not p:
        return False
    if p == "*":
        return True
    if p.endswith("_*"):
        return any(a.startswith(p[:-1]) for a in STATIC_RBAC_PERMISSIONS)
    return p in STATIC_RBAC_PERMISSIONS


def verify_google_id_token(id_token: str, google_client_id: str, allow_test_tokens: bool = False) -> dict[str, Any]:
    if not id_token or not isinstance(id_token, str):
        raise ApiError("BAD_REQUEST", "Missing idToken")

    if allow_test_tokens and id_token.startswith("TEST:"):
        email = id_token.split(":", 1)[1].strip().lower()
        if not email:
            raise ApiError("AUTH_INVALID", "Invalid test token")
        return {"email": email, "fullName": "Test User", "picture": "", "sub": "TEST", "exp": 0}

    if not google_client_id:
        raise ApiError("INTERNAL", "Missing GOOGLE_CLIENT_ID")

    try:
        req = google_requests.Request()
        payload = google_id_token.verify_oauth2_token(id_token, req, audience=google_client_id)
    except ValueError:
        raise ApiError("AUTH_INVALID", "Invalid Google ID token")

    if payload.get("aud") != google_client_id:
        raise ApiError("AUTH_INVALID", "Google token audience mismatch")

    if str(payload.get("email_verified", "")).lower() != "true":
        raise ApiError("AUTH_INVALID", "Google email not verified")

    return {
        "email": str(payload.get("email", "")).lower(),
        "fullName": payload.get("name", "") or "",
        "picture": payload.get("picture", "") or "",
        "sub": payload.get("sub", "") or "",
        "exp": payload.get("exp", 0) or 0,
    }


def issue_session_token(
    db,
    *,
    user_id: str,
    tenant_id: str,
    email: str,
    role: str,
    user_status: str = "",
    auth_version: int = 0,
    session_ttl_minutes: int,
) -> dict[str, str]:
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = datetime.now(timezone.utc)
    issued_at = to_iso_utc(now)
    expires_at = to_iso_utc(now + timedelta(minutes=session_ttl_minutes))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            tenantId=str(tenant_id or ""),
            userId=str(user_id or ""),
            email=str(email or ""),
            role=normalize_role(role),
            userStatus=str(user_status or "").upper().strip(),
            authVersion=int(auth_version or 0),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_session(db, session_id: str, *, revoked_by: str) -> bool:
    if not session_id:
        return False
    ses = db.execute(select(DbSession).where(DbSession.sessionId == session_id)).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return False
    ses.revokedAt = iso_utc_now()
    ses.revokedBy = str(revoked_by or "")
    return True


def revoke_user_sessions(db, *, user_id: str, revoked_by: str, keep_session_id: str = "") -> int:
    """Revoke every active session of a user, optionally sparing the caller's own session."""
    uid = str(user_id or "").strip()
    if not uid:
        return 0

    now = iso_utc_now()
    rows = db.execute(select(DbSession).where(DbSession.userId == uid).where(DbSession.revokedAt == "")).scalars().all()
    n = 0
    for s in rows:
        if keep_session_id and s.sessionId == keep_session_id:
            continue
        s.revokedAt = now
        s.revokedBy = str(revoked_by or "")
        n += 1
    return n


def _invalid() -> AuthContext:
    return AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def validate_session_token(db, token: Any, *, action: str | None = None) -> AuthContext:
    if not token or not isinstance(token, str):
        return _invalid()

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses:
        return _invalid()

    expires_at = ses.expiresAt or ""
    exp_dt = parse_datetime_maybe(expires_at)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _invalid()
    if ses.revokedAt:
        return _invalid()

    usr = db.execute(select(User).where(User.userId == ses.userId)).scalar_one_or_none()
    if not usr:
        return _invalid()
    if str(usr.status or "").upper() != "ACTIVE":
        raise ApiError("FORBIDDEN", "User is disabled")
    if int(usr.authVersion or 0) != int(ses.authVersion or 0):
        return _invalid()

    tenant = db.execute(select(Tenant).where(Tenant.tenantId == usr.tenantId)).scalar_one_or_none()
    if not tenant:
        return _invalid()
    if str(tenant.status or "").lower() != "active":
        raise ApiError("FORBIDDEN", "Tenant is not active")

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except ValueError:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(
        valid=True,
        userId=str(usr.userId),
        email=str(usr.email or ""),
        role=normalize_role(usr.role),
        expiresAt=expires_at,
        tenantId=str(usr.tenantId or ""),
        employeeId=str(usr.employeeId or ""),
        fullName=str(usr.fullName or ""),
        sessionId=str(ses.sessionId),
    )


def get_permission_rule(db, tenant_id: str, perm_type: str, perm_key: str) -> Optional[dict[str, Any]]:
    perm_type_u = str(perm_type or "").upper().strip()
    perm_key_u = str(perm_key or "").upper().strip()
    if not tenant_id or not perm_type_u or not perm_key_u:
        return None

    cache_key = f"{_rbac_prefix(tenant_id)}RULE:{perm_type_u}:{perm_key_u}"
    cached = cache_get(cache_key)
    if cached is False:
        return None
    if isinstance(cached, dict):
        return cached

    row = (
        db.execute(
            select(Permission)
            .where(Permission.tenantId == tenant_id)
            .where(Permission.permType == perm_type_u)
            .where(Permission.permKey == perm_key_u)
        )
        .scalars()
        .first()
    )
    if not row:
        cache_set(cache_key, False)
        return None
    out = {"enabled": bool(row.enabled), "roles": parse_roles_csv(row.rolesCsv or ""), "rolesCsv": row.rolesCsv or ""}
    cache_set(cache_key, out)
    return out


def _custom_roles_index(db, tenant_id: str) -> dict[str, dict[str, Any]]:
    cache_key = f"{_rbac_prefix(tenant_id)}ROLES_INDEX"
    cached = cache_get(cache_key)
    if isinstance(cached, dict):
        return cached

    out: dict[str, dict[str, Any]] = {}
    if tenant_id:
        for r in db.execute(select(Role).where(Role.tenantId == tenant_id)).scalars().all():
            code = normalize_role(r.roleCode)
            if not code:
                continue
            out[code] = {
                "roleCode": code,
                "roleName": str(r.roleName or code),
                "status": str(r.status or "ACTIVE").upper(),
                "permissions": [p.strip().upper() for p in str(r.permissionsCsv or "").split(",") if p.strip()],
            }
    cache_set(cache_key, out)
    return out


def is_role_active(db, role: str, tenant_id: str = "") -> bool:
    r = normalize_role(role)
    if not r:
        return False
    if r in BUILTIN_ROLES:
        return True
    it = _custom_roles_index(db, tenant_id).get(r)
    return bool(it) and str(it.get("status", "")).upper() == "ACTIVE"


def _role_allows(db, role_u: str, action_u: str, tenant_id: str) -> bool:
    rule = get_permission_rule(db, tenant_id, "ACTION", action_u)
    if rule and rule.get("enabled") is True:
        roles = rule.get("roles") or []
        return "PUBLIC" in roles or role_u in roles

    if role_u in BUILTIN_ROLES:
        return role_u in (STATIC_RBAC_PERMISSIONS.get(action_u) or [])

    custom = _custom_roles_index(db, tenant_id).get(role_u) or {}
    return any(action_pattern_matches(p, action_u) for p in custom.get("permissions") or [])


def assert_permission(db, role: str, action: str, tenant_id: str = "") -> None:
    role_u = normalize_role(role)
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    if action_u not in STATIC_RBAC_PERMISSIONS:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    if not role_u or role_u == "PUBLIC":
        raise ApiError("AUTH_INVALID", "Login required")
    if not is_role_active(db, role_u, tenant_id):
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}")

    if action_u in _SESSION_ACTIONS:
        return

    if not _role_allows(db, role_u, action_u, tenant_id):
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}")


def permissions_for_role(db, role: str, tenant_id: str = "") -> dict[str, Any]:
    role_u = normalize_role(role)
    if not role_u:
        raise ApiError("AUTH_INVALID", "Login required")

    cache_key = f"{_rbac_prefix(tenant_id)}PERMS_FOR_ROLE:{role_u}"
    cached = cache_get(cache_key)
    if isinstance(cached, dict):
        return cached

    action_keys = [
        a
        for a in known_action_keys()
        if a not in PUBLIC_ACTIONS and (a in _SESSION_ACTIONS or _role_allows(db, role_u, a, tenant_id))
    ]
    ui_keys: list[str] = []
    if tenant_id:
        rows = (
            db.execute(
                select(Permission)
                .where(Permission.tenantId == tenant_id)
                .where(Permission.permType == "UI")
                .where(Permission.enabled == True)  # noqa: E712
            )
            .scalars()
            .all()
        )
        for row in rows:
            roles = parse_roles_csv(row.rolesCsv or "")
            if role_u in roles or "PUBLIC" in roles:
                ui_keys.append(str(row.permKey or "").upper())
    ui_keys.sort()

    out = {"role": role_u, "uiKeys": ui_keys, "actionKeys": action_keys}
    cache_set(cache_key, out)
    return out


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
