from __future__ import annotations

from sqlalchemy import select

from actions.helpers import append_audit, require_auth
from auth import (
    issue_session_token,
    permissions_for_role,
    revoke_session,
    revoke_user_sessions,
    verify_google_id_token,
)
from models import Tenant, User
from passwords import hash_password, verify_password
from utils import ApiError, AuthContext, iso_utc_now, normalize_role


def _find_user_by_email(db, email: str):
    e = str(email or "").strip().lower()
    if not e:
        return None
    return db.execute(select(User).where(User.email == e)).scalar_one_or_none()


def _assert_can_login(db, user: User) -> Tenant:
    if str(user.status or "").upper() != "ACTIVE":
        raise ApiError("AUTH_INVALID", "User is disabled")
    tenant = db.execute(select(Tenant).where(Tenant.tenantId == user.tenantId)).scalar_one_or_none()
    if not tenant:
        raise ApiError("AUTH_INVALID", "User has no tenant")
    if str(tenant.status or "").lower() != "active":
        raise ApiError("FORBIDDEN", "Tenant is not active")
    return tenant


def _start_session(db, cfg, user: User, tenant: Tenant, *, action: str) -> dict:
    user.lastLoginAt = iso_utc_now()
    ses = issue_session_token(
        db,
        user_id=user.userId,
        tenant_id=tenant.tenantId,
        email=user.email,
        role=user.role,
        user_status=user.status,
        auth_version=int(user.authVersion or 0),
        session_ttl_minutes=cfg.SESSION_TTL_MINUTES,
    )

    actor = AuthContext(
        valid=True,
        userId=user.userId,
        email=user.email,
        role=normalize_role(user.role),
        expiresAt=ses["expiresAt"],
        tenantId=tenant.tenantId,
    )
    append_audit(db, entityType="AUTH", entityId=str(user.userId), action=action, stageTag="AUTH_LOGIN", actor=actor)

    return {
        "sessionToken": ses["sessionToken"],
        "expiresAt": ses["expiresAt"],
        "me": _serialize_me(user, tenant),
    }


def _serialize_me(user: User, tenant: Tenant | None) -> dict:
    return {
        "userId": user.userId,
        "email": user.email or "",
        "fullName": user.fullName or "",
        "role": normalize_role(user.role),
        "employeeId": user.employeeId or "",
        "tenantId": user.tenantId or "",
        "tenantName": tenant.name if tenant else "",
        "tenantSlug": tenant.slug if tenant else "",
    }


def login(data, auth: AuthContext | None, db, cfg):
    email = str((data or {}).get("email") or "").strip().lower()
    password = str((data or {}).get("password") or "")
    if not email or not password:
        raise ApiError("BAD_REQUEST", "Missing email or password")

    user = _find_user_by_email(db, email)
    # Same message for unknown user and wrong password.
    if not user or not verify_password(password, user.passwordHash):
        raise ApiError("AUTH_INVALID", "Invalid email or password")

    tenant = _assert_can_login(db, user)
    return _start_session(db, cfg, user, tenant, action="LOGIN")


def login_exchange(data, auth: AuthContext | None, db, cfg):
    google_user = verify_google_id_token(
        (data or {}).get("idToken"),
        google_client_id=cfg.GOOGLE_CLIENT_ID,
        allow_test_tokens=bool(cfg.AUTH_ALLOW_TEST_TOKENS),
    )

    user = _find_user_by_email(db, google_user.get("email") or "")
    if not user:
        raise ApiError("AUTH_INVALID", "User not found")

    tenant = _assert_can_login(db, user)
    if not user.fullName and google_user.get("fullName"):
        user.fullName = str(google_user["fullName"])
    return _start_session(db, cfg, user, tenant, action="LOGIN_EXCHANGE")


def logout(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    revoked = revoke_session(db, auth.sessionId, revoked_by=auth.userId)
    append_audit(db, entityType="AUTH", entityId=auth.userId, action="LOGOUT", stageTag="AUTH_LOGOUT", actor=auth)
    return {"ok": True, "revoked": revoked}


def session_validate(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    return {
        "valid": True,
        "expiresAt": auth.expiresAt,
        "me": {"userId": auth.userId, "email": auth.email, "role": normalize_role(auth.role), "tenantId": auth.tenantId},
    }


def get_me(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
    if not user:
        raise ApiError("AUTH_INVALID", "User missing")
    tenant = db.execute(select(Tenant).where(Tenant.tenantId == user.tenantId)).scalar_one_or_none()
    return {"me": _serialize_me(user, tenant), "expiresAt": auth.expiresAt}


def my_permissions_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return permissions_for_role(db, auth.role, auth.tenantId)


def change_password(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    current = str((data or {}).get("currentPassword") or "")
    new = str((data or {}).get("newPassword") or "")

    user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
    if not user:
        raise ApiError("AUTH_INVALID", "User missing")
    # SSO-only users have no password yet and may set one directly.
    if user.passwordHash and not verify_password(current, user.passwordHash):
        raise ApiError("BAD_REQUEST", "Current password is incorrect")
    if current and current == new:
        raise ApiError("BAD_REQUEST", "New password must be different")

    user.passwordHash = hash_password(new, field="newPassword")
    user.updatedAt = iso_utc_now()
    user.updatedBy = auth.userId
    revoked = revoke_user_sessions(db, user_id=user.userId, revoked_by=auth.userId, keep_session_id=auth.sessionId)

    append_audit(
        db,
        entityType="USER",
        entityId=user.userId,
        action="CHANGE_PASSWORD",
        stageTag="AUTH_PASSWORD",
        actor=auth,
        meta={"revokedSessions": revoked},
    )
    return {"ok": True, "revokedSessions": revoked}
