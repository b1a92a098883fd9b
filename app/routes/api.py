from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from flask import Blueprint, current_app, g, request
from sqlalchemy.exc import DBAPIError, IntegrityError

from actions import dispatch
from auth import assert_permission, is_public_action, role_or_public, validate_session_token
from cache_layer import cache_invalidate_dashboard
from config import Config
from db import SessionLocal
from models import AuditLog
from utils import ApiError, AuthContext, err, iso_utc_now, now_monotonic, ok, parse_json_body, redact_for_audit

api_bp = Blueprint("api", __name__)

log = logging.getLogger("api")

LOGIN_ACTIONS = {"LOGIN", "LOGIN_EXCHANGE", "TENANT_CREATE"}
_SESSION_ISSUING_ACTIONS = {"LOGIN", "LOGIN_EXCHANGE", "TENANT_CREATE"}

# Actions that never write tenant data; anything else drops the dashboard snapshot.
_READ_SUFFIXES = ("_LIST", "_GET", "_STATS", "_SUMMARY", "_TODAY", "_BALANCE", "_KPIS", "_VALIDATE", "_CALCULATE", "_EXPORT")
_READ_PREFIXES = ("REPORT_", "EVAL_ANALYTICS_")


def is_read_action(action_u: str) -> bool:
    return action_u.endswith(_READ_SUFFIXES) or action_u.startswith(_READ_PREFIXES)


def client_ip() -> str:
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        return xff.split(",")[0].strip()
    return request.remote_addr or ""


def request_token(body_token: Any = None) -> str:
    """Body token first, then Bearer header, X-Session-Token and finally the auth cookie."""
    token = str(body_token or "").strip()
    if token:
        return token
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        token = authz.split(" ", 1)[1].strip()
    if not token:
        token = str(request.headers.get("X-Session-Token") or "").strip()
    if not token:
        cfg: Config = current_app.config["CFG"]
        token = str(request.cookies.get(cfg.AUTH_COOKIE_NAME) or "").strip()
    return token


def _audit_row(auth_ctx: AuthContext | None, action_u: str, stage: str, meta: dict[str, Any], remark: str = "") -> AuditLog:
    return AuditLog(
        logId=f"LOG-{os.urandom(16).hex()}",
        tenantId=str(auth_ctx.tenantId or "") if auth_ctx else "",
        entityType="API",
        entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
        action=action_u or "UNKNOWN",
        fromState="",
        toState="",
        stageTag=stage,
        remark=remark,
        actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
        actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
        actorEmail=str(auth_ctx.email or "") if auth_ctx else "",
        at=iso_utc_now(),
        correlationId=str(getattr(g, "request_id", "") or ""),
        beforeJson="",
        afterJson="",
        metaJson=json.dumps(meta, default=str),
    )


def _write_error_audit(action_u: str, auth_ctx: AuthContext | None, data: Any, err_obj: ApiError) -> None:
    """Error rows live in their own session; the request's session was rolled back."""
    db2 = SessionLocal()
    try:
        db2.add(
            _audit_row(
                auth_ctx,
                action_u,
                "API_ERROR",
                {"data": redact_for_audit(data or {}), "error": {"code": err_obj.code, "message": err_obj.message}},
                remark=f"{err_obj.code}: {err_obj.message}",
            )
        )
        db2.commit()
    except DBAPIError:
        db2.rollback()
        log.exception("request_id=%s failed to write error audit", getattr(g, "request_id", ""))
    finally:
        db2.close()


def _deliver_notifications(cfg: Config) -> None:
    pending = getattr(g, "pending_notifications", None) or []
    if not pending or not cfg.NOTIFY_WEBHOOK_URL:
        return
    from app.tasks.notifications import deliver_notification_task

    for payload in pending:
        try:
            deliver_notification_task.apply_async(kwargs={"url": cfg.NOTIFY_WEBHOOK_URL, "payload": payload})
        except Exception:
            # The in-app row is already committed; webhook delivery is best effort.
            log.exception("request_id=%s could not enqueue notification delivery", getattr(g, "request_id", ""))


def _resolve_auth(db, action_u: str, token: str) -> AuthContext | None:
    if not is_public_action(action_u):
        auth_ctx = validate_session_token(db, token, action=action_u)
        if not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired session")
        return auth_ctx
    if token:
        try:
            maybe = validate_session_token(db, token, action=action_u)
        except ApiError:
            return None
        return maybe if maybe.valid else None
    return None


def run_action(action: str, data: Any, token: str, *, success_status: int = 200):
    """Authenticate, authorize, dispatch and commit one action; returns a Flask response."""
    cfg: Config = current_app.config["CFG"]
    limiter = current_app.extensions["rate_limiter"]
    action_u = str(action or "").upper().strip()
    db = None
    auth_ctx: AuthContext | None = None

    try:
        if not action_u:
            raise ApiError("BAD_REQUEST", "Missing action")

        ip = client_ip()
        if action_u in LOGIN_ACTIONS:
            limiter.check(f"{ip}:LOGIN", cfg.RATE_LIMIT_LOGIN)
        else:
            limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
            limiter.check(f"{ip}:API:{action_u}", cfg.RATE_LIMIT_DEFAULT)

        db = SessionLocal()
        auth_ctx = _resolve_auth(db, action_u, token)
        role = role_or_public(auth_ctx)
        assert_permission(db, role, action_u, auth_ctx.tenantId if auth_ctx else "")

        g.pending_notifications = []
        out = dispatch(action_u, data, auth_ctx, db, cfg)

        db.add(_audit_row(auth_ctx, action_u, "API_CALL", {"data": redact_for_audit(data or {})}))
        db.commit()
        if auth_ctx and not is_read_action(action_u):
            cache_invalidate_dashboard(auth_ctx.tenantId)
        _deliver_notifications(cfg)

        latency_ms = int((now_monotonic() - g.start_ts) * 1000)
        log.info(
            "request_id=%s action=%s user=%s role=%s tenant=%s latency_ms=%s",
            g.request_id,
            action_u,
            (auth_ctx.userId if auth_ctx else "PUBLIC"),
            (auth_ctx.role if auth_ctx else "PUBLIC"),
            (auth_ctx.tenantId if auth_ctx else "-"),
            latency_ms,
        )

        resp, status = ok(out, http_status=success_status)
        if action_u in _SESSION_ISSUING_ACTIONS and isinstance(out, dict) and out.get("sessionToken"):
            resp.set_cookie(
                cfg.AUTH_COOKIE_NAME,
                out["sessionToken"],
                max_age=cfg.SESSION_TTL_MINUTES * 60,
                httponly=True,
                secure=cfg.IS_PRODUCTION,
                samesite="Lax",
            )
        elif action_u == "LOGOUT":
            resp.delete_cookie(cfg.AUTH_COOKIE_NAME)
        return resp, status
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status)
    except IntegrityError:
        if db is not None:
            db.rollback()
        api_err = ApiError("CONFLICT", "The record conflicts with an existing one")
        _write_error_audit(action_u, auth_ctx, data, api_err)
        log.warning("request_id=%s action=%s integrity error", getattr(g, "request_id", ""), action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    except DBAPIError as e:
        if db is not None:
            db.rollback()
        request_id = str(getattr(g, "request_id", "") or "")
        orig_msg = re.sub(r"\s+", " ", str(getattr(e, "orig", "") or "")).strip()[:300]
        if cfg.IS_PRODUCTION or not orig_msg:
            msg = f"Database error (requestId: {request_id})"
        else:
            msg = f"Database error: {orig_msg} (requestId: {request_id})"
        api_err = ApiError("INTERNAL", msg)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("request_id=%s action=%s", request_id, action_u)
        return err(api_err.code, api_err.message, http_status=500)
    except Exception as e:
        if db is not None:
            db.rollback()
        request_id = str(getattr(g, "request_id", "") or "")
        if cfg.IS_PRODUCTION:
            msg = f"Unexpected error (requestId: {request_id})"
        else:
            msg = f"Unexpected error: {type(e).__name__} (requestId: {request_id})"
        api_err = ApiError("INTERNAL", msg)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("request_id=%s action=%s", request_id, action_u)
        return err(api_err.code, api_err.message, http_status=500)
    finally:
        if db is not None:
            db.close()


@api_bp.post("/api")
def api_route():
    raw = request.get_data(as_text=True)
    try:
        body = parse_json_body(raw)
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)
    return run_action(body.get("action"), body.get("data") or {}, request_token(body.get("token")))
