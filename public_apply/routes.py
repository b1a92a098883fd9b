"""
Public careers page.

- GET  /api/v1/public/careers/<slug>        tenant branding and open vacancies
- POST /api/v1/public/careers/<slug>/apply  submit an application without an account
"""
from __future__ import annotations

import logging

from flask import Blueprint, current_app, request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from actions.applications import DEFAULT_STAGE, new_application, serialize_application
from actions.candidates import new_candidate
from actions.helpers import append_audit, get_str, require_str
from actions.tenants import serialize_tenant, validate_email
from actions.vacancies import serialize_vacancy
from cache_layer import cache_invalidate_dashboard
from config import Config
from db import SessionLocal
from models import Candidate, Tenant, Vacancy
from public_apply.security import HONEYPOT_FIELD, get_client_ip, validate_bot_traps
from utils import ApiError, err, ok

careers_bp = Blueprint("careers", __name__, url_prefix="/api/v1/public/careers")

log = logging.getLogger("api")

PUBLIC_SOURCE = "form"


def _active_tenant(db, slug: str) -> Tenant:
    t = db.execute(select(Tenant).where(Tenant.slug == str(slug or "").strip().lower())).scalar_one_or_none()
    if not t or str(t.status or "").lower() != "active":
        raise ApiError("NOT_FOUND", "Company not found")
    return t


def _public_vacancy(v: Vacancy) -> dict:
    out = serialize_vacancy(v, with_children=False)
    out.pop("companyId", None)
    return out


@careers_bp.get("/<slug>")
def careers_page(slug: str):
    db = SessionLocal()
    try:
        tenant = _active_tenant(db, slug)
        rows = (
            db.execute(
                select(Vacancy)
                .where(Vacancy.tenantId == tenant.tenantId)
                .where(Vacancy.status == "open")
                .order_by(Vacancy.createdAt.desc())
            )
            .scalars()
            .all()
        )
        info = serialize_tenant(tenant)
        return ok(
            {
                "company": {"name": info["name"], "slug": info["slug"], "branding": info["branding"]},
                "vacancies": [_public_vacancy(v) for v in rows],
            }
        )
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)
    finally:
        db.close()


@careers_bp.post("/<slug>/apply")
def careers_apply(slug: str):
    cfg: Config = current_app.config["CFG"]
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return err("BAD_REQUEST", "Invalid JSON body", http_status=400)

    ip = get_client_ip()
    try:
        current_app.extensions["rate_limiter"].check(f"{ip}:PUBLIC_APPLY", cfg.RATE_LIMIT_PUBLIC_APPLY)
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)

    passed, reason = validate_bot_traps(body.get(HONEYPOT_FIELD), body.get("formTimestamp"))
    if not passed:
        log.warning("public apply rejected ip=%s slug=%s reason=%s", ip, slug, reason)
        return err("BAD_REQUEST", "Unable to process the application", http_status=400)

    db = SessionLocal()
    try:
        tenant = _active_tenant(db, slug)
        name = require_str(body, "name", min_len=2, max_len=200)
        email = validate_email(body.get("email"))
        notes = get_str(body, "notes", max_len=2000)
        vacancy = db.execute(
            select(Vacancy)
            .where(Vacancy.tenantId == tenant.tenantId)
            .where(Vacancy.vacancyId == get_str(body, "vacancyId", max_len=100))
        ).scalar_one_or_none()
        if not vacancy or vacancy.status != "open":
            raise ApiError("NOT_FOUND", "Vacancy not found")

        candidate = db.execute(
            select(Candidate)
            .where(Candidate.tenantId == tenant.tenantId)
            .where(func.lower(Candidate.email) == email)
        ).scalars().first()
        if candidate is None:
            candidate = new_candidate(
                db,
                tenant_id=tenant.tenantId,
                name=name,
                email=email,
                role=vacancy.title or "",
                source=PUBLIC_SOURCE,
                notes=notes,
                by="PUBLIC",
            )
            db.flush()

        application = new_application(
            db,
            tenant_id=tenant.tenantId,
            candidate_id=candidate.candidateId,
            vacancy_id=vacancy.vacancyId,
            status=DEFAULT_STAGE,
            notes=notes,
            order=None,
            by="PUBLIC",
        )
        append_audit(
            db,
            entityType="APPLICATION",
            entityId=application.applicationId,
            action="PUBLIC_APPLY",
            toState=application.status,
            tenant_id=tenant.tenantId,
            meta={"candidateId": candidate.candidateId, "vacancyId": vacancy.vacancyId, "ip": ip},
        )
        db.commit()
        cache_invalidate_dashboard(tenant.tenantId)
        log.info("public apply tenant=%s vacancy=%s application=%s", tenant.tenantId, vacancy.vacancyId, application.applicationId)
        return ok({"application": serialize_application(application)}, http_status=201)
    except ApiError as e:
        db.rollback()
        return err(e.code, e.message, http_status=e.http_status)
    except IntegrityError:
        db.rollback()
        return err("CONFLICT", "You already applied to this vacancy", http_status=409)
    finally:
        db.close()
