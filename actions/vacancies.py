from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, or_, select

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_number,
    get_str,
    get_tenant_row,
    next_prefixed_id,
    parse_bool,
    require_auth,
    require_str,
)
from models import Application, Vacancy
from utils import ApiError, AuthContext, iso_utc_now, json_loads_list, short_id


VACANCY_STATUSES = ["open", "paused", "closed"]
SENIORITIES = ["jr", "ssr", "sr"]
EMPLOYMENT_TYPES = ["fulltime", "parttime", "contract"]
MAX_DESCRIPTION = 4000


def serialize_vacancy(v: Vacancy, *, with_children: bool = True) -> dict[str, Any]:
    out = {
        "vacancyId": v.vacancyId,
        "title": v.title or "",
        "status": v.status or "open",
        "companyId": v.companyId or "",
        "companyName": v.companyName or "",
        "location": v.location or "",
        "seniority": v.seniority or "",
        "employmentType": v.employmentType or "",
        "salaryMin": v.salaryMin,
        "salaryMax": v.salaryMax,
        "description": v.description or "",
        "createdAt": v.createdAt or "",
        "updatedAt": v.updatedAt or "",
    }
    if with_children:
        out["checklist"] = json_loads_list(v.checklistJson)
        out["notes"] = json_loads_list(v.notesJson)
    return out


def _apply_fields(v: Vacancy, payload: dict[str, Any], *, creating: bool) -> None:
    if creating or "title" in payload:
        v.title = require_str(payload, "title", min_len=2, max_len=200)
    if creating or "status" in payload:
        v.status = enum_value(payload.get("status"), VACANCY_STATUSES, field="status", default=v.status or "open")
    if "companyId" in payload:
        v.companyId = get_str(payload, "companyId", max_len=100)
    if "companyName" in payload:
        v.companyName = get_str(payload, "companyName", max_len=200)
    if "location" in payload:
        v.location = get_str(payload, "location", max_len=200)
    if "seniority" in payload:
        v.seniority = enum_value(payload.get("seniority"), SENIORITIES, field="seniority", default="")
    if "employmentType" in payload:
        v.employmentType = enum_value(payload.get("employmentType"), EMPLOYMENT_TYPES, field="employmentType", default="")
    if "salaryMin" in payload:
        v.salaryMin = get_number(payload, "salaryMin", min_v=0)
    if "salaryMax" in payload:
        v.salaryMax = get_number(payload, "salaryMax", min_v=0)
    if "description" in payload:
        v.description = get_str(payload, "description", max_len=MAX_DESCRIPTION)

    if v.salaryMin is not None and v.salaryMax is not None and v.salaryMin > v.salaryMax:
        raise ApiError("BAD_REQUEST", "salaryMin must be <= salaryMax")


def vacancy_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    page = clamp_int(payload.get("page"), default=1, min_v=1, max_v=100_000)
    limit = clamp_int(payload.get("limit"), default=20, min_v=1, max_v=100)
    status = enum_value(payload.get("status"), VACANCY_STATUSES, field="status", default="")
    q = get_str(payload, "q")

    base = select(Vacancy).where(Vacancy.tenantId == auth.tenantId)
    if status:
        base = base.where(Vacancy.status == status)
    if q:
        like = f"%{q}%"
        base = base.where(or_(Vacancy.title.ilike(like), Vacancy.companyName.ilike(like), Vacancy.location.ilike(like)))

    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    rows = (
        db.execute(base.order_by(Vacancy.updatedAt.desc(), Vacancy.vacancyId.desc()).offset((page - 1) * limit).limit(limit))
        .scalars()
        .all()
    )

    counts: dict[str, int] = {}
    ids = [v.vacancyId for v in rows]
    if ids:
        counts = {
            vid: int(n or 0)
            for vid, n in db.execute(
                select(Application.vacancyId, func.count())
                .where(Application.tenantId == auth.tenantId)
                .where(Application.vacancyId.in_(ids))
                .group_by(Application.vacancyId)
            ).all()
        }
    items = [serialize_vacancy(v, with_children=False) | {"applicationsCount": counts.get(v.vacancyId, 0)} for v in rows]
    return {"items": items, "total": total, "page": page, "pageSize": limit}


def vacancy_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    return {"vacancy": serialize_vacancy(v)}


def vacancy_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    now = iso_utc_now()
    v = Vacancy(
        vacancyId=next_prefixed_id(db, counter_key="VAC", prefix="VAC-", pad=6),
        tenantId=auth.tenantId,
        status="open",
        salaryMin=None,
        salaryMax=None,
        checklistJson="",
        notesJson="",
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    _apply_fields(v, data or {}, creating=True)
    db.add(v)
    append_audit(
        db, entityType="VACANCY", entityId=v.vacancyId, action="VACANCY_CREATE", toState=v.status, actor=auth, after=serialize_vacancy(v)
    )
    return {"vacancy": serialize_vacancy(v)}


def vacancy_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    before = serialize_vacancy(v, with_children=False)
    _apply_fields(v, data or {}, creating=False)
    v.updatedAt = iso_utc_now()
    v.updatedBy = actor_id(auth)
    after = serialize_vacancy(v, with_children=False)
    append_audit(
        db,
        entityType="VACANCY",
        entityId=v.vacancyId,
        action="VACANCY_UPDATE",
        fromState=before["status"],
        toState=after["status"],
        actor=auth,
        before=before,
        after=after,
    )
    return {"vacancy": serialize_vacancy(v)}


def vacancy_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    removed = db.execute(
        delete(Application).where(Application.tenantId == auth.tenantId).where(Application.vacancyId == v.vacancyId)
    ).rowcount
    db.delete(v)
    append_audit(
        db,
        entityType="VACANCY",
        entityId=v.vacancyId,
        action="VACANCY_DELETE",
        fromState=v.status,
        actor=auth,
        meta={"applicationsRemoved": int(removed or 0)},
    )
    return {"ok": True, "vacancyId": v.vacancyId, "applicationsRemoved": int(removed or 0)}


# Checklist


def _touch(v: Vacancy, auth: AuthContext) -> None:
    v.updatedAt = iso_utc_now()
    v.updatedBy = actor_id(auth)


def vacancy_checklist_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    return {"items": json_loads_list(v.checklistJson)}


def vacancy_checklist_add(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    label = require_str(data, "label", min_len=2, max_len=300)
    items = json_loads_list(v.checklistJson)
    item = {"id": short_id(), "label": label, "done": parse_bool((data or {}).get("done")), "updatedAt": iso_utc_now()}
    items.append(item)
    v.checklistJson = dumps(items)
    _touch(v, auth)
    return {"item": item, "items": items}


def _find_item(items: list[Any], item_id: str) -> dict[str, Any]:
    for it in items:
        if isinstance(it, dict) and str(it.get("id") or "") == item_id:
            return it
    raise ApiError("NOT_FOUND", "Vacancy or item not found")


def vacancy_checklist_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    v = get_tenant_row(db, Vacancy, "vacancyId", payload.get("vacancyId"), auth.tenantId, message="Vacancy or item not found")
    items = json_loads_list(v.checklistJson)
    item = _find_item(items, get_str(payload, "itemId"))
    if "label" in payload:
        item["label"] = require_str(payload, "label", min_len=2, max_len=300)
    if "done" in payload:
        item["done"] = parse_bool(payload.get("done"))
    item["updatedAt"] = iso_utc_now()
    v.checklistJson = dumps(items)
    _touch(v, auth)
    return {"item": item, "items": items}


def vacancy_checklist_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    v = get_tenant_row(db, Vacancy, "vacancyId", payload.get("vacancyId"), auth.tenantId, message="Vacancy or item not found")
    items = json_loads_list(v.checklistJson)
    item = _find_item(items, get_str(payload, "itemId"))
    items = [it for it in items if it is not item]
    v.checklistJson = dumps(items)
    _touch(v, auth)
    return {"items": items}


# Notes


def vacancy_notes_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    notes = json_loads_list(v.notesJson)
    return {"items": sorted(notes, key=lambda n: str(n.get("createdAt") or ""), reverse=True)}


def vacancy_notes_add(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    v = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    text = require_str(data, "text", min_len=2, max_len=2000)
    notes = json_loads_list(v.notesJson)
    note = {"id": short_id(), "text": text, "author": auth.fullName or auth.email or auth.userId, "createdAt": iso_utc_now()}
    notes.append(note)
    v.notesJson = dumps(notes)
    _touch(v, auth)
    return {"note": note}


def vacancy_notes_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    v = get_tenant_row(db, Vacancy, "vacancyId", payload.get("vacancyId"), auth.tenantId, message="Vacancy or item not found")
    notes = json_loads_list(v.notesJson)
    note = _find_item(notes, get_str(payload, "noteId"))
    v.notesJson = dumps([n for n in notes if n is not note])
    _touch(v, auth)
    return {"ok": True, "noteId": note.get("id")}
