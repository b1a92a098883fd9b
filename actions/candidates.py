from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, or_, select

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    enum_value,
    get_date,
    get_number,
    get_str,
    get_tenant_row,
    next_prefixed_id,
    page_out,
    require_auth,
    require_str,
)
from actions.tenants import validate_email
from models import Application, Candidate
from utils import AuthContext, iso_utc_now


CANDIDATE_SOURCES = ["cv", "form", "import", "manual"]
CANDIDATE_SORT_FIELDS = {
    "createdAt": Candidate.createdAt,
    "match": Candidate.match,
    "name": Candidate.name,
    "role": Candidate.role,
    "status": Candidate.status,
}
DEFAULT_CANDIDATE_STATUS = "Nuevo"


def serialize_candidate(c: Candidate) -> dict[str, Any]:
    return {
        "candidateId": c.candidateId,
        "name": c.name or "",
        "email": c.email or "",
        "role": c.role or "",
        "match": int(c.match or 0),
        "status": c.status or DEFAULT_CANDIDATE_STATUS,
        "source": c.source or "manual",
        "notes": c.notes or "",
        "createdAt": c.createdAt or "",
        "updatedAt": c.updatedAt or "",
    }


def _match_value(data: dict[str, Any], default: int | None = 0) -> int | None:
    n = get_number(data, "match", default=default, min_v=0, max_v=100)
    return None if n is None else int(round(n))


def new_candidate(db, *, tenant_id: str, name: str, email: str, role: str, source: str, by: str, notes: str = "", match: int = 0, status: str = "") -> Candidate:
    now = iso_utc_now()
    row = Candidate(
        candidateId=next_prefixed_id(db, counter_key="CAN", prefix="CAN-", pad=6),
        tenantId=tenant_id,
        name=name,
        email=email,
        role=role,
        match=int(match or 0),
        status=status or DEFAULT_CANDIDATE_STATUS,
        source=source,
        notes=notes,
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )
    db.add(row)
    return row


def candidate_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=20, min_v=1, max_v=100)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)
    q = get_str(payload, "q")
    status = get_str(payload, "status")
    role = get_str(payload, "role")
    match_min = get_number(payload, "matchMin", min_v=0, max_v=100)
    match_max = get_number(payload, "matchMax", min_v=0, max_v=100)
    created_from = get_date(payload, "createdFrom")
    created_to = get_date(payload, "createdTo")
    sort_field = enum_value(payload.get("sortField"), CANDIDATE_SORT_FIELDS.keys(), field="sortField", default="createdAt")
    sort_dir = enum_value(payload.get("sortDir"), ["asc", "desc"], field="sortDir", default="desc")

    base = select(Candidate).where(Candidate.tenantId == auth.tenantId)
    if q:
        like = f"%{q}%"
        base = base.where(
            or_(Candidate.name.ilike(like), Candidate.email.ilike(like), Candidate.role.ilike(like), Candidate.status.ilike(like))
        )
    if status:
        base = base.where(Candidate.status == status)
    if role:
        base = base.where(Candidate.role.ilike(f"%{role}%"))
    if match_min is not None:
        base = base.where(Candidate.match >= match_min)
    if match_max is not None:
        base = base.where(Candidate.match <= match_max)
    if created_from:
        base = base.where(Candidate.createdAt >= created_from)
    if created_to:
        # Inclusive end date against ISO timestamps.
        base = base.where(Candidate.createdAt < f"{created_to}T99")

    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    col = CANDIDATE_SORT_FIELDS[sort_field]
    order = col.asc() if sort_dir == "asc" else col.desc()
    rows = db.execute(base.order_by(order, Candidate.candidateId.asc()).offset(skip).limit(limit)).scalars().all()
    return page_out([serialize_candidate(c) for c in rows], total=total, limit=limit, skip=skip)


def candidate_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    c = get_tenant_row(db, Candidate, "candidateId", (data or {}).get("candidateId"), auth.tenantId, message="Candidate not found")
    return {"candidate": serialize_candidate(c)}


def candidate_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    name = require_str(payload, "name", min_len=2, max_len=200)
    email = validate_email(payload.get("email")) if get_str(payload, "email") else ""
    row = new_candidate(
        db,
        tenant_id=auth.tenantId,
        name=name,
        email=email,
        role=get_str(payload, "role", max_len=200),
        source=enum_value(payload.get("source"), CANDIDATE_SOURCES, field="source", default="manual"),
        notes=get_str(payload, "notes", max_len=5000),
        match=_match_value(payload) or 0,
        status=get_str(payload, "status", max_len=50),
        by=actor_id(auth),
    )
    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=row.candidateId,
        action="CANDIDATE_CREATE",
        toState=row.status,
        actor=auth,
        after=serialize_candidate(row),
    )
    return {"candidate": serialize_candidate(row)}


def candidate_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    c = get_tenant_row(db, Candidate, "candidateId", payload.get("candidateId"), auth.tenantId, message="Candidate not found")
    before = serialize_candidate(c)

    if "name" in payload:
        c.name = require_str(payload, "name", min_len=2, max_len=200)
    if "email" in payload:
        c.email = validate_email(payload.get("email")) if get_str(payload, "email") else ""
    if "role" in payload:
        c.role = get_str(payload, "role", max_len=200)
    if "match" in payload:
        c.match = _match_value(payload, default=int(c.match or 0))
    if "status" in payload:
        c.status = get_str(payload, "status", max_len=50) or DEFAULT_CANDIDATE_STATUS
    if "source" in payload:
        c.source = enum_value(payload.get("source"), CANDIDATE_SOURCES, field="source", default=c.source)
    if "notes" in payload:
        c.notes = get_str(payload, "notes", max_len=5000)

    c.updatedAt = iso_utc_now()
    c.updatedBy = actor_id(auth)
    after = serialize_candidate(c)
    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=c.candidateId,
        action="CANDIDATE_UPDATE",
        fromState=before["status"],
        toState=after["status"],
        actor=auth,
        before=before,
        after=after,
    )
    return {"candidate": after}


def candidate_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    c = get_tenant_row(db, Candidate, "candidateId", (data or {}).get("candidateId"), auth.tenantId, message="Candidate not found")
    removed = db.execute(
        delete(Application).where(Application.tenantId == auth.tenantId).where(Application.candidateId == c.candidateId)
    ).rowcount
    db.delete(c)
    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=c.candidateId,
        action="CANDIDATE_DELETE",
        fromState=c.status,
        actor=auth,
        before=serialize_candidate(c),
        meta={"applicationsRemoved": int(removed or 0)},
    )
    return {"ok": True, "candidateId": c.candidateId, "applicationsRemoved": int(removed or 0)}
