from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    get_list,
    get_str,
    get_tenant_row,
    next_prefixed_id,
    require_auth,
)
from models import Application, AtsStage, Candidate, Vacancy
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


# (stageKey, stageName, color)
PIPELINE_STAGES: list[tuple[str, str, str]] = [
    ("sent", "Enviado", "#64748b"),
    ("interview", "Entrevista", "#3b82f6"),
    ("feedback", "Feedback", "#a855f7"),
    ("offer", "Oferta", "#f59e0b"),
    ("hired", "Contratado", "#22c55e"),
    ("rejected", "Rechazado", "#ef4444"),
]
DEFAULT_STAGE = "sent"
MAX_REORDER_CHANGES = 500


def seed_pipeline_stages(db, tenant_id: str) -> int:
    """Insert the default stages missing for a tenant. Returns how many were added."""
    have = set(db.execute(select(AtsStage.stageKey).where(AtsStage.tenantId == tenant_id)).scalars().all())
    now = iso_utc_now()
    added = 0
    for idx, (key, name, color) in enumerate(PIPELINE_STAGES, start=1):
        if key in have:
            continue
        db.add(
            AtsStage(
                stageId=f"STG-{new_uuid()}",
                tenantId=tenant_id,
                stageKey=key,
                stageName=name,
                orderNo=idx,
                color=color,
                isActive=True,
                createdAt=now,
                createdBy="SYSTEM",
                updatedAt=now,
                updatedBy="SYSTEM",
            )
        )
        added += 1
    return added


def _active_stages(db, tenant_id: str) -> list[AtsStage]:
    return (
        db.execute(
            select(AtsStage)
            .where(AtsStage.tenantId == tenant_id)
            .where(AtsStage.isActive == True)  # noqa: E712
            .order_by(AtsStage.orderNo.asc(), AtsStage.stageKey.asc())
        )
        .scalars()
        .all()
    )


def _stage_order(db, tenant_id: str) -> dict[str, int]:
    return {s.stageKey: int(s.orderNo or 0) for s in _active_stages(db, tenant_id)}


def _validate_stage(stages: dict[str, int], value: Any) -> str:
    key = str(value or "").strip().lower()
    if key not in stages:
        raise ApiError("BAD_REQUEST", f"Invalid status: {key or '(empty)'}. Allowed: {', '.join(stages)}")
    return key


def _next_order(db, tenant_id: str, vacancy_id: str, status: str) -> int:
    cur = db.execute(
        select(func.max(Application.orderNo))
        .where(Application.tenantId == tenant_id)
        .where(Application.vacancyId == vacancy_id)
        .where(Application.status == status)
    ).scalar_one_or_none()
    return 0 if cur is None else int(cur) + 1


def _order_value(raw: Any) -> int:
    try:
        n = int(raw)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", "order must be an integer")
    if n < 0:
        raise ApiError("BAD_REQUEST", "order must be >= 0")
    return n


def serialize_application(a: Application, candidate: Candidate | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {
        "applicationId": a.applicationId,
        "candidateId": a.candidateId,
        "vacancyId": a.vacancyId,
        "status": a.status or DEFAULT_STAGE,
        "notes": a.notes or "",
        "order": int(a.orderNo or 0),
        "createdAt": a.createdAt or "",
        "updatedAt": a.updatedAt or "",
    }
    if candidate is not None:
        out["candidate"] = {
            "candidateId": candidate.candidateId,
            "name": candidate.name or "",
            "email": candidate.email or "",
            "role": candidate.role or "",
            "match": int(candidate.match or 0),
        }
    return out


def _load_vacancy_applications(db, tenant_id: str, vacancy_id: str) -> list[dict[str, Any]]:
    stages = _stage_order(db, tenant_id)
    rows = db.execute(
        select(Application, Candidate)
        .outerjoin(
            Candidate,
            (Candidate.candidateId == Application.candidateId) & (Candidate.tenantId == Application.tenantId),
        )
        .where(Application.tenantId == tenant_id)
        .where(Application.vacancyId == vacancy_id)
    ).all()
    # Applications in a deactivated stage sort last.
    rows = sorted(
        rows,
        key=lambda r: (stages.get(r[0].status, 10_000), int(r[0].orderNo or 0), str(r[0].createdAt or "")),
    )
    return [serialize_application(a, c) for a, c in rows]


def pipeline_stages_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {
        "items": [
            {
                "stageId": s.stageId,
                "stageKey": s.stageKey,
                "stageName": s.stageName or s.stageKey,
                "orderNo": int(s.orderNo or 0),
                "color": s.color or "",
            }
            for s in _active_stages(db, auth.tenantId)
        ]
    }


def application_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    vacancy_id = get_str(data, "vacancyId")
    if not vacancy_id:
        raise ApiError("BAD_REQUEST", "Missing vacancyId")
    items = _load_vacancy_applications(db, auth.tenantId, vacancy_id)
    return {"items": items, "total": len(items)}


def pipeline_board_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    vacancy = get_tenant_row(db, Vacancy, "vacancyId", (data or {}).get("vacancyId"), auth.tenantId, message="Vacancy not found")
    limit = clamp_int((data or {}).get("limitPerColumn"), default=200, min_v=1, max_v=500)
    items = _load_vacancy_applications(db, auth.tenantId, vacancy.vacancyId)

    columns = []
    for s in _active_stages(db, auth.tenantId):
        col_items = [it for it in items if it["status"] == s.stageKey]
        columns.append(
            {
                "key": s.stageKey,
                "title": s.stageName or s.stageKey,
                "color": s.color or "",
                "total": len(col_items),
                "items": col_items[:limit],
            }
        )
    return {"vacancyId": vacancy.vacancyId, "columns": columns, "total": len(items), "generatedAt": iso_utc_now()}


def application_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    cand = get_tenant_row(db, Candidate, "candidateId", payload.get("candidateId"), auth.tenantId, message="Candidate not found")
    vac = get_tenant_row(db, Vacancy, "vacancyId", payload.get("vacancyId"), auth.tenantId, message="Vacancy not found")
    row = new_application(
        db,
        tenant_id=auth.tenantId,
        candidate_id=cand.candidateId,
        vacancy_id=vac.vacancyId,
        status=payload.get("status") or DEFAULT_STAGE,
        notes=get_str(payload, "notes", max_len=2000),
        order=payload.get("order"),
        by=actor_id(auth),
    )
    append_audit(
        db,
        entityType="APPLICATION",
        entityId=row.applicationId,
        action="APPLICATION_CREATE",
        toState=row.status,
        actor=auth,
        meta={"candidateId": cand.candidateId, "vacancyId": vac.vacancyId},
    )
    return {"application": serialize_application(row, cand)}


def new_application(
    db, *, tenant_id: str, candidate_id: str, vacancy_id: str, status: Any, notes: str, order: Any, by: str
) -> Application:
    stages = _stage_order(db, tenant_id)
    key = _validate_stage(stages, status)
    dup = db.execute(
        select(Application.applicationId)
        .where(Application.tenantId == tenant_id)
        .where(Application.candidateId == candidate_id)
        .where(Application.vacancyId == vacancy_id)
    ).first()
    if dup:
        raise ApiError("CONFLICT", "Candidate already applied to this vacancy")

    now = iso_utc_now()
    row = Application(
        applicationId=next_prefixed_id(db, counter_key="APP", prefix="APP-", pad=6),
        tenantId=tenant_id,
        candidateId=candidate_id,
        vacancyId=vacancy_id,
        status=key,
        notes=notes,
        orderNo=_order_value(order) if order is not None and order != "" else _next_order(db, tenant_id, vacancy_id, key),
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )
    db.add(row)
    return row


def application_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    row = get_tenant_row(
        db, Application, "applicationId", payload.get("applicationId"), auth.tenantId, message="Application not found"
    )
    from_status = row.status

    if "notes" in payload:
        row.notes = get_str(payload, "notes", max_len=2000)
    if "status" in payload:
        new_status = _validate_stage(_stage_order(db, auth.tenantId), payload.get("status"))
        if new_status != row.status:
            row.status = new_status
            if payload.get("order") is None or payload.get("order") == "":
                row.orderNo = _next_order(db, auth.tenantId, row.vacancyId, new_status)
    if payload.get("order") is not None and payload.get("order") != "":
        row.orderNo = _order_value(payload.get("order"))

    row.updatedAt = iso_utc_now()
    row.updatedBy = actor_id(auth)
    if from_status != row.status:
        append_audit(
            db,
            entityType="APPLICATION",
            entityId=row.applicationId,
            action="APPLICATION_STATUS_CHANGE",
            fromState=from_status,
            toState=row.status,
            actor=auth,
            meta={"vacancyId": row.vacancyId, "candidateId": row.candidateId},
        )
    return {"application": serialize_application(row)}


def application_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    row = get_tenant_row(
        db, Application, "applicationId", (data or {}).get("applicationId"), auth.tenantId, message="Application not found"
    )
    db.delete(row)
    append_audit(
        db,
        entityType="APPLICATION",
        entityId=row.applicationId,
        action="APPLICATION_DELETE",
        fromState=row.status,
        actor=auth,
        meta={"vacancyId": row.vacancyId, "candidateId": row.candidateId},
    )
    return {"ok": True, "applicationId": row.applicationId}


def application_reorder(data, auth: AuthContext | None, db, cfg):
    """Apply a drag-and-drop batch of `{id, status, order}` moves for one vacancy.

    Changes naming an application outside the vacancy (or tenant) are skipped,
    not rejected. Everything lands in the request transaction, so the batch is
    all-or-nothing.
    """
    auth = require_auth(auth)
    vacancy_id = get_str(data, "vacancyId")
    if not vacancy_id:
        raise ApiError("BAD_REQUEST", "Missing vacancyId")
    changes = get_list(data, "changes")
    if not changes:
        raise ApiError("BAD_REQUEST", "changes must be a non-empty array")
    if len(changes) > MAX_REORDER_CHANGES:
        raise ApiError("BAD_REQUEST", f"Max {MAX_REORDER_CHANGES} changes per request")

    stages = _stage_order(db, auth.tenantId)
    parsed: list[tuple[str, str, int]] = []
    for ch in changes:
        if not isinstance(ch, dict):
            raise ApiError("BAD_REQUEST", "Each change must be an object")
        app_id = str(ch.get("id") or "").strip()
        if not app_id:
            raise ApiError("BAD_REQUEST", "Each change needs an id")
        parsed.append((app_id, _validate_stage(stages, ch.get("status")), _order_value(ch.get("order"))))

    rows = {
        a.applicationId: a
        for a in db.execute(
            select(Application).where(Application.tenantId == auth.tenantId).where(Application.vacancyId == vacancy_id)
        )
        .scalars()
        .all()
    }
    if not rows:
        raise ApiError("NOT_FOUND", "Vacancy not found")

    now = iso_utc_now()
    by = actor_id(auth)
    matched = 0
    modified = 0
    moves: list[dict[str, Any]] = []
    for app_id, status, order in parsed:
        row = rows.get(app_id)
        if row is None:
            continue
        matched += 1
        if row.status == status and int(row.orderNo or 0) == order:
            continue
        if row.status != status:
            moves.append({"applicationId": app_id, "from": row.status, "to": status})
        row.status = status
        row.orderNo = order
        row.updatedAt = now
        row.updatedBy = by
        modified += 1

    append_audit(
        db,
        entityType="VACANCY",
        entityId=vacancy_id,
        action="APPLICATION_REORDER",
        actor=auth,
        at=now,
        meta={"requested": len(parsed), "matched": matched, "modified": modified, "moves": moves[:50]},
    )
    return {"ok": True, "matched": matched, "modified": modified}
