"""
Sequential approval workflows.

A workflow is an ordered list of steps, each assigned to one active user of the
tenant. Only the current step can be acted on, and only by its assignee.
Completing the last step completes the workflow. Rejecting any step cancels it
and skips whatever was left.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import select

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_date,
    get_dict,
    get_str,
    local_today,
    page_out,
    require_auth,
    require_str,
)
from actions.notifications import notify_from_template
from models import User, Workflow
from utils import ApiError, AuthContext, iso_utc_now, json_loads_dict, json_loads_list, new_uuid, normalize_role

WORKFLOW_TYPES = ["leave-approval", "evaluation-review", "benefit-enrollment", "document-approval", "custom"]
WORKFLOW_STATUSES = ["pending", "in-progress", "completed", "cancelled", "failed"]
WORKFLOW_PRIORITIES = ["low", "normal", "high", "urgent"]
OPEN_STATUSES = ("pending", "in-progress")
MAX_STEPS = 20

_SUPERVISORS = {"ADMIN", "HR"}


def serialize_workflow(w: Workflow) -> dict[str, Any]:
    steps = json_loads_list(w.stepsJson)
    current = steps[w.currentStepIndex] if w.status in OPEN_STATUSES and 0 <= w.currentStepIndex < len(steps) else None
    return {
        "workflowId": w.workflowId,
        "type": w.type,
        "name": w.name or "",
        "description": w.description or "",
        "resourceType": w.resourceType or "",
        "resourceId": w.resourceId or "",
        "resourceData": json_loads_dict(w.resourceDataJson),
        "requestedBy": w.requestedBy,
        "requestedByName": w.requestedByName or "",
        "status": w.status,
        "currentStepIndex": w.currentStepIndex,
        "currentStep": current,
        "steps": steps,
        "priority": w.priority or "normal",
        "startedAt": w.startedAt or "",
        "completedAt": w.completedAt or "",
        "cancelledAt": w.cancelledAt or "",
        "cancelledBy": w.cancelledBy or "",
        "cancellationReason": w.cancellationReason or "",
        "metadata": json_loads_dict(w.metadataJson),
        "createdAt": w.createdAt or "",
        "updatedAt": w.updatedAt or "",
    }


def _is_supervisor(auth: AuthContext) -> bool:
    return normalize_role(auth.role) in _SUPERVISORS


def _can_view(auth: AuthContext, w: Workflow) -> bool:
    if _is_supervisor(auth) or w.requestedBy == auth.userId:
        return True
    return any(s.get("assignedTo") == auth.userId for s in json_loads_list(w.stepsJson))


def _get_workflow(db, auth: AuthContext, workflow_id: Any, *, for_update: bool = False) -> Workflow:
    wid = str(workflow_id or "").strip()
    if not wid:
        raise ApiError("BAD_REQUEST", "Missing workflowId")
    q = select(Workflow).where(Workflow.workflowId == wid).where(Workflow.tenantId == auth.tenantId)
    if for_update:
        q = q.with_for_update()
    w = db.execute(q).scalar_one_or_none()
    # Hidden workflows look the same as missing ones.
    if not w or not _can_view(auth, w):
        raise ApiError("NOT_FOUND", "Workflow not found")
    return w


def _parse_steps(db, tenant_id: str, raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list) or not raw:
        raise ApiError("BAD_REQUEST", "steps must be a non-empty list")
    if len(raw) > MAX_STEPS:
        raise ApiError("BAD_REQUEST", f"A workflow can have at most {MAX_STEPS} steps")

    assignees = {str((s or {}).get("assignedTo") or "").strip() for s in raw if isinstance(s, dict)}
    users = {
        u.userId: u
        for u in db.execute(
            select(User).where(User.tenantId == tenant_id).where(User.userId.in_(assignees)).where(User.status == "ACTIVE")
        ).scalars()
    }

    steps = []
    for idx, s in enumerate(raw):
        if not isinstance(s, dict):
            raise ApiError("BAD_REQUEST", f"steps[{idx}] must be an object")
        user = users.get(str(s.get("assignedTo") or "").strip())
        if not user:
            raise ApiError("BAD_REQUEST", f"steps[{idx}].assignedTo is not an active user")
        steps.append(
            {
                "stepId": f"STEP-{idx + 1}",
                "name": require_str(s, "name", max_len=200, label=f"steps[{idx}].name"),
                "description": get_str(s, "description", max_len=1000),
                "assignedTo": user.userId,
                "assignedToName": user.fullName or user.email,
                "assignedToRole": user.role,
                "status": "pending",
                "dueDate": get_date(s, "dueDate"),
                "completedAt": "",
                "completedBy": "",
                "completedByName": "",
                "comments": "",
                "data": {},
                "notificationSent": False,
                "remindersSent": 0,
            }
        )
    return steps


def _notify_step(db, w: Workflow, step: dict[str, Any], *, created_by: str) -> None:
    notify_from_template(
        db,
        tenant_id=w.tenantId,
        user_ids=[step["assignedTo"]],
        template="WORKFLOW_STEP_ASSIGNED",
        variables={"stepName": step["name"], "workflowName": w.name, "requestedByName": w.requestedByName},
        action_url=f"/workflows/{w.workflowId}",
        data={"workflowId": w.workflowId, "stepId": step["stepId"]},
        created_by=created_by,
    )
    step["notificationSent"] = True


def workflow_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    now = iso_utc_now()
    w = Workflow(
        workflowId=f"WFL-{new_uuid()}",
        tenantId=auth.tenantId,
        type=enum_value(payload.get("type"), WORKFLOW_TYPES, field="type", default="custom"),
        name=require_str(payload, "name", min_len=2, max_len=200),
        description=get_str(payload, "description", max_len=2000),
        resourceType=require_str(payload, "resourceType", max_len=100),
        resourceId=require_str(payload, "resourceId", max_len=200),
        resourceDataJson=dumps(get_dict(payload, "resourceData")),
        requestedBy=auth.userId,
        requestedByName=auth.fullName or auth.email,
        status="in-progress",
        currentStepIndex=0,
        priority=enum_value(payload.get("priority"), WORKFLOW_PRIORITIES, field="priority", default="normal"),
        startedAt=now,
        metadataJson=dumps(get_dict(payload, "metadata")),
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    steps = _parse_steps(db, auth.tenantId, payload.get("steps"))
    _notify_step(db, w, steps[0], created_by=actor_id(auth))
    w.stepsJson = dumps(steps)
    db.add(w)

    out = serialize_workflow(w)
    append_audit(db, entityType="WORKFLOW", entityId=w.workflowId, action="WORKFLOW_CREATE", toState=w.status, actor=auth, after=out)
    return {"workflow": out}


def workflow_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"workflow": serialize_workflow(_get_workflow(db, auth, (data or {}).get("workflowId")))}


def _waiting_on(w: Workflow, user_id: str) -> bool:
    steps = json_loads_list(w.stepsJson)
    if w.status not in OPEN_STATUSES or not 0 <= w.currentStepIndex < len(steps):
        return False
    step = steps[w.currentStepIndex]
    return step.get("assignedTo") == user_id and step.get("status") == "pending"


def workflow_list(data, auth: AuthContext | None, db, cfg):
    """
    scope=pending: workflows whose current step waits on the caller (default).
    scope=created: workflows the caller requested.
    scope=all: every workflow of the tenant, ADMIN and HR only.
    """
    auth = require_auth(auth)
    payload = data or {}
    scope = enum_value(payload.get("scope"), ["pending", "created", "all"], field="scope", default="pending")
    status = enum_value(payload.get("status"), WORKFLOW_STATUSES, field="status")
    w_type = enum_value(payload.get("type"), WORKFLOW_TYPES, field="type")
    limit = clamp_int(payload.get("limit"), default=50, min_v=1, max_v=200)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)

    q = select(Workflow).where(Workflow.tenantId == auth.tenantId)
    if scope == "all" and not _is_supervisor(auth):
        raise ApiError("FORBIDDEN", "Only ADMIN or HR can list every workflow")
    if scope == "created":
        q = q.where(Workflow.requestedBy == auth.userId)
    elif scope == "pending":
        q = q.where(Workflow.status.in_(OPEN_STATUSES))
    if status:
        q = q.where(Workflow.status == status)
    if w_type:
        q = q.where(Workflow.type == w_type)
    resource_id = get_str(payload, "resourceId")
    if resource_id:
        q = q.where(Workflow.resourceId == resource_id)

    rows = db.execute(q.order_by(Workflow.createdAt.desc())).scalars().all()
    if scope == "pending":
        # current step assignee lives inside stepsJson
        rows = [w for w in rows if _waiting_on(w, auth.userId)]
    items = [serialize_workflow(w) for w in rows[skip : skip + limit]]
    return page_out(items, total=len(rows), limit=limit, skip=skip)


def _current_step_for(auth: AuthContext, w: Workflow) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    if w.status not in OPEN_STATUSES:
        raise ApiError("BAD_REQUEST", f"Workflow is already {w.status}")
    steps = json_loads_list(w.stepsJson)
    step = steps[w.currentStepIndex]
    if step.get("assignedTo") != auth.userId:
        raise ApiError("FORBIDDEN", "The current step is not assigned to you")
    if step.get("status") != "pending":
        raise ApiError("BAD_REQUEST", f"Step is already {step.get('status')}")
    return steps, step


def workflow_step_complete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    w = _get_workflow(db, auth, payload.get("workflowId"), for_update=True)
    steps, step = _current_step_for(auth, w)

    now = iso_utc_now()
    step |= {
        "status": "completed",
        "completedAt": now,
        "completedBy": auth.userId,
        "completedByName": auth.fullName or auth.email,
        "comments": get_str(payload, "comments", max_len=2000),
        "data": get_dict(payload, "data"),
    }
    from_status = w.status
    if w.currentStepIndex + 1 >= len(steps):
        w.status = "completed"
        w.completedAt = now
        notify_from_template(
            db,
            tenant_id=w.tenantId,
            user_ids=[w.requestedBy],
            template="WORKFLOW_COMPLETED",
            variables={"workflowName": w.name},
            action_url=f"/workflows/{w.workflowId}",
            data={"workflowId": w.workflowId},
            created_by=actor_id(auth),
        )
    else:
        w.currentStepIndex += 1
        _notify_step(db, w, steps[w.currentStepIndex], created_by=actor_id(auth))

    w.stepsJson = dumps(steps)
    w.updatedAt = now
    w.updatedBy = actor_id(auth)
    append_audit(
        db, entityType="WORKFLOW", entityId=w.workflowId, action="WORKFLOW_STEP_COMPLETE", fromState=from_status,
        toState=w.status, actor=auth, at=now, meta={"stepId": step["stepId"]},
    )
    return {"workflow": serialize_workflow(w)}


def workflow_step_reject(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    w = _get_workflow(db, auth, payload.get("workflowId"), for_update=True)
    reason = require_str(payload, "reason", max_len=1000)
    steps, step = _current_step_for(auth, w)

    now = iso_utc_now()
    step |= {
        "status": "rejected",
        "completedAt": now,
        "completedBy": auth.userId,
        "completedByName": auth.fullName or auth.email,
        "comments": reason,
    }
    for later in steps[w.currentStepIndex + 1 :]:
        later["status"] = "skipped"

    from_status = w.status
    w.status = "cancelled"
    w.cancelledAt = now
    w.cancelledBy = auth.userId
    w.cancellationReason = reason
    w.stepsJson = dumps(steps)
    w.updatedAt = now
    w.updatedBy = actor_id(auth)

    notify_from_template(
        db,
        tenant_id=w.tenantId,
        user_ids=[w.requestedBy],
        template="WORKFLOW_REJECTED",
        variables={"workflowName": w.name, "stepName": step["name"], "actorName": auth.fullName or auth.email, "reason": reason},
        action_url=f"/workflows/{w.workflowId}",
        data={"workflowId": w.workflowId, "stepId": step["stepId"]},
        created_by=actor_id(auth),
    )
    append_audit(
        db, entityType="WORKFLOW", entityId=w.workflowId, action="WORKFLOW_STEP_REJECT", fromState=from_status,
        toState="cancelled", remark=reason, actor=auth, at=now, meta={"stepId": step["stepId"]},
    )
    return {"workflow": serialize_workflow(w)}


def workflow_cancel(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    w = _get_workflow(db, auth, payload.get("workflowId"), for_update=True)
    if w.requestedBy != auth.userId and not _is_supervisor(auth):
        raise ApiError("FORBIDDEN", "Only the requester, ADMIN or HR can cancel a workflow")
    if w.status not in OPEN_STATUSES:
        raise ApiError("BAD_REQUEST", f"Workflow is already {w.status}")

    now = iso_utc_now()
    steps = json_loads_list(w.stepsJson)
    for s in steps:
        if s.get("status") == "pending":
            s["status"] = "skipped"
    from_status = w.status
    w.status = "cancelled"
    w.cancelledAt = now
    w.cancelledBy = auth.userId
    w.cancellationReason = get_str(payload, "reason", max_len=1000)
    w.stepsJson = dumps(steps)
    w.updatedAt = now
    w.updatedBy = actor_id(auth)
    append_audit(
        db, entityType="WORKFLOW", entityId=w.workflowId, action="WORKFLOW_CANCEL", fromState=from_status,
        toState="cancelled", remark=w.cancellationReason, actor=auth, at=now,
    )
    return {"workflow": serialize_workflow(w)}


def workflow_stats(data, auth: AuthContext | None, db, cfg):
    """Counts by status; ADMIN and HR see the tenant, others their own requests."""
    auth = require_auth(auth)
    q = select(Workflow).where(Workflow.tenantId == auth.tenantId)
    if not _is_supervisor(auth):
        q = q.where(Workflow.requestedBy == auth.userId)
    rows = db.execute(q).scalars().all()
    by_status = {s: 0 for s in WORKFLOW_STATUSES}
    by_type: dict[str, int] = {}
    for w in rows:
        by_status[w.status] = by_status.get(w.status, 0) + 1
        by_type[w.type] = by_type.get(w.type, 0) + 1

    waiting = db.execute(
        select(Workflow).where(Workflow.tenantId == auth.tenantId).where(Workflow.status.in_(OPEN_STATUSES))
    ).scalars()
    return {
        "total": len(rows),
        "byStatus": by_status,
        "byType": by_type,
        "pendingForMe": sum(1 for w in waiting if _waiting_on(w, auth.userId)),
    }


def workflow_send_reminders(data, auth: AuthContext | None, db, cfg):
    """Notify assignees of current steps whose dueDate is before today (local)."""
    auth = require_auth(auth)
    today = local_today(cfg).isoformat()
    rows = db.execute(
        select(Workflow).where(Workflow.tenantId == auth.tenantId).where(Workflow.status.in_(OPEN_STATUSES)).with_for_update()
    ).scalars().all()

    sent = []
    for w in rows:
        steps = json_loads_list(w.stepsJson)
        if not 0 <= w.currentStepIndex < len(steps):
            continue
        step = steps[w.currentStepIndex]
        if step.get("status") != "pending" or not step.get("dueDate") or step["dueDate"] >= today:
            continue
        notify_from_template(
            db,
            tenant_id=w.tenantId,
            user_ids=[step["assignedTo"]],
            template="WORKFLOW_OVERDUE",
            variables={"stepName": step["name"], "workflowName": w.name, "dueDate": step["dueDate"]},
            action_url=f"/workflows/{w.workflowId}",
            data={"workflowId": w.workflowId, "stepId": step["stepId"]},
            created_by=actor_id(auth),
        )
        step["remindersSent"] = int(step.get("remindersSent") or 0) + 1
        w.stepsJson = dumps(steps)
        sent.append({"workflowId": w.workflowId, "stepId": step["stepId"], "assignedTo": step["assignedTo"]})
    return {"asOf": today, "sent": len(sent), "reminders": sent}
