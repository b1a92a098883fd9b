from __future__ import annotations

import re
from typing import Any

from flask import g, has_request_context
from sqlalchemy import func, select, update

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_dict,
    get_list,
    get_str,
    parse_bool,
    require_auth,
    require_str,
)
from models import Notification, User
from utils import ApiError, AuthContext, iso_utc_now, json_loads_dict, new_uuid, normalize_role


NOTIFICATION_TYPES = ["info", "success", "warning", "error"]
NOTIFICATION_PRIORITIES = ["low", "normal", "high", "urgent"]
NOTIFICATION_CATEGORIES = ["system", "leave", "attendance", "payroll", "evaluation", "recruitment", "employee", "workflow"]

TEMPLATES: dict[str, dict[str, str]] = {
    "LEAVE_REQUESTED": {
        "title": "New leave request",
        "message": "{{employeeName}} requested {{days}} day(s) of {{type}} leave from {{startDate}} to {{endDate}}",
        "type": "info",
        "priority": "normal",
        "category": "leave",
    },
    "LEAVE_APPROVED": {
        "title": "Leave approved",
        "message": "Your {{type}} leave from {{startDate}} to {{endDate}} was approved",
        "type": "success",
        "priority": "normal",
        "category": "leave",
    },
    "LEAVE_REJECTED": {
        "title": "Leave rejected",
        "message": "Your {{type}} leave from {{startDate}} to {{endDate}} was rejected: {{reason}}",
        "type": "warning",
        "priority": "high",
        "category": "leave",
    },
    "EVALUATION_ASSIGNED": {
        "title": "New evaluation assigned",
        "message": "You have to evaluate {{evaluatedName}} in cycle {{cycleName}} before {{dueDate}}",
        "type": "info",
        "priority": "normal",
        "category": "evaluation",
    },
    "EVALUATION_COMPLETED": {
        "title": "Evaluation completed",
        "message": "The evaluation of {{evaluatedName}} in cycle {{cycleName}} is completed",
        "type": "success",
        "priority": "low",
        "category": "evaluation",
    },
    "PAYROLL_APPROVED": {
        "title": "Payslip available",
        "message": "Your payroll for {{period}} was approved. Net amount: {{net}} {{currency}}",
        "type": "success",
        "priority": "normal",
        "category": "payroll",
    },
    "WORKFLOW_STEP_ASSIGNED": {
        "title": "Approval pending",
        "message": "Step \"{{stepName}}\" of {{workflowName}} requested by {{requestedByName}} is waiting for you",
        "type": "info",
        "priority": "normal",
        "category": "workflow",
    },
    "WORKFLOW_COMPLETED": {
        "title": "Workflow approved",
        "message": "{{workflowName}} finished all of its approval steps",
        "type": "success",
        "priority": "normal",
        "category": "workflow",
    },
    "WORKFLOW_REJECTED": {
        "title": "Workflow rejected",
        "message": "{{workflowName}} was rejected at step \"{{stepName}}\" by {{actorName}}: {{reason}}",
        "type": "warning",
        "priority": "high",
        "category": "workflow",
    },
    "WORKFLOW_OVERDUE": {
        "title": "Overdue approval",
        "message": "Step \"{{stepName}}\" of {{workflowName}} was due on {{dueDate}}",
        "type": "warning",
        "priority": "high",
        "category": "workflow",
    },
    "SYSTEM_ANNOUNCEMENT": {
        "title": "{{title}}",
        "message": "{{message}}",
        "type": "info",
        "priority": "normal",
        "category": "system",
    },
}

_VAR_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(key: str, variables: dict[str, Any] | None = None) -> dict[str, str]:
    tpl = TEMPLATES.get(str(key or "").upper())
    if not tpl:
        raise ApiError("BAD_REQUEST", f"Unknown notification template: {key}")
    vars_ = variables or {}

    def _sub(text: str) -> str:
        return _VAR_RE.sub(lambda m: str(vars_.get(m.group(1), "")), text)

    return {**tpl, "title": _sub(tpl["title"]), "message": _sub(tpl["message"])}


def _serialize_notification(n: Notification) -> dict[str, Any]:
    return {
        "notificationId": n.notificationId,
        "userId": n.userId,
        "title": n.title or "",
        "message": n.message or "",
        "type": n.type or "info",
        "priority": n.priority or "normal",
        "category": n.category or "system",
        "actionUrl": n.actionUrl or "",
        "data": json_loads_dict(n.dataJson),
        "isRead": bool(n.isRead),
        "readAt": n.readAt or "",
        "createdAt": n.createdAt or "",
    }


def _queue_delivery(payload: dict[str, Any]) -> None:
    # Delivered to the outbound webhook by the request boundary after commit.
    if has_request_context():
        pending = getattr(g, "pending_notifications", None)
        if pending is None:
            pending = []
            g.pending_notifications = pending
        pending.append(payload)


def create_notification(
    db,
    *,
    tenant_id: str,
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    priority: str = "normal",
    category: str = "system",
    action_url: str = "",
    data: dict[str, Any] | None = None,
    created_by: str = "SYSTEM",
) -> Notification:
    row = Notification(
        notificationId=f"NTF-{new_uuid()}",
        tenantId=tenant_id,
        userId=user_id,
        title=title,
        message=message,
        type=type,
        priority=priority,
        category=category,
        actionUrl=action_url or "",
        dataJson=dumps(data) if data else "",
        isRead=False,
        readAt="",
        createdAt=iso_utc_now(),
        createdBy=created_by,
    )
    db.add(row)
    _queue_delivery(_serialize_notification(row) | {"tenantId": tenant_id})
    return row


def notify_from_template(
    db,
    *,
    tenant_id: str,
    user_ids: list[str],
    template: str,
    variables: dict[str, Any] | None = None,
    action_url: str = "",
    data: dict[str, Any] | None = None,
    created_by: str = "SYSTEM",
) -> int:
    rendered = render_template(template, variables)
    n = 0
    for uid in dict.fromkeys(u for u in user_ids if u):
        create_notification(
            db,
            tenant_id=tenant_id,
            user_id=uid,
            title=rendered["title"],
            message=rendered["message"],
            type=rendered["type"],
            priority=rendered["priority"],
            category=rendered["category"],
            action_url=action_url,
            data=(data or {}) | {"template": template},
            created_by=created_by,
        )
        n += 1
    return n


def users_for_employee(db, tenant_id: str, employee_id: str) -> list[str]:
    if not employee_id:
        return []
    rows = db.execute(
        select(User.userId)
        .where(User.tenantId == tenant_id)
        .where(User.employeeId == employee_id)
        .where(User.status == "ACTIVE")
    ).scalars()
    return [str(x) for x in rows]


def users_with_roles(db, tenant_id: str, roles: list[str]) -> list[str]:
    roles_u = [normalize_role(r) for r in roles if normalize_role(r)]
    if not roles_u:
        return []
    rows = db.execute(
        select(User.userId).where(User.tenantId == tenant_id).where(User.role.in_(roles_u)).where(User.status == "ACTIVE")
    ).scalars()
    return [str(x) for x in rows]


def _own_notification(db, auth: AuthContext, notification_id: str) -> Notification:
    if not notification_id:
        raise ApiError("BAD_REQUEST", "Missing notificationId")
    row = db.execute(
        select(Notification)
        .where(Notification.notificationId == notification_id)
        .where(Notification.tenantId == auth.tenantId)
        .where(Notification.userId == auth.userId)
    ).scalar_one_or_none()
    if not row:
        raise ApiError("NOT_FOUND", "Notification not found")
    return row


def notification_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    limit = clamp_int((data or {}).get("limit"), default=20, min_v=1, max_v=100)
    skip = clamp_int((data or {}).get("skip"), default=0, min_v=0, max_v=1_000_000)
    category = get_str(data, "category")

    base = select(Notification).where(Notification.tenantId == auth.tenantId).where(Notification.userId == auth.userId)
    if (data or {}).get("isRead") not in (None, ""):
        base = base.where(Notification.isRead == parse_bool((data or {}).get("isRead")))
    if category:
        base = base.where(Notification.category == category)

    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one() or 0)
    unread = int(
        db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.tenantId == auth.tenantId)
            .where(Notification.userId == auth.userId)
            .where(Notification.isRead == False)  # noqa: E712
        ).scalar_one()
        or 0
    )
    rows = db.execute(base.order_by(Notification.createdAt.desc()).offset(skip).limit(limit)).scalars().all()
    return {"items": [_serialize_notification(n) for n in rows], "total": total, "unreadCount": unread, "limit": limit, "skip": skip}


def notification_mark_read(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    row = _own_notification(db, auth, get_str(data, "notificationId"))
    if not row.isRead:
        row.isRead = True
        row.readAt = iso_utc_now()
    return {"notification": _serialize_notification(row)}


def notification_mark_all_read(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    res = db.execute(
        update(Notification)
        .where(Notification.tenantId == auth.tenantId)
        .where(Notification.userId == auth.userId)
        .where(Notification.isRead == False)  # noqa: E712
        .values(isRead=True, readAt=iso_utc_now())
    )
    return {"modified": int(res.rowcount or 0)}


def notification_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    row = _own_notification(db, auth, get_str(data, "notificationId"))
    db.delete(row)
    return {"ok": True, "notificationId": row.notificationId}


def notification_stats(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    rows = db.execute(
        select(Notification.category, Notification.isRead, func.count())
        .where(Notification.tenantId == auth.tenantId)
        .where(Notification.userId == auth.userId)
        .group_by(Notification.category, Notification.isRead)
    ).all()
    total = unread = 0
    by_category: dict[str, dict[str, int]] = {}
    for category, is_read, n in rows:
        n = int(n or 0)
        total += n
        bucket = by_category.setdefault(str(category or "system"), {"total": 0, "unread": 0})
        bucket["total"] += n
        if not is_read:
            unread += n
            bucket["unread"] += n
    return {"total": total, "unread": unread, "read": total - unread, "byCategory": by_category}


def notification_send(data, auth: AuthContext | None, db, cfg):
    """Broadcast to explicit users and/or every active user holding one of `roles`."""
    auth = require_auth(auth)
    user_ids = [str(u).strip() for u in get_list(data, "userIds") if str(u).strip()]
    roles = [str(r) for r in get_list(data, "roles")]
    template = get_str(data, "template").upper()

    targets = list(user_ids)
    if user_ids:
        known = set(
            db.execute(select(User.userId).where(User.tenantId == auth.tenantId).where(User.userId.in_(user_ids))).scalars()
        )
        missing = [u for u in user_ids if u not in known]
        if missing:
            raise ApiError("NOT_FOUND", f"Users not found: {', '.join(missing[:10])}")
    targets.extend(users_with_roles(db, auth.tenantId, roles))
    targets = list(dict.fromkeys(targets))
    if not targets:
        raise ApiError("BAD_REQUEST", "No recipients: provide userIds or roles")

    if template:
        n = notify_from_template(
            db,
            tenant_id=auth.tenantId,
            user_ids=targets,
            template=template,
            variables=get_dict(data, "variables"),
            action_url=get_str(data, "actionUrl"),
            created_by=actor_id(auth),
        )
    else:
        title = require_str(data, "title", max_len=200)
        message = require_str(data, "message", max_len=2000)
        ntype = enum_value((data or {}).get("type"), NOTIFICATION_TYPES, field="type", default="info")
        priority = enum_value((data or {}).get("priority"), NOTIFICATION_PRIORITIES, field="priority", default="normal")
        category = enum_value((data or {}).get("category"), NOTIFICATION_CATEGORIES, field="category", default="system")
        for uid in targets:
            create_notification(
                db,
                tenant_id=auth.tenantId,
                user_id=uid,
                title=title,
                message=message,
                type=ntype,
                priority=priority,
                category=category,
                action_url=get_str(data, "actionUrl"),
                data=get_dict(data, "data") or None,
                created_by=actor_id(auth),
            )
        n = len(targets)

    append_audit(
        db,
        entityType="NOTIFICATION",
        entityId=template or "CUSTOM",
        action="NOTIFICATION_SEND",
        actor=auth,
        meta={"recipients": n, "roles": roles},
    )
    return {"sent": n}
