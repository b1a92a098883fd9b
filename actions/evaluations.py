from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from actions.helpers import (
    actor_id,
    append_audit,
    clamp_int,
    dumps,
    enum_value,
    get_date,
    get_list,
    get_str,
    get_tenant_row,
    is_self_service,
    parse_bool,
    require_auth,
    require_str,
    scoped_employee_id,
)
from actions.notifications import notify_from_template, users_for_employee
from models import Employee, Evaluation, EvaluationCycle, EvaluationTemplate
from utils import ApiError, AuthContext, iso_utc_now, json_loads_dict, json_loads_list, new_uuid, normalize_role, round2, to_float


TEMPLATE_TYPES = ["self", "manager", "360", "quarterly", "annual", "probation"]
CYCLE_STATUSES = ["draft", "active", "in-progress", "completed", "cancelled"]
EVALUATOR_ROLES = ["self", "manager", "peer", "subordinate"]
EVALUATION_STATUSES = ["pending", "in-progress", "submitted", "manager-review", "hr-review", "completed"]
IN_PROGRESS_STATUSES = {"in-progress", "submitted", "manager-review", "hr-review"}

DEFAULT_RATING_SCALE = {"min": 1, "max": 5, "scales": []}
DEFAULT_CONFIG = {
    "allowSelfEvaluation": True,
    "requireManagerApproval": True,
    "requireHRApproval": False,
    "allowComments": True,
    "anonymousFor360": False,
}
MAX_ITEMS = 100


# Templates


def _rating_scale(raw: Any) -> dict[str, Any]:
    if raw in (None, ""):
        return dict(DEFAULT_RATING_SCALE)
    if not isinstance(raw, dict):
        raise ApiError("BAD_REQUEST", "ratingScale must be an object")
    lo = to_float(raw.get("min"), 1)
    hi = to_float(raw.get("max"), 5)
    if hi <= lo:
        raise ApiError("BAD_REQUEST", "ratingScale.max must be greater than ratingScale.min")
    scales = []
    for s in raw.get("scales") or []:
        if not isinstance(s, dict):
            raise ApiError("BAD_REQUEST", "ratingScale.scales entries must be objects")
        scales.append({"value": to_float(s.get("value")), "label": str(s.get("label") or ""), "description": str(s.get("description") or "")})
    return {"min": lo, "max": hi, "scales": scales}


def _weighted_items(raw: Any, field: str, *, required_default: bool) -> list[dict[str, Any]]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", f"{field} must be a list")
    if len(raw) > MAX_ITEMS:
        raise ApiError("BAD_REQUEST", f"{field} accepts at most {MAX_ITEMS} items")
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for idx, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise ApiError("BAD_REQUEST", f"{field} #{idx} must be an object")
        name = str(item.get("name") or "").strip()
        if not name:
            raise ApiError("BAD_REQUEST", f"{field} #{idx} needs a name")
        weight = to_float(item.get("weight"), -1)
        if weight < 0 or weight > 100:
            raise ApiError("BAD_REQUEST", f"{field} #{idx} weight must be between 0 and 100")
        item_id = str(item.get("id") or f"{field[:4]}-{idx}").strip()
        if item_id in seen:
            raise ApiError("BAD_REQUEST", f"Duplicate {field} id: {item_id}")
        seen.add(item_id)
        out.append(
            {
                "id": item_id,
                "name": name,
                "description": str(item.get("description") or ""),
                "category": str(item.get("category") or ""),
                "weight": weight,
                "required": parse_bool(item.get("required"), default=required_default),
            }
        )
    return out


def _questions(raw: Any) -> list[dict[str, Any]]:
    out = []
    for idx, q in enumerate(raw if isinstance(raw, list) else [], start=1):
        if not isinstance(q, dict) or not str(q.get("question") or "").strip():
            raise ApiError("BAD_REQUEST", f"generalQuestions #{idx} needs a question")
        out.append(
            {
                "id": str(q.get("id") or f"q-{idx}"),
                "question": str(q.get("question")).strip(),
                "type": str(q.get("type") or "text"),
                "required": parse_bool(q.get("required"), default=False),
            }
        )
    return out


def _config(raw: Any, current: dict[str, Any] | None = None) -> dict[str, Any]:
    base = dict(DEFAULT_CONFIG) | (current or {})
    for key in DEFAULT_CONFIG:
        if isinstance(raw, dict) and key in raw:
            base[key] = parse_bool(raw.get(key), default=DEFAULT_CONFIG[key])
    return base


def _applicable_to(raw: Any) -> dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}

    def _strs(key: str) -> list[str]:
        return [str(x).strip() for x in (raw.get(key) or []) if str(x).strip()]

    return {
        "departments": _strs("departments"),
        "positions": _strs("positions"),
        "employmentTypes": _strs("employmentTypes"),
        "all": parse_bool(raw.get("all"), default=False),
    }


def serialize_template(t: EvaluationTemplate) -> dict[str, Any]:
    return {
        "templateId": t.templateId,
        "name": t.name or "",
        "description": t.description or "",
        "type": t.type or "annual",
        "ratingScale": json_loads_dict(t.ratingScaleJson) or dict(DEFAULT_RATING_SCALE),
        "competencies": json_loads_list(t.competenciesJson),
        "objectives": json_loads_list(t.objectivesJson),
        "generalQuestions": json_loads_list(t.generalQuestionsJson),
        "config": dict(DEFAULT_CONFIG) | json_loads_dict(t.configJson),
        "applicableTo": _applicable_to(json_loads_dict(t.applicableToJson)),
        "isActive": bool(t.isActive),
        "createdAt": t.createdAt or "",
        "updatedAt": t.updatedAt or "",
    }


def _apply_template_fields(t: EvaluationTemplate, payload: dict[str, Any], *, creating: bool) -> None:
    if creating or "name" in payload:
        t.name = require_str(payload, "name", min_len=2, max_len=200)
    if "description" in payload:
        t.description = get_str(payload, "description", max_len=2000)
    if creating or "type" in payload:
        t.type = enum_value(payload.get("type"), TEMPLATE_TYPES, field="type", default="annual")
    if creating or "ratingScale" in payload:
        t.ratingScaleJson = dumps(_rating_scale(payload.get("ratingScale")))
    if creating or "competencies" in payload:
        t.competenciesJson = dumps(_weighted_items(payload.get("competencies"), "competencies", required_default=True))
    if creating or "objectives" in payload:
        t.objectivesJson = dumps(_weighted_items(payload.get("objectives"), "objectives", required_default=False))
    if creating or "generalQuestions" in payload:
        t.generalQuestionsJson = dumps(_questions(payload.get("generalQuestions")))
    if creating or "config" in payload:
        t.configJson = dumps(_config(payload.get("config"), None if creating else json_loads_dict(t.configJson)))
    if creating or "applicableTo" in payload:
        t.applicableToJson = dumps(_applicable_to(payload.get("applicableTo")))
    if "isActive" in payload:
        t.isActive = parse_bool(payload.get("isActive"), default=True)


def _get_template(db, tenant_id: str, template_id: Any) -> EvaluationTemplate:
    return get_tenant_row(db, EvaluationTemplate, "templateId", template_id, tenant_id, message="Template not found")


def eval_template_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    q = select(EvaluationTemplate).where(EvaluationTemplate.tenantId == auth.tenantId)
    if "isActive" in (data or {}):
        q = q.where(EvaluationTemplate.isActive.is_(parse_bool((data or {}).get("isActive"))))
    t_type = enum_value((data or {}).get("type"), TEMPLATE_TYPES, field="type")
    if t_type:
        q = q.where(EvaluationTemplate.type == t_type)
    rows = db.execute(q.order_by(EvaluationTemplate.createdAt.desc())).scalars().all()
    return {"items": [serialize_template(t) for t in rows], "total": len(rows)}


def eval_template_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"template": serialize_template(_get_template(db, auth.tenantId, (data or {}).get("templateId")))}


def eval_template_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    now = iso_utc_now()
    by = actor_id(auth)
    t = EvaluationTemplate(
        templateId=f"TPL-{new_uuid()}",
        tenantId=auth.tenantId,
        description="",
        isActive=True,
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )
    _apply_template_fields(t, data or {}, creating=True)
    db.add(t)
    append_audit(db, entityType="EVAL_TEMPLATE", entityId=t.templateId, action="EVAL_TEMPLATE_CREATE", actor=auth, at=now)
    return {"template": serialize_template(t)}


def eval_template_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    t = _get_template(db, auth.tenantId, payload.get("templateId"))
    before = serialize_template(t)
    _apply_template_fields(t, payload, creating=False)
    t.updatedAt = iso_utc_now()
    t.updatedBy = actor_id(auth)
    after = serialize_template(t)
    append_audit(db, entityType="EVAL_TEMPLATE", entityId=t.templateId, action="EVAL_TEMPLATE_UPDATE", actor=auth, before=before, after=after)
    return {"template": after}


def eval_template_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    t = _get_template(db, auth.tenantId, (data or {}).get("templateId"))
    in_use = db.execute(
        select(func.count())
        .select_from(EvaluationCycle)
        .where(EvaluationCycle.tenantId == auth.tenantId)
        .where(EvaluationCycle.templateId == t.templateId)
    ).scalar_one()
    if in_use:
        raise ApiError("CONFLICT", "Template is used by an evaluation cycle")
    db.delete(t)
    append_audit(db, entityType="EVAL_TEMPLATE", entityId=t.templateId, action="EVAL_TEMPLATE_DELETE", actor=auth)
    return {"ok": True, "templateId": t.templateId}


# Cycles


def serialize_cycle(c: EvaluationCycle) -> dict[str, Any]:
    return {
        "cycleId": c.cycleId,
        "name": c.name or "",
        "description": c.description or "",
        "templateId": c.templateId,
        "startDate": c.startDate or "",
        "endDate": c.endDate or "",
        "evaluationDeadline": c.evaluationDeadline or "",
        "status": c.status or "draft",
        "stats": json_loads_dict(c.statsJson) or _empty_stats(),
        "launchedAt": c.launchedAt or "",
        "completedAt": c.completedAt or "",
        "createdAt": c.createdAt or "",
        "updatedAt": c.updatedAt or "",
    }


def _empty_stats() -> dict[str, Any]:
    return {"totalAssigned": 0, "totalCompleted": 0, "totalPending": 0, "totalInProgress": 0, "averageScore": None, "completionRate": 0.0}


def _get_cycle(db, tenant_id: str, cycle_id: Any, *, for_update: bool = False) -> EvaluationCycle:
    return get_tenant_row(db, EvaluationCycle, "cycleId", cycle_id, tenant_id, message="Cycle not found", for_update=for_update)


def _apply_cycle_dates(c: EvaluationCycle, payload: dict[str, Any], *, creating: bool) -> None:
    for key in ("startDate", "endDate", "evaluationDeadline"):
        if creating or key in payload:
            setattr(c, key, get_date(payload, key, required=creating))
    if c.startDate and c.endDate and c.endDate < c.startDate:
        raise ApiError("BAD_REQUEST", "endDate must be on or after startDate")
    if c.startDate and c.evaluationDeadline and c.evaluationDeadline < c.startDate:
        raise ApiError("BAD_REQUEST", "evaluationDeadline must be on or after startDate")


def refresh_cycle_stats(db, tenant_id: str, cycle_id: str) -> EvaluationCycle | None:
    """Recount a cycle's assignments; a fully completed active cycle is closed."""
    cycle = db.execute(
        select(EvaluationCycle).where(EvaluationCycle.tenantId == tenant_id).where(EvaluationCycle.cycleId == cycle_id)
    ).scalar_one_or_none()
    if not cycle:
        return None
    db.flush()
    rows = db.execute(
        select(Evaluation.status, func.count(), func.avg(Evaluation.overallRating))
        .where(Evaluation.tenantId == tenant_id)
        .where(Evaluation.cycleId == cycle_id)
        .group_by(Evaluation.status)
    ).all()
    counts = {status: int(n) for status, n, _ in rows}
    avg_completed = next((avg for status, _, avg in rows if status == "completed"), None)
    total = sum(counts.values())
    completed = counts.get("completed", 0)
    stats = {
        "totalAssigned": total,
        "totalCompleted": completed,
        "totalPending": counts.get("pending", 0),
        "totalInProgress": sum(n for s, n in counts.items() if s in IN_PROGRESS_STATUSES),
        "averageScore": round2(avg_completed) if avg_completed is not None else None,
        "completionRate": round2(completed / total * 100) if total else 0.0,
    }
    cycle.statsJson = dumps(stats)
    if total and completed == total and cycle.status in {"active", "in-progress"}:
        cycle.status = "completed"
        cycle.completedAt = iso_utc_now()
    return cycle


def eval_cycle_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    q = select(EvaluationCycle).where(EvaluationCycle.tenantId == auth.tenantId)
    status = enum_value((data or {}).get("status"), CYCLE_STATUSES, field="status")
    if status:
        q = q.where(EvaluationCycle.status == status)
    rows = db.execute(q.order_by(EvaluationCycle.createdAt.desc())).scalars().all()
    return {"items": [serialize_cycle(c) for c in rows], "total": len(rows)}


def eval_cycle_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    return {"cycle": serialize_cycle(_get_cycle(db, auth.tenantId, (data or {}).get("cycleId")))}


def eval_cycle_create(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    template = _get_template(db, auth.tenantId, payload.get("templateId"))
    now = iso_utc_now()
    by = actor_id(auth)
    c = EvaluationCycle(
        cycleId=f"CYC-{new_uuid()}",
        tenantId=auth.tenantId,
        name=require_str(payload, "name", min_len=2, max_len=200),
        description=get_str(payload, "description", max_len=2000),
        templateId=template.templateId,
        status="draft",
        statsJson=dumps(_empty_stats()),
        launchedAt="",
        completedAt="",
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )
    _apply_cycle_dates(c, payload, creating=True)
    db.add(c)
    append_audit(db, entityType="EVAL_CYCLE", entityId=c.cycleId, action="EVAL_CYCLE_CREATE", toState="draft", actor=auth, at=now)
    return {"cycle": serialize_cycle(c)}


def eval_cycle_update(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    c = _get_cycle(db, auth.tenantId, payload.get("cycleId"))
    before = serialize_cycle(c)
    if "name" in payload:
        c.name = require_str(payload, "name", min_len=2, max_len=200)
    if "description" in payload:
        c.description = get_str(payload, "description", max_len=2000)
    if "templateId" in payload:
        if c.status != "draft":
            raise ApiError("BAD_REQUEST", "The template of a launched cycle cannot change")
        c.templateId = _get_template(db, auth.tenantId, payload.get("templateId")).templateId
    _apply_cycle_dates(c, payload, creating=False)
    if "status" in payload:
        status = enum_value(payload.get("status"), CYCLE_STATUSES, field="status", default=c.status)
        if status == "active" and c.status == "draft":
            raise ApiError("BAD_REQUEST", "Use EVAL_CYCLE_LAUNCH to activate a cycle")
        if status != c.status and status == "completed":
            c.completedAt = iso_utc_now()
        c.status = status
    c.updatedAt = iso_utc_now()
    c.updatedBy = actor_id(auth)
    after = serialize_cycle(c)
    append_audit(
        db,
        entityType="EVAL_CYCLE",
        entityId=c.cycleId,
        action="EVAL_CYCLE_UPDATE",
        fromState=before["status"],
        toState=c.status,
        actor=auth,
        before=before,
        after=after,
    )
    return {"cycle": after}


def eval_cycle_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    c = _get_cycle(db, auth.tenantId, (data or {}).get("cycleId"))
    assigned = db.execute(
        select(func.count()).select_from(Evaluation).where(Evaluation.tenantId == auth.tenantId).where(Evaluation.cycleId == c.cycleId)
    ).scalar_one()
    if assigned:
        raise ApiError("CONFLICT", "Cannot delete cycle with assigned evaluations")
    db.delete(c)
    append_audit(db, entityType="EVAL_CYCLE", entityId=c.cycleId, action="EVAL_CYCLE_DELETE", fromState=c.status, actor=auth)
    return {"ok": True, "cycleId": c.cycleId}


def _launch_employees(db, tenant_id: str, employee_ids: list[str], applicable: dict[str, Any]) -> list[Employee]:
    q = select(Employee).where(Employee.tenantId == tenant_id).where(Employee.status == "active")
    if employee_ids:
        q = q.where(Employee.employeeId.in_(employee_ids))
    elif not applicable.get("all"):
        if applicable.get("departments"):
            q = q.where(Employee.department.in_(applicable["departments"]))
        if applicable.get("positions"):
            q = q.where(Employee.role.in_(applicable["positions"]))
        if applicable.get("employmentTypes"):
            q = q.where(Employee.contractType.in_(applicable["employmentTypes"]))
    return list(db.execute(q.order_by(Employee.employeeId.asc())).scalars().all())


def _new_evaluation(cycle: EvaluationCycle, emp: Employee, evaluator: Employee, role: str, *, by: str, now: str) -> Evaluation:
    return Evaluation(
        evaluationId=f"EVA-{new_uuid()}",
        tenantId=cycle.tenantId,
        cycleId=cycle.cycleId,
        templateId=cycle.templateId,
        evaluatedEmployeeId=emp.employeeId,
        evaluatedName=emp.name or "",
        evaluatedDepartment=emp.department or "",
        evaluatedPosition=emp.role or "",
        evaluatorId=evaluator.employeeId,
        evaluatorName=evaluator.name or "",
        evaluatorRole=role,
        competencyRatingsJson="[]",
        objectiveRatingsJson="[]",
        generalAnswersJson="[]",
        overallRating=None,
        overallComment="",
        status="pending",
        managerReviewJson="",
        hrReviewJson="",
        dueDate=cycle.evaluationDeadline or "",
        startedAt="",
        submittedAt="",
        completedAt="",
        createdAt=now,
        createdBy=by,
        updatedAt=now,
        updatedBy=by,
    )


def eval_cycle_launch(data, auth: AuthContext | None, db, cfg):
    """Assign the cycle's evaluations and activate it.

    Each selected employee gets a self evaluation (when both the request and
    the template allow it) and a manager evaluation when their manager is an
    employee of the same tenant. Everything is added to the caller's session,
    so the request boundary commits the assignments and the status change
    together or not at all.
    """
    auth = require_auth(auth)
    payload = data or {}
    cycle = _get_cycle(db, auth.tenantId, payload.get("cycleId"), for_update=True)
    if cycle.status != "draft":
        raise ApiError("BAD_REQUEST", "Cycle has already been launched")
    template = _get_template(db, auth.tenantId, cycle.templateId)
    tpl = serialize_template(template)

    employee_ids = [str(x).strip() for x in get_list(payload, "employeeIds") if str(x).strip()]
    employees = _launch_employees(db, auth.tenantId, employee_ids, tpl["applicableTo"])
    if not employees:
        raise ApiError("BAD_REQUEST", "No employees found to assign evaluations")

    include_self = parse_bool(payload.get("includeSelfEvaluation"), default=True) and tpl["config"]["allowSelfEvaluation"]
    manager_ids = {e.managerId for e in employees if e.managerId}
    managers = {
        m.employeeId: m
        for m in db.execute(
            select(Employee).where(Employee.tenantId == auth.tenantId).where(Employee.employeeId.in_(manager_ids))
        ).scalars()
    } if manager_ids else {}

    now = iso_utc_now()
    by = actor_id(auth)
    created: list[Evaluation] = []
    for emp in employees:
        if include_self:
            created.append(_new_evaluation(cycle, emp, emp, "self", by=by, now=now))
        manager = managers.get(emp.managerId or "")
        if manager:
            created.append(_new_evaluation(cycle, emp, manager, "manager", by=by, now=now))
    db.add_all(created)

    cycle.status = "active"
    cycle.launchedAt = now
    cycle.updatedAt = now
    cycle.updatedBy = by
    refresh_cycle_stats(db, auth.tenantId, cycle.cycleId)

    for ev in created:
        notify_from_template(
            db,
            tenant_id=auth.tenantId,
            user_ids=users_for_employee(db, auth.tenantId, ev.evaluatorId),
            template="EVALUATION_ASSIGNED",
            variables={"evaluatedName": ev.evaluatedName, "cycleName": cycle.name, "dueDate": ev.dueDate or "-"},
            action_url=f"/evaluations/{ev.evaluationId}",
            data={"evaluationId": ev.evaluationId, "cycleId": cycle.cycleId},
            created_by=by,
        )

    append_audit(
        db,
        entityType="EVAL_CYCLE",
        entityId=cycle.cycleId,
        action="EVAL_CYCLE_LAUNCH",
        fromState="draft",
        toState="active",
        actor=auth,
        at=now,
        meta={"assignedCount": len(created), "employeeCount": len(employees)},
    )
    return {"cycle": serialize_cycle(cycle), "assignedCount": len(created), "employeeCount": len(employees)}


# Evaluation instances


def serialize_evaluation(e: Evaluation) -> dict[str, Any]:
    return {
        "evaluationId": e.evaluationId,
        "cycleId": e.cycleId,
        "templateId": e.templateId,
        "evaluatedEmployeeId": e.evaluatedEmployeeId,
        "evaluatedName": e.evaluatedName or "",
        "evaluatedDepartment": e.evaluatedDepartment or "",
        "evaluatedPosition": e.evaluatedPosition or "",
        "evaluatorId": e.evaluatorId,
        "evaluatorName": e.evaluatorName or "",
        "evaluatorRole": e.evaluatorRole or "self",
        "competencyRatings": json_loads_list(e.competencyRatingsJson),
        "objectiveRatings": json_loads_list(e.objectiveRatingsJson),
        "generalAnswers": json_loads_list(e.generalAnswersJson),
        "overallRating": e.overallRating,
        "overallComment": e.overallComment or "",
        "status": e.status or "pending",
        "managerReview": json_loads_dict(e.managerReviewJson) or None,
        "hrReview": json_loads_dict(e.hrReviewJson) or None,
        "dueDate": e.dueDate or "",
        "startedAt": e.startedAt or "",
        "submittedAt": e.submittedAt or "",
        "completedAt": e.completedAt or "",
        "createdAt": e.createdAt or "",
        "updatedAt": e.updatedAt or "",
    }


def weighted_rating(ratings: list[dict[str, Any]], competencies: list[dict[str, Any]]) -> float:
    weights = {c["id"]: to_float(c.get("weight")) for c in competencies}
    total_weight = 0.0
    weighted_sum = 0.0
    for r in ratings:
        w = weights.get(r.get("competencyId"))
        if w is None:
            continue
        weighted_sum += to_float(r.get("rating")) * w
        total_weight += w
    if total_weight == 0:
        return 0.0
    return round2(weighted_sum / total_weight)


def _get_evaluation(db, auth: AuthContext, evaluation_id: Any) -> Evaluation:
    ev = get_tenant_row(db, Evaluation, "evaluationId", evaluation_id, auth.tenantId, message="Evaluation not found")
    if is_self_service(auth) and auth.employeeId not in {ev.evaluatorId, ev.evaluatedEmployeeId}:
        raise ApiError("NOT_FOUND", "Evaluation not found")
    return ev


def _as_evaluator(db, auth: AuthContext, evaluation_id: Any) -> Evaluation:
    ev = _get_evaluation(db, auth, evaluation_id)
    if not auth.employeeId or auth.employeeId != ev.evaluatorId:
        raise ApiError("FORBIDDEN", "Only the evaluator can do this")
    return ev


def _ratings(raw: Any, field: str, id_key: str) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", f"{field} must be a list")
    out = []
    for idx, r in enumerate(raw, start=1):
        if not isinstance(r, dict) or not str(r.get(id_key) or "").strip():
            raise ApiError("BAD_REQUEST", f"{field} #{idx} needs {id_key}")
        try:
            rating = float(r.get("rating"))
        except (TypeError, ValueError):
            raise ApiError("BAD_REQUEST", f"{field} #{idx} rating must be a number")
        out.append({id_key: str(r[id_key]).strip(), "rating": rating, "comment": str(r.get("comment") or "")})
    return out


def _touch(ev: Evaluation, auth: AuthContext, now: str) -> None:
    ev.updatedAt = now
    ev.updatedBy = actor_id(auth)


def _complete(db, auth: AuthContext, ev: Evaluation, now: str) -> None:
    ev.status = "completed"
    ev.completedAt = now
    cycle = db.execute(
        select(EvaluationCycle.name).where(EvaluationCycle.tenantId == auth.tenantId).where(EvaluationCycle.cycleId == ev.cycleId)
    ).scalar_one_or_none()
    notify_from_template(
        db,
        tenant_id=auth.tenantId,
        user_ids=users_for_employee(db, auth.tenantId, ev.evaluatedEmployeeId),
        template="EVALUATION_COMPLETED",
        variables={"evaluatedName": ev.evaluatedName, "cycleName": cycle or ""},
        action_url=f"/evaluations/{ev.evaluationId}",
        data={"evaluationId": ev.evaluationId, "cycleId": ev.cycleId},
        created_by=actor_id(auth),
    )


def _transition(db, auth: AuthContext, ev: Evaluation, from_status: str, action: str) -> dict[str, Any]:
    refresh_cycle_stats(db, auth.tenantId, ev.cycleId)
    append_audit(
        db,
        entityType="EVALUATION",
        entityId=ev.evaluationId,
        action=action,
        fromState=from_status,
        toState=ev.status,
        actor=auth,
        at=ev.updatedAt,
    )
    return {"evaluation": serialize_evaluation(ev)}


def evaluation_list(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=50, min_v=1, max_v=200)
    skip = clamp_int(payload.get("skip"), default=0, min_v=0, max_v=1_000_000)

    q = select(Evaluation).where(Evaluation.tenantId == auth.tenantId)
    if parse_bool(payload.get("mine")):
        if not auth.employeeId:
            return {"items": [], "total": 0, "limit": limit, "skip": skip}
        q = q.where(Evaluation.evaluatorId == auth.employeeId)
    elif is_self_service(auth):
        if not auth.employeeId:
            raise ApiError("FORBIDDEN", "No employee record is linked to this account")
        q = q.where((Evaluation.evaluatorId == auth.employeeId) | (Evaluation.evaluatedEmployeeId == auth.employeeId))
    for key in ("cycleId", "evaluatedEmployeeId", "evaluatorId"):
        value = get_str(payload, key)
        if value:
            q = q.where(getattr(Evaluation, key) == value)
    status = enum_value(payload.get("status"), EVALUATION_STATUSES, field="status")
    if status:
        q = q.where(Evaluation.status == status)

    total = int(db.execute(select(func.count()).select_from(q.subquery())).scalar_one() or 0)
    rows = db.execute(q.order_by(Evaluation.createdAt.desc(), Evaluation.evaluationId.asc()).offset(skip).limit(limit)).scalars().all()
    return {"items": [serialize_evaluation(e) for e in rows], "total": total, "limit": limit, "skip": skip}


def evaluation_get(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    ev = _get_evaluation(db, auth, (data or {}).get("evaluationId"))
    template = db.execute(
        select(EvaluationTemplate).where(EvaluationTemplate.tenantId == auth.tenantId).where(EvaluationTemplate.templateId == ev.templateId)
    ).scalar_one_or_none()
    return {"evaluation": serialize_evaluation(ev), "template": serialize_template(template) if template else None}


def evaluation_start(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    ev = _as_evaluator(db, auth, (data or {}).get("evaluationId"))
    if ev.status != "pending":
        raise ApiError("BAD_REQUEST", "Evaluation has already been started")
    now = iso_utc_now()
    ev.status = "in-progress"
    ev.startedAt = now
    _touch(ev, auth, now)
    return _transition(db, auth, ev, "pending", "EVALUATION_START")


def evaluation_save(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    ev = _as_evaluator(db, auth, payload.get("evaluationId"))
    if ev.status == "completed":
        raise ApiError("BAD_REQUEST", "Cannot update completed evaluation")
    if "competencyRatings" in payload:
        ev.competencyRatingsJson = dumps(_ratings(payload.get("competencyRatings"), "competencyRatings", "competencyId"))
    if "objectiveRatings" in payload:
        ev.objectiveRatingsJson = dumps(_ratings(payload.get("objectiveRatings"), "objectiveRatings", "objectiveId"))
    if "generalAnswers" in payload:
        answers = get_list(payload, "generalAnswers")
        ev.generalAnswersJson = dumps(
            [{"questionId": str(a.get("questionId") or ""), "answer": str(a.get("answer") or "")} for a in answers if isinstance(a, dict)]
        )
    if "overallComment" in payload:
        ev.overallComment = get_str(payload, "overallComment", max_len=5000)

    from_status = ev.status
    now = iso_utc_now()
    if ev.status == "pending":
        ev.status = "in-progress"
        ev.startedAt = now
    _touch(ev, auth, now)
    return _transition(db, auth, ev, from_status, "EVALUATION_SAVE")


def evaluation_submit(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    ev = _as_evaluator(db, auth, (data or {}).get("evaluationId"))
    if ev.status == "completed":
        raise ApiError("BAD_REQUEST", "Evaluation already completed")
    if ev.status not in {"pending", "in-progress"}:
        raise ApiError("BAD_REQUEST", f"Evaluation is already {ev.status}")
    template = _get_template(db, auth.tenantId, ev.templateId)
    tpl = serialize_template(template)

    ratings = json_loads_list(ev.competencyRatingsJson)
    rated = {r.get("competencyId") for r in ratings}
    for comp in tpl["competencies"]:
        if comp.get("required") and comp["id"] not in rated:
            raise ApiError("BAD_REQUEST", f"Missing rating for required competency: {comp['name']}")
    lo, hi = to_float(tpl["ratingScale"].get("min"), 1), to_float(tpl["ratingScale"].get("max"), 5)
    for r in ratings + json_loads_list(ev.objectiveRatingsJson):
        if not lo <= to_float(r.get("rating")) <= hi:
            raise ApiError("BAD_REQUEST", f"Ratings must be between {lo:g} and {hi:g}")

    from_status = ev.status
    now = iso_utc_now()
    ev.overallRating = weighted_rating(ratings, tpl["competencies"])
    ev.submittedAt = now
    if not ev.startedAt:
        ev.startedAt = now
    if tpl["config"]["requireManagerApproval"] and ev.evaluatorRole == "self":
        ev.status = "manager-review"
    elif tpl["config"]["requireHRApproval"]:
        ev.status = "hr-review"
    else:
        _complete(db, auth, ev, now)
    _touch(ev, auth, now)
    return _transition(db, auth, ev, from_status, "EVALUATION_SUBMIT")


def _review(payload: dict[str, Any], auth: AuthContext, now: str) -> dict[str, Any]:
    if "approved" not in payload:
        raise ApiError("BAD_REQUEST", "Missing approved")
    return {
        "reviewedAt": now,
        "reviewedBy": actor_id(auth),
        "reviewerName": auth.fullName or auth.email or "",
        "approved": parse_bool(payload.get("approved")),
        "comments": get_str(payload, "comments", max_len=5000),
    }


def evaluation_manager_review(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    ev = _get_evaluation(db, auth, payload.get("evaluationId"))
    if ev.status != "manager-review":
        raise ApiError("BAD_REQUEST", "Evaluation is not in manager review status")
    if normalize_role(auth.role) == "MANAGER":
        manager_id = db.execute(
            select(Employee.managerId).where(Employee.tenantId == auth.tenantId).where(Employee.employeeId == ev.evaluatedEmployeeId)
        ).scalar_one_or_none()
        if not auth.employeeId or manager_id != auth.employeeId:
            raise ApiError("FORBIDDEN", "Only the employee's manager can review this evaluation")

    now = iso_utc_now()
    review = _review(payload, auth, now)
    override = payload.get("overallRating")
    if override not in (None, ""):
        tpl = serialize_template(_get_template(db, auth.tenantId, ev.templateId))
        rating = to_float(override, -1)
        if not to_float(tpl["ratingScale"].get("min"), 1) <= rating <= to_float(tpl["ratingScale"].get("max"), 5):
            raise ApiError("BAD_REQUEST", "overallRating is outside the rating scale")
        review["overallRating"] = rating
        ev.overallRating = round2(rating)
    ev.managerReviewJson = dumps(review)

    if review["approved"]:
        config = dict(DEFAULT_CONFIG) | json_loads_dict(
            db.execute(
                select(EvaluationTemplate.configJson)
                .where(EvaluationTemplate.tenantId == auth.tenantId)
                .where(EvaluationTemplate.templateId == ev.templateId)
            ).scalar_one_or_none()
        )
        if config["requireHRApproval"]:
            ev.status = "hr-review"
        else:
            _complete(db, auth, ev, now)
    else:
        ev.status = "in-progress"
    _touch(ev, auth, now)
    return _transition(db, auth, ev, "manager-review", "EVALUATION_MANAGER_REVIEW")


def evaluation_hr_review(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    ev = _get_evaluation(db, auth, payload.get("evaluationId"))
    if ev.status != "hr-review":
        raise ApiError("BAD_REQUEST", "Evaluation is not in HR review status")
    now = iso_utc_now()
    review = _review(payload, auth, now)
    ev.hrReviewJson = dumps(review)
    if review["approved"]:
        _complete(db, auth, ev, now)
    else:
        ev.status = "manager-review"
    _touch(ev, auth, now)
    return _transition(db, auth, ev, "hr-review", "EVALUATION_HR_REVIEW")


def evaluation_employee_summary(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    payload = data or {}
    cycle = _get_cycle(db, auth.tenantId, payload.get("cycleId"))
    employee_id = scoped_employee_id(auth, get_str(payload, "employeeId"))
    rows = db.execute(
        select(Evaluation)
        .where(Evaluation.tenantId == auth.tenantId)
        .where(Evaluation.cycleId == cycle.cycleId)
        .where(Evaluation.evaluatedEmployeeId == employee_id)
        .order_by(Evaluation.createdAt.asc())
    ).scalars().all()
    if not rows:
        return {"summary": None}

    completed = [e for e in rows if e.status == "completed" and e.overallRating is not None]
    self_ev = next((e for e in rows if e.evaluatorRole == "self"), None)
    manager_ev = next((e for e in rows if e.evaluatorRole == "manager"), None)
    average = round2(sum(e.overallRating for e in completed) / len(completed)) if completed else 0.0

    def _brief(e: Evaluation | None) -> dict[str, Any] | None:
        return {"status": e.status, "overallRating": e.overallRating} if e else None

    return {
        "summary": {
            "employeeId": employee_id,
            "cycleId": cycle.cycleId,
            "totalEvaluations": len(rows),
            "completedEvaluations": len(completed),
            "pendingEvaluations": sum(1 for e in rows if e.status == "pending"),
            "averageScore": average,
            "selfEvaluation": _brief(self_ev),
            "managerEvaluation": _brief(manager_ev),
            "peerEvaluationsCount": sum(1 for e in rows if e.evaluatorRole == "peer"),
            "evaluations": [serialize_evaluation(e) for e in rows],
        }
    }
