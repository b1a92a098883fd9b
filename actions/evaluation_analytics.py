"""
Read-only performance analytics over completed evaluations.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any

from sqlalchemy import select

from actions.evaluations import EVALUATOR_ROLES, _get_cycle, _get_template, serialize_template
from actions.helpers import clamp_int, get_str, require_auth, scoped_employee_id
from models import Evaluation, EvaluationCycle
from utils import AuthContext, json_loads_list, round2

NO_DEPARTMENT = "Unassigned"

# Half-open buckets, the last one includes 5.
SCORE_BUCKETS = [("1-2", 1, 2), ("2-3", 2, 3), ("3-4", 3, 4), ("4-5", 4, 5.0001)]


def _avg(scores: list[float]) -> float:
    return round2(sum(scores) / len(scores)) if scores else 0.0


def _completed(db, tenant_id: str, cycle_id: str) -> list[Evaluation]:
    return list(
        db.execute(
            select(Evaluation)
            .where(Evaluation.tenantId == tenant_id)
            .where(Evaluation.cycleId == cycle_id)
            .where(Evaluation.status == "completed")
        ).scalars()
    )


def _rated(rows: list[Evaluation]) -> list[float]:
    return [float(e.overallRating) for e in rows if e.overallRating is not None]


def eval_analytics_cycle(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    cycle = _get_cycle(db, auth.tenantId, (data or {}).get("cycleId"))
    rows = list(
        db.execute(select(Evaluation).where(Evaluation.tenantId == auth.tenantId).where(Evaluation.cycleId == cycle.cycleId)).scalars()
    )
    completed = [e for e in rows if e.status == "completed"]
    scores = _rated(completed)

    by_role = {role: 0 for role in EVALUATOR_ROLES}
    role_scores: dict[str, list[float]] = defaultdict(list)
    for e in completed:
        role = e.evaluatorRole or "self"
        by_role[role] = by_role.get(role, 0) + 1
        if e.overallRating is not None:
            role_scores[role].append(float(e.overallRating))

    return {
        "cycleId": cycle.cycleId,
        "cycleName": cycle.name or "",
        "totalEvaluations": len(rows),
        "totalCompleted": len(completed),
        "totalPending": sum(1 for e in rows if e.status == "pending"),
        "totalInProgress": sum(1 for e in rows if e.status == "in-progress"),
        "completionRate": round(len(completed) / len(rows) * 100) if rows else 0,
        "averageScore": _avg(scores),
        "maxScore": max(scores) if scores else 0,
        "minScore": min(scores) if scores else 0,
        "scoreDistribution": {label: sum(1 for s in scores if lo <= s < hi) for label, lo, hi in SCORE_BUCKETS},
        "byRole": by_role,
        "avgByRole": {role: _avg(role_scores.get(role, [])) for role in by_role},
    }


def eval_analytics_departments(data, auth: AuthContext | None, db, cfg):
    """Completed evaluations grouped by the evaluated employee's department, best average first."""
    auth = require_auth(auth)
    cycle = _get_cycle(db, auth.tenantId, (data or {}).get("cycleId"))
    groups: dict[str, dict[str, Any]] = {}
    for e in _completed(db, auth.tenantId, cycle.cycleId):
        dept = e.evaluatedDepartment or NO_DEPARTMENT
        g = groups.setdefault(dept, {"employees": set(), "count": 0, "scores": []})
        g["count"] += 1
        g["employees"].add(e.evaluatedEmployeeId)
        if e.overallRating is not None:
            g["scores"].append(float(e.overallRating))

    items = [
        {
            "department": dept,
            "totalEmployees": len(g["employees"]),
            "totalEvaluations": g["count"],
            "averageScore": _avg(g["scores"]),
            "maxScore": max(g["scores"]) if g["scores"] else 0,
            "minScore": min(g["scores"]) if g["scores"] else 0,
        }
        for dept, g in groups.items()
    ]
    items.sort(key=lambda r: (-r["averageScore"], r["department"]))
    return {"cycleId": cycle.cycleId, "items": items, "total": len(items)}


def eval_analytics_top_performers(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    cycle = _get_cycle(db, auth.tenantId, (data or {}).get("cycleId"))
    limit = clamp_int((data or {}).get("limit"), default=10, min_v=1, max_v=100)

    people: dict[str, dict[str, Any]] = {}
    for e in _completed(db, auth.tenantId, cycle.cycleId):
        if e.overallRating is None:
            continue
        p = people.setdefault(
            e.evaluatedEmployeeId,
            {
                "employeeId": e.evaluatedEmployeeId,
                "employeeName": e.evaluatedName or "",
                "department": e.evaluatedDepartment or "",
                "position": e.evaluatedPosition or "",
                "evaluationBreakdown": [],
            },
        )
        p["evaluationBreakdown"].append({"evaluatorRole": e.evaluatorRole, "overallRating": e.overallRating})

    items = []
    for p in people.values():
        scores = [float(b["overallRating"]) for b in p["evaluationBreakdown"]]
        items.append(p | {"averageScore": _avg(scores), "totalEvaluations": len(scores)})
    items.sort(key=lambda r: (-r["averageScore"], r["employeeName"]))
    return {"cycleId": cycle.cycleId, "items": items[:limit], "total": len(items)}


def eval_analytics_competencies(data, auth: AuthContext | None, db, cfg):
    """Per-competency averages from the cycle template, with the top and bottom three."""
    auth = require_auth(auth)
    cycle = _get_cycle(db, auth.tenantId, (data or {}).get("cycleId"))
    template = serialize_template(_get_template(db, auth.tenantId, cycle.templateId))

    ratings: dict[str, list[float]] = {str(c.get("id")): [] for c in template["competencies"]}
    for e in _completed(db, auth.tenantId, cycle.cycleId):
        for r in json_loads_list(e.competencyRatingsJson):
            key = str((r or {}).get("competencyId") or "")
            if key in ratings and r.get("rating") is not None:
                ratings[key].append(float(r["rating"]))

    competencies = []
    for c in template["competencies"]:
        scores = ratings[str(c.get("id"))]
        competencies.append(
            {
                "competencyId": c.get("id"),
                "competencyName": c.get("name", ""),
                "category": c.get("category", ""),
                "weight": c.get("weight", 0),
                "totalRatings": len(scores),
                "averageScore": _avg(scores),
                "maxScore": max(scores) if scores else 0,
                "minScore": min(scores) if scores else 0,
            }
        )
    rated = sorted((c for c in competencies if c["totalRatings"]), key=lambda c: -c["averageScore"])
    return {
        "cycleId": cycle.cycleId,
        "competencies": competencies,
        "strengths": rated[:3],
        "weaknesses": list(reversed(rated[-3:])),
    }


def eval_analytics_trends(data, auth: AuthContext | None, db, cfg):
    """Average completed score for the most recent completed cycles, oldest first."""
    auth = require_auth(auth)
    payload = data or {}
    limit = clamp_int(payload.get("limit"), default=5, min_v=1, max_v=24)
    employee_id = get_str(payload, "employeeId")
    department = get_str(payload, "department")

    cycles = db.execute(
        select(EvaluationCycle)
        .where(EvaluationCycle.tenantId == auth.tenantId)
        .where(EvaluationCycle.status == "completed")
        .order_by(EvaluationCycle.endDate.desc())
        .limit(limit)
    ).scalars().all()

    items = []
    for cycle in reversed(cycles):
        rows = _completed(db, auth.tenantId, cycle.cycleId)
        if employee_id:
            rows = [e for e in rows if e.evaluatedEmployeeId == employee_id]
        if department:
            rows = [e for e in rows if (e.evaluatedDepartment or "") == department]
        items.append(
            {
                "cycleId": cycle.cycleId,
                "cycleName": cycle.name or "",
                "endDate": cycle.endDate or "",
                "averageScore": _avg(_rated(rows)),
                "totalEvaluations": len(rows),
            }
        )
    return {"items": items, "total": len(items)}


def eval_analytics_employee_history(data, auth: AuthContext | None, db, cfg):
    auth = require_auth(auth)
    employee_id = scoped_employee_id(auth, get_str(data, "employeeId"))
    limit = clamp_int((data or {}).get("limit"), default=10, min_v=1, max_v=100)

    rows = db.execute(
        select(Evaluation)
        .where(Evaluation.tenantId == auth.tenantId)
        .where(Evaluation.evaluatedEmployeeId == employee_id)
        .where(Evaluation.status == "completed")
        .order_by(Evaluation.completedAt.desc())
        .limit(limit)
    ).scalars().all()

    by_cycle: dict[str, list[Evaluation]] = defaultdict(list)
    for e in rows:
        by_cycle[e.cycleId].append(e)
    cycles = {
        c.cycleId: c
        for c in db.execute(
            select(EvaluationCycle).where(EvaluationCycle.tenantId == auth.tenantId).where(EvaluationCycle.cycleId.in_(list(by_cycle)))
        ).scalars()
    } if by_cycle else {}

    items = []
    for cycle_id, evals in by_cycle.items():
        c = cycles.get(cycle_id)
        items.append(
            {
                "cycleId": cycle_id,
                "cycleName": c.name if c else "",
                "startDate": c.startDate if c else "",
                "endDate": c.endDate if c else "",
                "totalEvaluations": len(evals),
                "averageScore": _avg(_rated(evals)),
                "evaluations": [
                    {
                        "evaluationId": e.evaluationId,
                        "evaluatorRole": e.evaluatorRole,
                        "evaluatorName": e.evaluatorName or "",
                        "overallRating": e.overallRating,
                        "completedAt": e.completedAt or "",
                    }
                    for e in evals
                ],
            }
        )
    items.sort(key=lambda r: r["endDate"] or "", reverse=True)
    return {"employeeId": employee_id, "items": items, "total": len(items)}
