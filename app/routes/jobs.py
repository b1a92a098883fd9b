"""
Background report jobs.
"""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.routes.api import request_token
from app.tasks import celery_app
from app.tasks.reports import build_report_task
from auth import assert_permission, validate_session_token
from db import SessionLocal
from utils import ApiError, AuthContext, err

jobs_bp = Blueprint("jobs", __name__, url_prefix="/api/v1/jobs")

REPORT_JOB_ACTIONS = {
    "REPORT_ATTENDANCE",
    "REPORT_LEAVE_BALANCES",
    "REPORT_HEADCOUNT",
    "REPORT_PAYROLL",
    "REPORT_PIPELINE",
    "REPORT_OVERTIME",
    "REPORT_ATTENDANCE_TREND",
    "REPORT_TURNOVER",
    "REPORT_SALARY_DISTRIBUTION",
    "REPORT_LEAVE_USAGE",
    "REPORT_LEAVE_STATISTICS",
}


def _authorize(action: str) -> AuthContext:
    db = SessionLocal()
    try:
        auth_ctx = validate_session_token(db, request_token(), action=action)
        if not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired session")
        assert_permission(db, auth_ctx.role, action, auth_ctx.tenantId)
        db.commit()
        return auth_ctx
    finally:
        db.close()


@jobs_bp.post("/reports")
def enqueue_report_job():
    """
    Queue a report build.

    Request body:
        {"action": "REPORT_PAYROLL", "data": {"period": "2026-01"}}
    """
    body = request.get_json(silent=True) or {}
    action = str(body.get("action") or "").upper().strip()
    if action not in REPORT_JOB_ACTIONS:
        return err("BAD_REQUEST", f"Unsupported report action: {action or '-'}", http_status=400)
    data = body.get("data") or {}
    if not isinstance(data, dict):
        return err("BAD_REQUEST", "data must be an object", http_status=400)

    try:
        auth_ctx = _authorize(action)
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)

    task = build_report_task.apply_async(
        kwargs={
            "tenantId": auth_ctx.tenantId,
            "userId": auth_ctx.userId,
            "role": auth_ctx.role,
            "action": action,
            "data": data,
        }
    )
    current_app.logger.info("report job %s queued action=%s tenant=%s", task.id, action, auth_ctx.tenantId)
    return jsonify({"ok": True, "data": {"jobId": task.id, "status": "queued"}}), 202


@jobs_bp.get("/<job_id>")
def get_job_status(job_id: str):
    try:
        auth_ctx = _authorize("REPORT_HEADCOUNT")
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)

    task = celery_app.AsyncResult(job_id)
    if task.state == "SUCCESS" and (task.result or {}).get("tenantId") != auth_ctx.tenantId:
        return err("NOT_FOUND", "Job not found", http_status=404)
    out = {"jobId": job_id, "status": task.state}
    if task.state == "PENDING":
        out["message"] = "Job is queued or unknown"
    elif task.state == "STARTED":
        out["message"] = "Job picked up by a worker"
    elif task.state == "PROGRESS":
        meta = task.info or {}
        out["progress"] = meta.get("progress", 0)
        out["message"] = meta.get("status", "Processing")
    elif task.state == "SUCCESS":
        out["result"] = task.result
    elif task.state == "FAILURE":
        out["error"] = str(task.info) if task.info else "Unknown error"
    elif task.state == "REVOKED":
        out["message"] = "Job was cancelled"
    return jsonify({"ok": True, "data": out})


@jobs_bp.delete("/<job_id>")
def cancel_job(job_id: str):
    try:
        _authorize("REPORT_HEADCOUNT")
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)
    celery_app.control.revoke(job_id, terminate=True)
    return jsonify({"ok": True, "data": {"jobId": job_id, "status": "revoked"}})
