from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from app.routes.api import request_token, run_action
from utils import err

rest_api = Blueprint("rest_api", __name__, url_prefix="/api/v1")


def _body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _query() -> dict[str, Any]:
    return {k: v for k, v in request.args.items() if k != "token"}


def _rest_handle(action: str, data: dict[str, Any], *, created: bool = False):
    token = request_token(_body().get("token") or request.args.get("token"))
    payload = {k: v for k, v in data.items() if k != "token"}
    return run_action(action, payload, token, success_status=201 if created else 200)


# Auth / tenant


@rest_api.post("/auth/login")
def rest_login():
    return _rest_handle("LOGIN", _body())


@rest_api.post("/auth/google")
def rest_login_exchange():
    return _rest_handle("LOGIN_EXCHANGE", _body())


@rest_api.post("/auth/logout")
def rest_logout():
    return _rest_handle("LOGOUT", {})


@rest_api.get("/auth/me")
def rest_me():
    return _rest_handle("GET_ME", {})


@rest_api.get("/auth/permissions")
def rest_my_permissions():
    return _rest_handle("MY_PERMISSIONS_GET", {})


@rest_api.post("/auth/change-password")
def rest_change_password():
    return _rest_handle("CHANGE_PASSWORD", _body())


@rest_api.post("/tenants")
def rest_tenant_create():
    return _rest_handle("TENANT_CREATE", _body(), created=True)


@rest_api.get("/tenant")
def rest_tenant_get():
    return _rest_handle("TENANT_GET", {})


@rest_api.patch("/tenant")
def rest_tenant_update():
    return _rest_handle("TENANT_UPDATE", _body())


# Users / roles / permissions


@rest_api.get("/users")
def rest_users_list():
    return _rest_handle("USERS_LIST", _query())


@rest_api.post("/users")
def rest_users_upsert():
    return _rest_handle("USERS_UPSERT", _body())


@rest_api.get("/roles")
def rest_roles_list():
    return _rest_handle("ROLES_LIST", {})


@rest_api.post("/roles")
def rest_role_create():
    return _rest_handle("ROLE_CREATE", _body(), created=True)


@rest_api.patch("/roles/<role_id>")
def rest_role_update(role_id: str):
    return _rest_handle("ROLE_UPDATE", _body() | {"roleId": role_id})


@rest_api.delete("/roles/<role_id>")
def rest_role_delete(role_id: str):
    return _rest_handle("ROLE_DELETE", {"roleId": role_id})


@rest_api.get("/permissions")
def rest_permissions_list():
    return _rest_handle("PERMISSIONS_LIST", _query())


@rest_api.put("/permissions")
def rest_permissions_upsert():
    return _rest_handle("PERMISSIONS_UPSERT", _body())


# Candidates


@rest_api.get("/candidates")
def rest_candidate_list():
    return _rest_handle("CANDIDATE_LIST", _query())


@rest_api.post("/candidates")
def rest_candidate_create():
    return _rest_handle("CANDIDATE_CREATE", _body(), created=True)


@rest_api.get("/candidates/<candidate_id>")
def rest_candidate_get(candidate_id: str):
    return _rest_handle("CANDIDATE_GET", {"candidateId": candidate_id})


@rest_api.patch("/candidates/<candidate_id>")
def rest_candidate_update(candidate_id: str):
    return _rest_handle("CANDIDATE_UPDATE", _body() | {"candidateId": candidate_id})


@rest_api.delete("/candidates/<candidate_id>")
def rest_candidate_delete(candidate_id: str):
    return _rest_handle("CANDIDATE_DELETE", {"candidateId": candidate_id})


# Vacancies


@rest_api.get("/vacancies")
def rest_vacancy_list():
    return _rest_handle("VACANCY_LIST", _query())


@rest_api.post("/vacancies")
def rest_vacancy_create():
    return _rest_handle("VACANCY_CREATE", _body(), created=True)


@rest_api.get("/vacancies/<vacancy_id>")
def rest_vacancy_get(vacancy_id: str):
    return _rest_handle("VACANCY_GET", {"vacancyId": vacancy_id})


@rest_api.patch("/vacancies/<vacancy_id>")
def rest_vacancy_update(vacancy_id: str):
    return _rest_handle("VACANCY_UPDATE", _body() | {"vacancyId": vacancy_id})


@rest_api.delete("/vacancies/<vacancy_id>")
def rest_vacancy_delete(vacancy_id: str):
    return _rest_handle("VACANCY_DELETE", {"vacancyId": vacancy_id})


@rest_api.get("/vacancies/<vacancy_id>/checklist")
def rest_vacancy_checklist_list(vacancy_id: str):
    return _rest_handle("VACANCY_CHECKLIST_LIST", {"vacancyId": vacancy_id})


@rest_api.post("/vacancies/<vacancy_id>/checklist")
def rest_vacancy_checklist_add(vacancy_id: str):
    return _rest_handle("VACANCY_CHECKLIST_ADD", _body() | {"vacancyId": vacancy_id}, created=True)


@rest_api.patch("/vacancies/<vacancy_id>/checklist/<item_id>")
def rest_vacancy_checklist_update(vacancy_id: str, item_id: str):
    return _rest_handle("VACANCY_CHECKLIST_UPDATE", _body() | {"vacancyId": vacancy_id, "itemId": item_id})


@rest_api.delete("/vacancies/<vacancy_id>/checklist/<item_id>")
def rest_vacancy_checklist_delete(vacancy_id: str, item_id: str):
    return _rest_handle("VACANCY_CHECKLIST_DELETE", {"vacancyId": vacancy_id, "itemId": item_id})


@rest_api.get("/vacancies/<vacancy_id>/notes")
def rest_vacancy_notes_list(vacancy_id: str):
    return _rest_handle("VACANCY_NOTES_LIST", {"vacancyId": vacancy_id})


@rest_api.post("/vacancies/<vacancy_id>/notes")
def rest_vacancy_notes_add(vacancy_id: str):
    return _rest_handle("VACANCY_NOTES_ADD", _body() | {"vacancyId": vacancy_id}, created=True)


@rest_api.delete("/vacancies/<vacancy_id>/notes/<note_id>")
def rest_vacancy_notes_delete(vacancy_id: str, note_id: str):
    return _rest_handle("VACANCY_NOTES_DELETE", {"vacancyId": vacancy_id, "noteId": note_id})


# Applications / pipeline


@rest_api.get("/pipeline/stages")
def rest_pipeline_stages():
    return _rest_handle("PIPELINE_STAGES_LIST", {})


@rest_api.get("/vacancies/<vacancy_id>/pipeline")
def rest_pipeline_board(vacancy_id: str):
    return _rest_handle("PIPELINE_BOARD_GET", {"vacancyId": vacancy_id})


@rest_api.get("/vacancies/<vacancy_id>/applications")
def rest_application_list(vacancy_id: str):
    return _rest_handle("APPLICATION_LIST", _query() | {"vacancyId": vacancy_id})


@rest_api.post("/applications")
def rest_application_create():
    return _rest_handle("APPLICATION_CREATE", _body(), created=True)


@rest_api.patch("/applications/<application_id>")
def rest_application_update(application_id: str):
    return _rest_handle("APPLICATION_UPDATE", _body() | {"applicationId": application_id})


@rest_api.delete("/applications/<application_id>")
def rest_application_delete(application_id: str):
    return _rest_handle("APPLICATION_DELETE", {"applicationId": application_id})


@rest_api.post("/applications/reorder")
def rest_application_reorder():
    return _rest_handle("APPLICATION_REORDER", _body())


# Employees


@rest_api.get("/employees")
def rest_employee_list():
    return _rest_handle("EMPLOYEE_LIST", _query())


@rest_api.post("/employees")
def rest_employee_create():
    return _rest_handle("EMPLOYEE_CREATE", _body(), created=True)


@rest_api.post("/employees/import")
def rest_employee_import():
    return _rest_handle("EMPLOYEE_IMPORT", _body())


@rest_api.get("/employees/<employee_id>")
def rest_employee_get(employee_id: str):
    return _rest_handle("EMPLOYEE_GET", {"employeeId": employee_id})


@rest_api.patch("/employees/<employee_id>")
def rest_employee_update(employee_id: str):
    return _rest_handle("EMPLOYEE_UPDATE", _body() | {"employeeId": employee_id})


@rest_api.delete("/employees/<employee_id>")
def rest_employee_delete(employee_id: str):
    return _rest_handle("EMPLOYEE_DELETE", {"employeeId": employee_id})


# Attendance


@rest_api.post("/attendance/check-in")
def rest_attendance_check_in():
    return _rest_handle("ATTENDANCE_CHECK_IN", _body())


@rest_api.post("/attendance/check-out")
def rest_attendance_check_out():
    return _rest_handle("ATTENDANCE_CHECK_OUT", _body())


@rest_api.post("/attendance/break")
def rest_attendance_break():
    return _rest_handle("ATTENDANCE_BREAK", _body())


@rest_api.get("/attendance/today")
def rest_attendance_today():
    return _rest_handle("ATTENDANCE_TODAY", _query())


@rest_api.get("/attendance")
def rest_attendance_list():
    return _rest_handle("ATTENDANCE_LIST", _query())


@rest_api.get("/attendance/summary")
def rest_attendance_summary():
    return _rest_handle("ATTENDANCE_SUMMARY", _query())


@rest_api.post("/attendance/absence")
def rest_attendance_mark_absence():
    return _rest_handle("ATTENDANCE_MARK_ABSENCE", _body(), created=True)


@rest_api.patch("/attendance/<attendance_id>")
def rest_attendance_update(attendance_id: str):
    return _rest_handle("ATTENDANCE_UPDATE", _body() | {"attendanceId": attendance_id})


@rest_api.delete("/attendance/<attendance_id>")
def rest_attendance_delete(attendance_id: str):
    return _rest_handle("ATTENDANCE_DELETE", {"attendanceId": attendance_id})


# Leave


@rest_api.get("/leaves")
def rest_leave_list():
    return _rest_handle("LEAVE_LIST", _query())


@rest_api.post("/leaves")
def rest_leave_create():
    return _rest_handle("LEAVE_CREATE", _body(), created=True)


@rest_api.get("/leaves/balance")
def rest_leave_balance():
    return _rest_handle("LEAVE_BALANCE", _query())


@rest_api.get("/leaves/<leave_id>")
def rest_leave_get(leave_id: str):
    return _rest_handle("LEAVE_GET", {"leaveId": leave_id})


@rest_api.patch("/leaves/<leave_id>")
def rest_leave_update(leave_id: str):
    return _rest_handle("LEAVE_UPDATE", _body() | {"leaveId": leave_id})


@rest_api.post("/leaves/<leave_id>/decide")
def rest_leave_decide(leave_id: str):
    return _rest_handle("LEAVE_DECIDE", _body() | {"leaveId": leave_id})


@rest_api.post("/leaves/<leave_id>/cancel")
def rest_leave_cancel(leave_id: str):
    return _rest_handle("LEAVE_CANCEL", _body() | {"leaveId": leave_id})


@rest_api.delete("/leaves/<leave_id>")
def rest_leave_delete(leave_id: str):
    return _rest_handle("LEAVE_DELETE", {"leaveId": leave_id})


# Payroll


@rest_api.get("/payrolls")
def rest_payroll_list():
    return _rest_handle("PAYROLL_LIST", _query())


@rest_api.post("/payrolls")
def rest_payroll_create():
    return _rest_handle("PAYROLL_CREATE", _body(), created=True)


@rest_api.post("/payrolls/calculate")
def rest_payroll_calculate():
    return _rest_handle("PAYROLL_CALCULATE", _body())


@rest_api.get("/payrolls/auto-concepts")
def rest_payroll_auto_concepts():
    return _rest_handle("PAYROLL_AUTO_CONCEPTS", _query())


@rest_api.get("/payrolls/employer-contributions")
def rest_payroll_employer_contributions():
    return _rest_handle("PAYROLL_EMPLOYER_CONTRIBUTIONS", _query())


@rest_api.get("/payrolls/<payroll_id>")
def rest_payroll_get(payroll_id: str):
    return _rest_handle("PAYROLL_GET", {"payrollId": payroll_id})


@rest_api.patch("/payrolls/<payroll_id>")
def rest_payroll_update(payroll_id: str):
    return _rest_handle("PAYROLL_UPDATE", _body() | {"payrollId": payroll_id})


@rest_api.post("/payrolls/<payroll_id>/approve")
def rest_payroll_approve(payroll_id: str):
    return _rest_handle("PAYROLL_APPROVE", {"payrollId": payroll_id})


@rest_api.post("/payrolls/<payroll_id>/status")
def rest_payroll_status_set(payroll_id: str):
    return _rest_handle("PAYROLL_STATUS_SET", _body() | {"payrollId": payroll_id})


@rest_api.delete("/payrolls/<payroll_id>")
def rest_payroll_delete(payroll_id: str):
    return _rest_handle("PAYROLL_DELETE", {"payrollId": payroll_id})


# Evaluations


@rest_api.get("/evaluation-templates")
def rest_eval_template_list():
    return _rest_handle("EVAL_TEMPLATE_LIST", _query())


@rest_api.post("/evaluation-templates")
def rest_eval_template_create():
    return _rest_handle("EVAL_TEMPLATE_CREATE", _body(), created=True)


@rest_api.get("/evaluation-templates/<template_id>")
def rest_eval_template_get(template_id: str):
    return _rest_handle("EVAL_TEMPLATE_GET", {"templateId": template_id})


@rest_api.patch("/evaluation-templates/<template_id>")
def rest_eval_template_update(template_id: str):
    return _rest_handle("EVAL_TEMPLATE_UPDATE", _body() | {"templateId": template_id})


@rest_api.delete("/evaluation-templates/<template_id>")
def rest_eval_template_delete(template_id: str):
    return _rest_handle("EVAL_TEMPLATE_DELETE", {"templateId": template_id})


@rest_api.get("/evaluation-cycles")
def rest_eval_cycle_list():
    return _rest_handle("EVAL_CYCLE_LIST", _query())


@rest_api.post("/evaluation-cycles")
def rest_eval_cycle_create():
    return _rest_handle("EVAL_CYCLE_CREATE", _body(), created=True)


@rest_api.get("/evaluation-cycles/<cycle_id>")
def rest_eval_cycle_get(cycle_id: str):
    return _rest_handle("EVAL_CYCLE_GET", {"cycleId": cycle_id})


@rest_api.patch("/evaluation-cycles/<cycle_id>")
def rest_eval_cycle_update(cycle_id: str):
    return _rest_handle("EVAL_CYCLE_UPDATE", _body() | {"cycleId": cycle_id})


@rest_api.delete("/evaluation-cycles/<cycle_id>")
def rest_eval_cycle_delete(cycle_id: str):
    return _rest_handle("EVAL_CYCLE_DELETE", {"cycleId": cycle_id})


@rest_api.post("/evaluation-cycles/<cycle_id>/launch")
def rest_eval_cycle_launch(cycle_id: str):
    return _rest_handle("EVAL_CYCLE_LAUNCH", _body() | {"cycleId": cycle_id})


@rest_api.get("/evaluation-cycles/<cycle_id>/employees/<employee_id>/summary")
def rest_evaluation_employee_summary(cycle_id: str, employee_id: str):
    return _rest_handle("EVALUATION_EMPLOYEE_SUMMARY", {"cycleId": cycle_id, "employeeId": employee_id})


@rest_api.get("/evaluations")
def rest_evaluation_list():
    return _rest_handle("EVALUATION_LIST", _query())


@rest_api.get("/evaluations/<evaluation_id>")
def rest_evaluation_get(evaluation_id: str):
    return _rest_handle("EVALUATION_GET", {"evaluationId": evaluation_id})


_EVALUATION_STEPS = {
    "start": "EVALUATION_START",
    "save": "EVALUATION_SAVE",
    "submit": "EVALUATION_SUBMIT",
    "manager-review": "EVALUATION_MANAGER_REVIEW",
    "hr-review": "EVALUATION_HR_REVIEW",
}


@rest_api.post("/evaluations/<evaluation_id>/<step>")
def rest_evaluation_step(evaluation_id: str, step: str):
    action = _EVALUATION_STEPS.get(step)
    if not action:
        return err("NOT_FOUND", f"Unknown evaluation step: {step}", http_status=404)
    return _rest_handle(action, _body() | {"evaluationId": evaluation_id})


# Notifications


@rest_api.get("/notifications")
def rest_notification_list():
    return _rest_handle("NOTIFICATION_LIST", _query())


@rest_api.get("/notifications/stats")
def rest_notification_stats():
    return _rest_handle("NOTIFICATION_STATS", {})


@rest_api.post("/notifications/read-all")
def rest_notification_mark_all_read():
    return _rest_handle("NOTIFICATION_MARK_ALL_READ", {})


@rest_api.post("/notifications/send")
def rest_notification_send():
    return _rest_handle("NOTIFICATION_SEND", _body(), created=True)


@rest_api.post("/notifications/<notification_id>/read")
def rest_notification_mark_read(notification_id: str):
    return _rest_handle("NOTIFICATION_MARK_READ", {"notificationId": notification_id})


@rest_api.delete("/notifications/<notification_id>")
def rest_notification_delete(notification_id: str):
    return _rest_handle("NOTIFICATION_DELETE", {"notificationId": notification_id})


# Audit / reports


@rest_api.get("/audit")
def rest_audit_list():
    return _rest_handle("AUDIT_LIST", _query())


@rest_api.get("/audit/stats")
def rest_audit_stats():
    return _rest_handle("AUDIT_STATS", _query())


@rest_api.get("/dashboard/kpis")
def rest_dashboard_kpis():
    return _rest_handle("DASHBOARD_KPIS", {})


_REPORT_ACTIONS = {
    "attendance": "REPORT_ATTENDANCE",
    "leave-balances": "REPORT_LEAVE_BALANCES",
    "headcount": "REPORT_HEADCOUNT",
    "payroll": "REPORT_PAYROLL",
    "pipeline": "REPORT_PIPELINE",
}


@rest_api.get("/reports/<kind>")
def rest_report(kind: str):
    action = _REPORT_ACTIONS.get(kind)
    if not action:
        return err("NOT_FOUND", f"Unknown report: {kind}", http_status=404)
    return _rest_handle(action, _query())
