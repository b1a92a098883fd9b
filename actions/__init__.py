from __future__ import annotations

from typing import Any, Callable

from actions import (
    applications,
    attendance,
    audit,
    auth_actions,
    candidates,
    employees,
    evaluation_analytics,
    evaluations,
    hr_reports,
    leave,
    notifications,
    payroll,
    reports,
    roles,
    tenants,
    users,
    vacancies,
    workflows,
)
from utils import ApiError, AuthContext


Handler = Callable[[Any, "AuthContext | None", Any, Any], dict]


ACTION_HANDLERS: dict[str, Handler] = {
    # Auth / session
    "LOGIN": auth_actions.login,
    "LOGIN_EXCHANGE": auth_actions.login_exchange,
    "LOGOUT": auth_actions.logout,
    "SESSION_VALIDATE": auth_actions.session_validate,
    "GET_ME": auth_actions.get_me,
    "MY_PERMISSIONS_GET": auth_actions.my_permissions_get,
    "CHANGE_PASSWORD": auth_actions.change_password,
    # Tenants
    "TENANT_CREATE": tenants.tenant_create,
    "TENANT_GET": tenants.tenant_get,
    "TENANT_UPDATE": tenants.tenant_update,
    # Users / roles / permissions
    "USERS_LIST": users.users_list,
    "USERS_UPSERT": users.users_upsert,
    "ROLES_LIST": roles.roles_list,
    "ROLE_CREATE": roles.role_create,
    "ROLE_UPDATE": roles.role_update,
    "ROLE_DELETE": roles.role_delete,
    "PERMISSIONS_LIST": roles.permissions_list,
    "PERMISSIONS_UPSERT": roles.permissions_upsert,
    # Candidates
    "CANDIDATE_LIST": candidates.candidate_list,
    "CANDIDATE_GET": candidates.candidate_get,
    "CANDIDATE_CREATE": candidates.candidate_create,
    "CANDIDATE_UPDATE": candidates.candidate_update,
    "CANDIDATE_DELETE": candidates.candidate_delete,
    # Vacancies
    "VACANCY_LIST": vacancies.vacancy_list,
    "VACANCY_GET": vacancies.vacancy_get,
    "VACANCY_CREATE": vacancies.vacancy_create,
    "VACANCY_UPDATE": vacancies.vacancy_update,
    "VACANCY_DELETE": vacancies.vacancy_delete,
    "VACANCY_CHECKLIST_LIST": vacancies.vacancy_checklist_list,
    "VACANCY_CHECKLIST_ADD": vacancies.vacancy_checklist_add,
    "VACANCY_CHECKLIST_UPDATE": vacancies.vacancy_checklist_update,
    "VACANCY_CHECKLIST_DELETE": vacancies.vacancy_checklist_delete,
    "VACANCY_NOTES_LIST": vacancies.vacancy_notes_list,
    "VACANCY_NOTES_ADD": vacancies.vacancy_notes_add,
    "VACANCY_NOTES_DELETE": vacancies.vacancy_notes_delete,
    # Applications / pipeline
    "PIPELINE_STAGES_LIST": applications.pipeline_stages_list,
    "PIPELINE_BOARD_GET": applications.pipeline_board_get,
    "APPLICATION_LIST": applications.application_list,
    "APPLICATION_CREATE": applications.application_create,
    "APPLICATION_UPDATE": applications.application_update,
    "APPLICATION_DELETE": applications.application_delete,
    "APPLICATION_REORDER": applications.application_reorder,
    # Employees
    "EMPLOYEE_LIST": employees.employee_list,
    "EMPLOYEE_GET": employees.employee_get,
    "EMPLOYEE_CREATE": employees.employee_create,
    "EMPLOYEE_UPDATE": employees.employee_update,
    "EMPLOYEE_DELETE": employees.employee_delete,
    "EMPLOYEE_IMPORT": employees.employee_import,
    "EMPLOYEE_EXPORT": employees.employee_export,
    # Attendance
    "ATTENDANCE_CHECK_IN": attendance.attendance_check_in,
    "ATTENDANCE_CHECK_OUT": attendance.attendance_check_out,
    "ATTENDANCE_BREAK": attendance.attendance_break,
    "ATTENDANCE_TODAY": attendance.attendance_today,
    "ATTENDANCE_LIST": attendance.attendance_list,
    "ATTENDANCE_SUMMARY": attendance.attendance_summary,
    "ATTENDANCE_MARK_ABSENCE": attendance.attendance_mark_absence,
    "ATTENDANCE_UPDATE": attendance.attendance_update,
    "ATTENDANCE_DELETE": attendance.attendance_delete,
    # Leave
    "LEAVE_CREATE": leave.leave_create,
    "LEAVE_LIST": leave.leave_list,
    "LEAVE_GET": leave.leave_get,
    "LEAVE_UPDATE": leave.leave_update,
    "LEAVE_DECIDE": leave.leave_decide,
    "LEAVE_CANCEL": leave.leave_cancel,
    "LEAVE_DELETE": leave.leave_delete,
    "LEAVE_BALANCE": leave.leave_balance,
    # Payroll
    "PAYROLL_LIST": payroll.payroll_list,
    "PAYROLL_GET": payroll.payroll_get,
    "PAYROLL_CREATE": payroll.payroll_create,
    "PAYROLL_UPDATE": payroll.payroll_update,
    "PAYROLL_APPROVE": payroll.payroll_approve,
    "PAYROLL_STATUS_SET": payroll.payroll_status_set,
    "PAYROLL_DELETE": payroll.payroll_delete,
    "PAYROLL_CALCULATE": payroll.payroll_calculate,
    "PAYROLL_AUTO_CONCEPTS": payroll.payroll_auto_concepts,
    "PAYROLL_EMPLOYER_CONTRIBUTIONS": payroll.payroll_employer_contributions,
    # Evaluations
    "EVAL_TEMPLATE_LIST": evaluations.eval_template_list,
    "EVAL_TEMPLATE_GET": evaluations.eval_template_get,
    "EVAL_TEMPLATE_CREATE": evaluations.eval_template_create,
    "EVAL_TEMPLATE_UPDATE": evaluations.eval_template_update,
    "EVAL_TEMPLATE_DELETE": evaluations.eval_template_delete,
    "EVAL_CYCLE_LIST": evaluations.eval_cycle_list,
    "EVAL_CYCLE_GET": evaluations.eval_cycle_get,
    "EVAL_CYCLE_CREATE": evaluations.eval_cycle_create,
    "EVAL_CYCLE_UPDATE": evaluations.eval_cycle_update,
    "EVAL_CYCLE_DELETE": evaluations.eval_cycle_delete,
    "EVAL_CYCLE_LAUNCH": evaluations.eval_cycle_launch,
    "EVALUATION_LIST": evaluations.evaluation_list,
    "EVALUATION_GET": evaluations.evaluation_get,
    "EVALUATION_START": evaluations.evaluation_start,
    "EVALUATION_SAVE": evaluations.evaluation_save,
    "EVALUATION_SUBMIT": evaluations.evaluation_submit,
    "EVALUATION_MANAGER_REVIEW": evaluations.evaluation_manager_review,
    "EVALUATION_HR_REVIEW": evaluations.evaluation_hr_review,
    "EVALUATION_EMPLOYEE_SUMMARY": evaluations.evaluation_employee_summary,
    "EVAL_ANALYTICS_CYCLE": evaluation_analytics.eval_analytics_cycle,
    "EVAL_ANALYTICS_DEPARTMENTS": evaluation_analytics.eval_analytics_departments,
    "EVAL_ANALYTICS_TOP_PERFORMERS": evaluation_analytics.eval_analytics_top_performers,
    "EVAL_ANALYTICS_COMPETENCIES": evaluation_analytics.eval_analytics_competencies,
    "EVAL_ANALYTICS_TRENDS": evaluation_analytics.eval_analytics_trends,
    "EVAL_ANALYTICS_EMPLOYEE_HISTORY": evaluation_analytics.eval_analytics_employee_history,
    # Workflows
    "WORKFLOW_CREATE": workflows.workflow_create,
    "WORKFLOW_GET": workflows.workflow_get,
    "WORKFLOW_LIST": workflows.workflow_list,
    "WORKFLOW_STEP_COMPLETE": workflows.workflow_step_complete,
    "WORKFLOW_STEP_REJECT": workflows.workflow_step_reject,
    "WORKFLOW_CANCEL": workflows.workflow_cancel,
    "WORKFLOW_STATS": workflows.workflow_stats,
    "WORKFLOW_SEND_REMINDERS": workflows.workflow_send_reminders,
    # Notifications
    "NOTIFICATION_LIST": notifications.notification_list,
    "NOTIFICATION_MARK_READ": notifications.notification_mark_read,
    "NOTIFICATION_MARK_ALL_READ": notifications.notification_mark_all_read,
    "NOTIFICATION_DELETE": notifications.notification_delete,
    "NOTIFICATION_STATS": notifications.notification_stats,
    "NOTIFICATION_SEND": notifications.notification_send,
    # Audit
    "AUDIT_LIST": audit.audit_list,
    "AUDIT_STATS": audit.audit_stats,
    # Reports
    "DASHBOARD_KPIS": reports.dashboard_kpis,
    "REPORT_ATTENDANCE": reports.report_attendance,
    "REPORT_LEAVE_BALANCES": reports.report_leave_balances,
    "REPORT_HEADCOUNT": reports.report_headcount,
    "REPORT_PAYROLL": reports.report_payroll,
    "REPORT_PIPELINE": reports.report_pipeline,
    "REPORT_OVERTIME": hr_reports.report_overtime,
    "REPORT_ABSENCES": hr_reports.report_absences,
    "REPORT_ATTENDANCE_TREND": hr_reports.report_attendance_trend,
    "REPORT_TURNOVER": hr_reports.report_turnover,
    "REPORT_HEADCOUNT_TREND": hr_reports.report_headcount_trend,
    "REPORT_SALARY_DISTRIBUTION": hr_reports.report_salary_distribution,
    "REPORT_BIRTHDAYS": hr_reports.report_birthdays,
    "REPORT_LEAVE_USAGE": hr_reports.report_leave_usage,
    "REPORT_LEAVE_STATISTICS": hr_reports.report_leave_statistics,
    "REPORT_LEAVE_PROJECTIONS": hr_reports.report_leave_projections,
}


def dispatch(action: str, data: Any, auth: AuthContext | None, db, cfg) -> dict:
    action_u = str(action or "").upper().strip()
    handler = ACTION_HANDLERS.get(action_u)
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    if data is not None and not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be an object")
    return handler(data or {}, auth, db, cfg)
