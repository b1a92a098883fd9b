from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import patch

from actions.helpers import local_today
from actions.hr_reports import _next_birthday
from actions.reports import rows_to_csv
from tests.helpers import add_employee, add_user, api, ok_data


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_rows_to_csv_writes_bom_and_caps_rows():
    body = rows_to_csv(["a", "b"], [{"a": 1, "b": "x", "c": "ignored"}, {"a": 2, "b": "y"}], max_rows=1)
    assert body.startswith(b"\xef\xbb\xbf")
    text = body.decode("utf-8-sig").splitlines()
    assert text == ["a,b", "1,x"]


def test_dashboard_kpis_follow_writes(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"], department="IT")

    first = ok_data(api(client, "DASHBOARD_KPIS", {}, tenant["token"]))
    assert set(first) == {"period", "recruitment", "employees", "attendance", "leave"}
    assert first["employees"]["active"] == 1
    assert first["employees"]["byDepartment"] == {"IT": 1}
    assert set(first["recruitment"]["applicationsByStage"]) == {"sent", "interview", "feedback", "offer", "hired", "rejected"}

    ok_data(api(client, "CANDIDATE_CREATE", {"name": "Ana Gomez"}, tenant["token"]))
    add_employee(client, tenant["token"], name="Second Person", department="IT")
    after = ok_data(api(client, "DASHBOARD_KPIS", {}, tenant["token"]))
    assert after["recruitment"]["totalCandidates"] == first["recruitment"]["totalCandidates"] + 1
    assert after["employees"]["active"] == 2
    assert after["employees"]["byDepartment"] == {"IT": 2}


def test_dashboard_snapshot_survives_reads(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"])
    assert ok_data(api(client, "DASHBOARD_KPIS", {}, tenant["token"]))["employees"]["active"] == 1

    from cache_layer import cache_stats

    ok_data(api(client, "EMPLOYEE_LIST", {}, tenant["token"]))
    ok_data(api(client, "DASHBOARD_KPIS", {}, tenant["token"]))
    assert cache_stats()["dashboard"]["hits"] >= 1


def test_dashboard_hidden_from_employees(app_client, tenant):
    _app, client = app_client
    token = add_user(client, tenant["token"], email="emp@acme.test", role="EMPLOYEE")
    assert api(client, "DASHBOARD_KPIS", {}, token).status_code == 403


def test_headcount_and_payroll_reports(app_client, tenant):
    _app, client = app_client
    a = add_employee(client, tenant["token"], department="IT", baseSalary=100000)
    add_employee(client, tenant["token"], name="Maria Gomez", department="IT", baseSalary=200000)
    add_employee(client, tenant["token"], name="Pedro Ruiz", department="Sales", baseSalary=90000, status="terminated")

    head = ok_data(api(client, "REPORT_HEADCOUNT", {}, tenant["token"]))
    assert head["rows"] == [{"department": "IT", "headcount": 2, "averageSalary": 150000.0}]
    assert head["totalActive"] == 2
    assert head["byStatus"] == {"active": 2, "terminated": 1}

    ok_data(api(client, "PAYROLL_CREATE", {"employeeId": a["employeeId"], "period": "2026-01", "taxRate": 10}, tenant["token"]))
    pay = ok_data(api(client, "REPORT_PAYROLL", {"period": "2026-01"}, tenant["token"]))
    assert pay["total"] == 1
    assert pay["totals"]["gross"] == 100000.0
    assert pay["totals"]["net"] == 90000.0


def test_attendance_and_leave_balance_reports(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"], hireDate="2024-01-10")
    ok_data(api(client, "ATTENDANCE_MARK_ABSENCE", {"employeeId": emp["employeeId"], "date": "2026-03-02"}, tenant["token"]))

    att = ok_data(api(client, "REPORT_ATTENDANCE", {"startDate": "2026-03-01", "endDate": "2026-03-31"}, tenant["token"]))
    assert att["total"] == 1
    assert att["rows"][0]["absent"] == 1

    bad = api(client, "REPORT_ATTENDANCE", {"startDate": "2026-03-31", "endDate": "2026-03-01"}, tenant["token"])
    assert bad.status_code == 400

    balances = ok_data(api(client, "REPORT_LEAVE_BALANCES", {"year": 2026}, tenant["token"]))
    assert balances["rows"][0]["vacationTotal"] == 14


def test_pipeline_report_counts_stages(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vacancy = ok_data(api(client, "VACANCY_CREATE", {"title": "Backend Developer", "seniority": "sr", "employmentType": "fulltime"}, token))["vacancy"]
    cand = ok_data(api(client, "CANDIDATE_CREATE", {"name": "Ana Torres", "email": "ana@example.test"}, token))["candidate"]
    ok_data(api(client, "APPLICATION_CREATE", {"candidateId": cand["candidateId"], "vacancyId": vacancy["vacancyId"]}, token))

    out = ok_data(api(client, "REPORT_PIPELINE", {}, token))
    row = out["rows"][0]
    assert row["vacancyId"] == vacancy["vacancyId"]
    assert row["sent"] == 1
    assert row["total"] == 1

    recruiter = add_user(client, token, email="rec@acme.test", role="RECRUITER")
    assert ok_data(api(client, "REPORT_PIPELINE", {}, recruiter))["total"] == 1
    assert api(client, "REPORT_PAYROLL", {}, recruiter).status_code == 403


def test_csv_export(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"], department="IT")

    res = client.get("/api/v1/reports/headcount.csv", headers=_bearer(tenant["token"]))
    assert res.status_code == 200
    assert res.mimetype == "text/csv"
    assert res.headers["Content-Disposition"].startswith('attachment; filename="headcount-')
    assert res.data.startswith(b"\xef\xbb\xbf")
    lines = res.data.decode("utf-8-sig").splitlines()
    assert lines[0] == "department,headcount,averageSalary"
    assert lines[1] == "IT,1,100000.0"

    assert client.get("/api/v1/reports/unknown.csv", headers=_bearer(tenant["token"])).status_code == 404
    assert client.get("/api/v1/reports/headcount.csv").status_code == 401


def test_rest_report_route(app_client, tenant):
    _app, client = app_client
    res = client.get("/api/v1/reports/headcount", headers=_bearer(tenant["token"]))
    assert res.status_code == 200
    assert res.get_json()["data"]["totalActive"] == 0
    assert client.get("/api/v1/reports/bogus", headers=_bearer(tenant["token"])).status_code == 404


def test_report_job_enqueue(app_client, tenant):
    _app, client = app_client
    with patch("app.routes.jobs.build_report_task.apply_async", return_value=SimpleNamespace(id="job-1")) as enqueue:
        res = client.post(
            "/api/v1/jobs/reports",
            json={"action": "report_payroll", "data": {"period": "2026-01"}},
            headers=_bearer(tenant["token"]),
        )

    assert res.status_code == 202
    assert res.get_json()["data"] == {"jobId": "job-1", "status": "queued"}
    kwargs = enqueue.call_args.kwargs["kwargs"]
    assert kwargs["tenantId"] == tenant["tenantId"]
    assert kwargs["action"] == "REPORT_PAYROLL"
    assert kwargs["data"] == {"period": "2026-01"}


def test_report_job_rejects_bad_requests(app_client, tenant):
    _app, client = app_client
    res = client.post("/api/v1/jobs/reports", json={"action": "PAYROLL_DELETE"}, headers=_bearer(tenant["token"]))
    assert res.status_code == 400

    res = client.post("/api/v1/jobs/reports", json={"action": "REPORT_PAYROLL"})
    assert res.status_code == 401

    emp_token = add_user(client, tenant["token"], email="emp@acme.test", role="EMPLOYEE")
    res = client.post("/api/v1/jobs/reports", json={"action": "REPORT_PAYROLL"}, headers=_bearer(emp_token))
    assert res.status_code == 403


def test_build_report_task_runs_handler(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"], department="IT")

    from app.tasks.reports import build_report_task

    with patch.object(build_report_task, "update_state") as progress:
        out = build_report_task(
            tenantId=tenant["tenantId"], userId=tenant["userId"], role="ADMIN", action="REPORT_HEADCOUNT", data={}
        )

    progress.assert_called_once()
    assert out["tenantId"] == tenant["tenantId"]
    assert out["action"] == "REPORT_HEADCOUNT"
    assert out["result"]["totalActive"] == 1


def test_plan_change_drops_cached_dashboard(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"])
    assert ok_data(api(client, "DASHBOARD_KPIS", {}, tenant["token"]))["employees"]["active"] == 1

    add_employee(client, tenant["token"], name="Second Person")
    ok_data(api(client, "TENANT_UPDATE", {"plan": "basic"}, tenant["token"]))
    assert ok_data(api(client, "DASHBOARD_KPIS", {}, tenant["token"]))["employees"]["active"] == 2


def test_cache_regions_are_tenant_scoped():
    from cache_layer import TenantCache, make_cache_key

    cache = TenantCache()
    a = make_cache_key("DASHBOARD", tenant_id="TEN-a", params={"day": "2026-01-01"})
    b = make_cache_key("DASHBOARD", tenant_id="TEN-b", params={"day": "2026-01-01"})
    cache.set(a, {"n": 1})
    cache.set(b, {"n": 2})
    cache.set("RBAC:TEN-a:ROLES_INDEX", False)

    assert cache.get("RBAC:TEN-a:ROLES_INDEX") is False
    assert cache.get_or_set(a, lambda: {"n": 99}) == {"n": 1}
    assert cache.invalidate_tenant("TEN-a") == 2
    assert cache.get(a) is None
    assert cache.get(b) == {"n": 2}
    assert cache.stats()["dashboard"]["size"] == 1


def test_read_actions_keep_dashboard_snapshot():
    from app.routes.api import is_read_action

    for action in ("DASHBOARD_KPIS", "EMPLOYEE_LIST", "LEAVE_BALANCE", "REPORT_PAYROLL", "EVAL_ANALYTICS_CYCLE", "WORKFLOW_STATS"):
        assert is_read_action(action), action
    for action in ("CANDIDATE_CREATE", "APPLICATION_REORDER", "LEAVE_DECIDE", "EMPLOYEE_IMPORT", "WORKFLOW_STEP_COMPLETE", "WORKFLOW_SEND_REMINDERS"):
        assert not is_read_action(action), action


def _attendance_fixture(client, token: str) -> dict:
    """One absence on Mon 2 March 2026 and ten worked hours on Tue 3 March."""
    emp = add_employee(client, token, department="IT", monthlyHours=176, hireDate="2024-01-10")
    ok_data(api(client, "ATTENDANCE_MARK_ABSENCE", {"employeeId": emp["employeeId"], "date": "2026-03-02"}, token))
    row = ok_data(api(client, "ATTENDANCE_MARK_ABSENCE", {"employeeId": emp["employeeId"], "date": "2026-03-03"}, token))["attendance"]
    ok_data(
        api(
            client,
            "ATTENDANCE_UPDATE",
            {
                "attendanceId": row["attendanceId"],
                "status": "present",
                "checkIn": "2026-03-03T09:00:00Z",
                "checkOut": "2026-03-03T19:00:00Z",
            },
            token,
        )
    )
    return emp


def test_overtime_and_absence_reports(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    emp = _attendance_fixture(client, token)
    leave = ok_data(
        api(client, "LEAVE_CREATE", {"employeeId": emp["employeeId"], "type": "vacation", "startDate": "2026-03-09", "endDate": "2026-03-10"}, token)
    )["leave"]
    ok_data(api(client, "LEAVE_DECIDE", {"leaveId": leave["leaveId"], "approved": True}, token))
    march = {"startDate": "2026-03-01", "endDate": "2026-03-31"}

    overtime = ok_data(api(client, "REPORT_OVERTIME", march, token))
    assert overtime["total"] == 1
    assert overtime["rows"][0]["overtimeHours"] == 2.0
    assert overtime["rows"][0]["daysWithOvertime"] == 1
    assert overtime["totalOvertimeHours"] == 2.0
    assert ok_data(api(client, "REPORT_OVERTIME", march | {"department": "Sales"}, token))["total"] == 0

    absences = ok_data(api(client, "REPORT_ABSENCES", march, token))
    assert absences["rows"][0]["absentDates"] == ["2026-03-02"]
    assert "leaveDays" not in absences["rows"][0]
    with_leave = ok_data(api(client, "REPORT_ABSENCES", march | {"includeLeaves": True}, token))
    assert with_leave["rows"][0]["leaveDays"] == 2.0
    assert with_leave["rows"][0]["leaveByType"] == {"vacation": 2.0}


def test_attendance_trend_groups_by_week_and_month(app_client, tenant):
    _app, client = app_client
    _attendance_fixture(client, tenant["token"])
    march = {"startDate": "2026-03-01", "endDate": "2026-03-31"}

    weekly = ok_data(api(client, "REPORT_ATTENDANCE_TREND", march, tenant["token"]))
    assert [r["period"] for r in weekly["rows"]] == ["2026-W10"]
    monthly = ok_data(api(client, "REPORT_ATTENDANCE_TREND", march | {"groupBy": "month"}, tenant["token"]))
    row = monthly["rows"][0]
    assert row["period"] == "2026-03"
    assert (row["records"], row["present"], row["absent"]) == (2, 1, 1)
    assert row["attendanceRate"] == 50.0
    assert api(client, "REPORT_ATTENDANCE_TREND", march | {"groupBy": "day"}, tenant["token"]).status_code == 400


def test_turnover_and_headcount_trend(app_client, tenant):
    app, client = app_client
    token = tenant["token"]
    add_employee(client, token, name="Ana Vieja", department="IT", hireDate="2020-01-01")
    add_employee(client, token, name="Bruno Nuevo", department="IT", hireDate="2026-02-01")
    add_employee(client, token, name="Carla Sale", department="Sales", hireDate="2019-05-01", status="terminated", endDate="2026-03-31")

    out = ok_data(api(client, "REPORT_TURNOVER", {"startDate": "2026-01-01", "endDate": "2026-12-31"}, token))
    assert (out["hires"], out["terminations"]) == (1, 1)
    assert (out["openingHeadcount"], out["closingHeadcount"]) == (2, 2)
    assert out["turnoverRate"] == 50.0
    sales = next(d for d in out["byDepartment"] if d["department"] == "Sales")
    assert sales["turnoverRate"] == 200.0

    trend = ok_data(api(client, "REPORT_HEADCOUNT_TREND", {"groupBy": "quarter", "periods": 4}, token))
    assert len(trend["rows"]) == 4
    assert trend["rows"][-1]["headcount"] == 2
    assert trend["rows"][-1]["period"].endswith(f"Q{(local_today(app.config['CFG']).month - 1) // 3 + 1}")


def test_salary_distribution_groups(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    today = date.today()
    add_employee(client, token, department="IT", role="Developer", baseSalary=100000, hireDate=(today - timedelta(days=30)).isoformat())
    add_employee(client, token, name="Maria Gomez", department="IT", role="Lead", baseSalary=200000, hireDate=f"{today.year - 12}-01-01")
    add_employee(client, token, name="Pedro Ruiz", department="Sales", baseSalary=90000, status="terminated")

    by_dept = ok_data(api(client, "REPORT_SALARY_DISTRIBUTION", {}, token))
    assert [r["group"] for r in by_dept["rows"]] == ["IT"]
    assert by_dept["rows"][0]["median"] == 150000.0
    assert by_dept["overall"]["max"] == 200000.0

    by_band = ok_data(api(client, "REPORT_SALARY_DISTRIBUTION", {"groupBy": "seniority"}, token))
    assert [(r["group"], r["count"]) for r in by_band["rows"]] == [("<1", 1), ("10+", 1)]

    manager = add_user(client, token, email="mgr@acme.test", role="MANAGER")
    assert api(client, "REPORT_SALARY_DISTRIBUTION", {}, manager).status_code == 403


def test_next_birthday_handles_leap_day():
    assert _next_birthday(date(1992, 2, 29), date(2027, 1, 10)) == date(2027, 2, 28)
    assert _next_birthday(date(1992, 2, 29), date(2028, 1, 10)) == date(2028, 2, 29)
    assert _next_birthday(date(1990, 1, 5), date(2026, 12, 20)) == date(2027, 1, 5)


def test_upcoming_birthdays(app_client, tenant):
    app, client = app_client
    token = tenant["token"]
    today = local_today(app.config["CFG"])
    soon = today + timedelta(days=5)
    if (soon.month, soon.day) == (2, 29):
        soon += timedelta(days=1)
    born = soon.replace(year=1992)
    add_employee(client, token, name="Cumple Pronto", dateOfBirth=born.isoformat())
    add_employee(client, token, name="Cumple Lejos", dateOfBirth=(today + timedelta(days=100)).replace(year=1992, day=1).isoformat())

    manager = add_user(client, token, email="mgr@acme.test", role="MANAGER")
    out = ok_data(api(client, "REPORT_BIRTHDAYS", {"days": 30}, manager))
    assert [r["employeeName"] for r in out["rows"]] == ["Cumple Pronto"]
    assert out["rows"][0]["daysUntil"] == (soon - today).days
    assert out["rows"][0]["turningAge"] == soon.year - 1992


def test_leave_usage_and_statistics(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    emp = add_employee(client, token, department="IT")

    def _leave(l_type: str, start: str, end: str, approve: bool = True) -> None:
        lv = ok_data(api(client, "LEAVE_CREATE", {"employeeId": emp["employeeId"], "type": l_type, "startDate": start, "endDate": end}, token))["leave"]
        if approve:
            ok_data(api(client, "LEAVE_DECIDE", {"leaveId": lv["leaveId"], "approved": True}, token))

    _leave("vacation", "2026-03-09", "2026-03-10")
    _leave("sick", "2026-04-06", "2026-04-06")
    _leave("personal", "2026-04-13", "2026-04-13", approve=False)

    usage = ok_data(api(client, "REPORT_LEAVE_USAGE", {"year": 2026}, token))
    row = usage["rows"][0]
    assert (row["vacation"], row["sick"], row["personal"], row["totalDays"]) == (2.0, 1.0, 0.0, 3.0)
    assert usage["totals"]["vacation"] == 2.0

    spring = {"startDate": "2026-03-01", "endDate": "2026-04-30"}
    by_type = ok_data(api(client, "REPORT_LEAVE_STATISTICS", spring, token))
    assert [(r["group"], r["totalDays"]) for r in by_type["rows"]] == [("vacation", 2.0), ("sick", 1.0)]
    assert by_type["byStatus"] == {"approved": 2, "pending": 1}
    assert by_type["totalRequests"] == 3
    by_month = ok_data(api(client, "REPORT_LEAVE_STATISTICS", spring | {"groupBy": "month"}, token))
    assert [r["group"] for r in by_month["rows"]] == ["2026-03", "2026-04"]
    by_dept = ok_data(api(client, "REPORT_LEAVE_STATISTICS", spring | {"groupBy": "department"}, token))
    assert by_dept["rows"] == [{"group": "IT", "count": 2, "totalDays": 3.0, "averageDays": 1.5}]


def test_leave_projections(app_client, tenant):
    app, client = app_client
    token = tenant["token"]
    today = local_today(app.config["CFG"])
    emp = add_employee(client, token, hireDate="2024-01-10")
    lv = ok_data(
        api(
            client,
            "LEAVE_CREATE",
            {"employeeId": emp["employeeId"], "type": "vacation", "startDate": f"{today.year}-01-05", "endDate": f"{today.year}-01-09"},
            token,
        )
    )["leave"]

    out = ok_data(api(client, "REPORT_LEAVE_PROJECTIONS", {"employeeId": emp["employeeId"], "months": 2}, token))
    assert len(out["projections"]) == 3
    first = out["projections"][0]
    assert first["month"] == today.strftime("%Y-%m")
    accrued = round(14 / 12 * today.month, 2)
    assert first["balances"]["vacation"] == {"accrued": accrued, "used": lv["days"], "available": round(max(0.0, accrued - lv["days"]), 2)}
    assert first["balances"]["sick"]["accrued"] == round(10 / 12 * today.month, 2)

    capped = ok_data(api(client, "REPORT_LEAVE_PROJECTIONS", {"employeeId": emp["employeeId"], "months": 99}, token))
    assert len(capped["projections"]) == 25
    assert api(client, "REPORT_LEAVE_PROJECTIONS", {"employeeId": "EMP-999999"}, token).status_code == 404
