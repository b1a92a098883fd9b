from __future__ import annotations

from tests.helpers import add_employee, add_user, api, error_code, ok_data


def test_employee_create_assigns_sequential_ids(app_client, tenant):
    _app, client = app_client
    first = add_employee(client, tenant["token"], dni="30111222", hireDate="2020-03-01", monthlyHours=176)
    second = add_employee(client, tenant["token"], name="Maria Gomez", dni="30111333")

    assert first["employeeId"] == "EMP-000001"
    assert second["employeeId"] == "EMP-000002"
    assert first["monthlyHours"] == 176.0
    assert first["status"] == "active"
    assert first["jobHistory"][0]["reason"] == "hire"
    assert first["yearsOfService"] >= 5


def test_employee_duplicate_dni_conflicts(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"], dni="30111222")

    res = api(client, "EMPLOYEE_CREATE", {"name": "Otro", "role": "QA", "dni": "30111222"}, tenant["token"])
    assert res.status_code == 409
    assert error_code(res) == "CONFLICT"


def test_employee_requires_name_and_role(app_client, tenant):
    _app, client = app_client
    res = api(client, "EMPLOYEE_CREATE", {"name": "Solo Nombre"}, tenant["token"])
    assert res.status_code == 400


def test_employee_update_records_salary_history(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"])

    out = ok_data(
        api(
            client,
            "EMPLOYEE_UPDATE",
            {"employeeId": emp["employeeId"], "baseSalary": 150000, "role": "Senior Developer", "changeReason": "promotion"},
            tenant["token"],
        )
    )["employee"]

    assert out["baseSalary"] == 150000
    assert out["role"] == "Senior Developer"
    assert len(out["jobHistory"]) == 2
    last = out["jobHistory"][-1]
    assert last["previousRole"] == "Developer"
    assert last["previousSalary"] == 100000
    assert last["reason"] == "promotion"


def test_employee_cannot_manage_self(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"])
    res = api(client, "EMPLOYEE_UPDATE", {"employeeId": emp["employeeId"], "managerId": emp["employeeId"]}, tenant["token"])
    assert res.status_code == 400


def test_employee_delete_blocked_while_managing(app_client, tenant):
    _app, client = app_client
    boss = add_employee(client, tenant["token"], name="Jefa Uno")
    add_employee(client, tenant["token"], name="Report Uno", managerId=boss["employeeId"])

    res = api(client, "EMPLOYEE_DELETE", {"employeeId": boss["employeeId"]}, tenant["token"])
    assert res.status_code == 409


def test_employee_list_search(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"], name="Lucia Fernandez", department="Sales")
    add_employee(client, tenant["token"], name="Pedro Ruiz", department="IT")

    out = ok_data(api(client, "EMPLOYEE_LIST", {"search": "lucia"}, tenant["token"]))
    assert out["total"] == 1
    assert out["items"][0]["name"] == "Lucia Fernandez"

    by_dept = ok_data(api(client, "EMPLOYEE_LIST", {"department": "IT"}, tenant["token"]))
    assert [e["name"] for e in by_dept["items"]] == ["Pedro Ruiz"]


def test_employee_import_reports_bad_rows(app_client, tenant):
    _app, client = app_client
    rows = [
        {"name": "Ana Import", "role": "Analyst", "email": "ana@acme.test", "dni": "1"},
        {"name": "Bruno Import", "role": "Analyst", "dni": "1"},
        {"name": "X"},
    ]

    dry = ok_data(api(client, "EMPLOYEE_IMPORT", {"rows": rows, "dryRun": True}, tenant["token"]))
    assert dry["dryRun"] is True
    assert dry["created"] == 1
    assert dry["employeeIds"] == []
    assert ok_data(api(client, "EMPLOYEE_LIST", {}, tenant["token"]))["total"] == 0

    out = ok_data(api(client, "EMPLOYEE_IMPORT", {"rows": rows}, tenant["token"]))
    assert out["created"] == 1
    assert out["employeeIds"] == ["EMP-000001"]
    assert [e["row"] for e in out["errors"]] == [2, 3]

    again = ok_data(
        api(
            client,
            "EMPLOYEE_IMPORT",
            {"rows": [{"name": "Ana Import", "role": "Lead", "email": "ana@acme.test"}], "updateExisting": True},
            tenant["token"],
        )
    )
    assert again["created"] == 0
    assert again["updated"] == 1


def test_employee_import_rejects_empty(app_client, tenant):
    _app, client = app_client
    res = api(client, "EMPLOYEE_IMPORT", {"rows": []}, tenant["token"])
    assert res.status_code == 400


def test_employee_role_cannot_list_employees(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"], email="juan@acme.test")
    token = add_user(client, tenant["token"], email="juan@acme.test", role="EMPLOYEE", employee_id=emp["employeeId"])

    res = api(client, "EMPLOYEE_LIST", {}, token)
    assert res.status_code == 403


def test_employee_csv_export(app_client, tenant):
    _app, client = app_client
    add_employee(client, tenant["token"], name="Zoe Diaz", department="IT", dni="30111222")
    add_employee(client, tenant["token"], name="Ana Lopez", department="Sales")
    headers = {"Authorization": f"Bearer {tenant['token']}"}

    res = client.get("/api/v1/employees/export.csv?department=IT", headers=headers)
    assert res.status_code == 200
    assert res.mimetype == "text/csv"
    assert res.headers["Content-Disposition"].startswith('attachment; filename="employees-')
    lines = res.data.decode("utf-8-sig").splitlines()
    assert lines[0].split(",")[:4] == ["employeeId", "name", "email", "role"]
    assert len(lines) == 2
    assert "Zoe Diaz" in lines[1]
    assert "30111222" in lines[1]

    everyone = client.get("/api/v1/employees/export.csv", headers=headers).data.decode("utf-8-sig").splitlines()
    assert [line.split(",")[1] for line in everyone[1:]] == ["Ana Lopez", "Zoe Diaz"]

    manager = add_user(client, tenant["token"], email="boss@acme.test", role="MANAGER")
    res = client.get("/api/v1/employees/export.csv", headers={"Authorization": f"Bearer {manager}"})
    assert res.status_code == 403
