from __future__ import annotations

import pytest

from services.payroll_calc import auto_concepts, compute_derived, employer_contributions, normalize_concepts
from tests.helpers import add_employee, api, ok_data, signup
from utils import ApiError


def test_compute_derived_applies_concepts_in_order():
    concepts = [
        {"name": "Antiguedad", "type": "remunerativo", "mode": "porcentaje", "value": 10},
        {"name": "Viatico", "type": "no_remunerativo", "mode": "monto", "value": 2000},
        {"name": "Prestamo", "type": "deduccion", "mode": "monto", "value": 1000},
    ]
    out = compute_derived(
        baseSalary=100000,
        bonuses=10000,
        overtimeHours=10,
        overtimeRate=500,
        deductions=500,
        taxRate=10,
        contributionsRate=17,
        concepts=concepts,
    )
    assert out == {
        "overtimeAmount": 5000.0,
        "gross": 126500.0,
        "nonRemuneratives": 2000.0,
        "conceptsDeductions": 1000.0,
        "taxes": 12650.0,
        "contributions": 21505.0,
        "net": 92845.0,
    }


def test_compute_derived_percentage_follows_position():
    fixed_first = compute_derived(
        baseSalary=1000,
        concepts=[
            {"type": "remunerativo", "mode": "monto", "value": 1000},
            {"type": "remunerativo", "mode": "porcentaje", "value": 10},
        ],
    )
    pct_first = compute_derived(
        baseSalary=1000,
        concepts=[
            {"type": "remunerativo", "mode": "porcentaje", "value": 10},
            {"type": "remunerativo", "mode": "monto", "value": 1000},
        ],
    )
    assert fixed_first["gross"] == 2200.0
    assert pct_first["gross"] == 2100.0


def test_normalize_concepts_validation():
    assert normalize_concepts(None) == []
    out = normalize_concepts([{"name": "Bono", "type": "remunerativo", "value": "150"}])
    assert out == [{"id": "c1", "name": "Bono", "type": "remunerativo", "mode": "monto", "value": 150.0}]
    with pytest.raises(ApiError):
        normalize_concepts([{"name": "Bono", "type": "otro", "value": 1}])
    with pytest.raises(ApiError):
        normalize_concepts([{"name": "Bono", "type": "deduccion", "value": -5}])


def test_auto_concepts_from_attendance():
    rows = [
        {"status": "present", "hoursWorked": 10, "overtimeHours": 2},
        {"status": "absent", "hoursWorked": 0, "overtimeHours": 0},
        {"status": "late", "hoursWorked": 8, "overtimeHours": 0},
        {"status": "late", "hoursWorked": 8, "overtimeHours": 0},
        {"status": "late", "hoursWorked": 8, "overtimeHours": 0},
    ]
    out = auto_concepts(220000, rows)

    assert [c["code"] for c in out["concepts"]] == ["OT"]
    assert out["concepts"][0]["amount"] == 3750.0
    by_code = {d["code"]: d["amount"] for d in out["deductions"]}
    assert by_code == {"ABS": 10000.0, "LATE": 1100.0, "JUB": 24200.0, "LEY19032": 6600.0, "OS": 6600.0}
    assert out["summary"]["totalDeductions"] == 48500.0
    assert out["summary"]["daysAbsent"] == 1
    assert out["summary"]["daysLate"] == 3


def test_auto_concepts_presenteeism_on_clean_month():
    out = auto_concepts(220000, [{"status": "present", "hoursWorked": 8, "overtimeHours": 0}])
    assert out["concepts"] == [
        {
            "code": "PRES",
            "label": "Bono Presentismo (sin ausencias ni tardanzas)",
            "type": "no_remunerativo",
            "amount": 22000.0,
            "taxable": False,
        }
    ]


def test_employer_contributions_total():
    out = employer_contributions(100000)
    assert len(out["contributions"]) == 5
    assert out["total"] == 25110.0


def test_payroll_lifecycle(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"], baseSalary=200000)

    created = ok_data(
        api(
            client,
            "PAYROLL_CREATE",
            {"employeeId": emp["employeeId"], "period": "2026-01", "bonuses": 10000, "taxRate": 10},
            tenant["token"],
        )
    )["payroll"]
    assert created["payrollId"].startswith("PAY-")
    assert created["status"] == "pending"
    assert created["baseSalary"] == 200000
    assert created["gross"] == 210000
    assert created["net"] == 189000

    dup = api(client, "PAYROLL_CREATE", {"employeeId": emp["employeeId"], "period": "2026-01"}, tenant["token"])
    assert dup.status_code == 409

    pid = created["payrollId"]
    updated = ok_data(api(client, "PAYROLL_UPDATE", {"payrollId": pid, "bonuses": 0}, tenant["token"]))["payroll"]
    assert updated["gross"] == 200000
    assert updated["taxRate"] == 10

    bad = api(client, "PAYROLL_STATUS_SET", {"payrollId": pid, "status": "paid"}, tenant["token"])
    assert bad.status_code == 400

    approved = ok_data(api(client, "PAYROLL_APPROVE", {"payrollId": pid}, tenant["token"]))["payroll"]
    assert approved["status"] == "approved"
    assert approved["approvedAt"]

    locked = api(client, "PAYROLL_UPDATE", {"payrollId": pid, "bonuses": 5}, tenant["token"])
    assert locked.status_code == 400

    paid = ok_data(api(client, "PAYROLL_STATUS_SET", {"payrollId": pid, "status": "pagada"}, tenant["token"]))["payroll"]
    assert paid["status"] == "paid"
    assert paid["paidAt"]
    assert [h.get("to") for h in paid["history"] if h.get("action") == "status"] == ["approved", "paid"]

    assert api(client, "PAYROLL_STATUS_SET", {"payrollId": pid, "status": "cancelled"}, tenant["token"]).status_code == 400
    assert api(client, "PAYROLL_DELETE", {"payrollId": pid}, tenant["token"]).status_code == 400

    listed = ok_data(api(client, "PAYROLL_LIST", {"period": "2026-01", "status": "paid"}, tenant["token"]))
    assert listed["total"] == 1


def test_payroll_rejects_bad_period(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"])
    res = api(client, "PAYROLL_CREATE", {"employeeId": emp["employeeId"], "period": "2026-13"}, tenant["token"])
    assert res.status_code == 400


def test_payroll_cancel_and_delete_pending(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"])
    pid = ok_data(api(client, "PAYROLL_CREATE", {"employeeId": emp["employeeId"], "period": "2026-02"}, tenant["token"]))["payroll"][
        "payrollId"
    ]

    cancelled = ok_data(api(client, "PAYROLL_STATUS_SET", {"payrollId": pid, "status": "anulada"}, tenant["token"]))["payroll"]
    assert cancelled["status"] == "cancelled"
    ok_data(api(client, "PAYROLL_DELETE", {"payrollId": pid}, tenant["token"]))
    assert api(client, "PAYROLL_GET", {"payrollId": pid}, tenant["token"]).status_code == 404


def test_payroll_calculate_preview(app_client, tenant):
    _app, client = app_client
    out = ok_data(
        api(
            client,
            "PAYROLL_CALCULATE",
            {"baseSalary": 1000, "overtimeHours": 2, "overtimeRate": 50, "concepts": [{"name": "Bono", "type": "remunerativo", "value": 100}]},
            tenant["token"],
        )
    )
    assert out["inputs"]["baseSalary"] == 1000
    assert out["derived"]["overtimeAmount"] == 100.0
    assert out["derived"]["gross"] == 1200.0
    assert out["derived"]["net"] == 1200.0


def test_payroll_auto_concepts_and_employer_contributions(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"], baseSalary=220000, monthlyHours=176)
    ok_data(api(client, "ATTENDANCE_MARK_ABSENCE", {"employeeId": emp["employeeId"], "date": "2026-03-04"}, tenant["token"]))

    auto = ok_data(api(client, "PAYROLL_AUTO_CONCEPTS", {"employeeId": emp["employeeId"], "period": "2026-03"}, tenant["token"]))
    assert auto["summary"]["daysAbsent"] == 1
    assert "ABS" in [d["code"] for d in auto["deductions"]]
    assert all(c["mode"] == "monto" for c in auto["payrollConcepts"])
    assert {c["type"] for c in auto["payrollConcepts"]} == {"deduccion"}

    contrib = ok_data(api(client, "PAYROLL_EMPLOYER_CONTRIBUTIONS", {"employeeId": emp["employeeId"]}, tenant["token"]))
    assert contrib["baseSalary"] == 220000
    assert contrib["total"] == 55242.0


def test_payroll_requires_people_role(app_client, tenant):
    from tests.helpers import add_user

    _app, client = app_client
    token = add_user(client, tenant["token"], email="rec@acme.test", role="RECRUITER")
    assert api(client, "PAYROLL_CALCULATE", {"baseSalary": 1}, token).status_code == 403


def test_payroll_reads_are_tenant_scoped(app_client, tenant):
    _app, client = app_client
    other = signup(client, name="Beta SRL", email="boss@beta.test")
    emp = add_employee(client, tenant["token"])
    pid = ok_data(api(client, "PAYROLL_CREATE", {"employeeId": emp["employeeId"], "period": "2026-03"}, tenant["token"]))["payroll"][
        "payrollId"
    ]

    assert api(client, "PAYROLL_GET", {"payrollId": pid}, other["token"]).status_code == 404
    assert ok_data(api(client, "PAYROLL_LIST", {"period": "2026-03"}, other["token"]))["total"] == 0
    assert ok_data(api(client, "PAYROLL_LIST", {"employeeId": emp["employeeId"]}, other["token"]))["total"] == 0
    assert api(client, "PAYROLL_CREATE", {"employeeId": emp["employeeId"], "period": "2026-04"}, other["token"]).status_code == 404
    assert ok_data(api(client, "PAYROLL_GET", {"payrollId": pid}, tenant["token"]))["payroll"]["payrollId"] == pid
