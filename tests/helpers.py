from __future__ import annotations

import json

ADMIN_PASSWORD = "Adm1n!Passw0rd"


def api(client, action: str, data: dict | None = None, token: str | None = None):
    payload = {"action": action, "token": token, "data": data or {}}
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def ok_data(res) -> dict:
    body = res.get_json()
    assert res.status_code == 200, body
    assert body["ok"] is True
    return body["data"]


def error_code(res) -> str:
    body = res.get_json()
    assert body["ok"] is False
    return body["error"]["code"]


def signup(client, *, name: str = "Acme SA", email: str = "admin@acme.test", password: str = ADMIN_PASSWORD) -> dict:
    res = api(client, "TENANT_CREATE", {"name": name, "email": email, "admin": {"name": "Ada Admin", "password": password}})
    data = ok_data(res)
    return {
        "token": data["sessionToken"],
        "tenantId": data["tenant"]["tenantId"],
        "slug": data["tenant"]["slug"],
        "userId": data["user"]["userId"],
    }


def add_user(client, admin_token: str, *, email: str, role: str, password: str = ADMIN_PASSWORD, employee_id: str = "") -> str:
    """Create a user through USERS_UPSERT and return a session token for it."""
    item = {"email": email, "fullName": email.split("@")[0], "role": role, "password": password, "employeeId": employee_id}
    ok_data(api(client, "USERS_UPSERT", {"items": [item]}, admin_token))
    return ok_data(api(client, "LOGIN", {"email": email, "password": password}))["sessionToken"]


def add_employee(client, token: str, **fields) -> dict:
    payload = {"name": "Juan Perez", "role": "Developer", "baseSalary": 100000} | fields
    return ok_data(api(client, "EMPLOYEE_CREATE", payload, token))["employee"]
