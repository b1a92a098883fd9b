from __future__ import annotations

from tests.helpers import add_user, api, error_code, ok_data, signup


def _user_id(client, token: str) -> str:
    return ok_data(api(client, "GET_ME", {}, token))["me"]["userId"]


def _people(client, admin_token: str) -> dict:
    tokens = {
        "manager": add_user(client, admin_token, email="boss@acme.test", role="MANAGER"),
        "hr": add_user(client, admin_token, email="hr@acme.test", role="HR"),
        "juan": add_user(client, admin_token, email="juan@acme.test", role="EMPLOYEE"),
        "otra": add_user(client, admin_token, email="otra@acme.test", role="EMPLOYEE"),
    }
    return {name: {"token": t, "userId": _user_id(client, t)} for name, t in tokens.items()}


def _create(client, token: str, steps: list[dict], **fields):
    payload = {"name": "Laptop purchase", "resourceType": "purchase", "resourceId": "PO-1", "steps": steps} | fields
    return api(client, "WORKFLOW_CREATE", payload, token)


def _templates(client, token: str) -> list[str]:
    return [n["data"]["template"] for n in ok_data(api(client, "NOTIFICATION_LIST", {}, token))["items"]]


def test_steps_run_in_order(app_client, tenant):
    _app, client = app_client
    p = _people(client, tenant["token"])
    steps = [{"name": "Manager sign-off", "assignedTo": p["manager"]["userId"]}, {"name": "HR sign-off", "assignedTo": p["hr"]["userId"]}]
    wf = ok_data(_create(client, p["juan"]["token"], steps, priority="high"))["workflow"]
    wid = wf["workflowId"]
    assert wid.startswith("WFL-")
    assert wf["status"] == "in-progress"
    assert wf["currentStep"]["assignedTo"] == p["manager"]["userId"]
    assert _templates(client, p["manager"]["token"]) == ["WORKFLOW_STEP_ASSIGNED"]
    assert _templates(client, p["hr"]["token"]) == []

    # Only the assignee of the current step can act on it.
    res = api(client, "WORKFLOW_STEP_COMPLETE", {"workflowId": wid}, p["hr"]["token"])
    assert res.status_code == 403
    assert ok_data(api(client, "WORKFLOW_LIST", {}, p["hr"]["token"]))["total"] == 0
    assert ok_data(api(client, "WORKFLOW_LIST", {}, p["manager"]["token"]))["total"] == 1

    step1 = ok_data(api(client, "WORKFLOW_STEP_COMPLETE", {"workflowId": wid, "comments": "Fine"}, p["manager"]["token"]))["workflow"]
    assert step1["status"] == "in-progress"
    assert step1["currentStepIndex"] == 1
    assert step1["steps"][0]["status"] == "completed"
    assert step1["steps"][0]["comments"] == "Fine"
    assert _templates(client, p["hr"]["token"]) == ["WORKFLOW_STEP_ASSIGNED"]
    assert ok_data(api(client, "WORKFLOW_LIST", {}, p["manager"]["token"]))["total"] == 0

    done = ok_data(api(client, "WORKFLOW_STEP_COMPLETE", {"workflowId": wid}, p["hr"]["token"]))["workflow"]
    assert done["status"] == "completed"
    assert done["completedAt"]
    assert done["currentStep"] is None
    assert _templates(client, p["juan"]["token"]) == ["WORKFLOW_COMPLETED"]

    again = api(client, "WORKFLOW_STEP_COMPLETE", {"workflowId": wid}, p["hr"]["token"])
    assert again.status_code == 400

    audit = ok_data(api(client, "AUDIT_LIST", {"entityType": "WORKFLOW", "entityId": wid}, tenant["token"]))
    assert {r["action"] for r in audit["items"]} >= {"WORKFLOW_CREATE", "WORKFLOW_STEP_COMPLETE"}


def test_rejection_cancels_and_skips_remaining_steps(app_client, tenant):
    _app, client = app_client
    p = _people(client, tenant["token"])
    steps = [{"name": "Manager", "assignedTo": p["manager"]["userId"]}, {"name": "HR", "assignedTo": p["hr"]["userId"]}]
    wid = ok_data(_create(client, p["juan"]["token"], steps))["workflow"]["workflowId"]

    assert api(client, "WORKFLOW_STEP_REJECT", {"workflowId": wid}, p["manager"]["token"]).status_code == 400

    out = ok_data(api(client, "WORKFLOW_STEP_REJECT", {"workflowId": wid, "reason": "Over budget"}, p["manager"]["token"]))["workflow"]
    assert out["status"] == "cancelled"
    assert out["cancellationReason"] == "Over budget"
    assert out["cancelledBy"] == p["manager"]["userId"]
    assert [s["status"] for s in out["steps"]] == ["rejected", "skipped"]

    inbox = ok_data(api(client, "NOTIFICATION_LIST", {}, p["juan"]["token"]))["items"]
    assert inbox[0]["data"]["template"] == "WORKFLOW_REJECTED"
    assert "Over budget" in inbox[0]["message"]
    assert _templates(client, p["hr"]["token"]) == []


def test_visibility_and_cancellation(app_client, tenant):
    _app, client = app_client
    p = _people(client, tenant["token"])
    steps = [{"name": "Manager", "assignedTo": p["manager"]["userId"]}]
    wid = ok_data(_create(client, p["juan"]["token"], steps))["workflow"]["workflowId"]

    assert api(client, "WORKFLOW_GET", {"workflowId": wid}, p["otra"]["token"]).status_code == 404
    assert api(client, "WORKFLOW_CANCEL", {"workflowId": wid}, p["otra"]["token"]).status_code == 404
    assert ok_data(api(client, "WORKFLOW_GET", {"workflowId": wid}, p["manager"]["token"]))["workflow"]["workflowId"] == wid
    assert ok_data(api(client, "WORKFLOW_GET", {"workflowId": wid}, p["hr"]["token"]))["workflow"]["workflowId"] == wid

    other = signup(client, name="Beta SRL", email="boss@beta.test")
    assert api(client, "WORKFLOW_GET", {"workflowId": wid}, other["token"]).status_code == 404

    res = api(client, "WORKFLOW_LIST", {"scope": "all"}, p["juan"]["token"])
    assert res.status_code == 403
    assert error_code(res) == "FORBIDDEN"
    assert ok_data(api(client, "WORKFLOW_LIST", {"scope": "all"}, p["hr"]["token"]))["total"] == 1
    assert ok_data(api(client, "WORKFLOW_LIST", {"scope": "created"}, p["juan"]["token"]))["total"] == 1

    # The assignee can see the workflow but not cancel it.
    assert api(client, "WORKFLOW_CANCEL", {"workflowId": wid}, p["manager"]["token"]).status_code == 403
    cancelled = ok_data(api(client, "WORKFLOW_CANCEL", {"workflowId": wid, "reason": "Not needed"}, p["juan"]["token"]))["workflow"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["steps"][0]["status"] == "skipped"
    assert api(client, "WORKFLOW_CANCEL", {"workflowId": wid}, p["juan"]["token"]).status_code == 400
    assert ok_data(api(client, "WORKFLOW_LIST", {}, p["manager"]["token"]))["total"] == 0


def test_create_validates_steps(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    me = _user_id(client, token)
    foreign = signup(client, name="Beta SRL", email="boss@beta.test")

    assert _create(client, token, []).status_code == 400
    assert _create(client, token, [{"name": "X", "assignedTo": "USR-missing"}]).status_code == 400
    assert _create(client, token, [{"name": "X", "assignedTo": foreign["userId"]}]).status_code == 400
    assert _create(client, token, [{"assignedTo": me}]).status_code == 400
    assert _create(client, token, [{"name": f"S{i}", "assignedTo": me} for i in range(21)]).status_code == 400
    assert _create(client, token, [{"name": "X", "assignedTo": me}], type="unknown").status_code == 400
    assert ok_data(api(client, "WORKFLOW_STATS", {}, token))["total"] == 0

    twenty = ok_data(_create(client, token, [{"name": f"S{i}", "assignedTo": me} for i in range(20)]))["workflow"]
    assert len(twenty["steps"]) == 20


def test_stats_and_overdue_reminders(app_client, tenant):
    _app, client = app_client
    p = _people(client, tenant["token"])
    late = [{"name": "Manager", "assignedTo": p["manager"]["userId"], "dueDate": "2020-01-01"}]
    on_time = [{"name": "HR", "assignedTo": p["hr"]["userId"], "dueDate": "2099-01-01"}]
    late_id = ok_data(_create(client, p["juan"]["token"], late))["workflow"]["workflowId"]
    ok_data(_create(client, p["juan"]["token"], on_time, type="document-approval"))

    stats = ok_data(api(client, "WORKFLOW_STATS", {}, p["juan"]["token"]))
    assert stats["total"] == 2
    assert stats["byStatus"]["in-progress"] == 2
    assert stats["byType"] == {"custom": 1, "document-approval": 1}
    assert ok_data(api(client, "WORKFLOW_STATS", {}, p["manager"]["token"]))["pendingForMe"] == 1
    assert ok_data(api(client, "WORKFLOW_STATS", {}, p["otra"]["token"]))["total"] == 0

    assert api(client, "WORKFLOW_SEND_REMINDERS", {}, p["manager"]["token"]).status_code == 403
    sent = ok_data(api(client, "WORKFLOW_SEND_REMINDERS", {}, tenant["token"]))
    assert sent["sent"] == 1
    assert sent["reminders"][0]["workflowId"] == late_id
    assert _templates(client, p["manager"]["token"])[0] == "WORKFLOW_OVERDUE"

    wf = ok_data(api(client, "WORKFLOW_GET", {"workflowId": late_id}, p["manager"]["token"]))["workflow"]
    assert wf["steps"][0]["remindersSent"] == 1
