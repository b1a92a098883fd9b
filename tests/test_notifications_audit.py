from __future__ import annotations

from unittest.mock import MagicMock, patch

from actions.notifications import render_template
from tests.helpers import add_employee, add_user, api, ok_data


def test_render_template_fills_variables():
    out = render_template("LEAVE_REQUESTED", {"employeeName": "Ana", "days": "2", "type": "sick", "startDate": "a", "endDate": "b"})
    assert out["title"] == "New leave request"
    assert out["message"] == "Ana requested 2 day(s) of sick leave from a to b"


def test_send_list_read_and_stats(app_client, tenant):
    _app, client = app_client
    hr_token = add_user(client, tenant["token"], email="hr@acme.test", role="HR")

    sent = ok_data(
        api(
            client,
            "NOTIFICATION_SEND",
            {"roles": ["HR"], "userIds": [tenant["userId"]], "title": "Heads up", "message": "Office closed Friday", "priority": "high"},
            tenant["token"],
        )
    )
    assert sent["sent"] == 2

    inbox = ok_data(api(client, "NOTIFICATION_LIST", {}, hr_token))
    assert inbox["total"] == 1
    assert inbox["unreadCount"] == 1
    item = inbox["items"][0]
    assert item["title"] == "Heads up"
    assert item["priority"] == "high"
    assert item["isRead"] is False

    read = ok_data(api(client, "NOTIFICATION_MARK_READ", {"notificationId": item["notificationId"]}, hr_token))["notification"]
    assert read["isRead"] is True
    assert read["readAt"]

    # Someone else's notification is invisible.
    res = api(client, "NOTIFICATION_MARK_READ", {"notificationId": item["notificationId"]}, tenant["token"])
    assert res.status_code == 404

    stats = ok_data(api(client, "NOTIFICATION_STATS", {}, hr_token))
    assert stats == {"total": 1, "unread": 0, "read": 1, "byCategory": {"system": {"total": 1, "unread": 0}}}

    ok_data(api(client, "NOTIFICATION_DELETE", {"notificationId": item["notificationId"]}, hr_token))
    assert ok_data(api(client, "NOTIFICATION_LIST", {}, hr_token))["total"] == 0


def test_send_from_template_and_mark_all_read(app_client, tenant):
    _app, client = app_client
    sent = ok_data(
        api(
            client,
            "NOTIFICATION_SEND",
            {"userIds": [tenant["userId"]], "template": "PAYROLL_APPROVED", "variables": {"period": "2026-01", "net": "10.00", "currency": "ARS"}},
            tenant["token"],
        )
    )
    assert sent["sent"] == 1

    inbox = ok_data(api(client, "NOTIFICATION_LIST", {"isRead": False}, tenant["token"]))
    assert inbox["items"][0]["data"]["template"] == "PAYROLL_APPROVED"
    assert "2026-01" in inbox["items"][0]["message"]

    assert ok_data(api(client, "NOTIFICATION_MARK_ALL_READ", {}, tenant["token"]))["modified"] == 1
    assert ok_data(api(client, "NOTIFICATION_LIST", {}, tenant["token"]))["unreadCount"] == 0


def test_send_validation(app_client, tenant):
    _app, client = app_client
    assert api(client, "NOTIFICATION_SEND", {"title": "x", "message": "y"}, tenant["token"]).status_code == 400
    assert api(client, "NOTIFICATION_SEND", {"userIds": ["USR-missing"], "title": "x", "message": "y"}, tenant["token"]).status_code == 404

    emp_token = add_user(client, tenant["token"], email="emp@acme.test", role="EMPLOYEE")
    res = api(client, "NOTIFICATION_SEND", {"roles": ["ADMIN"], "title": "x", "message": "y"}, emp_token)
    assert res.status_code == 403


def test_committed_notifications_are_queued_for_webhook(app_client, tenant):
    app, client = app_client
    app.config["CFG"].NOTIFY_WEBHOOK_URL = "https://hooks.example.test/hr"

    with patch("app.tasks.notifications.deliver_notification_task.apply_async") as enqueue:
        ok_data(api(client, "NOTIFICATION_SEND", {"userIds": [tenant["userId"]], "title": "Hi", "message": "There"}, tenant["token"]))

    assert enqueue.call_count == 1
    kwargs = enqueue.call_args.kwargs["kwargs"]
    assert kwargs["url"] == "https://hooks.example.test/hr"
    assert kwargs["payload"]["title"] == "Hi"
    assert kwargs["payload"]["tenantId"] == tenant["tenantId"]


def test_failed_request_does_not_queue_webhook(app_client, tenant):
    app, client = app_client
    app.config["CFG"].NOTIFY_WEBHOOK_URL = "https://hooks.example.test/hr"

    with patch("app.tasks.notifications.deliver_notification_task.apply_async") as enqueue:
        res = api(client, "NOTIFICATION_SEND", {"userIds": [tenant["userId"]], "title": "Hi"}, tenant["token"])

    assert res.status_code == 400
    enqueue.assert_not_called()


def test_deliver_notification_task_posts_payload():
    from app.tasks.notifications import deliver_notification_task

    response = MagicMock(status_code=204)
    with patch("app.tasks.notifications.requests.post", return_value=response) as post:
        out = deliver_notification_task("https://hooks.example.test/hr", {"notificationId": "NTF-1"})

    post.assert_called_once_with("https://hooks.example.test/hr", json={"notificationId": "NTF-1"}, timeout=10)
    response.raise_for_status.assert_called_once()
    assert out == {"notificationId": "NTF-1", "status": 204}


def test_audit_list_and_stats(app_client, tenant):
    _app, client = app_client
    emp = add_employee(client, tenant["token"])
    ok_data(api(client, "EMPLOYEE_UPDATE", {"employeeId": emp["employeeId"], "department": "IT"}, tenant["token"]))

    out = ok_data(api(client, "AUDIT_LIST", {"entityType": "EMPLOYEE", "entityId": emp["employeeId"]}, tenant["token"]))
    assert out["total"] == 2
    assert out["limit"] == 50
    assert out["skip"] == 0
    assert [r["action"] for r in out["items"]] == ["EMPLOYEE_UPDATE", "EMPLOYEE_CREATE"]
    update = out["items"][0]
    assert update["before"]["department"] == ""
    assert update["after"]["department"] == "IT"
    assert update["userId"] == tenant["userId"]

    stats = ok_data(api(client, "AUDIT_STATS", {"days": 1}, tenant["token"]))
    assert stats["days"] == 1
    assert stats["total"] >= 2
    actions = {row["key"]: row["count"] for row in stats["byAction"]}
    assert actions["EMPLOYEE_CREATE"] == 1
    assert any(row["key"] == tenant["userId"] for row in stats["byUser"])


def test_audit_is_admin_only(app_client, tenant):
    _app, client = app_client
    hr_token = add_user(client, tenant["token"], email="hr@acme.test", role="HR")
    assert api(client, "AUDIT_LIST", {}, hr_token).status_code == 403


def test_error_responses_are_audited(app_client, tenant):
    _app, client = app_client
    api(client, "EMPLOYEE_GET", {"employeeId": "EMP-999999"}, tenant["token"])

    out = ok_data(api(client, "AUDIT_LIST", {"action": "EMPLOYEE_GET"}, tenant["token"]))
    assert out["total"] == 1
    assert out["items"][0]["remark"].startswith("NOT_FOUND")
