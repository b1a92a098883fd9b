from __future__ import annotations

from actions.evaluations import weighted_rating
from tests.helpers import add_employee, add_user, api, error_code, ok_data, signup

COMPETENCIES = [
    {"id": "c1", "name": "Teamwork", "weight": 60},
    {"id": "c2", "name": "Delivery", "weight": 40},
]


def _setup_cycle(client, admin_token: str) -> dict:
    boss = add_employee(client, admin_token, name="Laura Jefa", email="boss@acme.test", role="Engineering Manager")
    report = add_employee(client, admin_token, name="Juan Perez", email="juan@acme.test", managerId=boss["employeeId"])
    boss_token = add_user(client, admin_token, email="boss@acme.test", role="MANAGER", employee_id=boss["employeeId"])
    juan_token = add_user(client, admin_token, email="juan@acme.test", role="EMPLOYEE", employee_id=report["employeeId"])

    template = ok_data(
        api(
            client,
            "EVAL_TEMPLATE_CREATE",
            {"name": "Annual 2026", "type": "annual", "competencies": COMPETENCIES, "config": {"requireManagerApproval": True}},
            admin_token,
        )
    )["template"]
    cycle = ok_data(
        api(
            client,
            "EVAL_CYCLE_CREATE",
            {"name": "H1 2026", "templateId": template["templateId"], "startDate": "2026-01-01", "endDate": "2026-06-30"},
            admin_token,
        )
    )["cycle"]
    return {
        "boss": boss,
        "report": report,
        "boss_token": boss_token,
        "juan_token": juan_token,
        "template": template,
        "cycle": cycle,
    }


def test_weighted_rating():
    ratings = [{"competencyId": "c1", "rating": 4}, {"competencyId": "c2", "rating": 5}, {"competencyId": "zz", "rating": 1}]
    assert weighted_rating(ratings, COMPETENCIES) == 4.4
    assert weighted_rating([], COMPETENCIES) == 0.0


def test_template_defaults_and_validation(app_client, tenant):
    _app, client = app_client
    tpl = ok_data(api(client, "EVAL_TEMPLATE_CREATE", {"name": "Probation", "competencies": COMPETENCIES}, tenant["token"]))["template"]
    assert tpl["templateId"].startswith("TPL-")
    assert tpl["type"] == "annual"
    assert tpl["ratingScale"]["min"] == 1
    assert tpl["config"]["allowSelfEvaluation"] is True
    assert tpl["config"]["requireHRApproval"] is False
    assert all(c["required"] for c in tpl["competencies"])

    bad = api(client, "EVAL_TEMPLATE_CREATE", {"name": "Bad", "competencies": [{"name": "X", "weight": 150}]}, tenant["token"])
    assert bad.status_code == 400
    bad_scale = api(client, "EVAL_TEMPLATE_CREATE", {"name": "Bad", "ratingScale": {"min": 5, "max": 1}}, tenant["token"])
    assert bad_scale.status_code == 400


def test_cycle_launch_and_review_flow(app_client, tenant):
    _app, client = app_client
    ctx = _setup_cycle(client, tenant["token"])
    cycle_id = ctx["cycle"]["cycleId"]
    assert ctx["cycle"]["status"] == "draft"

    launched = ok_data(api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": cycle_id, "employeeIds": [ctx["report"]["employeeId"]]}, tenant["token"]))
    assert launched["assignedCount"] == 2
    assert launched["employeeCount"] == 1
    assert launched["cycle"]["status"] == "active"
    assert launched["cycle"]["stats"]["totalPending"] == 2

    again = api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": cycle_id}, tenant["token"])
    assert again.status_code == 400

    mine = ok_data(api(client, "EVALUATION_LIST", {"cycleId": cycle_id}, ctx["juan_token"]))
    assert mine["total"] == 2
    by_role = {e["evaluatorRole"]: e for e in mine["items"]}
    self_id = by_role["self"]["evaluationId"]
    manager_id = by_role["manager"]["evaluationId"]
    assert by_role["manager"]["evaluatorId"] == ctx["boss"]["employeeId"]

    inbox = ok_data(api(client, "NOTIFICATION_LIST", {}, ctx["boss_token"]))
    assert inbox["items"][0]["data"]["template"] == "EVALUATION_ASSIGNED"

    # Only the evaluator may work on an evaluation.
    assert api(client, "EVALUATION_START", {"evaluationId": self_id}, ctx["boss_token"]).status_code == 403
    assert api(client, "EVALUATION_SAVE", {"evaluationId": manager_id}, ctx["juan_token"]).status_code == 403

    started = client.post(f"/api/v1/evaluations/{self_id}/start", headers={"Authorization": f"Bearer {ctx['juan_token']}"})
    assert started.status_code == 200
    assert started.get_json()["data"]["evaluation"]["status"] == "in-progress"

    ok_data(
        api(
            client,
            "EVALUATION_SAVE",
            {"evaluationId": self_id, "competencyRatings": [{"competencyId": "c1", "rating": 4}, {"competencyId": "c2", "rating": 5}]},
            ctx["juan_token"],
        )
    )
    submitted = ok_data(api(client, "EVALUATION_SUBMIT", {"evaluationId": self_id}, ctx["juan_token"]))["evaluation"]
    assert submitted["status"] == "manager-review"
    assert submitted["overallRating"] == 4.4

    assert api(client, "EVALUATION_MANAGER_REVIEW", {"evaluationId": self_id}, ctx["boss_token"]).status_code == 400
    reviewed = ok_data(
        api(client, "EVALUATION_MANAGER_REVIEW", {"evaluationId": self_id, "approved": True, "comments": "Good"}, ctx["boss_token"])
    )["evaluation"]
    assert reviewed["status"] == "completed"
    assert reviewed["managerReview"]["approved"] is True

    incomplete = api(client, "EVALUATION_SUBMIT", {"evaluationId": manager_id}, ctx["boss_token"])
    assert incomplete.status_code == 400

    ok_data(
        api(
            client,
            "EVALUATION_SAVE",
            {"evaluationId": manager_id, "competencyRatings": [{"competencyId": "c1", "rating": 3}, {"competencyId": "c2", "rating": 3}]},
            ctx["boss_token"],
        )
    )
    done = ok_data(api(client, "EVALUATION_SUBMIT", {"evaluationId": manager_id}, ctx["boss_token"]))["evaluation"]
    assert done["status"] == "completed"
    assert done["overallRating"] == 3.0

    cycle = ok_data(api(client, "EVAL_CYCLE_GET", {"cycleId": cycle_id}, tenant["token"]))["cycle"]
    assert cycle["status"] == "completed"
    assert cycle["stats"]["totalCompleted"] == 2
    assert cycle["stats"]["completionRate"] == 100.0
    assert cycle["stats"]["averageScore"] == 3.7

    summary = ok_data(api(client, "EVALUATION_EMPLOYEE_SUMMARY", {"cycleId": cycle_id}, ctx["juan_token"]))["summary"]
    assert summary["employeeId"] == ctx["report"]["employeeId"]
    assert summary["totalEvaluations"] == 2
    assert summary["completedEvaluations"] == 2
    assert summary["averageScore"] == 3.7
    assert summary["selfEvaluation"] == {"status": "completed", "overallRating": 4.4}


def test_submit_rejects_out_of_scale_rating(app_client, tenant):
    _app, client = app_client
    ctx = _setup_cycle(client, tenant["token"])
    ok_data(api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": ctx["cycle"]["cycleId"]}, tenant["token"]))
    items = ok_data(api(client, "EVALUATION_LIST", {"mine": True}, ctx["juan_token"]))["items"]
    assert len(items) == 1
    eid = items[0]["evaluationId"]

    ok_data(
        api(
            client,
            "EVALUATION_SAVE",
            {"evaluationId": eid, "competencyRatings": [{"competencyId": "c1", "rating": 9}, {"competencyId": "c2", "rating": 3}]},
            ctx["juan_token"],
        )
    )
    res = api(client, "EVALUATION_SUBMIT", {"evaluationId": eid}, ctx["juan_token"])
    assert res.status_code == 400


def test_summary_is_null_without_evaluations(app_client, tenant):
    _app, client = app_client
    ctx = _setup_cycle(client, tenant["token"])
    out = ok_data(
        api(client, "EVALUATION_EMPLOYEE_SUMMARY", {"cycleId": ctx["cycle"]["cycleId"], "employeeId": ctx["boss"]["employeeId"]}, tenant["token"])
    )
    assert out["summary"] is None


def test_template_in_use_cannot_be_deleted(app_client, tenant):
    _app, client = app_client
    ctx = _setup_cycle(client, tenant["token"])
    res = api(client, "EVAL_TEMPLATE_DELETE", {"templateId": ctx["template"]["templateId"]}, tenant["token"])
    assert res.status_code == 409
    assert api(client, "EVAL_CYCLE_DELETE", {"cycleId": ctx["cycle"]["cycleId"]}, tenant["token"]).status_code == 200


def test_employee_cannot_manage_cycles(app_client, tenant):
    _app, client = app_client
    ctx = _setup_cycle(client, tenant["token"])
    assert api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": ctx["cycle"]["cycleId"]}, ctx["juan_token"]).status_code == 403


def test_template_and_cycle_updates(app_client, tenant):
    _app, client = app_client
    admin = tenant["token"]
    ctx = _setup_cycle(client, admin)
    tpl_id = ctx["template"]["templateId"]
    cycle_id = ctx["cycle"]["cycleId"]

    updated = ok_data(
        api(client, "EVAL_TEMPLATE_UPDATE", {"templateId": tpl_id, "config": {"requireManagerApproval": False, "requireHRApproval": True}}, admin)
    )["template"]
    assert updated["config"]["requireManagerApproval"] is False
    assert updated["config"]["requireHRApproval"] is True
    assert updated["config"]["allowSelfEvaluation"] is True

    got = ok_data(api(client, "EVAL_TEMPLATE_GET", {"templateId": tpl_id}, admin))["template"]
    assert got["config"] == updated["config"]
    assert [c["id"] for c in got["competencies"]] == ["c1", "c2"]
    assert ok_data(api(client, "EVAL_TEMPLATE_LIST", {"type": "annual"}, admin))["total"] == 1
    assert ok_data(api(client, "EVAL_TEMPLATE_LIST", {"type": "probation"}, admin))["total"] == 0
    assert api(client, "EVAL_TEMPLATE_GET", {"templateId": "TPL-missing"}, admin).status_code == 404

    renamed = ok_data(api(client, "EVAL_CYCLE_UPDATE", {"cycleId": cycle_id, "name": "H1 2026 Engineering"}, admin))["cycle"]
    assert renamed["name"] == "H1 2026 Engineering"
    assert api(client, "EVAL_CYCLE_UPDATE", {"cycleId": cycle_id, "status": "active"}, admin).status_code == 400
    assert api(client, "EVAL_CYCLE_UPDATE", {"cycleId": cycle_id, "endDate": "2025-12-31"}, admin).status_code == 400

    ok_data(api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": cycle_id, "employeeIds": [ctx["report"]["employeeId"]]}, admin))
    active = ok_data(api(client, "EVAL_CYCLE_LIST", {"status": "active"}, admin))
    assert [c["name"] for c in active["items"]] == ["H1 2026 Engineering"]
    assert ok_data(api(client, "EVAL_CYCLE_LIST", {"status": "draft"}, admin))["total"] == 0
    assert api(client, "EVAL_CYCLE_UPDATE", {"cycleId": cycle_id, "templateId": tpl_id}, admin).status_code == 400


def test_hr_review_flow(app_client, tenant):
    _app, client = app_client
    admin = tenant["token"]
    ctx = _setup_cycle(client, admin)
    ok_data(
        api(
            client,
            "EVAL_TEMPLATE_UPDATE",
            {"templateId": ctx["template"]["templateId"], "config": {"requireManagerApproval": False, "requireHRApproval": True}},
            admin,
        )
    )
    ok_data(api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": ctx["cycle"]["cycleId"], "employeeIds": [ctx["report"]["employeeId"]]}, admin))

    outsider = add_employee(client, admin, name="Otra Persona", email="otra@acme.test")
    outsider_token = add_user(client, admin, email="otra@acme.test", role="EMPLOYEE", employee_id=outsider["employeeId"])

    self_id = ok_data(api(client, "EVALUATION_LIST", {"mine": True}, ctx["juan_token"]))["items"][0]["evaluationId"]
    ok_data(
        api(
            client,
            "EVALUATION_SAVE",
            {"evaluationId": self_id, "competencyRatings": [{"competencyId": "c1", "rating": 5}, {"competencyId": "c2", "rating": 5}]},
            ctx["juan_token"],
        )
    )
    submitted = ok_data(api(client, "EVALUATION_SUBMIT", {"evaluationId": self_id}, ctx["juan_token"]))["evaluation"]
    assert submitted["status"] == "hr-review"

    view = ok_data(api(client, "EVALUATION_GET", {"evaluationId": self_id}, ctx["juan_token"]))
    assert view["evaluation"]["overallRating"] == 5.0
    assert view["template"]["templateId"] == ctx["template"]["templateId"]
    assert api(client, "EVALUATION_GET", {"evaluationId": self_id}, outsider_token).status_code == 404

    assert api(client, "EVALUATION_HR_REVIEW", {"evaluationId": self_id, "approved": True}, ctx["boss_token"]).status_code == 403

    sent_back = ok_data(
        api(client, "EVALUATION_HR_REVIEW", {"evaluationId": self_id, "approved": False, "comments": "Add examples"}, admin)
    )["evaluation"]
    assert sent_back["status"] == "manager-review"
    assert sent_back["hrReview"]["comments"] == "Add examples"

    back_to_hr = ok_data(api(client, "EVALUATION_MANAGER_REVIEW", {"evaluationId": self_id, "approved": True}, ctx["boss_token"]))
    assert back_to_hr["evaluation"]["status"] == "hr-review"

    done = ok_data(api(client, "EVALUATION_HR_REVIEW", {"evaluationId": self_id, "approved": True}, admin))["evaluation"]
    assert done["status"] == "completed"
    assert done["hrReview"]["approved"] is True
    assert api(client, "EVALUATION_HR_REVIEW", {"evaluationId": self_id, "approved": True}, admin).status_code == 400

    cycle = ok_data(api(client, "EVAL_CYCLE_GET", {"cycleId": ctx["cycle"]["cycleId"]}, admin))["cycle"]
    assert cycle["status"] == "active"
    assert cycle["stats"]["totalCompleted"] == 1


def test_launch_without_matching_employees_stays_draft(app_client, tenant):
    _app, client = app_client
    ctx = _setup_cycle(client, tenant["token"])
    cycle_id = ctx["cycle"]["cycleId"]
    outsider = signup(client, name="Beta SRL", email="boss@beta.test")
    foreign = add_employee(client, outsider["token"], name="Otra Persona")

    for employee_ids in (["EMP-999999"], [foreign["employeeId"]]):
        res = api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": cycle_id, "employeeIds": employee_ids}, tenant["token"])
        assert res.status_code == 400
        assert error_code(res) == "BAD_REQUEST"

    cycle = ok_data(api(client, "EVAL_CYCLE_GET", {"cycleId": cycle_id}, tenant["token"]))["cycle"]
    assert cycle["status"] == "draft"
    assert ok_data(api(client, "EVALUATION_LIST", {"cycleId": cycle_id}, tenant["token"]))["total"] == 0


def _complete_cycle(client, admin: str, ctx: dict) -> str:
    """Self rating 4.4 approved by the manager, manager rating 3.0."""
    cycle_id = ctx["cycle"]["cycleId"]
    ok_data(api(client, "EVAL_CYCLE_LAUNCH", {"cycleId": cycle_id, "employeeIds": [ctx["report"]["employeeId"]]}, admin))
    by_role = {e["evaluatorRole"]: e["evaluationId"] for e in ok_data(api(client, "EVALUATION_LIST", {"cycleId": cycle_id}, admin))["items"]}

    for eid, token, ratings in (
        (by_role["self"], ctx["juan_token"], (4, 5)),
        (by_role["manager"], ctx["boss_token"], (3, 3)),
    ):
        competency_ratings = [{"competencyId": "c1", "rating": ratings[0]}, {"competencyId": "c2", "rating": ratings[1]}]
        ok_data(api(client, "EVALUATION_SAVE", {"evaluationId": eid, "competencyRatings": competency_ratings}, token))
        ok_data(api(client, "EVALUATION_SUBMIT", {"evaluationId": eid}, token))
    ok_data(api(client, "EVALUATION_MANAGER_REVIEW", {"evaluationId": by_role["self"], "approved": True}, ctx["boss_token"]))
    return cycle_id


def test_cycle_analytics(app_client, tenant):
    _app, client = app_client
    admin = tenant["token"]
    ctx = _setup_cycle(client, admin)
    cycle_id = _complete_cycle(client, admin, ctx)

    out = ok_data(api(client, "EVAL_ANALYTICS_CYCLE", {"cycleId": cycle_id}, admin))
    assert out["totalEvaluations"] == 2
    assert out["totalCompleted"] == 2
    assert out["completionRate"] == 100
    assert out["averageScore"] == 3.7
    assert out["maxScore"] == 4.4
    assert out["minScore"] == 3.0
    assert out["scoreDistribution"] == {"1-2": 0, "2-3": 0, "3-4": 1, "4-5": 1}
    assert out["byRole"]["self"] == 1
    assert out["byRole"]["manager"] == 1
    assert out["avgByRole"]["manager"] == 3.0
    assert out["avgByRole"]["peer"] == 0.0

    depts = ok_data(api(client, "EVAL_ANALYTICS_DEPARTMENTS", {"cycleId": cycle_id}, ctx["boss_token"]))
    assert depts["items"] == [
        {"department": "Unassigned", "totalEmployees": 1, "totalEvaluations": 2, "averageScore": 3.7, "maxScore": 4.4, "minScore": 3.0}
    ]

    top = ok_data(api(client, "EVAL_ANALYTICS_TOP_PERFORMERS", {"cycleId": cycle_id, "limit": 5}, admin))
    assert top["total"] == 1
    assert top["items"][0]["employeeId"] == ctx["report"]["employeeId"]
    assert top["items"][0]["averageScore"] == 3.7
    assert len(top["items"][0]["evaluationBreakdown"]) == 2

    assert api(client, "EVAL_ANALYTICS_CYCLE", {"cycleId": cycle_id}, ctx["juan_token"]).status_code == 403
    assert api(client, "EVAL_ANALYTICS_CYCLE", {"cycleId": "CYC-missing"}, admin).status_code == 404


def test_competency_analytics_ranks_strengths(app_client, tenant):
    _app, client = app_client
    admin = tenant["token"]
    ctx = _setup_cycle(client, admin)
    cycle_id = _complete_cycle(client, admin, ctx)

    out = ok_data(api(client, "EVAL_ANALYTICS_COMPETENCIES", {"cycleId": cycle_id}, admin))
    by_id = {c["competencyId"]: c for c in out["competencies"]}
    assert by_id["c1"]["averageScore"] == 3.5
    assert by_id["c2"]["averageScore"] == 4.0
    assert by_id["c1"]["totalRatings"] == 2
    assert [c["competencyId"] for c in out["strengths"]] == ["c2", "c1"]
    assert [c["competencyId"] for c in out["weaknesses"]] == ["c1", "c2"]


def test_score_trends_and_employee_history(app_client, tenant):
    _app, client = app_client
    admin = tenant["token"]
    ctx = _setup_cycle(client, admin)
    cycle_id = _complete_cycle(client, admin, ctx)

    trends = ok_data(api(client, "EVAL_ANALYTICS_TRENDS", {}, admin))
    assert [(t["cycleId"], t["averageScore"]) for t in trends["items"]] == [(cycle_id, 3.7)]
    filtered = ok_data(api(client, "EVAL_ANALYTICS_TRENDS", {"employeeId": ctx["boss"]["employeeId"]}, admin))
    assert filtered["items"][0]["totalEvaluations"] == 0

    history = ok_data(api(client, "EVAL_ANALYTICS_EMPLOYEE_HISTORY", {}, ctx["juan_token"]))
    assert history["employeeId"] == ctx["report"]["employeeId"]
    assert history["total"] == 1
    assert history["items"][0]["averageScore"] == 3.7
    assert history["items"][0]["endDate"] == "2026-06-30"
    assert {e["evaluatorRole"] for e in history["items"][0]["evaluations"]} == {"self", "manager"}

    other = api(client, "EVAL_ANALYTICS_EMPLOYEE_HISTORY", {"employeeId": ctx["boss"]["employeeId"]}, ctx["juan_token"])
    assert other.status_code == 403
