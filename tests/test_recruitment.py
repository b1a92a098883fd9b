from __future__ import annotations

import json

from tests.helpers import api, error_code, ok_data, signup


def _vacancy(client, token: str, **fields) -> dict:
    payload = {"title": "Backend Developer", "seniority": "sr", "employmentType": "fulltime"} | fields
    return ok_data(api(client, "VACANCY_CREATE", payload, token))["vacancy"]


def _candidate(client, token: str, name: str, email: str = "") -> dict:
    return ok_data(api(client, "CANDIDATE_CREATE", {"name": name, "email": email, "match": 80}, token))["candidate"]


def test_candidate_crud_and_search(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]

    ana = _candidate(client, token, "Ana Gomez", "ana@mail.test")
    _candidate(client, token, "Bruno Diaz", "bruno@mail.test")
    assert ana["candidateId"] == "CAN-000001"
    assert ana["status"] == "Nuevo"

    page = ok_data(api(client, "CANDIDATE_LIST", {"q": "ana"}, token))
    assert page["total"] == 1
    assert page["items"][0]["name"] == "Ana Gomez"

    updated = ok_data(api(client, "CANDIDATE_UPDATE", {"candidateId": ana["candidateId"], "match": 95}, token))["candidate"]
    assert updated["match"] == 95

    res = api(client, "CANDIDATE_UPDATE", {"candidateId": ana["candidateId"], "match": 150}, token)
    assert res.status_code == 400

    ok_data(api(client, "CANDIDATE_DELETE", {"candidateId": ana["candidateId"]}, token))
    res = api(client, "CANDIDATE_GET", {"candidateId": ana["candidateId"]}, token)
    assert res.status_code == 404
    assert error_code(res) == "NOT_FOUND"


def test_vacancy_checklist_and_notes(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac = _vacancy(client, token)
    assert vac["vacancyId"] == "VAC-000001"

    added = ok_data(api(client, "VACANCY_CHECKLIST_ADD", {"vacancyId": vac["vacancyId"], "label": "Publish on LinkedIn"}, token))
    item_id = added["item"]["id"]
    assert added["item"]["done"] is False

    upd = ok_data(
        api(client, "VACANCY_CHECKLIST_UPDATE", {"vacancyId": vac["vacancyId"], "itemId": item_id, "done": True}, token)
    )
    assert upd["item"]["done"] is True

    note = ok_data(api(client, "VACANCY_NOTES_ADD", {"vacancyId": vac["vacancyId"], "text": "Client wants Python"}, token))["note"]
    got = ok_data(api(client, "VACANCY_GET", {"vacancyId": vac["vacancyId"]}, token))["vacancy"]
    assert [n["id"] for n in got["notes"]] == [note["id"]]

    res = api(client, "VACANCY_CHECKLIST_UPDATE", {"vacancyId": vac["vacancyId"], "itemId": "missing", "done": True}, token)
    assert res.status_code == 404


def test_applications_pipeline_and_reorder(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac = _vacancy(client, token)
    c1 = _candidate(client, token, "Ana Gomez")
    c2 = _candidate(client, token, "Bruno Diaz")

    a1 = ok_data(api(client, "APPLICATION_CREATE", {"candidateId": c1["candidateId"], "vacancyId": vac["vacancyId"]}, token))
    a2 = ok_data(api(client, "APPLICATION_CREATE", {"candidateId": c2["candidateId"], "vacancyId": vac["vacancyId"]}, token))
    a1_id = a1["application"]["applicationId"]
    a2_id = a2["application"]["applicationId"]
    assert a1["application"]["status"] == "sent"
    assert (a1["application"]["order"], a2["application"]["order"]) == (0, 1)

    res = api(client, "APPLICATION_CREATE", {"candidateId": c1["candidateId"], "vacancyId": vac["vacancyId"]}, token)
    assert res.status_code == 409

    res = api(client, "APPLICATION_CREATE", {"candidateId": c1["candidateId"], "vacancyId": vac["vacancyId"], "status": "nope"}, token)
    assert res.status_code == 400

    out = ok_data(
        api(
            client,
            "APPLICATION_REORDER",
            {
                "vacancyId": vac["vacancyId"],
                "changes": [
                    {"id": a2_id, "status": "interview", "order": 0},
                    {"id": a1_id, "status": "sent", "order": 0},
                    {"id": "APP-999999", "status": "sent", "order": 3},
                ],
            },
            token,
        )
    )
    assert out["matched"] == 2
    assert out["modified"] == 1

    board = ok_data(api(client, "PIPELINE_BOARD_GET", {"vacancyId": vac["vacancyId"]}, token))
    columns = {c["key"]: c for c in board["columns"]}
    assert [c["key"] for c in board["columns"]] == ["sent", "interview", "feedback", "offer", "hired", "rejected"]
    assert columns["interview"]["total"] == 1
    assert columns["interview"]["items"][0]["candidate"]["name"] == "Bruno Diaz"

    stages = ok_data(api(client, "PIPELINE_STAGES_LIST", {}, token))["items"]
    assert len(stages) == 6


def test_rest_routes_mirror_actions(app_client, tenant):
    _app, client = app_client
    headers = {"Authorization": f"Bearer {tenant['token']}"}

    res = client.post("/api/v1/vacancies", data=json.dumps({"title": "Data Engineer"}), content_type="application/json", headers=headers)
    assert res.status_code == 201
    vacancy_id = res.get_json()["data"]["vacancy"]["vacancyId"]

    res = client.get(f"/api/v1/vacancies/{vacancy_id}", headers=headers)
    assert res.status_code == 200
    assert res.get_json()["data"]["vacancy"]["title"] == "Data Engineer"

    res = client.get("/api/v1/vacancies?status=open", headers=headers)
    assert res.get_json()["data"]["total"] == 1

    res = client.get("/api/v1/vacancies/VAC-404404")
    assert res.status_code == 401

    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.get_json()["error"]["code"] == "NOT_FOUND"


def test_public_careers_apply(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac = _vacancy(client, token, title="QA Analyst")
    _vacancy(client, token, title="Closed Role", status="closed")

    res = client.get(f"/api/v1/public/careers/{tenant['slug']}")
    assert res.status_code == 200
    page = res.get_json()["data"]
    assert page["company"]["slug"] == tenant["slug"]
    assert [v["title"] for v in page["vacancies"]] == ["QA Analyst"]

    body = {"name": "Carla Ruiz", "email": "carla@mail.test", "vacancyId": vac["vacancyId"]}
    res = client.post(f"/api/v1/public/careers/{tenant['slug']}/apply", json=body)
    assert res.status_code == 201
    assert res.get_json()["data"]["application"]["status"] == "sent"

    res = client.post(f"/api/v1/public/careers/{tenant['slug']}/apply", json=body)
    assert res.status_code == 409

    res = client.post(f"/api/v1/public/careers/{tenant['slug']}/apply", json=body | {"_hp_check": "bot"})
    assert res.status_code == 400

    cands = ok_data(api(client, "CANDIDATE_LIST", {"q": "carla"}, token))
    assert cands["total"] == 1
    assert cands["items"][0]["source"] == "form"

    res = client.get("/api/v1/public/careers/unknown-company")
    assert res.status_code == 404


def test_public_apply_rate_limited(app_client, tenant):
    app, client = app_client
    app.config["CFG"].RATE_LIMIT_PUBLIC_APPLY = 2
    vac = _vacancy(client, tenant["token"])

    statuses = []
    for i in range(3):
        body = {"name": f"Bot {i}", "email": f"bot{i}@mail.test", "vacancyId": vac["vacancyId"]}
        statuses.append(client.post(f"/api/v1/public/careers/{tenant['slug']}/apply", json=body).status_code)
    assert statuses == [201, 201, 429]


def test_vacancy_update_list_and_delete(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    backend = _vacancy(client, token)
    designer = _vacancy(client, token, title="Product Designer", location="Rosario")

    paused = ok_data(api(client, "VACANCY_UPDATE", {"vacancyId": backend["vacancyId"], "status": "paused", "salaryMin": 100}, token))
    assert paused["vacancy"]["status"] == "paused"

    res = api(client, "VACANCY_UPDATE", {"vacancyId": backend["vacancyId"], "salaryMax": 50}, token)
    assert res.status_code == 400

    page = ok_data(api(client, "VACANCY_LIST", {"status": "open"}, token))
    assert [v["vacancyId"] for v in page["items"]] == [designer["vacancyId"]]
    assert (page["page"], page["pageSize"]) == (1, 20)
    assert ok_data(api(client, "VACANCY_LIST", {"q": "rosario"}, token))["total"] == 1

    cand = _candidate(client, token, "Ana Gomez")
    ok_data(api(client, "APPLICATION_CREATE", {"candidateId": cand["candidateId"], "vacancyId": backend["vacancyId"]}, token))
    listed = ok_data(api(client, "VACANCY_LIST", {"status": "paused"}, token))["items"][0]
    assert listed["applicationsCount"] == 1

    out = ok_data(api(client, "VACANCY_DELETE", {"vacancyId": backend["vacancyId"]}, token))
    assert out["applicationsRemoved"] == 1
    assert api(client, "VACANCY_GET", {"vacancyId": backend["vacancyId"]}, token).status_code == 404
    assert ok_data(api(client, "APPLICATION_LIST", {"vacancyId": backend["vacancyId"]}, token))["total"] == 0


def test_vacancy_checklist_and_note_removal(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac_id = _vacancy(client, token)["vacancyId"]

    first = ok_data(api(client, "VACANCY_CHECKLIST_ADD", {"vacancyId": vac_id, "label": "Define salary band"}, token))["item"]
    ok_data(api(client, "VACANCY_CHECKLIST_ADD", {"vacancyId": vac_id, "label": "Book interviewers"}, token))
    assert len(ok_data(api(client, "VACANCY_CHECKLIST_LIST", {"vacancyId": vac_id}, token))["items"]) == 2

    left = ok_data(api(client, "VACANCY_CHECKLIST_DELETE", {"vacancyId": vac_id, "itemId": first["id"]}, token))["items"]
    assert [it["label"] for it in left] == ["Book interviewers"]

    note = ok_data(api(client, "VACANCY_NOTES_ADD", {"vacancyId": vac_id, "text": "Hiring manager is on leave"}, token))["note"]
    assert [n["id"] for n in ok_data(api(client, "VACANCY_NOTES_LIST", {"vacancyId": vac_id}, token))["items"]] == [note["id"]]

    ok_data(api(client, "VACANCY_NOTES_DELETE", {"vacancyId": vac_id, "noteId": note["id"]}, token))
    assert ok_data(api(client, "VACANCY_NOTES_LIST", {"vacancyId": vac_id}, token))["items"] == []

    res = api(client, "VACANCY_NOTES_DELETE", {"vacancyId": vac_id, "noteId": note["id"]}, token)
    assert res.status_code == 404


def test_application_update_moves_to_end_of_column(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac_id = _vacancy(client, token)["vacancyId"]
    apps = []
    for name in ("Ana Gomez", "Bruno Diaz", "Carla Ruiz"):
        cand = _candidate(client, token, name)
        apps.append(ok_data(api(client, "APPLICATION_CREATE", {"candidateId": cand["candidateId"], "vacancyId": vac_id}, token))["application"])

    ok_data(api(client, "APPLICATION_UPDATE", {"applicationId": apps[0]["applicationId"], "status": "interview"}, token))
    moved = ok_data(
        api(client, "APPLICATION_UPDATE", {"applicationId": apps[1]["applicationId"], "status": "interview", "notes": "Strong SQL"}, token)
    )["application"]
    assert moved["order"] == 1
    assert moved["notes"] == "Strong SQL"

    res = api(client, "APPLICATION_UPDATE", {"applicationId": apps[2]["applicationId"], "status": "limbo"}, token)
    assert res.status_code == 400

    items = ok_data(api(client, "APPLICATION_LIST", {"vacancyId": vac_id}, token))["items"]
    assert [(i["status"], i["candidate"]["name"]) for i in items] == [
        ("sent", "Carla Ruiz"),
        ("interview", "Ana Gomez"),
        ("interview", "Bruno Diaz"),
    ]
    assert api(client, "APPLICATION_LIST", {}, token).status_code == 400

    ok_data(api(client, "APPLICATION_DELETE", {"applicationId": apps[2]["applicationId"]}, token))
    assert ok_data(api(client, "APPLICATION_LIST", {"vacancyId": vac_id}, token))["total"] == 2
    assert api(client, "APPLICATION_DELETE", {"applicationId": apps[2]["applicationId"]}, token).status_code == 404


def test_reorder_unknown_or_empty_vacancy(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac = _vacancy(client, token)

    res = api(client, "APPLICATION_REORDER", {"vacancyId": vac["vacancyId"], "changes": [{"id": "APP-000001", "status": "sent", "order": 0}]}, token)
    assert res.status_code == 404
    assert res.get_json()["error"]["message"] == "Vacancy not found"

    res = api(client, "APPLICATION_REORDER", {"vacancyId": "VAC-999999", "changes": [{"id": "APP-000001", "status": "sent", "order": 0}]}, token)
    assert res.status_code == 404


def test_reorder_with_bad_stage_applies_nothing(app_client, tenant):
    _app, client = app_client
    token = tenant["token"]
    vac = _vacancy(client, token)
    c1 = _candidate(client, token, "Ana Gomez")
    c2 = _candidate(client, token, "Bruno Diaz")
    a1 = ok_data(api(client, "APPLICATION_CREATE", {"candidateId": c1["candidateId"], "vacancyId": vac["vacancyId"]}, token))["application"]
    a2 = ok_data(api(client, "APPLICATION_CREATE", {"candidateId": c2["candidateId"], "vacancyId": vac["vacancyId"]}, token))["application"]

    res = api(
        client,
        "APPLICATION_REORDER",
        {
            "vacancyId": vac["vacancyId"],
            "changes": [
                {"id": a1["applicationId"], "status": "interview", "order": 0},
                {"id": a2["applicationId"], "status": "not-a-stage", "order": 0},
            ],
        },
        token,
    )
    assert res.status_code == 400
    assert error_code(res) == "BAD_REQUEST"

    items = ok_data(api(client, "APPLICATION_LIST", {"vacancyId": vac["vacancyId"]}, token))["items"]
    assert {i["applicationId"]: i["status"] for i in items} == {a1["applicationId"]: "sent", a2["applicationId"]: "sent"}


def test_pipeline_reads_are_tenant_scoped(app_client, tenant):
    _app, client = app_client
    other = signup(client, name="Beta SRL", email="boss@beta.test")
    vac = _vacancy(client, tenant["token"])
    cand = _candidate(client, tenant["token"], "Ana Gomez")
    app_row = ok_data(
        api(client, "APPLICATION_CREATE", {"candidateId": cand["candidateId"], "vacancyId": vac["vacancyId"]}, tenant["token"])
    )["application"]

    assert api(client, "PIPELINE_BOARD_GET", {"vacancyId": vac["vacancyId"]}, other["token"]).status_code == 404
    assert ok_data(api(client, "APPLICATION_LIST", {"vacancyId": vac["vacancyId"]}, other["token"]))["total"] == 0
    res = api(
        client,
        "APPLICATION_REORDER",
        {"vacancyId": vac["vacancyId"], "changes": [{"id": app_row["applicationId"], "status": "offer", "order": 0}]},
        other["token"],
    )
    assert res.status_code == 404
    mine = ok_data(api(client, "APPLICATION_LIST", {"vacancyId": vac["vacancyId"]}, tenant["token"]))["items"]
    assert [i["status"] for i in mine] == ["sent"]
