import pytest
from fastapi.testclient import TestClient

from coaching.api import app, get_ai_engine, get_files, get_store
from database.row_store import StoreError

DAY = "2024-05-06"
NEXT = "2024-05-07"


@pytest.fixture
def client(store, files):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_files] = lambda: files
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def as_user(user):
    return {"X-User-Id": user["id"]}


@pytest.fixture
def linked(client, coach, student, admin):
    response = client.post("/coach-links", headers=as_user(admin),
                           json={"student_id": student["id"], "coach_id": coach["id"], "role_label": "Math Coach"})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_register_and_identify(client):
    response = client.post("/users", json={"email": "new@example.com", "name": "New"})
    assert response.status_code == 201
    user = response.json()
    assert user["roles"] == ["student"]

    assert client.get("/users/me", headers=as_user(user)).json()["email"] == "new@example.com"
    assert client.get("/users/me", headers={"X-User-Id": "nobody"}).status_code == 401
    assert client.get("/users/me").status_code == 422


def test_duplicate_registration_is_a_bad_request(client, student):
    response = client.post("/users", json={"email": "ada@example.com", "name": "Ada again"})
    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_only_admins_list_everyone(client, student, admin):
    assert client.get("/users", headers=as_user(student)).status_code == 403
    assert len(client.get("/users", headers=as_user(admin)).json()) == 2
    assert client.get("/users?role=coach", headers=as_user(student)).json() == []


def test_task_flow(client, student):
    headers = as_user(student)
    first = client.post("/tasks", headers=headers, json={"title": "Algebra", "due_date": DAY}).json()
    second = client.post("/tasks", headers=headers, json={"title": "Geometry", "due_date": DAY}).json()
    child = client.post("/tasks", headers=headers, json={"title": "Worksheet", "parent_id": first["id"]}).json()
    assert (first["sort_order"], second["sort_order"], child["due_date"]) == (0, 1, DAY)

    board = client.get(f"/tasks/day?day={DAY}", headers=headers).json()
    assert [t["title"] for t in board["tasks"]] == ["Algebra", "Geometry"]
    assert [c["title"] for c in board["tasks"][0]["children"]] == ["Worksheet"]

    patched = client.patch(f"/tasks/{second['id']}", headers=headers, json={"due_time": "07:15"}).json()
    assert patched["due_time"] == "07:15"
    assert client.post(f"/tasks/{second['id']}/complete", headers=headers).json()["is_completed"] is True
    assert client.post(f"/tasks/{second['id']}/uncomplete", headers=headers).json()["is_completed"] is False

    moved = client.post(f"/tasks/{second['id']}/move", headers=headers, json={"due_date": NEXT}).json()
    assert moved["updates"][second["id"]]["due_date"] == NEXT
    rows = client.get(f"/tasks/range?start={DAY}&end={NEXT}", headers=headers).json()
    assert {t["title"]: t["due_date"] for t in rows} == {"Algebra": DAY, "Worksheet": DAY, "Geometry": NEXT}
    assert rows[-1]["title"] == "Geometry"

    deleted = client.delete(f"/tasks/{first['id']}", headers=headers).json()["deleted"]
    assert deleted == [child["id"], first["id"]]
    assert client.get(f"/tasks/{first['id']}", headers=headers).status_code == 404


def test_reorder_and_plan(client, student):
    headers = as_user(student)
    a = client.post("/tasks", headers=headers, json={"title": "A", "due_date": DAY}).json()
    b = client.post("/tasks", headers=headers, json={"title": "B", "due_date": DAY}).json()
    c = client.post("/tasks", headers=headers, json={"title": "C", "due_date": NEXT}).json()

    response = client.post("/tasks/reorder", headers=headers,
                           json={"source_id": b["id"], "target_id": a["id"], "edge": "before"})
    assert response.json()["updates"] == {b["id"]: {"sort_order": 0}, a["id"]: {"sort_order": 1}}

    response = client.post("/tasks/reorder", headers=headers, json={"source_id": c["id"], "target_id": a["id"]})
    assert response.status_code == 409

    response = client.post("/tasks/plan", headers=headers, json={"updates": [
        {"id": c["id"], "patch": {"due_date": DAY, "sort_order": 2}},
    ]})
    assert response.json() == {"written": 1}
    assert client.get(f"/tasks/{c['id']}", headers=headers).json()["due_date"] == DAY

    response = client.post("/tasks/plan", headers=headers, json={"updates": [
        {"id": c["id"], "patch": {"user_id": "someone-else"}},
    ]})
    assert response.status_code == 422


def test_plan_with_a_cycle_is_rejected(client, store, student):
    headers = as_user(student)
    parent = client.post("/tasks", headers=headers, json={"title": "Parent", "due_date": DAY}).json()
    child = client.post("/tasks", headers=headers, json={"title": "Child", "parent_id": parent["id"]}).json()

    response = client.post("/tasks/plan", headers=headers, json={"updates": [
        {"id": parent["id"], "patch": {"parent_id": child["id"], "sort_order": 0}},
    ]})
    assert response.status_code == 400
    assert store.get("tasks", parent["id"])["parent_id"] is None


def test_plan_cannot_nest_under_another_users_task(client, store, student, coach, linked):
    mine = client.post("/tasks", headers=as_user(student), json={"title": "Mine", "due_date": DAY}).json()
    theirs = client.post("/tasks", headers=as_user(coach), json={"title": "Theirs", "due_date": DAY}).json()

    response = client.post("/tasks/plan", headers=as_user(student), json={"updates": [
        {"id": mine["id"], "patch": {"parent_id": theirs["id"], "sort_order": 0}},
    ]})
    assert response.status_code == 400
    assert store.get("tasks", mine["id"])["parent_id"] is None


def test_plan_must_leave_sort_orders_dense(client, store, student):
    headers = as_user(student)
    a = client.post("/tasks", headers=headers, json={"title": "A", "due_date": DAY}).json()
    b = client.post("/tasks", headers=headers, json={"title": "B", "due_date": DAY}).json()

    response = client.post("/tasks/plan", headers=headers, json={"updates": [
        {"id": a["id"], "patch": {"sort_order": 5}},
    ]})
    assert response.status_code == 400
    response = client.post("/tasks/plan", headers=headers, json={"updates": [
        {"id": b["id"], "patch": {"sort_order": 0}},
    ]})
    assert response.status_code == 400
    assert [store.get("tasks", t["id"])["sort_order"] for t in (a, b)] == [0, 1]

    response = client.post("/tasks/plan", headers=headers, json={"updates": [
        {"id": a["id"], "patch": {"sort_order": 1}},
        {"id": b["id"], "patch": {"sort_order": 0}},
    ]})
    assert response.json() == {"written": 2}


def test_invalid_task_is_rejected(client, student):
    response = client.post("/tasks", headers=as_user(student),
                           json={"title": "Run", "due_date": DAY, "due_time": "7pm"})
    assert response.status_code == 400


def test_coach_assigns_to_student_but_strangers_cannot(client, student, coach, admin, linked):
    response = client.post("/tasks", headers=as_user(coach),
                           json={"title": "Mock exam", "user_id": student["id"], "due_date": DAY,
                                 "task_type": "exam", "settings": {"subject": "Mathematics"}})
    assert response.status_code == 201
    task = response.json()
    assert task["assigned_by"] == coach["id"]
    assert task["created_by"] == coach["id"]

    stranger = client.post("/users", json={"email": "s@example.com", "name": "S", "roles": ["coach"]}).json()
    assert client.get(f"/tasks/{task['id']}", headers=as_user(stranger)).status_code == 403
    assert client.get(f"/tasks/day?day={DAY}&user_id={student['id']}",
                      headers=as_user(stranger)).status_code == 403

    students = client.get(f"/users/{coach['id']}/students", headers=as_user(coach)).json()
    assert [(s["id"], s["role"]) for s in students] == [(student["id"], "Math Coach")]


def test_attachments(client, student, files):
    headers = as_user(student)
    task = client.post("/tasks", headers=headers, json={"title": "Essay", "due_date": DAY}).json()
    response = client.post(f"/tasks/{task['id']}/attachments", headers=headers,
                           files={"file": ("draft.txt", b"first draft", "text/plain")})
    assert response.status_code == 201
    assert response.json()["url"].endswith(f"/{task['id']}/draft.txt")


def test_projects(client, student):
    headers = as_user(student)
    project = client.post("/projects", headers=headers, json={"name": "Guitar", "module": "music"}).json()
    first = client.post("/tasks", headers=headers, json={"title": "Chords", "project_id": project["id"]}).json()
    client.post("/tasks", headers=headers, json={"title": "Scales", "project_id": project["id"]})
    client.post(f"/tasks/{first['id']}/complete", headers=headers)

    detail = client.get(f"/projects/{project['id']}", headers=headers).json()
    assert detail["progress_percent"] == 50
    assert [t["title"] for t in detail["tasks"]] == ["Chords", "Scales"]

    updated = client.patch(f"/projects/{project['id']}", headers=headers, json={"status": "completed"}).json()
    assert updated["status"] == "completed"
    assert client.patch(f"/projects/{project['id']}", headers=headers,
                        json={"status": "paused"}).status_code == 422

    assert client.delete(f"/projects/{project['id']}", headers=headers).json() == {"deleted_tasks": 2}
    assert client.get("/projects", headers=headers).json() == []


def test_store_failures_are_bad_gateway(client, student, store, monkeypatch):
    def refuse(*args, **kwargs):
        raise StoreError('new row violates row-level security policy for table "projects"')

    monkeypatch.setattr(store, "insert", refuse)
    response = client.post("/projects", headers=as_user(student), json={"name": "Blocked"})
    assert response.status_code == 502
    assert "row-level security" in response.json()["detail"]


def test_habits(client, student):
    headers = as_user(student)
    habit = client.post("/habits", headers=headers, json={"name": "Read"}).json()
    toggled = client.post(f"/habits/{habit['id']}/toggle", headers=headers, json={"day": DAY}).json()
    assert toggled["completed"] is True
    again = client.post(f"/habits/{habit['id']}/toggle", headers=headers,
                        json={"day": DAY, "completed": True}).json()
    assert again["completed"] is True

    week = client.get(f"/habits/week?week_start={DAY}", headers=headers).json()
    assert week[0]["days"][0] is True

    renamed = client.patch(f"/habits/{habit['id']}", headers=headers, json={"name": "Read daily"}).json()
    assert renamed["name"] == "Read daily"
    assert client.delete(f"/habits/{habit['id']}", headers=headers).status_code == 200
    assert client.get("/habits", headers=headers).json() == []


def test_coach_reorders_a_students_habits(client, student, coach, linked):
    first = client.post("/habits", headers=as_user(student), json={"name": "Read"}).json()
    second = client.post("/habits", headers=as_user(student), json={"name": "Run"}).json()

    response = client.post("/habits/reorder", headers=as_user(coach),
                           json={"source_id": second["id"], "target_id": first["id"], "edge": "before"})
    assert response.status_code == 200
    assert response.json() == {"changed": 2}
    habits = client.get(f"/habits?user_id={student['id']}", headers=as_user(coach)).json()
    assert [h["name"] for h in habits] == ["Run", "Read"]


def test_exams(client, student, coach, linked):
    sections = [{"key": "math", "name": "Mathematics", "question_count": 40}]
    assert client.post("/exam-templates", headers=as_user(student),
                       json={"name": "TYT", "sections": sections}).status_code == 403
    template = client.post("/exam-templates", headers=as_user(coach),
                           json={"name": "TYT", "sections": sections}).json()
    exam = client.post("/exams", headers=as_user(coach),
                       json={"name": "Mock", "template_id": template["id"], "date": DAY}).json()

    bad = client.post(f"/exams/{exam['id']}/results", headers=as_user(coach),
                      json={"user_id": student["id"], "answers": {"math": {"correct": 45}}})
    assert bad.status_code == 400

    result = client.post(f"/exams/{exam['id']}/results", headers=as_user(coach),
                         json={"user_id": student["id"], "answers": {"math": {"correct": 30, "incorrect": 4}}})
    assert result.json()["total_net"] == 29.0
    assert result.json()["details"]["math"]["empty"] == 6

    history = client.get(f"/students/{student['id']}/exam-results", headers=as_user(student)).json()
    assert [p["total_net"] for p in history["trend"]] == [29.0]


def test_program_templates(client, student, coach, linked):
    listed = client.get("/templates?module=exam", headers=as_user(coach)).json()
    assert "tyt-math-30" in [t["id"] for t in listed]

    applied = client.post("/templates/apply", headers=as_user(coach),
                          json={"template_id": "general-weekly-goals", "student_id": student["id"],
                                "start_date": "2024-01-01"})
    assert applied.status_code == 201
    project = applied.json()
    assert project["task_count"] == 7
    assert project["end_date"] == "2024-01-07"

    saved = client.post(f"/projects/{project['id']}/template", headers=as_user(coach), json={"name": "Copy"})
    assert saved.status_code == 201
    assert len(saved.json()["tasks"]) == 7


def test_stats_and_rollover(client, student, admin):
    headers = as_user(student)
    client.post("/tasks", headers=headers, json={"title": "Old", "due_date": DAY})
    stats = client.get(f"/students/{student['id']}/stats?start={DAY}&end={NEXT}", headers=headers).json()
    assert [s["total"] for s in stats] == [1, 0]

    assert client.post(f"/jobs/rollover?day={NEXT}", headers=headers).status_code == 403
    result = client.post(f"/jobs/rollover?day={NEXT}", headers=as_user(admin)).json()
    assert result["total"] == 1


class FakeEngine:
    def analyze_student_with_cost(self, context, coach_notes=None):
        return {"analysis": f"notes: {coach_notes}", "suggestions": [{"title": "Practice"}]}, 0.0012


def test_analysis_and_suggestions(client, student, coach, linked):
    app.dependency_overrides[get_ai_engine] = lambda: FakeEngine()
    response = client.post(f"/students/{student['id']}/analysis", headers=as_user(coach),
                           json={"coach_notes": "geometry"})
    assert response.json()["analysis"] == "notes: geometry"
    assert response.json()["cost"] == 0.0012
    assert client.post(f"/students/{student['id']}/analysis", headers=as_user(student),
                       json={}).status_code == 403

    created = client.post(f"/students/{student['id']}/suggestions", headers=as_user(coach),
                          json={"suggestions": [{"title": "Practice"}], "due_date": DAY})
    assert created.status_code == 201
    assert created.json()[0]["assigned_by"] == coach["id"]


def test_subject_catalogue_and_library(client, student, coach, admin, linked):
    assert client.post("/subjects", headers=as_user(student), json={"name": "Chemistry"}).status_code == 403

    subject = client.post("/subjects", headers=as_user(coach),
                          json={"name": "Mathematics", "topics": ["Algebra", "Geometry"]}).json()
    listed = client.get("/subjects", headers=as_user(student)).json()
    assert [t["name"] for t in listed[0]["topics"]] == ["Algebra", "Geometry"]

    topic = client.post(f"/subjects/{subject['id']}/topics", headers=as_user(coach), json={"name": "Calculus"}).json()
    assert topic["sort_order"] == 2

    other_coach = client.post("/users", json={"email": "c2@example.com", "name": "C2", "roles": ["coach"]}).json()
    assert client.patch(f"/subjects/{subject['id']}", headers=as_user(other_coach),
                        json={"name": "Maths"}).status_code == 403
    assert client.patch(f"/subjects/{subject['id']}", headers=as_user(admin),
                        json={"color": "#000000"}).json()["color"] == "#000000"

    # Resources belong to admins
    resource = {"subject_id": subject["id"], "name": "Formula sheet", "type": "document"}
    assert client.post("/resources", headers=as_user(coach), json=resource).status_code == 403
    assert client.post("/resources", headers=as_user(admin), json=resource).status_code == 201
    assert [r["name"] for r in client.get(f"/resources?subject_id={subject['id']}",
                                          headers=as_user(student)).json()] == ["Formula sheet"]

    client.post(f"/subjects/{subject['id']}/library", headers=as_user(coach),
                json={"title": "Warm-up", "day_offset": 0})
    client.post(f"/subjects/{subject['id']}/library", headers=as_user(coach),
                json={"title": "Mock test", "day_offset": 1, "task_type": "exam"})
    response = client.post(f"/subjects/{subject['id']}/library/assign", headers=as_user(coach),
                           json={"student_id": student["id"], "start_date": DAY})
    assert response.status_code == 201
    assert sorted((t["title"], t["due_date"]) for t in response.json()) == [("Mock test", NEXT), ("Warm-up", DAY)]

    stranger = client.post(f"/subjects/{subject['id']}/library/assign", headers=as_user(other_coach),
                           json={"student_id": student["id"], "start_date": DAY})
    assert stranger.status_code == 403

    assert client.delete(f"/subjects/{subject['id']}", headers=as_user(coach)).json()["removed"] == {
        "library_items": 2, "resources": 1, "topics": 3,
    }


def test_seed_specialty(client, coach):
    assert "math" in {t["slug"] for t in client.get("/specialties", headers=as_user(coach)).json()}
    seeded = client.post("/specialties/lgs/seed", headers=as_user(coach)).json()
    assert [s["name"] for s in seeded] == ["LGS Preparation"]
    assert client.post("/specialties/unknown/seed", headers=as_user(coach)).status_code == 404
