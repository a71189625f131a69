import asyncio
from datetime import timedelta

from conftest import (
    ADMIN_TOKEN,
    OTHER_STUDENT_TOKEN,
    SLOT_START,
    add_completed_payment,
    auth,
    make_exam,
    seed_questions,
)


def _seed(repos, **exam_fields):
    asyncio.run(repos.exams.insert(make_exam(**exam_fields)))
    seed_questions(repos)


def test_health_and_root(client):
    assert client.get("/api/health").json()["status"] == "healthy"
    assert client.get("/").json()["app"] == "ExamGate"


def test_requires_session(client):
    assert client.get("/api/exams/available").status_code == 401
    assert client.get("/api/exams/available", headers=auth("bogus")).status_code == 401


def test_session_cookie_is_accepted(client, repos):
    _seed(repos)
    client.cookies.set("session_token", "student-token")

    response = client.get("/api/exams/available")

    assert response.status_code == 200


def test_roles_are_enforced(client):
    assert client.get("/api/exams/available", headers=auth(ADMIN_TOKEN)).status_code == 403
    assert client.post(
        "/api/admin/exams/publish", json={"exam_id": "exam-1", "exam_date": "2024-05-01"},
        headers=auth()
    ).status_code == 403


def test_full_exam_lifecycle(client, repos, clock):
    _seed(repos)

    available = client.get("/api/exams/available", headers=auth()).json()
    assert [e["exam_id"] for e in available["exams"]] == ["exam-1"]

    response = client.post("/api/exams/exam-1/register", json={"slot_id": "slot-1"}, headers=auth())
    assert response.status_code == 201
    assert response.json()["registration"]["payment_status"] == "paid"

    duplicate = client.post("/api/exams/exam-1/register", json={"slot_id": "slot-1"}, headers=auth())
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error_type"] == "ALREADY_REGISTERED"

    early = client.get("/api/exams/exam-1/start", headers=auth())
    assert early.status_code == 403
    assert early.json()["detail"]["start_time"] == "2024-05-01T10:00:00+00:00"

    clock.set(SLOT_START + timedelta(minutes=1))
    started = client.get("/api/exams/exam-1/start", headers=auth())
    assert started.status_code == 200
    body = started.json()
    assert body["exam_attempt"]["attempt_number"] == 1
    assert "correct_answer" not in body["questions"][0]

    saved = client.post("/api/exams/exam-1/answer", json={"question_id": "q1", "answer": "A"}, headers=auth())
    assert saved.status_code == 200

    answers = {f"q{i}": "A" for i in range(2, 7)}
    submitted = client.post(
        "/api/exams/exam-1/submit",
        json={"answers": answers, "marked_questions": ["q2"]},
        headers=auth()
    )
    assert submitted.status_code == 200
    result = submitted.json()["result"]
    assert result["score"] == 6
    assert result["percentage"] == 60
    assert result["is_passed"] is True
    assert result["is_qualified"] is True

    assert client.get("/api/exams/exam-1/results", headers=auth()).json()["results"] == []
    assert client.get("/api/exams/exam-1/review", headers=auth()).status_code == 403

    published = client.post(
        "/api/admin/exams/publish",
        json={"exam_id": "exam-1", "exam_date": "2024-05-01"},
        headers=auth(ADMIN_TOKEN)
    )
    assert published.json()["published_count"] == 1
    again = client.post(
        "/api/admin/exams/publish",
        json={"exam_id": "exam-1", "exam_date": "2024-05-01"},
        headers=auth(ADMIN_TOKEN)
    )
    assert again.json()["published_count"] == 0

    results = client.get("/api/exams/exam-1/results", headers=auth()).json()["results"]
    assert results[0]["percentage"] == 60
    assert client.get("/api/exams/exam-1/review", headers=auth()).status_code == 200
    assert client.get("/api/exams/my-results", headers=auth()).json()["total_published"] == 1

    overview = client.get("/api/admin/exams/results", headers=auth(ADMIN_TOKEN)).json()
    assert overview["total_students"] == 1
    attempt_id = overview["results"][0]["results"][0]["attempt_id"]
    details = client.get(f"/api/admin/exams/results/{attempt_id}", headers=auth(ADMIN_TOKEN))
    assert details.json()["result"]["student_id"] == "student-1"


def test_retake_flow(client, repos, clock):
    _seed(repos)
    client.post("/api/exams/exam-1/register", json={"slot_id": "slot-1"}, headers=auth())
    clock.set(SLOT_START + timedelta(minutes=1))
    client.get("/api/exams/exam-1/start", headers=auth())
    client.post("/api/exams/exam-1/submit", json={"answers": {}}, headers=auth())

    blocked = client.get("/api/exams/exam-1/start", headers=auth())
    assert blocked.status_code == 403
    assert blocked.json()["detail"]["error_type"] == "MAX_ATTEMPTS_REACHED"

    approved = client.post(
        "/api/admin/exams/approve-retake",
        json={"exam_id": "exam-1", "student_id": "student-1"},
        headers=auth(ADMIN_TOKEN)
    )
    assert approved.status_code == 200

    retake = client.get("/api/exams/exam-1/start", headers=auth())
    assert retake.status_code == 200
    assert retake.json()["exam_attempt"]["attempt_number"] == 2


def test_payment_required_response(client, repos):
    _seed(repos, requires_payment=True, price=300)

    response = client.post("/api/exams/exam-1/register", json={"slot_id": "slot-1"}, headers=auth())

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["error_type"] == "PAYMENT_REQUIRED"
    assert detail["price"] == 300
    assert detail["payment_type"] == "exam"


def test_credit_purchase_and_listing(client, repos):
    _seed(repos, requires_payment=True, price=300)
    add_completed_payment(repos, payment_id="pay-credit", exam_id="exam-1", amount=300)

    created = client.post(
        "/api/exams/payment-attempt",
        json={"exam_id": "exam-1", "payment_id": "pay-credit"},
        headers=auth()
    )
    assert created.status_code == 200
    assert created.json()["data"]["attempt_number"] == 1
    assert created.json()["data"]["payment_amount"] == 300

    duplicate = client.post(
        "/api/exams/payment-attempt",
        json={"exam_id": "exam-1", "payment_id": "pay-credit"},
        headers=auth()
    )
    assert duplicate.status_code == 409

    unknown = client.post(
        "/api/exams/payment-attempt",
        json={"exam_id": "exam-1", "payment_id": "nope"},
        headers=auth()
    )
    assert unknown.status_code == 404

    listed = client.get("/api/exams/exam-1/payment-attempts", headers=auth()).json()["data"]
    assert [c["payment_id"] for c in listed] == ["pay-credit"]


def test_admin_housekeeping(client, repos, clock):
    _seed(repos)
    client.post("/api/exams/exam-1/register", json={"slot_id": "slot-1"}, headers=auth())
    client.post("/api/exams/exam-1/register", json={"slot_id": "slot-1"}, headers=auth(OTHER_STUDENT_TOKEN))

    registrations = client.get("/api/admin/exams/exam-1/registrations", headers=auth(ADMIN_TOKEN)).json()
    assert len(registrations["registrations"]) == 2

    clock.set(SLOT_START + timedelta(minutes=1))
    client.get("/api/exams/exam-1/start", headers=auth())
    abandoned = client.post(
        "/api/admin/exams/abandon-attempt",
        json={"exam_id": "exam-1", "student_id": "student-1"},
        headers=auth(ADMIN_TOKEN)
    )
    assert abandoned.json()["exam_attempt"]["status"] == "abandoned"

    clock.set(SLOT_START + timedelta(hours=3))
    swept = client.post("/api/admin/exams/mark-completed-inactive", headers=auth(ADMIN_TOKEN)).json()
    assert swept["deactivated_count"] == 1

    clock.set(SLOT_START)
    reactivated = client.post("/api/admin/exams/reactivate", headers=auth(ADMIN_TOKEN)).json()
    assert reactivated["reactivated_count"] == 1

    deleted = client.delete("/api/admin/exams/exam-1", headers=auth(ADMIN_TOKEN)).json()
    assert deleted["deleted_registrations"] == 2
    assert deleted["deleted_attempts"] == 1
    assert client.delete("/api/admin/exams/exam-1", headers=auth(ADMIN_TOKEN)).status_code == 404


def test_publish_all_endpoint(client, repos):
    _seed(repos, is_flagship_exam=True)

    response = client.post(
        "/api/admin/exams/publish-all",
        json={"exam_date": "2024-05-01", "exam_type": "flagship"},
        headers=auth(ADMIN_TOKEN)
    )

    assert response.status_code == 200
    assert response.json()["published_count"] == 0
    assert response.json()["exam_count"] == 1

    invalid = client.post(
        "/api/admin/exams/publish-all",
        json={"exam_date": "2024-05-01", "exam_type": "weekly"},
        headers=auth(ADMIN_TOKEN)
    )
    assert invalid.status_code == 422
