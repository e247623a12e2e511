"""HTTP tests for /api/v1/lessons, including the problem+json error shapes."""

from datetime import timedelta

import pytest

from app.core.actor import Actor
from app.core.enums import RoleName

from ..factories import auth_headers, make_enrollment, make_user, three_options, upcoming_monday

BASE = "/api/v1/lessons"


@pytest.fixture
def first_option():
    return upcoming_monday(10)


def _request_body(enrollment, first):
    options = three_options(first)
    return {
        "enrollment_id": enrollment.id,
        "date_from": first.date().isoformat(),
        "date_to": options[-1].date().isoformat(),
        "options": [o.isoformat() for o in options],
        "duration_minutes": 60,
    }


def _request(client, enrollment, first, headers):
    response = client.post(BASE, json=_request_body(enrollment, first), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def _decide(client, lesson_id, first, headers):
    return client.post(
        f"{BASE}/{lesson_id}/decide", json={"chosen_start": first.isoformat()}, headers=headers
    )


def _course_remaining(client, course, headers):
    return client.get(f"/api/v1/credits/courses/{course.id}/ledger", headers=headers).json()[
        "credits_remaining"
    ]


class TestLessonFlow:
    def test_request_decide_cancel(
        self,
        client,
        course,
        funded_enrollment,
        first_option,
        student_headers,
        tutor_headers,
    ):
        lesson = _request(client, funded_enrollment, first_option, student_headers)
        assert lesson["status"] == "PENDING"
        assert len(lesson["options"]) == 3
        assert lesson["scheduled_start"] is None

        decided = _decide(client, lesson["id"], first_option, tutor_headers)
        assert decided.status_code == 200
        body = decided.json()
        assert body["status"] == "SCHEDULED"
        assert body["credits_reserved"] == 1
        assert body["meeting_join_url"]
        assert _course_remaining(client, course, student_headers) == 4

        cancelled = client.post(
            f"{BASE}/{lesson['id']}/cancel", json={"reason": "Exam week"}, headers=student_headers
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "CANCELLED"
        assert cancelled.json()["cancel_reason"] == "Exam week"
        assert _course_remaining(client, course, student_headers) == 5

        history = client.get(f"{BASE}/{lesson['id']}/history", headers=student_headers)
        assert [entry["action"] for entry in history.json()] == [
            "Requested",
            "Scheduled",
            "CancelledByStudent",
        ]

    def test_reads_and_listing(self, client, enrollment, first_option, student_headers, tutor_headers):
        lesson = _request(client, enrollment, first_option, student_headers)

        fetched = client.get(f"{BASE}/{lesson['id']}", headers=tutor_headers)
        assert fetched.status_code == 200
        assert fetched.json()["id"] == lesson["id"]

        pending = client.get(BASE, params={"status": "PENDING"}, headers=student_headers)
        assert [item["id"] for item in pending.json()] == [lesson["id"]]

        scheduled = client.get(BASE, params={"status": "SCHEDULED"}, headers=student_headers)
        assert scheduled.json() == []

    def test_reject_and_withdraw(self, client, enrollment, first_option, student_headers, tutor_headers):
        rejected = _request(client, enrollment, first_option, student_headers)
        response = client.post(
            f"{BASE}/{rejected['id']}/reject", json={"note": "Fully booked"}, headers=tutor_headers
        )
        assert response.json()["status"] == "REJECTED"

        later = first_option + timedelta(days=7)
        withdrawn = _request(client, enrollment, later, student_headers)
        response = client.post(f"{BASE}/{withdrawn['id']}/withdraw", json={}, headers=student_headers)
        assert response.json()["status"] == "CANCELLED"

    def test_reschedule_request_and_approval(
        self, client, funded_enrollment, first_option, student_headers, tutor_headers
    ):
        lesson = _request(client, funded_enrollment, first_option, student_headers)
        _decide(client, lesson["id"], first_option, tutor_headers)
        new_first = first_option + timedelta(days=7)

        requested = client.post(
            f"{BASE}/{lesson['id']}/reschedule",
            json={"options": [o.isoformat() for o in three_options(new_first)], "reason": "Trip"},
            headers=student_headers,
        )
        assert requested.status_code == 200
        assert requested.json()["reschedule_requested"] is True
        assert requested.json()["reschedule_is_late"] is False

        approved = client.post(
            f"{BASE}/{lesson['id']}/reschedule/approve",
            json={"chosen_start": new_first.isoformat()},
            headers=tutor_headers,
        )
        assert approved.status_code == 200
        body = approved.json()
        assert body["status"] == "RESCHEDULED"
        assert body["reschedule_count"] == 1
        assert body["reschedule_requested"] is False

    def test_tutor_cancellation_needs_an_admin(
        self, client, funded_enrollment, first_option, student_headers, tutor_headers, admin_headers
    ):
        lesson = _request(client, funded_enrollment, first_option, student_headers)
        _decide(client, lesson["id"], first_option, tutor_headers)

        direct = client.post(f"{BASE}/{lesson['id']}/cancel", json={}, headers=tutor_headers)
        assert direct.status_code == 403
        assert direct.json()["code"] == "ADMIN_APPROVAL_REQUIRED"

        requested = client.post(
            f"{BASE}/{lesson['id']}/cancellation-request",
            json={"reason": "Conference"},
            headers=tutor_headers,
        )
        assert requested.json()["cancellation_requested"] is True

        kept = client.post(
            f"{BASE}/{lesson['id']}/cancellation-request/reject", json={}, headers=admin_headers
        )
        assert kept.json()["cancellation_requested"] is False
        assert kept.json()["status"] == "SCHEDULED"


class TestErrorShapes:
    def test_insufficient_credits_is_422(
        self, client, enrollment, first_option, student_headers, tutor_headers
    ):
        lesson = _request(client, enrollment, first_option, student_headers)

        response = _decide(client, lesson["id"], first_option, tutor_headers)

        assert response.status_code == 422
        assert response.headers["content-type"].startswith("application/problem+json")
        problem = response.json()
        assert problem["code"] == "INSUFFICIENT_CREDITS"
        assert problem["errors"] == {"required": 1, "available": 0, "scope": "course"}
        assert problem["instance"] == f"{BASE}/{lesson['id']}/decide"
        assert problem["title"] == "Unprocessable Entity"

    def test_double_booking_is_409(
        self,
        client,
        db,
        course,
        credit_service,
        funded_enrollment,
        first_option,
        student_headers,
        tutor_headers,
    ):
        rival = make_user(db)
        rival_enrollment = make_enrollment(db, rival, course)
        credit_service.purchase_credits(rival.id, 2)
        credit_service.allocate_on_enrollment(rival.id, course.id, 2)
        rival_headers = auth_headers(Actor(rival.id, RoleName.STUDENT))

        first = _request(client, funded_enrollment, first_option, student_headers)
        second = _request(client, rival_enrollment, first_option, rival_headers)
        assert _decide(client, first["id"], first_option, tutor_headers).status_code == 200

        response = _decide(client, second["id"], first_option, tutor_headers)

        assert response.status_code == 409
        problem = response.json()
        assert problem["code"] == "SLOT_CONFLICT"
        assert problem["errors"]["conflicting_lesson_ids"] == [first["id"]]

    def test_invalid_transition_is_409(
        self, client, funded_enrollment, first_option, student_headers, tutor_headers
    ):
        lesson = _request(client, funded_enrollment, first_option, student_headers)
        _decide(client, lesson["id"], first_option, tutor_headers)

        response = _decide(client, lesson["id"], first_option, tutor_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"
        assert response.json()["errors"] == {"status": "SCHEDULED", "event": "decide"}

    def test_two_options_is_a_bad_request(self, client, enrollment, first_option, student_headers):
        body = _request_body(enrollment, first_option)
        body["options"] = body["options"][:2]

        response = client.post(BASE, json=body, headers=student_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_unknown_fields_are_rejected(self, client, enrollment, first_option, student_headers):
        body = {**_request_body(enrollment, first_option), "price": 10}

        response = client.post(BASE, json=body, headers=student_headers)

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_unknown_lesson_is_404(self, client, student_headers):
        response = client.get(f"{BASE}/does-not-exist", headers=student_headers)

        assert response.status_code == 404
        assert response.json()["status"] == 404

    def test_outsider_is_forbidden(self, client, db, enrollment, first_option, student_headers):
        lesson = _request(client, enrollment, first_option, student_headers)
        outsider = auth_headers(Actor(make_user(db).id, RoleName.STUDENT))

        response = client.get(f"{BASE}/{lesson['id']}", headers=outsider)

        assert response.status_code == 403


class TestIdentity:
    def test_missing_headers_are_401(self, client):
        response = client.get(BASE)

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing identity headers"

    def test_unknown_role_is_401(self, client, student):
        response = client.get(BASE, headers={"X-User-Id": student.id, "X-User-Role": "parent"})

        assert response.status_code == 401
