"""
Tests de los endpoints HTTP (FastAPI TestClient).
"""
from datetime import timedelta

import pytest

from gymbooking.core.timezone_utils import utc_now
from gymbooking.models.member import MembershipType

API = "/api/v1"


@pytest.fixture
def upcoming_course(make_course):
    def _make(**kwargs):
        kwargs.setdefault("start_at", utc_now() + timedelta(days=1))
        return make_course(**kwargs)
    return _make


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == f"{API}/docs"


class TestCourseEndpoints:

    def test_register_waitlist_and_cancel(self, client, sink, make_member, upcoming_course):
        course = upcoming_course(capacity=1)
        a, b = make_member(), make_member()

        response = client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": a.id})
        assert response.status_code == 201
        assert response.json()["outcome"] == "REGISTERED"

        response = client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": b.id})
        assert response.status_code == 201
        assert response.json()["outcome"] == "WAITLISTED"
        assert response.json()["waitlist_position"] == 1

        response = client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": a.id})
        assert response.status_code == 200
        assert response.json()["outcome"] == "ALREADY_REGISTERED"

        stats = client.get(f"{API}/courses/{course.id}/stats").json()
        assert stats["registered_count"] == 1
        assert stats["waitlist_count"] == 1
        assert stats["capacity"] == 1

        response = client.delete(f"{API}/courses/{course.id}/registrations/{a.id}")
        assert response.status_code == 200
        assert response.json()["outcome"] == "CANCELLED"
        assert response.json()["promoted_member_id"] == b.id
        assert sink.notifications[0]["member_id"] == b.id

        participants = client.get(f"{API}/courses/{course.id}/participants").json()
        assert [p["member_id"] for p in participants["registered"]] == [b.id]
        assert participants["waitlisted"] == []

        response = client.delete(f"{API}/courses/{course.id}/registrations/{a.id}")
        assert response.json()["outcome"] == "NOT_REGISTERED"

    def test_unknown_course_is_404(self, client, make_member):
        member = make_member()
        response = client.post(f"{API}/courses/9999/registrations", json={"member_id": member.id})
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "COURSE_NOT_FOUND"

        assert client.get(f"{API}/courses/9999/stats").status_code == 404

    def test_deadline_passed_is_400(self, client, make_member, upcoming_course):
        course = upcoming_course(start_at=utc_now() + timedelta(minutes=10), registration_deadline_minutes=60)
        member = make_member()

        response = client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": member.id})
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "DEADLINE_PASSED"
        assert detail["window"] == "registration"
        assert detail["minutes_late"] >= 49

    def test_quota_exceeded_is_400(self, client, make_member, upcoming_course):
        member = make_member(MembershipType.BASIC_MEMBER)
        courses = [upcoming_course() for _ in range(3)]
        for course in courses[:2]:
            assert client.post(
                f"{API}/courses/{course.id}/registrations", json={"member_id": member.id}
            ).status_code == 201

        response = client.post(f"{API}/courses/{courses[2].id}/registrations", json={"member_id": member.id})
        assert response.status_code == 400
        assert response.json()["detail"] == {
            "code": "QUOTA_EXCEEDED",
            "message": "Du hast dein Wochenlimit von 2 Kursen bereits erreicht",
            "limit": 2,
        }

    def test_cancelled_course_is_400(self, client, make_member, upcoming_course):
        course = upcoming_course(is_cancelled=True)
        member = make_member()
        response = client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": member.id})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "COURSE_CANCELLED"

    def test_eligibility(self, client, make_member, upcoming_course):
        course = upcoming_course(capacity=1)
        a, b = make_member(), make_member()
        client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": a.id})

        mine = client.get(f"{API}/courses/{course.id}/eligibility", params={"member_id": a.id}).json()
        assert mine["can_register"] is False
        assert mine["reason"] == "ALREADY_REGISTERED"

        other = client.get(f"{API}/courses/{course.id}/eligibility", params={"member_id": b.id}).json()
        assert other["can_register"] is True
        assert other["waitlist_expected"] is True

    def test_invalid_body_is_422(self, client, upcoming_course):
        course = upcoming_course()
        response = client.post(f"{API}/courses/{course.id}/registrations", json={})
        assert response.status_code == 422


class TestMemberEndpoints:

    def test_registrations_and_quota(self, client, make_member, upcoming_course):
        member = make_member(MembershipType.BASIC_MEMBER)
        course = upcoming_course(title="Pilates")
        client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": member.id})

        registrations = client.get(f"{API}/members/{member.id}/registrations").json()
        assert [r["course_title"] for r in registrations] == ["Pilates"]

        quota = client.get(f"{API}/members/{member.id}/quota").json()
        assert quota["membership_type"] == "Basic Member"
        assert quota["policy"] == "weekly_limit"
        assert quota["registrations_this_week"] == 1
        assert quota["remaining_this_week"] == 1

    def test_credit_adjustment_and_history(self, client, make_member):
        member = make_member(MembershipType.TEN_CARD)

        response = client.post(f"{API}/members/{member.id}/credits", json={"amount": 10})
        assert response.status_code == 200
        assert response.json()["credits"]["credits_remaining"] == 10

        response = client.post(f"{API}/members/{member.id}/credits", json={"amount": -11})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "CREDIT_ADJUSTMENT_REJECTED"

        response = client.post(f"{API}/members/{member.id}/credits", json={"amount": 0})
        assert response.status_code == 422

        history = client.get(f"{API}/members/{member.id}/credits/transactions").json()
        assert [(t["amount"], t["transaction_type"]) for t in history] == [(10, "admin_recharge")]

    def test_unknown_member_is_404(self, client):
        response = client.get(f"{API}/members/4242/quota")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "MEMBER_NOT_FOUND"


class TestWorkerEndpoints:

    def test_process_waitlists_and_dispatch(self, client, db, sink, make_member, upcoming_course):
        course = upcoming_course(capacity=1)
        a, b = make_member(), make_member()
        client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": a.id})
        client.post(f"{API}/courses/{course.id}/registrations", json={"member_id": b.id})

        course.capacity = 2
        db.commit()

        sink.fail = True
        response = client.post(f"{API}/worker/process-waitlists")
        assert response.json() == {"courses_processed": 1, "members_promoted": 1, "courses_failed": 0}

        sink.fail = False
        response = client.post(f"{API}/worker/dispatch-promotion-events", params={"limit": 10})
        assert response.json() == {"processed": 1, "succeeded": 1}
        assert sink.notifications[0]["member_id"] == b.id
