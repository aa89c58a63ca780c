"""
Tests del flujo de inscripción / cancelación / promoción del RegistrationService.
"""
from datetime import timedelta

import pytest

from gymbooking.models.registration import CourseRegistration, RegistrationStatus, QuotaKind
from gymbooking.models.promotion import WaitlistPromotionEvent
from gymbooking.schemas.registration import CancellationOutcome, RegistrationOutcome, EligibilityReason
from gymbooking.services.exceptions import (
    CourseCancelledError,
    CourseNotFoundError,
    DeadlinePassedError,
    MemberNotFoundError
)

from conftest import NOW


class TestRegistrationFlow:

    def test_waitlist_scenario_promotes_on_cancellation(self, db, service, sink, make_member, make_course):
        course = make_course(capacity=3)
        a, b, c, d = (make_member(first_name=n) for n in ("A", "B", "C", "D"))

        for i, member in enumerate((a, b, c)):
            result = service.register(db, member.id, course.id, NOW + timedelta(seconds=i))
            assert result.outcome == RegistrationOutcome.REGISTERED

        result = service.register(db, d.id, course.id, NOW + timedelta(seconds=3))
        assert result.outcome == RegistrationOutcome.WAITLISTED
        assert result.waitlist_position == 1

        stats = service.get_course_stats(db, course.id)
        assert (stats.registered_count, stats.waitlist_count, stats.capacity) == (3, 1, 3)

        cancel = service.cancel(db, a.id, course.id, NOW + timedelta(minutes=5))
        assert cancel.outcome == CancellationOutcome.CANCELLED
        assert cancel.promoted_member_id == d.id

        stats = service.get_course_stats(db, course.id)
        assert (stats.registered_count, stats.waitlist_count) == (3, 0)

        participants = service.list_participants(db, course.id)
        assert [p.member_id for p in participants.registered] == [b.id, c.id, d.id]
        assert participants.waitlisted == []

        assert len(sink.notifications) == 1
        assert sink.notifications[0]["member_id"] == d.id
        assert sink.notifications[0]["event_type"] == "waitlist_promoted"
        assert sink.notifications[0]["promotion_type"] == "cancellation"

    def test_promotion_is_fifo(self, db, service, make_member, make_course):
        course = make_course(capacity=1)
        a, b, c, d = (make_member() for _ in range(4))
        service.register(db, a.id, course.id, NOW)
        # Se inscriben en orden inverso al id para comprobar que manda enqueued_at
        service.register(db, d.id, course.id, NOW + timedelta(seconds=1))
        service.register(db, b.id, course.id, NOW + timedelta(seconds=2))
        service.register(db, c.id, course.id, NOW + timedelta(seconds=3))

        waitlist = service.list_participants(db, course.id).waitlisted
        assert [(p.member_id, p.position) for p in waitlist] == [(d.id, 1), (b.id, 2), (c.id, 3)]

        assert service.cancel(db, a.id, course.id, NOW + timedelta(minutes=1)).promoted_member_id == d.id
        assert service.cancel(db, d.id, course.id, NOW + timedelta(minutes=2)).promoted_member_id == b.id

        waitlist = service.list_participants(db, course.id).waitlisted
        assert [(p.member_id, p.position) for p in waitlist] == [(c.id, 1)]

    def test_cancelling_waitlisted_does_not_promote(self, db, service, sink, make_member, make_course):
        course = make_course(capacity=1)
        a, b, c = (make_member() for _ in range(3))
        service.register(db, a.id, course.id, NOW)
        service.register(db, b.id, course.id, NOW + timedelta(seconds=1))
        service.register(db, c.id, course.id, NOW + timedelta(seconds=2))

        result = service.cancel(db, b.id, course.id, NOW + timedelta(minutes=1))
        assert result.outcome == CancellationOutcome.CANCELLED
        assert result.promoted_member_id is None
        assert sink.notifications == []

        stats = service.get_course_stats(db, course.id)
        assert (stats.registered_count, stats.waitlist_count) == (1, 1)

    def test_register_is_idempotent(self, db, service, make_member, make_course):
        course = make_course(capacity=1)
        member = make_member()
        first = service.register(db, member.id, course.id, NOW)
        second = service.register(db, member.id, course.id, NOW + timedelta(seconds=5))

        assert first.outcome == RegistrationOutcome.REGISTERED
        assert second.outcome == RegistrationOutcome.ALREADY_REGISTERED
        assert second.registration_id == first.registration_id
        assert db.query(CourseRegistration).count() == 1
        assert service.get_course_stats(db, course.id).registered_count == 1

    def test_already_waitlisted_is_already_registered(self, db, service, make_member, make_course):
        course = make_course(capacity=1)
        a, b = make_member(), make_member()
        service.register(db, a.id, course.id, NOW)
        service.register(db, b.id, course.id, NOW)
        again = service.register(db, b.id, course.id, NOW + timedelta(seconds=1))
        assert again.outcome == RegistrationOutcome.ALREADY_REGISTERED
        assert again.status == RegistrationStatus.WAITLISTED

    def test_waitlist_position_is_returned_with_the_registration(self, db, service, make_member, make_course):
        course = make_course(capacity=1)
        a, b, c = make_member(), make_member(), make_member()

        assert service.register(db, a.id, course.id, NOW).waitlist_position is None
        second = service.register(db, b.id, course.id, NOW + timedelta(seconds=1))
        third = service.register(db, c.id, course.id, NOW + timedelta(seconds=2))

        assert (second.waitlist_position, third.waitlist_position) == (1, 2)
        assert not db.in_transaction()

        again = service.register(db, c.id, course.id, NOW + timedelta(seconds=3))
        assert again.outcome == RegistrationOutcome.ALREADY_REGISTERED
        assert again.waitlist_position == 2
        assert not db.in_transaction()

    def test_cancel_is_idempotent(self, db, service, make_member, make_course):
        course = make_course()
        member = make_member()
        service.register(db, member.id, course.id, NOW)

        assert service.cancel(db, member.id, course.id, NOW).outcome == CancellationOutcome.CANCELLED
        assert service.cancel(db, member.id, course.id, NOW).outcome == CancellationOutcome.NOT_REGISTERED

    def test_cancel_without_registration(self, db, service, make_member, make_course):
        course = make_course()
        member = make_member()
        assert service.cancel(db, member.id, course.id, NOW).outcome == CancellationOutcome.NOT_REGISTERED

    def test_reregistration_reactivates_same_row_at_end_of_queue(self, db, service, make_member, make_course):
        course = make_course(capacity=1)
        a, b = make_member(), make_member()
        first = service.register(db, a.id, course.id, NOW)
        service.cancel(db, a.id, course.id, NOW + timedelta(minutes=1))
        service.register(db, b.id, course.id, NOW + timedelta(minutes=2))

        again = service.register(db, a.id, course.id, NOW + timedelta(minutes=3))
        assert again.registration_id == first.registration_id
        assert again.outcome == RegistrationOutcome.WAITLISTED

        row = db.get(CourseRegistration, first.registration_id)
        db.refresh(row)
        assert row.status == RegistrationStatus.WAITLISTED
        assert row.enqueued_at.replace(tzinfo=None) == (NOW + timedelta(minutes=3)).replace(tzinfo=None)
        assert db.query(CourseRegistration).count() == 2


class TestDeadlines:

    def test_registration_deadline_boundary(self, db, service, make_member, make_course):
        start = NOW.replace(hour=18, minute=0) + timedelta(days=1)
        course = make_course(start_at=start, registration_deadline_minutes=30)
        a, b = make_member(), make_member()

        ok = service.register(db, a.id, course.id, start - timedelta(minutes=30))
        assert ok.outcome == RegistrationOutcome.REGISTERED

        with pytest.raises(DeadlinePassedError) as exc:
            service.register(db, b.id, course.id, start - timedelta(minutes=30) + timedelta(seconds=1))
        assert exc.value.minutes_late == 1
        assert service.get_course_stats(db, course.id).registered_count == 1

    def test_cancellation_deadline(self, db, service, make_member, make_course):
        start = NOW + timedelta(hours=3)
        course = make_course(start_at=start, cancellation_deadline_minutes=120)
        member = make_member()
        service.register(db, member.id, course.id, NOW)

        with pytest.raises(DeadlinePassedError) as exc:
            service.cancel(db, member.id, course.id, start - timedelta(minutes=90))
        assert exc.value.window == "cancellation"
        assert exc.value.minutes_late == 30

        registration = db.query(CourseRegistration).one()
        assert registration.status == RegistrationStatus.REGISTERED


class TestErrors:

    def test_unknown_course_and_member(self, db, service, make_member, make_course):
        course = make_course()
        member = make_member()
        with pytest.raises(CourseNotFoundError):
            service.register(db, member.id, 9999, NOW)
        with pytest.raises(MemberNotFoundError):
            service.register(db, 9999, course.id, NOW)
        with pytest.raises(CourseNotFoundError):
            service.get_course_stats(db, 9999)

    def test_cancelled_course_rejects_registration(self, db, service, make_member, make_course):
        course = make_course(is_cancelled=True)
        member = make_member()
        with pytest.raises(CourseCancelledError):
            service.register(db, member.id, course.id, NOW)
        assert db.query(CourseRegistration).count() == 0

    def test_cancelled_course_allows_cancel_without_promotion(self, db, service, sink, make_member, make_course):
        course = make_course(capacity=1)
        a, b = make_member(), make_member()
        service.register(db, a.id, course.id, NOW)
        service.register(db, b.id, course.id, NOW + timedelta(seconds=1))

        course.is_cancelled = True
        db.commit()

        result = service.cancel(db, a.id, course.id, NOW + timedelta(minutes=1))
        assert result.outcome == CancellationOutcome.CANCELLED
        assert result.promoted_member_id is None
        assert db.query(WaitlistPromotionEvent).count() == 0
        assert sink.notifications == []
        assert service.get_course_stats(db, course.id).waitlist_count == 1


class TestEligibility:

    def test_eligible_and_waitlist_expected(self, db, service, make_member, make_course):
        course = make_course(capacity=1)
        a, b = make_member(), make_member()
        eligibility = service.check_eligibility(db, a.id, course.id, NOW)
        assert eligibility.can_register
        assert not eligibility.waitlist_expected

        service.register(db, a.id, course.id, NOW)
        eligibility = service.check_eligibility(db, b.id, course.id, NOW)
        assert eligibility.can_register
        assert eligibility.waitlist_expected

    def test_reasons(self, db, service, make_member, make_course):
        start = NOW + timedelta(hours=1)
        late_course = make_course(start_at=start, registration_deadline_minutes=90)
        cancelled_course = make_course(is_cancelled=True)
        course = make_course()
        member = make_member()
        service.register(db, member.id, course.id, NOW)

        late = service.check_eligibility(db, member.id, late_course.id, NOW)
        assert late.reason == EligibilityReason.DEADLINE_PASSED
        assert late.minutes_late == 30

        assert service.check_eligibility(
            db, member.id, cancelled_course.id, NOW
        ).reason == EligibilityReason.COURSE_CANCELLED
        assert service.check_eligibility(
            db, member.id, course.id, NOW
        ).reason == EligibilityReason.ALREADY_REGISTERED
        assert service.can_register(db, member.id, course.id, NOW) is False

    def test_eligibility_has_no_side_effects(self, db, service, make_member, make_course):
        course = make_course()
        member = make_member()
        service.check_eligibility(db, member.id, course.id, NOW)
        assert db.query(CourseRegistration).count() == 0


class TestMemberRegistrations:

    def test_lists_newest_course_first(self, db, service, make_member, make_course):
        member = make_member()
        early = make_course(start_at=NOW + timedelta(days=1), title="Yoga")
        late = make_course(start_at=NOW + timedelta(days=3), title="HIIT")
        service.register(db, member.id, early.id, NOW)
        service.register(db, member.id, late.id, NOW)
        service.cancel(db, member.id, early.id, NOW)

        active = service.list_member_registrations(db, member.id)
        assert [r.course_title for r in active] == ["HIIT"]

        everything = service.list_member_registrations(db, member.id, include_cancelled=True)
        assert [(r.course_title, r.status) for r in everything] == [
            ("HIIT", RegistrationStatus.REGISTERED),
            ("Yoga", RegistrationStatus.CANCELLED),
        ]

    def test_unrestricted_registration_records_no_quota(self, db, service, make_member, make_course):
        course = make_course()
        member = make_member()
        service.register(db, member.id, course.id, NOW)
        registration = db.query(CourseRegistration).one()
        assert registration.quota_kind == QuotaKind.NONE
