"""
Tests del outbox de promociones, el dispatcher y los sinks.
"""
import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from gymbooking.models.promotion import PromotionType, WaitlistPromotionEvent
from gymbooking.repositories.promotion_event import promotion_event_repository
from gymbooking.services.notification_sink import (
    LoggingNotificationSink,
    RedisNotificationSink,
    get_notification_sink
)
from gymbooking.services.waitlist_promoter import WaitlistPromoter

from conftest import GYM_TIMEZONE, NOW, RecordingSink, build_service


def _full_course_with_waitlist(service, db, make_member, make_course, waiting=1):
    course = make_course(capacity=1)
    holder = make_member(first_name="Holder")
    service.register(db, holder.id, course.id, NOW)
    waitlisted = []
    for i in range(waiting):
        member = make_member(first_name=f"Wait{i}")
        service.register(db, member.id, course.id, NOW + timedelta(seconds=i + 1))
        waitlisted.append(member)
    return course, holder, waitlisted


class TestOutbox:

    def test_event_written_and_delivered_after_commit(self, db, service, sink, make_member, make_course):
        course, holder, (waiting,) = _full_course_with_waitlist(service, db, make_member, make_course)
        service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))

        event = db.query(WaitlistPromotionEvent).one()
        assert event.member_id == waiting.id
        assert event.promotion_type == PromotionType.CANCELLATION
        assert event.notified_at is not None
        assert event.payload["course_title"] == course.title
        assert event.payload["member_name"] == "Wait0"
        assert sink.notifications[0]["event_id"] == event.id

    def test_sink_failure_keeps_event_pending(self, db, service, sink, make_member, make_course):
        course, holder, (waiting,) = _full_course_with_waitlist(service, db, make_member, make_course)
        sink.fail = True

        result = service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))
        assert result.promoted_member_id == waiting.id

        event = db.query(WaitlistPromotionEvent).one()
        db.refresh(event)
        assert event.notified_at is None

        sink.fail = False
        assert service.dispatch_pending_promotion_events(db) == {"processed": 1, "succeeded": 1}
        db.refresh(event)
        assert event.notified_at is not None
        assert len(sink.notifications) == 1

        assert service.dispatch_pending_promotion_events(db) == {"processed": 0, "succeeded": 0}

    def test_dispatch_failure_is_counted(self, db, service, sink, make_member, make_course):
        course, holder, _ = _full_course_with_waitlist(service, db, make_member, make_course)
        sink.fail = True
        service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))

        assert service.dispatch_pending_promotion_events(db) == {"processed": 1, "succeeded": 0}

    def test_dispatch_limit_is_clamped(self, db, service, sink, make_member, make_course):
        sink.fail = True
        for _ in range(2):
            course, holder, _ = _full_course_with_waitlist(service, db, make_member, make_course)
            service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))
        sink.fail = False

        assert service.dispatch_pending_promotion_events(db, limit=0) == {"processed": 1, "succeeded": 1}
        assert service.dispatch_pending_promotion_events(db, limit=500) == {"processed": 1, "succeeded": 1}

    def test_already_claimed_event_is_not_delivered_twice(self, db, service, sink, make_member, make_course):
        course, holder, _ = _full_course_with_waitlist(service, db, make_member, make_course)
        service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))
        event = db.query(WaitlistPromotionEvent).one()

        assert service._deliver(db, event.id) is False
        assert len(sink.notifications) == 1

    def test_event_is_marked_notified_only_after_emit(self, db, make_member, make_course):
        seen = []

        class InspectingSink(RecordingSink):
            def emit(self, notification):
                seen.append(
                    db.query(WaitlistPromotionEvent.notified_at)
                    .filter(WaitlistPromotionEvent.id == notification["event_id"])
                    .scalar()
                )
                super().emit(notification)

        service = build_service(InspectingSink())
        course, holder, _ = _full_course_with_waitlist(service, db, make_member, make_course)
        service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))

        assert seen == [None]
        assert db.query(WaitlistPromotionEvent).one().notified_at is not None

    def test_abandoned_claim_is_redelivered_after_timeout(self, db, service, sink, make_member, make_course):
        course, holder, (waiting,) = _full_course_with_waitlist(service, db, make_member, make_course)
        sink.fail = True
        service.cancel(db, holder.id, course.id, NOW + timedelta(minutes=1))
        sink.fail = False
        event = db.query(WaitlistPromotionEvent).one()

        # Un worker reclama el evento y muere antes de llamar al sink
        claimed_at = NOW + timedelta(hours=1)
        timeout = timedelta(seconds=service.claim_timeout_seconds)
        assert promotion_event_repository.claim(
            db, event_id=event.id, now=claimed_at, stale_before=claimed_at - timeout
        )
        db.commit()

        still_leased = claimed_at + timedelta(seconds=60)
        assert service.dispatch_pending_promotion_events(db, now=still_leased) == {"processed": 0, "succeeded": 0}
        assert sink.notifications == []

        expired = claimed_at + timeout + timedelta(seconds=1)
        assert service.dispatch_pending_promotion_events(db, now=expired) == {"processed": 1, "succeeded": 1}
        assert [n["member_id"] for n in sink.notifications] == [waiting.id]
        db.refresh(event)
        assert event.notified_at is not None


class TestFillVacancies:

    def test_capacity_increase_promotes_in_order(self, db, service, sink, make_member, make_course):
        course, _, waiting = _full_course_with_waitlist(service, db, make_member, make_course, waiting=3)
        course.capacity = 3
        db.commit()

        promoted = service.fill_vacancies(db, course.id, NOW + timedelta(minutes=5))
        assert promoted == [waiting[0].id, waiting[1].id]

        stats = service.get_course_stats(db, course.id)
        assert (stats.registered_count, stats.waitlist_count) == (3, 1)
        assert [n["promotion_type"] for n in sink.notifications] == ["automatic", "automatic"]

    def test_process_waitlists_skips_past_and_cancelled_courses(self, db, service, make_member, make_course):
        open_course, _, _ = _full_course_with_waitlist(service, db, make_member, make_course, waiting=2)
        cancelled, _, _ = _full_course_with_waitlist(service, db, make_member, make_course)
        open_course.capacity = 2
        cancelled.capacity = 2
        cancelled.is_cancelled = True
        db.commit()

        result = service.process_waitlists(db, NOW + timedelta(minutes=5))
        assert result == {"courses_processed": 1, "members_promoted": 1, "courses_failed": 0}

        # Una vez empezado el curso ya no se promociona
        open_course.capacity = 3
        db.commit()
        later = service.process_waitlists(db, NOW + timedelta(days=3))
        assert later == {"courses_processed": 0, "members_promoted": 0, "courses_failed": 0}

    def test_full_course_promotes_nobody(self, db, service, make_member, make_course):
        course, _, _ = _full_course_with_waitlist(service, db, make_member, make_course, waiting=2)
        assert service.fill_vacancies(db, course.id, NOW) == []

    def test_process_waitlists_continues_after_failing_course(self, db, sink, make_member, make_course):
        class BrokenCoursePromoter(WaitlistPromoter):
            broken_course_id = None

            def fill_vacancies(self, db, course, now, promotion_type=PromotionType.AUTOMATIC):
                if course.id == self.broken_course_id:
                    raise RuntimeError("fallo al promocionar")
                return super().fill_vacancies(db, course, now, promotion_type)

        promoter = BrokenCoursePromoter(GYM_TIMEZONE)
        service = build_service(sink, promoter=promoter)
        broken, _, _ = _full_course_with_waitlist(service, db, make_member, make_course)
        healthy, _, (waiting,) = _full_course_with_waitlist(service, db, make_member, make_course)
        promoter.broken_course_id = broken.id
        broken.capacity = 2
        healthy.capacity = 2
        db.commit()

        result = service.process_waitlists(db, NOW + timedelta(minutes=5))

        assert result == {"courses_processed": 1, "members_promoted": 1, "courses_failed": 1}
        assert [n["member_id"] for n in sink.notifications] == [waiting.id]
        stats = service.get_course_stats(db, broken.id)
        assert (stats.registered_count, stats.waitlist_count) == (1, 1)


class TestSinks:

    def test_redis_sink_pushes_json(self):
        client = MagicMock()
        client.rpush.return_value = 1
        sink = RedisNotificationSink("redis://localhost:6379/0", "promotions", client=client)

        sink.emit({"member_id": 7, "course_id": 3})

        queue, message = client.rpush.call_args[0]
        assert queue == "promotions"
        assert json.loads(message) == {"member_id": 7, "course_id": 3}

    def test_redis_sink_errors_propagate(self):
        client = MagicMock()
        client.rpush.side_effect = ConnectionError("redis down")
        sink = RedisNotificationSink("redis://localhost:6379/0", "promotions", client=client)

        with pytest.raises(ConnectionError):
            sink.emit({"member_id": 7})

    def test_factory_selects_sink(self):
        settings = MagicMock(
            NOTIFICATION_SINK="redis",
            REDIS_URL="redis://localhost:6379/0",
            REDIS_PROMOTION_QUEUE="q",
            REDIS_SOCKET_TIMEOUT=5
        )
        with patch("gymbooking.services.notification_sink.get_settings", return_value=settings), \
                patch("gymbooking.services.notification_sink.redis.Redis.from_url") as from_url:
            sink = get_notification_sink()
        assert isinstance(sink, RedisNotificationSink)
        from_url.assert_called_once()

        settings.NOTIFICATION_SINK = "log"
        with patch("gymbooking.services.notification_sink.get_settings", return_value=settings):
            assert isinstance(get_notification_sink(), LoggingNotificationSink)
