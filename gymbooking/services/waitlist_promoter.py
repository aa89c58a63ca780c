from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from gymbooking.core.config import get_settings
from gymbooking.core.timezone_utils import as_utc, format_gym_time
from gymbooking.models.course import Course
from gymbooking.models.promotion import PromotionType, WaitlistPromotionEvent
from gymbooking.models.registration import RegistrationStatus
from gymbooking.repositories.promotion_event import promotion_event_repository
from gymbooking.repositories.registration import registration_repository
from gymbooking.services.capacity_tracker import capacity_tracker

logger = logging.getLogger(__name__)


class WaitlistPromoter:
    """
    Promociona socios desde la lista de espera en orden FIFO.

    Se ejecuta dentro de la transacción y el lock del curso de quien libera la
    plaza; escribe el evento de outbox pero no notifica (eso ocurre tras el commit).
    """

    def __init__(self, gym_timezone: Optional[str] = None):
        self.gym_timezone = gym_timezone or get_settings().GYM_TIMEZONE

    def promote_next(
        self,
        db: Session,
        course: Course,
        now: datetime,
        promotion_type: PromotionType = PromotionType.CANCELLATION
    ) -> Optional[WaitlistPromotionEvent]:
        if course.is_cancelled:
            logger.info(f"Curso {course.id} cancelado: no se promociona lista de espera")
            return None

        candidate = registration_repository.get_next_waitlisted(db, course_id=course.id)
        if candidate is None:
            logger.debug(f"Curso {course.id}: lista de espera vacía, nada que promocionar")
            return None

        candidate.status = RegistrationStatus.REGISTERED
        candidate.updated_at = now
        db.flush()

        event = promotion_event_repository.create(
            db,
            registration_id=candidate.id,
            course_id=course.id,
            member_id=candidate.member_id,
            promotion_type=promotion_type,
            payload=self._build_payload(course, candidate, promotion_type, now),
            now=now
        )
        logger.info(
            f"Socio {candidate.member_id} promocionado desde lista de espera en curso {course.id} "
            f"({promotion_type.value}, evento {event.id})"
        )
        return event

    def fill_vacancies(
        self,
        db: Session,
        course: Course,
        now: datetime,
        promotion_type: PromotionType = PromotionType.AUTOMATIC
    ) -> List[WaitlistPromotionEvent]:
        """Promocionar mientras haya plazas libres y gente esperando."""
        events: List[WaitlistPromotionEvent] = []
        if course.is_cancelled:
            return events

        counters = capacity_tracker.counters(db, course)
        for _ in range(min(counters.available_spots, counters.waitlist_count)):
            event = self.promote_next(db, course, now, promotion_type)
            if event is None:
                break
            events.append(event)
        return events

    def _build_payload(self, course, registration, promotion_type, now) -> dict:
        member = registration.member
        start_at = as_utc(course.start_at)
        end_at = as_utc(course.end_at)
        return {
            "event_type": "waitlist_promoted",
            "promotion_type": promotion_type.value,
            "promoted_at": as_utc(now).isoformat(),
            "registration_id": registration.id,
            "member_id": registration.member_id,
            "member_name": member.display_name if member else None,
            "member_email": member.email if member else None,
            "membership": member.membership_type.value if member else None,
            "course_id": course.id,
            "course_title": course.title,
            "start_at": start_at.isoformat(),
            "end_at": end_at.isoformat(),
            "start_local": format_gym_time(start_at, self.gym_timezone),
        }
