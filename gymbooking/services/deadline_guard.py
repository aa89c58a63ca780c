"""
Ventanas de inscripción y cancelación de un curso.

Funciones puras: reciben `now` explícito y no tocan la base de datos.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import math

from gymbooking.core.timezone_utils import as_utc
from gymbooking.models.course import Course
from gymbooking.services.exceptions import DeadlinePassedError

REGISTRATION_WINDOW = "registration"
CANCELLATION_WINDOW = "cancellation"


@dataclass(frozen=True)
class WindowCheck:
    allowed: bool
    deadline: datetime
    minutes_late: Optional[int] = None


class DeadlineGuard:
    """Comprueba `now <= start_at - deadline_minutes` (límite inclusivo)."""

    def registration_deadline(self, course: Course) -> datetime:
        return as_utc(course.start_at) - timedelta(minutes=course.registration_deadline_minutes)

    def cancellation_deadline(self, course: Course) -> datetime:
        return as_utc(course.start_at) - timedelta(minutes=course.cancellation_deadline_minutes)

    def check_registration_window(self, course: Course, now: datetime) -> WindowCheck:
        return self._check(self.registration_deadline(course), now)

    def check_cancellation_window(self, course: Course, now: datetime) -> WindowCheck:
        return self._check(self.cancellation_deadline(course), now)

    def can_register(self, course: Course, now: datetime) -> bool:
        return self.check_registration_window(course, now).allowed

    def can_cancel(self, course: Course, now: datetime) -> bool:
        return self.check_cancellation_window(course, now).allowed

    def ensure_registration_window(self, course: Course, now: datetime) -> None:
        check = self.check_registration_window(course, now)
        if not check.allowed:
            raise DeadlinePassedError(check.minutes_late, REGISTRATION_WINDOW)

    def ensure_cancellation_window(self, course: Course, now: datetime) -> None:
        check = self.check_cancellation_window(course, now)
        if not check.allowed:
            raise DeadlinePassedError(check.minutes_late, CANCELLATION_WINDOW)

    @staticmethod
    def _check(deadline: datetime, now: datetime) -> WindowCheck:
        now = as_utc(now)
        if now <= deadline:
            return WindowCheck(allowed=True, deadline=deadline)
        late_seconds = (now - deadline).total_seconds()
        # Redondeo hacia arriba a minutos completos, mínimo 1
        minutes_late = max(1, math.ceil(late_seconds / 60))
        return WindowCheck(allowed=False, deadline=deadline, minutes_late=minutes_late)


deadline_guard = DeadlineGuard()
