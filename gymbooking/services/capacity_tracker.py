from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from gymbooking.models.course import Course
from gymbooking.models.registration import RegistrationStatus
from gymbooking.repositories.registration import registration_repository


@dataclass(frozen=True)
class CapacityCounters:
    registered_count: int
    waitlist_count: int
    capacity: int

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.registered_count)


class CapacityTracker:
    """
    Contadores de plazas derivados con COUNT sobre las inscripciones.

    `classify` solo es correcto dentro del scope serializado del curso.
    """

    def counters(self, db: Session, course: Course) -> CapacityCounters:
        registered, waitlisted = registration_repository.count_by_status(db, course_id=course.id)
        return CapacityCounters(
            registered_count=registered,
            waitlist_count=waitlisted,
            capacity=course.capacity
        )

    def classify(self, course: Course, registered_count: int) -> RegistrationStatus:
        if registered_count < course.capacity:
            return RegistrationStatus.REGISTERED
        return RegistrationStatus.WAITLISTED

    def release(self, previous_status: Optional[RegistrationStatus]) -> bool:
        """True si la inscripción que se cancela ocupaba plaza (dispara promoción)."""
        return previous_status == RegistrationStatus.REGISTERED

    def waitlist_position(self, db: Session, course_id: int, registration_id: int) -> Optional[int]:
        waitlisted = registration_repository.list_by_status(
            db, course_id=course_id, status=RegistrationStatus.WAITLISTED
        )
        for position, registration in enumerate(waitlisted, start=1):
            if registration.id == registration_id:
                return position
        return None


capacity_tracker = CapacityTracker()
