from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from gymbooking.models.course import Course
from gymbooking.models.registration import CourseRegistration, RegistrationStatus
from gymbooking.repositories.base import BaseRepository
from gymbooking.schemas.course import CourseCreate


class CourseRepository(BaseRepository[Course, CourseCreate]):
    def get_for_update(self, db: Session, course_id: int) -> Optional[Course]:
        """
        Obtener el curso bloqueando su fila (SELECT ... FOR UPDATE).

        En SQLite el FOR UPDATE se ignora; la serialización la da el lock de proceso.
        """
        return (
            db.query(Course)
            .filter(Course.id == course_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_upcoming_with_waitlist(self, db: Session, *, now: datetime) -> List[Course]:
        """
        Cursos futuros no cancelados que tienen al menos un socio en lista de espera.
        """
        waitlisted = (
            db.query(CourseRegistration.id)
            .filter(
                CourseRegistration.course_id == Course.id,
                CourseRegistration.status == RegistrationStatus.WAITLISTED
            )
            .exists()
        )
        return (
            db.query(Course)
            .filter(
                Course.is_cancelled.is_(False),
                Course.start_at > now,
                waitlisted
            )
            .order_by(Course.start_at.asc(), Course.id.asc())
            .all()
        )


course_repository = CourseRepository(Course)
