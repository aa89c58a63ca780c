from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymbooking.models.course import Course
from gymbooking.models.registration import CourseRegistration, RegistrationStatus, QuotaKind
from gymbooking.services.exceptions import CapacityRaceDetected


class RegistrationRepository:
    """Acceso a `course_registrations`. No hace commit: la transacción es del servicio."""

    def get_by_course_member(
        self, db: Session, *, course_id: int, member_id: int
    ) -> Optional[CourseRegistration]:
        return (
            db.query(CourseRegistration)
            .filter(
                CourseRegistration.course_id == course_id,
                CourseRegistration.member_id == member_id
            )
            .populate_existing()
            .first()
        )

    def count_by_status(self, db: Session, *, course_id: int) -> Tuple[int, int]:
        """
        Contar inscripciones activas de un curso.

        Returns:
            (registered_count, waitlist_count)
        """
        rows = (
            db.query(CourseRegistration.status, func.count(CourseRegistration.id))
            .filter(
                CourseRegistration.course_id == course_id,
                CourseRegistration.status.in_(
                    [RegistrationStatus.REGISTERED, RegistrationStatus.WAITLISTED]
                )
            )
            .group_by(CourseRegistration.status)
            .all()
        )
        counts = {status: count for status, count in rows}
        return (
            counts.get(RegistrationStatus.REGISTERED, 0),
            counts.get(RegistrationStatus.WAITLISTED, 0)
        )

    def list_by_status(
        self, db: Session, *, course_id: int, status: RegistrationStatus, limit: Optional[int] = None
    ) -> List[CourseRegistration]:
        """Inscripciones de un curso en un estado, en orden FIFO (enqueued_at, id)."""
        query = (
            db.query(CourseRegistration)
            .filter(
                CourseRegistration.course_id == course_id,
                CourseRegistration.status == status
            )
            .order_by(CourseRegistration.enqueued_at.asc(), CourseRegistration.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def get_next_waitlisted(self, db: Session, *, course_id: int) -> Optional[CourseRegistration]:
        waitlisted = self.list_by_status(
            db, course_id=course_id, status=RegistrationStatus.WAITLISTED, limit=1
        )
        return waitlisted[0] if waitlisted else None

    def list_for_member(
        self, db: Session, *, member_id: int, include_cancelled: bool = False
    ) -> List[Tuple[CourseRegistration, Course]]:
        query = (
            db.query(CourseRegistration, Course)
            .join(Course, Course.id == CourseRegistration.course_id)
            .filter(CourseRegistration.member_id == member_id)
        )
        if not include_cancelled:
            query = query.filter(CourseRegistration.status != RegistrationStatus.CANCELLED)
        return query.order_by(Course.start_at.desc(), CourseRegistration.id.desc()).all()

    def insert(
        self,
        db: Session,
        *,
        course_id: int,
        member_id: int,
        status: RegistrationStatus,
        now: datetime,
        quota_kind: QuotaKind = QuotaKind.NONE,
        quota_week_start: Optional[datetime] = None
    ) -> CourseRegistration:
        """
        Insertar una inscripción nueva.

        Raises:
            CapacityRaceDetected: si otro escritor ya creó la fila (curso, socio)
        """
        registration = CourseRegistration(
            course_id=course_id,
            member_id=member_id,
            status=status,
            enqueued_at=now,
            updated_at=now,
            quota_kind=quota_kind,
            quota_week_start=quota_week_start
        )
        db.add(registration)
        try:
            db.flush()
        except IntegrityError as e:
            raise CapacityRaceDetected(course_id, member_id, original=e) from e
        return registration


registration_repository = RegistrationRepository()
