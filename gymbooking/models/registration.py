import enum
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Enum, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from gymbooking.db.base_class import Base


class RegistrationStatus(str, enum.Enum):
    """Estado de una inscripción a un curso."""
    REGISTERED = "REGISTERED"  # Plaza confirmada
    WAITLISTED = "WAITLISTED"  # En lista de espera
    CANCELLED = "CANCELLED"    # Cancelada por el socio


ACTIVE_STATUSES = (RegistrationStatus.REGISTERED, RegistrationStatus.WAITLISTED)


class QuotaKind(str, enum.Enum):
    """Qué cuota consumió la inscripción al hacerse."""
    NONE = "NONE"
    WEEKLY = "WEEKLY"
    CREDIT = "CREDIT"


class CourseRegistration(Base):
    """
    Una fila por (curso, socio). Nunca se borra: cancelar cambia el estado y
    volver a inscribirse reactiva la misma fila.
    """
    __tablename__ = "course_registrations"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    status = Column(Enum(RegistrationStatus), nullable=False, index=True)

    # Orden FIFO de la lista de espera
    enqueued_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Reserva de cuota registrada en el momento de la inscripción
    quota_kind = Column(Enum(QuotaKind), nullable=False, default=QuotaKind.NONE)
    quota_week_start = Column(DateTime(timezone=True), nullable=True)

    course = relationship("Course", back_populates="registrations")
    member = relationship("Member", back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("course_id", "member_id", name="uq_course_registrations_course_member"),
        Index("ix_course_registrations_queue", "course_id", "status", "enqueued_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
