from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text, Index, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from gymbooking.db.base_class import Base


class Course(Base):
    """
    Instancia concreta de un curso con capacidad y ventanas de plazo.

    Los plazos se expresan en minutos antes de `start_at`; 0 significa que el
    plazo coincide con el inicio del curso.
    """
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=False, index=True)
    end_at = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False)
    registration_deadline_minutes = Column(Integer, nullable=False, default=0)
    cancellation_deadline_minutes = Column(Integer, nullable=False, default=0)
    is_cancelled = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    registrations = relationship("CourseRegistration", back_populates="course")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_courses_capacity_positive"),
        CheckConstraint("registration_deadline_minutes >= 0", name="ck_courses_registration_deadline"),
        CheckConstraint("cancellation_deadline_minutes >= 0", name="ck_courses_cancellation_deadline"),
        Index("ix_courses_upcoming", "is_cancelled", "start_at"),
    )

