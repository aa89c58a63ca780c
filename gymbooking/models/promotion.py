import enum
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Enum, JSON, Index

from gymbooking.db.base_class import Base


class PromotionType(str, enum.Enum):
    CANCELLATION = "cancellation"  # Plaza liberada por una cancelación
    AUTOMATIC = "automatic"        # Barrido de listas de espera / aumento de capacidad


class WaitlistPromotionEvent(Base):
    """
    Outbox de promociones desde lista de espera.

    Se escribe en la misma transacción que el cambio de estado; `notified_at`
    queda a NULL hasta que el sink confirma la entrega. `claimed_at` es el
    reclamo (con caducidad) de la entrega en curso.
    """
    __tablename__ = "waitlist_promotion_events"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(Integer, ForeignKey("course_registrations.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    promotion_type = Column(
        Enum(PromotionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    notified_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_waitlist_promotion_events_pending", "notified_at", "created_at"),
    )
