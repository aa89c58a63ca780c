import enum
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Enum, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from gymbooking.db.base_class import Base


class WeeklyRegistrationCounter(Base):
    """Inscripciones consumidas por un socio en una semana natural."""
    __tablename__ = "weekly_registration_counters"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    # Lunes 00:00 hora del gimnasio, guardado en UTC
    week_start = Column(DateTime(timezone=True), nullable=False)
    registrations_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("member_id", "week_start", name="uq_weekly_counters_member_week"),
    )


class MembershipCredit(Base):
    """Saldo de créditos de la membresía 10er Karte."""
    __tablename__ = "membership_credits"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, unique=True)
    credits_remaining = Column(Integer, nullable=False, default=0)
    credits_total = Column(Integer, nullable=False, default=0)
    last_recharged_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    member = relationship("Member", back_populates="credit_balance")


class CreditTransactionType(str, enum.Enum):
    COURSE_REGISTRATION = "course_registration"
    COURSE_CANCELLATION = "course_cancellation"
    ADMIN_RECHARGE = "admin_recharge"
    ADMIN_DEDUCTION = "admin_deduction"


class CreditTransaction(Base):
    """Movimiento de créditos (solo se añaden filas)."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # Positivo = abono, negativo = cargo
    transaction_type = Column(
        Enum(CreditTransactionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    description = Column(Text, nullable=True)
    balance_after = Column(Integer, nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=True, index=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
